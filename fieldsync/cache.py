"""Response cache for offline reads: last successful payload per URL."""

import json
import logging
from datetime import datetime
from typing import Any, Callable

from .errors import StorageError
from .models import CacheEntry
from .storage import KeyValueStore

logger = logging.getLogger(__name__)


class ResponseCache:
    """Stores the most recent successful GET payload per exact URL.

    Entries never expire; the newest payload wins regardless of age.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        prefix: str = "CACHE_",
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._storage = storage
        self._prefix = prefix
        self._clock = clock

    def _key(self, url: str) -> str:
        return f"{self._prefix}{url}"

    async def put(self, url: str, data: Any) -> None:
        """Overwrite the entry for ``url``.

        Failures are logged, not raised: the caller already has its payload.
        """
        try:
            value = json.dumps({"timestamp": self._clock().isoformat(), "data": data})
            self._storage.set(self._key(url), value)
        except (StorageError, TypeError, ValueError) as e:
            logger.error(f"Cache save failed for {url}: {e}")

    async def get(self, url: str) -> CacheEntry | None:
        """Return the cached entry for ``url``, or None on a miss."""
        try:
            raw = self._storage.get(self._key(url))
            if raw is None:
                return None
            stored = json.loads(raw)
            return CacheEntry(
                url=url,
                timestamp=datetime.fromisoformat(stored["timestamp"]),
                data=stored["data"],
            )
        except (StorageError, ValueError, TypeError, KeyError) as e:
            logger.warning(f"Cache read failed for {url}: {e}")
            return None

    async def urls(self) -> list[str]:
        """URLs that currently have a cached entry."""
        return [key[len(self._prefix):] for key in self._storage.keys(self._prefix)]
