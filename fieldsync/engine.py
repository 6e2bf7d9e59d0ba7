"""Wires the sync components together.

One SyncEngine is created at process start and passed to whatever needs to
read or write; nothing in fieldsync is a module-level singleton.
"""

import logging
from datetime import datetime
from typing import Any, Callable

import httpx

from .api_client import ApiClient
from .cache import ResponseCache
from .config import Config
from .connectivity import ConnectivityMonitor
from .credentials import StoredCredential
from .notifier import ChangeNotifier
from .queue_store import DurableQueueStore
from .storage import KeyValueStore
from .sync_processor import SyncProcessor
from .uploader import AttachmentUploader

logger = logging.getLogger(__name__)


class SyncEngine:
    """Offline-first API access: outbox, replay, cache and connectivity."""

    def __init__(
        self,
        storage: KeyValueStore,
        client: httpx.AsyncClient,
        config: Config | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the engine.

        Args:
            storage: Durable key-value store (queue, cache, token).
            client: HTTP client for API calls, uploads and probes.
            config: Engine configuration; defaults apply when None.
            clock: Time source for queue items, cache entries and drops.
        """
        self.config = config or Config()
        self.storage = storage
        self.client = client

        self.notifier = ChangeNotifier()
        self.credential = StoredCredential(storage, key=self.config.storage.token_key)
        self.queue = DurableQueueStore(
            storage,
            queue_key=self.config.storage.queue_key,
            dropped_key=self.config.storage.dropped_key,
            dropped_limit=self.config.sync.dropped_history_limit,
            clock=clock,
        )
        self.cache = ResponseCache(storage, prefix=self.config.storage.cache_prefix, clock=clock)
        self.monitor = ConnectivityMonitor(
            client=client,
            probe_url=self.config.connectivity.probe_url,
            probe_interval_seconds=self.config.connectivity.probe_interval_seconds,
            probe_timeout_seconds=self.config.connectivity.probe_timeout_seconds,
            assume_online=self.config.connectivity.assume_online,
        )
        self.uploader = AttachmentUploader(client, timeout=self.config.upload.timeout_seconds)
        self.processor = SyncProcessor(
            queue=self.queue,
            client=client,
            uploader=self.uploader,
            monitor=self.monitor,
            notifier=self.notifier,
            credential=self.credential,
            retry_delay_seconds=self.config.sync.retry_delay_seconds,
            keep_on_auth_error=self.config.sync.keep_on_auth_error,
            idempotency_header=self.config.api.idempotency_header,
        )
        self.api = ApiClient(
            client=client,
            queue=self.queue,
            cache=self.cache,
            uploader=self.uploader,
            monitor=self.monitor,
            processor=self.processor,
            notifier=self.notifier,
            credential=self.credential,
            idempotency_header=self.config.api.idempotency_header,
            clock=clock,
        )

        self._remove_online_listener = self.monitor.add_listener(self.processor.trigger)

    @classmethod
    def from_config(cls, config: Config) -> "SyncEngine":
        """Build an engine backed by SQLite and a real HTTP client."""
        storage = KeyValueStore(config.storage.db_path)
        client = httpx.AsyncClient(
            base_url=config.api.base_url,
            timeout=config.api.timeout_seconds,
        )
        return cls(storage, client, config)

    async def start(self) -> None:
        """Load the outbox, start probing, and flush anything left from last run."""
        self.storage.connect()
        await self.queue.load()
        await self.monitor.start()

        if self.monitor.is_online and await self.queue.count():
            self.processor.trigger()

        logger.info("Sync engine started")

    async def close(self) -> None:
        """Stop background work and release the HTTP client and database."""
        self._remove_online_listener()
        await self.processor.close()
        await self.monitor.stop()
        await self.client.aclose()
        self.storage.close()
        logger.info("Sync engine stopped")

    async def __aenter__(self) -> "SyncEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def get_status(self) -> dict[str, Any]:
        """Snapshot of outbox and connectivity state."""
        report = self.processor.last_report
        return {
            "online": self.monitor.is_online,
            "syncing": self.processor.is_syncing,
            "pending_items": await self.queue.count(),
            "dropped_items": len(await self.queue.list_dropped()),
            "last_sync": report.timestamp.isoformat() if report else None,
            "last_sync_status": report.status.value if report else None,
        }
