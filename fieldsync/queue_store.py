"""Durable outbox of pending write operations.

The whole queue is persisted as one JSON array under a fixed key. Every
mutation is read-modify-write over that array, so all mutations go through a
single asyncio lock and are followed by a full persist.
"""

import asyncio
import copy
import json
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable

from .models import DroppedItem, ItemStatus, QueueItem
from .storage import KeyValueStore

logger = logging.getLogger(__name__)


class DurableQueueStore:
    """Ordered, persisted list of QueueItems.

    Items keep their enqueue order for their whole lifetime. Readers get
    copies, so a snapshot never changes under a sync pass.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        queue_key: str = "OFFLINE_QUEUE",
        dropped_key: str = "OFFLINE_DROPPED",
        dropped_limit: int = 200,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the queue store.

        Args:
            storage: Backing key-value store.
            queue_key: Storage key for the pending queue.
            dropped_key: Storage key for the permanently rejected history.
            dropped_limit: Maximum dropped items kept (oldest discarded first).
            clock: Time source for drop timestamps.
        """
        self._storage = storage
        self._queue_key = queue_key
        self._dropped_key = dropped_key
        self._dropped_limit = dropped_limit
        self._clock = clock
        self._items: list[QueueItem] = []
        self._dropped: list[DroppedItem] = []
        self._lock = asyncio.Lock()
        self._loaded = False

    async def load(self) -> None:
        """Load the queue and dropped history from storage.

        An absent, empty, or unreadable value is treated as "no items".
        Items left in ``processing`` by an interrupted run are reset to
        ``pending``.
        """
        async with self._lock:
            self._items = self._read_list(self._queue_key, QueueItem.from_dict)
            self._dropped = self._read_list(self._dropped_key, DroppedItem.from_dict)

            interrupted = [i for i in self._items if i.status == ItemStatus.PROCESSING]
            for item in interrupted:
                item.status = ItemStatus.PENDING
            if interrupted:
                logger.info(f"Reset {len(interrupted)} interrupted items to pending")
                self._persist_queue()

            self._loaded = True

        logger.info(
            f"Loaded offline queue: {len(self._items)} pending, "
            f"{len(self._dropped)} dropped"
        )

    def _read_list(self, key: str, parse: Callable) -> list:
        raw = self._storage.get(key)
        if not raw:
            return []
        try:
            return [parse(entry) for entry in json.loads(raw)]
        except (ValueError, TypeError, KeyError) as e:
            logger.error(f"Failed to load {key}, starting empty: {e}")
            return []

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    async def persist(self) -> None:
        """Write the full queue to storage."""
        async with self._lock:
            self._persist_queue()

    def _persist_queue(self) -> None:
        self._storage.set(
            self._queue_key, json.dumps([item.to_dict() for item in self._items])
        )

    async def push(self, item: QueueItem) -> QueueItem:
        """Append ``item`` to the end of the queue and persist."""
        await self._ensure_loaded()
        async with self._lock:
            self._items.append(copy.deepcopy(item))
            self._persist_queue()
        logger.debug(f"Queued {item.method} {item.url} as {item.id}")
        return item

    async def remove_by_id(self, item_id: str) -> bool:
        """Remove an item and persist.

        Returns:
            True if the item was present.
        """
        await self._ensure_loaded()
        async with self._lock:
            before = len(self._items)
            self._items = [i for i in self._items if i.id != item_id]
            removed = len(self._items) != before
            if removed:
                self._persist_queue()
        return removed

    async def mark_status(self, item_id: str, status: ItemStatus) -> bool:
        """Set the status of a queued item and persist."""
        await self._ensure_loaded()
        async with self._lock:
            for item in self._items:
                if item.id == item_id:
                    item.status = status
                    self._persist_queue()
                    return True
        return False

    async def drop(self, item_id: str, status_code: int, error: str = "") -> DroppedItem | None:
        """Remove a permanently rejected item and record it in the dropped history.

        Both keys are written in one storage transaction.

        Returns:
            The recorded DroppedItem, or None if the item was not queued.
        """
        await self._ensure_loaded()
        async with self._lock:
            item = next((i for i in self._items if i.id == item_id), None)
            if item is None:
                return None

            dropped = DroppedItem(
                item=replace(item, status=ItemStatus.FAILED),
                status_code=status_code,
                error=error,
                dropped_at=self._clock(),
            )
            self._items = [i for i in self._items if i.id != item_id]
            self._dropped.append(dropped)
            if self._dropped_limit > 0:
                self._dropped = self._dropped[-self._dropped_limit:]

            self._storage.set_many({
                self._queue_key: json.dumps([i.to_dict() for i in self._items]),
                self._dropped_key: json.dumps([d.to_dict() for d in self._dropped]),
            })
        return dropped

    async def get(self, item_id: str) -> QueueItem | None:
        """Return a copy of the item with ``item_id``, if queued."""
        await self._ensure_loaded()
        for item in self._items:
            if item.id == item_id:
                return copy.deepcopy(item)
        return None

    async def list_pending(self) -> list[QueueItem]:
        """Snapshot of items eligible for replay, in enqueue order."""
        await self._ensure_loaded()
        return [copy.deepcopy(i) for i in self._items if i.status == ItemStatus.PENDING]

    async def list_all(self) -> list[QueueItem]:
        """Snapshot of every queued item regardless of status."""
        await self._ensure_loaded()
        return [copy.deepcopy(i) for i in self._items]

    async def count(self) -> int:
        await self._ensure_loaded()
        return len(self._items)

    async def list_dropped(self) -> list[DroppedItem]:
        """Items the server permanently rejected, oldest first."""
        await self._ensure_loaded()
        return list(self._dropped)

    async def clear_dropped(self) -> int:
        """Forget the dropped history.

        Returns:
            Number of entries cleared.
        """
        await self._ensure_loaded()
        async with self._lock:
            count = len(self._dropped)
            self._dropped = []
            self._storage.set(self._dropped_key, "[]")
        return count
