"""Replays the offline queue against the remote API.

Passes are strictly sequential and non-reentrant. Each pass works over a
snapshot of pending items taken at its start; items queued during a pass
wait for the follow-up pass.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

import httpx

from .connectivity import ConnectivityMonitor
from .credentials import StoredCredential, auth_headers
from .errors import (
    NetworkUnavailable,
    ServerTransientError,
    ServerValidationError,
    UploadFailure,
)
from .models import ItemStatus, QueueItem, merge_uploaded_urls
from .notifier import ChangeNotifier
from .queue_store import DurableQueueStore
from .transport import raise_for_status, send_json
from .uploader import AttachmentUploader

logger = logging.getLogger(__name__)

AUTH_STATUS_CODES = (401, 403)


class PassStatus(Enum):
    """How a sync pass ended."""

    COMPLETED = "completed"
    EMPTY = "empty"  # Nothing pending
    OFFLINE = "offline"
    SKIPPED = "skipped"  # Another pass was already running


class ReplayOutcome(Enum):
    """Classification of one replay attempt."""

    DELIVERED = "delivered"
    DROPPED = "dropped"
    RETAINED = "retained"
    SKIPPED = "skipped"


@dataclass
class SyncReport:
    """Result of one ``process_queue`` pass."""

    status: PassStatus
    attempted: int = 0
    succeeded: int = 0
    dropped: int = 0
    retained: int = 0
    timestamp: datetime = field(default_factory=datetime.now)


class SyncProcessor:
    """Drains the durable queue when connectivity allows.

    Outcome per item:
    - 2xx: removed from the queue
    - 4xx: removed and recorded as dropped (permanent failure)
    - 5xx, transport error, timeout, upload failure: kept for the next pass
    """

    def __init__(
        self,
        queue: DurableQueueStore,
        client: httpx.AsyncClient,
        uploader: AttachmentUploader,
        monitor: ConnectivityMonitor,
        notifier: ChangeNotifier,
        credential: StoredCredential,
        retry_delay_seconds: float = 5.0,
        keep_on_auth_error: bool = False,
        idempotency_header: str | None = None,
    ):
        """Initialize the processor.

        Args:
            queue: Outbox to drain.
            client: HTTP client for replayed requests.
            uploader: Uploader used to re-upload attachments on every attempt.
            monitor: Connectivity monitor consulted before each pass.
            notifier: Notified when the queue changes.
            credential: Source of the current bearer token.
            retry_delay_seconds: Delay before an automatic follow-up pass when
                items remain after a pass; 0 disables.
            keep_on_auth_error: Keep 401/403 replays for retry instead of
                dropping them.
            idempotency_header: Header carrying the item id on replay, if set.
        """
        self._queue = queue
        self._client = client
        self._uploader = uploader
        self._monitor = monitor
        self._notifier = notifier
        self._credential = credential
        self.retry_delay_seconds = retry_delay_seconds
        self.keep_on_auth_error = keep_on_auth_error
        self.idempotency_header = idempotency_header

        self._closed = False
        self._syncing = False
        self._rerun_requested = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: asyncio.Task | None = None
        self._retry_handle: asyncio.TimerHandle | None = None
        self._last_report: SyncReport | None = None

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def last_report(self) -> SyncReport | None:
        return self._last_report

    def trigger(self) -> asyncio.Task | None:
        """Request a sync pass in the background.

        A trigger arriving while a pass is in flight is coalesced into a
        single follow-up pass. Must be called from the running event loop.

        Returns:
            The background task draining the queue, or None once closed.
        """
        if self._closed:
            return None
        if self._task and not self._task.done():
            self._rerun_requested = True
            return self._task

        self._task = asyncio.create_task(self._drain())
        return self._task

    async def wait_idle(self) -> None:
        """Wait for the background drain task, if any, to finish."""
        if self._task:
            await asyncio.shield(self._task)

    async def close(self) -> None:
        """Cancel the background drain task and any scheduled retry.

        A closed processor ignores further triggers.
        """
        self._closed = True
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        if self._retry_handle:
            self._retry_handle.cancel()
            self._retry_handle = None

    async def _drain(self) -> None:
        while True:
            await self._idle.wait()
            self._rerun_requested = False
            try:
                await self.process_queue()
            except Exception as e:
                logger.error(f"Sync pass failed: {e}", exc_info=True)
            if not self._rerun_requested:
                return

    async def process_queue(self) -> SyncReport:
        """Run one sync pass over a snapshot of the pending items.

        Returns:
            SyncReport describing the pass.
        """
        if self._syncing:
            self._rerun_requested = True
            logger.debug("Sync already in progress, coalescing trigger")
            return SyncReport(status=PassStatus.SKIPPED)

        self._syncing = True
        self._idle.clear()
        report = SyncReport(status=PassStatus.EMPTY)
        try:
            if not await self._monitor.check():
                report = SyncReport(status=PassStatus.OFFLINE)
                return report

            snapshot = await self._queue.list_pending()
            if not snapshot:
                return report

            report = SyncReport(status=PassStatus.COMPLETED)
            logger.info(f"Sync: processing {len(snapshot)} queued items")
            for item in snapshot:
                try:
                    outcome = await self._replay(item)
                except Exception as e:
                    logger.error(f"Sync item {item.id} failed unexpectedly: {e}", exc_info=True)
                    await self._queue.mark_status(item.id, ItemStatus.PENDING)
                    outcome = ReplayOutcome.RETAINED

                if outcome == ReplayOutcome.SKIPPED:
                    continue
                report.attempted += 1
                if outcome == ReplayOutcome.DELIVERED:
                    report.succeeded += 1
                elif outcome == ReplayOutcome.DROPPED:
                    report.dropped += 1
                else:
                    report.retained += 1

            logger.info(
                f"Sync: {report.status.value}, delivered={report.succeeded}, "
                f"dropped={report.dropped}, retained={report.retained}"
            )
        finally:
            self._syncing = False
            self._idle.set()
            self._last_report = report
            if report.status == PassStatus.COMPLETED:
                self._notifier.notify()
                await self._schedule_retry()

        return report

    async def _schedule_retry(self) -> None:
        if self._closed or self.retry_delay_seconds <= 0:
            return
        if not self._monitor.is_online or not await self._queue.list_pending():
            return

        if self._retry_handle:
            self._retry_handle.cancel()
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(self.retry_delay_seconds, self.trigger)
        logger.debug(f"Items remain, next sync in {self.retry_delay_seconds}s")

    async def _replay(self, item: QueueItem) -> ReplayOutcome:
        """Attempt delivery of one queued item and apply the outcome."""
        current = await self._queue.get(item.id)
        if current is None or current.status == ItemStatus.PROCESSING:
            return ReplayOutcome.SKIPPED

        await self._queue.mark_status(item.id, ItemStatus.PROCESSING)
        logger.info(f"Syncing item {item.id}: {item.method} {item.url}")

        try:
            body = item.body
            if item.attachments:
                urls = await self._uploader.upload_all(item.attachments)
                body = merge_uploaded_urls(item.body, item.attachments, urls)

            headers = await auth_headers(self._credential, item.headers)
            if self.idempotency_header:
                headers[self.idempotency_header] = item.id

            response = await send_json(self._client, item.method, item.url, headers, body)
            raise_for_status(response)

        except ServerValidationError as e:
            if self.keep_on_auth_error and e.status_code in AUTH_STATUS_CODES:
                logger.warning(
                    f"Sync item {item.id} got auth error {e.status_code}, keeping for retry"
                )
                await self._queue.mark_status(item.id, ItemStatus.PENDING)
                return ReplayOutcome.RETAINED

            logger.warning(
                f"Sync item {item.id} permanently rejected ({e.status_code}), removing: {e.message}"
            )
            await self._queue.drop(item.id, e.status_code, e.message)
            self._notifier.notify()
            return ReplayOutcome.DROPPED

        except (ServerTransientError, NetworkUnavailable, UploadFailure) as e:
            logger.warning(f"Sync item {item.id} failed, will retry: {e}")
            await self._queue.mark_status(item.id, ItemStatus.PENDING)
            return ReplayOutcome.RETAINED

        logger.info(f"Sync item {item.id} complete")
        await self._queue.remove_by_id(item.id)
        self._notifier.notify()
        return ReplayOutcome.DELIVERED
