"""Single entry point for reads and writes against the remote API.

Reads go to the network when online and fall back to the response cache.
Writes never fail because of connectivity: when the online attempt cannot
complete the request is saved to the outbox and a soft result is returned.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence

import httpx

from .cache import ResponseCache
from .connectivity import ConnectivityMonitor
from .credentials import StoredCredential, auth_headers
from .errors import CacheMissError, FieldSyncError, OfflineByPolicy
from .models import Attachment, QueueItem, RequestEnvelope, merge_uploaded_urls
from .notifier import ChangeNotifier
from .queue_store import DurableQueueStore
from .sync_processor import SyncProcessor
from .transport import JSON_CONTENT_TYPE, decode_json, raise_for_status, send_json
from .uploader import AttachmentUploader

logger = logging.getLogger(__name__)


class ApiClient:
    """Online-direct or outbox routing for API calls."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        queue: DurableQueueStore,
        cache: ResponseCache,
        uploader: AttachmentUploader,
        monitor: ConnectivityMonitor,
        processor: SyncProcessor,
        notifier: ChangeNotifier,
        credential: StoredCredential,
        idempotency_header: str | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._client = client
        self._queue = queue
        self._cache = cache
        self._uploader = uploader
        self._monitor = monitor
        self._processor = processor
        self._notifier = notifier
        self._credential = credential
        self.idempotency_header = idempotency_header
        self._clock = clock

    async def build_headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        """JSON content type, fresh bearer token, then caller extras."""
        headers = await auth_headers(self._credential, {"Content-Type": JSON_CONTENT_TYPE})
        headers.update(extra or {})
        return headers

    async def get(self, url: str, headers: Mapping[str, str] | None = None) -> Any:
        """Fetch ``url``, serving the cached payload when the network fails.

        Raises:
            CacheMissError: Nothing could be fetched and nothing is cached.
        """
        final_headers = await self.build_headers(headers)

        if self._monitor.is_online:
            try:
                response = await send_json(self._client, "GET", url, final_headers)
                raise_for_status(response)
                data = decode_json(response)
                await self._cache.put(url, data)
                return data
            except FieldSyncError as e:
                logger.warning(f"GET {url} failed, checking cache: {e}")

        entry = await self._cache.get(url)
        if entry is not None:
            logger.info(f"Serving cached: {url}")
            return entry.data

        raise CacheMissError(url, offline=not self._monitor.is_online)

    async def post(self, url: str, body: Mapping[str, Any] | None = None, **options: Any) -> Any:
        return await self.send("POST", url, body, **options)

    async def put(self, url: str, body: Mapping[str, Any] | None = None, **options: Any) -> Any:
        return await self.send("PUT", url, body, **options)

    async def patch(self, url: str, body: Mapping[str, Any] | None = None, **options: Any) -> Any:
        return await self.send("PATCH", url, body, **options)

    async def send(
        self,
        method: str,
        url: str,
        body: Mapping[str, Any] | None = None,
        attachments: Sequence[Attachment | Mapping[str, Any]] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Send a write request, queueing it if it cannot be delivered now.

        Args:
            method: POST, PUT or PATCH.
            url: Target URL.
            body: JSON body.
            attachments: Files to upload first; their URLs are appended to
                ``body[attachment.target_field]``.
            headers: Extra request headers.

        Returns:
            The decoded server response, or a soft result
            ``{"status": True, "offline": True, ...}`` if the request was queued.

        Raises:
            InvalidRequestError: The request is malformed and was not queued.
        """
        envelope = RequestEnvelope.build(method, url, body, attachments, headers)
        final_headers = await self.build_headers(envelope.headers)
        item_id = str(uuid.uuid4())

        try:
            if not self._monitor.is_online:
                raise OfflineByPolicy("Connectivity monitor reports offline")
            return await self._send_online(envelope, final_headers, item_id)
        except FieldSyncError as e:
            if isinstance(e, OfflineByPolicy):
                message = "You are offline. Data saved locally and will sync later."
            else:
                logger.warning(f"{envelope.method} {envelope.url} failed, saving to offline queue: {e}")
                message = "Network failed. Saved to offline queue."
        except Exception as e:
            logger.error(
                f"{envelope.method} {envelope.url} failed unexpectedly, saving to offline queue: {e}",
                exc_info=True,
            )
            message = "Network failed. Saved to offline queue."

        item = await self._enqueue(envelope, final_headers, item_id)
        return {"status": True, "offline": True, "message": message, "queued_id": item.id}

    async def _send_online(
        self,
        envelope: RequestEnvelope,
        headers: dict[str, str],
        item_id: str,
    ) -> Any:
        body = envelope.body
        if envelope.attachments:
            urls = await self._uploader.upload_all(envelope.attachments)
            body = merge_uploaded_urls(envelope.body, envelope.attachments, urls)

        request_headers = dict(headers)
        if self.idempotency_header:
            request_headers[self.idempotency_header] = item_id

        response = await send_json(self._client, envelope.method, envelope.url, request_headers, body)
        raise_for_status(response)
        return decode_json(response)

    async def _enqueue(
        self,
        envelope: RequestEnvelope,
        headers: dict[str, str],
        item_id: str,
    ) -> QueueItem:
        """Save the original, unmodified request to the outbox."""
        item = QueueItem.create(
            url=envelope.url,
            method=envelope.method,
            body=envelope.body,
            headers=headers,
            attachments=envelope.attachments,
            created_at=self._clock(),
            item_id=item_id,
        )
        await self._queue.push(item)
        logger.info(f"Saved {item.method} {item.url} to offline queue as {item.id}")
        self._notifier.notify()

        if self._monitor.is_online:
            self._processor.trigger()
        return item
