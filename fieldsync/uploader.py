"""Sequential attachment uploads to the remote object store."""

import logging
from pathlib import Path
from typing import Any, Sequence
from urllib.parse import unquote, urlparse

import httpx

from .errors import UploadFailure
from .models import Attachment

logger = logging.getLogger(__name__)


def extract_upload_url(payload: Any) -> str | None:
    """Pick the canonical URL out of an upload response.

    Preference: ``availableSizes.image``, then the first element of a ``url``
    list, then a scalar ``url``.
    """
    if not isinstance(payload, dict) or not payload.get("status"):
        return None

    data = payload.get("data")
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, dict):
        return None

    sizes = data.get("availableSizes")
    if isinstance(sizes, dict) and sizes.get("image"):
        return sizes["image"]

    url = data.get("url")
    if isinstance(url, list):
        return url[0] if url else None
    return url or None


def read_local_file(local_uri: str) -> bytes:
    """Read an attachment from a plain path or a ``file://`` URI."""
    if local_uri.startswith("file://"):
        path = Path(unquote(urlparse(local_uri).path))
    else:
        path = Path(local_uri).expanduser()
    return path.read_bytes()


class AttachmentUploader:
    """Uploads attachments one at a time, preserving index alignment.

    A failure at any index aborts the whole call; there is no retry here.
    The owning queue item is retried as a whole on the next sync pass.
    """

    def __init__(self, client: httpx.AsyncClient, timeout: float = 60.0):
        """Initialize the uploader.

        Args:
            client: HTTP client used for multipart POSTs.
            timeout: Per-upload timeout in seconds.
        """
        self._client = client
        self.timeout = timeout

    async def upload_all(self, attachments: Sequence[Attachment]) -> list[str]:
        """Upload every attachment in order.

        Returns:
            URLs index-aligned with ``attachments``.

        Raises:
            UploadFailure: On the first attachment that fails.
        """
        urls: list[str] = []
        for index, attachment in enumerate(attachments):
            try:
                urls.append(await self.upload(attachment))
            except UploadFailure as e:
                e.index = index
                logger.error(
                    f"Attachment upload {index + 1}/{len(attachments)} failed: {e}"
                )
                raise
        return urls

    async def upload(self, attachment: Attachment) -> str:
        """Upload a single attachment and return its canonical URL."""
        try:
            content = read_local_file(attachment.local_uri)
        except OSError as e:
            raise UploadFailure(f"Cannot read {attachment.local_uri}: {e}") from e

        data = {
            "uploadPath": attachment.upload_path,
            "isMulti": "false",
            "fileName": attachment.file_name,
        }
        files = {"files": (attachment.part_name or "image.jpg", content, attachment.mime_type)}

        try:
            response = await self._client.post(
                attachment.upload_url,
                data=data,
                files=files,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise UploadFailure(f"Upload to {attachment.upload_url} timed out") from e
        except httpx.RequestError as e:
            raise UploadFailure(f"Upload to {attachment.upload_url} failed: {e}") from e

        if not response.is_success:
            raise UploadFailure(
                f"Upload to {attachment.upload_url} returned HTTP {response.status_code}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UploadFailure(f"Upload response is not JSON: {e}") from e

        url = extract_upload_url(payload)
        if not url:
            raise UploadFailure(f"Upload rejected or returned no URL: {payload!r}"[:300])

        logger.debug(f"Uploaded {attachment.file_name} -> {url}")
        return url
