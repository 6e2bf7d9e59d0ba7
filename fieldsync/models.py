"""Data model for queued write operations, attachments, and cache entries."""

import copy
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Sequence

from .errors import InvalidRequestError

WRITE_METHODS = ("POST", "PUT", "PATCH")

DEFAULT_TARGET_FIELD = "pictures"


class ItemStatus(Enum):
    """Lifecycle status of a queued item."""

    PENDING = "pending"
    PROCESSING = "processing"
    FAILED = "failed"


@dataclass
class Attachment:
    """A local binary to upload before the owning request is sent."""

    local_uri: str
    upload_url: str
    mime_type: str = "image/jpeg"
    file_name: str = "offline_sync"
    part_name: str = "image.jpg"
    upload_path: str = "General"
    target_field: str = DEFAULT_TARGET_FIELD
    store_basename: bool = False

    def validate(self) -> "Attachment":
        """Check field types so a bad descriptor fails before it is queued.

        Raises:
            InvalidRequestError: If a field has the wrong type.
        """
        for name in ("local_uri", "upload_url"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise InvalidRequestError(f"Attachment {name} must be a non-empty string, got {value!r}")
        for name in ("mime_type", "file_name", "part_name", "upload_path", "target_field"):
            if not isinstance(getattr(self, name), str):
                raise InvalidRequestError(f"Attachment {name} must be a string")
        if not isinstance(self.store_basename, bool):
            raise InvalidRequestError("Attachment store_basename must be a boolean")
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "local_uri": self.local_uri,
            "upload_url": self.upload_url,
            "mime_type": self.mime_type,
            "file_name": self.file_name,
            "part_name": self.part_name,
            "upload_path": self.upload_path,
            "target_field": self.target_field,
            "store_basename": self.store_basename,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Attachment":
        """Create from dictionary.

        Missing optional keys fall back to the dataclass defaults.
        """
        try:
            local_uri = data["local_uri"]
            upload_url = data["upload_url"]
        except KeyError as e:
            raise InvalidRequestError(f"Attachment is missing {e.args[0]!r}") from e

        kwargs = {
            key: data[key]
            for key in ("mime_type", "file_name", "part_name", "upload_path", "target_field", "store_basename")
            if data.get(key) is not None
        }
        return cls(local_uri=local_uri, upload_url=upload_url, **kwargs).validate()


@dataclass
class QueueItem:
    """One durable write operation waiting for delivery."""

    id: str
    url: str
    method: str
    body: dict[str, Any]
    headers: dict[str, str]
    attachments: list[Attachment] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    status: ItemStatus = ItemStatus.PENDING

    @classmethod
    def create(
        cls,
        url: str,
        method: str,
        body: dict[str, Any],
        headers: dict[str, str],
        attachments: Sequence[Attachment] = (),
        created_at: datetime | None = None,
        item_id: str | None = None,
    ) -> "QueueItem":
        """Create a new pending item with a fresh id."""
        return cls(
            id=item_id or str(uuid.uuid4()),
            url=url,
            method=method,
            body=copy.deepcopy(dict(body)),
            headers=dict(headers),
            attachments=list(attachments),
            created_at=created_at or datetime.now(),
            status=ItemStatus.PENDING,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "url": self.url,
            "method": self.method,
            "body": self.body,
            "headers": self.headers,
            "attachments": [a.to_dict() for a in self.attachments],
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QueueItem":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            url=data["url"],
            method=data["method"],
            body=data.get("body") or {},
            headers=data.get("headers") or {},
            attachments=[Attachment.from_dict(a) for a in data.get("attachments") or []],
            created_at=datetime.fromisoformat(data["created_at"]),
            status=ItemStatus(data.get("status", ItemStatus.PENDING.value)),
        )


@dataclass
class DroppedItem:
    """A queued item the server permanently rejected during replay."""

    item: QueueItem
    status_code: int
    error: str
    dropped_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "item": self.item.to_dict(),
            "status_code": self.status_code,
            "error": self.error,
            "dropped_at": self.dropped_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DroppedItem":
        return cls(
            item=QueueItem.from_dict(data["item"]),
            status_code=data["status_code"],
            error=data.get("error", ""),
            dropped_at=datetime.fromisoformat(data["dropped_at"]),
        )


@dataclass
class CacheEntry:
    """Last successful payload for a read URL."""

    url: str
    timestamp: datetime
    data: Any


def url_basename(url: str) -> str:
    """Return the filename portion of a URL, ignoring any query string."""
    no_query = str(url).split("?")[0]
    return no_query.rsplit("/", 1)[-1]


def merge_uploaded_urls(
    body: Mapping[str, Any],
    attachments: Sequence[Attachment],
    urls: Sequence[str | None],
) -> dict[str, Any]:
    """Merge uploaded attachment URLs into a copy of ``body``.

    Values are appended to ``body[attachment.target_field]`` in attachment
    order. Existing list values are preserved; a non-list value in a target
    field is replaced. Empty results are skipped.

    Args:
        body: Original request body (left untouched).
        attachments: Attachment descriptors, index-aligned with ``urls``.
        urls: Upload results from ``AttachmentUploader.upload_all``.

    Returns:
        The merged body.
    """
    merged = dict(body)
    for attachment in attachments:
        key = attachment.target_field or DEFAULT_TARGET_FIELD
        existing = body.get(key)
        merged[key] = list(existing) if isinstance(existing, list) else []

    for attachment, url in zip(attachments, urls):
        key = attachment.target_field or DEFAULT_TARGET_FIELD
        if not url:
            continue
        value = url_basename(url) if attachment.store_basename else url
        merged[key].append(value)

    return merged


@dataclass
class RequestEnvelope:
    """A validated write request, ready to send or enqueue."""

    method: str
    url: str
    body: dict[str, Any]
    attachments: list[Attachment]
    headers: dict[str, str]

    @classmethod
    def build(
        cls,
        method: str,
        url: str,
        body: Mapping[str, Any] | None,
        attachments: Sequence[Attachment | Mapping[str, Any]] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> "RequestEnvelope":
        """Validate raw caller input.

        Raises:
            InvalidRequestError: If the request could never be delivered.
        """
        method = (method or "").upper()
        if method not in WRITE_METHODS:
            raise InvalidRequestError(
                f"Unsupported method {method!r}, expected one of {', '.join(WRITE_METHODS)}"
            )
        if not url:
            raise InvalidRequestError("Request URL is empty")

        body = {} if body is None else body
        if not isinstance(body, Mapping):
            raise InvalidRequestError(f"Request body must be a mapping, got {type(body).__name__}")
        try:
            json.dumps(body)
        except (TypeError, ValueError) as e:
            raise InvalidRequestError(f"Request body is not JSON-serializable: {e}") from e

        parsed: list[Attachment] = []
        for att in attachments or []:
            if isinstance(att, Attachment):
                parsed.append(att.validate())
            elif isinstance(att, Mapping):
                parsed.append(Attachment.from_dict(att))
            else:
                raise InvalidRequestError(f"Invalid attachment: {att!r}")

        return cls(
            method=method,
            url=url,
            body=copy.deepcopy(dict(body)),
            attachments=parsed,
            headers=dict(headers or {}),
        )
