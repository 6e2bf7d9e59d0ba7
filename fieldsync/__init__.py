"""Offline-first sync engine for field data collection.

Writes go through a durable outbox and are replayed when connectivity
returns; reads fall back to a local response cache.
"""

from .api_client import ApiClient
from .cache import ResponseCache
from .config import Config, load_config
from .connectivity import ConnectivityMonitor
from .engine import SyncEngine
from .errors import (
    CacheMissError,
    FieldSyncError,
    InvalidRequestError,
    NetworkUnavailable,
    OfflineByPolicy,
    ServerTransientError,
    ServerValidationError,
    StorageError,
    UploadFailure,
)
from .models import Attachment, CacheEntry, DroppedItem, ItemStatus, QueueItem
from .notifier import ChangeNotifier
from .queue_store import DurableQueueStore
from .storage import KeyValueStore
from .sync_processor import PassStatus, SyncProcessor, SyncReport
from .uploader import AttachmentUploader

__all__ = [
    "ApiClient",
    "Attachment",
    "AttachmentUploader",
    "CacheEntry",
    "CacheMissError",
    "ChangeNotifier",
    "Config",
    "ConnectivityMonitor",
    "DroppedItem",
    "DurableQueueStore",
    "FieldSyncError",
    "InvalidRequestError",
    "ItemStatus",
    "KeyValueStore",
    "NetworkUnavailable",
    "OfflineByPolicy",
    "PassStatus",
    "QueueItem",
    "ResponseCache",
    "ServerTransientError",
    "ServerValidationError",
    "StorageError",
    "SyncEngine",
    "SyncProcessor",
    "SyncReport",
    "UploadFailure",
    "load_config",
]
