"""Exception taxonomy for the sync engine.

Connectivity-class errors (NetworkUnavailable, OfflineByPolicy, Server*Error,
UploadFailure) never reach callers of ``ApiClient.send``: they route the
request into the outbox. CacheMissError and InvalidRequestError do reach
the caller.
"""


class FieldSyncError(Exception):
    """Base class for all fieldsync errors."""


class NetworkUnavailable(FieldSyncError):
    """Transport-level failure (connection refused, DNS, timeout)."""


class OfflineByPolicy(FieldSyncError):
    """The connectivity monitor already reports the device as offline."""


class ServerError(FieldSyncError):
    """Server answered with a non-success HTTP status."""

    def __init__(self, status_code: int, message: str = ""):
        self.status_code = status_code
        self.message = message
        super().__init__(f"HTTP {status_code}: {message}" if message else f"HTTP {status_code}")


class ServerValidationError(ServerError):
    """4xx response. Permanent: retrying the same request will not help."""


class ServerTransientError(ServerError):
    """5xx (or otherwise unexpected) response. Retryable."""


class UploadFailure(FieldSyncError):
    """An attachment upload failed; the whole upload call is aborted."""

    def __init__(self, message: str, index: int | None = None):
        self.index = index
        super().__init__(message)


class CacheMissError(FieldSyncError):
    """GET failed (or device offline) and nothing is cached for the URL."""

    def __init__(self, url: str, offline: bool):
        self.url = url
        self.offline = offline
        if offline:
            message = "You are offline and no data is cached."
        else:
            message = "Request failed and no data is cached."
        super().__init__(message)


class InvalidRequestError(FieldSyncError, ValueError):
    """A write request failed validation before it could be queued."""


class StorageError(FieldSyncError):
    """The local key-value store could not be read or written."""
