"""
Custom exceptions for offline sync.

Storage-layer and transport errors are absorbed at the service boundary and
reported through sync statuses; these types exist so each layer can tell
them apart.
"""


class OfflineSyncError(Exception):
    """Base exception for all offline sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StorageIOError(OfflineSyncError):
    """Raised when the local storage medium cannot be read or written."""

    def __init__(self, operation: str, key: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if key:
            details["key"] = key
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if key:
            message += f": {key}"
        super().__init__(message, details)
        self.operation = operation
        self.key = key
        self.cause = cause


class StorageQuotaExceededError(StorageIOError):
    """Raised when a write would exceed the medium's byte quota."""

    def __init__(self, key: str, size_bytes: int, quota_bytes: int):
        OfflineSyncError.__init__(
            self,
            f"Storage quota exceeded writing {key}: {size_bytes} > {quota_bytes} bytes",
            {
                "operation": "write",
                "key": key,
                "size_bytes": size_bytes,
                "quota_bytes": quota_bytes,
            },
        )
        self.operation = "write"
        self.key = key
        self.cause = None
        self.size_bytes = size_bytes
        self.quota_bytes = quota_bytes


class TransportError(OfflineSyncError):
    """Raised when a remote call fails transiently and may be retried."""

    def __init__(
        self,
        endpoint: str,
        status: int | None = None,
        cause: Exception | None = None,
    ):
        details: dict = {"endpoint": endpoint}
        if status is not None:
            details["status"] = status
        if cause:
            details["cause"] = str(cause)
        message = f"Transient failure calling {endpoint}"
        if status is not None:
            message += f" (HTTP {status})"
        elif cause:
            message += f": {cause}"
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status = status
        self.cause = cause


class RemoteRejectedError(OfflineSyncError):
    """Raised when the remote store rejects a mutation outright.

    Retrying a rejected mutation can never succeed.
    """

    def __init__(self, endpoint: str, status: int | None = None, reason: str | None = None):
        details: dict = {"endpoint": endpoint}
        if status is not None:
            details["status"] = status
        if reason:
            details["reason"] = reason
        message = f"Remote store rejected {endpoint}"
        if status is not None:
            message += f" (HTTP {status})"
        if reason:
            message += f": {reason}"
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status = status
        self.reason = reason


class MalformedOperationError(OfflineSyncError):
    """Raised for queued operations that violate the enqueue contract."""

    def __init__(self, reason: str, field: str | None = None):
        details = {"reason": reason}
        if field:
            details["field"] = field
        message = f"Malformed operation: {reason}"
        super().__init__(message, details)
        self.reason = reason
        self.field = field


class EntityNotFoundError(OfflineSyncError):
    """Raised when an entity is not present in the local cache."""

    def __init__(self, entity_id: str):
        super().__init__(f"Entity not cached: {entity_id}", {"entity_id": entity_id})
        self.entity_id = entity_id


class StorageCorruptedError(StorageIOError):
    """Raised when a stored value exists but cannot be decoded."""

    def __init__(self, key: str, cause: Exception | None = None):
        super().__init__("decode", key, cause)
