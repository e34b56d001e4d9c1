"""
Offline Sync

Offline-first local cache and synchronization engine.

Provides:
- A local cache of entity snapshots with per-entity sync status
- A durable operation log of mutations not yet confirmed remotely
- A sync engine replaying the log with at-least-once delivery and
  last-write-wins semantics
- Connectivity monitoring that drains automatically on reconnect

Usage:

    >>> from offline_sync import SyncConfig, create_offline_sync
    >>> config = SyncConfig(storage_path="~/.notes-cache", base_url="https://notes.example.com")
    >>> async with await create_offline_sync(config) as sync:
    ...     await sync.set_online(False)
    ...     await sync.save("n1", {"title": "Draft"})
    ...     await sync.set_online(True)  # replays the queued PUT
    ...     print(await sync.status("n1"))

Storage Selection:

    # In-memory, for tests
    SyncConfig(storage_backend="memory")

    # One JSON file per collection (default)
    SyncConfig(storage_backend="file", storage_path="~/.notes-cache")

    # Single SQLite database
    SyncConfig(storage_backend="sqlite", storage_path="~/.notes-cache/sync.db")
"""

from .cache import CachedEntity, LocalCacheStore, SyncStatus
from .config import SyncConfig
from .connectivity import ConnectivityEvent, ConnectivityEventType, ConnectivityMonitor
from .engine import DrainResult, SyncEngine, SyncState
from .exceptions import (
    EntityNotFoundError,
    MalformedOperationError,
    OfflineSyncError,
    RemoteRejectedError,
    StorageCorruptedError,
    StorageIOError,
    StorageQuotaExceededError,
    TransportError,
)
from .oplog import HttpMethod, OperationLog, QueuedOperation
from .remote import HttpRemoteStore, RemoteResponse, RemoteStore
from .service import OfflineSyncService, create_medium, create_offline_sync
from .status import StatusSummary, StatusTracker
from .storage import FileMedium, MemoryMedium, SQLiteMedium, StorageMedium

__all__ = [
    # Service
    "OfflineSyncService",
    "create_offline_sync",
    "create_medium",
    "SyncConfig",
    # Cache
    "CachedEntity",
    "LocalCacheStore",
    "SyncStatus",
    # Operation log
    "HttpMethod",
    "OperationLog",
    "QueuedOperation",
    # Sync
    "DrainResult",
    "SyncEngine",
    "SyncState",
    "StatusSummary",
    "StatusTracker",
    "ConnectivityEvent",
    "ConnectivityEventType",
    "ConnectivityMonitor",
    # Remote
    "HttpRemoteStore",
    "RemoteResponse",
    "RemoteStore",
    # Storage
    "StorageMedium",
    "MemoryMedium",
    "FileMedium",
    "SQLiteMedium",
    # Exceptions
    "OfflineSyncError",
    "StorageIOError",
    "StorageCorruptedError",
    "StorageQuotaExceededError",
    "TransportError",
    "RemoteRejectedError",
    "MalformedOperationError",
    "EntityNotFoundError",
]

__version__ = "0.1.0"
