"""
Offline sync service.

The single entry point for application code. Wires the cache store,
operation log, remote store, connectivity monitor, sync engine and status
tracker together, and absorbs storage and transport failures so they only
show up as sync statuses and drain summaries.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .cache import CachedEntity, LocalCacheStore, SyncStatus
from .config import SyncConfig
from .connectivity import ConnectivityCallback, ConnectivityEvent, ConnectivityMonitor
from .engine import DrainResult, SyncEngine
from .exceptions import EntityNotFoundError, StorageIOError
from .logging_utils import configure_structured_logging
from .oplog import HttpMethod, OperationLog, QueuedOperation
from .remote import HttpRemoteStore, RemoteStore
from .status import StatusSummary, StatusTracker
from .storage import FileMedium, MemoryMedium, SQLiteMedium, StorageMedium

logger = logging.getLogger(__name__)


class OfflineSyncService:
    """Offline-first cache and sync for application entities.

    Example:
        >>> async with await create_offline_sync(config) as sync:
        ...     await sync.upsert("n1", {"title": "A"})
        ...     await sync.enqueue("/api/notebooks/n1", "PUT", {"title": "A"})
        ...     print(await sync.status("n1"))
    """

    def __init__(
        self,
        medium: StorageMedium,
        remote: RemoteStore,
        monitor: ConnectivityMonitor | None = None,
        config: SyncConfig | None = None,
    ):
        """Initialize the service.

        Args:
            medium: Storage medium holding both local collections
            remote: Remote store operations are replayed against
            monitor: Connectivity monitor (defaults to always-online until told otherwise)
            config: Sync configuration
        """
        self.config = config or SyncConfig(storage_backend="memory")
        self.medium = medium
        self.remote = remote
        self.monitor = monitor or ConnectivityMonitor(
            poll_interval_s=self.config.poll_interval_s,
            probe_host=self.config.probe_host,
            probe_timeout_s=self.config.probe_timeout_s,
        )

        self.cache = LocalCacheStore(medium, key=self.config.entities_key)
        self.log = OperationLog(
            medium,
            key=self.config.operations_key,
            entity_pattern=self.config.entity_pattern,
        )
        self.tracker = StatusTracker(self.cache, self.log)
        self.engine = SyncEngine(
            self.cache,
            self.log,
            remote,
            tracker=self.tracker,
            is_offline=self.monitor.is_offline,
            config=self.config,
        )
        self.monitor.bind_drain(self.engine.drain)

    async def __aenter__(self) -> OfflineSyncService:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # =========================================================================
    # Local cache
    # =========================================================================

    async def upsert(self, entity_id: str, snapshot: dict[str, Any]) -> bool:
        """Optimistically store an entity snapshot, marked pending.

        Returns:
            False if the optimistic view could not be persisted
        """
        return await self.cache.upsert(entity_id, snapshot)

    async def get(self, entity_id: str) -> CachedEntity | None:
        """Read an entity from the local cache."""
        return await self.cache.get(entity_id)

    async def require(self, entity_id: str) -> CachedEntity:
        """Read an entity that must be cached.

        Raises:
            EntityNotFoundError: If the entity was never cached
        """
        entity = await self.cache.get(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        return entity

    async def list_entities(self) -> list[CachedEntity]:
        """Read every cached entity."""
        return await self.cache.list_entities()

    # =========================================================================
    # Mutations
    # =========================================================================

    async def enqueue(
        self,
        endpoint: str,
        method: str | HttpMethod,
        payload: dict[str, Any] | None = None,
        target_id: str | None = None,
    ) -> QueuedOperation | None:
        """Queue a mutation for the remote store and drain if online.

        Returns:
            The queued operation, or None if the log could not be persisted

        Raises:
            MalformedOperationError: For GET or an empty endpoint
        """
        try:
            operation = await self.log.enqueue(endpoint, method, payload, target_id=target_id)
        except StorageIOError as e:
            logger.error(f"Could not queue {method} {endpoint}: {e}")
            return None

        if self.config.sync_on_enqueue and not self.monitor.is_offline():
            await self.engine.drain()
        return operation

    async def save(
        self,
        entity_id: str,
        snapshot: dict[str, Any],
        endpoint: str | None = None,
        method: str | HttpMethod = HttpMethod.PUT,
    ) -> QueuedOperation | None:
        """Store a snapshot locally and queue it for the remote store."""
        await self.upsert(entity_id, snapshot)
        endpoint = endpoint or self.config.entity_endpoint.format(id=entity_id)
        return await self.enqueue(endpoint, method, snapshot, target_id=entity_id)

    async def update_optimistically(
        self,
        entity_id: str,
        updates: dict[str, Any],
        endpoint: str | None = None,
    ) -> bool:
        """Merge updates into a cached entity and queue a PUT with them.

        Returns:
            False if the entity was never cached or the update was not persisted
        """
        if not await self.cache.update_optimistically(entity_id, updates):
            return False
        endpoint = endpoint or self.config.entity_endpoint.format(id=entity_id)
        operation = await self.enqueue(endpoint, HttpMethod.PUT, updates, target_id=entity_id)
        return operation is not None

    # =========================================================================
    # Sync
    # =========================================================================

    async def drain(self) -> DrainResult:
        """Replay queued operations now (manual retry)."""
        return await self.engine.drain()

    async def drain_until_idle(self, max_passes: int = 10) -> DrainResult:
        """Drain repeatedly until the log is empty or max_passes is reached."""
        return await self.engine.drain_until_idle(max_passes)

    def is_offline(self) -> bool:
        """Point-in-time connectivity check."""
        return self.monitor.is_offline()

    async def set_online(self, online: bool) -> ConnectivityEvent | None:
        """Forward a native connectivity signal to the monitor."""
        return await self.monitor.set_online(online)

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """Register for connectivity transitions. Returns an unsubscribe function."""
        return self.monitor.subscribe(callback)

    # =========================================================================
    # Status
    # =========================================================================

    async def status(self, entity_id: str) -> SyncStatus | None:
        """Derived sync status of an entity, or None if it is not cached."""
        return await self.tracker.status_for(entity_id)

    async def statuses(self) -> dict[str, SyncStatus]:
        """Derived sync status of every cached entity."""
        return await self.tracker.compute()

    async def summary(self) -> StatusSummary:
        """Entity counts per sync status."""
        return await self.tracker.summary()

    async def pending_count(self) -> int:
        """Number of queued operations."""
        return await self.log.count()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start connectivity polling for hosts without a native signal."""
        self.monitor.start()

    async def close(self) -> None:
        """Stop polling and release the remote session and storage medium."""
        await self.monitor.stop()
        await self.remote.close()
        await self.medium.close()


async def create_medium(config: SyncConfig) -> StorageMedium:
    """Create the storage medium selected by the configuration."""
    if config.storage_backend == "memory":
        return MemoryMedium(quota_bytes=config.storage_quota_bytes)
    if config.storage_backend == "sqlite":
        db_path = config.storage_path
        if db_path.suffix != ".db":
            db_path = db_path / "offline_sync.db"
        return await SQLiteMedium.create(db_path, quota_bytes=config.storage_quota_bytes)
    return FileMedium(config.storage_path, quota_bytes=config.storage_quota_bytes)


async def create_offline_sync(
    config: SyncConfig | None = None,
    remote: RemoteStore | None = None,
    monitor: ConnectivityMonitor | None = None,
) -> OfflineSyncService:
    """Create an offline sync service from configuration.

    Args:
        config: Sync configuration (read from the environment if not provided)
        remote: Remote store (an HttpRemoteStore on config.base_url by default)
        monitor: Connectivity monitor (built from config by default)

    Returns:
        Ready-to-use OfflineSyncService
    """
    if config is None:
        config = SyncConfig.from_env()
    if config.structured_logging:
        configure_structured_logging(config.log_level)

    medium = await create_medium(config)
    if remote is None:
        remote = HttpRemoteStore(
            config.base_url,
            timeout_s=config.request_timeout_s,
            headers=config.headers,
        )

    service = OfflineSyncService(medium, remote, monitor=monitor, config=config)
    logger.info(
        f"Offline sync ready ({config.storage_backend} storage, remote {config.base_url})"
    )
    return service
