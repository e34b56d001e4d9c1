"""
Local cache store.

Holds the last-known snapshot of every entity the user has viewed or
mutated, keyed by entity id, together with its sync status. The whole
collection is persisted as one JSON object under a single medium key.

Writes are best-effort: a storage failure is logged and reported as a
False return value, never raised into the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .exceptions import StorageCorruptedError, StorageIOError
from .storage.base import StorageMedium

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    """Sync state of a cached entity."""

    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


@dataclass
class CachedEntity:
    """Last-known local copy of a domain entity.

    Attributes:
        id: Stable identifier of the entity
        snapshot: Full representation of the entity, opaque to this package
        last_updated_at: Time of the last local mutation or remote refresh
        sync_status: Derived sync status (see StatusTracker)
        last_error: Message of the most recent failed attempt, if any
    """

    id: str
    snapshot: dict[str, Any]
    last_updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    sync_status: SyncStatus = SyncStatus.PENDING
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "snapshot": self.snapshot,
            "last_updated_at": self.last_updated_at.isoformat(),
            "sync_status": self.sync_status.value,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CachedEntity:
        """Create from dictionary."""
        last_updated_at = data.get("last_updated_at")
        if isinstance(last_updated_at, str):
            last_updated_at = datetime.fromisoformat(last_updated_at)
        elif last_updated_at is None:
            last_updated_at = datetime.now(UTC)

        return cls(
            id=data["id"],
            snapshot=data.get("snapshot") or {},
            last_updated_at=last_updated_at,
            sync_status=SyncStatus(data.get("sync_status", SyncStatus.PENDING.value)),
            last_error=data.get("last_error"),
        )


class LocalCacheStore:
    """Persistent map of entity id to CachedEntity.

    Every mutation is a read-modify-write of the full collection, held under
    a lock so it cannot interleave with another mutation while the medium
    is suspended on I/O.
    """

    def __init__(self, medium: StorageMedium, key: str = "offline-entities"):
        """Initialize the cache store.

        Args:
            medium: Storage medium holding the collection
            key: Medium key the collection is stored under
        """
        self.medium = medium
        self.key = key
        self._lock = asyncio.Lock()

    async def _load(self) -> dict[str, CachedEntity]:
        try:
            raw = await self.medium.get_item(self.key)
        except StorageCorruptedError as e:
            logger.error(f"Discarding undecodable entity cache {self.key}: {e}")
            return {}
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return {entity_id: CachedEntity.from_dict(item) for entity_id, item in data.items()}
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as e:
            # If the collection is corrupted, start fresh
            logger.error(f"Discarding unreadable entity cache {self.key}: {e}")
            return {}

    async def _save(self, entities: dict[str, CachedEntity]) -> None:
        payload = {entity_id: entity.to_dict() for entity_id, entity in entities.items()}
        await self.medium.set_item(self.key, json.dumps(payload))

    async def _read_all(self) -> dict[str, CachedEntity]:
        try:
            return await self._load()
        except StorageIOError as e:
            logger.error(f"Error reading cached entities: {e}")
            return {}

    async def upsert(self, entity_id: str, snapshot: dict[str, Any]) -> bool:
        """Insert or replace the cached snapshot and mark it pending.

        Returns:
            False if the optimistic update could not be persisted
        """
        async with self._lock:
            try:
                entities = await self._load()
                previous = entities.get(entity_id)
                entities[entity_id] = CachedEntity(
                    id=entity_id,
                    snapshot=dict(snapshot),
                    sync_status=SyncStatus.PENDING,
                    last_error=previous.last_error if previous else None,
                )
                await self._save(entities)
                return True
            except StorageIOError as e:
                logger.warning(f"Optimistic update of {entity_id} not persisted: {e}")
                return False

    async def update_optimistically(self, entity_id: str, updates: dict[str, Any]) -> bool:
        """Merge updates into an existing snapshot and mark it pending.

        Returns:
            False if the entity was never cached or the write failed
        """
        async with self._lock:
            try:
                entities = await self._load()
                entity = entities.get(entity_id)
                if entity is None:
                    return False
                entity.snapshot = {**entity.snapshot, **updates}
                entity.last_updated_at = datetime.now(UTC)
                entity.sync_status = SyncStatus.PENDING
                await self._save(entities)
                return True
            except StorageIOError as e:
                logger.warning(f"Optimistic update of {entity_id} not persisted: {e}")
                return False

    async def get(self, entity_id: str) -> CachedEntity | None:
        """Get a cached entity, or None if it was never cached."""
        entities = await self._read_all()
        return entities.get(entity_id)

    async def list_entities(self) -> list[CachedEntity]:
        """Get all cached entities."""
        entities = await self._read_all()
        return list(entities.values())

    async def mark_synced(self, entity_id: str, snapshot: dict[str, Any] | None = None) -> bool:
        """Mark an entity synced, adopting the remote snapshot when given.

        The remote representation always replaces the optimistic local one.
        An entity that is not cached yet is created when a snapshot is given.
        """
        async with self._lock:
            try:
                entities = await self._load()
                entity = entities.get(entity_id)
                if entity is None:
                    if snapshot is None:
                        return False
                    entity = CachedEntity(id=entity_id, snapshot={})
                    entities[entity_id] = entity
                if snapshot is not None:
                    entity.snapshot = dict(snapshot)
                    entity.last_updated_at = datetime.now(UTC)
                entity.sync_status = SyncStatus.SYNCED
                entity.last_error = None
                await self._save(entities)
                return True
            except StorageIOError as e:
                logger.error(f"Failed to persist synced state of {entity_id}: {e}")
                return False

    async def mark_error(self, entity_id: str, error: str | None = None) -> bool:
        """Mark an entity as errored without touching its snapshot."""
        async with self._lock:
            try:
                entities = await self._load()
                entity = entities.get(entity_id)
                if entity is None:
                    return False
                entity.sync_status = SyncStatus.ERROR
                entity.last_error = error or "sync failed"
                await self._save(entities)
                return True
            except StorageIOError as e:
                logger.error(f"Failed to persist error state of {entity_id}: {e}")
                return False

    async def apply_statuses(self, statuses: dict[str, SyncStatus]) -> bool:
        """Write derived statuses for many entities in one pass."""
        async with self._lock:
            try:
                entities = await self._load()
                changed = False
                for entity_id, status in statuses.items():
                    entity = entities.get(entity_id)
                    if entity is not None and entity.sync_status != status:
                        entity.sync_status = status
                        changed = True
                if changed:
                    await self._save(entities)
                return True
            except StorageIOError as e:
                logger.error(f"Failed to persist derived sync statuses: {e}")
                return False

    async def remove(self, entity_id: str) -> bool:
        """Remove an entity deleted both locally and remotely."""
        async with self._lock:
            try:
                entities = await self._load()
                if entities.pop(entity_id, None) is None:
                    return False
                await self._save(entities)
                return True
            except StorageIOError as e:
                logger.error(f"Failed to remove cached entity {entity_id}: {e}")
                return False
