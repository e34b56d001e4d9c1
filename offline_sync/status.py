"""
Status tracking.

Sync status is a pure derivation over the operation log and the cache
store, recomputed on demand rather than maintained incrementally:
- pending: an operation referencing the entity is still queued
- error: the most recent attempt for the entity failed and nothing
  further is queued for it
- synced: otherwise
"""

from __future__ import annotations

from dataclasses import dataclass

from .cache import CachedEntity, LocalCacheStore, SyncStatus
from .oplog import OperationLog, QueuedOperation


@dataclass
class StatusSummary:
    """Counts of entities per sync status, for dashboards."""

    synced: int = 0
    pending: int = 0
    error: int = 0
    queued_operations: int = 0

    @property
    def is_synced(self) -> bool:
        return self.pending == 0 and self.error == 0 and self.queued_operations == 0


def derive_status(entity: CachedEntity, operations: list[QueuedOperation]) -> SyncStatus:
    """Derive the status of one entity from the operations still queued."""
    if any(op.target_id == entity.id for op in operations):
        return SyncStatus.PENDING
    if entity.last_error is not None:
        return SyncStatus.ERROR
    return SyncStatus.SYNCED


class StatusTracker:
    """Answers "is entity X synced, pending or erroring?"."""

    def __init__(self, cache: LocalCacheStore, log: OperationLog):
        self.cache = cache
        self.log = log

    async def status_for(self, entity_id: str) -> SyncStatus | None:
        """Get the derived status of an entity, or None if it is not cached."""
        entity = await self.cache.get(entity_id)
        if entity is None:
            return None
        return derive_status(entity, await self.log.peek_all())

    async def compute(self) -> dict[str, SyncStatus]:
        """Derive the status of every cached entity."""
        entities = await self.cache.list_entities()
        operations = await self.log.peek_all()
        return {entity.id: derive_status(entity, operations) for entity in entities}

    async def summary(self) -> StatusSummary:
        """Count entities per status."""
        statuses = await self.compute()
        summary = StatusSummary(queued_operations=await self.log.count())
        for status in statuses.values():
            if status == SyncStatus.SYNCED:
                summary.synced += 1
            elif status == SyncStatus.PENDING:
                summary.pending += 1
            else:
                summary.error += 1
        return summary

    async def refresh(self) -> dict[str, SyncStatus]:
        """Recompute statuses and store them on the cached entities."""
        statuses = await self.compute()
        await self.cache.apply_statuses(statuses)
        return statuses
