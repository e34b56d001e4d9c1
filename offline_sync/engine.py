"""
Synchronization engine.

Drains the operation log against the remote store:
- Replays a point-in-time FIFO snapshot of the log
- Adopts the remote's authoritative entity on success (last write wins)
- Keeps transiently failed operations for the next drain
- Discards operations the remote store rejects
- Recomputes sync statuses once the pass is done

Operations enqueued while a drain is running are left for the next drain.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .cache import LocalCacheStore
from .config import SyncConfig
from .exceptions import (
    MalformedOperationError,
    RemoteRejectedError,
    StorageIOError,
    TransportError,
)
from .logging_utils import SyncLoggerAdapter
from .oplog import HttpMethod, OperationLog, QueuedOperation
from .remote import RemoteResponse, RemoteStore
from .status import StatusTracker

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Current state of the sync engine."""

    IDLE = "idle"
    SYNCING = "syncing"
    OFFLINE = "offline"


@dataclass
class DrainResult:
    """Summary of one or more drain passes.

    Attributes:
        success: False when the drain did not run (offline, already running)
        reason: Why the drain did not run
        synced_count: Operations confirmed by the remote store
        failed_count: Operations whose attempt failed, transiently or not
        rejected_count: Failed operations the remote store rejected outright
        discarded_count: Operations removed from the log without success
        deferred_count: Operations skipped because an earlier operation for
            the same entity failed in this pass
        errors: Error messages, one per failed attempt
        duration_ms: Wall time spent draining
    """

    success: bool
    reason: str | None = None
    synced_count: int = 0
    failed_count: int = 0
    rejected_count: int = 0
    discarded_count: int = 0
    deferred_count: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def progressed(self) -> bool:
        """Whether the pass shrank the log."""
        return self.synced_count + self.discarded_count > 0

    def merge(self, other: DrainResult) -> None:
        """Accumulate counts from another pass."""
        self.synced_count += other.synced_count
        self.failed_count += other.failed_count
        self.rejected_count += other.rejected_count
        self.discarded_count += other.discarded_count
        self.deferred_count += other.deferred_count
        self.errors.extend(other.errors)
        self.duration_ms += other.duration_ms


class SyncEngine:
    """Replays queued operations against the remote store.

    By default operations are sent one at a time in FIFO order. With
    ``config.concurrency > 1`` operations are grouped per target entity and
    up to that many entities replay in parallel; operations for the same
    entity always replay in enqueue order.
    """

    def __init__(
        self,
        cache: LocalCacheStore,
        log: OperationLog,
        remote: RemoteStore,
        tracker: StatusTracker | None = None,
        is_offline: Callable[[], bool] | None = None,
        config: SyncConfig | None = None,
    ):
        """Initialize the sync engine.

        Args:
            cache: Local cache store updated from replay outcomes
            log: Operation log to drain
            remote: Remote store to replay against
            tracker: Status tracker refreshed after each drain
            is_offline: Point-in-time connectivity check
            config: Sync configuration
        """
        self.cache = cache
        self.log = log
        self.remote = remote
        self.tracker = tracker or StatusTracker(cache, log)
        self.config = config or SyncConfig(storage_backend="memory")
        self._is_offline = is_offline or (lambda: False)

        self._state = SyncState.IDLE
        self._last_drain: datetime | None = None
        self._drain_lock = asyncio.Lock()

    @property
    def state(self) -> SyncState:
        """Get current sync state."""
        return self._state

    @property
    def last_drain(self) -> datetime | None:
        """When the last completed drain finished."""
        return self._last_drain

    async def drain(self) -> DrainResult:
        """Replay every operation queued at call time.

        Returns:
            Summary of the pass; ``success`` is False only if the pass did
            not run at all
        """
        if self._is_offline():
            self._state = SyncState.OFFLINE
            return DrainResult(success=False, reason="offline")

        if self._drain_lock.locked():
            return DrainResult(success=False, reason="in_progress")

        async with self._drain_lock:
            self._state = SyncState.SYNCING
            start_time = datetime.now(UTC)
            try:
                try:
                    operations = await self.log.peek_all()
                except StorageIOError as e:
                    logger.error(f"Cannot read operation log: {e}")
                    return DrainResult(success=False, reason="storage", errors=[str(e)])

                result = DrainResult(success=True)
                if not operations:
                    return result

                if self.config.concurrency > 1:
                    await self._replay_grouped(operations, result)
                else:
                    blocked: set[str] = set()
                    for operation in operations:
                        await self._replay_one(operation, blocked, result)

                await self.tracker.refresh()
                self._last_drain = datetime.now(UTC)
                result.duration_ms = int(
                    (datetime.now(UTC) - start_time).total_seconds() * 1000
                )
                logger.info(
                    f"Drained {len(operations)} operations: {result.synced_count} synced, "
                    f"{result.failed_count} failed, {result.deferred_count} deferred",
                    extra={
                        "synced_count": result.synced_count,
                        "failed_count": result.failed_count,
                        "discarded_count": result.discarded_count,
                    },
                )
                return result
            finally:
                self._state = SyncState.IDLE

    async def drain_until_idle(self, max_passes: int = 10) -> DrainResult:
        """Drain repeatedly until the log is empty or max_passes is reached.

        Sleeps between passes with exponential backoff; the delay resets
        whenever a pass makes progress.
        """
        total = DrainResult(success=True)
        delay = self.config.initial_backoff_s

        for pass_number in range(1, max_passes + 1):
            result = await self.drain()
            total.merge(result)
            if not result.success:
                total.success = False
                total.reason = result.reason
                break

            remaining = await self.log.count()
            if remaining == 0 or pass_number == max_passes:
                break

            if result.progressed:
                delay = self.config.initial_backoff_s
            logger.debug(
                f"{remaining} operations left after pass {pass_number}, retrying in {delay}s"
            )
            await asyncio.sleep(delay)
            if not result.progressed:
                delay = min(delay * self.config.backoff_multiplier, self.config.max_backoff_s)

        return total

    async def _replay_grouped(self, operations: list[QueuedOperation], result: DrainResult) -> None:
        """Replay entity groups concurrently, each group in FIFO order."""
        groups: dict[str, list[QueuedOperation]] = {}
        for operation in operations:
            groups.setdefault(operation.target_id or operation.operation_id, []).append(operation)

        semaphore = asyncio.Semaphore(self.config.concurrency)

        async def replay_group(group: list[QueuedOperation]) -> None:
            async with semaphore:
                blocked: set[str] = set()
                for operation in group:
                    await self._replay_one(operation, blocked, result)

        await asyncio.gather(*(replay_group(group) for group in groups.values()))

    async def _replay_one(
        self,
        operation: QueuedOperation,
        blocked: set[str],
        result: DrainResult,
    ) -> None:
        """Replay a single operation and record its outcome."""
        if operation.target_id is not None and operation.target_id in blocked:
            result.deferred_count += 1
            return

        op_logger = SyncLoggerAdapter(
            logger,
            {"operation_id": operation.operation_id, "target_id": operation.target_id},
        )

        try:
            response = await self.remote.send(operation)
        except TransportError as e:
            await self._retry_later(operation, e, blocked, result)
        except RemoteRejectedError as e:
            op_logger.warning(
                f"Discarding rejected {operation.method.value} {operation.endpoint}: {e}"
            )
            result.failed_count += 1
            result.rejected_count += 1
            result.discarded_count += 1
            result.errors.append(f"Rejected {operation.endpoint}: {e}")
            await self._discard(operation, str(e))
        except MalformedOperationError as e:
            op_logger.error(
                f"Discarding malformed {operation.method.value} {operation.endpoint}: {e}"
            )
            result.failed_count += 1
            result.rejected_count += 1
            result.discarded_count += 1
            result.errors.append(f"Malformed {operation.endpoint}: {e}")
            await self._discard(operation, str(e))
        except Exception as e:
            # A faulty remote store is retried like a transport failure
            op_logger.exception(
                f"Unexpected error replaying {operation.method.value} {operation.endpoint}"
            )
            await self._retry_later(operation, e, blocked, result)
        else:
            result.synced_count += 1
            op_logger.debug(f"Synced {operation.method.value} {operation.endpoint}")
            await self._confirm(operation, response)

    async def _retry_later(
        self,
        operation: QueuedOperation,
        error: Exception,
        blocked: set[str],
        result: DrainResult,
    ) -> None:
        """Keep a failed operation for the next drain and hold back its entity."""
        result.failed_count += 1
        result.errors.append(f"Failed to sync {operation.endpoint}: {error}")
        if await self._record_transient_failure(operation, error):
            result.discarded_count += 1
        elif operation.target_id is not None:
            blocked.add(operation.target_id)

    async def _record_transient_failure(self, operation: QueuedOperation, error: Exception) -> bool:
        """Count a failed attempt. Returns True if the operation was given up on."""
        message = str(error)
        try:
            updated = await self.log.record_failure(operation.operation_id, message)
        except StorageIOError as e:
            logger.error(f"Could not record failed attempt of {operation.operation_id}: {e}")
            updated = None
        attempts = updated.attempts if updated else operation.attempts + 1

        max_attempts = self.config.max_attempts
        if max_attempts is not None and attempts >= max_attempts:
            logger.warning(
                f"Giving up on {operation.method.value} {operation.endpoint} "
                f"after {attempts} attempts"
            )
            await self._discard(operation, f"Gave up after {attempts} attempts: {message}")
            return True

        logger.info(
            f"{operation.method.value} {operation.endpoint} failed (attempt {attempts}), "
            "will retry on next drain"
        )
        if operation.target_id is not None:
            await self.cache.mark_error(operation.target_id, message)
        return False

    async def _discard(self, operation: QueuedOperation, error: str) -> None:
        """Drop an operation that will never succeed and flag its entity."""
        try:
            await self.log.remove(operation.operation_id)
        except StorageIOError as e:
            logger.error(f"Could not remove discarded operation {operation.operation_id}: {e}")
        if operation.target_id is not None:
            await self.cache.mark_error(operation.target_id, error)

    async def _confirm(self, operation: QueuedOperation, response: RemoteResponse) -> None:
        """Remove a confirmed operation and adopt the remote's entity."""
        try:
            await self.log.remove(operation.operation_id)
        except StorageIOError as e:
            # The remote mutation is durable; the operation will be replayed again
            logger.error(f"Could not remove synced operation {operation.operation_id}: {e}")

        if operation.method == HttpMethod.DELETE and operation.target_id is not None:
            await self.cache.remove(operation.target_id)
            return

        entity_id = operation.target_id
        if entity_id is None and response.entity is not None:
            remote_id = response.entity.get("id")
            entity_id = str(remote_id) if remote_id is not None else None
        if entity_id is None:
            return

        await self.cache.mark_synced(entity_id, response.entity)
