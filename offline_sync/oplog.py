"""
Operation log.

A durable FIFO queue of mutations that have not been confirmed by the
remote store yet. Operations are addressed by endpoint and payload rather
than by typed commands, so the log stays generic across entity types: it
only knows how to replay a request, not what the request means.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

from .config import DEFAULT_ENTITY_PATTERN
from .exceptions import MalformedOperationError, StorageCorruptedError
from .storage.base import StorageMedium

logger = logging.getLogger(__name__)


class HttpMethod(str, Enum):
    """Mutating methods that may be queued. GET is never queued."""

    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, value: str | HttpMethod) -> HttpMethod:
        """Parse a method name, rejecting anything that is not a mutation."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise MalformedOperationError(
                f"method {value!r} cannot be queued", field="method"
            ) from None


@dataclass
class QueuedOperation:
    """A mutation waiting to be replayed against the remote store.

    Only ``attempts`` and ``last_error`` change after enqueueing.

    Attributes:
        operation_id: Unique reference used to remove the operation
        target_id: Entity the operation mutates, None for creations
        endpoint: Resource path to invoke
        method: HTTP method to invoke it with
        payload: Mutation body
        enqueued_at: When the operation was queued
        sequence: Insertion counter breaking enqueued_at ties
        attempts: Number of prior replay attempts
        last_error: Error from the most recent failed attempt
    """

    operation_id: str
    target_id: str | None
    endpoint: str
    method: HttpMethod
    payload: dict[str, Any] | None
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    sequence: int = 0
    attempts: int = 0
    last_error: str | None = None

    @property
    def order_key(self) -> tuple[datetime, int]:
        return (self.enqueued_at, self.sequence)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "operation_id": self.operation_id,
            "target_id": self.target_id,
            "endpoint": self.endpoint,
            "method": self.method.value,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at.isoformat(),
            "sequence": self.sequence,
            "attempts": self.attempts,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueuedOperation:
        """Create from dictionary.

        Raises:
            MalformedOperationError: If required fields are missing or invalid
        """
        for required in ("operation_id", "endpoint", "method"):
            if not data.get(required):
                raise MalformedOperationError(f"missing {required}", field=required)

        enqueued_at = data.get("enqueued_at")
        try:
            enqueued_at = (
                datetime.fromisoformat(enqueued_at)
                if isinstance(enqueued_at, str)
                else datetime.now(UTC)
            )
        except ValueError:
            raise MalformedOperationError(
                f"invalid enqueued_at {enqueued_at!r}", field="enqueued_at"
            ) from None

        return cls(
            operation_id=data["operation_id"],
            target_id=data.get("target_id"),
            endpoint=data["endpoint"],
            method=HttpMethod.parse(data["method"]),
            payload=data.get("payload"),
            enqueued_at=enqueued_at,
            sequence=int(data.get("sequence", 0)),
            attempts=int(data.get("attempts", 0)),
            last_error=data.get("last_error"),
        )


def extract_target_id(endpoint: str, pattern: str = DEFAULT_ENTITY_PATTERN) -> str | None:
    """Extract the entity id an endpoint refers to.

    >>> extract_target_id("/api/notebooks/123")
    '123'
    >>> extract_target_id("/api/notebooks") is None
    True
    """
    path = urlsplit(endpoint).path or endpoint
    match = re.search(pattern, path)
    return match.group(1) if match else None


class OperationLog:
    """Durable ordered queue of QueuedOperation records.

    Appending is the only mutation available to application code; attempt
    bookkeeping and removal belong to the sync engine.
    """

    def __init__(
        self,
        medium: StorageMedium,
        key: str = "offline-operations",
        entity_pattern: str = DEFAULT_ENTITY_PATTERN,
    ):
        """Initialize the operation log.

        Args:
            medium: Storage medium holding the queue
            key: Medium key the queue is stored under
            entity_pattern: Regex whose first group extracts a target id from an endpoint
        """
        self.medium = medium
        self.key = key
        self.entity_pattern = entity_pattern
        self._lock = asyncio.Lock()

    async def _load(self) -> list[QueuedOperation]:
        try:
            raw = await self.medium.get_item(self.key)
        except StorageCorruptedError as e:
            logger.error(f"Discarding undecodable operation log {self.key}: {e}")
            return []
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except json.JSONDecodeError as e:
            # If queue is corrupted, start fresh
            logger.error(f"Discarding unreadable operation log {self.key}: {e}")
            return []

        operations = []
        for item in items:
            try:
                operations.append(QueuedOperation.from_dict(item))
            except (MalformedOperationError, AttributeError, TypeError, ValueError) as e:
                logger.error(f"Dropping malformed queued operation {item!r}: {e}")
        return operations

    async def _save(self, operations: list[QueuedOperation]) -> None:
        await self.medium.set_item(self.key, json.dumps([op.to_dict() for op in operations]))

    async def enqueue(
        self,
        endpoint: str,
        method: str | HttpMethod,
        payload: dict[str, Any] | None = None,
        target_id: str | None = None,
    ) -> QueuedOperation:
        """Append an operation to the log.

        Args:
            endpoint: Resource path the sync engine must invoke
            method: POST, PUT, PATCH or DELETE
            payload: Mutation body
            target_id: Entity id; extracted from the endpoint when omitted

        Returns:
            The queued operation

        Raises:
            MalformedOperationError: For GET/unknown methods or an empty endpoint
            StorageIOError: If the log could not be persisted
        """
        if not endpoint or not isinstance(endpoint, str):
            raise MalformedOperationError("endpoint must be a non-empty string", field="endpoint")
        http_method = HttpMethod.parse(method)
        if target_id is None:
            target_id = extract_target_id(endpoint, self.entity_pattern)

        async with self._lock:
            operations = await self._load()
            next_sequence = max((op.sequence for op in operations), default=0) + 1
            operation = QueuedOperation(
                operation_id=str(uuid.uuid4()),
                target_id=target_id,
                endpoint=endpoint,
                method=http_method,
                payload=payload,
                sequence=next_sequence,
            )
            operations.append(operation)
            await self._save(operations)

        logger.debug(
            f"Queued {http_method.value} {endpoint} for {target_id or 'new entity'}",
            extra={"operation_id": operation.operation_id},
        )
        return operation

    async def peek_all(self) -> list[QueuedOperation]:
        """Get all queued operations in FIFO order."""
        operations = await self._load()
        return sorted(operations, key=lambda op: op.order_key)

    async def pending_for(self, target_id: str) -> list[QueuedOperation]:
        """Get queued operations targeting one entity, in FIFO order."""
        return [op for op in await self.peek_all() if op.target_id == target_id]

    async def count(self) -> int:
        """Get the number of queued operations."""
        return len(await self._load())

    async def remove(self, operation_id: str) -> bool:
        """Remove an operation after confirmed success or give-up.

        Returns:
            True if the operation was found and removed
        """
        async with self._lock:
            operations = await self._load()
            remaining = [op for op in operations if op.operation_id != operation_id]
            if len(remaining) == len(operations):
                return False
            await self._save(remaining)
            return True

    async def record_failure(self, operation_id: str, error: str) -> QueuedOperation | None:
        """Increment the attempt count of an operation.

        Returns:
            The updated operation, or None if it is no longer queued
        """
        async with self._lock:
            operations = await self._load()
            for operation in operations:
                if operation.operation_id == operation_id:
                    operation.attempts += 1
                    operation.last_error = error
                    await self._save(operations)
                    return operation
            return None

    async def clear(self) -> int:
        """Remove every queued operation.

        Returns:
            Number of operations removed
        """
        async with self._lock:
            operations = await self._load()
            await self._save([])
            return len(operations)
