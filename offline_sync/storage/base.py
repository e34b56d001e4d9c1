"""
Abstract storage medium interface.

A medium is client-local persistent key-value storage holding serialized
collections as text. Implementations raise StorageIOError on failure and
StorageQuotaExceededError when a write would exceed the configured quota.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..exceptions import StorageQuotaExceededError


class StorageMedium(ABC):
    """Key-value text storage used by the cache store and operation log."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        self.quota_bytes = quota_bytes

    @abstractmethod
    async def get_item(self, key: str) -> str | None:
        """Return the stored value for key, or None if absent."""

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""

    @abstractmethod
    async def remove_item(self, key: str) -> bool:
        """Remove key. Returns True if it existed."""

    @abstractmethod
    async def usage_bytes(self, exclude_key: str | None = None) -> int:
        """Bytes used by all stored values, optionally excluding one key."""

    async def close(self) -> None:  # noqa: B027
        """Release any resources held by the medium."""

    async def _check_quota(self, key: str, value: str) -> None:
        if self.quota_bytes is None:
            return
        size = len(value.encode("utf-8"))
        total = size + await self.usage_bytes(exclude_key=key)
        if total > self.quota_bytes:
            raise StorageQuotaExceededError(key, total, self.quota_bytes)
