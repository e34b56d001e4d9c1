"""In-memory storage medium, used in tests and for ephemeral sessions."""

from __future__ import annotations

from .base import StorageMedium


class MemoryMedium(StorageMedium):
    """Dict-backed medium. Contents are lost when the process exits."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        super().__init__(quota_bytes)
        self._items: dict[str, str] = {}

    async def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        await self._check_quota(key, value)
        self._items[key] = value

    async def remove_item(self, key: str) -> bool:
        return self._items.pop(key, None) is not None

    async def usage_bytes(self, exclude_key: str | None = None) -> int:
        return sum(
            len(value.encode("utf-8"))
            for key, value in self._items.items()
            if key != exclude_key
        )
