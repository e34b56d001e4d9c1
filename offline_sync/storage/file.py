"""
File-backed storage medium.

Each key is stored as ``<base_dir>/<key>.json``. Writes go to a temp file in
the same directory which is fsynced and then renamed over the target, so a
crash mid-write leaves the previous value intact.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

import aiofiles
import aiofiles.os

from ..exceptions import StorageCorruptedError, StorageIOError
from .base import StorageMedium

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9._-]+$")


class FileMedium(StorageMedium):
    """Medium storing one JSON document per key in a directory."""

    def __init__(self, base_dir: Path, quota_bytes: int | None = None) -> None:
        super().__init__(quota_bytes)
        self.base_dir = Path(base_dir)

    def _path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.base_dir / f"{key}.json"

    async def get_item(self, key: str) -> str | None:
        """Read a stored value.

        Raises:
            StorageCorruptedError: If the file is not valid UTF-8
            StorageIOError: If the file cannot be read
        """
        path = self._path_for(key)
        try:
            if not await aiofiles.os.path.exists(path):
                return None
            async with aiofiles.open(path, "rb") as f:
                raw = await f.read()
        except OSError as e:
            raise StorageIOError("read", key, e) from e

        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StorageCorruptedError(key, e) from e

    async def set_item(self, key: str, value: str) -> None:
        path = self._path_for(key)
        await self._check_quota(key, value)

        try:
            await aiofiles.os.makedirs(self.base_dir, exist_ok=True)
        except OSError as e:
            raise StorageIOError("create_directory", str(self.base_dir), e) from e

        temp_path: str | None = None
        try:
            fd, temp_path = tempfile.mkstemp(dir=self.base_dir, prefix=".tmp_", suffix=".json")
            os.close(fd)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(value)
                await f.flush()
                os.fsync(f.fileno())

            await aiofiles.os.replace(temp_path, path)
        except OSError as e:
            if temp_path is not None:
                try:
                    await aiofiles.os.remove(temp_path)
                except OSError as cleanup_error:
                    logger.warning(f"Could not remove temp file {temp_path}: {cleanup_error}")
            raise StorageIOError("write", key, e) from e

    async def remove_item(self, key: str) -> bool:
        path = self._path_for(key)
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
                return True
            return False
        except OSError as e:
            raise StorageIOError("remove", key, e) from e

    async def usage_bytes(self, exclude_key: str | None = None) -> int:
        try:
            if not await aiofiles.os.path.exists(self.base_dir):
                return 0
            total = 0
            for name in await aiofiles.os.listdir(self.base_dir):
                if not name.endswith(".json") or name.startswith(".tmp_"):
                    continue
                if exclude_key is not None and name == f"{exclude_key}.json":
                    continue
                stat = await aiofiles.os.stat(self.base_dir / name)
                total += stat.st_size
            return total
        except OSError as e:
            raise StorageIOError("usage", str(self.base_dir), e) from e
