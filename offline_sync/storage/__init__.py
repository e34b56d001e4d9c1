"""
Local storage media.

Provides the persistent key-value layer under the cache store and the
operation log:
- MemoryMedium: in-process dict (tests, ephemeral sessions)
- FileMedium: one atomically-written JSON file per key
- SQLiteMedium: single-file SQLite database
"""

from .base import StorageMedium
from .file import FileMedium
from .memory import MemoryMedium
from .sqlite import SQLiteMedium

__all__ = [
    "StorageMedium",
    "MemoryMedium",
    "FileMedium",
    "SQLiteMedium",
]
