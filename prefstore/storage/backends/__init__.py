"""Pluggable storage backends.

Each backend is one storage medium:

- **MemoryBackend**: in-process storage, always available
- **FileSystemBackend**: one file per key with atomic writes
- **SQLiteBackend**: key/value table, in memory or on disk

All backends work on physical keys and encoded bytes.
"""

from .base import BackendKind, BaseBackend
from .filesystem import FileSystemBackend
from .memory import MemoryBackend
from .sqlite import SQLiteBackend

__all__ = [
    "BackendKind",
    "BaseBackend",
    "FileSystemBackend",
    "MemoryBackend",
    "SQLiteBackend",
]
