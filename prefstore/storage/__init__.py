"""Storage layer for prefstore.

This package provides:
- Pluggable backends (memory, file system, SQLite)
- A namespaced store with backend selection and change notifications
- Versioned migrations with backups, rollback and history
- Per-namespace locks for operations that must not interleave
"""

from .backends import (
    BackendKind,
    BaseBackend,
    FileSystemBackend,
    MemoryBackend,
    SQLiteBackend,
)
from .events import WILDCARD, ChangeEvent, ListenerRegistry
from .locks import NamespaceLocks
from .migrations import (
    BackupInfo,
    BackupManager,
    BackupRecord,
    Changes,
    HistoryRecord,
    MigrationEngine,
    MigrationOutcome,
    MigrationStatus,
)
from .store import MISSING, BulkResult, NamespacedStore
from .versions import CURRENT_VERSION, MIGRATION_CHAIN, extract_shortcut_key

__all__ = [
    # Backends
    "BackendKind",
    "BaseBackend",
    "MemoryBackend",
    "FileSystemBackend",
    "SQLiteBackend",
    # Store
    "NamespacedStore",
    "BulkResult",
    "MISSING",
    "ChangeEvent",
    "ListenerRegistry",
    "WILDCARD",
    "NamespaceLocks",
    # Migrations
    "MigrationEngine",
    "BackupManager",
    "MigrationStatus",
    "MigrationOutcome",
    "Changes",
    "HistoryRecord",
    "BackupRecord",
    "BackupInfo",
    "MIGRATION_CHAIN",
    "CURRENT_VERSION",
    "extract_shortcut_key",
]
