"""Durable, versioned settings storage.

Persists a small settings document across restarts:

- **Storage abstraction**: namespaced keys over pluggable backends with
  preferred/fallback selection and change notifications
- **Migrations**: ordered version chain with backups, rollback and history
- **Settings manager**: schema validation, sanitizing and caching
- **Integrity checks**: read-only reports over persisted data
"""

__version__ = "0.3.0"

from prefstore.core.errors import (
    BackendUnavailableError,
    BulkOperationError,
    ConfigurationError,
    MigrationError,
    PrefStoreError,
    QuotaExceededError,
    SchemaValidationError,
    SerializationError,
    StorageError,
    ValidationError,
)
from prefstore.core.result import Err, Ok, Result
from prefstore.settings.manager import SettingsManager
from prefstore.storage.backends import BackendKind
from prefstore.storage.migrations import MigrationEngine
from prefstore.storage.store import NamespacedStore

__all__ = [
    "__version__",
    # Results
    "Ok",
    "Err",
    "Result",
    # Errors
    "PrefStoreError",
    "ConfigurationError",
    "StorageError",
    "SerializationError",
    "QuotaExceededError",
    "BackendUnavailableError",
    "BulkOperationError",
    "ValidationError",
    "SchemaValidationError",
    "MigrationError",
    # Components
    "BackendKind",
    "NamespacedStore",
    "MigrationEngine",
    "SettingsManager",
]
