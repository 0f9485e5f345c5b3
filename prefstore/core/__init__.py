"""Core types shared by the storage, migration and settings layers."""

from .errors import (
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
from .reporting import ErrorReporter, LoggingErrorReporter, report_error
from .result import Err, Ok, Result
from .versioning import MigrationStep, VersionChain

__all__ = [
    "Ok",
    "Err",
    "Result",
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
    "ErrorReporter",
    "LoggingErrorReporter",
    "report_error",
    "MigrationStep",
    "VersionChain",
]
