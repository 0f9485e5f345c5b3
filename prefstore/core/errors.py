"""Exception classes for prefstore.

Errors are raised internally and travel to callers inside ``Err`` results.
Only a missing mandatory constructor dependency escapes as a raised
``ConfigurationError``.
"""

from __future__ import annotations

from typing import Any


class PrefStoreError(Exception):
    """Base exception for all prefstore errors."""

    def __init__(self, message: str, *, context: dict[str, Any] | None = None):
        """Initialize with message and optional diagnostic context."""
        self.message = message
        self.context = dict(context or {})
        super().__init__(message)


class ConfigurationError(PrefStoreError):
    """Raised when a component is constructed without what it needs."""

    pass


class StorageError(PrefStoreError):
    """Base exception for storage-related errors."""

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        backend_kind: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        """Initialize with the logical key and backend kind involved."""
        self.key = key
        self.backend_kind = backend_kind
        super().__init__(message, context=context)


class SerializationError(StorageError):
    """Raised when a value cannot be encoded for storage."""

    pass


class QuotaExceededError(StorageError):
    """Raised when a medium's size cap would be exceeded."""

    pass


class BackendUnavailableError(StorageError):
    """Raised when the chosen backend rejects a call or returns unreadable data."""

    pass


class BulkOperationError(StorageError):
    """Raised when every key of a bulk request failed."""

    def __init__(self, message: str, *, errors: dict[str, StorageError]):
        """Initialize with the per-key errors."""
        self.errors = dict(errors)
        super().__init__(message, context={"keys": sorted(self.errors)})


class ValidationError(PrefStoreError, ValueError):
    """Raised when a single field fails validation.

    ``code`` is one of ``missing``, ``invalid_type``, ``invalid_value``
    or ``unknown_field``.
    """

    MISSING = "missing"
    INVALID_TYPE = "invalid_type"
    INVALID_VALUE = "invalid_value"
    UNKNOWN_FIELD = "unknown_field"

    def __init__(self, field: str, reason: str, *, code: str = INVALID_VALUE):
        """Initialize with field, reason and issue code."""
        self.field = field
        self.reason = reason
        self.code = code
        super().__init__(f"Validation error for {field}: {reason}")


class SchemaValidationError(PrefStoreError, ValueError):
    """Raised when a settings object fails validation on one or more fields."""

    def __init__(self, issues: list[ValidationError]):
        """Initialize with the per-field issues."""
        self.issues = list(issues)
        fields = ", ".join(issue.field for issue in self.issues)
        super().__init__(f"Settings validation failed: {fields}")

    @property
    def fields(self) -> list[str]:
        """Names of the fields that failed."""
        return [issue.field for issue in self.issues]


class MigrationError(PrefStoreError):
    """Raised when a migration step or the migration run fails."""

    def __init__(
        self,
        message: str,
        *,
        step_version: str | None = None,
        cause: BaseException | None = None,
        aggregate: dict[str, Any] | None = None,
    ):
        """Initialize with the failing step version and underlying cause.

        ``aggregate`` holds the data as it stood before the failing step.
        """
        self.step_version = step_version
        self.cause = cause
        self.aggregate = aggregate
        if step_version:
            message = f"Migration to {step_version} failed: {message}"
        super().__init__(message, context={"step_version": step_version})
