"""Integrity checks over persisted settings data.

Read-only pass over the namespace's data aggregate:
- Unified settings record against the settings schema
- Legacy record against the legacy schema
- Legacy and unified records stored side by side
- Top-level keys nobody recognizes
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

import msgspec

from prefstore.core.errors import ValidationError
from prefstore.settings.schema import (
    SettingsSchema,
    default_settings_schema,
    legacy_settings_schema,
)
from prefstore.storage.versions import LEGACY_KEY, SETTINGS_KEY


class IssueType(str, Enum):
    """Kinds of integrity issues."""

    INVALID_TYPE = "invalid_type"
    INVALID_VALUE = "invalid_value"
    MISSING_FIELD = "missing_field"
    DUPLICATE_DATA = "duplicate_data"
    ORPHANED_DATA = "orphaned_data"


_CODE_TO_ISSUE = {
    ValidationError.MISSING: IssueType.MISSING_FIELD,
    ValidationError.INVALID_TYPE: IssueType.INVALID_TYPE,
    ValidationError.INVALID_VALUE: IssueType.INVALID_VALUE,
}


class IntegrityIssue(msgspec.Struct, frozen=True, kw_only=True):
    """A single problem found in the stored data."""

    type: IssueType
    key: str
    message: str

    def to_string(self) -> str:
        return f"[{self.type.value}] {self.key}: {self.message}"


class IntegrityReport(msgspec.Struct, frozen=True, kw_only=True):
    """Result of an integrity pass."""

    issues: list[IntegrityIssue] = msgspec.field(default_factory=list)
    data_keys: list[str] = msgspec.field(default_factory=list)
    total_size: int = 0

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def issues_of(self, issue_type: IssueType) -> list[IntegrityIssue]:
        return [issue for issue in self.issues if issue.type == issue_type]

    def to_summary(self) -> str:
        """Generate human-readable summary."""
        lines = [
            "Data Integrity Report",
            f"Keys: {', '.join(self.data_keys) or '(none)'}",
            f"Total size: {self.total_size} bytes",
            f"Status: {'valid' if self.is_valid else 'invalid'}",
        ]

        if self.issues:
            lines.append(f"\nIssues: {len(self.issues)}")
            for issue in self.issues:
                lines.append(f"  - {issue.to_string()}")

        return "\n".join(lines)


class IntegrityChecker:
    """Checks a data aggregate without modifying it."""

    def __init__(
        self,
        settings_schema: SettingsSchema | None = None,
        legacy_schema: SettingsSchema | None = None,
        known_keys: Iterable[str] = (SETTINGS_KEY, LEGACY_KEY),
    ):
        self.settings_schema = settings_schema or default_settings_schema()
        self.legacy_schema = legacy_schema or legacy_settings_schema()
        self.known_keys = tuple(known_keys)

    def check(self, data: Mapping[str, Any]) -> IntegrityReport:
        """Run every check over ``data``."""
        issues: list[IntegrityIssue] = []

        if data.get(SETTINGS_KEY) is not None:
            issues.extend(
                self._check_record(SETTINGS_KEY, data[SETTINGS_KEY], self.settings_schema)
            )

        if data.get(LEGACY_KEY) is not None:
            issues.extend(
                self._check_record(LEGACY_KEY, data[LEGACY_KEY], self.legacy_schema)
            )

        issues.extend(self._check_duplicates(data))
        issues.extend(self._check_orphans(data))

        return IntegrityReport(
            issues=issues,
            data_keys=list(data.keys()),
            total_size=len(msgspec.json.encode(dict(data))),
        )

    def _check_record(
        self, record_key: str, record: Any, schema: SettingsSchema
    ) -> list[IntegrityIssue]:
        if not isinstance(record, Mapping):
            return [
                IntegrityIssue(
                    type=IssueType.INVALID_TYPE,
                    key=record_key,
                    message=f"{record_key} must be an object",
                )
            ]

        issues = []
        for error in schema.validate(record):
            issue_type = _CODE_TO_ISSUE.get(error.code)
            if issue_type is None:
                continue
            issues.append(
                IntegrityIssue(
                    type=issue_type,
                    key=f"{record_key}.{error.field}",
                    message=error.reason,
                )
            )
        return issues

    def _check_duplicates(self, data: Mapping[str, Any]) -> list[IntegrityIssue]:
        if data.get(SETTINGS_KEY) and data.get(LEGACY_KEY):
            return [
                IntegrityIssue(
                    type=IssueType.DUPLICATE_DATA,
                    key=f"{SETTINGS_KEY}/{LEGACY_KEY}",
                    message="Both unified and legacy settings exist",
                )
            ]
        return []

    def _check_orphans(self, data: Mapping[str, Any]) -> list[IntegrityIssue]:
        return [
            IntegrityIssue(
                type=IssueType.ORPHANED_DATA,
                key=key,
                message=f"Unknown data key {key!r} found",
            )
            for key in data
            if key not in self.known_keys
        ]
