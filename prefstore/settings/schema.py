"""Declarative schema for the settings object.

Each field is described by a ``FieldSpec``: its type, default and
constraints. The schema validates (reports every failing field, first
violation per field) and sanitizes (repairs every field so the result
always validates).
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterator, Mapping
from copy import deepcopy
from enum import Enum
from typing import Any

import msgspec

from prefstore.core.errors import ConfigurationError, ValidationError

from .versions import CURRENT_SETTINGS_VERSION


class SchemaType(str, Enum):
    """Value types a settings field may declare."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
    ANY = "any"


class FieldSpec(msgspec.Struct, frozen=True, kw_only=True):
    """Type, default and constraints of one settings field."""

    type: SchemaType
    default: Any = None
    required: bool = False
    min: float | None = None
    max: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    min_items: int | None = None
    max_items: int | None = None
    enum: tuple[Any, ...] | None = None
    description: str = ""

    def matches_type(self, value: Any) -> bool:
        """Check ``value`` against the declared type only."""
        if self.type is SchemaType.ANY:
            return True
        if self.type is SchemaType.STRING:
            return isinstance(value, str)
        if self.type is SchemaType.NUMBER:
            if isinstance(value, float):
                return math.isfinite(value)
            return isinstance(value, int) and not isinstance(value, bool)
        if self.type is SchemaType.BOOLEAN:
            return isinstance(value, bool)
        if self.type is SchemaType.OBJECT:
            return isinstance(value, Mapping)
        if self.type is SchemaType.ARRAY:
            return isinstance(value, (list, tuple))
        return False

    def _below_min(self, value: Any) -> bool:
        return self.min is not None and value < self.min

    def _above_max(self, value: Any) -> bool:
        return self.max is not None and value > self.max

    def check(self, name: str, value: Any) -> ValidationError | None:
        """First violation for ``value``, type before constraints."""
        if not self.matches_type(value):
            return ValidationError(
                name,
                f"expected {self.type.value}, got {type(value).__name__}",
                code=ValidationError.INVALID_TYPE,
            )

        if self.type is SchemaType.NUMBER:
            if self._below_min(value):
                return ValidationError(name, f"{value} is below minimum {self.min}")
            if self._above_max(value):
                return ValidationError(name, f"{value} exceeds maximum {self.max}")

        if self.type is SchemaType.STRING:
            if self.min_length is not None and len(value) < self.min_length:
                return ValidationError(
                    name, f"too short (min length {self.min_length})"
                )
            if self.max_length is not None and len(value) > self.max_length:
                return ValidationError(name, f"too long (max length {self.max_length})")
            if self.pattern is not None and not re.search(self.pattern, value):
                return ValidationError(name, f"does not match pattern {self.pattern}")

        if self.type is SchemaType.ARRAY:
            if self.min_items is not None and len(value) < self.min_items:
                return ValidationError(name, f"too few items (min {self.min_items})")
            if self.max_items is not None and len(value) > self.max_items:
                return ValidationError(name, f"too many items (max {self.max_items})")

        if self.enum is not None and value not in self.enum:
            allowed = ", ".join(str(v) for v in self.enum)
            return ValidationError(name, f"must be one of: {allowed}")

        return None

    def repair(self, value: Any) -> Any:
        """Return ``value`` if valid, clamped if out of numeric bounds, else the default."""
        if not self.matches_type(value):
            return deepcopy(self.default)

        if self.type is SchemaType.NUMBER and (
            self._below_min(value) or self._above_max(value)
        ):
            if self.min is not None:
                value = max(self.min, value)
            if self.max is not None:
                value = min(self.max, value)

        if self.check("", value) is not None:
            return deepcopy(self.default)
        return value


class SettingsSchema:
    """Named field specs plus the version they describe.

    The ``version`` field, when present, must default to ``version``, and
    every default must itself validate.
    """

    def __init__(
        self,
        fields: Mapping[str, FieldSpec],
        *,
        version: str | None = CURRENT_SETTINGS_VERSION,
        allow_unknown: bool = False,
    ):
        self._fields = dict(fields)
        self.version = version
        self.allow_unknown = allow_unknown

        version_spec = self._fields.get("version")
        if version is not None and version_spec is not None:
            if version_spec.default != version:
                raise ConfigurationError(
                    f"version field defaults to {version_spec.default!r}, "
                    f"expected {version!r}"
                )

        issues = self.validate(self.defaults())
        if issues:
            raise ConfigurationError(
                "Schema defaults do not validate: "
                + ", ".join(issue.field for issue in issues)
            )

    @property
    def fields(self) -> dict[str, FieldSpec]:
        return dict(self._fields)

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def __getitem__(self, name: str) -> FieldSpec:
        return self._fields[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def defaults(self) -> dict[str, Any]:
        """Default value of every field that has one."""
        return {
            name: deepcopy(spec.default)
            for name, spec in self._fields.items()
            if spec.default is not None
        }

    def validate_value(self, name: str, value: Any) -> ValidationError | None:
        """Check a single field value."""
        spec = self._fields.get(name)
        if spec is None:
            return ValidationError(
                name, "unknown setting", code=ValidationError.UNKNOWN_FIELD
            )
        return spec.check(name, value)

    def validate(self, settings: Any) -> list[ValidationError]:
        """Every failing field, one issue per field."""
        if not isinstance(settings, Mapping):
            return [
                ValidationError(
                    "settings",
                    f"expected object, got {type(settings).__name__}",
                    code=ValidationError.INVALID_TYPE,
                )
            ]

        issues = []
        for name, spec in self._fields.items():
            value = settings.get(name)
            if value is None:
                if spec.required:
                    issues.append(
                        ValidationError(
                            name, "required setting is missing", code=ValidationError.MISSING
                        )
                    )
                continue

            issue = spec.check(name, value)
            if issue is not None:
                issues.append(issue)

        if not self.allow_unknown:
            for name in settings:
                if name not in self._fields:
                    issues.append(
                        ValidationError(
                            str(name), "unknown setting", code=ValidationError.UNKNOWN_FIELD
                        )
                    )

        return issues

    def sanitize(self, settings: Any) -> dict[str, Any]:
        """Repair ``settings`` field by field; never raises."""
        source = settings if isinstance(settings, Mapping) else {}
        sanitized: dict[str, Any] = {}

        for name, spec in self._fields.items():
            value = source.get(name)
            if value is None:
                if spec.default is not None:
                    sanitized[name] = deepcopy(spec.default)
                continue
            repaired = spec.repair(value)
            if repaired is not None:
                sanitized[name] = deepcopy(repaired)

        if self.allow_unknown:
            for name, value in source.items():
                if name not in self._fields:
                    sanitized[name] = deepcopy(value)

        if self.version is not None and "version" in self._fields:
            sanitized["version"] = self.version
        return sanitized

    def to_builtins(self) -> dict[str, Any]:
        """Field specs as plain data."""
        return {name: msgspec.to_builtins(spec) for name, spec in self._fields.items()}


def default_settings_schema(version: str = CURRENT_SETTINGS_VERSION) -> SettingsSchema:
    """Schema of the unified ``settings`` record."""
    return SettingsSchema(
        {
            "theaterModeEnabled": FieldSpec(
                type=SchemaType.BOOLEAN,
                default=False,
                required=True,
                description="Whether theater mode is on",
            ),
            "opacity": FieldSpec(
                type=SchemaType.NUMBER,
                default=0.7,
                required=True,
                min=0,
                max=0.9,
                description="Overlay opacity",
            ),
            "keyboardShortcut": FieldSpec(
                type=SchemaType.STRING,
                default="t",
                required=True,
                min_length=1,
                max_length=1,
                pattern=r"^[a-zA-Z0-9]$",
                description="Key that toggles theater mode",
            ),
            "theme": FieldSpec(
                type=SchemaType.STRING,
                default="auto",
                enum=("auto", "light", "dark"),
                description="Color theme",
            ),
            "autoEnable": FieldSpec(
                type=SchemaType.BOOLEAN,
                default=False,
                description="Enable theater mode automatically on video pages",
            ),
            "lastUsed": FieldSpec(
                type=SchemaType.NUMBER,
                min=0,
                description="Epoch milliseconds of last use",
            ),
            "version": FieldSpec(
                type=SchemaType.STRING,
                default=version,
                description="Settings version",
            ),
        },
        version=version,
    )


def legacy_settings_schema() -> SettingsSchema:
    """Schema of the legacy ``theaterModeSettings`` record."""
    return SettingsSchema(
        {
            "isEnabled": FieldSpec(type=SchemaType.BOOLEAN),
            "opacity": FieldSpec(type=SchemaType.NUMBER, min=0, max=0.9),
            "shortcutKey": FieldSpec(type=SchemaType.STRING),
            "lastUsed": FieldSpec(type=SchemaType.NUMBER),
            "version": FieldSpec(type=SchemaType.STRING),
        },
        version=None,
        allow_unknown=True,
    )
