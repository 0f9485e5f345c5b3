"""Settings schema, version history and manager."""

from .schema import (
    FieldSpec,
    SchemaType,
    SettingsSchema,
    default_settings_schema,
    legacy_settings_schema,
)
from .versions import CURRENT_SETTINGS_VERSION, SETTINGS_VERSIONS
from .manager import SettingsManager

__all__ = [
    "FieldSpec",
    "SchemaType",
    "SettingsSchema",
    "default_settings_schema",
    "legacy_settings_schema",
    "CURRENT_SETTINGS_VERSION",
    "SETTINGS_VERSIONS",
    "SettingsManager",
]
