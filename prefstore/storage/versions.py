"""Migration chain for the stored theater-mode aggregate.

Versions:

- **1.0.0**: initial layout, settings under ``theaterModeSettings``
- **1.1.0**: unified ``settings`` record replacing the legacy key
- **1.2.0**: ``theme`` and ``autoEnable`` preferences
"""

from __future__ import annotations

import re
from typing import Any

from prefstore.core.versioning import MigrationStep, VersionChain

LEGACY_KEY = "theaterModeSettings"
SETTINGS_KEY = "settings"

DEFAULT_SHORTCUT = "t"
DEFAULT_OPACITY = 0.7

_SHORTCUT_PATTERN = re.compile(r"Ctrl\+Shift\+(.)", re.IGNORECASE)


def extract_shortcut_key(shortcut: Any) -> str:
    """Reduce a legacy shortcut such as ``"Ctrl+Shift+T"`` to its key.

    >>> extract_shortcut_key("Ctrl+Shift+T")
    't'
    >>> extract_shortcut_key("X")
    'x'
    """
    if not shortcut or not isinstance(shortcut, str):
        return DEFAULT_SHORTCUT

    match = _SHORTCUT_PATTERN.search(shortcut)
    if match:
        return match.group(1).lower()

    if len(shortcut) == 1:
        return shortcut.lower()

    return DEFAULT_SHORTCUT


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def unify_settings(data: dict[str, Any]) -> dict[str, Any]:
    """Convert the legacy record into the unified settings record."""
    legacy = data.get(LEGACY_KEY) or {}
    if not isinstance(legacy, dict):
        legacy = {}

    opacity = legacy.get("opacity")
    settings: dict[str, Any] = {
        "theaterModeEnabled": legacy.get("isEnabled") is True,
        "opacity": opacity if _is_number(opacity) else DEFAULT_OPACITY,
        "keyboardShortcut": extract_shortcut_key(legacy.get("shortcutKey")),
        "theme": "auto",
        "autoEnable": False,
        "version": "1.1.0",
    }
    if _is_number(legacy.get("lastUsed")):
        settings["lastUsed"] = legacy["lastUsed"]

    return {SETTINGS_KEY: settings}


def add_theme_preferences(data: dict[str, Any]) -> dict[str, Any]:
    settings = data.get(SETTINGS_KEY) or {}
    if not isinstance(settings, dict):
        settings = {}

    return {
        SETTINGS_KEY: {
            **settings,
            "theme": settings.get("theme") or "auto",
            "autoEnable": settings.get("autoEnable") or False,
            "version": "1.2.0",
        }
    }


MIGRATION_STEPS = (
    MigrationStep(
        version="1.0.0",
        description="Initial version",
        legacy_keys=(LEGACY_KEY,),
        new_keys=(SETTINGS_KEY,),
    ),
    MigrationStep(
        version="1.1.0",
        description="Unify settings structure",
        migrate=unify_settings,
        legacy_keys=(LEGACY_KEY,),
        new_keys=(SETTINGS_KEY,),
    ),
    MigrationStep(
        version="1.2.0",
        description="Add theme and auto-enable preferences",
        migrate=add_theme_preferences,
        legacy_keys=(SETTINGS_KEY,),
        new_keys=(SETTINGS_KEY,),
    ),
)

MIGRATION_CHAIN = VersionChain(MIGRATION_STEPS)
CURRENT_VERSION = MIGRATION_CHAIN.current
