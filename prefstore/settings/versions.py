"""Version history of the settings object."""

from typing import Any

from prefstore.core.versioning import MigrationStep, VersionChain


def add_keyboard_shortcut(settings: dict[str, Any]) -> dict[str, Any]:
    return {
        "keyboardShortcut": settings.get("keyboardShortcut") or "t",
        "version": "1.1.0",
    }


def add_theme(settings: dict[str, Any]) -> dict[str, Any]:
    return {
        "theme": settings.get("theme") or "auto",
        "version": "1.2.0",
    }


SETTINGS_VERSIONS = VersionChain(
    [
        MigrationStep(version="1.0.0", description="Initial version"),
        MigrationStep(
            version="1.1.0",
            description="Customizable keyboard shortcut",
            migrate=add_keyboard_shortcut,
        ),
        MigrationStep(
            version="1.2.0",
            description="Theme preference",
            migrate=add_theme,
        ),
    ]
)

CURRENT_SETTINGS_VERSION = SETTINGS_VERSIONS.current
