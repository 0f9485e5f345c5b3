"""Tests for the stored aggregate's migration chain."""

import pytest

from prefstore.storage.versions import (
    CURRENT_VERSION,
    MIGRATION_CHAIN,
    add_theme_preferences,
    extract_shortcut_key,
    unify_settings,
)


class TestExtractShortcutKey:
    """Test reducing legacy shortcuts to a single key."""

    @pytest.mark.parametrize(
        "shortcut, expected",
        [
            ("Ctrl+Shift+T", "t"),
            ("ctrl+shift+m", "m"),
            ("Ctrl+Shift+5", "5"),
            ("X", "x"),
            ("", "t"),
            (None, "t"),
            (42, "t"),
            ("Alt+Q", "t"),
        ],
    )
    def test_extract(self, shortcut, expected):
        assert extract_shortcut_key(shortcut) == expected


class TestUnifySettings:
    """Test the 1.0.0 -> 1.1.0 transform."""

    def test_full_legacy_record(self, legacy_data):
        result = unify_settings(legacy_data)

        assert result == {
            "settings": {
                "theaterModeEnabled": True,
                "opacity": 0.8,
                "keyboardShortcut": "t",
                "theme": "auto",
                "autoEnable": False,
                "version": "1.1.0",
            }
        }

    def test_missing_legacy_record(self):
        settings = unify_settings({})["settings"]

        assert settings["theaterModeEnabled"] is False
        assert settings["opacity"] == 0.7
        assert settings["keyboardShortcut"] == "t"

    def test_non_boolean_enabled_is_false(self):
        settings = unify_settings({"theaterModeSettings": {"isEnabled": "yes"}})["settings"]

        assert settings["theaterModeEnabled"] is False

    def test_zero_opacity_is_kept(self):
        settings = unify_settings({"theaterModeSettings": {"opacity": 0}})["settings"]

        assert settings["opacity"] == 0

    def test_invalid_opacity_uses_default(self):
        settings = unify_settings({"theaterModeSettings": {"opacity": "dim"}})["settings"]

        assert settings["opacity"] == 0.7

    def test_last_used_carried_when_numeric(self):
        with_number = unify_settings({"theaterModeSettings": {"lastUsed": 1700000000000}})
        with_text = unify_settings({"theaterModeSettings": {"lastUsed": "yesterday"}})

        assert with_number["settings"]["lastUsed"] == 1700000000000
        assert "lastUsed" not in with_text["settings"]


class TestAddThemePreferences:
    """Test the 1.1.0 -> 1.2.0 transform."""

    def test_defaults_added(self):
        result = add_theme_preferences({"settings": {"opacity": 0.5, "version": "1.1.0"}})

        assert result["settings"] == {
            "opacity": 0.5,
            "theme": "auto",
            "autoEnable": False,
            "version": "1.2.0",
        }

    def test_existing_values_kept(self):
        result = add_theme_preferences(
            {"settings": {"theme": "dark", "autoEnable": True}}
        )

        assert result["settings"]["theme"] == "dark"
        assert result["settings"]["autoEnable"] is True


class TestMigrationChain:
    """Test the whole chain."""

    def test_current_version(self):
        assert CURRENT_VERSION == "1.2.0"
        assert MIGRATION_CHAIN.versions == ["1.0.0", "1.1.0", "1.2.0"]

    def test_legacy_key_retired(self, legacy_data):
        result = MIGRATION_CHAIN.apply(legacy_data, "1.0.0", "1.2.0")

        assert list(result) == ["settings"]
        assert result["settings"]["version"] == "1.2.0"
        assert result["settings"]["theaterModeEnabled"] is True
