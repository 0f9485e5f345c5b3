"""Schema-validated settings on top of a namespaced store.

The manager keeps one cached settings object. Loading migrates stored data
forward and repairs it when it does not validate; saving merges a partial
update, validates it and rejects it without writing when it does not.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from copy import deepcopy
from typing import Any

from prefstore.core.errors import (
    ConfigurationError,
    MigrationError,
    SchemaValidationError,
    ValidationError,
)
from prefstore.core.reporting import ErrorReporter, report_error
from prefstore.core.result import Err, Ok, Result
from prefstore.core.versioning import VersionChain
from prefstore.storage.store import NamespacedStore

from .schema import SettingsSchema, default_settings_schema
from .versions import SETTINGS_VERSIONS

logger = logging.getLogger(__name__)

SettingsListener = Callable[
    [dict[str, Any], dict[str, Any] | None], None | Awaitable[None]
]


class SettingsManager:
    """Cached, validated access to one settings object."""

    def __init__(
        self,
        store: NamespacedStore | None,
        *,
        schema: SettingsSchema | None = None,
        storage_key: str = "settings",
        versions: VersionChain | None = None,
        initial_settings: Mapping[str, Any] | None = None,
        error_reporter: ErrorReporter | None = None,
    ):
        if store is None:
            raise ConfigurationError("SettingsManager requires a store")

        self.store = store
        self.storage_key = storage_key
        self.versions = versions or SETTINGS_VERSIONS
        self.schema = schema or default_settings_schema(self.versions.current)
        self._reporter = error_reporter

        if initial_settings is None:
            self.initial_settings = self.schema.defaults()
        else:
            issues = self.schema.validate(initial_settings)
            if issues:
                raise ConfigurationError(
                    f"Initial settings are invalid: {SchemaValidationError(issues)}"
                )
            self.initial_settings = deepcopy(dict(initial_settings))

        self._cache: dict[str, Any] | None = None
        self._listeners: list[SettingsListener] = []

    @property
    def current_version(self) -> str:
        return self.versions.current

    def on_change(self, listener: SettingsListener) -> Callable[[], None]:
        """Call ``listener(new, previous)`` after every save or reset."""
        if not callable(listener):
            raise TypeError("Listener must be callable")
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(
        self, settings: dict[str, Any], previous: dict[str, Any] | None
    ) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(deepcopy(settings), deepcopy(previous))
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning(f"Settings listener failed: {e}")

    async def load_settings(self) -> Result[dict[str, Any]]:
        """Cached settings, or stored settings migrated and repaired.

        Absent data yields the initial settings. A failed read yields them
        too, without caching, so the next call reads again.
        """
        async with self.store.exclusive():
            settings = await self._load()
        return Ok(deepcopy(settings))

    async def _load(self) -> dict[str, Any]:
        if self._cache is not None:
            return self._cache

        read = await self.store.get(self.storage_key)
        if isinstance(read, Err):
            logger.warning(f"Could not read settings, using defaults: {read.error}")
            report_error(
                self._reporter,
                read.error,
                operation="load_settings",
                defaults_used=True,
            )
            return deepcopy(self.initial_settings)

        stored = read.value
        if stored is None:
            logger.debug("No stored settings, using defaults")
            self._cache = deepcopy(self.initial_settings)
            return self._cache

        settings = stored
        if isinstance(stored, Mapping):
            settings = await self._migrate_if_needed(dict(stored))

        issues = self.schema.validate(settings)
        if issues:
            logger.warning(
                f"Invalid settings, repairing: {', '.join(i.field for i in issues)}"
            )
            settings = self.schema.sanitize(settings)

        self._cache = settings
        return self._cache

    async def _migrate_if_needed(self, settings: dict[str, Any]) -> dict[str, Any]:
        version = settings.get("version")
        if not isinstance(version, str) or version not in self.versions:
            version = self.versions.earliest
        if version == self.current_version:
            return settings

        logger.info(f"Migrating settings from {version} to {self.current_version}")
        try:
            migrated = self.versions.apply(settings, version, self.current_version)
        except MigrationError as e:
            logger.error(f"Settings migration stopped: {e}")
            report_error(self._reporter, e, operation="migrate_settings")
            migrated = dict(e.aggregate or settings)

        migrated["version"] = self.current_version
        written = await self.store.set(self.storage_key, migrated)
        if isinstance(written, Err):
            logger.warning(f"Could not persist migrated settings: {written.error}")
        return migrated

    async def save_settings(self, settings: Mapping[str, Any]) -> Result[None]:
        """Merge ``settings`` over the current ones and persist the result.

        Invalid results are rejected with ``SchemaValidationError`` and
        nothing is written.
        """
        if not isinstance(settings, Mapping):
            return Err(
                ValidationError(
                    "settings",
                    f"expected object, got {type(settings).__name__}",
                    code=ValidationError.INVALID_TYPE,
                )
            )

        async with self.store.exclusive():
            current = await self._load()
            previous = deepcopy(self._cache)
            updated = {
                **deepcopy(current),
                **deepcopy(dict(settings)),
                "version": self.current_version,
            }

            issues = self.schema.validate(updated)
            if issues:
                error = SchemaValidationError(issues)
                logger.debug(f"Rejected settings update: {error}")
                return Err(error)

            written = await self.store.set(self.storage_key, updated)
            if isinstance(written, Err):
                return written

            self._cache = updated

        logger.debug("Settings saved")
        await self._notify(updated, previous)
        return Ok(None)

    async def get_setting(self, key: str) -> Result[Any]:
        if key not in self.schema:
            return Err(
                ValidationError(key, "unknown setting", code=ValidationError.UNKNOWN_FIELD)
            )

        loaded = await self.load_settings()
        if isinstance(loaded, Err):
            return loaded
        return Ok(loaded.value.get(key))

    async def update_setting(self, key: str, value: Any) -> Result[None]:
        """Validate and save a single field."""
        if key not in self.schema:
            return Err(
                ValidationError(key, "unknown setting", code=ValidationError.UNKNOWN_FIELD)
            )

        if value is None:
            if self.schema[key].required:
                return Err(
                    ValidationError(
                        key, "required setting is missing", code=ValidationError.MISSING
                    )
                )
        else:
            issue = self.schema.validate_value(key, value)
            if issue is not None:
                return Err(issue)

        return await self.save_settings({key: value})

    async def reset_settings(self) -> Result[None]:
        """Persist and cache the schema defaults."""
        defaults = self.get_default_settings()

        async with self.store.exclusive():
            previous = deepcopy(self._cache)
            written = await self.store.set(self.storage_key, defaults)
            if isinstance(written, Err):
                return written
            self._cache = deepcopy(defaults)

        logger.info("Settings reset to defaults")
        await self._notify(defaults, previous)
        return Ok(None)

    def validate_settings(self, settings: Any) -> Result[bool]:
        """Check ``settings`` without changing anything."""
        issues = self.schema.validate(settings)
        if issues:
            return Err(SchemaValidationError(issues))
        return Ok(True)

    def sanitize_settings(self, settings: Any) -> dict[str, Any]:
        """Repair ``settings`` so that it validates."""
        return self.schema.sanitize(settings)

    def clear_cache(self) -> None:
        self._cache = None

    def get_schema(self) -> SettingsSchema:
        return self.schema

    def get_default_settings(self) -> dict[str, Any]:
        return self.schema.defaults()
