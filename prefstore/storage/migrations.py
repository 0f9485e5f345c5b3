"""Versioned migration of the data stored under one namespace.

The engine treats every non-reserved key of the namespace as one aggregate.
It detects the aggregate's version, backs it up, runs the pending steps of a
version chain and writes the result back. A failing step or a failing write
restores the pre-migration aggregate before the error is returned.

Reserved keys:
- ``backup_<timestamp>``: snapshot taken before a migration
- ``migrationHistory``: the newest migration records
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from copy import deepcopy
from datetime import datetime, timedelta, timezone
from typing import Any

import msgspec

from prefstore.core.errors import (
    BackendUnavailableError,
    ConfigurationError,
    MigrationError,
)
from prefstore.core.reporting import ErrorReporter, report_error
from prefstore.core.result import Err, Ok, Result
from prefstore.core.versioning import MigrationStep, VersionChain
from prefstore.quality.integrity import IntegrityChecker, IntegrityReport

from .store import NamespacedStore
from .versions import LEGACY_KEY, MIGRATION_CHAIN, SETTINGS_KEY

logger = logging.getLogger(__name__)

HISTORY_KEY = "migrationHistory"
BACKUP_PREFIX = "backup_"
DEFAULT_HISTORY_LIMIT = 50
DEFAULT_KEEP_COUNT = 5


def iso_timestamp(moment: datetime) -> str:
    """UTC timestamp with millisecond precision, e.g. ``2024-01-02T03:04:05.678Z``."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def backup_key_for(timestamp: str) -> str:
    return BACKUP_PREFIX + re.sub(r"[:.]", "_", timestamp)


def is_reserved_key(key: str) -> bool:
    """Keys owned by the migration engine rather than the aggregate."""
    return key.startswith(BACKUP_PREFIX) or key == HISTORY_KEY


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryRecord(msgspec.Struct, frozen=True, kw_only=True, rename="camel"):
    """One migration run as stored under ``migrationHistory``."""

    from_version: str
    to_version: str
    timestamp: str
    backup_key: str | None = None
    success: bool = True


class BackupRecord(msgspec.Struct, frozen=True, kw_only=True):
    """Snapshot of the aggregate taken before a migration."""

    timestamp: str
    version: str
    data: dict[str, Any] = msgspec.field(default_factory=dict)


class BackupInfo(msgspec.Struct, frozen=True, kw_only=True):
    """Listing entry for an available backup."""

    key: str
    timestamp: str
    version: str
    size: int


class Changes(msgspec.Struct, frozen=True, kw_only=True):
    """Top-level keys a migration added, removed and modified."""

    added: list[str] = msgspec.field(default_factory=list)
    removed: list[str] = msgspec.field(default_factory=list)
    modified: list[str] = msgspec.field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)


class MigrationStatus(msgspec.Struct, frozen=True, kw_only=True):
    """Whether the stored data lags behind a target version."""

    needs_migration: bool
    current_version: str
    target_version: str
    available_versions: list[str] = msgspec.field(default_factory=list)
    history: list[HistoryRecord] = msgspec.field(default_factory=list)
    data_keys: list[str] = msgspec.field(default_factory=list)
    estimated_steps: int = 0


class MigrationOutcome(msgspec.Struct, frozen=True, kw_only=True):
    """Result of a migration run."""

    migrated: bool
    from_version: str
    to_version: str
    backup_key: str | None = None
    dry_run: bool = False
    changes: Changes = msgspec.field(default_factory=Changes)


def calculate_changes(old: Mapping[str, Any], new: Mapping[str, Any]) -> Changes:
    """Diff two aggregates by top-level key."""
    return Changes(
        added=[key for key in new if key not in old],
        removed=[key for key in old if key not in new],
        modified=[key for key in old if key in new and old[key] != new[key]],
    )


class BackupManager:
    """Creates, lists, loads and prunes backup records in a store."""

    def __init__(
        self,
        store: NamespacedStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self._clock = clock

    async def create(self, data: Mapping[str, Any], version: str) -> Result[str]:
        """Store a snapshot of ``data`` and return its key."""
        moment = self._clock()
        while True:
            timestamp = iso_timestamp(moment)
            key = backup_key_for(timestamp)
            existing = await self.store.get(key)
            if isinstance(existing, Err):
                return existing
            if existing.value is None:
                break
            moment += timedelta(milliseconds=1)

        record = BackupRecord(timestamp=timestamp, version=version, data=deepcopy(dict(data)))
        written = await self.store.set(key, msgspec.to_builtins(record))
        if isinstance(written, Err):
            return written

        logger.debug(f"Backup created: {key}")
        return Ok(key)

    async def load(self, key: str) -> Result[BackupRecord]:
        """Read one backup record."""
        if not key.startswith(BACKUP_PREFIX):
            return Err(MigrationError(f"Not a backup key: {key}"))

        stored = await self.store.get(key)
        if isinstance(stored, Err):
            return stored
        if stored.value is None:
            return Err(MigrationError(f"Backup not found: {key}"))

        try:
            return Ok(msgspec.convert(stored.value, BackupRecord))
        except msgspec.ValidationError as e:
            return Err(
                BackendUnavailableError(f"Backup {key} is malformed: {e}", key=key)
            )

    async def list_backups(self) -> Result[list[BackupInfo]]:
        """Readable backups, newest first."""
        listed = await self.store.keys()
        if isinstance(listed, Err):
            return listed

        backups = []
        for key in listed.value:
            if not key.startswith(BACKUP_PREFIX):
                continue
            loaded = await self.load(key)
            if isinstance(loaded, Err):
                logger.warning(f"Skipping unreadable backup {key}: {loaded.error}")
                continue
            record = loaded.value
            backups.append(
                BackupInfo(
                    key=key,
                    timestamp=record.timestamp,
                    version=record.version,
                    size=len(msgspec.json.encode(record.data)),
                )
            )

        backups.sort(key=lambda b: (b.timestamp, b.key), reverse=True)
        return Ok(backups)

    async def cleanup(self, keep_count: int = DEFAULT_KEEP_COUNT) -> Result[int]:
        """Delete all but the newest ``keep_count`` backups."""
        if keep_count < 0:
            return Err(MigrationError(f"keep_count must be >= 0, got {keep_count}"))

        listed = await self.list_backups()
        if isinstance(listed, Err):
            return listed

        backups = listed.value
        deleted = 0
        for backup in backups[keep_count:]:
            removed = await self.store.remove(backup.key)
            if isinstance(removed, Ok):
                deleted += 1
            else:
                logger.warning(f"Could not delete backup {backup.key}: {removed.error}")

        logger.info(
            f"Backup cleanup completed: {deleted} deleted, "
            f"{len(backups) - deleted} remaining"
        )
        return Ok(deleted)


class MigrationEngine:
    """Migrates, backs up, restores and checks one namespace's data."""

    def __init__(
        self,
        store: NamespacedStore | None,
        steps: VersionChain | Sequence[MigrationStep] | None = None,
        *,
        dry_run: bool = False,
        create_backup: bool = True,
        error_reporter: ErrorReporter | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        integrity_checker: IntegrityChecker | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if store is None:
            raise ConfigurationError("MigrationEngine requires a store")

        self.store = store
        if steps is None:
            self.chain = MIGRATION_CHAIN
        elif isinstance(steps, VersionChain):
            self.chain = steps
        else:
            self.chain = VersionChain(steps)

        self.dry_run = dry_run
        self.create_backup = create_backup
        self.history_limit = history_limit
        self._reporter = error_reporter
        self._clock = clock
        self.backups = BackupManager(store, clock=clock)
        self.integrity_checker = integrity_checker or IntegrityChecker(
            known_keys=self._known_keys()
        )

        logger.debug(
            f"MigrationEngine initialized (dry_run={dry_run}, create_backup={create_backup})"
        )

    def _known_keys(self) -> list[str]:
        keys = {SETTINGS_KEY, LEGACY_KEY}
        for step in self.chain.steps:
            keys.update(step.legacy_keys)
            keys.update(step.new_keys)
        return sorted(keys)

    @property
    def current_version(self) -> str:
        return self.chain.current

    def detect_version(self, data: Mapping[str, Any]) -> str:
        """Version of a stored aggregate."""
        settings = data.get(SETTINGS_KEY)
        if isinstance(settings, Mapping) and settings.get("version"):
            return str(settings["version"])

        legacy = data.get(LEGACY_KEY)
        if legacy:
            if isinstance(legacy, Mapping) and legacy.get("version"):
                return str(legacy["version"])
            return self.chain.earliest

        if not data:
            return self.chain.current

        return self.chain.earliest

    def _estimated_steps(self, version: str, target: str) -> int:
        if version not in self.chain:
            return len(self.chain)
        return max(self.chain.index(target) - self.chain.index(version), 0)

    async def _read_aggregate(self) -> Result[dict[str, Any]]:
        listed = await self.store.keys()
        if isinstance(listed, Err):
            return listed

        data: dict[str, Any] = {}
        for key in listed.value:
            if is_reserved_key(key):
                continue
            value = await self.store.get(key)
            if isinstance(value, Err):
                return value
            data[key] = value.value
        return Ok(data)

    async def _write_aggregate(
        self, data: Mapping[str, Any], previous: Mapping[str, Any]
    ) -> Result[None]:
        """Write changed keys of ``data`` and remove keys it no longer has."""
        for key, value in data.items():
            if key in previous and previous[key] == value:
                continue
            written = await self.store.set(key, value)
            if isinstance(written, Err):
                return written

        for key in previous:
            if key not in data:
                removed = await self.store.remove(key)
                if isinstance(removed, Err):
                    return removed

        return Ok(None)

    async def _restore_aggregate(self, pre_image: Mapping[str, Any]) -> Result[None]:
        """Overwrite the aggregate with ``pre_image`` verbatim."""
        for key, value in pre_image.items():
            written = await self.store.set(key, value)
            if isinstance(written, Err):
                return written

        listed = await self.store.keys()
        if isinstance(listed, Err):
            return listed

        for key in listed.value:
            if not is_reserved_key(key) and key not in pre_image:
                removed = await self.store.remove(key)
                if isinstance(removed, Err):
                    return removed

        return Ok(None)

    async def _rollback(self, pre_image: Mapping[str, Any], backup_key: str | None) -> None:
        restored = await self._restore_aggregate(pre_image)
        if isinstance(restored, Err):
            logger.error(f"Rollback failed: {restored.error}")
            report_error(
                self._reporter,
                restored.error,
                operation="rollback",
                backup_key=backup_key,
                namespace=self.store.namespace,
            )
        else:
            logger.info(f"Rolled back to pre-migration data (backup {backup_key})")

    async def _load_history(self) -> Result[list[HistoryRecord]]:
        stored = await self.store.get(HISTORY_KEY, default=[])
        if isinstance(stored, Err):
            return stored
        try:
            return Ok(msgspec.convert(stored.value, list[HistoryRecord]))
        except msgspec.ValidationError as e:
            return Err(
                BackendUnavailableError(
                    f"Migration history is malformed: {e}", key=HISTORY_KEY
                )
            )

    async def _record_history(self, record: HistoryRecord) -> None:
        loaded = await self._load_history()
        history = loaded.value if isinstance(loaded, Ok) else []
        history.append(record)
        history = history[-self.history_limit :]

        written = await self.store.set(HISTORY_KEY, msgspec.to_builtins(history))
        if isinstance(written, Err):
            logger.warning(f"Could not record migration history: {written.error}")

    async def check_migration_needed(
        self, target_version: str | None = None
    ) -> Result[MigrationStatus]:
        """Compare the stored version with ``target_version`` (default: current)."""
        target = target_version or self.chain.current

        read = await self._read_aggregate()
        if isinstance(read, Err):
            return read
        data = read.value

        version = self.detect_version(data)
        needs_migration = version != target

        loaded = await self._load_history()
        history = loaded.value if isinstance(loaded, Ok) else []

        status = MigrationStatus(
            needs_migration=needs_migration,
            current_version=version,
            target_version=target,
            available_versions=self.chain.versions,
            history=history,
            data_keys=list(data),
            estimated_steps=self._estimated_steps(version, target) if needs_migration else 0,
        )
        logger.debug(
            f"Migration check: stored {version}, target {target}, needed={needs_migration}"
        )
        return Ok(status)

    async def migrate(
        self,
        target_version: str | None = None,
        *,
        force: bool = False,
        dry_run: bool | None = None,
    ) -> Result[MigrationOutcome]:
        """Bring the stored aggregate to ``target_version``.

        Args:
            target_version: Version to reach; the chain's current version by default.
            force: Run even when the stored version already equals the target.
            dry_run: Compute the outcome without writing anything. Defaults to
                the engine's ``dry_run`` setting.

        Returns:
            The outcome, or the error after the pre-migration data was restored.
        """
        async with self.store.exclusive():
            return await self._migrate(
                target_version or self.chain.current,
                force=force,
                dry_run=self.dry_run if dry_run is None else dry_run,
            )

    async def _migrate(
        self, target: str, *, force: bool, dry_run: bool
    ) -> Result[MigrationOutcome]:
        logger.info(f"Starting migration (target={target}, force={force}, dry_run={dry_run})")

        if target not in self.chain:
            return Err(MigrationError(f"Unknown target version: {target}"))

        read = await self._read_aggregate()
        if isinstance(read, Err):
            return read
        data = read.value
        from_version = self.detect_version(data)

        if from_version == target and not force:
            logger.info("No migration needed")
            return Ok(
                MigrationOutcome(
                    migrated=False,
                    from_version=from_version,
                    to_version=target,
                    dry_run=dry_run,
                )
            )

        try:
            self.chain.pending(from_version, target)
        except MigrationError as e:
            return Err(e)

        backup_key = None
        if self.create_backup and not dry_run:
            created = await self.backups.create(data, from_version)
            if isinstance(created, Err):
                return created
            backup_key = created.value

        try:
            migrated = self.chain.apply(data, from_version, target)
        except MigrationError as e:
            report_error(
                self._reporter,
                e,
                operation="migrate",
                from_version=from_version,
                target_version=target,
                namespace=self.store.namespace,
            )
            if not dry_run:
                if backup_key is not None:
                    await self._restore_from_backup(backup_key)
                await self._record_failure(from_version, target, backup_key)
            return Err(e)

        changes = calculate_changes(data, migrated)

        if not dry_run:
            written = await self._write_aggregate(migrated, data)
            if isinstance(written, Err):
                error = MigrationError(
                    f"could not persist migrated data: {written.error}",
                    step_version=target,
                    cause=written.error,
                    aggregate=data,
                )
                error.__cause__ = written.error
                logger.error(str(error))
                report_error(
                    self._reporter,
                    error,
                    operation="migrate",
                    from_version=from_version,
                    target_version=target,
                    namespace=self.store.namespace,
                )
                await self._rollback(data, backup_key)
                await self._record_failure(from_version, target, backup_key)
                return Err(error)

            await self._record_history(
                HistoryRecord(
                    from_version=from_version,
                    to_version=target,
                    timestamp=iso_timestamp(self._clock()),
                    backup_key=backup_key,
                    success=True,
                )
            )

        outcome = MigrationOutcome(
            migrated=True,
            from_version=from_version,
            to_version=target,
            backup_key=backup_key,
            dry_run=dry_run,
            changes=changes,
        )
        logger.info(
            f"Migration {from_version} -> {target} completed "
            f"(added={changes.added}, removed={changes.removed}, modified={changes.modified})"
        )
        return Ok(outcome)

    async def _record_failure(
        self, from_version: str, target: str, backup_key: str | None
    ) -> None:
        await self._record_history(
            HistoryRecord(
                from_version=from_version,
                to_version=target,
                timestamp=iso_timestamp(self._clock()),
                backup_key=backup_key,
                success=False,
            )
        )

    async def validate_data_integrity(self) -> Result[IntegrityReport]:
        """Check the stored aggregate without changing it."""
        read = await self._read_aggregate()
        if isinstance(read, Err):
            return read

        report = self.integrity_checker.check(read.value)
        logger.info(
            f"Data integrity validation completed: valid={report.is_valid}, "
            f"issues={len(report.issues)}"
        )
        return Ok(report)

    async def get_available_backups(self) -> Result[list[BackupInfo]]:
        return await self.backups.list_backups()

    async def cleanup_old_backups(self, keep_count: int = DEFAULT_KEEP_COUNT) -> Result[int]:
        """Delete all but the newest ``keep_count`` backups."""
        async with self.store.exclusive():
            return await self.backups.cleanup(keep_count)

    async def restore_from_backup(self, backup_key: str) -> Result[BackupRecord]:
        """Replace the aggregate with a backup's data.

        The backup's data is written as is, without validation.
        """
        async with self.store.exclusive():
            logger.info(f"Restoring from backup {backup_key}")
            return await self._restore_from_backup(backup_key)

    async def _restore_from_backup(self, backup_key: str) -> Result[BackupRecord]:
        loaded = await self.backups.load(backup_key)
        if isinstance(loaded, Err):
            return loaded
        record = loaded.value

        restored = await self._restore_aggregate(record.data)
        if isinstance(restored, Err):
            report_error(
                self._reporter,
                restored.error,
                operation="restore_from_backup",
                backup_key=backup_key,
                namespace=self.store.namespace,
            )
            return restored

        logger.info(f"Restored from backup {backup_key} (version {record.version})")
        return Ok(record)

    async def get_migration_history(self) -> Result[list[HistoryRecord]]:
        return await self._load_history()
