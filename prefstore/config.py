"""Configuration loading and store construction."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import msgspec
import yaml

from prefstore.core.errors import ConfigurationError
from prefstore.core.reporting import ErrorReporter
from prefstore.storage.backends import (
    BackendKind,
    BaseBackend,
    FileSystemBackend,
    SQLiteBackend,
)
from prefstore.storage.locks import NamespaceLocks
from prefstore.storage.store import NamespacedStore

logger = logging.getLogger(__name__)

ENV_PREFIX = "PREFSTORE_"
ENV_KEYS = {
    "NAMESPACE": "namespace",
    "DATA_DIR": "data_dir",
    "PREFERRED_BACKEND": "preferred_backend",
    "SYNC_PATH": "sync_path",
    "LOG_LEVEL": "log_level",
}


class StoreConfig(msgspec.Struct, frozen=True, kw_only=True):
    """Settings for building a store and its backends."""

    namespace: str = "app"
    preferred_backend: BackendKind = BackendKind.SYNC
    fallback_backends: tuple[BackendKind, ...] = (BackendKind.LOCAL, BackendKind.MEMORY)
    data_dir: str | None = None
    sync_path: str | None = None
    enable_session: bool = True
    quota_bytes: int | None = None
    create_backup: bool = True
    backup_keep_count: int = 5
    log_level: str = "WARNING"

    @property
    def data_path(self) -> Path:
        """Directory for local-persistent data."""
        if self.data_dir:
            return Path(self.data_dir).expanduser()
        return default_data_dir()


def default_data_dir() -> Path:
    xdg_data_home = Path(
        os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share")
    )
    return xdg_data_home / "prefstore"


def from_file(path: Path) -> dict[str, Any]:
    """Load configuration from a YAML file."""
    try:
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Error reading config file {path}: {e}") from e

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return loaded


def get_config_paths() -> list[Path]:
    """Configuration paths in precedence order, lowest first."""
    paths = []

    # User config
    xdg_config_home = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    paths.append(xdg_config_home / "prefstore" / "config.yaml")

    # Project config
    paths.append(Path(".prefstore.yaml"))
    paths.append(Path("prefstore.yaml"))

    return paths


def env_overrides() -> dict[str, Any]:
    overrides = {}
    for suffix, key in ENV_KEYS.items():
        if value := os.environ.get(ENV_PREFIX + suffix):
            overrides[key] = value
    return overrides


def merge_configs(*configs: dict[str, Any]) -> dict[str, Any]:
    """Merge multiple configuration dictionaries."""
    result: dict[str, Any] = {}
    for config in configs:
        result = _deep_merge(result, config)
    return result


def load_config(
    config_path: Path | None = None, overrides: dict[str, Any] | None = None
) -> StoreConfig:
    """Load configuration from files, environment variables and overrides.

    Files are read in ``get_config_paths()`` order with ``config_path`` last;
    unreadable default files are skipped, an unreadable ``config_path`` is an
    error.
    """
    config: dict[str, Any] = {}

    for path in get_config_paths():
        if path.exists():
            try:
                config = merge_configs(config, from_file(path))
            except ConfigurationError as e:
                logger.warning(f"Ignoring config file: {e}")

    if config_path is not None:
        config = merge_configs(config, from_file(Path(config_path)))

    config = merge_configs(config, env_overrides(), overrides or {})

    try:
        return msgspec.convert(config, StoreConfig)
    except msgspec.ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def build_backends(config: StoreConfig) -> list[BaseBackend]:
    """Backends for every medium the configuration enables."""
    backends: list[BaseBackend] = []

    if config.sync_path:
        backends.append(
            SQLiteBackend(
                Path(config.sync_path).expanduser(),
                kind=BackendKind.SYNC,
                quota_bytes=config.quota_bytes,
            )
        )

    backends.append(
        FileSystemBackend(
            config.data_path / "local",
            kind=BackendKind.LOCAL,
            quota_bytes=config.quota_bytes,
        )
    )

    if config.enable_session:
        backends.append(
            SQLiteBackend(
                ":memory:", kind=BackendKind.SESSION, quota_bytes=config.quota_bytes
            )
        )

    return backends


def build_store(
    config: StoreConfig,
    *,
    locks: NamespaceLocks | None = None,
    error_reporter: ErrorReporter | None = None,
) -> NamespacedStore:
    """Create a store owning the backends ``config`` describes."""
    return NamespacedStore(
        config.namespace,
        build_backends(config),
        preferred_kind=config.preferred_backend,
        fallback_kinds=config.fallback_backends,
        locks=locks,
        error_reporter=error_reporter,
        owns_backends=True,
    )


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result
