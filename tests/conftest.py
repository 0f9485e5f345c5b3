"""Pytest configuration and fixtures."""

import os

import pytest

from prefstore.storage.backends import BackendKind, MemoryBackend
from prefstore.storage.locks import NamespaceLocks
from prefstore.storage.store import NamespacedStore


class FlakyBackend(MemoryBackend):
    """Memory backend whose calls can be made to fail per physical key."""

    def __init__(
        self,
        kind: BackendKind = BackendKind.LOCAL,
        available: bool = True,
        quota_bytes: int | None = None,
    ):
        super().__init__(kind, quota_bytes)
        self.available = available
        self.fail_get: set[str] = set()
        self.fail_set: set[str] = set()
        self.fail_remove: set[str] = set()
        self.fail_keys = False
        self.error: Exception = OSError("medium rejected the call")
        self.calls: list[tuple[str, str]] = []

    def probe(self) -> bool:
        return self.available

    def _maybe_fail(self, failing: set[str], key: str) -> None:
        if key in failing or "*" in failing:
            raise self.error

    async def get(self, key):
        self.calls.append(("get", key))
        self._maybe_fail(self.fail_get, key)
        return await super().get(key)

    async def set(self, key, data):
        self.calls.append(("set", key))
        self._maybe_fail(self.fail_set, key)
        await super().set(key, data)

    async def remove(self, key):
        self.calls.append(("remove", key))
        self._maybe_fail(self.fail_remove, key)
        return await super().remove(key)

    async def keys(self):
        if self.fail_keys:
            raise self.error
        return await super().keys()


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch, tmp_path):
    """Isolate environment variables and config lookup for each test.

    This prevents test pollution where one test's environment
    changes affect other tests.
    """
    original_env = os.environ.copy()

    for name in list(os.environ):
        if name.startswith("PREFSTORE_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.chdir(tmp_path)

    yield

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def flaky_backend():
    """Local-persistent backend that tests can make fail."""
    return FlakyBackend()


@pytest.fixture
def make_backend():
    """Factory for extra flaky backends."""
    return FlakyBackend


@pytest.fixture
def locks():
    return NamespaceLocks()


@pytest.fixture
def store(flaky_backend, locks):
    """Store in namespace ``app`` backed by ``flaky_backend``."""
    store = NamespacedStore(
        "app",
        [flaky_backend],
        preferred_kind=BackendKind.LOCAL,
        locks=locks,
    )
    yield store
    store.close()


@pytest.fixture
def legacy_data():
    """Aggregate as written by the first released version."""
    return {
        "theaterModeSettings": {
            "isEnabled": True,
            "opacity": 0.8,
            "shortcutKey": "Ctrl+Shift+T",
            "version": "1.0.0",
        }
    }


@pytest.fixture
def current_settings():
    """A valid settings record at the latest version."""
    return {
        "theaterModeEnabled": False,
        "opacity": 0.5,
        "keyboardShortcut": "m",
        "theme": "dark",
        "autoEnable": True,
        "version": "1.2.0",
    }
