"""Base storage backend interface."""

from abc import ABC, abstractmethod
from enum import Enum

from prefstore.core.errors import QuotaExceededError


class BackendKind(str, Enum):
    """Storage medium categories."""

    SYNC = "sync"  # remote-synced
    LOCAL = "local"  # local-persistent
    SESSION = "session"  # session-scoped
    MEMORY = "memory"  # in-process, always available


class BaseBackend(ABC):
    """Abstract base class for storage backends.

    Backends operate on physical keys and opaque encoded bytes. They may raise
    whatever their medium raises; the store normalizes failures.
    """

    kind: BackendKind

    def __init__(self, kind: BackendKind, quota_bytes: int | None = None):
        self.kind = BackendKind(kind)
        self.quota_bytes = quota_bytes

    def probe(self) -> bool:
        """Check whether the medium is usable."""
        return True

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Read data by key."""
        pass

    @abstractmethod
    async def set(self, key: str, data: bytes) -> None:
        """Write data with key."""
        pass

    @abstractmethod
    async def remove(self, key: str) -> bool:
        """Delete data by key."""
        pass

    @abstractmethod
    async def keys(self) -> list[str]:
        """Get all keys."""
        pass

    def close(self) -> None:
        """Release backend resources."""
        pass

    def _check_quota(self, key: str, size: int, used_by_others: int) -> None:
        """Raise if writing ``size`` bytes would exceed the quota."""
        if self.quota_bytes is None:
            return
        if used_by_others + size > self.quota_bytes:
            raise QuotaExceededError(
                f"Storage quota exceeded: {used_by_others + size} > {self.quota_bytes} bytes",
                key=key,
                backend_kind=self.kind.value,
            )
