"""In-memory storage backend."""

from .base import BackendKind, BaseBackend


class MemoryBackend(BaseBackend):
    """In-process storage that is never unavailable."""

    def __init__(
        self,
        kind: BackendKind = BackendKind.MEMORY,
        quota_bytes: int | None = None,
    ):
        super().__init__(kind, quota_bytes)
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set(self, key: str, data: bytes) -> None:
        used = sum(len(v) for k, v in self._data.items() if k != key)
        self._check_quota(key, len(data), used)
        self._data[key] = bytes(data)

    async def remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self) -> list[str]:
        return list(self._data.keys())

    def clear(self) -> None:
        """Drop every stored key."""
        self._data.clear()

    def close(self) -> None:
        self.clear()

    def get_size(self) -> int:
        """Get the number of stored items."""
        return len(self._data)

    def get_memory_usage(self) -> int:
        """Total encoded bytes held."""
        return sum(len(v) for v in self._data.values())
