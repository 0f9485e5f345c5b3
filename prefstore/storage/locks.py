"""Per-namespace exclusive locks."""

import asyncio


class NamespaceLocks:
    """Registry handing out one ``asyncio.Lock`` per namespace.

    Stores built with the same registry share a lock for equal namespaces,
    so migrations, restores and settings writes never interleave.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, namespace: str) -> asyncio.Lock:
        """Get the lock for ``namespace``, creating it on first use."""
        if namespace not in self._locks:
            self._locks[namespace] = asyncio.Lock()
        return self._locks[namespace]

    def __contains__(self, namespace: object) -> bool:
        return namespace in self._locks

    def __len__(self) -> int:
        return len(self._locks)
