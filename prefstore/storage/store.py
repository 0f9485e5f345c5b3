"""Namespaced key/value store over pluggable backends.

The store picks one backend at construction (preferred kind, then the
fallback list, then in-memory), prefixes every key with its namespace,
encodes values as JSON with msgspec, and turns whatever the medium raises
into the storage error taxonomy. Every public operation returns a
``Result``.
"""

from __future__ import annotations

import errno
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Mapping, Sequence
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

import msgspec

from prefstore.core.errors import (
    BackendUnavailableError,
    BulkOperationError,
    ConfigurationError,
    PrefStoreError,
    QuotaExceededError,
    SerializationError,
    StorageError,
)
from prefstore.core.reporting import ErrorReporter, report_error
from prefstore.core.result import Err, Ok, Result

from .backends import BackendKind, BaseBackend, MemoryBackend
from .events import ChangeEvent, Listener, ListenerRegistry
from .locks import NamespaceLocks

logger = logging.getLogger(__name__)

QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()

# Change events raised while a namespace lock is held, delivered on release.
_Deferred = list[tuple[ListenerRegistry, ChangeEvent]]
_deferred_events: ContextVar[_Deferred | None] = ContextVar(
    "prefstore_deferred_events", default=None
)


@dataclass
class BulkResult:
    """Outcome of a bulk operation: what succeeded and what failed, per key."""

    values: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, StorageError] = field(default_factory=dict)

    @property
    def all_success(self) -> bool:
        return not self.errors

    @property
    def partial_success(self) -> bool:
        return bool(self.values) and bool(self.errors)

    @property
    def success_rate(self) -> float:
        total = len(self.values) + len(self.errors)
        if total == 0:
            return 100.0
        return (len(self.values) / total) * 100


def encode_value(value: Any, *, key: str | None = None) -> bytes:
    """Encode ``value`` as JSON bytes.

    Raises:
        SerializationError: if the value is not JSON-serializable.
    """
    try:
        return msgspec.json.encode(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise SerializationError(
            f"Cannot serialize value for {key!r}: {e}", key=key
        ) from e


def decode_value(data: bytes, *, key: str | None = None, backend_kind: str | None = None) -> Any:
    """Decode stored JSON bytes.

    Raises:
        BackendUnavailableError: if the bytes are not valid JSON.
    """
    try:
        return msgspec.json.decode(data)
    except msgspec.DecodeError as e:
        raise BackendUnavailableError(
            f"Stored value for {key!r} is unreadable: {e}",
            key=key,
            backend_kind=backend_kind,
        ) from e


class NamespacedStore:
    """Key/value store bound to one namespace and one selected backend."""

    def __init__(
        self,
        namespace: str,
        backends: Sequence[BaseBackend] | None,
        *,
        preferred_kind: BackendKind | str = BackendKind.SYNC,
        fallback_kinds: Sequence[BackendKind | str] = (
            BackendKind.LOCAL,
            BackendKind.MEMORY,
        ),
        memory_backend: MemoryBackend | None = None,
        locks: NamespaceLocks | None = None,
        error_reporter: ErrorReporter | None = None,
        owns_backends: bool = False,
    ):
        if backends is None:
            raise ConfigurationError("NamespacedStore requires a list of backends")
        if not namespace:
            raise ConfigurationError("NamespacedStore requires a namespace")

        self._namespace = namespace
        self._prefix = f"{namespace}."
        self._memory = memory_backend or MemoryBackend()
        self._locks = locks or NamespaceLocks()
        self._reporter = error_reporter
        self._listeners = ListenerRegistry()
        self._owns_backends = owns_backends
        self._closed = False

        self._backends: dict[BackendKind, BaseBackend] = {
            BackendKind.MEMORY: self._memory
        }
        for backend in backends:
            if backend.kind in self._backends:
                logger.debug(f"Ignoring duplicate backend for {backend.kind.value}")
                continue
            if self._probe(backend):
                self._backends[backend.kind] = backend
            else:
                logger.warning(f"Backend {backend.kind.value} is unavailable")

        self._selected = self._select(
            BackendKind(preferred_kind), [BackendKind(k) for k in fallback_kinds]
        )
        logger.debug(f"Store {namespace!r} using {self._selected.value} backend")

    def _probe(self, backend: BaseBackend) -> bool:
        try:
            return bool(backend.probe())
        except Exception as e:
            logger.warning(f"Probing {backend.kind.value} backend failed: {e}")
            return False

    def _select(
        self, preferred: BackendKind, fallbacks: list[BackendKind]
    ) -> BackendKind:
        if preferred in self._backends:
            return preferred
        for kind in fallbacks:
            if kind in self._backends:
                logger.info(
                    f"Preferred backend {preferred.value} unavailable, using {kind.value}"
                )
                return kind
        logger.warning("No configured backend available, using in-memory storage")
        return BackendKind.MEMORY

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def selected_kind(self) -> BackendKind:
        """Backend kind used when a call names none."""
        return self._selected

    @property
    def available_kinds(self) -> list[BackendKind]:
        return list(self._backends)

    @property
    def closed(self) -> bool:
        return self._closed

    def physical_key(self, key: str) -> str:
        """Key as written to the medium."""
        return f"{self._prefix}{key}"

    def _backend_for(self, backend_kind: BackendKind | str | None) -> Result[BaseBackend]:
        if self._closed:
            return Err(BackendUnavailableError("store is closed"))
        if backend_kind is None:
            return Ok(self._backends[self._selected])
        try:
            kind = BackendKind(backend_kind)
        except ValueError:
            return Err(
                BackendUnavailableError(
                    f"Unknown backend kind: {backend_kind}", backend_kind=str(backend_kind)
                )
            )
        if kind not in self._backends:
            return Err(
                BackendUnavailableError(
                    f"Backend {kind.value} is not available", backend_kind=kind.value
                )
            )
        return Ok(self._backends[kind])

    def _normalize(
        self, error: Exception, *, key: str | None, backend: BaseBackend, operation: str
    ) -> StorageError:
        """Map a medium-specific failure onto the storage error taxonomy."""
        kind = backend.kind.value
        if isinstance(error, StorageError):
            error.key = key
            error.backend_kind = kind
            return error
        if isinstance(error, PrefStoreError):
            normalized: StorageError = BackendUnavailableError(
                error.message, key=key, backend_kind=kind
            )
        elif isinstance(error, OSError) and error.errno in QUOTA_ERRNOS:
            normalized = QuotaExceededError(
                f"Storage quota exceeded: {error}", key=key, backend_kind=kind
            )
        else:
            normalized = BackendUnavailableError(
                f"{operation} failed on {kind} backend: {error}",
                key=key,
                backend_kind=kind,
            )
        normalized.__cause__ = error
        logger.debug(f"{operation} on {key!r} failed: {error}")
        report_error(
            self._reporter,
            normalized,
            operation=operation,
            key=key,
            backend_kind=kind,
            namespace=self._namespace,
        )
        return normalized

    async def _read(self, backend: BaseBackend, key: str) -> Any:
        raw = await backend.get(self.physical_key(key))
        if raw is None:
            return None
        return decode_value(raw, key=key, backend_kind=backend.kind.value)

    async def _peek(self, backend: BaseBackend, key: str) -> Any:
        """Current value for change events; unreadable values count as absent."""
        try:
            return await self._read(backend, key)
        except Exception as e:
            logger.debug(f"Could not read previous value of {key!r}: {e}")
            return None

    async def get(
        self,
        key: str,
        *,
        backend_kind: BackendKind | str | None = None,
        default: Any = MISSING,
    ) -> Result[Any]:
        """Read ``key``.

        Absent or null values yield ``default`` when one is given, else None.
        """
        selected = self._backend_for(backend_kind)
        if isinstance(selected, Err):
            return selected
        backend = selected.value

        try:
            value = await self._read(backend, key)
        except Exception as e:
            return Err(self._normalize(e, key=key, backend=backend, operation="get"))

        if value is None and default is not MISSING:
            return Ok(default)
        return Ok(value)

    async def set(
        self, key: str, value: Any, *, backend_kind: BackendKind | str | None = None
    ) -> Result[None]:
        """Write ``value`` under ``key`` and notify listeners."""
        selected = self._backend_for(backend_kind)
        if isinstance(selected, Err):
            return selected
        backend = selected.value

        try:
            data = encode_value(value, key=key)
        except SerializationError as e:
            e.backend_kind = backend.kind.value
            return Err(e)

        notify = self._listeners.has_listeners(key)
        old_value = await self._peek(backend, key) if notify else None

        try:
            await backend.set(self.physical_key(key), data)
        except Exception as e:
            return Err(self._normalize(e, key=key, backend=backend, operation="set"))

        if notify:
            await self._emit(
                ChangeEvent(
                    key=key,
                    new_value=msgspec.json.decode(data),
                    old_value=old_value,
                    backend_kind=backend.kind.value,
                )
            )
        return Ok(None)

    async def remove(
        self, key: str, *, backend_kind: BackendKind | str | None = None
    ) -> Result[None]:
        """Delete ``key``; listeners hear about it only if something was removed."""
        selected = self._backend_for(backend_kind)
        if isinstance(selected, Err):
            return selected
        return await self._remove(selected.value, key)

    async def _remove(self, backend: BaseBackend, key: str) -> Result[None]:
        notify = self._listeners.has_listeners(key)
        old_value = await self._peek(backend, key) if notify else None

        try:
            removed = await backend.remove(self.physical_key(key))
        except Exception as e:
            return Err(self._normalize(e, key=key, backend=backend, operation="remove"))

        if removed and notify:
            await self._emit(
                ChangeEvent(
                    key=key,
                    new_value=None,
                    old_value=old_value,
                    backend_kind=backend.kind.value,
                )
            )
        return Ok(None)

    async def keys(
        self, *, backend_kind: BackendKind | str | None = None
    ) -> Result[list[str]]:
        """Logical keys stored under this namespace."""
        selected = self._backend_for(backend_kind)
        if isinstance(selected, Err):
            return selected
        backend = selected.value

        try:
            physical = await backend.keys()
        except Exception as e:
            return Err(self._normalize(e, key=None, backend=backend, operation="keys"))

        return Ok(
            sorted(k[len(self._prefix) :] for k in physical if k.startswith(self._prefix))
        )

    async def clear(
        self, *, backend_kind: BackendKind | str | None = None
    ) -> Result[None]:
        """Remove every key under this namespace.

        Each key is attempted; the first failure is returned.
        """
        selected = self._backend_for(backend_kind)
        if isinstance(selected, Err):
            return selected
        backend = selected.value

        listed = await self.keys(backend_kind=backend.kind)
        if isinstance(listed, Err):
            return listed

        first_error: Err | None = None
        for key in listed.value:
            result = await self._remove(backend, key)
            if isinstance(result, Err) and first_error is None:
                first_error = result

        if first_error is not None:
            return first_error
        logger.debug(f"Cleared {len(listed.value)} keys from {self._namespace!r}")
        return Ok(None)

    def _bulk_result(self, bulk: BulkResult, requested: int, operation: str) -> Result[BulkResult]:
        if requested and len(bulk.errors) == requested:
            return Err(
                BulkOperationError(
                    f"{operation} failed for all {requested} keys", errors=bulk.errors
                )
            )
        if bulk.errors:
            logger.warning(
                f"{operation} failed for {len(bulk.errors)} of {requested} keys"
            )
        return Ok(bulk)

    async def get_multiple(
        self, keys: Iterable[str], *, backend_kind: BackendKind | str | None = None
    ) -> Result[BulkResult]:
        """Read several keys independently."""
        keys = list(keys)
        bulk = BulkResult()
        for key in keys:
            result = await self.get(key, backend_kind=backend_kind)
            if isinstance(result, Ok):
                bulk.values[key] = result.value
            else:
                bulk.errors[key] = result.error
        return self._bulk_result(bulk, len(keys), "get_multiple")

    async def set_multiple(
        self,
        items: Mapping[str, Any],
        *,
        backend_kind: BackendKind | str | None = None,
    ) -> Result[BulkResult]:
        """Write several keys independently; ``values`` echoes what was written."""
        bulk = BulkResult()
        for key, value in items.items():
            result = await self.set(key, value, backend_kind=backend_kind)
            if isinstance(result, Ok):
                bulk.values[key] = value
            else:
                bulk.errors[key] = result.error
        return self._bulk_result(bulk, len(items), "set_multiple")

    async def remove_multiple(
        self, keys: Iterable[str], *, backend_kind: BackendKind | str | None = None
    ) -> Result[BulkResult]:
        """Remove several keys independently; removed keys map to True."""
        keys = list(keys)
        bulk = BulkResult()
        for key in keys:
            result = await self.remove(key, backend_kind=backend_kind)
            if isinstance(result, Ok):
                bulk.values[key] = True
            else:
                bulk.errors[key] = result.error
        return self._bulk_result(bulk, len(keys), "remove_multiple")

    def on_change(self, key: str, listener: Listener) -> Callable[[], None]:
        """Subscribe to changes of ``key``, or of every key with ``"*"``."""
        return self._listeners.subscribe(key, listener)

    async def _emit(self, event: ChangeEvent) -> None:
        pending = _deferred_events.get()
        if pending is not None:
            pending.append((self._listeners, event))
            return
        await self._listeners.notify(event)

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        """Hold the namespace lock for the duration of the block.

        Change events raised inside the block are delivered after the lock
        is released, so listeners may call back into code that takes it.
        Nested blocks deliver when the outermost one exits.
        """
        if _deferred_events.get() is not None:
            async with self._locks.get(self._namespace):
                yield
            return

        pending: _Deferred = []
        token = _deferred_events.set(pending)
        try:
            async with self._locks.get(self._namespace):
                yield
        finally:
            _deferred_events.reset(token)

        for registry, event in pending:
            await registry.notify(event)

    @property
    def lock(self):
        """The namespace lock itself."""
        return self._locks.get(self._namespace)

    def close(self) -> None:
        """Release the in-memory backend and listener registry.

        Other backends are closed too when the store was told it owns them.
        """
        if self._closed:
            return
        self._closed = True
        self._listeners.clear()
        self._memory.close()
        if not self._owns_backends:
            return
        for backend in self._backends.values():
            if backend is not self._memory:
                try:
                    backend.close()
                except Exception as e:
                    logger.warning(f"Closing {backend.kind.value} backend failed: {e}")

    async def __aenter__(self) -> NamespacedStore:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
