"""Tests for the namespaced store."""

import asyncio
import errno
from unittest.mock import Mock

import pytest

from prefstore.core.errors import (
    BackendUnavailableError,
    BulkOperationError,
    ConfigurationError,
    QuotaExceededError,
    SerializationError,
)
from prefstore.core.result import Err, Ok
from prefstore.storage.backends import BackendKind, MemoryBackend
from prefstore.storage.locks import NamespaceLocks
from prefstore.storage.store import BulkResult, NamespacedStore


class TestBasicOperations:
    """Test get, set, remove and keys through the store."""

    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        value = {"opacity": 0.5, "tags": ["a", "b"], "nested": {"on": True}}

        assert await store.set("settings", value) == Ok(None)
        assert await store.get("settings") == Ok(value)

    @pytest.mark.asyncio
    async def test_missing_key_is_none(self, store):
        assert await store.get("missing") == Ok(None)

    @pytest.mark.asyncio
    async def test_missing_key_with_default(self, store):
        assert await store.get("missing", default=[]) == Ok([])

    @pytest.mark.asyncio
    async def test_stored_null_yields_default(self, store):
        await store.set("k", None)

        assert await store.get("k", default=5) == Ok(5)
        assert await store.get("k") == Ok(None)

    @pytest.mark.asyncio
    async def test_keys_are_namespaced(self, store, flaky_backend):
        await store.set("settings", {"a": 1})

        assert await flaky_backend.keys() == ["app.settings"]
        assert store.physical_key("settings") == "app.settings"

    @pytest.mark.asyncio
    async def test_keys_strip_prefix_and_sort(self, store):
        for key in ["b", "a", "c"]:
            await store.set(key, 1)

        assert await store.keys() == Ok(["a", "b", "c"])

    @pytest.mark.asyncio
    async def test_remove(self, store):
        await store.set("k", 1)

        assert await store.remove("k") == Ok(None)
        assert await store.get("k") == Ok(None)

    @pytest.mark.asyncio
    async def test_remove_missing_key_succeeds(self, store):
        assert await store.remove("never-set") == Ok(None)

    @pytest.mark.asyncio
    async def test_namespaces_are_isolated(self, flaky_backend):
        first = NamespacedStore("one", [flaky_backend], preferred_kind=BackendKind.LOCAL)
        second = NamespacedStore("two", [flaky_backend], preferred_kind=BackendKind.LOCAL)

        await first.set("settings", "first")
        await second.set("settings", "second")

        assert await first.get("settings") == Ok("first")
        assert await second.get("settings") == Ok("second")
        assert await first.keys() == Ok(["settings"])

        await first.clear()

        assert await first.keys() == Ok([])
        assert await second.get("settings") == Ok("second")

    @pytest.mark.asyncio
    async def test_clear(self, store):
        await store.set("a", 1)
        await store.set("b", 2)

        assert await store.clear() == Ok(None)
        assert await store.keys() == Ok([])


class TestErrors:
    """Test normalization of backend failures."""

    @pytest.mark.asyncio
    async def test_unserializable_value(self, store, flaky_backend):
        result = await store.set("k", object())

        assert isinstance(result, Err)
        assert isinstance(result.error, SerializationError)
        assert result.error.key == "k"
        assert ("set", "app.k") not in flaky_backend.calls

    @pytest.mark.asyncio
    async def test_unreadable_bytes(self, store, flaky_backend):
        await flaky_backend.set("app.k", b"{broken")

        result = await store.get("k")

        assert isinstance(result, Err)
        assert isinstance(result.error, BackendUnavailableError)
        assert result.error.key == "k"
        assert result.error.backend_kind == "local"

    @pytest.mark.asyncio
    async def test_backend_failure_becomes_unavailable(self, store, flaky_backend):
        flaky_backend.fail_get.add("app.k")

        result = await store.get("k")

        assert isinstance(result.error, BackendUnavailableError)
        assert isinstance(result.error.__cause__, OSError)

    @pytest.mark.asyncio
    async def test_quota_from_backend(self, make_backend):
        backend = make_backend(quota_bytes=8)
        store = NamespacedStore("app", [backend], preferred_kind=BackendKind.LOCAL)

        result = await store.set("k", "a long string value")

        assert isinstance(result.error, QuotaExceededError)
        assert result.error.key == "k"
        assert result.error.backend_kind == "local"

    @pytest.mark.asyncio
    async def test_no_space_left_is_quota(self, store, flaky_backend):
        flaky_backend.error = OSError(errno.ENOSPC, "No space left on device")
        flaky_backend.fail_set.add("*")

        result = await store.set("k", 1)

        assert isinstance(result.error, QuotaExceededError)

    @pytest.mark.asyncio
    async def test_errors_are_reported(self, flaky_backend):
        reporter = Mock()
        store = NamespacedStore(
            "app",
            [flaky_backend],
            preferred_kind=BackendKind.LOCAL,
            error_reporter=reporter,
        )
        flaky_backend.fail_remove.add("*")

        result = await store.remove("k")

        assert isinstance(result, Err)
        reporter.report.assert_called_once()
        error, context = reporter.report.call_args.args
        assert error is result.error
        assert context["operation"] == "remove"
        assert context["namespace"] == "app"

    @pytest.mark.asyncio
    async def test_keys_failure(self, store, flaky_backend):
        flaky_backend.fail_keys = True

        result = await store.keys()

        assert isinstance(result.error, BackendUnavailableError)

    @pytest.mark.asyncio
    async def test_clear_reports_first_failure(self, store, flaky_backend):
        await store.set("a", 1)
        await store.set("b", 2)
        flaky_backend.fail_remove.add("app.a")

        result = await store.clear()

        assert isinstance(result, Err)
        assert result.error.key == "a"
        assert await store.keys() == Ok(["a"])


class TestBackendSelection:
    """Test preferred and fallback backend selection."""

    def test_preferred_backend_selected(self, make_backend):
        sync = MemoryBackend(kind=BackendKind.SYNC)
        local = make_backend()

        store = NamespacedStore("app", [local, sync])

        assert store.selected_kind == BackendKind.SYNC

    def test_falls_back_in_order(self, make_backend):
        sync = make_backend(kind=BackendKind.SYNC, available=False)
        local = make_backend()

        store = NamespacedStore("app", [sync, local])

        assert store.selected_kind == BackendKind.LOCAL
        assert BackendKind.SYNC not in store.available_kinds

    def test_falls_back_to_memory(self, make_backend):
        local = make_backend(available=False)

        store = NamespacedStore("app", [local])

        assert store.selected_kind == BackendKind.MEMORY
        assert store.available_kinds == [BackendKind.MEMORY]

    def test_probe_exception_marks_unavailable(self, make_backend):
        local = make_backend()
        local.probe = Mock(side_effect=RuntimeError("probe exploded"))

        store = NamespacedStore("app", [local])

        assert store.selected_kind == BackendKind.MEMORY

    def test_duplicate_kinds_keep_first(self, make_backend):
        first = make_backend()
        second = make_backend()

        store = NamespacedStore("app", [first, second], preferred_kind=BackendKind.LOCAL)

        assert store.available_kinds.count(BackendKind.LOCAL) == 1

    @pytest.mark.asyncio
    async def test_explicit_backend_kind(self, store, flaky_backend):
        await store.set("k", "memory", backend_kind=BackendKind.MEMORY)

        assert await store.get("k", backend_kind="memory") == Ok("memory")
        assert await store.get("k") == Ok(None)
        assert await flaky_backend.keys() == []

    @pytest.mark.asyncio
    async def test_unavailable_backend_kind(self, store):
        result = await store.get("k", backend_kind=BackendKind.SYNC)

        assert isinstance(result.error, BackendUnavailableError)
        assert result.error.backend_kind == "sync"

    @pytest.mark.asyncio
    async def test_unknown_backend_kind(self, store):
        result = await store.set("k", 1, backend_kind="cloud")

        assert isinstance(result.error, BackendUnavailableError)

    def test_missing_backends_raises(self):
        with pytest.raises(ConfigurationError):
            NamespacedStore("app", None)

    def test_empty_namespace_raises(self):
        with pytest.raises(ConfigurationError):
            NamespacedStore("", [])


class TestChangeListeners:
    """Test change notifications."""

    @pytest.mark.asyncio
    async def test_set_notifies_with_old_and_new(self, store):
        events = []
        store.on_change("settings", events.append)

        await store.set("settings", {"v": 1})
        await store.set("settings", {"v": 2})

        assert [(e.old_value, e.new_value) for e in events] == [
            (None, {"v": 1}),
            ({"v": 1}, {"v": 2}),
        ]
        assert events[0].key == "settings"
        assert events[0].backend_kind == "local"

    @pytest.mark.asyncio
    async def test_wildcard_listener(self, store):
        keys = []
        store.on_change("*", lambda e: keys.append(e.key))

        await store.set("a", 1)
        await store.set("b", 2)

        assert keys == ["a", "b"]

    @pytest.mark.asyncio
    async def test_other_keys_not_notified(self, store):
        listener = Mock()
        store.on_change("a", listener)

        await store.set("b", 1)

        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_unsubscribe(self, store):
        listener = Mock()
        unsubscribe = store.on_change("a", listener)

        unsubscribe()
        await store.set("a", 1)

        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_remove_notifies_only_when_removed(self, store):
        events = []
        store.on_change("a", events.append)

        await store.remove("a")
        await store.set("a", 1)
        await store.remove("a")

        assert [(e.old_value, e.new_value) for e in events] == [(None, 1), (1, None)]

    @pytest.mark.asyncio
    async def test_failed_write_does_not_notify(self, store, flaky_backend):
        listener = Mock()
        store.on_change("a", listener)
        flaky_backend.fail_set.add("app.a")

        await store.set("a", 1)

        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_set(self, store):
        calls = []

        def broken(event):
            raise RuntimeError("listener bug")

        store.on_change("a", broken)
        store.on_change("a", calls.append)

        assert await store.set("a", 1) == Ok(None)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_async_listener(self, store):
        seen = []

        async def listener(event):
            await asyncio.sleep(0)
            seen.append(event.new_value)

        store.on_change("a", listener)
        await store.set("a", "x")

        assert seen == ["x"]

    @pytest.mark.asyncio
    async def test_memory_fallback_still_notifies(self, make_backend):
        store = NamespacedStore("app", [make_backend(available=False)])
        events = []
        store.on_change("a", events.append)

        await store.set("a", 1)

        assert events[0].backend_kind == "memory"


class TestBulkOperations:
    """Test per-key bulk operations."""

    @pytest.mark.asyncio
    async def test_set_and_get_multiple(self, store):
        written = await store.set_multiple({"a": 1, "b": 2})

        assert written.value.all_success
        assert written.value.values == {"a": 1, "b": 2}

        read = await store.get_multiple(["a", "b", "c"])

        assert read.value.values == {"a": 1, "b": 2, "c": None}

    @pytest.mark.asyncio
    async def test_partial_failure(self, store, flaky_backend):
        flaky_backend.fail_set.add("app.b")

        result = await store.set_multiple({"a": 1, "b": 2})

        assert isinstance(result, Ok)
        bulk = result.value
        assert bulk.partial_success
        assert bulk.values == {"a": 1}
        assert list(bulk.errors) == ["b"]
        assert bulk.success_rate == 50.0

    @pytest.mark.asyncio
    async def test_total_failure(self, store, flaky_backend):
        flaky_backend.fail_get.add("*")

        result = await store.get_multiple(["a", "b"])

        assert isinstance(result.error, BulkOperationError)
        assert sorted(result.error.errors) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_remove_multiple(self, store):
        await store.set_multiple({"a": 1, "b": 2})

        result = await store.remove_multiple(["a", "b"])

        assert result.value.values == {"a": True, "b": True}
        assert await store.keys() == Ok([])

    @pytest.mark.asyncio
    async def test_empty_request(self, store):
        result = await store.get_multiple([])

        assert result == Ok(BulkResult())
        assert result.value.success_rate == 100.0


class TestLifecycle:
    """Test closing the store and the namespace lock."""

    @pytest.mark.asyncio
    async def test_closed_store_rejects_calls(self, store):
        store.close()

        result = await store.get("k")

        assert store.closed
        assert isinstance(result.error, BackendUnavailableError)
        assert "closed" in str(result.error)

    @pytest.mark.asyncio
    async def test_close_clears_memory_backend(self):
        memory = MemoryBackend()
        store = NamespacedStore("app", [], memory_backend=memory)
        await store.set("k", 1)

        store.close()

        assert memory.get_size() == 0

    def test_close_leaves_shared_backends_open(self, make_backend):
        backend = make_backend()
        backend.close = Mock()
        store = NamespacedStore("app", [backend])

        store.close()

        backend.close.assert_not_called()

    def test_owned_backends_are_closed(self, make_backend):
        backend = make_backend()
        backend.close = Mock()
        store = NamespacedStore("app", [backend], owns_backends=True)

        store.close()
        store.close()

        backend.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_async_context_manager(self, flaky_backend):
        async with NamespacedStore("app", [flaky_backend]) as store:
            await store.set("k", 1)

        assert store.closed

    def test_stores_share_namespace_lock(self, flaky_backend):
        locks = NamespaceLocks()
        first = NamespacedStore("app", [flaky_backend], locks=locks)
        second = NamespacedStore("app", [flaky_backend], locks=locks)
        other = NamespacedStore("other", [flaky_backend], locks=locks)

        assert first.lock is second.lock
        assert first.lock is not other.lock
        assert len(locks) == 2

    @pytest.mark.asyncio
    async def test_exclusive_serializes(self, store):
        order = []

        async def worker(name):
            async with store.exclusive():
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_events_inside_exclusive_delivered_after_release(self, store):
        seen = []

        def listener(event):
            seen.append((event.new_value, store.lock.locked()))

        store.on_change("a", listener)

        async with store.exclusive():
            await store.set("a", 1)
            await store.set("a", 2)
            assert seen == []

        assert seen == [(1, False), (2, False)]

    @pytest.mark.asyncio
    async def test_listener_may_take_the_lock(self, store):
        seen = []

        async def listener(event):
            async with store.exclusive():
                seen.append((await store.get("a")).unwrap())

        store.on_change("a", listener)

        async with store.exclusive():
            await store.set("a", 1)

        assert seen == [1]

    @pytest.mark.asyncio
    async def test_nested_exclusive_delivers_at_outermost_exit(self, flaky_backend):
        locks = NamespaceLocks()
        outer = NamespacedStore("outer", [flaky_backend], locks=locks)
        inner = NamespacedStore("inner", [flaky_backend], locks=locks)
        seen = []
        inner.on_change("k", lambda e: seen.append(outer.lock.locked()))

        async with outer.exclusive():
            async with inner.exclusive():
                await inner.set("k", 1)
            assert seen == []

        assert seen == [False]
