"""Tests for SandboxRegistry — session identity, reconnect, soft failures, teardown."""

from __future__ import annotations

import asyncio

import pytest

from sandpiper.sandbox.tracker import ExistingFileTracker


class TestLookupAndRegister:

    @pytest.mark.asyncio
    async def test_registered_id_returns_same_instance(self, registry):
        provider = await registry.get_or_create_provider("sb-1")
        await registry.register_sandbox("sb-1", provider)

        assert await registry.get_or_create_provider("sb-1") is provider
        assert await registry.get_or_create_provider("sb-1") is provider
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_unregistered_provider_not_tracked(self, registry):
        await registry.get_or_create_provider("sb-1")
        assert "sb-1" not in registry
        assert registry.active_id is None
        assert registry.get_active_provider() is None

    @pytest.mark.asyncio
    async def test_register_makes_active(self, registry, make_provider):
        a, b = make_provider(), make_provider()
        await registry.register_sandbox("a", a)
        await registry.register_sandbox("b", b)
        assert registry.active_id == "b"
        assert registry.get_active_provider() is b

        registry.set_active("a")
        assert registry.get_active_provider() is a

    def test_set_active_unknown_raises(self, registry):
        with pytest.raises(KeyError):
            registry.set_active("nope")

    @pytest.mark.asyncio
    async def test_each_session_has_its_own_tracker(self, registry, make_provider):
        first = await registry.register_sandbox("a", make_provider())
        second = await registry.register_sandbox("b", make_provider())
        first.tracker.add("src/App.tsx")
        assert "src/App.tsx" not in second.tracker

    @pytest.mark.asyncio
    async def test_reregistering_same_provider_keeps_tracker(self, registry, make_provider):
        provider = make_provider()
        session = await registry.register_sandbox("a", provider)
        session.tracker.add("src/App.tsx")
        again = await registry.register_sandbox("a", provider)
        assert "src/App.tsx" in again.tracker

    @pytest.mark.asyncio
    async def test_replacing_provider_resets_tracker(self, registry, make_provider):
        session = await registry.register_sandbox("a", make_provider())
        session.tracker.add("src/App.tsx")
        replaced = await registry.register_sandbox("a", make_provider())
        assert isinstance(replaced.tracker, ExistingFileTracker)
        assert len(replaced.tracker) == 0

    @pytest.mark.asyncio
    async def test_get_active_provider_touches_session(self, registry, make_provider):
        session = await registry.register_sandbox("a", make_provider())
        before = session.last_accessed
        await asyncio.sleep(0.01)
        registry.get_active_provider()
        assert session.last_accessed > before

    @pytest.mark.asyncio
    async def test_list_sessions_most_recent_first(self, registry, make_provider):
        await registry.register_sandbox("a", make_provider())
        await asyncio.sleep(0.01)
        await registry.register_sandbox("b", make_provider())
        await asyncio.sleep(0.01)
        registry.set_active("a")
        registry.get_active_provider()
        assert [s.sandbox_id for s in registry.list_sessions()] == ["a", "b"]


class TestReconnect:

    @pytest.mark.asyncio
    async def test_successful_reconnect_registers_and_activates(
        self, make_registry, make_reconnecting_provider
    ):
        built = []

        def builder():
            provider = make_reconnecting_provider(reconnect_result=True)
            built.append(provider)
            return provider

        registry = make_registry(builder)
        provider = await registry.get_or_create_provider("sb-9")

        assert provider is built[0]
        assert provider.reconnect_calls == ["sb-9"]
        assert "sb-9" in registry
        assert registry.active_id == "sb-9"

    @pytest.mark.asyncio
    async def test_reconnect_miss_returns_unregistered_provider(
        self, make_registry, make_reconnecting_provider
    ):
        registry = make_registry(lambda: make_reconnecting_provider(reconnect_result=False))
        provider = await registry.get_or_create_provider("sb-9")
        assert provider.reconnect_calls == ["sb-9"]
        assert "sb-9" not in registry

    @pytest.mark.asyncio
    async def test_reconnect_error_is_soft(
        self, make_registry, make_reconnecting_provider, recording_logger
    ):
        registry = make_registry(
            lambda: make_reconnecting_provider(reconnect_raises=ConnectionError("vm gone"))
        )
        provider = await registry.get_or_create_provider("sb-9")

        assert provider is not None
        assert "sb-9" not in registry
        [failure] = recording_logger.named("sandbox_reconnect_failed")
        assert failure == {
            "operation": "reconnect",
            "sandbox_id": "sb-9",
            "error": "vm gone",
            "error_type": "ConnectionError",
        }

    @pytest.mark.asyncio
    async def test_provider_without_reconnect_is_never_asked(self, registry):
        provider = await registry.get_or_create_provider("sb-1")
        assert not hasattr(provider, "reconnect_calls")

    @pytest.mark.asyncio
    async def test_factory_failure_propagates(self, make_registry):
        def broken():
            raise ValueError("E2B API key is required")

        registry = make_registry(broken)
        with pytest.raises(ValueError, match="API key"):
            await registry.get_or_create_provider("sb-1")

    @pytest.mark.asyncio
    async def test_concurrent_callers_do_not_double_register(
        self, make_registry, make_reconnecting_provider
    ):
        built = []

        def builder():
            provider = make_reconnecting_provider(reconnect_result=True)
            built.append(provider)
            return provider

        registry = make_registry(builder)
        results = await asyncio.gather(
            *(registry.get_or_create_provider("sb-1") for _ in range(5))
        )

        assert len(built) == 1
        assert all(p is built[0] for p in results)
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_reconnect_miss_leaves_no_lock_behind(
        self, make_registry, make_reconnecting_provider
    ):
        registry = make_registry(lambda: make_reconnecting_provider(reconnect_result=False))
        for n in range(3):
            await registry.get_or_create_provider(f"gone-{n}")
        assert registry._id_locks == {}
        assert registry._id_callers == {}

    @pytest.mark.asyncio
    async def test_provider_without_reconnect_leaves_no_lock_behind(self, registry):
        await registry.get_or_create_provider("sb-1")
        assert "sb-1" not in registry
        assert registry._id_locks == {}

    @pytest.mark.asyncio
    async def test_locks_released_after_concurrent_callers(
        self, make_registry, make_reconnecting_provider
    ):
        registry = make_registry(lambda: make_reconnecting_provider(reconnect_result=True))
        await asyncio.gather(*(registry.get_or_create_provider("sb-1") for _ in range(4)))
        assert "sb-1" in registry
        assert registry._id_locks == {}
        assert registry._id_callers == {}


class TestTeardown:

    @pytest.mark.asyncio
    async def test_terminate_all_survives_one_failure(self, registry, make_provider, recording_logger):
        a = make_provider()
        b = make_provider(terminate_raises=RuntimeError("already dead"))
        c = make_provider()
        for sandbox_id, provider in (("a", a), ("b", b), ("c", c)):
            await registry.register_sandbox(sandbox_id, provider)

        await registry.terminate_all()

        assert (a.terminate_calls, b.terminate_calls, c.terminate_calls) == (1, 1, 1)
        assert len(registry) == 0
        assert registry.active_id is None
        [failure] = recording_logger.named("sandbox_terminate_failed")
        assert failure["sandbox_id"] == "b"
        assert failure["error"] == "already dead"

    @pytest.mark.asyncio
    async def test_terminate_all_on_empty_registry(self, registry):
        await registry.terminate_all()
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_terminate_sandbox_clears_active_id(self, registry, make_provider):
        provider = make_provider()
        await registry.register_sandbox("a", provider)
        await registry.terminate_sandbox("a")
        assert "a" not in registry
        assert registry.active_id is None
        assert provider.terminate_calls == 1

    @pytest.mark.asyncio
    async def test_terminate_sandbox_keeps_other_active(self, registry, make_provider):
        await registry.register_sandbox("a", make_provider())
        await registry.register_sandbox("b", make_provider())
        await registry.terminate_sandbox("a")
        assert registry.active_id == "b"

    @pytest.mark.asyncio
    async def test_terminate_sandbox_removes_even_on_error(self, registry, make_provider, recording_logger):
        await registry.register_sandbox("a", make_provider(terminate_raises=RuntimeError("boom")))
        await registry.terminate_sandbox("a")
        assert "a" not in registry
        assert recording_logger.named("sandbox_terminate_failed")

    @pytest.mark.asyncio
    async def test_terminate_unknown_is_noop(self, registry):
        await registry.terminate_sandbox("missing")
