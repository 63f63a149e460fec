"""
Unit tests for the hook engine.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from continuity.errors import PartialHookFailure, ValidationError
from continuity.hooks import HookEngine, HookEvent, resolve_event


class TestResolveEvent:
    """Tests for event name resolution."""

    def test_accepts_enum_member(self):
        assert resolve_event(HookEvent.ON_TOOL_USE) is HookEvent.ON_TOOL_USE

    def test_accepts_string_value(self):
        assert resolve_event("onContextCompaction") is HookEvent.ON_CONTEXT_COMPACTION

    def test_rejects_unknown_name(self):
        with pytest.raises(ValidationError, match="Unknown hook event"):
            resolve_event("onContextCompacton")


class TestHookEngine:
    """Tests for HookEngine registration and dispatch."""

    @pytest.fixture
    def hooks(self):
        return HookEngine()

    def test_register_unknown_event_fails_fast(self, hooks):
        """Typos are rejected at registration instead of creating a dead event."""
        with pytest.raises(ValidationError):
            hooks.register("onSesionStart", lambda data: None)

    @pytest.mark.asyncio
    async def test_handlers_run_in_registration_order(self, hooks):
        calls = []
        hooks.register(HookEvent.ON_SESSION_START, lambda data: calls.append("first"))
        hooks.register("onSessionStart", lambda data: calls.append("second"))

        await hooks.trigger(HookEvent.ON_SESSION_START, {})

        assert calls == ["first", "second"]

    @pytest.mark.asyncio
    async def test_later_handler_sees_earlier_side_effects(self, hooks):
        async def first(data):
            data["seen"] = True

        def second(data):
            return data.get("seen")

        hooks.register(HookEvent.ON_TOOL_USE, first)
        hooks.register(HookEvent.ON_TOOL_USE, second)

        results = await hooks.trigger(HookEvent.ON_TOOL_USE, {})

        assert results == [None, True]

    @pytest.mark.asyncio
    async def test_sync_and_async_results_collected(self, hooks):
        async def async_handler(data):
            return data["value"] * 2

        hooks.register(HookEvent.ON_DECISION_MADE, lambda data: data["value"])
        hooks.register(HookEvent.ON_DECISION_MADE, async_handler)

        results = await hooks.trigger(HookEvent.ON_DECISION_MADE, {"value": 3})

        assert results == [3, 6]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self, hooks):
        def broken(data):
            raise RuntimeError("boom")

        hooks.register(HookEvent.ON_ERROR_ENCOUNTERED, broken)
        hooks.register(HookEvent.ON_ERROR_ENCOUNTERED, lambda data: "ok")

        results = await hooks.trigger(HookEvent.ON_ERROR_ENCOUNTERED)

        assert results == [{"error": "boom"}, "ok"]
        assert hooks.get_stats()["onErrorEncountered"]["failures"] == 1

    @pytest.mark.asyncio
    async def test_strict_trigger_raises_after_all_handlers(self, hooks):
        calls = []

        def broken(data):
            raise ValueError("bad")

        hooks.register(HookEvent.ON_CONTEXT_RESET, broken)
        hooks.register(HookEvent.ON_CONTEXT_RESET, lambda data: calls.append("ran"))

        with pytest.raises(PartialHookFailure) as exc_info:
            await hooks.trigger(HookEvent.ON_CONTEXT_RESET, {}, strict=True)

        assert calls == ["ran"]
        assert exc_info.value.failures == 1
        assert exc_info.value.results[1] is None

    @pytest.mark.asyncio
    async def test_unregister_function(self, hooks):
        calls = []
        unregister = hooks.register(HookEvent.ON_SESSION_END, lambda data: calls.append(1))
        assert hooks.handler_count(HookEvent.ON_SESSION_END) == 1

        unregister()
        await hooks.trigger(HookEvent.ON_SESSION_END)

        assert calls == []
        assert hooks.handler_count("onSessionEnd") == 0

    @pytest.mark.asyncio
    async def test_handler_may_unregister_itself_mid_dispatch(self, hooks):
        calls = []

        def once(data):
            calls.append("once")
            hooks.unregister(HookEvent.ON_TOOL_USE, once)

        hooks.register(HookEvent.ON_TOOL_USE, once)
        hooks.register(HookEvent.ON_TOOL_USE, lambda data: calls.append("always"))

        await hooks.trigger(HookEvent.ON_TOOL_USE)
        await hooks.trigger(HookEvent.ON_TOOL_USE)

        assert calls == ["once", "always", "always"]

    @pytest.mark.asyncio
    async def test_stats_only_for_triggered_events(self, hooks):
        hooks.register(HookEvent.ON_SESSION_START, lambda data: None)

        await hooks.trigger(HookEvent.ON_SESSION_START)
        await hooks.trigger(HookEvent.ON_SESSION_START)

        stats = hooks.get_stats()
        assert list(stats) == ["onSessionStart"]
        assert stats["onSessionStart"]["count"] == 2
        assert stats["onSessionStart"]["failures"] == 0
        assert stats["onSessionStart"]["avg_time_ms"] >= 0

    @pytest.mark.asyncio
    async def test_trigger_without_handlers_returns_empty(self, hooks):
        assert await hooks.trigger(HookEvent.AFTER_MEMORY_LOAD, {"x": 1}) == []
