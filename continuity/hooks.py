"""
Hook Engine - ordered lifecycle event dispatch.

Handlers registered for an event run one after another in registration
order. A failing handler is recorded in its result slot and counted; the
remaining handlers still run. Event names form a closed set so typos fail
at registration time instead of silently creating a dead event.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import PartialHookFailure, ValidationError

logger = logging.getLogger(__name__)


class HookEvent(str, Enum):
    """Lifecycle events a handler can subscribe to."""

    # Context lifecycle
    BEFORE_CONTEXT_WINDOW = "beforeContextWindow"
    ON_CONTEXT_COMPACTION = "onContextCompaction"
    AFTER_CONTEXT_RESTORE = "afterContextRestore"
    AFTER_SESSION_RESTORE = "afterSessionRestore"

    # Conversation
    ON_CONVERSATION_START = "onConversationStart"
    ON_CONVERSATION_PAUSE = "onConversationPause"
    ON_CONVERSATION_RESUME = "onConversationResume"
    ON_CONVERSATION_END = "onConversationEnd"

    # Content tracking
    ON_ARTIFACT_CREATION = "onArtifactCreation"
    ON_TOOL_USE = "onToolUse"
    ON_FILE_OPERATION = "onFileOperation"
    ON_ERROR_ENCOUNTERED = "onErrorEncountered"
    ON_SOLUTION_PROVIDED = "onSolutionProvided"
    ON_DECISION_MADE = "onDecisionMade"

    # Memory
    BEFORE_MEMORY_SAVE = "beforeMemorySave"
    AFTER_MEMORY_LOAD = "afterMemoryLoad"
    ON_CHECKPOINT_CREATE = "onCheckpointCreate"

    # Budget pressure
    ON_CONTEXT_RESET = "onContextReset"
    ON_CONTEXT_WARNING = "onContextWarning"
    ON_CONTEXT_CRITICAL = "onContextCritical"

    # Sessions
    ON_SESSION_START = "onSessionStart"
    ON_SESSION_END = "onSessionEnd"
    ON_SESSION_RESUME = "onSessionResume"


HookHandler = Callable[[dict[str, Any]], Any | Awaitable[Any]]


@dataclass
class HookStats:
    """Per-event execution statistics."""

    count: int = 0
    total_time_ms: float = 0.0
    failures: int = 0

    @property
    def avg_time_ms(self) -> float:
        return self.total_time_ms / self.count if self.count else 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "count": self.count,
            "avg_time_ms": round(self.avg_time_ms, 3),
            "total_time_ms": round(self.total_time_ms, 3),
            "failures": self.failures,
        }


def resolve_event(event: HookEvent | str) -> HookEvent:
    """
    Normalize an event name to a HookEvent.

    Raises:
        ValidationError: If the name is not a known lifecycle event
    """
    if isinstance(event, HookEvent):
        return event
    try:
        return HookEvent(event)
    except ValueError:
        raise ValidationError(f"Unknown hook event: {event}") from None


class HookEngine:
    """
    Registry and dispatcher for lifecycle hooks.

    The only synchronization primitive in the engine: handlers for one
    trigger never overlap, so a later handler observes the side effects
    of an earlier one.
    """

    def __init__(self):
        self._handlers: dict[HookEvent, list[HookHandler]] = {
            event: [] for event in HookEvent
        }
        self._stats: dict[HookEvent, HookStats] = {
            event: HookStats() for event in HookEvent
        }

    def register(
        self, event: HookEvent | str, handler: HookHandler
    ) -> Callable[[], None]:
        """
        Register a handler for an event.

        Args:
            event: HookEvent member or its string value
            handler: Callable taking the event payload; may be async

        Returns:
            Function that unregisters this handler

        Raises:
            ValidationError: If the event name is unknown
        """
        hook = resolve_event(event)
        self._handlers[hook].append(handler)
        logger.debug("Registered hook: %s", hook.value)
        return lambda: self.unregister(hook, handler)

    def unregister(self, event: HookEvent | str, handler: HookHandler) -> None:
        """Remove a handler; unknown handlers are ignored."""
        hook = resolve_event(event)
        handlers = self._handlers[hook]
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event: HookEvent | str) -> int:
        return len(self._handlers[resolve_event(event)])

    async def trigger(
        self,
        event: HookEvent | str,
        data: dict[str, Any] | None = None,
        strict: bool = False,
    ) -> list[Any]:
        """
        Run every handler for an event, in registration order.

        Args:
            event: Event to dispatch
            data: Payload handed to each handler
            strict: Raise PartialHookFailure after all handlers ran if any failed

        Returns:
            One result per handler; a failed handler's slot is {"error": message}
        """
        hook = resolve_event(event)
        payload = data if data is not None else {}
        # Snapshot so handlers may unregister themselves mid-dispatch
        handlers = list(self._handlers[hook])
        results: list[Any] = []
        failures = 0
        start = time.perf_counter()

        for handler in handlers:
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    result = await result
                results.append(result)
            except Exception as e:
                failures += 1
                logger.error("Hook error in %s: %s", hook.value, e, exc_info=True)
                results.append({"error": str(e)})

        stats = self._stats[hook]
        stats.count += 1
        stats.total_time_ms += (time.perf_counter() - start) * 1000
        stats.failures += failures

        if strict and failures:
            raise PartialHookFailure(hook.value, results, failures)
        return results

    def get_stats(self) -> dict[str, dict[str, float]]:
        """Statistics for every event that has been triggered at least once."""
        return {
            event.value: stats.to_dict()
            for event, stats in self._stats.items()
            if stats.count
        }


__all__ = [
    "HookEvent",
    "HookHandler",
    "HookStats",
    "HookEngine",
    "resolve_event",
]
