"""
Context Window Tracker.

Keeps a running token ledger for the conversation bound to it, fires
budget-pressure hooks after each mutation and compacts the context by
summarizing or compressing old messages.

The tracker does not own the data it tracks: load_context() binds a
session's ContextData and SessionMetrics so every mutation lands directly
on the session the store persists.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from .config import TrackerConfig
from .errors import ValidationError
from .hooks import HookEngine, HookEvent
from .models import (
    HIGH_IMPACT,
    Artifact,
    ContextData,
    Decision,
    ErrorRecord,
    FileOperation,
    FileOpType,
    Impact,
    Message,
    Priority,
    SessionMetrics,
    Task,
    ToolUsage,
    utcnow,
)
from .summarizer import Summarizer
from .tokens import TokenEstimator, default_estimator, estimate_tokens

logger = logging.getLogger(__name__)

CATEGORIES = ("messages", "artifacts", "files", "tool_usage", "decisions", "errors", "tasks")


@dataclass
class AddMessageResult:
    message_id: str
    current_tokens: int
    utilization: float


@dataclass
class TrackerStatus:
    """Snapshot of the token budget."""

    current_tokens: int
    max_tokens: int
    utilization: float
    level: str  # "normal", "warning" or "critical"
    categories: dict[str, int]
    counts: dict[str, int]
    compaction_count: int
    last_compaction: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_compaction"] = self.last_compaction.isoformat() if self.last_compaction else None
        return data


@dataclass
class CompactionPreview:
    """What compact_context would do, without doing it."""

    items_to_summarize: list[str] = field(default_factory=list)
    items_to_compress: list[str] = field(default_factory=list)
    items_to_preserve: list[str] = field(default_factory=list)
    current_tokens: int = 0
    estimated_tokens: int = 0


@dataclass
class CompactionResult:
    before: int
    after: int
    summarized: int = 0
    compressed: int = 0
    preserved: int = 0
    summary_id: str | None = None
    skipped: bool = False

    @property
    def saved(self) -> int:
        return self.before - self.after


@dataclass
class _CompactionPlan:
    summarize: list[Message]
    compress: list[Message]
    preserve: list[Message]
    drop_decisions: list[int]
    drop_errors: list[int]


class ContextWindowTracker:
    """
    Token budget bookkeeping and compaction for one conversation.

    Example:
        tracker = ContextWindowTracker(TrackerConfig(), hooks, summarizer)
        await tracker.add_message("Hello")
        status = tracker.get_status()
    """

    def __init__(
        self,
        config: TrackerConfig | None = None,
        hooks: HookEngine | None = None,
        summarizer: Summarizer | None = None,
        estimator: TokenEstimator | None = None,
    ):
        self.config = config or TrackerConfig()
        self.hooks = hooks or HookEngine()
        self.estimator = estimator or default_estimator
        self.summarizer = summarizer or Summarizer(estimator=self.estimator)

        self.context = ContextData()
        self.metrics = SessionMetrics()
        self.session_id: str | None = None
        self.last_compaction: datetime | None = None
        self._totals: dict[str, int] = {c: 0 for c in CATEGORIES}
        self._compacting = False
        self._sealed = False

    # ------------------------------------------------------------------
    # Token accounting
    # ------------------------------------------------------------------

    def estimate(self, content: Any) -> int:
        return estimate_tokens(content, self.estimator)

    def _decision_tokens(self, decision: Decision) -> int:
        return self.estimate([decision.summary, decision.reasoning])

    def _error_tokens(self, error: ErrorRecord) -> int:
        if error.solution:
            return self.estimate([error.error, error.solution])
        return self.estimate(error.error)

    def _tool_tokens(self, usage: ToolUsage) -> int:
        return self.estimate({"tool": usage.tool, "parameters": usage.parameters}) + self.estimate(
            usage.result_preview
        )

    def _stored_totals(self) -> dict[str, int]:
        ctx = self.context
        return {
            "messages": sum(m.tokens for m in ctx.messages),
            "artifacts": sum(a.tokens for a in ctx.artifacts.values()),
            "files": sum(op.tokens for ops in ctx.files.values() for op in ops),
            "tool_usage": sum(u.tokens for u in ctx.tool_usage),
            "decisions": sum(d.tokens for d in ctx.decisions),
            "errors": sum(e.tokens for e in ctx.errors),
            "tasks": sum(t.tokens for t in ctx.tasks),
        }

    def recount_tokens(self) -> dict[str, int]:
        """
        Recompute per-category tokens from item content.

        File operations keep no content, so their recorded estimate is used.
        """
        ctx = self.context
        return {
            "messages": sum(self.estimate(m.content) for m in ctx.messages),
            "artifacts": sum(self.estimate(a.content) for a in ctx.artifacts.values()),
            "files": sum(op.tokens for ops in ctx.files.values() for op in ops),
            "tool_usage": sum(self._tool_tokens(u) for u in ctx.tool_usage),
            "decisions": sum(self._decision_tokens(d) for d in ctx.decisions),
            "errors": sum(self._error_tokens(e) for e in ctx.errors),
            "tasks": sum(self.estimate(t.description) for t in ctx.tasks),
        }

    @property
    def current_tokens(self) -> int:
        return sum(self._totals.values())

    def get_current_token_count(self) -> int:
        return self.current_tokens

    @property
    def utilization(self) -> float:
        return self.current_tokens / self.config.max_context_tokens

    def _level(self, utilization: float) -> str:
        if utilization >= self.config.critical_threshold:
            return "critical"
        if utilization >= self.config.warning_threshold:
            return "warning"
        return "normal"

    def _sync_usage(self) -> None:
        self.metrics.token_usage = self.current_tokens

    def get_status(self) -> TrackerStatus:
        ctx = self.context
        utilization = self.utilization
        return TrackerStatus(
            current_tokens=self.current_tokens,
            max_tokens=self.config.max_context_tokens,
            utilization=utilization,
            level=self._level(utilization),
            categories=dict(self._totals),
            counts={
                "messages": len(ctx.messages),
                "artifacts": len(ctx.artifacts),
                "files": len(ctx.files),
                "file_operations": sum(len(ops) for ops in ctx.files.values()),
                "tool_usage": len(ctx.tool_usage),
                "decisions": len(ctx.decisions),
                "errors": len(ctx.errors),
                "unresolved_errors": sum(1 for e in ctx.errors if not e.resolved),
                "tasks": len(ctx.tasks),
            },
            compaction_count=self.metrics.compaction_count,
            last_compaction=self.last_compaction,
        )

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def load_context(
        self,
        context: ContextData,
        metrics: SessionMetrics,
        session_id: str | None = None,
    ) -> None:
        """
        Bind a session's context and metrics as the live ledger.

        Item estimates are refreshed from content so a changed estimator
        cannot leave the ledger inconsistent.
        """
        self.context = context
        self.metrics = metrics
        self.session_id = session_id
        self._sealed = False
        for message in context.messages:
            message.tokens = self.estimate(message.content)
        for artifact in context.artifacts.values():
            artifact.tokens = self.estimate(artifact.content)
        for usage in context.tool_usage:
            usage.tokens = self._tool_tokens(usage)
        for decision in context.decisions:
            decision.tokens = self._decision_tokens(decision)
        for error in context.errors:
            error.tokens = self._error_tokens(error)
        for task in context.tasks:
            task.tokens = self.estimate(task.description)
        self._totals = self._stored_totals()
        self._sync_usage()
        logger.debug(
            "Loaded context for %s: %d messages, %d tokens",
            session_id,
            len(context.messages),
            self.current_tokens,
        )

    def reset(self) -> None:
        """Detach from any session and start from an empty ledger."""
        self.context = ContextData()
        self.metrics = SessionMetrics()
        self.session_id = None
        self.last_compaction = None
        self._totals = {c: 0 for c in CATEGORIES}
        self._sealed = False

    def seal(self) -> None:
        """Reject further mutations (the bound session has ended)."""
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    def _ensure_writable(self) -> None:
        if self._sealed:
            raise ValidationError(f"Session {self.session_id} has ended and cannot be modified")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_message(
        self,
        content: str,
        role: str = "user",
        priority: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AddMessageResult:
        """
        Append a message and re-check the budget.

        Args:
            content: Message text
            role: "user", "assistant" or "system"
            priority: Optional retention priority (see Priority)
            metadata: Free-form metadata; "current_task" exempts it from compaction

        Returns:
            AddMessageResult with the new message id and the budget after it
        """
        self._ensure_writable()
        message = Message(
            role=role,
            content=content,
            priority=None if priority is None else int(priority),
            tokens=self.estimate(content),
            metadata=metadata or {},
        )
        self.context.messages.append(message)
        self._totals["messages"] += message.tokens
        self.metrics.message_count += 1
        self._sync_usage()

        await self.check_thresholds()
        return AddMessageResult(
            message_id=message.id,
            current_tokens=self.current_tokens,
            utilization=self.utilization,
        )

    async def track_artifact(
        self,
        artifact_id: str,
        content: str,
        language: str | None = None,
        purpose: str | None = None,
        dependencies: list[str] | None = None,
    ) -> Artifact:
        """Record a code artifact; re-tracking an id replaces the previous version."""
        self._ensure_writable()
        artifact = Artifact(
            id=artifact_id,
            language=language,
            content=content,
            purpose=purpose,
            dependencies=dependencies or [],
            tokens=self.estimate(content),
        )
        previous = self.context.artifacts.get(artifact_id)
        if previous is not None:
            self._totals["artifacts"] -= previous.tokens
        self.context.artifacts[artifact_id] = artifact
        self._totals["artifacts"] += artifact.tokens
        self.metrics.artifact_creations += 1
        self._sync_usage()

        await self.hooks.trigger(
            HookEvent.ON_ARTIFACT_CREATION,
            {"id": artifact_id, "language": language, "tokens": artifact.tokens},
        )
        await self.check_thresholds()
        return artifact

    async def track_tool_usage(
        self,
        tool: str,
        parameters: dict[str, Any] | None = None,
        result: Any = None,
    ) -> ToolUsage:
        self._ensure_writable()
        preview = None if result is None else str(result)[:200]
        usage = ToolUsage(tool=tool, parameters=parameters or {}, result_preview=preview)
        usage.tokens = self._tool_tokens(usage)
        self.context.tool_usage.append(usage)
        self._totals["tool_usage"] += usage.tokens

        if len(self.context.tool_usage) > self.config.tool_usage_limit:
            dropped = self.context.tool_usage[: -self.config.tool_usage_keep]
            self.context.tool_usage = self.context.tool_usage[-self.config.tool_usage_keep :]
            self._totals["tool_usage"] -= sum(u.tokens for u in dropped)
        self._sync_usage()

        await self.hooks.trigger(HookEvent.ON_TOOL_USE, {"tool": tool, "tokens": usage.tokens})
        await self.check_thresholds()
        return usage

    async def track_file_operation(
        self,
        op_type: FileOpType | str,
        path: str,
        content: str | None = None,
    ) -> FileOperation:
        """
        Record a read/write/edit on a path.

        Raises:
            ValidationError: If op_type is not read, write or edit
        """
        self._ensure_writable()
        try:
            op_type = FileOpType(op_type)
        except ValueError:
            raise ValidationError(f"Unknown file operation type: {op_type}") from None

        operation = FileOperation(type=op_type, tokens=self.estimate(content))
        self.context.files.setdefault(path, []).append(operation)
        self._totals["files"] += operation.tokens
        self._sync_usage()

        await self.hooks.trigger(
            HookEvent.ON_FILE_OPERATION,
            {"type": op_type.value, "path": path, "tokens": operation.tokens},
        )
        await self.check_thresholds()
        return operation

    async def track_error(self, error: str, solution: str | None = None) -> ErrorRecord:
        self._ensure_writable()
        record = ErrorRecord(error=error, solution=solution, resolved=solution is not None)
        record.tokens = self._error_tokens(record)
        self.context.errors.append(record)
        self._totals["errors"] += record.tokens
        self._sync_usage()

        await self.hooks.trigger(HookEvent.ON_ERROR_ENCOUNTERED, {"error": error})
        if solution is not None:
            await self.hooks.trigger(
                HookEvent.ON_SOLUTION_PROVIDED, {"error": error, "solution": solution}
            )
        await self.check_thresholds()
        return record

    async def resolve_error(self, index: int, solution: str) -> ErrorRecord:
        """
        Attach a solution to a previously tracked error.

        Raises:
            ValidationError: If there is no error at index
        """
        self._ensure_writable()
        try:
            record = self.context.errors[index]
        except IndexError:
            raise ValidationError(f"No tracked error at index {index}") from None

        self._totals["errors"] -= record.tokens
        record.solution = solution
        record.resolved = True
        record.tokens = self._error_tokens(record)
        self._totals["errors"] += record.tokens
        self._sync_usage()

        await self.hooks.trigger(
            HookEvent.ON_SOLUTION_PROVIDED, {"error": record.error, "solution": solution}
        )
        await self.check_thresholds()
        return record

    async def track_decision(
        self,
        summary: str,
        reasoning: str = "",
        impact: Impact | str = Impact.MEDIUM,
    ) -> Decision:
        self._ensure_writable()
        try:
            impact = Impact(impact)
        except ValueError:
            raise ValidationError(f"Unknown decision impact: {impact}") from None

        decision = Decision(summary=summary, reasoning=reasoning, impact=impact)
        decision.tokens = self._decision_tokens(decision)
        self.context.decisions.append(decision)
        self._totals["decisions"] += decision.tokens
        self._sync_usage()

        await self.hooks.trigger(
            HookEvent.ON_DECISION_MADE, {"summary": summary, "impact": impact.value}
        )
        await self.check_thresholds()
        return decision

    async def track_task(self, description: str) -> Task:
        self._ensure_writable()
        task = Task(description=description, tokens=self.estimate(description))
        self.context.tasks.append(task)
        self._totals["tasks"] += task.tokens
        self._sync_usage()
        await self.check_thresholds()
        return task

    def complete_task(self, task_id: str) -> Task:
        """
        Mark a task completed.

        Raises:
            ValidationError: If no task has this id
        """
        self._ensure_writable()
        for task in self.context.tasks:
            if task.id == task_id:
                task.completed = True
                task.completed_at = utcnow()
                return task
        raise ValidationError(f"Unknown task: {task_id}")

    # ------------------------------------------------------------------
    # Budget pressure
    # ------------------------------------------------------------------

    def _status_payload(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "current_tokens": self.current_tokens,
            "max_tokens": self.config.max_context_tokens,
            "utilization": self.utilization,
        }

    async def check_thresholds(self) -> None:
        """
        Fire budget hooks for the current utilization.

        At the warning ratio onContextWarning fires. At the critical ratio
        onContextCritical and beforeContextWindow fire; handlers of the latter
        may return {"preserve": [message ids]} to extend the preservation set
        before an aggressive compaction runs.
        """
        if self._compacting:
            return

        utilization = self.utilization
        if utilization >= self.config.critical_threshold:
            logger.warning("Context window critical: %.1f%% used", utilization * 100)
            await self.hooks.trigger(HookEvent.ON_CONTEXT_CRITICAL, self._status_payload())

            preserve = {m.id for m in self._plan(aggressive=True).preserve}
            payload = self._status_payload()
            payload["preserve"] = sorted(preserve)
            results = await self.hooks.trigger(HookEvent.BEFORE_CONTEXT_WINDOW, payload)
            for result in results:
                if isinstance(result, dict) and result.get("preserve"):
                    preserve.update(result["preserve"])

            if self.config.auto_compact:
                await self.compact_context(aggressive=True, preserve_ids=preserve)
        elif utilization >= self.config.warning_threshold:
            logger.info("Context window warning: %.1f%% used", utilization * 100)
            await self.hooks.trigger(HookEvent.ON_CONTEXT_WARNING, self._status_payload())

    # ------------------------------------------------------------------
    # Compaction
    # ------------------------------------------------------------------

    def _plan(self, aggressive: bool, preserve_ids: set[str] | None = None) -> _CompactionPlan:
        preserve_ids = preserve_ids or set()
        messages = self.context.messages
        recent_start = max(0, len(messages) - self.config.recent_messages)

        summarize: list[Message] = []
        compress: list[Message] = []
        preserve: list[Message] = []
        for index, message in enumerate(messages):
            priority = message.priority or 0
            if (
                index >= recent_start
                or message.id in preserve_ids
                or priority >= Priority.CRITICAL
                or message.metadata.get("current_task")
            ):
                preserve.append(message)
            elif not aggressive and priority >= Priority.HIGH:
                compress.append(message)
            else:
                summarize.append(message)

        drop_decisions: list[int] = []
        drop_errors: list[int] = []
        if aggressive:
            minor = [i for i, d in enumerate(self.context.decisions) if d.impact not in HIGH_IMPACT]
            keep = self.config.aggressive_keep_decisions
            drop_decisions = minor[:-keep] if keep else minor
            resolved = [i for i, e in enumerate(self.context.errors) if e.resolved]
            keep = self.config.aggressive_keep_errors
            drop_errors = resolved[:-keep] if keep else resolved

        return _CompactionPlan(summarize, compress, preserve, drop_decisions, drop_errors)

    def preview_compaction(self, aggressive: bool = False) -> CompactionPreview:
        """Dry run of compact_context; nothing is modified or archived."""
        plan = self._plan(aggressive)
        estimated = self.current_tokens

        if plan.summarize:
            original = sum(m.tokens for m in plan.summarize)
            summary, _ = self.summarizer.build_summary(
                plan.summarize,
                compression_level="aggressive" if aggressive else "normal",
                depth="shallow" if aggressive else "normal",
            )
            estimated -= max(0, original - self.estimate(summary))
        for message in plan.compress:
            compressed = self.estimate(self.summarizer.compress_message(message.content))
            estimated -= max(0, message.tokens - compressed)
        estimated -= sum(self.context.decisions[i].tokens for i in plan.drop_decisions)
        estimated -= sum(self.context.errors[i].tokens for i in plan.drop_errors)

        preserve = [m.id for m in plan.preserve]
        preserve += [f"artifact:{a}" for a in self.context.artifacts]
        preserve += [
            f"error:{i}" for i, e in enumerate(self.context.errors) if not e.resolved
        ]
        preserve += [
            f"decision:{i}" for i, d in enumerate(self.context.decisions) if d.impact in HIGH_IMPACT
        ]
        compress = [m.id for m in plan.compress]
        compress += [f"decision:{i}" for i in plan.drop_decisions]
        compress += [f"error:{i}" for i in plan.drop_errors]

        return CompactionPreview(
            items_to_summarize=[m.id for m in plan.summarize],
            items_to_compress=compress,
            items_to_preserve=preserve,
            current_tokens=self.current_tokens,
            estimated_tokens=estimated,
        )

    async def compact_context(
        self,
        aggressive: bool = False,
        preserve_ids: set[str] | list[str] | None = None,
    ) -> CompactionResult:
        """
        Summarize and compress old messages to free budget.

        The newest recent_messages messages are never touched. Replacements
        only happen when they are smaller than what they replace, so the
        token count never grows.

        Args:
            aggressive: Summarize every eligible message and trim old
                resolved errors and minor decisions
            preserve_ids: Extra message ids to keep verbatim

        Returns:
            CompactionResult (skipped=True when a compaction is already running)
        """
        self._ensure_writable()
        before = self.current_tokens
        if self._compacting:
            logger.debug("Compaction already in progress, skipping")
            return CompactionResult(before=before, after=before, skipped=True)

        self._compacting = True
        try:
            plan = self._plan(aggressive, set(preserve_ids or ()))
            logger.info(
                "Compacting context (%s): %d to summarize, %d to compress",
                "aggressive" if aggressive else "normal",
                len(plan.summarize),
                len(plan.compress),
            )

            summary_id = None
            summarized = 0
            if plan.summarize:
                result = await self.summarizer.summarize_conversation(
                    plan.summarize,
                    compression_level="aggressive" if aggressive else "normal",
                    depth="shallow" if aggressive else "normal",
                    archive=False,
                )
                original = sum(m.tokens for m in plan.summarize)
                summary_tokens = self.estimate(result.summary)
                if summary_tokens < original:
                    self._replace_with_summary(plan.summarize, result.summary, summary_tokens, result.summary_id)
                    await self.summarizer.archive_summary(result.summary_id, result.summary)
                    summary_id = result.summary_id
                    summarized = len(plan.summarize)
                else:
                    logger.debug("Summary would not shrink %d messages; keeping originals", len(plan.summarize))

            compressed = 0
            for message in plan.compress:
                content = self.summarizer.compress_message(message.content)
                tokens = self.estimate(content)
                if tokens < message.tokens:
                    message.content = content
                    message.tokens = tokens
                    message.compressed = True
                    compressed += 1

            if plan.drop_decisions:
                dropped = set(plan.drop_decisions)
                self.context.decisions = [
                    d for i, d in enumerate(self.context.decisions) if i not in dropped
                ]
            if plan.drop_errors:
                dropped = set(plan.drop_errors)
                self.context.errors = [
                    e for i, e in enumerate(self.context.errors) if i not in dropped
                ]

            self._totals = self._stored_totals()
            self._sync_usage()
            after = self.current_tokens

            compaction = CompactionResult(
                before=before,
                after=after,
                summarized=summarized,
                compressed=compressed,
                preserved=len(plan.preserve),
                summary_id=summary_id,
            )
            if not (summarized or compressed or plan.drop_decisions or plan.drop_errors):
                logger.debug("Compaction changed nothing")
                return compaction
            self.last_compaction = utcnow()
            logger.info("Compaction saved %d tokens (%d -> %d)", compaction.saved, before, after)
            await self.hooks.trigger(
                HookEvent.ON_CONTEXT_COMPACTION,
                {"session_id": self.session_id, "aggressive": aggressive, **asdict(compaction)},
            )
            return compaction
        finally:
            self._compacting = False

    def _replace_with_summary(
        self,
        messages: list[Message],
        summary: str,
        tokens: int,
        summary_id: str,
    ) -> None:
        replaced = {m.id for m in messages}
        summary_message = Message(
            role="system",
            content=summary,
            timestamp=messages[0].timestamp,
            tokens=tokens,
            metadata={
                "type": "summary",
                "summary_id": summary_id,
                "summarized_count": len(messages),
                "original_tokens": sum(m.tokens for m in messages),
            },
        )
        rebuilt: list[Message] = []
        inserted = False
        for message in self.context.messages:
            if message.id in replaced:
                if not inserted:
                    rebuilt.append(summary_message)
                    inserted = True
                continue
            rebuilt.append(message)
        self.context.messages = rebuilt


__all__ = [
    "CATEGORIES",
    "AddMessageResult",
    "TrackerStatus",
    "CompactionPreview",
    "CompactionResult",
    "ContextWindowTracker",
]
