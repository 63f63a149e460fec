"""
Application context.

Builds every component once and passes them to each other explicitly;
nothing in the package is reachable through module-level state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .classifier import Classifier, KeywordClassifier
from .collaborators import FileTracker, InMemoryFileTracker
from .config import ContinuityConfig
from .hooks import HookEngine, HookEvent
from .models import FileOpType, Session
from .restorer import ContextRestorer
from .session_store import SessionStore
from .summarizer import Summarizer, SummaryArchive
from .tokens import CharRatioEstimator, TokenEstimator
from .tracker import CompactionResult, ContextWindowTracker

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """References to every engine component."""

    config: ContinuityConfig
    hooks: HookEngine
    estimator: TokenEstimator
    classifier: Classifier
    summarizer: Summarizer
    tracker: ContextWindowTracker
    store: SessionStore
    restorer: ContextRestorer
    file_tracker: FileTracker
    _unregister: list[Callable[[], None]] = field(default_factory=list, repr=False)

    def wire(self) -> None:
        """Register the default cross-component hook handlers."""
        if self._unregister:
            return

        async def compact_on_warning(data: dict[str, Any]) -> CompactionResult | None:
            if not self.config.tracker.auto_compact or self.tracker.sealed:
                return None
            return await self.tracker.compact_context()

        async def track_file(data: dict[str, Any]) -> None:
            path = data.get("path")
            if not path:
                return
            route = getattr(self.file_tracker, "track_operation", None)
            if route is not None:
                await route(data.get("type", FileOpType.READ.value), path)
            elif data.get("type") == FileOpType.READ.value:
                await self.file_tracker.track_read(path)
            else:
                await self.file_tracker.track_write(path)

        self._unregister = [
            self.hooks.register(HookEvent.ON_CONTEXT_WARNING, compact_on_warning),
            self.hooks.register(HookEvent.ON_FILE_OPERATION, track_file),
        ]
        self.store.register_hooks()

    def unwire(self) -> None:
        for unregister in self._unregister:
            unregister()
        self._unregister = []
        self.store.unregister_hooks()

    async def start(self, project_name: str | None = None, autosave: bool = True) -> Session:
        """
        Initialize storage and resume the active session, or start a new one.

        Args:
            project_name: Name for a new session (default: project directory name)
            autosave: Start the periodic autosave task

        Returns:
            The current session
        """
        self.wire()
        await self.store.initialize()
        resumed = await self.store.resume_active_session()
        if not resumed:
            await self.store.start_new_session(
                project_name=project_name or self.config.project_root.name
            )
        if autosave:
            self.store.start_autosave()
        session = self.store.current_session
        logger.info("Continuity engine started (session %s, resumed=%s)", session.id, resumed)
        return session

    async def stop(self) -> None:
        await self.store.shutdown()
        self.unwire()
        logger.info("Continuity engine stopped")


def build_app(
    config: ContinuityConfig | None = None,
    file_tracker: FileTracker | None = None,
    estimator: TokenEstimator | None = None,
    classifier: Classifier | None = None,
) -> AppContext:
    """
    Construct and wire every component.

    Args:
        config: Engine configuration (default: ContinuityConfig.load())
        file_tracker: File tracker implementation (default: in-memory)
        estimator: Token estimator (default: ~4 characters per token)
        classifier: Message classifier (default: keyword heuristics)

    Returns:
        AppContext ready for start()
    """
    config = config or ContinuityConfig.load()
    estimator = estimator or CharRatioEstimator()
    classifier = classifier or KeywordClassifier()
    hooks = HookEngine()

    summarizer = Summarizer(
        config=config.summarizer,
        classifier=classifier,
        estimator=estimator,
        archive=SummaryArchive(config.summaries_dir, config.summarizer.archive_limit),
    )
    tracker = ContextWindowTracker(
        config=config.tracker,
        hooks=hooks,
        summarizer=summarizer,
        estimator=estimator,
    )
    store = SessionStore(config=config, hooks=hooks, tracker=tracker)
    file_tracker = file_tracker or InMemoryFileTracker(
        project_root=config.project_root,
        critical_files=config.restorer.critical_files,
    )
    restorer = ContextRestorer(
        config=config,
        hooks=hooks,
        tracker=tracker,
        store=store,
        summarizer=summarizer,
        file_tracker=file_tracker,
    )

    app = AppContext(
        config=config,
        hooks=hooks,
        estimator=estimator,
        classifier=classifier,
        summarizer=summarizer,
        tracker=tracker,
        store=store,
        restorer=restorer,
        file_tracker=file_tracker,
    )
    app.wire()
    return app


__all__ = ["AppContext", "build_app"]
