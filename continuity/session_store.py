"""
Session Store.

Persists sessions under <home>/sessions/{session_id}.json, checkpoints
under sessions/checkpoints/, exports under sessions/exports/ and a single
active-session pointer at <home>/active-session.json.

All disk I/O runs in worker threads via asyncio.to_thread. Every mutation
of a session happens under that session's asyncio.Lock, so the autosave
loop and hook-triggered saves never interleave on the same session.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import tempfile
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from .config import ContinuityConfig
from .errors import StorageError, TimeoutExpired, ValidationError
from .hooks import HookEngine, HookEvent
from .models import (
    ActivePointer,
    Checkpoint,
    CheckpointRef,
    ContextData,
    Session,
    SessionLifecycle,
    SessionStatus,
    utcnow,
)
from .serialization import (
    FORMAT_VERSION,
    decode_checkpoint,
    decode_context,
    decode_pointer,
    decode_session,
    dumps,
    encode_checkpoint,
    encode_context,
    encode_pointer,
    encode_session,
    loads,
)
from .tracker import ContextWindowTracker

logger = logging.getLogger(__name__)


@dataclass
class BranchResult:
    session_id: str
    checkpoint_id: str
    parent_session_id: str


@dataclass
class StoreMetrics:
    """Process-lifetime counters for the store."""

    total_sessions: int = 0
    total_restores: int = 0
    total_saves: int = 0
    ended_sessions: int = 0
    average_session_duration: float = 0.0  # seconds


def write_atomic(path: Path, text: str) -> None:
    """
    Write text to path atomically.

    Uses write-to-temp-then-rename so readers never see a partial file.

    Raises:
        StorageError: If the write fails
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(suffix=".tmp", prefix=f"{path.stem}_", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(temp_path, path)
    except OSError as e:
        with contextlib.suppress(OSError):
            os.unlink(temp_path)
        raise StorageError(f"Failed to write {path}: {e}", path=str(path)) from e


def read_document(path: Path) -> dict[str, Any]:
    """
    Read and parse a persisted JSON document.

    Raises:
        StorageError: If the file cannot be read or is not a JSON object
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise StorageError(f"Failed to read {path}: {e}", path=str(path)) from e
    return loads(text)


class SessionStore:
    """
    Owns every Session in the process and their on-disk form.

    The store binds the current session's context and metrics into the
    tracker, so tracker mutations land on the session that gets saved.
    """

    def __init__(
        self,
        config: ContinuityConfig,
        hooks: HookEngine,
        tracker: ContextWindowTracker,
    ):
        self.config = config
        self.settings = config.sessions
        self.hooks = hooks
        self.tracker = tracker
        self.lifecycle = SessionLifecycle()
        self.metrics = StoreMetrics()

        self.sessions: dict[str, Session] = {}
        self.current_session: Session | None = None
        self._locks: dict[str, asyncio.Lock] = {}
        self._autosave_task: asyncio.Task | None = None
        self._unregister: list[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Paths and low-level I/O
    # ------------------------------------------------------------------

    def session_path(self, session_id: str) -> Path:
        return self.config.sessions_dir / f"{session_id}.json"

    def checkpoint_path(self, checkpoint_id: str) -> Path:
        return self.config.checkpoints_dir / f"{checkpoint_id}.json"

    def lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def _persist(self, session: Session) -> None:
        """Write a session to disk. Caller holds the session lock."""
        text = dumps(encode_session(session))
        await asyncio.to_thread(write_atomic, self.session_path(session.id), text)

    async def _write_pointer(self, session_id: str) -> None:
        text = dumps(encode_pointer(ActivePointer(session_id=session_id)))
        await asyncio.to_thread(write_atomic, self.config.active_pointer_path, text)

    async def read_pointer(self) -> ActivePointer | None:
        """
        Current active pointer, or None when there is none.

        Raises:
            StorageError: If the pointer file is unreadable or corrupt
        """
        path = self.config.active_pointer_path
        if not path.exists():
            return None
        data = await asyncio.to_thread(read_document, path)
        return decode_pointer(data)

    async def _clear_pointer(self, session_id: str) -> None:
        """Remove the active pointer if it names session_id."""
        try:
            pointer = await self.read_pointer()
        except StorageError as e:
            logger.warning("Discarding unreadable active pointer: %s", e)
            pointer = None
        if pointer is None or pointer.session_id == session_id:
            await asyncio.to_thread(self.config.active_pointer_path.unlink, missing_ok=True)

    def _require_current(self) -> Session:
        if self.current_session is None:
            raise ValidationError("No active session")
        return self.current_session

    def _resolve(self, session_id: str | None) -> Session | None:
        """
        Session for an explicit id, or the current session.

        Raises:
            ValidationError: If an explicit id is unknown
        """
        if session_id is None:
            return self.current_session
        session = self.sessions.get(session_id)
        if session is None:
            raise ValidationError(f"Session not found: {session_id}")
        return session

    def _bind(self, session: Session) -> None:
        self.tracker.load_context(session.context, session.metrics, session.id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the storage layout and load persisted sessions."""
        for directory in (
            self.config.sessions_dir,
            self.config.checkpoints_dir,
            self.config.exports_dir,
        ):
            await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
        count = await self.load_sessions()
        logger.info("Session store initialized at %s (%d sessions)", self.config.home, count)

    async def start_new_session(
        self,
        project_name: str = "default",
        branch: bool = False,
        parent_session_id: str | None = None,
    ) -> Session:
        """
        Create, persist and activate a new session.

        Args:
            project_name: Project the session belongs to
            branch: Copy the parent's context into the new session
            parent_session_id: Parent to branch from

        Returns:
            The new current session

        Raises:
            ValidationError: If branching from an unknown parent
        """
        previous = self.current_session
        if previous is not None and previous.is_live:
            await self.save_session(previous.id)

        session = Session(project_name=project_name, parent_session_id=parent_session_id)

        if branch and parent_session_id:
            parent = self.sessions.get(parent_session_id)
            if parent is None:
                raise ValidationError(f"Parent session not found: {parent_session_id}")
            async with self.lock(parent.id):
                session.context = parent.context.clone()
                session.metrics = parent.metrics.model_copy(update={"duration": None})
                session.branch_point = utcnow()
                parent.children.append(session.id)
                await self._persist(parent)

        self.sessions[session.id] = session
        async with self.lock(session.id):
            await self._persist(session)
        await self._write_pointer(session.id)

        self.current_session = session
        self._bind(session)
        self.metrics.total_sessions += 1

        await self.hooks.trigger(
            HookEvent.ON_SESSION_START,
            {"session_id": session.id, "parent_session_id": parent_session_id, "branch": branch},
        )
        logger.info("Started new session: %s", session.id)
        return session

    async def end_session(self, session_id: str | None = None) -> Session | None:
        """
        End a session (the current one by default).

        Ending is terminal; ending an already ended session is a no-op.
        """
        session = self._resolve(session_id)
        if session is None:
            return None
        if session.status == SessionStatus.ENDED:
            return session

        async with self.lock(session.id):
            now = utcnow()
            self.lifecycle.transition(session, SessionStatus.ENDED)
            session.end_time = now
            session.last_activity = now
            session.metrics.duration = session.elapsed_seconds()
            try:
                await self._persist(session)
            except StorageError as e:
                logger.error("Failed to persist ended session %s: %s", session.id, e)

        if self.tracker.session_id == session.id:
            self.tracker.seal()
        if self.current_session is session:
            self.current_session = None
        await self._clear_pointer(session.id)

        self._update_average_duration(session.metrics.duration or 0.0)
        await self.hooks.trigger(
            HookEvent.ON_SESSION_END,
            {
                "session_id": session.id,
                "duration": session.metrics.duration,
                "metrics": session.metrics.model_dump(mode="json"),
            },
        )
        logger.info("Ended session: %s", session.id)
        return session

    def _update_average_duration(self, duration: float) -> None:
        m = self.metrics
        m.ended_sessions += 1
        m.average_session_duration += (duration - m.average_session_duration) / m.ended_sessions

    async def save_session(self, session_id: str | None = None) -> bool:
        """
        Persist a session (the current one by default).

        Saving the current session after a resume moves it back to active.

        Returns:
            True if written, False if there was nothing to save or the write failed
        """
        session = self._resolve(session_id)
        if session is None:
            return False

        async with self.lock(session.id):
            if session is self.current_session and session.status == SessionStatus.RESUMED:
                self.lifecycle.transition(session, SessionStatus.ACTIVE)
            session.last_activity = utcnow()
            try:
                await self._persist(session)
            except StorageError as e:
                logger.error("Failed to save session %s: %s", session.id, e)
                return False

        self.metrics.total_saves += 1
        logger.debug("Saved session: %s", session.id)
        return True

    async def load_session(self, session_id: str) -> Session | None:
        """
        Read a session from disk.

        The loaded copy replaces the cached one unless the cached one is the
        current session (which may hold unsaved changes).

        Returns:
            The session, or None if it is missing or cannot be decoded
        """
        path = self.session_path(session_id)
        if not path.exists():
            return None
        try:
            data = await asyncio.to_thread(read_document, path)
            session = decode_session(data)
        except StorageError as e:
            logger.error("Failed to load session %s: %s", session_id, e)
            return None

        if self.current_session is None or self.current_session.id != session.id:
            self.sessions[session.id] = session
        logger.debug("Loaded session: %s", session_id)
        return session

    async def load_sessions(self) -> int:
        """Load every persisted session; undecodable files are skipped."""
        directory = self.config.sessions_dir
        if not directory.exists():
            return 0
        paths = await asyncio.to_thread(lambda: sorted(directory.glob("*.json")))
        loaded = 0
        for path in paths:
            if await self.load_session(path.stem) is not None:
                loaded += 1
        logger.info("Loaded %d sessions", loaded)
        return loaded

    async def resume_active_session(self) -> bool:
        """
        Resume the session named by the active pointer.

        A session idle longer than session_timeout is ended instead.

        Returns:
            True if a session was resumed
        """
        try:
            pointer = await self.read_pointer()
        except StorageError as e:
            logger.warning("Ignoring unreadable active pointer: %s", e)
            return False
        if pointer is None:
            return False

        session = await self.load_session(pointer.session_id)
        if session is None or not session.is_live:
            logger.info("Active pointer names no resumable session: %s", pointer.session_id)
            return False

        idle = (utcnow() - session.last_activity).total_seconds()
        if idle > self.settings.session_timeout:
            logger.info("Previous session %s timed out after %.0fs", session.id, idle)
            await self.end_session(session.id)
            return False

        self.lifecycle.transition(session, SessionStatus.RESUMED)
        self.current_session = session
        self._bind(session)
        self.metrics.total_restores += 1

        await self.hooks.trigger(
            HookEvent.AFTER_SESSION_RESTORE,
            {
                "session_id": session.id,
                "message_count": len(session.context.messages),
                "artifact_count": len(session.context.artifacts),
                "file_count": len(session.context.files),
            },
        )
        await self.hooks.trigger(
            HookEvent.ON_SESSION_RESUME,
            {"session_id": session.id, "idle_seconds": idle},
        )
        logger.info("Resumed session: %s", session.id)
        return True

    def require_active_session(self) -> Session:
        """
        Current session, checked against the idle timeout.

        Raises:
            ValidationError: If there is no current session
            TimeoutExpired: If it has been idle past session_timeout
        """
        session = self._require_current()
        idle = (utcnow() - session.last_activity).total_seconds()
        if idle > self.settings.session_timeout:
            raise TimeoutExpired(session.id, idle)
        return session

    async def switch_session(self, session_id: str) -> Session:
        """
        Make another live session current.

        Raises:
            ValidationError: If the session is unknown or has ended
        """
        session = self.sessions.get(session_id)
        if session is None:
            session = await self.load_session(session_id)
        if session is None:
            raise ValidationError(f"Session not found: {session_id}")
        if not session.is_live:
            raise ValidationError(f"Session {session_id} has ended")

        current = self.current_session
        if current is not None and current.id != session.id:
            await self.save_session(current.id)

        self.current_session = session
        self._bind(session)
        await self._write_pointer(session.id)
        await self.hooks.trigger(
            HookEvent.AFTER_SESSION_RESTORE,
            {"session_id": session.id, "message_count": len(session.context.messages)},
        )
        logger.info("Switched to session: %s", session.id)
        return session

    # ------------------------------------------------------------------
    # Checkpoints and branches
    # ------------------------------------------------------------------

    async def create_checkpoint(
        self,
        name: str | None = None,
        description: str | None = None,
        context: ContextData | None = None,
        files: list[str] | None = None,
        artifacts: list[str] | None = None,
    ) -> Checkpoint:
        """
        Snapshot the current session's context and metrics.

        Args:
            name: Checkpoint name (also used as its label)
            description: Free-form description
            context: Context to snapshot instead of the session's own
            files: Optional file annotations
            artifacts: Optional artifact annotations

        Raises:
            ValidationError: If there is no current session
        """
        session = self._require_current()
        name = name or f"checkpoint-{int(time.time() * 1000)}"

        async with self.lock(session.id):
            checkpoint = Checkpoint(
                session_id=session.id,
                name=name,
                label=name,
                description=description,
                context=(context or session.context).clone(),
                metrics=session.metrics.model_copy(deep=True),
                files=files,
                artifacts=artifacts,
            )
            text = dumps(encode_checkpoint(checkpoint))
            await asyncio.to_thread(write_atomic, self.checkpoint_path(checkpoint.id), text)

            session.checkpoints.append(
                CheckpointRef(id=checkpoint.id, timestamp=checkpoint.timestamp, label=checkpoint.label)
            )
            session.last_activity = utcnow()
            await self._persist(session)

        await self.hooks.trigger(
            HookEvent.ON_CHECKPOINT_CREATE,
            {"session_id": session.id, "checkpoint_id": checkpoint.id, "name": name},
        )
        logger.info("Created checkpoint: %s (%s)", checkpoint.id, name)
        return checkpoint

    def _find_checkpoint_ref(self, key: str) -> CheckpointRef | None:
        """Look a checkpoint up by id, then by label (newest first)."""
        refs = [ref for s in self.sessions.values() for ref in s.checkpoints]
        for ref in refs:
            if ref.id == key:
                return ref
        for ref in sorted(refs, key=lambda r: r.timestamp, reverse=True):
            if ref.label == key:
                return ref
        return None

    async def load_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        """
        Read a checkpoint by id or label.

        Raises:
            ValidationError: If no such checkpoint exists
            StorageError: If the checkpoint file is corrupt
        """
        path = self.checkpoint_path(checkpoint_id)
        if not path.exists():
            ref = self._find_checkpoint_ref(checkpoint_id)
            if ref is None:
                raise ValidationError(f"Checkpoint not found: {checkpoint_id}")
            path = self.checkpoint_path(ref.id)
            if not path.exists():
                raise ValidationError(f"Checkpoint not found: {checkpoint_id}")
        data = await asyncio.to_thread(read_document, path)
        return decode_checkpoint(data)

    async def restore_checkpoint(self, checkpoint_id: str) -> Session:
        """
        Overwrite the current session's context and metrics with a checkpoint.

        Raises:
            ValidationError: If there is no current session or no such checkpoint
        """
        session = self._require_current()
        checkpoint = await self.load_checkpoint(checkpoint_id)

        async with self.lock(session.id):
            session.context = checkpoint.context.clone()
            session.metrics = checkpoint.metrics.model_copy(deep=True)
            self._bind(session)
            session.last_activity = utcnow()
            await self._persist(session)

        self.metrics.total_restores += 1
        await self.hooks.trigger(
            HookEvent.AFTER_SESSION_RESTORE,
            {
                "session_id": session.id,
                "checkpoint_id": checkpoint.id,
                "message_count": len(session.context.messages),
            },
        )
        logger.info("Restored checkpoint: %s", checkpoint.id)
        return session

    def list_checkpoints(self, session_id: str | None = None) -> list[CheckpointRef]:
        session = self._resolve(session_id)
        if session is None:
            return []
        return list(session.checkpoints)

    async def branch_session(self, label: str | None = None) -> BranchResult:
        """
        Checkpoint the current session and continue in a child copy of it.

        Raises:
            ValidationError: If there is no current session
        """
        parent = self._require_current()
        label = label or f"branch-{int(time.time() * 1000)}"
        checkpoint = await self.create_checkpoint(name=f"Branch point: {label}")
        child = await self.start_new_session(
            project_name=parent.project_name,
            branch=True,
            parent_session_id=parent.id,
        )
        logger.info("Created branch %s from %s", child.id, parent.id)
        return BranchResult(
            session_id=child.id,
            checkpoint_id=checkpoint.id,
            parent_session_id=parent.id,
        )

    # ------------------------------------------------------------------
    # Autosave
    # ------------------------------------------------------------------

    def start_autosave(self) -> None:
        if self._autosave_task is not None and not self._autosave_task.done():
            return
        self._autosave_task = asyncio.create_task(self._autosave_loop())
        logger.debug("Autosave started (every %.0fs)", self.settings.autosave_interval)

    async def _autosave_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.autosave_interval)
            if self.current_session is None:
                continue
            try:
                await self.save_session()
                logger.debug("Auto-saved session")
            except Exception as e:
                logger.error("Autosave failed: %s", e, exc_info=True)

    async def stop_autosave(self) -> None:
        task = self._autosave_task
        self._autosave_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def autosave_running(self) -> bool:
        return self._autosave_task is not None and not self._autosave_task.done()

    # ------------------------------------------------------------------
    # History, export, import
    # ------------------------------------------------------------------

    def get_session_history(self, session_id: str | None = None) -> list[dict[str, Any]]:
        """Messages, file operations, artifacts, decisions and checkpoints in time order."""
        session = self._resolve(session_id)
        if session is None:
            return []

        ctx = session.context
        history: list[dict[str, Any]] = []
        for message in ctx.messages:
            history.append(
                {
                    "type": "message",
                    "timestamp": message.timestamp,
                    "role": message.role,
                    "preview": message.content[:100],
                }
            )
        for path, operations in ctx.files.items():
            for op in operations:
                history.append(
                    {"type": "file", "timestamp": op.timestamp, "file": path, "operation": op.type.value}
                )
        for artifact_id, artifact in ctx.artifacts.items():
            history.append(
                {
                    "type": "artifact",
                    "timestamp": artifact.created_at,
                    "artifact_id": artifact_id,
                    "language": artifact.language,
                }
            )
        for decision in ctx.decisions:
            history.append(
                {"type": "decision", "timestamp": decision.timestamp, "summary": decision.summary}
            )
        for ref in session.checkpoints:
            history.append({"type": "checkpoint", "timestamp": ref.timestamp, "checkpoint_id": ref.id, "label": ref.label})

        history.sort(key=lambda entry: entry["timestamp"])
        return history

    async def export_session(
        self,
        session_id: str | None = None,
        include_messages: bool = True,
        include_artifacts: bool = True,
        include_files: bool = False,
        compact: bool = True,
    ) -> Path:
        """
        Write a shareable export of a session.

        Returns:
            Path of the export under sessions/exports/

        Raises:
            ValidationError: If there is no such session
        """
        session = self._resolve(session_id)
        if session is None:
            raise ValidationError("No session to export")

        context = encode_context(session.context)
        data: dict[str, Any] = {
            "format_version": FORMAT_VERSION,
            "exported_at": utcnow().isoformat(),
            "session": {
                "id": session.id,
                "project_name": session.project_name,
                "start_time": session.start_time.isoformat(),
                "duration": session.elapsed_seconds(),
                "metrics": session.metrics.model_dump(mode="json"),
            },
        }
        if include_messages:
            data["messages"] = context["messages"]
        if include_artifacts:
            data["artifacts"] = context["artifacts"]
        if include_files:
            data["files"] = context["files"]

        path = self.config.exports_dir / f"{session.id}-export-{int(time.time() * 1000)}.json"
        text = dumps(data, indent=None if compact else 2)
        await asyncio.to_thread(write_atomic, path, text)
        logger.info("Exported session %s to %s", session.id, path)
        return path

    async def import_session(self, path: Path | str) -> Session:
        """
        Create a new current session from an export file.

        Raises:
            ValidationError: If the file does not exist
            StorageError: If it cannot be read or decoded
        """
        path = Path(path)
        if not path.exists():
            raise ValidationError(f"Export file not found: {path}")
        data = await asyncio.to_thread(read_document, path)
        version = data.get("format_version", FORMAT_VERSION)
        if version != FORMAT_VERSION:
            raise StorageError(f"Unsupported export format_version: {version}", path=str(path))

        context = decode_context(
            {
                "messages": data.get("messages", []),
                "artifacts": data.get("artifacts", []),
                "files": data.get("files", []),
            }
        )
        project_name = data.get("session", {}).get("project_name", "default")
        session = await self.start_new_session(project_name=project_name)

        async with self.lock(session.id):
            session.context = context
            session.metrics.message_count = len(context.messages)
            session.metrics.artifact_creations = len(context.artifacts)
            self._bind(session)
            await self._persist(session)

        logger.info("Imported session %s from %s", session.id, path)
        return session

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def clean_old_sessions(self, days_to_keep: int | None = None) -> int:
        """
        Delete ended sessions idle for more than days_to_keep days.

        Their checkpoints go with them.

        Returns:
            Number of sessions deleted
        """
        if days_to_keep is None:
            days_to_keep = self.settings.clean_after_days
        cutoff = utcnow() - timedelta(days=days_to_keep)
        stale = [
            s
            for s in self.sessions.values()
            if s.status == SessionStatus.ENDED and s.last_activity < cutoff
        ]
        for session in stale:
            del self.sessions[session.id]
            self._locks.pop(session.id, None)
            await asyncio.to_thread(self.session_path(session.id).unlink, missing_ok=True)
            for ref in session.checkpoints:
                await asyncio.to_thread(self.checkpoint_path(ref.id).unlink, missing_ok=True)
        logger.info("Cleaned %d old sessions", len(stale))
        return len(stale)

    def get_statistics(self) -> dict[str, Any]:
        """
        Store totals.

        Only the session named by the active pointer counts as active;
        live_sessions counts every session that has not ended.
        """
        sessions = list(self.sessions.values())
        current = self.current_session
        return {
            "total_sessions": len(sessions),
            "active_sessions": 1 if current is not None and current.is_live else 0,
            "live_sessions": sum(1 for s in sessions if s.is_live),
            "current_session_id": self.current_session.id if self.current_session else None,
            "total_messages": sum(len(s.context.messages) for s in sessions),
            "total_artifacts": sum(len(s.context.artifacts) for s in sessions),
            "total_files": sum(len(s.context.files) for s in sessions),
            "total_checkpoints": sum(len(s.checkpoints) for s in sessions),
            "average_duration": self.metrics.average_session_duration,
            "metrics": asdict(self.metrics),
        }

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def register_hooks(self) -> None:
        """Save on pause and count file operations and compactions."""
        if self._unregister:
            return

        async def on_pause(data: dict[str, Any]) -> bool:
            return await self.save_session()

        def on_file_operation(data: dict[str, Any]) -> None:
            if self.current_session is not None:
                self.current_session.metrics.file_operations += 1

        def on_compaction(data: dict[str, Any]) -> None:
            if self.current_session is not None:
                self.current_session.metrics.compaction_count += 1

        self._unregister = [
            self.hooks.register(HookEvent.ON_CONVERSATION_PAUSE, on_pause),
            self.hooks.register(HookEvent.ON_FILE_OPERATION, on_file_operation),
            self.hooks.register(HookEvent.ON_CONTEXT_COMPACTION, on_compaction),
        ]

    def unregister_hooks(self) -> None:
        for unregister in self._unregister:
            unregister()
        self._unregister = []

    async def shutdown(self) -> None:
        """Stop autosave and save the current session."""
        await self.stop_autosave()
        if self.current_session is not None:
            await self.save_session()
        self.unregister_hooks()
        logger.info("Session store shut down")


__all__ = [
    "BranchResult",
    "StoreMetrics",
    "SessionStore",
    "write_atomic",
    "read_document",
]
