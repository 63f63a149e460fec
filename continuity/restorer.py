"""
Context Restorer.

Rebuilds a compact Markdown bundle describing where a conversation left
off (project, task, history, files, artifacts, decisions, errors) and
injects it into the tracker as a critical system message. Restoration
never raises: any failure falls back to a minimal notice.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
import tomllib
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .collaborators import FileTracker
from .config import ContinuityConfig
from .errors import ContinuityError
from .hooks import HookEngine, HookEvent
from .models import HIGH_IMPACT, Priority, Session, utcnow
from .session_store import SessionStore
from .summarizer import Summarizer
from .tokens import estimate_tokens
from .tracker import ContextWindowTracker

logger = logging.getLogger(__name__)

HEADER = (
    "# Context Restoration\n\n"
    "The conversation context was reset. The sections below summarize the "
    "state of the work so far."
)
FOOTER = "---\nContinue from where the conversation left off."
TRUNCATION_MARKER = "\n\n[Restoration truncated]"

# Sections removed, in this order, until the bundle fits the token limit
DROP_ORDER = ("recent_history", "files", "artifacts", "decisions")

KNOWN_DIRECTORIES = [
    "src", "lib", "app", "tests", "test", "docs", "scripts",
    "components", "pages", "api", "cmd", "pkg", "internal",
]

TECHNOLOGIES = {
    "react": "React",
    "next": "Next.js",
    "vue": "Vue",
    "svelte": "Svelte",
    "@angular/core": "Angular",
    "express": "Express",
    "typescript": "TypeScript",
    "jest": "Jest",
    "fastapi": "FastAPI",
    "django": "Django",
    "flask": "Flask",
    "pydantic": "Pydantic",
    "sqlalchemy": "SQLAlchemy",
    "numpy": "NumPy",
    "pandas": "pandas",
    "pytest": "pytest",
    "tokio": "Tokio",
    "serde": "Serde",
    "gin": "Gin",
}

_REQUIREMENT_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._\-]*)")


@dataclass
class ProjectInfo:
    """What the manifests in the project root say about the project."""

    name: str | None = None
    type: str | None = None
    version: str | None = None
    manifests: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    technologies: list[str] = field(default_factory=list)
    directories: list[str] = field(default_factory=list)


@dataclass
class RestorationRecord:
    timestamp: datetime
    session_id: str | None
    duration_ms: float
    tokens_restored: int


@dataclass
class RestorationResult:
    success: bool
    context: str
    minimal: bool = False
    metrics: RestorationRecord | None = None


@dataclass
class _Section:
    name: str
    text: str


def _requirement_name(line: str) -> str | None:
    line = line.strip()
    if not line or line.startswith(("#", "-")):
        return None
    match = _REQUIREMENT_NAME.match(line)
    return match.group(1).lower() if match else None


def _js_project_type(deps: dict[str, Any]) -> str:
    if "next" in deps:
        return "Next.js Application"
    if "react" in deps:
        return "React Application"
    if "vue" in deps:
        return "Vue Application"
    if "express" in deps:
        return "Express Server"
    if "@angular/core" in deps:
        return "Angular Application"
    return "Node.js Project"


def _table(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _string(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _read_manifest(info: ProjectInfo, root: Path, name: str) -> None:
    path = root / name
    if name == "pyproject.toml":
        data = tomllib.loads(path.read_text(encoding="utf-8"))
        project = _table(data.get("project")) or _table(_table(data.get("tool")).get("poetry"))
        info.name = info.name or _string(project.get("name"))
        info.version = info.version or _string(project.get("version"))
        info.type = info.type or "Python Project"
        deps = project.get("dependencies")
        if isinstance(deps, dict):
            deps = list(deps)
        names = [d for d in deps if isinstance(d, str)] if isinstance(deps, list) else []
        info.dependencies += [n for n in (_requirement_name(d) for d in names) if n and n != "python"]
    elif name == "setup.py":
        match = re.search(r"name\s*=\s*['\"]([^'\"]+)['\"]", path.read_text(encoding="utf-8"))
        if match:
            info.name = info.name or match.group(1)
        info.type = info.type or "Python Project"
    elif name == "requirements.txt":
        lines = path.read_text(encoding="utf-8").splitlines()
        info.dependencies += [n for n in (_requirement_name(line) for line in lines) if n]
        info.type = info.type or "Python Project"
    elif name == "package.json":
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("package.json is not a JSON object")
        deps = {**_table(data.get("dependencies")), **_table(data.get("devDependencies"))}
        info.name = info.name or _string(data.get("name"))
        info.version = info.version or _string(data.get("version"))
        info.type = info.type or _js_project_type(deps)
        info.dependencies += list(deps)
    elif name == "Cargo.toml":
        data = tomllib.loads(path.read_text(encoding="utf-8"))
        package = _table(data.get("package"))
        info.name = info.name or _string(package.get("name"))
        info.version = info.version or _string(package.get("version"))
        info.type = info.type or "Rust Crate"
        info.dependencies += list(_table(data.get("dependencies")))
    elif name == "go.mod":
        text = path.read_text(encoding="utf-8")
        match = re.search(r"^module\s+(\S+)", text, re.MULTILINE)
        if match:
            info.name = info.name or match.group(1)
        info.type = info.type or "Go Module"
        info.dependencies += re.findall(r"^\s+([\w./\-]+)\s+v[\w.\-+]+", text, re.MULTILINE)


MANIFESTS = ["pyproject.toml", "setup.py", "requirements.txt", "package.json", "Cargo.toml", "go.mod"]


def detect_project(root: Path) -> ProjectInfo:
    """
    Inspect manifests and top-level directories under root.

    Unreadable or malformed manifests are skipped.
    """
    info = ProjectInfo()
    for name in MANIFESTS:
        if not (root / name).exists():
            continue
        try:
            _read_manifest(info, root, name)
            info.manifests.append(name)
        except (OSError, ValueError) as e:
            logger.warning("Skipping unreadable manifest %s: %s", name, e)

    seen: list[str] = []
    for dep in info.dependencies:
        if dep not in seen:
            seen.append(dep)
    info.dependencies = seen
    info.technologies = [TECHNOLOGIES[d.lower()] for d in seen if d.lower() in TECHNOLOGIES]
    info.directories = [d for d in KNOWN_DIRECTORIES if (root / d).is_dir()]
    if info.name is None:
        info.name = root.name
    return info


class ContextRestorer:
    """
    Builds and injects the restoration bundle.

    Example:
        result = await restorer.restore_full_context()
        if result.minimal:
            ...
    """

    def __init__(
        self,
        config: ContinuityConfig,
        hooks: HookEngine,
        tracker: ContextWindowTracker,
        store: SessionStore,
        summarizer: Summarizer,
        file_tracker: FileTracker,
    ):
        self.config = config
        self.settings = config.restorer
        self.hooks = hooks
        self.tracker = tracker
        self.store = store
        self.summarizer = summarizer
        self.file_tracker = file_tracker

        self.history: deque[RestorationRecord] = deque(maxlen=self.settings.history_size)
        self.total_restorations = 0

    @property
    def last_restoration(self) -> RestorationRecord | None:
        return self.history[-1] if self.history else None

    def estimate(self, text: str) -> int:
        return estimate_tokens(text, self.tracker.estimator)

    async def restore_full_context(
        self,
        session_id: str | None = None,
        include_history: bool = True,
        include_files: bool = True,
        include_artifacts: bool = True,
        include_decisions: bool = True,
        include_errors: bool = True,
    ) -> RestorationResult:
        """
        Build the restoration bundle for a session and inject it.

        Args:
            session_id: Session to restore (default: the current session)
            include_history: Summarize older messages and preview recent ones
            include_files: Re-read priority files from the file tracker
            include_artifacts: List recent artifacts
            include_decisions: List high-impact decisions
            include_errors: List recent resolved and unresolved errors

        Returns:
            RestorationResult; minimal=True when the fallback was used
        """
        logger.info("Starting full context restoration")
        start = time.perf_counter()
        try:
            session = await self._load_session(session_id)
            sections = await self._build_sections(
                session,
                include_history=include_history,
                include_files=include_files,
                include_artifacts=include_artifacts,
                include_decisions=include_decisions,
                include_errors=include_errors,
            )
            text = self.fit_to_budget(sections)
            await self._apply(text)
            await self.reread_critical_files()

            record = RestorationRecord(
                timestamp=utcnow(),
                session_id=session.id,
                duration_ms=(time.perf_counter() - start) * 1000,
                tokens_restored=self.estimate(text),
            )
            self.history.append(record)
            self.total_restorations += 1

            await self.hooks.trigger(
                HookEvent.AFTER_CONTEXT_RESTORE,
                {"session_id": session.id, "tokens": record.tokens_restored},
            )
            logger.info("Context restoration complete in %.1fms", record.duration_ms)
            return RestorationResult(success=True, context=text, minimal=False, metrics=record)
        except Exception as e:
            logger.error("Context restoration failed: %s", e, exc_info=True)
            return await self.perform_minimal_restoration()

    async def _load_session(self, session_id: str | None) -> Session:
        if session_id is None:
            session = self.store.current_session
        else:
            session = self.store.sessions.get(session_id) or await self.store.load_session(session_id)
        if session is None:
            raise ContinuityError(f"No session available to restore: {session_id}")
        return session

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    async def _build_sections(
        self,
        session: Session,
        include_history: bool,
        include_files: bool,
        include_artifacts: bool,
        include_decisions: bool,
        include_errors: bool,
    ) -> list[_Section]:
        sections = [
            _Section("header", HEADER),
            _Section("session", self.format_session_info(session)),
        ]
        project = await asyncio.to_thread(detect_project, self.config.project_root)
        sections.append(_Section("project", self.format_project(project)))

        tasks = self.format_tasks(session)
        if tasks:
            sections.append(_Section("task", tasks))

        if include_history:
            summary, recent = await self._history(session)
            if summary:
                sections.append(_Section("history", f"## Previous Conversation\n\n{summary}"))
            if recent:
                sections.append(_Section("recent_history", recent))
        if include_files:
            files = await self._files()
            if files:
                sections.append(_Section("files", files))
        if include_artifacts:
            artifacts = self.format_artifacts(session)
            if artifacts:
                sections.append(_Section("artifacts", artifacts))
        if include_decisions:
            decisions = self.format_decisions(session)
            if decisions:
                sections.append(_Section("decisions", decisions))
        if include_errors:
            errors = self.format_errors(session)
            if errors:
                sections.append(_Section("errors", errors))

        sections.append(_Section("footer", FOOTER))
        return sections

    def format_session_info(self, session: Session) -> str:
        elapsed = int(session.elapsed_seconds())
        hours, minutes = elapsed // 3600, (elapsed % 3600) // 60
        ctx = session.context
        return (
            "## Session Information\n\n"
            f"Session {session.id} - {session.project_name}\n"
            f"Duration: {hours}h {minutes}m\n"
            f"Messages: {len(ctx.messages)}\n"
            f"Artifacts: {len(ctx.artifacts)}\n"
            f"Files: {len(ctx.files)}\n"
            f"Status: {session.status.value}"
        )

    def format_project(self, project: ProjectInfo) -> str:
        lines = ["## Project Context", ""]
        if project.name:
            lines.append(f"**Project**: {project.name}")
        if project.type:
            lines.append(f"**Type**: {project.type}")
        if project.version:
            lines.append(f"**Version**: {project.version}")
        if project.technologies:
            lines.append(f"**Technologies**: {', '.join(project.technologies)}")
        if project.dependencies:
            lines.append(f"**Dependencies**: {', '.join(project.dependencies[:15])}")
        if project.directories:
            lines += ["", "**Structure**:", "```"]
            lines += [f"{d}/" for d in project.directories[:10]]
            lines.append("```")
        return "\n".join(lines)

    def format_tasks(self, session: Session) -> str | None:
        tasks = session.context.tasks
        if not tasks:
            return None
        recent = tasks[-5:]
        completed = sum(1 for t in tasks if t.completed)
        lines = [
            "## Current Task",
            "",
            f"**Active**: {recent[-1].description}",
            f"**Progress**: {completed} completed, {len(tasks) - completed} pending",
        ]
        if len(recent) > 1:
            lines += ["", "**Recent Tasks**:"]
            lines += [f"- {'[x]' if t.completed else '[ ]'} {t.description}" for t in recent]
        return "\n".join(lines)

    async def _history(self, session: Session) -> tuple[str | None, str | None]:
        messages = [m for m in session.context.messages if m.metadata.get("type") != "restoration"]
        depth = self.settings.history_depth
        summary = None
        if len(messages) > depth:
            result = await self.summarizer.summarize_conversation(
                messages[:-depth], compression_level="aggressive", depth="shallow"
            )
            summary = result.summary

        recent = messages[-depth:]
        if not recent:
            return summary, None
        lines = ["## Recent Messages", ""]
        lines += [f"- **{m.role}**: {m.content[:200]}" for m in recent]
        return summary, "\n".join(lines)

    async def _files(self) -> str | None:
        candidates = await self.file_tracker.get_files_for_restore()
        lines = ["## Files in Context", ""]
        restored = 0
        for candidate in candidates[: self.settings.file_reread_limit]:
            path = Path(candidate.path)
            try:
                content = await asyncio.to_thread(path.read_text, encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Failed to restore file %s: %s", path, e)
                continue
            await self.file_tracker.track_read(str(path), content)
            lines += [
                f"**{path.name}**",
                f"- Path: {path}",
                f"- Size: {len(content.splitlines())} lines",
                "```",
                content[:500],
                "```",
                "",
            ]
            restored += 1
        if not restored:
            return None
        return "\n".join(lines).rstrip()

    def format_artifacts(self, session: Session) -> str | None:
        artifacts = sorted(
            session.context.artifacts.values(), key=lambda a: a.created_at, reverse=True
        )[: self.settings.artifact_limit]
        if not artifacts:
            return None
        lines = ["## Created Artifacts", ""]
        for artifact in artifacts:
            language = artifact.language or ""
            lines += [
                f"**{artifact.id}** ({language or 'text'})",
                f"- Purpose: {artifact.purpose or 'Code implementation'}",
                f"- Created: {artifact.created_at.isoformat()}",
                f"```{language}",
                artifact.content[:200],
                "```",
                "",
            ]
        return "\n".join(lines).rstrip()

    def format_decisions(self, session: Session) -> str | None:
        decisions = [d for d in session.context.decisions if d.impact in HIGH_IMPACT]
        decisions = decisions[-self.settings.decision_limit :]
        if not decisions:
            return None
        lines = ["## Key Decisions", ""]
        for decision in decisions:
            lines.append(f"**{decision.summary}**")
            if decision.reasoning:
                lines.append(f"- Reasoning: {decision.reasoning[:200]}")
            lines += [f"- Impact: {decision.impact.value}", ""]
        return "\n".join(lines).rstrip()

    def format_errors(self, session: Session) -> str | None:
        limit = self.settings.error_limit
        resolved = [e for e in session.context.errors if e.resolved][-limit:]
        unresolved = [e for e in session.context.errors if not e.resolved][-limit:]
        if not resolved and not unresolved:
            return None
        lines = ["## Error History", ""]
        if resolved:
            lines.append("### Resolved Errors")
            for error in resolved:
                lines += [f"- **Error**: {error.error}", f"  **Solution**: {error.solution}"]
            lines.append("")
        if unresolved:
            lines.append("### Unresolved Errors")
            lines += [f"- {error.error}" for error in unresolved]
        return "\n".join(lines).rstrip()

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    @staticmethod
    def render(sections: list[_Section]) -> str:
        return "\n\n".join(s.text for s in sections)

    def fit_to_budget(self, sections: list[_Section]) -> str:
        """
        Render sections within max_restoration_tokens.

        Drops recent history previews, files, artifacts and decisions in that
        order, then hard-truncates whatever is left.
        """
        limit = self.settings.max_restoration_tokens
        active = list(sections)
        text = self.render(active)
        for name in DROP_ORDER:
            if self.estimate(text) <= limit:
                return text
            logger.debug("Restoration over budget, dropping section: %s", name)
            active = [s for s in active if s.name != name]
            text = self.render(active)
        if self.estimate(text) <= limit:
            return text
        return self.truncate(text, limit)

    def truncate(self, text: str, limit: int) -> str:
        marker = TRUNCATION_MARKER if self.estimate(TRUNCATION_MARKER) < limit else ""
        kept = text
        while kept and self.estimate(kept + marker) > limit:
            ratio = limit / self.estimate(kept + marker)
            kept = kept[: min(len(kept) - 1, int(len(kept) * ratio))]
        return kept + marker if kept else ""

    # ------------------------------------------------------------------
    # Injection and fallbacks
    # ------------------------------------------------------------------

    async def _apply(self, text: str) -> None:
        await self.tracker.add_message(
            text,
            role="system",
            priority=Priority.CRITICAL,
            metadata={"type": "restoration", "timestamp": utcnow().isoformat()},
        )

    async def reread_critical_files(self) -> int:
        """Re-read allowlisted project files through the file tracker."""
        count = 0
        for name in self.settings.critical_files:
            path = self.config.project_root / name
            if not path.exists():
                continue
            try:
                content = await asyncio.to_thread(path.read_text, encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Failed to re-read %s: %s", name, e)
                continue
            await self.file_tracker.track_read(str(path), content)
            logger.debug("Re-read critical file: %s", name)
            count += 1
        return count

    async def minimal_project_info(self) -> str:
        try:
            project = await asyncio.to_thread(detect_project, self.config.project_root)
        except Exception as e:
            logger.warning("Project detection failed: %s", e)
            return "Project information unavailable."
        return f"Project: {project.name or 'Unknown'}\nVersion: {project.version or '0.0.0'}"

    async def perform_minimal_restoration(self) -> RestorationResult:
        logger.warning("Performing minimal context restoration")
        text = (
            "## Session Restored (Minimal)\n\n"
            "Previous session context unavailable. Starting fresh.\n\n"
            f"{await self.minimal_project_info()}\n\n"
            "Please provide task details to continue."
        )
        try:
            await self._apply(text)
        except ContinuityError as e:
            logger.error("Could not inject minimal restoration: %s", e)
        return RestorationResult(success=False, context=text, minimal=True, metrics=None)

    def get_statistics(self) -> dict[str, Any]:
        records = list(self.history)
        last = self.last_restoration
        return {
            "last": asdict(last) if last else None,
            "total": self.total_restorations,
            "average_duration_ms": (
                sum(r.duration_ms for r in records) / len(records) if records else 0.0
            ),
            "average_tokens": (
                sum(r.tokens_restored for r in records) / len(records) if records else 0.0
            ),
        }


__all__ = [
    "ProjectInfo",
    "RestorationRecord",
    "RestorationResult",
    "ContextRestorer",
    "detect_project",
    "MANIFESTS",
]
