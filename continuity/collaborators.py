"""
Interfaces for components the engine talks to but does not implement.

The model interface is only a seam (no generation happens here). The file
tracker ships with an in-memory implementation used by the restorer to
decide which files to re-read after a reset.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from .models import FileOpType, Priority, utcnow

logger = logging.getLogger(__name__)


class ModelInterface(Protocol):
    """Anything that can answer a prompt."""

    async def generate_response(self, prompt: str, options: dict[str, Any] | None = None) -> str:
        ...


@dataclass
class TrackedFile:
    """A file touched during the conversation."""

    path: str
    priority: float = float(Priority.LOW)
    last_access: datetime = field(default_factory=utcnow)
    read_count: int = 0
    write_count: int = 0
    edit_count: int = 0

    @property
    def access_score(self) -> int:
        return self.read_count + self.write_count * 2 + self.edit_count * 3

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "priority": self.priority,
            "last_access": self.last_access.isoformat(),
            "read_count": self.read_count,
            "write_count": self.write_count,
            "edit_count": self.edit_count,
        }


class FileTracker(Protocol):
    """Tracks file access and ranks files for re-reading on restore."""

    async def get_tracked_files(self) -> dict[str, dict[str, Any]]:
        ...

    async def get_files_for_restore(self) -> list[TrackedFile]:
        ...

    async def track_read(self, path: str, content: str | None = None) -> None:
        ...

    async def track_write(self, path: str, content: str | None = None) -> None:
        ...


class InMemoryFileTracker:
    """
    Priority-ranked file tracker kept in memory.

    Initial priority comes from the file name: critical names 1000, entry
    points and config files 100, source files 10, everything else 1.
    Writes and edits raise priority to at least 100; frequent access
    multiplies it (capped at 1000).
    """

    HIGH_PATTERNS = [
        re.compile(r"^(?:src/)?(?:index|main|app|__main__)\.(?:py|js|ts|jsx|tsx)$"),
        re.compile(r"config\.(?:py|js|ts|json|toml|ya?ml)$"),
    ]
    MEDIUM_PATTERNS = [
        re.compile(r"\.(?:py|js|ts|jsx|tsx|go|rs)$"),
        re.compile(r"\.(?:css|scss|sass)$"),
        re.compile(r"README\.md$", re.IGNORECASE),
    ]

    def __init__(
        self,
        project_root: Path | None = None,
        critical_files: list[str] | None = None,
        restore_limit: int = 20,
    ):
        self.project_root = project_root or Path.cwd()
        self.critical_files = list(critical_files or [])
        self.restore_limit = restore_limit
        self._files: dict[str, TrackedFile] = {}

    def _relative(self, path: str) -> str:
        try:
            return Path(path).resolve().relative_to(self.project_root.resolve()).as_posix()
        except ValueError:
            return Path(path).as_posix()

    def initial_priority(self, path: str) -> float:
        if Path(path).name in self.critical_files:
            return float(Priority.CRITICAL)
        relative = self._relative(path)
        if any(p.search(relative) for p in self.HIGH_PATTERNS):
            return float(Priority.HIGH)
        if any(p.search(relative) for p in self.MEDIUM_PATTERNS):
            return float(Priority.MEDIUM)
        return float(Priority.LOW)

    def _entry(self, path: str) -> TrackedFile:
        entry = self._files.get(path)
        if entry is None:
            entry = TrackedFile(path=path, priority=self.initial_priority(path))
            self._files[path] = entry
        return entry

    def _touch(self, entry: TrackedFile) -> None:
        if entry.access_score > 10:
            entry.priority = min(float(Priority.CRITICAL), entry.priority * 1.5)
        entry.last_access = utcnow()

    async def track_read(self, path: str, content: str | None = None) -> None:
        entry = self._entry(path)
        entry.read_count += 1
        self._touch(entry)

    async def track_write(self, path: str, content: str | None = None) -> None:
        entry = self._entry(path)
        entry.write_count += 1
        entry.priority = max(entry.priority, float(Priority.HIGH))
        self._touch(entry)

    async def track_edit(self, path: str, content: str | None = None) -> None:
        entry = self._entry(path)
        entry.edit_count += 1
        entry.priority = max(entry.priority, float(Priority.HIGH))
        self._touch(entry)

    async def track_operation(self, op_type: FileOpType | str, path: str) -> None:
        """Route a tracker file operation to the matching counter."""
        op_type = FileOpType(op_type)
        if op_type == FileOpType.READ:
            await self.track_read(path)
        elif op_type == FileOpType.WRITE:
            await self.track_write(path)
        else:
            await self.track_edit(path)

    async def get_tracked_files(self) -> dict[str, dict[str, Any]]:
        return {path: entry.to_dict() for path, entry in self._files.items()}

    async def get_files_for_restore(self) -> list[TrackedFile]:
        """
        Files worth re-reading, highest priority first.

        Tracked files are ordered by priority then most recent access and
        capped at restore_limit; existing critical files under the project
        root are always appended. Paths that no longer exist are skipped.
        """
        ranked = sorted(
            self._files.values(),
            key=lambda f: (f.priority, f.last_access),
            reverse=True,
        )
        selected = [f for f in ranked[: self.restore_limit] if Path(f.path).exists()]

        seen = {Path(f.path).resolve() for f in selected}
        for name in self.critical_files:
            candidate = self.project_root / name
            if candidate.exists() and candidate.resolve() not in seen:
                selected.append(TrackedFile(path=str(candidate), priority=float(Priority.CRITICAL)))
        return selected


__all__ = [
    "ModelInterface",
    "FileTracker",
    "TrackedFile",
    "InMemoryFileTracker",
]
