"""
Configuration management for the continuity engine.

Settings come from three layers, later layers winning:
1. Dataclass defaults
2. JSON config file (~/.claude/continuity-config.json)
3. CONTINUITY_* environment variables (a .env in the working directory is loaded first)
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

CONFIG_PATH = Path.home() / ".claude" / "continuity-config.json"


def _filter_dataclass_fields(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter dict to only include fields that exist in the dataclass."""
    valid_fields = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_fields}


def default_home() -> Path:
    """Root directory for persisted state (.continuity under the cwd)."""
    return Path.cwd() / ".continuity"


@dataclass
class TrackerConfig:
    """Context window budget and compaction policy."""

    max_context_tokens: int = 200_000
    warning_threshold: float = 0.85
    critical_threshold: float = 0.95
    recent_messages: int = 20
    auto_compact: bool = True
    # Tool usage is trimmed to the newest tool_usage_keep once it exceeds tool_usage_limit
    tool_usage_limit: int = 100
    tool_usage_keep: int = 50
    aggressive_keep_decisions: int = 20
    aggressive_keep_errors: int = 20


@dataclass
class SummarizerConfig:
    """Compression targets and summary archive settings."""

    compression_targets: dict[str, float] = field(
        default_factory=lambda: {"aggressive": 0.2, "normal": 0.4, "light": 0.7}
    )
    max_iterations: int = 5
    archive_limit: int = 100


@dataclass
class SessionConfig:
    """Session persistence and lifecycle settings."""

    session_timeout: float = 3600.0  # seconds
    autosave_interval: float = 300.0  # seconds
    max_sessions: int = 10
    clean_after_days: int = 30


@dataclass
class RestorerConfig:
    """Restoration bundle limits."""

    max_restoration_tokens: int = 50_000
    file_reread_limit: int = 10
    history_depth: int = 50
    artifact_limit: int = 10
    decision_limit: int = 10
    error_limit: int = 5
    history_size: int = 50
    critical_files: list[str] = field(
        default_factory=lambda: [
            "pyproject.toml",
            "package.json",
            "README.md",
            ".env",
            "tsconfig.json",
            "setup.cfg",
        ]
    )


@dataclass
class ContinuityConfig:
    """Complete engine configuration."""

    home: Path = field(default_factory=default_home)
    project_root: Path = field(default_factory=Path.cwd)
    debug: bool = False
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    summarizer: SummarizerConfig = field(default_factory=SummarizerConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    restorer: RestorerConfig = field(default_factory=RestorerConfig)

    @property
    def sessions_dir(self) -> Path:
        return self.home / "sessions"

    @property
    def checkpoints_dir(self) -> Path:
        return self.sessions_dir / "checkpoints"

    @property
    def exports_dir(self) -> Path:
        return self.sessions_dir / "exports"

    @property
    def summaries_dir(self) -> Path:
        return self.home / "summaries"

    @property
    def active_pointer_path(self) -> Path:
        return self.home / "active-session.json"

    @classmethod
    def load(cls, path: Path | None = None, env: bool = True) -> "ContinuityConfig":
        """
        Load configuration from file, then apply environment overrides.

        Args:
            path: Config file path (default: ~/.claude/continuity-config.json)
            env: Apply CONTINUITY_* environment overrides

        Returns:
            ContinuityConfig with defaults for anything not set
        """
        if path is None:
            path = CONFIG_PATH

        data: dict[str, Any] = {}
        if path.exists():
            try:
                data = json.loads(path.read_text())
            except (json.JSONDecodeError, OSError):
                # Use defaults on error
                data = {}

        config = cls(
            tracker=TrackerConfig(**_filter_dataclass_fields(data.get("tracker", {}), TrackerConfig)),
            summarizer=SummarizerConfig(
                **_filter_dataclass_fields(data.get("summarizer", {}), SummarizerConfig)
            ),
            sessions=SessionConfig(**_filter_dataclass_fields(data.get("sessions", {}), SessionConfig)),
            restorer=RestorerConfig(**_filter_dataclass_fields(data.get("restorer", {}), RestorerConfig)),
            debug=bool(data.get("debug", False)),
        )
        if data.get("home"):
            config.home = Path(data["home"]).expanduser()
        if data.get("project_root"):
            config.project_root = Path(data["project_root"]).expanduser()

        if env:
            config.apply_env()
        return config

    def apply_env(self) -> None:
        """Apply CONTINUITY_* overrides, reading a local .env first."""
        env_file = Path.cwd() / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        home = os.getenv("CONTINUITY_HOME")
        if home:
            self.home = Path(home).expanduser()
        max_tokens = os.getenv("CONTINUITY_MAX_TOKENS")
        if max_tokens:
            self.tracker.max_context_tokens = int(max_tokens)
        timeout = os.getenv("CONTINUITY_SESSION_TIMEOUT")
        if timeout:
            self.sessions.session_timeout = float(timeout)
        interval = os.getenv("CONTINUITY_AUTOSAVE_INTERVAL")
        if interval:
            self.sessions.autosave_interval = float(interval)
        debug = os.getenv("CONTINUITY_DEBUG")
        if debug is not None:
            self.debug = debug.lower() in ("1", "true", "yes")

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(
                {
                    "home": str(self.home),
                    "project_root": str(self.project_root),
                    "debug": self.debug,
                    "tracker": asdict(self.tracker),
                    "summarizer": asdict(self.summarizer),
                    "sessions": asdict(self.sessions),
                    "restorer": asdict(self.restorer),
                },
                f,
                indent=2,
            )


__all__ = [
    "CONFIG_PATH",
    "TrackerConfig",
    "SummarizerConfig",
    "SessionConfig",
    "RestorerConfig",
    "ContinuityConfig",
    "default_home",
]
