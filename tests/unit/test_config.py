"""
Unit tests for configuration loading.
"""

import json
import sys
import tempfile
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from continuity.config import ContinuityConfig, TrackerConfig

ENV_VARS = [
    "CONTINUITY_HOME",
    "CONTINUITY_MAX_TOKENS",
    "CONTINUITY_SESSION_TIMEOUT",
    "CONTINUITY_AUTOSAVE_INTERVAL",
    "CONTINUITY_DEBUG",
]


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clean_env(monkeypatch, temp_dir):
    """Run in an empty directory with no CONTINUITY_* variables set."""
    monkeypatch.chdir(temp_dir)
    for name in ENV_VARS:
        # setenv first so monkeypatch restores the variable's absence afterwards,
        # even if load_dotenv sets it during the test
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


class TestDefaults:
    def test_tracker_defaults(self):
        config = TrackerConfig()
        assert config.max_context_tokens == 200_000
        assert config.warning_threshold == 0.85
        assert config.critical_threshold == 0.95
        assert config.recent_messages == 20

    def test_paths_derive_from_home(self, temp_dir):
        config = ContinuityConfig(home=temp_dir)
        assert config.sessions_dir == temp_dir / "sessions"
        assert config.checkpoints_dir == temp_dir / "sessions" / "checkpoints"
        assert config.active_pointer_path == temp_dir / "active-session.json"


class TestLoad:
    """Tests for ContinuityConfig.load."""

    def test_missing_file_uses_defaults(self, temp_dir, clean_env):
        config = ContinuityConfig.load(temp_dir / "missing.json")
        assert config.tracker.max_context_tokens == 200_000
        assert config.home == temp_dir / ".continuity"

    def test_corrupt_file_uses_defaults(self, temp_dir, clean_env):
        path = temp_dir / "config.json"
        path.write_text("{broken")

        config = ContinuityConfig.load(path)

        assert config.sessions.session_timeout == 3600.0

    def test_unknown_keys_are_ignored(self, temp_dir, clean_env):
        path = temp_dir / "config.json"
        path.write_text(
            json.dumps(
                {
                    "home": str(temp_dir / "state"),
                    "tracker": {"max_context_tokens": 1000, "bogus": True},
                    "sessions": {"session_timeout": 10},
                    "unknown_section": {},
                }
            )
        )

        config = ContinuityConfig.load(path)

        assert config.home == temp_dir / "state"
        assert config.tracker.max_context_tokens == 1000
        assert config.sessions.session_timeout == 10

    def test_env_overrides_file(self, temp_dir, clean_env):
        path = temp_dir / "config.json"
        path.write_text(json.dumps({"tracker": {"max_context_tokens": 1000}}))
        clean_env.setenv("CONTINUITY_MAX_TOKENS", "5000")
        clean_env.setenv("CONTINUITY_DEBUG", "true")
        clean_env.setenv("CONTINUITY_HOME", str(temp_dir / "env-home"))

        config = ContinuityConfig.load(path)

        assert config.tracker.max_context_tokens == 5000
        assert config.debug is True
        assert config.home == temp_dir / "env-home"

    def test_env_can_be_disabled(self, temp_dir, clean_env):
        clean_env.setenv("CONTINUITY_MAX_TOKENS", "5000")

        config = ContinuityConfig.load(temp_dir / "missing.json", env=False)

        assert config.tracker.max_context_tokens == 200_000

    def test_dotenv_file(self, temp_dir, clean_env):
        (temp_dir / ".env").write_text("CONTINUITY_SESSION_TIMEOUT=42\n")

        config = ContinuityConfig.load(temp_dir / "missing.json")

        assert config.sessions.session_timeout == 42.0


def test_save_and_load_round_trip(temp_dir, clean_env):
    path = temp_dir / "nested" / "config.json"
    config = ContinuityConfig(home=temp_dir / "state", project_root=temp_dir)
    config.tracker.recent_messages = 7
    config.restorer.critical_files = ["README.md"]

    config.save(path)
    loaded = ContinuityConfig.load(path)

    assert loaded.home == config.home
    assert loaded.project_root == config.project_root
    assert loaded.tracker == config.tracker
    assert loaded.restorer.critical_files == ["README.md"]
