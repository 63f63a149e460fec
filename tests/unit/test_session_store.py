"""
Unit tests for the session store.

Tests persistence, the active pointer, checkpoints, branching and resume.
"""

import asyncio
import sys
import tempfile
from datetime import timedelta
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from continuity.config import ContinuityConfig, SessionConfig
from continuity.errors import TimeoutExpired, ValidationError
from continuity.hooks import HookEngine, HookEvent
from continuity.models import SessionStatus, utcnow
from continuity.serialization import dumps, encode_context, encode_session
from continuity.session_store import SessionStore, read_document, write_atomic
from continuity.tracker import ContextWindowTracker


def prose(n: int) -> str:
    return f"Message {n} about deployment. " + "We walked through the staging environment in detail. " * 6


def make_store(config: ContinuityConfig) -> SessionStore:
    hooks = HookEngine()
    tracker = ContextWindowTracker(config.tracker, hooks)
    return SessionStore(config, hooks, tracker)


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_dir):
    return ContinuityConfig(home=temp_dir / "home", project_root=temp_dir)


@pytest.fixture
async def store(config):
    store = make_store(config)
    await store.initialize()
    yield store
    await store.stop_autosave()


class TestSessionPersistence:
    """Tests for session files and the active pointer."""

    @pytest.mark.asyncio
    async def test_start_persists_and_points(self, store):
        session = await store.start_new_session("demo")

        assert store.session_path(session.id).exists()
        pointer = await store.read_pointer()
        assert pointer.session_id == session.id
        assert store.tracker.session_id == session.id
        assert store.tracker.context is session.context

    @pytest.mark.asyncio
    async def test_save_load_save_is_idempotent(self, store, config):
        session = await store.start_new_session()
        await store.tracker.add_message("Set up the database")
        await store.tracker.track_decision("Use postgres", "JSONB", "high")
        await store.save_session()
        path = store.session_path(session.id)
        first = read_document(path)

        other = make_store(config)
        loaded = await other.load_session(session.id)
        await other.save_session(loaded.id)
        second = read_document(path)

        first.pop("last_activity")
        second.pop("last_activity")
        assert first == second

    @pytest.mark.asyncio
    async def test_corrupt_session_file_is_skipped(self, store, config):
        config.sessions_dir.joinpath("broken.json").write_text("{not json")

        assert await store.load_session("broken") is None
        assert await store.load_sessions() == 0

    @pytest.mark.asyncio
    async def test_missing_session(self, store):
        assert await store.load_session("nope") is None


class TestCheckpoints:
    """Tests for checkpoint create and restore."""

    @pytest.mark.asyncio
    async def test_restore_discards_later_changes(self, store):
        await store.start_new_session()
        await store.tracker.add_message("Set up the database")
        before = encode_context(store.current_session.context)
        await store.create_checkpoint("cp1", description="before decisions")

        await store.tracker.track_decision("Use postgres")
        session = await store.restore_checkpoint("cp1")

        assert session.context.decisions == []
        assert encode_context(session.context) == before
        assert store.tracker.context is session.context
        assert store.tracker.current_tokens == sum(store.tracker.recount_tokens().values())

    @pytest.mark.asyncio
    async def test_restore_brings_back_metrics(self, store):
        store.register_hooks()
        await store.start_new_session()
        await store.tracker.add_message("Set up the database")
        await store.tracker.track_file_operation("read", "schema.sql", "CREATE TABLE t (id int);")
        before = store.current_session.metrics.model_dump()
        await store.create_checkpoint("cp1")

        await store.tracker.track_decision("Use postgres")
        await store.tracker.track_file_operation("edit", "schema.sql", "CREATE TABLE t (id bigint);")
        for i in range(25):
            await store.tracker.add_message(prose(i))
        await store.tracker.compact_context()
        changed = store.current_session.metrics
        assert changed.file_operations == 2
        assert changed.compaction_count == 1
        assert changed.model_dump() != before

        session = await store.restore_checkpoint("cp1")

        assert session.metrics.model_dump() == before
        assert store.tracker.metrics is session.metrics

    @pytest.mark.asyncio
    async def test_checkpoint_is_recorded_on_session(self, store):
        await store.start_new_session()
        checkpoint = await store.create_checkpoint("cp1")

        refs = store.list_checkpoints()
        assert [r.id for r in refs] == [checkpoint.id]
        assert refs[0].label == "cp1"
        assert store.checkpoint_path(checkpoint.id).exists()

    @pytest.mark.asyncio
    async def test_restore_by_id(self, store):
        await store.start_new_session()
        checkpoint = await store.create_checkpoint("cp1")
        await store.tracker.add_message("later")

        session = await store.restore_checkpoint(checkpoint.id)

        assert session.context.messages == []

    @pytest.mark.asyncio
    async def test_unknown_checkpoint(self, store):
        await store.start_new_session()
        with pytest.raises(ValidationError):
            await store.restore_checkpoint("missing")

    @pytest.mark.asyncio
    async def test_checkpoint_requires_session(self, store):
        with pytest.raises(ValidationError):
            await store.create_checkpoint("cp1")

    @pytest.mark.asyncio
    async def test_checkpoint_hook(self, store):
        seen = []
        store.hooks.register(HookEvent.ON_CHECKPOINT_CREATE, lambda data: seen.append(data["name"]))
        await store.start_new_session()

        await store.create_checkpoint("cp1")

        assert seen == ["cp1"]


class TestBranching:
    """Tests for branch isolation."""

    @pytest.mark.asyncio
    async def test_branch_is_independent_copy(self, store):
        parent = await store.start_new_session("demo")
        await store.tracker.add_message("first")
        await store.tracker.add_message("second")

        result = await store.branch_session("experiment")
        child = store.current_session

        assert result.parent_session_id == parent.id
        assert child.id == result.session_id
        assert child.parent_session_id == parent.id
        assert child.branch_point is not None
        assert child.id in parent.children
        assert [m.content for m in child.context.messages] == ["first", "second"]
        assert child.context.messages[0] is not parent.context.messages[0]

        child.context.messages[0].content = "changed"
        await store.tracker.add_message("third")

        assert [m.content for m in parent.context.messages] == ["first", "second"]
        assert store.tracker.context is child.context

    @pytest.mark.asyncio
    async def test_parent_on_disk_records_branch(self, store):
        parent = await store.start_new_session()
        await store.tracker.add_message("first")
        result = await store.branch_session("experiment")
        await store.tracker.add_message("only in child")

        reloaded = await store.load_session(parent.id)

        assert result.session_id in reloaded.children
        assert [m.content for m in reloaded.context.messages] == ["first"]
        assert reloaded.checkpoints[0].label == "Branch point: experiment"

    @pytest.mark.asyncio
    async def test_unlabeled_branch_gets_generated_name(self, store):
        parent = await store.start_new_session()

        await store.branch_session()

        label = parent.checkpoints[0].label
        assert label.startswith("Branch point: branch-")
        assert "None" not in label

    @pytest.mark.asyncio
    async def test_only_current_session_counts_as_active(self, store):
        await store.start_new_session()

        await store.branch_session("experiment")

        stats = store.get_statistics()
        assert stats["active_sessions"] == 1
        assert stats["live_sessions"] == 2

    @pytest.mark.asyncio
    async def test_branch_from_unknown_parent(self, store):
        with pytest.raises(ValidationError):
            await store.start_new_session(branch=True, parent_session_id="nope")


class TestResume:
    """Tests for resuming after a restart."""

    @pytest.mark.asyncio
    async def test_resume_within_timeout(self, store, config):
        session = await store.start_new_session()
        await store.tracker.add_message("Set up the database")
        await store.tracker.track_artifact("schema", "CREATE TABLE t (id int);", language="sql")
        await store.save_session()
        saved = encode_context(session.context)

        # No end_session: simulates an unclean shutdown
        restarted = make_store(config)
        await restarted.initialize()

        assert await restarted.resume_active_session()
        resumed = restarted.current_session
        assert resumed.id == session.id
        assert resumed.status == SessionStatus.RESUMED
        assert encode_context(resumed.context) == saved
        assert restarted.tracker.context is resumed.context

    @pytest.mark.asyncio
    async def test_save_after_resume_returns_to_active(self, store, config):
        session = await store.start_new_session()

        restarted = make_store(config)
        await restarted.initialize()
        await restarted.resume_active_session()
        await restarted.tracker.add_message("after the restart")
        assert await restarted.save_session()

        assert restarted.current_session.status == SessionStatus.ACTIVE
        assert read_document(restarted.session_path(session.id))["status"] == "active"

        again = make_store(config)
        await again.initialize()
        assert await again.resume_active_session()
        assert again.current_session.status == SessionStatus.RESUMED

    @pytest.mark.asyncio
    async def test_resume_after_timeout_ends_session(self, store, config):
        session = await store.start_new_session()
        session.last_activity = utcnow() - timedelta(hours=2)
        write_atomic(store.session_path(session.id), dumps(encode_session(session)))

        restarted = make_store(config)
        await restarted.initialize()

        assert not await restarted.resume_active_session()
        assert restarted.current_session is None
        assert restarted.sessions[session.id].status == SessionStatus.ENDED
        assert not config.active_pointer_path.exists()

    @pytest.mark.asyncio
    async def test_resume_fires_hooks(self, store, config):
        await store.start_new_session()
        restarted = make_store(config)
        await restarted.initialize()
        seen = []
        restarted.hooks.register(HookEvent.ON_SESSION_RESUME, lambda data: seen.append("resume"))
        restarted.hooks.register(HookEvent.AFTER_SESSION_RESTORE, lambda data: seen.append("restore"))

        await restarted.resume_active_session()

        assert seen == ["restore", "resume"]

    @pytest.mark.asyncio
    async def test_no_pointer(self, store):
        assert not await store.resume_active_session()

    @pytest.mark.asyncio
    async def test_corrupt_pointer(self, store, config):
        config.active_pointer_path.parent.mkdir(parents=True, exist_ok=True)
        config.active_pointer_path.write_text("garbage")

        assert not await store.resume_active_session()

    @pytest.mark.asyncio
    async def test_require_active_session_times_out(self, store):
        session = await store.start_new_session()
        session.last_activity = utcnow() - timedelta(hours=2)

        with pytest.raises(TimeoutExpired):
            store.require_active_session()


class TestLifecycle:
    """Tests for ending and switching sessions."""

    @pytest.mark.asyncio
    async def test_end_session_seals_and_clears_pointer(self, store, config):
        session = await store.start_new_session()
        await store.tracker.add_message("hello")

        ended = await store.end_session()

        assert ended.status == SessionStatus.ENDED
        assert ended.metrics.duration is not None
        assert store.current_session is None
        assert not config.active_pointer_path.exists()
        with pytest.raises(ValidationError):
            await store.tracker.add_message("late")
        assert await store.end_session(session.id) is ended

    @pytest.mark.asyncio
    async def test_new_session_saves_previous(self, store):
        first = await store.start_new_session()
        await store.tracker.add_message("unsaved")

        await store.start_new_session()

        data = read_document(store.session_path(first.id))
        assert len(data["context"]["messages"]) == 1

    @pytest.mark.asyncio
    async def test_switch_session(self, store, config):
        first = await store.start_new_session()
        await store.start_new_session()

        switched = await store.switch_session(first.id)

        assert store.current_session is switched
        assert store.tracker.session_id == first.id
        assert (await store.read_pointer()).session_id == first.id

    @pytest.mark.asyncio
    async def test_switch_to_unknown_session(self, store):
        with pytest.raises(ValidationError):
            await store.switch_session("nope")

    @pytest.mark.asyncio
    async def test_switch_to_ended_session(self, store):
        first = await store.start_new_session()
        second = await store.start_new_session()
        await store.end_session(first.id)

        assert (await store.read_pointer()).session_id == second.id
        with pytest.raises(ValidationError):
            await store.switch_session(first.id)


class TestStoreHooks:
    """Tests for the store's own hook handlers."""

    @pytest.mark.asyncio
    async def test_counters(self, store):
        store.register_hooks()
        session = await store.start_new_session()

        await store.tracker.track_file_operation("read", "a.py", "x")
        for i in range(25):
            await store.tracker.add_message(prose(i))
        await store.tracker.compact_context()

        assert session.metrics.file_operations == 1
        assert session.metrics.compaction_count == 1

    @pytest.mark.asyncio
    async def test_compaction_that_changes_nothing_is_not_counted(self, store):
        store.register_hooks()
        session = await store.start_new_session()
        await store.tracker.add_message("ok")

        await store.tracker.compact_context()

        assert session.metrics.compaction_count == 0

    @pytest.mark.asyncio
    async def test_pause_saves(self, store):
        store.register_hooks()
        session = await store.start_new_session()
        await store.tracker.add_message("not yet saved")

        results = await store.hooks.trigger(HookEvent.ON_CONVERSATION_PAUSE)

        assert results == [True]
        data = read_document(store.session_path(session.id))
        assert data["context"]["messages"][0]["content"] == "not yet saved"

    @pytest.mark.asyncio
    async def test_unregister(self, store):
        store.register_hooks()
        store.unregister_hooks()

        assert store.hooks.handler_count(HookEvent.ON_CONVERSATION_PAUSE) == 0


class TestAutosave:
    """Tests for the periodic autosave task."""

    @pytest.mark.asyncio
    async def test_autosave_writes_session(self, temp_dir):
        config = ContinuityConfig(
            home=temp_dir / "home", sessions=SessionConfig(autosave_interval=0.05)
        )
        store = make_store(config)
        await store.initialize()
        session = await store.start_new_session()
        await store.tracker.add_message("autosaved")

        store.start_autosave()
        assert store.autosave_running
        await asyncio.sleep(0.2)
        await store.stop_autosave()

        assert not store.autosave_running
        data = read_document(store.session_path(session.id))
        assert data["context"]["messages"][0]["content"] == "autosaved"
        assert store.metrics.total_saves >= 1


class TestHistoryAndExport:
    """Tests for history, export, import and cleanup."""

    @pytest.mark.asyncio
    async def test_history_is_time_ordered(self, store):
        await store.start_new_session()
        await store.tracker.add_message("hello")
        await store.tracker.track_file_operation("write", "a.py", "x = 1")
        await store.tracker.track_artifact("a", "x = 1", language="python")
        await store.tracker.track_decision("Use postgres")
        await store.create_checkpoint("cp1")

        history = store.get_session_history()

        assert [h["type"] for h in history] == ["message", "file", "artifact", "decision", "checkpoint"]
        timestamps = [h["timestamp"] for h in history]
        assert timestamps == sorted(timestamps)

    @pytest.mark.asyncio
    async def test_export_and_import(self, store, config):
        original = await store.start_new_session("demo")
        await store.tracker.add_message("hello")
        await store.tracker.track_artifact("a", "x = 1", language="python")

        path = await store.export_session()
        assert path.parent == config.exports_dir

        imported = await store.import_session(path)

        assert imported.id != original.id
        assert store.current_session is imported
        assert imported.project_name == "demo"
        assert [m.content for m in imported.context.messages] == ["hello"]
        assert "a" in imported.context.artifacts
        assert imported.metrics.message_count == 1

    @pytest.mark.asyncio
    async def test_import_missing_file(self, store, temp_dir):
        with pytest.raises(ValidationError):
            await store.import_session(temp_dir / "missing.json")

    @pytest.mark.asyncio
    async def test_clean_old_sessions(self, store):
        old = await store.start_new_session()
        await store.create_checkpoint("cp1")
        checkpoint_path = store.checkpoint_path(old.checkpoints[0].id)
        await store.end_session()
        old.last_activity = utcnow() - timedelta(days=40)
        live = await store.start_new_session()

        removed = await store.clean_old_sessions(days_to_keep=30)

        assert removed == 1
        assert old.id not in store.sessions
        assert live.id in store.sessions
        assert not store.session_path(old.id).exists()
        assert not checkpoint_path.exists()

    @pytest.mark.asyncio
    async def test_statistics(self, store):
        await store.start_new_session()
        await store.tracker.add_message("hello")
        await store.end_session()
        await store.start_new_session()

        stats = store.get_statistics()

        assert stats["total_sessions"] == 2
        assert stats["active_sessions"] == 1
        assert stats["live_sessions"] == 1
        assert stats["total_messages"] == 1
        assert stats["metrics"]["ended_sessions"] == 1
