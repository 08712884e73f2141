"""Tests for the task store."""

import tempfile
import threading
from pathlib import Path

import pytest

from task_bridge.core import events as events_mod
from task_bridge.core import lifecycle
from task_bridge.core import tasks as tasks_mod
from task_bridge.db.engine import init_db
from task_bridge.db.models import TaskResult
from task_bridge.errors import DependencyNotFound, InvalidStateTransition, NotFound, ValidationError


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp) / "test.db"


@pytest.fixture
def db(db_path):
    """Create a temporary SQLite database for testing."""
    conn = init_db(db_path)
    yield conn
    conn.close()


def _add(db, title, **kwargs):
    return tasks_mod.create_task(db, "architect", title, f"Do {title}", **kwargs)


class TestCreateTask:
    def test_defaults(self, db):
        task = _add(db, "Build login page")
        assert task.status == "queued"
        assert task.priority == "normal"
        assert task.category == "feature"
        assert task.created_by == "architect"
        assert task.assigned_to is None
        assert task.created_at is not None
        assert task.claimed_at is None
        assert task.result is None

    def test_ids_are_unique(self, db):
        t1 = _add(db, "Same title")
        t2 = _add(db, "Same title")
        assert t1.id != t2.id

    def test_sequence_increases(self, db):
        seqs = [_add(db, f"Task {i}").sequence for i in range(5)]
        assert seqs == sorted(seqs)
        assert len(set(seqs)) == 5

    def test_concurrent_creation_gets_distinct_sequences(self, db, db_path):
        workers, per_worker = 4, 5
        barrier = threading.Barrier(workers)
        errors = []

        def worker(n):
            conn = init_db(db_path)
            try:
                barrier.wait()
                for i in range(per_worker):
                    tasks_mod.create_task(conn, "architect", f"W{n}-{i}", "I")
            except Exception as e:
                errors.append(e)
            finally:
                conn.close()

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        tasks = tasks_mod.list_tasks(db)
        seqs = sorted(t.sequence for t in tasks)
        assert seqs == list(range(1, workers * per_worker + 1))
        by_created = sorted(tasks, key=lambda t: t.created_at)
        assert [t.sequence for t in by_created] == seqs

    def test_list_fields_round_trip(self, db):
        task = _add(
            db,
            "Login",
            acceptance_criteria=["form renders", "errors shown"],
            context_files=["src/login.py"],
            context_summary="Users cannot sign in",
            related_tasks=["abc"],
        )
        fetched = tasks_mod.get_task(db, task.id)
        assert fetched.acceptance_criteria == ["form renders", "errors shown"]
        assert fetched.context_files == ["src/login.py"]
        assert fetched.context_summary == "Users cannot sign in"
        assert fetched.related_tasks == ["abc"]

    def test_missing_dependency_rejected(self, db):
        with pytest.raises(DependencyNotFound) as exc:
            _add(db, "Orphan", depends_on=["does-not-exist"])
        assert exc.value.missing == ["does-not-exist"]
        assert tasks_mod.list_tasks(db) == []

    def test_dependency_not_found_is_not_found(self, db):
        with pytest.raises(NotFound):
            _add(db, "Orphan", depends_on=["nope"])

    def test_duplicate_dependencies_collapsed(self, db):
        a = _add(db, "A")
        b = _add(db, "B", depends_on=[a.id, a.id])
        assert b.depends_on == [a.id]

    def test_invalid_priority_rejected(self, db):
        with pytest.raises(ValidationError):
            _add(db, "Urgent", priority="urgent")
        with pytest.raises(ValidationError):
            _add(db, "Misc", category="misc")

    def test_logs_event(self, db):
        task = _add(db, "Logged", priority="high")
        events = events_mod.get_events(db, task_id=task.id)
        assert len(events) == 1
        assert events[0].event_type == "task_created"
        assert events[0].agent == "architect"
        assert events[0].payload["priority"] == "high"


class TestCreateTasks:
    def test_parallel_batch(self, db):
        created = tasks_mod.create_tasks(
            db, "architect",
            [{"title": "One", "instructions": "1"}, {"title": "Two", "instructions": "2"}],
        )
        assert len(created) == 2
        assert all(t.depends_on == [] for t in created)

    def test_sequential_batch_chains_dependencies(self, db):
        created = tasks_mod.create_tasks(
            db, "architect",
            [
                {"title": "One", "instructions": "1"},
                {"title": "Two", "instructions": "2"},
                {"title": "Three", "instructions": "3"},
            ],
            sequential=True,
        )
        assert created[0].depends_on == []
        assert created[1].depends_on == [created[0].id]
        assert created[2].depends_on == [created[1].id]

    def test_batch_is_all_or_nothing(self, db):
        with pytest.raises(DependencyNotFound):
            tasks_mod.create_tasks(
                db, "architect",
                [
                    {"title": "Fine", "instructions": "ok"},
                    {"title": "Broken", "instructions": "no", "depends_on": ["missing"]},
                ],
            )
        assert tasks_mod.list_tasks(db) == []
        assert events_mod.get_events(db) == []

    def test_batch_rejects_unknown_fields(self, db):
        with pytest.raises(ValidationError):
            tasks_mod.create_tasks(db, "architect", [{"title": "T", "instructions": "I", "status": "completed"}])
        with pytest.raises(ValidationError):
            tasks_mod.create_tasks(db, "architect", [{"title": "No instructions"}])
        assert tasks_mod.list_tasks(db) == []


class TestUpdateTask:
    def test_update_fields(self, db):
        task = _add(db, "Old title")
        updated = tasks_mod.update_task(
            db, "architect", task.id,
            {"title": "New title", "priority": "critical", "context_files": ["a.py"]},
        )
        assert updated.title == "New title"
        assert updated.priority == "critical"
        assert updated.context_files == ["a.py"]

    def test_status_cannot_be_updated(self, db):
        task = _add(db, "Task")
        with pytest.raises(ValidationError):
            tasks_mod.update_task(db, "architect", task.id, {"status": "completed"})
        assert tasks_mod.get_task(db, task.id).status == "queued"

    def test_unknown_task(self, db):
        with pytest.raises(NotFound):
            tasks_mod.update_task(db, "architect", "nope", {"title": "x"})

    def test_terminal_task_rejected(self, db):
        task = _add(db, "Done")
        lifecycle.claim_task(db, "executor", task.id)
        lifecycle.complete_task(db, "executor", task.id, TaskResult(success=True, summary="ok"))
        with pytest.raises(InvalidStateTransition) as exc:
            tasks_mod.update_task(db, "architect", task.id, {"title": "Too late"})
        assert exc.value.current_status == "completed"

    def test_noop_update_logs_nothing(self, db):
        task = _add(db, "Quiet")
        tasks_mod.update_task(db, "architect", task.id, {})
        events = events_mod.get_events(db, task_id=task.id)
        assert [e.event_type for e in events] == ["task_created"]

    def test_update_logs_event(self, db):
        task = _add(db, "Loud")
        tasks_mod.update_task(db, "architect", task.id, {"priority": "low"})
        latest = events_mod.get_events(db, task_id=task.id)[0]
        assert latest.event_type == "task_updated"
        assert latest.payload["updates"] == ["priority"]


class TestListTasks:
    def test_get_nonexistent_task(self, db):
        assert tasks_mod.get_task(db, "nonexistent") is None

    def test_require_nonexistent_task(self, db):
        with pytest.raises(NotFound):
            tasks_mod.require_task(db, "nonexistent")

    def test_queue_order(self, db):
        low = _add(db, "Low", priority="low")
        normal = _add(db, "Normal")
        critical = _add(db, "Critical", priority="critical")
        ids = [t.id for t in tasks_mod.list_tasks(db)]
        assert ids == [critical.id, normal.id, low.id]

    def test_filter_by_status(self, db):
        a = _add(db, "A")
        b = _add(db, "B")
        lifecycle.claim_task(db, "executor", a.id)
        queued = tasks_mod.list_tasks(db, status="queued")
        assert [t.id for t in queued] == [b.id]
        both = tasks_mod.list_tasks(db, status=["queued", "claimed"])
        assert len(both) == 2

    def test_filter_by_assignee_and_category(self, db):
        _add(db, "Mine", assigned_to="executor", category="bugfix")
        _add(db, "Theirs", assigned_to="architect")
        assert len(tasks_mod.list_tasks(db, assigned_to="executor")) == 1
        assert len(tasks_mod.list_tasks(db, category="bugfix")) == 1

    def test_limit_offset(self, db):
        for i in range(5):
            _add(db, f"T{i}")
        page = tasks_mod.list_tasks(db, limit=2, offset=2)
        assert [t.title for t in page] == ["T2", "T3"]

    def test_count_by_status(self, db):
        a = _add(db, "A")
        _add(db, "B")
        lifecycle.cancel_task(db, "architect", a.id)
        counts = tasks_mod.count_tasks_by_status(db)
        assert counts["queued"] == 1
        assert counts["cancelled"] == 1
        assert counts["blocked"] == 0
        assert set(counts) == {
            "queued", "claimed", "in_progress", "blocked", "completed", "failed", "cancelled",
        }


class TestTaskHistory:
    def test_only_terminal_tasks_newest_first(self, db):
        first = _add(db, "First")
        second = _add(db, "Second")
        _add(db, "Still queued")
        lifecycle.cancel_task(db, "architect", first.id)
        lifecycle.claim_task(db, "executor", second.id)
        lifecycle.complete_task(db, "executor", second.id, TaskResult(success=True, summary="done"))

        history = tasks_mod.get_task_history(db)
        assert [t.id for t in history] == [second.id, first.id]

    def test_since_and_category(self, db):
        bug = _add(db, "Bug", category="bugfix")
        feat = _add(db, "Feature")
        lifecycle.cancel_task(db, "architect", bug.id)
        cutoff = tasks_mod.get_task(db, bug.id).completed_at
        lifecycle.cancel_task(db, "architect", feat.id)

        assert [t.id for t in tasks_mod.get_task_history(db, category="bugfix")] == [bug.id]
        since = tasks_mod.get_task_history(db, since=cutoff)
        assert {t.id for t in since} == {bug.id, feat.id}
