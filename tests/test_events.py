"""Tests for the event log and transaction scope."""

import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from task_bridge.core import events as events_mod
from task_bridge.core import lifecycle
from task_bridge.core import sequence
from task_bridge.core import tasks as tasks_mod
from task_bridge.db.engine import init_db, transaction
from task_bridge.errors import StorageContention, ValidationError


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp) / "test.db"


@pytest.fixture
def db(db_path):
    conn = init_db(db_path)
    yield conn
    conn.close()


class TestEventLog:
    def test_newest_first(self, db):
        first = events_mod.log_event(db, "architect", "sync")
        second = events_mod.log_event(db, "executor", "sync")
        assert [e.id for e in events_mod.get_events(db)] == [second, first]

    def test_filters(self, db):
        task = tasks_mod.create_task(db, "architect", "T", "I")
        events_mod.log_event(db, "executor", "sync")
        assert [e.event_type for e in events_mod.get_events(db, task_id=task.id)] == ["task_created"]
        assert len(events_mod.get_events(db, event_type="sync")) == 1

    def test_since(self, db):
        events_mod.log_event(db, "architect", "sync")
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        assert events_mod.get_events(db, since=future) == []
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        assert len(events_mod.get_events(db, since=past.isoformat())) == 1

    def test_since_string_with_offset(self, db):
        events_mod.log_event(db, "architect", "sync")
        plus_five = timezone(timedelta(hours=5))
        past = (datetime.now(timezone.utc) - timedelta(hours=1)).astimezone(plus_five)
        assert len(events_mod.get_events(db, since=past.isoformat())) == 1
        future = (datetime.now(timezone.utc) + timedelta(hours=1)).astimezone(plus_five)
        assert events_mod.get_events(db, since=future.isoformat()) == []

    def test_since_zulu_and_naive_strings(self, db):
        events_mod.log_event(db, "architect", "sync")
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        zulu = past.replace(tzinfo=None).isoformat() + "Z"
        assert len(events_mod.get_events(db, since=zulu)) == 1
        naive_future = (datetime.now(timezone.utc) + timedelta(hours=1)).replace(tzinfo=None)
        assert events_mod.get_events(db, since=naive_future.isoformat()) == []

    def test_since_invalid_string(self, db):
        with pytest.raises(ValidationError):
            events_mod.get_events(db, since="last tuesday")

    def test_task_history_since_offset(self, db):
        task = tasks_mod.create_task(db, "architect", "T", "I")
        lifecycle.cancel_task(db, "architect", task.id)
        minus_seven = timezone(timedelta(hours=-7))
        past = (datetime.now(timezone.utc) - timedelta(minutes=30)).astimezone(minus_seven)
        assert [t.id for t in tasks_mod.get_task_history(db, since=past.isoformat())] == [task.id]
        future = (datetime.now(timezone.utc) + timedelta(minutes=30)).astimezone(minus_seven)
        assert tasks_mod.get_task_history(db, since=future.isoformat()) == []

    def test_limit_and_offset(self, db):
        for _ in range(5):
            events_mod.log_event(db, "architect", "sync")
        assert len(events_mod.get_events(db, limit=2)) == 2
        assert len(events_mod.get_events(db, limit=None, offset=3)) == 2

    def test_payload_round_trip(self, db):
        events_mod.log_event(db, "architect", "note", payload={"files": ["a.py"], "n": 2})
        assert events_mod.get_events(db)[0].payload == {"files": ["a.py"], "n": 2}


class TestTransaction:
    def test_rollback_discards_event(self, db):
        with pytest.raises(RuntimeError):
            with transaction(db):
                events_mod.log_event(db, "architect", "sync")
                raise RuntimeError("boom")
        assert events_mod.get_events(db) == []

    def test_nested_scope_joins_outer(self, db):
        with pytest.raises(RuntimeError):
            with transaction(db):
                tasks_mod.create_task(db, "architect", "Inner", "I")
                raise RuntimeError("boom")
        assert tasks_mod.list_tasks(db) == []

    def test_busy_database_raises_contention(self, db_path, db):
        other = init_db(db_path, busy_timeout_ms=50)
        try:
            with transaction(db):
                with pytest.raises(StorageContention) as exc:
                    with transaction(other):
                        pass
            assert exc.value.retryable is True
        finally:
            other.close()


def _counter(db):
    return db.execute("SELECT value FROM sequence_counter WHERE id = 1").fetchone()["value"]


class TestSequence:
    def test_sequence_is_monotonic(self, db):
        start = _counter(db)
        values = [sequence.next_sequence(db) for _ in range(3)]
        assert values == [start + 1, start + 2, start + 3]

    def test_sequence_survives_reopen(self, db_path, db):
        sequence.next_sequence(db)
        sequence.next_sequence(db)
        reopened = init_db(db_path)
        try:
            assert _counter(reopened) == 2
        finally:
            reopened.close()

    def test_counter_row_is_singleton(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            db.execute("INSERT INTO sequence_counter (id, value) VALUES (2, 0)")
