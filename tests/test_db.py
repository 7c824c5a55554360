"""Tests for speakeasy.data.db — TaskDB, EventDB and ReminderDB (SQLite storage)."""

import sqlite3
from datetime import timedelta
from unittest.mock import patch

import pytest

from conftest import REFERENCE, make_event, make_task
from speakeasy.data.db import StorageError, TaskDB, _SQLiteStore


class TestTaskDB:
    def test_add_and_get_round_trips_fields(self, task_db):
        task = make_task("file taxes", priority="high", due_at=REFERENCE + timedelta(days=3))
        task_db.add(task)
        assert task_db.get(task.id) == task

    def test_get_missing(self, task_db):
        assert task_db.get("nope") is None

    def test_list_filters(self, task_db):
        open_task = task_db.add(make_task("open"))
        task_db.add(make_task("done", completed=True, completed_at=REFERENCE))
        other = make_task("someone else's")
        other.owner_id = "999"
        task_db.add(other)

        assert len(task_db.list_tasks()) == 3
        assert len(task_db.list_tasks(owner_id="12345")) == 2
        assert task_db.list_tasks(owner_id="12345", incomplete_only=True) == [open_task]

    def test_set_completed_toggles_timestamp(self, task_db):
        task = task_db.add(make_task())
        done = task_db.set_completed(task.id, True, REFERENCE)
        assert done.completed is True
        assert done.completed_at == REFERENCE
        reopened = task_db.set_completed(task.id, False, REFERENCE)
        assert reopened.completed is False
        assert reopened.completed_at is None

    def test_set_priority_and_due(self, task_db):
        task = task_db.add(make_task())
        assert task_db.set_priority(task.id, "low").priority == "low"
        due = REFERENCE + timedelta(hours=5)
        assert task_db.set_due(task.id, due).due_at == due

    def test_invalid_priority_is_storage_error(self, task_db):
        task = task_db.add(make_task())
        with pytest.raises(StorageError):
            task_db.set_priority(task.id, "whenever")

    def test_delete_and_clear(self, task_db):
        a = task_db.add(make_task("a"))
        task_db.add(make_task("b"))
        assert task_db.delete(a.id) is True
        assert task_db.delete(a.id) is False
        assert task_db.clear("12345") == 1
        assert task_db.list_tasks() == []

    def test_duplicate_id_is_storage_error(self, task_db):
        task = task_db.add(make_task())
        with pytest.raises(StorageError):
            task_db.add(task)

    def test_connection_failure_is_storage_error(self, task_db):
        with patch("speakeasy.data.db.sqlite3.connect", side_effect=sqlite3.OperationalError("disk I/O error")):
            with pytest.raises(StorageError):
                task_db.list_tasks()

    def test_base_store_is_abstract(self, tmp_db_path):
        with pytest.raises(TypeError):
            _SQLiteStore(db_path=tmp_db_path)

    def test_creates_parent_directory(self, tmp_path):
        TaskDB(db_path=str(tmp_path / "nested" / "dir" / "x.db"))
        assert (tmp_path / "nested" / "dir").is_dir()


class TestEventDB:
    def test_add_and_get(self, event_db):
        event = make_event("Dentist", location="Main St")
        event_db.add(event)
        assert event_db.get(event.id) == event

    def test_list_sorted_by_start_with_window(self, event_db):
        later = event_db.add(make_event("later", start_at=REFERENCE + timedelta(days=2)))
        sooner = event_db.add(make_event("sooner", start_at=REFERENCE + timedelta(hours=2)))
        past = event_db.add(make_event("past", start_at=REFERENCE - timedelta(days=1)))
        assert event_db.list_events("12345") == [past, sooner, later]
        assert event_db.list_events("12345", after=REFERENCE) == [sooner, later]

    def test_delete_and_clear(self, event_db):
        event = event_db.add(make_event())
        assert event_db.delete(event.id) is True
        event_db.add(make_event())
        assert event_db.clear("12345") == 1


class TestReminderDB:
    def test_create_for_task_and_event(self, reminder_db):
        task, event = make_task(), make_event()
        r1 = reminder_db.create(task, "time", REFERENCE.isoformat(), REFERENCE, label="soon")
        r2 = reminder_db.create(event, "time", REFERENCE.isoformat(), REFERENCE)
        assert r1.task_id == task.id and r1.event_id is None
        assert r2.event_id == event.id and r2.task_id is None
        assert reminder_db.get(r1.id) == r1

    def test_mark_triggered_only_once(self, reminder_db):
        reminder = reminder_db.create(make_task(), "time", REFERENCE.isoformat(), REFERENCE)
        assert reminder_db.mark_triggered(reminder.id, REFERENCE) is True
        assert reminder_db.mark_triggered(reminder.id, REFERENCE) is False
        stored = reminder_db.get(reminder.id)
        assert stored.triggered is True
        assert stored.triggered_at == REFERENCE

    def test_mark_triggered_missing(self, reminder_db):
        assert reminder_db.mark_triggered("nope", REFERENCE) is False

    def test_list_pending_excludes_triggered(self, reminder_db):
        a = reminder_db.create(make_task(), "time", REFERENCE.isoformat(), REFERENCE)
        b = reminder_db.create(make_task(), "time", REFERENCE.isoformat(), REFERENCE)
        reminder_db.mark_triggered(a.id, REFERENCE)
        assert [r.id for r in reminder_db.list_pending()] == [b.id]
        assert reminder_db.list_pending(owner_id="other") == []

    def test_delete_for_item(self, reminder_db):
        task = make_task()
        ids = {reminder_db.create(task, "time", REFERENCE.isoformat(), REFERENCE).id for _ in range(2)}
        keep = reminder_db.create(make_task(), "time", REFERENCE.isoformat(), REFERENCE)
        assert set(reminder_db.delete_for_item(task)) == ids
        assert reminder_db.list_for_item(task) == []
        assert reminder_db.get(keep.id) is not None

    def test_owner_xor_enforced_by_schema(self, reminder_db, tmp_db_path):
        conn = sqlite3.connect(tmp_db_path)
        try:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    "INSERT INTO reminders (id, owner_id, task_id, event_id, trigger_kind, created_at) "
                    "VALUES ('x', '1', 'a', 'b', 'time', ?)",
                    (REFERENCE.isoformat(),),
                )
        finally:
            conn.close()

    def test_delete(self, reminder_db):
        reminder = reminder_db.create(make_task(), "completion", "", REFERENCE)
        assert reminder_db.delete(reminder.id) is True
        assert reminder_db.get(reminder.id) is None
