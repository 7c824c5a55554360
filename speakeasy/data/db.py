"""
SpeakEasy Assistant — SQLite stores.

Tasks, calendar events and reminders share one SQLite file. Ids are uuid4 hex
strings and instants are stored as ISO-8601 text. Every sqlite3 failure is
re-raised as StorageError so callers deal with a single persistence error.
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from speakeasy.data.models import CalendarEvent, Item, Reminder, Task, new_id

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when the database cannot be read or written."""


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class _SQLiteStore(ABC):
    """Connection handling shared by the stores below."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from speakeasy.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._session() as conn:
            self._init_db(conn)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success, and translate sqlite errors."""
        try:
            conn = self._connect()
            try:
                with conn:
                    yield conn
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.error("Database error on %s: %s", self._db_path, exc)
            raise StorageError(str(exc)) from exc

    @abstractmethod
    def _init_db(self, conn: sqlite3.Connection) -> None:
        """Create this store's tables if they do not exist."""


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskDB(_SQLiteStore):
    """SQLite-backed storage for tasks."""

    def _init_db(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS tasks (
                id           TEXT PRIMARY KEY,
                owner_id     TEXT NOT NULL,
                description  TEXT NOT NULL,
                priority     TEXT NOT NULL DEFAULT 'medium'
                             CHECK (priority IN ('low', 'medium', 'high')),
                due_at       TEXT,
                completed    INTEGER NOT NULL DEFAULT 0,
                completed_at TEXT,
                created_at   TEXT NOT NULL
            )
        """)
        logger.debug("Tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            owner_id=row["owner_id"],
            description=row["description"],
            created_at=_dt(row["created_at"]),
            priority=row["priority"],
            due_at=_dt(row["due_at"]),
            completed=bool(row["completed"]),
            completed_at=_dt(row["completed_at"]),
        )

    def add(self, task: Task) -> Task:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO tasks
                    (id, owner_id, description, priority, due_at,
                     completed, completed_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id, task.owner_id, task.description, task.priority,
                    _iso(task.due_at), int(task.completed), _iso(task.completed_at),
                    _iso(task.created_at),
                ),
            )
        logger.info("Task added: %s '%s'", task.id, task.description)
        return task

    def get(self, task_id: str) -> Task | None:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return self._row_to_task(row) if row else None

    def list_tasks(self, owner_id: str | None = None, incomplete_only: bool = False) -> list[Task]:
        """Tasks ordered by creation time, optionally filtered."""
        query = "SELECT * FROM tasks WHERE 1 = 1"
        params: list = []
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        if incomplete_only:
            query += " AND completed = 0"
        query += " ORDER BY created_at, rowid"
        with self._session() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_task(r) for r in rows]

    def set_completed(self, task_id: str, completed: bool, when: datetime) -> Task | None:
        """Toggle completion; completed_at is set or cleared to match."""
        with self._session() as conn:
            conn.execute(
                "UPDATE tasks SET completed = ?, completed_at = ? WHERE id = ?",
                (int(completed), _iso(when) if completed else None, task_id),
            )
        return self.get(task_id)

    def set_priority(self, task_id: str, priority: str) -> Task | None:
        with self._session() as conn:
            conn.execute("UPDATE tasks SET priority = ? WHERE id = ?", (priority, task_id))
        return self.get(task_id)

    def set_due(self, task_id: str, due_at: datetime | None) -> Task | None:
        with self._session() as conn:
            conn.execute("UPDATE tasks SET due_at = ? WHERE id = ?", (_iso(due_at), task_id))
        return self.get(task_id)

    def delete(self, task_id: str) -> bool:
        """Delete a task. Returns False if it did not exist."""
        with self._session() as conn:
            cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Task deleted: %s", task_id)
        return deleted

    def clear(self, owner_id: str) -> int:
        with self._session() as conn:
            cursor = conn.execute("DELETE FROM tasks WHERE owner_id = ?", (owner_id,))
            count = cursor.rowcount
        logger.info("Cleared %d tasks for owner %s", count, owner_id)
        return count


# ---------------------------------------------------------------------------
# Calendar events
# ---------------------------------------------------------------------------


class EventDB(_SQLiteStore):
    """SQLite-backed storage for calendar events."""

    def _init_db(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id         TEXT PRIMARY KEY,
                owner_id   TEXT NOT NULL,
                title      TEXT NOT NULL,
                start_at   TEXT NOT NULL,
                end_at     TEXT NOT NULL,
                location   TEXT,
                notes      TEXT
            )
        """)
        logger.debug("Events table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> CalendarEvent:
        return CalendarEvent(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            start_at=_dt(row["start_at"]),
            end_at=_dt(row["end_at"]),
            location=row["location"],
            notes=row["notes"],
        )

    def add(self, event: CalendarEvent) -> CalendarEvent:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO events (id, owner_id, title, start_at, end_at, location, notes)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id, event.owner_id, event.title,
                    _iso(event.start_at), _iso(event.end_at), event.location, event.notes,
                ),
            )
        logger.info("Event added: %s '%s' at %s", event.id, event.title, event.start_at)
        return event

    def get(self, event_id: str) -> CalendarEvent | None:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
        return self._row_to_event(row) if row else None

    def list_events(
        self, owner_id: str | None = None, after: datetime | None = None,
    ) -> list[CalendarEvent]:
        """Events ordered by start. With ``after``, only those not yet ended."""
        events = []
        query = "SELECT * FROM events"
        params: list = []
        if owner_id is not None:
            query += " WHERE owner_id = ?"
            params.append(owner_id)
        with self._session() as conn:
            rows = conn.execute(query, params).fetchall()
        for row in rows:
            event = self._row_to_event(row)
            if after is None or event.end_at >= after:
                events.append(event)
        # Offsets may differ between rows, so order on parsed values.
        return sorted(events, key=lambda e: e.start_at)

    def delete(self, event_id: str) -> bool:
        with self._session() as conn:
            cursor = conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Event deleted: %s", event_id)
        return deleted

    def clear(self, owner_id: str) -> int:
        with self._session() as conn:
            cursor = conn.execute("DELETE FROM events WHERE owner_id = ?", (owner_id,))
            count = cursor.rowcount
        logger.info("Cleared %d events for owner %s", count, owner_id)
        return count


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------


class ReminderDB(_SQLiteStore):
    """SQLite-backed storage for reminders.

    Owner rows live in other tables of the same file, so there is no foreign
    key; deleting an owner's reminders is done explicitly via delete_for_item.
    """

    def _init_db(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS reminders (
                id            TEXT PRIMARY KEY,
                owner_id      TEXT NOT NULL,
                task_id       TEXT,
                event_id      TEXT,
                trigger_kind  TEXT NOT NULL
                              CHECK (trigger_kind IN ('time', 'location', 'completion')),
                trigger_value TEXT NOT NULL DEFAULT '',
                label         TEXT NOT NULL DEFAULT '',
                triggered     INTEGER NOT NULL DEFAULT 0,
                triggered_at  TEXT,
                created_at    TEXT NOT NULL,
                CHECK ((task_id IS NULL) <> (event_id IS NULL))
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_reminders_pending ON reminders (triggered)"
        )
        logger.debug("Reminders table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_reminder(row: sqlite3.Row) -> Reminder:
        return Reminder(
            id=row["id"],
            owner_id=row["owner_id"],
            trigger_kind=row["trigger_kind"],
            trigger_value=row["trigger_value"],
            created_at=_dt(row["created_at"]),
            task_id=row["task_id"],
            event_id=row["event_id"],
            label=row["label"],
            triggered=bool(row["triggered"]),
            triggered_at=_dt(row["triggered_at"]),
        )

    def add(self, reminder: Reminder) -> Reminder:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO reminders
                    (id, owner_id, task_id, event_id, trigger_kind, trigger_value,
                     label, triggered, triggered_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    reminder.id, reminder.owner_id, reminder.task_id, reminder.event_id,
                    reminder.trigger_kind, reminder.trigger_value, reminder.label,
                    int(reminder.triggered), _iso(reminder.triggered_at),
                    _iso(reminder.created_at),
                ),
            )
        logger.debug("Reminder stored: %s (%s %s)", reminder.id, reminder.trigger_kind, reminder.trigger_value)
        return reminder

    def create(
        self,
        item: Item,
        trigger_kind: str,
        trigger_value: str,
        created_at: datetime,
        label: str = "",
    ) -> Reminder:
        """Build and store a reminder attached to a task or event."""
        reminder = Reminder(
            id=new_id(),
            owner_id=item.owner_id,
            trigger_kind=trigger_kind,
            trigger_value=trigger_value,
            created_at=created_at,
            task_id=item.id if item.kind == "task" else None,
            event_id=item.id if item.kind == "event" else None,
            label=label,
        )
        return self.add(reminder)

    def get(self, reminder_id: str) -> Reminder | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM reminders WHERE id = ?", (reminder_id,)
            ).fetchone()
        return self._row_to_reminder(row) if row else None

    def list_pending(self, owner_id: str | None = None) -> list[Reminder]:
        """All reminders that have not fired yet."""
        query = "SELECT * FROM reminders WHERE triggered = 0"
        params: list = []
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        with self._session() as conn:
            rows = conn.execute(query + " ORDER BY created_at, rowid", params).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def list_for_item(self, item: Item) -> list[Reminder]:
        column = "task_id" if item.kind == "task" else "event_id"
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT * FROM reminders WHERE {column} = ? ORDER BY created_at, rowid",
                (item.id,),
            ).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def mark_triggered(self, reminder_id: str, when: datetime) -> bool:
        """Flip a pending reminder to triggered.

        Returns True only for the call that performed the transition; a
        reminder that is missing or already triggered returns False.
        """
        with self._session() as conn:
            cursor = conn.execute(
                "UPDATE reminders SET triggered = 1, triggered_at = ? "
                "WHERE id = ? AND triggered = 0",
                (_iso(when), reminder_id),
            )
            return cursor.rowcount == 1

    def delete(self, reminder_id: str) -> bool:
        with self._session() as conn:
            cursor = conn.execute("DELETE FROM reminders WHERE id = ?", (reminder_id,))
            return cursor.rowcount > 0

    def delete_for_item(self, item: Item) -> list[str]:
        """Delete every reminder of an item. Returns the deleted ids."""
        column = "task_id" if item.kind == "task" else "event_id"
        with self._session() as conn:
            ids = [
                row["id"] for row in conn.execute(
                    f"SELECT id FROM reminders WHERE {column} = ?", (item.id,)
                ).fetchall()
            ]
            conn.execute(f"DELETE FROM reminders WHERE {column} = ?", (item.id,))
        return ids

    def clear(self, owner_id: str) -> int:
        with self._session() as conn:
            cursor = conn.execute("DELETE FROM reminders WHERE owner_id = ?", (owner_id,))
            return cursor.rowcount
