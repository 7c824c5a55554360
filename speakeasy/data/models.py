"""
SpeakEasy Assistant — Data Models.

Tasks and calendar events are created from parsed utterances; reminders hang
off exactly one of them. All instants are timezone-aware datetimes.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar, Literal

Priority = Literal["low", "medium", "high"]
UrgencyTier = Literal["low", "medium", "high", "critical"]
TriggerKind = Literal["time", "location", "completion"]

PRIORITIES: tuple[str, ...] = ("low", "medium", "high")
TRIGGER_KINDS: tuple[str, ...] = ("time", "location", "completion")


def new_id() -> str:
    """Opaque unique identifier for stored records."""
    return uuid.uuid4().hex


@dataclass
class Task:
    """A to-do item, optionally with a deadline."""

    kind: ClassVar[str] = "task"

    id: str
    owner_id: str
    description: str
    created_at: datetime
    priority: Priority = "medium"
    due_at: datetime | None = None
    completed: bool = False
    completed_at: datetime | None = None

    @property
    def title(self) -> str:
        return self.description


@dataclass
class CalendarEvent:
    """A time-boxed calendar entry. end_at is never before start_at."""

    kind: ClassVar[str] = "event"

    id: str
    owner_id: str
    title: str
    start_at: datetime
    end_at: datetime
    location: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        if self.end_at < self.start_at:
            raise ValueError(
                f"Event end {self.end_at.isoformat()} is before start {self.start_at.isoformat()}"
            )

    @property
    def duration_minutes(self) -> float:
        return (self.end_at - self.start_at).total_seconds() / 60


# A reminder owner is one of these, told apart by the fixed ``kind`` tag.
Item = Task | CalendarEvent


@dataclass
class Reminder:
    """A trigger attached to exactly one task or one event.

    trigger_value encoding depends on trigger_kind:
      time       → ISO-8601 instant
      location   → JSON geofence {"lat": .., "lon": .., "radius_m": ..}
      completion → empty string
    """

    id: str
    owner_id: str
    trigger_kind: TriggerKind
    trigger_value: str
    created_at: datetime
    task_id: str | None = None
    event_id: str | None = None
    label: str = ""
    triggered: bool = False
    triggered_at: datetime | None = None

    def __post_init__(self) -> None:
        if (self.task_id is None) == (self.event_id is None):
            raise ValueError("Reminder must reference exactly one of task_id or event_id")
        if self.trigger_kind not in TRIGGER_KINDS:
            raise ValueError(f"Unknown trigger kind: {self.trigger_kind!r}")

    @property
    def item_kind(self) -> str:
        return "task" if self.task_id is not None else "event"

    @property
    def item_id(self) -> str:
        return self.task_id if self.task_id is not None else self.event_id


@dataclass
class PrioritizedTask:
    """Scored view of a Task. Recomputed on demand, never stored."""

    task: Task
    score: float
    urgency: UrgencyTier
    estimated_minutes: int
    hours_to_deadline: float | None = None
    reasoning: str = ""
    suggested_order: int = 0

    @property
    def id(self) -> str:
        return self.task.id
