"""
SpeakEasy Assistant — Capture and planning service.

UI-agnostic orchestration: utterance (text or voice) -> parsed intent ->
stored task/event -> reminders. Also answers planning questions over a
fresh snapshot of the user's tasks.

Chat surfaces call this service and render the returned objects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from speakeasy.core.insights import ProductivityReport, analyze_productivity
from speakeasy.core.llm import is_available
from speakeasy.core.parser import ParsedIntent, intent_to_item, parse_utterance
from speakeasy.core.prioritizer import prioritize_tasks, prioritize_with_ai
from speakeasy.core.reminders import TriggerSpec, geofence_value
from speakeasy.core.suggester import ScheduleSuggestion, suggest_schedule
from speakeasy.core.transcriber import transcribe_audio
from speakeasy.data.db import StorageError
from speakeasy.data.models import PRIORITIES, CalendarEvent, Item, PrioritizedTask, Reminder, Task

if TYPE_CHECKING:
    from speakeasy.core.reminders import Clock, ReminderScheduler
    from speakeasy.data.db import EventDB, TaskDB

logger = logging.getLogger(__name__)


@dataclass
class CaptureResult:
    """Outcome of one capture. ``intent`` is always present, even when saving failed."""

    intent: ParsedIntent
    item: Item | None = None
    reminders: list[Reminder] = field(default_factory=list)
    saved: bool = False
    error_message: str = ""


@dataclass
class Plan:
    ranked: list[PrioritizedTask]
    suggestion: ScheduleSuggestion


class Assistant:
    """Glue between the parser, the stores and the reminder scheduler."""

    def __init__(
        self,
        task_db: TaskDB,
        event_db: EventDB,
        scheduler: ReminderScheduler,
        clock: Clock | None = None,
        use_ai: bool | None = None,
    ) -> None:
        from speakeasy.config import settings
        from speakeasy.core.temporal import now_in

        self._tasks = task_db
        self._events = event_db
        self._scheduler = scheduler
        self._clock = clock or (lambda: now_in(settings.TIMEZONE))
        self._use_ai = use_ai

    def _ai_enabled(self) -> bool:
        return is_available() if self._use_ai is None else self._use_ai

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def capture_text(self, owner_id: str, text: str) -> CaptureResult:
        """Parse an utterance, store the resulting item and schedule its reminders."""
        now = self._clock()
        intent = await parse_utterance(text, now, use_ai=self._ai_enabled())
        item = intent_to_item(intent, owner_id, now)
        result = CaptureResult(intent=intent, item=item)

        try:
            if isinstance(item, Task):
                self._tasks.add(item)
            else:
                self._events.add(item)
            result.saved = True
            result.reminders = self._scheduler.schedule_item(item)
        except StorageError as exc:
            if result.saved:
                logger.error("Saved %s %s but could not schedule reminders: %s", item.kind, item.id, exc)
                result.error_message = f"Saved your {item.kind}, but couldn't set its reminders: {exc}"
            else:
                logger.error("Could not save %s for %s: %s", item.kind, owner_id, exc)
                result.error_message = f"Couldn't save your {item.kind}: {exc}"
        return result

    async def capture_voice(
        self, owner_id: str, audio: bytes, filename: str = "audio.ogg",
    ) -> CaptureResult:
        """Transcribe a recording, then capture it like typed text.

        TranscriptionError propagates; nothing is created in that case.
        """
        text = await transcribe_audio(audio, filename)
        logger.info("Voice capture for %s: %r", owner_id, text)
        return await self.capture_text(owner_id, text)

    # ------------------------------------------------------------------
    # Task and event management
    # ------------------------------------------------------------------

    def list_tasks(self, owner_id: str, incomplete_only: bool = False) -> list[Task]:
        return self._tasks.list_tasks(owner_id, incomplete_only=incomplete_only)

    def complete_task(self, task_id: str, completed: bool = True) -> Task | None:
        task = self._tasks.set_completed(task_id, completed, self._clock())
        if task is not None:
            logger.info("Task %s marked %s", task_id, "done" if completed else "open")
        return task

    def set_priority(self, task_id: str, priority: str) -> Task | None:
        if priority not in PRIORITIES:
            raise ValueError(f"Unknown priority: {priority!r}")
        return self._tasks.set_priority(task_id, priority)

    def set_due(self, task_id: str, due_at: datetime | None) -> Task | None:
        """Move (or clear) a task's due date and re-derive its time reminders."""
        task = self._tasks.set_due(task_id, due_at)
        if task is not None:
            self._scheduler.reschedule_item(task)
            logger.info("Task %s due date set to %s", task_id, due_at)
        return task

    def delete_task(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if task is None:
            return False
        self._scheduler.cancel_for_item(task)
        return self._tasks.delete(task_id)

    def delete_event(self, event_id: str) -> bool:
        event = self._events.get(event_id)
        if event is None:
            return False
        self._scheduler.cancel_for_item(event)
        return self._events.delete(event_id)

    def list_events(self, owner_id: str, upcoming: bool = True) -> list[CalendarEvent]:
        """Events by start time; by default only those that have not ended."""
        return self._events.list_events(owner_id, after=self._clock() if upcoming else None)

    def clear_all(self, owner_id: str) -> int:
        """Delete every task and event of an owner, with their reminders."""
        items: list[Item] = [*self._tasks.list_tasks(owner_id), *self._events.list_events(owner_id)]
        for item in items:
            self._scheduler.cancel_for_item(item)
        removed = self._tasks.clear(owner_id) + self._events.clear(owner_id)
        logger.info("Cleared %d items for %s", removed, owner_id)
        return removed

    # ------------------------------------------------------------------
    # Extra reminders
    # ------------------------------------------------------------------

    def add_location_reminder(
        self, task_id: str, lat: float, lon: float, radius_m: float | None = None,
    ) -> Reminder | None:
        """Remind about a task when the user comes back near (lat, lon)."""
        task = self._tasks.get(task_id)
        if task is None:
            return None
        trigger = TriggerSpec("location", geofence_value(lat, lon, radius_m), "You're nearby")
        return self._scheduler.add_reminder(task, trigger)

    def add_completion_reminder(self, task_id: str, note: str) -> Reminder | None:
        """Send ``note`` as a follow-up once the task is marked done."""
        task = self._tasks.get(task_id)
        if task is None:
            return None
        return self._scheduler.add_reminder(task, TriggerSpec("completion", "", note.strip()))

    async def update_location(self, lat: float, lon: float) -> int:
        """Record the user's position and fire reminders that became due.

        Returns the number of reminders fired.
        """
        self._scheduler.update_location(lat, lon)
        return await self._scheduler.sweep()

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    async def plan(self, owner_id: str, now: datetime | None = None) -> Plan:
        """Rank open tasks and bucket them into today / tomorrow / this week."""
        now = now or self._clock()
        tasks = self._tasks.list_tasks(owner_id, incomplete_only=True)
        if self._ai_enabled():
            ranked = await prioritize_with_ai(tasks, now)
        else:
            ranked = prioritize_tasks(tasks, now)
        return Plan(ranked=ranked, suggestion=suggest_schedule(ranked, now))

    def insights(self, owner_id: str) -> ProductivityReport:
        return analyze_productivity(self._tasks.list_tasks(owner_id))
