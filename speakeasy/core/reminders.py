"""
SpeakEasy Assistant — Reminder Scheduler.

Each task or event gets a small set of reminders when it is created. A
reminder is Pending until its trigger condition holds, then Fired for good.

Two paths fire reminders:
  - a per-reminder asyncio timer armed for time-based triggers, and
  - a periodic sweep that re-reads pending reminders from storage and fires
    whatever is due (covers restarts, clock jumps and non-time triggers).

Both paths go through fire(), which relies on ReminderDB.mark_triggered to
let exactly one caller dispatch the notification.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Protocol

from speakeasy.config import settings
from speakeasy.core.temporal import now_in, parse_instant
from speakeasy.data.models import Item, Reminder, Task, TriggerKind

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

MAX_SWEEP_SECONDS = 60
EARTH_RADIUS_METERS = 6_371_000


# ---------------------------------------------------------------------------
# Trigger derivation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TriggerSpec:
    kind: TriggerKind
    value: str
    label: str


def generate_triggers(item: Item, now: datetime) -> list[TriggerSpec]:
    """Time triggers for a freshly created task or event.

    Tasks with a due date: 1 day and 1 hour before. High-priority tasks
    without one: 2 hours from now. Events: 15 minutes before, plus 1 hour
    before when longer than an hour. Instants already past are skipped.
    """
    candidates: list[tuple[datetime, str]] = []

    if item.kind == "task":
        if item.completed:
            return []
        if item.due_at is not None:
            candidates.append((item.due_at - timedelta(days=1), "1 day before due date"))
            candidates.append((item.due_at - timedelta(hours=1), "1 hour before due date"))
        elif item.priority == "high":
            candidates.append((now + timedelta(hours=2), "High priority - 2 hours"))
    else:
        candidates.append((item.start_at - timedelta(minutes=15), "15 minutes before event"))
        if item.duration_minutes > 60:
            candidates.append((item.start_at - timedelta(hours=1), "1 hour before event"))

    return [
        TriggerSpec("time", at.isoformat(), label)
        for at, label in candidates
        if at > now
    ]


def geofence_value(lat: float, lon: float, radius_m: float | None = None) -> str:
    """Serialize a geofence for a location trigger."""
    if radius_m is None:
        radius_m = settings.GEOFENCE_RADIUS_METERS
    return json.dumps({"lat": lat, "lon": lon, "radius_m": radius_m})


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(a))


# ---------------------------------------------------------------------------
# Trigger evaluators
# ---------------------------------------------------------------------------


@dataclass
class TriggerContext:
    """What an evaluator may look at besides the clock."""

    location: tuple[float, float] | None = None
    item: Item | None = None


class TriggerEvaluator(Protocol):
    def is_due(self, reminder: Reminder, now: datetime, context: TriggerContext) -> bool: ...


class TimeTriggerEvaluator:
    def is_due(self, reminder: Reminder, now: datetime, context: TriggerContext) -> bool:
        instant = parse_instant(reminder.trigger_value, now.tzinfo)
        if instant is None:
            logger.warning("Reminder %s has an unreadable instant: %r", reminder.id, reminder.trigger_value)
            return False
        return instant <= now


class LocationTriggerEvaluator:
    def is_due(self, reminder: Reminder, now: datetime, context: TriggerContext) -> bool:
        if context.location is None:
            return False
        try:
            fence = json.loads(reminder.trigger_value)
            lat, lon = float(fence["lat"]), float(fence["lon"])
            radius = float(fence.get("radius_m", settings.GEOFENCE_RADIUS_METERS))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Reminder %s has an unreadable geofence: %s", reminder.id, exc)
            return False
        here_lat, here_lon = context.location
        return haversine_meters(lat, lon, here_lat, here_lon) <= radius


class CompletionTriggerEvaluator:
    """Due once the owning task has been completed."""

    def is_due(self, reminder: Reminder, now: datetime, context: TriggerContext) -> bool:
        return isinstance(context.item, Task) and context.item.completed


def default_evaluators() -> dict[str, TriggerEvaluator]:
    return {
        "time": TimeTriggerEvaluator(),
        "location": LocationTriggerEvaluator(),
        "completion": CompletionTriggerEvaluator(),
    }


# ---------------------------------------------------------------------------
# Notification text
# ---------------------------------------------------------------------------


def format_notification(reminder: Reminder, item: Item | None) -> tuple[str, str]:
    """Title and body for a fired reminder. A deleted owner gets generic text."""
    if item is None:
        if reminder.item_kind == "task":
            return "Task reminder", reminder.label or "You have a task reminder."
        return "Event reminder", reminder.label or "You have an upcoming event."

    if isinstance(item, Task) and reminder.trigger_kind == "completion":
        return f"Follow-up: {item.description}", reminder.label or f"Done: {item.description}"

    if isinstance(item, Task):
        body = f"Don't forget: {item.description}"
        if item.due_at is not None:
            body += f" (Due: {item.due_at.strftime('%Y-%m-%d %H:%M')})"
        return f"Task Reminder: {item.description}", body

    body = f"Upcoming: {item.title}"
    if item.location:
        body += f" at {item.location}"
    return f"Event Reminder: {item.title}", body


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class ReminderScheduler:
    """Owns the pending-timer registry and the background sweep.

    Args:
        reminder_db: ReminderDB (or compatible) store.
        task_db / event_db: Stores used to look up a reminder's owner.
        notifier: NotificationPort implementation.
        clock: Returns the current aware datetime; injectable for tests.
        sweep_interval: Seconds between sweeps, clamped to 1..60.
        evaluators: Trigger kind → evaluator; defaults cover all kinds.
    """

    def __init__(
        self,
        reminder_db,
        task_db,
        event_db,
        notifier,
        clock: Clock | None = None,
        sweep_interval: float | None = None,
        evaluators: dict[str, TriggerEvaluator] | None = None,
    ) -> None:
        self._reminders = reminder_db
        self._tasks = task_db
        self._events = event_db
        self._notifier = notifier
        self._clock = clock or (lambda: now_in(settings.TIMEZONE))
        interval = settings.REMINDER_SWEEP_SECONDS if sweep_interval is None else sweep_interval
        self._sweep_interval = max(1, min(interval, MAX_SWEEP_SECONDS))
        self._evaluators = evaluators or default_evaluators()
        self._timers: dict[str, asyncio.Task] = {}
        self._location: tuple[float, float] | None = None
        self._sweep_task: asyncio.Task | None = None

    @property
    def sweep_interval(self) -> float:
        return self._sweep_interval

    @property
    def pending_timers(self) -> frozenset[str]:
        """Ids of reminders with a live in-memory timer."""
        return frozenset(self._timers)

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    # -- registration -------------------------------------------------------

    def schedule_item(self, item: Item) -> list[Reminder]:
        """Derive, persist and arm the default reminders of an item."""
        reminders = [
            self.add_reminder(item, spec)
            for spec in generate_triggers(item, self._clock())
        ]
        logger.info("Scheduled %d reminder(s) for %s %s", len(reminders), item.kind, item.id)
        return reminders

    def reschedule_item(self, item: Item) -> list[Reminder]:
        """Replace an item's pending time reminders after its date changed.

        Location and completion reminders are left alone.
        """
        for reminder in self._reminders.list_for_item(item):
            if reminder.trigger_kind == "time" and not reminder.triggered:
                self.cancel(reminder.id)
        return self.schedule_item(item)

    def add_reminder(self, item: Item, trigger: TriggerSpec) -> Reminder:
        reminder = self._reminders.create(
            item, trigger.kind, trigger.value, self._clock(), label=trigger.label,
        )
        if reminder.trigger_kind == "time":
            self.arm(reminder)
        return reminder

    def arm(self, reminder: Reminder) -> bool:
        """Start an in-memory timer for a pending time reminder.

        Returns False when there is nothing to arm or no running event loop;
        the sweep picks such reminders up later.
        """
        if reminder.triggered or reminder.trigger_kind != "time":
            return False
        now = self._clock()
        instant = parse_instant(reminder.trigger_value, now.tzinfo)
        if instant is None:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; reminder %s left to the sweep", reminder.id)
            return False

        self._drop_timer(reminder.id)
        delay = max(0.0, (instant - now).total_seconds())
        self._timers[reminder.id] = loop.create_task(self._fire_later(reminder.id, delay))
        logger.debug("Armed reminder %s in %.0fs", reminder.id, delay)
        return True

    async def _fire_later(self, reminder_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.fire(reminder_id)
        except Exception as exc:
            logger.error("Reminder %s timer failed: %s", reminder_id, exc)
            self._timers.pop(reminder_id, None)

    def _drop_timer(self, reminder_id: str) -> None:
        handle = self._timers.pop(reminder_id, None)
        if handle is not None and handle is not asyncio.current_task():
            handle.cancel()

    # -- firing ---------------------------------------------------------------

    def _lookup(self, reminder: Reminder) -> Item | None:
        if reminder.task_id is not None:
            return self._tasks.get(reminder.task_id)
        return self._events.get(reminder.event_id)

    async def fire(self, reminder_id: str) -> bool:
        """Fire a reminder once. Returns False if it was gone or already fired."""
        reminder = self._reminders.get(reminder_id)
        if reminder is None or not self._reminders.mark_triggered(reminder_id, self._clock()):
            logger.debug("Reminder %s already handled, skipping", reminder_id)
            self._drop_timer(reminder_id)
            return False

        title, body = format_notification(reminder, self._lookup(reminder))
        try:
            await self._notifier.send_notification(reminder.owner_id, title, body)
        except Exception as exc:
            logger.warning("Notification for reminder %s dropped: %s", reminder_id, exc)

        self._drop_timer(reminder_id)
        logger.info("Reminder fired: %s (%s)", reminder_id, reminder.label or reminder.trigger_kind)
        return True

    async def sweep(self) -> int:
        """Fire every due pending reminder and arm time reminders with no timer.

        Returns the number of reminders fired by this sweep.
        """
        now = self._clock()
        fired = 0
        for reminder in self._reminders.list_pending():
            evaluator = self._evaluators.get(reminder.trigger_kind)
            if evaluator is None:
                logger.warning("No evaluator for trigger kind %r", reminder.trigger_kind)
                continue

            context = TriggerContext(location=self._location)
            if reminder.trigger_kind == "completion":
                context.item = self._lookup(reminder)

            if evaluator.is_due(reminder, now, context):
                if await self.fire(reminder.id):
                    fired += 1
            elif reminder.trigger_kind == "time" and reminder.id not in self._timers:
                self.arm(reminder)
        return fired

    # -- cancellation ---------------------------------------------------------

    def cancel(self, reminder_id: str) -> bool:
        """Stop the timer and delete the stored reminder."""
        self._drop_timer(reminder_id)
        deleted = self._reminders.delete(reminder_id)
        if deleted:
            logger.info("Reminder cancelled: %s", reminder_id)
        return deleted

    def cancel_for_item(self, item: Item) -> int:
        """Cancel every reminder attached to an item (used on delete)."""
        ids = self._reminders.delete_for_item(item)
        for reminder_id in ids:
            self._drop_timer(reminder_id)
        if ids:
            logger.info("Cancelled %d reminder(s) for %s %s", len(ids), item.kind, item.id)
        return len(ids)

    # -- location -------------------------------------------------------------

    def update_location(self, lat: float, lon: float) -> None:
        """Record the user's position; location reminders are checked on the next sweep."""
        self._location = (lat, lon)
        logger.debug("Location updated to %.5f, %.5f", lat, lon)

    # -- lifecycle ------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            try:
                await self.sweep()
            except Exception as exc:
                logger.error("Reminder sweep failed: %s", exc)
            await asyncio.sleep(self._sweep_interval)

    def start(self) -> None:
        """Start the background sweep. Must be called from a running loop."""
        if self.running:
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Reminder scheduler started (sweep every %ss)", self._sweep_interval)

    async def stop(self) -> None:
        """Stop the sweep and cancel every pending timer."""
        tasks = list(self._timers.values())
        self._timers.clear()
        if self._sweep_task is not None:
            tasks.append(self._sweep_task)
            self._sweep_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Reminder scheduler stopped")
