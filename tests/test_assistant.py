"""Tests for speakeasy.core.assistant — capture, management and planning flows."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import REFERENCE, make_event, make_task
from speakeasy.core.assistant import Assistant
from speakeasy.core.transcriber import TranscriptionError
from speakeasy.data.db import StorageError
from speakeasy.data.models import CalendarEvent, Task

OWNER = "12345"


@pytest.fixture
def assistant(task_db, event_db, scheduler, clock):
    return Assistant(task_db, event_db, scheduler, clock=clock, use_ai=False)


class TestCaptureText:
    @pytest.mark.asyncio
    async def test_task_saved_with_reminders(self, assistant, task_db, reminder_db):
        result = await assistant.capture_text(OWNER, "URGENT: submit the proposal by 3pm today")
        assert result.saved is True
        assert isinstance(result.item, Task)
        assert result.item.priority == "high"
        assert task_db.get(result.item.id) == result.item
        # due 15:00 at 09:00 → only the 1-hour-before trigger is still ahead
        assert len(result.reminders) == 1
        assert reminder_db.get(result.reminders[0].id) is not None

    @pytest.mark.asyncio
    async def test_event_saved(self, assistant, event_db):
        result = await assistant.capture_text(
            OWNER, "Lunch with Sarah on Friday at noon at the Italian restaurant",
        )
        assert isinstance(result.item, CalendarEvent)
        stored = event_db.get(result.item.id)
        assert stored.start_at == datetime(2025, 3, 7, 12, 0, tzinfo=timezone.utc)
        assert stored.end_at == stored.start_at + timedelta(minutes=60)
        assert stored.location == "the Italian restaurant"
        assert len(result.reminders) == 1

    @pytest.mark.asyncio
    async def test_storage_failure_keeps_parsed_intent(self, scheduler, event_db, clock):
        broken = MagicMock()
        broken.add.side_effect = StorageError("database is locked")
        assistant = Assistant(broken, event_db, scheduler, clock=clock, use_ai=False)

        result = await assistant.capture_text(OWNER, "remind me to call mom tonight")
        assert result.saved is False
        assert result.intent.title == "call mom"
        assert "database is locked" in result.error_message
        assert result.reminders == []

    @pytest.mark.asyncio
    async def test_reminder_failure_after_save_is_reported(self, task_db, event_db, clock):
        scheduler = MagicMock()
        scheduler.schedule_item.side_effect = StorageError("disk full")
        assistant = Assistant(task_db, event_db, scheduler, clock=clock, use_ai=False)

        result = await assistant.capture_text(OWNER, "pay rent by friday 5pm")
        assert result.saved is True
        assert task_db.get(result.item.id) is not None
        assert "reminders" in result.error_message
        assert "disk full" in result.error_message


class TestCaptureVoice:
    @pytest.mark.asyncio
    async def test_transcript_is_captured(self, assistant):
        with patch("speakeasy.core.assistant.transcribe_audio", AsyncMock(return_value="buy milk")) as mock:
            result = await assistant.capture_voice(OWNER, b"OggS...")
        mock.assert_awaited_once_with(b"OggS...", "audio.ogg")
        assert result.item.description == "buy milk"

    @pytest.mark.asyncio
    async def test_transcription_failure_creates_nothing(self, assistant, task_db):
        failing = AsyncMock(side_effect=TranscriptionError("Could not understand the recording"))
        with patch("speakeasy.core.assistant.transcribe_audio", failing):
            with pytest.raises(TranscriptionError):
                await assistant.capture_voice(OWNER, b"\x00\x01")
        assert task_db.list_tasks() == []


class TestManagement:
    @pytest.mark.asyncio
    async def test_delete_task_cancels_reminders(self, assistant, task_db, reminder_db, scheduler):
        result = await assistant.capture_text(OWNER, "pay rent by friday 5pm")
        assert reminder_db.list_for_item(result.item)
        assert assistant.delete_task(result.item.id) is True
        assert task_db.get(result.item.id) is None
        assert reminder_db.list_for_item(result.item) == []
        assert scheduler.pending_timers == frozenset()

    def test_delete_missing(self, assistant):
        assert assistant.delete_task("nope") is False
        assert assistant.delete_event("nope") is False

    @pytest.mark.asyncio
    async def test_delete_event(self, assistant, event_db):
        result = await assistant.capture_text(OWNER, "dentist appointment tomorrow at 4pm")
        assert assistant.delete_event(result.item.id) is True
        assert event_db.get(result.item.id) is None

    def test_complete_task(self, assistant, task_db, clock):
        task = task_db.add(make_task())
        done = assistant.complete_task(task.id)
        assert done.completed is True
        assert done.completed_at == clock()

    def test_set_priority_validates(self, assistant, task_db):
        task = task_db.add(make_task())
        assert assistant.set_priority(task.id, "high").priority == "high"
        with pytest.raises(ValueError):
            assistant.set_priority(task.id, "extreme")

    @pytest.mark.asyncio
    async def test_clear_all(self, assistant, task_db, event_db, reminder_db):
        await assistant.capture_text(OWNER, "URGENT call the bank")
        await assistant.capture_text(OWNER, "meeting with Dana tomorrow at 10am")
        assert assistant.clear_all(OWNER) == 2
        assert task_db.list_tasks(OWNER) == []
        assert event_db.list_events(OWNER) == []
        assert reminder_db.list_pending(OWNER) == []


class TestPlanning:
    @pytest.mark.asyncio
    async def test_plan_uses_open_tasks_only(self, assistant, task_db):
        urgent = task_db.add(make_task("file taxes", priority="high", due_at=REFERENCE + timedelta(hours=1)))
        task_db.add(make_task("old", completed=True, completed_at=REFERENCE))
        plan = await assistant.plan(OWNER)
        assert [p.task for p in plan.ranked] == [urgent]
        assert [p.task for p in plan.suggestion.today] == [urgent]

    @pytest.mark.asyncio
    async def test_plan_with_ai(self, task_db, event_db, scheduler, clock):
        task_db.add(make_task("a"))
        assistant = Assistant(task_db, event_db, scheduler, clock=clock, use_ai=True)
        with patch("speakeasy.core.assistant.prioritize_with_ai", AsyncMock(return_value=[])) as mock:
            plan = await assistant.plan(OWNER)
        mock.assert_awaited_once()
        assert plan.ranked == []

    def test_insights(self, assistant, task_db):
        task_db.add(make_task("a", completed=True, completed_at=REFERENCE))
        task_db.add(make_task("b"))
        assert assistant.insights(OWNER).completion_rate == 50


class TestDueDatesAndEvents:
    @pytest.mark.asyncio
    async def test_set_due_replaces_time_reminders(self, assistant, task_db, reminder_db, scheduler):
        task = task_db.add(make_task("file taxes"))
        assistant.add_location_reminder(task.id, 40.7128, -74.0060)
        new_due = REFERENCE + timedelta(days=2)

        updated = assistant.set_due(task.id, new_due)
        assert updated.due_at == new_due
        kinds = sorted(r.trigger_kind for r in reminder_db.list_for_item(task))
        assert kinds == ["location", "time", "time"]

        assistant.set_due(task.id, None)
        assert [r.trigger_kind for r in reminder_db.list_for_item(task)] == ["location"]
        assert scheduler.pending_timers == frozenset()

    def test_set_due_missing(self, assistant):
        assert assistant.set_due("nope", REFERENCE) is None

    def test_list_events_upcoming_only(self, assistant, event_db):
        past = event_db.add(make_event("retro", start_at=REFERENCE - timedelta(days=1)))
        soon = event_db.add(make_event("standup", start_at=REFERENCE + timedelta(hours=1)))
        assert assistant.list_events(OWNER) == [soon]
        assert assistant.list_events(OWNER, upcoming=False) == [past, soon]


class TestExtraReminders:
    @pytest.mark.asyncio
    async def test_location_reminder_fires_on_arrival(self, assistant, task_db, notifier):
        task = task_db.add(make_task("buy stamps"))
        reminder = assistant.add_location_reminder(task.id, 40.7128, -74.0060)
        assert reminder.trigger_kind == "location"

        assert await assistant.update_location(40.80, -74.10) == 0
        assert await assistant.update_location(40.7129, -74.0061) == 1
        notifier.send_notification.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_completion_follow_up(self, assistant, task_db, scheduler, notifier):
        task = task_db.add(make_task("submit report"))
        assistant.add_completion_reminder(task.id, "  tell the team  ")
        assistant.complete_task(task.id)
        assert await scheduler.sweep() == 1
        owner, title, body = notifier.send_notification.await_args.args
        assert title == "Follow-up: submit report"
        assert body == "tell the team"

    def test_missing_task(self, assistant):
        assert assistant.add_location_reminder("nope", 0.0, 0.0) is None
        assert assistant.add_completion_reminder("nope", "x") is None
