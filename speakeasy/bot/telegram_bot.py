"""
SpeakEasy Assistant — Telegram Bot.

A thin chat surface over the Assistant service: text and voice messages are
captured as tasks or events, commands manage tasks and events, shared
locations feed location reminders, and reminders come back as Telegram
messages.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
import sys
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from speakeasy.config import settings
from speakeasy.core.temporal import END_OF_DAY, now_in, resolve
from speakeasy.core.transcriber import TranscriptionError
from speakeasy.data.db import StorageError
from speakeasy.data.models import PRIORITIES

if TYPE_CHECKING:
    from speakeasy.core.assistant import Assistant, CaptureResult
    from speakeasy.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Silently ignore updates from users not in ALLOWED_USER_IDS."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _fmt(dt) -> str:
    return dt.strftime("%a %d %b %H:%M")


def format_capture(result: CaptureResult) -> str:
    """User-facing confirmation for a capture."""
    intent = result.intent
    if intent.type == "task":
        lines = [f"✅ Task: {intent.title}", f"Priority: {intent.priority}"]
        if intent.due_at:
            lines.append(f"Due: {_fmt(intent.due_at)}")
    else:
        lines = [f"📅 Event: {intent.title}", f"When: {_fmt(intent.start_at)} – {intent.end_at.strftime('%H:%M')}"]
        if intent.location:
            lines.append(f"Where: {intent.location}")

    if result.error_message:
        lines.append(f"⚠️ {result.error_message}")
    elif not result.saved:
        lines.append("⚠️ Not saved.")
    elif result.reminders:
        lines.append(f"🔔 {len(result.reminders)} reminder(s) set")
    return "\n".join(lines)


def _owner_id(update: Update) -> str:
    return str(update.effective_user.id)


def _assistant(context: ContextTypes.DEFAULT_TYPE) -> Assistant:
    return context.bot_data["assistant"]


# ---------------------------------------------------------------------------
# Capture handlers
# ---------------------------------------------------------------------------


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Plain text message → task or event."""
    result = await _assistant(context).capture_text(_owner_id(update), update.message.text)
    await update.message.reply_text(format_capture(result))


@authorized_only
async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Voice message → Whisper transcript → task or event."""
    voice = update.message.voice
    try:
        voice_file = await context.bot.get_file(voice.file_id)
        audio = bytes(await voice_file.download_as_bytearray())
        result = await _assistant(context).capture_voice(_owner_id(update), audio, "voice.ogg")
    except TranscriptionError as exc:
        logger.error("Voice capture failed: %s", exc)
        await update.message.reply_text(f"Sorry, I couldn't understand that recording. ({exc})")
        return

    await update.message.reply_text(f"🎤 {format_capture(result)}")


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start and /help."""
    await update.message.reply_text(
        "Send me a text or voice note like \"remind me to call mom tonight\" or "
        "\"meeting with John next Tuesday at 2 PM\".\n\n"
        "/tasks — open tasks, most urgent first\n"
        "/plan — today / tomorrow / this week\n"
        "/done <n> — complete task n from /tasks\n"
        "/delete <n> — delete task n from /tasks\n"
        "/priority <n> <low|medium|high> — change a task's priority\n"
        "/due <n> <when> — move a task's due date (or 'none')\n"
        "/followup <n> <note> — remind me when task n is done\n"
        "/here <n> — remind me about task n near my shared location\n"
        "/events — upcoming events\n"
        "/cancel <n> — cancel event n from /events\n"
        "/clear confirm — delete everything\n"
        "/stats — productivity insights\n"
        "/help — show this message"
    )


@authorized_only
async def cmd_tasks(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /tasks — numbered list of open tasks by score."""
    try:
        plan = await _assistant(context).plan(_owner_id(update))
    except StorageError as exc:
        await update.message.reply_text(f"Couldn't load tasks: {exc}")
        return

    if not plan.ranked:
        context.user_data["task_ids"] = []
        await update.message.reply_text("No open tasks. 🎉")
        return

    context.user_data["task_ids"] = [p.id for p in plan.ranked]
    lines = ["Open tasks:"]
    for p in plan.ranked:
        due = f" (due {_fmt(p.task.due_at)})" if p.task.due_at else ""
        lines.append(f"{p.suggested_order}. [{p.urgency}] {p.task.description}{due}")
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_plan(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /plan — bucketed suggestions with advisories."""
    try:
        plan = await _assistant(context).plan(_owner_id(update))
    except StorageError as exc:
        await update.message.reply_text(f"Couldn't load tasks: {exc}")
        return

    suggestion = plan.suggestion
    lines = []
    for heading, bucket in (
        ("Today", suggestion.today),
        ("Tomorrow", suggestion.tomorrow),
        ("This week", suggestion.this_week),
    ):
        lines.append(f"{heading}:")
        lines.extend(f"  • {p.task.description} (~{p.estimated_minutes} min)" for p in bucket)
        if not bucket:
            lines.append("  —")
    lines.append("")
    lines.extend(f"💡 {a}" for a in suggestion.advisories)
    await update.message.reply_text("\n".join(lines))


def _pick(context: ContextTypes.DEFAULT_TYPE, key: str = "task_ids") -> str | None:
    """Resolve the <n> argument against the last /tasks (or /events) listing."""
    ids = context.user_data.get(key) or []
    if not context.args:
        return None
    try:
        index = int(context.args[0])
    except ValueError:
        return None
    if 1 <= index <= len(ids):
        return ids[index - 1]
    return None


@authorized_only
async def cmd_done(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /done <n>."""
    task_id = _pick(context)
    if task_id is None:
        await update.message.reply_text("Usage: /done <n>\nUse /tasks to see numbers.")
        return
    task = _assistant(context).complete_task(task_id)
    if task is None:
        await update.message.reply_text("That task no longer exists.")
        return
    await update.message.reply_text(f"✅ Done: {task.description}")


@authorized_only
async def cmd_delete(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /delete <n>."""
    task_id = _pick(context)
    if task_id is None:
        await update.message.reply_text("Usage: /delete <n>\nUse /tasks to see numbers.")
        return
    if _assistant(context).delete_task(task_id):
        await update.message.reply_text("🗑️ Task deleted.")
    else:
        await update.message.reply_text("That task no longer exists.")


@authorized_only
async def cmd_priority(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /priority <n> <low|medium|high>."""
    task_id = _pick(context)
    level = context.args[1].lower() if len(context.args or []) > 1 else ""
    if task_id is None or level not in PRIORITIES:
        await update.message.reply_text("Usage: /priority <n> <low|medium|high>")
        return
    task = _assistant(context).set_priority(task_id, level)
    if task is None:
        await update.message.reply_text("That task no longer exists.")
        return
    await update.message.reply_text(f"Priority of \"{task.description}\" set to {task.priority}.")


@authorized_only
async def cmd_due(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /due <n> <when> and /due <n> none."""
    task_id = _pick(context)
    expression = " ".join((context.args or [])[1:]).strip()
    if task_id is None or not expression:
        await update.message.reply_text("Usage: /due <n> <when>, e.g. /due 2 friday 5pm (or /due 2 none)")
        return

    due_at = None
    if expression.lower() != "none":
        due_at = resolve(now_in(settings.TIMEZONE), expression, default_time=END_OF_DAY)
        if due_at is None:
            await update.message.reply_text(f"I couldn't work out a date from \"{expression}\".")
            return

    task = _assistant(context).set_due(task_id, due_at)
    if task is None:
        await update.message.reply_text("That task no longer exists.")
    elif due_at is None:
        await update.message.reply_text(f"Due date cleared for \"{task.description}\".")
    else:
        await update.message.reply_text(f"\"{task.description}\" is now due {_fmt(due_at)}.")


@authorized_only
async def cmd_followup(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /followup <n> <note> — a reminder sent once task n is done."""
    task_id = _pick(context)
    note = " ".join((context.args or [])[1:]).strip()
    if task_id is None or not note:
        await update.message.reply_text("Usage: /followup <n> <note>")
        return
    if _assistant(context).add_completion_reminder(task_id, note) is None:
        await update.message.reply_text("That task no longer exists.")
        return
    await update.message.reply_text("🔔 I'll remind you when that task is done.")


@authorized_only
async def cmd_here(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /here <n> — remind about task n near the last shared location."""
    location = context.user_data.get("location")
    if location is None:
        await update.message.reply_text("Share your location first, then use /here <n>.")
        return
    task_id = _pick(context)
    if task_id is None:
        await update.message.reply_text("Usage: /here <n>\nUse /tasks to see numbers.")
        return
    lat, lon = location
    if _assistant(context).add_location_reminder(task_id, lat, lon) is None:
        await update.message.reply_text("That task no longer exists.")
        return
    await update.message.reply_text(
        f"📍 I'll remind you when you're within {settings.GEOFENCE_RADIUS_METERS} m of here."
    )


@authorized_only
async def handle_location(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Shared location → remember it and check location reminders."""
    message = update.effective_message
    location = message.location
    context.user_data["location"] = (location.latitude, location.longitude)
    fired = await _assistant(context).update_location(location.latitude, location.longitude)
    if fired:
        await message.reply_text(f"📍 Location noted. {fired} reminder(s) triggered.")
    elif update.message is not None:
        # Live-location edits arrive silently.
        await message.reply_text("📍 Location noted. Use /here <n> to tie a task to this place.")


@authorized_only
async def cmd_events(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /events — numbered list of upcoming events."""
    try:
        events = _assistant(context).list_events(_owner_id(update))
    except StorageError as exc:
        await update.message.reply_text(f"Couldn't load events: {exc}")
        return

    context.user_data["event_ids"] = [e.id for e in events]
    if not events:
        await update.message.reply_text("No upcoming events.")
        return
    lines = ["Upcoming events:"]
    for i, event in enumerate(events, start=1):
        where = f" @ {event.location}" if event.location else ""
        lines.append(f"{i}. {_fmt(event.start_at)} {event.title}{where}")
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /cancel <n> — delete event n from /events."""
    event_id = _pick(context, "event_ids")
    if event_id is None:
        await update.message.reply_text("Usage: /cancel <n>\nUse /events to see numbers.")
        return
    if _assistant(context).delete_event(event_id):
        await update.message.reply_text("🗑️ Event cancelled.")
    else:
        await update.message.reply_text("That event no longer exists.")


@authorized_only
async def cmd_clear(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /clear confirm — delete every task and event."""
    if not context.args or context.args[0].lower() != "confirm":
        await update.message.reply_text(
            "This deletes all your tasks, events and reminders. Send /clear confirm to go ahead."
        )
        return
    removed = _assistant(context).clear_all(_owner_id(update))
    context.user_data.pop("task_ids", None)
    context.user_data.pop("event_ids", None)
    await update.message.reply_text(f"🧹 Removed {removed} item(s).")


@authorized_only
async def cmd_stats(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /stats — completion rate and advice."""
    report = _assistant(context).insights(_owner_id(update))
    lines = [
        f"Completion rate: {report.completion_rate}%",
        f"Average planning window: {report.average_lead_days} days",
        "",
        *report.insights,
    ]
    if report.improvements:
        lines.append("")
        lines.extend(f"• {tip}" for tip in report.improvements)
    await update.message.reply_text("\n".join(lines))


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(notifier: NotificationPort | None = None) -> Application:
    """Build the Telegram Application and wire the stores, scheduler and service."""
    from speakeasy.core.assistant import Assistant
    from speakeasy.core.reminders import ReminderScheduler
    from speakeasy.data.db import EventDB, ReminderDB, TaskDB

    async def _post_init(application: Application) -> None:
        application.bot_data["scheduler"].start()

    async def _post_shutdown(application: Application) -> None:
        await application.bot_data["scheduler"].stop()

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )

    if notifier is None:
        from speakeasy.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    task_db, event_db, reminder_db = TaskDB(), EventDB(), ReminderDB()
    scheduler = ReminderScheduler(reminder_db, task_db, event_db, notifier)
    app.bot_data["scheduler"] = scheduler
    app.bot_data["assistant"] = Assistant(task_db, event_db, scheduler)

    app.add_handler(CommandHandler(["start", "help"], cmd_help))
    app.add_handler(CommandHandler("tasks", cmd_tasks))
    app.add_handler(CommandHandler("plan", cmd_plan))
    app.add_handler(CommandHandler("done", cmd_done))
    app.add_handler(CommandHandler("delete", cmd_delete))
    app.add_handler(CommandHandler("priority", cmd_priority))
    app.add_handler(CommandHandler("due", cmd_due))
    app.add_handler(CommandHandler("followup", cmd_followup))
    app.add_handler(CommandHandler("here", cmd_here))
    app.add_handler(CommandHandler("events", cmd_events))
    app.add_handler(CommandHandler("cancel", cmd_cancel))
    app.add_handler(CommandHandler("clear", cmd_clear))
    app.add_handler(CommandHandler("stats", cmd_stats))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app.add_handler(MessageHandler(filters.VOICE, handle_voice))
    app.add_handler(MessageHandler(filters.LOCATION, handle_location))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    if not settings.TELEGRAM_BOT_TOKEN:
        print("ERROR: TELEGRAM_BOT_TOKEN is missing. Check your .env file.", file=sys.stderr)
        sys.exit(1)

    logger.info("Starting SpeakEasy Assistant bot...")
    app = build_app()
    app.run_polling()
