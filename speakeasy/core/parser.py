"""
SpeakEasy Assistant — Utterance Parser.

Brain of the capture flow: converts a short natural-language utterance
(typed or transcribed) into a structured task or calendar event.

Two extractors exist. The LLM extractor is optional and untrusted: its JSON
is validated before use. The heuristic extractor is deterministic and is
used whenever the LLM is unavailable or returns anything invalid. Parsing
never raises.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timedelta
from typing import Literal

from pydantic import BaseModel, ValidationError, field_validator

from speakeasy.core.llm import clean_json_response, complete, is_available
from speakeasy.core.temporal import (
    DEFAULT_DAY_TIME,
    END_OF_DAY,
    find_duration_minutes,
    find_temporal_expression,
    now_in,
    parse_instant,
)
from speakeasy.data.models import PRIORITIES, CalendarEvent, Item, Task, new_id

logger = logging.getLogger(__name__)

FALLBACK_TITLE_CHARS = 50
MAX_UTTERANCE_CHARS = 1000


class ExtractionError(ValueError):
    """Raised when an extractor's output fails shape or field validation."""


# ---------------------------------------------------------------------------
# Shared contract — the only boundary between free text and stored records
# ---------------------------------------------------------------------------


class ParsedIntent(BaseModel):
    """Structured result of interpreting an utterance.

    JSON example:
    {
        "type": "event",
        "title": "Lunch with Sarah",
        "start_at": "2025-02-14T12:00:00+00:00",
        "end_at": "2025-02-14T13:00:00+00:00",
        "location": "the Italian restaurant",
        "priority": "medium"
    }
    """
    type: Literal["task", "event"]
    title: str
    description: str | None = None
    due_at: datetime | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    location: str | None = None
    priority: Literal["low", "medium", "high"] = "medium"

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v


# ---------------------------------------------------------------------------
# Lexical cues
# ---------------------------------------------------------------------------

_EVENT_CUES = [
    re.compile(p, re.I) for p in (
        r"\bschedul(?:e|ed|ing)\b",
        r"\bmeet(?:ing)?\b",
        r"\bappointment\b|\bappt\b",
        r"\b(?:lunch|dinner|breakfast|brunch|coffee)\s+with\b",
        r"\binterview\b",
        r"\bconference\b",
        r"\bparty\b",
        r"\bcall\b.*?\bat\s+(?:\d|noon|midnight)",
    )
]

_TASK_CUES = [
    re.compile(p, re.I) for p in (
        r"\bremind me\b",
        r"\bneed to\b",
        r"\bhave to\b",
        r"\bmust\b",
        r"\bdon'?t forget\b|\bdo not forget\b",
        r"\bto-?do\b",
    )
]

_HIGH_CUES = re.compile(
    r"\b(?:urgent(?:ly)?|asap|a\.s\.a\.p\.?|immediately|critical|important|right away|high priority)\b",
    re.I,
)
_LOW_CUES = re.compile(
    r"\b(?:when i have time|whenever i can|eventually|someday|some day|no rush|low priority)\b",
    re.I,
)

_LEAD_IN = re.compile(
    r"^(?:please\s+|hey\s+|ok(?:ay)?\s+)*"
    r"(?:remind me (?:to|about|that)|i need to|i have to|i must|need to|have to|must|"
    r"don'?t forget (?:to )?|do not forget (?:to )?|"
    r"(?:schedule|set up)(?:\s+(?:a|an|the|my))?)\s+",
    re.I,
)
_TRAILING_PREPOSITION = re.compile(r"\s+(?:by|at|on|for|to|in|from|with)$", re.I)

_LOCATION_RE = re.compile(r"\b(at|in)\s+((?:the\s+)?[^|,.;!?\n]+)", re.I)
_LOCATION_STOP = re.compile(r"\s+(?:with|to|for|about|and|so|because|then)\b.*$", re.I)
_NOT_A_PLACE = re.compile(
    r"^(?:least|most|all|once|first|last|times|some point|the moment|the end|the latest)\b", re.I,
)
_MAX_LOCATION_CHARS = 60


def classify(text: str) -> Literal["task", "event"]:
    """Classify an utterance as task or event by lexical cues. Ties → task."""
    event_hits = sum(1 for cue in _EVENT_CUES if cue.search(text))
    task_hits = sum(1 for cue in _TASK_CUES if cue.search(text))
    return "event" if event_hits > task_hits else "task"


def infer_priority(text: str) -> Literal["low", "medium", "high"]:
    """Infer priority from urgency / deferral words. No cues → medium."""
    high = len(_HIGH_CUES.findall(text))
    low = len(_LOW_CUES.findall(text))
    if high > low:
        return "high"
    if low > high:
        return "low"
    return "medium"


# ---------------------------------------------------------------------------
# Heuristic extractor
# ---------------------------------------------------------------------------


def _mask(text: str, spans: list[tuple[int, int]]) -> str:
    chars = list(text)
    for start, end in spans:
        for i in range(start, end):
            chars[i] = "|"
    return "".join(chars)


def _find_location(masked: str) -> tuple[str, tuple[int, int]] | None:
    """Find an "at/in <place>" phrase outside already-consumed spans."""
    for m in _LOCATION_RE.finditer(masked):
        preposition, place = m.group(1).lower(), m.group(2)
        place = _LOCATION_STOP.sub("", place).strip()
        if not place or _NOT_A_PLACE.match(place) or place[0].isdigit():
            continue
        # "in" is too common to trust unless it names something
        if preposition == "in" and not (place[0].isupper() or place.lower().startswith("the ")):
            continue
        if len(place) > _MAX_LOCATION_CHARS:
            continue
        return place, (m.start(), m.start(2) + len(place))
    return None


def _clean_title(text: str, spans: list[tuple[int, int]]) -> str:
    """Strip consumed phrases, lead-ins, and priority markers from a title."""
    title = _mask(text, spans).replace("|", " ")
    title = _HIGH_CUES.sub(" ", title)
    title = _LOW_CUES.sub(" ", title)
    title = re.sub(r"\s+", " ", title).strip(" \t:;,.!?-")

    previous = None
    while previous != title:
        previous = title
        title = _LEAD_IN.sub("", title).strip(" \t:;,.!?-")
        title = _TRAILING_PREPOSITION.sub("", title).strip(" \t:;,.!?-")

    return title


def minimal_fallback(text: str) -> ParsedIntent:
    """Last-resort intent: a medium-priority task titled by the raw text."""
    text = text.strip()
    title = text[:FALLBACK_TITLE_CHARS] or "Untitled task"
    description = text if len(text) > FALLBACK_TITLE_CHARS else None
    return ParsedIntent(type="task", title=title, description=description, priority="medium")


def heuristic_parse(text: str, reference: datetime) -> ParsedIntent:
    """Deterministic, non-AI extraction of a ParsedIntent."""
    try:
        kind = classify(text)
        default_time = END_OF_DAY if kind == "task" else DEFAULT_DAY_TIME
        spans: list[tuple[int, int]] = []

        temporal = find_temporal_expression(text, reference, default_time)
        if temporal is not None:
            spans.extend(temporal.spans)

        duration = find_duration_minutes(text)
        if duration is not None:
            spans.append(duration[1])

        location = _find_location(_mask(text, spans))
        if location is not None:
            spans.append(location[1])

        title = _clean_title(text, spans) or text.strip()[:FALLBACK_TITLE_CHARS]

        intent = ParsedIntent(
            type=kind,
            title=title,
            location=location[0] if location else None,
            priority=infer_priority(text),
        )
        if temporal is not None:
            if kind == "task":
                intent.due_at = temporal.instant
            else:
                intent.start_at = temporal.instant
        if kind == "event" and duration is not None:
            start = intent.start_at or reference
            intent.end_at = start + timedelta(minutes=duration[0])

        logger.info("Heuristic parse: %s '%s' (priority=%s)", intent.type, intent.title, intent.priority)
        return intent
    except (ValidationError, ValueError, OverflowError) as exc:
        logger.warning("Heuristic extraction failed (%s), using minimal fallback", exc)
        return minimal_fallback(text)


# ---------------------------------------------------------------------------
# LLM extractor
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You are an AI assistant that parses voice input into structured task and event data.

The current date and time is {now} ({weekday}).

IMPORTANT: You must respond with valid JSON only. No additional text or formatting.

Parse the user's input and return a JSON object with this exact structure:
{{"type": "task" | "event", "title": "string", "description": "string (optional)", "due_date": "ISO-8601 (optional)", "start_time": "ISO-8601 (optional)", "end_time": "ISO-8601 (optional)", "location": "string (optional)", "priority": "low" | "medium" | "high"}}

Rules:
- If it's a task (like "remind me to...", "I need to...", "don't forget to..."), set type to "task".
- If it's an event (like "schedule a meeting...", "appointment at...", "call at..."), set type to "event".
- Resolve relative dates ("tomorrow", "next Tuesday", "tonight") against the current date and time.
- For priority, infer from urgency words: "urgent", "ASAP", "immediately", "critical" = high; "when I have time", "eventually", "someday" = low; default = medium.
- If no specific date or time is mentioned, omit the date fields.
- Keep titles concise but descriptive.
"""


def _validate_extraction(data: object, reference: datetime) -> ParsedIntent:
    """Validate raw LLM JSON. Raises ExtractionError on any shape problem."""
    if not isinstance(data, dict):
        raise ExtractionError(f"expected JSON object, got {type(data).__name__}")

    kind = data.get("type")
    if kind not in ("task", "event"):
        raise ExtractionError(f"invalid type: {kind!r}")

    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ExtractionError("missing title")

    priority = data.get("priority")
    if priority not in PRIORITIES:
        priority = "medium"

    tz = reference.tzinfo
    fields: dict = {}
    for key, source in (("due_at", "due_date"), ("start_at", "start_time"), ("end_at", "end_time")):
        raw = data.get(source)
        if raw is None:
            continue
        instant = parse_instant(raw, tz)
        if instant is None:
            logger.warning("Dropping unparseable %s from LLM: %r", source, raw)
            continue
        fields[key] = instant

    for key in ("description", "location"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            fields[key] = value.strip()

    try:
        return ParsedIntent(type=kind, title=title, priority=priority, **fields)
    except ValidationError as exc:
        raise ExtractionError(str(exc)) from exc


async def _llm_extract(text: str, reference: datetime) -> ParsedIntent:
    """Single-attempt LLM extraction. Raises on any failure."""
    system_prompt = _SYSTEM_PROMPT.format(
        now=reference.isoformat(timespec="minutes"),
        weekday=reference.strftime("%A"),
    )
    raw_text = await complete(
        system=system_prompt,
        user_message=f'Parse this voice input: "{text}"',
        max_tokens=500,
    )
    raw_text = clean_json_response(raw_text)
    logger.debug("LLM raw response: %s", raw_text)

    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"invalid JSON: {exc}") from exc

    return _validate_extraction(data, reference)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def finalize_intent(intent: ParsedIntent, reference: datetime, default_minutes: int = 60) -> ParsedIntent:
    """Apply the task/event date invariants to an accepted intent.

    Tasks keep only an optional due date. Events always get a start
    (default: reference) and an end not before it (default: start + 60 min).
    """
    if intent.type == "task":
        return intent.model_copy(update={"start_at": None, "end_at": None})

    start = intent.start_at or intent.due_at or reference
    end = intent.end_at
    if end is None or end < start:
        try:
            end = start + timedelta(minutes=default_minutes)
        except OverflowError:
            end = start
    return intent.model_copy(update={"start_at": start, "end_at": end, "due_at": None})


async def parse_utterance(
    text: str,
    reference: datetime | None = None,
    use_ai: bool | None = None,
) -> ParsedIntent:
    """Parse an utterance into a ParsedIntent. Never raises.

    Args:
        text: Raw utterance text.
        reference: The "now" relative expressions are resolved against.
        use_ai: Force the LLM path on/off. Defaults to "on if configured".
    """
    from speakeasy.config import settings

    if reference is None:
        reference = now_in(settings.TIMEZONE)
    text = (text or "").strip()[:MAX_UTTERANCE_CHARS]
    if use_ai is None:
        use_ai = is_available()

    intent: ParsedIntent | None = None
    if use_ai and text:
        try:
            intent = await _llm_extract(text, reference)
            logger.info("LLM parse: %s '%s'", intent.type, intent.title)
        except ExtractionError as exc:
            logger.warning("LLM extraction invalid (%s), falling back to heuristics", exc)
        except Exception as exc:
            logger.warning("LLM extraction failed (%s), falling back to heuristics", exc)

    if intent is None:
        intent = heuristic_parse(text, reference) if text else minimal_fallback(text)

    return finalize_intent(intent, reference, settings.DEFAULT_EVENT_MINUTES)


def intent_to_item(intent: ParsedIntent, owner_id: str, now: datetime) -> Item:
    """Build a Task or CalendarEvent from a finalized intent."""
    if intent.type == "task":
        return Task(
            id=new_id(),
            owner_id=owner_id,
            description=intent.title,
            created_at=now,
            priority=intent.priority,
            due_at=intent.due_at,
        )

    notes = intent.description
    return CalendarEvent(
        id=new_id(),
        owner_id=owner_id,
        title=intent.title,
        start_at=intent.start_at or now,
        end_at=intent.end_at or (intent.start_at or now) + timedelta(hours=1),
        location=intent.location,
        notes=notes,
    )
