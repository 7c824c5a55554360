"""Temporal resolver — pure date/time reasoning.

Turns relative and absolute date-time phrases ("tomorrow at 3pm", "next
Tuesday", "in 2 hours", "2025-03-01T09:00") into absolute instants relative
to a reference instant. Unresolvable phrases yield None, never "now".

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo

from dateutil import parser as dateutil_parser

logger = logging.getLogger(__name__)

DEFAULT_DAY_TIME = time(9, 0)
END_OF_DAY = time(23, 59)
TONIGHT = time(21, 0)

_DAY_PARTS = {
    "morning": time(9, 0),
    "afternoon": time(14, 0),
    "evening": time(19, 0),
}

_WEEKDAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

_NUMBER_WORDS = {
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}

_UNIT_MINUTES = {
    "minute": 1, "min": 1,
    "hour": 60, "hr": 60,
    "day": 24 * 60,
    "week": 7 * 24 * 60,
}

_NUM = r"(\d+|" + "|".join(_NUMBER_WORDS) + r")"

_ISO_RE = re.compile(
    r"\b\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?"
)
_RELATIVE_RE = re.compile(
    r"\bin\s+" + _NUM + r"\s+(minute|min|hour|hr|day|week)s?\b", re.I,
)
_DAY_AFTER_RE = re.compile(r"\b(?:the\s+)?day\s+after\s+tomorrow\b", re.I)
_TOMORROW_RE = re.compile(r"\btomorrow\b", re.I)
_TONIGHT_RE = re.compile(r"\btonight\b", re.I)
_TODAY_RE = re.compile(r"\btoday\b", re.I)
_WEEKDAY_RE = re.compile(
    r"\b(?:on\s+)?(?:(this|next)\s+)?(" + "|".join(_WEEKDAYS) + r")\b", re.I,
)
_AMPM_RE = re.compile(
    r"\b(?:(?:at|by|around)\s+)?(\d{1,2})(?::([0-5]\d))?\s*([ap])\.?\s?m\b\.?", re.I,
)
_CLOCK_RE = re.compile(r"\b(?:(?:at|by|around)\s+)?([01]?\d|2[0-3]):([0-5]\d)\b", re.I)
_NAMED_TIME_RE = re.compile(r"\b(?:(?:at|by|around)\s+)?(noon|midnight)\b", re.I)
_BARE_HOUR_RE = re.compile(
    r"\b(?:at|by)\s+(\d{1,2})\b"
    r"(?!\s*(?:[:.]\d|%|(?:st|street|ave|avenue|rd|road|blvd|lane|main|of|people|"
    r"minutes?|mins?|hours?|hrs?|days?|weeks?)\b))",
    re.I,
)
_DAY_PART_RE = re.compile(
    r"\b(?:(?:in|this)\s+(?:the\s+)?)?(morning|afternoon|evening)\b", re.I,
)
_DURATION_RE = re.compile(
    r"\bfor\s+(?:(half\s+an?)\s+hour|" + r"(\d+(?:\.\d+)?|" + "|".join(_NUMBER_WORDS)
    + r")\s+(minute|min|hour|hr)s?)\b",
    re.I,
)


@dataclass
class TemporalMatch:
    """A resolved instant plus the text spans it was read from."""

    instant: datetime
    spans: list[tuple[int, int]] = field(default_factory=list)
    has_date: bool = False
    has_time: bool = False


def now_in(tz_name: str) -> datetime:
    """Current instant in the named timezone."""
    return datetime.now(ZoneInfo(tz_name))


def hours_until(instant: datetime, reference: datetime) -> float:
    """Signed hours from reference to instant (negative when in the past)."""
    return (instant - reference).total_seconds() / 3600


def _to_number(token: str) -> float:
    token = token.lower()
    if token in _NUMBER_WORDS:
        return _NUMBER_WORDS[token]
    return float(token)


def parse_instant(value: object, tz: tzinfo | None = None) -> datetime | None:
    """Parse an ISO-8601 string (or datetime) into an aware datetime.

    Naive values are assumed to be in ``tz``. Returns None when unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = dateutil_parser.isoparse(value.strip())
        except (ValueError, OverflowError):
            logger.debug("Not an ISO instant: %r", value)
            return None
    else:
        return None

    if parsed.tzinfo is None and tz is not None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def _combine(day: date, at: time, tz: tzinfo | None) -> datetime:
    return datetime.combine(day, at, tzinfo=tz)


def _find_time(text: str) -> tuple[time, tuple[int, int]] | None:
    """Locate an explicit clock time in text."""
    m = _AMPM_RE.search(text)
    if m:
        hour = int(m.group(1))
        minute = int(m.group(2) or 0)
        if 1 <= hour <= 12:
            meridiem = m.group(3).lower()
            if meridiem == "p" and hour < 12:
                hour += 12
            elif meridiem == "a" and hour == 12:
                hour = 0
            return time(hour, minute), m.span()

    m = _CLOCK_RE.search(text)
    if m:
        return time(int(m.group(1)), int(m.group(2))), m.span()

    m = _NAMED_TIME_RE.search(text)
    if m:
        at = time(12, 0) if m.group(1).lower() == "noon" else time(0, 0)
        return at, m.span()

    m = _BARE_HOUR_RE.search(text)
    if m:
        hour = int(m.group(1))
        if 1 <= hour <= 12:
            # "at 3" means the afternoon; "at 9" means the morning.
            if hour < 8:
                hour += 12
            return time(hour, 0), m.span()

    return None


def _find_day(
    text: str, reference: datetime,
) -> tuple[date, tuple[int, int], str] | None:
    """Locate a day qualifier in text. Returns (date, span, kind)."""
    today = reference.date()

    m = _DAY_AFTER_RE.search(text)
    if m:
        return today + timedelta(days=2), m.span(), "relative"

    m = _TOMORROW_RE.search(text)
    if m:
        return today + timedelta(days=1), m.span(), "relative"

    m = _TONIGHT_RE.search(text)
    if m:
        return today, m.span(), "tonight"

    m = _TODAY_RE.search(text)
    if m:
        return today, m.span(), "relative"

    m = _WEEKDAY_RE.search(text)
    if m:
        target = _WEEKDAYS[m.group(2).lower()]
        days_ahead = (target - reference.weekday()) % 7
        if days_ahead == 0 and (m.group(1) or "").lower() == "next":
            days_ahead = 7
        return today + timedelta(days=days_ahead), m.span(), "weekday"

    return None


def find_temporal_expression(
    text: str,
    reference: datetime,
    default_time: time | None = None,
) -> TemporalMatch | None:
    """Find and resolve the date/time phrase embedded in an utterance.

    Args:
        text: Free text that may contain a date/time phrase.
        reference: The "now" the phrase is relative to.
        default_time: Time of day used when only a day is mentioned.

    Returns:
        TemporalMatch, or None when the text holds no resolvable phrase.
    """
    tz = reference.tzinfo
    fallback_time = default_time or DEFAULT_DAY_TIME

    m = _ISO_RE.search(text)
    if m:
        raw = m.group(0)
        instant = parse_instant(raw, tz)
        if instant is not None:
            has_time = len(raw) > 10
            if not has_time:
                instant = _combine(instant.date(), fallback_time, tz)
            return TemporalMatch(instant, [m.span()], has_date=True, has_time=has_time)

    m = _RELATIVE_RE.search(text)
    if m:
        amount = _to_number(m.group(1))
        minutes = amount * _UNIT_MINUTES[m.group(2).lower()]
        try:
            instant = reference + timedelta(minutes=minutes)
        except OverflowError:
            logger.debug("Relative offset %r is out of range", m.group(0))
            return None
        return TemporalMatch(instant, [m.span()], has_date=True, has_time=True)

    spans: list[tuple[int, int]] = []
    day = _find_day(text, reference)
    clock = _find_time(text)
    part = _DAY_PART_RE.search(text)

    if day is None and clock is None and part is None:
        return None

    if clock is not None:
        at = clock[0]
        spans.append(clock[1])
    elif part is not None:
        at = _DAY_PARTS[part.group(1).lower()]
    elif day is not None and day[2] == "tonight":
        at = TONIGHT
    else:
        at = fallback_time
    if part is not None:
        spans.append(part.span())

    if day is None:
        instant = _combine(reference.date(), at, tz)
        if instant < reference:
            instant += timedelta(days=1)
        return TemporalMatch(instant, spans, has_date=False, has_time=True)

    day_date, day_span, day_kind = day
    spans.append(day_span)
    if day_kind == "tonight" and clock is not None and at.hour < 12:
        at = time(at.hour + 12, at.minute)

    instant = _combine(day_date, at, tz)
    if day_kind == "weekday" and instant < reference:
        instant += timedelta(days=7)

    return TemporalMatch(
        instant,
        sorted(spans),
        has_date=True,
        has_time=clock is not None or part is not None or day_kind == "tonight",
    )


def resolve(
    reference: datetime,
    expression: str,
    default_time: time | None = None,
) -> datetime | None:
    """Resolve a date/time expression to an absolute instant.

    Returns None (not "now") when the expression cannot be resolved.
    """
    if not expression or not expression.strip():
        return None

    bare = parse_instant(expression, reference.tzinfo)
    if bare is not None:
        return bare

    match = find_temporal_expression(expression, reference, default_time)
    if match is None:
        logger.debug("Could not resolve %r", expression)
        return None
    return match.instant


def find_duration_minutes(text: str) -> tuple[int, tuple[int, int]] | None:
    """Find an explicit duration ("for 90 minutes", "for one hour")."""
    m = _DURATION_RE.search(text)
    if m is None:
        return None
    if m.group(1):
        return 30, m.span()

    amount = _to_number(m.group(2))
    unit = m.group(3).lower()
    minutes = int(round(amount * _UNIT_MINUTES[unit]))
    if minutes <= 0:
        return None
    return minutes, m.span()
