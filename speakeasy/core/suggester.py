"""Scheduling suggester — groups scored tasks into Today / Tomorrow / This week.

Buckets are filled in order and are mutually exclusive. Each bucket draws from
the tasks not placed in an earlier one, so a task left out of a full bucket is
still offered to the later buckets. A task that only qualifies for a full
bucket is left out of the suggestion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from speakeasy.data.models import PrioritizedTask

logger = logging.getLogger(__name__)

TODAY_CAP = 5
TOMORROW_CAP = 3
THIS_WEEK_CAP = 7

WORKDAY_MINUTES = 480
MAX_ACTIVE_TASKS = 20

ADVICE_NO_CRITICAL = "No critical tasks today. Great time to make progress on important goals!"
ADVICE_CRITICAL = "You have critical or overdue tasks. Prioritize these immediately!"
ADVICE_OVERLOADED = "Today's schedule looks heavy. Consider moving some tasks to tomorrow."
ADVICE_TOO_MANY = "You have many active tasks. Consider archiving or delegating some to refocus."


@dataclass
class ScheduleSuggestion:
    today: list[PrioritizedTask] = field(default_factory=list)
    tomorrow: list[PrioritizedTask] = field(default_factory=list)
    this_week: list[PrioritizedTask] = field(default_factory=list)
    advisories: list[str] = field(default_factory=list)

    @property
    def total_minutes_today(self) -> int:
        return sum(p.estimated_minutes for p in self.today)


def _within(p: PrioritizedTask, hours: float) -> bool:
    return p.hours_to_deadline is not None and p.hours_to_deadline < hours


def _wants_today(p: PrioritizedTask) -> bool:
    return p.urgency == "critical" or (p.urgency == "high" and _within(p, 48))


def _wants_tomorrow(p: PrioritizedTask) -> bool:
    return p.urgency == "high" or (p.urgency == "medium" and _within(p, 72))


def _wants_this_week(p: PrioritizedTask) -> bool:
    return _within(p, 168) or p.urgency == "medium"


def _advisories(
    today: list[PrioritizedTask], active: list[PrioritizedTask],
) -> list[str]:
    advice = []
    if any(p.urgency == "critical" for p in active):
        advice.append(ADVICE_CRITICAL)
    else:
        advice.append(ADVICE_NO_CRITICAL)
    if sum(p.estimated_minutes for p in today) > WORKDAY_MINUTES:
        advice.append(ADVICE_OVERLOADED)
    if len(active) > MAX_ACTIVE_TASKS:
        advice.append(ADVICE_TOO_MANY)
    return advice


def suggest_schedule(
    prioritized: list[PrioritizedTask], now: datetime,
) -> ScheduleSuggestion:
    """Bucket incomplete tasks by urgency and deadline.

    Args:
        prioritized: Scored tasks, in any order.
        now: Reference instant; kept for callers that re-score before bucketing.

    Returns:
        ScheduleSuggestion with each bucket ordered by descending score.
    """
    active = sorted(
        (p for p in prioritized if not p.task.completed),
        key=lambda p: p.score,
        reverse=True,
    )

    remaining = active
    buckets = []
    for wants, cap in (
        (_wants_today, TODAY_CAP),
        (_wants_tomorrow, TOMORROW_CAP),
        (_wants_this_week, THIS_WEEK_CAP),
    ):
        bucket = [p for p in remaining if wants(p)][:cap]
        placed = {id(p) for p in bucket}
        remaining = [p for p in remaining if id(p) not in placed]
        buckets.append(bucket)
    today, tomorrow, this_week = buckets

    dropped = sum(
        1 for p in remaining
        if _wants_today(p) or _wants_tomorrow(p) or _wants_this_week(p)
    )
    if dropped:
        logger.debug("Suggestion at %s left %d tasks out of full buckets", now.isoformat(), dropped)

    return ScheduleSuggestion(
        today=today,
        tomorrow=tomorrow,
        this_week=this_week,
        advisories=_advisories(today, active),
    )
