"""Task prioritization — rule-based scoring plus an optional LLM ranking.

The rule-based scorer is the system of record: it is deterministic, needs no
network, and is what every LLM failure falls back to. An LLM ranking is only
used when it scores every input task exactly once.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime

from speakeasy.core.llm import clean_json_response, complete
from speakeasy.core.temporal import hours_until
from speakeasy.data.models import PrioritizedTask, Task, UrgencyTier

logger = logging.getLogger(__name__)

BASE_SCORES = {"high": 100, "medium": 50, "low": 25}

OVERDUE_BONUS = 200

# (upper bound in hours, bonus, label), most urgent first; only one applies.
DEADLINE_BANDS: list[tuple[float, int, str]] = [
    (2, 150, "due within 2 hours"),
    (24, 75, "due within 24 hours"),
    (72, 25, "due within 72 hours"),
]

STALE_AFTER_DAYS = 7
STALE_BONUS = 10

_DURATION_HINTS: list[tuple[re.Pattern, int]] = [
    (re.compile(r"\b(?:presentation|report|proposal|essay|deck|taxes)\b", re.I), 90),
    (re.compile(r"\b(?:meeting|appointment|interview|workout|class)\b", re.I), 60),
    (re.compile(r"\b(?:quick|call|email|text|reply|pay|buy|book)\b", re.I), 15),
]
DEFAULT_DURATION_MINUTES = 30


class PrioritizationError(ValueError):
    """Raised when an LLM ranking fails validation."""


# ---------------------------------------------------------------------------
# Deterministic scoring
# ---------------------------------------------------------------------------


def _deadline_band(task: Task, now: datetime) -> tuple[int, str] | None:
    if task.completed or task.due_at is None:
        return None
    hours = hours_until(task.due_at, now)
    if hours < 0:
        return OVERDUE_BONUS, "overdue"
    for limit, bonus, label in DEADLINE_BANDS:
        if hours <= limit:
            return bonus, label
    return None


def _is_stale(task: Task, now: datetime) -> bool:
    return (now - task.created_at).total_seconds() > STALE_AFTER_DAYS * 86400


def score_task(task: Task, now: datetime) -> float:
    """Numeric priority score. Completed tasks always score 0."""
    if task.completed:
        return 0

    score = BASE_SCORES.get(task.priority, BASE_SCORES["medium"])
    band = _deadline_band(task, now)
    if band is not None:
        score += band[0]
    if _is_stale(task, now):
        score += STALE_BONUS
    return max(0, score)


def urgency_tier(task: Task, now: datetime) -> UrgencyTier:
    """Coarse urgency derived from completion, deadline, then priority."""
    if task.completed:
        return "low"
    if task.due_at is not None:
        hours = hours_until(task.due_at, now)
        if hours <= 2:
            return "critical"
        if hours <= 24:
            return "high"
        if hours <= 72:
            return "medium"
    return task.priority


def estimate_duration_minutes(task: Task) -> int:
    """Rough effort estimate from keywords in the description."""
    for pattern, minutes in _DURATION_HINTS:
        if pattern.search(task.description):
            return minutes
    return DEFAULT_DURATION_MINUTES


def _explain(task: Task, now: datetime) -> str:
    if task.completed:
        return "Completed."
    parts = [f"{task.priority.capitalize()} priority (+{BASE_SCORES[task.priority]})."]
    band = _deadline_band(task, now)
    if band is not None:
        parts.append(f"{band[1].capitalize()} (+{band[0]}).")
    if _is_stale(task, now):
        parts.append(f"Open for over {STALE_AFTER_DAYS} days (+{STALE_BONUS}).")
    return " ".join(parts)


def _to_prioritized(task: Task, now: datetime, score: float, reasoning: str) -> PrioritizedTask:
    return PrioritizedTask(
        task=task,
        score=score,
        urgency=urgency_tier(task, now),
        estimated_minutes=estimate_duration_minutes(task),
        hours_to_deadline=hours_until(task.due_at, now) if task.due_at is not None else None,
        reasoning=reasoning,
    )


def _rank(prioritized: list[PrioritizedTask]) -> list[PrioritizedTask]:
    """Sort by descending score (earlier deadline first on ties) and number them."""
    def key(p: PrioritizedTask) -> tuple:
        due = p.hours_to_deadline if p.hours_to_deadline is not None else float("inf")
        return (-p.score, due)

    ranked = sorted(prioritized, key=key)
    for order, p in enumerate(ranked, start=1):
        p.suggested_order = order
    return ranked


def prioritize_tasks(tasks: list[Task], now: datetime) -> list[PrioritizedTask]:
    """Deterministically score and rank tasks."""
    return _rank([_to_prioritized(t, now, score_task(t, now), _explain(t, now)) for t in tasks])


# ---------------------------------------------------------------------------
# LLM-assisted ranking
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You are an AI task prioritization assistant. Analyze the given tasks and provide prioritization scores and reasoning.

IMPORTANT: Respond with valid JSON only.

Consider these factors:
1. Due dates and urgency
2. Task priority levels (high/medium/low)
3. Current time context
4. Task complexity (inferred from description)
5. Work-life balance

Score every task exactly once. Return format:
{"prioritized_tasks": [{"task_id": "string", "score": number, "reasoning": "string"}]}
"""


def _format_tasks(tasks: list[Task], now: datetime) -> str:
    lines = [f"Current time: {now.isoformat(timespec='minutes')}", "", "Tasks to prioritize:"]
    for i, task in enumerate(tasks, start=1):
        lines.append(
            f"{i}. Task ID: {task.id}\n"
            f"   Description: {task.description}\n"
            f"   Priority: {task.priority}\n"
            f"   Due Date: {task.due_at.isoformat() if task.due_at else 'None'}\n"
            f"   Created: {task.created_at.isoformat()}\n"
            f"   Completed: {task.completed}"
        )
    return "\n".join(lines)


def validate_ranking(data: object, tasks: list[Task]) -> dict[str, tuple[float, str]]:
    """Check an LLM ranking covers every task id exactly once with a numeric score.

    Returns {task_id: (score, reasoning)}. Raises PrioritizationError otherwise.
    """
    if not isinstance(data, dict) or not isinstance(data.get("prioritized_tasks"), list):
        raise PrioritizationError("missing prioritized_tasks list")

    expected = {t.id for t in tasks}
    scored: dict[str, tuple[float, str]] = {}
    for entry in data["prioritized_tasks"]:
        if not isinstance(entry, dict):
            raise PrioritizationError(f"entry is not an object: {entry!r}")
        task_id = entry.get("task_id")
        score = entry.get("score")
        if task_id not in expected:
            raise PrioritizationError(f"unknown task id: {task_id!r}")
        if task_id in scored:
            raise PrioritizationError(f"duplicate task id: {task_id!r}")
        if isinstance(score, bool) or not isinstance(score, (int, float)) or score != score:
            raise PrioritizationError(f"non-numeric score for {task_id!r}: {score!r}")
        reasoning = entry.get("reasoning")
        scored[task_id] = (float(score), reasoning if isinstance(reasoning, str) else "")

    missing = expected - scored.keys()
    if missing:
        raise PrioritizationError(f"missing task ids: {sorted(missing)}")
    return scored


async def prioritize_with_ai(tasks: list[Task], now: datetime) -> list[PrioritizedTask]:
    """Rank tasks with the LLM, falling back to rule-based scoring on any failure.

    The LLM result is all-or-nothing: one bad entry discards the whole answer.
    Urgency tiers are always computed by the rules.
    """
    if not tasks:
        return []

    try:
        raw = await complete(
            system=_SYSTEM_PROMPT,
            user_message=_format_tasks(tasks, now),
            max_tokens=1000,
            temperature=0.2,
        )
        data = json.loads(clean_json_response(raw))
        scored = validate_ranking(data, tasks)
    except (json.JSONDecodeError, PrioritizationError) as exc:
        logger.warning("LLM ranking rejected (%s), using rule-based scores", exc)
        return prioritize_tasks(tasks, now)
    except Exception as exc:
        logger.warning("LLM ranking failed (%s), using rule-based scores", exc)
        return prioritize_tasks(tasks, now)

    prioritized = []
    for task in tasks:
        score, reasoning = scored[task.id]
        if task.completed:
            score, reasoning = 0, "Completed."
        prioritized.append(_to_prioritized(task, now, max(0.0, score), reasoning))
    logger.info("LLM ranked %d tasks", len(prioritized))
    return _rank(prioritized)
