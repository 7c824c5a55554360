"""Productivity insights computed from a user's task history."""

from __future__ import annotations

from dataclasses import dataclass, field

from speakeasy.data.models import Task


@dataclass
class ProductivityReport:
    completion_rate: int
    average_lead_days: float
    insights: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)


def analyze_productivity(tasks: list[Task]) -> ProductivityReport:
    """Summarize completion habits.

    completion_rate is a whole percentage. average_lead_days is the mean
    planned window (due minus created) of completed tasks that had a due date.
    """
    total = len(tasks)
    completed = [t for t in tasks if t.completed]
    rate = len(completed) / total * 100 if total else 0

    with_due = [t for t in completed if t.due_at is not None]
    if with_due:
        lead_seconds = sum((t.due_at - t.created_at).total_seconds() for t in with_due)
        average_lead_days = lead_seconds / len(with_due) / 86400
    else:
        average_lead_days = 0.0

    insights: list[str] = []
    improvements: list[str] = []

    if rate >= 80:
        insights.append("Excellent task completion rate! You're very productive.")
    elif rate >= 60:
        insights.append("Good task completion rate. Room for improvement.")
        improvements.append("Try breaking down large tasks into smaller, manageable pieces.")
    else:
        insights.append("Low task completion rate. Consider reviewing your task management approach.")
        improvements.append(
            "Focus on completing fewer, high-priority tasks rather than creating many tasks."
        )
        improvements.append("Set more realistic deadlines and priorities.")

    high_count = sum(1 for t in tasks if t.priority == "high")
    if high_count > total * 0.5:
        insights.append("You mark many tasks as high priority. Consider being more selective.")
        improvements.append('Reserve "high priority" for truly urgent and important tasks.')

    undated = sum(1 for t in tasks if t.due_at is None)
    if undated > total * 0.3:
        insights.append("Many tasks lack due dates, which can hurt prioritization.")
        improvements.append("Set realistic due dates for better time management.")

    return ProductivityReport(
        completion_rate=round(rate),
        average_lead_days=round(average_lead_days, 1),
        insights=insights,
        improvements=improvements,
    )
