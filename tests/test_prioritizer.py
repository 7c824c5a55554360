"""Tests for speakeasy.core.prioritizer — rule-based scoring and LLM ranking."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from conftest import REFERENCE, make_task
from speakeasy.core.prioritizer import (
    PrioritizationError,
    estimate_duration_minutes,
    prioritize_tasks,
    prioritize_with_ai,
    score_task,
    urgency_tier,
    validate_ranking,
)

NOW = REFERENCE


def due_in(**kwargs):
    return NOW + timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Deterministic scoring
# ---------------------------------------------------------------------------


class TestScoreTask:
    @pytest.mark.parametrize("priority,expected", [("high", 100), ("medium", 50), ("low", 25)])
    def test_base_scores(self, priority, expected):
        assert score_task(make_task(priority=priority), NOW) == expected

    @pytest.mark.parametrize("offset,bonus", [
        (timedelta(hours=-1), 200),
        (timedelta(hours=1), 150),
        (timedelta(hours=2), 150),
        (timedelta(hours=10), 75),
        (timedelta(hours=48), 25),
        (timedelta(days=5), 0),
    ])
    def test_single_deadline_band(self, offset, bonus):
        task = make_task(priority="medium", due_at=NOW + offset)
        assert score_task(task, NOW) == 50 + bonus

    def test_high_priority_overdue_is_at_least_300(self):
        task = make_task(priority="high", due_at=due_in(days=-3))
        assert score_task(task, NOW) >= 300
        assert urgency_tier(task, NOW) == "critical"

    def test_age_bonus_after_seven_days(self):
        old = make_task(priority="low", created_at=NOW - timedelta(days=8))
        fresh = make_task(priority="low", created_at=NOW - timedelta(days=6))
        assert score_task(old, NOW) == 35
        assert score_task(fresh, NOW) == 25

    @pytest.mark.parametrize("priority", ["high", "medium", "low"])
    def test_completed_always_zero(self, priority):
        task = make_task(
            priority=priority, due_at=due_in(hours=-5), completed=True,
            created_at=NOW - timedelta(days=30),
        )
        assert score_task(task, NOW) == 0
        assert urgency_tier(task, NOW) == "low"


class TestUrgencyTier:
    def test_deadline_bands(self):
        assert urgency_tier(make_task(priority="low", due_at=due_in(hours=1)), NOW) == "critical"
        assert urgency_tier(make_task(priority="low", due_at=due_in(hours=20)), NOW) == "high"
        assert urgency_tier(make_task(priority="low", due_at=due_in(hours=60)), NOW) == "medium"

    @pytest.mark.parametrize("priority", ["high", "medium", "low"])
    def test_falls_back_to_priority(self, priority):
        assert urgency_tier(make_task(priority=priority, due_at=due_in(days=10)), NOW) == priority
        assert urgency_tier(make_task(priority=priority), NOW) == priority


class TestEstimateDuration:
    def test_keywords(self):
        assert estimate_duration_minutes(make_task("finish the quarterly report")) == 90
        assert estimate_duration_minutes(make_task("prep for the meeting")) == 60
        assert estimate_duration_minutes(make_task("call the plumber")) == 15
        assert estimate_duration_minutes(make_task("water the plants")) == 30


class TestPrioritizeTasks:
    def test_sorted_and_numbered(self):
        low = make_task("low one", priority="low")
        urgent = make_task("urgent one", priority="high", due_at=due_in(hours=1))
        medium = make_task("medium one", priority="medium")
        ranked = prioritize_tasks([low, urgent, medium], NOW)
        assert [p.task for p in ranked] == [urgent, medium, low]
        assert [p.suggested_order for p in ranked] == [1, 2, 3]
        assert ranked[0].hours_to_deadline == pytest.approx(1)
        assert "Due within 2 hours" in ranked[0].reasoning

    def test_ties_broken_by_earlier_deadline(self):
        later = make_task("later", priority="medium", due_at=due_in(days=10))
        sooner = make_task("sooner", priority="medium", due_at=due_in(days=5))
        ranked = prioritize_tasks([later, sooner], NOW)
        assert ranked[0].task is sooner

    def test_empty(self):
        assert prioritize_tasks([], NOW) == []


# ---------------------------------------------------------------------------
# LLM ranking validation
# ---------------------------------------------------------------------------


def _ranking(*entries):
    return {"prioritized_tasks": [
        {"task_id": task_id, "score": score, "reasoning": "because"} for task_id, score in entries
    ]}


class TestValidateRanking:
    def setup_method(self):
        self.a = make_task("a")
        self.b = make_task("b")

    def test_valid(self):
        scored = validate_ranking(_ranking((self.a.id, 80), (self.b.id, 20.5)), [self.a, self.b])
        assert scored[self.a.id] == (80.0, "because")
        assert scored[self.b.id][0] == 20.5

    def test_missing_id(self):
        with pytest.raises(PrioritizationError, match="missing"):
            validate_ranking(_ranking((self.a.id, 80)), [self.a, self.b])

    def test_duplicate_id(self):
        with pytest.raises(PrioritizationError, match="duplicate"):
            validate_ranking(_ranking((self.a.id, 80), (self.a.id, 70), (self.b.id, 1)), [self.a, self.b])

    def test_unknown_id(self):
        with pytest.raises(PrioritizationError, match="unknown"):
            validate_ranking(_ranking((self.a.id, 80), ("nope", 1)), [self.a])

    @pytest.mark.parametrize("score", ["high", None, True, float("nan")])
    def test_non_numeric_score(self, score):
        with pytest.raises(PrioritizationError):
            validate_ranking(_ranking((self.a.id, score)), [self.a])

    def test_wrong_top_level_shape(self):
        with pytest.raises(PrioritizationError):
            validate_ranking([{"task_id": self.a.id, "score": 1}], [self.a])


class TestPrioritizeWithAi:
    @pytest.mark.asyncio
    async def test_valid_response_used(self):
        a = make_task("a", priority="low")
        b = make_task("b", priority="high")
        response = json.dumps(_ranking((a.id, 90), (b.id, 10)))
        with patch("speakeasy.core.prioritizer.complete", AsyncMock(return_value=response)):
            ranked = await prioritize_with_ai([a, b], NOW)
        assert [p.task for p in ranked] == [a, b]
        assert ranked[0].score == 90
        assert ranked[0].reasoning == "because"
        # Urgency stays rule-based.
        assert ranked[0].urgency == "low"

    @pytest.mark.asyncio
    async def test_partial_response_discarded(self):
        a = make_task("a", priority="low")
        b = make_task("b", priority="high")
        response = json.dumps(_ranking((a.id, 90)))
        with patch("speakeasy.core.prioritizer.complete", AsyncMock(return_value=response)):
            ranked = await prioritize_with_ai([a, b], NOW)
        assert ranked == prioritize_tasks([a, b], NOW)

    @pytest.mark.asyncio
    async def test_malformed_json_falls_back(self):
        a = make_task("a")
        with patch("speakeasy.core.prioritizer.complete", AsyncMock(return_value="{not json")):
            ranked = await prioritize_with_ai([a], NOW)
        assert ranked[0].score == 50

    @pytest.mark.asyncio
    async def test_provider_error_falls_back(self):
        a = make_task("a")
        with patch("speakeasy.core.prioritizer.complete", AsyncMock(side_effect=RuntimeError("down"))):
            ranked = await prioritize_with_ai([a], NOW)
        assert ranked[0].score == 50

    @pytest.mark.asyncio
    async def test_completed_forced_to_zero(self):
        done = make_task("done", completed=True)
        response = json.dumps(_ranking((done.id, 99)))
        with patch("speakeasy.core.prioritizer.complete", AsyncMock(return_value=response)):
            ranked = await prioritize_with_ai([done], NOW)
        assert ranked[0].score == 0

    @pytest.mark.asyncio
    async def test_empty_list_skips_llm(self):
        mock = AsyncMock()
        with patch("speakeasy.core.prioritizer.complete", mock):
            assert await prioritize_with_ai([], NOW) == []
        mock.assert_not_called()
