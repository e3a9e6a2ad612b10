"""
Tests for Strategy Planner
==========================

Tests for strategy_planner.py - persist/pivot recommendations.
"""

import pytest

from loopwarden.history import IterationAnalysis, IterationRecord
from loopwarden.strategy_planner import (
    CONFIDENCE,
    Approach,
    StrategyPlan,
    StrategyPlanner,
)


def history_from(completions, blockers_at=None):
    blockers_at = blockers_at or {}
    return [
        IterationRecord(
            number=i,
            analysis=IterationAnalysis(
                completion_percentage=value,
                blockers=tuple(blockers_at.get(i, ())),
            ),
        )
        for i, value in enumerate(completions, 1)
    ]


@pytest.fixture
def planner():
    return StrategyPlanner()


class TestAnalyzeSituation:
    """Tests for the situation vector."""

    def test_flat_progress_is_stuck(self, planner):
        situation = planner.analyze_situation(history_from([40, 41, 42]), {})
        assert situation.stuck

    def test_big_steps_are_not_stuck(self, planner):
        situation = planner.analyze_situation(history_from([10, 30, 50]), {})
        assert not situation.stuck

    def test_zigzag_is_oscillating(self, planner):
        situation = planner.analyze_situation(history_from([10, 40, 15, 45, 20, 50]), {})
        assert situation.oscillating

    def test_near_completion(self, planner):
        situation = planner.analyze_situation(history_from([60, 70, 85]), {})
        assert situation.near_completion

    def test_blockers_from_last_iteration(self, planner):
        history = history_from([10, 20], blockers_at={2: ["missing API key"]})
        situation = planner.analyze_situation(history, {})
        assert situation.has_blockers

    def test_repeated_issues(self, planner):
        history = history_from([10, 20, 30], blockers_at={1: ["db down"], 3: ["db down"]})
        situation = planner.analyze_situation(history, {})
        assert situation.repeated_issues == [{"issue": "db down", "count": 2}]

    def test_trend_from_metrics(self, planner):
        situation = planner.analyze_situation([], {"trend": "regressing"})
        assert situation.regressing
        assert situation.trend == "regressing"


class TestPlan:
    """Tests for strategy selection priority."""

    def test_blockers_win(self, planner):
        history = history_from([40, 41, 42], blockers_at={3: ["no credentials"]})
        plan = planner.plan(history, {"trend": "improving"})
        assert plan.approach == Approach.PIVOT.value
        assert plan.confidence == CONFIDENCE["blockers"]
        assert plan.priorities[0] == "Identify and resolve current blockers"

    def test_stuck_pivots(self, planner):
        plan = planner.plan(history_from([40, 40, 41]), {})
        assert plan.approach == "pivot"
        assert plan.metadata["category"] == "stuck"
        assert "Try fundamentally different approach" in plan.priorities

    def test_regressing_pivots(self, planner):
        plan = planner.plan(history_from([10, 30, 50]), {"trend": "regressing"})
        assert plan.approach == "pivot"
        assert plan.confidence == CONFIDENCE["regressing"]

    def test_near_completion_persists(self, planner):
        plan = planner.plan(history_from([50, 70, 90]), {})
        assert plan.approach == "persist"
        assert plan.metadata["category"] == "near_completion"

    def test_improving_persists(self, planner):
        plan = planner.plan(history_from([10, 30, 50]), {"trend": "improving"})
        assert plan.approach == "persist"
        assert plan.confidence == CONFIDENCE["improving"]

    def test_default_plan(self, planner):
        plan = planner.plan(history_from([10, 30, 50]), {})
        assert plan.metadata["category"] == "default"
        assert plan.priorities == [
            "Continue current implementation",
            "Maintain test coverage",
            "Document progress",
        ]

    def test_metadata(self, planner):
        plan = planner.plan(history_from([10, 30, 50]), {})
        assert plan.metadata["iterationCount"] == 3
        assert isinstance(plan.metadata["timestamp"], int)
        assert "nearCompletion" in plan.metadata["situation"]

    def test_plan_round_trip(self, planner):
        plan = planner.plan(history_from([40, 40, 41]), {})
        assert StrategyPlan.from_dict(plan.to_dict()) == plan


class TestShouldEscalate:
    """Tests for escalation advice."""

    def test_long_loops_escalate(self, planner):
        assert planner.should_escalate(history_from([10, 30, 50, 60, 70, 80, 90]), {})

    def test_stuck_long_enough_escalates(self, planner):
        assert planner.should_escalate(history_from([10, 20, 40, 40, 41]), {})

    def test_regressing_escalates_after_four(self, planner):
        assert planner.should_escalate(history_from([10, 30, 50, 70]), {"trend": "regressing"})

    def test_short_healthy_loop_does_not(self, planner):
        assert not planner.should_escalate(history_from([10, 30, 50]), {"trend": "improving"})


class TestFormatting:
    """Tests for plan rendering."""

    def test_summary(self, planner):
        plan = planner.plan(history_from([40, 40, 41]), {})
        summary = planner.get_summary(plan)
        assert summary.startswith("Strategy: PIVOT")
        assert "Confidence: 85%" in summary

    def test_markdown(self, planner):
        plan = planner.plan(history_from([40, 40, 41]), {})
        md = planner.format_markdown(plan)
        assert md.startswith("## Strategy Plan")
        assert "### Adjustments" in md
        assert "- **reframeProblem:** True" in md
