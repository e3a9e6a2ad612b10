"""
Strategy Planner
================

Recommends whether a loop should persist with its current approach or pivot.

The planner reads completion-percentage deltas and a caller-supplied trend
signal (``metrics["trend"]``: improving, regressing, stable, unknown). It is
deliberately independent of the BehaviorDetector, so the two may disagree
about the same history.

Selection priority:
    blockers > stuck > oscillating > regressing > near completion > improving > default

Usage:
    from loopwarden.strategy_planner import StrategyPlanner

    planner = StrategyPlanner()
    plan = planner.plan(history, {"trend": "improving"})
    print(planner.get_summary(plan))
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Optional, Sequence

from loopwarden.history import IterationRecord, coerce_record

logger = logging.getLogger(__name__)

NEAR_COMPLETION_PERCENT = 80
STUCK_DELTA_PERCENT = 5


class Approach(Enum):
    PERSIST = "persist"
    PIVOT = "pivot"


# Fixed confidence per situation category
CONFIDENCE = {
    "blockers": 0.90,
    "stuck": 0.85,
    "near_completion": 0.90,
    "improving": 0.80,
    "regressing": 0.75,
    "oscillating": 0.70,
    "default": 0.50,
}


@dataclass
class Situation:
    """Where the loop stands, derived from recent completion deltas."""
    stuck: bool = False
    oscillating: bool = False
    regressing: bool = False
    improving: bool = False
    near_completion: bool = False
    has_blockers: bool = False
    repeated_issues: list[dict] = field(default_factory=list)   # [{issue, count}], most frequent first
    trend: str = "unknown"

    def to_dict(self) -> dict:
        return {
            "stuck": self.stuck,
            "oscillating": self.oscillating,
            "regressing": self.regressing,
            "improving": self.improving,
            "nearCompletion": self.near_completion,
            "hasBlockers": self.has_blockers,
            "repeatedIssues": list(self.repeated_issues),
            "trend": self.trend,
        }


@dataclass
class StrategyPlan:
    """A persist/pivot recommendation."""
    approach: str                   # Approach value
    reasoning: str
    priorities: list[str]
    adjustments: dict
    confidence: float
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "StrategyPlan":
        return cls(
            approach=data["approach"],
            reasoning=data.get("reasoning", ""),
            priorities=list(data.get("priorities", [])),
            adjustments=dict(data.get("adjustments", {})),
            confidence=float(data.get("confidence", CONFIDENCE["default"])),
            metadata=dict(data.get("metadata", {})),
        )


def _deltas(records: Sequence[IterationRecord]) -> list[float]:
    return [
        records[i].analysis.completion_percentage - records[i - 1].analysis.completion_percentage
        for i in range(1, len(records))
    ]


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


class StrategyPlanner:
    """Picks a strategy from the situation vector."""

    def __init__(
        self,
        stuck_threshold: int = 3,
        oscillation_threshold: int = 3,
        escalation_threshold: int = 7,
    ):
        """
        Args:
            stuck_threshold: Iterations of flat progress that count as stuck
            oscillation_threshold: Direction changes that count as oscillating
            escalation_threshold: Iteration count at which to always escalate
        """
        self.stuck_threshold = stuck_threshold
        self.oscillation_threshold = oscillation_threshold
        self.escalation_threshold = escalation_threshold

    def plan(self, history: Sequence[Any], metrics: Optional[dict] = None) -> StrategyPlan:
        """Plan the next step from the iteration history and trend metrics."""
        records = self._coerce(history)
        metrics = metrics or {}

        situation = self.analyze_situation(records, metrics)
        approach, reasoning, adjustments, category = self._select_strategy(situation)
        priorities = self._build_priorities(situation)

        logger.debug("Strategy %s (%s) after %d iterations", approach.value, category, len(records))

        return StrategyPlan(
            approach=approach.value,
            reasoning=reasoning,
            priorities=priorities,
            adjustments=adjustments,
            confidence=CONFIDENCE[category],
            metadata={
                "situation": situation.to_dict(),
                "category": category,
                "iterationCount": len(records),
                "timestamp": int(time.time() * 1000),
            },
        )

    def should_escalate(self, history: Sequence[Any], metrics: Optional[dict] = None) -> bool:
        """True when the loop has run long, stayed stuck, or kept regressing."""
        records = self._coerce(history)
        if len(records) >= self.escalation_threshold:
            return True

        situation = self.analyze_situation(records, metrics or {})
        if situation.stuck and len(records) >= self.stuck_threshold + 2:
            return True
        if situation.regressing and len(records) >= 4:
            return True
        return False

    def analyze_situation(self, history: Sequence[Any], metrics: dict) -> Situation:
        """Derive the situation vector from history and metrics."""
        records = self._coerce(history)
        trend = metrics.get("trend") or "unknown"
        situation = Situation(
            trend=trend,
            regressing=trend == "regressing",
            improving=trend == "improving",
        )
        if not records:
            return situation

        # Flat: every non-zero delta in the window is small
        if len(records) >= self.stuck_threshold:
            changes = [d for d in _deltas(records[-self.stuck_threshold:]) if d != 0]
            situation.stuck = all(abs(d) < STUCK_DELTA_PERCENT for d in changes)

        # Direction flips across the last 2N iterations; the window's first slot counts as zero
        window = self.oscillation_threshold * 2
        if len(records) >= window:
            directions = [0.0] + _deltas(records[-window:])
            sign_changes = sum(
                1 for i in range(1, len(directions))
                if _sign(directions[i]) != _sign(directions[i - 1])
            )
            situation.oscillating = sign_changes >= self.oscillation_threshold

        last = records[-1]
        situation.near_completion = last.analysis.completion_percentage >= NEAR_COMPLETION_PERCENT
        situation.has_blockers = bool(last.analysis.blockers)

        issue_counts = Counter(b for r in records for b in r.analysis.blockers)
        situation.repeated_issues = [
            {"issue": issue, "count": count}
            for issue, count in issue_counts.most_common()
            if count >= 2
        ]
        return situation

    def _select_strategy(self, situation: Situation) -> tuple[Approach, str, dict, str]:
        if situation.has_blockers:
            return (
                Approach.PIVOT,
                "Detected blockers preventing progress. Need to address root causes.",
                {"focus": "blocker_resolution", "toolSelection": "debug-focused"},
                "blockers",
            )
        if situation.stuck:
            return (
                Approach.PIVOT,
                f"No meaningful progress for {self.stuck_threshold}+ iterations. Try different approach.",
                {"temperature": 0.8, "reframeProblem": True},
                "stuck",
            )
        if situation.oscillating:
            return (
                Approach.PIVOT,
                "Detected oscillation pattern. Need to break the cycle.",
                {"constrainScope": True, "requireProgressCommits": True},
                "oscillating",
            )
        if situation.regressing:
            return (
                Approach.PIVOT,
                "Progress is regressing. Review recent changes and revert if needed.",
                {"reviewRecentChanges": True, "considerRollback": True},
                "regressing",
            )
        if situation.near_completion:
            return (
                Approach.PERSIST,
                "Near completion (>80%). Continue current approach to finish.",
                {"focusOnCompletion": True, "validateThoroughly": True},
                "near_completion",
            )
        if situation.improving:
            return (
                Approach.PERSIST,
                "Making good progress. Continue current strategy.",
                {},
                "improving",
            )
        return (
            Approach.PERSIST,
            "Normal progress pattern. Continue with current strategy.",
            {},
            "default",
        )

    def _build_priorities(self, situation: Situation) -> list[str]:
        priorities = []

        if situation.repeated_issues:
            priorities.append(f'Address repeated issue: "{situation.repeated_issues[0]["issue"]}"')
        elif situation.has_blockers:
            priorities.append("Identify and resolve current blockers")

        if situation.stuck:
            priorities.append("Try fundamentally different approach")
            priorities.append("Simplify scope or break down task")

        if situation.regressing:
            priorities.append("Review recent changes for issues")
            priorities.append("Consider reverting problematic changes")

        if situation.oscillating:
            priorities.append("Stabilize progress with incremental commits")
            priorities.append("Avoid large refactors mid-iteration")

        if situation.near_completion:
            priorities.append("Complete remaining tasks")
            priorities.append("Validate all acceptance criteria")
            priorities.append("Run final tests and checks")

        if not priorities:
            priorities = [
                "Continue current implementation",
                "Maintain test coverage",
                "Document progress",
            ]
        return priorities

    # =========================================================================
    # Formatting
    # =========================================================================

    def get_summary(self, plan: StrategyPlan) -> str:
        """Plain-text summary for terminal output."""
        lines = [
            f"Strategy: {plan.approach.upper()}",
            f"Reasoning: {plan.reasoning}",
            f"Confidence: {plan.confidence * 100:.0f}%",
            "Priorities:",
        ]
        lines += [f"  {i}. {p}" for i, p in enumerate(plan.priorities, 1)]
        return "\n".join(lines)

    def format_markdown(self, plan: StrategyPlan) -> str:
        md = "## Strategy Plan\n\n"
        md += f"**Approach:** {plan.approach}\n\n"
        md += f"**Reasoning:** {plan.reasoning}\n\n"
        md += f"**Confidence:** {plan.confidence * 100:.0f}%\n\n"
        md += "### Priorities\n\n"
        for i, priority in enumerate(plan.priorities, 1):
            md += f"{i}. {priority}\n"

        if plan.adjustments:
            md += "\n### Adjustments\n\n"
            for key, value in plan.adjustments.items():
                md += f"- **{key}:** {value}\n"
        return md

    @staticmethod
    def _coerce(history: Sequence[Any]) -> list[IterationRecord]:
        return [coerce_record(item, default_number=i + 1) for i, item in enumerate(history or [])]
