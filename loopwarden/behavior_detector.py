"""
Behavior Detector
=================

Detects pathological behaviors in a loop's iteration history.

Detection Types:
- stuck: the same error keeps coming back while completion stays flat
- oscillation: files are changed, reverted, and changed again
- deviation: recent work no longer resembles the objective
- resource_burn: the loop has run well past its iteration budget
- regression: tests flip from passing to failing, or coverage drops

The detector is stateless: every call to ``detect`` looks only at the
history it is given, so the same history always yields the same detections.

Usage:
    from loopwarden.behavior_detector import BehaviorDetector

    detector = BehaviorDetector()
    for detection in detector.detect(history, objective="Fix config loading"):
        print(detection.type, detection.severity, detection.message)
"""

import copy
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence

from loopwarden.history import IterationRecord, coerce_record

logger = logging.getLogger(__name__)


class DetectionType(Enum):
    """Kinds of pathological behavior."""
    STUCK = "stuck"
    OSCILLATION = "oscillation"
    DEVIATION = "deviation"
    RESOURCE_BURN = "resource_burn"
    REGRESSION = "regression"


class Severity(Enum):
    """How bad a detection is; drives the intervention level."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Default detection thresholds. Completion values are on a 0-100 scale.
DEFAULT_THRESHOLDS: dict[str, dict[str, Any]] = {
    "stuck": {
        "same_error_count": 3,          # occurrences in the window to trigger
        "no_progress_iterations": 5,    # window size
        "max_progress_delta": 2.0,      # mean completion delta below this = flat
        "critical_recurrences": 5,      # repeats after first sighting for critical
    },
    "oscillation": {
        "min_history": 4,
        "window": 6,
        "undo_redo_cycles": 2,
        "file_churn_threshold": 0.8,    # share of files changed back
    },
    "deviation": {
        "window": 3,
        "objective_similarity": 0.5,
        "min_deviations": 2,
    },
    "resource": {
        "default_max_iterations": 10,
        "iteration_multiplier": 2.0,
        "critical_multiplier": 2.5,
    },
    "regression": {
        "window": 5,
        "coverage_drop_percent": 10.0,
        "critical_count": 2,
    },
}


@dataclass
class Detection:
    """A typed, evidenced observation of a pathological pattern."""
    type: str                       # DetectionType value
    severity: str                   # Severity value
    message: str
    evidence: dict = field(default_factory=dict)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
            "evidence": self.evidence,
            "recommendations": list(self.recommendations),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Detection":
        return cls(
            type=data["type"],
            severity=data["severity"],
            message=data.get("message", ""),
            evidence=data.get("evidence", {}) or {},
            recommendations=list(data.get("recommendations", [])),
        )


def _word_similarity(objective: str, text: str) -> float:
    """Share of the objective's words that also appear in text."""
    objective_words = set(objective.lower().split())
    if not objective_words:
        return 1.0
    text_words = set(text.lower().split())
    return len(objective_words & text_words) / len(objective_words)


class BehaviorDetector:
    """
    Runs five independent checks over an iteration history.

    Each check returns at most one Detection. ``detect`` returns them in a
    fixed order: stuck, oscillation, deviation, resource_burn, regression.
    """

    def __init__(self, thresholds: Optional[dict] = None):
        """
        Args:
            thresholds: Partial overrides, merged per category into the
                defaults (e.g. ``{"stuck": {"same_error_count": 4}}``).
        """
        self.thresholds = copy.deepcopy(DEFAULT_THRESHOLDS)
        if thresholds:
            self.update_thresholds(thresholds)

    def detect(
        self,
        history: Sequence[Any],
        objective: Optional[str] = None,
        max_iterations: Optional[int] = None,
    ) -> list[Detection]:
        """
        Detect pathological behaviors.

        Args:
            history: IterationRecords (or driver dicts), oldest first
            objective: The loop's objective; defaults to the first record's context
            max_iterations: Iteration budget; defaults to the first record's context

        Returns:
            Detections found, possibly empty
        """
        records = self._coerce(history)
        if not records:
            return []

        checks = (
            self.detect_stuck(records),
            self.detect_oscillation(records),
            self.detect_deviation(records, objective),
            self.detect_resource_burn(records, max_iterations),
            self.detect_regression(records),
        )
        detections = [d for d in checks if d is not None]
        if detections:
            logger.debug(
                "%d detection(s) at iteration %d: %s",
                len(detections), records[-1].number, ", ".join(d.type for d in detections),
            )
        return detections

    # =========================================================================
    # Individual checks
    # =========================================================================

    def detect_stuck(self, history: Sequence[Any]) -> Optional[Detection]:
        """Same error repeated within the window while completion stays flat."""
        cfg = self.thresholds["stuck"]
        records = self._coerce(history)
        if len(records) < cfg["same_error_count"]:
            return None

        recent = records[-cfg["no_progress_iterations"]:]
        signatures = [r.analysis.error_signature for r in recent]
        counts = Counter(s for s in signatures if s)
        if not counts:
            return None

        # most_common keeps first-seen order on ties
        repeated_error, occurrences = counts.most_common(1)[0]
        if occurrences < cfg["same_error_count"]:
            return None

        deltas = [
            recent[i].analysis.completion_percentage - recent[i - 1].analysis.completion_percentage
            for i in range(1, len(recent))
        ]
        avg_progress = sum(deltas) / len(deltas) if deltas else 0.0
        if abs(avg_progress) >= cfg["max_progress_delta"]:
            return None

        total_sightings = sum(1 for r in records if r.analysis.error_signature == repeated_error)
        recurrences = total_sightings - 1
        severity = Severity.CRITICAL if recurrences >= cfg["critical_recurrences"] else Severity.HIGH

        blockers: list[str] = []
        for r in recent:
            blockers.extend(r.analysis.blockers)

        return Detection(
            type=DetectionType.STUCK.value,
            severity=severity.value,
            message=f"Loop stuck: Same error repeated {occurrences} times with minimal progress",
            evidence={
                "repeatedError": repeated_error,
                "occurrences": occurrences,
                "recurrences": recurrences,
                "avgProgressRate": avg_progress,
                "recentBlockers": blockers[:5],
            },
            recommendations=[
                "Change approach or strategy",
                "Break task into smaller sub-tasks",
                "Request human intervention",
                "Review and address root cause of repeated error",
            ],
        )

    def detect_oscillation(self, history: Sequence[Any]) -> Optional[Detection]:
        """Files touched at i-2, left alone at i-1, touched again at i."""
        cfg = self.thresholds["oscillation"]
        records = self._coerce(history)
        if len(records) < cfg["min_history"]:
            return None

        recent = records[-cfg["window"]:]
        file_sets = [set(r.files_touched) for r in recent]

        cycles = 0
        for i in range(2, len(file_sets)):
            before, middle, current = file_sets[i - 2], file_sets[i - 1], file_sets[i]
            if not before:
                continue
            reverted = [f for f in before if f in current and f not in middle]
            if len(reverted) / len(before) >= cfg["file_churn_threshold"]:
                cycles += 1

        if cycles < cfg["undo_redo_cycles"]:
            return None

        return Detection(
            type=DetectionType.OSCILLATION.value,
            severity=Severity.HIGH.value,
            message=f"Oscillation detected: {cycles} undo/redo cycles in recent iterations",
            evidence={
                "undoRedoCycles": cycles,
                "recentFileChanges": [list(r.files_touched) for r in recent],
            },
            recommendations=[
                "Commit to one approach instead of alternating",
                "Review feedback quality - may be conflicting",
                "Pause and assess which approach is better",
                "Request human decision on direction",
            ],
        )

    def detect_deviation(
        self,
        history: Sequence[Any],
        objective: Optional[str] = None,
    ) -> Optional[Detection]:
        """Recent learnings share too few words with the objective."""
        cfg = self.thresholds["deviation"]
        records = self._coerce(history)
        if len(records) < 2:
            return None

        objective = objective if objective is not None else self._context_objective(records)
        if not objective:
            return None

        examples = []
        for record in records[-cfg["window"]:]:
            text = record.analysis.learnings_text
            if not text.strip():
                continue
            similarity = _word_similarity(objective, text)
            if similarity < cfg["objective_similarity"]:
                examples.append({
                    "iteration": record.number,
                    "similarity": similarity,
                    "artifacts": list(record.files_touched),
                })

        if len(examples) < cfg["min_deviations"]:
            return None

        return Detection(
            type=DetectionType.DEVIATION.value,
            severity=Severity.MEDIUM.value,
            message="Objective deviation: Recent work may have drifted from original objective",
            evidence={
                "originalObjective": objective,
                "deviationExamples": examples,
                "averageSimilarity": sum(e["similarity"] for e in examples) / len(examples),
            },
            recommendations=[
                "Review original objective and criteria",
                "Realign current work with stated goals",
                "Confirm scope with human if uncertain",
                "Document any necessary scope changes",
            ],
        )

    def detect_resource_burn(
        self,
        history: Sequence[Any],
        max_iterations: Optional[int] = None,
    ) -> Optional[Detection]:
        """Iterations used versus the declared budget."""
        cfg = self.thresholds["resource"]
        records = self._coerce(history)
        if not records:
            return None

        estimated = max_iterations or self._context_max_iterations(records) or cfg["default_max_iterations"]
        actual = len(records)
        ratio = actual / estimated
        if ratio < cfg["iteration_multiplier"]:
            return None

        progress = records[-1].analysis.completion_percentage
        severity = Severity.CRITICAL if ratio >= cfg["critical_multiplier"] else Severity.HIGH
        first_action = (
            "Consider aborting if little progress made"
            if progress < 50
            else "Increase iteration budget if task is viable"
        )

        return Detection(
            type=DetectionType.RESOURCE_BURN.value,
            severity=severity.value,
            message=f"Resource burn: Used {actual}/{estimated} iterations ({ratio * 100:.0f}% of budget)",
            evidence={
                "estimatedIterations": estimated,
                "actualIterations": actual,
                "iterationRatio": ratio,
                "completionPercent": progress,
                "efficiency": progress / actual,
            },
            recommendations=[
                first_action,
                "Analyze why estimates were incorrect",
                "Break remaining work into smaller tasks",
                "Request human decision on continuation",
            ],
        )

    def detect_regression(self, history: Sequence[Any]) -> Optional[Detection]:
        """Pairwise test flips and coverage drops across the window."""
        cfg = self.thresholds["regression"]
        records = self._coerce(history)
        if len(records) < 2:
            return None

        recent = records[-cfg["window"]:]
        regressions = []
        for prev_record, record in zip(recent, recent[1:]):
            prev, curr = prev_record.analysis, record.analysis

            if prev.tests_passing is True and curr.tests_passing is False:
                regressions.append({
                    "iteration": record.number,
                    "message": "Tests went from passing to failing",
                })

            if prev.coverage_percent is not None and curr.coverage_percent is not None:
                drop = prev.coverage_percent - curr.coverage_percent
                if drop >= cfg["coverage_drop_percent"]:
                    regressions.append({
                        "iteration": record.number,
                        "message": f"Coverage dropped {drop:.1f}%",
                        "from": prev.coverage_percent,
                        "to": curr.coverage_percent,
                    })

        if not regressions:
            return None

        severity = Severity.CRITICAL if len(regressions) >= cfg["critical_count"] else Severity.HIGH
        return Detection(
            type=DetectionType.REGRESSION.value,
            severity=severity.value,
            message=f"Regression detected: {len(regressions)} quality regressions in recent iterations",
            evidence={"regressions": regressions},
            recommendations=[
                "Stop making changes that break tests",
                "Fix tests instead of deleting or disabling them",
                "Review the change that introduced the regression",
                "Restore previous working state if needed",
            ],
        )

    # =========================================================================
    # Thresholds
    # =========================================================================

    def update_thresholds(self, thresholds: dict) -> None:
        """Merge partial threshold overrides, category by category."""
        for category, values in thresholds.items():
            if isinstance(values, dict) and isinstance(self.thresholds.get(category), dict):
                self.thresholds[category].update(values)
            else:
                self.thresholds[category] = values

    def get_thresholds(self) -> dict:
        """Copy of the current thresholds."""
        return copy.deepcopy(self.thresholds)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _coerce(history: Sequence[Any]) -> list[IterationRecord]:
        if not history:
            return []
        return [coerce_record(item, default_number=i + 1) for i, item in enumerate(history)]

    @staticmethod
    def _context_objective(records: list[IterationRecord]) -> str:
        context = records[0].context
        return context.objective if context else ""

    @staticmethod
    def _context_max_iterations(records: list[IterationRecord]) -> Optional[int]:
        context = records[0].context
        return context.max_iterations if context else None


def create_behavior_detector(thresholds: Optional[dict] = None) -> BehaviorDetector:
    """Create a BehaviorDetector, optionally with threshold overrides."""
    return BehaviorDetector(thresholds=thresholds)
