"""
Learning Extractor
==================

Mines a finished loop's history for learnings worth keeping.

Learning kinds:
- strategy: an approach that shows up in at least half the successful iterations
- antipattern: an error category that recurs among failed iterations
- estimate: average iteration time and a rough complexity bucket
- convention: file-naming patterns seen across the files the loop touched

Task types come from an ordered keyword table over the objective; the first
match wins, and anything unmatched is "general".
"""

import re
from collections import Counter
from pathlib import PurePath
from typing import Any, Optional, Union

from loopwarden.history import IterationStatus, LoopHistory
from loopwarden.memory.semantic import Learning, LearningType

# Ordered: first match wins
TASK_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("test-fix", re.compile(r"test|spec|jest|vitest|pytest|failing", re.IGNORECASE)),
    ("feature", re.compile(r"implement|add feature|new feature|build", re.IGNORECASE)),
    ("refactor", re.compile(r"refactor|reorganize|restructure|clean", re.IGNORECASE)),
    ("bug-fix", re.compile(r"fix|bug|error|crash|issue", re.IGNORECASE)),
    ("documentation", re.compile(r"document|readme|guide|docs", re.IGNORECASE)),
    ("architecture", re.compile(r"architecture|design|structure", re.IGNORECASE)),
    ("performance", re.compile(r"optimize|performance|speed|slow", re.IGNORECASE)),
]

STRATEGY_MIN_SHARE = 0.5
ANTIPATTERN_MIN_OCCURRENCES = 2

# Extension groups reported as module conventions
MODULE_CONVENTIONS = [
    ("Python modules (.py)", (".py",)),
    ("ES modules (.mjs) or TypeScript (.ts)", (".mjs", ".ts")),
]


def detect_task_type(objective: Optional[str]) -> str:
    """Classify an objective into a task type."""
    for task_type, pattern in TASK_PATTERNS:
        if objective and pattern.search(objective):
            return task_type
    return "general"


def normalize_approach(text: str) -> Optional[str]:
    """Canonicalize a learning sentence into an approach label."""
    lower = text.lower()
    if "test-driven" in lower or ("test" in lower and "first" in lower):
        return "Test-driven development approach"
    if "incremental" in lower or "step by step" in lower:
        return "Incremental implementation"
    if "refactor" in lower and "after" in lower:
        return "Implement first, refactor after"
    if "small change" in lower or "minimal" in lower:
        return "Minimal changes approach"
    return text[:100] if len(text) > 10 else None


def categorize_error(error: str) -> Optional[str]:
    """Canonicalize an error message into an antipattern category."""
    lower = error.lower()
    if "syntax" in lower or "parse" in lower:
        return "Syntax errors - check code carefully before execution"
    if "undefined" in lower or "null" in lower or "nonetype" in lower:
        return "Null/undefined errors - add validation checks"
    if "timeout" in lower or "timed out" in lower:
        return "Timeout errors - break into smaller steps"
    if "permission" in lower or "access denied" in lower:
        return "Permission errors - check file/directory permissions"
    if "cannot find module" in lower or ("module" in lower and "not found" in lower):
        return "Module not found - verify dependencies installed"
    return error[:100] if len(error) > 10 else None


def _is_test_file(path: str) -> bool:
    name = PurePath(path).name
    return (
        ".test." in name
        or ".spec." in name
        or (name.startswith("test_") and name.endswith(".py"))
        or name.endswith("_test.py")
    )


class LearningExtractor:
    """Turns a LoopHistory into candidate learnings for staging."""

    def extract_from_loop(self, loop_history: Union[LoopHistory, dict]) -> list[Learning]:
        """
        Extract every kind of learning from a finished loop.

        Args:
            loop_history: The loop, as a LoopHistory or its dict form

        Returns:
            Candidate learnings (no ids yet), strategies first
        """
        if isinstance(loop_history, dict):
            loop_history = LoopHistory.from_dict(loop_history)

        task_type = detect_task_type(loop_history.objective)
        return (
            self.extract_strategies(loop_history, task_type)
            + self.identify_antipatterns(loop_history, task_type)
            + self.extract_estimates(loop_history, task_type)
            + self.extract_conventions(loop_history)
        )

    def detect_task_type(self, objective: str) -> str:
        return detect_task_type(objective)

    def extract_strategies(self, loop_history: LoopHistory, task_type: str) -> list[Learning]:
        """
        Approaches that recur across successful iterations.

        An iteration counts as successful when it completed and its analysis
        does not set progress_made to False. A missing progress_made (None)
        counts as success, so drivers that never report progress still
        yield strategies.
        """
        successful = [it for it in loop_history.iterations if it.is_successful]
        if not successful:
            return []

        approaches: Counter = Counter()
        for iteration in successful:
            # Count each approach once per iteration
            keys = dict.fromkeys(normalize_approach(text) for text in iteration.analysis.learnings)
            approaches.update(k for k in keys if k)

        strategies = []
        for approach, count in approaches.items():
            share = count / len(successful)
            if share < STRATEGY_MIN_SHARE:
                continue
            strategies.append(Learning(
                type=LearningType.STRATEGY.value,
                task_type=task_type,
                content={
                    "description": approach,
                    "effectiveness": share,
                    "iterations": count,
                },
                confidence=min(share, 0.9),
                success_rate=share,
                source_loops=[loop_history.loop_id],
            ))
        return strategies

    def identify_antipatterns(self, loop_history: LoopHistory, task_type: str) -> list[Learning]:
        failed = [it for it in loop_history.iterations if it.status == IterationStatus.FAILED]
        if not failed:
            return []

        categories: Counter = Counter()
        for iteration in failed:
            for error in iteration.analysis.errors:
                category = categorize_error(error)
                if category:
                    categories[category] += 1

        return [
            Learning(
                type=LearningType.ANTIPATTERN.value,
                task_type=task_type,
                content={
                    "description": f"Avoid: {category}",
                    "occurrences": count,
                    "impact": "high",
                },
                confidence=min(count / len(failed), 0.8),
                success_rate=0.0,
                source_loops=[loop_history.loop_id],
            )
            for category, count in categories.items()
            if count >= ANTIPATTERN_MIN_OCCURRENCES
        ]

    def extract_estimates(self, loop_history: LoopHistory, task_type: str) -> list[Learning]:
        completed = [it for it in loop_history.iterations if it.status == IterationStatus.COMPLETED]
        if not completed:
            return []

        avg_duration = sum(it.duration for it in completed) / len(completed)
        completion_rate = len(completed) / len(loop_history.iterations)

        return [Learning(
            type=LearningType.ESTIMATE.value,
            task_type=task_type,
            content={
                "avgIterationTime": avg_duration,      # seconds
                "totalIterations": loop_history.total_iterations,
                "complexity": self.estimate_complexity(loop_history),
                "successRate": completion_rate,
            },
            confidence=min(len(completed) / 5, 0.9),
            success_rate=completion_rate,
            source_loops=[loop_history.loop_id],
        )]

    def extract_conventions(self, loop_history: LoopHistory) -> list[Learning]:
        return [
            Learning(
                type=LearningType.CONVENTION.value,
                task_type="general",
                content={
                    "pattern": pattern["description"],
                    "examples": pattern["examples"],
                },
                confidence=pattern["confidence"],
                success_rate=1.0,
                source_loops=[loop_history.loop_id],
            )
            for pattern in self.detect_file_patterns(self._all_files(loop_history))
        ]

    def estimate_complexity(self, loop_history: LoopHistory) -> str:
        """low / medium / high from iteration count and distinct files touched."""
        iterations = loop_history.total_iterations
        file_count = len(self._all_files(loop_history))
        if iterations <= 2 and file_count <= 2:
            return "low"
        if iterations <= 5 and file_count <= 5:
            return "medium"
        return "high"

    def detect_file_patterns(self, files: list[str]) -> list[dict[str, Any]]:
        patterns = []

        test_files = [f for f in files if _is_test_file(f)]
        if test_files:
            patterns.append({
                "description": "Tests co-located with source or in a tests/ directory",
                "examples": test_files[:3],
                "confidence": 0.7,
            })

        for description, extensions in MODULE_CONVENTIONS:
            module_files = [f for f in files if f.endswith(extensions)]
            if module_files:
                patterns.append({
                    "description": description,
                    "examples": module_files[:3],
                    "confidence": 0.8,
                })
        return patterns

    @staticmethod
    def _all_files(loop_history: LoopHistory) -> list[str]:
        seen: dict[str, None] = {}
        for iteration in loop_history.iterations:
            for path in iteration.files_touched:
                seen.setdefault(path, None)
        return list(seen)
