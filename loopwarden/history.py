"""
Iteration History
=================

Records supplied by the external loop driver, one per completed iteration.

The driver may hand over plain dicts (camelCase, as written by other loop
tooling) or snake_case dicts; ``IterationRecord.from_dict`` accepts both.
Records are treated as immutable once appended to a history.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class IterationStatus(Enum):
    """Outcome of one iteration."""
    COMPLETED = "completed"
    FAILED = "failed"
    CRASHED = "crashed"


def _pick(data: dict, snake: str, camel: str, default: Any = None) -> Any:
    if snake in data:
        return data[snake]
    return data.get(camel, default)


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    return list(value)


@dataclass(frozen=True)
class IterationContext:
    """What the loop was asked to do."""
    objective: str = ""
    max_iterations: Optional[int] = None

    def to_dict(self) -> dict:
        return {"objective": self.objective, "maxIterations": self.max_iterations}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "IterationContext":
        data = data or {}
        max_iter = _pick(data, "max_iterations", "maxIterations")
        return cls(
            objective=data.get("objective", "") or "",
            max_iterations=int(max_iter) if max_iter is not None else None,
        )


@dataclass(frozen=True)
class IterationAnalysis:
    """Analysis of an iteration's output, produced upstream of the overseer."""
    completion_percentage: float = 0.0       # 0-100
    artifacts_modified: tuple[str, ...] = ()
    tests_passing: Optional[bool] = None     # None = tests not run
    coverage_percent: Optional[float] = None
    blockers: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    learnings: tuple[str, ...] = ()
    failure_class: Optional[str] = None
    progress_made: Optional[bool] = None

    @property
    def error_signature(self) -> Optional[str]:
        """The identifier used to spot repeated failures."""
        if self.failure_class:
            return self.failure_class
        return self.errors[0] if self.errors else None

    @property
    def learnings_text(self) -> str:
        return " ".join(self.learnings)

    def to_dict(self) -> dict:
        return {
            "completionPercentage": self.completion_percentage,
            "artifactsModified": list(self.artifacts_modified),
            "testsPassing": self.tests_passing,
            "coveragePercent": self.coverage_percent,
            "blockers": list(self.blockers),
            "errors": list(self.errors),
            "learnings": list(self.learnings),
            "failureClass": self.failure_class,
            "progressMade": self.progress_made,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "IterationAnalysis":
        data = data or {}
        errors = _as_list(data.get("errors"))
        # Older drivers report a single "error" string
        if not errors and data.get("error"):
            errors = [data["error"]]
        coverage = _pick(data, "coverage_percent", "coveragePercent")
        return cls(
            completion_percentage=float(_pick(data, "completion_percentage", "completionPercentage", 0) or 0),
            artifacts_modified=tuple(_as_list(_pick(data, "artifacts_modified", "artifactsModified"))),
            tests_passing=_pick(data, "tests_passing", "testsPassing"),
            coverage_percent=float(coverage) if coverage is not None else None,
            blockers=tuple(_as_list(data.get("blockers"))),
            errors=tuple(errors),
            learnings=tuple(_as_list(data.get("learnings"))),
            failure_class=_pick(data, "failure_class", "failureClass"),
            progress_made=_pick(data, "progress_made", "progressMade"),
        )


@dataclass(frozen=True)
class IterationRecord:
    """
    One completed iteration as reported by the loop driver.

    duration is in seconds. Drivers that time iterations in milliseconds
    must divide by 1000 before building the record.
    """
    number: int
    status: IterationStatus = IterationStatus.COMPLETED
    duration: float = 0.0                    # seconds
    analysis: IterationAnalysis = field(default_factory=IterationAnalysis)
    context: Optional[IterationContext] = None

    @property
    def is_successful(self) -> bool:
        """Completed and not explicitly flagged as making no progress."""
        return self.status == IterationStatus.COMPLETED and self.analysis.progress_made is not False

    @property
    def files_touched(self) -> tuple[str, ...]:
        return self.analysis.artifacts_modified

    def to_dict(self) -> dict:
        data = {
            "number": self.number,
            "status": self.status.value,
            "duration": self.duration,
            "analysis": self.analysis.to_dict(),
        }
        if self.context is not None:
            data["context"] = self.context.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict, default_number: int = 0) -> "IterationRecord":
        status = data.get("status", IterationStatus.COMPLETED.value)
        context = data.get("context")
        analysis = dict(data.get("analysis") or {})
        # Some drivers keep learnings/files at the top level of the record
        if "learnings" in data and "learnings" not in analysis:
            analysis["learnings"] = data["learnings"]
        files = _pick(data, "files_modified", "filesModified")
        if files and not _pick(analysis, "artifacts_modified", "artifactsModified"):
            analysis["artifactsModified"] = files
        return cls(
            number=int(data.get("number") or default_number),
            status=IterationStatus(status) if not isinstance(status, IterationStatus) else status,
            duration=float(data.get("duration", 0) or 0),
            analysis=IterationAnalysis.from_dict(analysis),
            context=IterationContext.from_dict(context) if context else None,
        )


def coerce_record(item: Any, default_number: int = 0) -> IterationRecord:
    """Accept either an IterationRecord or a driver dict."""
    if isinstance(item, IterationRecord):
        return item
    if isinstance(item, dict):
        return IterationRecord.from_dict(item, default_number=default_number)
    raise TypeError(f"Expected IterationRecord or dict, got {type(item).__name__}")


@dataclass
class LoopHistory:
    """A finished loop, as handed to the learning extractor."""
    loop_id: str
    objective: str
    iterations: list[IterationRecord] = field(default_factory=list)
    status: str = "completed"
    current_iteration: Optional[int] = None

    @property
    def total_iterations(self) -> int:
        if self.current_iteration is not None:
            return self.current_iteration
        return len(self.iterations)

    def to_dict(self) -> dict:
        return {
            "loopId": self.loop_id,
            "objective": self.objective,
            "status": self.status,
            "currentIteration": self.total_iterations,
            "iterations": [it.to_dict() for it in self.iterations],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LoopHistory":
        iterations = [
            coerce_record(item, default_number=i + 1)
            for i, item in enumerate(data.get("iterations", []))
        ]
        current = _pick(data, "current_iteration", "currentIteration")
        return cls(
            loop_id=_pick(data, "loop_id", "loopId", "") or "",
            objective=data.get("objective", "") or "",
            iterations=iterations,
            status=data.get("status", "completed"),
            current_iteration=int(current) if current is not None else None,
        )
