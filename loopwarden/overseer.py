"""
Overseer
========

Runs a health check after every iteration of a loop and keeps the audit trail.

Each ``check()``:
1. appends the iteration to the loop's history
2. runs the BehaviorDetector
3. intervenes on every detection, escalating pause/abort (and redirects
   from critical stuck/oscillation) when auto-escalation is on
4. derives the loop status: paused > aborted > critical > warning > healthy
5. optionally attaches a StrategyPlan
6. rewrites ``<storage>/<loopId>-overseer-log.json``

Usage:
    from loopwarden.overseer import Overseer

    overseer = Overseer("loop-42", "Fix config loading", max_iterations=10)
    health = overseer.check(iteration_record)
    if health.status == "paused":
        ...  # wait for a human, then overseer.resume("approved by operator")
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Union

from loopwarden.behavior_detector import BehaviorDetector, Detection
from loopwarden.config import DEFAULT_STORAGE_PATH, OverseerConfig
from loopwarden.escalation import EscalationContext, EscalationHandler, EscalationLevel
from loopwarden.history import IterationRecord, coerce_record
from loopwarden.intervention import Intervention, InterventionLevel, InterventionSystem
from loopwarden.memory.storage import read_json, write_json_atomic
from loopwarden.output import print_loop_aborted, print_loop_paused
from loopwarden.strategy_planner import StrategyPlan, StrategyPlanner

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Overall loop health after a check."""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    PAUSED = "paused"
    ABORTED = "aborted"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_path_for(loop_id: str, storage_path: Union[str, Path]) -> Path:
    """Location of a loop's audit log."""
    return Path(storage_path) / f"{loop_id}-overseer-log.json"


@dataclass
class HealthCheck:
    """Result of checking one iteration."""
    iteration_number: int
    timestamp: str
    status: str                     # HealthStatus value
    detections: list[Detection] = field(default_factory=list)
    interventions: list[Intervention] = field(default_factory=list)
    metrics: dict = field(default_factory=dict)
    strategy: Optional[StrategyPlan] = None

    def to_dict(self) -> dict:
        data = {
            "iterationNumber": self.iteration_number,
            "timestamp": self.timestamp,
            "detections": [d.to_dict() for d in self.detections],
            "interventions": [i.to_dict() for i in self.interventions],
            "status": self.status,
            "metrics": self.metrics,
        }
        if self.strategy is not None:
            data["strategy"] = self.strategy.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "HealthCheck":
        strategy = data.get("strategy")
        return cls(
            iteration_number=int(data.get("iterationNumber", 0)),
            timestamp=data.get("timestamp", ""),
            status=data.get("status", HealthStatus.HEALTHY.value),
            detections=[Detection.from_dict(d) for d in data.get("detections", [])],
            interventions=[Intervention.from_dict(i) for i in data.get("interventions", [])],
            metrics=data.get("metrics", {}) or {},
            strategy=StrategyPlan.from_dict(strategy) if strategy else None,
        )


class Overseer:
    """
    Coordinates detection, intervention, and escalation for one loop.

    One instance per loop. The loop driver calls ``check()`` once per
    iteration and acts on the returned status; the overseer never stops
    the loop itself.
    """

    def __init__(
        self,
        loop_id: str,
        task_description: str,
        config: Optional[OverseerConfig] = None,
        storage_path: Optional[Union[str, Path]] = None,
        max_iterations: Optional[int] = None,
        auto_escalate: Optional[bool] = None,
        escalation_handler: Optional[EscalationHandler] = None,
        planner: Optional[StrategyPlanner] = None,
        on_health_check: Optional[Callable[[HealthCheck], None]] = None,
    ):
        """
        Args:
            loop_id: Loop identifier, used in the audit log filename
            task_description: The loop's objective
            config: Settings; defaults to OverseerConfig()
            storage_path: Audit log directory; overrides config.storage_path
            max_iterations: Iteration budget; defaults to the first record's
                context, then config.max_iterations
            auto_escalate: Overrides config.auto_escalate
            escalation_handler: Custom handler (defaults to one built from config)
            planner: Custom strategy planner
            on_health_check: Called with every HealthCheck
        """
        self.config = config or OverseerConfig()
        self.loop_id = loop_id
        self.task_description = task_description
        self.storage_path = Path(storage_path or self.config.storage_path)
        self.max_iterations = max_iterations
        self.auto_escalate = self.config.auto_escalate if auto_escalate is None else auto_escalate
        self.on_health_check = on_health_check

        self.detector = BehaviorDetector(self.config.thresholds)
        self.interventions = InterventionSystem(
            on_pause=self._handle_pause,
            on_abort=self._handle_abort,
        )
        self.escalation = escalation_handler or EscalationHandler(self.config.escalation)
        self.planner = planner or StrategyPlanner()

        self.health_check_log: list[HealthCheck] = []
        self.iteration_history: list[IterationRecord] = []
        self.current_status = HealthStatus.HEALTHY.value

        self.storage_path.mkdir(parents=True, exist_ok=True)

    @property
    def log_path(self) -> Path:
        return log_path_for(self.loop_id, self.storage_path)

    # =========================================================================
    # Health check
    # =========================================================================

    def check(
        self,
        iteration: Union[IterationRecord, dict],
        strategy_metrics: Optional[dict] = None,
    ) -> HealthCheck:
        """
        Check one completed iteration.

        Args:
            iteration: The iteration record from the loop driver
            strategy_metrics: When given (e.g. ``{"trend": "improving"}``),
                a StrategyPlan is attached to the result

        Returns:
            The HealthCheck, also appended to the log
        """
        record = coerce_record(iteration, default_number=len(self.iteration_history) + 1)
        self.iteration_history.append(record)

        detections = self.detector.detect(
            self.iteration_history,
            objective=self.objective,
            max_iterations=self.iteration_budget,
        )

        interventions = []
        for detection in detections:
            intervention = self.interventions.intervene(detection)
            interventions.append(intervention)
            if self.auto_escalate and self.should_escalate(intervention):
                self._escalate(intervention, record)

        status = self.determine_status(detections, interventions)
        self.current_status = status

        health = HealthCheck(
            iteration_number=record.number,
            timestamp=_now(),
            status=status,
            detections=detections,
            interventions=interventions,
        )
        if strategy_metrics is not None:
            health.strategy = self.plan_strategy(strategy_metrics)

        self.health_check_log.append(health)
        health.metrics = self.compute_metrics()

        self.save_log()
        logger.debug("Iteration %d of %s: %s", record.number, self.loop_id, status)

        if self.on_health_check:
            self.on_health_check(health)
        return health

    @property
    def objective(self) -> str:
        """First record's context objective, else the task description."""
        if self.iteration_history and self.iteration_history[0].context:
            return self.iteration_history[0].context.objective or self.task_description
        return self.task_description

    @property
    def iteration_budget(self) -> int:
        if self.max_iterations:
            return self.max_iterations
        if self.iteration_history and self.iteration_history[0].context:
            if self.iteration_history[0].context.max_iterations:
                return self.iteration_history[0].context.max_iterations
        return self.config.max_iterations

    def should_escalate(self, intervention: Intervention) -> bool:
        """Pause and abort always escalate; redirect only for critical stuck/oscillation."""
        if intervention.level in (InterventionLevel.PAUSE.value, InterventionLevel.ABORT.value):
            return True
        if intervention.level == InterventionLevel.REDIRECT.value and intervention.detection:
            detection = intervention.detection
            return detection.type in ("stuck", "oscillation") and detection.severity == "critical"
        return False

    @staticmethod
    def escalation_level_for(intervention: Intervention) -> str:
        if intervention.level == InterventionLevel.ABORT.value:
            return EscalationLevel.EMERGENCY.value
        if intervention.level == InterventionLevel.PAUSE.value:
            return EscalationLevel.CRITICAL.value
        if intervention.level == InterventionLevel.REDIRECT.value:
            if intervention.detection and intervention.detection.severity == "critical":
                return EscalationLevel.CRITICAL.value
            return EscalationLevel.WARNING.value
        return EscalationLevel.INFO.value

    def _escalate(self, intervention: Intervention, record: IterationRecord) -> None:
        level = self.escalation_level_for(intervention)
        context = EscalationContext(
            loop_id=self.loop_id,
            task_description=self.task_description,
            iteration_number=record.number,
            reason=intervention.reason,
            detection=intervention.detection.to_dict() if intervention.detection else None,
            intervention=intervention.to_dict(),
        )
        self.escalation.escalate(level, context)

    def determine_status(self, detections: list[Detection], interventions: list[Intervention]) -> str:
        if self.interventions.is_paused:
            return HealthStatus.PAUSED.value
        if any(i.level == InterventionLevel.ABORT.value for i in interventions):
            return HealthStatus.ABORTED.value
        if any(d.severity == "critical" for d in detections):
            return HealthStatus.CRITICAL.value
        if any(d.severity in ("high", "medium") for d in detections):
            return HealthStatus.WARNING.value
        return HealthStatus.HEALTHY.value

    def _handle_pause(self, intervention: Intervention) -> None:
        self.current_status = HealthStatus.PAUSED.value
        print_loop_paused(intervention.reason)

    def _handle_abort(self, intervention: Intervention) -> None:
        self.current_status = HealthStatus.ABORTED.value
        print_loop_aborted(intervention.reason)

    # =========================================================================
    # Pause / strategy
    # =========================================================================

    def resume(self, reason: str) -> bool:
        """
        Resume a paused loop after human approval.

        Returns:
            False when the loop was not paused
        """
        if not self.interventions.resume(reason):
            return False
        self.current_status = HealthStatus.HEALTHY.value
        self.save_log()
        return True

    def plan_strategy(self, metrics: Optional[dict] = None) -> StrategyPlan:
        return self.planner.plan(self.iteration_history, metrics or {})

    # =========================================================================
    # Reporting
    # =========================================================================

    def compute_metrics(self) -> dict:
        detection_counts: Counter = Counter()
        intervention_counts: Counter = Counter()
        for check in self.health_check_log:
            detection_counts.update(d.type for d in check.detections)
            intervention_counts.update(i.level for i in check.interventions)

        return {
            "totalIterations": len(self.iteration_history),
            "totalHealthChecks": len(self.health_check_log),
            "detectionCounts": dict(detection_counts),
            "interventionCounts": dict(intervention_counts),
            "currentStatus": self.current_status,
        }

    def get_health(self) -> dict:
        latest = self.health_check_log[-1] if self.health_check_log else None
        return {
            "loopId": self.loop_id,
            "taskDescription": self.task_description,
            "status": self.current_status,
            "totalIterations": len(self.iteration_history),
            "latestHealthCheck": latest.to_dict() if latest else None,
            "metrics": self.compute_metrics(),
            "isPaused": self.interventions.is_paused,
        }

    def get_log(self) -> list[HealthCheck]:
        return list(self.health_check_log)

    def get_intervention_log(self) -> list[Intervention]:
        return self.interventions.get_log()

    def get_escalation_log(self) -> list:
        return self.escalation.get_log()

    def generate_report(self) -> str:
        """Markdown report of the loop's health history."""
        health = self.get_health()
        metrics = health["metrics"]

        lines = [
            f"# Overseer Report: {self.loop_id}",
            "",
            f"**Task:** {self.task_description}",
            f"**Status:** {health['status']}",
            f"**Iterations:** {health['totalIterations']}",
            f"**Last Updated:** {_now()}",
            "",
            "## Health Summary",
            "",
            "| Metric | Value |",
            "|--------|-------|",
            f"| Total Iterations | {metrics['totalIterations']} |",
            f"| Health Checks | {metrics['totalHealthChecks']} |",
            f"| Current Status | {metrics['currentStatus']} |",
            f"| Is Paused | {'Yes' if health['isPaused'] else 'No'} |",
            "",
        ]

        if metrics["detectionCounts"]:
            lines += ["## Detections", "", "| Type | Count |", "|------|-------|"]
            lines += [f"| {t} | {c} |" for t, c in metrics["detectionCounts"].items()]
            lines.append("")

        if metrics["interventionCounts"]:
            lines += ["## Interventions", "", "| Level | Count |", "|-------|-------|"]
            lines += [f"| {lvl} | {c} |" for lvl, c in metrics["interventionCounts"].items()]
            lines.append("")

        recent = self.health_check_log[-5:]
        if recent:
            lines += ["## Recent Health Checks", ""]
            for check in recent:
                lines += [
                    f"### Iteration {check.iteration_number} ({check.timestamp})",
                    "",
                    f"**Status:** {check.status}",
                    "",
                ]
                if check.detections:
                    lines.append("**Detections:**")
                    lines += [f"- [{d.severity}] {d.type}: {d.message}" for d in check.detections]
                    lines.append("")
                if check.interventions:
                    lines.append("**Interventions:**")
                    lines += [f"- [{i.level}] {i.reason}" for i in check.interventions]
                    lines.append("")

        lines += ["---", "*Generated by the loopwarden overseer*", ""]
        return "\n".join(lines)

    # =========================================================================
    # Persistence
    # =========================================================================

    def save_log(self) -> None:
        """Rewrite the audit log for this loop."""
        write_json_atomic(self.log_path, {
            "loopId": self.loop_id,
            "taskDescription": self.task_description,
            "healthCheckLog": [c.to_dict() for c in self.health_check_log],
            "interventionLog": [i.to_dict() for i in self.interventions.get_log()],
            "escalationLog": [e.to_dict() for e in self.escalation.get_log()],
            "metrics": self.compute_metrics(),
            "pauseState": self.interventions.get_pause_status(),
            "maxIterations": self.max_iterations,
            "iterationHistory": [r.to_dict() for r in self.iteration_history],
            "lastUpdated": _now(),
        })

    @classmethod
    def load(
        cls,
        loop_id: str,
        storage_path: Union[str, Path] = DEFAULT_STORAGE_PATH,
        config: Optional[OverseerConfig] = None,
        **kwargs: Any,
    ) -> "Overseer":
        """
        Rebuild an overseer from its audit log.

        Raises:
            FileNotFoundError: If the loop has no audit log
        """
        path = log_path_for(loop_id, storage_path)
        if not path.exists():
            raise FileNotFoundError(f"Overseer log not found: {path}")

        data = read_json(path)
        overseer = cls(
            data.get("loopId", loop_id),
            data.get("taskDescription", ""),
            config=config,
            storage_path=storage_path,
            max_iterations=data.get("maxIterations"),
            **kwargs,
        )
        overseer.health_check_log = [HealthCheck.from_dict(c) for c in data.get("healthCheckLog", [])]
        overseer.iteration_history = [
            coerce_record(r, default_number=i + 1)
            for i, r in enumerate(data.get("iterationHistory", []))
        ]

        pause = data.get("pauseState") or {}
        overseer.interventions.import_state({
            "interventionLog": data.get("interventionLog"),
            "isPaused": pause.get("isPaused"),
            "pauseReason": pause.get("reason"),
        })
        if data.get("escalationLog") is not None:
            overseer.escalation.import_state({"escalationLog": data["escalationLog"]})

        if overseer.health_check_log:
            overseer.current_status = overseer.health_check_log[-1].status
        return overseer

    def export_state(self) -> dict:
        return {
            "loopId": self.loop_id,
            "taskDescription": self.task_description,
            "healthCheckLog": [c.to_dict() for c in self.health_check_log],
            "iterationHistory": [r.to_dict() for r in self.iteration_history],
            "currentStatus": self.current_status,
            "interventionState": self.interventions.export_state(),
            "escalationState": self.escalation.export_state(),
        }

    def import_state(self, state: dict) -> None:
        if state.get("loopId"):
            self.loop_id = state["loopId"]
        if state.get("taskDescription"):
            self.task_description = state["taskDescription"]
        if state.get("healthCheckLog") is not None:
            self.health_check_log = [HealthCheck.from_dict(c) for c in state["healthCheckLog"]]
        if state.get("iterationHistory") is not None:
            self.iteration_history = [
                coerce_record(r, default_number=i + 1)
                for i, r in enumerate(state["iterationHistory"])
            ]
        if state.get("currentStatus"):
            self.current_status = state["currentStatus"]
        if state.get("interventionState"):
            self.interventions.import_state(state["interventionState"])
        if state.get("escalationState"):
            self.escalation.import_state(state["escalationState"])


def create_overseer(
    loop_id: str,
    task_description: str,
    config: Optional[OverseerConfig] = None,
    **kwargs: Any,
) -> Overseer:
    """Create an Overseer using loaded configuration when none is given."""
    return Overseer(loop_id, task_description, config=config or OverseerConfig.load(), **kwargs)
