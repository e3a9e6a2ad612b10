"""
Intervention System
===================

Turns behavior detections into interventions.

Intervention Levels (least to most disruptive):
- log: record the detection only
- warn: build a warning to inject into the next prompt
- redirect: build an imperative strategy override
- pause: stop for human approval (sets the pause state)
- abort: ask the driver to stop the loop

The level is a pure lookup on (severity, type). The system never stops a
process itself: pause and abort only set state and fire callbacks, and the
loop driver decides what to do with them.

Usage:
    from loopwarden.intervention import InterventionSystem

    system = InterventionSystem(on_pause=lambda i: print("paused:", i.reason))
    intervention = system.intervene(detection)
    if intervention.warning:
        prompt = system.inject_warning(prompt, intervention.warning)
"""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from loopwarden.behavior_detector import Detection

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 100


class InterventionLevel(Enum):
    """How strongly to respond to a detection."""
    LOG = "log"
    WARN = "warn"
    REDIRECT = "redirect"
    PAUSE = "pause"
    ABORT = "abort"
    RESUME = "resume"               # log entry written by resume(), never chosen by determine_level


_TYPE_GUIDANCE = {
    "stuck": "You are making the same error repeatedly. Stop and try a different approach.",
    "oscillation": "You are undoing and redoing changes. Pick one direction and commit to it.",
    "deviation": "Your recent work may have drifted from the original objective. Refocus.",
    "resource_burn": "You are approaching your iteration budget. Focus on critical remaining work.",
    "regression": "Tests or coverage are regressing. Fix the code, not the tests.",
}


def determine_level(severity: str, detection_type: str) -> InterventionLevel:
    """
    Map (severity, type) to an intervention level.

    critical: abort for resource_burn/regression, pause otherwise
    high: redirect for stuck/oscillation, warn otherwise
    medium: warn
    low and anything unknown: log
    """
    if severity == "critical":
        if detection_type in ("resource_burn", "regression"):
            return InterventionLevel.ABORT
        return InterventionLevel.PAUSE
    if severity == "high":
        if detection_type in ("stuck", "oscillation"):
            return InterventionLevel.REDIRECT
        return InterventionLevel.WARN
    if severity == "medium":
        return InterventionLevel.WARN
    return InterventionLevel.LOG


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Intervention:
    """The action taken in response to a detection."""
    level: str                              # InterventionLevel value
    reason: str
    timestamp: str
    detection: Optional[Detection] = None   # None for resume entries

    # Level payloads
    action: Optional[str] = None            # log
    warning: Optional[str] = None           # warn
    strategy_override: Optional[str] = None  # redirect
    requires_approval: bool = False         # pause, abort
    abort_reason: Optional[str] = None      # abort
    previous_pause_reason: Optional[str] = None  # resume

    def to_dict(self) -> dict:
        data = {
            "level": self.level,
            "reason": self.reason,
            "timestamp": self.timestamp,
        }
        if self.detection is not None:
            data["detection"] = self.detection.to_dict()
        if self.action is not None:
            data["action"] = self.action
        if self.warning is not None:
            data["warning"] = self.warning
        if self.strategy_override is not None:
            data["strategyOverride"] = self.strategy_override
        if self.requires_approval:
            data["requiresApproval"] = True
        if self.abort_reason is not None:
            data["abortReason"] = self.abort_reason
        if self.level == InterventionLevel.RESUME.value:
            data["previousPauseReason"] = self.previous_pause_reason
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Intervention":
        detection = data.get("detection")
        return cls(
            level=data["level"],
            reason=data.get("reason", ""),
            timestamp=data.get("timestamp", ""),
            detection=Detection.from_dict(detection) if detection else None,
            action=data.get("action"),
            warning=data.get("warning"),
            strategy_override=data.get("strategyOverride"),
            requires_approval=bool(data.get("requiresApproval", False)),
            abort_reason=data.get("abortReason"),
            previous_pause_reason=data.get("previousPauseReason"),
        )


class InterventionSystem:
    """
    Chooses and records interventions, and owns the loop's pause state.

    Pause state lives on the instance, so two overseers in one process never
    share it.
    """

    def __init__(
        self,
        on_intervention: Optional[Callable[[Intervention], None]] = None,
        on_pause: Optional[Callable[[Intervention], None]] = None,
        on_abort: Optional[Callable[[Intervention], None]] = None,
    ):
        """
        Args:
            on_intervention: Called after every intervention is recorded
            on_pause: Called when a pause intervention sets the pause state
            on_abort: Called when an abort intervention is issued
        """
        self.on_intervention = on_intervention
        self.on_pause = on_pause
        self.on_abort = on_abort

        self.intervention_log: list[Intervention] = []
        self.is_paused = False
        self.pause_reason: Optional[str] = None

    def intervene(self, detection: Detection) -> Intervention:
        """Pick the level for a detection, act on it, and record it."""
        level = self.determine_level(detection)
        intervention = Intervention(
            level=level.value,
            reason=detection.message,
            timestamp=_now(),
            detection=detection,
        )

        if level == InterventionLevel.LOG:
            intervention.action = "Logged detection for monitoring"
        elif level == InterventionLevel.WARN:
            intervention.warning = self.build_warning(detection)
        elif level == InterventionLevel.REDIRECT:
            intervention.strategy_override = self.build_strategy_override(detection)
        elif level == InterventionLevel.PAUSE:
            intervention.requires_approval = True
            self.is_paused = True
            self.pause_reason = detection.message
            logger.info("Loop paused: %s", detection.message)
            if self.on_pause:
                self.on_pause(intervention)
        elif level == InterventionLevel.ABORT:
            intervention.requires_approval = True
            intervention.abort_reason = detection.message
            logger.info("Abort requested: %s", detection.message)
            if self.on_abort:
                self.on_abort(intervention)

        self._append(intervention)

        if self.on_intervention:
            self.on_intervention(intervention)

        return intervention

    def determine_level(self, detection: Detection) -> InterventionLevel:
        return determine_level(detection.severity, detection.type)

    def build_warning(self, detection: Detection) -> str:
        """Warning block with numbered recommendations and type guidance."""
        warning = f"⚠️ OVERSEER WARNING: {detection.message}\n\n"

        if detection.recommendations:
            warning += "Recommended actions:\n"
            for i, rec in enumerate(detection.recommendations, 1):
                warning += f"{i}. {rec}\n"

        guidance = _TYPE_GUIDANCE.get(detection.type)
        if guidance:
            warning += f"\n{guidance}"

        return warning

    def build_strategy_override(self, detection: Detection) -> str:
        """Imperative instruction that replaces the current strategy."""
        evidence = detection.evidence or {}

        if detection.type == "stuck":
            strategy = "OVERRIDE: Change approach immediately. The current method is not working. "
            if evidence.get("repeatedError"):
                strategy += f'You have hit "{evidence["repeatedError"]}" {evidence.get("occurrences", 0)} times. '
            return strategy + "Try a completely different solution strategy."

        if detection.type == "oscillation":
            return (
                "OVERRIDE: Stop alternating between approaches. "
                "Analyze which approach is better and commit to it. "
                "No more back-and-forth changes."
            )

        if detection.type == "deviation":
            strategy = "OVERRIDE: Return to original objective. "
            if evidence.get("originalObjective"):
                strategy += f'Original objective: "{evidence["originalObjective"]}". '
            return strategy + "All work must align with this goal."

        return "OVERRIDE: Reassess current approach and adjust strategy."

    @staticmethod
    def inject_warning(prompt: str, warning: str) -> str:
        """Prepend a warning to a prompt, separated by a rule line."""
        return f"{warning}\n\n{'=' * 80}\n\nORIGINAL TASK:\n{prompt}"

    # =========================================================================
    # Pause state
    # =========================================================================

    def resume(self, reason: str) -> bool:
        """
        Clear the pause state after human approval.

        Returns:
            False (and records nothing) when not paused, True otherwise
        """
        if not self.is_paused:
            return False

        self._append(Intervention(
            level=InterventionLevel.RESUME.value,
            reason=reason,
            timestamp=_now(),
            previous_pause_reason=self.pause_reason,
        ))
        logger.info("Loop resumed: %s", reason)

        self.is_paused = False
        self.pause_reason = None
        return True

    def get_pause_status(self) -> dict:
        return {"isPaused": self.is_paused, "reason": self.pause_reason}

    # =========================================================================
    # Log
    # =========================================================================

    def get_log(self, limit: Optional[int] = None) -> list[Intervention]:
        if limit:
            return self.intervention_log[-limit:]
        return list(self.intervention_log)

    def get_summary(self) -> dict:
        """Counts by level and detection type, plus the pause state."""
        by_level = Counter(i.level for i in self.intervention_log)
        by_type = Counter(i.detection.type for i in self.intervention_log if i.detection)
        return {
            "total": len(self.intervention_log),
            "byLevel": dict(by_level),
            "byType": dict(by_type),
            "isPaused": self.is_paused,
            "pauseReason": self.pause_reason,
        }

    def clear_log(self) -> None:
        self.intervention_log = []

    def reset(self) -> None:
        """Clear the log and the pause state."""
        self.intervention_log = []
        self.is_paused = False
        self.pause_reason = None

    def export_state(self) -> dict:
        return {
            "interventionLog": [i.to_dict() for i in self.intervention_log],
            "isPaused": self.is_paused,
            "pauseReason": self.pause_reason,
        }

    def import_state(self, state: dict) -> None:
        if state.get("interventionLog") is not None:
            self.intervention_log = [Intervention.from_dict(i) for i in state["interventionLog"]]
        if isinstance(state.get("isPaused"), bool):
            self.is_paused = state["isPaused"]
        if state.get("pauseReason"):
            self.pause_reason = state["pauseReason"]

    def _append(self, intervention: Intervention) -> None:
        self.intervention_log.append(intervention)
        if len(self.intervention_log) > MAX_LOG_ENTRIES:
            self.intervention_log = self.intervention_log[-MAX_LOG_ENTRIES:]
