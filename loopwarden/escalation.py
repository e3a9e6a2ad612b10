"""
Escalation Handler
==================

Delivers interventions to a human through side channels.

Channels (run in this order, each independently guarded):
- desktop_notification: notify-send on Linux, osascript on macOS
- issue_tracker: opens an issue through a Gitea-compatible REST API,
  only for critical and emergency escalations
- webhook: POSTs ``{level, context, timestamp}`` to a configured URL

A failing channel becomes a ChannelResult with ``ok=False`` and an entry in
the escalation's ``errors``. It never stops the remaining channels and never
raises into the overseer.

Usage:
    from loopwarden.escalation import EscalationHandler, EscalationContext

    handler = EscalationHandler(config.escalation)
    escalation = handler.escalate("critical", EscalationContext(
        loop_id="loop-42",
        task_description="Fix config loading",
        iteration_number=6,
        reason="Regression detected",
    ))
    for result in escalation.results:
        print(result.channel, result.ok, result.error)
"""

import json
import logging
import subprocess
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Union

import httpx

from loopwarden.config import EscalationConfig
from loopwarden.output import print_warning
from loopwarden.platform_utils import build_notification_command, expand_user_path

logger = logging.getLogger(__name__)


class EscalationLevel(Enum):
    """How urgently a human is needed."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"


CHANNEL_DESKTOP = "desktop_notification"
CHANNEL_ISSUE = "issue_tracker"
CHANNEL_WEBHOOK = "webhook"

URGENCY_BY_LEVEL = {
    EscalationLevel.INFO.value: "low",
    EscalationLevel.WARNING.value: "normal",
    EscalationLevel.CRITICAL.value: "critical",
    EscalationLevel.EMERGENCY.value: "critical",
}

ISSUE_LEVELS = (EscalationLevel.CRITICAL.value, EscalationLevel.EMERGENCY.value)


class IssueTrackerError(Exception):
    """The issue tracker could not be reached or rejected the request."""
    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class EscalationContext:
    """What the human needs to know about the loop."""
    loop_id: str
    task_description: str = ""
    iteration_number: int = 0
    reason: str = ""
    detection: Optional[dict] = None
    intervention: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "loopId": self.loop_id,
            "taskDescription": self.task_description,
            "iterationNumber": self.iteration_number,
            "reason": self.reason,
            "detection": self.detection,
            "intervention": self.intervention,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EscalationContext":
        return cls(
            loop_id=data.get("loopId", ""),
            task_description=data.get("taskDescription", ""),
            iteration_number=int(data.get("iterationNumber", 0) or 0),
            reason=data.get("reason", ""),
            detection=data.get("detection"),
            intervention=data.get("intervention"),
        )


@dataclass
class ChannelResult:
    """Outcome of one delivery attempt."""
    channel: str
    ok: bool
    error: Optional[str] = None
    detail: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {"channel": self.channel, "ok": self.ok}
        if self.error is not None:
            data["error"] = self.error
        if self.detail:
            data["detail"] = self.detail
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ChannelResult":
        return cls(
            channel=data["channel"],
            ok=bool(data.get("ok")),
            error=data.get("error"),
            detail=data.get("detail", {}) or {},
        )


@dataclass
class Escalation:
    """One escalation and what each channel did with it."""
    level: str                      # EscalationLevel value
    context: dict
    timestamp: str
    channels: list[str] = field(default_factory=list)       # channels that succeeded
    results: list[ChannelResult] = field(default_factory=list)
    issue_number: Optional[int] = None
    issue_url: Optional[str] = None
    errors: list[dict] = field(default_factory=list)        # {channel, error}

    def to_dict(self) -> dict:
        data = {
            "level": self.level,
            "context": self.context,
            "timestamp": self.timestamp,
            "channels": list(self.channels),
            "results": [r.to_dict() for r in self.results],
            "errors": list(self.errors),
        }
        if self.issue_number is not None:
            data["issueNumber"] = self.issue_number
        if self.issue_url is not None:
            data["issueUrl"] = self.issue_url
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Escalation":
        return cls(
            level=data["level"],
            context=data.get("context", {}) or {},
            timestamp=data.get("timestamp", ""),
            channels=list(data.get("channels", [])),
            results=[ChannelResult.from_dict(r) for r in data.get("results", [])],
            issue_number=data.get("issueNumber"),
            issue_url=data.get("issueUrl"),
            errors=list(data.get("errors", [])),
        )


class EscalationHandler:
    """
    Sends escalations through the configured channels and keeps a log.

    The log is unbounded; the overseer persists it with the loop's audit file.
    """

    def __init__(self, config: Optional[EscalationConfig] = None):
        self.config = config or EscalationConfig()
        self.escalation_log: list[Escalation] = []

    def escalate(
        self,
        level: str,
        context: Union[EscalationContext, dict],
    ) -> Escalation:
        """
        Escalate to a human through every applicable channel.

        Args:
            level: EscalationLevel value
            context: Loop context for the message

        Returns:
            The recorded Escalation, including per-channel results
        """
        if isinstance(context, dict):
            context = EscalationContext.from_dict(context)

        escalation = Escalation(level=level, context=context.to_dict(), timestamp=_now())

        if self.config.enable_notifications:
            self._run_channel(escalation, CHANNEL_DESKTOP, self.send_desktop_notification, level, context)

        if level in ISSUE_LEVELS:
            result = self._run_channel(escalation, CHANNEL_ISSUE, self._open_issue, level, context)
            if result.ok:
                escalation.issue_number = result.detail.get("number")
                escalation.issue_url = result.detail.get("url")

        if self.config.webhook_url:
            self._run_channel(escalation, CHANNEL_WEBHOOK, self.send_webhook, level, context)

        self.escalation_log.append(escalation)
        logger.info(
            "Escalated %s for %s via %s",
            level, context.loop_id, ", ".join(escalation.channels) or "no channels",
        )
        return escalation

    def _run_channel(
        self,
        escalation: Escalation,
        channel: str,
        send: Callable[[str, EscalationContext], Optional[dict]],
        level: str,
        context: EscalationContext,
    ) -> ChannelResult:
        try:
            detail = send(level, context) or {}
            result = ChannelResult(channel=channel, ok=True, detail=detail)
            escalation.channels.append(channel)
        except Exception as e:
            result = ChannelResult(channel=channel, ok=False, error=str(e))
            escalation.errors.append({"channel": channel, "error": str(e)})
            print_warning(f"Escalation channel {channel} failed: {e}")
        escalation.results.append(result)
        return result

    # =========================================================================
    # Channels
    # =========================================================================

    def send_desktop_notification(self, level: str, context: EscalationContext) -> dict:
        """Show a desktop notification; raises when no notifier is installed."""
        title = f"Loop Overseer: {level.upper()}"
        message = f"{context.reason}\n\nLoop: {context.loop_id}\nIteration: {context.iteration_number}"
        urgency = URGENCY_BY_LEVEL.get(level, "normal")

        command = build_notification_command(title, message, urgency=urgency, app_name="Loop Overseer")
        if command is None:
            raise RuntimeError("No desktop notifier available on this platform")

        subprocess.run(
            command,
            capture_output=True,
            timeout=self.config.notification_timeout_seconds,
            check=True,
        )
        return {"urgency": urgency}

    def _open_issue(self, level: str, context: EscalationContext) -> dict:
        labels = list(self.config.labels)
        if level not in labels:
            labels.append(level)
        return self.create_issue(
            title=f"[Loop Overseer] {level.upper()}: {context.reason}",
            body=self.build_issue_body(context),
            labels=labels,
        )

    def create_issue(self, title: str, body: str, labels: Optional[list[str]] = None) -> dict:
        """
        Open an issue in the tracker.

        Returns:
            {"number", "url", "id"} from the tracker's response

        Raises:
            IssueTrackerError: If the tracker is unconfigured, no token is
                available, or the request fails
        """
        if not self.config.tracker_url or not self.config.repo:
            raise IssueTrackerError("Issue tracker not configured (tracker_url and repo are required)")
        if "/" not in self.config.repo:
            raise IssueTrackerError(f"Repository must be owner/repo, got {self.config.repo!r}")

        token = self.get_token()
        if not token:
            raise IssueTrackerError("Issue tracker token not found")

        owner, repo = self.config.repo.split("/", 1)
        url = f"{self.config.tracker_url.rstrip('/')}/repos/{owner}/{repo}/issues"

        try:
            response = httpx.post(
                url,
                json={
                    "title": title,
                    "body": body,
                    "labels": [{"name": name} for name in labels or []],
                },
                headers={
                    "Authorization": f"token {token}",
                    "Content-Type": "application/json",
                },
                timeout=self.config.issue_timeout_seconds,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise IssueTrackerError(f"Issue tracker returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise IssueTrackerError(f"Issue tracker request failed: {e}") from e
        except ValueError as e:
            raise IssueTrackerError(f"Issue tracker returned invalid JSON: {e}") from e

        return {
            "number": data.get("number"),
            "url": data.get("html_url"),
            "id": data.get("id"),
        }

    def build_issue_body(self, context: EscalationContext) -> str:
        """Markdown issue body with evidence and a next-actions checklist."""
        lines = [
            "## Loop Overseer Alert",
            "",
            f"**Loop ID:** {context.loop_id}",
            f"**Task:** {context.task_description}",
            f"**Iteration:** {context.iteration_number}",
            f"**Timestamp:** {_now()}",
            "",
            "### Issue",
            "",
            context.reason,
            "",
        ]

        detection = context.detection
        if detection:
            lines += [
                "### Detection",
                "",
                f"- **Type:** {detection.get('type')}",
                f"- **Severity:** {detection.get('severity')}",
                f"- **Message:** {detection.get('message')}",
                "",
            ]
            if detection.get("evidence"):
                lines += [
                    "**Evidence:**",
                    "```json",
                    json.dumps(detection["evidence"], indent=2, default=str),
                    "```",
                    "",
                ]
            if detection.get("recommendations"):
                lines.append("**Recommendations:**")
                lines += [f"{i}. {rec}" for i, rec in enumerate(detection["recommendations"], 1)]
                lines.append("")

        intervention = context.intervention
        if intervention:
            lines += [
                "### Intervention",
                "",
                f"- **Level:** {intervention.get('level')}",
                f"- **Reason:** {intervention.get('reason')}",
                "",
            ]

        lines += [
            "### Actions Required",
            "",
            "- [ ] Review loop state and iteration history",
            "- [ ] Determine if loop should continue or abort",
            "- [ ] Provide guidance on how to proceed",
            "",
            "---",
            "*Automated escalation from the loop overseer*",
            "",
        ]
        return "\n".join(lines)

    def send_webhook(self, level: str, context: EscalationContext) -> dict:
        """POST the escalation to the configured webhook."""
        if not self.config.webhook_url:
            return {}

        response = httpx.post(
            self.config.webhook_url,
            json={"level": level, "context": context.to_dict(), "timestamp": _now()},
            timeout=self.config.webhook_timeout_seconds,
        )
        response.raise_for_status()
        return {"status": response.status_code}

    def get_token(self) -> Optional[str]:
        """Token from config, else from the token file."""
        if self.config.token:
            return self.config.token.strip()

        token_file = expand_user_path(self.config.token_path)
        if not token_file.exists():
            return None
        try:
            return token_file.read_text(encoding="utf-8").strip() or None
        except OSError as e:
            print_warning(f"Error reading tracker token: {e}")
            return None

    # =========================================================================
    # Log
    # =========================================================================

    def get_log(self, limit: Optional[int] = None) -> list[Escalation]:
        if limit:
            return self.escalation_log[-limit:]
        return list(self.escalation_log)

    def get_summary(self) -> dict:
        by_level = Counter(e.level for e in self.escalation_log)
        by_channel: Counter = Counter()
        for escalation in self.escalation_log:
            by_channel.update(escalation.channels)
        return {
            "total": len(self.escalation_log),
            "byLevel": dict(by_level),
            "byChannel": dict(by_channel),
        }

    def clear_log(self) -> None:
        self.escalation_log = []

    def export_state(self) -> dict:
        return {"escalationLog": [e.to_dict() for e in self.escalation_log]}

    def import_state(self, state: dict) -> None:
        if state.get("escalationLog") is not None:
            self.escalation_log = [Escalation.from_dict(e) for e in state["escalationLog"]]
