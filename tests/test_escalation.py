"""
Tests for Escalation Handler
============================

Tests for escalation.py - delivering escalations through side channels.
"""

import subprocess
from unittest.mock import MagicMock, patch

import httpx
import pytest

from loopwarden.config import EscalationConfig
from loopwarden.escalation import (
    CHANNEL_DESKTOP,
    CHANNEL_ISSUE,
    CHANNEL_WEBHOOK,
    Escalation,
    EscalationContext,
    EscalationHandler,
    IssueTrackerError,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def context():
    return EscalationContext(
        loop_id="loop-42",
        task_description="Fix config loading",
        iteration_number=6,
        reason="Regression detected",
        detection={
            "type": "regression",
            "severity": "critical",
            "message": "Regression detected: 2 quality regressions in recent iterations",
            "evidence": {"regressions": [{"iteration": 6}]},
            "recommendations": ["Stop making changes that break tests"],
        },
        intervention={"level": "abort", "reason": "Regression detected"},
    )


@pytest.fixture
def tracker_config(temp_dir):
    return EscalationConfig(
        enable_notifications=False,
        tracker_url="https://git.example.com/api/v1",
        repo="team/loops",
        token="secret-token",
    )


def ok_response(payload=None, status=201):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload or {}
    response.raise_for_status.return_value = None
    return response


# =============================================================================
# Channel selection
# =============================================================================

class TestEscalate:
    """Tests for channel fan-out and failure isolation."""

    def test_warning_skips_issue_tracker(self, context):
        handler = EscalationHandler(EscalationConfig(enable_notifications=False))

        escalation = handler.escalate("warning", context)

        assert escalation.results == []
        assert escalation.errors == []
        assert handler.get_log() == [escalation]

    def test_unconfigured_tracker_is_recorded_not_raised(self, context):
        handler = EscalationHandler(EscalationConfig(enable_notifications=False))

        escalation = handler.escalate("critical", context)

        assert len(escalation.results) == 1
        assert escalation.results[0].channel == CHANNEL_ISSUE
        assert escalation.results[0].ok is False
        assert escalation.errors[0]["channel"] == CHANNEL_ISSUE
        assert escalation.channels == []

    @patch("loopwarden.escalation.httpx.post")
    def test_critical_opens_issue(self, mock_post, context, tracker_config):
        mock_post.return_value = ok_response({"number": 7, "html_url": "https://git.example.com/team/loops/issues/7", "id": 99})
        handler = EscalationHandler(tracker_config)

        escalation = handler.escalate("critical", context)

        assert escalation.channels == [CHANNEL_ISSUE]
        assert escalation.issue_number == 7
        assert escalation.issue_url.endswith("/issues/7")

        url = mock_post.call_args.args[0]
        kwargs = mock_post.call_args.kwargs
        assert url == "https://git.example.com/api/v1/repos/team/loops/issues"
        assert kwargs["headers"]["Authorization"] == "token secret-token"
        assert kwargs["json"]["title"] == "[Loop Overseer] CRITICAL: Regression detected"
        assert {"name": "critical"} in kwargs["json"]["labels"]
        assert kwargs["timeout"] == 10.0

    @patch("loopwarden.escalation.httpx.post")
    def test_failing_channel_does_not_block_others(self, mock_post, context, tracker_config):
        """An issue tracker outage still lets the webhook fire."""
        tracker_config.webhook_url = "https://hooks.example.com/loop"

        def post(url, **kwargs):
            if "hooks" in url:
                return ok_response(status=200)
            raise httpx.ConnectError("connection refused")

        mock_post.side_effect = post
        handler = EscalationHandler(tracker_config)

        escalation = handler.escalate("emergency", context)

        assert escalation.channels == [CHANNEL_WEBHOOK]
        assert [r.channel for r in escalation.results] == [CHANNEL_ISSUE, CHANNEL_WEBHOOK]
        assert escalation.errors[0]["channel"] == CHANNEL_ISSUE
        assert "connection refused" in escalation.errors[0]["error"]

    @patch("loopwarden.escalation.httpx.post")
    def test_webhook_payload(self, mock_post, context):
        mock_post.return_value = ok_response(status=200)
        handler = EscalationHandler(EscalationConfig(
            enable_notifications=False,
            webhook_url="https://hooks.example.com/loop",
        ))

        handler.escalate("warning", context)

        payload = mock_post.call_args.kwargs["json"]
        assert payload["level"] == "warning"
        assert payload["context"]["loopId"] == "loop-42"
        assert "timestamp" in payload
        assert mock_post.call_args.kwargs["timeout"] == 5.0

    def test_accepts_context_dict(self, context):
        handler = EscalationHandler(EscalationConfig(enable_notifications=False))
        escalation = handler.escalate("info", context.to_dict())
        assert escalation.context["loopId"] == "loop-42"


# =============================================================================
# Desktop notifications
# =============================================================================

class TestDesktopNotification:
    """Tests for the desktop notification channel."""

    @patch("loopwarden.escalation.subprocess.run")
    @patch("loopwarden.escalation.build_notification_command")
    def test_sends_notification(self, mock_build, mock_run, context):
        mock_build.return_value = ["notify-send", "title", "message"]
        handler = EscalationHandler(EscalationConfig())

        escalation = handler.escalate("warning", context)

        assert escalation.channels == [CHANNEL_DESKTOP]
        assert mock_build.call_args.kwargs["urgency"] == "normal"
        assert mock_run.call_args.kwargs["timeout"] == 5.0
        assert mock_run.call_args.kwargs["check"] is True

    @patch("loopwarden.escalation.build_notification_command", return_value=None)
    def test_missing_notifier_is_channel_error(self, mock_build, context):
        handler = EscalationHandler(EscalationConfig())

        escalation = handler.escalate("warning", context)

        assert escalation.results[0].channel == CHANNEL_DESKTOP
        assert escalation.results[0].ok is False

    @patch("loopwarden.escalation.subprocess.run")
    @patch("loopwarden.escalation.build_notification_command")
    def test_notifier_timeout_is_channel_error(self, mock_build, mock_run, context):
        mock_build.return_value = ["notify-send", "t", "m"]
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="notify-send", timeout=5)
        handler = EscalationHandler(EscalationConfig())

        escalation = handler.escalate("warning", context)

        assert escalation.errors[0]["channel"] == CHANNEL_DESKTOP


# =============================================================================
# Issue tracker details
# =============================================================================

class TestIssueTracker:
    """Tests for issue creation and token handling."""

    def test_issue_body_sections(self, context):
        body = EscalationHandler().build_issue_body(context)
        assert body.startswith("## Loop Overseer Alert")
        assert "**Loop ID:** loop-42" in body
        assert "### Detection" in body
        assert "1. Stop making changes that break tests" in body
        assert "### Actions Required" in body
        assert body.count("- [ ]") == 3

    def test_token_from_file(self, temp_dir):
        token_file = temp_dir / "token"
        token_file.write_text("file-token\n")
        handler = EscalationHandler(EscalationConfig(token_path=str(token_file)))
        assert handler.get_token() == "file-token"

    def test_missing_token_file(self, temp_dir):
        handler = EscalationHandler(EscalationConfig(token_path=str(temp_dir / "missing")))
        assert handler.get_token() is None

    def test_create_issue_without_token_raises(self, temp_dir):
        handler = EscalationHandler(EscalationConfig(
            tracker_url="https://git.example.com/api/v1",
            repo="team/loops",
            token_path=str(temp_dir / "missing"),
        ))
        with pytest.raises(IssueTrackerError):
            handler.create_issue("title", "body")

    @patch("loopwarden.escalation.httpx.post")
    def test_http_error_status(self, mock_post, tracker_config):
        request = httpx.Request("POST", "https://git.example.com")
        response = httpx.Response(403, request=request)
        mock_post.return_value = response
        handler = EscalationHandler(tracker_config)

        with pytest.raises(IssueTrackerError, match="403"):
            handler.create_issue("title", "body")


# =============================================================================
# Log and state
# =============================================================================

class TestEscalationLog:
    """Tests for log summary and persistence."""

    def test_summary(self, context):
        handler = EscalationHandler(EscalationConfig(enable_notifications=False))
        handler.escalate("warning", context)
        handler.escalate("critical", context)
        summary = handler.get_summary()
        assert summary["total"] == 2
        assert summary["byLevel"] == {"warning": 1, "critical": 1}

    def test_export_import(self, context):
        handler = EscalationHandler(EscalationConfig(enable_notifications=False))
        handler.escalate("critical", context)

        restored = EscalationHandler()
        restored.import_state(handler.export_state())

        assert [e.to_dict() for e in restored.get_log()] == [e.to_dict() for e in handler.get_log()]

    def test_escalation_round_trip(self):
        escalation = Escalation(level="critical", context={"loopId": "x"}, timestamp="t", issue_number=3)
        assert Escalation.from_dict(escalation.to_dict()).issue_number == 3
