"""
Tests for Overseer
==================

Tests for overseer.py - per-iteration health checks and the audit log.
"""

import json
from unittest.mock import MagicMock

import pytest

from loopwarden.config import EscalationConfig, OverseerConfig
from loopwarden.escalation import EscalationHandler
from loopwarden.history import IterationAnalysis, IterationRecord
from loopwarden.overseer import HealthCheck, HealthStatus, Overseer, log_path_for


def stuck_record(number, error="ENOENT: config.json"):
    return IterationRecord(
        number=number,
        analysis=IterationAnalysis(completion_percentage=40, errors=(error,)),
    )


def healthy_record(number):
    return IterationRecord(
        number=number,
        analysis=IterationAnalysis(completion_percentage=number * 15, tests_passing=True),
    )


@pytest.fixture
def config(temp_dir):
    return OverseerConfig(
        storage_path=str(temp_dir / "overseer"),
        knowledge_dir=str(temp_dir / "knowledge"),
        escalation=EscalationConfig(enable_notifications=False),
    )


@pytest.fixture
def overseer(config):
    return Overseer("loop-1", "Fix config loading", config=config, max_iterations=10)


# =============================================================================
# check()
# =============================================================================

class TestCheck:
    """Tests for the per-iteration health check."""

    def test_healthy_iteration(self, overseer):
        health = overseer.check(healthy_record(1))
        assert health.status == HealthStatus.HEALTHY.value
        assert health.detections == []
        assert health.iteration_number == 1

    def test_stuck_loop_is_redirected(self, overseer):
        """Five identical errors: high stuck detection, redirect, warning status."""
        for i in range(1, 6):
            health = overseer.check(stuck_record(i))

        assert [d.type for d in health.detections] == ["stuck"]
        assert health.detections[0].severity == "high"
        assert health.interventions[0].level == "redirect"
        assert health.status == HealthStatus.WARNING.value
        assert not overseer.interventions.is_paused

    def test_persistent_stuck_pauses_and_escalates(self, config):
        handler = MagicMock(spec=EscalationHandler)
        handler.get_log.return_value = []
        paused = []
        overseer = Overseer("loop-2", "Fix config loading", config=config,
                            max_iterations=10, escalation_handler=handler)
        overseer.interventions.on_intervention = lambda i: paused.append(i.level)

        for i in range(1, 7):
            health = overseer.check(stuck_record(i))

        assert health.status == HealthStatus.PAUSED.value
        assert "pause" in paused
        level, context = handler.escalate.call_args.args
        assert level == "critical"
        assert context.loop_id == "loop-2"
        assert context.iteration_number == 6

    def test_auto_escalate_off(self, config):
        handler = MagicMock(spec=EscalationHandler)
        handler.get_log.return_value = []
        overseer = Overseer("loop-3", "task", config=config, max_iterations=10,
                            auto_escalate=False, escalation_handler=handler)

        for i in range(1, 7):
            overseer.check(stuck_record(i))

        handler.escalate.assert_not_called()

    def test_regression_aborts(self, overseer):
        for i in range(1, 6):
            overseer.check(IterationRecord(
                number=i,
                analysis=IterationAnalysis(completion_percentage=i * 10, tests_passing=True, coverage_percent=82),
            ))
        health = overseer.check(IterationRecord(
            number=6,
            analysis=IterationAnalysis(completion_percentage=60, tests_passing=False, coverage_percent=68),
        ))

        assert health.status == HealthStatus.ABORTED.value
        assert health.interventions[0].level == "abort"
        escalation = overseer.get_escalation_log()[-1]
        assert escalation.level == "emergency"

    def test_accepts_driver_dict(self, overseer):
        health = overseer.check({"number": 1, "status": "completed", "analysis": {"completionPercentage": 20}})
        assert health.iteration_number == 1

    def test_strategy_attached_when_metrics_given(self, overseer):
        health = overseer.check(healthy_record(1), strategy_metrics={"trend": "improving"})
        assert health.strategy is not None
        assert health.strategy.approach == "persist"

    def test_health_check_callback(self, config):
        seen = []
        overseer = Overseer("loop-4", "task", config=config, on_health_check=seen.append)
        health = overseer.check(healthy_record(1))
        assert seen == [health]

    def test_metrics_include_current_check(self, overseer):
        health = overseer.check(healthy_record(1))
        assert health.metrics["totalHealthChecks"] == 1


# =============================================================================
# Pause / resume
# =============================================================================

class TestResume:
    """Tests for resuming a paused loop."""

    def test_resume_not_paused(self, overseer):
        overseer.check(healthy_record(1))
        assert overseer.resume("go on") is False
        assert overseer.get_intervention_log() == []

    def test_resume_paused(self, overseer):
        for i in range(1, 7):
            overseer.check(stuck_record(i))
        assert overseer.current_status == "paused"

        assert overseer.resume("Operator fixed config.json") is True

        assert overseer.current_status == "healthy"
        assert overseer.get_intervention_log()[-1].level == "resume"


# =============================================================================
# Persistence
# =============================================================================

class TestPersistence:
    """Tests for the audit log."""

    def test_log_written_every_check(self, overseer, config):
        overseer.check(healthy_record(1))
        path = log_path_for("loop-1", config.storage_path)

        data = json.loads(path.read_text(encoding="utf-8"))

        assert data["loopId"] == "loop-1"
        assert data["taskDescription"] == "Fix config loading"
        assert len(data["healthCheckLog"]) == 1
        for key in ("interventionLog", "escalationLog", "metrics", "lastUpdated"):
            assert key in data

    def test_load_missing_log(self, config):
        with pytest.raises(FileNotFoundError):
            Overseer.load("nope", config.storage_path, config=config)

    def test_load_restores_pause(self, overseer, config):
        for i in range(1, 7):
            overseer.check(stuck_record(i))

        restored = Overseer.load("loop-1", config.storage_path, config=config)

        assert restored.interventions.is_paused
        assert restored.current_status == "paused"
        assert len(restored.get_log()) == 6
        assert len(restored.iteration_history) == 6
        assert restored.max_iterations == 10
        assert restored.resume("approved") is True

    def test_export_import_state(self, overseer, config):
        overseer.check(healthy_record(1))
        overseer.check(healthy_record(2))
        state = overseer.export_state()

        other = Overseer("other", "", config=config)
        other.import_state(state)

        assert other.loop_id == "loop-1"
        assert len(other.get_log()) == 2
        assert len(other.iteration_history) == 2

    def test_health_check_round_trip(self, overseer):
        for i in range(1, 6):
            health = overseer.check(stuck_record(i))
        restored = HealthCheck.from_dict(health.to_dict())
        assert restored.to_dict() == health.to_dict()


# =============================================================================
# Reporting
# =============================================================================

class TestReport:
    """Tests for health summaries and the markdown report."""

    def test_get_health(self, overseer):
        overseer.check(healthy_record(1))
        health = overseer.get_health()
        assert health["status"] == "healthy"
        assert health["totalIterations"] == 1
        assert health["isPaused"] is False

    def test_report_sections(self, overseer):
        for i in range(1, 6):
            overseer.check(stuck_record(i))

        report = overseer.generate_report()

        assert report.startswith("# Overseer Report: loop-1")
        assert "## Health Summary" in report
        assert "## Detections" in report
        assert "| stuck | 3 |" in report
        assert "## Recent Health Checks" in report
        assert report.count("### Iteration") == 5
