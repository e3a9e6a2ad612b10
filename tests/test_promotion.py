"""
Tests for Memory Promotion
==========================

Tests for memory/promotion.py - staging, validation, promotion.
"""

import json
from unittest.mock import patch

import pytest

from loopwarden.history import IterationAnalysis, IterationRecord, IterationStatus, LoopHistory
from loopwarden.memory.promotion import MemoryPromotion, StagedLearning, StagedStatus
from loopwarden.memory.semantic import Learning


def strategy(confidence=0.6, success_rate=0.55):
    return Learning(
        type="strategy",
        task_type="bug-fix",
        content={"description": "Reproduce before fixing"},
        confidence=confidence,
        success_rate=success_rate,
        source_loops=["loop-1"],
    )


def antipattern(confidence=0.7, success_rate=0.4):
    return Learning(
        type="antipattern",
        task_type="bug-fix",
        content={"description": "Avoid: editing generated files"},
        confidence=confidence,
        success_rate=success_rate,
        source_loops=["loop-1"],
    )


@pytest.fixture
def promotion(temp_dir):
    return MemoryPromotion(temp_dir / "knowledge")


# =============================================================================
# Validation rules
# =============================================================================

class TestValidate:
    """Tests for validate()."""

    def test_valid_strategy(self, promotion):
        assert promotion.validate(strategy()).valid

    @pytest.mark.parametrize("changes,reason", [
        ({"type": ""}, "Missing required fields"),
        ({"content": {}}, "Missing required fields"),
        ({"type": "rumour"}, "Invalid type: rumour"),
        ({"confidence": 1.5}, "confidence must be between 0 and 1"),
        ({"confidence": "high"}, "confidence must be between 0 and 1"),
        ({"successRate": -0.1}, "successRate must be between 0 and 1"),
        ({"confidence": 0.2}, "Confidence too low"),
        ({"successRate": 0.4}, "Strategies must have successRate >= 0.5"),
    ])
    def test_rejections(self, promotion, changes, reason):
        data = strategy().to_dict()
        data.update(changes)
        result = promotion.validate(data)
        assert not result.valid
        assert reason in result.reason

    def test_bool_is_not_a_rate(self, promotion):
        data = strategy().to_dict()
        data["successRate"] = True
        assert not promotion.validate(data).valid

    def test_antipattern_success_rate_ceiling(self, promotion):
        result = promotion.validate(antipattern(success_rate=0.4))
        assert not result.valid
        assert "successRate" in result.reason
        assert promotion.validate(antipattern(success_rate=0.2)).valid


# =============================================================================
# Staging and promotion
# =============================================================================

class TestPromote:
    """Tests for the stage -> validate -> promote flow."""

    def test_scenario_one_promoted_one_rejected(self, promotion):
        promotion.stage([strategy(), antipattern()])

        result = promotion.promote()

        assert result == {"promoted": 1, "skipped": 0}
        stored = promotion.semantic_memory.query()
        assert len(stored) == 1
        assert stored[0].type == "strategy"
        assert stored[0].source_loops == ["loop-1"]

        remaining = promotion.load_staging()
        assert len(remaining) == 1
        assert remaining[0].status == StagedStatus.REJECTED.value
        assert "successRate" in remaining[0].rejection_reason

    def test_keep_staging(self, promotion):
        promotion.stage([strategy()])
        promotion.promote(clear_after=False)
        assert promotion.get_staging_stats() == {"total": 1, "pending": 0, "validated": 1, "rejected": 0}

    def test_status_never_moves_back(self, promotion):
        promotion.stage([antipattern()])
        promotion.validate_staged()
        assert promotion.validate_staged() == {"validated": 0, "rejected": 0}

    def test_store_failure_is_skipped(self, promotion):
        promotion.stage([strategy(), strategy(confidence=0.9)])

        with patch.object(promotion.semantic_memory, "store", side_effect=[OSError("disk full"), None]):
            result = promotion.promote()

        assert result == {"promoted": 1, "skipped": 1}
        assert len(promotion.load_staging()) == 1

    def test_staged_ids_are_unique(self, promotion):
        promotion.stage([strategy(), strategy(), strategy()])
        ids = [s.id for s in promotion.load_staging()]
        assert len(set(ids)) == 3
        assert all(i.startswith("stage-") for i in ids)

    def test_separate_stage_calls_keep_skipped_entry(self, promotion):
        with patch("time.time", return_value=1000.0):
            promotion.stage([strategy()])
            promotion.stage([strategy(confidence=0.9)])

        ids = [s.id for s in promotion.load_staging()]
        assert len(set(ids)) == 2

        with patch.object(promotion.semantic_memory, "store", side_effect=[None, OSError("disk full")]):
            result = promotion.promote()

        assert result == {"promoted": 1, "skipped": 1}
        remaining = promotion.load_staging()
        assert [s.id for s in remaining] == [ids[1]]
        assert remaining[0].status == StagedStatus.VALIDATED.value

    def test_stage_accepts_dicts(self, promotion):
        assert promotion.stage([strategy().to_dict()]) == 1

    def test_staged_learning_round_trip(self):
        staged = StagedLearning(id="stage-1-0", learning={"type": "strategy"}, staged_at="t",
                                status="rejected", rejection_reason="nope")
        assert StagedLearning.from_dict(staged.to_dict()) == staged


class TestPipeline:
    """Tests for process_pipeline()."""

    def test_full_pipeline(self, promotion):
        loop = LoopHistory(
            loop_id="loop-3",
            objective="Fix crash in importer",
            iterations=[
                IterationRecord(
                    number=i,
                    status=IterationStatus.COMPLETED,
                    duration=45,
                    analysis=IterationAnalysis(
                        learnings=("Went step by step through the importer",),
                        artifacts_modified=("src/importer.py",),
                    ),
                )
                for i in range(1, 4)
            ],
        )

        result = promotion.process_pipeline(loop)

        assert result["extracted"] == result["validated"] + result["rejected"]
        assert result["promoted"] == result["validated"]
        strategies = promotion.semantic_memory.query(type="strategy")
        assert strategies[0].content["description"] == "Incremental implementation"
        assert strategies[0].task_type == "bug-fix"


# =============================================================================
# Staging file integrity
# =============================================================================

class TestStagingFile:
    """Tests for checksum handling of the staging area."""

    def test_checksum_mismatch_reinitialises(self, promotion):
        promotion.stage([strategy()])
        data = json.loads(promotion.staging_path.read_text(encoding="utf-8"))
        data["staged"][0]["status"] = "validated"
        promotion.staging_path.write_text(json.dumps(data), encoding="utf-8")

        assert promotion.load_staging() == []
        assert promotion.get_staging_stats()["total"] == 0

    def test_unparseable_file_reinitialises(self, promotion):
        promotion.staging_path.write_text("not json", encoding="utf-8")
        assert promotion.load_staging() == []

    def test_clear_staging(self, promotion):
        promotion.stage([strategy()])
        promotion.clear_staging()
        assert promotion.load_staging() == []
