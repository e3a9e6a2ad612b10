"""
Memory Promotion
================

Moves learnings from a finished loop into semantic memory.

Pipeline: extract -> stage (pending) -> validate -> promote -> SemanticMemory

The staging area is ``<knowledge_dir>/staging.json``:

    {version, checksum, lastUpdated, staged[]}

Each staged entry moves pending -> validated or pending -> rejected, never
back. Staging is a scratch area: a file that fails its checksum is logged and
replaced with an empty one rather than raising.

Usage:
    from loopwarden.memory.promotion import MemoryPromotion

    promotion = MemoryPromotion(".loopwarden/knowledge")
    result = promotion.process_pipeline(loop_history)
    print(f"promoted {result['promoted']}, rejected {result['rejected']}")
"""

import logging
import numbers
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Union

from loopwarden.config import DEFAULT_KNOWLEDGE_DIR
from loopwarden.history import LoopHistory
from loopwarden.memory.extractor import LearningExtractor
from loopwarden.memory.semantic import LEARNING_TYPES, Learning, SemanticMemory
from loopwarden.memory.storage import compute_checksum, read_json, write_json_atomic
from loopwarden.output import print_error, print_warning

logger = logging.getLogger(__name__)

STAGING_VERSION = "1.0.0"
STAGING_FILENAME = "staging.json"
MIN_CONFIDENCE = 0.3
ANTIPATTERN_MAX_SUCCESS_RATE = 0.2
STRATEGY_MIN_SUCCESS_RATE = 0.5


class StagedStatus(Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ValidationResult:
    valid: bool
    reason: Optional[str] = None


@dataclass
class StagedLearning:
    """A candidate learning waiting for validation and promotion."""
    id: str
    learning: dict                  # Learning.to_dict() form
    status: str = StagedStatus.PENDING.value
    staged_at: str = ""
    validated_at: Optional[str] = None
    rejection_reason: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "learning": self.learning,
            "status": self.status,
            "stagedAt": self.staged_at,
        }
        if self.validated_at is not None:
            data["validatedAt"] = self.validated_at
        if self.rejection_reason is not None:
            data["rejectionReason"] = self.rejection_reason
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "StagedLearning":
        return cls(
            id=data["id"],
            learning=data.get("learning", {}) or {},
            status=data.get("status", StagedStatus.PENDING.value),
            staged_at=data.get("stagedAt", ""),
            validated_at=data.get("validatedAt"),
            rejection_reason=data.get("rejectionReason"),
        )


def _as_rate(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None
    return float(value)


class MemoryPromotion:
    """Stages, validates, and promotes learnings into SemanticMemory."""

    def __init__(
        self,
        knowledge_dir: Union[str, Path] = DEFAULT_KNOWLEDGE_DIR,
        semantic_memory: Optional[SemanticMemory] = None,
        extractor: Optional[LearningExtractor] = None,
    ):
        self.knowledge_dir = Path(knowledge_dir)
        self.staging_path = self.knowledge_dir / STAGING_FILENAME
        self.semantic_memory = semantic_memory or SemanticMemory(self.knowledge_dir)
        self.extractor = extractor or LearningExtractor()
        self.knowledge_dir.mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # Staging file
    # =========================================================================

    def load_staging(self) -> list[StagedLearning]:
        """Load staged entries; a missing or bad file yields an empty area."""
        if not self.staging_path.exists():
            return self._initialize_staging()

        try:
            data = read_json(self.staging_path)
            staged = data["staged"]
        except (OSError, ValueError, KeyError, TypeError) as e:
            print_error(f"Failed to load staging area: {e}")
            return self._initialize_staging()

        if data.get("checksum") != compute_checksum(staged):
            print_warning("Staging checksum mismatch - reinitializing")
            return self._initialize_staging()

        return [StagedLearning.from_dict(item) for item in staged]

    def save_staging(self, staged: list[StagedLearning]) -> None:
        items = [s.to_dict() for s in staged]
        write_json_atomic(self.staging_path, {
            "version": STAGING_VERSION,
            "checksum": compute_checksum(items),
            "lastUpdated": _now(),
            "staged": items,
        })

    def _initialize_staging(self) -> list[StagedLearning]:
        self.save_staging([])
        return []

    # =========================================================================
    # Pipeline stages
    # =========================================================================

    def extract(self, loop_history: Union[LoopHistory, dict]) -> dict:
        """Extract learnings from a loop and stage them as pending."""
        learnings = self.extractor.extract_from_loop(loop_history)
        staged_count = self.stage(learnings)
        return {"extracted": len(learnings), "staged": staged_count}

    def stage(self, learnings: Iterable[Union[Learning, dict]]) -> int:
        """Append learnings to the staging area as pending; returns the count."""
        staged = self.load_staging()
        count = 0
        for learning in learnings:
            data = learning.to_dict() if isinstance(learning, Learning) else dict(learning)
            staged.append(StagedLearning(
                id=f"stage-{uuid.uuid4().hex}",
                learning=data,
                staged_at=_now(),
            ))
            count += 1
        self.save_staging(staged)
        return count

    def validate(self, learning: Union[Learning, dict]) -> ValidationResult:
        """Structural and domain checks for one learning."""
        data = learning.to_dict() if isinstance(learning, Learning) else learning

        if not data.get("type") or not data.get("taskType") or not data.get("content"):
            return ValidationResult(False, "Missing required fields (type, taskType, content)")

        if data["type"] not in LEARNING_TYPES:
            return ValidationResult(False, f"Invalid type: {data['type']}")

        confidence = _as_rate(data.get("confidence"))
        if confidence is None or not 0 <= confidence <= 1:
            return ValidationResult(False, "confidence must be between 0 and 1")

        success_rate = _as_rate(data.get("successRate"))
        if success_rate is None or not 0 <= success_rate <= 1:
            return ValidationResult(False, "successRate must be between 0 and 1")

        if confidence < MIN_CONFIDENCE:
            return ValidationResult(False, f"Confidence too low (< {MIN_CONFIDENCE})")

        if data["type"] == "antipattern" and success_rate > ANTIPATTERN_MAX_SUCCESS_RATE:
            return ValidationResult(
                False,
                f"Anti-patterns must have successRate <= {ANTIPATTERN_MAX_SUCCESS_RATE} (got {success_rate})",
            )

        if data["type"] == "strategy" and success_rate < STRATEGY_MIN_SUCCESS_RATE:
            return ValidationResult(
                False,
                f"Strategies must have successRate >= {STRATEGY_MIN_SUCCESS_RATE} (got {success_rate})",
            )

        return ValidationResult(True)

    def validate_staged(self) -> dict:
        """Validate every pending entry; returns {validated, rejected} counts."""
        staged = self.load_staging()
        validated = rejected = 0

        for entry in staged:
            if entry.status != StagedStatus.PENDING.value:
                continue
            result = self.validate(entry.learning)
            if result.valid:
                entry.status = StagedStatus.VALIDATED.value
                entry.validated_at = _now()
                validated += 1
            else:
                entry.status = StagedStatus.REJECTED.value
                entry.rejection_reason = result.reason
                rejected += 1

        self.save_staging(staged)
        return {"validated": validated, "rejected": rejected}

    def promote(self, auto_validate: bool = True, clear_after: bool = True) -> dict:
        """
        Store every validated entry in semantic memory.

        A failure storing one entry is counted as skipped and leaves that
        entry in staging; the rest still promote.

        Returns:
            {"promoted": n, "skipped": n}
        """
        if auto_validate:
            self.validate_staged()

        staged = self.load_staging()
        promoted_ids = set()
        skipped = 0

        for entry in staged:
            if entry.status != StagedStatus.VALIDATED.value:
                continue
            learning = entry.learning
            try:
                self.semantic_memory.store(
                    learning["type"],
                    learning["taskType"],
                    learning["content"],
                    confidence=learning.get("confidence"),
                    success_rate=learning.get("successRate"),
                    source_loops=learning.get("sourceLoops"),
                )
                promoted_ids.add(entry.id)
            except Exception as e:
                print_error(f"Failed to promote learning {entry.id}: {e}")
                skipped += 1

        if clear_after and promoted_ids:
            self.save_staging([s for s in staged if s.id not in promoted_ids])

        logger.info("Promoted %d learning(s), skipped %d", len(promoted_ids), skipped)
        return {"promoted": len(promoted_ids), "skipped": skipped}

    def process_pipeline(
        self,
        loop_history: Union[LoopHistory, dict],
        clear_after: bool = True,
    ) -> dict:
        """Extract, validate, and promote in one call."""
        extracted = self.extract(loop_history)
        validation = self.validate_staged()
        promotion = self.promote(auto_validate=False, clear_after=clear_after)
        return {
            "extracted": extracted["extracted"],
            "validated": validation["validated"],
            "rejected": validation["rejected"],
            "promoted": promotion["promoted"],
            "skipped": promotion["skipped"],
        }

    # =========================================================================
    # Inspection
    # =========================================================================

    def get_staging_stats(self) -> dict:
        staged = self.load_staging()
        stats = {"total": len(staged), "pending": 0, "validated": 0, "rejected": 0}
        for entry in staged:
            if entry.status in stats:
                stats[entry.status] += 1
        return stats

    def clear_staging(self) -> None:
        self.save_staging([])
