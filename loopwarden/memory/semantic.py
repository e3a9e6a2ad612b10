"""
Semantic Memory
===============

Durable cross-loop knowledge store (L3 memory).

Learnings are kept in a single JSON file, ``<knowledge_dir>/loop-learnings.json``:

    {version, checksum, lastUpdated, learnings[], stats}

``checksum`` is the SHA-256 of the compact JSON of ``learnings`` and is
verified on every load. A mismatched or unreadable store is recovered from
the ``.bak`` sibling when that backup verifies; otherwise CorruptionError is
raised. Saves copy the current file to ``.bak`` and then write via temp file
and rename.

Limitation: there is no cross-process lock. Two loops promoting into the
same knowledge directory at the same time can lose each other's updates.

Usage:
    from loopwarden.memory.semantic import SemanticMemory

    memory = SemanticMemory(".loopwarden/knowledge")
    learning = memory.store("strategy", "bug-fix", {"description": "Reproduce first"},
                            confidence=0.7, success_rate=0.8)
    for item in memory.query(type="strategy", min_confidence=0.5, limit=3):
        print(item.content["description"])
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from loopwarden.config import DEFAULT_KNOWLEDGE_DIR
from loopwarden.memory.storage import (
    CorruptionError,
    backup_file,
    compute_checksum,
    read_json,
    write_json_atomic,
)
from loopwarden.output import print_warning

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"
STORE_FILENAME = "loop-learnings.json"


class LearningType(Enum):
    STRATEGY = "strategy"
    ANTIPATTERN = "antipattern"
    ESTIMATE = "estimate"
    CONVENTION = "convention"


LEARNING_TYPES = tuple(t.value for t in LearningType)

IMMUTABLE_FIELDS = ("id", "created_at", "source_loops")

# Learning attribute name -> on-disk key
_FIELD_KEYS = {
    "id": "id",
    "type": "type",
    "task_type": "taskType",
    "content": "content",
    "confidence": "confidence",
    "source_loops": "sourceLoops",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "use_count": "useCount",
    "success_rate": "successRate",
}
_KEY_FIELDS = {v: k for k, v in _FIELD_KEYS.items()}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_learning_id() -> str:
    return f"learn-{uuid.uuid4().hex[:8]}"


@dataclass
class Learning:
    """
    One piece of cross-loop knowledge.

    Extracted candidates have an empty ``id`` until SemanticMemory.store()
    assigns one.
    """
    type: str                       # LearningType value
    task_type: str
    content: dict
    confidence: float = 0.5
    success_rate: float = 0.0
    source_loops: list[str] = field(default_factory=list)
    id: str = ""
    use_count: int = 0
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {key: getattr(self, attr) for attr, key in _FIELD_KEYS.items()}

    @classmethod
    def from_dict(cls, data: dict) -> "Learning":
        return cls(
            type=data.get("type", ""),
            task_type=data.get("taskType", ""),
            content=data.get("content") or {},
            confidence=data.get("confidence", 0.5),
            success_rate=data.get("successRate", 0.0),
            source_loops=list(data.get("sourceLoops") or []),
            id=data.get("id", ""),
            use_count=int(data.get("useCount", 0) or 0),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )


def query_score(learning: Learning) -> float:
    """Ranking weight used by query(): confidence x effectiveness x usage."""
    return learning.confidence * max(learning.success_rate, 0.5) * math.log10(learning.use_count + 1)


def _empty_stats() -> dict:
    return {
        "totalLearnings": 0,
        "byType": {t: 0 for t in LEARNING_TYPES},
        "byTaskType": {},
    }


class SemanticMemory:
    """Checksummed JSON store of learnings with backup recovery."""

    def __init__(self, knowledge_dir: Union[str, Path] = DEFAULT_KNOWLEDGE_DIR):
        self.knowledge_dir = Path(knowledge_dir)
        self.store_path = self.knowledge_dir / STORE_FILENAME
        self.backup_path = self.store_path.with_name(STORE_FILENAME + ".bak")
        self.knowledge_dir.mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # Load / save
    # =========================================================================

    def load(self) -> dict:
        """
        Load and verify the store, initialising it if missing.

        Raises:
            CorruptionError: If the store fails verification and the backup
                cannot be used either
        """
        if not self.store_path.exists():
            return self.initialize_store()

        problem = self._verify_file(self.store_path)
        if problem is None:
            return read_json(self.store_path)

        logger.warning("Semantic memory failed verification (%s), trying backup", problem)
        if self.backup_path.exists():
            backup_problem = self._verify_file(self.backup_path)
            if backup_problem is None:
                store = read_json(self.backup_path)
                print_warning("Knowledge store recovered from backup after checksum mismatch")
                self.save(store, backup=False)
                return store
            logger.error("Backup also failed verification: %s", backup_problem)

        raise CorruptionError(
            f"Knowledge store corrupted and backup recovery failed: {problem}",
            self.store_path,
        )

    @staticmethod
    def _verify_file(path: Path) -> Optional[str]:
        """Return None when the file is a valid store, else the problem."""
        try:
            store = read_json(path)
        except (OSError, ValueError) as e:
            return f"unreadable store: {e}"
        if not isinstance(store, dict) or not isinstance(store.get("learnings"), list):
            return "malformed store"
        if store.get("checksum") != compute_checksum(store["learnings"]):
            return "Checksum mismatch - data may be corrupted"
        return None

    def initialize_store(self) -> dict:
        store = {
            "version": SCHEMA_VERSION,
            "checksum": compute_checksum([]),
            "lastUpdated": _now(),
            "learnings": [],
            "stats": _empty_stats(),
        }
        self.save(store)
        return store

    def save(self, store: dict, backup: bool = True) -> None:
        """Recompute stats and checksum, back up the old file, write atomically."""
        learnings = store.get("learnings", [])
        stats = _empty_stats()
        stats["totalLearnings"] = len(learnings)
        for item in learnings:
            stats["byType"][item.get("type")] = stats["byType"].get(item.get("type"), 0) + 1
            stats["byTaskType"][item.get("taskType")] = stats["byTaskType"].get(item.get("taskType"), 0) + 1

        store["version"] = store.get("version", SCHEMA_VERSION)
        store["stats"] = stats
        store["lastUpdated"] = _now()
        store["checksum"] = compute_checksum(learnings)

        if backup:
            backup_file(self.store_path, self.backup_path)

        write_json_atomic(self.store_path, store)

    # =========================================================================
    # CRUD
    # =========================================================================

    def store(
        self,
        type: str,
        task_type: str,
        content: dict,
        confidence: Optional[float] = None,
        success_rate: Optional[float] = None,
        source_loops: Optional[list[str]] = None,
    ) -> Learning:
        """Add a new learning and return it with its assigned id."""
        store = self.load()
        now = _now()
        learning = Learning(
            id=new_learning_id(),
            type=type,
            task_type=task_type,
            content=content,
            confidence=0.5 if confidence is None else confidence,
            success_rate=0.0 if success_rate is None else success_rate,
            source_loops=list(source_loops or []),
            use_count=0,
            created_at=now,
            updated_at=now,
        )
        store["learnings"].append(learning.to_dict())
        self.save(store)
        logger.debug("Stored %s learning %s for %s", type, learning.id, task_type)
        return learning

    def retrieve(self, learning_id: str) -> Optional[Learning]:
        """Fetch a learning by id, counting the use."""
        store = self.load()
        for item in store["learnings"]:
            if item.get("id") == learning_id:
                item["useCount"] = int(item.get("useCount", 0)) + 1
                item["updatedAt"] = _now()
                self.save(store)
                return Learning.from_dict(item)
        return None

    def query(
        self,
        type: Optional[str] = None,
        task_type: Optional[str] = None,
        min_confidence: Optional[float] = None,
        min_success_rate: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[Learning]:
        """Filter learnings, ranked by query_score (ties keep store order)."""
        results = [Learning.from_dict(item) for item in self.load()["learnings"]]

        if type:
            results = [l for l in results if l.type == type]
        if task_type:
            results = [l for l in results if l.task_type == task_type]
        if min_confidence is not None:
            results = [l for l in results if l.confidence >= min_confidence]
        if min_success_rate is not None:
            results = [l for l in results if l.success_rate >= min_success_rate]

        results.sort(key=query_score, reverse=True)
        return results[:limit] if limit else results

    def update(self, learning_id: str, updates: dict[str, Any]) -> Optional[Learning]:
        """
        Apply field updates to a learning.

        Keys may be attribute names (``success_rate``) or on-disk keys
        (``successRate``). id, created_at and source_loops are never changed.
        """
        store = self.load()
        for item in store["learnings"]:
            if item.get("id") != learning_id:
                continue
            for key, value in updates.items():
                attr = _KEY_FIELDS.get(key, key)
                if attr in IMMUTABLE_FIELDS:
                    continue
                if attr not in _FIELD_KEYS:
                    print_warning(f"Ignoring unknown learning field: {key}")
                    continue
                item[_FIELD_KEYS[attr]] = value
            item["updatedAt"] = _now()
            self.save(store)
            return Learning.from_dict(item)
        return None

    def delete(self, learning_id: str) -> bool:
        store = self.load()
        remaining = [item for item in store["learnings"] if item.get("id") != learning_id]
        if len(remaining) == len(store["learnings"]):
            return False
        store["learnings"] = remaining
        self.save(store)
        return True

    # =========================================================================
    # Inspection
    # =========================================================================

    def get_stats(self) -> dict:
        store = self.load()
        learnings = [Learning.from_dict(item) for item in store["learnings"]]
        count = len(learnings) or 1
        most_used = max(learnings, key=lambda l: l.use_count, default=None)
        return {
            **store["stats"],
            "totalSize": len(learnings),
            "lastUpdated": store.get("lastUpdated"),
            "averageConfidence": sum(l.confidence for l in learnings) / count,
            "averageSuccessRate": sum(l.success_rate for l in learnings) / count,
            "mostUsedLearning": most_used.to_dict() if most_used and most_used.use_count > 0 else None,
        }

    def verify(self) -> dict:
        """{"valid": True} or {"valid": False, "error": ...}; never raises."""
        try:
            store = self.load()
        except CorruptionError as e:
            return {"valid": False, "error": str(e)}
        if store.get("checksum") != compute_checksum(store["learnings"]):
            return {"valid": False, "error": "Checksum mismatch - data may be corrupted"}
        return {"valid": True}

    def clear(self) -> None:
        """Remove every learning."""
        self.initialize_store()
