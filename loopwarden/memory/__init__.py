"""
Memory Module - Cross-Loop Learning Pipeline
============================================

Learnings flow from a finished loop into a durable knowledge store:

1. **Extract** - LearningExtractor mines the loop history
2. **Stage** - MemoryPromotion holds candidates in staging.json
3. **Promote** - validated candidates move into SemanticMemory
4. **Retrieve** - MemoryRetrieval renders relevant learnings for the next prompt

Usage:
    from loopwarden.memory import MemoryPromotion, MemoryRetrieval

    MemoryPromotion(knowledge_dir).process_pipeline(loop_history)

    knowledge = MemoryRetrieval(knowledge_dir).get_relevant_knowledge(
        {"objective": "Fix the failing login tests"}
    )
    print(knowledge.summary)
"""

from loopwarden.memory.extractor import LearningExtractor, detect_task_type
from loopwarden.memory.promotion import (
    MemoryPromotion,
    StagedLearning,
    StagedStatus,
    ValidationResult,
)
from loopwarden.memory.retrieval import (
    MemoryRetrieval,
    RelevantKnowledge,
    RetrievalContext,
    create_memory_retrieval,
)
from loopwarden.memory.semantic import Learning, LearningType, SemanticMemory
from loopwarden.memory.storage import CorruptionError

__all__ = [
    "LearningExtractor",
    "detect_task_type",
    "MemoryPromotion",
    "StagedLearning",
    "StagedStatus",
    "ValidationResult",
    "MemoryRetrieval",
    "RelevantKnowledge",
    "RetrievalContext",
    "create_memory_retrieval",
    "Learning",
    "LearningType",
    "SemanticMemory",
    "CorruptionError",
]
