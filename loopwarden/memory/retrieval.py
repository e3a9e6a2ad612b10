"""
Memory Retrieval
================

Pulls the learnings relevant to a new loop out of semantic memory and
renders them as a markdown block for the provider prompt.

Usage:
    from loopwarden.memory.retrieval import MemoryRetrieval, RetrievalContext

    retrieval = MemoryRetrieval(".loopwarden/knowledge")
    knowledge = retrieval.get_relevant_knowledge(
        RetrievalContext(objective="Fix failing pytest suite", error_patterns=["timeout"])
    )
    prompt = knowledge.summary + "\\n\\n" + prompt
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from loopwarden.config import DEFAULT_KNOWLEDGE_DIR
from loopwarden.memory.extractor import detect_task_type
from loopwarden.memory.semantic import Learning, LearningType, SemanticMemory

RECENCY_WINDOW_DAYS = 90
ERROR_MATCH_BOOST = 0.3


@dataclass
class RetrievalContext:
    """What the upcoming loop is about."""
    objective: str = ""
    task_type: Optional[str] = None
    file_patterns: list[str] = field(default_factory=list)
    error_patterns: list[str] = field(default_factory=list)
    iteration: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> "RetrievalContext":
        return cls(
            objective=data.get("objective", "") or "",
            task_type=data.get("task_type", data.get("taskType")),
            file_patterns=list(data.get("file_patterns", data.get("filePatterns")) or []),
            error_patterns=list(data.get("error_patterns", data.get("errorPatterns")) or []),
            iteration=data.get("iteration"),
        )


@dataclass
class RelevantKnowledge:
    strategies: list[Learning] = field(default_factory=list)
    antipatterns: list[Learning] = field(default_factory=list)
    estimates: list[Learning] = field(default_factory=list)
    conventions: list[Learning] = field(default_factory=list)
    summary: str = ""

    def to_dict(self) -> dict:
        return {
            "strategies": [l.to_dict() for l in self.strategies],
            "antipatterns": [l.to_dict() for l in self.antipatterns],
            "estimates": [l.to_dict() for l in self.estimates],
            "conventions": [l.to_dict() for l in self.conventions],
            "summary": self.summary,
        }


def _as_context(context: Union[RetrievalContext, dict]) -> RetrievalContext:
    if isinstance(context, RetrievalContext):
        return context
    return RetrievalContext.from_dict(context)


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MemoryRetrieval:
    """Read-side view over SemanticMemory for prompt building."""

    def __init__(
        self,
        knowledge_dir: Union[str, Path] = DEFAULT_KNOWLEDGE_DIR,
        semantic_memory: Optional[SemanticMemory] = None,
    ):
        self.semantic_memory = semantic_memory or SemanticMemory(knowledge_dir)

    def detect_task_type(self, objective: str) -> str:
        return detect_task_type(objective)

    def _task_type(self, context: RetrievalContext) -> str:
        return context.task_type or self.detect_task_type(context.objective)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_relevant_knowledge(self, context: Union[RetrievalContext, dict]) -> RelevantKnowledge:
        """Strategies, antipatterns, estimates, and conventions for a context."""
        context = _as_context(context)
        task_type = self._task_type(context)

        knowledge = RelevantKnowledge(
            strategies=self.semantic_memory.query(
                type=LearningType.STRATEGY.value,
                task_type=task_type,
                min_confidence=0.5,
                min_success_rate=0.6,
                limit=3,
            ),
            antipatterns=self.get_anti_patterns(context),
            estimates=self.semantic_memory.query(
                type=LearningType.ESTIMATE.value,
                task_type=task_type,
                min_confidence=0.4,
                limit=2,
            ),
            conventions=self.semantic_memory.query(
                type=LearningType.CONVENTION.value,
                min_confidence=0.5,
                limit=3,
            ),
        )
        knowledge.summary = self.format_summary(knowledge)
        return knowledge

    def get_anti_patterns(self, context: Union[RetrievalContext, dict]) -> list[Learning]:
        """
        Antipatterns for the task type, boosted when their description
        contains one of the context's error patterns.
        """
        context = _as_context(context)
        antipatterns = self.semantic_memory.query(
            type=LearningType.ANTIPATTERN.value,
            task_type=self._task_type(context),
            min_confidence=0.4,
        )

        if context.error_patterns:
            def score(learning: Learning) -> float:
                description = str(learning.content.get("description", "")).lower()
                matches = sum(1 for p in context.error_patterns if p.lower() in description)
                return learning.confidence + ERROR_MATCH_BOOST * matches

            antipatterns.sort(key=score, reverse=True)

        return antipatterns[:5]

    def get_file_conventions(self, file_patterns: Optional[list[str]] = None) -> list[Learning]:
        conventions = self.semantic_memory.query(
            type=LearningType.CONVENTION.value,
            min_confidence=0.5,
            limit=5,
        )
        if not file_patterns:
            return conventions
        return [
            c for c in conventions
            if any(p in example for example in c.content.get("examples", []) for p in file_patterns)
        ]

    def get_estimate(self, task_type: str, complexity: str = "medium") -> Optional[Learning]:
        """Estimate matching the complexity, else the best-ranked one."""
        estimates = self.semantic_memory.query(
            type=LearningType.ESTIMATE.value,
            task_type=task_type,
            min_confidence=0.4,
            limit=5,
        )
        if not estimates:
            return None
        for estimate in estimates:
            if estimate.content.get("complexity") == complexity:
                return estimate
        return estimates[0]

    # =========================================================================
    # Ranking
    # =========================================================================

    def calculate_relevance(
        self,
        learning: Learning,
        context: Union[RetrievalContext, dict],
        now: Optional[datetime] = None,
    ) -> float:
        """
        Relevance in [0, 1]:

            confidence*0.4 + task match 0.3 + success_rate*0.2 + recency*0.1

        Recency decays linearly to zero over 90 days since the last update.
        """
        context = _as_context(context)
        score = learning.confidence * 0.4
        if learning.task_type == self._task_type(context):
            score += 0.3
        score += learning.success_rate * 0.2

        updated = _parse_timestamp(learning.updated_at)
        if updated is not None:
            now = now or datetime.now(timezone.utc)
            age_days = max((now - updated).total_seconds() / 86400, 0.0)
            score += max(0.0, (RECENCY_WINDOW_DAYS - age_days) / RECENCY_WINDOW_DAYS) * 0.1

        return min(max(score, 0.0), 1.0)

    def get_top_learnings(
        self,
        context: Union[RetrievalContext, dict],
        limit: int = 10,
    ) -> list[tuple[Learning, float]]:
        """All learnings ranked by relevance, as (learning, relevance) pairs."""
        context = _as_context(context)
        now = datetime.now(timezone.utc)
        scored = [
            (learning, self.calculate_relevance(learning, context, now=now))
            for learning in (Learning.from_dict(item) for item in self.semantic_memory.load()["learnings"])
        ]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit]

    # =========================================================================
    # Rendering
    # =========================================================================

    def format_summary(self, knowledge: RelevantKnowledge) -> str:
        """Markdown block for prompt injection."""
        lines: list[str] = []

        if knowledge.strategies:
            lines.append("## Proven Strategies")
            lines.append("")
            for strategy in knowledge.strategies:
                effectiveness = float(strategy.content.get("effectiveness", strategy.success_rate))
                lines.append(
                    f"- {strategy.content.get('description', '')} "
                    f"(effectiveness: {effectiveness * 100:.0f}%)"
                )

        if knowledge.antipatterns:
            if lines:
                lines.append("")
            lines.append("## Anti-Patterns to Avoid")
            lines.append("")
            for antipattern in knowledge.antipatterns:
                lines.append(f"- {antipattern.content.get('description', '')}")

        if knowledge.estimates:
            if lines:
                lines.append("")
            lines.append("## Time/Iteration Estimates")
            lines.append("")
            for estimate in knowledge.estimates:
                avg_time = round(float(estimate.content.get("avgIterationTime", 0)))
                lines.append(
                    f"- Similar tasks: ~{estimate.content.get('totalIterations', '?')} iterations, "
                    f"~{avg_time}s per iteration"
                )

        if knowledge.conventions:
            if lines:
                lines.append("")
            lines.append("## Project Conventions")
            lines.append("")
            for convention in knowledge.conventions:
                lines.append(f"- {convention.content.get('pattern', '')}")
                examples = convention.content.get("examples") or []
                if examples:
                    lines.append(f"  Examples: {', '.join(examples)}")

        if not lines:
            return "## Knowledge Base\n\nNo relevant learnings found for this task type.\n"

        return "## Knowledge Base (from previous loops)\n\n" + "\n".join(lines) + "\n"


def create_memory_retrieval(knowledge_dir: Union[str, Path] = DEFAULT_KNOWLEDGE_DIR) -> MemoryRetrieval:
    return MemoryRetrieval(knowledge_dir)
