"""Importance scoring and rule-based classification of memories.

Every public method is total: internal failures are logged and answered
with a default so scoring can never abort ingestion or a sweep.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from deep_memory.core.logging import get_logger
from deep_memory.domain.models import (
    Category,
    Emotion,
    Memory,
    RelationStrength,
    RelationType,
    TemporalPattern,
    clamp_unit,
)
from deep_memory.domain.text import cosine_similarity, jaccard, split_sentences

logger = get_logger(__name__)

IMPORTANCE_KEYWORDS = (
    "重要", "关键", "决定", "计划", "目标", "问题", "解决",
    "important", "key", "decision", "plan", "goal", "problem",
)  # fmt: skip

TYPE_BASE_SCORES = {
    "ai_summary": 0.8,
    "user_message": 0.6,
    "system_message": 0.4,
    "general": 0.3,
}
DEFAULT_TYPE_SCORE = 0.3

# (weight per hit, keywords)
SEMANTIC_BUCKETS: tuple[tuple[float, tuple[str, ...]], ...] = (
    (0.15, (
        "重要", "关键", "决定", "计划", "目标", "问题", "解决", "发现", "结论",
        "important", "key", "critical", "decision", "plan", "goal", "problem", "solution",
    )),
    (0.08, (
        "建议", "想法", "创意", "灵感", "思考", "分析", "总结",
        "suggestion", "idea", "creative", "inspiration", "analysis", "summary",
    )),
    (0.10, (
        "爱", "恨", "喜欢", "讨厌", "惊讶", "愤怒", "悲伤", "快乐",
        "love", "hate", "surprised", "angry", "furious", "grief", "thrilled",
    )),
)  # fmt: skip

# First match wins
CATEGORY_RULES: tuple[tuple[Category, tuple[str, ...]], ...] = (
    (Category.EPISODIC, ("发生", "经历", "事件", "happened", "experience", "event")),
    (Category.SEMANTIC, ("知识", "事实", "定义", "knowledge", "fact", "definition")),
    (Category.PROCEDURAL, ("方法", "步骤", "技能", "method", "step", "skill")),
    (Category.EMOTIONAL, ("感觉", "情感", "心情", "feel", "emotion", "mood")),
)

POSITIVE_WORDS = ("好", "棒", "优秀", "成功", "快乐", "喜欢", "good", "great", "excellent", "success", "happy", "like")
NEGATIVE_WORDS = ("坏", "糟糕", "失败", "悲伤", "讨厌", "bad", "terrible", "failure", "sad", "hate")

RECENT_WINDOW = timedelta(hours=1)
PERIODIC_MIN_NEIGHBOURS = 3
MILESTONE_IMPORTANCE = 0.8


@dataclass
class ScoringContext:
    """What the deep pass compares a memory against."""

    # Contents of the newest short-term memories, joined
    current_context: str = ""
    recent: Sequence[Memory] = field(default_factory=list)
    context_vector: list[float] | None = None
    # memory id -> vector of its content, for recent memories that carry none yet
    recent_vectors: dict[str, list[float]] = field(default_factory=dict)


class Scorer:
    """Stateless scoring heuristics."""

    def quick_score(self, memory: Memory) -> float:
        """Cheap ingestion-time importance from length, type and keywords."""
        try:
            content = memory.content.lower()
            score = min(len(memory.content) / 1000, 0.3)
            score += TYPE_BASE_SCORES.get(memory.type, DEFAULT_TYPE_SCORE)
            score += 0.1 * sum(1 for keyword in IMPORTANCE_KEYWORDS if keyword in content)
            return clamp_unit(score)
        except Exception as e:
            logger.warning("Quick scoring failed", memory_id=memory.id, error=str(e))
            return DEFAULT_TYPE_SCORE

    def deep_score(self, memory: Memory, context: ScoringContext) -> float:
        """0.3 * complexity + 0.4 * semantic + 0.3 * contextual."""
        try:
            return clamp_unit(
                0.3 * self.complexity(memory.content)
                + 0.4 * self.semantic(memory.content)
                + 0.3 * self.contextual(memory, context)
            )
        except Exception as e:
            logger.warning("Deep scoring failed", memory_id=memory.id, error=str(e))
            return memory.importance or 0.5

    def complexity(self, content: str) -> float:
        words = content.split()
        if not words:
            return clamp_unit(min(len(content) / 2000, 0.4))
        diversity = len(set(words)) / len(words)
        sentences = max(len(split_sentences(content)), 1)
        avg_sentence_length = len(words) / sentences
        return clamp_unit(min(len(content) / 2000, 0.4) + diversity * 0.3 + min(avg_sentence_length / 20, 0.3))

    def semantic(self, content: str) -> float:
        lowered = content.lower()
        score = 0.0
        for weight, keywords in SEMANTIC_BUCKETS:
            score += weight * sum(1 for keyword in keywords if keyword in lowered)
        return clamp_unit(score)

    def contextual(self, memory: Memory, context: ScoringContext) -> float:
        score = 0.0
        if context.current_context:
            score += (
                self.compare(memory.content, memory.vector, context.current_context, context.context_vector) * 0.5
            )
        others = [m for m in context.recent if m.id != memory.id]
        if others:
            average = sum(self._against(memory, other, context.recent_vectors) for other in others) / len(others)
            score += average * 0.5
        return clamp_unit(score)

    def relevance(
        self,
        memory: Memory,
        recent: Sequence[Memory],
        vectors: Mapping[str, list[float]] | None = None,
    ) -> float:
        """Mean similarity to the most recent residents.

        ``vectors`` supplies content vectors for residents that carry none.
        """
        others = [m for m in recent if m.id != memory.id]
        if not others:
            return 0.0
        try:
            return clamp_unit(sum(self._against(memory, m, vectors or {}) for m in others) / len(others))
        except Exception as e:
            logger.warning("Relevance scoring failed", memory_id=memory.id, error=str(e))
            return memory.relevance

    def _against(self, memory: Memory, other: Memory, vectors: Mapping[str, list[float]]) -> float:
        return self.compare(memory.content, memory.vector, other.content, other.vector or vectors.get(other.id))

    def similarity(self, a: Memory, b: Memory) -> float:
        """Cosine of the vectors when both are embedded alike, token overlap otherwise."""
        return self.compare(a.content, a.vector, b.content, b.vector)

    def compare(
        self,
        text_a: str,
        vector_a: Sequence[float] | None,
        text_b: str,
        vector_b: Sequence[float] | None,
    ) -> float:
        if vector_a and vector_b and len(vector_a) == len(vector_b):
            return clamp_unit(cosine_similarity(vector_a, vector_b))
        return self.text_similarity(text_a, text_b)

    def text_similarity(self, a: str, b: str) -> float:
        return jaccard(a, b)

    def classify_category(self, content: str) -> Category:
        lowered = content.lower()
        for category, keywords in CATEGORY_RULES:
            if any(keyword in lowered for keyword in keywords):
                return category
        return Category.CONTEXTUAL

    def classify_emotion(self, content: str) -> Emotion:
        lowered = content.lower()
        positive = sum(1 for word in POSITIVE_WORDS if word in lowered)
        negative = sum(1 for word in NEGATIVE_WORDS if word in lowered)
        if positive > negative:
            return Emotion.POSITIVE
        if negative > positive:
            return Emotion.NEGATIVE
        if positive > 0:
            return Emotion.MIXED
        return Emotion.NEUTRAL

    def classify_temporal_pattern(self, memory: Memory, similar_count: int, now: datetime) -> TemporalPattern:
        try:
            if memory.age(now) < RECENT_WINDOW:
                return TemporalPattern.RECENT
        except TypeError as e:
            # naive vs aware timestamps from a foreign payload
            logger.warning("Could not compute memory age", memory_id=memory.id, error=str(e))
        if similar_count >= PERIODIC_MIN_NEIGHBOURS:
            return TemporalPattern.PERIODIC
        if memory.importance >= MILESTONE_IMPORTANCE:
            return TemporalPattern.MILESTONE
        return TemporalPattern.HISTORICAL

    def relation_type(self, a: Memory, b: Memory) -> RelationType:
        if abs(a.timestamp - b.timestamp) < RECENT_WINDOW:
            return RelationType.TEMPORAL
        if a.type == b.type:
            return RelationType.CATEGORICAL
        if a.emotion == b.emotion:
            return RelationType.EMOTIONAL
        return RelationType.SEMANTIC

    def relation_strength(self, similarities: Sequence[float]) -> RelationStrength:
        if not similarities:
            return RelationStrength.ISOLATED
        average = sum(similarities) / len(similarities)
        if average > 0.8:
            return RelationStrength.STRONG
        if average > 0.6:
            return RelationStrength.MODERATE
        return RelationStrength.WEAK
