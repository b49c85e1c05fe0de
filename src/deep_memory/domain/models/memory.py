from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .base import Category, ConflictKind, Emotion, Layer, TemporalPattern
from .utils import clamp_unit, utc_now


class Memory(BaseModel):
    """A single remembered piece of conversation.

    ``layer`` always names the tier container the memory sits in. Scores are
    clamped into [0, 1] on construction and on every assignment.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    content: str
    type: str = "general"
    source: str = "unknown"
    category: Category = Category.CONTEXTUAL
    emotion: Emotion = Emotion.NEUTRAL
    temporal_pattern: TemporalPattern | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    layer: Layer = Layer.SENSORY
    importance: float = 0.0
    recency: float = 1.0
    relevance: float = 0.0
    vector: list[float] | None = None
    decayed_at: datetime | None = Field(default=None, description="Last instant recency decay was applied")
    metadata: dict[str, Any] = Field(default_factory=dict)
    provenance: list[int] = Field(default_factory=list, description="Indices into the scope's provenance arena")

    @field_validator("importance", "recency", "relevance", mode="before")
    @classmethod
    def clamp_scores(cls, value: Any) -> float:
        return clamp_unit(value)

    @property
    def chat_id(self) -> str | None:
        return self.metadata.get("chat_id")

    @property
    def outdated(self) -> bool:
        return bool(self.metadata.get("outdated", False))

    @property
    def merged_from(self) -> list[str]:
        return list(self.metadata.get("merged_from", []))

    def age(self, now: datetime) -> timedelta:
        return now - self.timestamp

    def __str__(self) -> str:
        return f"Memory({self.layer.value}, importance={self.importance:.2f}, content='{self.content[:40]}')"


class CapacityEviction(BaseModel):
    """Record of a memory pushed out of a full tier. Expected, not an error."""

    layer: Layer
    memory_id: str
    score: float


class ConflictDetected(BaseModel):
    """Two resident memories that disagree; drives resolution in the conflict sweep."""

    kind: ConflictKind
    first_id: str
    second_id: str
    similarity: float


class SearchResult(BaseModel):
    id: str
    content: str
    similarity: float
    layer: Layer
    timestamp: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
    # "semantic" when ranked by vectors, "keyword" when by token overlap
    match: str = "semantic"
