"""Shared fixtures: a controllable clock, recording sinks and small-capacity settings."""

from datetime import UTC, datetime, timedelta

import pytest

from deep_memory.core.config import PromotionSettings, Settings, TierSettings
from deep_memory.domain.models import Layer, Memory, MemoryEvent
from deep_memory.infrastructure.embeddings import EmbeddingCache, FallbackEmbedder, Vectorizer
from deep_memory.infrastructure.persistence import InMemoryKeyValueStore
from deep_memory.subsystem import MemorySubsystem


class FixedClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSink:
    def __init__(self):
        self.events: list[MemoryEvent] = []

    def emit(self, event: MemoryEvent) -> None:
        self.events.append(event)

    def of(self, event_type: type[MemoryEvent]) -> list:
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def persistence() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def settings() -> Settings:
    """Default thresholds, small tiers, and no environment or .env influence."""
    return Settings(
        _env_file=None,
        tiers=TierSettings(sensory=10, short_term=20, long_term=20, deep_archive=50),
    )


@pytest.fixture
def sensory_settings() -> Settings:
    """A first promotion threshold high enough that plain content stays sensory."""
    return Settings(
        _env_file=None,
        tiers=TierSettings(sensory=10, short_term=20, long_term=20, deep_archive=50),
        promotion=PromotionSettings(sensory_to_short_term=0.5, short_term_to_long_term=0.6, long_term_to_deep_archive=0.8),
    )


@pytest.fixture
def vectorizer() -> Vectorizer:
    return Vectorizer(primary=None, fallback=FallbackEmbedder(), cache=EmbeddingCache(max_size=100))


@pytest.fixture
def subsystem(settings, persistence, sink, vectorizer, clock) -> MemorySubsystem:
    return MemorySubsystem(
        settings=settings,
        persistence=persistence,
        events=sink,
        vectorizer=vectorizer,
        clock=clock,
    )


@pytest.fixture
def make_memory(clock):
    def factory(content: str = "a remembered thing", layer: Layer = Layer.SENSORY, **fields) -> Memory:
        fields.setdefault("timestamp", clock())
        fields.setdefault("metadata", {"chat_id": "chat-a"})
        return Memory(content=content, layer=layer, **fields)

    return factory
