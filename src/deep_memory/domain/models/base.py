from enum import Enum


class Layer(str, Enum):
    """Memory tiers, ordered from most transient to most durable."""

    SENSORY = "sensory"
    SHORT_TERM = "short_term"
    LONG_TERM = "long_term"
    DEEP_ARCHIVE = "deep_archive"

    @property
    def rank(self) -> int:
        return LAYER_ORDER.index(self)

    @property
    def next(self) -> "Layer | None":
        """The tier a memory is promoted into from this one."""
        if self.rank + 1 < len(LAYER_ORDER):
            return LAYER_ORDER[self.rank + 1]
        return None

    def precedes(self, other: "Layer") -> bool:
        return self.rank < other.rank


LAYER_ORDER: tuple[Layer, ...] = (
    Layer.SENSORY,
    Layer.SHORT_TERM,
    Layer.LONG_TERM,
    Layer.DEEP_ARCHIVE,
)


class Category(str, Enum):
    EPISODIC = "episodic"
    SEMANTIC = "semantic"
    PROCEDURAL = "procedural"
    EMOTIONAL = "emotional"
    CONTEXTUAL = "contextual"


class Emotion(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    MIXED = "mixed"


class TemporalPattern(str, Enum):
    RECENT = "recent"
    PERIODIC = "periodic"
    MILESTONE = "milestone"
    HISTORICAL = "historical"


class RelationType(str, Enum):
    """How a memory relates to a similar neighbour."""

    TEMPORAL = "temporal"
    CATEGORICAL = "categorical"
    EMOTIONAL = "emotional"
    SEMANTIC = "semantic"


class RelationStrength(str, Enum):
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"
    ISOLATED = "isolated"


class ConflictKind(str, Enum):
    # Similar content classified into different categories
    CATEGORY = "category"
    # An assertion and its negation
    NEGATION = "negation"


class ProvenanceKind(str, Enum):
    MIGRATION = "migration"
    MERGE = "merge"
    CONFLICT = "conflict"
