from .base import (
    LAYER_ORDER,
    Category,
    ConflictKind,
    Emotion,
    Layer,
    ProvenanceKind,
    RelationStrength,
    RelationType,
    TemporalPattern,
)
from .events import (
    MemoryAdded,
    MemoryCompressed,
    MemoryConflictResolved,
    MemoryErrorEvent,
    MemoryEvent,
    MemoryMigrated,
    ScopeSwitched,
)
from .memory import CapacityEviction, ConflictDetected, Memory, SearchResult
from .provenance import ProvenanceArena, ProvenanceRecord
from .utils import clamp_unit, utc_now

__all__ = [
    "LAYER_ORDER",
    "CapacityEviction",
    "Category",
    "ConflictDetected",
    "ConflictKind",
    "Emotion",
    "Layer",
    "Memory",
    "MemoryAdded",
    "MemoryCompressed",
    "MemoryConflictResolved",
    "MemoryErrorEvent",
    "MemoryEvent",
    "MemoryMigrated",
    "ProvenanceArena",
    "ProvenanceKind",
    "ProvenanceRecord",
    "RelationStrength",
    "RelationType",
    "ScopeSwitched",
    "SearchResult",
    "TemporalPattern",
    "clamp_unit",
    "utc_now",
]
