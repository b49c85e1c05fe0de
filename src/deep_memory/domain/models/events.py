"""Typed payloads for events emitted by the memory subsystem."""

from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, Field

from .base import ConflictKind, Layer
from .utils import utc_now


class MemoryEvent(BaseModel):
    name: ClassVar[str] = "memory.event"

    chat_id: str | None = None
    at: datetime = Field(default_factory=utc_now)


class MemoryAdded(MemoryEvent):
    name: ClassVar[str] = "memory.added"

    memory_id: str
    layer: Layer
    importance: float


class MemoryMigrated(MemoryEvent):
    name: ClassVar[str] = "memory.migrated"

    memory_id: str
    from_layer: Layer
    to_layer: Layer


class MemoryConflictResolved(MemoryEvent):
    name: ClassVar[str] = "memory.conflict_resolved"

    kind: ConflictKind
    kept_id: str
    removed_id: str | None = None
    outdated_id: str | None = None
    similarity: float


class MemoryCompressed(MemoryEvent):
    name: ClassVar[str] = "memory.compressed"

    survivor_id: str
    merged_ids: list[str]


class MemoryErrorEvent(MemoryEvent):
    name: ClassVar[str] = "memory.error"

    operation: str
    error_code: str
    message: str


class ScopeSwitched(MemoryEvent):
    name: ClassVar[str] = "scope.switched"

    previous: str | None
    current: str
