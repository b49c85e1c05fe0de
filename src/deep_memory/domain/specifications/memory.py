"""Search filters over Memory entities."""

from datetime import datetime
from typing import Literal

from deep_memory.domain.models import Layer, Memory

from .base import BaseSpecification


class LayerSpecification(BaseSpecification):
    type: Literal["layer"] = "layer"
    layers: frozenset[Layer]

    def is_satisfied_by(self, entity: Memory) -> bool:
        return entity.layer in self.layers


class MemoryTypeSpecification(BaseSpecification):
    type: Literal["memory_type"] = "memory_type"
    memory_types: frozenset[str]

    def is_satisfied_by(self, entity: Memory) -> bool:
        return entity.type in self.memory_types


class TimeRangeSpecification(BaseSpecification):
    type: Literal["time_range"] = "time_range"
    start: datetime | None = None
    end: datetime | None = None

    def is_satisfied_by(self, entity: Memory) -> bool:
        if self.start is not None and entity.timestamp < self.start:
            return False
        return not (self.end is not None and entity.timestamp > self.end)


class ChatSpecification(BaseSpecification):
    type: Literal["chat"] = "chat"
    chat_id: str

    def is_satisfied_by(self, entity: Memory) -> bool:
        return entity.chat_id == self.chat_id


class CurrentSpecification(BaseSpecification):
    """Excludes memories superseded by a newer contradicting one."""

    type: Literal["current"] = "current"

    def is_satisfied_by(self, entity: Memory) -> bool:
        return not entity.outdated


def build_search_filter(
    chat_id: str,
    layers: set[Layer] | None = None,
    memory_types: set[str] | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    include_outdated: bool = False,
) -> BaseSpecification:
    spec: BaseSpecification = ChatSpecification(chat_id=chat_id)
    if layers:
        spec = spec.and_(LayerSpecification(layers=frozenset(layers)))
    if memory_types:
        spec = spec.and_(MemoryTypeSpecification(memory_types=frozenset(memory_types)))
    if start is not None or end is not None:
        spec = spec.and_(TimeRangeSpecification(start=start, end=end))
    if not include_outdated:
        spec = spec.and_(CurrentSpecification())
    return spec
