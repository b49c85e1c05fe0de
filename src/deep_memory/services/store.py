"""Capacity-bounded tier containers."""

from typing import NamedTuple

from deep_memory.core.base import MigrationErrorDetails
from deep_memory.core.config import EvictionWeights, TierSettings
from deep_memory.core.errors import MigrationError
from deep_memory.core.logging import get_logger
from deep_memory.domain.models import LAYER_ORDER, CapacityEviction, Layer, Memory

logger = get_logger(__name__)


class InsertOutcome(NamedTuple):
    accepted: bool
    evicted: CapacityEviction | None = None


class MemoryStore:
    """Four tiers of memories keyed by id, plus a global id index.

    A memory is resident in exactly one tier and its ``layer`` always names
    that tier. Inserting into a full tier first evicts the resident with the
    lowest retention score.
    """

    def __init__(self, capacities: TierSettings | None = None, weights: EvictionWeights | None = None):
        self.capacities = capacities or TierSettings()
        self.weights = weights or EvictionWeights()
        self._tiers: dict[Layer, dict[str, Memory]] = {layer: {} for layer in LAYER_ORDER}
        self._by_id: dict[str, Memory] = {}

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, memory_id: object) -> bool:
        return memory_id in self._by_id

    def capacity(self, layer: Layer) -> int:
        return getattr(self.capacities, layer.value)

    def size(self, layer: Layer) -> int:
        return len(self._tiers[layer])

    def sizes(self) -> dict[str, int]:
        return {layer.value: len(tier) for layer, tier in self._tiers.items()}

    def is_full(self, layer: Layer) -> bool:
        return self.size(layer) >= self.capacity(layer)

    def get(self, memory_id: str) -> Memory | None:
        return self._by_id.get(memory_id)

    def all_of(self, layer: Layer) -> list[Memory]:
        """Snapshot of one tier in insertion order."""
        return list(self._tiers[layer].values())

    def all(self) -> list[Memory]:
        return [memory for layer in LAYER_ORDER for memory in self._tiers[layer].values()]

    def retention_score(self, memory: Memory) -> float:
        """Higher means more worth keeping; sensory ignores relevance."""
        score = memory.importance * self.weights.importance_weight + memory.recency * self.weights.recency_weight
        if memory.layer is not Layer.SENSORY:
            score += memory.relevance * self.weights.relevance_weight
        return score

    def evict(self, layer: Layer) -> CapacityEviction | None:
        """Remove the lowest-scoring resident of ``layer``."""
        tier = self._tiers[layer]
        if not tier:
            return None
        victim = min(tier.values(), key=self.retention_score)
        eviction = CapacityEviction(layer=layer, memory_id=victim.id, score=self.retention_score(victim))
        self.remove(victim.id)
        logger.debug("Evicted memory from full tier", layer=layer, memory_id=victim.id, score=eviction.score)
        return eviction

    def insert(self, layer: Layer, memory: Memory) -> InsertOutcome:
        """Place a memory that is not yet resident anywhere."""
        if memory.id in self._by_id:
            logger.debug("Memory already resident", memory_id=memory.id, layer=self._by_id[memory.id].layer)
            return InsertOutcome(accepted=False)
        evicted = self.evict(layer) if self.is_full(layer) else None
        memory.layer = layer
        self._tiers[layer][memory.id] = memory
        self._by_id[memory.id] = memory
        return InsertOutcome(accepted=True, evicted=evicted)

    def remove(self, memory_id: str) -> Memory | None:
        memory = self._by_id.pop(memory_id, None)
        if memory is not None:
            self._tiers[memory.layer].pop(memory_id, None)
        return memory

    def move_tier(self, memory_id: str, from_layer: Layer, to_layer: Layer) -> CapacityEviction | None:
        """Move a memory one or more tiers forward.

        Raises:
            MigrationError: the memory is not in ``from_layer`` or the move is not forward
        """
        memory = self._by_id.get(memory_id)
        details = MigrationErrorDetails(
            source="MemoryStore",
            operation="move_tier",
            memory_id=memory_id,
            from_layer=from_layer.value,
            to_layer=to_layer.value,
        )
        if memory is None or memory.layer is not from_layer:
            raise MigrationError(f"Memory {memory_id} is not resident in {from_layer.value}", details)
        if not from_layer.precedes(to_layer):
            raise MigrationError(f"Cannot move memory from {from_layer.value} to {to_layer.value}", details)

        evicted = self.evict(to_layer) if self.is_full(to_layer) else None
        del self._tiers[from_layer][memory_id]
        memory.layer = to_layer
        self._tiers[to_layer][memory_id] = memory
        return evicted

    def clear(self) -> None:
        for tier in self._tiers.values():
            tier.clear()
        self._by_id.clear()
