"""Service layer interfaces and implementations."""

from typing import Protocol, runtime_checkable

from deep_memory.domain.models import MemoryEvent


@runtime_checkable
class PersistenceCollaborator(Protocol):
    """Async key-value store the subsystem saves its tiers into."""

    async def get(self, key: str) -> bytes | None:
        """Return the stored payload, or None when the key is absent."""
        ...

    async def set(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``, replacing any previous payload."""
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key``; absent keys are not an error."""
        ...


@runtime_checkable
class EventSink(Protocol):
    """Receives notifications about what happened to memories."""

    def emit(self, event: MemoryEvent) -> None: ...


@runtime_checkable
class ClusteringService(Protocol):
    """Protocol for clustering services."""

    async def predict(self, embeddings: list[list[float]]) -> list[int]:
        """Cluster labels for embeddings, -1 for noise."""
        ...

    async def fit(self, embeddings: list[list[float]]) -> None:
        """Fit the clustering model."""
        ...


__all__ = ["ClusteringService", "EventSink", "PersistenceCollaborator"]
