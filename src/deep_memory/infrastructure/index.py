"""In-memory semantic index over (id, vector, metadata) entries."""

from collections.abc import Iterable, Sequence
from typing import Any, NamedTuple

import numpy as np

from deep_memory.core.logging import get_logger

logger = get_logger(__name__)


class IndexHit(NamedTuple):
    id: str
    similarity: float
    metadata: dict[str, Any]


class SemanticIndex:
    """Brute-force cosine ranking with per-dimension matrices cached between queries.

    Entries whose dimension differs from the query score 0 instead of failing.
    """

    def __init__(self) -> None:
        self._vectors: dict[str, np.ndarray] = {}
        self._metadata: dict[str, dict[str, Any]] = {}
        # dimension -> (ids, row-normalised matrix)
        self._matrices: dict[int, tuple[list[str], np.ndarray]] = {}

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._vectors

    def dimension(self, entry_id: str) -> int | None:
        """Length of the indexed vector, or None when ``entry_id`` is not indexed."""
        vector = self._vectors.get(entry_id)
        return None if vector is None else vector.size

    def add(self, entry_id: str, vector: Sequence[float], metadata: dict[str, Any] | None = None) -> None:
        """Insert or replace an entry."""
        array = np.asarray(vector, dtype=np.float64)
        if array.ndim != 1 or array.size == 0:
            logger.warning("Refusing to index malformed vector", entry_id=entry_id, shape=array.shape)
            return
        self._vectors[entry_id] = array
        self._metadata[entry_id] = dict(metadata or {})
        self._matrices.clear()

    def remove(self, entry_id: str) -> bool:
        if entry_id not in self._vectors:
            return False
        del self._vectors[entry_id]
        self._metadata.pop(entry_id, None)
        self._matrices.clear()
        return True

    def clear(self) -> None:
        self._vectors.clear()
        self._metadata.clear()
        self._matrices.clear()

    def rebuild(self, entries: Iterable[tuple[str, Sequence[float], dict[str, Any]]]) -> int:
        """Replace the whole index; returns the number of entries indexed."""
        self.clear()
        for entry_id, vector, metadata in entries:
            self.add(entry_id, vector, metadata)
        logger.debug("Semantic index rebuilt", entries=len(self))
        return len(self)

    def _matrix(self, dimension: int) -> tuple[list[str], np.ndarray]:
        if dimension not in self._matrices:
            ids = [entry_id for entry_id, v in self._vectors.items() if v.size == dimension]
            if ids:
                matrix = np.vstack([self._vectors[i] for i in ids])
                norms = np.linalg.norm(matrix, axis=1, keepdims=True)
                norms[norms == 0] = 1.0
                matrix = matrix / norms
            else:
                matrix = np.empty((0, dimension))
            self._matrices[dimension] = (ids, matrix)
        return self._matrices[dimension]

    def query(self, vector: Sequence[float], top_k: int = 10, threshold: float = 0.0) -> list[IndexHit]:
        """Entries with cosine similarity >= threshold, best first, at most top_k."""
        if top_k <= 0 or not self._vectors:
            return []
        query = np.asarray(vector, dtype=np.float64)
        norm = np.linalg.norm(query)

        scores: dict[str, float] = dict.fromkeys(self._vectors, 0.0)
        if query.ndim == 1 and query.size and norm > 0:
            ids, matrix = self._matrix(query.size)
            if ids:
                similarities = matrix @ (query / norm)
                zero_rows = np.linalg.norm(matrix, axis=1) == 0
                similarities[zero_rows] = 0.0
                scores.update(zip(ids, similarities.tolist(), strict=True))

        ranked = sorted(
            ((entry_id, score) for entry_id, score in scores.items() if score >= threshold),
            key=lambda item: item[1],
            reverse=True,
        )
        return [IndexHit(entry_id, float(score), self._metadata[entry_id]) for entry_id, score in ranked[:top_k]]
