import asyncio

import numpy as np
from sklearn.cluster import DBSCAN

from deep_memory.core.logging import get_logger

logger = get_logger(__name__)


class DBSCANClusteringService:
    """Density clustering over cosine distance.

    Every ``predict`` call refits on the embeddings it is given, so labels
    are only comparable within one call.
    """

    def __init__(self, eps: float = 0.3, min_samples: int = 3):
        self.eps = eps
        self.min_samples = min_samples
        self.clusterer: DBSCAN | None = None

    @classmethod
    def for_similarity(cls, threshold: float, min_samples: int) -> "DBSCANClusteringService":
        """Cluster points whose cosine similarity reaches ``threshold``."""
        return cls(eps=max(1.0 - threshold, 1e-6), min_samples=min_samples)

    def _fit(self, X: np.ndarray) -> list[int]:
        self.clusterer = DBSCAN(
            eps=self.eps,
            min_samples=self.min_samples,
            metric="cosine",
            algorithm="brute",
        )
        self.clusterer.fit(X)
        return self.clusterer.labels_.tolist()

    async def fit(self, embeddings: list[list[float]]) -> None:
        """Fit the clustering model on all embeddings."""
        await self.predict(embeddings)

    async def predict(self, embeddings: list[list[float]]) -> list[int]:
        if len(embeddings) < self.min_samples:
            return [-1] * len(embeddings)
        X = np.asarray(embeddings, dtype=np.float64)
        # Zero vectors have no cosine distance
        if not np.all(np.linalg.norm(X, axis=1) > 0):
            logger.warning("Skipping clustering: zero-norm embedding present", count=len(embeddings))
            return [-1] * len(embeddings)
        labels = await asyncio.to_thread(self._fit, X)
        logger.debug(f"DBSCAN found {len(set(labels) - {-1})} clusters in {len(labels)} points")
        return labels
