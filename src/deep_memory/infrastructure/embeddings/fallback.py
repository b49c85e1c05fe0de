"""Deterministic hashing embedder used when no model or service is available."""

import hashlib
from collections import Counter

import numpy as np

from deep_memory.domain.text import normalize

# Words carry the most meaning, single characters the least
TYPE_WEIGHTS = {
    "word": 1.0,
    "trigram": 0.7,
    "bigram": 0.5,
    "char": 0.2,
}
HASH_SEEDS = 5


def position_weight(rank: int) -> float:
    """Boost for features that appear early; tends to 1.0 for late ones."""
    return 1.0 + 0.5 / (1 + rank)


def extract_features(text: str) -> list[tuple[str, str, int]]:
    """(type, feature, term frequency) in first-occurrence order per feature type."""
    words = normalize(text).split()
    compact = "".join(words)
    sequences = {
        "word": words,
        "trigram": [compact[i : i + 3] for i in range(len(compact) - 2)],
        "bigram": [compact[i : i + 2] for i in range(len(compact) - 1)],
        "char": list(compact),
    }
    features: list[tuple[str, str, int]] = []
    for feature_type, sequence in sequences.items():
        # Counter preserves first-insertion order
        for feature, count in Counter(sequence).items():
            features.append((feature_type, feature, count))
    return features


class FallbackEmbedder:
    """Feature-hashing embedder with no external dependency.

    Each feature is hashed with several seeds; the hash also picks a sign so
    unrelated texts stay close to orthogonal while shared features always
    add up. Same text, same vector.
    """

    model = "fallback-hashing"

    def __init__(self, dimensions: int = 384, seeds: int = HASH_SEEDS):
        self.dimensions = dimensions
        self.seeds = seeds

    def _slots(self, key: str) -> list[tuple[int, float]]:
        slots = []
        for seed in range(self.seeds):
            digest = hashlib.md5(f"{seed}::{key}".encode()).digest()
            index = int.from_bytes(digest[:4], "little") % self.dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            slots.append((index, sign))
        return slots

    def embed(self, text: str) -> list[float]:
        vector = np.zeros(self.dimensions, dtype=np.float64)
        ranks: Counter[str] = Counter()
        for feature_type, feature, frequency in extract_features(text):
            rank = ranks[feature_type]
            ranks[feature_type] += 1
            weight = position_weight(rank) * frequency * TYPE_WEIGHTS[feature_type]
            # Signed slots: texts sharing n-grams typically, not always, get a positive cosine
            for index, sign in self._slots(f"{feature_type}:{feature}"):
                vector[index] += sign * weight

        norm = np.linalg.norm(vector)
        if norm == 0:
            return [1.0 / np.sqrt(self.dimensions)] * self.dimensions
        return (vector / norm).tolist()

    async def embed_text(self, text: str) -> list[float]:
        return self.embed(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(text) for text in texts]

    def get_model_dimensions(self) -> int:
        return self.dimensions
