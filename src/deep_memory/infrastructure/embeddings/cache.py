import hashlib
from collections import OrderedDict


class EmbeddingCache:
    """Bounded in-process cache of embedding vectors with model awareness.

    Keys include the model so a vector produced by one backend is never
    served for another. When full, the oldest inserted entry is dropped.
    """

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._entries: OrderedDict[str, list[float]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def cache_key(text: str, model: str) -> str:
        return hashlib.md5(f"{model}::{text}".encode()).hexdigest()

    def get_cached(self, text: str, model: str) -> list[float] | None:
        """Retrieve a cached embedding for ``text`` produced by ``model``."""
        vector = self._entries.get(self.cache_key(text, model))
        if vector is None:
            self.misses += 1
            return None
        self.hits += 1
        return vector

    def store(self, text: str, model: str, embedding: list[float]) -> None:
        key = self.cache_key(text, model)
        if key in self._entries:
            self._entries[key] = embedding
            return
        while len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
        self._entries[key] = embedding

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
