"""Strategy chain that turns text into vectors without ever failing hard."""

import asyncio
from typing import Any, Protocol, runtime_checkable

from deep_memory.core.base import ApplicationError
from deep_memory.core.logging import get_logger

from .cache import EmbeddingCache
from .fallback import FallbackEmbedder

logger = get_logger(__name__)


@runtime_checkable
class EmbeddingServiceProvider(Protocol):
    """Protocol for embedding backends."""

    model: str

    async def embed_text(self, text: str) -> list[float]:
        """Generate embedding for text."""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts."""
        ...

    def get_model_dimensions(self) -> int:
        """Get the dimensions of the embedding model."""
        ...


class Vectorizer:
    """Primary backend, then deterministic fallback, behind one bounded cache.

    ``embed`` returns None only when the primary backend failed and the
    fallback is disabled. A primary call is abandoned after
    ``embed_timeout`` seconds; its late result is never cached or returned.
    """

    def __init__(
        self,
        primary: EmbeddingServiceProvider | None,
        fallback: FallbackEmbedder | None,
        cache: EmbeddingCache,
        embed_timeout: float = 30.0,
        strategy: str = "fallback",
    ):
        if primary is None and fallback is None:
            raise ValueError("Vectorizer needs a primary backend, a fallback, or both")
        self.primary = primary
        self.fallback = fallback
        self.cache = cache
        self.embed_timeout = embed_timeout
        self.strategy = strategy
        self.stats: dict[str, int] = {
            "total_vectorized": 0,
            "primary_failures": 0,
            "fallbacks": 0,
            "unavailable": 0,
        }

    async def _from_primary(self, text: str) -> list[float] | None:
        if self.primary is None:
            return None
        try:
            vector = await asyncio.wait_for(self.primary.embed_text(text), timeout=self.embed_timeout)
        except TimeoutError:
            # builtin TimeoutError from asyncio.wait_for
            logger.warning("Embedding call abandoned after timeout", backend=self.primary.model, timeout=self.embed_timeout)
        except ApplicationError as e:
            logger.log(
                e.level.to_logging_level(),
                "Primary embedding backend failed",
                backend=self.primary.model,
                error_code=e.code.value,
                error=e.message,
            )
        except Exception as e:
            logger.error("Unexpected embedding backend failure", backend=self.primary.model, error=str(e), exc_info=True)
        else:
            return vector
        self.stats["primary_failures"] += 1
        return None

    async def embed(self, text: str) -> list[float] | None:
        if self.primary is not None:
            cached = self.cache.get_cached(text, self.primary.model)
            if cached is not None:
                return cached
            vector = await self._from_primary(text)
            if vector is not None:
                self.cache.store(text, self.primary.model, vector)
                self.stats["total_vectorized"] += 1
                return vector

        if self.fallback is None:
            self.stats["unavailable"] += 1
            return None

        cached = self.cache.get_cached(text, self.fallback.model)
        if cached is not None:
            return cached
        vector = self.fallback.embed(text)
        self.cache.store(text, self.fallback.model, vector)
        self.stats["total_vectorized"] += 1
        if self.primary is not None:
            self.stats["fallbacks"] += 1
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float] | None]:
        return [await self.embed(text) for text in texts]

    @property
    def dimensions(self) -> int:
        if self.primary is not None:
            return self.primary.get_model_dimensions()
        if self.fallback is not None:
            return self.fallback.get_model_dimensions()
        return 0

    def get_stats(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "dimensions": self.dimensions,
            "cache_size": len(self.cache),
            "cache_hits": self.cache.hits,
            "cache_misses": self.cache.misses,
            **self.stats,
        }

    async def aclose(self) -> None:
        closer = getattr(self.primary, "aclose", None)
        if closer is not None:
            await closer()
