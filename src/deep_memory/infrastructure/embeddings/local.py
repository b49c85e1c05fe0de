"""In-process embeddings with sentence-transformers."""

import asyncio
from typing import Any

from deep_memory.core.errors import ModelLoadError, ProcessingError
from deep_memory.core.logging import get_logger

logger = get_logger(__name__)


class LocalEmbeddingService:
    """Runs a sentence-transformers model off the event loop.

    The model is loaded on first use. A failed load is remembered and
    re-raised on later calls instead of retrying the download each time.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", model: Any | None = None, dimensions: int = 384):
        self.model = model_name
        self._model = model
        self._dimensions = dimensions
        self._load_error: ModelLoadError | None = None

    def _load(self) -> Any:
        if self._model is not None:
            return self._model
        if self._load_error is not None:
            raise self._load_error
        try:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self.model)
            self._dimensions = self._model.get_sentence_embedding_dimension() or self._dimensions
            logger.info("Loaded local embedding model", model=self.model, dimensions=self._dimensions)
        except Exception as e:
            self._load_error = ModelLoadError(
                message=f"Could not load embedding model {self.model}: {e!s}",
                details={"source": "LocalEmbeddingService", "operation": "load", "model": self.model},
            )
            raise self._load_error from e
        return self._model

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        model = await asyncio.to_thread(self._load)
        try:
            vectors = await asyncio.to_thread(model.encode, texts, convert_to_numpy=True)
        except Exception as e:
            raise ProcessingError(
                message=f"Local embedding inference failed: {e!s}",
                details={"source": "LocalEmbeddingService", "operation": "encode", "batch_size": len(texts)},
            ) from e
        return [[float(x) for x in vector] for vector in vectors]

    async def embed_text(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    def get_model_dimensions(self) -> int:
        return self._dimensions
