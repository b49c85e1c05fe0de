"""Semantic search with a keyword-overlap path for memories that have no vector."""

import time
from collections.abc import Callable
from datetime import datetime

from deep_memory.core.config import SearchSettings
from deep_memory.core.logging import get_logger
from deep_memory.domain.models import Layer, SearchResult, utc_now
from deep_memory.domain.specifications import build_search_filter
from deep_memory.domain.text import query_coverage
from deep_memory.infrastructure.embeddings import Vectorizer
from deep_memory.infrastructure.index import SemanticIndex

from .chat_scope import ChatScope
from .store import MemoryStore

logger = get_logger(__name__)


class MemorySearch:
    def __init__(
        self,
        store: MemoryStore,
        index: SemanticIndex,
        vectorizer: Vectorizer,
        scope: ChatScope,
        settings: SearchSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.index = index
        self.vectorizer = vectorizer
        self.scope = scope
        self.settings = settings or SearchSettings()
        self.clock = clock
        self.search_count = 0
        self.total_ms = 0.0

    @property
    def average_ms(self) -> float:
        return self.total_ms / self.search_count if self.search_count else 0.0

    async def search(
        self,
        query: str,
        max_results: int | None = None,
        threshold: float | None = None,
        layers: set[Layer] | None = None,
        memory_types: set[str] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        include_outdated: bool = False,
    ) -> list[SearchResult]:
        """Rank the active conversation's memories against ``query``.

        Memories indexed with a vector of the query's dimension are ranked by
        cosine similarity; everything else (or everything, when no query vector
        could be produced) by the share of query tokens found in the content. Hits touch ``access_count`` and
        ``last_accessed``.
        """
        chat_id = self.scope.chat_id
        if chat_id is None or not query or not query.strip():
            return []
        max_results = max_results or self.settings.max_results
        threshold = self.settings.threshold if threshold is None else threshold
        started = time.perf_counter()

        query_vector = await self.vectorizer.embed(query)

        scored: dict[str, tuple[float, str]] = {}
        dimension = len(query_vector) if query_vector is not None else None
        if query_vector is not None and len(self.index):
            for hit in self.index.query(query_vector, top_k=len(self.index), threshold=threshold):
                if self.index.dimension(hit.id) == dimension:
                    scored[hit.id] = (hit.similarity, "semantic")

        for memory in self.store.all():
            # Vectors of another dimension are not comparable with the query
            if dimension is not None and self.index.dimension(memory.id) == dimension:
                continue
            coverage = query_coverage(query, memory.content)
            if coverage >= threshold and coverage > scored.get(memory.id, (0.0, ""))[0]:
                scored[memory.id] = (coverage, "keyword")

        spec = build_search_filter(
            chat_id,
            layers=layers,
            memory_types=memory_types,
            start=start,
            end=end,
            include_outdated=include_outdated,
        )
        results: list[SearchResult] = []
        now = self.clock()
        for memory_id, (similarity, match) in sorted(scored.items(), key=lambda item: item[1][0], reverse=True):
            memory = self.store.get(memory_id)
            if memory is None or not spec.is_satisfied_by(memory):
                continue
            memory.metadata["access_count"] = memory.metadata.get("access_count", 0) + 1
            memory.metadata["last_accessed"] = now.isoformat()
            self.scope.mark_dirty(memory.layer)
            results.append(
                SearchResult(
                    id=memory.id,
                    content=memory.content,
                    similarity=similarity,
                    layer=memory.layer,
                    timestamp=memory.timestamp,
                    metadata=dict(memory.metadata),
                    match=match,
                )
            )
            if len(results) >= max_results:
                break

        elapsed_ms = (time.perf_counter() - started) * 1000
        self.search_count += 1
        self.total_ms += elapsed_ms
        logger.debug(
            f"Search returned {len(results)} memories",
            query=query[:50],
            semantic=query_vector is not None,
            duration_ms=round(elapsed_ms, 2),
        )
        return results
