"""The memory subsystem facade a host application constructs and talks to."""

from collections import OrderedDict
from collections.abc import Callable
from datetime import datetime
from typing import Any, Self

from deep_memory.core.config import Settings, get_settings
from deep_memory.core.errors import ValidationError
from deep_memory.core.logging import get_logger
from deep_memory.domain.models import Layer, Memory, ProvenanceRecord, SearchResult, utc_now
from deep_memory.domain.specifications import ContentAdmissionSpecification, strip_html
from deep_memory.infrastructure.embeddings import Vectorizer, create_vectorizer
from deep_memory.infrastructure.index import SemanticIndex
from deep_memory.infrastructure.persistence import CoalescingWriter, InMemoryKeyValueStore
from deep_memory.services import ClusteringService, EventSink, PersistenceCollaborator
from deep_memory.services.chat_scope import ChatScope
from deep_memory.services.events import EventBus
from deep_memory.services.lifecycle import LifecycleEngine, SweepReport
from deep_memory.services.maintenance import MaintenanceScheduler
from deep_memory.services.scoring import Scorer
from deep_memory.services.search import MemorySearch
from deep_memory.services.store import MemoryStore

logger = get_logger(__name__)


class MemorySubsystem:
    """Layered conversational memory for one active conversation at a time.

    Every collaborator is injected; anything left out gets a working
    default (in-process persistence, an ``EventBus``, a vectorizer built
    from settings, wall-clock UTC time).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        persistence: PersistenceCollaborator | None = None,
        events: EventSink | None = None,
        vectorizer: Vectorizer | None = None,
        scorer: Scorer | None = None,
        clusterer: ClusteringService | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or get_settings()
        self.persistence = persistence or InMemoryKeyValueStore()
        self.events = events or EventBus()
        self.vectorizer = vectorizer or create_vectorizer(self.settings.vectorizer)
        self.scorer = scorer or Scorer()
        self.clock = clock

        self.store = MemoryStore(self.settings.tiers, self.settings.eviction)
        self.index = SemanticIndex()
        self.writer = CoalescingWriter(self.persistence)
        self.scope = ChatScope(self.store, self.index, self.writer, self.events, clock=clock)
        self.engine = LifecycleEngine(
            store=self.store,
            index=self.index,
            scorer=self.scorer,
            vectorizer=self.vectorizer,
            scope=self.scope,
            events=self.events,
            settings=self.settings,
            clusterer=clusterer,
            clock=clock,
        )
        self.searcher = MemorySearch(self.store, self.index, self.vectorizer, self.scope, self.settings.search, clock)
        self.scheduler = MaintenanceScheduler(self.engine, self.scope, self.settings.maintenance)
        self.admission = ContentAdmissionSpecification(min_length=self.settings.ingestion.min_content_length)
        # (chat_id, message_id, leading content) of recently ingested messages
        self._seen_messages: OrderedDict[tuple[str | None, str, str | None], None] = OrderedDict()

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    @property
    def chat_id(self) -> str | None:
        return self.scope.chat_id

    async def _ensure_scope(self) -> None:
        if not self.scope.active:
            await self.switch_to(self.settings.default_chat_id)

    async def start(self, chat_id: str | None = None) -> None:
        """Activate a conversation (the default one unless given) and start scheduled maintenance."""
        await self.switch_to(chat_id or self.scope.chat_id or self.settings.default_chat_id)
        await self.scheduler.start()

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
        await self.flush()
        await self.vectorizer.aclose()

    async def switch_to(self, chat_id: str) -> int:
        """Make ``chat_id`` the active conversation; returns how many memories were loaded."""
        return await self.scope.switch_to(chat_id, index_metadata=self.engine.index_metadata)

    async def delete_chat(self, chat_id: str) -> None:
        await self.scope.delete_chat(chat_id)

    async def flush(self) -> bool:
        """Persist every tier that changed since the last save."""
        return await self.scope.save()

    async def add_memory(
        self,
        content: str,
        type: str = "general",
        source: str = "unknown",
        metadata: dict[str, Any] | None = None,
    ) -> str | None:
        """Remember ``content`` in the active conversation.

        Returns the new memory id, or None when the content was not worth keeping.
        """
        try:
            content = self.admission.check(content)
        except ValidationError as e:
            logger.debug("Content not admitted", reason=getattr(e.details, "constraint", None))
            return None

        await self._ensure_scope()
        async with self.scope.lock:
            try:
                memory = self.engine.ingest(content, memory_type=type, source=source, metadata=metadata)
            except Exception as e:
                logger.warning("Failed to add memory", error=str(e), exc_info=True)
                self.engine.report_error("add_memory", e)
                return None
        return memory.id if memory else None

    async def ingest_message(
        self,
        message_id: str,
        content: str,
        is_user: bool = True,
        metadata: dict[str, Any] | None = None,
    ) -> str | None:
        """Remember a chat message once; markup is stripped and repeats ignored.

        A repeat is the same ``message_id`` with the same leading content in
        the same conversation, so edited or regenerated messages and per-chat
        message numbering are remembered anew.
        """
        await self._ensure_scope()
        if isinstance(content, str):
            content = strip_html(content)
        key = (self.scope.chat_id, message_id, content[:100] if isinstance(content, str) else None)
        if key in self._seen_messages:
            logger.debug("Ignoring already ingested message", message_id=message_id)
            return None

        memory_id = await self.add_memory(
            content,
            type="user_message" if is_user else "ai_message",
            source="user" if is_user else "assistant",
            metadata={**(metadata or {}), "message_id": message_id},
        )
        if memory_id is not None:
            self._seen_messages[key] = None
            while len(self._seen_messages) > self.settings.ingestion.dedup_window:
                self._seen_messages.popitem(last=False)
        return memory_id

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
        await self._ensure_scope()
        return await self.searcher.search(
            query,
            max_results=max_results,
            threshold=threshold,
            layers=layers,
            memory_types=memory_types,
            start=start,
            end=end,
            include_outdated=include_outdated,
        )

    async def clear_recent_memories(self) -> int:
        """Forget what was just said, e.g. after a message is deleted or regenerated."""
        async with self.scope.lock:
            return self.engine.clear_recent()

    async def run_maintenance(self) -> list[SweepReport]:
        return await self.scheduler.tick() or []

    async def run_deep_maintenance(self) -> list[SweepReport]:
        return await self.scheduler.deep_tick() or []

    def get(self, memory_id: str) -> Memory | None:
        return self.store.get(memory_id)

    def history(self, memory_id: str) -> list[ProvenanceRecord]:
        """Migration, merge and conflict records of a resident memory, oldest first."""
        memory = self.store.get(memory_id)
        return self.scope.arena.history(memory) if memory else []

    def get_status(self) -> dict[str, Any]:
        stats = self.engine.stats
        vectorizer = self.vectorizer.get_stats()
        return {
            "chat_id": self.scope.chat_id,
            "layers": self.store.sizes(),
            "total_memories": len(self.store),
            "indexed": len(self.index),
            "migrations": stats.migrations,
            "evictions": stats.evictions,
            "conflicts_resolved": stats.conflicts_resolved,
            "compressions": stats.compressions,
            "compression_ratio": stats.compression_ratio,
            "expired": stats.expired,
            "forgotten": stats.forgotten,
            "errors": stats.errors,
            "average_importance": stats.average_importance,
            "average_importance_by_layer": stats.average_importance_by_layer,
            "last_maintenance": stats.last_maintenance.isoformat() if stats.last_maintenance else None,
            "maintenance_running": self.engine.maintenance_running,
            "pending_writes": len(self.writer.pending),
            "vectorizer": {
                **vectorizer,
                "search_count": self.searcher.search_count,
                "avg_search_ms": round(self.searcher.average_ms, 3),
            },
            "scheduler": self.scheduler.get_job_status(),
        }
