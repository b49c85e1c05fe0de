"""Conversation partitioning of the live memory state."""

import asyncio
from collections.abc import Callable
from datetime import datetime

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from deep_memory.core.base import ErrorCode, StorageErrorDetails
from deep_memory.core.errors import PersistenceError
from deep_memory.core.logging import get_logger, update_log_context
from deep_memory.domain.models import (
    LAYER_ORDER,
    Layer,
    Memory,
    MemoryErrorEvent,
    ProvenanceArena,
    ScopeSwitched,
    utc_now,
)
from deep_memory.infrastructure.index import SemanticIndex
from deep_memory.infrastructure.persistence import CoalescingWriter

from . import EventSink
from .store import MemoryStore

logger = get_logger(__name__)

KEY_PREFIX = "deep_memory"

_memories_adapter = TypeAdapter(list[Memory])


def tier_key(layer: Layer, chat_id: str) -> str:
    return f"{KEY_PREFIX}_{layer.value}_{chat_id}"


def provenance_key(chat_id: str) -> str:
    return f"{KEY_PREFIX}_provenance_{chat_id}"


def chat_keys(chat_id: str) -> list[str]:
    return [*(tier_key(layer, chat_id) for layer in LAYER_ORDER), provenance_key(chat_id)]


class ChatScope:
    """Owns which conversation is live and moves its state in and out of persistence.

    ``generation`` increases on every switch; work that awaited across a
    switch compares generations and drops its result when they differ.
    ``lock`` serialises switching with ingestion.
    """

    def __init__(
        self,
        store: MemoryStore,
        index: SemanticIndex,
        writer: CoalescingWriter,
        events: EventSink,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.index = index
        self.writer = writer
        self.events = events
        self.clock = clock
        self.arena = ProvenanceArena()
        self.chat_id: str | None = None
        self.generation = 0
        self.lock = asyncio.Lock()
        self._dirty: set[Layer] = set()
        self.last_saved: datetime | None = None

    @property
    def active(self) -> bool:
        return self.chat_id is not None

    @property
    def dirty(self) -> frozenset[Layer]:
        return frozenset(self._dirty)

    def mark_dirty(self, *layers: Layer) -> None:
        self._dirty.update(layers)

    def _report(self, operation: str, error: PersistenceError) -> None:
        logger.warning(
            f"Persistence {operation} failed, continuing in memory",
            chat_id=self.chat_id,
            error_code=error.code.value,
            error=error.message,
        )
        self.events.emit(
            MemoryErrorEvent(
                chat_id=self.chat_id,
                operation=operation,
                error_code=error.code.value,
                message=error.message,
            )
        )

    def stage(self, everything: bool = False) -> int:
        """Serialise dirty tiers (or all of them) into the write buffer; returns keys staged."""
        if self.chat_id is None:
            return 0
        layers = set(LAYER_ORDER) if everything else set(self._dirty)
        if not layers:
            return 0
        self.arena.compact(self.store.all())
        for layer in LAYER_ORDER:
            if layer in layers:
                self.writer.write(tier_key(layer, self.chat_id), _memories_adapter.dump_json(self.store.all_of(layer)))
        self.writer.write(provenance_key(self.chat_id), self.arena.dump_json())
        self._dirty.clear()
        return len(layers) + 1

    async def save(self, everything: bool = False) -> bool:
        """Stage and flush. False when persistence failed; state stays in memory and pending."""
        staged = self.stage(everything)
        if not staged and not self.writer.pending:
            return True
        try:
            await self.writer.flush()
        except PersistenceError as e:
            self._report("save", e)
            return False
        self.last_saved = self.clock()
        return True

    async def _read(self, key: str) -> bytes | None:
        try:
            return await self.writer.read(key)
        except PersistenceError as e:
            self._report("load", e)
            return None

    def _corrupt(self, key: str, error: Exception) -> None:
        self._report(
            "load",
            PersistenceError(
                f"Discarding unreadable payload under {key}: {error!s}",
                StorageErrorDetails(source="ChatScope", operation="load", key=key, chat_id=self.chat_id),
                code=ErrorCode.STORAGE_CORRUPT,
            ),
        )

    async def load(self, chat_id: str) -> int:
        """Load a conversation's tiers into the (already cleared) store.

        Missing keys are empty tiers; unreadable keys are logged and treated
        as empty. Memories that belong to another conversation are dropped.
        """
        loaded = 0
        for layer in LAYER_ORDER:
            key = tier_key(layer, chat_id)
            payload = await self._read(key)
            if not payload:
                continue
            try:
                memories = _memories_adapter.validate_json(payload)
            except PydanticValidationError as e:
                self._corrupt(key, e)
                continue
            for memory in memories:
                if memory.chat_id != chat_id:
                    continue
                if self.store.insert(layer, memory).accepted:
                    loaded += 1

        payload = await self._read(provenance_key(chat_id))
        if payload:
            try:
                self.arena = ProvenanceArena.load_json(payload)
            except PydanticValidationError as e:
                self._corrupt(provenance_key(chat_id), e)
                for memory in self.store.all():
                    memory.provenance = []
        return loaded

    def _clear(self) -> None:
        self.store.clear()
        self.index.clear()
        self.arena = ProvenanceArena()
        self._dirty.clear()

    async def switch_to(self, chat_id: str, index_metadata: Callable[[Memory], dict] | None = None) -> int:
        """Persist the live conversation, clear everything, and load ``chat_id``.

        Returns the number of memories loaded.
        """
        async with self.lock:
            previous = self.chat_id
            if previous == chat_id:
                return len(self.store)

            self.generation += 1
            if previous is not None:
                await self.save(everything=True)
            self._clear()
            self.chat_id = chat_id
            update_log_context("chat_id", chat_id)

            loaded = await self.load(chat_id)
            indexed = self.index.rebuild(
                (m.id, m.vector, index_metadata(m) if index_metadata else {}) for m in self.store.all() if m.vector
            )
            self._dirty.clear()
            logger.info(f"Switched conversation {previous} -> {chat_id}", loaded=loaded, indexed=indexed)
            self.events.emit(ScopeSwitched(chat_id=chat_id, previous=previous, current=chat_id))
            return loaded

    async def delete_chat(self, chat_id: str) -> None:
        """Remove every persisted key of ``chat_id``.

        Deleting the active conversation clears the live state and leaves no
        conversation active.
        """
        async with self.lock:
            if chat_id == self.chat_id:
                self.generation += 1
                self._clear()
                self.chat_id = None
                update_log_context("chat_id", None)
            for key in chat_keys(chat_id):
                self.writer.delete(key)
            try:
                await self.writer.flush()
            except PersistenceError as e:
                self._report("delete", e)
            logger.info(f"Deleted conversation {chat_id}")
