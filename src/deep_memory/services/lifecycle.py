"""Memory lifecycle: ingestion, forward promotion with deep processing, and maintenance sweeps.

All sweeps share one lock. A sweep that finds the lock held is skipped rather
than queued, and every sweep re-checks that an entity is still resident before
touching it because ingestion keeps running while a sweep awaits.
"""

import asyncio
import heapq
import re
import time
from collections import Counter, defaultdict
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timedelta
from functools import lru_cache
from operator import attrgetter
from typing import TYPE_CHECKING, Any

import numpy as np
from pydantic import BaseModel, Field

from deep_memory.core.base import ApplicationError, ErrorCode
from deep_memory.core.config import Settings
from deep_memory.core.logging import get_logger
from deep_memory.domain.models import (
    LAYER_ORDER,
    CapacityEviction,
    ConflictDetected,
    ConflictKind,
    Layer,
    Memory,
    MemoryAdded,
    MemoryCompressed,
    MemoryConflictResolved,
    MemoryErrorEvent,
    MemoryMigrated,
    ProvenanceKind,
    ProvenanceRecord,
    utc_now,
)
from deep_memory.domain.text import cosine_similarity, jaccard, split_sentences, tokenize
from deep_memory.infrastructure.embeddings import Vectorizer
from deep_memory.infrastructure.index import SemanticIndex

from .clustering import DBSCANClusteringService
from .scoring import PERIODIC_MIN_NEIGHBOURS, Scorer, ScoringContext
from .store import MemoryStore

if TYPE_CHECKING:
    from . import ClusteringService, EventSink
    from .chat_scope import ChatScope

logger = get_logger(__name__)

DEEP_LAYERS = (Layer.LONG_TERM, Layer.DEEP_ARCHIVE)

# Seconds per elapsed decay unit; deep archive does not decay
DECAY_UNITS: dict[Layer, float] = {
    Layer.SENSORY: 60.0,
    Layer.SHORT_TERM: 3600.0,
    Layer.LONG_TERM: 86400.0,
}

CONTEXT_SHORT_TERM_COUNT = 3
CONTEXT_RECENT_COUNT = 5
# Residents scanned by token overlap when a memory has no vector
NEIGHBOUR_SCAN_LIMIT = 200

NEGATION_TOKENS = frozenset({"not", "no", "never", "不", "没", "非", "别", "未"})
_CONTRACTION = re.compile(r"n't\b", re.IGNORECASE)
_by_timestamp = attrgetter("timestamp")


@lru_cache(maxsize=4096)
def negation_signature(content: str) -> tuple[tuple[str, ...], int]:
    """Tokens with negations removed, and how many negations there were."""
    tokens = tokenize(_CONTRACTION.sub(" not", content))
    kept = tuple(token for token in tokens if token not in NEGATION_TOKENS)
    return kept, len(tokens) - len(kept)


def is_negation_pair(a: str, b: str) -> bool:
    """True when ``b`` asserts the opposite of ``a`` (or vice versa)."""
    kept_a, negations_a = negation_signature(a)
    kept_b, negations_b = negation_signature(b)
    return bool(kept_a) and kept_a == kept_b and negations_a % 2 != negations_b % 2


class SweepReport(BaseModel):
    sweep: str
    skipped: bool = False
    examined: int = 0
    changed: int = 0
    failures: int = 0
    duration_ms: float = 0.0


class LifecycleStats(BaseModel):
    migrations: int = 0
    evictions: int = 0
    conflicts_resolved: int = 0
    compressions: int = 0
    compressed_memories: int = 0
    expired: int = 0
    forgotten: int = 0
    errors: int = 0
    average_importance: float = 0.0
    average_importance_by_layer: dict[str, float] = Field(default_factory=dict)
    last_maintenance: datetime | None = None

    @property
    def compression_ratio(self) -> float:
        """Share of absorbed memories among everything compression touched."""
        touched = self.compressions + self.compressed_memories
        return self.compressed_memories / touched if touched else 0.0


class LifecycleEngine:
    """Moves memories through the tiers and keeps the tiers tidy."""

    def __init__(
        self,
        store: MemoryStore,
        index: SemanticIndex,
        scorer: Scorer,
        vectorizer: Vectorizer,
        scope: "ChatScope",
        events: "EventSink",
        settings: Settings,
        clusterer: "ClusteringService | None" = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.index = index
        self.scorer = scorer
        self.vectorizer = vectorizer
        self.scope = scope
        self.events = events
        self.settings = settings
        self.clock = clock
        self.clusterer = clusterer or DBSCANClusteringService.for_similarity(
            settings.lifecycle.compression_similarity_threshold,
            settings.lifecycle.compression_min_cluster_size,
        )
        self.stats = LifecycleStats()
        self._maintenance_lock = asyncio.Lock()
        self._thresholds: dict[Layer, float] = {
            Layer.SENSORY: settings.promotion.sensory_to_short_term,
            Layer.SHORT_TERM: settings.promotion.short_term_to_long_term,
            Layer.LONG_TERM: settings.promotion.long_term_to_deep_archive,
        }

    @property
    def maintenance_running(self) -> bool:
        return self._maintenance_lock.locked()

    # Ingestion and promotion

    def ingest(
        self,
        content: str,
        memory_type: str = "general",
        source: str = "unknown",
        metadata: dict[str, Any] | None = None,
    ) -> Memory | None:
        """Create a memory in the sensory tier from already-admitted content.

        Content scoring at or above the first promotion threshold moves to the
        short-term tier immediately.
        """
        memory = Memory(
            content=content,
            type=memory_type,
            source=source,
            timestamp=self.clock(),
            metadata={**(metadata or {}), "chat_id": self.scope.chat_id, "processing_stage": "quick"},
        )
        memory.importance = self.scorer.quick_score(memory)

        outcome = self.store.insert(Layer.SENSORY, memory)
        if not outcome.accepted:
            return None
        self._handle_eviction(outcome.evicted)
        self.scope.mark_dirty(Layer.SENSORY)

        if memory.importance >= self._thresholds[Layer.SENSORY]:
            self._move(memory, Layer.SHORT_TERM, reason="importance at ingestion")

        logger.debug("Memory added", memory_id=memory.id, layer=memory.layer, importance=round(memory.importance, 3))
        self.events.emit(
            MemoryAdded(
                chat_id=self.scope.chat_id,
                memory_id=memory.id,
                layer=memory.layer,
                importance=memory.importance,
            )
        )
        return memory

    def _move(self, memory: Memory, to_layer: Layer, reason: str) -> None:
        from_layer = memory.layer
        evicted = self.store.move_tier(memory.id, from_layer, to_layer)
        self._handle_eviction(evicted)
        self.scope.arena.record_migration(memory, from_layer, to_layer, self.clock(), reason)
        self.stats.migrations += 1
        self.scope.mark_dirty(from_layer, to_layer)
        logger.info(f"Migrated memory {memory.id} from {from_layer.value} to {to_layer.value}", reason=reason)
        self.events.emit(
            MemoryMigrated(
                chat_id=self.scope.chat_id,
                memory_id=memory.id,
                from_layer=from_layer,
                to_layer=to_layer,
            )
        )

    async def promote(self, memory: Memory, to_layer: Layer, reason: str = "importance threshold") -> None:
        """Move ``memory`` forward; entering long-term or deep archive triggers deep processing.

        Raises:
            MigrationError: the move is not forward or the memory is not where it claims to be
        """
        self._move(memory, to_layer, reason)
        if to_layer in DEEP_LAYERS:
            await self.deep_process(memory)

    def _still_current(self, memory: Memory, layer: Layer, generation: int) -> bool:
        return (
            self.scope.generation == generation
            and self.store.get(memory.id) is memory
            and memory.layer is layer
        )

    async def deep_process(self, memory: Memory) -> bool:
        """Embed, rescore and classify a memory.

        Returns False when the memory was switched out, evicted, merged or
        moved while the embedding was being computed; nothing is applied then.
        """
        generation = self.scope.generation
        layer = memory.layer
        vector = await self.vectorizer.embed(memory.content)
        context = await self.scoring_context(exclude=memory)
        if not self._still_current(memory, layer, generation):
            logger.debug("Discarding deep processing result for a memory that moved on", memory_id=memory.id)
            return False

        if vector is not None:
            memory.vector = vector
        now = self.clock()

        memory.importance = self.scorer.deep_score(memory, context)
        memory.category = self.scorer.classify_category(memory.content)
        memory.emotion = self.scorer.classify_emotion(memory.content)

        relations = self.neighbours(
            memory,
            self.settings.lifecycle.relation_similarity_threshold,
            self.settings.lifecycle.max_relations,
        )
        memory.metadata["relations"] = [
            {
                "id": other.id,
                "type": self.scorer.relation_type(memory, other).value,
                "similarity": round(similarity, 4),
            }
            for other, similarity in relations
        ]
        memory.metadata["relation_strength"] = self.scorer.relation_strength([s for _, s in relations]).value

        periodic = self.neighbours(memory, self.settings.lifecycle.periodic_similarity_threshold, PERIODIC_MIN_NEIGHBOURS)
        memory.temporal_pattern = self.scorer.classify_temporal_pattern(memory, len(periodic), now)
        memory.relevance = self.scorer.relevance(memory, context.recent, context.recent_vectors)
        memory.metadata["processing_stage"] = "deep"
        memory.metadata["deep_processed_at"] = now.isoformat()

        if memory.vector:
            self.index.add(memory.id, memory.vector, self.index_metadata(memory))
        self.scope.mark_dirty(memory.layer)
        return True

    async def scoring_context(self, exclude: Memory | None = None) -> ScoringContext:
        """The newest short-term contents and residents, embedded through the vectorizer's cache."""
        short_term = heapq.nlargest(CONTEXT_SHORT_TERM_COUNT, self.store.all_of(Layer.SHORT_TERM), key=_by_timestamp)
        recent = heapq.nlargest(CONTEXT_RECENT_COUNT, self.store.all(), key=_by_timestamp)
        context = ScoringContext(current_context=" ".join(m.content for m in short_term), recent=recent)
        if context.current_context:
            context.context_vector = await self.vectorizer.embed(context.current_context)
        for other in recent:
            if other is exclude or other.vector:
                continue
            vector = await self.vectorizer.embed(other.content)
            if vector is not None:
                context.recent_vectors[other.id] = vector
        return context

    def neighbours(self, memory: Memory, threshold: float, limit: int) -> list[tuple[Memory, float]]:
        """Most similar residents at or above ``threshold``, best first."""
        if limit <= 0:
            return []
        found: list[tuple[Memory, float]] = []
        if memory.vector:
            for hit in self.index.query(memory.vector, top_k=limit + 1, threshold=threshold):
                other = self.store.get(hit.id)
                if hit.id != memory.id and other is not None:
                    found.append((other, hit.similarity))
            return found[:limit]

        candidates = heapq.nlargest(
            NEIGHBOUR_SCAN_LIMIT,
            (m for m in self.store.all() if m.id != memory.id),
            key=_by_timestamp,
        )
        for other in candidates:
            similarity = self.scorer.text_similarity(memory.content, other.content)
            if similarity >= threshold:
                found.append((other, similarity))
        found.sort(key=lambda pair: pair[1], reverse=True)
        return found[:limit]

    @staticmethod
    def index_metadata(memory: Memory) -> dict[str, Any]:
        return {"layer": memory.layer.value, "chat_id": memory.chat_id, "type": memory.type}

    def rebuild_index(self) -> int:
        return self.index.rebuild(
            (memory.id, memory.vector, self.index_metadata(memory)) for memory in self.store.all() if memory.vector
        )

    def _handle_eviction(self, evicted: CapacityEviction | None) -> None:
        if evicted is None:
            return
        self.index.remove(evicted.memory_id)
        self.stats.evictions += 1
        self.scope.mark_dirty(evicted.layer)

    def _delete(self, memory: Memory) -> None:
        if self.store.remove(memory.id) is not None:
            self.index.remove(memory.id)
            self.scope.mark_dirty(memory.layer)

    def report_error(self, operation: str, error: Exception) -> None:
        """Count, log and announce an error that was absorbed."""
        self.stats.errors += 1
        code = error.code if isinstance(error, ApplicationError) else ErrorCode.SWEEP_FAILED
        self.events.emit(
            MemoryErrorEvent(
                chat_id=self.scope.chat_id,
                operation=operation,
                error_code=code.value,
                message=str(error),
            )
        )

    def clear_recent(self) -> int:
        """Roll back the newest memories: all of sensory plus short-term inside the rollback window."""
        now = self.clock()
        window = timedelta(minutes=self.settings.lifecycle.rollback_window_minutes)
        doomed = self.store.all_of(Layer.SENSORY)
        doomed += [m for m in self.store.all_of(Layer.SHORT_TERM) if m.age(now) < window]
        for memory in doomed:
            self._delete(memory)
        if doomed:
            logger.info(f"Rolled back {len(doomed)} recent memories")
        return len(doomed)

    # Sweeps

    async def _exclusive(self, name: str, *sweeps: Callable[[], Awaitable[SweepReport]]) -> list[SweepReport]:
        if self._maintenance_lock.locked():
            logger.debug("Maintenance already running, skipping sweep", sweep=name)
            return [SweepReport(sweep=name, skipped=True)]
        async with self._maintenance_lock:
            reports = [await sweep() for sweep in sweeps]
        self.stats.last_maintenance = self.clock()
        for report in reports:
            logger.info(
                f"{report.sweep} sweep finished",
                examined=report.examined,
                changed=report.changed,
                failures=report.failures,
                duration_ms=round(report.duration_ms, 2),
            )
        return reports

    async def run_maintenance(self) -> list[SweepReport]:
        """Decay, then migration."""
        return await self._exclusive("maintenance", self._decay, self._migrate)

    async def run_deep_maintenance(self) -> list[SweepReport]:
        """Conflict resolution, compression, expiry and pattern analysis."""
        return await self._exclusive(
            "deep_maintenance",
            self._resolve_conflicts,
            self._compress,
            self._expire,
            self._analyse_patterns,
        )

    async def run_decay_sweep(self) -> SweepReport:
        return (await self._exclusive("decay", self._decay))[0]

    async def run_migration_sweep(self) -> SweepReport:
        return (await self._exclusive("migration", self._migrate))[0]

    async def run_conflict_sweep(self) -> SweepReport:
        return (await self._exclusive("conflict", self._resolve_conflicts))[0]

    async def run_compression_sweep(self) -> SweepReport:
        return (await self._exclusive("compression", self._compress))[0]

    async def run_expiry_sweep(self) -> SweepReport:
        return (await self._exclusive("expiry", self._expire))[0]

    def _failure(self, report: SweepReport, memory: Memory, error: Exception) -> None:
        report.failures += 1
        logger.warning(
            "Sweep skipped a memory after an error",
            sweep=report.sweep,
            memory_id=memory.id,
            error=str(error),
        )
        self.report_error(f"{report.sweep}_sweep", error)

    @staticmethod
    def _finish(report: SweepReport, started: float) -> SweepReport:
        report.duration_ms = (time.perf_counter() - started) * 1000
        return report

    async def _decay(self) -> SweepReport:
        started, report = time.perf_counter(), SweepReport(sweep="decay")
        now = self.clock()
        floor = self.settings.decay.sensory_recency_floor
        for layer, unit_seconds in DECAY_UNITS.items():
            rate = getattr(self.settings.decay, layer.value)
            for memory in self.store.all_of(layer):
                report.examined += 1
                try:
                    if self.store.get(memory.id) is not memory:
                        continue
                    elapsed = (now - (memory.decayed_at or memory.timestamp)).total_seconds() / unit_seconds
                    if elapsed <= 0:
                        continue
                    memory.recency = memory.recency * rate**elapsed
                    memory.decayed_at = now
                    report.changed += 1
                    self.scope.mark_dirty(layer)
                    if layer is Layer.SENSORY and memory.recency < floor:
                        self._delete(memory)
                        self.stats.forgotten += 1
                except Exception as e:
                    self._failure(report, memory, e)
        return self._finish(report, started)

    async def _migrate(self) -> SweepReport:
        started, report = time.perf_counter(), SweepReport(sweep="migration")
        generation = self.scope.generation
        for layer in LAYER_ORDER[:-1]:
            threshold = self._thresholds[layer]
            target = layer.next
            for memory in self.store.all_of(layer):
                if self.scope.generation != generation:
                    logger.info("Conversation switched during migration sweep, stopping early")
                    return self._finish(report, started)
                report.examined += 1
                if self.store.get(memory.id) is not memory or memory.layer is not layer:
                    continue
                if memory.importance < threshold:
                    continue
                try:
                    await self.promote(memory, target)
                    report.changed += 1
                except Exception as e:
                    self._failure(report, memory, e)
        return self._finish(report, started)

    def _pairwise_similarity(self, residents: list[Memory]) -> np.ndarray:
        """Same measure as Scorer.similarity for every pair, computed in bulk."""
        token_sets = [set(tokenize(m.content)) for m in residents]
        n = len(residents)
        sims = np.zeros((n, n))
        for i in range(n):
            for j in range(i + 1, n):
                a, b = token_sets[i], token_sets[j]
                if a and b:
                    sims[i, j] = sims[j, i] = len(a & b) / len(a | b)

        by_dimension: dict[int, list[int]] = defaultdict(list)
        for i, memory in enumerate(residents):
            if memory.vector:
                by_dimension[len(memory.vector)].append(i)
        for positions in by_dimension.values():
            if len(positions) < 2:
                continue
            matrix = np.asarray([residents[i].vector for i in positions], dtype=np.float64)
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            matrix = matrix / norms
            cosine = np.clip(matrix @ matrix.T, 0.0, 1.0)
            sims[np.ix_(positions, positions)] = cosine
        return sims

    def detect_conflict(self, a: Memory, b: Memory, similarity: float | None = None) -> ConflictDetected | None:
        """Negation first, then similar content filed under different categories."""
        if not a.outdated and not b.outdated and is_negation_pair(a.content, b.content):
            return ConflictDetected(
                kind=ConflictKind.NEGATION,
                first_id=a.id,
                second_id=b.id,
                similarity=jaccard(a.content, b.content),
            )
        if similarity is None:
            similarity = self.scorer.similarity(a, b)
        if similarity > self.settings.lifecycle.conflict_similarity_threshold and a.category != b.category:
            return ConflictDetected(kind=ConflictKind.CATEGORY, first_id=a.id, second_id=b.id, similarity=similarity)
        return None

    def resolve_conflict(self, conflict: ConflictDetected, a: Memory, b: Memory) -> str | None:
        """Apply the resolution; returns the id of a deleted memory, if any."""
        if self.store.get(a.id) is not a or self.store.get(b.id) is not b:
            return None
        now = self.clock()
        self.stats.conflicts_resolved += 1

        if conflict.kind is ConflictKind.NEGATION:
            older, newer = (a, b) if a.timestamp <= b.timestamp else (b, a)
            older.metadata.update(outdated=True, outdated_by=newer.id, outdated_at=now.isoformat())
            self.scope.arena.record(
                older,
                ProvenanceRecord(
                    kind=ProvenanceKind.CONFLICT,
                    memory_id=older.id,
                    at=now,
                    reason="contradicted by a newer memory",
                    source_id=newer.id,
                    source_content=newer.content,
                    source_timestamp=newer.timestamp,
                ),
            )
            self.scope.mark_dirty(older.layer)
            logger.info(f"Marked memory {older.id} outdated", superseded_by=newer.id)
            self.events.emit(
                MemoryConflictResolved(
                    chat_id=self.scope.chat_id,
                    kind=conflict.kind,
                    kept_id=newer.id,
                    outdated_id=older.id,
                    similarity=conflict.similarity,
                )
            )
            return None

        kept, lost = (a, b) if a.importance >= b.importance else (b, a)
        self.scope.arena.record_merge(
            kept,
            lost,
            now,
            kind=ProvenanceKind.CONFLICT,
            reason=f"category conflict: {lost.category.value} vs {kept.category.value}",
        )
        self._delete(lost)
        self.scope.mark_dirty(kept.layer)
        logger.info(f"Resolved category conflict, kept {kept.id}", removed=lost.id)
        self.events.emit(
            MemoryConflictResolved(
                chat_id=self.scope.chat_id,
                kind=conflict.kind,
                kept_id=kept.id,
                removed_id=lost.id,
                similarity=conflict.similarity,
            )
        )
        return lost.id

    async def _resolve_conflicts(self) -> SweepReport:
        started, report = time.perf_counter(), SweepReport(sweep="conflict")
        residents = heapq.nlargest(
            self.settings.lifecycle.conflict_max_residents,
            self.store.all(),
            key=_by_timestamp,
        )
        report.examined = len(residents)
        sims = self._pairwise_similarity(residents)
        removed: set[str] = set()
        for i, first in enumerate(residents):
            for j in range(i + 1, len(residents)):
                second = residents[j]
                if first.id in removed:
                    break
                if second.id in removed:
                    continue
                try:
                    conflict = self.detect_conflict(first, second, similarity=float(sims[i, j]))
                    if conflict is None:
                        continue
                    lost = self.resolve_conflict(conflict, first, second)
                    report.changed += 1
                    if lost is not None:
                        removed.add(lost)
                except Exception as e:
                    self._failure(report, second, e)
        return self._finish(report, started)

    def merge_contents(self, contents: Iterable[str]) -> str:
        """Sentence-level deduplicated summary of several contents."""
        contents = list(contents)
        threshold = self.settings.lifecycle.sentence_dedup_threshold
        kept: list[str] = []
        for content in contents:
            for sentence in split_sentences(content):
                if any(jaccard(sentence, existing) > threshold for existing in kept):
                    continue
                kept.append(sentence)
        if not kept:
            return contents[0] if contents else ""
        return ". ".join(kept) + "."

    async def compress(self, survivor: Memory, absorbed: list[Memory]) -> bool:
        """Fold ``absorbed`` into ``survivor``, delete them and re-embed the merged content.

        Returns False, changing nothing, when any of them was switched out,
        evicted or moved while the merged content was being embedded.
        """
        generation, layer = self.scope.generation, survivor.layer
        ordered = [survivor, *sorted(absorbed, key=_by_timestamp)]
        merged = self.merge_contents(m.content for m in ordered)
        vector = await self.vectorizer.embed(merged)
        if not all(self._still_current(m, layer, generation) for m in ordered):
            logger.debug("Discarding compression of memories that moved on", survivor_id=survivor.id)
            return False

        now = self.clock()
        original_count = sum(m.metadata.get("original_count", 1) for m in ordered)
        survivor.content = merged
        for memory in absorbed:
            self.scope.arena.record_merge(survivor, memory, now, reason="compression")
        survivor.metadata.update(compressed=True, original_count=original_count, compressed_at=now.isoformat())
        for memory in absorbed:
            self._delete(memory)
        survivor.vector = vector
        if vector:
            self.index.add(survivor.id, vector, self.index_metadata(survivor))
        else:
            # without a vector it is found by keywords
            self.index.remove(survivor.id)
        self.scope.mark_dirty(survivor.layer)

        self.stats.compressions += 1
        self.stats.compressed_memories += len(absorbed)
        logger.info(f"Compressed {len(ordered)} memories into {survivor.id}")
        self.events.emit(
            MemoryCompressed(
                chat_id=self.scope.chat_id,
                survivor_id=survivor.id,
                merged_ids=[m.id for m in absorbed],
            )
        )
        return True

    async def _compress(self) -> SweepReport:
        started, report = time.perf_counter(), SweepReport(sweep="compression")
        threshold = self.settings.lifecycle.compression_similarity_threshold
        min_size = self.settings.lifecycle.compression_min_cluster_size
        generation = self.scope.generation

        for layer in DEEP_LAYERS:
            candidates = [m for m in self.store.all_of(layer) if m.vector and not m.outdated]
            if len(candidates) < min_size:
                continue
            dimension = Counter(len(m.vector) for m in candidates).most_common(1)[0][0]
            candidates = [m for m in candidates if len(m.vector) == dimension]
            if len(candidates) < min_size:
                continue

            labels = await self.clusterer.predict([m.vector for m in candidates])
            if self.scope.generation != generation:
                logger.info("Conversation switched during compression sweep, stopping early")
                break

            clusters: dict[int, list[Memory]] = defaultdict(list)
            for memory, label in zip(candidates, labels, strict=True):
                if label != -1:
                    clusters[label].append(memory)

            for members in clusters.values():
                report.examined += len(members)
                live = [m for m in members if self.store.get(m.id) is m and m.layer is layer]
                if len(live) < min_size:
                    continue
                survivor = max(live, key=lambda m: (m.importance, m.timestamp))
                try:
                    absorbed = [
                        m for m in live if m is not survivor and cosine_similarity(survivor.vector, m.vector) > threshold
                    ]
                    if len(absorbed) + 1 < min_size:
                        continue
                    if await self.compress(survivor, absorbed):
                        report.changed += 1
                except Exception as e:
                    self._failure(report, survivor, e)
        return self._finish(report, started)

    async def _expire(self) -> SweepReport:
        started, report = time.perf_counter(), SweepReport(sweep="expiry")
        now = self.clock()
        max_age = timedelta(days=self.settings.lifecycle.max_memory_age_days)
        low = self.settings.lifecycle.low_importance_threshold
        for memory in self.store.all():
            report.examined += 1
            try:
                if memory.age(now) > max_age and memory.importance < low:
                    self._delete(memory)
                    self.stats.expired += 1
                    report.changed += 1
            except Exception as e:
                self._failure(report, memory, e)
        return self._finish(report, started)

    async def _analyse_patterns(self) -> SweepReport:
        started, report = time.perf_counter(), SweepReport(sweep="patterns")
        residents = self.store.all()
        report.examined = len(residents)
        by_layer: dict[str, float] = {}
        for layer in LAYER_ORDER:
            tier = self.store.all_of(layer)
            if tier:
                by_layer[layer.value] = sum(m.importance for m in tier) / len(tier)
        self.stats.average_importance_by_layer = by_layer
        self.stats.average_importance = sum(m.importance for m in residents) / len(residents) if residents else 0.0
        report.changed = self.rebuild_index()
        return self._finish(report, started)
