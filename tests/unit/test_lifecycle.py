import asyncio
import random
from datetime import timedelta

import pytest

from deep_memory.domain.models import (
    Category,
    ConflictKind,
    Emotion,
    Layer,
    MemoryAdded,
    MemoryCompressed,
    MemoryConflictResolved,
    MemoryErrorEvent,
    MemoryMigrated,
    ProvenanceKind,
    TemporalPattern,
)
from deep_memory.infrastructure.embeddings import EmbeddingCache, FallbackEmbedder, Vectorizer
from deep_memory.services.lifecycle import is_negation_pair
from deep_memory.services.scoring import ScoringContext
from deep_memory.subsystem import MemorySubsystem


class RecordingVectorizer(Vectorizer):
    def __init__(self):
        super().__init__(primary=None, fallback=FallbackEmbedder(), cache=EmbeddingCache())
        self.texts: list[str] = []

    async def embed(self, text):
        self.texts.append(text)
        return await super().embed(text)


class GatedVectorizer(Vectorizer):
    """Blocks every embed call until the test opens the gate."""

    def __init__(self):
        super().__init__(primary=None, fallback=FallbackEmbedder(), cache=EmbeddingCache())
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def embed(self, text):
        self.entered.set()
        await self.gate.wait()
        return await super().embed(text)


async def activate(subsystem, chat_id="chat-a"):
    await subsystem.switch_to(chat_id)
    return subsystem.engine


@pytest.mark.asyncio
async def test_important_content_skips_the_sensory_tier(subsystem, sink):
    memory_id = await subsystem.add_memory("We agreed to ship the beta next week", type="user_message")

    memory = subsystem.get(memory_id)
    assert memory.layer is Layer.SHORT_TERM
    assert memory.metadata["chat_id"] == "default"
    assert memory.metadata["processing_stage"] == "quick"
    (record,) = subsystem.history(memory_id)
    assert (record.from_layer, record.to_layer) == (Layer.SENSORY, Layer.SHORT_TERM)
    assert record.reason == "importance at ingestion"
    assert sink.of(MemoryAdded)[-1].layer is Layer.SHORT_TERM
    assert len(sink.of(MemoryMigrated)) == 1


@pytest.mark.asyncio
async def test_plain_content_stays_sensory(sensory_settings, persistence, sink, vectorizer, clock):
    subsystem = MemorySubsystem(
        settings=sensory_settings, persistence=persistence, events=sink, vectorizer=vectorizer, clock=clock
    )
    memory_id = await subsystem.add_memory("the kettle is on")

    assert subsystem.get(memory_id).layer is Layer.SENSORY
    assert subsystem.history(memory_id) == []


@pytest.mark.asyncio
async def test_decay_is_monotonic_and_does_not_compound(subsystem, make_memory, clock):
    engine = await activate(subsystem)
    memory = make_memory("remember the milk")
    engine.store.insert(Layer.SHORT_TERM, memory)

    clock.advance(hours=2)
    await engine.run_decay_sweep()
    assert memory.recency == pytest.approx(0.95**2)

    report = await engine.run_decay_sweep()
    assert memory.recency == pytest.approx(0.95**2)
    assert report.changed == 0

    clock.advance(hours=1)
    await engine.run_decay_sweep()
    assert memory.recency == pytest.approx(0.95**3)
    assert memory.decayed_at == clock()


@pytest.mark.asyncio
async def test_faded_sensory_memory_is_forgotten(subsystem, make_memory, clock):
    engine = await activate(subsystem)
    fading = make_memory("passing remark")
    engine.store.insert(Layer.SENSORY, fading)

    clock.advance(minutes=10)
    await engine.run_decay_sweep()
    assert fading.id in engine.store
    assert fading.recency == pytest.approx(0.9**10)

    clock.advance(minutes=20)
    await engine.run_decay_sweep()
    assert fading.id not in engine.store
    assert engine.stats.forgotten == 1


@pytest.mark.asyncio
async def test_deep_archive_does_not_decay(subsystem, make_memory, clock):
    engine = await activate(subsystem)
    archived = make_memory("our wedding anniversary")
    engine.store.insert(Layer.DEEP_ARCHIVE, archived)

    clock.advance(days=400)
    await engine.run_decay_sweep()

    assert archived.recency == 1.0
    assert archived.decayed_at is None


@pytest.mark.asyncio
async def test_migration_into_long_term_runs_deep_processing(subsystem, make_memory, sink):
    engine = await activate(subsystem)
    memory = make_memory("The train to the coast leaves at noon", importance=0.7)
    engine.store.insert(Layer.SHORT_TERM, memory)

    report = await engine.run_migration_sweep()

    assert report.changed == 1
    assert memory.layer is Layer.LONG_TERM
    assert memory.vector is not None and len(memory.vector) == 384
    assert memory.id in engine.index
    assert memory.metadata["processing_stage"] == "deep"
    assert "deep_processed_at" in memory.metadata
    (record,) = engine.scope.arena.migration_history(memory)
    assert (record.from_layer, record.to_layer) == (Layer.SHORT_TERM, Layer.LONG_TERM)
    assert sink.of(MemoryMigrated)[-1].to_layer is Layer.LONG_TERM


@pytest.mark.asyncio
async def test_deep_processing_classifies(subsystem, make_memory):
    engine = await activate(subsystem)
    memory = make_memory("The event happened and it was a great success")
    engine.store.insert(Layer.LONG_TERM, memory)

    assert await engine.deep_process(memory) is True

    assert memory.category is Category.EPISODIC
    assert memory.emotion is Emotion.POSITIVE
    assert memory.temporal_pattern is TemporalPattern.RECENT
    assert memory.metadata["relations"] == []
    assert memory.metadata["relation_strength"] == "isolated"


@pytest.mark.asyncio
async def test_deep_processing_links_similar_neighbours(subsystem, make_memory):
    engine = await activate(subsystem)
    first = make_memory("the quarterly budget review is on friday")
    second = make_memory("the quarterly budget review is on friday afternoon")
    engine.store.insert(Layer.LONG_TERM, first)
    engine.store.insert(Layer.LONG_TERM, second)

    await engine.deep_process(first)
    await engine.deep_process(second)

    (relation,) = second.metadata["relations"]
    assert relation["id"] == first.id
    assert relation["type"] == "temporal"
    assert relation["similarity"] >= 0.6


@pytest.mark.asyncio
async def test_migrations_only_move_forward(subsystem, make_memory):
    engine = await activate(subsystem)
    rng = random.Random(7)
    for n in range(8):
        engine.store.insert(Layer.SENSORY, make_memory(f"note number {n} about topic {n % 3}", importance=rng.random()))

    for _ in range(3):
        await engine.run_maintenance()

    for memory in engine.store.all():
        history = engine.scope.arena.migration_history(memory)
        for record in history:
            assert record.from_layer.precedes(record.to_layer)
        for earlier, later in zip(history, history[1:]):
            assert earlier.to_layer is later.from_layer
        if history:
            assert history[-1].to_layer is memory.layer


@pytest.mark.asyncio
async def test_result_of_embedding_is_dropped_after_switch(settings, persistence, sink, clock, make_memory):
    gated = GatedVectorizer()
    subsystem = MemorySubsystem(settings=settings, persistence=persistence, events=sink, vectorizer=gated, clock=clock)
    engine = await activate(subsystem)
    memory = make_memory("the spare key is under the mat")
    engine.store.insert(Layer.LONG_TERM, memory)

    task = asyncio.create_task(engine.deep_process(memory))
    await gated.entered.wait()
    await subsystem.switch_to("chat-b")
    gated.gate.set()

    assert await task is False
    assert memory.vector is None
    assert memory.metadata.get("processing_stage") is None
    assert len(subsystem.index) == 0
    assert subsystem.get(memory.id) is None


@pytest.mark.asyncio
async def test_category_conflict_keeps_the_more_important(subsystem, make_memory, sink):
    engine = await activate(subsystem)
    strong = make_memory("The launch moved to Thursday", importance=0.7, category=Category.EPISODIC)
    weak = make_memory("The launch moved to Thursday", importance=0.4, category=Category.SEMANTIC)
    engine.store.insert(Layer.LONG_TERM, strong)
    engine.store.insert(Layer.LONG_TERM, weak)

    report = await engine.run_conflict_sweep()

    assert report.changed == 1
    assert weak.id not in engine.store
    assert strong.merged_from == [weak.id]
    (record,) = engine.scope.arena.history(strong, ProvenanceKind.CONFLICT)
    assert record.source_content == weak.content
    assert record.source_timestamp == weak.timestamp
    event = sink.of(MemoryConflictResolved)[-1]
    assert (event.kind, event.kept_id, event.removed_id) == (ConflictKind.CATEGORY, strong.id, weak.id)
    assert engine.stats.conflicts_resolved == 1


@pytest.mark.asyncio
async def test_negation_marks_the_older_outdated(subsystem, make_memory, clock, sink):
    engine = await activate(subsystem)
    older = make_memory("Paris is the capital of France")
    newer = make_memory("Paris is not the capital of France", timestamp=clock.advance(minutes=1))
    engine.store.insert(Layer.SHORT_TERM, newer)
    engine.store.insert(Layer.SHORT_TERM, older)

    await engine.run_conflict_sweep()

    assert older.outdated
    assert older.metadata["outdated_by"] == newer.id
    assert not newer.outdated
    assert older.id in engine.store
    event = sink.of(MemoryConflictResolved)[-1]
    assert (event.kind, event.outdated_id, event.removed_id) == (ConflictKind.NEGATION, older.id, None)

    # an outdated memory is not flagged again
    report = await engine.run_conflict_sweep()
    assert report.changed == 0


def test_negation_pairs():
    assert is_negation_pair("Paris is the capital of France", "Paris is not the capital of France")
    assert is_negation_pair("we will go", "we will never go")
    assert is_negation_pair("it isn't raining", "it is raining")
    assert is_negation_pair("我喜欢咖啡", "我不喜欢咖啡")
    assert not is_negation_pair("we will go", "we will not not go")
    assert not is_negation_pair("we will go", "they will not go")
    assert not is_negation_pair("not", "no")


@pytest.mark.asyncio
async def test_compression_merges_a_tight_cluster(subsystem, make_memory, clock, sink):
    engine = await activate(subsystem)
    survivor = make_memory("The meeting is on Monday. Bring the slides.", importance=0.9, vector=[1.0, 0.0, 0.0, 0.0])
    repeat = make_memory(
        "The meeting is on Monday", importance=0.5, vector=[0.99, 0.05, 0.0, 0.0], timestamp=clock.advance(minutes=1)
    )
    snacks = make_memory("Bring snacks", importance=0.4, vector=[0.98, 0.0, 0.05, 0.0], timestamp=clock.advance(minutes=1))
    unrelated = make_memory("The car needs new tyres", importance=0.6, vector=[0.0, 0.0, 0.0, 1.0])
    for memory in (survivor, repeat, snacks, unrelated):
        engine.store.insert(Layer.LONG_TERM, memory)

    report = await engine.run_compression_sweep()

    assert report.changed == 1
    assert survivor.content == "The meeting is on Monday. Bring the slides. Bring snacks."
    assert survivor.metadata["compressed"] is True
    assert survivor.metadata["original_count"] == 3
    assert sorted(survivor.merged_from) == sorted([repeat.id, snacks.id])
    assert repeat.id not in engine.store and snacks.id not in engine.store
    assert unrelated.id in engine.store
    assert survivor.id in engine.index
    assert survivor.vector == await subsystem.vectorizer.embed(survivor.content)
    assert engine.stats.compressions == 1
    assert engine.stats.compression_ratio == pytest.approx(2 / 3)
    assert sink.of(MemoryCompressed)[-1].survivor_id == survivor.id


@pytest.mark.asyncio
async def test_small_clusters_are_left_alone(subsystem, make_memory):
    engine = await activate(subsystem)
    for vector in ([1.0, 0.0], [0.99, 0.05]):
        engine.store.insert(Layer.LONG_TERM, make_memory("same thing", vector=vector))

    report = await engine.run_compression_sweep()
    assert report.changed == 0
    assert engine.store.size(Layer.LONG_TERM) == 2


def test_merge_contents_drops_repeated_sentences(subsystem):
    merged = subsystem.engine.merge_contents(["Buy milk. Buy eggs!", "buy milk", "Call mum"])
    assert merged == "Buy milk. Buy eggs. Call mum."


@pytest.mark.asyncio
async def test_old_unimportant_memories_expire(subsystem, make_memory, clock):
    engine = await activate(subsystem)
    trivial = make_memory("trivial chatter", importance=0.1)
    valued = make_memory("valued fact", importance=0.5)
    engine.store.insert(Layer.LONG_TERM, trivial)
    engine.store.insert(Layer.LONG_TERM, valued)

    clock.advance(days=29)
    assert (await engine.run_expiry_sweep()).changed == 0

    clock.advance(days=2)
    report = await engine.run_expiry_sweep()

    assert report.changed == 1
    assert trivial.id not in engine.store
    assert valued.id in engine.store
    assert engine.stats.expired == 1


@pytest.mark.asyncio
async def test_sweep_is_skipped_while_another_runs(subsystem):
    engine = await activate(subsystem)

    async with engine._maintenance_lock:
        assert engine.maintenance_running
        report = await engine.run_decay_sweep()
        reports = await engine.run_deep_maintenance()

    assert report.skipped
    assert [r.skipped for r in reports] == [True]
    assert not (await engine.run_decay_sweep()).skipped


@pytest.mark.asyncio
async def test_deep_score_compares_embedded_context(settings, persistence, sink, clock, make_memory):
    recording = RecordingVectorizer()
    subsystem = MemorySubsystem(
        settings=settings, persistence=persistence, events=sink, vectorizer=recording, clock=clock
    )
    engine = await activate(subsystem)
    chatter = make_memory("we are planning the offsite in Lisbon")
    other = make_memory("the printer on floor two is jammed")
    memory = make_memory("book the flights to Lisbon for the offsite")
    engine.store.insert(Layer.SHORT_TERM, chatter)
    engine.store.insert(Layer.LONG_TERM, other)
    engine.store.insert(Layer.LONG_TERM, memory)

    assert await engine.deep_process(memory) is True

    assert {memory.content, chatter.content, other.content} <= set(recording.texts)
    embed = FallbackEmbedder().embed
    context = ScoringContext(
        current_context=chatter.content,
        recent=[chatter, other, memory],
        context_vector=embed(chatter.content),
        recent_vectors={chatter.id: embed(chatter.content), other.id: embed(other.content)},
    )
    assert memory.importance == pytest.approx(subsystem.scorer.deep_score(memory, context))


@pytest.mark.asyncio
@pytest.mark.parametrize("interference", ["evicted", "migrated"])
async def test_result_of_embedding_is_dropped_when_the_memory_moved_on(
    settings, persistence, sink, clock, make_memory, interference
):
    gated = GatedVectorizer()
    subsystem = MemorySubsystem(settings=settings, persistence=persistence, events=sink, vectorizer=gated, clock=clock)
    engine = await activate(subsystem)
    memory = make_memory("the boiler code is 4471")
    engine.store.insert(Layer.LONG_TERM, memory)

    task = asyncio.create_task(engine.deep_process(memory))
    await gated.entered.wait()
    if interference == "evicted":
        engine.store.remove(memory.id)
    else:
        engine.store.move_tier(memory.id, Layer.LONG_TERM, Layer.DEEP_ARCHIVE)
    gated.gate.set()

    assert await task is False
    assert memory.vector is None
    assert memory.metadata.get("processing_stage") is None
    assert len(subsystem.index) == 0


@pytest.mark.asyncio
async def test_migration_sweep_tolerates_eviction_during_deep_processing(
    settings, persistence, sink, clock, make_memory
):
    gated = GatedVectorizer()
    subsystem = MemorySubsystem(settings=settings, persistence=persistence, events=sink, vectorizer=gated, clock=clock)
    engine = await activate(subsystem)
    memory = make_memory("the boiler code is 4471", importance=0.7)
    engine.store.insert(Layer.SHORT_TERM, memory)

    sweep = asyncio.create_task(engine.run_migration_sweep())
    await gated.entered.wait()
    engine.store.remove(memory.id)
    gated.gate.set()
    report = await sweep

    assert report.changed == 1
    assert report.failures == 0
    assert memory.vector is None
    assert len(subsystem.index) == 0
    assert engine.stats.errors == 0


@pytest.mark.asyncio
async def test_compression_is_abandoned_when_a_member_goes_away(settings, persistence, sink, clock, make_memory):
    gated = GatedVectorizer()
    subsystem = MemorySubsystem(settings=settings, persistence=persistence, events=sink, vectorizer=gated, clock=clock)
    engine = await activate(subsystem)
    survivor = make_memory("The meeting is on Monday", importance=0.9, vector=[1.0, 0.0, 0.0])
    repeat = make_memory("The meeting is on Monday again", importance=0.5, vector=[0.99, 0.05, 0.0])
    snacks = make_memory("Bring snacks", importance=0.4, vector=[0.98, 0.0, 0.05])
    for memory in (survivor, repeat, snacks):
        engine.store.insert(Layer.LONG_TERM, memory)

    sweep = asyncio.create_task(engine.run_compression_sweep())
    await gated.entered.wait()
    engine.store.remove(snacks.id)
    gated.gate.set()
    report = await sweep

    assert report.changed == 0
    assert report.failures == 0
    assert survivor.content == "The meeting is on Monday"
    assert survivor.vector == [1.0, 0.0, 0.0]
    assert repeat.id in engine.store
    assert engine.stats.compressions == 0


@pytest.mark.asyncio
async def test_one_failing_memory_does_not_stop_the_sweep(subsystem, make_memory, monkeypatch, sink):
    engine = await activate(subsystem)
    broken = make_memory("this one breaks", importance=0.7)
    fine = make_memory("this one is fine", importance=0.7)
    engine.store.insert(Layer.SHORT_TERM, broken)
    engine.store.insert(Layer.SHORT_TERM, fine)
    original = engine.promote

    async def flaky_promote(memory, to_layer, reason="importance threshold"):
        if memory is broken:
            raise RuntimeError("simulated failure")
        await original(memory, to_layer, reason)

    monkeypatch.setattr(engine, "promote", flaky_promote)
    report = await engine.run_migration_sweep()

    assert report.failures == 1
    assert report.changed == 1
    assert broken.layer is Layer.SHORT_TERM
    assert fine.layer is Layer.LONG_TERM
    assert engine.stats.errors == 1
    assert sink.of(MemoryErrorEvent)[-1].operation == "migration_sweep"


@pytest.mark.asyncio
async def test_clear_recent_rolls_back_new_memories(subsystem, make_memory, clock):
    engine = await activate(subsystem)
    old = make_memory("from earlier today", timestamp=clock() - timedelta(minutes=30))
    engine.store.insert(Layer.SHORT_TERM, old)
    young = make_memory("just said this")
    engine.store.insert(Layer.SHORT_TERM, young)
    sensory = make_memory("and this")
    engine.store.insert(Layer.SENSORY, sensory)

    assert await subsystem.clear_recent_memories() == 2
    assert [m.id for m in engine.store.all()] == [old.id]


@pytest.mark.asyncio
async def test_pattern_analysis_updates_averages(subsystem, make_memory):
    engine = await activate(subsystem)
    engine.store.insert(Layer.SHORT_TERM, make_memory(importance=0.2))
    engine.store.insert(Layer.SHORT_TERM, make_memory(importance=0.4))
    engine.store.insert(Layer.LONG_TERM, make_memory(importance=0.9, vector=[1.0, 0.0]))

    reports = await engine.run_deep_maintenance()

    assert [r.sweep for r in reports] == ["conflict", "compression", "expiry", "patterns"]
    assert engine.stats.average_importance_by_layer == {
        "short_term": pytest.approx(0.3),
        "long_term": pytest.approx(0.9),
    }
    assert engine.stats.average_importance == pytest.approx(0.5)
    assert len(engine.index) == 1
    assert engine.stats.last_maintenance is not None
