"""Provenance arena.

Migration and merge history is kept out of the entities: each scope owns an
append-only list of immutable records and a memory only carries the
indices of the records that concern it.
"""

from collections.abc import Iterable
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .base import Layer, ProvenanceKind
from .memory import Memory
from .utils import utc_now


class ProvenanceRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ProvenanceKind
    memory_id: str
    at: datetime = Field(default_factory=utc_now)
    reason: str = ""
    from_layer: Layer | None = None
    to_layer: Layer | None = None
    # Set for merge and conflict records: the entity folded into memory_id
    source_id: str | None = None
    source_content: str | None = None
    source_timestamp: datetime | None = None


_records_adapter = TypeAdapter(list[ProvenanceRecord])


class ProvenanceArena:
    def __init__(self, records: Iterable[ProvenanceRecord] = ()):
        self._records: list[ProvenanceRecord] = list(records)

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, index: int) -> ProvenanceRecord:
        return self._records[index]

    def record(self, memory: Memory, record: ProvenanceRecord) -> int:
        """Append ``record`` and reference it from ``memory``."""
        self._records.append(record)
        index = len(self._records) - 1
        memory.provenance.append(index)
        return index

    def record_migration(self, memory: Memory, from_layer: Layer, to_layer: Layer, at: datetime, reason: str) -> int:
        return self.record(
            memory,
            ProvenanceRecord(
                kind=ProvenanceKind.MIGRATION,
                memory_id=memory.id,
                at=at,
                reason=reason,
                from_layer=from_layer,
                to_layer=to_layer,
            ),
        )

    def record_merge(
        self,
        survivor: Memory,
        absorbed: Memory,
        at: datetime,
        kind: ProvenanceKind = ProvenanceKind.MERGE,
        reason: str = "",
    ) -> int:
        """Record that ``absorbed`` was folded into ``survivor`` and list it in merged_from."""
        merged = survivor.metadata.setdefault("merged_from", [])
        if absorbed.id not in merged:
            merged.append(absorbed.id)
        return self.record(
            survivor,
            ProvenanceRecord(
                kind=kind,
                memory_id=survivor.id,
                at=at,
                reason=reason,
                source_id=absorbed.id,
                source_content=absorbed.content,
                source_timestamp=absorbed.timestamp,
            ),
        )

    def history(self, memory: Memory, kind: ProvenanceKind | None = None) -> list[ProvenanceRecord]:
        records = [self._records[i] for i in memory.provenance if 0 <= i < len(self._records)]
        if kind is not None:
            records = [r for r in records if r.kind == kind]
        return records

    def migration_history(self, memory: Memory) -> list[ProvenanceRecord]:
        return self.history(memory, ProvenanceKind.MIGRATION)

    def compact(self, memories: Iterable[Memory]) -> None:
        """Drop records no resident memory references and renumber the rest.

        Rewrites ``provenance`` on every memory passed in, so pass all residents.
        """
        memories = list(memories)
        remap: dict[int, int] = {}
        kept: list[ProvenanceRecord] = []
        for memory in memories:
            for index in memory.provenance:
                if index in remap or not 0 <= index < len(self._records):
                    continue
                remap[index] = len(kept)
                kept.append(self._records[index])
        for memory in memories:
            memory.provenance = [remap[i] for i in memory.provenance if i in remap]
        self._records = kept

    def clear(self) -> None:
        self._records = []

    def dump_json(self) -> bytes:
        return _records_adapter.dump_json(self._records)

    @classmethod
    def load_json(cls, payload: bytes) -> "ProvenanceArena":
        return cls(_records_adapter.validate_json(payload))
