import pytest

from deep_memory.core.base import ErrorCode
from deep_memory.core.errors import PersistenceError
from deep_memory.infrastructure.persistence import CoalescingWriter, InMemoryKeyValueStore


class CountingBackend(InMemoryKeyValueStore):
    def __init__(self):
        super().__init__()
        self.set_calls: list[str] = []
        self.failing: set[str] = set()
        self.fail_reads = False

    async def get(self, key):
        if self.fail_reads:
            raise ConnectionError("storage offline")
        return await super().get(key)

    async def set(self, key, value):
        self.set_calls.append(key)
        if key in self.failing:
            raise ConnectionError("disk full")
        await super().set(key, value)


@pytest.fixture
def backend():
    return CountingBackend()


@pytest.fixture
def writer(backend):
    return CoalescingWriter(backend)


@pytest.mark.asyncio
async def test_repeated_writes_coalesce(writer, backend):
    for n in range(5):
        writer.write("k", f"v{n}".encode())
    writer.write("other", b"x")

    assert await writer.flush() == 2
    assert backend.set_calls == ["k", "other"]
    assert backend.data == {"k": b"v4", "other": b"x"}
    assert writer.pending == []


@pytest.mark.asyncio
async def test_delete_is_pending_until_flushed(writer, backend):
    backend.data["k"] = b"old"
    writer.delete("k")

    assert await writer.read("k") is None
    assert backend.data["k"] == b"old"
    await writer.flush()
    assert "k" not in backend.data


@pytest.mark.asyncio
async def test_failed_write_stays_pending_and_readable(writer, backend):
    backend.failing.add("bad")
    writer.write("bad", b"unsaved")
    writer.write("good", b"saved")

    with pytest.raises(PersistenceError) as exc_info:
        await writer.flush()

    assert exc_info.value.code is ErrorCode.STORAGE_WRITE
    assert backend.data == {"good": b"saved"}
    assert writer.pending == ["bad"]
    assert await writer.read("bad") == b"unsaved"
    assert writer.failures == 1

    backend.failing.clear()
    assert await writer.flush() == 1
    assert backend.data["bad"] == b"unsaved"
    assert writer.pending == []


@pytest.mark.asyncio
async def test_newer_value_wins_over_failed_one(writer, backend):
    backend.failing.add("k")
    writer.write("k", b"first")
    with pytest.raises(PersistenceError):
        await writer.flush()

    writer.write("k", b"second")
    backend.failing.clear()
    await writer.flush()
    assert backend.data["k"] == b"second"


@pytest.mark.asyncio
async def test_read_failure_is_a_persistence_error(writer, backend):
    backend.fail_reads = True
    with pytest.raises(PersistenceError) as exc_info:
        await writer.read("k")
    assert exc_info.value.code is ErrorCode.STORAGE_READ
    assert exc_info.value.details.key == "k"
