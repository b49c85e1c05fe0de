from deep_memory.domain.models import Layer, MemoryAdded, MemoryMigrated
from deep_memory.services import EventSink
from deep_memory.services.events import EventBus


def added(memory_id="m1"):
    return MemoryAdded(chat_id="c", memory_id=memory_id, layer=Layer.SENSORY, importance=0.4)


def test_listeners_receive_subscribed_types():
    bus = EventBus()
    everything, only_added = [], []
    bus.subscribe(everything.append)
    bus.subscribe(only_added.append, MemoryAdded)

    bus.emit(added())
    bus.emit(MemoryMigrated(memory_id="m1", from_layer=Layer.SENSORY, to_layer=Layer.SHORT_TERM))

    assert [e.name for e in everything] == ["memory.added", "memory.migrated"]
    assert [e.name for e in only_added] == ["memory.added"]
    assert bus.emitted == 2


def test_failing_listener_does_not_stop_others():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("listener bug")

    bus.subscribe(broken)
    bus.subscribe(received.append)

    bus.emit(added())
    assert len(received) == 1


def test_unsubscribe():
    bus = EventBus()
    received = []
    unsubscribe = bus.subscribe(received.append, MemoryAdded)

    unsubscribe()
    unsubscribe()
    bus.emit(added())
    assert received == []


def test_bus_is_an_event_sink():
    assert isinstance(EventBus(), EventSink)
