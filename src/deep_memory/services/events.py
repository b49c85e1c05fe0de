"""In-process fan-out of memory events."""

from collections import defaultdict
from collections.abc import Callable

from deep_memory.core.logging import get_logger
from deep_memory.domain.models import MemoryEvent

logger = get_logger(__name__)

Listener = Callable[[MemoryEvent], None]


class EventBus:
    """Delivers each event to the listeners subscribed to its type.

    A listener that raises is logged and skipped; the others still run and
    the emitting operation is never affected.
    """

    def __init__(self) -> None:
        self._listeners: dict[type[MemoryEvent] | None, list[Listener]] = defaultdict(list)
        self.emitted = 0

    def subscribe(self, listener: Listener, *event_types: type[MemoryEvent]) -> Callable[[], None]:
        """Register ``listener`` for ``event_types`` (all events when none given).

        Returns a callable that unsubscribes it again.
        """
        keys: tuple[type[MemoryEvent] | None, ...] = event_types or (None,)
        for key in keys:
            self._listeners[key].append(listener)

        def unsubscribe() -> None:
            for key in keys:
                if listener in self._listeners[key]:
                    self._listeners[key].remove(listener)

        return unsubscribe

    def emit(self, event: MemoryEvent) -> None:
        self.emitted += 1
        listeners = [*self._listeners.get(type(event), ()), *self._listeners.get(None, ())]
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(
                    "Event listener failed",
                    event_name=event.name,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(e),
                )
