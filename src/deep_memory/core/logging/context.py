"""Logging context utilities for structured logging.

The active conversation id lives here so every log line emitted while a
chat scope is active carries it without each call site binding it.
"""

from contextvars import ContextVar
from typing import Any

from structlog.types import EventDict, WrappedLogger

_log_context: ContextVar[dict[str, Any] | None] = ContextVar("deep_memory_log_context", default=None)


def get_log_context() -> dict[str, Any]:
    """Get a copy of the current logging context."""
    context = _log_context.get()
    if context is None:
        return {}
    return context.copy()


def set_log_context(context: dict[str, Any]) -> None:
    """Replace the logging context.

    Args:
        context: Dictionary with logging context data
    """
    _log_context.set(dict(context))


def update_log_context(key: str, value: Any) -> None:
    """Update a single key in the logging context.

    Args:
        key: Context key to update
        value: Value to set
    """
    context = get_log_context()
    context[key] = value
    _log_context.set(context)


def clear_log_context() -> None:
    """Clear the current logging context."""
    _log_context.set({})


def add_log_context(
    _logger: WrappedLogger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that merges the logging context into each event.

    Keys already present on the event win over context keys.
    """
    for key, value in get_log_context().items():
        event_dict.setdefault(key, value)
    return event_dict
