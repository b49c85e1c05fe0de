import pytest

from deep_memory.core.logging import (
    add_log_context,
    clear_log_context,
    get_log_context,
    set_log_context,
    update_log_context,
)
from deep_memory.core.logging.setup import add_logfire_context
from deep_memory.domain.models import Layer


@pytest.fixture(autouse=True)
def fresh_log_context():
    clear_log_context()
    yield
    clear_log_context()


def test_context_is_merged_into_events():
    update_log_context("chat_id", "chat-a")

    event = add_log_context(None, "info", {"event": "Switched", "loaded": 3})

    assert event == {"event": "Switched", "loaded": 3, "chat_id": "chat-a"}


def test_event_keys_win_over_context():
    set_log_context({"chat_id": "chat-a"})
    event = add_log_context(None, "info", {"event": "x", "chat_id": "explicit"})
    assert event["chat_id"] == "explicit"


def test_get_log_context_returns_a_copy():
    set_log_context({"chat_id": "chat-a"})
    get_log_context()["chat_id"] = "mutated"
    assert get_log_context() == {"chat_id": "chat-a"}


def test_logfire_processor_flattens_enums_and_errors():
    event = add_logfire_context(None, "warning", {"event": "x", "layer": Layer.LONG_TERM, "error": KeyError("k")})

    assert event["layer"] == "long_term"
    assert event["error_type"] == "KeyError"
