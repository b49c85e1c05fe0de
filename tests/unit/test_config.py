"""Settings defaults, range validation and environment overrides."""

import pytest
from pydantic import ValidationError

from deep_memory.core.config import DecaySettings, LifecycleSettings, PromotionSettings, Settings


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.tiers.sensory == 100
    assert settings.tiers.deep_archive == 50000
    assert settings.promotion.sensory_to_short_term == 0.3
    assert settings.promotion.long_term_to_deep_archive == 0.8
    assert settings.decay.short_term == 0.95
    assert settings.lifecycle.conflict_max_residents == 500
    assert settings.vectorizer.strategy == "fallback"
    assert settings.search.max_results == 15
    assert settings.search.threshold == 0.3


@pytest.mark.parametrize("value", [0.0, 1.0, 1.5, -0.1])
def test_promotion_threshold_must_be_inside_unit_interval(value):
    with pytest.raises(ValidationError):
        PromotionSettings(sensory_to_short_term=value)


def test_promotion_thresholds_must_not_decrease():
    with pytest.raises(ValidationError):
        PromotionSettings(sensory_to_short_term=0.7, short_term_to_long_term=0.6, long_term_to_deep_archive=0.8)


def test_decay_rate_of_zero_is_rejected():
    with pytest.raises(ValidationError):
        DecaySettings(sensory=0.0)


def test_conflict_ceiling_needs_at_least_a_pair():
    with pytest.raises(ValidationError):
        LifecycleSettings(conflict_max_residents=1)


def test_unknown_vectorizer_strategy_is_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, vectorizer={"strategy": "telepathy"})


def test_nested_environment_override(monkeypatch):
    monkeypatch.setenv("DEEP_MEMORY_TIERS__SENSORY", "7")
    monkeypatch.setenv("DEEP_MEMORY_VECTORIZER__STRATEGY", "remote")
    monkeypatch.setenv("DEEP_MEMORY_DEFAULT_CHAT_ID", "lobby")

    settings = Settings(_env_file=None)

    assert settings.tiers.sensory == 7
    assert settings.vectorizer.strategy == "remote"
    assert settings.default_chat_id == "lobby"


def test_api_keys_are_secret():
    settings = Settings(_env_file=None, vectorizer={"remote_api_key": "sk-test"})

    assert "sk-test" not in repr(settings.vectorizer)
    assert settings.vectorizer.remote_api_key.get_secret_value() == "sk-test"
