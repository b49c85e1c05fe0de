"""Configuration management."""

from functools import lru_cache
from typing import Literal, Self

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TierSettings(BaseModel):
    """Capacity of each memory tier."""

    sensory: int = Field(default=100, ge=1)
    short_term: int = Field(default=500, ge=1)
    long_term: int = Field(default=5000, ge=1)
    deep_archive: int = Field(default=50000, ge=1)


class PromotionSettings(BaseModel):
    """Importance thresholds for forward migration (T1, T2, T3)."""

    sensory_to_short_term: float = Field(default=0.3, gt=0, lt=1)
    short_term_to_long_term: float = Field(default=0.6, gt=0, lt=1)
    long_term_to_deep_archive: float = Field(default=0.8, gt=0, lt=1)

    @model_validator(mode="after")
    def check_ordering(self) -> Self:
        if not (self.sensory_to_short_term <= self.short_term_to_long_term <= self.long_term_to_deep_archive):
            raise ValueError("promotion thresholds must be non-decreasing from sensory to deep archive")
        return self


class DecaySettings(BaseModel):
    """Recency decay per elapsed unit: minutes (sensory), hours (short term), days (long term)."""

    sensory: float = Field(default=0.9, gt=0, le=1)
    short_term: float = Field(default=0.95, gt=0, le=1)
    long_term: float = Field(default=0.99, gt=0, le=1)
    sensory_recency_floor: float = Field(default=0.1, ge=0, lt=1)


class EvictionWeights(BaseModel):
    importance_weight: float = Field(default=0.4, ge=0, le=1)
    recency_weight: float = Field(default=0.3, ge=0, le=1)
    relevance_weight: float = Field(default=0.3, ge=0, le=1)


class LifecycleSettings(BaseModel):
    """Thresholds used by the maintenance sweeps."""

    conflict_similarity_threshold: float = Field(default=0.8, gt=0, le=1)
    conflict_max_residents: int = Field(
        default=500,
        ge=2,
        description="Only the most recent residents up to this count are compared pairwise",
    )
    compression_similarity_threshold: float = Field(default=0.7, gt=0, le=1)
    compression_min_cluster_size: int = Field(default=3, ge=2)
    sentence_dedup_threshold: float = Field(default=0.8, gt=0, le=1)
    max_memory_age_days: float = Field(default=30, gt=0)
    low_importance_threshold: float = Field(default=0.3, ge=0, le=1)
    rollback_window_minutes: float = Field(default=5, gt=0)
    periodic_similarity_threshold: float = Field(default=0.7, gt=0, le=1)
    relation_similarity_threshold: float = Field(default=0.6, gt=0, le=1)
    max_relations: int = Field(default=5, ge=0)


class VectorizerSettings(BaseModel):
    """Embedding backend selection and tuning."""

    strategy: Literal["remote", "voyage", "local", "fallback"] = "fallback"
    fallback_enabled: bool = True
    dimensions: int = Field(default=384, ge=8)
    cache_max_size: int = Field(default=1000, ge=1)

    remote_url: str = "https://api.openai.com/v1/embeddings"
    remote_api_key: SecretStr = SecretStr("")
    remote_model: str = "text-embedding-3-small"

    voyage_api_key: SecretStr = SecretStr("")
    voyage_model: str = "voyage-3"

    local_model: str = "all-MiniLM-L6-v2"

    request_timeout: float = Field(default=10.0, gt=0)
    embed_timeout: float = Field(default=30.0, gt=0, description="Hard ceiling for one embed call including retries")
    max_retries: int = Field(default=3, ge=0)
    initial_backoff: float = Field(default=0.5, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    max_backoff: float = Field(default=8.0, ge=0)
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_recovery_timeout: float = Field(default=60.0, gt=0)


class MaintenanceSettings(BaseModel):
    interval_seconds: float = Field(default=300, gt=0)
    deep_interval_seconds: float = Field(default=3600, gt=0)


class SearchSettings(BaseModel):
    max_results: int = Field(default=15, ge=1)
    threshold: float = Field(default=0.3, ge=0, le=1)


class IngestionSettings(BaseModel):
    min_content_length: int = Field(default=5, ge=1)
    dedup_window: int = Field(default=1000, ge=1, description="Ingested messages remembered for duplicate detection")


class Settings(BaseSettings):
    tiers: TierSettings = Field(default_factory=TierSettings)
    promotion: PromotionSettings = Field(default_factory=PromotionSettings)
    decay: DecaySettings = Field(default_factory=DecaySettings)
    eviction: EvictionWeights = Field(default_factory=EvictionWeights)
    lifecycle: LifecycleSettings = Field(default_factory=LifecycleSettings)
    vectorizer: VectorizerSettings = Field(default_factory=VectorizerSettings)
    maintenance: MaintenanceSettings = Field(default_factory=MaintenanceSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)

    default_chat_id: str = "default"
    debug: bool = False

    model_config = SettingsConfigDict(
        env_prefix="DEEP_MEMORY_",
        env_file=".env",
        extra="ignore",  # Ignore extra fields in .env file
        env_nested_delimiter="__",  # Allows DEEP_MEMORY_TIERS__SENSORY=200
    )


@lru_cache
def get_settings() -> Settings:
    """Settings read once from the environment."""
    return Settings()
