# /chatflow/config/settings.py

from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class AlgorithmWeights(BaseModel):
    """
    Weight of each scoring algorithm in the fused confidence.
    The defaults add up to 1.0 so a perfect match on every algorithm saturates.
    """
    lexical: float = 0.30
    edit_distance: float = 0.25
    jaro_winkler: float = 0.20
    classifier: float = 0.15
    context: float = 0.10

    @field_validator("*")
    @classmethod
    def weight_in_unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("Algorithm weights must be between 0 and 1")
        return v

    class Config:
        frozen = True


class AlgorithmCutoffs(BaseModel):
    """A similarity must be strictly above its cutoff to produce a candidate."""
    lexical: float = 0.0
    edit_distance: float = 0.5
    jaro_winkler: float = 0.7

    class Config:
        frozen = True


class Settings(BaseSettings):
    # Runtime
    environment: str = "development"
    log_level: str = "INFO"

    # Persistence
    database_path: str = "chatflow.db"

    # Flow configuration (JSON). When unset the bundled default flows are used.
    bot_config_path: Optional[str] = None

    # Matching engine
    ai_enabled: bool = True
    ai_min_confidence: float = 0.75
    ai_learning_mode: bool = False
    ai_max_context_size: int = 10
    ai_max_input_length: int = 1000
    ai_dedup_threshold: float = 0.9
    ai_auto_learn_threshold: float = 0.85

    # Response cache
    ai_cache_enabled: bool = True
    ai_cache_max_size: int = 1000
    ai_cache_ttl_seconds: int = 3600
    ai_cache_sweep_interval_seconds: int = 3600
    ai_cache_publish_threshold: float = 0.8

    # Algorithm weights
    weight_lexical: float = 0.30
    weight_edit_distance: float = 0.25
    weight_jaro_winkler: float = 0.20
    weight_classifier: float = 0.15
    weight_context: float = 0.10

    # Flow engine
    flow_max_chained_steps: int = 10
    status_recent_metrics: int = 100

    # Training
    seed_training_data: bool = True

    # ---------------- Validators ---------------- #

    @field_validator(
        "ai_min_confidence", "ai_dedup_threshold", "ai_auto_learn_threshold",
        "ai_cache_publish_threshold", "weight_lexical", "weight_edit_distance",
        "weight_jaro_winkler", "weight_classifier", "weight_context",
    )
    @classmethod
    def must_be_a_ratio(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("Thresholds and weights must be between 0 and 1")
        return v

    @field_validator("ai_max_context_size", "ai_cache_max_size", "ai_max_input_length", "flow_max_chained_steps",
                     "status_recent_metrics")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Size limits must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


class MatchingConfig(BaseModel):
    """
    Injected configuration of the ResponseMatcher.
    Built from Settings so tests can construct isolated variants directly.
    """
    enabled: bool = True
    min_confidence: float = 0.75
    learning_enabled: bool = False
    max_context_size: int = 10
    max_input_length: int = 1000
    dedup_threshold: float = 0.9
    auto_learn_threshold: float = 0.85
    cache_enabled: bool = True
    cache_max_size: int = 1000
    cache_ttl_seconds: float = 3600
    cache_publish_threshold: float = 0.8
    context_window: int = 3
    weights: AlgorithmWeights = Field(default_factory=AlgorithmWeights)
    cutoffs: AlgorithmCutoffs = Field(default_factory=AlgorithmCutoffs)

    @model_validator(mode="after")
    def context_window_fits(self):
        if self.context_window > self.max_context_size:
            raise ValueError("context_window cannot exceed max_context_size")
        return self

    @classmethod
    def from_settings(cls, settings_obj: Settings) -> "MatchingConfig":
        return cls(
            enabled=settings_obj.ai_enabled,
            min_confidence=settings_obj.ai_min_confidence,
            learning_enabled=settings_obj.ai_learning_mode,
            max_context_size=settings_obj.ai_max_context_size,
            max_input_length=settings_obj.ai_max_input_length,
            dedup_threshold=settings_obj.ai_dedup_threshold,
            auto_learn_threshold=settings_obj.ai_auto_learn_threshold,
            cache_enabled=settings_obj.ai_cache_enabled,
            cache_max_size=settings_obj.ai_cache_max_size,
            cache_ttl_seconds=settings_obj.ai_cache_ttl_seconds,
            cache_publish_threshold=settings_obj.ai_cache_publish_threshold,
            context_window=min(3, settings_obj.ai_max_context_size),
            weights=AlgorithmWeights(
                lexical=settings_obj.weight_lexical,
                edit_distance=settings_obj.weight_edit_distance,
                jaro_winkler=settings_obj.weight_jaro_winkler,
                classifier=settings_obj.weight_classifier,
                context=settings_obj.weight_context,
            ),
        )

    class Config:
        frozen = True


settings = Settings()
