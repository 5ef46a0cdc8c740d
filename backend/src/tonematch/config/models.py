"""
Configuration Models.

All configuration sections are Pydantic models validated once at
construction. Every field reads an environment-backed default through
``_env`` so deployments can override settings without a config file.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

# -----------------------------------------------------------------------------
# Environment Variable Helper
# -----------------------------------------------------------------------------

ENV_PREFIX = "TONEMATCH_"


def _env(key: str, default: Any, value_type: type = str) -> Any:
    """
    Get environment variable with TONEMATCH_ prefix fallback.

    Args:
        key: Environment variable name (without prefix)
        default: Default value if not set
        value_type: Type to convert value to

    Returns:
        Environment variable value or default
    """
    env_key = f"{ENV_PREFIX}{key}"

    value = os.getenv(env_key)
    source_key = env_key if value is not None else None
    if value is None:
        value = os.getenv(key)
        if value is not None:
            source_key = key

    if value is None:
        return default
    try:
        if value_type is bool:
            normalized = str(value).strip().lower()
            if normalized in ("true", "1", "yes", "on"):
                return True
            if normalized in ("false", "0", "no", "off"):
                return False
            raise ValueError("Invalid boolean value")
        if value_type is int:
            return int(value)
        if value_type is float:
            return float(value)
        return value
    except (ValueError, TypeError) as exc:
        key_name = source_key or key
        raise ValueError(
            f"Invalid value for {key_name}; expected {value_type.__name__}."
        ) from exc


def _env_list(key: str, default: str = "") -> list[str]:
    """Get a comma-separated env var as a list of trimmed strings."""
    raw = _env(key, default)
    if raw is None:
        return []
    return [part.strip() for part in str(raw).split(",") if part.strip()]


def _env_float_list(key: str, default: str) -> list[float]:
    try:
        return [float(part) for part in _env_list(key, default)]
    except ValueError as exc:
        raise ValueError(f"Invalid value for {key}; expected floats.") from exc


# -----------------------------------------------------------------------------
# Model Configuration
# -----------------------------------------------------------------------------


class StyleModelConfig(BaseModel):
    """Style embedding model artifacts and inference settings."""

    enabled: bool = Field(
        default_factory=lambda: _env("STYLE_MODEL_ENABLED", True, bool),
        description="Load the style model; disabled means semantic-only scoring",
    )
    model_dir: Path = Field(
        default_factory=lambda: Path(_env("STYLE_MODEL_DIR", "models/style")),
        description="Directory holding the ONNX graph and tokenizer files",
    )
    onnx_file: str = Field(
        default_factory=lambda: _env("STYLE_MODEL_ONNX_FILE", "model.onnx"),
        description="Inference graph file name",
    )
    vocab_file: str = Field(
        default_factory=lambda: _env("STYLE_MODEL_VOCAB_FILE", "vocab.json"),
        description="Vocabulary JSON file name",
    )
    merges_file: str = Field(
        default_factory=lambda: _env("STYLE_MODEL_MERGES_FILE", "merges.txt"),
        description="BPE merge rules file name",
    )
    max_length: int = Field(
        default_factory=lambda: _env("STYLE_MAX_LENGTH", 128, int),
        ge=4,
        le=512,
        description="Fixed token window fed to the model",
    )
    dimension: int = Field(
        default_factory=lambda: _env("STYLE_DIM", 768, int),
        ge=1,
        description="Style vector dimension",
    )
    batch_size: int = Field(
        default_factory=lambda: _env("STYLE_BATCH_SIZE", 32, int),
        ge=1,
        le=1024,
        description="Texts per batch in embed_batch",
    )

    model_config = {"extra": "forbid"}

    @property
    def onnx_path(self) -> Path:
        return self.model_dir / self.onnx_file

    @property
    def vocab_path(self) -> Path:
        return self.model_dir / self.vocab_file

    @property
    def merges_path(self) -> Path:
        return self.model_dir / self.merges_file


class SemanticModelConfig(BaseModel):
    """Semantic (topical) embedding model configuration."""

    model_name: str = Field(
        default_factory=lambda: _env(
            "SEMANTIC_MODEL", "sentence-transformers/all-MiniLM-L6-v2"
        ),
        description="sentence-transformers model id",
    )
    dimension: int = Field(
        default_factory=lambda: _env("SEMANTIC_DIM", 384, int),
        ge=1,
        description="Semantic vector dimension",
    )
    query_cache_ttl_seconds: float = Field(
        default_factory=lambda: _env("QUERY_CACHE_TTL", 300.0, float),
        gt=0,
        description="TTL for cached query embeddings",
    )
    query_cache_max_size: int = Field(
        default_factory=lambda: _env("QUERY_CACHE_MAX_SIZE", 1000, int),
        ge=1,
        description="Maximum cached query embeddings",
    )

    model_config = {"extra": "forbid"}


# -----------------------------------------------------------------------------
# Vector Search Configuration
# -----------------------------------------------------------------------------


class VectorSearchConfig(BaseModel):
    """Retrieval engine settings."""

    semantic_dimension: int = Field(
        default_factory=lambda: _env("VECTOR_SEMANTIC_DIM", 384, int),
        ge=1,
        description="Semantic vector dimension",
    )
    style_dimension: int = Field(
        default_factory=lambda: _env("VECTOR_STYLE_DIM", 768, int),
        ge=1,
        description="Style vector dimension",
    )
    default_limit: int = Field(
        default_factory=lambda: _env("VECTOR_DEFAULT_LIMIT", 50, int),
        ge=1,
        le=500,
        description="Results returned when no limit is given",
    )
    score_threshold: float = Field(
        default_factory=lambda: _env("VECTOR_SCORE_THRESHOLD", 0.5, float),
        ge=-1.0,
        le=1.0,
        description="Minimum combined score kept before ranking",
    )
    semantic_weight: float = Field(
        default_factory=lambda: _env("VECTOR_SEMANTIC_WEIGHT", 0.4, float),
        ge=0.0,
        le=1.0,
        description="Weight of the semantic score in the combined score",
    )
    style_weight: float = Field(
        default_factory=lambda: _env("VECTOR_STYLE_WEIGHT", 0.6, float),
        ge=0.0,
        le=1.0,
        description="Weight of the style score in the combined score",
    )
    fetch_limit_floor: int = Field(
        default_factory=lambda: _env("VECTOR_FETCH_LIMIT", 200, int),
        ge=1,
        description="Minimum number of candidates fetched per search",
    )
    neighbor_cap: int = Field(
        default_factory=lambda: _env("VECTOR_NEIGHBOR_CAP", 50, int),
        ge=1,
        description="Upper bound on near-neighbours scored per search",
    )
    index_cache_ttl_seconds: float = Field(
        default_factory=lambda: _env("VECTOR_INDEX_CACHE_TTL", 300.0, float),
        gt=0,
        description="Lifetime of a cached similarity index",
    )
    index_batch_size: int = Field(
        default_factory=lambda: _env("VECTOR_INDEX_BATCH_SIZE", 100, int),
        ge=1,
        le=10000,
        description="Documents per chunk in batch_index",
    )
    temporal_weights: list[float] = Field(
        default_factory=lambda: _env_float_list(
            "VECTOR_TEMPORAL_WEIGHTS", "1.0,0.85,0.7,0.5"
        ),
        description="Decay weights for <=3, <=6, <=12 and >12 months",
    )

    model_config = {"extra": "forbid"}

    @field_validator("temporal_weights")
    @classmethod
    def validate_temporal_weights(cls, v: list[float]) -> list[float]:
        if len(v) != 4:
            raise ValueError("temporal_weights needs exactly four buckets")
        if any(w <= 0.0 or w > 1.0 for w in v):
            raise ValueError("temporal_weights must be in (0, 1]")
        if any(later >= earlier for earlier, later in zip(v, v[1:])):
            raise ValueError("temporal_weights must be strictly decreasing")
        return v

    @model_validator(mode="after")
    def validate_weights(self) -> VectorSearchConfig:
        if self.semantic_weight + self.style_weight <= 0.0:
            raise ValueError("semantic_weight + style_weight must be positive")
        return self


# -----------------------------------------------------------------------------
# Selector Configuration
# -----------------------------------------------------------------------------


class SelectorConfig(BaseModel):
    """Two-phase example selection settings."""

    example_count: int = Field(
        default_factory=lambda: _env("EXAMPLE_COUNT", 5, int),
        ge=0,
        le=100,
        description="Default number of examples to select",
    )
    direct_max_fraction: float = Field(
        default_factory=lambda: _env("DIRECT_EMAIL_MAX_PERCENTAGE", 0.4, float),
        ge=0.0,
        le=1.0,
        description="Share of examples that may come from direct correspondence",
    )
    score_threshold: float | None = Field(
        default=None,
        ge=-1.0,
        le=1.0,
        description="Score threshold passed to search; None uses the engine default",
    )
    direct_fetch_limit: int = Field(
        default_factory=lambda: _env("DIRECT_FETCH_LIMIT", 10, int),
        ge=1,
        description="Minimum search limit for the direct phase",
    )
    category_fetch_limit: int = Field(
        default_factory=lambda: _env("CATEGORY_FETCH_LIMIT", 20, int),
        ge=1,
        description="Minimum search limit for the relationship phase",
    )

    model_config = {"extra": "forbid"}


# -----------------------------------------------------------------------------
# Clustering Configuration
# -----------------------------------------------------------------------------


class ClusteringConfig(BaseModel):
    """Style clustering settings."""

    cluster_count: int = Field(
        default_factory=lambda: _env("CLUSTER_COUNT", 3, int),
        ge=1,
        le=50,
        description="Default number of clusters",
    )
    max_iterations: int = Field(
        default_factory=lambda: _env("CLUSTER_MAX_ITERATIONS", 100, int),
        ge=1,
        le=10000,
        description="Upper bound on k-means rounds",
    )
    n_init: int = Field(
        default_factory=lambda: _env("CLUSTER_N_INIT", 10, int),
        ge=1,
        le=100,
        description="k-means restarts; the lowest-inertia run wins",
    )
    cluster_names: list[str] = Field(
        default_factory=lambda: _env_list("CLUSTER_NAMES", "formal,neutral,casual"),
        description="Names given to clusters in centroid order",
    )
    seed: int | None = Field(
        default_factory=lambda: _env("CLUSTER_SEED", None, int),
        description="Random seed for reproducible seeding",
    )

    model_config = {"extra": "forbid"}


# -----------------------------------------------------------------------------
# Relationship Configuration
# -----------------------------------------------------------------------------


class RelationshipConfig(BaseModel):
    """Rule tables for the configured relationship detector."""

    work_domains: list[str] = Field(
        default_factory=lambda: _env_list("WORK_DOMAINS"),
        description="Domains treated as colleagues",
    )
    family_emails: list[str] = Field(
        default_factory=lambda: _env_list("FAMILY_EMAILS"),
        description="Addresses treated as family",
    )
    spouse_emails: list[str] = Field(
        default_factory=lambda: _env_list("SPOUSE_EMAILS"),
        description="Addresses treated as spouse",
    )
    personal_domains: list[str] = Field(
        default_factory=lambda: _env_list(
            "PERSONAL_DOMAINS", "gmail.com,yahoo.com,hotmail.com,outlook.com"
        ),
        description="Consumer mail domains treated as friends",
    )

    model_config = {"extra": "forbid"}

    @field_validator("work_domains", "family_emails", "spouse_emails", "personal_domains")
    @classmethod
    def normalize_entries(cls, v: list[str]) -> list[str]:
        return [entry.strip().lower() for entry in v if entry.strip()]


# -----------------------------------------------------------------------------
# Database / System / Observability
# -----------------------------------------------------------------------------


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    url: str | None = Field(
        default_factory=lambda: _env("DB_URL", None),
        description="SQLAlchemy database URL (TONEMATCH_DB_URL or DB_URL)",
    )
    pool_size: int = Field(
        default_factory=lambda: _env("DB_POOL_SIZE", 5, int),
        ge=1,
        le=100,
        description="Connection pool size",
    )

    model_config = {"extra": "forbid"}


class SystemConfig(BaseModel):
    """System-level configuration."""

    log_level: str = Field(
        default_factory=lambda: _env("LOG_LEVEL", "INFO"), description="Logging level"
    )
    log_format: Literal["json", "console"] = Field(
        default_factory=lambda: _env("LOG_FORMAT", "json"),
        description="structlog renderer",
    )

    model_config = {"extra": "forbid"}

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class ObservabilityConfig(BaseModel):
    """Tracing and metrics settings."""

    service_name: str = Field(
        default_factory=lambda: _env("SERVICE_NAME", "tonematch"),
        description="OpenTelemetry service name",
    )
    enable_tracing: bool = Field(
        default_factory=lambda: _env("ENABLE_TRACING", False, bool),
        description="Install an OpenTelemetry tracer provider",
    )
    sample_rate: float = Field(
        default_factory=lambda: _env("TRACE_SAMPLE_RATE", 1.0, float),
        ge=0.0,
        le=1.0,
        description="Trace sampling ratio",
    )
    exporter: Literal["console", "none"] = Field(
        default_factory=lambda: _env("OTEL_EXPORTER", "console"),
        description="Where spans and metrics are exported",
    )
    metric_export_interval_ms: int = Field(
        default_factory=lambda: _env("METRIC_EXPORT_INTERVAL_MS", 60000, int),
        ge=1000,
        description="Periodic metric export interval",
    )

    model_config = {"extra": "forbid"}
