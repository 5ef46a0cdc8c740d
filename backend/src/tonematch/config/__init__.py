"""Configuration package."""

from .loader import ToneMatchConfig, get_config, reset_config, set_config
from .models import (
    ClusteringConfig,
    DatabaseConfig,
    ObservabilityConfig,
    RelationshipConfig,
    SelectorConfig,
    SemanticModelConfig,
    StyleModelConfig,
    SystemConfig,
    VectorSearchConfig,
)

__all__ = [
    "ClusteringConfig",
    "DatabaseConfig",
    "ObservabilityConfig",
    "RelationshipConfig",
    "SelectorConfig",
    "SemanticModelConfig",
    "StyleModelConfig",
    "SystemConfig",
    "ToneMatchConfig",
    "VectorSearchConfig",
    "get_config",
    "reset_config",
    "set_config",
]
