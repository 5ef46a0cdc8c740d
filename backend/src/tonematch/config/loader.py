"""
Configuration loader for ToneMatch.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from tonematch.common.exceptions import ConfigurationError

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

load_dotenv()


logger = logging.getLogger(__name__)


class ToneMatchConfig(BaseModel):
    """
    Centralized configuration for ToneMatch.

    Built and validated once at startup, then passed section by section
    into service constructors.
    """

    style_model: StyleModelConfig = Field(default_factory=StyleModelConfig)
    semantic_model: SemanticModelConfig = Field(default_factory=SemanticModelConfig)
    vector_search: VectorSearchConfig = Field(default_factory=VectorSearchConfig)
    selector: SelectorConfig = Field(default_factory=SelectorConfig)
    clustering: ClusteringConfig = Field(default_factory=ClusteringConfig)
    relationships: RelationshipConfig = Field(default_factory=RelationshipConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    system: SystemConfig = Field(default_factory=SystemConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = {"extra": "forbid"}

    def save(self, path: Path) -> None:
        """Save the configuration to a file."""
        with path.open("w") as f:
            f.write(self.model_dump_json(indent=2))

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def load(cls, path: Path | None = None) -> ToneMatchConfig:
        """
        Load the configuration.

        If path is None, creates config from environment variables.
        If path is provided, loads from JSON file with env defaults for
        missing keys.
        """
        if path is None or not path.exists():
            try:
                return cls()
            except (ValidationError, ValueError) as e:
                raise ConfigurationError(
                    f"Configuration error: {e}\n\n"
                    "Please check the TONEMATCH_* variables in your environment or .env file."
                ) from e

        try:
            with path.open("r") as f:
                data = json.load(f)
        except json.JSONDecodeError:
            logger.warning(
                "Corrupt JSON file at %s. Renaming and recreating with defaults.", path
            )
            try:
                backup_path = path.with_suffix(f".corrupt.{int(time.time())}.json")
                path.rename(backup_path)
                logger.info("Backed up corrupt config to %s", backup_path)
            except OSError as e:
                logger.error("Failed to rename corrupt config file at %s: %s", path, e)

            default_config = cls.load()
            try:
                default_config.save(path)
                logger.info("Created new default configuration file at %s.", path)
            except OSError as e:
                logger.error(
                    "Failed to save new default configuration at %s: %s", path, e
                )
            return default_config

        try:
            return cls.model_validate(data)
        except (ValidationError, ValueError) as e:
            raise ConfigurationError(
                f"Configuration error in {path}: {e}",
                context={"path": str(path)},
            ) from e


_config: ToneMatchConfig | None = None
_config_lock = threading.RLock()


def get_config() -> ToneMatchConfig:
    """
    Get the global configuration instance.

    Double-checked locking; only the CLI entry point uses this. Services
    receive their config sections through their constructors.
    """
    global _config

    if _config is not None:
        return _config

    with _config_lock:
        if _config is None:
            _config = ToneMatchConfig.load()
        return _config


def reset_config() -> None:
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    with _config_lock:
        _config = None


def set_config(config: ToneMatchConfig) -> None:
    """Set the global configuration instance (mainly for testing)."""
    global _config
    with _config_lock:
        _config = config
