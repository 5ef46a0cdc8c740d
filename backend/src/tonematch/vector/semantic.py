"""
Semantic (topical) embedding providers.

The retrieval engine only depends on the ``SemanticEmbeddingProvider``
protocol. ``SentenceTransformerProvider`` is the default implementation and
needs the ``semantic`` extra installed.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Protocol, runtime_checkable

import numpy as np

from tonematch.common.exceptions import ConfigurationError, EmbeddingError
from tonematch.config.models import SemanticModelConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class SemanticEmbeddingProvider(Protocol):
    model_name: str
    dimension: int

    async def embed_text(self, text: str) -> np.ndarray: ...


class SentenceTransformerProvider:
    """all-MiniLM-L6-v2 style provider with normalised 384-d output."""

    def __init__(self, config: SemanticModelConfig) -> None:
        self.model_name = config.model_name
        self.dimension = config.dimension
        self._model: Any = None
        self._lock = threading.Lock()

    def _load(self) -> Any:
        if self._model is not None:
            return self._model
        with self._lock:
            if self._model is None:
                try:
                    from sentence_transformers import SentenceTransformer
                except ImportError as e:
                    raise ConfigurationError(
                        "sentence-transformers is not installed; "
                        "install the 'semantic' extra",
                        error_code="SEMANTIC_MODEL_UNAVAILABLE",
                    ) from e
                logger.info("Loading semantic model %s", self.model_name)
                self._model = SentenceTransformer(self.model_name)
        return self._model

    def _encode(self, text: str) -> np.ndarray:
        model = self._load()
        vector = model.encode(text, normalize_embeddings=True)
        return np.asarray(vector, dtype=np.float32).reshape(-1)

    async def embed_text(self, text: str) -> np.ndarray:
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        try:
            return await asyncio.to_thread(self._encode, text)
        except (ConfigurationError, EmbeddingError):
            raise
        except Exception as e:
            raise EmbeddingError(f"Semantic embedding failed: {e}", retryable=True) from e
