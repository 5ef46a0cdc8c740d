"""
Style embedding service.

Wraps an ONNX style model (RoBERTa-based, 768 dimensions) behind the BPE
tokenizer. The model and tokenizer load once; concurrent callers of
``initialize`` share a single in-flight load.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np
import onnxruntime as ort

from tonematch.common.exceptions import ConfigurationError, EmbeddingError
from tonematch.config.models import StyleModelConfig
from tonematch.observability import record_metric
from tonematch.vector import similarity
from tonematch.vector.tokenizer import BPETokenizer

logger = logging.getLogger(__name__)

SENTENCE_EMBEDDING_OUTPUT = "sentence_embedding"
TOKEN_EMBEDDINGS_OUTPUT = "token_embeddings"

SessionFactory = Callable[[Path], Any]
ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class StyleEmbedding:
    vector: np.ndarray
    dimension: int
    latency_ms: float


@dataclass
class BatchEmbeddingResult:
    """Per-index results; failed positions are None and listed in ``errors``."""

    embeddings: list[StyleEmbedding | None] = field(default_factory=list)
    errors: list[tuple[int, str]] = field(default_factory=list)
    total_latency_ms: float = 0.0


def _detect_providers() -> list[str]:
    """Detect available ONNX Runtime execution providers."""
    available = set(ort.get_available_providers())
    providers: list[str] = []
    if "CUDAExecutionProvider" in available:
        providers.append("CUDAExecutionProvider")
    providers.append("CPUExecutionProvider")
    return providers


def create_onnx_session(onnx_path: Path) -> ort.InferenceSession:
    return ort.InferenceSession(str(onnx_path), providers=_detect_providers())


def mean_pool(token_embeddings: np.ndarray, attention_mask: list[int]) -> np.ndarray:
    """Average token vectors over the unpadded length, then L2-normalise."""
    tokens = np.asarray(token_embeddings, dtype=np.float32)
    if tokens.ndim == 3:
        tokens = tokens[0]
    length = int(sum(attention_mask))
    if length <= 0:
        raise EmbeddingError("Attention mask has no real tokens")
    pooled = tokens[:length].mean(axis=0)
    return similarity.l2_normalize(pooled)


class StyleEmbeddingService:
    """Style vectors for texts, independent of their topic."""

    def __init__(
        self,
        config: StyleModelConfig,
        session_factory: SessionFactory | None = None,
        tokenizer: BPETokenizer | None = None,
    ) -> None:
        self._config = config
        self._session_factory = session_factory or create_onnx_session
        self._tokenizer = tokenizer
        self._session: Any = None
        self._output_names: list[str] = []
        self._init_task: asyncio.Future[None] | None = None

    @property
    def dimension(self) -> int:
        return self._config.dimension

    @property
    def is_initialized(self) -> bool:
        return self._session is not None and self._tokenizer is not None

    async def initialize(self) -> None:
        """Load tokenizer and model once; concurrent callers await the same load."""
        if self.is_initialized:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        task = self._init_task
        try:
            await asyncio.shield(task)
        except BaseException:
            if self._init_task is task and task.done():
                self._init_task = None
            raise

    async def _initialize(self) -> None:
        cfg = self._config
        logger.info("Loading style model from %s", cfg.model_dir)
        if self._tokenizer is None:
            self._tokenizer = await asyncio.to_thread(
                BPETokenizer.from_files, cfg.vocab_path, cfg.merges_path
            )
        try:
            session = await asyncio.to_thread(self._session_factory, cfg.onnx_path)
        except Exception as e:
            if not cfg.onnx_path.exists():
                raise ConfigurationError(
                    f"Style model not found at {cfg.onnx_path}",
                    error_code="STYLE_MODEL_MISSING",
                ) from e
            raise EmbeddingError(
                f"Failed to initialize style embedding model: {e}"
            ) from e

        self._output_names = [o.name for o in session.get_outputs()]
        self._session = session
        logger.info(
            "Style model loaded (%dd); outputs: %s",
            cfg.dimension,
            ", ".join(self._output_names),
        )

    def _run(self, input_ids: list[int], attention_mask: list[int]) -> np.ndarray:
        feeds = {
            "input_ids": np.asarray([input_ids], dtype=np.int64),
            "attention_mask": np.asarray([attention_mask], dtype=np.int64),
        }
        outputs = dict(zip(self._output_names, self._session.run(None, feeds)))

        pooled = outputs.get(SENTENCE_EMBEDDING_OUTPUT)
        if pooled is not None:
            return np.asarray(pooled, dtype=np.float32).reshape(-1)

        tokens = outputs.get(TOKEN_EMBEDDINGS_OUTPUT)
        if tokens is None:
            raise EmbeddingError("No embeddings found in model output")
        return mean_pool(tokens, attention_mask)

    async def embed_text(self, text: str) -> StyleEmbedding:
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        await self.initialize()
        if not self.is_initialized:
            raise EmbeddingError("Model not initialized")

        start = time.perf_counter()
        encoded = self._tokenizer.encode(text, self._config.max_length)
        try:
            raw = await asyncio.to_thread(
                self._run, encoded.input_ids, encoded.attention_mask
            )
            vector = similarity.validate_vector(
                raw, self._config.dimension, name="style vector"
            )
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Style embedding generation failed: {e}") from e

        latency_ms = (time.perf_counter() - start) * 1000
        record_metric("style_inference_latency_ms", latency_ms, metric_type="histogram")
        return StyleEmbedding(
            vector=vector, dimension=self._config.dimension, latency_ms=latency_ms
        )

    async def embed_batch(
        self,
        texts: list[str],
        batch_size: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BatchEmbeddingResult:
        """
        Embed texts in fixed-size batches.

        A failing text records ``(index, message)`` in ``errors`` and leaves
        None at its position; siblings in the batch are unaffected.
        ``on_progress(processed, total)`` runs after each batch.
        """
        await self.initialize()

        size = batch_size or self._config.batch_size
        if size < 1:
            raise ValueError("batch_size must be positive")

        result = BatchEmbeddingResult(embeddings=[None] * len(texts))
        start = time.perf_counter()
        total = len(texts)

        for offset in range(0, total, size):
            batch = texts[offset : offset + size]
            outcomes = await asyncio.gather(
                *(self.embed_text(text) for text in batch), return_exceptions=True
            )
            for i, outcome in enumerate(outcomes):
                index = offset + i
                if isinstance(outcome, Exception):
                    result.errors.append((index, str(outcome)))
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result.embeddings[index] = outcome

            if on_progress is not None:
                on_progress(min(offset + size, total), total)

        result.total_latency_ms = (time.perf_counter() - start) * 1000
        if result.errors:
            logger.warning(
                "Style batch finished with %d/%d failures", len(result.errors), total
            )
        return result

    def cosine_similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        """Raises InvalidVectorError when dimensions differ."""
        return similarity.cosine_similarity(a, b)

    def model_info(self) -> dict[str, Any]:
        return {
            "model_dir": str(self._config.model_dir),
            "dimension": self._config.dimension,
            "initialized": self.is_initialized,
        }
