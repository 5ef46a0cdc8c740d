"""
Dual-vector retrieval engine.

Scores sent-email candidates against a query in two spaces (semantic and
style), falls back to semantic-only scoring whenever either side lacks a
style vector, and re-ranks by a recency-weighted score.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timezone

import numpy as np

from tonematch.common.exceptions import (
    DocumentIndexError,
    EmbeddingError,
    SearchQueryError,
)
from tonematch.config.models import VectorSearchConfig
from tonematch.domain.models import (
    BatchIndexResult,
    EmailCandidate,
    IndexDocumentParams,
    IndexResult,
    ScoredMatch,
    SearchFilter,
    SearchResult,
    SearchStats,
)
from tonematch.observability import record_metric, trace_operation
from tonematch.store.base import CandidateStore
from tonematch.vector.embedding_cache import QueryEmbeddingCache
from tonematch.vector.index import FlatIndex, IndexCache, candidate_fingerprint
from tonematch.vector.semantic import SemanticEmbeddingProvider
from tonematch.vector.similarity import cosine_similarity, is_zero, validate_vector
from tonematch.vector.style_embedding import StyleEmbeddingService
from tonematch.vector.temporal import TemporalDecay

logger = logging.getLogger(__name__)

STYLE_CACHE_MODEL = "style"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class VectorSearchService:
    """
    Retrieval engine over a candidate store.

    ``style_service`` may be None, in which case every search scores on the
    semantic vector alone and indexed documents are stored without a style
    vector.
    """

    def __init__(
        self,
        config: VectorSearchConfig,
        store: CandidateStore,
        semantic_provider: SemanticEmbeddingProvider,
        style_service: StyleEmbeddingService | None = None,
        query_cache: QueryEmbeddingCache | None = None,
        index_cache: IndexCache | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._store = store
        self._semantic = semantic_provider
        self._style = style_service
        self._query_cache = query_cache
        self._index_cache = index_cache or IndexCache(config.index_cache_ttl_seconds)
        self._decay = TemporalDecay(config.temporal_weights)
        self._now = now
        self._query_weights = np.concatenate(
            [
                np.full(config.semantic_dimension, math.sqrt(config.semantic_weight)),
                np.full(config.style_dimension, math.sqrt(config.style_weight)),
            ]
        ).astype(np.float32)

    @property
    def config(self) -> VectorSearchConfig:
        return self._config

    @property
    def index_cache(self) -> IndexCache:
        return self._index_cache

    # ------------------------------------------------------------------
    # Query embeddings
    # ------------------------------------------------------------------

    async def _semantic_vector(self, text: str) -> np.ndarray:
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        model = f"semantic:{self._semantic.model_name}"
        if self._query_cache is not None:
            cached = await self._query_cache.get(text, model)
            if cached is not None:
                return cached
        vector = validate_vector(
            await self._semantic.embed_text(text),
            self._config.semantic_dimension,
            name="semantic vector",
        )
        if self._query_cache is not None:
            await self._query_cache.put(text, vector, model)
        return vector

    async def _style_vector(self, text: str) -> np.ndarray:
        """Style vector for the query, or zeros when the style model is unavailable."""
        zeros = np.zeros(self._config.style_dimension, dtype=np.float32)
        if self._style is None:
            return zeros
        if self._query_cache is not None:
            cached = await self._query_cache.get(text, STYLE_CACHE_MODEL)
            if cached is not None:
                return cached
        try:
            result = await self._style.embed_text(text)
            vector = validate_vector(
                result.vector, self._config.style_dimension, name="style vector"
            )
        except Exception as e:
            logger.warning("Style embedding unavailable, scoring semantic only: %s", e)
            return zeros
        if self._query_cache is not None:
            await self._query_cache.put(text, vector, STYLE_CACHE_MODEL)
        return vector

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def fetch_limit(self, limit: int) -> int:
        return max(self._config.fetch_limit_floor, limit * 3)

    def neighbor_count(self, limit: int) -> int:
        return min(limit * 3, self._config.neighbor_cap)

    def score_candidate(
        self,
        candidate: EmailCandidate,
        query_semantic: np.ndarray,
        query_style: np.ndarray,
    ) -> tuple[float, float, float]:
        """Return ``(semantic, style, combined)`` scores for one candidate."""
        semantic = cosine_similarity(query_semantic, candidate.semantic_vector)
        if is_zero(query_style) or is_zero(candidate.style_vector):
            return semantic, 0.0, semantic
        style = cosine_similarity(query_style, candidate.style_vector)
        combined = (
            semantic * self._config.semantic_weight + style * self._config.style_weight
        )
        return semantic, style, combined

    def _rank(
        self,
        index: FlatIndex,
        candidates: Sequence[EmailCandidate],
        query_semantic: np.ndarray,
        query_style: np.ndarray,
        limit: int,
        threshold: float,
    ) -> list[ScoredMatch]:
        query = np.concatenate([query_semantic, query_style]) * self._query_weights
        by_id = {c.id: c for c in candidates}
        now = self._now()

        scored: list[tuple[EmailCandidate, float, float, float]] = []
        for candidate_id, _ in index.query(query, self.neighbor_count(limit)):
            candidate = by_id.get(candidate_id)
            if candidate is None:
                continue
            semantic, style, combined = self.score_candidate(
                candidate, query_semantic, query_style
            )
            if combined < threshold:
                continue
            scored.append((candidate, semantic, style, combined))

        scored.sort(key=lambda item: item[3], reverse=True)
        matches = [
            ScoredMatch(
                candidate=candidate,
                semantic_score=semantic,
                style_score=style,
                combined_score=combined,
                temporal_score=combined * self._decay.weight(candidate.sent_date, now),
            )
            for candidate, semantic, style, combined in scored
        ]
        matches.sort(key=lambda m: m.temporal_score, reverse=True)
        return matches

    @trace_operation("vector_search.search")
    async def search(
        self,
        user_id: str,
        query_text: str,
        filters: SearchFilter | None = None,
        limit: int | None = None,
        score_threshold: float | None = None,
    ) -> SearchResult:
        """
        Rank the user's sent emails against ``query_text``.

        Raises:
            SearchQueryError: embedding, fetch or scoring failed.
        """
        filters = filters or SearchFilter()
        limit = self._config.default_limit if limit is None else limit
        threshold = (
            self._config.score_threshold if score_threshold is None else score_threshold
        )
        start = time.perf_counter()

        try:
            query_semantic = await self._semantic_vector(query_text)
            query_style = await self._style_vector(query_text)

            candidates = await self._store.fetch_candidates(
                user_id, filters, self.fetch_limit(limit)
            )
            if not candidates or limit <= 0:
                return SearchResult(
                    success=True,
                    stats=SearchStats(
                        total_candidates=len(candidates),
                        latency_ms=(time.perf_counter() - start) * 1000,
                    ),
                )

            index, cache_hit = self._index_cache.get_or_build(
                filters.cache_key(user_id),
                candidate_fingerprint(candidates),
                lambda: FlatIndex.build(
                    candidates,
                    self._config.semantic_dimension,
                    self._config.style_dimension,
                ),
            )
            record_metric(
                "index_cache_hit" if cache_hit else "index_cache_miss", 1
            )

            ranked = self._rank(
                index, candidates, query_semantic, query_style, limit, threshold
            )
        except SearchQueryError:
            raise
        except Exception as e:
            logger.error("Search failed for user %s: %s", user_id, e)
            raise SearchQueryError(f"Search failed: {e}") from e

        documents = ranked[:limit]
        latency_ms = (time.perf_counter() - start) * 1000
        record_metric("search_latency_ms", latency_ms, metric_type="histogram")
        logger.debug(
            "Search user=%s candidates=%d kept=%d returned=%d cache_hit=%s",
            user_id,
            len(candidates),
            len(ranked),
            len(documents),
            cache_hit,
        )
        return SearchResult(
            success=True,
            documents=documents,
            stats=SearchStats(
                total_candidates=len(candidates),
                filtered_count=len(ranked),
                avg_semantic_score=_mean([m.semantic_score for m in documents]),
                avg_style_score=_mean([m.style_score for m in documents]),
                avg_combined_score=_mean([m.combined_score for m in documents]),
                latency_ms=latency_ms,
                cache_hit=cache_hit,
            ),
        )

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    @trace_operation("vector_search.index_document")
    async def index_document(self, params: IndexDocumentParams) -> IndexResult:
        """
        Embed a document and persist its vectors.

        The style vector is stored as None when the style model is
        unavailable. The user's cached indexes are dropped afterwards.
        """
        start = time.perf_counter()
        try:
            semantic = validate_vector(
                await self._semantic.embed_text(params.text),
                self._config.semantic_dimension,
                name="semantic vector",
            )

            style: np.ndarray | None = None
            if self._style is not None:
                try:
                    style = (await self._style.embed_text(params.text)).vector
                except Exception as e:
                    logger.warning(
                        "Style embedding unavailable for document %s: %s",
                        params.email_id,
                        e,
                    )
            if style is not None:
                style = validate_vector(
                    style, self._config.style_dimension, name="style vector"
                )

            await self._store.persist_vectors(
                params.email_id, semantic, style, email_type=params.email_type
            )
        except Exception as e:
            raise DocumentIndexError(
                f"Failed to index document: {e}", document_id=params.email_id
            ) from e

        self._index_cache.invalidate_user(params.user_id)
        return IndexResult(
            success=True,
            document_id=params.email_id,
            has_style_vector=style is not None,
            latency_ms=(time.perf_counter() - start) * 1000,
        )

    @trace_operation("vector_search.batch_index")
    async def batch_index(
        self,
        documents: Sequence[IndexDocumentParams],
        batch_size: int | None = None,
    ) -> BatchIndexResult:
        """Index documents in fixed chunks; one failure never stops the rest."""
        size = batch_size or self._config.index_batch_size
        if size < 1:
            raise ValueError("batch_size must be positive")

        start = time.perf_counter()
        result = BatchIndexResult(success=True)
        total = len(documents)

        for offset in range(0, total, size):
            chunk = documents[offset : offset + size]
            outcomes = await asyncio.gather(
                *(self.index_document(doc) for doc in chunk), return_exceptions=True
            )
            for doc, outcome in zip(chunk, outcomes):
                if isinstance(outcome, Exception):
                    result.failed += 1
                    result.errors.append((doc.email_id, str(outcome)))
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result.indexed += 1
            logger.info("Indexed %d/%d documents", result.indexed, total)

        result.success = result.failed == 0
        result.latency_ms = (time.perf_counter() - start) * 1000
        record_metric("documents_indexed", result.indexed)
        if result.failed:
            record_metric("documents_index_failed", result.failed)
        return result
