"""
Service container.

Everything with a lifecycle (tokenizer tables, inference session, index
cache, query cache) is built once here and handed to request handlers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tonematch.common.exceptions import ConfigurationError
from tonematch.config.loader import ToneMatchConfig
from tonematch.pipeline.example_selector import ExampleSelector
from tonematch.relationships import ConfiguredRelationshipDetector, RelationshipDetector
from tonematch.store.base import CandidateStore
from tonematch.vector.clustering import StyleClusteringService
from tonematch.vector.embedding_cache import QueryEmbeddingCache
from tonematch.vector.search_service import VectorSearchService
from tonematch.vector.semantic import SemanticEmbeddingProvider, SentenceTransformerProvider
from tonematch.vector.style_embedding import SessionFactory, StyleEmbeddingService
from tonematch.vector.tokenizer import BPETokenizer

logger = logging.getLogger(__name__)


@dataclass
class ToneMatchServices:
    config: ToneMatchConfig
    store: CandidateStore
    semantic_provider: SemanticEmbeddingProvider
    style_service: StyleEmbeddingService | None
    query_cache: QueryEmbeddingCache
    search_service: VectorSearchService
    selector: ExampleSelector
    clustering: StyleClusteringService
    relationship_detector: RelationshipDetector


def _check_dimensions(config: ToneMatchConfig) -> None:
    search = config.vector_search
    if config.semantic_model.dimension != search.semantic_dimension:
        raise ConfigurationError(
            "Semantic model dimension does not match vector search configuration",
            expected=search.semantic_dimension,
            actual=config.semantic_model.dimension,
        )
    if config.style_model.dimension != search.style_dimension:
        raise ConfigurationError(
            "Style model dimension does not match vector search configuration",
            expected=search.style_dimension,
            actual=config.style_model.dimension,
        )


async def build_services(
    config: ToneMatchConfig,
    store: CandidateStore,
    relationship_detector: RelationshipDetector | None = None,
    semantic_provider: SemanticEmbeddingProvider | None = None,
    style_session_factory: SessionFactory | None = None,
) -> ToneMatchServices:
    """
    Build and initialise all services.

    With the style model enabled, missing or unreadable artifacts raise
    here instead of on the first request. With it disabled, retrieval
    scores on semantic vectors alone.
    """
    _check_dimensions(config)

    semantic = semantic_provider or SentenceTransformerProvider(config.semantic_model)

    style_service: StyleEmbeddingService | None = None
    if config.style_model.enabled:
        style_cfg = config.style_model
        tokenizer = BPETokenizer.from_files(style_cfg.vocab_path, style_cfg.merges_path)
        style_service = StyleEmbeddingService(
            style_cfg, session_factory=style_session_factory, tokenizer=tokenizer
        )
        await style_service.initialize()
    else:
        logger.warning("Style model disabled; retrieval will score semantic only")

    query_cache = QueryEmbeddingCache(
        ttl_seconds=config.semantic_model.query_cache_ttl_seconds,
        max_size=config.semantic_model.query_cache_max_size,
    )
    search_service = VectorSearchService(
        config.vector_search,
        store,
        semantic,
        style_service=style_service,
        query_cache=query_cache,
    )
    detector = relationship_detector or ConfiguredRelationshipDetector(
        config.relationships
    )
    selector = ExampleSelector(config.selector, search_service, detector)

    return ToneMatchServices(
        config=config,
        store=store,
        semantic_provider=semantic,
        style_service=style_service,
        query_cache=query_cache,
        search_service=search_service,
        selector=selector,
        clustering=StyleClusteringService(config.clustering),
        relationship_detector=detector,
    )
