"""Shared fixtures and fakes for the ToneMatch test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import numpy as np
import pytest

from tonematch.common.exceptions import EmbeddingError
from tonematch.config.models import SelectorConfig, VectorSearchConfig
from tonematch.domain.models import EmailCandidate
from tonematch.relationships import RelationshipResult
from tonematch.store.memory import InMemoryCandidateStore
from tonematch.vector.search_service import VectorSearchService
from tonematch.vector.style_embedding import StyleEmbedding

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)
SEM_DIM = 4
STYLE_DIM = 3

VOCAB = {
    "<s>": 0,
    "<pad>": 1,
    "</s>": 2,
    "<unk>": 3,
    "h": 4,
    "e": 5,
    "l": 6,
    "o": 7,
    "w": 8,
    "r": 9,
    "d": 10,
    "Ġ": 11,
    "he": 12,
    "ll": 13,
    "hell": 14,
    "hello": 15,
    "Ġw": 16,
    "or": 17,
    "Ġwor": 18,
    "Ġworl": 19,
    "Ġworld": 20,
}

MERGES = "\n".join(
    [
        "#version: 0.2",
        "h e",
        "l l",
        "he ll",
        "hell o",
        "Ġ w",
        "o r",
        "Ġw or",
        "Ġwor l",
        "Ġworl d",
        "",
    ]
)


def vec(*values: float) -> np.ndarray:
    return np.asarray(values, dtype=np.float32)


def make_candidate(
    candidate_id: str,
    semantic=(1.0, 0.0, 0.0, 0.0),
    style=(1.0, 0.0, 0.0),
    recipient: str = "alice@example.com",
    relationship: str = "colleague",
    days_ago: float = 10.0,
    text: str = "Thanks, see you tomorrow.",
) -> EmailCandidate:
    return EmailCandidate(
        id=candidate_id,
        text=text,
        semantic_vector=list(semantic),
        style_vector=None if style is None else list(style),
        recipient_email=recipient,
        relationship=relationship,
        sent_date=NOW - timedelta(days=days_ago),
        word_count=len(text.split()),
    )


class FakeSemanticProvider:
    """Returns a fixed vector per text; counts calls."""

    model_name = "fake-semantic"
    dimension = SEM_DIM

    def __init__(self, vectors: dict[str, np.ndarray] | None = None, default=None):
        self.vectors = vectors or {}
        self.default = vec(1.0, 0.0, 0.0, 0.0) if default is None else default
        self.calls = 0
        self.error: Exception | None = None

    async def embed_text(self, text: str) -> np.ndarray:
        self.calls += 1
        if self.error is not None:
            raise self.error
        if not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        return self.vectors.get(text, self.default)


class FakeStyleService:
    """Duck-typed stand-in for StyleEmbeddingService."""

    def __init__(self, vector=None, error: Exception | None = None):
        self.vector = vec(1.0, 0.0, 0.0) if vector is None else vector
        self.error = error
        self.calls = 0

    async def embed_text(self, text: str) -> StyleEmbedding:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return StyleEmbedding(vector=self.vector, dimension=len(self.vector), latency_ms=0.1)


class FakeOnnxSession:
    """Mimics onnxruntime.InferenceSession.run for a fixed set of outputs."""

    def __init__(self, outputs: dict[str, np.ndarray]):
        self._outputs = outputs
        self.feeds: list[dict[str, np.ndarray]] = []

    def get_outputs(self):
        return [SimpleNamespace(name=name) for name in self._outputs]

    def run(self, output_names, feeds):
        self.feeds.append(feeds)
        return list(self._outputs.values())


class FakeRelationshipDetector:
    def __init__(self, relationship: str = "colleague", error: Exception | None = None):
        self.relationship = relationship
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def detect_relationship(self, user_id: str, recipient_email: str):
        self.calls.append((user_id, recipient_email))
        if self.error is not None:
            raise self.error
        return RelationshipResult(relationship=self.relationship, confidence=1.0)


@pytest.fixture
def tokenizer_files(tmp_path):
    import json

    vocab_path = tmp_path / "vocab.json"
    merges_path = tmp_path / "merges.txt"
    vocab_path.write_text(json.dumps(VOCAB), encoding="utf-8")
    merges_path.write_text(MERGES, encoding="utf-8")
    return vocab_path, merges_path


@pytest.fixture
def search_config() -> VectorSearchConfig:
    return VectorSearchConfig(
        semantic_dimension=SEM_DIM,
        style_dimension=STYLE_DIM,
        default_limit=10,
        score_threshold=0.0,
        semantic_weight=0.4,
        style_weight=0.6,
        fetch_limit_floor=20,
        neighbor_cap=50,
        index_cache_ttl_seconds=300.0,
        index_batch_size=2,
        temporal_weights=[1.0, 0.85, 0.7, 0.5],
    )


@pytest.fixture
def selector_config() -> SelectorConfig:
    return SelectorConfig(
        example_count=5,
        direct_max_fraction=0.4,
        score_threshold=0.0,
        direct_fetch_limit=10,
        category_fetch_limit=20,
    )


@pytest.fixture
def store() -> InMemoryCandidateStore:
    return InMemoryCandidateStore()


@pytest.fixture
def semantic_provider() -> FakeSemanticProvider:
    return FakeSemanticProvider()


@pytest.fixture
def style_service() -> FakeStyleService:
    return FakeStyleService()


@pytest.fixture
def engine(search_config, store, semantic_provider, style_service) -> VectorSearchService:
    return VectorSearchService(
        search_config,
        store,
        semantic_provider,
        style_service=style_service,
        now=lambda: NOW,
    )
