"""
Per-query similarity index and its TTL/fingerprint cache.

The index is a flat numpy matrix over the concatenation of each
candidate's semantic and style vectors (zeros where the style vector is
missing). Rows are L2-normalised so a dot product gives cosine similarity.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import numpy as np

from tonematch.domain.models import EmailCandidate
from tonematch.vector.similarity import normalize_rows

logger = logging.getLogger(__name__)


def candidate_fingerprint(candidates: Sequence[EmailCandidate]) -> str:
    """Sorted candidate ids joined with commas."""
    return ",".join(sorted(c.id for c in candidates))


class FlatIndex:
    """Brute-force cosine index; immutable once built."""

    def __init__(self, ids: list[str], matrix: np.ndarray) -> None:
        self.ids = ids
        self._matrix = matrix

    @classmethod
    def build(
        cls,
        candidates: Sequence[EmailCandidate],
        semantic_dim: int,
        style_dim: int,
    ) -> FlatIndex:
        matrix = np.zeros((len(candidates), semantic_dim + style_dim), dtype=np.float32)
        for row, candidate in enumerate(candidates):
            matrix[row, :semantic_dim] = candidate.semantic_vector
            if candidate.style_vector is not None:
                matrix[row, semantic_dim:] = candidate.style_vector
        return cls([c.id for c in candidates], normalize_rows(matrix))

    def __len__(self) -> int:
        return len(self.ids)

    def query(self, vector: np.ndarray, k: int) -> list[tuple[str, float]]:
        """Top-``k`` ids by cosine similarity; ties keep insertion order."""
        if k <= 0 or not self.ids:
            return []
        q = np.asarray(vector, dtype=np.float32).reshape(-1)
        norm = float(np.linalg.norm(q))
        if norm == 0.0:
            scores = np.zeros(len(self.ids), dtype=np.float32)
        else:
            scores = self._matrix @ (q / norm)
        order = np.argsort(-scores, kind="stable")[:k]
        return [(self.ids[i], float(scores[i])) for i in order]


@dataclass
class CachedIndex:
    index: FlatIndex
    expires_at: float
    fingerprint: str


class IndexCache:
    """
    Cache of built indexes keyed by user and filter.

    An entry is reused only while unexpired and while its fingerprint
    matches the current candidate set. Concurrent rebuilds of the same key
    are not serialised; the last writer wins. Expired entries are swept
    after each rebuild.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CachedIndex] = {}
        self.builds = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get_or_build(
        self,
        key: str,
        fingerprint: str,
        builder: Callable[[], FlatIndex],
    ) -> tuple[FlatIndex, bool]:
        """Return ``(index, cache_hit)``."""
        now = self._clock()
        cached = self._entries.get(key)
        if cached is not None and cached.expires_at > now and cached.fingerprint == fingerprint:
            return cached.index, True

        index = builder()
        self.builds += 1
        self._entries[key] = CachedIndex(
            index=index, expires_at=now + self._ttl, fingerprint=fingerprint
        )
        self.sweep()
        return index, False

    def sweep(self) -> int:
        now = self._clock()
        expired = [k for k, v in self._entries.items() if v.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept %d expired index cache entries", len(expired))
        return len(expired)

    def invalidate_user(self, user_id: str) -> int:
        prefix = f"{user_id}|"
        stale = [k for k in self._entries if k.startswith(prefix)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
