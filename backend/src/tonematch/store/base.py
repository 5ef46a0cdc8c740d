"""Candidate store protocol consumed by the retrieval engine."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np

from tonematch.domain.models import EmailCandidate, EmailType, SearchFilter


@runtime_checkable
class CandidateStore(Protocol):
    """
    Source of sent-email candidates and sink for computed vectors.

    ``fetch_candidates`` returns only candidates that carry a semantic
    vector, newest first, bounded by ``limit``.
    """

    async def fetch_candidates(
        self, user_id: str, filters: SearchFilter, limit: int
    ) -> list[EmailCandidate]: ...

    async def persist_vectors(
        self,
        email_id: str,
        semantic_vector: np.ndarray,
        style_vector: np.ndarray | None,
        *,
        email_type: EmailType = "sent",
    ) -> None: ...
