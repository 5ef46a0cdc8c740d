"""Dictionary-backed candidate store for tests and small deployments."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

import numpy as np

from tonematch.common.exceptions import DocumentIndexError
from tonematch.domain.models import EmailCandidate, EmailType, SearchFilter

logger = logging.getLogger(__name__)


class InMemoryCandidateStore:
    """Holds sent-email candidates per user; received-email vectors by id."""

    def __init__(self) -> None:
        self._sent: dict[str, dict[str, EmailCandidate]] = {}
        self._owners: dict[str, str] = {}
        self._received: dict[str, tuple[np.ndarray, np.ndarray | None]] = {}
        self._received_ids: set[str] = set()
        self._lock = asyncio.Lock()

    def add(self, user_id: str, candidate: EmailCandidate) -> None:
        self._sent.setdefault(user_id, {})[candidate.id] = candidate
        self._owners[candidate.id] = user_id

    def add_many(self, user_id: str, candidates: Iterable[EmailCandidate]) -> None:
        for candidate in candidates:
            self.add(user_id, candidate)

    def remove(self, email_id: str) -> None:
        user_id = self._owners.pop(email_id, None)
        if user_id is not None:
            self._sent[user_id].pop(email_id, None)

    def register_received(self, email_id: str) -> None:
        self._received_ids.add(email_id)

    def get(self, email_id: str) -> EmailCandidate | None:
        user_id = self._owners.get(email_id)
        if user_id is None:
            return None
        return self._sent[user_id].get(email_id)

    def received_vectors(self, email_id: str) -> tuple[np.ndarray, np.ndarray | None] | None:
        return self._received.get(email_id)

    async def fetch_candidates(
        self, user_id: str, filters: SearchFilter, limit: int
    ) -> list[EmailCandidate]:
        async with self._lock:
            pool = list(self._sent.get(user_id, {}).values())
        matching = [c for c in pool if filters.matches(c)]
        matching.sort(key=lambda c: c.sent_date, reverse=True)
        return matching[:limit]

    async def persist_vectors(
        self,
        email_id: str,
        semantic_vector: np.ndarray,
        style_vector: np.ndarray | None,
        *,
        email_type: EmailType = "sent",
    ) -> None:
        async with self._lock:
            if email_type == "received":
                if email_id not in self._received_ids:
                    raise DocumentIndexError(
                        f"No email_received row with id {email_id}",
                        document_id=email_id,
                    )
                self._received[email_id] = (semantic_vector, style_vector)
                return

            user_id = self._owners.get(email_id)
            if user_id is None:
                raise DocumentIndexError(
                    f"No email_sent row with id {email_id}", document_id=email_id
                )
            current = self._sent[user_id][email_id]
            self._sent[user_id][email_id] = current.model_copy(
                update={
                    "semantic_vector": semantic_vector,
                    "style_vector": style_vector,
                }
            )
