"""
SQLAlchemy-backed candidate store.

Runs a synchronous engine behind ``asyncio.to_thread``. On PostgreSQL the
vector columns use pgvector; other dialects store the same columns as
text, which keeps the store usable against SQLite in tests.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

import numpy as np
from sqlalchemy import Engine, create_engine, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from tonematch.common.exceptions import DocumentIndexError, SearchQueryError
from tonematch.domain.models import (
    EmailCandidate,
    EmailType,
    IndexDocumentParams,
    SearchFilter,
)
from tonematch.store.schema import Base, EmailReceived, EmailSent

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _row_to_candidate(row: EmailSent) -> EmailCandidate:
    return EmailCandidate(
        id=row.id,
        text=row.user_reply,
        semantic_vector=row.semantic_vector,
        style_vector=row.style_vector,
        recipient_email=row.recipient_email,
        relationship=row.relationship_type,
        sent_date=row.sent_date,
        word_count=row.word_count or 0,
    )


class SqlCandidateStore:
    """Candidate store over the ``email_sent`` / ``email_received`` tables."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str, pool_size: int = 5) -> SqlCandidateStore:
        kwargs: dict[str, Any] = {"pool_pre_ping": True}
        if not url.startswith("sqlite"):
            kwargs["pool_size"] = pool_size
        return cls(create_engine(url, **kwargs))

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_schema(self) -> None:
        Base.metadata.create_all(self._engine)

    def session(self) -> Session:
        return self._session_factory()

    async def _run(self, fn: Callable[[Session], T]) -> T:
        def _call() -> T:
            with self._session_factory() as session:
                return fn(session)

        return await asyncio.to_thread(_call)

    async def fetch_candidates(
        self, user_id: str, filters: SearchFilter, limit: int
    ) -> list[EmailCandidate]:
        stmt = select(EmailSent).where(
            EmailSent.user_id == user_id,
            EmailSent.semantic_vector.is_not(None),
        )
        if filters.relationship:
            stmt = stmt.where(
                func.lower(EmailSent.relationship_type) == filters.relationship
            )
        if filters.recipient_email:
            stmt = stmt.where(
                func.lower(EmailSent.recipient_email) == filters.recipient_email
            )
        if filters.date_range:
            stmt = stmt.where(
                EmailSent.sent_date >= filters.date_range.start,
                EmailSent.sent_date <= filters.date_range.end,
            )
        if filters.exclude_ids:
            stmt = stmt.where(EmailSent.id.not_in(filters.exclude_ids))
        stmt = stmt.order_by(EmailSent.sent_date.desc()).limit(limit)

        def _fetch(session: Session) -> list[EmailCandidate]:
            return [_row_to_candidate(row) for row in session.scalars(stmt)]

        try:
            return await self._run(_fetch)
        except SQLAlchemyError as e:
            logger.error("Candidate fetch failed for user %s", user_id, exc_info=True)
            raise SearchQueryError(f"Candidate fetch failed: {e}") from e

    async def persist_vectors(
        self,
        email_id: str,
        semantic_vector: np.ndarray,
        style_vector: np.ndarray | None,
        *,
        email_type: EmailType = "sent",
    ) -> None:
        table = EmailSent if email_type == "sent" else EmailReceived
        stmt = (
            update(table)
            .where(table.id == email_id)
            .values(
                semantic_vector=semantic_vector,
                style_vector=style_vector,
                vector_generated_at=datetime.now(timezone.utc),
            )
        )

        def _persist(session: Session) -> int:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount

        try:
            updated = await self._run(_persist)
        except SQLAlchemyError as e:
            raise DocumentIndexError(
                f"Vector update failed: {e}", document_id=email_id
            ) from e
        if updated == 0:
            raise DocumentIndexError(
                f"No {table.__tablename__} row with id {email_id}",
                document_id=email_id,
            )

    async def fetch_pending(
        self, limit: int, user_id: str | None = None
    ) -> list[IndexDocumentParams]:
        """Sent emails that still lack a semantic vector, oldest first."""
        stmt = select(EmailSent.id, EmailSent.user_id, EmailSent.user_reply).where(
            EmailSent.semantic_vector.is_(None)
        )
        if user_id is not None:
            stmt = stmt.where(EmailSent.user_id == user_id)
        stmt = stmt.order_by(EmailSent.sent_date.asc()).limit(limit)

        def _fetch(session: Session) -> list[IndexDocumentParams]:
            return [
                IndexDocumentParams(
                    user_id=row.user_id, email_id=row.id, text=row.user_reply
                )
                for row in session.execute(stmt)
            ]

        try:
            return await self._run(_fetch)
        except SQLAlchemyError as e:
            raise SearchQueryError(f"Pending fetch failed: {e}") from e

    def ping(self) -> bool:
        with self._engine.connect() as conn:
            conn.execute(select(1))
        return True
