"""
Integration tests for the SQLAlchemy candidate store against SQLite.
"""

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from tonematch.common.exceptions import DocumentIndexError
from tonematch.domain.models import SearchFilter
from tonematch.store.schema import SEMANTIC_DIM, STYLE_DIM, EmailReceived, EmailSent
from tonematch.store.sql import SqlCandidateStore

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _unit(dim, index):
    v = np.zeros(dim, dtype=np.float32)
    v[index] = 1.0
    return v


@pytest.fixture
def sql_store(tmp_path):
    store = SqlCandidateStore.from_url(f"sqlite:///{tmp_path / 'tonematch.db'}")
    store.create_schema()
    with store.session() as session:
        session.add_all(
            [
                EmailSent(
                    id="s1",
                    user_id="u1",
                    user_reply="Thanks, will do.",
                    recipient_email="alice@acme.com",
                    relationship_type="colleague",
                    sent_date=NOW - timedelta(days=1),
                    word_count=3,
                    semantic_vector=_unit(SEMANTIC_DIM, 0),
                    style_vector=_unit(STYLE_DIM, 0),
                ),
                EmailSent(
                    id="s2",
                    user_id="u1",
                    user_reply="Love you, see you Sunday",
                    recipient_email="mum@home.net",
                    relationship_type="family",
                    sent_date=NOW - timedelta(days=3),
                    word_count=5,
                    semantic_vector=_unit(SEMANTIC_DIM, 1),
                    style_vector=None,
                ),
                EmailSent(
                    id="s3",
                    user_id="u1",
                    user_reply="Not embedded yet",
                    recipient_email="alice@acme.com",
                    relationship_type="colleague",
                    sent_date=NOW - timedelta(days=10),
                    word_count=3,
                ),
                EmailSent(
                    id="s4",
                    user_id="u2",
                    user_reply="Someone else's mail",
                    recipient_email="x@y.com",
                    relationship_type="external",
                    sent_date=NOW - timedelta(days=2),
                    word_count=3,
                    semantic_vector=_unit(SEMANTIC_DIM, 2),
                ),
                EmailReceived(
                    id="r1",
                    user_id="u1",
                    sender_email="alice@acme.com",
                    received_date=NOW - timedelta(days=1),
                ),
            ]
        )
        session.commit()
    return store


def test_ping(sql_store):
    assert sql_store.ping() is True


@pytest.mark.asyncio
class TestSqlCandidateStore:
    async def test_fetch_returns_embedded_rows_newest_first(self, sql_store):
        result = await sql_store.fetch_candidates("u1", SearchFilter(), limit=10)

        assert [c.id for c in result] == ["s1", "s2"]
        first = result[0]
        assert first.semantic_vector.shape == (SEMANTIC_DIM,)
        assert first.style_vector.shape == (STYLE_DIM,)
        assert first.sent_date.tzinfo is not None
        assert result[1].style_vector is None

    async def test_fetch_filters(self, sql_store):
        by_relationship = await sql_store.fetch_candidates(
            "u1", SearchFilter(relationship="family"), limit=10
        )
        by_recipient = await sql_store.fetch_candidates(
            "u1", SearchFilter(recipient_email="alice@acme.com"), limit=10
        )
        excluded = await sql_store.fetch_candidates(
            "u1", SearchFilter(exclude_ids=["s1"]), limit=10
        )

        assert [c.id for c in by_relationship] == ["s2"]
        assert [c.id for c in by_recipient] == ["s1"]
        assert [c.id for c in excluded] == ["s2"]

    async def test_fetch_limit(self, sql_store):
        result = await sql_store.fetch_candidates("u1", SearchFilter(), limit=1)

        assert [c.id for c in result] == ["s1"]

    async def test_fetch_pending(self, sql_store):
        pending = await sql_store.fetch_pending(limit=10)

        assert [(p.user_id, p.email_id) for p in pending] == [("u1", "s3")]
        assert pending[0].text == "Not embedded yet"

    async def test_persist_vectors_makes_row_searchable(self, sql_store):
        await sql_store.persist_vectors(
            "s3", _unit(SEMANTIC_DIM, 5), _unit(STYLE_DIM, 5)
        )

        result = await sql_store.fetch_candidates("u1", SearchFilter(), limit=10)
        assert [c.id for c in result] == ["s1", "s2", "s3"]
        assert await sql_store.fetch_pending(limit=10, user_id="u1") == []

    async def test_persist_received(self, sql_store):
        await sql_store.persist_vectors(
            "r1", _unit(SEMANTIC_DIM, 0), None, email_type="received"
        )

        with sql_store.session() as session:
            row = session.get(EmailReceived, "r1")
            assert row.vector_generated_at is not None
            assert row.style_vector is None

    async def test_persist_unknown_row(self, sql_store):
        with pytest.raises(DocumentIndexError, match="email_sent"):
            await sql_store.persist_vectors("missing", _unit(SEMANTIC_DIM, 0), None)

    async def test_filters_match_mixed_case_rows(self, sql_store):
        with sql_store.session() as session:
            session.add(
                EmailSent(
                    id="s5",
                    user_id="u3",
                    user_reply="Sounds good.",
                    recipient_email="Bob@Acme.com",
                    relationship_type="Colleague",
                    sent_date=NOW - timedelta(days=1),
                    word_count=2,
                    semantic_vector=_unit(SEMANTIC_DIM, 3),
                )
            )
            session.commit()

        by_recipient = await sql_store.fetch_candidates(
            "u3", SearchFilter(recipient_email="bob@acme.com"), limit=10
        )
        by_relationship = await sql_store.fetch_candidates(
            "u3", SearchFilter(relationship="COLLEAGUE"), limit=10
        )

        assert [c.id for c in by_recipient] == ["s5"]
        assert [c.id for c in by_relationship] == ["s5"]
        assert by_recipient[0].recipient_email == "bob@acme.com"
        assert by_recipient[0].relationship == "colleague"
