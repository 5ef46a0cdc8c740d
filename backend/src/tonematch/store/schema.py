"""
SQLAlchemy models for the sent/received email tables.

Only the columns the retrieval engine reads or writes are mapped.
"""

from __future__ import annotations

from datetime import datetime

import numpy as np
from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

SEMANTIC_DIM = 384
STYLE_DIM = 768


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class EmailSent(Base):
    """A reply the user wrote; the pool examples are drawn from."""

    __tablename__ = "email_sent"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_reply: Mapped[str] = mapped_column(Text, nullable=False)
    recipient_email: Mapped[str] = mapped_column(String(320), nullable=False)
    relationship_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default="external"
    )
    subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    word_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    semantic_vector: Mapped[np.ndarray | None] = mapped_column(
        Vector(SEMANTIC_DIM), nullable=True
    )
    style_vector: Mapped[np.ndarray | None] = mapped_column(
        Vector(STYLE_DIM), nullable=True
    )
    vector_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_email_sent_user_recipient", "user_id", "recipient_email"),
        Index("ix_email_sent_user_relationship", "user_id", "relationship_type"),
    )


class EmailReceived(Base):
    """An incoming email; vectors are stored for later analysis."""

    __tablename__ = "email_received"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    sender_email: Mapped[str] = mapped_column(String(320), nullable=False)
    subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    semantic_vector: Mapped[np.ndarray | None] = mapped_column(
        Vector(SEMANTIC_DIM), nullable=True
    )
    style_vector: Mapped[np.ndarray | None] = mapped_column(
        Vector(STYLE_DIM), nullable=True
    )
    vector_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
