"""
Domain models for retrieval and example selection.

Vectors are carried as float32 numpy arrays. Lists are accepted on input
and converted once at validation time.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal

import numpy as np
from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
)

RelationshipLabel = str
EmailType = Literal["sent", "received"]
ExampleOrigin = Literal["direct", "relationship"]


def _as_vector(value: Any) -> Any:
    if value is None:
        return None
    return np.asarray(value, dtype=np.float32).reshape(-1)


Vector = Annotated[
    np.ndarray,
    BeforeValidator(_as_vector),
    PlainSerializer(lambda v: v.tolist(), when_used="json"),
]


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EmailCandidate(BaseModel):
    """
    A previously sent email that may be offered as a style example.

    ``style_vector`` is None when the email was indexed without a style
    model; such candidates are scored on the semantic vector alone.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    id: str
    text: str
    semantic_vector: Vector
    style_vector: Vector | None = None
    recipient_email: str
    relationship: RelationshipLabel
    sent_date: datetime
    word_count: int = Field(default=0, ge=0)

    @field_validator("sent_date")
    @classmethod
    def _normalize_sent_date(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    @field_validator("recipient_email", "relationship")
    @classmethod
    def _normalize_label(cls, value: str) -> str:
        return value.strip().lower()

    def __repr__(self) -> str:
        return (
            f"EmailCandidate(id={self.id!r}, recipient_email={self.recipient_email!r}, "
            f"relationship={self.relationship!r}, sent_date={self.sent_date.isoformat()!r}, "
            f"word_count={self.word_count}, has_style={self.style_vector is not None})"
        )


class DateRange(BaseModel):
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _normalize(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    def contains(self, moment: datetime) -> bool:
        return self.start <= _ensure_utc(moment) <= self.end


class SearchFilter(BaseModel):
    """Per-call candidate filter."""

    relationship: RelationshipLabel | None = None
    recipient_email: str | None = None
    date_range: DateRange | None = None
    exclude_ids: list[str] = Field(default_factory=list)

    @field_validator("relationship", "recipient_email", mode="before")
    @classmethod
    def _normalize_optional(cls, value: Any) -> Any:
        if isinstance(value, str):
            trimmed = value.strip().lower()
            return trimmed or None
        return value

    def cache_key(self, user_id: str) -> str:
        """Index-cache key; exclusions are covered by the candidate fingerprint."""
        parts = [
            user_id,
            self.relationship or "*",
            self.recipient_email or "*",
        ]
        if self.date_range is not None:
            parts.append(self.date_range.start.isoformat())
            parts.append(self.date_range.end.isoformat())
        return "|".join(parts)

    def matches(self, candidate: EmailCandidate) -> bool:
        if self.relationship and candidate.relationship != self.relationship:
            return False
        if self.recipient_email and candidate.recipient_email != self.recipient_email:
            return False
        if self.date_range and not self.date_range.contains(candidate.sent_date):
            return False
        return candidate.id not in self.exclude_ids


class ScoredMatch(BaseModel):
    """A candidate with its dual-space and temporal scores."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    candidate: EmailCandidate
    semantic_score: float
    style_score: float
    combined_score: float
    temporal_score: float

    @property
    def id(self) -> str:
        return self.candidate.id


class SearchStats(BaseModel):
    total_candidates: int = 0
    filtered_count: int = 0
    avg_semantic_score: float = 0.0
    avg_style_score: float = 0.0
    avg_combined_score: float = 0.0
    latency_ms: float = 0.0
    cache_hit: bool = False


class SearchResult(BaseModel):
    success: bool
    documents: list[ScoredMatch] = Field(default_factory=list)
    stats: SearchStats = Field(default_factory=SearchStats)


class IndexDocumentParams(BaseModel):
    """Text to embed and persist against an email record."""

    user_id: str
    email_id: str
    text: str
    email_type: EmailType = "sent"
    metadata: dict[str, Any] = Field(default_factory=dict)


class IndexResult(BaseModel):
    success: bool
    document_id: str
    has_style_vector: bool = False
    latency_ms: float = 0.0


class BatchIndexResult(BaseModel):
    success: bool
    indexed: int = 0
    failed: int = 0
    errors: list[tuple[str, str]] = Field(default_factory=list)
    latency_ms: float = 0.0


class SelectedExample(BaseModel):
    """A ranked match annotated with the selection phase it came from."""

    match: ScoredMatch
    origin: ExampleOrigin

    @property
    def id(self) -> str:
        return self.match.candidate.id


class SelectionStats(BaseModel):
    total_candidates: int = 0
    relationship_match: int = 0
    direct_correspondence: int = 0
    avg_semantic_score: float = 0.0
    avg_style_score: float = 0.0
    avg_combined_score: float = 0.0
    avg_age_days: float = 0.0


class SelectionResult(BaseModel):
    relationship: RelationshipLabel
    examples: list[SelectedExample] = Field(default_factory=list)
    stats: SelectionStats = Field(default_factory=SelectionStats)
