"""Domain value types."""

from .models import (
    BatchIndexResult,
    DateRange,
    EmailCandidate,
    IndexDocumentParams,
    IndexResult,
    ScoredMatch,
    SearchFilter,
    SearchResult,
    SearchStats,
    SelectedExample,
    SelectionResult,
    SelectionStats,
)

__all__ = [
    "BatchIndexResult",
    "DateRange",
    "EmailCandidate",
    "IndexDocumentParams",
    "IndexResult",
    "ScoredMatch",
    "SearchFilter",
    "SearchResult",
    "SearchStats",
    "SelectedExample",
    "SelectionResult",
    "SelectionStats",
]
