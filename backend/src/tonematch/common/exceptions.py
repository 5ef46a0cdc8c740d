"""
ToneMatchError hierarchy.

Provides specific, actionable exception types with context preservation
and programmatic error handling support.
"""

from __future__ import annotations

from typing import Any

SENSITIVE_CONTEXT_KEYS = {"query", "text", "file_path"}
REDACTED_VALUE = "[REDACTED]"


def _redact_context(context: dict[str, Any]) -> dict[str, Any]:
    redacted: dict[str, Any] = {}
    for key, value in context.items():
        if isinstance(key, str) and key.lower() in SENSITIVE_CONTEXT_KEYS:
            redacted[key] = REDACTED_VALUE
        else:
            redacted[key] = value
    return redacted


def _pop_duplicate_kwargs(kwargs: dict[str, Any], keys: tuple[str, ...]) -> None:
    for key in keys:
        kwargs.pop(key, None)


class ToneMatchError(Exception):
    """
    Base class for all application errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error code (e.g., "QUERY_ERROR")
        context: Additional context dict for debugging
    """

    default_code: str | None = None

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.context = dict(context) if context is not None else {}
        if kwargs:
            self.context.update(kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception for logging/reporting."""
        safe_context = _redact_context(dict(self.context)) if self.context else {}
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": safe_context,
        }


class ConfigurationError(ToneMatchError):
    """Configuration issues: missing/invalid settings or model artifacts."""

    default_code = "CONFIGURATION_ERROR"


class InvalidVectorError(ToneMatchError):
    """
    Vector failed validation: wrong dimension or non-finite values.
    """

    default_code = "INVALID_VECTOR"

    def __init__(
        self,
        message: str = "Invalid vector dimensions or format",
        expected: int | None = None,
        actual: int | None = None,
        **kwargs: Any,
    ) -> None:
        _pop_duplicate_kwargs(kwargs, ("expected", "actual"))
        super().__init__(message, expected=expected, actual=actual, **kwargs)
        self.expected = expected
        self.actual = actual


class SearchQueryError(ToneMatchError):
    """
    Candidate fetch or search pipeline failure.
    """

    default_code = "QUERY_ERROR"

    def __init__(
        self,
        message: str,
        query: str | None = None,
        **kwargs: Any,
    ) -> None:
        _pop_duplicate_kwargs(kwargs, ("query",))
        super().__init__(message, query=query, **kwargs)
        self.query = query


class DocumentIndexError(ToneMatchError):
    """
    Vector persistence failure for a single document.
    """

    default_code = "INDEX_ERROR"

    def __init__(
        self,
        message: str,
        document_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        _pop_duplicate_kwargs(kwargs, ("document_id",))
        super().__init__(message, document_id=document_id, **kwargs)
        self.document_id = document_id


class EmbeddingError(ToneMatchError):
    """
    Embedding failures: uninitialized model, inference error, empty input.
    """

    default_code = "EMBEDDING_ERROR"

    def __init__(self, message: str, retryable: bool = False, **kwargs: Any) -> None:
        _pop_duplicate_kwargs(kwargs, ("retryable",))
        super().__init__(message, retryable=retryable, **kwargs)
        self.retryable = retryable


class SelectionError(ToneMatchError):
    """
    Example selection failed because an upstream dependency failed.
    """

    default_code = "SELECTION_ERROR"

    def __init__(
        self,
        message: str,
        user_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        _pop_duplicate_kwargs(kwargs, ("user_id",))
        super().__init__(message, user_id=user_id, **kwargs)
        self.user_id = user_id


class ClusteringError(ToneMatchError):
    """Style clustering failures."""

    default_code = "CLUSTERING_ERROR"
