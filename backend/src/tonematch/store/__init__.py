"""Candidate stores."""

from .base import CandidateStore
from .memory import InMemoryCandidateStore

__all__ = ["CandidateStore", "InMemoryCandidateStore"]
