"""
Query Embedding Cache.

Async-safe TTL/LRU cache for query vectors so repeated searches for the
same incoming email (both selector phases) embed the text once.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 300.0
DEFAULT_MAX_CACHE_SIZE = 1000


class QueryEmbeddingCache:
    """
    Async-safe LRU cache for query embeddings with time-to-idle expiration.

    - TTL resets on access.
    - LRU eviction when max size exceeded.
    - Keys are digests of ``(model, text)``; raw text is never stored.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        max_size: int = DEFAULT_MAX_CACHE_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cache: OrderedDict[str, tuple[float, np.ndarray]] = OrderedDict()
        self._lock = asyncio.Lock()
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def _make_key(self, query: str, model: str = "") -> str:
        return hashlib.sha256(f"{model}::{query}".encode("utf-8")).hexdigest()

    async def get(self, query: str, model: str = "") -> np.ndarray | None:
        """
        Get cached embedding if available and not expired.

        Returns None if not found or expired.
        """
        key = self._make_key(query, model)
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None

            timestamp, embedding = entry
            now = self._clock()
            if (now - timestamp) >= self._ttl:
                self._cache.pop(key)
                self._misses += 1
                logger.debug("Query cache miss (expired): model=%s", model)
                return None

            self._cache.move_to_end(key)
            self._cache[key] = (now, embedding)
            self._hits += 1
            return embedding.copy()

    async def put(self, query: str, embedding: np.ndarray, model: str = "") -> None:
        """Cache an embedding; evicts least recently used entries over max size."""
        key = self._make_key(query, model)
        async with self._lock:
            if key in self._cache:
                self._cache.move_to_end(key)
            self._cache[key] = (self._clock(), embedding.copy())

            while len(self._cache) > self._max_size:
                self._cache.popitem(last=False)
                logger.debug(
                    "Query cache eviction: %d entries remaining", len(self._cache)
                )

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()

    async def stats(self) -> dict[str, Any]:
        async with self._lock:
            now = self._clock()
            valid_count = sum(
                1 for ts, _ in self._cache.values() if (now - ts) < self._ttl
            )
            return {
                "total_entries": len(self._cache),
                "valid_entries": valid_count,
                "max_size": self._max_size,
                "ttl_seconds": self._ttl,
                "hits": self._hits,
                "misses": self._misses,
            }
