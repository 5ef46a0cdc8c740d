"""
Two-phase example selection for draft generation.

Phase 1 draws from emails previously sent to the exact recipient (capped
at a fraction of the desired count); phase 2 fills the remaining slots
from emails sent to others in the same relationship category.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import datetime, timezone

from tonematch.common.exceptions import SelectionError
from tonematch.config.models import SelectorConfig
from tonematch.domain.models import (
    ScoredMatch,
    SearchFilter,
    SelectedExample,
    SelectionResult,
    SelectionStats,
)
from tonematch.observability import record_metric, trace_operation
from tonematch.relationships import RelationshipDetector
from tonematch.vector.search_service import VectorSearchService
from tonematch.vector.temporal import age_in_days

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class ExampleSelector:
    """Builds a bounded, statistics-annotated example set for one draft."""

    def __init__(
        self,
        config: SelectorConfig,
        search_service: VectorSearchService,
        relationship_detector: RelationshipDetector,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._search = search_service
        self._detector = relationship_detector
        self._now = now

    def max_direct(self, desired_count: int) -> int:
        return math.floor(desired_count * self._config.direct_max_fraction)

    async def _search_phase(
        self,
        phase: str,
        user_id: str,
        query_text: str,
        filters: SearchFilter,
        max_count: int,
        fetch_floor: int,
    ) -> list[ScoredMatch]:
        """Run one phase; failures are logged and yield no matches."""
        if max_count <= 0:
            return []
        try:
            result = await self._search.search(
                user_id,
                query_text,
                filters=filters,
                limit=max(fetch_floor, max_count * 2),
                score_threshold=self._config.score_threshold,
            )
        except Exception:
            logger.error("%s search failed for user %s", phase, user_id, exc_info=True)
            record_metric("selector_phase_failed", 1, {"phase": phase})
            return []
        return result.documents[:max_count]

    @trace_operation("example_selector.select_examples")
    async def select_examples(
        self,
        user_id: str,
        incoming_email: str,
        recipient_email: str,
        desired_count: int | None = None,
    ) -> SelectionResult:
        """
        Select up to ``desired_count`` examples.

        Raises:
            SelectionError: relationship detection failed.
        """
        desired = self._config.example_count if desired_count is None else desired_count
        desired = max(desired, 0)
        max_direct = self.max_direct(desired)

        direct = await self._search_phase(
            "direct",
            user_id,
            incoming_email,
            SearchFilter(recipient_email=recipient_email),
            max_direct,
            self._config.direct_fetch_limit,
        )

        try:
            detected = await self._detector.detect_relationship(user_id, recipient_email)
        except Exception as e:
            raise SelectionError(
                f"Example selection failed: {e}", user_id=user_id
            ) from e
        relationship = detected.relationship.strip().lower()

        category = await self._search_phase(
            "relationship",
            user_id,
            incoming_email,
            SearchFilter(
                relationship=relationship, exclude_ids=[m.id for m in direct]
            ),
            desired - len(direct),
            self._config.category_fetch_limit,
        )

        examples = [SelectedExample(match=m, origin="direct") for m in direct]
        examples += [SelectedExample(match=m, origin="relationship") for m in category]
        examples = examples[:desired]

        stats = self._stats(examples, len(direct) + len(category), relationship)
        logger.info(
            "Selected %d/%d examples for user %s (direct=%d, relationship=%s)",
            len(examples),
            desired,
            user_id,
            stats.direct_correspondence,
            relationship,
        )
        return SelectionResult(relationship=relationship, examples=examples, stats=stats)

    def _stats(
        self,
        examples: list[SelectedExample],
        total_candidates: int,
        relationship: str,
    ) -> SelectionStats:
        now = self._now()
        matches = [e.match for e in examples]
        return SelectionStats(
            total_candidates=total_candidates,
            relationship_match=sum(
                1 for m in matches if m.candidate.relationship == relationship
            ),
            direct_correspondence=sum(1 for e in examples if e.origin == "direct"),
            avg_semantic_score=_mean([m.semantic_score for m in matches]),
            avg_style_score=_mean([m.style_score for m in matches]),
            avg_combined_score=_mean([m.combined_score for m in matches]),
            avg_age_days=_mean(
                [age_in_days(m.candidate.sent_date, now) for m in matches]
            ),
        )
