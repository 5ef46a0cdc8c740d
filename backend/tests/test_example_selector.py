"""
Unit tests for two-phase example selection.
"""

import pytest

from conftest import NOW, FakeRelationshipDetector, make_candidate
from tonematch.common.exceptions import SearchQueryError, SelectionError
from tonematch.pipeline.example_selector import ExampleSelector

USER = "user-1"
ALICE = "alice@example.com"
BOB = "bob@example.com"
INCOMING = "Can you send the quarterly numbers before Friday?"


class FlakySearch:
    """Delegates to a real engine but fails one phase."""

    def __init__(self, inner, fail_phase: str):
        self._inner = inner
        self._fail_phase = fail_phase
        self.calls = []

    async def search(self, user_id, query_text, filters=None, **kwargs):
        phase = "direct" if filters.recipient_email else "relationship"
        self.calls.append((phase, kwargs.get("limit")))
        if phase == self._fail_phase:
            raise SearchQueryError("Search failed: connection reset")
        return await self._inner.search(user_id, query_text, filters=filters, **kwargs)


@pytest.fixture
def detector():
    return FakeRelationshipDetector("colleague")


@pytest.fixture
def selector(selector_config, engine, detector):
    return ExampleSelector(selector_config, engine, detector, now=lambda: NOW)


def _to_bob(count, relationship="colleague", prefix="bob"):
    return [
        make_candidate(f"{prefix}{i}", recipient=BOB, relationship=relationship)
        for i in range(count)
    ]


def _to_alice(count):
    return [make_candidate(f"alice{i}", recipient=ALICE) for i in range(count)]


@pytest.mark.asyncio
class TestSelectExamples:
    async def test_fills_from_relationship_when_no_direct_history(self, selector, store):
        store.add_many(USER, _to_bob(6))

        result = await selector.select_examples(USER, INCOMING, ALICE, desired_count=5)

        assert len(result.examples) == 5
        assert all(e.origin == "relationship" for e in result.examples)
        assert result.stats.direct_correspondence == 0
        assert result.relationship == "colleague"

    async def test_direct_examples_are_capped_and_listed_first(self, selector, store):
        store.add_many(USER, _to_alice(4) + _to_bob(6))

        result = await selector.select_examples(USER, INCOMING, ALICE, desired_count=5)

        origins = [e.origin for e in result.examples]
        assert origins == ["direct", "direct", "relationship", "relationship", "relationship"]
        assert result.stats.direct_correspondence == 2
        assert len({e.id for e in result.examples}) == 5

    async def test_stats(self, selector, store):
        store.add_many(USER, _to_alice(4) + _to_bob(6))

        result = await selector.select_examples(USER, INCOMING, ALICE, desired_count=5)

        stats = result.stats
        assert stats.total_candidates == 5
        assert stats.relationship_match == 5
        assert stats.avg_semantic_score == pytest.approx(1.0)
        assert stats.avg_combined_score == pytest.approx(1.0)
        assert stats.avg_age_days == pytest.approx(10.0)

    async def test_uses_detected_relationship(self, selector_config, engine, store):
        store.add_many(
            USER, _to_bob(3, "family", prefix="fam") + _to_bob(3, "colleague", prefix="col")
        )
        selector = ExampleSelector(
            selector_config, engine, FakeRelationshipDetector("family"), now=lambda: NOW
        )

        result = await selector.select_examples(USER, INCOMING, ALICE, desired_count=5)

        assert result.relationship == "family"
        assert {e.id for e in result.examples} == {"fam0", "fam1", "fam2"}

    async def test_detected_label_is_normalized(self, selector_config, engine, store):
        store.add_many(USER, _to_bob(3, "family", prefix="fam"))
        selector = ExampleSelector(
            selector_config, engine, FakeRelationshipDetector(" Family "), now=lambda: NOW
        )

        result = await selector.select_examples(USER, INCOMING, ALICE, desired_count=5)

        assert result.relationship == "family"
        assert result.stats.relationship_match == 3

    @pytest.mark.parametrize("desired", [0, 1, 2, 5, 9])
    async def test_result_is_bounded(self, selector, store, desired):
        store.add_many(USER, _to_alice(4) + _to_bob(10))

        result = await selector.select_examples(USER, INCOMING, ALICE, desired_count=desired)

        assert len(result.examples) <= desired
        assert result.stats.direct_correspondence <= int(desired * 0.4)

    async def test_negative_count_selects_nothing(self, selector, store):
        store.add_many(USER, _to_bob(3))

        result = await selector.select_examples(USER, INCOMING, ALICE, desired_count=-3)

        assert result.examples == []

    async def test_default_count_from_config(self, selector, store):
        store.add_many(USER, _to_bob(8))

        result = await selector.select_examples(USER, INCOMING, ALICE)

        assert len(result.examples) == 5

    async def test_detector_receives_recipient(self, selector, detector, store):
        await selector.select_examples(USER, INCOMING, ALICE)

        assert detector.calls == [(USER, ALICE)]


@pytest.mark.asyncio
class TestFailures:
    async def test_direct_phase_failure_is_soft(self, selector_config, engine, store, detector):
        store.add_many(USER, _to_alice(4) + _to_bob(6))
        search = FlakySearch(engine, fail_phase="direct")
        selector = ExampleSelector(selector_config, search, detector, now=lambda: NOW)

        result = await selector.select_examples(USER, INCOMING, ALICE, desired_count=5)

        assert len(result.examples) == 5
        assert result.stats.direct_correspondence == 0

    async def test_relationship_phase_failure_is_soft(
        self, selector_config, engine, store, detector
    ):
        store.add_many(USER, _to_alice(4) + _to_bob(6))
        search = FlakySearch(engine, fail_phase="relationship")
        selector = ExampleSelector(selector_config, search, detector, now=lambda: NOW)

        result = await selector.select_examples(USER, INCOMING, ALICE, desired_count=5)

        assert [e.origin for e in result.examples] == ["direct", "direct"]

    async def test_phase_limits(self, selector_config, engine, store, detector):
        search = FlakySearch(engine, fail_phase="none")
        selector = ExampleSelector(selector_config, search, detector, now=lambda: NOW)

        await selector.select_examples(USER, INCOMING, ALICE, desired_count=5)

        assert search.calls == [("direct", 10), ("relationship", 20)]

    async def test_detection_failure_raises(self, selector_config, engine, store):
        detector = FakeRelationshipDetector(error=RuntimeError("directory offline"))
        selector = ExampleSelector(selector_config, engine, detector, now=lambda: NOW)

        with pytest.raises(SelectionError, match="^Example selection failed:") as exc_info:
            await selector.select_examples(USER, INCOMING, ALICE)

        assert exc_info.value.user_id == USER
        assert exc_info.value.error_code == "SELECTION_ERROR"


def test_max_direct(selector):
    assert selector.max_direct(5) == 2
    assert selector.max_direct(2) == 0
    assert selector.max_direct(10) == 4
