"""Four-bucket temporal decay favouring recently written emails."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

DAYS_PER_MONTH = 30.0
BUCKET_LIMITS_MONTHS = (3.0, 6.0, 12.0)


def age_in_days(sent_date: datetime, now: datetime) -> float:
    if sent_date.tzinfo is None:
        sent_date = sent_date.replace(tzinfo=timezone.utc)
    return (now - sent_date).total_seconds() / 86400.0


class TemporalDecay:
    """Maps email age to a weight: <=3, <=6, <=12 and >12 months."""

    def __init__(self, weights: Sequence[float]) -> None:
        if len(weights) != len(BUCKET_LIMITS_MONTHS) + 1:
            raise ValueError("TemporalDecay needs exactly four weights")
        self._weights = tuple(weights)

    def weight(self, sent_date: datetime, now: datetime) -> float:
        months = age_in_days(sent_date, now) / DAYS_PER_MONTH
        for limit, weight in zip(BUCKET_LIMITS_MONTHS, self._weights):
            if months <= limit:
                return weight
        return self._weights[-1]
