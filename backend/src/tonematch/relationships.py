"""
Recipient relationship detection.

The selector depends only on the ``RelationshipDetector`` protocol.
``ConfiguredRelationshipDetector`` classifies addresses from configured
rule tables, then falls back to domain heuristics.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from tonematch.config.models import RelationshipConfig

logger = logging.getLogger(__name__)


class RelationshipType(str, Enum):
    SPOUSE = "spouse"
    FAMILY = "family"
    COLLEAGUE = "colleague"
    FRIENDS = "friends"
    EXTERNAL = "external"
    SPAM = "spam"


# Lower number wins when two addresses classify differently.
PRIORITY: dict[str, int] = {
    RelationshipType.SPOUSE.value: 1,
    RelationshipType.FAMILY.value: 2,
    RelationshipType.COLLEAGUE.value: 3,
    RelationshipType.FRIENDS.value: 4,
    RelationshipType.EXTERNAL.value: 5,
    RelationshipType.SPAM.value: 6,
}


class RelationshipResult(BaseModel):
    relationship: str
    confidence: float = Field(ge=0.0, le=1.0)
    method: str = "configured"


@runtime_checkable
class RelationshipDetector(Protocol):
    async def detect_relationship(
        self, user_id: str, recipient_email: str
    ) -> RelationshipResult: ...


def normalize_address(address: str) -> tuple[str, str]:
    """Return ``(address, domain)`` lower-cased; raises ValueError if malformed."""
    normalized = address.strip().lower()
    local, sep, domain = normalized.rpartition("@")
    if not sep or not local or not domain or "." not in domain:
        raise ValueError(f"Invalid email address: {address!r}")
    return normalized, domain


def higher_priority(
    first: RelationshipResult | None, second: RelationshipResult | None
) -> RelationshipResult | None:
    if first is None:
        return second
    if second is None:
        return first
    p1 = PRIORITY.get(first.relationship, 999)
    p2 = PRIORITY.get(second.relationship, 999)
    return first if p1 <= p2 else second


class ConfiguredRelationshipDetector:
    """
    Rule order: spouse address, family address, work domain, then
    consumer-mail domains as friends; everything else is external.
    """

    def __init__(self, config: RelationshipConfig) -> None:
        self._spouse = set(config.spouse_emails)
        self._family = set(config.family_emails)
        self._work_domains = set(config.work_domains)
        self._personal_domains = set(config.personal_domains)

    def configured_match(self, address: str) -> RelationshipResult | None:
        normalized, domain = normalize_address(address)
        if normalized in self._spouse:
            return RelationshipResult(relationship=RelationshipType.SPOUSE.value, confidence=1.0)
        if normalized in self._family:
            return RelationshipResult(relationship=RelationshipType.FAMILY.value, confidence=1.0)
        if domain in self._work_domains:
            return RelationshipResult(relationship=RelationshipType.COLLEAGUE.value, confidence=1.0)
        return None

    def heuristic_match(self, address: str) -> RelationshipResult:
        _, domain = normalize_address(address)
        if domain in self._personal_domains:
            return RelationshipResult(
                relationship=RelationshipType.FRIENDS.value,
                confidence=0.6,
                method="domain",
            )
        return RelationshipResult(
            relationship=RelationshipType.EXTERNAL.value,
            confidence=0.5,
            method="domain",
        )

    async def detect_relationship(
        self,
        user_id: str,
        recipient_email: str,
        reply_to_email: str | None = None,
    ) -> RelationshipResult:
        """
        Classify the recipient; a Reply-To address is checked alongside it
        and the higher-priority configured match wins.
        """
        reply_match = self.configured_match(reply_to_email) if reply_to_email else None
        match = higher_priority(reply_match, self.configured_match(recipient_email))
        if match is None:
            match = self.heuristic_match(reply_to_email or recipient_email)
        logger.debug(
            "Relationship for user %s: %s (%.2f via %s)",
            user_id,
            match.relationship,
            match.confidence,
            match.method,
        )
        return match
