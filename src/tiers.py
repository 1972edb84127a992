"""Tier policy table for tonegauge.

Single source of truth for what each subscription tier gets:
  - monthly_limit: analyses per calendar month (int) or UNLIMITED
  - detail_level: how deep the analysis goes (basic < standard < full)
  - exposed_fields: result sections the tier is allowed to see

Every capability check goes through policy_for(tier).exposes(field).
Unknown tier strings resolve to the free policy.

Exposed fields are cumulative: a higher detail level always sees everything a
lower one sees. Dotted names ("toneAnalysis.participantTones") gate a sub-key
of a container section; see GATED_SUBFIELDS.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

UNLIMITED = "unlimited"


class DetailLevel(IntEnum):
    BASIC = 0
    STANDARD = 1
    FULL = 2

    @property
    def label(self) -> str:
        return self.name.lower()


# Sub-keys of container sections that are gated separately from the section.
# Any other sub-key of these sections travels with its parent.
GATED_SUBFIELDS: dict[str, frozenset[str]] = {
    "toneAnalysis": frozenset({"participantTones"}),
    "communication": frozenset({"suggestions", "dynamics"}),
}

BASIC_FIELDS = frozenset({
    "toneAnalysis",          # overall tone + emotional state
    "communication",         # observed patterns
    "healthScore",           # conversation health meter
    "redFlagsDetected",      # teaser: whether flags exist, no details
    "redFlagCount",
    "conversationType",
    "participants",
})

STANDARD_FIELDS = BASIC_FIELDS | frozenset({
    "toneAnalysis.participantTones",
    "communication.suggestions",
    "redFlags",
    "keyQuotes",
    "manipulationScores",
    "participantConflictScores",
    "tensionContributions",
    "tensionMeaning",
    "highTensionFactors",
    "communicationStyles",
    "accountabilitySignals",
    "empatheticSummary",
})

FULL_FIELDS = STANDARD_FIELDS | frozenset({
    "communication.dynamics",
    "dramaScore",
    "powerDynamics",
    "messageDominance",
    "evasionDetection",
    "psychologicalProfile",
    "redFlagsTimeline",
    "relationshipHealthIndicators",
    "personalizedGrowthRecommendations",
    "communicationPatternComparison",
})

FIELDS_BY_LEVEL = {
    DetailLevel.BASIC: BASIC_FIELDS,
    DetailLevel.STANDARD: STANDARD_FIELDS,
    DetailLevel.FULL: FULL_FIELDS,
}


@dataclass(frozen=True)
class TierPolicy:
    """What a single tier is entitled to."""

    tier: str
    monthly_limit: int | str  # int >= 0, or UNLIMITED
    detail_level: DetailLevel
    exposed_fields: frozenset[str]

    @property
    def is_unlimited(self) -> bool:
        return self.monthly_limit == UNLIMITED

    def exposes(self, field: str) -> bool:
        return field in self.exposed_fields

    def to_dict(self) -> dict:
        """JSON-safe view for the presentation layer."""
        return {
            "tier": self.tier,
            "monthlyLimit": self.monthly_limit,
            "detailLevel": self.detail_level.label,
            "exposedFields": sorted(self.exposed_fields),
        }


def _policy(tier: str, monthly_limit: int | str, level: DetailLevel) -> TierPolicy:
    return TierPolicy(
        tier=tier,
        monthly_limit=monthly_limit,
        detail_level=level,
        exposed_fields=FIELDS_BY_LEVEL[level],
    )


# Anonymous callers are metered by the fixed device allowance in src.quota,
# not by a monthly limit.
TIER_POLICIES: dict[str, TierPolicy] = {
    "anonymous": _policy("anonymous", 0, DetailLevel.BASIC),
    "free": _policy("free", 2, DetailLevel.BASIC),
    "personal": _policy("personal", 5, DetailLevel.STANDARD),
    "instant": _policy("instant", 1, DetailLevel.FULL),      # one-off purchase
    "pro": _policy("pro", UNLIMITED, DetailLevel.FULL),
    "beta": _policy("beta", UNLIMITED, DetailLevel.FULL),    # pro features during beta
}

DEFAULT_TIER = "free"


def normalize_tier(tier: str | None) -> str:
    """Return the canonical tier name, falling back to free."""
    key = (tier or "").strip().lower()
    return key if key in TIER_POLICIES else DEFAULT_TIER


def policy_for(tier: str | None) -> TierPolicy:
    """Look up the policy for a tier string. Never fails."""
    return TIER_POLICIES[normalize_tier(tier)]


def public_policy_table() -> list[dict]:
    """All tiers, lowest detail level first."""
    policies = sorted(TIER_POLICIES.values(), key=lambda p: (p.detail_level, p.tier))
    return [p.to_dict() for p in policies]
