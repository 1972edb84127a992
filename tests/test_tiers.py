"""Tests for src/tiers.py: tier policy table."""

import pytest

from src.tiers import (
    DEFAULT_TIER,
    GATED_SUBFIELDS,
    TIER_POLICIES,
    UNLIMITED,
    DetailLevel,
    normalize_tier,
    policy_for,
    public_policy_table,
)


class TestPolicyLookup:

    @pytest.mark.parametrize("tier,limit,level", [
        ("free", 2, DetailLevel.BASIC),
        ("personal", 5, DetailLevel.STANDARD),
        ("instant", 1, DetailLevel.FULL),
        ("pro", UNLIMITED, DetailLevel.FULL),
        ("beta", UNLIMITED, DetailLevel.FULL),
        ("anonymous", 0, DetailLevel.BASIC),
    ])
    def test_table(self, tier, limit, level):
        policy = policy_for(tier)
        assert policy.tier == tier
        assert policy.monthly_limit == limit
        assert policy.detail_level == level

    @pytest.mark.parametrize("raw", ["  PRO ", "Pro", "pro\n"])
    def test_case_and_whitespace_insensitive(self, raw):
        assert policy_for(raw).tier == "pro"

    @pytest.mark.parametrize("raw", ["", None, "platinum", "   "])
    def test_unknown_tier_falls_back_to_free(self, raw):
        assert normalize_tier(raw) == DEFAULT_TIER
        assert policy_for(raw) is TIER_POLICIES["free"]

    def test_unlimited_flag(self):
        assert policy_for("pro").is_unlimited
        assert not policy_for("personal").is_unlimited


class TestMonotonicUnlock:

    def test_higher_level_sees_everything_lower_level_sees(self):
        policies = list(TIER_POLICIES.values())
        for a in policies:
            for b in policies:
                if a.detail_level < b.detail_level:
                    assert a.exposed_fields <= b.exposed_fields, (a.tier, b.tier)

    def test_same_level_same_fields(self):
        assert policy_for("instant").exposed_fields == policy_for("pro").exposed_fields
        assert policy_for("anonymous").exposed_fields == policy_for("free").exposed_fields

    def test_basic_hides_enrichment(self):
        free = policy_for("free")
        assert free.exposes("toneAnalysis")
        assert free.exposes("healthScore")
        assert not free.exposes("redFlags")
        assert not free.exposes("manipulationScores")
        assert not free.exposes("toneAnalysis.participantTones")

    def test_full_only_sections(self):
        personal, pro = policy_for("personal"), policy_for("pro")
        for field in ("dramaScore", "powerDynamics", "messageDominance",
                      "evasionDetection", "communication.dynamics"):
            assert pro.exposes(field)
            assert not personal.exposes(field)

    def test_every_gated_subfield_is_named_in_full(self):
        full = policy_for("pro").exposed_fields
        for section, subs in GATED_SUBFIELDS.items():
            assert section in full
            for sub in subs:
                assert f"{section}.{sub}" in full


class TestPublicTable:

    def test_json_safe_and_ordered(self):
        table = public_policy_table()
        assert {row["tier"] for row in table} == set(TIER_POLICIES)
        levels = [row["detailLevel"] for row in table]
        order = {"basic": 0, "standard": 1, "full": 2}
        assert levels == sorted(levels, key=order.__getitem__)
        pro = next(row for row in table if row["tier"] == "pro")
        assert pro["monthlyLimit"] == "unlimited"
        assert isinstance(pro["exposedFields"], list)


class TestTeaserAndDeepDive:

    def test_free_sees_red_flag_teaser(self):
        for tier in ("anonymous", "free"):
            policy = policy_for(tier)
            assert policy.exposes("redFlagsDetected")
            assert policy.exposes("redFlagCount")
            assert not policy.exposes("redFlags")

    @pytest.mark.parametrize("field", [
        "psychologicalProfile", "redFlagsTimeline", "relationshipHealthIndicators",
        "personalizedGrowthRecommendations", "communicationPatternComparison",
    ])
    def test_deep_dive_sections_need_full(self, field):
        assert policy_for("beta").exposes(field)
        assert policy_for("instant").exposes(field)
        assert not policy_for("personal").exposes(field)
