"""
Unit tests for policy scoring.
"""

import pytest

from service_privacy.app.policy.catalog import ServicePolicy, load_policy_catalog
from service_privacy.app.policy.scoring import (
    analyze_data_match, compare_retention, rank_policies, recommendation_reason,
    retention_comparison, score_policy
)
from service_privacy.app.rules.models import Rule, PetEffect, RuleProvenance, GenerationMode


NAVIGATION_DATA = ("location.latitude", "location.longitude", "location.heading", "location.speed")


@pytest.fixture
def navigation_rule():
    return Rule(
        id="rule-nav",
        service_type="map",
        purpose="Navigation",
        effect=PetEffect.GENERALIZE,
        priority=80,
        data_types=NAVIGATION_DATA
    )


class TestDataMatch:
    """Test cases for analyze_data_match."""

    def test_wildcard(self):
        match = analyze_data_match(["location.*"], ["location.latitude", "identity.vin", "location.latitude"])

        assert match.requested == ["location.latitude", "identity.vin"]
        assert match.allowed == ["location.latitude"]
        assert match.denied == ["identity.vin"]
        assert match.coverage == 0.5

    def test_nothing_requested(self):
        assert analyze_data_match(["location.latitude"], []).coverage == 1.0


class TestRetention:
    """Test cases for retention comparison."""

    @pytest.mark.parametrize("user,policy,expected", [
        ("30d", "stated-purpose", "equal"),
        ("90d", "stated-purpose", "better"),
        ("24h", "stated-purpose", "worse"),
        ("indefinite", "indefinitely", "equal"),
        ("none", "no-retention", "equal"),
        ("forever", "30d", "unknown"),
    ])
    def test_comparison(self, user, policy, expected):
        assert retention_comparison(user, policy) == expected

    def test_compare_retention(self):
        assert compare_retention("90d", "legal-requirement") is True
        assert compare_retention("session", "business-practices") is False
        assert compare_retention("custom", "custom") is True
        assert compare_retention("custom", "other") is False


class TestScorePolicy:
    """Test cases for score_policy and rank_policies."""

    @pytest.fixture(scope="class")
    def catalog(self):
        return load_policy_catalog()

    def test_full_match(self, navigation_rule, catalog):
        score = score_policy(navigation_rule, catalog.find("map", "Navigation"))

        assert score.percentage == 100
        assert score.matched is True
        assert [c.field for c in score.matches] == ["purpose", "data_types"]
        assert score.recommendation.startswith("Excellent match with 100%")

    def test_partial_match(self, navigation_rule, catalog):
        score = score_policy(navigation_rule, catalog.find("map", "Traffic Detection"))

        assert score.percentage == 50
        assert [c.field for c in score.mismatches] == ["purpose"]
        assert score.matches[0].reason == "75% data type coverage"

    def test_retention_counted(self, navigation_rule, catalog):
        policy = catalog.find("map", "Navigation")

        assert score_policy(navigation_rule, policy, retention="90d").percentage == 100
        assert score_policy(navigation_rule, policy, retention="24h").percentage == 67

    def test_retention_from_provenance(self, catalog):
        rule = Rule(
            id="rule-1",
            service_type="map",
            purpose="Navigation",
            effect=PetEffect.ANONYMIZE,
            priority=90,
            provenance=RuleProvenance(mode=GenerationMode.PRIVACY_LEVEL, retention="session")
        )

        score = score_policy(rule, catalog.find("map", "Navigation"))

        assert [c.field for c in score.mismatches] == ["retention"]
        assert score.percentage == 50

    def test_undeclared_field_is_neutral(self, navigation_rule):
        policy = ServicePolicy(
            id="p1", purpose="Navigation", service="NaviApp",
            requested_data=list(NAVIGATION_DATA)
        )

        score = score_policy(navigation_rule, policy, retention="30d")

        assert score.percentage == 100
        assert [c.field for c in score.not_declared] == ["retention"]

    def test_rank_policies(self, navigation_rule, catalog):
        ranked = rank_policies(navigation_rule, catalog)

        assert [s.policy_id for s in ranked] == [
            "map-nav-policy", "map-poi-policy", "map-traffic-policy", "map-eta-policy"
        ]
        assert [s.percentage for s in ranked] == [100, 50, 50, 0]
        assert ranked[-1].matched is False

    @pytest.mark.parametrize("percentage,prefix", [
        (95, "Excellent"),
        (70, "Good"),
        (50, "Moderate"),
        (25, "Partial"),
        (10, "Limited"),
    ])
    def test_recommendation(self, percentage, prefix):
        assert recommendation_reason(percentage).startswith(prefix)
