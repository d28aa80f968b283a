"""
Unit tests for decision synthesis and telemetry transforms.
"""

import pytest

from service_privacy.app.decision.synthesizer import (
    DecisionStatus, get_applied_pets, build_filtered_data_view, synthesize
)
from service_privacy.app.decision.transforms import apply_effect
from service_privacy.app.policy.catalog import load_policy_catalog
from service_privacy.app.policy.matcher import PolicyEvaluator
from service_privacy.app.rules.engine import evaluate_stream
from service_privacy.app.rules.models import (
    Rule, PetEffect, Transform, ContextPredicate, ResolutionMethod
)
from service_privacy.app.rules.resolver import resolve_conflicts


def make_rule(rule_id, priority, effect, transforms=(), contexts=(), data_types=("location.latitude",)):
    return Rule(
        id=rule_id,
        service_type="map",
        purpose="Navigation",
        effect=effect,
        priority=priority,
        data_types=data_types,
        contexts=contexts,
        transforms=transforms,
        label=f"{effect} rule"
    )


@pytest.fixture(scope="module")
def evaluator():
    return PolicyEvaluator(load_policy_catalog())


def decide(evaluator, rules, context=None):
    stream = evaluate_stream(rules, context or {})
    policy = evaluator.match_policies(stream.active_rules, "map")
    return synthesize(stream, policy, resolve_conflicts(stream.active_rules))


class TestAppliedPets:
    """Test cases for get_applied_pets."""

    def test_primary_only(self):
        pets = get_applied_pets(make_rule("rule-1", 40, PetEffect.ALLOW))

        assert [(p.type, p.primary) for p in pets] == [("ALLOW", True)]

    def test_transform_matching_effect_skipped(self):
        rule = make_rule(
            "rule-1", 90, PetEffect.LOCAL_ONLY,
            transforms=(Transform("localOnly"), Transform("generalize", {"radius": "1km"}))
        )

        pets = get_applied_pets(rule)

        assert [(p.type, p.primary) for p in pets] == [("LOCAL_ONLY", True), ("GENERALIZE", False)]
        assert pets[1].params == {"radius": "1km"}


class TestFilteredData:
    """Test cases for build_filtered_data_view."""

    def test_generalized_view(self):
        rule = make_rule("rule-1", 60, PetEffect.GENERALIZE, data_types=("location.latitude", "custom.item"))

        items = build_filtered_data_view(rule)

        assert items[0].status == "generalized"
        assert items[0].original_example == "48.7758"
        assert items[0].filtered_example == "48.77**"
        assert items[1].original_example == "[custom.item]"

    def test_allow_view(self):
        items = build_filtered_data_view(make_rule("rule-1", 40, PetEffect.ALLOW))

        assert items[0].status == "available"
        assert items[0].filtered_example == items[0].original_example

    def test_delay_view(self):
        items = build_filtered_data_view(make_rule("rule-1", 40, PetEffect.DELAY))

        assert items[0].status == "pending_consent"
        assert items[0].filtered_example == "[AWAITING CONSENT]"


class TestSynthesize:
    """Test cases for synthesize."""

    def test_no_preference(self, evaluator):
        """Test a rule inactive at night leaves the default options."""
        rule = make_rule(
            "rule-1", 60, PetEffect.GENERALIZE,
            contexts=(ContextPredicate("timeOfDay", denied=("Night",)),)
        )

        decision = decide(evaluator, [rule], {"timeOfDay": "Night"})
        outcome = decision.to_dict()["final_outcome"]

        assert decision.status == DecisionStatus.NO_PREFERENCE
        assert decision.requires_user_input is True
        assert outcome["message"] == "No user preference found for this request"
        assert [o["id"] for o in outcome["options"]] == ["default-allow", "default-deny", "minimal-pet"]
        assert decision.applied_pets == ()

    def test_conflict(self, evaluator):
        decision = decide(evaluator, [
            make_rule("rule-a", 70, PetEffect.MASK),
            make_rule("rule-b", 70, PetEffect.MASK),
        ])

        assert decision.status == DecisionStatus.CONFLICT
        assert decision.effect is None
        assert [r["id"] for r in decision.to_dict()["final_outcome"]["conflicting_rules"]] == ["rule-a", "rule-b"]

    def test_resolved(self, evaluator):
        rules = [
            make_rule("rule-a", 90, PetEffect.BLOCK),
            make_rule("rule-b", 40, PetEffect.ALLOW),
            make_rule("rule-c", 60, PetEffect.ALLOW, contexts=(ContextPredicate("roadType", allowed=("Highway",)),)),
        ]

        decision = decide(evaluator, rules, {"roadType": "Urban"})
        outcome = decision.to_dict()["final_outcome"]

        assert decision.status == DecisionStatus.RESOLVED
        assert decision.requires_user_input is False
        assert outcome["effect"] == "BLOCK"
        assert outcome["rule_id"] == "rule-a"
        assert outcome["resolution_method"] == ResolutionMethod.PRIORITY.value
        assert decision.message == "Data access blocked"
        assert decision.explanation[0].startswith("1 rule(s) were deactivated")
        assert 'highest priority (90)' in decision.explanation[1]
        assert "will block the requested data" in decision.explanation[2]
        assert decision.explanation[3] == "1 service request(s) will be blocked based on your preferences."


class TestApplyEffect:
    """Test cases for telemetry record transforms."""

    @pytest.fixture
    def record(self):
        return {
            "timestamp": "2024-03-01T12:00:00+00:00",
            "vehicle": {"vin": "WBA3B5C57EP123456", "make": "BMW", "model": "330i"},
            "location": {"latitude": 48.775812, "longitude": 9.182934, "heading": 97},
            "speed": {"value": 67.4, "unit": "km/h"},
            "acceleration": {"x": 0.2},
            "engine": {"rpm": 2100, "temperature": 92, "fuelLevel": 55},
            "sensors": {"abs": False},
        }

    def test_allow_unchanged(self, record):
        result = apply_effect(record, PetEffect.ALLOW)

        assert result["vehicle"] == record["vehicle"]
        assert result["_transformation"] == "ALLOWED (Full Access)"

    def test_input_not_modified(self, record):
        apply_effect(record, PetEffect.ANONYMIZE)

        assert record["vehicle"]["vin"] == "WBA3B5C57EP123456"
        assert "_transformation" not in record

    def test_block(self, record):
        result = apply_effect(record, "BLOCK")

        assert result == {
            "timestamp": record["timestamp"],
            "status": "BLOCKED",
            "message": "Data access denied by privacy preference",
        }

    def test_anonymize(self, record):
        result = apply_effect(record, PetEffect.ANONYMIZE)

        assert result["vehicle"]["vin"].startswith("[ANON_")
        assert result["vehicle"]["vin"] == apply_effect(record, PetEffect.ANONYMIZE)["vehicle"]["vin"]
        assert result["vehicle"]["make"] == "[ANONYMIZED]"
        assert result["location"]["latitude"] == 48.78

    def test_generalize(self, record):
        result = apply_effect(record, PetEffect.GENERALIZE)

        assert result["location"]["longitude"] == 9.18
        assert result["speed"]["value"] == 70
        assert result["location"]["heading"] == 90

    def test_reduce_precision(self, record):
        result = apply_effect(record, PetEffect.REDUCE_PRECISION)

        assert result["location"]["latitude"] == 48.8
        assert "acceleration" not in result
        assert "sensors" not in result

    def test_mask(self, record):
        result = apply_effect(record, PetEffect.MASK)

        assert result["vehicle"]["vin"] == "WBA3B*****P123456"

    def test_aggregate(self, record):
        result = apply_effect(record, PetEffect.AGGREGATE)

        assert result["status"] == "AGGREGATED"
        assert result["aggregatedData"]["avgSpeed"].startswith("70 km/h")
        assert result["aggregatedData"]["region"] == "48.8, 9.2"

    def test_local_only(self, record):
        result = apply_effect(record, PetEffect.LOCAL_ONLY)

        assert result["localSummary"] == {"speedCategory": "Medium", "engineStatus": "Normal"}
        assert "location" not in result

    def test_delay(self, record):
        result = apply_effect(record, PetEffect.DELAY)

        assert result["_originalTimestamp"] == record["timestamp"]
        assert result["timestamp"] == "2024-03-01T11:45:00+00:00"

    @pytest.mark.parametrize("effect", [PetEffect.LOCAL_ONLY, PetEffect.AGGREGATE, PetEffect.GENERALIZE])
    def test_malformed_sections_left_alone(self, effect):
        record = {"timestamp": "2024-03-01T12:00:00+00:00", "speed": 80, "location": "Stuttgart",
                  "engine": {"temperature": "hot"}}

        result = apply_effect(record, effect)

        assert result["timestamp"] == record["timestamp"]
        if effect == PetEffect.GENERALIZE:
            assert result["speed"] == 80
            assert result["location"] == "Stuttgart"

    def test_local_only_ignores_non_numeric_readings(self):
        result = apply_effect({"speed": 80, "engine": {"temperature": "hot"}}, PetEffect.LOCAL_ONLY)

        assert result["localSummary"] == {"speedCategory": None}
