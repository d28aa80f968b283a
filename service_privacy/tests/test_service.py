"""
Unit tests for the privacy preference service facade.
"""

from pathlib import Path

import pytest

from shared.config import ServiceConfig
from shared.errors import ValidationError
from shared.logging import request_id_var, service_type_var, user_id_var
from service_privacy.app.decision.synthesizer import DecisionStatus
from service_privacy.app.rules.models import PetEffect, ResolutionMethod
from service_privacy.app.service import PrivacyPreferenceService, create_service


DOMAIN_FILE = Path(__file__).resolve().parent.parent / "app" / "data" / "domain_vehicle.yaml"

# Both options are ALLOW at priority 60, active together on a highway in the morning
CONFLICTING_ANSWERS = {"map-navigation": "b", "map-eta": "d"}
CONFLICT_CONTEXT = {"roadType": "Highway", "timeOfDay": "Morning"}


def make_config(**overrides):
    return ServiceConfig("privacy-test", **overrides)


class TestPrivacyPreferenceService:
    """Test cases for PrivacyPreferenceService."""

    @pytest.fixture
    def service(self):
        return PrivacyPreferenceService(make_config())

    def test_save_and_get_rules(self, service):
        ruleset = service.save_preferences("user-1", "map", {"map-navigation": "c", "map-traffic": "d"})
        service.save_preferences("user-1", "safety", {"safety-speed": "a"})

        assert [r.id for r in service.get_rules("user-1", "map")] == [r.id for r in ruleset.rules]
        assert len(service.get_rules("user-1")) == 3
        assert service.get_rules("user-2", "map") == []
        assert service.rule_store.get("user-1", "map").preferences["answers"] == {"map-navigation": "c", "map-traffic": "d"}

    def test_failed_save_keeps_previous_rules(self, service):
        service.save_preferences("user-1", "map", {"map-navigation": "c"})
        before = service.get_rules("user-1", "map")

        with pytest.raises(ValidationError):
            service.save_preferences("user-1", "map", {"map-navigation": "a", "map-traffic": "z"})

        assert service.get_rules("user-1", "map") == before

    def test_save_requires_user(self, service):
        with pytest.raises(ValidationError):
            service.save_preferences("", "map", {"map-navigation": "a"})

    def test_evaluate_no_preference_at_night(self, service):
        service.save_preferences("user-1", "map", {"map-navigation": "c"})

        result = service.evaluate("user-1", "map", {"timeOfDay": "Night"})

        assert result.decision.status == DecisionStatus.NO_PREFERENCE
        assert len(result.decision.options) == 3

    def test_evaluate_resolved(self, service):
        service.save_preferences("user-1", "map", {"map-navigation": "c"})

        result = service.evaluate("user-1", "map", {"timeOfDay": "Morning"})

        assert result.decision.status == DecisionStatus.RESOLVED
        assert result.decision.effect == PetEffect.GENERALIZE
        assert [p.type for p in result.decision.applied_pets] == ["GENERALIZE"]

    def test_evaluate_without_rules(self, service):
        result = service.evaluate("user-unknown", "map")

        assert result.decision.status == DecisionStatus.NO_PREFERENCE
        assert result.stream.total == 0

    def test_conflict_and_resolution(self, service):
        service.save_preferences("user-1", "map", CONFLICTING_ANSWERS)

        conflict = service.evaluate("user-1", "map", CONFLICT_CONTEXT)
        resolved = service.resolve_conflict("user-1", "map", CONFLICT_CONTEXT, "deny")

        assert conflict.decision.status == DecisionStatus.CONFLICT
        assert len(conflict.decision.conflicting_rules) == 2
        assert resolved.decision.status == DecisionStatus.RESOLVED
        assert resolved.decision.effect == PetEffect.BLOCK
        assert resolved.decision.resolution_method == ResolutionMethod.USER_CHOICE
        # the transient choice rule is never stored
        assert len(service.get_rules("user-1", "map")) == 2

    def test_resolve_without_conflict(self, service):
        service.save_preferences("user-1", "map", {"map-navigation": "c"})

        with pytest.raises(ValidationError):
            service.resolve_conflict("user-1", "map", {"timeOfDay": "Morning"}, "allow")

    def test_default_tie_break(self):
        service = PrivacyPreferenceService(make_config(default_tie_break="minimal"))
        service.save_preferences("user-1", "map", CONFLICTING_ANSWERS)

        result = service.evaluate("user-1", "map", CONFLICT_CONTEXT)

        assert result.decision.effect == PetEffect.GENERALIZE
        assert result.conflict.method == ResolutionMethod.USER_CHOICE

    def test_invalid_default_tie_break(self):
        with pytest.raises(ValidationError):
            PrivacyPreferenceService(make_config(default_tie_break="coin-flip"))

    def test_history(self):
        service = PrivacyPreferenceService(make_config(history_limit=2))
        service.save_preferences("user-1", "map", {"map-navigation": "c"})
        for time_of_day in ("Morning", "Evening", "Night"):
            service.evaluate("user-1", "map", {"timeOfDay": time_of_day})

        history = service.get_history("user-1")

        assert [e.context["timeOfDay"] for e in history] == ["Evening", "Night"]
        assert history[-1].result["status"] == "NO_PREFERENCE"
        assert len(service.get_history("user-1", limit=10)) == 3

    def test_quick_evaluate_from_dict(self, service):
        rule = {
            "id": "rule-q",
            "service_type": "map",
            "purpose": "Navigation",
            "effect": "ALLOW",
            "priority": 60,
            "contexts": [{"type": "roadType", "allowed": ["Highway"]}],
        }

        result = service.quick_evaluate(rule, "map", {"roadType": "Urban"})

        assert result.active is False

    def test_transform_record(self, service):
        service.save_preferences("user-1", "map", {"map-traffic": "d"})
        record = {"timestamp": "2024-03-01T12:00:00+00:00", "speed": {"value": 50}}

        result = service.transform_record("user-1", "map", record, context={})

        assert result["effect"] == "BLOCK"
        assert result["transformed"]["status"] == "BLOCKED"

    def test_transform_record_without_preference(self, service):
        record = {"timestamp": "2024-03-01T12:00:00+00:00", "vehicle": {"vin": "WBA3B5C57EP123456"}}

        result = service.transform_record("user-1", "map", record)

        assert result["status"] == "NO_PREFERENCE"
        assert result["effect"] == "ALLOW"
        assert result["transformed"]["vehicle"]["vin"] == "WBA3B5C57EP123456"

    def test_transform_record_with_conflict(self, service):
        service.save_preferences("user-1", "map", CONFLICTING_ANSWERS)

        result = service.transform_record("user-1", "map", {"context": CONFLICT_CONTEXT})

        assert result["status"] == "CONFLICT"
        assert result["effect"] == "ALLOW"

    def test_transform_record_with_scalar_speed(self, service):
        service.save_preferences("user-1", "map", {"map-traffic": "d"})

        result = service.transform_record("user-1", "map", {"speed": 80, "engine": {"temperature": "hot"}}, {})

        assert result["effect"] == "BLOCK"
        assert result["transformed"]["status"] == "BLOCKED"

    def test_history_limit_zero(self, service):
        service.save_preferences("user-1", "map", {"map-navigation": "c"})
        service.evaluate("user-1", "map", {"timeOfDay": "Morning"})

        assert service.get_history("user-1", limit=0) == []
        assert len(service.get_history("user-1")) == 1

    def test_log_context_cleared_after_evaluate(self, service):
        service.save_preferences("user-1", "map", {"map-navigation": "c"})

        service.evaluate("user-1", "map", {"timeOfDay": "Morning"})

        assert user_id_var.get() is None
        assert service_type_var.get() is None
        assert request_id_var.get() is None

    def test_log_context_cleared_after_failed_resolution(self, service):
        service.save_preferences("user-1", "map", {"map-navigation": "c"})

        with pytest.raises(ValidationError):
            service.resolve_conflict("user-1", "map", {}, "allow")

        assert user_id_var.get() is None

    def test_quick_evaluate_rejects_invalid_created_at(self, service):
        rule = {"id": "rule-q", "effect": "BLOCK", "priority": 50, "createdAt": "yesterday"}

        with pytest.raises(ValidationError):
            service.quick_evaluate(rule, "map", {})

    def test_compare_policies(self, service):
        rule = service.save_preferences("user-1", "map", {"map-navigation": "c"}).rules[0]

        scores = service.compare_policies(rule)

        assert scores[0].policy_id == "map-nav-policy"
        assert scores[0].percentage == 100

    def test_domain_preferences(self, service):
        service.load_domain_config(DOMAIN_FILE)
        service.save_domain_preferences("user-1", "vehicle", {"near_home": "block"}, purpose_id="navigation")

        near = service.evaluate("user-1", "vehicle", {"homeDistance": "Near"})
        far = service.evaluate("user-1", "vehicle", {"homeDistance": "Far"})

        assert near.decision.effect == PetEffect.BLOCK
        assert far.decision.status == DecisionStatus.NO_PREFERENCE
        assert service.domain_metadata()["domain"] == "vehicle"

    def test_privacy_level_preferences(self, service):
        service.load_domain_config(DOMAIN_FILE)
        service.save_privacy_level("user-1", "vehicle", ["location.latitude"], "high", retention="30d")

        result = service.evaluate("user-1", "vehicle", {})

        assert result.decision.effect == PetEffect.ANONYMIZE
        assert service.rule_store.get("user-1", "vehicle").preferences["privacy_level"] == "high"

    def test_domain_metadata_requires_config(self, service):
        with pytest.raises(ValidationError):
            service.domain_metadata()

    def test_delete_preferences(self, service):
        service.save_preferences("user-1", "map", {"map-navigation": "c"})

        assert service.delete_preferences("user-1", "map") is True
        assert service.get_rules("user-1", "map") == []


class TestCreateService:
    """Test cases for create_service."""

    def test_create_with_domain_file(self):
        service = create_service(make_config(domain_config_file=str(DOMAIN_FILE), log_level="warning"))

        assert service.domain_config.domain == "vehicle"
        assert "map" in service.questionnaire.services
