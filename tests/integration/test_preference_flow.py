"""
End-to-end integration tests for the preference flow: questionnaire answers
to stored rules to per-context decisions and transformed telemetry.
"""

import threading

import pytest

from shared.config import get_config
from shared.errors import ValidationError
from service_privacy.app.decision.synthesizer import DecisionStatus
from service_privacy.app.generator.xpref import parse_ruleset_xml
from service_privacy.app.rules.models import PetEffect
from service_privacy.app.service import create_service


class TestPreferenceFlow:
    """End-to-end tests for a driver's preferences across a trip."""

    @pytest.fixture
    def service(self):
        """Create the service from default settings."""
        return create_service(get_config("privacy-integration", log_level="warning"))

    @pytest.fixture
    def telemetry(self):
        return {
            "timestamp": "2024-03-01T22:30:00+00:00",
            "vehicle": {"vin": "WBA3B5C57EP123456", "make": "BMW", "model": "330i"},
            "location": {"latitude": 48.775812, "longitude": 9.182934, "heading": 181},
            "speed": {"value": 112.0, "unit": "km/h"},
            "engine": {"rpm": 2800, "temperature": 104},
        }

    def test_trip(self, service, telemetry):
        """Test decisions change as the context changes during a trip."""
        ruleset = service.save_preferences(
            "driver-1", "map",
            {"map-navigation": "c", "map-traffic": "b", "map-poi": "a"}
        )
        assert len(parse_ruleset_xml(ruleset.ruleset_xml)) == 3

        # Daytime: navigation GENERALIZE (80) outranks traffic GENERALIZE (60)
        day = service.evaluate("driver-1", "map", {"timeOfDay": "Afternoon", "roadType": "Urban"})
        assert day.decision.status == DecisionStatus.RESOLVED
        assert day.decision.effect == PetEffect.GENERALIZE
        assert day.decision.priority == 80

        # Night: navigation rule drops out, traffic takes over
        night = service.evaluate("driver-1", "map", {"timeOfDay": "Night", "roadType": "Highway"})
        assert night.decision.priority == 60
        assert len(night.stream.inactive) == 1

        streamed = service.transform_record("driver-1", "map", telemetry, {"timeOfDay": "Night"})
        assert streamed["effect"] == "GENERALIZE"
        assert streamed["transformed"]["location"]["latitude"] == 48.78
        assert streamed["transformed"]["speed"]["value"] == 110

        assert [e.result["status"] for e in service.get_history("driver-1")] == ["RESOLVED", "RESOLVED"]

    def test_single_night_rule_gives_no_preference(self, service):
        service.save_preferences("driver-2", "map", {"map-navigation": "c"})

        result = service.evaluate("driver-2", "map", {"timeOfDay": "Night"}).to_dict()

        outcome = result["decision"]["final_outcome"]
        assert outcome["status"] == "NO_PREFERENCE"
        assert [o["effect"] for o in outcome["options"]] == ["ALLOW", "BLOCK", "GENERALIZE"]
        assert result["phases"]["stream"]["summary"] == {"total": 1, "active": 0, "inactive": 1}

    def test_emergency_override(self, service):
        """Test an emergency-only rule wins only during an emergency."""
        service.save_preferences("driver-3", "emergency", {"emerg-ecall": "a", "emerg-breakdown": "d"})
        rules = service.get_rules("driver-3", "emergency")
        assert len(rules) == 2

        normal = service.evaluate("driver-3", "emergency", {"emergencyStatus": False})
        emergency = service.evaluate("driver-3", "emergency", {"emergencyStatus": True})

        assert normal.decision.effect == PetEffect.BLOCK
        assert emergency.decision.effect == PetEffect.ALLOW
        assert emergency.decision.priority == 100

    def test_invalid_answers_store_nothing(self, service):
        with pytest.raises(ValidationError):
            service.save_preferences("driver-4", "map", {"map-navigation": "z"})

        assert service.get_rules("driver-4") == []

    def test_concurrent_saves(self, service):
        """Test concurrent saves for one user leave one complete rule set."""
        answer_sets = [
            {"map-navigation": "a"},
            {"map-navigation": "c", "map-traffic": "d"},
            {"map-navigation": "d", "map-traffic": "a", "map-eta": "b"},
        ]

        def save(answers):
            for _ in range(20):
                service.save_preferences("driver-5", "map", answers)

        threads = [threading.Thread(target=save, args=(answers,)) for answers in answer_sets]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stored = service.rule_store.get("driver-5", "map")
        assert len(stored.rules) == len(stored.preferences["answers"])
        assert {r.provenance.source_id for r in stored.rules} == set(stored.preferences["answers"])
