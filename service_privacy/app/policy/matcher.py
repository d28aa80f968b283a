"""
Policy matching: annotates active rules with declared service policies.

The result is advisory. It never overrides the conflict resolver.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional, Sequence

from shared.logging import get_logger
from ..rules.models import Rule, PetEffect
from .catalog import PolicyCatalog, ServicePolicy
from .scoring import DataMatch, analyze_data_match


class Compatibility(str, Enum):
    """How a rule's effect relates to a declared policy."""
    NO_POLICY = "NO_POLICY"
    BLOCKED = "BLOCKED"
    LOCAL_ONLY = "LOCAL_ONLY"
    TRANSFORMED = "TRANSFORMED"
    REDUCED = "REDUCED"
    CONSENT_REQUIRED = "CONSENT_REQUIRED"
    ALLOWED = "ALLOWED"


_COMPATIBILITY_BY_EFFECT = {
    PetEffect.BLOCK: Compatibility.BLOCKED,
    PetEffect.LOCAL_ONLY: Compatibility.LOCAL_ONLY,
    PetEffect.ANONYMIZE: Compatibility.TRANSFORMED,
    PetEffect.AGGREGATE: Compatibility.TRANSFORMED,
    PetEffect.GENERALIZE: Compatibility.REDUCED,
    PetEffect.REDUCE_PRECISION: Compatibility.REDUCED,
    PetEffect.DELAY: Compatibility.CONSENT_REQUIRED,
}

COMPATIBILITY_MESSAGES = {
    Compatibility.NO_POLICY: "No matching service policy found",
    Compatibility.BLOCKED: "User preference blocks this data access",
    Compatibility.LOCAL_ONLY: "Data must be processed locally",
    Compatibility.TRANSFORMED: "Data will be anonymized/aggregated before sharing",
    Compatibility.REDUCED: "Data precision will be reduced",
    Compatibility.CONSENT_REQUIRED: "User consent required for each access",
    Compatibility.ALLOWED: "Data access permitted",
}


def classify_compatibility(effect: PetEffect) -> Compatibility:
    """Map a rule effect onto a compatibility class."""
    return _COMPATIBILITY_BY_EFFECT.get(effect, Compatibility.ALLOWED)


@dataclass(frozen=True)
class PolicyMatch:
    """One active rule annotated with its declared policy."""
    rule: Rule
    compatibility: Compatibility
    policy: Optional[ServicePolicy] = None
    data_match: Optional[DataMatch] = None

    @property
    def matched(self) -> bool:
        return self.policy is not None

    @property
    def message(self) -> str:
        return COMPATIBILITY_MESSAGES[self.compatibility]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "rule_id": self.rule.id,
            "purpose": self.rule.purpose,
            "effect": self.rule.effect.value,
            "matched": self.matched,
            "compatibility": self.compatibility.value,
            "message": self.message,
        }
        if self.policy is not None:
            data["policy_id"] = self.policy.id
            data["policy_service"] = self.policy.service
            data["analysis"] = {
                "data_match": self.data_match.to_dict() if self.data_match else None,
                "pet_level": self.rule.effect.level,
                "context_restrictions": [c.to_dict() for c in self.rule.contexts],
                "transforms_applied": [t.to_dict() for t in self.rule.transforms],
            }
        return data


@dataclass(frozen=True)
class PolicyResult:
    """Policy annotations for all active rules of one evaluation."""
    service_type: str
    matches: List[PolicyMatch] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.matches)

    @property
    def matched(self) -> int:
        return sum(1 for m in self.matches if m.matched)

    @property
    def blocked(self) -> int:
        return sum(1 for m in self.matches if m.compatibility == Compatibility.BLOCKED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": "static",
            "service_type": self.service_type,
            "policy_matches": [m.to_dict() for m in self.matches],
            "summary": {
                "total": self.total,
                "matched": self.matched,
                "blocked": self.blocked,
            },
        }


class PolicyEvaluator:
    """Matches active rules against the declared policy catalog."""

    def __init__(self, catalog: PolicyCatalog):
        self.logger = get_logger("privacy.policy_evaluator")
        self.catalog = catalog

    def match_rule(self, rule: Rule, service_type: str) -> PolicyMatch:
        policy = self.catalog.find(service_type, rule.purpose)
        if policy is None:
            return PolicyMatch(rule=rule, compatibility=Compatibility.NO_POLICY)

        return PolicyMatch(
            rule=rule,
            compatibility=classify_compatibility(rule.effect),
            policy=policy,
            data_match=analyze_data_match(rule.data_types, policy.requested_data)
        )

    def match_policies(self, active_rules: Sequence[Rule], service_type: str) -> PolicyResult:
        """Annotate every active rule with its policy compatibility."""
        result = PolicyResult(
            service_type=service_type,
            matches=[self.match_rule(rule, service_type) for rule in active_rules]
        )

        self.logger.debug(
            "Policy matching complete",
            service_type=service_type,
            total=result.total,
            matched=result.matched,
            blocked=result.blocked
        )
        return result
