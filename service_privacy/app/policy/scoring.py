"""
Policy scoring utilities.

Compares a single rule against declared service policies field by field
and produces a percentage score for comparison tables. This is separate
from conflict resolution and never influences the final decision.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from ..rules.models import Rule
    from .catalog import PolicyCatalog, ServicePolicy


# Best to worst privacy
RETENTION_ORDER = [
    "none",
    "session",
    "on-device",
    "24h",
    "7d",
    "30d",
    "90d",
    "indefinite",
]

# Retention vocabulary used by declared policies, mapped onto RETENTION_ORDER
RETENTION_ALIASES = {
    "no-retention": "none",
    "stated-purpose": "30d",
    "legal-requirement": "90d",
    "business-practices": "90d",
    "indefinitely": "indefinite",
}

MATCH_THRESHOLD = 25
DATA_COVERAGE_THRESHOLD = 50


@dataclass(frozen=True)
class DataMatch:
    """Coverage of requested data items by a preference's data types."""
    requested: List[str]
    allowed: List[str]
    denied: List[str]

    @property
    def coverage(self) -> float:
        if not self.requested:
            return 1.0
        return len(self.allowed) / len(self.requested)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requested": list(self.requested),
            "allowed": list(self.allowed),
            "denied": list(self.denied),
            "coverage": self.coverage,
        }


def _wildcard_covers(pattern: str, item: str) -> bool:
    if pattern == item:
        return True
    if pattern.endswith(".*"):
        return item.startswith(pattern[:-2])
    return False


def analyze_data_match(preference_data: Sequence[str], requested_data: Sequence[str]) -> DataMatch:
    """
    Split requested data items into those covered by the preference and
    those that are not. "location.*" covers every "location." item.
    """
    requested: List[str] = []
    for item in requested_data:
        if item not in requested:
            requested.append(item)

    allowed = [item for item in requested if any(_wildcard_covers(p, item) for p in preference_data)]
    denied = [item for item in requested if item not in allowed]
    return DataMatch(requested=requested, allowed=allowed, denied=denied)


def normalize_retention(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip().lower()
    return RETENTION_ALIASES.get(value, value)


def retention_comparison(user_retention: Optional[str], policy_retention: Optional[str]) -> str:
    """Return "better", "equal", "worse" or "unknown" for the policy's retention."""
    user = normalize_retention(user_retention)
    policy = normalize_retention(policy_retention)
    if user not in RETENTION_ORDER or policy not in RETENTION_ORDER:
        return "unknown"

    user_index = RETENTION_ORDER.index(user)
    policy_index = RETENTION_ORDER.index(policy)
    if policy_index < user_index:
        return "better"
    if policy_index == user_index:
        return "equal"
    return "worse"


def compare_retention(user_retention: Optional[str], policy_retention: Optional[str]) -> bool:
    """True when the policy keeps data no longer than the user accepts."""
    comparison = retention_comparison(user_retention, policy_retention)
    if comparison == "unknown":
        return normalize_retention(user_retention) == normalize_retention(policy_retention)
    return comparison in ("better", "equal")


@dataclass(frozen=True)
class FieldComparison:
    field: str
    user_value: Any
    service_value: Any
    matches: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "user_value": self.user_value,
            "service_value": self.service_value,
            "matches": self.matches,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class PolicyScore:
    """Field-by-field comparison of one rule with one policy."""
    policy_id: str
    service: str
    purpose: str
    matches: List[FieldComparison] = field(default_factory=list)
    mismatches: List[FieldComparison] = field(default_factory=list)
    not_declared: List[FieldComparison] = field(default_factory=list)

    @property
    def max_score(self) -> int:
        return len(self.matches) + len(self.mismatches)

    @property
    def percentage(self) -> int:
        if not self.max_score:
            return 0
        return int(round(len(self.matches) / self.max_score * 100))

    @property
    def matched(self) -> bool:
        return self.percentage >= MATCH_THRESHOLD

    @property
    def recommendation(self) -> str:
        return recommendation_reason(self.percentage)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy_id": self.policy_id,
            "service": self.service,
            "purpose": self.purpose,
            "percentage": self.percentage,
            "matched": self.matched,
            "matches": [c.to_dict() for c in self.matches],
            "mismatches": [c.to_dict() for c in self.mismatches],
            "not_declared": [c.to_dict() for c in self.not_declared],
            "recommendation": self.recommendation,
        }


def recommendation_reason(percentage: int) -> str:
    if percentage >= 90:
        return f"Excellent match with {percentage}% compatibility. This service aligns very well with your privacy preferences."
    if percentage >= 70:
        return f"Good match with {percentage}% compatibility. Most of your preferences are supported."
    if percentage >= 50:
        return f"Moderate match with {percentage}% compatibility. Some compromises may be needed."
    if percentage >= MATCH_THRESHOLD:
        return f"Partial match with {percentage}% compatibility. Several preferences differ from service policy."
    return f"Limited match with {percentage}% compatibility. Consider adjusting your preferences or choosing a different service."


def _compare_purpose(rule_purpose: str, policy_purpose: str) -> FieldComparison:
    user = rule_purpose.strip().lower()
    service = policy_purpose.strip().lower()
    matches = bool(user) and (user == service or user in service or service in user)
    return FieldComparison(
        field="purpose",
        user_value=rule_purpose,
        service_value=policy_purpose,
        matches=matches,
        reason="Values match" if matches else "Values differ"
    )


def _compare_data_types(data_types: Sequence[str], requested: Sequence[str]) -> FieldComparison:
    matched = [
        d for d in data_types
        if any(_wildcard_covers(d, r) or _wildcard_covers(r, d) for r in requested)
    ]
    coverage = len(matched) / len(data_types) * 100 if data_types else 100.0
    return FieldComparison(
        field="data_types",
        user_value=list(data_types),
        service_value=list(requested),
        matches=coverage >= DATA_COVERAGE_THRESHOLD,
        reason=f"{coverage:.0f}% data type coverage"
    )


def score_policy(rule: "Rule", policy: "ServicePolicy", retention: Optional[str] = None) -> PolicyScore:
    """
    Score how well a policy honours a rule.

    Fields the rule does not set are skipped; fields the policy does not
    declare are recorded but do not count against the score.
    """
    user_retention = retention or rule.provenance.retention
    score = PolicyScore(policy_id=policy.id, service=policy.service, purpose=policy.purpose)

    comparisons: List[FieldComparison] = []
    if rule.purpose:
        comparisons.append(_compare_purpose(rule.purpose, policy.purpose))
    if rule.data_types:
        comparisons.append(_compare_data_types(rule.data_types, policy.requested_data))

    if user_retention:
        if policy.retention is None:
            score.not_declared.append(FieldComparison(
                field="retention",
                user_value=user_retention,
                service_value=None,
                matches=False,
                reason="Not specified by service"
            ))
        else:
            acceptable = compare_retention(user_retention, policy.retention)
            comparisons.append(FieldComparison(
                field="retention",
                user_value=user_retention,
                service_value=policy.retention,
                matches=acceptable,
                reason=(
                    f"Retention acceptable ({retention_comparison(user_retention, policy.retention)})"
                    if acceptable else "Retention too long"
                )
            ))

    for comparison in comparisons:
        if comparison.matches:
            score.matches.append(comparison)
        else:
            score.mismatches.append(comparison)
    return score


def rank_policies(rule: "Rule", catalog: "PolicyCatalog", service_type: Optional[str] = None,
                  retention: Optional[str] = None) -> List[PolicyScore]:
    """Score every policy of a service type, best match first."""
    policies = catalog.policies_for(service_type or rule.service_type)
    scores = [score_policy(rule, policy, retention) for policy in policies]
    return sorted(scores, key=lambda s: (-s.percentage, s.policy_id))
