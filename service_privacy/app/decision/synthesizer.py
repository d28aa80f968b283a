"""
Decision synthesis: combines the stream, policy and conflict phases into
one final decision.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional, Tuple

from shared.logging import get_logger
from ..rules.models import (
    Rule, PetEffect, StreamResult, ConflictResult, ResolutionMethod, EFFECT_MESSAGES
)
from ..policy.matcher import PolicyResult


logger = get_logger("privacy.decision")


class DecisionStatus(str, Enum):
    NO_PREFERENCE = "NO_PREFERENCE"
    CONFLICT = "CONFLICT"
    RESOLVED = "RESOLVED"


@dataclass(frozen=True)
class DecisionOption:
    """Default option offered when no preference applies."""
    id: str
    label: str
    effect: PetEffect
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "effect": self.effect.value,
            "description": self.description,
        }


DEFAULT_OPTIONS: Tuple[DecisionOption, ...] = (
    DecisionOption("default-allow", "Default Allow", PetEffect.ALLOW,
                   "Allow data access with no restrictions"),
    DecisionOption("default-deny", "Default Deny", PetEffect.BLOCK,
                   "Block all data access"),
    DecisionOption("minimal-pet", "Apply Minimal PET", PetEffect.GENERALIZE,
                   "Allow with basic privacy protection (generalization)"),
)


@dataclass(frozen=True)
class AppliedPet:
    type: str
    primary: bool
    description: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type, "primary": self.primary, "description": self.description}
        if self.params:
            data["params"] = dict(self.params)
        return data


@dataclass(frozen=True)
class FilteredDataItem:
    """Illustration of how one data type looks after the effect."""
    type: str
    status: str
    original_example: str
    filtered_example: str
    transformation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "status": self.status,
            "transformation": self.transformation,
            "original_example": self.original_example,
            "filtered_example": self.filtered_example,
        }


@dataclass(frozen=True)
class FinalDecision:
    status: DecisionStatus
    message: str
    effect: Optional[PetEffect] = None
    priority: Optional[int] = None
    rule_id: Optional[str] = None
    resolution_method: Optional[ResolutionMethod] = None
    options: Tuple[DecisionOption, ...] = ()
    conflicting_rules: Tuple[Dict[str, Any], ...] = ()
    applied_pets: Tuple[AppliedPet, ...] = ()
    filtered_data: Tuple[FilteredDataItem, ...] = ()
    explanation: Tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def requires_user_input(self) -> bool:
        return self.status != DecisionStatus.RESOLVED

    def to_dict(self) -> Dict[str, Any]:
        outcome: Dict[str, Any] = {
            "status": self.status.value,
            "message": self.message,
            "requires_user_input": self.requires_user_input,
        }
        if self.status == DecisionStatus.NO_PREFERENCE:
            outcome["options"] = [o.to_dict() for o in self.options]
        elif self.status == DecisionStatus.CONFLICT:
            outcome["conflicting_rules"] = [dict(r) for r in self.conflicting_rules]
        else:
            outcome.update({
                "effect": self.effect.value,
                "priority": self.priority,
                "rule_id": self.rule_id,
                "resolution_method": self.resolution_method.value,
            })
        return {
            "timestamp": self.timestamp.isoformat(),
            "final_outcome": outcome,
            "applied_pets": [p.to_dict() for p in self.applied_pets],
            "filtered_data": [d.to_dict() for d in self.filtered_data],
            "explanation": list(self.explanation),
        }


def effect_message(effect: PetEffect) -> str:
    return EFFECT_MESSAGES.get(effect, f"Effect: {effect.value}")


def get_applied_pets(rule: Rule) -> List[AppliedPet]:
    """The primary effect plus any transform the effect does not already imply."""
    pets = [AppliedPet(type=rule.effect.value, primary=True, description=effect_message(rule.effect))]
    effect_key = rule.effect.value.replace("_", "").lower()
    for transform in rule.transforms:
        if transform.normalized_type == effect_key:
            continue
        pets.append(AppliedPet(
            type=transform.type.upper(),
            primary=False,
            description=f"Transform: {transform.type}",
            params=dict(transform.params)
        ))
    return pets


EXAMPLE_VALUES = {
    "location.latitude": "48.7758",
    "location.longitude": "9.1829",
    "location.speed": "65 km/h",
    "identity.vin": "WBA3B5C57EP123456",
    "behavior.acceleration": "2.5 m/s²",
    "health.batterylevel": "78%",
}


def _anonymized(data_type: str) -> str:
    if "identity" in data_type:
        return "[ANONYMIZED_ID_****]"
    if "location" in data_type:
        return "[LOCATION_ANONYMIZED]"
    return "[ANONYMIZED]"


def _generalized(data_type: str) -> str:
    if "latitude" in data_type:
        return "48.77**"
    if "longitude" in data_type:
        return "9.18**"
    if "speed" in data_type:
        return "60-70 km/h"
    return "[GENERALIZED]"


def _aggregated(data_type: str) -> str:
    if "speed" in data_type:
        return "Avg: 62 km/h (5 min)"
    return "[AGGREGATED]"


def _reduced(data_type: str) -> str:
    if "latitude" in data_type:
        return "48.8"
    if "longitude" in data_type:
        return "9.2"
    return "[REDUCED]"


def _masked(data_type: str) -> str:
    if "vin" in data_type:
        return "WBA****EP123456"
    return "[****]"


# effect -> (status, transformation, example renderer)
_DATA_VIEW = {
    PetEffect.BLOCK: ("blocked", None, lambda d: "[BLOCKED]"),
    PetEffect.ANONYMIZE: ("anonymized", "anonymize", _anonymized),
    PetEffect.GENERALIZE: ("generalized", "generalize", _generalized),
    PetEffect.AGGREGATE: ("aggregated", "aggregate", _aggregated),
    PetEffect.REDUCE_PRECISION: ("reduced", "reduce_precision", _reduced),
    PetEffect.MASK: ("masked", "mask", _masked),
    PetEffect.LOCAL_ONLY: ("local_only", None, lambda d: "[PROCESSED LOCALLY]"),
    PetEffect.DELAY: ("pending_consent", "delay", lambda d: "[AWAITING CONSENT]"),
}


def build_filtered_data_view(rule: Rule) -> List[FilteredDataItem]:
    items = []
    for data_type in rule.data_types:
        original = EXAMPLE_VALUES.get(data_type, f"[{data_type}]")
        status, transformation, render = _DATA_VIEW.get(
            rule.effect, ("available", None, lambda d: original)
        )
        items.append(FilteredDataItem(
            type=data_type,
            status=status,
            original_example=original,
            filtered_example=render(data_type),
            transformation=transformation
        ))
    return items


def build_explanation(rule: Rule, stream: StreamResult, policy: PolicyResult,
                      conflict: ConflictResult) -> List[str]:
    explanation = []

    if stream.inactive:
        explanation.append(
            f"{len(stream.inactive)} rule(s) were deactivated due to context conditions "
            f"(e.g., time of day, road type)."
        )

    if conflict.method == ResolutionMethod.PRIORITY:
        explanation.append(
            f'Rule "{rule.id}" was selected because it has the highest priority ({rule.priority}).'
        )
    elif conflict.method == ResolutionMethod.PET_HIERARCHY:
        explanation.append(
            f'Rule "{rule.id}" was selected because it provides the strongest privacy protection '
            f'({rule.effect.value}).'
        )
    elif conflict.method == ResolutionMethod.SINGLE_RULE:
        explanation.append(f'Rule "{rule.id}" was the only active rule.')
    elif conflict.method == ResolutionMethod.USER_CHOICE:
        explanation.append(
            f"{len(conflict.conflicting_rules)} rules tied on priority and protection level; "
            f"your choice applied {rule.effect.value}."
        )

    name = rule.label or rule.purpose
    if rule.effect == PetEffect.BLOCK:
        explanation.append(f'Your preference "{name}" will block the requested data.')
    else:
        explanation.append(f'Your preference "{name}" will apply {rule.effect.value.lower()} to the requested data.')

    if policy.blocked:
        explanation.append(f"{policy.blocked} service request(s) will be blocked based on your preferences.")

    return explanation


def synthesize(stream: StreamResult, policy: PolicyResult, conflict: ConflictResult) -> FinalDecision:
    """Build the final decision for one evaluation. Never cached."""
    if not stream.active:
        return FinalDecision(
            status=DecisionStatus.NO_PREFERENCE,
            message="No user preference found for this request",
            resolution_method=ResolutionMethod.NO_RULES,
            options=DEFAULT_OPTIONS,
            explanation=("No matching preference rule found.",)
        )

    if conflict.conflict:
        return FinalDecision(
            status=DecisionStatus.CONFLICT,
            message=conflict.message,
            resolution_method=conflict.method,
            conflicting_rules=tuple(r.summary() for r in conflict.conflicting_rules),
            explanation=("Multiple conflicting rules detected.",)
        )

    rule = conflict.winner
    decision = FinalDecision(
        status=DecisionStatus.RESOLVED,
        message=effect_message(rule.effect),
        effect=rule.effect,
        priority=rule.priority,
        rule_id=rule.id,
        resolution_method=conflict.method,
        applied_pets=tuple(get_applied_pets(rule)),
        filtered_data=tuple(build_filtered_data_view(rule)),
        explanation=tuple(build_explanation(rule, stream, policy, conflict))
    )
    logger.debug("Decision synthesized", status=decision.status.value, effect=rule.effect.value, rule_id=rule.id)
    return decision
