"""
Rule data models for the privacy preference engine.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional, List, Tuple, Union

from shared.errors import ValidationError


class PetEffect(str, Enum):
    """Privacy-enhancing techniques a rule can apply."""
    ALLOW = "ALLOW"
    DELAY = "DELAY"
    MASK = "MASK"
    REDUCE_PRECISION = "REDUCE_PRECISION"
    GENERALIZE = "GENERALIZE"
    AGGREGATE = "AGGREGATE"
    ANONYMIZE = "ANONYMIZE"
    LOCAL_ONLY = "LOCAL_ONLY"
    BLOCK = "BLOCK"

    @property
    def level(self) -> int:
        """Position in the PET hierarchy (0 = least protective)."""
        return _PET_LEVELS[self]

    @classmethod
    def parse(cls, value: Union[str, "PetEffect"]) -> "PetEffect":
        """Parse an effect name, raising ValidationError for unknown names."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValidationError(
                f"Unknown effect: {value}",
                details={"effect": value, "allowed": [e.value for e in PET_HIERARCHY]}
            )


# Least to most protective; the only source of PET ordering.
PET_HIERARCHY: Tuple[PetEffect, ...] = (
    PetEffect.ALLOW,
    PetEffect.DELAY,
    PetEffect.MASK,
    PetEffect.REDUCE_PRECISION,
    PetEffect.GENERALIZE,
    PetEffect.AGGREGATE,
    PetEffect.ANONYMIZE,
    PetEffect.LOCAL_ONLY,
    PetEffect.BLOCK,
)

_PET_LEVELS: Dict[PetEffect, int] = {effect: index for index, effect in enumerate(PET_HIERARCHY)}

EFFECT_MESSAGES: Dict[PetEffect, str] = {
    PetEffect.ALLOW: "Data access permitted with no restrictions",
    PetEffect.DELAY: "Access delayed pending user consent",
    PetEffect.MASK: "Data will be masked before sharing",
    PetEffect.REDUCE_PRECISION: "Data precision will be reduced",
    PetEffect.GENERALIZE: "Location/data will be generalized",
    PetEffect.AGGREGATE: "Only aggregated data will be shared",
    PetEffect.ANONYMIZE: "Data will be anonymized before sharing",
    PetEffect.LOCAL_ONLY: "Data processed locally, not shared with cloud",
    PetEffect.BLOCK: "Data access blocked",
}

# Context dimensions and their enumerated values
CONTEXT_TYPES: Dict[str, List[Any]] = {
    "timeOfDay": ["Morning", "Afternoon", "Evening", "Night"],
    "roadType": ["Highway", "Regional", "Urban", "Residential"],
    "homeDistance": ["Near", "Far"],
    "emergencyStatus": [True, False],
    "theftStatus": [True, False],
    "policeRequest": [True, False],
    "workHours": [True, False],
    "speed": ["Low", "Medium", "High"],
}


class GenerationMode(str, Enum):
    """How a rule came into existence (provenance only)."""
    QUESTIONNAIRE = "questionnaire"
    DOMAIN_CONFIG = "domain_config"
    PRIVACY_LEVEL = "privacy_level"
    USER_CHOICE = "user_choice"
    IMPORTED = "imported"


class ResolutionMethod(str, Enum):
    """Outcome labels of conflict resolution."""
    NO_RULES = "no rules"
    SINGLE_RULE = "single rule"
    PRIORITY = "priority"
    PET_HIERARCHY = "pet hierarchy"
    USER_DECISION_REQUIRED = "user decision required"
    USER_CHOICE = "user choice"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_rule_id(prefix: str = "rule") -> str:
    """Create a short unique rule identifier."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def _list_field(data: Dict[str, Any], *keys: str) -> Tuple[Any, ...]:
    """Read a list-valued field under its first present key; scalars are rejected."""
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, (list, tuple)):
            raise ValidationError(
                f"Field {key} must be a list",
                details={"field": key, "value": value}
            )
        return tuple(value)
    return ()


def _parse_created_at(value: Any, rule_id: Any) -> datetime:
    if value is None:
        return _utcnow()
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    raise ValidationError("Invalid created_at", details={"rule_id": rule_id, "created_at": value})


@dataclass(frozen=True)
class RuleProvenance:
    """Where a rule was generated from."""
    mode: GenerationMode = GenerationMode.IMPORTED
    source_id: Optional[str] = None
    selection_id: Optional[str] = None
    retention: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "source_id": self.source_id,
            "selection_id": self.selection_id,
            "retention": self.retention,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RuleProvenance":
        if not data:
            return cls()
        return cls(
            mode=GenerationMode(data.get("mode", GenerationMode.IMPORTED.value)),
            source_id=data.get("source_id"),
            selection_id=data.get("selection_id"),
            retention=data.get("retention"),
        )


@dataclass(frozen=True)
class ContextPredicate:
    """Condition over one runtime context dimension."""
    dimension: str
    allowed: Tuple[Any, ...] = ()
    denied: Tuple[Any, ...] = ()
    value: Any = None
    minimum: Optional[Union[str, int, float]] = None
    maximum: Optional[Union[str, int, float]] = None

    def __post_init__(self):
        if not isinstance(self.dimension, str) or not self.dimension:
            raise ValidationError("Context predicate requires a dimension name")
        object.__setattr__(self, "allowed", tuple(self.allowed or ()))
        object.__setattr__(self, "denied", tuple(self.denied or ()))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.dimension}
        if self.allowed:
            data["allowed"] = list(self.allowed)
        if self.denied:
            data["denied"] = list(self.denied)
        if self.value is not None:
            data["value"] = self.value
        if self.minimum is not None:
            data["minimum"] = self.minimum
        if self.maximum is not None:
            data["maximum"] = self.maximum
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextPredicate":
        if not isinstance(data, dict):
            raise ValidationError("Context predicate must be a mapping", details={"predicate": data})
        return cls(
            dimension=data.get("type") or data.get("dimension"),
            allowed=_list_field(data, "allowed"),
            denied=_list_field(data, "denied"),
            value=data.get("value"),
            minimum=data.get("minimum"),
            maximum=data.get("maximum"),
        )


@dataclass(frozen=True)
class Transform:
    """Auxiliary transformation descriptor applied alongside the effect."""
    type: str
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def normalized_type(self) -> str:
        """Type name folded for comparison with effect names (localOnly == LOCAL_ONLY)."""
        return "".join(ch for ch in self.type.lower() if ch.isalnum())

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, **self.params}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transform":
        if not isinstance(data, dict) or not data.get("type"):
            raise ValidationError("Transform requires a type", details={"transform": data})
        params = {k: v for k, v in data.items() if k != "type"}
        return cls(type=str(data["type"]), params=params)


@dataclass(frozen=True)
class Rule:
    """Privacy rule governing one service purpose."""
    id: str
    service_type: str
    purpose: str
    effect: PetEffect
    priority: int
    data_types: Tuple[str, ...] = ()
    contexts: Tuple[ContextPredicate, ...] = ()
    transforms: Tuple[Transform, ...] = ()
    label: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    provenance: RuleProvenance = field(default_factory=RuleProvenance)

    def __post_init__(self):
        if not self.id:
            raise ValidationError("Rule requires an id")
        if self.effect is None:
            raise ValidationError("Rule requires an effect", details={"rule_id": self.id})
        object.__setattr__(self, "effect", PetEffect.parse(self.effect))
        if isinstance(self.priority, bool) or not isinstance(self.priority, int):
            raise ValidationError(
                "Rule priority must be an integer",
                details={"rule_id": self.id, "priority": self.priority}
            )
        if not 0 <= self.priority <= 100:
            raise ValidationError(
                "Rule priority must be between 0 and 100",
                details={"rule_id": self.id, "priority": self.priority}
            )
        object.__setattr__(self, "data_types", tuple(self.data_types or ()))
        object.__setattr__(self, "contexts", tuple(self.contexts or ()))
        object.__setattr__(self, "transforms", tuple(self.transforms or ()))

    def summary(self) -> Dict[str, Any]:
        """Short form used in conflict payloads."""
        return {
            "id": self.id,
            "effect": self.effect.value,
            "priority": self.priority,
            "purpose": self.purpose,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "service_type": self.service_type,
            "purpose": self.purpose,
            "effect": self.effect.value,
            "priority": self.priority,
            "data_types": list(self.data_types),
            "contexts": [c.to_dict() for c in self.contexts],
            "transforms": [t.to_dict() for t in self.transforms],
            "label": self.label,
            "created_at": self.created_at.isoformat(),
            "provenance": self.provenance.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rule":
        """Build a rule from its dict form; missing effect or priority fails fast."""
        for required in ("id", "effect", "priority"):
            if data.get(required) is None:
                raise ValidationError(
                    f"Rule is missing required field: {required}",
                    details={"rule_id": data.get("id")}
                )
        created_at = data.get("created_at") or data.get("createdAt")
        return cls(
            id=data["id"],
            service_type=data.get("service_type") or data.get("serviceType") or "",
            purpose=data.get("purpose", ""),
            effect=PetEffect.parse(data["effect"]),
            priority=data["priority"],
            data_types=_list_field(data, "data_types", "dataTypes"),
            contexts=tuple(ContextPredicate.from_dict(c) for c in _list_field(data, "contexts")),
            transforms=tuple(Transform.from_dict(t) for t in _list_field(data, "transforms")),
            label=data.get("label", ""),
            created_at=_parse_created_at(created_at, data["id"]),
            provenance=RuleProvenance.from_dict(data.get("provenance")),
        )


@dataclass(frozen=True)
class PredicateResult:
    """Outcome of one context predicate."""
    dimension: str
    satisfied: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.dimension, "satisfied": self.satisfied, "reason": self.reason}


@dataclass(frozen=True)
class RuleEvaluation:
    """A rule together with its context evaluation."""
    rule: Rule
    active: bool
    reason: str
    details: Tuple[PredicateResult, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.rule.to_dict(),
            "context_evaluation": {
                "active": self.active,
                "reason": self.reason,
                "details": [d.to_dict() for d in self.details],
            },
        }


@dataclass(frozen=True)
class StreamResult:
    """Partition of rules by the current context."""
    context: Dict[str, Any]
    active: Tuple[RuleEvaluation, ...] = ()
    inactive: Tuple[RuleEvaluation, ...] = ()

    @property
    def active_rules(self) -> List[Rule]:
        return [e.rule for e in self.active]

    @property
    def inactive_rules(self) -> List[Rule]:
        return [e.rule for e in self.inactive]

    @property
    def total(self) -> int:
        return len(self.active) + len(self.inactive)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": "stream",
            "current_context": dict(self.context),
            "active_rules": [e.to_dict() for e in self.active],
            "inactive_rules": [e.to_dict() for e in self.inactive],
            "summary": {
                "total": self.total,
                "active": len(self.active),
                "inactive": len(self.inactive),
            },
        }


@dataclass(frozen=True)
class ConflictResult:
    """Outcome of conflict resolution among active rules."""
    method: ResolutionMethod
    winner: Optional[Rule] = None
    conflict: bool = False
    conflicting_rules: Tuple[Rule, ...] = ()
    ranked_rules: Tuple[Rule, ...] = ()

    @property
    def message(self) -> Optional[str]:
        if self.conflict:
            return "Multiple rules with same priority and protection level. User decision required."
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "winner": self.winner.to_dict() if self.winner else None,
            "conflict": self.conflict,
            "conflicting_rules": [r.to_dict() for r in self.conflicting_rules],
            "resolution_method": self.method.value,
            "ranked_rules": [r.id for r in self.ranked_rules],
            "message": self.message,
        }
