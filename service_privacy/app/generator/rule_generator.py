"""
Rule generation from questionnaire answers, domain configurations and
privacy levels.

All three modes produce the same Rule shape; the mode only shows up in
the rule's provenance.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Mapping, Optional, Sequence, Tuple, Union

from shared.errors import ValidationError
from shared.logging import get_logger
from ..rules.models import (
    Rule, PetEffect, ContextPredicate, Transform, RuleProvenance, GenerationMode, new_rule_id
)
from ..rules.predicates import parse_magnitude, strict_equals
from .catalog import QuestionnaireCatalog
from .domain import DomainConfig, Purpose
from .xpref import build_rule_xml, build_ruleset_xml


# Domain-config mode priorities
EFFECT_PRIORITIES: Dict[PetEffect, int] = {
    PetEffect.BLOCK: 100,
    PetEffect.LOCAL_ONLY: 90,
    PetEffect.ANONYMIZE: 80,
    PetEffect.DELAY: 70,
    PetEffect.GENERALIZE: 60,
    PetEffect.ALLOW: 40,
}
DEFAULT_PRIORITY = 50


@dataclass(frozen=True)
class PrivacyLevel:
    effect: PetEffect
    priority: int
    description: str
    transforms: Tuple[Dict[str, Any], ...] = ()


PRIVACY_LEVELS: Dict[str, PrivacyLevel] = {
    "high": PrivacyLevel(
        PetEffect.ANONYMIZE, 90, "Strong privacy protection with data anonymization",
        ({"type": "anonymize", "method": "k-anonymity", "k": 10},)
    ),
    "medium": PrivacyLevel(
        PetEffect.GENERALIZE, 70, "Moderate privacy with data generalization",
        ({"type": "generalize", "level": "moderate"},)
    ),
    "low": PrivacyLevel(PetEffect.ALLOW, 40, "Basic privacy with minimal restrictions"),
}


@dataclass(frozen=True)
class QuestionnaireAnswer:
    question_id: str
    option_id: str


@dataclass(frozen=True)
class SituationAction:
    situation_id: str
    action_id: str
    purpose_id: Optional[str] = None


@dataclass(frozen=True)
class PrivacyLevelChoice:
    data_types: Tuple[str, ...]
    privacy_level: str
    retention: Optional[str] = None
    purpose_id: Optional[str] = None


Selection = Union[QuestionnaireAnswer, SituationAction, PrivacyLevelChoice]


@dataclass(frozen=True)
class GeneratedRule:
    rule: Rule
    xml: str

    def to_dict(self) -> Dict[str, Any]:
        return {**self.rule.to_dict(), "xml": self.xml}


@dataclass(frozen=True)
class GeneratedRuleset:
    service_type: str
    service_name: str
    rules: Tuple[Rule, ...]
    ruleset_xml: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_type": self.service_type,
            "service_name": self.service_name,
            "rules": [r.to_dict() for r in self.rules],
            "total_rules": len(self.rules),
            "ruleset_xml": self.ruleset_xml,
            "created_at": self.created_at.isoformat(),
        }


def _union(left: Optional[Sequence[Any]], right: Optional[Sequence[Any]]) -> List[Any]:
    merged: List[Any] = []
    for value in list(left or ()) + list(right or ()):
        if value is None or any(strict_equals(value, existing) for existing in merged):
            continue
        merged.append(value)
    return merged


def _keyed_by_type(predicate: Mapping[str, Any]) -> Dict[str, Any]:
    # Predicates may name their dimension under "type" or "dimension"
    if not isinstance(predicate, Mapping):
        raise ValidationError("Context predicate must be a mapping", details={"predicate": predicate})
    data = dict(predicate)
    dimension = data.pop("dimension", None)
    if data.get("type") is None and dimension is not None:
        data["type"] = dimension
    return data


def merge_contexts(template: Sequence[Mapping[str, Any]],
                   user_contexts: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """
    Merge user-supplied predicates into a template's predicates.

    For a dimension present in both, allowed and denied sets are unioned and
    the user's scalar fields override. New dimensions are appended.
    """
    merged = [_keyed_by_type(predicate) for predicate in template]
    for user_predicate in map(_keyed_by_type, user_contexts):
        dimension = user_predicate.get("type")
        index = next((i for i, p in enumerate(merged) if p.get("type") == dimension), None)
        if index is None:
            merged.append(user_predicate)
            continue

        base = merged[index]
        combined = {**base, **user_predicate}
        for key in ("allowed", "denied"):
            values = _union(base.get(key), user_predicate.get(key))
            if values:
                combined[key] = values
            else:
                combined.pop(key, None)
        merged[index] = combined
    return merged


class RuleGenerator:
    """Generates rules and their XPref projection."""

    def __init__(self, catalog: QuestionnaireCatalog, domain_config: Optional[DomainConfig] = None):
        self.logger = get_logger("privacy.rule_generator")
        self.catalog = catalog
        self.domain_config = domain_config

    def set_domain_config(self, config: Optional[DomainConfig]) -> None:
        self.domain_config = config

    # Validation

    def validate_predicates(self, predicates: Sequence[Mapping[str, Any]]) -> Tuple[ContextPredicate, ...]:
        """Build predicates, rejecting unsupported dimensions and out-of-range values."""
        result = []
        for data in predicates:
            predicate = ContextPredicate.from_dict(dict(data))
            permitted = self.catalog.context_types.get(predicate.dimension)
            if permitted is None:
                raise ValidationError(
                    f"Unsupported context dimension: {predicate.dimension}",
                    details={"dimension": predicate.dimension, "supported": sorted(self.catalog.context_types)}
                )

            values = list(predicate.allowed) + list(predicate.denied)
            if predicate.value is not None:
                values.append(predicate.value)
            for value in values:
                if not any(strict_equals(value, p) for p in permitted):
                    raise ValidationError(
                        f"Value {value!r} is not permitted for {predicate.dimension}",
                        details={"dimension": predicate.dimension, "value": value, "permitted": permitted}
                    )

            for bound in (predicate.minimum, predicate.maximum):
                if bound is not None and parse_magnitude(bound) is None:
                    raise ValidationError(
                        f"Bound {bound!r} for {predicate.dimension} is not a distance",
                        details={"dimension": predicate.dimension, "bound": bound}
                    )
            result.append(predicate)
        return tuple(result)

    def _service(self, service_type: str):
        service = self.catalog.service(service_type)
        if service is None:
            raise ValidationError(
                f"Unknown service type: {service_type}",
                details={"service_type": service_type, "known": sorted(self.catalog.services)}
            )
        return service

    def _require_domain_config(self) -> DomainConfig:
        if self.domain_config is None:
            raise ValidationError("No domain configuration loaded")
        return self.domain_config

    def _domain_service_name(self, service_type: str) -> str:
        config = self._require_domain_config()
        service = self.catalog.service(service_type)
        if service is not None:
            return service.name
        if service_type == config.domain:
            return config.domain
        raise ValidationError(
            f"Unknown service type: {service_type}",
            details={"service_type": service_type, "known": sorted(self.catalog.services) + [config.domain]}
        )

    def _domain_purpose(self, purpose_id: Optional[str]) -> Purpose:
        config = self._require_domain_config()
        if purpose_id is None:
            if len(config.purposes) == 1:
                return config.purposes[0]
            raise ValidationError(
                "A purpose id is required when the domain declares several purposes",
                details={"purposes": [p.id for p in config.purposes]}
            )
        purpose = config.purpose(purpose_id)
        if purpose is None:
            raise ValidationError(f"Unknown purpose: {purpose_id}", details={"purpose_id": purpose_id})
        return purpose

    # Generation modes

    def _questionnaire_rule(self, service_type: str, answer: QuestionnaireAnswer,
                            user_contexts: Sequence[Mapping[str, Any]]) -> Rule:
        service = self._service(service_type)
        question = service.question(answer.question_id)
        if question is None:
            raise ValidationError(
                f"Unknown question: {answer.question_id}",
                details={"service_type": service_type, "question_id": answer.question_id}
            )
        if answer.option_id not in self.catalog.option_ids:
            raise ValidationError(
                f"Invalid option for {answer.question_id}: {answer.option_id}",
                details={"option_id": answer.option_id, "allowed": self.catalog.option_ids}
            )
        option = question.options.get(answer.option_id)
        if option is None:
            raise ValidationError(
                f"Unknown option: {answer.option_id}",
                details={"question_id": question.id, "option_id": answer.option_id}
            )

        contexts = self.validate_predicates(merge_contexts(option.contexts, user_contexts))
        return Rule(
            id=new_rule_id(),
            service_type=service_type,
            purpose=question.purpose,
            effect=option.effect,
            priority=option.priority,
            data_types=tuple(question.data_types),
            contexts=contexts,
            transforms=tuple(Transform.from_dict(t) for t in option.transforms),
            label=option.label,
            provenance=RuleProvenance(
                mode=GenerationMode.QUESTIONNAIRE,
                source_id=question.id,
                selection_id=answer.option_id
            )
        )

    def _domain_rule(self, service_type: str, choice: SituationAction) -> Rule:
        config = self._require_domain_config()
        self._domain_service_name(service_type)

        situation = config.situation(choice.situation_id)
        if situation is None:
            raise ValidationError(
                f"Unknown situation: {choice.situation_id}",
                details={"situation_id": choice.situation_id}
            )
        action = config.action(choice.action_id)
        if action is None:
            raise ValidationError(
                f"Unknown privacy action: {choice.action_id}",
                details={"action_id": choice.action_id, "allowed": [a.id for a in config.privacy_actions]}
            )
        purpose = self._domain_purpose(choice.purpose_id)

        return Rule(
            id=new_rule_id(),
            service_type=service_type,
            purpose=purpose.display_name,
            effect=action.pet,
            priority=EFFECT_PRIORITIES.get(action.pet, DEFAULT_PRIORITY),
            data_types=tuple(purpose.data_types or config.data_type_ids),
            contexts=self.validate_predicates(situation.predicates),
            label=f"{situation.name or situation.id}: {action.name or action.id}",
            provenance=RuleProvenance(
                mode=GenerationMode.DOMAIN_CONFIG,
                source_id=situation.id,
                selection_id=action.id
            )
        )

    def _privacy_level_rule(self, service_type: str, choice: PrivacyLevelChoice,
                            user_contexts: Sequence[Mapping[str, Any]]) -> Rule:
        config = self._require_domain_config()
        self._domain_service_name(service_type)

        level = PRIVACY_LEVELS.get(choice.privacy_level)
        if level is None:
            raise ValidationError(
                f"Unknown privacy level: {choice.privacy_level}",
                details={"privacy_level": choice.privacy_level, "allowed": sorted(PRIVACY_LEVELS)}
            )
        if not choice.data_types:
            raise ValidationError("At least one data type is required")
        unknown = [d for d in choice.data_types if d not in config.data_type_ids]
        if unknown:
            raise ValidationError(f"Unknown data types: {', '.join(unknown)}", details={"data_types": unknown})
        if choice.retention is not None and config.retention_periods:
            if choice.retention not in [r.id for r in config.retention_periods]:
                raise ValidationError(
                    f"Unknown retention period: {choice.retention}",
                    details={"retention": choice.retention}
                )

        purpose = (
            self._domain_purpose(choice.purpose_id).display_name
            if choice.purpose_id or len(config.purposes) == 1
            else "User Privacy Preferences"
        )
        count = len(choice.data_types)
        return Rule(
            id=new_rule_id(),
            service_type=service_type,
            purpose=purpose,
            effect=level.effect,
            priority=level.priority,
            data_types=tuple(choice.data_types),
            contexts=self.validate_predicates(user_contexts),
            transforms=tuple(Transform.from_dict(t) for t in level.transforms),
            label=f"{level.effect.value} - {count} data type(s)",
            provenance=RuleProvenance(
                mode=GenerationMode.PRIVACY_LEVEL,
                source_id=choice.privacy_level,
                retention=choice.retention
            )
        )

    # Public API

    def generate_rule(self, service_type: str, selection: Selection,
                      user_contexts: Optional[Sequence[Mapping[str, Any]]] = None) -> GeneratedRule:
        """Generate one rule; raises ValidationError and emits nothing on bad input."""
        user_contexts = list(user_contexts or [])
        if isinstance(selection, QuestionnaireAnswer):
            rule = self._questionnaire_rule(service_type, selection, user_contexts)
        elif isinstance(selection, SituationAction):
            if user_contexts:
                raise ValidationError("User contexts are not supported for situation/action selections")
            rule = self._domain_rule(service_type, selection)
        elif isinstance(selection, PrivacyLevelChoice):
            rule = self._privacy_level_rule(service_type, selection, user_contexts)
        else:
            raise ValidationError(f"Unsupported selection: {type(selection).__name__}")

        self.logger.debug(
            "Rule generated",
            rule_id=rule.id,
            service_type=service_type,
            mode=rule.provenance.mode.value,
            effect=rule.effect.value,
            priority=rule.priority
        )
        return GeneratedRule(rule=rule, xml=build_rule_xml(rule))

    def _ruleset(self, service_type: str, service_name: str, rules: List[Rule]) -> GeneratedRuleset:
        ordered = tuple(sorted(rules, key=lambda r: -r.priority))
        created_at = datetime.now(timezone.utc)
        self.logger.info(
            "Ruleset generated",
            service_type=service_type,
            rules=len(ordered)
        )
        return GeneratedRuleset(
            service_type=service_type,
            service_name=service_name,
            rules=ordered,
            ruleset_xml=build_ruleset_xml(service_type, service_name, ordered, created_at),
            created_at=created_at
        )

    def generate_ruleset(self, service_type: str, answers: Mapping[str, str],
                         user_contexts: Optional[Sequence[Mapping[str, Any]]] = None) -> GeneratedRuleset:
        """
        Generate every rule for a questionnaire.

        All-or-nothing: one invalid answer rejects the whole ruleset.
        """
        service = self._service(service_type)
        if not answers:
            raise ValidationError("No answers supplied", details={"service_type": service_type})

        try:
            rules = [
                self.generate_rule(service_type, QuestionnaireAnswer(question_id, option_id), user_contexts).rule
                for question_id, option_id in answers.items()
            ]
        except ValidationError as e:
            self.logger.warning("Ruleset rejected", service_type=service_type, error=e.message)
            raise
        return self._ruleset(service_type, service.name, rules)

    def generate_domain_ruleset(self, service_type: str,
                                choices: Union[Mapping[str, str], Sequence[SituationAction]],
                                purpose_id: Optional[str] = None) -> GeneratedRuleset:
        """One rule per (situation, action) pair."""
        service_name = self._domain_service_name(service_type)
        if isinstance(choices, Mapping):
            pairs = [SituationAction(s, a, purpose_id) for s, a in choices.items()]
        else:
            pairs = [
                c if c.purpose_id or purpose_id is None else SituationAction(c.situation_id, c.action_id, purpose_id)
                for c in choices
            ]
        if not pairs:
            raise ValidationError("No situation/action choices supplied", details={"service_type": service_type})

        try:
            rules = [self.generate_rule(service_type, pair).rule for pair in pairs]
        except ValidationError as e:
            self.logger.warning("Domain ruleset rejected", service_type=service_type, error=e.message)
            raise
        return self._ruleset(service_type, service_name, rules)

    def generate_privacy_level_ruleset(self, service_type: str, choice: PrivacyLevelChoice,
                                       user_contexts: Optional[Sequence[Mapping[str, Any]]] = None
                                       ) -> GeneratedRuleset:
        service_name = self._domain_service_name(service_type)
        rule = self.generate_rule(service_type, choice, user_contexts).rule
        return self._ruleset(service_type, service_name, [rule])
