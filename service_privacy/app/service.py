"""
Privacy Preference Service facade.

Wires catalogs, the rule generator, stores and the rule engine behind the
operations a transport layer exposes (save preferences, evaluate, resolve a
conflict, history, domain configuration).
"""

import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Any, Iterator, List, Mapping, Optional, Sequence, Union

from shared.config import ServiceConfig, get_config
from shared.errors import ValidationError
from shared.logging import clear_context, configure_logging, get_logger, set_request_id, set_user_context
from .decision.synthesizer import DecisionStatus
from .decision.transforms import apply_effect
from .generator.catalog import QuestionnaireCatalog, load_questionnaire_catalog
from .generator.domain import DomainConfig, load_domain_config
from .generator.rule_generator import (
    RuleGenerator, GeneratedRuleset, PrivacyLevelChoice, SituationAction
)
from .persistence.memory import InMemoryEvaluationHistory, InMemoryRuleStore
from .persistence.store import EvaluationHistory, HistoryEntry, RuleStore, StoredRuleset
from .policy.catalog import PolicyCatalog, load_policy_catalog
from .policy.matcher import PolicyEvaluator
from .policy.scoring import PolicyScore, rank_policies
from .rules.engine import EvaluationResult, QuickEvaluation, RuleEngine
from .rules.models import Rule, PetEffect, ResolutionMethod
from .rules.resolver import TieBreakChoice


SERVICE_NAME = "privacy-preferences"


class PrivacyPreferenceService:
    """Preference management and evaluation for connected-vehicle users."""

    def __init__(
        self,
        config: ServiceConfig,
        questionnaire: Optional[QuestionnaireCatalog] = None,
        policy_catalog: Optional[PolicyCatalog] = None,
        rule_store: Optional[RuleStore] = None,
        history: Optional[EvaluationHistory] = None
    ):
        self.config = config
        self.logger = get_logger("privacy.service")

        if config.default_tie_break is not None:
            try:
                TieBreakChoice(config.default_tie_break.lower())
            except ValueError:
                raise ValidationError(
                    f"Invalid default tie-break: {config.default_tie_break}",
                    details={"allowed": [c.value for c in TieBreakChoice]}
                )

        self.questionnaire = questionnaire or load_questionnaire_catalog(config.questionnaire_file)
        self.policy_catalog = policy_catalog or load_policy_catalog(config.policies_file)
        domain_config = load_domain_config(config.domain_config_file) if config.domain_config_file else None

        self.generator = RuleGenerator(self.questionnaire, domain_config)
        self.engine = RuleEngine(PolicyEvaluator(self.policy_catalog))
        self.rule_store = rule_store or InMemoryRuleStore()
        self.history = history or InMemoryEvaluationHistory()

    # Catalogs

    def load_domain_config(self, source: Union[str, Path, Mapping[str, Any]]) -> DomainConfig:
        """Load (or replace) the active domain configuration."""
        config = load_domain_config(source)
        self.generator.set_domain_config(config)
        return config

    @property
    def domain_config(self) -> Optional[DomainConfig]:
        return self.generator.domain_config

    def domain_metadata(self) -> Dict[str, Any]:
        if self.domain_config is None:
            raise ValidationError("No domain configuration loaded")
        return self.domain_config.metadata()

    # Preferences

    def _store(self, user_id: str, ruleset: GeneratedRuleset, preferences: Dict[str, Any]) -> GeneratedRuleset:
        if not user_id:
            raise ValidationError("user_id is required")
        self.rule_store.put(StoredRuleset(
            user_id=user_id,
            service_type=ruleset.service_type,
            rules=ruleset.rules,
            preferences=preferences,
            ruleset_xml=ruleset.ruleset_xml,
            updated_at=ruleset.created_at
        ))
        return ruleset

    def save_preferences(self, user_id: str, service_type: str, answers: Mapping[str, str],
                         user_contexts: Optional[Sequence[Mapping[str, Any]]] = None) -> GeneratedRuleset:
        """Generate rules from questionnaire answers and replace the stored set."""
        ruleset = self.generator.generate_ruleset(service_type, answers, user_contexts)
        return self._store(user_id, ruleset, {
            "answers": dict(answers),
            "user_contexts": [dict(c) for c in user_contexts or []],
        })

    def save_domain_preferences(self, user_id: str, service_type: str,
                                choices: Union[Mapping[str, str], Sequence[SituationAction]],
                                purpose_id: Optional[str] = None) -> GeneratedRuleset:
        """Generate one rule per situation/action pair and replace the stored set."""
        ruleset = self.generator.generate_domain_ruleset(service_type, choices, purpose_id)
        if isinstance(choices, Mapping):
            recorded = dict(choices)
        else:
            recorded = {c.situation_id: c.action_id for c in choices}
        return self._store(user_id, ruleset, {"choices": recorded, "purpose_id": purpose_id})

    def save_privacy_level(self, user_id: str, service_type: str, data_types: Sequence[str],
                           privacy_level: str, retention: Optional[str] = None,
                           user_contexts: Optional[Sequence[Mapping[str, Any]]] = None) -> GeneratedRuleset:
        choice = PrivacyLevelChoice(tuple(data_types), privacy_level, retention)
        ruleset = self.generator.generate_privacy_level_ruleset(service_type, choice, user_contexts)
        return self._store(user_id, ruleset, {
            "data_types": list(data_types),
            "privacy_level": privacy_level,
            "retention": retention,
        })

    def get_rules(self, user_id: str, service_type: Optional[str] = None) -> List[Rule]:
        if service_type is not None:
            stored = self.rule_store.get(user_id, service_type)
            return list(stored.rules) if stored else []
        rules: List[Rule] = []
        for stored in self.rule_store.list_for_user(user_id):
            rules.extend(stored.rules)
        return rules

    def delete_preferences(self, user_id: str, service_type: str) -> bool:
        return self.rule_store.delete(user_id, service_type)

    # Evaluation

    @contextmanager
    def _log_context(self, user_id: str, service_type: str) -> Iterator[str]:
        """Bind request, user and service type to log events for one call."""
        request_id = set_request_id()
        set_user_context(user_id, service_type)
        try:
            yield request_id
        finally:
            clear_context()

    def _run(self, user_id: str, service_type: str, context: Mapping[str, Any],
             tie_break: Optional[str]) -> EvaluationResult:
        stored = self.rule_store.get(user_id, service_type)
        rules = stored.rules if stored else ()
        return self.engine.evaluate(rules, service_type, context, tie_break)

    def _record(self, user_id: str, result: EvaluationResult) -> None:
        self.history.append(HistoryEntry(
            id=str(uuid.uuid4()),
            user_id=user_id,
            service_type=result.service_type,
            context=dict(result.stream.context),
            result={
                "status": result.decision.status.value,
                "effect": result.decision.effect.value if result.decision.effect else None,
                "rule_id": result.decision.rule_id,
                "resolution_method": result.conflict.method.value,
                "active_rules": len(result.stream.active),
                "inactive_rules": len(result.stream.inactive),
            },
            timestamp=result.timestamp
        ))

    def evaluate(self, user_id: str, service_type: str,
                 context: Optional[Mapping[str, Any]] = None) -> EvaluationResult:
        """
        Evaluate a user's stored rules for a service against a context.

        An unresolved conflict is settled by the configured default
        tie-break when one is set; otherwise it is returned as CONFLICT.
        """
        with self._log_context(user_id, service_type):
            result = self._run(user_id, service_type, context or {}, self.config.default_tie_break)
            self._record(user_id, result)
        return result

    def resolve_conflict(self, user_id: str, service_type: str, context: Optional[Mapping[str, Any]],
                         choice: Union[str, TieBreakChoice]) -> EvaluationResult:
        """Re-evaluate and settle the conflict with the user's choice."""
        with self._log_context(user_id, service_type):
            result = self._run(user_id, service_type, context or {}, choice)
            if result.conflict.method != ResolutionMethod.USER_CHOICE:
                raise ValidationError(
                    "No unresolved conflict to resolve",
                    details={"resolution_method": result.conflict.method.value}
                )
            self._record(user_id, result)
        return result

    def quick_evaluate(self, rule: Union[Rule, Mapping[str, Any]], service_type: str,
                       context: Optional[Mapping[str, Any]] = None) -> QuickEvaluation:
        if not isinstance(rule, Rule):
            rule = Rule.from_dict(dict(rule))
        return self.engine.quick_evaluate(rule, service_type, context or {})

    def transform_record(self, user_id: str, service_type: str, record: Mapping[str, Any],
                         context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Apply the decided effect to a telemetry record.

        Without an applicable preference the record passes unchanged
        (ALLOW). Tied rules share one PET level and so one effect.
        """
        snapshot = context if context is not None else record.get("context") or {}
        with self._log_context(user_id, service_type):
            result = self._run(user_id, service_type, snapshot, self.config.default_tie_break)
        decision = result.decision

        if decision.status == DecisionStatus.RESOLVED:
            effect = decision.effect
        elif decision.status == DecisionStatus.CONFLICT:
            effect = result.conflict.conflicting_rules[0].effect
        else:
            effect = PetEffect.ALLOW

        return {
            "status": decision.status.value,
            "effect": effect.value,
            "rule_id": decision.rule_id,
            "context": dict(snapshot),
            "active_rules": len(result.stream.active),
            "inactive_rules": len(result.stream.inactive),
            "transformed": apply_effect(record, effect),
        }

    def compare_policies(self, rule: Rule, service_type: Optional[str] = None) -> List[PolicyScore]:
        return rank_policies(rule, self.policy_catalog, service_type)

    def get_history(self, user_id: str, limit: Optional[int] = None) -> List[HistoryEntry]:
        return self.history.recent(user_id, self.config.history_limit if limit is None else limit)


def create_service(config: Optional[ServiceConfig] = None) -> PrivacyPreferenceService:
    """Create the service with logging configured from settings."""
    config = config or get_config(SERVICE_NAME)
    configure_logging(config.service_name, config.log_level)
    service = PrivacyPreferenceService(config)
    service.logger.info("Privacy preference service created", env=config.env)
    return service
