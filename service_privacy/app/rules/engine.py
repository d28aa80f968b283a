"""
Rule evaluation engine for the Privacy Preference Service.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Mapping, Optional, Sequence, Union

from shared.logging import get_logger
from .models import Rule, RuleEvaluation, StreamResult, ConflictResult
from .predicates import evaluate_predicate
from .resolver import TieBreakChoice, resolve_conflicts, resolve_with_choice
from ..policy.matcher import PolicyEvaluator, PolicyResult
from ..decision.synthesizer import FinalDecision, synthesize


def evaluate_rule_context(rule: Rule, context: Mapping[str, Any]) -> RuleEvaluation:
    """Evaluate every predicate of a rule; active only if all are satisfied."""
    if not rule.contexts:
        return RuleEvaluation(rule=rule, active=True, reason="No context restrictions")

    details = tuple(evaluate_predicate(predicate, context) for predicate in rule.contexts)
    failed = [d for d in details if not d.satisfied]
    if failed:
        return RuleEvaluation(
            rule=rule,
            active=False,
            reason="; ".join(d.reason for d in failed),
            details=details
        )
    return RuleEvaluation(rule=rule, active=True, reason="All context conditions met", details=details)


def evaluate_stream(rules: Sequence[Rule], context: Mapping[str, Any]) -> StreamResult:
    """Partition rules into active and inactive sets for a context snapshot."""
    evaluations = [evaluate_rule_context(rule, context) for rule in rules]
    return StreamResult(
        context=dict(context),
        active=tuple(e for e in evaluations if e.active),
        inactive=tuple(e for e in evaluations if not e.active)
    )


@dataclass(frozen=True)
class EvaluationResult:
    """All evaluation phases plus the final decision."""
    service_type: str
    stream: StreamResult
    policy: PolicyResult
    conflict: ConflictResult
    decision: FinalDecision
    evaluation_time_ms: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_type": self.service_type,
            "timestamp": self.timestamp.isoformat(),
            "evaluation_time_ms": self.evaluation_time_ms,
            "phases": {
                "stream": self.stream.to_dict(),
                "policy": self.policy.to_dict(),
                "conflict": self.conflict.to_dict(),
            },
            "decision": self.decision.to_dict(),
        }


@dataclass(frozen=True)
class QuickEvaluation:
    """Single-rule check against a context, without conflict resolution."""
    rule: Rule
    evaluation: RuleEvaluation
    policy: PolicyResult

    @property
    def active(self) -> bool:
        return self.evaluation.active

    def to_dict(self) -> Dict[str, Any]:
        match = self.policy.matches[0].to_dict() if self.policy.matches else None
        return {
            "rule_id": self.rule.id,
            "active": self.active,
            "effect": self.rule.effect.value if self.active else None,
            "context_evaluation": self.evaluation.to_dict()["context_evaluation"],
            "policy_match": match,
        }


class RuleEngine:
    """Rule evaluation engine."""

    def __init__(self, policy_evaluator: PolicyEvaluator):
        self.logger = get_logger("privacy.rule_engine")
        self.policy_evaluator = policy_evaluator

    def evaluate_stream(self, rules: Sequence[Rule], context: Mapping[str, Any]) -> StreamResult:
        result = evaluate_stream(rules, context)
        self.logger.debug(
            "Stream evaluation complete",
            total=result.total,
            active=len(result.active),
            inactive=len(result.inactive)
        )
        return result

    def resolve(self, active_rules: Sequence[Rule],
                tie_break: Optional[Union[str, TieBreakChoice]] = None) -> ConflictResult:
        """Resolve conflicts; a tie-break is only applied to an unresolved conflict."""
        result = resolve_conflicts(active_rules)
        if result.conflict and tie_break is not None:
            result = resolve_with_choice(result, tie_break)
        return result

    def evaluate(self, rules: Sequence[Rule], service_type: str, context: Mapping[str, Any],
                 tie_break: Optional[Union[str, TieBreakChoice]] = None) -> EvaluationResult:
        """Run the full pipeline: stream, policy, conflict, decision."""
        start_time = time.time()

        stream = self.evaluate_stream(rules, context)
        policy = self.policy_evaluator.match_policies(stream.active_rules, service_type)
        conflict = self.resolve(stream.active_rules, tie_break)
        decision = synthesize(stream, policy, conflict)

        result = EvaluationResult(
            service_type=service_type,
            stream=stream,
            policy=policy,
            conflict=conflict,
            decision=decision,
            evaluation_time_ms=(time.time() - start_time) * 1000
        )

        self.logger.info(
            "Rule evaluation result",
            service_type=service_type,
            status=decision.status.value,
            effect=decision.effect.value if decision.effect else None,
            resolution_method=conflict.method.value,
            evaluation_time_ms=result.evaluation_time_ms
        )
        return result

    def quick_evaluate(self, rule: Rule, service_type: str, context: Mapping[str, Any]) -> QuickEvaluation:
        evaluation = evaluate_rule_context(rule, context)
        policy = self.policy_evaluator.match_policies([rule] if evaluation.active else [], service_type)
        return QuickEvaluation(rule=rule, evaluation=evaluation, policy=policy)
