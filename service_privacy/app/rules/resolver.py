"""
Conflict resolution among active rules.
"""

from enum import Enum
from typing import List, Sequence, Union

from shared.errors import ValidationError
from shared.logging import get_logger
from .models import (
    Rule, PetEffect, ConflictResult, ResolutionMethod, RuleProvenance,
    GenerationMode, new_rule_id
)


logger = get_logger("privacy.conflict_resolver")


class TieBreakChoice(str, Enum):
    """Explicit user choice for an unresolved conflict."""
    ALLOW = "allow"
    DENY = "deny"
    MINIMAL = "minimal"

    @property
    def effect(self) -> PetEffect:
        return TIE_BREAK_EFFECTS[self]


TIE_BREAK_EFFECTS = {
    TieBreakChoice.ALLOW: PetEffect.ALLOW,
    TieBreakChoice.DENY: PetEffect.BLOCK,
    TieBreakChoice.MINIMAL: PetEffect.GENERALIZE,
}


def _rank_key(rule: Rule):
    # id last so ranking is stable regardless of input order
    return (-rule.priority, -rule.effect.level, rule.id)


def resolve_conflicts(active_rules: Sequence[Rule]) -> ConflictResult:
    """
    Pick the winning rule among active rules.

    Highest priority wins; ties on priority go to the most protective PET.
    A tie on both is reported as a conflict and never decided here.
    """
    rules = sorted(active_rules, key=_rank_key)

    if not rules:
        return ConflictResult(method=ResolutionMethod.NO_RULES)

    if len(rules) == 1:
        return ConflictResult(
            method=ResolutionMethod.SINGLE_RULE,
            winner=rules[0],
            ranked_rules=tuple(rules)
        )

    top_priority = rules[0].priority
    tied = [rule for rule in rules if rule.priority == top_priority]
    if len(tied) == 1:
        return ConflictResult(
            method=ResolutionMethod.PRIORITY,
            winner=tied[0],
            ranked_rules=tuple(rules)
        )

    top_level = tied[0].effect.level
    strongest = [rule for rule in tied if rule.effect.level == top_level]
    if len(strongest) == 1:
        return ConflictResult(
            method=ResolutionMethod.PET_HIERARCHY,
            winner=strongest[0],
            ranked_rules=tuple(rules)
        )

    logger.info(
        "Unresolved rule conflict",
        priority=top_priority,
        effect=strongest[0].effect.value,
        rule_ids=[rule.id for rule in strongest]
    )
    return ConflictResult(
        method=ResolutionMethod.USER_DECISION_REQUIRED,
        conflict=True,
        conflicting_rules=tuple(strongest),
        ranked_rules=tuple(rules)
    )


def _parse_choice(choice: Union[str, TieBreakChoice]) -> TieBreakChoice:
    if isinstance(choice, TieBreakChoice):
        return choice
    try:
        return TieBreakChoice(str(choice).lower())
    except ValueError:
        raise ValidationError(
            f"Unknown tie-break choice: {choice}",
            details={"choice": choice, "allowed": [c.value for c in TieBreakChoice]}
        )


def resolve_with_choice(result: ConflictResult, choice: Union[str, TieBreakChoice]) -> ConflictResult:
    """
    Settle an unresolved conflict with an explicit user choice.

    The choice is either one of the conflicting rule ids or a tie-break
    value ("allow", "deny", "minimal"). A tie-break value produces a
    transient rule that is never persisted.
    """
    if not result.conflict:
        raise ValidationError("No unresolved conflict to decide", details={"method": result.method.value})

    by_id = {rule.id: rule for rule in result.conflicting_rules}
    if isinstance(choice, str) and choice in by_id:
        winner = by_id[choice]
    else:
        tie_break = _parse_choice(choice)
        base = result.conflicting_rules[0]
        data_types: List[str] = []
        for rule in result.conflicting_rules:
            for data_type in rule.data_types:
                if data_type not in data_types:
                    data_types.append(data_type)
        winner = Rule(
            id=new_rule_id("choice"),
            service_type=base.service_type,
            purpose=base.purpose,
            effect=tie_break.effect,
            priority=base.priority,
            data_types=tuple(data_types),
            label=f"User decision: {tie_break.value}",
            provenance=RuleProvenance(
                mode=GenerationMode.USER_CHOICE,
                selection_id=tie_break.value
            )
        )

    logger.info("Conflict resolved by user choice", winner=winner.id, effect=winner.effect.value)
    return ConflictResult(
        method=ResolutionMethod.USER_CHOICE,
        winner=winner,
        conflict=False,
        conflicting_rules=result.conflicting_rules,
        ranked_rules=result.ranked_rules
    )
