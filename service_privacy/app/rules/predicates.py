"""
Context predicate evaluation.
"""

import re
from typing import Any, Iterable, Mapping, Optional

from .models import ContextPredicate, PredicateResult


_MAGNITUDE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(m|km)?\s*$", re.IGNORECASE)


def strict_equals(left: Any, right: Any) -> bool:
    """Equality that never treats booleans as numbers (True != 1)."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    return left == right


def _is_member(candidate: Any, values: Iterable[Any]) -> bool:
    return any(strict_equals(candidate, value) for value in values)


def parse_magnitude(value: Any) -> Optional[float]:
    """
    Parse a distance-like value into metres.

    Accepts plain numbers and strings such as "100", "100m" or "1.5km".
    Returns None when the value cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _MAGNITUDE_PATTERN.match(value)
        if match:
            number = float(match.group(1))
            unit = (match.group(2) or "m").lower()
            return number * 1000 if unit == "km" else number
    return None


def _format(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def evaluate_predicate(predicate: ContextPredicate, context: Mapping[str, Any]) -> PredicateResult:
    """Evaluate one predicate against a context snapshot."""
    dimension = predicate.dimension
    current = context.get(dimension)

    def result(satisfied: bool, reason: str) -> PredicateResult:
        return PredicateResult(dimension=dimension, satisfied=satisfied, reason=reason)

    if predicate.denied and current is not None and _is_member(current, predicate.denied):
        return result(False, f"{dimension} is {_format(current)} (denied)")

    if predicate.allowed and (current is None or not _is_member(current, predicate.allowed)):
        if current is None:
            return result(False, f"{dimension} is not set (allowed: {', '.join(map(_format, predicate.allowed))})")
        return result(False, f"{dimension} is {_format(current)} (not in allowed list)")

    if predicate.value is not None and not strict_equals(current, predicate.value):
        return result(False, f"{dimension} is {_format(current)} (required: {_format(predicate.value)})")

    # Unparseable magnitudes fail closed
    if predicate.minimum is not None:
        bound = parse_magnitude(predicate.minimum)
        magnitude = parse_magnitude(current)
        if bound is None or magnitude is None:
            return result(False, f"{dimension} cannot be compared with minimum {_format(predicate.minimum)}")
        if magnitude < bound:
            return result(False, f"{dimension} is {_format(magnitude)}m (minimum: {_format(bound)}m)")

    if predicate.maximum is not None:
        bound = parse_magnitude(predicate.maximum)
        magnitude = parse_magnitude(current)
        if bound is None or magnitude is None:
            return result(False, f"{dimension} cannot be compared with maximum {_format(predicate.maximum)}")
        if magnitude > bound:
            return result(False, f"{dimension} is {_format(magnitude)}m (maximum: {_format(bound)}m)")

    return result(True, f"{dimension} condition satisfied")
