"""
XPref XML projection of rules.

The XML is a display/audit form only; it is derived from Rule fields and
never read back by the evaluation path.
"""

import re
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Sequence

from shared.errors import ValidationError
from ..rules.models import Rule, PetEffect, ContextPredicate
from ..rules.predicates import parse_magnitude


P3P_NAMESPACE = "http://www.w3.org/2002/01/P3Pv1"

_BEHAVIORS = {
    PetEffect.ALLOW: "request",
    PetEffect.BLOCK: "block",
}


def behavior_for(effect: PetEffect) -> str:
    """ALLOW -> request, BLOCK -> block, every transforming effect -> limited."""
    return _BEHAVIORS.get(effect, "limited")


def _attribute_name(dimension: str) -> str:
    # timeOfDay -> time-of-day
    return re.sub(r"(?<!^)(?=[A-Z])", "-", dimension).lower()


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def _context_condition(predicate: ContextPredicate) -> Optional[str]:
    attribute = "@" + _attribute_name(predicate.dimension)
    parts = []
    if predicate.denied:
        parts.extend(f"not({attribute}='{_literal(v)}')" for v in predicate.denied)
    if predicate.allowed:
        parts.append("(" + " or ".join(f"{attribute}='{_literal(v)}'" for v in predicate.allowed) + ")")
    if predicate.value is not None:
        parts.append(f"{attribute}='{_literal(predicate.value)}'")
    if predicate.minimum is not None:
        bound = parse_magnitude(predicate.minimum)
        parts.append(f"{attribute} >= {_literal(bound if bound is not None else predicate.minimum)}")
    if predicate.maximum is not None:
        bound = parse_magnitude(predicate.maximum)
        parts.append(f"{attribute} <= {_literal(bound if bound is not None else predicate.maximum)}")
    return " and ".join(parts) if parts else None


def build_xpath_condition(rule: Rule) -> str:
    """XPath over a P3P policy selecting the statements this rule governs."""
    conditions = []
    if rule.purpose:
        slug = re.sub(r"\s+", "-", rule.purpose.strip().lower())
        conditions.append(f"PURPOSE/*[name(.) = '{slug}']")

    for predicate in rule.contexts:
        condition = _context_condition(predicate)
        if condition:
            conditions.append(condition)

    if rule.data_types:
        data = " or ".join(f"DATA-GROUP/DATA[@ref='#{d}']" for d in rule.data_types)
        conditions.append(f"({data})")

    xpath = "/POLICY/STATEMENT"
    if conditions:
        xpath += "[" + " and ".join(conditions) + "]"
    return xpath


def _text(parent: ET.Element, tag: str, text: Any) -> ET.Element:
    element = ET.SubElement(parent, tag)
    element.text = _literal(text)
    return element


def _rule_element(rule: Rule) -> ET.Element:
    element = ET.Element("RULE", {
        "id": rule.id,
        "behavior": behavior_for(rule.effect),
        "condition": build_xpath_condition(rule),
        "description": rule.label,
    })

    meta = ET.SubElement(element, "META")
    _text(meta, "PRIORITY", rule.priority)
    _text(meta, "EFFECT", rule.effect.value)
    _text(meta, "PURPOSE", rule.purpose)
    _text(meta, "SERVICE-TYPE", rule.service_type)
    _text(meta, "CREATED", rule.created_at.isoformat())
    if rule.provenance.retention:
        _text(meta, "RETENTION", rule.provenance.retention)

    data_types = ET.SubElement(element, "DATA-TYPES")
    for data_type in rule.data_types:
        _text(data_types, "DATA-TYPE", data_type)

    context = ET.SubElement(element, "CONTEXT")
    for predicate in rule.contexts:
        attributes = {"type": predicate.dimension}
        for key in ("allowed", "denied"):
            values = getattr(predicate, key)
            if values:
                attributes[key] = ",".join(_literal(v) for v in values)
        for key in ("value", "minimum", "maximum"):
            value = getattr(predicate, key)
            if value is not None:
                attributes[key] = _literal(value)
        ET.SubElement(context, "CONDITION", attributes)

    transforms = ET.SubElement(element, "TRANSFORMS")
    for transform in rule.transforms:
        attributes = {"type": transform.type}
        for key, value in transform.params.items():
            if isinstance(value, (list, tuple)):
                attributes[key] = ",".join(_literal(v) for v in value)
            else:
                attributes[key] = _literal(value)
        ET.SubElement(transforms, "TRANSFORM", attributes)

    return element


def _serialize(element: ET.Element) -> str:
    ET.indent(element, space="  ")
    return ET.tostring(element, encoding="unicode")


def build_rule_xml(rule: Rule) -> str:
    return _serialize(_rule_element(rule))


def build_ruleset_xml(service_type: str, service_name: str, rules: Sequence[Rule],
                      created: Optional[datetime] = None) -> str:
    """Complete XPref RULESET document for one service."""
    created = created or datetime.now(timezone.utc)
    root = ET.Element("RULESET", {
        "xmlns": P3P_NAMESPACE,
        "service-type": service_type,
        "service-name": service_name,
        "version": "1.0",
        "created": created.isoformat(),
    })
    description = ET.SubElement(root, "DESCRIPTION")
    description.text = f"XPref privacy preferences for {service_name}"
    for rule in rules:
        root.append(_rule_element(rule))
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + _serialize(root)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, tag: str) -> Optional[str]:
    for child in element.iter():
        if _local(child.tag) == tag:
            return child.text
    return None


def parse_ruleset_xml(xml: str) -> List[Dict[str, Any]]:
    """Read rule summaries (id, behavior, purpose, effect, priority, ...) from a RULESET."""
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        raise ValidationError("Malformed XPref document", details={"error": str(e)})

    rules = []
    for element in root.iter():
        if _local(element.tag) != "RULE":
            continue
        priority = _child_text(element, "PRIORITY")
        rules.append({
            "id": element.get("id"),
            "behavior": element.get("behavior"),
            "condition": element.get("condition"),
            "description": element.get("description"),
            "priority": int(priority) if priority and priority.isdigit() else None,
            "effect": _child_text(element, "EFFECT"),
            "purpose": _child_text(element, "PURPOSE"),
            "service_type": _child_text(element, "SERVICE-TYPE"),
            "data_types": [
                child.text for child in element.iter() if _local(child.tag) == "DATA-TYPE"
            ],
        })
    return rules
