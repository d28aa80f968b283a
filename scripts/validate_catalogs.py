#!/usr/bin/env python3
"""
Catalog validation script for the privacy preference engine.
This script validates the questionnaire, policy and domain catalogs.
"""

import argparse
import sys
from pathlib import Path
from typing import Callable, List, Optional

from shared.errors import PrivacyEngineException
from service_privacy.app.generator.catalog import DEFAULT_QUESTIONNAIRE_FILE, load_questionnaire_catalog
from service_privacy.app.generator.domain import load_domain_config
from service_privacy.app.policy.catalog import DEFAULT_POLICIES_FILE, load_policy_catalog


def validate_questionnaire(path: Path) -> List[str]:
    """Validate a questionnaire catalog and its answer templates."""
    errors = []
    catalog = load_questionnaire_catalog(path)

    for service_type, service in catalog.services.items():
        if not service.questions:
            errors.append(f"{service_type}: no questions defined")
        seen = set()
        for question in service.questions:
            if question.id in seen:
                errors.append(f"{service_type}: duplicate question id {question.id}")
            seen.add(question.id)
            missing = [o for o in catalog.option_ids if o not in question.options]
            if missing:
                errors.append(f"{service_type}/{question.id}: missing options {missing}")
            if not question.data_types:
                errors.append(f"{service_type}/{question.id}: no data types")

    return errors


def validate_policies(path: Path, questionnaire_path: Optional[Path] = None) -> List[str]:
    """Validate the policy catalog against the questionnaire purposes."""
    errors = []
    catalog = load_policy_catalog(path)
    questionnaire = load_questionnaire_catalog(questionnaire_path)

    seen = set()
    for service_type, group in catalog.services.items():
        for policy in group.policies:
            if policy.id in seen:
                errors.append(f"{service_type}: duplicate policy id {policy.id}")
            seen.add(policy.id)

        service = questionnaire.service(service_type)
        if service is None:
            errors.append(f"{service_type}: no questionnaire for this service type")
            continue
        for question in service.questions:
            if catalog.find(service_type, question.purpose) is None:
                errors.append(f"{service_type}/{question.id}: no policy declared for purpose '{question.purpose}'")

    return errors


def validate_domain(path: Path) -> List[str]:
    """Validate a domain configuration's cross references."""
    errors = []
    config = load_domain_config(path)

    known = set(config.data_type_ids)
    for purpose in config.purposes:
        unknown = [d for d in purpose.data_types if d not in known]
        if unknown:
            errors.append(f"purpose {purpose.id}: unknown data types {unknown}")
    if not config.privacy_actions:
        errors.append("no privacy actions defined")
    for situation in config.situations:
        if not situation.predicates:
            errors.append(f"situation {situation.id}: no context predicates")

    return errors


def run_check(label: str, check: Callable[[], List[str]]) -> int:
    try:
        errors = check()
    except PrivacyEngineException as e:
        errors = [f"{e.message}: {e.details}"]

    if errors:
        print(f"❌ {label}: {len(errors)} validation errors")
        for error in errors:
            print(f"   - {error}")
    else:
        print(f"✅ {label}: catalog is valid")
    return len(errors)


def main(argv: Optional[List[str]] = None) -> int:
    """Main function to validate all catalogs."""
    parser = argparse.ArgumentParser(description="Validate privacy engine catalogs")
    parser.add_argument("--questionnaire", type=Path, default=DEFAULT_QUESTIONNAIRE_FILE)
    parser.add_argument("--policies", type=Path, default=DEFAULT_POLICIES_FILE)
    parser.add_argument("--domain", type=Path, action="append", default=[],
                        help="Domain configuration file (repeatable)")
    args = parser.parse_args(argv)

    print("Validating catalogs...")

    total_errors = run_check(args.questionnaire.name, lambda: validate_questionnaire(args.questionnaire))
    total_errors += run_check(args.policies.name, lambda: validate_policies(args.policies, args.questionnaire))
    for domain_file in args.domain:
        total_errors += run_check(domain_file.name, lambda path=domain_file: validate_domain(path))

    print(f"\nValidation complete: {total_errors} total errors")

    if total_errors == 0:
        print("All catalogs are valid!")
        return 0
    else:
        print("Some catalogs have validation errors")
        return 1


if __name__ == "__main__":
    sys.exit(main())
