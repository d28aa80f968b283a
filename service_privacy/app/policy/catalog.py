"""
Declared service policies, grouped by service type.
"""

from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from shared.errors import CatalogError
from shared.logging import get_logger


logger = get_logger("privacy.policy_catalog")

DEFAULT_POLICIES_FILE = Path(__file__).resolve().parent.parent / "data" / "policies.yaml"


class ServicePolicy(BaseModel):
    """Policy a service has published for one purpose."""

    id: str
    purpose: str
    service: str
    description: str = ""
    requested_data: List[str] = Field(default_factory=list)
    min_accuracy: Optional[int] = None
    retention: Optional[str] = None
    recipient: Optional[str] = None


class ServicePolicyGroup(BaseModel):
    """Policies declared under one service type."""

    name: str
    policies: List[ServicePolicy] = Field(default_factory=list)


class PolicyCatalog(BaseModel):
    """All declared service policies keyed by service type."""

    services: Dict[str, ServicePolicyGroup] = Field(default_factory=dict)

    def policies_for(self, service_type: str) -> List[ServicePolicy]:
        group = self.services.get(service_type)
        return list(group.policies) if group else []

    def find(self, service_type: str, purpose: str) -> Optional[ServicePolicy]:
        """Find the policy declared for (service type, purpose)."""
        for policy in self.policies_for(service_type):
            if policy.purpose == purpose:
                return policy
        return None


def load_policy_catalog(path: Optional[Union[str, Path]] = None) -> PolicyCatalog:
    """Load the policy catalog from YAML (bundled file by default)."""
    source = Path(path) if path else DEFAULT_POLICIES_FILE
    try:
        with open(source, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise CatalogError(f"Cannot read policy catalog: {source}", details={"error": str(e)})

    try:
        catalog = PolicyCatalog.model_validate(data)
    except PydanticValidationError as e:
        raise CatalogError(
            f"Invalid policy catalog: {source}",
            details={"errors": e.errors(include_url=False, include_context=False)}
        )

    logger.info(
        "Policy catalog loaded",
        path=str(source),
        service_types=len(catalog.services),
        policies=sum(len(g.policies) for g in catalog.services.values())
    )
    return catalog
