"""
Administrator-supplied domain configuration.

A domain configuration declares data types, situations (named context
presets), privacy actions (named PET effects) and purposes. Both naming
schemes seen in uploaded files are accepted: ``situations``/``contexts``
and ``purposes``/``services``, in snake_case or camelCase.
"""

from pathlib import Path
from typing import Dict, Any, List, Mapping, Optional, Union

import yaml
from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator,
    ValidationError as PydanticValidationError
)

from shared.errors import CatalogError
from shared.logging import get_logger
from ..rules.models import PetEffect


logger = get_logger("privacy.domain_config")

PRIVACY_LEVEL_OPTIONS = [
    {"id": "high", "name": "Maximum Privacy"},
    {"id": "medium", "name": "Balanced Privacy & Features"},
    {"id": "low", "name": "Maximum Features"},
]


class DomainModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class DataTypeDefinition(DomainModel):
    id: str
    name: str = ""
    category: str = ""

    @model_validator(mode="before")
    @classmethod
    def accept_plain_id(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"id": data, "name": data}
        return data


class Situation(DomainModel):
    """Named context preset, e.g. near_home -> homeDistance allowed [Near]."""

    id: str
    name: str = ""
    description: str = ""
    predicates: List[Dict[str, Any]] = Field(
        default_factory=list,
        validation_alias=AliasChoices("predicates", "context", "contexts", "conditions")
    )

    @field_validator("predicates", mode="before")
    @classmethod
    def normalize_predicates(cls, value: Any) -> Any:
        # {dimension: {allowed: [...]}} or {dimension: scalar} -> list form
        if isinstance(value, Mapping):
            predicates = []
            for dimension, shape in value.items():
                if isinstance(shape, Mapping):
                    predicates.append({"type": dimension, **shape})
                elif isinstance(shape, (list, tuple)):
                    predicates.append({"type": dimension, "allowed": list(shape)})
                else:
                    predicates.append({"type": dimension, "value": shape})
            return predicates
        return value


class PrivacyAction(DomainModel):
    id: str
    name: str = ""
    description: str = ""
    pet: PetEffect = Field(validation_alias=AliasChoices("pet", "effect", "petEffect"))


class Purpose(DomainModel):
    id: str
    name: str = ""
    data_types: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("data_types", "dataTypes")
    )

    @property
    def display_name(self) -> str:
        return self.name or self.id


class RetentionPeriod(DomainModel):
    id: str
    name: str = ""
    description: str = ""


class DomainConfig(DomainModel):
    domain: str
    data_types: List[DataTypeDefinition] = Field(
        validation_alias=AliasChoices("data_types", "dataTypes")
    )
    situations: List[Situation] = Field(
        validation_alias=AliasChoices("situations", "contexts")
    )
    privacy_actions: List[PrivacyAction] = Field(
        default_factory=list,
        validation_alias=AliasChoices("privacy_actions", "privacyActions", "actions")
    )
    purposes: List[Purpose] = Field(
        validation_alias=AliasChoices("purposes", "services")
    )
    retention_periods: List[RetentionPeriod] = Field(
        default_factory=list,
        validation_alias=AliasChoices("retention_periods", "retentionPeriods")
    )

    def situation(self, situation_id: str) -> Optional[Situation]:
        return next((s for s in self.situations if s.id == situation_id), None)

    def action(self, action_id: str) -> Optional[PrivacyAction]:
        return next((a for a in self.privacy_actions if a.id == action_id), None)

    def purpose(self, purpose_id: str) -> Optional[Purpose]:
        return next((p for p in self.purposes if p.id == purpose_id), None)

    @property
    def data_type_ids(self) -> List[str]:
        return [d.id for d in self.data_types]

    def metadata(self) -> Dict[str, Any]:
        """Projection used to build preference forms."""
        if self.retention_periods:
            retention = [r.model_dump() for r in self.retention_periods]
        else:
            retention = [
                {"id": a.id, "name": a.name, "description": a.description}
                for a in self.privacy_actions
            ]
        return {
            "domain": self.domain,
            "data_types": [d.model_dump() for d in self.data_types],
            "retention_options": retention,
            "privacy_levels": [dict(level) for level in PRIVACY_LEVEL_OPTIONS],
        }


def load_domain_config(source: Union[str, Path, Mapping[str, Any]]) -> DomainConfig:
    """Load a domain configuration from a YAML/JSON file path or a mapping."""
    if isinstance(source, Mapping):
        data = dict(source)
        origin = "<mapping>"
    else:
        origin = str(source)
        try:
            with open(source, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise CatalogError(f"Cannot read domain configuration: {origin}", details={"error": str(e)})

    try:
        config = DomainConfig.model_validate(data)
    except PydanticValidationError as e:
        raise CatalogError(
            f"Invalid domain configuration: {origin}",
            details={"errors": e.errors(include_url=False, include_context=False)}
        )

    logger.info(
        "Domain configuration loaded",
        source=origin,
        domain=config.domain,
        data_types=len(config.data_types),
        situations=len(config.situations),
        purposes=len(config.purposes)
    )
    return config
