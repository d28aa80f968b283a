"""
Questionnaire catalog: service types, questions and answer templates.
"""

from pathlib import Path
from typing import Dict, Any, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, model_validator, ValidationError as PydanticValidationError

from shared.errors import CatalogError
from shared.logging import get_logger
from ..rules.models import PetEffect, CONTEXT_TYPES


logger = get_logger("privacy.questionnaire")

DEFAULT_QUESTIONNAIRE_FILE = Path(__file__).resolve().parent.parent / "data" / "questionnaire.yaml"


class OptionTemplate(BaseModel):
    """Canned rule template behind one answer option."""

    label: str
    effect: PetEffect
    priority: int = Field(ge=0, le=100)
    contexts: List[Dict[str, Any]] = Field(default_factory=list)
    transforms: List[Dict[str, Any]] = Field(default_factory=list)


class QuestionDefinition(BaseModel):
    """One multiple-choice question of a service questionnaire."""

    id: str
    purpose: str
    question_text: str = ""
    data_types: List[str] = Field(default_factory=list)
    options: Dict[str, OptionTemplate]


class ServiceDefinition(BaseModel):
    """Questionnaire for one service type."""

    name: str
    description: str = ""
    questions: List[QuestionDefinition] = Field(default_factory=list)

    def question(self, question_id: str) -> Optional[QuestionDefinition]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None


class QuestionnaireCatalog(BaseModel):
    """All questionnaires plus the context dimensions they may reference."""

    option_ids: List[str] = Field(default_factory=lambda: ["a", "b", "c", "d"])
    context_types: Dict[str, List[Any]] = Field(default_factory=lambda: dict(CONTEXT_TYPES))
    services: Dict[str, ServiceDefinition] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_templates(self) -> "QuestionnaireCatalog":
        for service_type, service in self.services.items():
            for question in service.questions:
                unknown_options = set(question.options) - set(self.option_ids)
                if unknown_options:
                    raise ValueError(
                        f"Question {question.id} in {service_type} has options outside "
                        f"{self.option_ids}: {sorted(unknown_options)}"
                    )
                for option_id, option in question.options.items():
                    for predicate in option.contexts:
                        dimension = predicate.get("type")
                        if dimension not in self.context_types:
                            raise ValueError(
                                f"Option {question.id}/{option_id} references unsupported "
                                f"context dimension: {dimension}"
                            )
        return self

    def service(self, service_type: str) -> Optional[ServiceDefinition]:
        return self.services.get(service_type)


def load_questionnaire_catalog(path: Optional[Union[str, Path]] = None) -> QuestionnaireCatalog:
    """Load the questionnaire catalog from YAML (bundled file by default)."""
    source = Path(path) if path else DEFAULT_QUESTIONNAIRE_FILE
    try:
        with open(source, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise CatalogError(f"Cannot read questionnaire catalog: {source}", details={"error": str(e)})

    try:
        catalog = QuestionnaireCatalog.model_validate(data)
    except PydanticValidationError as e:
        raise CatalogError(
            f"Invalid questionnaire catalog: {source}",
            details={"errors": e.errors(include_url=False, include_context=False)}
        )

    logger.info(
        "Questionnaire catalog loaded",
        path=str(source),
        service_types=len(catalog.services),
        questions=sum(len(s.questions) for s in catalog.services.values())
    )
    return catalog
