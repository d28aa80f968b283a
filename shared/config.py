"""
Shared configuration management for the connected-vehicle privacy engine.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="PRIVACY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Catalogs (None selects the files bundled with the service)
    questionnaire_file: Optional[str] = Field(default=None)
    policies_file: Optional[str] = Field(default=None)
    domain_config_file: Optional[str] = Field(default=None)

    # Evaluation
    history_limit: int = Field(default=50, ge=1)
    default_tie_break: Optional[str] = Field(default=None)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str

    def __init__(self, service_name: str, **kwargs):
        super().__init__(service_name=service_name, **kwargs)


def get_config(service_name: str, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, **overrides)
