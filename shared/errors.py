"""
Shared error handling for the connected-vehicle privacy engine.
"""

from typing import Dict, Any, Optional


class PrivacyEngineException(Exception):
    """Base exception for privacy engine components."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(PrivacyEngineException):
    """Unknown ids, unsupported context dimensions or malformed rule data."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class CatalogError(PrivacyEngineException):
    """Questionnaire, policy or domain catalog could not be loaded."""

    def __init__(self, message: str = "Catalog error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CATALOG_ERROR", message, details)


class StoreError(PrivacyEngineException):
    """Rule store or history log failure."""

    def __init__(self, message: str = "Store error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_ERROR", message, details)
