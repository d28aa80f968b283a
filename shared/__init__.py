"""
Shared utilities for the connected-vehicle privacy engine.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request/user correlation
- errors: Canonical error types

Any cross-cutting logic should live here to avoid import cycles. Do not
import from service_* packages into shared/.
"""
