"""
Shared utilities for the Access Identity services.

This package aggregates common building blocks consumed by all services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- errors: Canonical error types and responses
- base_service: FastAPI service skeleton (health, timing, error handlers)

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into shared/.
"""
