"""
Shared utilities for the ability authorization service.

This package aggregates common building blocks consumed by the service,
its CLI and its tests:

- config: Service configuration via pydantic-settings
- logging: Structured logging with correlation context
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI service scaffold (middleware, health, errors)

Do not import from service_abilities into shared/.
"""
