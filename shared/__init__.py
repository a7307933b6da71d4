"""
Shared utilities for the Profile Access Layer.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- circuit_breaker: Resilient upstream call protection
- base_service: FastAPI app scaffolding (health, metrics, error handlers)

Do not import from service_* packages into shared/.
"""
