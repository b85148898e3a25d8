"""
Shared utilities for the Chain RPC Gateway.

This package aggregates common building blocks consumed by the gateway
service and its operator scripts:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators for upstream calls
- circuit_breaker: Resilient external call protection
- base_service: FastAPI application scaffolding

Any cross-cutting logic should live here to avoid import cycles with the
service package. Do not import from service_* packages into shared/.
"""
