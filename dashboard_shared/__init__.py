"""
Shared utilities for the PBX dashboard gateway.

This package aggregates common building blocks consumed by the gateway
service and its clients:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error kinds, exceptions and responses
- base_service: FastAPI service skeleton (health, metrics, error handlers)
- test_helpers: Appliance stubs and payload factories for tests

Do not import from service_* packages into dashboard_shared/.
"""
