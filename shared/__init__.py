"""
Shared utilities for the OIDC flow SDK.

This package aggregates the ambient building blocks used across the SDK:

- config: SDK configuration via pydantic-settings
- logging: Structured logging with secret redaction
- errors: Canonical error types and responses
- circuit_breaker: Fail-fast protection for identity-provider calls
- test_helpers: Key and token factories for tests
"""
