"""
Shared fixtures for the OIDC flow SDK test suite.
"""

import pytest

from shared.circuit_breaker import circuit_breaker_manager
from shared.config import SdkConfig
from shared.test_helpers import TEST_JWKS_URI, MockTokenGenerator, StubTransport, test_environment


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Breakers are process-global; start every test with none."""
    circuit_breaker_manager.circuit_breakers.clear()
    yield
    circuit_breaker_manager.circuit_breakers.clear()


@pytest.fixture(scope="session")
def token_generator():
    """Token generator with one RSA signing key for the whole run."""
    return MockTokenGenerator()


@pytest.fixture
def config():
    """Default RS256 configuration for the test tenant."""
    return SdkConfig(**test_environment.get_mock_config())


@pytest.fixture
def transport(token_generator):
    """Stub transport already serving the tenant's key set."""
    stub = StubTransport()
    stub.add("GET", TEST_JWKS_URI, body=token_generator.jwks())
    return stub
