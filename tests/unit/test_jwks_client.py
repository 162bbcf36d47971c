"""
Unit tests for JWKSClient.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from oidc_flow.cache import MemoryCache
from oidc_flow.jwks import JWKSClient
from shared.errors import ApiResponseError, KeyNotFoundError, NetworkError, SignatureVerificationError
from shared.test_helpers import TEST_ISSUER, TEST_JWKS_URI, SigningKey, StubTransport


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestJWKSClient:
    """Test cases for JWKSClient."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def signing_key(self, token_generator):
        return token_generator.signing_key

    @pytest.fixture
    def jwks_client(self, transport, clock):
        return JWKSClient(transport, cache=MemoryCache(clock=clock), cache_ttl=60)

    def test_fetch_keys(self, jwks_client, signing_key):
        """Test key set retrieval keyed by kid."""
        keys = jwks_client.fetch_keys(TEST_ISSUER)

        assert list(keys) == [signing_key.kid]
        assert keys[signing_key.kid]["kty"] == "RSA"

    def test_fetch_keys_filtered_by_kid(self, jwks_client, signing_key):
        keys = jwks_client.fetch_keys(TEST_ISSUER, signing_key.kid)

        assert keys == {signing_key.kid: signing_key.jwk()}

    def test_cache_hit_within_ttl(self, jwks_client, transport, clock, signing_key):
        """Test that the key set is fetched once within the TTL."""
        jwks_client.get_key(TEST_ISSUER, signing_key.kid)
        clock.now += 59
        jwks_client.get_key(TEST_ISSUER, signing_key.kid)

        assert len(transport.calls("GET", TEST_JWKS_URI)) == 1

    def test_refetch_after_expiry(self, jwks_client, transport, clock, signing_key):
        """Test exactly one fetch after the cache entry expires."""
        jwks_client.get_key(TEST_ISSUER, signing_key.kid)
        clock.now += 61
        jwks_client.get_key(TEST_ISSUER, signing_key.kid)
        jwks_client.get_key(TEST_ISSUER, signing_key.kid)

        assert len(transport.calls("GET", TEST_JWKS_URI)) == 2

    def test_unknown_kid_refetches_once(self, jwks_client, transport):
        """Test that a kid missing from the cached set triggers one refetch."""
        jwks_client.fetch_keys(TEST_ISSUER)

        with pytest.raises(KeyNotFoundError) as exc_info:
            jwks_client.get_key(TEST_ISSUER, "rotated-key")

        assert exc_info.value.kid == "rotated-key"
        assert exc_info.value.code == "KEY_NOT_FOUND"
        assert isinstance(exc_info.value, SignatureVerificationError)
        assert len(transport.calls("GET", TEST_JWKS_URI)) == 2

    def test_rotated_key_is_picked_up(self, jwks_client, transport, signing_key):
        jwks_client.fetch_keys(TEST_ISSUER)

        rotated = SigningKey(kid="rotated-key")
        transport.add("GET", TEST_JWKS_URI, body={"keys": [signing_key.jwk(), rotated.jwk()]})

        key = jwks_client.get_key(TEST_ISSUER, "rotated-key")

        assert key["kid"] == "rotated-key"
        assert len(transport.calls("GET", TEST_JWKS_URI)) == 2

    def test_network_error_propagates(self, clock):
        """Network failures are not reported as a missing key."""
        transport = StubTransport()
        transport.add_error("GET", TEST_JWKS_URI)
        jwks_client = JWKSClient(transport, cache=MemoryCache(clock=clock))

        with pytest.raises(NetworkError) as exc_info:
            jwks_client.get_key(TEST_ISSUER, "any")

        assert not isinstance(exc_info.value, KeyNotFoundError)

    @pytest.mark.parametrize("status_code,body", [
        (200, "not json"),
        (200, {"no_keys": []}),
        (200, {"keys": "nope"}),
        (500, {"error": "server_error"}),
    ])
    def test_invalid_responses(self, clock, status_code, body):
        transport = StubTransport()
        transport.add("GET", TEST_JWKS_URI, status_code=status_code, body=body)
        jwks_client = JWKSClient(transport, cache=MemoryCache(clock=clock))

        with pytest.raises(ApiResponseError):
            jwks_client.fetch_keys(TEST_ISSUER)

    def test_unusable_keys_are_dropped(self, clock, signing_key):
        """Keys need a kid, a signing use and RSA parameters or a certificate."""
        transport = StubTransport()
        good = signing_key.jwk()
        no_kid = {k: v for k, v in good.items() if k != "kid"}
        encryption = {**good, "kid": "enc-key", "use": "enc"}
        no_material = {"kty": "RSA", "kid": "empty-key"}
        certificate = SigningKey(kid="cert-key").jwk(x5c=True)
        transport.add("GET", TEST_JWKS_URI, body={"keys": [good, no_kid, encryption, no_material, certificate, "junk"]})

        keys = JWKSClient(transport, cache=MemoryCache(clock=clock)).fetch_keys(TEST_ISSUER)

        assert sorted(keys) == sorted([signing_key.kid, "cert-key"])

    def test_configured_jwks_uri(self, clock, token_generator):
        custom_uri = "https://keys.example.com/jwks"
        transport = StubTransport()
        transport.add("GET", custom_uri, body=token_generator.jwks())
        jwks_client = JWKSClient(transport, cache=MemoryCache(clock=clock), jwks_uri=custom_uri)

        jwks_client.fetch_keys(TEST_ISSUER)

        assert jwks_client.jwks_uri_for(TEST_ISSUER) == custom_uri
        assert len(transport.calls("GET", custom_uri)) == 1

    def test_jwks_uri_from_issuer(self, jwks_client):
        assert jwks_client.jwks_uri_for("https://tenant.example.com/") == TEST_JWKS_URI
        assert jwks_client.jwks_uri_for("https://tenant.example.com") == TEST_JWKS_URI

    def test_clear_cache(self, jwks_client, transport):
        jwks_client.fetch_keys(TEST_ISSUER)
        jwks_client.clear_cache(TEST_ISSUER)
        jwks_client.fetch_keys(TEST_ISSUER)

        assert len(transport.calls("GET", TEST_JWKS_URI)) == 2

    def test_concurrent_cold_fetch_is_serialized(self, clock, signing_key):
        """Threads racing on a cold cache share one fetch and see the whole key set."""
        second = SigningKey(kid="second-key")
        body = {"keys": [signing_key.jwk(), second.jwk()]}

        def slow_responder(request):
            time.sleep(0.05)
            return 200, body

        transport = StubTransport()
        transport.add_responder("GET", TEST_JWKS_URI, slow_responder)
        jwks_client = JWKSClient(transport, cache=MemoryCache(clock=clock))
        barrier = threading.Barrier(8)

        def fetch():
            barrier.wait()
            return jwks_client.fetch_keys(TEST_ISSUER)

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = [f.result() for f in [executor.submit(fetch) for _ in range(8)]]

        assert len(transport.calls("GET", TEST_JWKS_URI)) == 1
        for keys in results:
            assert sorted(keys) == sorted([signing_key.kid, "second-key"])
