"""
JWKS client for the identity provider's published signing keys.
"""

import threading
from typing import Any, Dict, Optional

from shared.errors import ApiResponseError, KeyNotFoundError
from shared.logging import get_logger
from oidc_flow.cache.memory import KeySetCache, MemoryCache
from oidc_flow.transport.http import Transport, default_headers


WELL_KNOWN_JWKS_PATH = ".well-known/jwks.json"


class JWKSClient:
    """Fetches and caches key sets, keyed by issuer.

    A cache entry is a ``{kid: jwk}`` mapping and is replaced as a whole on
    refresh. Refreshes for one issuer are serialized; other issuers and
    cache readers are not blocked.
    """

    def __init__(
        self,
        transport: Transport,
        cache: Optional[KeySetCache] = None,
        cache_ttl: int = 60,
        jwks_uri: Optional[str] = None,
    ):
        self.transport = transport
        self.cache: KeySetCache = cache if cache is not None else MemoryCache()
        self.cache_ttl = cache_ttl
        self.jwks_uri = jwks_uri
        self.logger = get_logger("oidc.jwks")

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def jwks_uri_for(self, issuer: str) -> str:
        """Key-set endpoint for ``issuer``; a configured URI takes precedence."""
        if self.jwks_uri:
            return self.jwks_uri
        return issuer.rstrip("/") + "/" + WELL_KNOWN_JWKS_PATH

    def fetch_keys(self, issuer: str, kid: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        """Return the signing keys for ``issuer``, optionally only ``kid``.

        Raises ``KeyNotFoundError`` when the key set was obtained but holds
        no key with the requested id. Network failures propagate unchanged.
        """
        uri = self.jwks_uri_for(issuer)

        keys = self.cache.get(uri)
        if keys is None or (kid is not None and kid not in keys):
            keys = self._refresh(uri, stale=keys)

        if kid is None:
            return dict(keys)

        if kid not in keys:
            self.logger.warning("Key not found", kid=kid, jwks_uri=uri)
            raise KeyNotFoundError(kid)

        return {kid: keys[kid]}

    def get_key(self, issuer: str, kid: str) -> Dict[str, Any]:
        """Return the single JWK for ``kid``."""
        return self.fetch_keys(issuer, kid)[kid]

    def clear_cache(self, issuer: Optional[str] = None) -> None:
        """Clear the cached key set for one issuer, or the configured URI."""
        if issuer is None and self.jwks_uri is None:
            if isinstance(self.cache, MemoryCache):
                self.cache.clear()
            return

        uri = self.jwks_uri_for(issuer or "")
        self.cache.delete(uri)
        self.logger.info("JWKS cache cleared", jwks_uri=uri)

    def _lock_for(self, uri: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(uri)
            if lock is None:
                lock = self._locks[uri] = threading.Lock()
            return lock

    def _refresh(self, uri: str, stale: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        with self._lock_for(uri):
            # Another request may have refreshed while we waited.
            current = self.cache.get(uri)
            if current is not None and current != stale:
                return current

            keys = self._fetch(uri)
            self.cache.set(uri, keys, self.cache_ttl)
            return keys

    def _fetch(self, uri: str) -> Dict[str, Dict[str, Any]]:
        response = self.transport.send("GET", uri, headers=default_headers())
        if not response.ok:
            raise ApiResponseError(
                "Key set endpoint returned an error",
                details={"status_code": response.status_code, "jwks_uri": uri}
            )

        payload = response.json()
        if not isinstance(payload, dict) or not isinstance(payload.get("keys"), list):
            raise ApiResponseError("JWKS response missing 'keys' array", details={"jwks_uri": uri})

        keys: Dict[str, Dict[str, Any]] = {}
        for key in payload["keys"]:
            if not isinstance(key, dict):
                continue
            key_id = key.get("kid")
            if not isinstance(key_id, str) or not key_id:
                continue
            if key.get("use") not in (None, "sig"):
                continue
            if not _has_key_material(key):
                continue
            keys[key_id] = key

        self.logger.info("JWKS refreshed successfully", jwks_uri=uri, keys_count=len(keys))
        return keys


def _has_key_material(key: Dict[str, Any]) -> bool:
    if key.get("n") and key.get("e"):
        return True
    x5c = key.get("x5c")
    return isinstance(x5c, list) and bool(x5c) and isinstance(x5c[0], str)
