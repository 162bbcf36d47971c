"""
Signature verification strategies, selected by configuration.
"""

import textwrap
from abc import ABC, abstractmethod
from typing import Any, Dict

from jose import jwk
from jose.exceptions import JOSEError

from shared.config import SdkConfig
from shared.errors import SignatureVerificationError
from shared.logging import get_logger
from oidc_flow.jwks.client import JWKSClient
from .parser import Token


ALGO_HS256 = "HS256"
ALGO_RS256 = "RS256"


class SignatureVerifier(ABC):
    """Verifies a parsed token against a single, fixed algorithm.

    The token header never selects the strategy: a header ``alg`` other than
    :attr:`algorithm` is rejected before any key lookup.
    """

    algorithm: str = ""

    def __init__(self) -> None:
        self.logger = get_logger("oidc.signature")

    def verify(self, token: Token) -> Token:
        """Return ``token`` unchanged if its signature is valid."""
        if token.algorithm != self.algorithm:
            self.logger.warning(
                "Token signed with unexpected algorithm",
                expected=self.algorithm,
                actual=token.algorithm
            )
            raise SignatureVerificationError(
                f"Signature algorithm '{token.algorithm}' is not supported; expected '{self.algorithm}'",
                details={"expected": self.algorithm, "actual": token.algorithm}
            )

        if not self._check_signature(token):
            raise SignatureVerificationError("Invalid token signature")

        return token

    @abstractmethod
    def _check_signature(self, token: Token) -> bool:
        ...


class SymmetricVerifier(SignatureVerifier):
    """HS256 with the client secret."""

    algorithm = ALGO_HS256

    def __init__(self, client_secret: str) -> None:
        super().__init__()
        if not client_secret:
            raise SignatureVerificationError("HS256 verification requires a client secret")
        self._key = jwk.construct(client_secret, algorithm=ALGO_HS256)

    def _check_signature(self, token: Token) -> bool:
        return self._key.verify(token.signing_input, token.signature)


class AsymmetricVerifier(SignatureVerifier):
    """RS256 with keys published by the configured issuer."""

    algorithm = ALGO_RS256

    def __init__(self, jwks_client: JWKSClient, issuer: str) -> None:
        super().__init__()
        self.jwks_client = jwks_client
        self.issuer = issuer

    def _check_signature(self, token: Token) -> bool:
        kid = token.key_id
        if kid is None:
            raise SignatureVerificationError("Token header is missing the 'kid' parameter")

        # Keys come from the configured issuer only; the unverified 'iss'
        # claim is checked after the signature.
        key_data = self.jwks_client.get_key(self.issuer, kid)

        try:
            key = jwk.construct(_key_material(key_data), algorithm=ALGO_RS256)
            return key.verify(token.signing_input, token.signature)
        except (JOSEError, ValueError, TypeError) as exc:
            self.logger.warning("Unusable signing key", kid=kid, error=type(exc).__name__)
            raise SignatureVerificationError(
                "Signing key could not be used for RS256 verification",
                details={"kid": kid}
            ) from exc


def _key_material(key_data: Dict[str, Any]) -> Any:
    """JWK dict when it carries RSA parameters, else a PEM certificate from ``x5c``."""
    if key_data.get("n") and key_data.get("e"):
        return {k: v for k, v in key_data.items() if k != "x5c"}

    cert = key_data["x5c"][0]
    body = "\n".join(textwrap.wrap(cert, 64))
    return f"-----BEGIN CERTIFICATE-----\n{body}\n-----END CERTIFICATE-----\n"


def build_signature_verifier(config: SdkConfig, jwks_client: JWKSClient) -> SignatureVerifier:
    """Pick the verifier variant from ``config.token_algorithm``."""
    if config.token_algorithm == ALGO_HS256:
        return SymmetricVerifier(config.client_secret)
    return AsymmetricVerifier(jwks_client, config.issuer)
