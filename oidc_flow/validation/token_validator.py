"""
Token verification pipeline: parse, verify the signature, then validate claims.
"""

from typing import Iterable, List, Optional

from shared.config import SdkConfig
from shared.errors import SdkException
from shared.logging import get_logger
from oidc_flow.tokens.parser import TokenType, VerifiedClaims, parse
from oidc_flow.tokens.signature import SignatureVerifier
from .claims import ClaimValidator


BACKCHANNEL_LOGOUT_EVENT = "http://schemas.openid.net/event/backchannel-logout"


class TokenValidator:
    """Verifies raw tokens against the configured tenant.

    Claims are only inspected once the signature has been verified, so the
    issuer in an unverified token never influences which key is used.
    """

    def __init__(self, config: SdkConfig, verifier: SignatureVerifier):
        self.config = config
        self.verifier = verifier
        self.logger = get_logger("oidc.validator")

    def validate(
        self,
        raw: str,
        token_type: TokenType = TokenType.ID_TOKEN,
        *,
        audience: Optional[Iterable[str]] = None,
        organization: Optional[Iterable[str]] = None,
        nonce: Optional[str] = None,
        max_age: Optional[int] = None,
        leeway: Optional[int] = None,
        now: Optional[int] = None,
    ) -> VerifiedClaims:
        """Return the verified claims of ``raw`` or raise an ``SdkException``.

        ``audience``, ``organization`` and ``leeway`` default to the configured
        values. ``nonce`` and ``max_age`` are only checked when given.
        """
        try:
            token = self.verifier.verify(parse(raw))

            validator = ClaimValidator(token.claims)
            leeway = self.config.token_leeway if leeway is None else leeway

            if token_type is TokenType.ID_TOKEN:
                self._validate_id_token(validator, audience, organization, nonce, max_age, leeway, now)
            elif token_type is TokenType.ACCESS_TOKEN:
                self._validate_access_token(validator, audience, leeway, now)
            else:
                self._validate_logout_token(validator, audience, leeway, now)
        except SdkException as e:
            self.logger.warning(
                "Token verification failed",
                token_type=token_type.value,
                error_code=e.code,
                error=e.message
            )
            raise

        self.logger.debug("Token verified", token_type=token_type.value, kid=token.key_id)
        return VerifiedClaims(token=token, token_type=token_type)

    def _audience(self, audience: Optional[Iterable[str]]) -> List[str]:
        return list(audience) if audience is not None else self.config.token_audience

    def _validate_id_token(
        self,
        validator: ClaimValidator,
        audience: Optional[Iterable[str]],
        organization: Optional[Iterable[str]],
        nonce: Optional[str],
        max_age: Optional[int],
        leeway: int,
        now: Optional[int],
    ) -> None:
        expected_audience = self._audience(audience)

        validator.issuer(self.config.issuers)
        validator.subject()
        validator.audience(expected_audience)
        validator.expiration(leeway, now)
        validator.issued()
        validator.authorized_party(expected_audience)

        if nonce is not None:
            validator.nonce(nonce)

        if max_age is not None:
            validator.auth_time(max_age, leeway, now)

        organization = list(organization) if organization is not None else self.config.organization
        if organization:
            validator.organization(organization)

    def _validate_access_token(
        self,
        validator: ClaimValidator,
        audience: Optional[Iterable[str]],
        leeway: int,
        now: Optional[int],
    ) -> None:
        # Access tokens are issued for the configured APIs, not this client.
        if audience is None and self.config.audience:
            audience = self.config.audience

        validator.issuer(self.config.issuers)
        validator.audience(self._audience(audience))
        validator.expiration(leeway, now)

    def _validate_logout_token(
        self,
        validator: ClaimValidator,
        audience: Optional[Iterable[str]],
        leeway: int,
        now: Optional[int],
    ) -> None:
        expected_audience = self._audience(audience)

        validator.issuer(self.config.issuers)
        validator.audience(expected_audience)
        validator.expiration(leeway, now)
        validator.issued()
        validator.authorized_party(expected_audience)
        validator.events([BACKCHANNEL_LOGOUT_EVENT])
        validator.no_nonce()
        validator.subject_or_session()
