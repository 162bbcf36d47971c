"""
Claim checks applied to signature-verified tokens.
"""

import time
from typing import Any, Dict, Iterable, List, Optional, Union

from shared.errors import (
    AudienceClaimError,
    AuthorizedPartyClaimError,
    AuthTimeClaimError,
    EventsClaimError,
    ExpirationClaimError,
    IssuedAtClaimError,
    IssuerClaimError,
    NonceClaimError,
    OrganizationClaimError,
    SubjectClaimError,
)


class ClaimValidator:
    """Fluent claim checks; each one raises its own ``ClaimValidationError``.

    Instances are cheap and hold only the claim mapping. Checks may be
    chained in any order::

        ClaimValidator(claims).issuer(iss).audience(aud).expiration(60)
    """

    def __init__(self, claims: Dict[str, Any]):
        self.claims = claims

    def issuer(self, expected: Union[str, Iterable[str]]) -> "ClaimValidator":
        accepted = [expected] if isinstance(expected, str) else list(expected)
        claim = self._get("iss")

        if claim is None:
            raise IssuerClaimError("Issuer (iss) claim must be a string present in the token")

        if claim not in accepted:
            raise IssuerClaimError(
                f"Issuer (iss) claim mismatch; expected \"{', '.join(accepted)}\", found \"{claim}\"",
                expected=accepted,
                actual=claim
            )

        return self

    def audience(self, expected: Iterable[str]) -> "ClaimValidator":
        expected = [str(value) for value in expected]
        audience = self._audience()

        if not audience:
            raise AudienceClaimError("Audience (aud) claim must be a string or array of strings present in the token")

        if not set(audience).intersection(expected):
            raise AudienceClaimError(
                f"Audience (aud) claim mismatch; expected one of \"{', '.join(expected)}\", found \"{', '.join(audience)}\"",
                expected=expected,
                actual=audience
            )

        return self

    def expiration(self, leeway: int = 60, now: Optional[int] = None) -> "ClaimValidator":
        expires = self._get_int("exp")
        now = int(time.time()) if now is None else now

        if expires is None:
            raise ExpirationClaimError("Expiration Time (exp) claim must be a number present in the token")

        if now > expires + leeway:
            raise ExpirationClaimError(
                f"Expiration Time (exp) claim error; current time ({now}) is after expiration time ({expires + leeway})",
                expected=expires + leeway,
                actual=now
            )

        return self

    def issued(self) -> "ClaimValidator":
        if self._get_int("iat") is None:
            raise IssuedAtClaimError("Issued At (iat) claim must be a number present in the token")

        return self

    def subject(self) -> "ClaimValidator":
        claim = self._get("sub")
        if not isinstance(claim, str) or not claim:
            raise SubjectClaimError("Subject (sub) claim must be a string present in the token")

        return self

    def subject_or_session(self) -> "ClaimValidator":
        for key in ("sub", "sid"):
            value = self._get(key)
            if isinstance(value, str) and value:
                return self

        raise SubjectClaimError("Subject (sub) or Session ID (sid) claim must be a string present in the token")

    def authorized_party(self, expected: Iterable[str]) -> "ClaimValidator":
        expected = [str(value) for value in expected]
        audience = self._get("aud")

        if isinstance(audience, list) and len(audience) > 1:
            azp = self._get("azp")

            if not isinstance(azp, str) or not azp:
                raise AuthorizedPartyClaimError(
                    "Authorized Party (azp) claim must be a string present in the token when Audience (aud) claim has multiple values"
                )

            if azp not in expected:
                raise AuthorizedPartyClaimError(
                    f"Authorized Party (azp) claim mismatch; expected one of \"{', '.join(expected)}\", found \"{azp}\"",
                    expected=expected,
                    actual=azp
                )

        return self

    def nonce(self, expected: str) -> "ClaimValidator":
        claim = self._get("nonce")

        if not isinstance(claim, str) or not claim:
            raise NonceClaimError("Nonce (nonce) claim must be a string present in the token")

        # Values are left out of the error; a nonce is replay material.
        if claim != expected:
            raise NonceClaimError("Nonce (nonce) claim mismatch")

        return self

    def no_nonce(self) -> "ClaimValidator":
        if "nonce" in self.claims:
            raise NonceClaimError("Nonce (nonce) claim must not be present in the token")

        return self

    def auth_time(self, max_age: int, leeway: int = 60, now: Optional[int] = None) -> "ClaimValidator":
        auth_time = self._get_int("auth_time")
        now = int(time.time()) if now is None else now

        if auth_time is None:
            raise AuthTimeClaimError(
                "Authentication Time (auth_time) claim must be a number present in the token when Max Age (max_age) is specified"
            )

        valid_until = auth_time + max_age + leeway
        if now > valid_until:
            raise AuthTimeClaimError(
                f"Authentication Time (auth_time) claim indicates that too much time has passed since the last end-user authentication; current time ({now}) is after last auth at {valid_until}",
                expected=valid_until,
                actual=now
            )

        return self

    def organization(self, expected: Iterable[str]) -> "ClaimValidator":
        expected = [str(value) for value in expected]
        org_id = self._get("org_id")
        org_name = self._get("org_name")

        if org_id is None and org_name is None:
            raise OrganizationClaimError("Organization (org_id) claim must be a string present in the token")

        if org_id not in expected and org_name not in expected:
            raise OrganizationClaimError(
                f"Organization (org_id) claim mismatch; expected one of \"{', '.join(expected)}\", found \"{org_id or org_name}\"",
                expected=expected,
                actual=org_id or org_name
            )

        return self

    def events(self, required: Iterable[str]) -> "ClaimValidator":
        events = self._get("events")

        if not isinstance(events, dict):
            raise EventsClaimError("Events (events) claim must be an object present in the token")

        for event in required:
            if event not in events:
                raise EventsClaimError(f"Events (events) claim must contain \"{event}\"", expected=event)
            if not isinstance(events[event], dict):
                raise EventsClaimError(f"Events (events) claim entry \"{event}\" must be an object", expected=event)

        return self

    def _get(self, key: str) -> Any:
        return self.claims.get(key)

    def _get_int(self, key: str) -> Optional[int]:
        value = self._get(key)
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return int(value)
        if isinstance(value, str) and value.isdigit():
            return int(value)
        return None

    def _audience(self) -> List[str]:
        audience = self._get("aud")
        if isinstance(audience, (str, int)) and not isinstance(audience, bool):
            audience = [audience]
        if not isinstance(audience, list):
            return []
        return [str(value) for value in audience if isinstance(value, (str, int)) and value != ""]
