"""
Compact JWT parsing without trust decisions.
"""

import binascii
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from jose.utils import base64url_decode

from shared.errors import MalformedTokenError


BASE64URL_SEGMENT = re.compile(r"^[A-Za-z0-9_-]+\Z")


class TokenType(Enum):
    """Validation profile applied to a token."""
    ID_TOKEN = "id_token"
    ACCESS_TOKEN = "access_token"
    LOGOUT_TOKEN = "logout_token"


@dataclass(frozen=True)
class Token:
    """A parsed, not yet verified, compact JWT."""

    raw: str
    header: Dict[str, Any]
    claims: Dict[str, Any]
    signature: bytes
    signing_input: bytes = field(repr=False)

    @property
    def algorithm(self) -> Optional[str]:
        return self.header.get("alg")

    @property
    def key_id(self) -> Optional[str]:
        kid = self.header.get("kid")
        return kid if isinstance(kid, str) and kid else None

    def get_claim(self, name: str) -> Any:
        return self.claims.get(name)

    def __repr__(self) -> str:
        # Never echo the raw token.
        return f"Token(alg={self.algorithm!r}, kid={self.key_id!r}, claims={sorted(self.claims)!r})"


def parse(raw: str) -> Token:
    """Split and decode ``raw`` into header, claims and signature.

    Raises ``MalformedTokenError`` unless there are exactly three non-empty
    segments, the header is a JSON object with an ``alg`` and the claims
    segment is a JSON object.
    """
    if not isinstance(raw, str):
        raise MalformedTokenError("Token must be a string")

    raw = raw.strip()
    segments = raw.split(".")
    if len(segments) != 3 or not all(segments):
        raise MalformedTokenError(
            "Token must consist of three non-empty dot-separated segments",
            details={"segments": len(segments)}
        )

    header = _decode_json_segment(segments[0], "header")
    if not isinstance(header.get("alg"), str) or not header["alg"]:
        raise MalformedTokenError("Token header is missing the 'alg' parameter", details={"segment": "header"})

    claims = _decode_json_segment(segments[1], "claims")
    signature = _decode_segment(segments[2], "signature")

    return Token(
        raw=raw,
        header=header,
        claims=claims,
        signature=signature,
        signing_input=f"{segments[0]}.{segments[1]}".encode("ascii"),
    )


def _decode_segment(segment: str, name: str) -> bytes:
    if not BASE64URL_SEGMENT.match(segment):
        raise MalformedTokenError(f"Token {name} is not valid base64url", details={"segment": name})

    try:
        return base64url_decode(segment.encode("ascii"))
    except (UnicodeEncodeError, binascii.Error, ValueError, TypeError) as exc:
        raise MalformedTokenError(f"Token {name} is not valid base64url", details={"segment": name}) from exc


def _decode_json_segment(segment: str, name: str) -> Dict[str, Any]:
    decoded = _decode_segment(segment, name)
    try:
        value = json.loads(decoded.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedTokenError(f"Token {name} is not valid JSON", details={"segment": name}) from exc

    if not isinstance(value, dict):
        raise MalformedTokenError(f"Token {name} must be a JSON object", details={"segment": name})

    return value


@dataclass(frozen=True)
class VerifiedClaims:
    """Claims of a token that passed signature and claim validation."""

    token: Token
    token_type: TokenType = TokenType.ID_TOKEN

    @property
    def claims(self) -> Dict[str, Any]:
        return dict(self.token.claims)

    @property
    def raw(self) -> str:
        return self.token.raw

    @property
    def audience(self) -> List[str]:
        aud = self.token.get_claim("aud")
        if isinstance(aud, (str, int)):
            aud = [aud]
        if not isinstance(aud, list):
            return []
        return [str(value) for value in aud if isinstance(value, (str, int))]

    @property
    def issuer(self) -> Optional[str]:
        return _string_claim(self.token, "iss")

    @property
    def subject(self) -> Optional[str]:
        return _string_claim(self.token, "sub")

    @property
    def nonce(self) -> Optional[str]:
        return _string_claim(self.token, "nonce")

    @property
    def authorized_party(self) -> Optional[str]:
        return _string_claim(self.token, "azp")

    @property
    def session_id(self) -> Optional[str]:
        return _string_claim(self.token, "sid")

    @property
    def organization_id(self) -> Optional[str]:
        return _string_claim(self.token, "org_id")

    @property
    def organization_name(self) -> Optional[str]:
        return _string_claim(self.token, "org_name")

    @property
    def organization(self) -> Optional[str]:
        return self.organization_id or self.organization_name

    @property
    def auth_time(self) -> Optional[int]:
        return _int_claim(self.token, "auth_time")

    @property
    def expiration(self) -> Optional[int]:
        return _int_claim(self.token, "exp")

    @property
    def issued_at(self) -> Optional[int]:
        return _int_claim(self.token, "iat")

    def to_dict(self) -> Dict[str, Any]:
        return self.claims


def _string_claim(token: Token, name: str) -> Optional[str]:
    value = token.get_claim(name)
    return value if isinstance(value, str) else None


def _int_claim(token: Token, name: str) -> Optional[int]:
    """Integer claim, accepting digit strings; booleans are rejected."""
    value = token.get_claim(name)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None
