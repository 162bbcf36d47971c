"""
Shared error handling for the OIDC flow SDK.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class SdkException(Exception):
    """Base exception for the SDK."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(SdkException):
    """Missing or invalid SDK configuration."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class InvalidStateError(SdkException):
    """Callback state is missing or does not match the issued value."""

    def __init__(self, message: str = "Invalid state", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_STATE", message, details)


class MissingNonceError(SdkException):
    """An ID token was returned but no nonce was issued for this attempt."""

    def __init__(self, message: str = "Nonce value not found in transient storage", details: Optional[Dict[str, Any]] = None):
        super().__init__("MISSING_NONCE", message, details)


class MissingCodeVerifierError(SdkException):
    """PKCE is enabled but no code verifier is available."""

    def __init__(self, message: str = "Code verifier not found in transient storage", details: Optional[Dict[str, Any]] = None):
        super().__init__("MISSING_CODE_VERIFIER", message, details)


class DuplicateSessionError(SdkException):
    """Exchange attempted while a session is already active."""

    def __init__(self, message: str = "Cannot exchange a code while a user session is active", details: Optional[Dict[str, Any]] = None):
        super().__init__("DUPLICATE_SESSION", message, details)


class MissingRefreshTokenError(SdkException):
    """Renewal attempted without a refresh token."""

    def __init__(self, message: str = "Cannot renew tokens without a refresh token", details: Optional[Dict[str, Any]] = None):
        super().__init__("MISSING_REFRESH_TOKEN", message, details)


class MalformedTokenError(SdkException):
    """Token could not be split or decoded."""

    def __init__(self, message: str = "Token is malformed", details: Optional[Dict[str, Any]] = None):
        super().__init__("MALFORMED_TOKEN", message, details)


class SignatureVerificationError(SdkException):
    """Token signature could not be verified."""

    def __init__(self, message: str = "Token signature verification failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("SIGNATURE_VERIFICATION_ERROR", message, details)


class KeyNotFoundError(SignatureVerificationError):
    """The key set was fetched but holds no key for the token's key id."""

    def __init__(self, kid: Optional[str], details: Optional[Dict[str, Any]] = None):
        self.kid = kid
        super().__init__(
            f"Signing key '{kid}' was not found in the key set",
            details={"kid": kid, **(details or {})}
        )
        self.code = "KEY_NOT_FOUND"


class ClaimValidationError(SdkException):
    """A specific claim check failed.

    ``claim`` names the failing claim; ``expected`` and ``actual`` carry the
    compared values when they are safe to expose.
    """

    claim: str = ""

    def __init__(self, message: str, expected: Any = None, actual: Any = None):
        self.expected = expected
        self.actual = actual
        details: Dict[str, Any] = {"claim": self.claim}
        if expected is not None:
            details["expected"] = expected
        if actual is not None:
            details["actual"] = actual
        super().__init__("CLAIM_VALIDATION_ERROR", message, details)


class IssuerClaimError(ClaimValidationError):
    claim = "iss"


class AudienceClaimError(ClaimValidationError):
    claim = "aud"


class ExpirationClaimError(ClaimValidationError):
    claim = "exp"


class IssuedAtClaimError(ClaimValidationError):
    claim = "iat"


class SubjectClaimError(ClaimValidationError):
    claim = "sub"


class NonceClaimError(ClaimValidationError):
    claim = "nonce"


class AuthorizedPartyClaimError(ClaimValidationError):
    claim = "azp"


class AuthTimeClaimError(ClaimValidationError):
    claim = "auth_time"


class OrganizationClaimError(ClaimValidationError):
    claim = "org_id"


class EventsClaimError(ClaimValidationError):
    claim = "events"


class ApiResponseError(SdkException):
    """Remote endpoint responded without the required fields."""

    def __init__(self, message: str = "Unexpected API response", details: Optional[Dict[str, Any]] = None):
        super().__init__("API_RESPONSE_ERROR", message, details)


class NetworkError(SdkException):
    """Transport-level failure."""

    def __init__(self, service: str, message: str = "Network error", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__("NETWORK_ERROR", f"{service}: {message}", details)
