"""
Proof Key for Code Exchange (RFC 7636) helpers.
"""

import base64
import hashlib
import secrets


CODE_CHALLENGE_METHOD = "S256"

MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128


def generate_code_verifier(length: int = MAX_VERIFIER_LENGTH) -> str:
    """Random verifier of ``length`` unreserved characters (43 to 128)."""
    if not MIN_VERIFIER_LENGTH <= length <= MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"Code verifier length must be between {MIN_VERIFIER_LENGTH} and {MAX_VERIFIER_LENGTH}"
        )

    # token_urlsafe yields about 4 characters per 3 bytes
    return secrets.token_urlsafe(length)[:length]


def generate_code_challenge(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
