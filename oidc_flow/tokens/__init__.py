"""
Token parsing and signature verification.
"""

from .parser import Token, TokenType, VerifiedClaims, parse
from .signature import (
    AsymmetricVerifier,
    SignatureVerifier,
    SymmetricVerifier,
    build_signature_verifier,
)

__all__ = [
    "AsymmetricVerifier",
    "SignatureVerifier",
    "SymmetricVerifier",
    "Token",
    "TokenType",
    "VerifiedClaims",
    "build_signature_verifier",
    "parse",
]
