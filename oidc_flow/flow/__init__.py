"""
Authorization Code flow, sessions and PKCE.
"""

from .context import RequestContext
from .coordinator import AuthenticationFlow
from .pkce import generate_code_challenge, generate_code_verifier
from .session import Credentials, Session, SessionManager

__all__ = [
    "AuthenticationFlow",
    "Credentials",
    "RequestContext",
    "Session",
    "SessionManager",
    "generate_code_challenge",
    "generate_code_verifier",
]
