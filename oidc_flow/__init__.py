"""
OIDC Authorization Code + PKCE client SDK.

Typical use, per request::

    flow = AuthenticationFlow(config, session_store=store, transient_store=transient)
    url = flow.login()
    ...
    session = flow.exchange(RequestContext.from_query_string(query_string))
"""

from .flow import AuthenticationFlow, Credentials, RequestContext, Session
from .tokens import TokenType, VerifiedClaims

__all__ = [
    "AuthenticationFlow",
    "Credentials",
    "RequestContext",
    "Session",
    "TokenType",
    "VerifiedClaims",
]

__version__ = "0.1.0"
