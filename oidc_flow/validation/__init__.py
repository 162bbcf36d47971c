"""
Claim validation and the token verification pipeline.
"""

from .claims import ClaimValidator
from .token_validator import BACKCHANNEL_LOGOUT_EVENT, TokenValidator

__all__ = ["BACKCHANNEL_LOGOUT_EVENT", "ClaimValidator", "TokenValidator"]
