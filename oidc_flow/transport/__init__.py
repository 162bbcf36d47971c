"""
Transport collaborators for identity-provider calls.
"""

from .http import HttpxTransport, Transport, TransportResponse

__all__ = [
    "HttpxTransport",
    "Transport",
    "TransportResponse",
]
