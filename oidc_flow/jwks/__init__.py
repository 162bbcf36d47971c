"""
Signing-key retrieval.
"""

from .client import JWKSClient

__all__ = ["JWKSClient"]
