"""
One-time-use storage for state, nonce, PKCE verifier and max_age.
"""

import hmac
import secrets
from typing import Optional

from shared.logging import get_logger
from .base import Store


STATE = "state"
NONCE = "nonce"
CODE_VERIFIER = "code_verifier"
MAX_AGE = "max_age"

TRANSIENT_KEYS = (STATE, NONCE, CODE_VERIFIER, MAX_AGE)


class TransientStore:
    """Anti-replay material with single-read semantics.

    ``verify`` and ``get_once`` are consuming reads: the entry is gone after
    the call whatever its outcome. ``isset`` is the only non-consuming read.
    """

    def __init__(self, store: Store, nonce_bytes: int = 16) -> None:
        self.backend = store
        self.nonce_bytes = nonce_bytes
        self.logger = get_logger("oidc.transient")

    def issue(self, name: str) -> str:
        """Generate, store and return a fresh random value."""
        value = secrets.token_hex(self.nonce_bytes)
        self.backend.set(name, value)
        return value

    def store(self, name: str, value: str) -> None:
        """Store a caller-supplied value for later verification."""
        self.backend.set(name, str(value))

    def isset(self, name: str) -> bool:
        return self.backend.get(name) is not None

    def get_once(self, name: str) -> Optional[str]:
        """Consume the entry and return its value, or ``None`` if absent."""
        value = self.backend.get(name)
        self.backend.delete(name)
        return str(value) if value is not None else None

    def verify(self, name: str, candidate: str) -> bool:
        """Consume the entry and compare it with ``candidate``."""
        stored = self.get_once(name)
        if stored is None or candidate is None:
            self.logger.info("Transient value missing", key=name)
            return False

        return hmac.compare_digest(stored.encode(), str(candidate).encode())

    def delete(self, name: str) -> None:
        self.backend.delete(name)

    def purge(self) -> None:
        """Drop every transient entry for this attempt."""
        for name in TRANSIENT_KEYS:
            self.backend.delete(name)
