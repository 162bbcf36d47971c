"""
Authenticated session state and its persistence.
"""

import time
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from shared.config import SdkConfig
from shared.logging import get_logger
from oidc_flow.store.base import Store


@dataclass
class Session:
    """Tokens and profile of the signed-in user."""

    user: Optional[Dict[str, Any]] = None
    id_token: Optional[str] = None
    access_token: Optional[str] = None
    access_token_scope: List[str] = field(default_factory=list)
    access_token_expiration: Optional[int] = None
    refresh_token: Optional[str] = None

    def is_access_token_expired(self, now: Optional[int] = None) -> Optional[bool]:
        """``None`` when the expiration is unknown."""
        if self.access_token_expiration is None:
            return None
        now = int(time.time()) if now is None else now
        return now >= self.access_token_expiration

    def clear(self) -> None:
        for f in fields(self):
            setattr(self, f.name, [] if f.name == "access_token_scope" else None)

    def __repr__(self) -> str:
        # Token values stay out of logs and tracebacks.
        return (
            f"Session(user={'set' if self.user is not None else None}, "
            f"id_token={'set' if self.id_token else None}, "
            f"access_token={'set' if self.access_token else None}, "
            f"refresh_token={'set' if self.refresh_token else None}, "
            f"access_token_expiration={self.access_token_expiration})"
        )


class Credentials(BaseModel):
    """Read-only snapshot of the session handed to application code."""

    model_config = ConfigDict(frozen=True)

    user: Dict[str, Any]
    id_token: Optional[str] = None
    access_token: Optional[str] = None
    access_token_scope: List[str] = []
    access_token_expiration: Optional[int] = None
    access_token_expired: Optional[bool] = None
    refresh_token: Optional[str] = None


class SessionManager:
    """Loads and persists a :class:`Session` through a ``Store``.

    Every field follows its own persistence flag; scope and expiration travel
    with the access token.
    """

    def __init__(self, store: Store, config: SdkConfig):
        self.store = store
        self.config = config
        self.logger = get_logger("oidc.session")

    @property
    def persisted_fields(self) -> Dict[str, bool]:
        return {
            "user": self.config.persist_user,
            "id_token": self.config.persist_id_token,
            "access_token": self.config.persist_access_token,
            "access_token_scope": self.config.persist_access_token,
            "access_token_expiration": self.config.persist_access_token,
            "refresh_token": self.config.persist_refresh_token,
        }

    def load(self) -> Session:
        session = Session()
        for name, enabled in self.persisted_fields.items():
            if not enabled:
                continue
            value = self.store.get(name)
            if value is not None:
                setattr(session, name, value)
        return session

    def persist(self, session: Session) -> None:
        for name, enabled in self.persisted_fields.items():
            if not enabled:
                continue
            value = getattr(session, name)
            if value is None:
                self.store.delete(name)
            else:
                self.store.set(name, value)

    def clear(self) -> None:
        """Delete every session key, whatever the persistence flags say."""
        for name in self.persisted_fields:
            self.store.delete(name)
        self.logger.debug("Session storage cleared")
