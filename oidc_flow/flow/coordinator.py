"""
Authorization Code (+PKCE) flow coordinator.
"""

import time
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlencode

from shared.config import SdkConfig
from shared.errors import (
    ApiResponseError,
    ClaimValidationError,
    DuplicateSessionError,
    InvalidStateError,
    MalformedTokenError,
    MissingCodeVerifierError,
    MissingNonceError,
    MissingRefreshTokenError,
    SdkException,
    SignatureVerificationError,
)
from shared.logging import get_logger
from oidc_flow.cache.memory import KeySetCache
from oidc_flow.jwks.client import JWKSClient
from oidc_flow.store.base import MemoryStore, Store
from oidc_flow.store.transient import CODE_VERIFIER, MAX_AGE, NONCE, STATE, TransientStore
from oidc_flow.tokens.parser import TokenType, VerifiedClaims
from oidc_flow.tokens.signature import build_signature_verifier
from oidc_flow.transport.http import HttpxTransport, Transport, default_headers
from oidc_flow.validation.token_validator import TokenValidator
from .context import RequestContext
from .pkce import CODE_CHALLENGE_METHOD, generate_code_challenge, generate_code_verifier
from .session import Credentials, Session, SessionManager


BEARER_PREFIX = "bearer "


class AuthenticationFlow:
    """Drives login, callback exchange, renewal and logout for one user agent.

    The session and transient stores are request scoped: build one flow per
    incoming request with stores bound to that user agent. The transport and
    key-set cache may be shared between flows.
    """

    def __init__(
        self,
        config: SdkConfig,
        transport: Optional[Transport] = None,
        session_store: Optional[Store] = None,
        transient_store: Optional[Store] = None,
        cache: Optional[KeySetCache] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.transport = transport or HttpxTransport(timeout=config.http_timeout)
        self.clock = clock
        self.logger = get_logger("oidc.flow")

        self.transient = TransientStore(transient_store if transient_store is not None else MemoryStore())
        self.session_manager = SessionManager(session_store if session_store is not None else MemoryStore(), config)
        self.session: Session = self.session_manager.load()

        self.jwks_client = JWKSClient(
            self.transport,
            cache=cache,
            cache_ttl=config.token_cache_ttl,
            jwks_uri=config.token_jwks_uri,
        )
        self.validator = TokenValidator(config, build_signature_verifier(config, self.jwks_client))

    # Authorization

    def login(self, redirect_uri: Optional[str] = None, params: Optional[Mapping[str, Any]] = None) -> str:
        """Build the authorization URL and record the anti-replay values for it."""
        params = dict(params or {})
        state = params.pop("state", None)
        nonce = params.pop("nonce", None)
        max_age = params.pop("max_age", self.config.token_max_age)

        query = self._authorization_defaults(redirect_uri)
        for key, value in params.items():
            if value is None:
                continue
            query[key] = " ".join(value) if isinstance(value, (list, tuple)) else value

        if state:
            self.transient.store(STATE, state)
        else:
            state = self.transient.issue(STATE)

        if nonce:
            self.transient.store(NONCE, nonce)
        else:
            nonce = self.transient.issue(NONCE)

        query["state"] = state
        query["nonce"] = nonce

        if self.config.use_pkce:
            code_verifier = generate_code_verifier()
            self.transient.store(CODE_VERIFIER, code_verifier)
            query["code_challenge"] = generate_code_challenge(code_verifier)
            query["code_challenge_method"] = CODE_CHALLENGE_METHOD

        if max_age is not None:
            self.transient.store(MAX_AGE, str(int(max_age)))
            query["max_age"] = int(max_age)

        self.logger.info(
            "Authorization URL built",
            response_mode=query.get("response_mode"),
            pkce=self.config.use_pkce,
            organization=query.get("organization")
        )
        return f"{self.config.format_domain()}/authorize?{urlencode(query)}"

    def signup(self, redirect_uri: Optional[str] = None, params: Optional[Mapping[str, Any]] = None) -> str:
        """Authorization URL that opens the provider's sign-up screen."""
        params = dict(params or {})
        params["screen_hint"] = "signup"
        return self.login(redirect_uri, params)

    def handle_invitation(
        self,
        context: RequestContext,
        redirect_uri: Optional[str] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Optional[str]:
        """Login URL accepting an organization invitation, or ``None`` without one."""
        invite = self.get_invitation_parameters(context)
        if invite is None:
            return None

        merged = {"invitation": invite["invitation"], "organization": invite["organization"]}
        merged.update(params or {})
        return self.login(redirect_uri, merged)

    # Callback

    def exchange(self, context: RequestContext, redirect_uri: Optional[str] = None) -> Optional[Session]:
        """Complete the flow from the callback request.

        Returns ``None`` when the request carries no authorization code. The
        session is persisted only once every check has passed.
        """
        code = context.get("code", self.config.response_mode)
        state = context.get("state", self.config.response_mode)

        if code is None:
            self.logger.debug("No authorization code in callback request")
            return None

        if state is None or not self.transient.verify(STATE, state):
            self.transient.purge()
            self.logger.warning("Callback state rejected", state_present=state is not None)
            raise InvalidStateError("Invalid state")

        code_verifier = None
        if self.config.use_pkce:
            code_verifier = self.transient.get_once(CODE_VERIFIER)
            if code_verifier is None:
                self._discard_transients()
                raise MissingCodeVerifierError()

        if self.session.user is not None:
            self._discard_transients()
            raise DuplicateSessionError("A user session already exists")

        try:
            session = self._complete_exchange(code, code_verifier, redirect_uri)
        except SdkException as e:
            self.logger.warning("Authorization code exchange failed", error_code=e.code)
            raise
        finally:
            self._discard_transients()

        self.session = session
        self.session_manager.persist(session)

        self.logger.info(
            "Authorization code exchanged",
            sub=(session.user or {}).get("sub"),
            scope=session.access_token_scope,
            refresh_token=session.refresh_token is not None
        )
        return session

    def _complete_exchange(self, code: str, code_verifier: Optional[str], redirect_uri: Optional[str]) -> Session:
        nonce_issued = self.transient.isset(NONCE)

        data = {
            "grant_type": "authorization_code",
            "client_id": self.config.client_id,
            "code": code,
            "redirect_uri": redirect_uri or self.config.redirect_uri,
        }
        if self.config.client_secret:
            data["client_secret"] = self.config.client_secret
        if code_verifier is not None:
            data["code_verifier"] = code_verifier

        payload = self._token_request(data)
        now = int(self.clock())

        session = Session(access_token=payload["access_token"])
        self._apply_token_metadata(session, payload, now)
        session.refresh_token = payload.get("refresh_token") or None

        id_token = payload.get("id_token")
        if id_token:
            if not nonce_issued:
                raise MissingNonceError()

            claims = self.decode(id_token, now=now)
            session.id_token = id_token

            if self.config.skip_userinfo:
                session.user = claims.to_dict()

        if session.user is None:
            session.user = self._userinfo(session.access_token)

        return session

    def get_exchange_parameters(self, context: RequestContext) -> Optional[Dict[str, str]]:
        """``code`` and ``state`` from the callback, when both are present."""
        code = context.get("code", self.config.response_mode)
        state = context.get("state", self.config.response_mode)

        if code is None or state is None:
            return None

        return {"code": code, "state": state}

    def get_invitation_parameters(self, context: RequestContext) -> Optional[Dict[str, str]]:
        invitation = context.get("invitation")
        organization = context.get("organization")
        organization_name = context.get("organization_name")

        if invitation is None or organization is None or organization_name is None:
            return None

        return {
            "invitation": invitation,
            "organization": organization,
            "organization_name": organization_name,
        }

    # Session lifecycle

    def renew(self, params: Optional[Mapping[str, Any]] = None) -> Session:
        """Refresh the access token with the held refresh token."""
        refresh_token = self.session.refresh_token
        if not refresh_token:
            raise MissingRefreshTokenError()

        data: Dict[str, Any] = {
            "grant_type": "refresh_token",
            "client_id": self.config.client_id,
            "refresh_token": refresh_token,
        }
        if self.config.client_secret:
            data["client_secret"] = self.config.client_secret
        for key, value in (params or {}).items():
            if value is None:
                continue
            data[key] = " ".join(value) if isinstance(value, (list, tuple)) else value

        payload = self._token_request(data)
        now = int(self.clock())

        id_token = payload.get("id_token")
        claims = self.validator.validate(id_token, TokenType.ID_TOKEN, now=now) if id_token else None

        session = self.session
        session.access_token = payload["access_token"]
        self._apply_token_metadata(session, payload, now)

        if claims is not None:
            session.id_token = id_token
            if self.config.skip_userinfo:
                session.user = claims.to_dict()

        if payload.get("refresh_token"):
            session.refresh_token = payload["refresh_token"]

        self.session_manager.persist(session)
        self.logger.info(
            "Tokens renewed",
            id_token=claims is not None,
            refresh_token_rotated=bool(payload.get("refresh_token"))
        )
        return session

    def logout(self, return_to: Optional[str] = None, params: Optional[Mapping[str, Any]] = None) -> str:
        """End the local session and return the provider's logout URL."""
        self.clear()

        query: Dict[str, Any] = {
            "returnTo": return_to or self.config.redirect_uri,
            "client_id": self.config.client_id,
        }
        query.update({k: v for k, v in (params or {}).items() if v is not None})

        self.logger.info("Session ended")
        return f"{self.config.format_domain()}/v2/logout?{urlencode(query)}"

    def clear(self, transient: bool = True) -> None:
        """Forget the session and delete every persisted key."""
        self.session.clear()
        self.session_manager.clear()
        if transient:
            self.transient.purge()

    def get_credentials(self) -> Optional[Credentials]:
        session = self.session
        if session.user is None:
            return None

        return Credentials(
            user=session.user,
            id_token=session.id_token,
            access_token=session.access_token,
            access_token_scope=list(session.access_token_scope or []),
            access_token_expiration=session.access_token_expiration,
            access_token_expired=session.is_access_token_expired(int(self.clock())),
            refresh_token=session.refresh_token,
        )

    # Token verification

    def decode(
        self,
        token: str,
        *,
        audience: Optional[list] = None,
        organization: Optional[list] = None,
        nonce: Optional[str] = None,
        max_age: Optional[int] = None,
        leeway: Optional[int] = None,
        now: Optional[int] = None,
        token_type: TokenType = TokenType.ID_TOKEN,
    ) -> VerifiedClaims:
        """Verify ``token`` and return its claims.

        For ID tokens the nonce and max_age recorded at login are consumed
        and used unless passed explicitly.
        """
        if token_type is TokenType.ID_TOKEN:
            stored_nonce = self.transient.get_once(NONCE)
            stored_max_age = self.transient.get_once(MAX_AGE)

            if nonce is None:
                nonce = stored_nonce
            if max_age is None:
                max_age = int(stored_max_age) if stored_max_age is not None else self.config.token_max_age

        return self.validator.validate(
            token,
            token_type,
            audience=audience,
            organization=organization,
            nonce=nonce,
            max_age=max_age,
            leeway=leeway,
            now=now,
        )

    def decode_bearer(self, value: Optional[str], audience: Optional[list] = None) -> Optional[VerifiedClaims]:
        """Verify an access token from an ``Authorization`` header value.

        Returns ``None`` for an empty value or a token that fails verification.
        """
        if not value:
            return None

        value = value.strip()
        if value.lower().startswith(BEARER_PREFIX):
            value = value[len(BEARER_PREFIX):].strip()
        if not value:
            return None

        try:
            return self.validator.validate(value, TokenType.ACCESS_TOKEN, audience=audience, now=int(self.clock()))
        except (MalformedTokenError, SignatureVerificationError, ClaimValidationError):
            return None

    def decode_logout_token(self, token: str) -> VerifiedClaims:
        """Verify a back-channel logout token."""
        return self.validator.validate(token, TokenType.LOGOUT_TOKEN, now=int(self.clock()))

    # Provider endpoints

    def _authorization_defaults(self, redirect_uri: Optional[str]) -> Dict[str, Any]:
        query: Dict[str, Any] = {
            "client_id": self.config.client_id,
            "response_type": self.config.response_type,
            "redirect_uri": redirect_uri or self.config.redirect_uri,
            "scope": " ".join(self.config.scope),
            "response_mode": self.config.response_mode,
        }
        if self.config.audience:
            query["audience"] = self.config.audience[0]
        if self.config.organization:
            query["organization"] = self.config.organization[0]
        return query

    def _token_request(self, data: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.config.format_domain()}/oauth/token"
        response = self.transport.send("POST", url, data=data, headers=default_headers())
        payload = response.json()

        if not response.ok:
            details: Dict[str, Any] = {"status_code": response.status_code}
            if isinstance(payload, dict) and isinstance(payload.get("error"), str):
                details["error"] = payload["error"]
            raise ApiResponseError("Token endpoint returned an error", details=details)

        if not isinstance(payload, dict):
            raise ApiResponseError("Token endpoint returned a malformed response", details={"status_code": response.status_code})

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            raise ApiResponseError("Token endpoint response is missing an access token")

        return payload

    def _userinfo(self, access_token: str) -> Dict[str, Any]:
        url = f"{self.config.format_domain()}/userinfo"
        response = self.transport.send(
            "GET",
            url,
            headers=default_headers({"Authorization": f"Bearer {access_token}"})
        )

        if not response.ok:
            raise ApiResponseError("Userinfo endpoint returned an error", details={"status_code": response.status_code})

        profile = response.json()
        if not isinstance(profile, dict):
            raise ApiResponseError("Userinfo endpoint returned a malformed response")

        return profile

    @staticmethod
    def _apply_token_metadata(session: Session, payload: Mapping[str, Any], now: int) -> None:
        scope = payload.get("scope")
        if isinstance(scope, str):
            session.access_token_scope = scope.split()

        expires_in = payload.get("expires_in")
        if isinstance(expires_in, bool):
            return
        if isinstance(expires_in, (int, float)) or (isinstance(expires_in, str) and expires_in.isdigit()):
            session.access_token_expiration = now + int(expires_in)

    def _discard_transients(self) -> None:
        for name in (NONCE, MAX_AGE):
            self.transient.delete(name)
