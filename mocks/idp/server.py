"""
Mock identity provider serving authorize, token, userinfo and JWKS endpoints.
"""

import base64
import hashlib
import secrets
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from shared.logging import configure_logging, get_logger
from shared.test_helpers import (
    TEST_CLIENT_ID,
    TEST_CLIENT_SECRET,
    TEST_DOMAIN,
    MockTokenGenerator,
    create_test_users,
)


class MockIdentityProvider:
    """Mock OIDC provider implementation."""

    def __init__(self, domain: str = TEST_DOMAIN, client_id: str = TEST_CLIENT_ID, client_secret: str = TEST_CLIENT_SECRET):
        self.logger = get_logger("mock.idp")
        self.app = FastAPI(title="Mock Identity Provider", version="1.0.0")

        self.domain = domain
        self.issuer = f"https://{domain}/"
        self.client_id = client_id
        self.client_secret = client_secret
        self.tokens = MockTokenGenerator(issuer=self.issuer, client_id=client_id, secret=client_secret)

        self.users = {user.sub: user for user in create_test_users()}
        self.current_user = next(iter(self.users))

        # code -> authorization request
        self.codes: Dict[str, Dict[str, Any]] = {}
        # access token -> sub
        self.access_tokens: Dict[str, str] = {}
        # refresh token -> sub
        self.refresh_tokens: Dict[str, str] = {}

        self.jwks_requests = 0

        self._setup_routes()

    def _setup_routes(self):
        """Set up provider routes."""

        @self.app.get("/.well-known/jwks.json")
        async def jwks_endpoint():
            self.jwks_requests += 1
            return self.tokens.jwks()

        @self.app.get("/authorize")
        async def authorize(
            client_id: str = Query(...),
            redirect_uri: str = Query(...),
            response_type: str = Query("code"),
            state: str = Query(...),
            nonce: Optional[str] = Query(None),
            scope: str = Query("openid"),
            code_challenge: Optional[str] = Query(None),
            code_challenge_method: Optional[str] = Query(None),
            max_age: Optional[int] = Query(None),
        ):
            if client_id != self.client_id:
                raise HTTPException(status_code=400, detail="Invalid client")
            if response_type != "code":
                raise HTTPException(status_code=400, detail="Unsupported response type")
            if code_challenge is not None and code_challenge_method != "S256":
                raise HTTPException(status_code=400, detail="Unsupported code challenge method")

            code = secrets.token_urlsafe(16)
            self.codes[code] = {
                "sub": self.current_user,
                "redirect_uri": redirect_uri,
                "nonce": nonce,
                "scope": scope,
                "code_challenge": code_challenge,
            }
            self.logger.info("Authorization code issued", client_id=client_id, pkce=code_challenge is not None)
            return RedirectResponse(f"{redirect_uri}?{urlencode({'code': code, 'state': state})}", status_code=302)

        @self.app.post("/oauth/token")
        async def token_endpoint(request: Request):
            form = dict(parse_qsl((await request.body()).decode("utf-8")))

            if form.get("client_id") != self.client_id:
                return _oauth_error("invalid_client", 401)
            if "client_secret" in form and form["client_secret"] != self.client_secret:
                return _oauth_error("invalid_client", 401)

            grant_type = form.get("grant_type")
            if grant_type == "authorization_code":
                return self._handle_authorization_code(form)
            elif grant_type == "refresh_token":
                return self._handle_refresh_token(form)
            return _oauth_error("unsupported_grant_type")

        @self.app.get("/userinfo")
        async def userinfo_endpoint(credentials: HTTPAuthorizationCredentials = Depends(HTTPBearer())):
            sub = self.access_tokens.get(credentials.credentials)
            if sub is None:
                raise HTTPException(status_code=401, detail="Invalid token")
            return self.users[sub].profile()

    def _handle_authorization_code(self, form: Dict[str, str]):
        request = self.codes.pop(form.get("code", ""), None)
        if request is None:
            return _oauth_error("invalid_grant")
        if form.get("redirect_uri") != request["redirect_uri"]:
            return _oauth_error("invalid_grant")

        if request["code_challenge"] is not None:
            verifier = form.get("code_verifier", "")
            digest = hashlib.sha256(verifier.encode("ascii")).digest()
            challenge = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
            if challenge != request["code_challenge"]:
                return _oauth_error("invalid_grant")

        return self._generate_token_set(request["sub"], request["scope"], nonce=request["nonce"])

    def _handle_refresh_token(self, form: Dict[str, str]):
        sub = self.refresh_tokens.pop(form.get("refresh_token", ""), None)
        if sub is None:
            return _oauth_error("invalid_grant")

        return self._generate_token_set(sub, form.get("scope", "openid profile email"))

    def _generate_token_set(self, sub: str, scope: str, nonce: Optional[str] = None) -> Dict[str, Any]:
        access_token = secrets.token_urlsafe(24)
        refresh_token = secrets.token_urlsafe(24)
        self.access_tokens[access_token] = sub
        self.refresh_tokens[refresh_token] = sub

        token_set = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_in": 86400,
            "token_type": "Bearer",
            "scope": scope,
        }

        if "openid" in scope.split():
            token_set["id_token"] = self.tokens.generate_id_token(
                self.users[sub],
                now=int(time.time()),
                nonce=nonce
            )

        self.logger.info("Token set issued", sub=sub, id_token="id_token" in token_set)
        return token_set


def _oauth_error(error: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"error": error}, status_code=status_code)


def create_app():
    """Create mock identity provider application."""
    return MockIdentityProvider().app


if __name__ == "__main__":
    import uvicorn
    configure_logging("mock-idp", "debug")
    uvicorn.run(create_app(), host="0.0.0.0", port=8080)
