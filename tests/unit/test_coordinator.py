"""
Unit tests for AuthenticationFlow.
"""

import time
from urllib.parse import parse_qsl, urlsplit

import pytest

from oidc_flow.flow import AuthenticationFlow, Credentials, RequestContext, generate_code_challenge
from oidc_flow.store import MemoryStore
from oidc_flow.tokens import TokenType
from shared.config import SdkConfig
from shared.errors import (
    ApiResponseError,
    DuplicateSessionError,
    ExpirationClaimError,
    InvalidStateError,
    MissingCodeVerifierError,
    MissingNonceError,
    MissingRefreshTokenError,
    NetworkError,
    NonceClaimError,
)
from shared.test_helpers import (
    TEST_CLIENT_ID,
    TEST_CLIENT_SECRET,
    TEST_REDIRECT_URI,
    TEST_TOKEN_URL,
    TEST_USERINFO_URL,
    create_test_users,
    test_environment,
)

NOW = int(time.time())
SESSION_KEYS = ("user", "id_token", "access_token", "access_token_scope", "access_token_expiration", "refresh_token")


def _query(url: str) -> dict:
    return dict(parse_qsl(urlsplit(url).query))


def _callback(url: str, **overrides) -> RequestContext:
    """Callback request for the login URL, as the provider would send it."""
    query = {"code": "auth-code-1", "state": _query(url)["state"]}
    query.update(overrides)
    return RequestContext(query={k: v for k, v in query.items() if v is not None})


class TestAuthenticationFlow:
    """Shared fixtures for AuthenticationFlow tests."""

    @pytest.fixture
    def session_store(self):
        return MemoryStore()

    @pytest.fixture
    def transient_store(self):
        return MemoryStore()

    @pytest.fixture
    def make_flow(self, transport, session_store, transient_store):
        def factory(**overrides):
            config = SdkConfig(**test_environment.get_mock_config(**overrides))
            return AuthenticationFlow(
                config,
                transport=transport,
                session_store=session_store,
                transient_store=transient_store,
                clock=lambda: NOW,
            )
        return factory

    @pytest.fixture
    def flow(self, make_flow):
        return make_flow()

    @pytest.fixture
    def token_set(self, token_generator):
        def factory(nonce=None, **overrides):
            body = {
                "access_token": "access-token-1",
                "refresh_token": "refresh-token-1",
                "id_token": token_generator.generate_id_token(now=NOW, nonce=nonce),
                "expires_in": 86400,
                "scope": "openid profile email",
                "token_type": "Bearer",
            }
            body.update(overrides)
            return {k: v for k, v in body.items() if v is not None}
        return factory

    @pytest.fixture
    def signed_in(self, flow, transport, token_set):
        """Flow after a successful login and exchange."""
        url = flow.login()
        transport.add("POST", TEST_TOKEN_URL, body=token_set(nonce=_query(url)["nonce"]))
        flow.exchange(_callback(url))
        return flow


class TestLogin(TestAuthenticationFlow):
    """Test cases for authorization URL building."""

    def test_login_url(self, flow, transient_store):
        url = flow.login()
        parts = urlsplit(url)
        query = _query(url)

        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://tenant.example.com/authorize"
        assert query["client_id"] == TEST_CLIENT_ID
        assert query["response_type"] == "code"
        assert query["redirect_uri"] == TEST_REDIRECT_URI
        assert query["scope"] == "openid profile email"
        assert query["response_mode"] == "query"
        assert query["state"] == transient_store.get("state")
        assert query["nonce"] == transient_store.get("nonce")
        assert "audience" not in query
        assert "max_age" not in query

    def test_pkce_challenge_matches_stored_verifier(self, flow, transient_store):
        """The verifier stays in transient storage; only its challenge is sent."""
        url = flow.login()
        query = _query(url)
        verifier = transient_store.get("code_verifier")

        assert len(verifier) == 128
        assert query["code_challenge_method"] == "S256"
        assert query["code_challenge"] == generate_code_challenge(verifier)
        assert verifier not in url

    def test_without_pkce(self, make_flow, transient_store):
        query = _query(make_flow(use_pkce=False).login())

        assert "code_challenge" not in query
        assert "code_verifier" not in transient_store

    def test_each_login_issues_fresh_values(self, flow):
        first = _query(flow.login())
        second = _query(flow.login())

        assert first["state"] != second["state"]
        assert first["nonce"] != second["nonce"]
        assert first["code_challenge"] != second["code_challenge"]

    def test_caller_supplied_values(self, flow, transient_store):
        url = flow.login(
            "https://app.example.com/other",
            {"state": "my-state", "nonce": "my-nonce", "max_age": 600, "scope": ["openid", "offline_access"], "prompt": "login"}
        )
        query = _query(url)

        assert query["redirect_uri"] == "https://app.example.com/other"
        assert query["state"] == "my-state"
        assert query["nonce"] == "my-nonce"
        assert query["scope"] == "openid offline_access"
        assert query["prompt"] == "login"
        assert query["max_age"] == "600"
        assert transient_store.get("state") == "my-state"
        assert transient_store.get("nonce") == "my-nonce"
        assert transient_store.get("max_age") == "600"

    def test_configured_defaults(self, make_flow, transient_store):
        flow = make_flow(
            audience=["https://api.example.com/", "https://other.example.com/"],
            organization=["org_acme", "org_other"],
            response_mode="form_post",
            token_max_age=300,
            custom_domain="login.example.com"
        )

        url = flow.login()
        query = _query(url)

        assert url.startswith("https://login.example.com/authorize?")
        assert query["audience"] == "https://api.example.com/"
        assert query["organization"] == "org_acme"
        assert query["response_mode"] == "form_post"
        assert query["max_age"] == "300"
        assert transient_store.get("max_age") == "300"

    def test_signup(self, flow):
        assert _query(flow.signup())["screen_hint"] == "signup"

    def test_handle_invitation(self, flow):
        context = RequestContext.from_query_string("invitation=inv-1&organization=org_acme&organization_name=acme")

        query = _query(flow.handle_invitation(context))

        assert query["invitation"] == "inv-1"
        assert query["organization"] == "org_acme"

    def test_handle_invitation_without_invite(self, flow, transient_store):
        context = RequestContext.from_query_string("invitation=inv-1&organization=org_acme")

        assert flow.handle_invitation(context) is None
        assert len(transient_store) == 0


class TestExchange(TestAuthenticationFlow):
    """Test cases for the callback exchange."""

    def test_no_code_is_not_an_error(self, flow, transport):
        flow.login()

        assert flow.exchange(RequestContext.from_query_string("state=abc")) is None
        assert transport.requests == []

    def test_successful_exchange(self, flow, transport, token_set, session_store, transient_store):
        url = flow.login()
        transport.add("POST", TEST_TOKEN_URL, body=token_set(nonce=_query(url)["nonce"]))

        session = flow.exchange(_callback(url))

        assert session is flow.session
        assert session.user["sub"] == "auth0|user1"
        assert session.access_token == "access-token-1"
        assert session.refresh_token == "refresh-token-1"
        assert session.access_token_scope == ["openid", "profile", "email"]
        assert session.access_token_expiration == NOW + 86400
        assert session.id_token is not None
        assert session_store.get("access_token") == "access-token-1"
        assert session_store.get("user")["sub"] == "auth0|user1"
        assert len(transient_store) == 0

    def test_token_request(self, flow, transport, token_set, transient_store):
        url = flow.login()
        verifier = transient_store.get("code_verifier")
        transport.add("POST", TEST_TOKEN_URL, body=token_set(nonce=_query(url)["nonce"]))

        flow.exchange(_callback(url))

        request = transport.calls("POST", TEST_TOKEN_URL)[0]
        assert request.data == {
            "grant_type": "authorization_code",
            "client_id": TEST_CLIENT_ID,
            "client_secret": TEST_CLIENT_SECRET,
            "code": "auth-code-1",
            "redirect_uri": TEST_REDIRECT_URI,
            "code_verifier": verifier,
        }

    def test_state_mismatch_by_one_character(self, flow, transport, session_store, transient_store):
        url = flow.login()
        state = _query(url)["state"]
        tampered = state[:-1] + ("a" if state[-1] != "a" else "b")

        with pytest.raises(InvalidStateError):
            flow.exchange(_callback(url, state=tampered))

        assert transport.calls("POST", TEST_TOKEN_URL) == []
        assert len(session_store) == 0
        assert len(transient_store) == 0

    def test_missing_state(self, flow, transport):
        url = flow.login()

        with pytest.raises(InvalidStateError):
            flow.exchange(_callback(url, state=None))

        assert transport.calls("POST", TEST_TOKEN_URL) == []

    def test_state_is_single_use(self, flow, transport, token_set):
        url = flow.login()
        transport.add("POST", TEST_TOKEN_URL, body=token_set(nonce=_query(url)["nonce"]))
        flow.exchange(_callback(url))

        with pytest.raises(InvalidStateError):
            flow.exchange(_callback(url))

    def test_missing_code_verifier(self, flow, transport, transient_store):
        url = flow.login()
        transient_store.delete("code_verifier")

        with pytest.raises(MissingCodeVerifierError):
            flow.exchange(_callback(url))

        assert transport.calls("POST", TEST_TOKEN_URL) == []
        assert "nonce" not in transient_store

    def test_duplicate_session(self, signed_in, transport):
        url = signed_in.login()

        with pytest.raises(DuplicateSessionError):
            signed_in.exchange(_callback(url))

        assert len(transport.calls("POST", TEST_TOKEN_URL)) == 1

    def test_missing_nonce(self, flow, transport, token_set, session_store, transient_store):
        url = flow.login()
        transient_store.delete("nonce")
        transport.add("POST", TEST_TOKEN_URL, body=token_set(nonce=_query(url)["nonce"]))

        with pytest.raises(MissingNonceError):
            flow.exchange(_callback(url))

        assert len(session_store) == 0
        assert flow.session.user is None

    def test_nonce_mismatch(self, flow, transport, token_set, session_store, transient_store):
        url = flow.login(params={"max_age": 600})
        transport.add("POST", TEST_TOKEN_URL, body=token_set(nonce="someone-elses-nonce"))

        with pytest.raises(NonceClaimError):
            flow.exchange(_callback(url))

        assert len(session_store) == 0
        assert len(transient_store) == 0

    def test_expired_id_token(self, flow, transport, token_generator, token_set, session_store):
        url = flow.login()
        id_token = token_generator.generate_id_token(now=NOW - 7200, nonce=_query(url)["nonce"])
        transport.add("POST", TEST_TOKEN_URL, body=token_set(id_token=id_token))

        with pytest.raises(ExpirationClaimError):
            flow.exchange(_callback(url))

        assert len(session_store) == 0

    @pytest.mark.parametrize("status_code,body", [
        (403, {"error": "invalid_grant"}),
        (200, "not json"),
        (200, ["access_token"]),
        (200, {"token_type": "Bearer"}),
        (200, {"access_token": "   "}),
    ])
    def test_token_endpoint_failures(self, flow, transport, session_store, transient_store, status_code, body):
        url = flow.login()
        transport.add("POST", TEST_TOKEN_URL, status_code=status_code, body=body)

        with pytest.raises(ApiResponseError):
            flow.exchange(_callback(url))

        assert len(session_store) == 0
        assert "nonce" not in transient_store

    def test_token_endpoint_error_code_in_details(self, flow, transport):
        url = flow.login()
        transport.add("POST", TEST_TOKEN_URL, status_code=403, body={"error": "invalid_grant"})

        with pytest.raises(ApiResponseError) as exc_info:
            flow.exchange(_callback(url))

        assert exc_info.value.details == {"status_code": 403, "error": "invalid_grant"}

    def test_network_error(self, flow, transport):
        url = flow.login()
        transport.add_error("POST", TEST_TOKEN_URL)

        with pytest.raises(NetworkError):
            flow.exchange(_callback(url))

    def test_userinfo_profile(self, make_flow, transport, token_set):
        flow = make_flow(skip_userinfo=False)
        url = flow.login()
        transport.add("POST", TEST_TOKEN_URL, body=token_set(nonce=_query(url)["nonce"]))
        transport.add("GET", TEST_USERINFO_URL, body={"sub": "auth0|user1", "name": "From Userinfo"})

        session = flow.exchange(_callback(url))

        assert session.user == {"sub": "auth0|user1", "name": "From Userinfo"}
        request = transport.calls("GET", TEST_USERINFO_URL)[0]
        assert request.headers["Authorization"] == "Bearer access-token-1"

    def test_userinfo_without_id_token(self, flow, transport, token_set):
        url = flow.login()
        transport.add("POST", TEST_TOKEN_URL, body=token_set(id_token=None))
        transport.add("GET", TEST_USERINFO_URL, body={"sub": "auth0|user1"})

        session = flow.exchange(_callback(url))

        assert session.user == {"sub": "auth0|user1"}
        assert session.id_token is None

    def test_exchange_without_id_token_discards_nonce(self, flow, transport, token_set, token_generator, transient_store):
        url = flow.login(params={"max_age": 600})
        transport.add("POST", TEST_TOKEN_URL, body=token_set(id_token=None))
        transport.add("GET", TEST_USERINFO_URL, body={"sub": "auth0|user1"})

        flow.exchange(_callback(url))

        assert "nonce" not in transient_store
        assert "max_age" not in transient_store

        verified = flow.decode(token_generator.generate_id_token(now=NOW))
        assert verified.subject == "auth0|user1"

    def test_userinfo_failure(self, make_flow, transport, token_set, session_store):
        flow = make_flow(skip_userinfo=False)
        url = flow.login()
        transport.add("POST", TEST_TOKEN_URL, body=token_set(nonce=_query(url)["nonce"]))
        transport.add("GET", TEST_USERINFO_URL, status_code=401, body={"error": "invalid_token"})

        with pytest.raises(ApiResponseError):
            flow.exchange(_callback(url))

        assert len(session_store) == 0

    def test_form_post_response_mode(self, make_flow, transport, token_set):
        flow = make_flow(response_mode="form_post")
        url = flow.login()
        transport.add("POST", TEST_TOKEN_URL, body=token_set(nonce=_query(url)["nonce"]))

        assert flow.exchange(_callback(url)) is None

        body = f"code=auth-code-1&state={_query(url)['state']}"
        session = flow.exchange(RequestContext.from_form_body(body))

        assert session.user["sub"] == "auth0|user1"

    def test_persistence_flags(self, make_flow, transport, token_set, session_store):
        flow = make_flow(persist_refresh_token=False, persist_id_token=False)
        url = flow.login()
        transport.add("POST", TEST_TOKEN_URL, body=token_set(nonce=_query(url)["nonce"]))

        session = flow.exchange(_callback(url))

        assert session.refresh_token == "refresh-token-1"
        assert "refresh_token" not in session_store
        assert "id_token" not in session_store
        assert session_store.get("access_token") == "access-token-1"

    def test_get_exchange_parameters(self, flow):
        assert flow.get_exchange_parameters(RequestContext.from_query_string("code=c&state=s")) == {"code": "c", "state": "s"}
        assert flow.get_exchange_parameters(RequestContext.from_query_string("code=c")) is None


class TestRenew(TestAuthenticationFlow):
    """Test cases for token renewal."""

    def test_renew_without_refresh_token(self, flow, transport):
        with pytest.raises(MissingRefreshTokenError):
            flow.renew()

        assert transport.requests == []

    def test_renew(self, signed_in, transport, session_store):
        transport.add("POST", TEST_TOKEN_URL, body={
            "access_token": "access-token-2",
            "refresh_token": "refresh-token-2",
            "expires_in": 600,
            "scope": "openid profile",
        })

        session = signed_in.renew({"scope": ["openid", "profile"]})

        request = transport.calls("POST", TEST_TOKEN_URL)[-1]
        assert request.data == {
            "grant_type": "refresh_token",
            "client_id": TEST_CLIENT_ID,
            "client_secret": TEST_CLIENT_SECRET,
            "refresh_token": "refresh-token-1",
            "scope": "openid profile",
        }
        assert session.access_token == "access-token-2"
        assert session.refresh_token == "refresh-token-2"
        assert session.access_token_scope == ["openid", "profile"]
        assert session.access_token_expiration == NOW + 600
        assert session_store.get("access_token") == "access-token-2"
        assert session_store.get("refresh_token") == "refresh-token-2"

    def test_renew_keeps_refresh_token_when_not_rotated(self, signed_in, transport):
        transport.add("POST", TEST_TOKEN_URL, body={"access_token": "access-token-2"})

        assert signed_in.renew().refresh_token == "refresh-token-1"

    def test_renew_with_id_token(self, signed_in, transport, token_generator):
        member = create_test_users()[1]
        id_token = token_generator.generate_id_token(member, now=NOW)
        transport.add("POST", TEST_TOKEN_URL, body={"access_token": "access-token-2", "id_token": id_token})

        session = signed_in.renew()

        assert session.id_token == id_token
        assert session.user["sub"] == member.sub

    def test_renew_missing_access_token(self, signed_in, transport, session_store):
        transport.add("POST", TEST_TOKEN_URL, body={"refresh_token": "refresh-token-2"})

        with pytest.raises(ApiResponseError):
            signed_in.renew()

        assert signed_in.session.access_token == "access-token-1"
        assert session_store.get("refresh_token") == "refresh-token-1"


class TestLogout(TestAuthenticationFlow):
    """Test cases for logout."""

    def test_logout_clears_everything(self, signed_in, session_store, transient_store):
        signed_in.login()
        session_store.set("refresh_token", "left-over")

        url = signed_in.logout()

        assert url == "https://tenant.example.com/v2/logout?returnTo=https%3A%2F%2Fapp.example.com%2Fcallback&client_id=client-123"
        for key in SESSION_KEYS:
            assert key not in session_store
        assert len(transient_store) == 0
        assert signed_in.session.user is None
        assert signed_in.session.access_token is None
        assert signed_in.session.access_token_scope == []
        assert signed_in.get_credentials() is None

    def test_logout_deletes_unpersisted_keys(self, make_flow, session_store):
        session_store.set("refresh_token", "stale")
        flow = make_flow(persist_refresh_token=False)

        flow.logout()

        assert "refresh_token" not in session_store

    def test_logout_return_to(self, flow):
        query = _query(flow.logout("https://app.example.com/", {"federated": "1"}))

        assert query == {"returnTo": "https://app.example.com/", "client_id": TEST_CLIENT_ID, "federated": "1"}


class TestCredentials(TestAuthenticationFlow):
    """Test cases for get_credentials and session loading."""

    def test_no_user(self, flow):
        assert flow.get_credentials() is None

    def test_credentials(self, signed_in):
        credentials = signed_in.get_credentials()

        assert isinstance(credentials, Credentials)
        assert credentials.user["sub"] == "auth0|user1"
        assert credentials.access_token == "access-token-1"
        assert credentials.access_token_scope == ["openid", "profile", "email"]
        assert credentials.access_token_expiration == NOW + 86400
        assert credentials.access_token_expired is False
        assert credentials.refresh_token == "refresh-token-1"

    def test_session_restored_from_store(self, signed_in, make_flow):
        restored = make_flow()

        assert restored.session == signed_in.session
        assert restored.get_credentials() == signed_in.get_credentials()


class TestDecode(TestAuthenticationFlow):
    """Test cases for the public verification helpers."""

    def test_decode_consumes_stored_nonce(self, flow, token_generator, transient_store):
        url = flow.login()
        raw = token_generator.generate_id_token(nonce=_query(url)["nonce"])

        verified = flow.decode(raw)

        assert verified.subject == "auth0|user1"
        assert "nonce" not in transient_store

    def test_decode_with_wrong_stored_nonce(self, flow, token_generator):
        flow.login()

        with pytest.raises(NonceClaimError):
            flow.decode(token_generator.generate_id_token(nonce="other"))

    def test_decode_bearer(self, make_flow, token_generator):
        flow = make_flow(audience=["https://api.example.com/"])
        raw = token_generator.generate_access_token()

        for value in (raw, f"Bearer {raw}", f"bearer  {raw}"):
            verified = flow.decode_bearer(value)
            assert verified.token_type is TokenType.ACCESS_TOKEN
            assert verified.subject == "auth0|user1"

    @pytest.mark.parametrize("value", [None, "", "Bearer ", "Bearer not-a-token"])
    def test_decode_bearer_rejects(self, flow, value):
        assert flow.decode_bearer(value) is None

    def test_decode_bearer_expired(self, make_flow, token_generator):
        flow = make_flow(audience=["https://api.example.com/"])
        raw = token_generator.generate_access_token(expires_in=-3600)

        assert flow.decode_bearer(raw) is None

    def test_decode_logout_token(self, flow, token_generator):
        verified = flow.decode_logout_token(token_generator.generate_logout_token())

        assert verified.token_type is TokenType.LOGOUT_TOKEN
        assert verified.subject == "auth0|user1"

    def test_decode_logout_token_expired(self, flow, token_generator):
        raw = token_generator.generate_logout_token(iat=NOW - 3700, exp=NOW - 3600)

        with pytest.raises(ExpirationClaimError):
            flow.decode_logout_token(raw)
