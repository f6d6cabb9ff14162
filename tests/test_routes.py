# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_session_auth

from collections.abc import Iterator
from typing import Any
from urllib.parse import parse_qs, urlsplit

import anyio
import pytest
from fakes import AUTH_DOMAIN, FakeCognito, FakeIssuer, authentication_result, get_user_response, make_client
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from coreason_session_auth.config import ClientConfig
from coreason_session_auth.manager import AuthManager

BEARER = {"Authorization": "Bearer access-123"}


@pytest.fixture
def manager(public_config: ClientConfig, cognito: FakeCognito, issuer: FakeIssuer) -> AuthManager:
    return AuthManager(public_config, make_client(cognito=cognito, issuer=issuer))


@pytest.fixture
def client(manager: AuthManager) -> Iterator[TestClient]:
    async def dump_session(request: Request) -> JSONResponse:
        return JSONResponse(dict(request.session))

    app = Starlette(
        routes=[*manager.routes(), Route("/session", dump_session)],
        middleware=[Middleware(SessionMiddleware, secret_key="test-session-secret")],
    )
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client


@pytest.fixture
def ready(manager: AuthManager) -> AuthManager:
    anyio.run(manager.discovery.get_client)
    return manager


# --- Redirect flow ---


def test_login_redirects_to_authorize_endpoint(ready: AuthManager, client: TestClient) -> None:
    response = client.get("/login/oidc")
    assert response.status_code == 302

    location = urlsplit(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == f"{AUTH_DOMAIN}/oauth2/authorize"
    session = client.get("/session").json()
    assert parse_qs(location.query)["state"] == [session["state"]]


def test_login_discovers_on_demand(client: TestClient, issuer: FakeIssuer) -> None:
    response = client.get("/login/oidc")
    assert response.status_code == 302
    assert response.headers["location"].startswith(f"{AUTH_DOMAIN}/oauth2/authorize?")
    assert issuer.discovery_calls == 1


def test_login_after_issuer_recovers(manager: AuthManager, client: TestClient, issuer: FakeIssuer) -> None:
    issuer.discovery_status = 503

    response = client.get("/login/oidc")
    assert response.headers["location"] == "/login?error=oidc_unavailable"
    assert issuer.discovery_calls == 1

    issuer.discovery_status = 200
    response = client.get("/login/oidc")
    assert response.headers["location"].startswith(f"{AUTH_DOMAIN}/oauth2/authorize?")
    assert manager.oidc_ready
    assert issuer.discovery_calls == 2

    client.get("/login/oidc")
    assert issuer.discovery_calls == 2


def test_callback_signs_in(ready: AuthManager, client: TestClient, issuer: FakeIssuer) -> None:
    client.get("/login/oidc")
    session = client.get("/session").json()
    issuer.nonce = session["nonce"]

    response = client.get("/callback", params={"code": "code-1", "state": session["state"]})
    assert response.status_code == 302
    assert response.headers["location"] == "/"

    session = client.get("/session").json()
    assert session["tokens"]["accessToken"] == "oidc-access"
    assert session["userInfo"]["subject_id"] == "sub-alice"
    assert "state" not in session
    assert "nonce" not in session


def test_callback_with_forged_state(ready: AuthManager, client: TestClient, issuer: FakeIssuer) -> None:
    client.get("/login/oidc")

    response = client.get("/callback", params={"code": "code-1", "state": "forged"})
    assert response.status_code == 302
    assert response.headers["location"] == "/login?error=authentication_failed"
    assert "tokens" not in client.get("/session").json()
    assert issuer.token_requests == []


def test_callback_while_issuer_down(client: TestClient, issuer: FakeIssuer) -> None:
    issuer.discovery_status = 503
    response = client.get("/callback", params={"code": "code-1", "state": "s"})
    assert response.headers["location"] == "/login?error=oidc_unavailable"
    assert issuer.token_requests == []


# --- Password API ---


def test_sign_up(client: TestClient, cognito: FakeCognito) -> None:
    cognito.respond("SignUp", body={"UserSub": "sub-bob", "UserConfirmed": False})
    response = client.post("/auth/signup", json={"username": "bob", "email": "bob@coreason.ai", "password": "hunter22"})

    assert response.status_code == 201
    assert response.json() == {
        "success": True,
        "message": "User registered successfully.",
        "userSub": "sub-bob",
        "userConfirmed": False,
    }


@pytest.mark.parametrize(
    "body, message",
    [
        ({}, "Username, email, and password are required"),
        ({"username": "bob", "email": "bob@coreason.ai"}, "Username, email, and password are required"),
        (
            {"username": "bo", "email": "bob@coreason.ai", "password": "hunter22"},
            "Username must be at least 3 characters long",
        ),
        ({"username": "bob", "email": "not-an-email", "password": "hunter22"}, "Invalid email format"),
        (
            {"username": "bob", "email": "bob@coreason.ai", "password": "123"},
            "Password must be at least 6 characters long",
        ),
        (
            {"username": "bob smith", "email": "bob@coreason.ai", "password": "hunter22"},
            "Username can only contain letters, numbers, and underscores",
        ),
        ({"username": "ab", "email": "bob@coreason.ai"}, "Username, email, and password are required"),
        (
            {"username": "a$c", "email": "bad", "password": "1"},
            "Username can only contain letters, numbers, and underscores",
        ),
        ({"username": "bob", "email": "bad", "password": "1"}, "Invalid email format"),
        (
            {"username": "bob", "email": "bob@coreason.ai", "password": 123456},
            "Username, email, and password are required",
        ),
    ],
)
def test_sign_up_validation(client: TestClient, cognito: FakeCognito, body: dict[str, Any], message: str) -> None:
    response = client.post("/auth/signup", json=body)
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": message}
    assert cognito.requests == []


def test_sign_up_non_json_body(client: TestClient) -> None:
    response = client.post("/auth/signup", content=b"not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400


def test_sign_up_username_exists(client: TestClient, cognito: FakeCognito) -> None:
    cognito.fail("SignUp", "UsernameExistsException")
    response = client.post("/auth/signup", json={"username": "bob", "email": "bob@coreason.ai", "password": "hunter22"})
    assert response.status_code == 400
    assert response.json()["error"] == "Username already exists"


def test_verify_email(client: TestClient, cognito: FakeCognito) -> None:
    cognito.respond("ConfirmSignUp")
    response = client.post("/auth/verify-email", json={"username": "bob", "code": "123456"})
    assert response.json() == {"success": True, "message": "Email verified successfully"}

    cognito.fail("ConfirmSignUp", "ExpiredCodeException")
    response = client.post("/auth/verify-email", json={"username": "bob", "code": "123456"})
    assert response.status_code == 400
    assert response.json()["error"] == "Verification code has expired"


def test_resend_verification(client: TestClient, cognito: FakeCognito) -> None:
    cognito.respond(
        "ResendConfirmationCode",
        body={"CodeDeliveryDetails": {"Destination": "b***@c***", "DeliveryMedium": "EMAIL", "AttributeName": "email"}},
    )
    response = client.post("/auth/resend-verification", json={"username": "bob"})
    assert response.status_code == 200
    assert response.json()["codeDeliveryDetails"]["DeliveryMedium"] == "EMAIL"


def test_sign_in(client: TestClient, cognito: FakeCognito) -> None:
    cognito.respond("InitiateAuth", body=authentication_result())
    response = client.post("/auth/signin", json={"username": "alice", "password": "hunter22"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["accessToken"] == "access-123"
    assert body["idToken"] == "id-123"
    assert body["refreshToken"] == "refresh-123"
    assert body["expiresIn"] == 3600


def test_sign_in_rejected(client: TestClient, cognito: FakeCognito) -> None:
    cognito.fail("InitiateAuth", "NotAuthorizedException", message="Incorrect username or password.")
    response = client.post("/auth/signin", json={"username": "alice", "password": "wrong"})
    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Authentication failed"}


@pytest.mark.parametrize("error_type, status", [("TooManyRequestsException", 429), ("ResourceNotFoundException", 500)])
def test_sign_in_status_mapping(client: TestClient, cognito: FakeCognito, error_type: str, status: int) -> None:
    cognito.fail("InitiateAuth", error_type)
    response = client.post("/auth/signin", json={"username": "alice", "password": "hunter22"})
    assert response.status_code == status


def test_sign_in_idp_outage(client: TestClient, cognito: FakeCognito) -> None:
    cognito.respond("InitiateAuth", 503, {"message": "down"})
    response = client.post("/auth/signin", json={"username": "alice", "password": "hunter22"})
    assert response.status_code == 503


def test_refresh(client: TestClient, cognito: FakeCognito) -> None:
    result = authentication_result(AccessToken="access-456")
    del result["AuthenticationResult"]["RefreshToken"]
    cognito.respond("InitiateAuth", body=result)

    response = client.post("/auth/refresh", json={"refreshToken": "refresh-123"})
    assert response.status_code == 200
    assert response.json()["accessToken"] == "access-456"
    assert response.json()["refreshToken"] == "refresh-123"


def test_refresh_requires_token(client: TestClient) -> None:
    response = client.post("/auth/refresh", json={})
    assert response.status_code == 400
    assert response.json()["error"] == "Refresh token is required"


def test_refresh_rejected(client: TestClient, cognito: FakeCognito) -> None:
    cognito.fail("InitiateAuth", "NotAuthorizedException")
    response = client.post("/auth/refresh", json={"refreshToken": "revoked"})
    assert response.status_code == 401
    assert response.json()["error"] == "Token refresh failed"


def test_verify_token(client: TestClient, cognito: FakeCognito) -> None:
    cognito.respond("GetUser", body=get_user_response())
    response = client.post("/auth/verify-token", json={"token": "access-123"})
    assert response.status_code == 200
    assert response.json()["valid"] is True
    assert response.json()["user"]["subject_id"] == "sub-alice"

    cognito.fail("GetUser", "NotAuthorizedException")
    response = client.post("/auth/verify-token", json={"token": "expired"})
    assert response.status_code == 200
    assert response.json() == {"success": True, "valid": False, "error": "Invalid or expired token"}

    cognito.respond("GetUser", 500)
    response = client.post("/auth/verify-token", json={"token": "access-123"})
    assert response.status_code == 503

    cognito.fail("GetUser", "TooManyRequestsException")
    response = client.post("/auth/verify-token", json={"token": "access-123"})
    assert response.status_code == 429


def test_me_requires_bearer(client: TestClient, cognito: FakeCognito) -> None:
    assert client.get("/auth/me").status_code == 401

    cognito.fail("GetUser", "NotAuthorizedException")
    assert client.get("/auth/me", headers=BEARER).status_code == 403


def test_me(client: TestClient, cognito: FakeCognito) -> None:
    cognito.respond("GetUser", body=get_user_response())
    response = client.get("/auth/me", headers=BEARER)
    assert response.status_code == 200
    assert response.json()["user"]["username"] == "alice"


def test_me_when_idp_throttles(client: TestClient, cognito: FakeCognito) -> None:
    cognito.fail("GetUser", "TooManyRequestsException")
    response = client.get("/auth/me", headers=BEARER)
    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Authentication failed"}


def test_me_with_local_domain_email(client: TestClient, cognito: FakeCognito) -> None:
    cognito.respond("GetUser", body=get_user_response(email="alice@corp.local"))
    response = client.get("/auth/me", headers=BEARER)
    assert response.status_code == 200
    assert response.json()["user"]["email"] == "alice@corp.local"


def test_logout(client: TestClient, cognito: FakeCognito) -> None:
    cognito.respond("GetUser", body=get_user_response())
    cognito.respond("GlobalSignOut")
    response = client.post("/auth/logout", headers=BEARER)

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Signed out successfully"}
    assert cognito.calls("GlobalSignOut") == [{"AccessToken": "access-123"}]


def test_logout_without_bearer_never_reaches_idp(client: TestClient, cognito: FakeCognito) -> None:
    assert client.post("/auth/logout").status_code == 401
    assert cognito.requests == []
