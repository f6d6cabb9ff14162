# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_session_auth

"""
Starlette endpoints: the browser redirect flow and the JSON password API.
"""

import re
from typing import Any
from urllib.parse import urlencode, urlsplit

from pydantic import BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, ValidationError
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import BaseRoute, Route

from coreason_session_auth.config import ClientConfig
from coreason_session_auth.exceptions import ClientNotReadyError
from coreason_session_auth.idp_adapter import CognitoIdentityAdapter
from coreason_session_auth.middleware import BearerVerifier, RequireBearerMiddleware
from coreason_session_auth.redirect_flow import FailureReason, RedirectFlowHandler
from coreason_session_auth.results import SERVER_ERROR_KINDS, ErrorKind, Failure, Success
from coreason_session_auth.utils.logger import logger

DEFAULT_CALLBACK_PATH = "/callback"

_USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]+$")


def _login_redirect(config: ClientConfig, error: str) -> RedirectResponse:
    return RedirectResponse(f"{config.login_path}?{urlencode({'error': error})}", status_code=302)


def build_redirect_routes(handler: RedirectFlowHandler, config: ClientConfig) -> list[BaseRoute]:
    """
    Builds ``GET /login/oidc`` and the callback endpoint (the path of ``config.redirect_uri``).

    Both need a session: mount them under Starlette's SessionMiddleware.
    """
    callback_path = urlsplit(config.redirect_uri).path or DEFAULT_CALLBACK_PATH

    async def login_oidc(request: Request) -> Response:
        try:
            url = await handler.begin(request.session)
        except ClientNotReadyError:
            logger.warning("OIDC client not ready, redirecting to login")
            return _login_redirect(config, "oidc_unavailable")
        return RedirectResponse(url, status_code=302)

    async def callback(request: Request) -> Response:
        outcome = await handler.handle_callback(dict(request.query_params), request.session)
        if outcome.succeeded:
            return RedirectResponse(config.post_login_path, status_code=302)
        if outcome.reason is FailureReason.CLIENT_NOT_READY:
            return _login_redirect(config, "oidc_unavailable")
        return _login_redirect(config, "authentication_failed")

    return [
        Route("/login/oidc", login_oidc, methods=["GET"], name="login_oidc"),
        Route(callback_path, callback, methods=["GET"], name="oidc_callback"),
    ]


class SignUpRequest(BaseModel):
    username: str = Field(..., min_length=3)
    email: EmailStr
    password: str = Field(..., min_length=6)


class ConfirmRequest(BaseModel):
    username: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)


class UsernameRequest(BaseModel):
    username: str = Field(..., min_length=1)


class SignInRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(..., min_length=1, alias="refreshToken")
    username: str | None = None


class TokenRequest(BaseModel):
    token: str = Field(..., min_length=1)


_EMAIL = TypeAdapter(EmailStr)


def _ok(status_code: int = 200, **body: Any) -> JSONResponse:
    return JSONResponse({"success": True, **body}, status_code=status_code)


def _fail(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def _failure_response(failure: Failure, status_code: int = 400) -> JSONResponse:
    if failure.kind is ErrorKind.IDENTITY_PROVIDER:
        status_code = 503
    elif failure.kind is ErrorKind.RATE_LIMITED:
        status_code = 429
    elif failure.kind is ErrorKind.CONFIGURATION:
        status_code = 500
    return _fail(status_code, failure.message)


async def _json_body(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _parse(model: type[BaseModel], body: dict[str, Any] | None, required_message: str) -> Any:
    """Returns the validated model, or a 400 response with the required-fields message."""
    if body is None:
        return _fail(400, required_message)
    try:
        return model.model_validate(body)
    except ValidationError:
        return _fail(400, required_message)


def _sign_up_error(body: dict[str, Any] | None) -> str | None:
    """Checks the sign-up rules in order; the first one that fails names the error."""
    fields = [body.get(name) if body else None for name in ("username", "email", "password")]
    if not all(isinstance(value, str) and value for value in fields):
        return "Username, email, and password are required"
    username, email, password = fields
    if len(username) < 3:
        return "Username must be at least 3 characters long"
    if not _USERNAME_PATTERN.match(username):
        return "Username can only contain letters, numbers, and underscores"
    try:
        _EMAIL.validate_python(email)
    except ValidationError:
        return "Invalid email format"
    if len(password) < 6:
        return "Password must be at least 6 characters long"
    return None


def build_password_routes(
    adapter: CognitoIdentityAdapter, verifier: BearerVerifier, prefix: str = "/auth"
) -> list[BaseRoute]:
    """
    Builds the JSON password API over the adapter.

    ``POST {prefix}/logout`` and ``GET {prefix}/me`` require a bearer token; the others are public.
    Response bodies are ``{"success": bool, ...}`` with caller-safe messages only.
    """

    async def sign_up(request: Request) -> Response:
        body = await _json_body(request)
        error = _sign_up_error(body)
        if error is not None:
            return _fail(400, error)
        parsed = SignUpRequest.model_validate(body)

        result = await adapter.sign_up(parsed.username, parsed.email, parsed.password)
        if isinstance(result, Failure):
            return _failure_response(result)
        return _ok(
            201,
            message="User registered successfully.",
            userSub=result.value.user_sub,
            userConfirmed=result.value.user_confirmed,
        )

    async def verify_email(request: Request) -> Response:
        parsed = _parse(ConfirmRequest, await _json_body(request), "Username and verification code are required")
        if isinstance(parsed, Response):
            return parsed

        result = await adapter.confirm_sign_up(parsed.username, parsed.code)
        if isinstance(result, Failure):
            return _failure_response(result)
        return _ok(message=result.value.message)

    async def resend_verification(request: Request) -> Response:
        parsed = _parse(UsernameRequest, await _json_body(request), "Username is required")
        if isinstance(parsed, Response):
            return parsed

        result = await adapter.resend_confirmation_code(parsed.username)
        if isinstance(result, Failure):
            return _failure_response(result)
        return _ok(
            message="Verification code resent successfully",
            codeDeliveryDetails=result.value.model_dump(by_alias=True),
        )

    async def sign_in(request: Request) -> Response:
        parsed = _parse(SignInRequest, await _json_body(request), "Username and password are required")
        if isinstance(parsed, Response):
            return parsed

        result = await adapter.sign_in(parsed.username, parsed.password)
        if isinstance(result, Failure):
            return _failure_response(result, 401)
        return _ok(message="Sign in successful", **result.value.to_session())

    async def refresh(request: Request) -> Response:
        parsed = _parse(RefreshRequest, await _json_body(request), "Refresh token is required")
        if isinstance(parsed, Response):
            return parsed

        result = await adapter.refresh(parsed.refresh_token, parsed.username)
        if isinstance(result, Failure):
            return _failure_response(result, 400 if result.kind is ErrorKind.INVALID_REQUEST else 401)
        return _ok(**result.value.to_session())

    async def verify_token(request: Request) -> Response:
        parsed = _parse(TokenRequest, await _json_body(request), "Token is required")
        if isinstance(parsed, Response):
            return parsed

        result = await adapter.verify_token(parsed.token)
        if isinstance(result, Success):
            return _ok(valid=True, user=result.value.model_dump(mode="json"))
        if result.kind in SERVER_ERROR_KINDS:
            return _failure_response(result)
        return _ok(valid=False, error=result.message)

    async def logout(request: Request) -> Response:
        result = await adapter.sign_out(request.state.access_token)
        if isinstance(result, Failure):
            return _failure_response(result)
        return _ok(message=result.value.message)

    async def me(request: Request) -> Response:
        return _ok(user=request.state.identity.model_dump(mode="json"))

    bearer = [Middleware(RequireBearerMiddleware, verifier=verifier)]
    return [
        Route(f"{prefix}/signup", sign_up, methods=["POST"]),
        Route(f"{prefix}/verify-email", verify_email, methods=["POST"]),
        Route(f"{prefix}/resend-verification", resend_verification, methods=["POST"]),
        Route(f"{prefix}/signin", sign_in, methods=["POST"]),
        Route(f"{prefix}/refresh", refresh, methods=["POST"]),
        Route(f"{prefix}/verify-token", verify_token, methods=["POST"]),
        Route(f"{prefix}/logout", logout, methods=["POST"], middleware=bearer),
        Route(f"{prefix}/me", me, methods=["GET"], middleware=bearer),
    ]
