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
Bearer token middleware: strict and permissive variants sharing one verification step.
"""

import re
from enum import StrEnum
from typing import NamedTuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from coreason_session_auth.async_context import reset_current_identity, set_current_identity
from coreason_session_auth.idp_adapter import CognitoIdentityAdapter
from coreason_session_auth.models import Identity
from coreason_session_auth.results import DEFAULT_MESSAGES, SERVER_ERROR_KINDS, ErrorKind, Failure
from coreason_session_auth.utils.logger import logger

# Disallow spaces/garbage in the token part
_BEARER_PATTERN = re.compile(r"^Bearer\s+(\S+)$")

TOKEN_REQUIRED = "Access token required"
AUTHENTICATION_FAILED = "Authentication failed"


class VerificationStatus(StrEnum):
    VERIFIED = "verified"
    MISSING = "missing"
    INVALID = "invalid"
    ERROR = "error"


class BearerVerification(NamedTuple):
    status: VerificationStatus
    identity: Identity | None = None
    token: str | None = None


class BearerVerifier:
    """
    Parses the Authorization header and asks the IdP whether the token is live.

    A header that is absent or not of the form ``Bearer <token>`` counts as missing.
    """

    def __init__(self, adapter: CognitoIdentityAdapter) -> None:
        self.adapter = adapter

    @staticmethod
    def extract_token(authorization: str | None) -> str | None:
        if not authorization:
            return None
        match = _BEARER_PATTERN.match(authorization.strip())
        return match.group(1) if match else None

    async def verify(self, authorization: str | None) -> BearerVerification:
        """
        Verifies the raw Authorization header value.

        Returns:
            BearerVerification: VERIFIED with identity and token; MISSING; INVALID for a refused token;
            ERROR for an IdP-side failure (see SERVER_ERROR_KINDS).
        """
        token = self.extract_token(authorization)
        if token is None:
            return BearerVerification(VerificationStatus.MISSING)

        result = await self.adapter.verify_token(token)
        if isinstance(result, Failure):
            if result.kind in SERVER_ERROR_KINDS:
                return BearerVerification(VerificationStatus.ERROR, token=token)
            return BearerVerification(VerificationStatus.INVALID, token=token)
        return BearerVerification(VerificationStatus.VERIFIED, identity=result.value, token=token)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


async def _forward_with_identity(
    request: Request, call_next: RequestResponseEndpoint, identity: Identity, access_token: str | None
) -> Response:
    """Attaches the identity to the request and the async context for the duration of the downstream call."""
    request.state.identity = identity
    request.state.access_token = access_token
    context_token = set_current_identity(identity)
    try:
        return await call_next(request)
    finally:
        reset_current_identity(context_token)


class RequireBearerMiddleware(BaseHTTPMiddleware):
    """
    Rejects the request unless it carries a bearer token the IdP accepts.

    Missing or malformed header: 401. Token refused: 403. IdP-side failure: 500.
    The downstream handler is invoked only for a verified identity.
    """

    def __init__(self, app: ASGIApp, verifier: BearerVerifier) -> None:
        super().__init__(app)
        self.verifier = verifier

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        verification = await self.verifier.verify(request.headers.get("Authorization"))

        if verification.status is VerificationStatus.MISSING:
            return _error(401, TOKEN_REQUIRED)
        if verification.status is VerificationStatus.INVALID:
            logger.debug(f"Bearer token rejected on {request.url.path}")
            return _error(403, DEFAULT_MESSAGES[ErrorKind.INVALID_TOKEN])
        if verification.identity is None:
            logger.error(f"Bearer verification unavailable on {request.url.path}")
            return _error(500, AUTHENTICATION_FAILED)

        return await _forward_with_identity(request, call_next, verification.identity, verification.token)


class OptionalBearerMiddleware(BaseHTTPMiddleware):
    """
    Attaches the identity when a valid bearer token is present; always invokes the downstream handler.
    """

    def __init__(self, app: ASGIApp, verifier: BearerVerifier) -> None:
        super().__init__(app)
        self.verifier = verifier

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        verification = await self.verifier.verify(request.headers.get("Authorization"))
        if verification.identity is not None:
            return await _forward_with_identity(request, call_next, verification.identity, verification.token)

        if verification.status is VerificationStatus.ERROR:
            logger.warning(f"Bearer verification unavailable on {request.url.path}, continuing anonymously")
        request.state.identity = None
        request.state.access_token = None
        return await call_next(request)
