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
Tagged result type returned by every Identity Provider Adapter operation.

Usage:
    match await adapter.sign_in(username, password):
        case Success(value=tokens):
            ...
        case Failure(kind=kind, message=message):
            ...
"""

from enum import StrEnum
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class ErrorKind(StrEnum):
    CONFIGURATION = "configuration"
    IDENTITY_PROVIDER = "identity_provider"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_TOKEN = "invalid_token"
    USER_NOT_CONFIRMED = "user_not_confirmed"
    CODE_MISMATCH = "code_mismatch"
    CODE_EXPIRED = "code_expired"
    USERNAME_EXISTS = "username_exists"
    INVALID_REQUEST = "invalid_request"
    RATE_LIMITED = "rate_limited"
    AUTH_CHALLENGE = "auth_challenge"


# Fixed, caller-safe messages. IdP message text is never surfaced.
DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.CONFIGURATION: "Identity provider is misconfigured",
    ErrorKind.IDENTITY_PROVIDER: "Identity provider is unavailable",
    ErrorKind.INVALID_CREDENTIALS: "Authentication failed",
    ErrorKind.INVALID_TOKEN: "Invalid or expired token",
    ErrorKind.USER_NOT_CONFIRMED: "User is not confirmed",
    ErrorKind.CODE_MISMATCH: "Invalid verification code",
    ErrorKind.CODE_EXPIRED: "Verification code has expired",
    ErrorKind.USERNAME_EXISTS: "Username already exists",
    ErrorKind.INVALID_REQUEST: "Invalid request",
    ErrorKind.RATE_LIMITED: "Too many requests, try again later",
    ErrorKind.AUTH_CHALLENGE: "Additional authentication steps are required",
}

# Failures on the IdP or deployment side. They say nothing about the caller's credentials.
SERVER_ERROR_KINDS: frozenset[ErrorKind] = frozenset(
    {ErrorKind.CONFIGURATION, ErrorKind.IDENTITY_PROVIDER, ErrorKind.RATE_LIMITED}
)


class Success(BaseModel, Generic[T]):
    """Success variant carrying the operation-specific payload."""

    model_config = ConfigDict(frozen=True)

    ok: Literal[True] = True
    value: T


class Failure(BaseModel):
    """Failure variant carrying an error kind and a caller-safe message."""

    model_config = ConfigDict(frozen=True)

    ok: Literal[False] = False
    kind: ErrorKind
    message: str

    @classmethod
    def of(cls, kind: ErrorKind, message: str | None = None) -> "Failure":
        return cls(kind=kind, message=message or DEFAULT_MESSAGES[kind])
