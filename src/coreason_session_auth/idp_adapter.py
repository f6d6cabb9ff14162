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
CognitoIdentityAdapter component for the password flow against the managed IdP.
"""

import json
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from coreason_session_auth.config import ClientConfig
from coreason_session_auth.exceptions import (
    ConfigurationError,
    CoreasonAuthError,
    IdentityProviderError,
    OversizedResponseError,
)
from coreason_session_auth.models import (
    Acknowledgement,
    CodeDeliveryDetails,
    Identity,
    SignUpResult,
    TokenSet,
)
from coreason_session_auth.results import SERVER_ERROR_KINDS, ErrorKind, Failure, Success
from coreason_session_auth.transport import fetch_json
from coreason_session_auth.utils.logger import anonymize, logger

T = TypeVar("T")

tracer = trace.get_tracer(__name__)

_TARGET_PREFIX = "AWSCognitoIdentityProviderService."
_CONTENT_TYPE = "application/x-amz-json-1.1"

_ERROR_KINDS: dict[str, ErrorKind] = {
    "NotAuthorizedException": ErrorKind.INVALID_CREDENTIALS,
    "UserNotFoundException": ErrorKind.INVALID_CREDENTIALS,
    "PasswordResetRequiredException": ErrorKind.INVALID_CREDENTIALS,
    "UserNotConfirmedException": ErrorKind.USER_NOT_CONFIRMED,
    "CodeMismatchException": ErrorKind.CODE_MISMATCH,
    "ExpiredCodeException": ErrorKind.CODE_EXPIRED,
    "UsernameExistsException": ErrorKind.USERNAME_EXISTS,
    "AliasExistsException": ErrorKind.USERNAME_EXISTS,
    "InvalidPasswordException": ErrorKind.INVALID_REQUEST,
    "InvalidParameterException": ErrorKind.INVALID_REQUEST,
    "TooManyRequestsException": ErrorKind.RATE_LIMITED,
    "LimitExceededException": ErrorKind.RATE_LIMITED,
    "TooManyFailedAttemptsException": ErrorKind.RATE_LIMITED,
    "ResourceNotFoundException": ErrorKind.CONFIGURATION,
}

SIGN_IN_FAILED = "Authentication failed"


class _Rejected(CoreasonAuthError):
    """The IdP answered and refused the request."""

    def __init__(self, kind: ErrorKind, error_type: str) -> None:
        super().__init__(error_type)
        self.kind = kind
        self.error_type = error_type


def _error_type(data: Any, header: str | None) -> str:
    """
    Extracts the bare exception name, e.g. "NotAuthorizedException".
    The body carries it as ``__type`` (sometimes namespaced with '#'), the header as ``Name:uri``.
    """
    raw = data.get("__type") if isinstance(data, dict) else None
    if not raw and header:
        raw = header.split(":", 1)[0]
    if not raw:
        return "UnknownError"
    return str(raw).rsplit("#", 1)[-1]


class CognitoIdentityAdapter:
    """
    Request/response wrapper around the IdP's user-pool API.

    Stateless: each operation maps to exactly one IdP call and returns ``Success[T] | Failure``.
    IdP-reported errors, network errors and timeouts never raise.

    Attributes:
        config (ClientConfig): The app client configuration.
        client (httpx.AsyncClient): The shared async HTTP client.
    """

    def __init__(self, config: ClientConfig, client: httpx.AsyncClient) -> None:
        """
        Initialize the CognitoIdentityAdapter.

        Args:
            config: The app client configuration.
            client: The async HTTP client to use for requests.

        Raises:
            ConfigurationError: If the client ID or API endpoint is not configured.
        """
        if not config.client_id:
            raise ConfigurationError("IdP client_id is not configured")
        if not config.idp_endpoint:
            raise ConfigurationError("IdP endpoint is not configured")
        self.config = config
        self.client = client

    def _with_secret_hash(self, payload: dict[str, Any], username: str, *, key: str = "SecretHash") -> dict[str, Any]:
        """Adds the Secret Hash under ``key`` for confidential clients; public clients get no field at all."""
        secret_hash = self.config.secret_hash(username)
        if secret_hash is not None:
            payload[key] = secret_hash
        return payload

    def _anonymize(self, value: str) -> str:
        return anonymize(value, self.config.pii_salt.get_secret_value())

    async def _call(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Performs one IdP API call.

        Raises:
            _Rejected: If the IdP refused the request with a recognized error.
            IdentityProviderError: On transport failure, timeout, 5xx or unrecognized errors.
        """
        headers = {"X-Amz-Target": _TARGET_PREFIX + operation, "Content-Type": _CONTENT_TYPE}
        try:
            response = await fetch_json(
                self.client,
                "POST",
                self.config.idp_endpoint,
                timeout=self.config.http_timeout,
                headers=headers,
                content=json.dumps(payload).encode("utf-8"),
            )
        except TimeoutError as e:
            raise IdentityProviderError(f"{operation} timed out after {self.config.http_timeout}s") from e
        except (httpx.HTTPError, OversizedResponseError) as e:
            raise IdentityProviderError(f"{operation} failed: {type(e).__name__}") from e

        if response.status_code >= 500:
            raise IdentityProviderError(f"{operation} returned HTTP {response.status_code}")

        if response.status_code >= 400:
            error_type = _error_type(response.data, response.error_type_header)
            kind = _ERROR_KINDS.get(error_type)
            if kind is None:
                raise IdentityProviderError(f"{operation} failed with {error_type} (HTTP {response.status_code})")
            raise _Rejected(kind, error_type)

        if not isinstance(response.data, dict):
            raise IdentityProviderError(f"{operation} returned an unexpected body")
        return response.data

    async def _execute(
        self,
        operation: str,
        payload: dict[str, Any],
        build: Callable[[dict[str, Any]], T],
        *,
        username: str | None = None,
        failure_message: str | None = None,
    ) -> Success[T] | Failure:
        """
        Runs one IdP call inside a span and folds every failure mode into a Failure value.
        """
        with tracer.start_as_current_span(f"cognito.{operation}") as span:
            if username:
                span.set_attribute("enduser.id", self._anonymize(username))
            try:
                data = await self._call(operation, payload)
                value = build(data)
            except _Rejected as e:
                logger.warning(f"{operation} rejected by IdP: {e.error_type}")
                span.set_status(Status(StatusCode.ERROR, e.error_type))
                if e.kind is ErrorKind.CONFIGURATION:
                    logger.error(f"{operation}: user pool or app client not found, check configuration")
                return Failure.of(e.kind, failure_message)
            except IdentityProviderError as e:
                logger.error(f"{operation} failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                return Failure.of(ErrorKind.IDENTITY_PROVIDER, failure_message)
            except (KeyError, TypeError, ValueError, ValidationError) as e:
                # Malformed success body
                logger.error(f"{operation} returned a malformed response: {type(e).__name__}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, "malformed response"))
                return Failure.of(ErrorKind.IDENTITY_PROVIDER, failure_message)

            span.set_status(Status(StatusCode.OK))
            return Success(value=value)

    async def sign_up(self, username: str, email: str, password: str) -> Success[SignUpResult] | Failure:
        """
        Registers a new user.

        Args:
            username: The desired username.
            email: The user's email address.
            password: The user's password.

        Returns:
            Success[SignUpResult] | Failure: The new user's subject ID and code delivery details.
        """
        if not username or not email or not password:
            return Failure.of(ErrorKind.INVALID_REQUEST, "Username, email, and password are required")

        payload = self._with_secret_hash(
            {
                "ClientId": self.config.client_id,
                "Username": username,
                "Password": password,
                "UserAttributes": [
                    {"Name": "email", "Value": email},
                    {"Name": "preferred_username", "Value": username},
                ],
            },
            username,
        )

        def build(data: dict[str, Any]) -> SignUpResult:
            delivery = data.get("CodeDeliveryDetails")
            return SignUpResult(
                user_sub=data["UserSub"],
                user_confirmed=bool(data.get("UserConfirmed", False)),
                code_delivery=CodeDeliveryDetails.model_validate(delivery) if delivery else None,
            )

        result = await self._execute("SignUp", payload, build, username=username)
        if isinstance(result, Success):
            logger.info(f"User {self._anonymize(username)} signed up")
        return result

    async def confirm_sign_up(self, username: str, code: str) -> Success[Acknowledgement] | Failure:
        """
        Confirms a sign-up with the emailed verification code.
        """
        if not username or not code:
            return Failure.of(ErrorKind.INVALID_REQUEST, "Username and verification code are required")

        payload = self._with_secret_hash(
            {"ClientId": self.config.client_id, "Username": username, "ConfirmationCode": code},
            username,
        )
        return await self._execute(
            "ConfirmSignUp",
            payload,
            lambda _: Acknowledgement(message="Email verified successfully"),
            username=username,
        )

    async def resend_confirmation_code(self, username: str) -> Success[CodeDeliveryDetails] | Failure:
        """
        Sends a new verification code.
        """
        if not username:
            return Failure.of(ErrorKind.INVALID_REQUEST, "Username is required")

        payload = self._with_secret_hash({"ClientId": self.config.client_id, "Username": username}, username)
        return await self._execute(
            "ResendConfirmationCode",
            payload,
            lambda data: CodeDeliveryDetails.model_validate(data.get("CodeDeliveryDetails") or {}),
            username=username,
        )

    async def sign_in(self, username: str, password: str) -> Success[TokenSet] | Failure:
        """
        Authenticates with username and password.

        Every failure carries the same generic message; the error kind is still specific so that
        callers can, for instance, route unconfirmed users to verification.

        Args:
            username: The username.
            password: The password. Never logged.

        Returns:
            Success[TokenSet] | Failure: Access, ID and refresh tokens with the expiry on success.
        """
        if not username or not password:
            return Failure.of(ErrorKind.INVALID_REQUEST, "Username and password are required")

        auth_parameters = self._with_secret_hash(
            {"USERNAME": username, "PASSWORD": password}, username, key="SECRET_HASH"
        )
        payload = {
            "AuthFlow": "USER_PASSWORD_AUTH",
            "ClientId": self.config.client_id,
            "AuthParameters": auth_parameters,
        }

        result = await self._execute(
            "InitiateAuth",
            payload,
            self._authentication_result,
            username=username,
            failure_message=SIGN_IN_FAILED,
        )
        if isinstance(result, Success):
            logger.info(f"User {self._anonymize(username)} signed in")
        return result

    async def refresh(self, refresh_token: str, username: str | None = None) -> Success[TokenSet] | Failure:
        """
        Exchanges a refresh token for new access and ID tokens.

        Confidential clients must supply the username (or subject ID) the Secret Hash is computed over.

        Args:
            refresh_token: The refresh token.
            username: The token owner's username, required when a client secret is configured.

        Returns:
            Success[TokenSet] | Failure: The new tokens; the refresh token is carried over.
        """
        if not refresh_token:
            return Failure.of(ErrorKind.INVALID_REQUEST, "Refresh token is required")

        auth_parameters: dict[str, Any] = {"REFRESH_TOKEN": refresh_token}
        if username:
            self._with_secret_hash(auth_parameters, username, key="SECRET_HASH")
        elif self.config.is_confidential:
            return Failure.of(ErrorKind.INVALID_REQUEST, "Username is required to refresh with a confidential client")

        payload = {
            "AuthFlow": "REFRESH_TOKEN_AUTH",
            "ClientId": self.config.client_id,
            "AuthParameters": auth_parameters,
        }
        return await self._execute(
            "InitiateAuth",
            payload,
            lambda data: self._authentication_result(data, refresh_token=refresh_token),
            username=username,
            failure_message="Token refresh failed",
        )

    async def sign_out(self, access_token: str) -> Success[Acknowledgement] | Failure:
        """
        Revokes all tokens of the user (global sign-out).
        """
        if not access_token:
            return Failure.of(ErrorKind.INVALID_REQUEST, "Access token is required")

        return await self._execute(
            "GlobalSignOut",
            {"AccessToken": access_token},
            lambda _: Acknowledgement(message="Signed out successfully"),
        )

    async def get_user_info(self, access_token: str) -> Success[Identity] | Failure:
        """
        Fetches the current user's recognized attributes.
        """
        if not access_token:
            return Failure.of(ErrorKind.INVALID_REQUEST, "Access token is required")

        return await self._execute("GetUser", {"AccessToken": access_token}, Identity.from_idp_user)

    async def verify_token(self, token: str) -> Success[Identity] | Failure:
        """
        Verifies an access token by asking the IdP for the current user.

        A token the IdP refuses is an INVALID_TOKEN failure. Failures in SERVER_ERROR_KINDS keep their
        kind, so callers can tell an IdP problem from a bad token. Never raises.

        Args:
            token: The raw bearer token.

        Returns:
            Success[Identity] | Failure: The token owner's identity on success.
        """
        if not token or not token.strip():
            return Failure.of(ErrorKind.INVALID_TOKEN)

        result = await self.get_user_info(token.strip())
        if isinstance(result, Failure) and result.kind not in SERVER_ERROR_KINDS:
            return Failure.of(ErrorKind.INVALID_TOKEN)
        return result

    @staticmethod
    def _authentication_result(data: dict[str, Any], refresh_token: str | None = None) -> TokenSet:
        result = data.get("AuthenticationResult")
        if not result:
            # MFA, NEW_PASSWORD_REQUIRED, ...
            raise _Rejected(ErrorKind.AUTH_CHALLENGE, str(data.get("ChallengeName", "UnknownChallenge")))
        return TokenSet.from_authentication_result(result, refresh_token=refresh_token)
