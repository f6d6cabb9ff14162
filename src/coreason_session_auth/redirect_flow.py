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
RedirectFlowHandler component for the OIDC Authorization Code flow.
"""

import hmac
from collections.abc import Mapping, MutableMapping
from enum import StrEnum
from typing import Any

from authlib.common.encoding import json_loads, to_bytes, urlsafe_b64decode
from authlib.common.security import generate_token
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import BaseModel, ConfigDict, Field

from coreason_session_auth.discovery import DiscoveredClient, DiscoveryState, OIDCDiscovery
from coreason_session_auth.exceptions import ClientNotReadyError, CoreasonAuthError, StateMismatchError
from coreason_session_auth.models import Identity, TokenSet
from coreason_session_auth.utils.logger import anonymize, logger

tracer = trace.get_tracer(__name__)

SESSION_STATE = "state"
SESSION_NONCE = "nonce"
SESSION_USER_INFO = "userInfo"
SESSION_TOKENS = "tokens"


class FlowState(StrEnum):
    AWAITING_REDIRECT = "awaiting_redirect"
    CALLBACK_RECEIVED = "callback_received"
    VALIDATING_STATE_AND_NONCE = "validating_state_and_nonce"
    EXCHANGING_CODE = "exchanging_code"
    FETCHING_USER_INFO = "fetching_user_info"
    SESSION_PERSISTED = "session_persisted"
    FAILED = "failed"


class FailureReason(StrEnum):
    CLIENT_NOT_READY = "client-not-ready"
    STATE_OR_NONCE_MISMATCH = "state-or-nonce-mismatch"
    CODE_EXCHANGE_ERROR = "code-exchange-error"
    USERINFO_FETCH_ERROR = "userinfo-fetch-error"


class CallbackOutcome(BaseModel):
    """
    Result of one callback request.

    Attributes:
        state (FlowState): SESSION_PERSISTED or FAILED.
        reason (FailureReason | None): Why the flow failed.
        transitions (list[FlowState]): Every state the flow passed through, in order.
        identity (Identity | None): The signed-in identity on success.
    """

    model_config = ConfigDict(frozen=True)

    state: FlowState
    reason: FailureReason | None = None
    transitions: list[FlowState] = Field(default_factory=list)
    identity: Identity | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is FlowState.SESSION_PERSISTED


def _unverified_claims(id_token: str) -> dict[str, Any]:
    """
    Reads the ID token payload without verifying the signature.
    The token came straight from the token endpoint over TLS; only the nonce is read from it.
    """
    try:
        claims = json_loads(urlsafe_b64decode(to_bytes(id_token.split(".")[1])))
    except (IndexError, ValueError, TypeError) as e:
        raise StateMismatchError("ID token is malformed") from e
    if not isinstance(claims, dict):
        raise StateMismatchError("ID token payload is not an object")
    return claims


def _same(received: Any, expected: Any) -> bool:
    if not isinstance(received, str) or not isinstance(expected, str) or not expected:
        return False
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


class RedirectFlowHandler:
    """
    Runs the browser side of the OIDC Authorization Code flow.

    ``begin`` stores fresh ``state`` and ``nonce`` in the session and returns the authorize URL.
    ``handle_callback`` validates them against the callback, exchanges the code, fetches the user info and
    writes ``tokens`` and ``userInfo`` into the session. The session store itself is owned by the caller.
    """

    def __init__(self, discovery: OIDCDiscovery) -> None:
        self.discovery = discovery

    async def _ready_client(self) -> DiscoveredClient | None:
        """
        Returns the client, or None if it is not ready.

        A discovery that never ran or last failed is retried here, bounded by the HTTP timeout.
        A discovery already in flight is not waited for.
        """
        if self.discovery.is_ready:
            return await self.discovery.get_client()
        if self.discovery.state is DiscoveryState.DISCOVERING:
            return None
        logger.info(f"OIDC client is {self.discovery.state}, retrying discovery")
        if not await self.discovery.warm_up():
            return None
        return await self.discovery.get_client()

    async def begin(self, session: MutableMapping[str, Any]) -> str:
        """
        Starts a login: generates state and nonce, stores them in the session, returns the authorize URL.

        Raises:
            ClientNotReadyError: If OIDC discovery is in flight or failed again.
        """
        client = await self._ready_client()
        if client is None:
            raise ClientNotReadyError("OIDC client is not ready")

        state = generate_token(32)
        nonce = generate_token(32)
        session[SESSION_STATE] = state
        session[SESSION_NONCE] = nonce
        return client.create_authorization_url(state, nonce)

    async def handle_callback(
        self, params: Mapping[str, str], session: MutableMapping[str, Any]
    ) -> CallbackOutcome:
        """
        Handles the authorization callback.

        Never raises for flow failures: every failure ends in ``FAILED`` with a reason, and leaves the
        session without new tokens. The stored state and nonce are consumed in all cases.

        Args:
            params: The callback query parameters (``code``, ``state``, possibly ``error``).
            session: The browser session.

        Returns:
            CallbackOutcome: The terminal state and the path taken.
        """
        transitions = [FlowState.AWAITING_REDIRECT, FlowState.CALLBACK_RECEIVED]
        expected_state = session.pop(SESSION_STATE, None)
        expected_nonce = session.pop(SESSION_NONCE, None)

        def fail(reason: FailureReason, detail: str) -> CallbackOutcome:
            logger.warning(f"OIDC callback failed ({reason}): {detail}")
            span.set_status(Status(StatusCode.ERROR, reason))
            transitions.append(FlowState.FAILED)
            return CallbackOutcome(state=FlowState.FAILED, reason=reason, transitions=transitions)

        with tracer.start_as_current_span("oidc.callback") as span:
            client = await self._ready_client()
            if client is None:
                return fail(FailureReason.CLIENT_NOT_READY, "OIDC client not ready, redirecting to login")

            transitions.append(FlowState.VALIDATING_STATE_AND_NONCE)
            if not _same(params.get("state"), expected_state):
                return fail(FailureReason.STATE_OR_NONCE_MISMATCH, "state does not match the session")
            if not isinstance(expected_nonce, str) or not expected_nonce:
                return fail(FailureReason.STATE_OR_NONCE_MISMATCH, "no nonce stored in the session")

            if params.get("error"):
                return fail(FailureReason.CODE_EXCHANGE_ERROR, "IdP returned an error instead of a code")
            code = params.get("code")
            if not code:
                return fail(FailureReason.CODE_EXCHANGE_ERROR, "callback carries no code")

            transitions.append(FlowState.EXCHANGING_CODE)
            try:
                tokens = await client.exchange_code(code)
            except CoreasonAuthError as e:
                return fail(FailureReason.CODE_EXCHANGE_ERROR, str(e))

            # The nonce lives in the ID token, so it can only be compared after the exchange.
            try:
                self._check_nonce(tokens, expected_nonce)
            except StateMismatchError as e:
                return fail(FailureReason.STATE_OR_NONCE_MISMATCH, str(e))

            transitions.append(FlowState.FETCHING_USER_INFO)
            try:
                identity = await client.fetch_userinfo(tokens.access_token)
            except CoreasonAuthError as e:
                return fail(FailureReason.USERINFO_FETCH_ERROR, str(e))

            session[SESSION_USER_INFO] = identity.model_dump(mode="json")
            session[SESSION_TOKENS] = tokens.to_session()
            transitions.append(FlowState.SESSION_PERSISTED)

            salt = client.config.pii_salt.get_secret_value()
            logger.info(f"User {anonymize(identity.subject_id, salt)} authenticated via OIDC")
            span.set_attribute("enduser.id", anonymize(identity.subject_id, salt))
            span.set_status(Status(StatusCode.OK))
            return CallbackOutcome(state=FlowState.SESSION_PERSISTED, transitions=transitions, identity=identity)

    @staticmethod
    def _check_nonce(tokens: TokenSet, expected_nonce: str) -> None:
        if not tokens.id_token:
            raise StateMismatchError("token response carries no ID token")
        if not _same(_unverified_claims(tokens.id_token).get("nonce"), expected_nonce):
            raise StateMismatchError("nonce does not match the session")


def session_tokens(session: Mapping[str, Any]) -> TokenSet | None:
    """Reads the token set written by a successful callback, if any."""
    raw = session.get(SESSION_TOKENS)
    return TokenSet.model_validate(raw) if raw else None


def session_identity(session: Mapping[str, Any]) -> Identity | None:
    """Reads the identity written by a successful callback, if any."""
    raw = session.get(SESSION_USER_INFO)
    return Identity.model_validate(raw) if raw else None
