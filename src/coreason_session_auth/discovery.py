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
OIDC Discovery component: one-shot discovery of issuer metadata and the shared redirect-flow client.
"""

from enum import StrEnum
from typing import Any

import anyio
import httpx
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri, prepare_token_request
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from coreason_session_auth.config import ClientConfig
from coreason_session_auth.exceptions import (
    CoreasonAuthError,
    DiscoveryError,
    IdentityProviderError,
    InvalidCredentialError,
    OversizedResponseError,
)
from coreason_session_auth.models import Identity, TokenSet
from coreason_session_auth.models_internal import JsonResponse, OIDCMetadata
from coreason_session_auth.transport import fetch_json
from coreason_session_auth.utils.logger import logger

tracer = trace.get_tracer(__name__)


class DiscoveryState(StrEnum):
    UNINITIALIZED = "uninitialized"
    DISCOVERING = "discovering"
    READY = "ready"
    FAILED = "failed"


class DiscoveredClient:
    """
    Redirect-flow client bound to the discovered issuer metadata and the app client configuration.

    Read-only once built; safe to share between concurrent requests.

    Attributes:
        metadata (OIDCMetadata): The issuer metadata.
        config (ClientConfig): The app client configuration.
    """

    def __init__(self, metadata: OIDCMetadata, config: ClientConfig, client: httpx.AsyncClient) -> None:
        self.metadata = metadata
        self.config = config
        self.client = client

    def create_authorization_url(self, state: str, nonce: str) -> str:
        """
        Builds the IdP authorize URL for the Authorization Code flow.

        Args:
            state: The anti-CSRF value stored in the session.
            nonce: The anti-replay value stored in the session, echoed in the ID token.
        """
        return prepare_grant_uri(
            self.metadata.authorization_endpoint,
            self.config.client_id,
            " ".join(self.config.response_types),
            redirect_uri=self.config.redirect_uri,
            scope=self.config.scopes,
            state=state,
            nonce=nonce,
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> JsonResponse:
        try:
            return await fetch_json(self.client, method, url, timeout=self.config.http_timeout, **kwargs)
        except TimeoutError as e:
            raise IdentityProviderError(f"{method} {url} timed out after {self.config.http_timeout}s") from e
        except (httpx.HTTPError, OversizedResponseError) as e:
            raise IdentityProviderError(f"{method} {url} failed: {type(e).__name__}") from e

    async def exchange_code(self, code: str) -> TokenSet:
        """
        Exchanges an authorization code at the token endpoint.

        Confidential clients authenticate with HTTP Basic (client_secret_basic).

        Returns:
            TokenSet: The issued tokens.

        Raises:
            InvalidCredentialError: If the token endpoint rejects the code.
            IdentityProviderError: On transport failure, timeout or an unusable response.
        """
        body = prepare_token_request(
            "authorization_code",
            redirect_uri=self.config.redirect_uri,
            code=code,
            client_id=self.config.client_id,
        )
        auth = None
        if self.config.client_secret is not None:
            auth = httpx.BasicAuth(self.config.client_id, self.config.client_secret.get_secret_value())

        response = await self._request(
            "POST",
            self.metadata.token_endpoint,
            content=body.encode("utf-8"),
            headers={"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"},
            auth=auth,
        )
        data = response.data if isinstance(response.data, dict) else {}

        if response.status_code >= 500:
            raise IdentityProviderError(f"Token endpoint returned HTTP {response.status_code}")
        if response.status_code != 200 or "error" in data:
            raise InvalidCredentialError(f"Token endpoint rejected the code: {data.get('error', response.status_code)}")

        try:
            return TokenSet.from_oauth_token(data)
        except (KeyError, ValidationError) as e:
            raise IdentityProviderError(f"Invalid token response: {type(e).__name__}") from e

    async def fetch_userinfo(self, access_token: str) -> Identity:
        """
        Fetches the user's claims from the userinfo endpoint.

        Raises:
            InvalidCredentialError: If the access token is refused.
            IdentityProviderError: If the issuer has no userinfo endpoint, is unreachable, or answers badly.
        """
        if not self.metadata.userinfo_endpoint:
            raise IdentityProviderError("Issuer metadata has no userinfo_endpoint")

        response = await self._request(
            "GET",
            self.metadata.userinfo_endpoint,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        if response.status_code in (401, 403):
            raise InvalidCredentialError(f"Userinfo endpoint refused the access token (HTTP {response.status_code})")
        if response.status_code != 200 or not isinstance(response.data, dict):
            raise IdentityProviderError(f"Userinfo endpoint returned HTTP {response.status_code}")

        try:
            return Identity.from_claims(response.data)
        except ValueError as e:
            raise IdentityProviderError(f"Invalid userinfo response: {type(e).__name__}") from e


class _PendingDiscovery:
    """The in-flight discovery operation that concurrent callers attach to."""

    def __init__(self) -> None:
        self.done = anyio.Event()
        self.client: DiscoveredClient | None = None
        self.error: DiscoveryError | None = None


class OIDCDiscovery:
    """
    Lazily discovers the issuer metadata and builds the DiscoveredClient exactly once.

    ``UNINITIALIZED -> DISCOVERING -> READY``, or ``DISCOVERING -> FAILED``; a failed discovery is
    retried by the next caller. Concurrent callers during DISCOVERING share one in-flight operation.
    Once READY the client is kept for the process lifetime.

    Attributes:
        config (ClientConfig): The app client configuration.
        client (httpx.AsyncClient): The async HTTP client used for the metadata fetch.
    """

    def __init__(self, config: ClientConfig, client: httpx.AsyncClient) -> None:
        """
        Initialize the OIDCDiscovery.

        Args:
            config: The app client configuration.
            client: The async HTTP client to use for requests.
        """
        self.config = config
        self.client = client
        self._discovered: DiscoveredClient | None = None
        self._pending: _PendingDiscovery | None = None
        self._state = DiscoveryState.UNINITIALIZED
        self._lock: anyio.Lock | None = None

    @property
    def state(self) -> DiscoveryState:
        return self._state

    @property
    def is_ready(self) -> bool:
        """Fast-path readiness signal; never waits."""
        return self._discovered is not None

    async def get_client(self) -> DiscoveredClient:
        """
        Returns the DiscoveredClient, discovering it first if needed.

        Returns:
            DiscoveredClient: The shared redirect-flow client.

        Raises:
            DiscoveryError: If the discovery this caller started or attached to failed.
        """
        if self._discovered is not None:
            return self._discovered

        if self._lock is None:
            self._lock = anyio.Lock()

        async with self._lock:
            if self._discovered is not None:
                return self._discovered
            pending = self._pending
            owner = pending is None
            if pending is None:
                pending = self._pending = _PendingDiscovery()
                self._state = DiscoveryState.DISCOVERING

        if owner:
            await self._run(pending)
        else:
            await pending.done.wait()

        if pending.error is not None:
            if owner:
                raise pending.error
            raise DiscoveryError(str(pending.error)) from pending.error

        if pending.client is None:
            # Should be unreachable: a finished discovery always sets client or error
            raise DiscoveryError("Failed to load OIDC configuration")
        return pending.client

    async def warm_up(self) -> bool:
        """
        Starts discovery eagerly (e.g. at process start). Failure is logged, not raised.

        Returns:
            bool: True if the client is ready.
        """
        try:
            await self.get_client()
        except DiscoveryError as e:
            logger.error(f"Failed to initialize OIDC client: {e}")
            return False
        return True

    async def _run(self, pending: _PendingDiscovery) -> None:
        try:
            discovered = await self._discover()
        except DiscoveryError as e:
            pending.error = e
        except BaseException:
            # Cancelled or crashed owner: waiters must not hang
            pending.error = DiscoveryError("OIDC discovery was interrupted")
            raise
        else:
            pending.client = discovered
            self._discovered = discovered
        finally:
            self._state = DiscoveryState.READY if pending.client is not None else DiscoveryState.FAILED
            self._pending = None
            pending.done.set()

    async def _discover(self) -> DiscoveredClient:
        """
        Fetches and validates the issuer metadata.

        Raises:
            DiscoveryError: If the issuer is unreachable or the metadata is invalid.
        """
        url = self.config.discovery_url
        with tracer.start_as_current_span("oidc.discovery") as span:
            logger.info(f"Initializing OIDC client with issuer: {self.config.issuer_url}")
            try:
                metadata = await self._fetch_metadata(url)
            except DiscoveryError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            span.set_status(Status(StatusCode.OK))
            logger.info("OIDC client initialized successfully")
            return DiscoveredClient(metadata, self.config, self.client)

    async def _fetch_metadata(self, url: str) -> OIDCMetadata:
        try:
            response = await fetch_json(self.client, "GET", url, timeout=self.config.http_timeout)
        except TimeoutError as e:
            raise DiscoveryError(f"Timed out fetching OIDC configuration from {url}") from e
        except (httpx.HTTPError, CoreasonAuthError) as e:
            raise DiscoveryError(f"Failed to fetch OIDC configuration from {url}: {e}") from e

        if response.status_code != 200 or not isinstance(response.data, dict):
            raise DiscoveryError(f"Failed to fetch OIDC configuration from {url}: HTTP {response.status_code}")

        try:
            metadata = OIDCMetadata(**response.data)
        except ValidationError as e:
            raise DiscoveryError(f"Invalid OIDC configuration from {url}: {e}") from e

        if metadata.issuer.rstrip("/") != self.config.issuer_url:
            raise DiscoveryError(
                f"Issuer mismatch: configured {self.config.issuer_url}, discovered {metadata.issuer}"
            )
        return metadata
