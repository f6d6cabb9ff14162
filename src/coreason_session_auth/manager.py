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
AuthManager component for wiring the password flow, the redirect flow and bearer verification.
"""

from typing import Any

import httpx
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from starlette.routing import BaseRoute

from coreason_session_auth.config import ClientConfig
from coreason_session_auth.discovery import OIDCDiscovery
from coreason_session_auth.exceptions import IdentityProviderError, InvalidCredentialError
from coreason_session_auth.idp_adapter import CognitoIdentityAdapter
from coreason_session_auth.middleware import BearerVerifier, VerificationStatus
from coreason_session_auth.models import Identity
from coreason_session_auth.redirect_flow import RedirectFlowHandler
from coreason_session_auth.routes import build_password_routes, build_redirect_routes


class AuthManager:
    """
    Async entry point. Owns the shared HTTP client and the components built on it.
    Handles resources via async context manager.

    Attributes:
        config (ClientConfig): The app client configuration.
        adapter (CognitoIdentityAdapter): The password-flow adapter.
        discovery (OIDCDiscovery): The OIDC discovery singleton.
        redirect_flow (RedirectFlowHandler): The redirect-flow handler.
        verifier (BearerVerifier): The shared bearer verification step.
    """

    def __init__(self, config: ClientConfig, client: httpx.AsyncClient | None = None) -> None:
        """
        Initialize the AuthManager.

        Args:
            config: The configuration object.
            client: External async client (optional). If not provided, one is created and closed on exit.

        Raises:
            ConfigurationError: If the configuration lacks the client ID or the IdP endpoint.
        """
        self.config = config
        self._internal_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.config.http_timeout)

        # Instrument the client for distributed tracing
        HTTPXClientInstrumentor().instrument_client(self._client)

        self.adapter = CognitoIdentityAdapter(config, self._client)
        self.discovery = OIDCDiscovery(config, self._client)
        self.redirect_flow = RedirectFlowHandler(self.discovery)
        self.verifier = BearerVerifier(self.adapter)

    async def __aenter__(self) -> "AuthManager":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._internal_client:
            await self._client.aclose()

    @property
    def oidc_ready(self) -> bool:
        return self.discovery.is_ready

    async def warm_up(self) -> bool:
        """
        Runs OIDC discovery eagerly. Failure is logged; the password flow is unaffected.

        Returns:
            bool: True if the redirect flow is ready.
        """
        return await self.discovery.warm_up()

    async def validate_bearer(self, auth_header: str | None) -> Identity:
        """
        Validates a raw ``Authorization`` header value and returns the token owner's identity.

        For callers outside the middleware (e.g. websocket handshakes).

        Args:
            auth_header: The raw header value (e.g. "Bearer <token>").

        Returns:
            Identity: The verified identity.

        Raises:
            InvalidCredentialError: If the header is missing or malformed, or the IdP refuses the token.
            IdentityProviderError: If the IdP could not be reached.
        """
        verification = await self.verifier.verify(auth_header)
        if verification.status is VerificationStatus.MISSING:
            raise InvalidCredentialError("Missing or malformed Authorization header.")
        if verification.status is VerificationStatus.INVALID:
            raise InvalidCredentialError("Invalid or expired token.")
        if verification.status is VerificationStatus.ERROR or verification.identity is None:
            raise IdentityProviderError("Token verification is unavailable.")
        return verification.identity

    def routes(self, password_prefix: str = "/auth") -> list[BaseRoute]:
        """
        All auth endpoints: the redirect flow and the JSON password API.
        """
        return [
            *build_redirect_routes(self.redirect_flow, self.config),
            *build_password_routes(self.adapter, self.verifier, prefix=password_prefix),
        ]
