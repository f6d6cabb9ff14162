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
Starlette application factory: session cookie, auth endpoints and OIDC warm-up.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import anyio
import httpx
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.sessions import SessionMiddleware

from coreason_session_auth.config import ClientConfig
from coreason_session_auth.exceptions import ConfigurationError
from coreason_session_auth.manager import AuthManager
from coreason_session_auth.utils.logger import logger

SESSION_MAX_AGE = 24 * 60 * 60


def create_app(config: ClientConfig, client: httpx.AsyncClient | None = None) -> Starlette:
    """
    Builds an app serving the auth endpoints.

    OIDC discovery starts in the background at startup; until it completes the redirect flow
    answers with ``error=oidc_unavailable`` while the password API is already usable.

    Args:
        config: The configuration object. ``session_secret`` is required.
        client: External async client (optional), shared with the AuthManager.

    Raises:
        ConfigurationError: If no session secret is configured.
    """
    if config.session_secret is None or not config.session_secret.get_secret_value():
        raise ConfigurationError("COREASON_AUTH_SESSION_SECRET is required to sign session cookies")

    manager = AuthManager(config, client)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with manager, anyio.create_task_group() as tg:
            tg.start_soon(manager.warm_up)
            logger.info("Auth service started")
            yield
            tg.cancel_scope.cancel()
        logger.info("Auth service stopped")

    app = Starlette(
        routes=manager.routes(),
        middleware=[
            Middleware(
                SessionMiddleware,
                secret_key=config.session_secret.get_secret_value(),
                max_age=SESSION_MAX_AGE,
                same_site="lax",
                https_only=not config.unsafe_local_dev,
            )
        ],
        lifespan=lifespan,
    )
    app.state.auth = manager
    return app
