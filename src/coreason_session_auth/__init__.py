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
Session and bearer authentication against a managed OIDC user pool: password API, redirect flow, middleware.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .app import create_app
from .async_context import get_current_identity
from .config import ClientConfig, load_config
from .discovery import DiscoveryState, OIDCDiscovery
from .exceptions import (
    ClientNotReadyError,
    ConfigurationError,
    CoreasonAuthError,
    DiscoveryError,
    IdentityProviderError,
    InvalidCredentialError,
)
from .idp_adapter import CognitoIdentityAdapter
from .manager import AuthManager
from .middleware import BearerVerifier, OptionalBearerMiddleware, RequireBearerMiddleware
from .models import Identity, TokenSet, UserAttributes
from .redirect_flow import CallbackOutcome, FailureReason, FlowState, RedirectFlowHandler
from .results import ErrorKind, Failure, Success
from .secret_hash import compute_secret_hash

__all__ = [
    "AuthManager",
    "BearerVerifier",
    "CallbackOutcome",
    "ClientConfig",
    "ClientNotReadyError",
    "CognitoIdentityAdapter",
    "ConfigurationError",
    "CoreasonAuthError",
    "DiscoveryError",
    "DiscoveryState",
    "ErrorKind",
    "Failure",
    "FailureReason",
    "FlowState",
    "Identity",
    "IdentityProviderError",
    "InvalidCredentialError",
    "OIDCDiscovery",
    "OptionalBearerMiddleware",
    "RedirectFlowHandler",
    "RequireBearerMiddleware",
    "Success",
    "TokenSet",
    "UserAttributes",
    "compute_secret_hash",
    "create_app",
    "get_current_identity",
    "load_config",
]
