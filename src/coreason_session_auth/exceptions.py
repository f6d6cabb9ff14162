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
Custom exceptions for the coreason-session-auth package.
"""


class CoreasonAuthError(Exception):
    """Base exception for all coreason-session-auth errors."""


class ConfigurationError(CoreasonAuthError):
    """
    Raised when a required setting is missing or invalid.
    Fatal to the surrounding process; raised before any network call.
    """


class IdentityProviderError(CoreasonAuthError):
    """Raised when the IdP is unreachable, times out, or answers with an unexpected error."""


class InvalidCredentialError(CoreasonAuthError):
    """Raised when a password, confirmation code or token is rejected by the IdP."""


class DiscoveryError(CoreasonAuthError):
    """
    Raised when the OIDC issuer metadata cannot be fetched or is invalid.
    Blocks the redirect flow only; the password flow is unaffected.
    """


class ClientNotReadyError(CoreasonAuthError):
    """Raised when the redirect flow is used before OIDC discovery has completed."""


class StateMismatchError(CoreasonAuthError):
    """Raised when the callback state or nonce does not match the session. Treated as tampering."""


class OversizedResponseError(CoreasonAuthError):
    """Raised when an HTTP response is too large."""
