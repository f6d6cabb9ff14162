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
Request-scoped access to the verified Identity.
"""

from contextvars import ContextVar, Token

from coreason_session_auth.models import Identity

_current_identity: ContextVar[Identity | None] = ContextVar("current_identity", default=None)


def get_current_identity() -> Identity | None:
    """
    Retrieve the identity verified for the current request.

    Returns:
        Identity | None: The identity, or None outside an authenticated request.
    """
    return _current_identity.get()


def set_current_identity(identity: Identity) -> Token[Identity | None]:
    """
    Set the identity for the current request.

    Args:
        identity: The verified Identity.

    Returns:
        Token: Pass to ``reset_current_identity`` when the request completes.
    """
    return _current_identity.set(identity)


def reset_current_identity(token: Token[Identity | None]) -> None:
    _current_identity.reset(token)


def clear_current_identity() -> None:
    """
    Clear the current identity (reset to None).
    """
    _current_identity.set(None)
