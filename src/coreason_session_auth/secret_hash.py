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
Secret Hash computation for confidential (secret-holding) IdP clients.
"""

import base64
import hashlib
import hmac

from pydantic import SecretStr


def compute_secret_hash(username: str, client_id: str, client_secret: SecretStr | str | None) -> str | None:
    """
    Computes the Secret Hash proof for a username.

    The proof is the base64-encoded HMAC-SHA256 of ``username + client_id``, keyed by the client secret.

    Args:
        username: The username the request refers to.
        client_id: The app client ID.
        client_secret: The app client secret, if the client is confidential.

    Returns:
        str | None: The proof, or None when no secret is configured. Callers must omit
        the field entirely on None; an empty string is rejected by the IdP as malformed.
    """
    if isinstance(client_secret, SecretStr):
        client_secret = client_secret.get_secret_value()

    if not client_secret:
        return None

    digest = hmac.new(
        client_secret.encode("utf-8"),
        (username + client_id).encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")
