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
Bounded JSON requests: every outbound IdP/OIDC call gets a deadline and a response size cap.
"""

import json
from typing import Any

import anyio
import httpx

from coreason_session_auth.exceptions import IdentityProviderError, OversizedResponseError
from coreason_session_auth.models_internal import JsonResponse

MAX_RESPONSE_BYTES = 1_000_000


async def fetch_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    timeout: float,
    max_bytes: int = MAX_RESPONSE_BYTES,
    **kwargs: Any,
) -> JsonResponse:
    """
    Sends a request and parses the JSON body, whatever the status code.

    The whole exchange (connect, send, stream body) runs under a single deadline.
    4xx bodies are returned rather than raised, because the IdP reports its error type in them.

    Args:
        client: The async HTTP client.
        method: The HTTP method.
        url: The target URL.
        timeout: Deadline in seconds for the whole exchange.
        max_bytes: Maximum accepted body size.
        **kwargs: Passed through to ``client.stream`` (headers, content, data, params).

    Returns:
        JsonResponse: Status code, decoded body and the ``x-amzn-ErrorType`` header if present.

    Raises:
        TimeoutError: If the deadline expires.
        OversizedResponseError: If the body exceeds ``max_bytes``.
        IdentityProviderError: If the body is not valid JSON.
        httpx.HTTPError: On transport failures.
    """
    with anyio.fail_after(timeout):
        async with client.stream(method, url, **kwargs) as response:
            content_length = response.headers.get("Content-Length")
            if content_length and content_length.isdigit() and int(content_length) > max_bytes:
                raise OversizedResponseError(f"Response from {url} too large")

            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) > max_bytes:
                    raise OversizedResponseError(f"Response from {url} too large")

    data: Any = None
    if body:
        try:
            data = json.loads(body)
        except ValueError as e:
            raise IdentityProviderError(f"Invalid JSON from {url} (HTTP {response.status_code})") from e

    return JsonResponse(response.status_code, data, response.headers.get("x-amzn-ErrorType"))
