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
Internal data models for the coreason-session-auth package.
These are not exposed in the public API.
"""

from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field


class OIDCMetadata(BaseModel):
    """
    OIDC issuer metadata from .well-known/openid-configuration.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str = Field(..., description="The OIDC issuer URL.")
    authorization_endpoint: str = Field(..., description="The authorize endpoint URL.")
    token_endpoint: str = Field(..., description="The token endpoint URL.")
    userinfo_endpoint: str | None = Field(default=None, description="The userinfo endpoint URL.")
    jwks_uri: str | None = Field(default=None, description="The URL to the JWKS.")
    end_session_endpoint: str | None = Field(default=None, description="The logout endpoint URL.")
    response_types_supported: list[str] = Field(default_factory=list)
    token_endpoint_auth_methods_supported: list[str] = Field(default_factory=list)


class JsonResponse(NamedTuple):
    status_code: int
    data: object
    error_type_header: str | None = None
