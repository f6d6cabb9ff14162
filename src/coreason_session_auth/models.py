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
Data models for the coreason-session-auth package.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TokenSet(BaseModel):
    """
    Tokens issued by the IdP, from either the password flow or the redirect flow.

    Serialized with camelCase keys when written into the session.

    Attributes:
        access_token (str): The access token.
        id_token (str | None): The OIDC ID token.
        refresh_token (str | None): The refresh token, if issued.
        expires_in (int | None): Lifetime of the access token in seconds.
        token_type (str): The token type (e.g. "Bearer").
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    access_token: str
    id_token: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str = "Bearer"

    @classmethod
    def from_authentication_result(cls, result: dict[str, Any], refresh_token: str | None = None) -> "TokenSet":
        """
        Builds a TokenSet from the IdP's AuthenticationResult block.

        Args:
            result: The AuthenticationResult mapping.
            refresh_token: Refresh token to carry over when the IdP does not rotate it.
        """
        return cls(
            access_token=result["AccessToken"],
            id_token=result.get("IdToken"),
            refresh_token=result.get("RefreshToken") or refresh_token,
            expires_in=result.get("ExpiresIn"),
            token_type=result.get("TokenType") or "Bearer",
        )

    @classmethod
    def from_oauth_token(cls, token: dict[str, Any]) -> "TokenSet":
        """Builds a TokenSet from an OAuth 2.0 token endpoint response."""
        return cls(
            access_token=token["access_token"],
            id_token=token.get("id_token"),
            refresh_token=token.get("refresh_token"),
            expires_in=token.get("expires_in"),
            token_type=token.get("token_type") or "Bearer",
        )

    def to_session(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def __repr__(self) -> str:
        return (
            f"TokenSet(access_token='<REDACTED>', "
            f"id_token={'<REDACTED>' if self.id_token else None!r}, "
            f"refresh_token={'<REDACTED>' if self.refresh_token else None!r}, "
            f"expires_in={self.expires_in!r}, token_type={self.token_type!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()


class UserAttributes(BaseModel):
    """
    The recognized user attributes. Any other attribute key is dropped.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    sub: str | None = None
    email: str | None = None
    email_verified: bool | None = None
    preferred_username: str | None = None
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    phone_number: str | None = None
    phone_number_verified: bool | None = None
    locale: str | None = None
    zoneinfo: str | None = None
    updated_at: int | None = None

    @classmethod
    def from_attribute_list(cls, attributes: list[dict[str, Any]]) -> "UserAttributes":
        """
        Maps the IdP's ``[{"Name": ..., "Value": ...}]`` attribute list onto the recognized keys.
        """
        recognized = {
            attr["Name"]: attr.get("Value")
            for attr in attributes
            if isinstance(attr, dict) and attr.get("Name") in cls.model_fields
        }
        return cls(**recognized)


class Identity(BaseModel):
    """
    A verified identity attached to a request (bearer flow) or a session (redirect flow).

    This model is frozen (immutable) to ensure integrity as it passes through the system.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        json_schema_extra={
            "example": {
                "subject_id": "2f1b6a3e-8c1d-4a51-9a0e-3d2b1c4e5f60",
                "username": "alice",
                "email": "alice@coreason.ai",
            }
        },
    )

    subject_id: str = Field(..., description="The immutable subject ID ('sub').")
    username: str = Field(..., description="The IdP username.")
    email: str | None = Field(default=None, description="The user's email address, as the IdP stores it.")
    attributes: UserAttributes = Field(default_factory=UserAttributes)

    @classmethod
    def from_idp_user(cls, user: dict[str, Any]) -> "Identity":
        """
        Builds an Identity from a "get current user" response.

        Args:
            user: Mapping with ``Username`` and ``UserAttributes``.
        """
        attributes = UserAttributes.from_attribute_list(user.get("UserAttributes") or [])
        username = user["Username"]
        return cls(
            subject_id=attributes.sub or username,
            username=username,
            email=attributes.email,
            attributes=attributes,
        )

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "Identity":
        """
        Builds an Identity from OIDC userinfo claims.

        Args:
            claims: The userinfo response. Must contain ``sub``.
        """
        attributes = UserAttributes.model_validate(claims)
        if not attributes.sub:
            raise ValueError("userinfo response does not contain 'sub'")
        username = claims.get("username") or attributes.preferred_username or attributes.sub
        return cls(
            subject_id=attributes.sub,
            username=str(username),
            email=attributes.email,
            attributes=attributes,
        )

    def __repr__(self) -> str:
        # PII fields MUST be redacted in __repr__
        return "Identity(subject_id='<REDACTED>', username='<REDACTED>', email='<REDACTED>')"

    def __str__(self) -> str:
        return self.__repr__()


class CodeDeliveryDetails(BaseModel):
    """Where a confirmation code was sent."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    destination: str | None = Field(default=None, alias="Destination")
    delivery_medium: str | None = Field(default=None, alias="DeliveryMedium")
    attribute_name: str | None = Field(default=None, alias="AttributeName")


class SignUpResult(BaseModel):
    """
    Outcome of a successful sign-up.

    Attributes:
        user_sub (str): The subject ID assigned to the new user.
        user_confirmed (bool): Whether the user is already confirmed.
        code_delivery (CodeDeliveryDetails | None): Where the confirmation code was sent.
    """

    model_config = ConfigDict(frozen=True)

    user_sub: str
    user_confirmed: bool = False
    code_delivery: CodeDeliveryDetails | None = None


class Acknowledgement(BaseModel):
    """Payload for operations that only confirm completion."""

    model_config = ConfigDict(frozen=True)

    message: str
