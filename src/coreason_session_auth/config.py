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
Configuration for the coreason-session-auth package.
"""

from typing import Any

from pydantic import Field, SecretStr, ValidationError, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from coreason_session_auth.exceptions import ConfigurationError
from coreason_session_auth.secret_hash import compute_secret_hash
from coreason_session_auth.utils.logger import logger

ENV_PREFIX = "COREASON_AUTH_"


class ClientConfig(BaseSettings):
    """
    Configuration settings for the IdP app client and the OIDC redirect flow.

    Loaded once at process start and immutable thereafter.

    Attributes:
        user_pool_id (str): The user pool identifier (e.g. us-east-1_AbCdEf123).
        client_id (str): The app client ID.
        client_secret (SecretStr | None): The app client secret, for confidential clients.
        region (str): The IdP region. Derived from the user pool ID when absent.
        issuer_url (str): The OIDC issuer. Derived from region and user pool ID when absent.
        idp_endpoint (str): The IdP JSON API endpoint. Derived from region when absent.
        redirect_uri (str): The OIDC callback URI registered with the IdP.
        response_types (list[str]): Accepted OIDC response types.
        scopes (list[str]): Scopes requested on the authorize redirect.
        http_timeout (float): Deadline in seconds for every outbound IdP/OIDC call.
        login_path (str): Browser login entry point used on redirect-flow failure.
        post_login_path (str): Where the browser lands after a successful callback.
        pii_salt (SecretStr): Salt for anonymizing usernames and subjects in logs/traces.
        session_secret (SecretStr | None): Signing key for the session cookie. Required only by `create_app`.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        frozen=True,
    )

    unsafe_local_dev: bool = False
    user_pool_id: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    client_secret: SecretStr | None = None
    region: str = Field(..., min_length=1)
    issuer_url: str
    idp_endpoint: str
    redirect_uri: str = Field(..., min_length=1)
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    scopes: list[str] = Field(default_factory=lambda: ["openid", "email", "profile"])
    http_timeout: float = Field(default=10.0, gt=0, description="Timeout in seconds for all IdP network operations.")
    login_path: str = "/login"
    post_login_path: str = "/"
    pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt")
    session_secret: SecretStr | None = None

    @model_validator(mode="before")
    @classmethod
    def derive_endpoints(cls, data: Any) -> Any:
        """
        Fills region, issuer and API endpoint from the user pool ID when they are not set explicitly.
        """
        if not isinstance(data, dict):
            return data

        data = dict(data)
        pool_id = data.get("user_pool_id")

        # Pool IDs are "<region>_<id>"
        if pool_id and not data.get("region") and "_" in pool_id:
            data["region"] = pool_id.split("_", 1)[0]

        region = data.get("region")
        if region and pool_id and not data.get("issuer_url"):
            data["issuer_url"] = f"https://cognito-idp.{region}.amazonaws.com/{pool_id}"
        if region and not data.get("idp_endpoint"):
            data["idp_endpoint"] = f"https://cognito-idp.{region}.amazonaws.com/"
        return data

    @field_validator("client_secret", mode="before")
    @classmethod
    def empty_secret_is_absent(cls, v: Any) -> Any:
        """An empty secret means a public client, not a secret of ''."""
        if v is None or v == "":
            return None
        if isinstance(v, SecretStr) and not v.get_secret_value():
            return None
        return v

    @field_validator("issuer_url", "idp_endpoint", mode="after")
    @classmethod
    def validate_https(cls, v: str, info: ValidationInfo) -> str:
        """
        Ensures that IdP URLs use HTTPS, unless strictly opted out for local dev.
        """
        if v.startswith("http://") and not info.data.get("unsafe_local_dev", False):
            raise ValueError("HTTPS is required for production. Set 'unsafe_local_dev=True' only for local testing.")
        if not v.startswith(("https://", "http://")):
            raise ValueError(f"'{v}' is not an absolute HTTP(S) URL")
        return v

    @field_validator("issuer_url")
    @classmethod
    def strip_issuer_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("response_types")
    @classmethod
    def require_code_response_type(cls, v: list[str]) -> list[str]:
        """The redirect flow is the Authorization Code flow."""
        if "code" not in v:
            raise ValueError("response_types must include 'code'")
        return v

    @property
    def discovery_url(self) -> str:
        return f"{self.issuer_url}/.well-known/openid-configuration"

    @property
    def is_confidential(self) -> bool:
        return self.client_secret is not None

    def secret_hash(self, username: str) -> str | None:
        """
        Returns the Secret Hash for a username, or None for a public client.
        """
        return compute_secret_hash(username, self.client_id, self.client_secret)


def load_config(**overrides: Any) -> ClientConfig:
    """
    Loads the configuration from the environment.

    Missing required settings are a hard startup failure: they are logged by name and
    re-raised as ConfigurationError. No development fallback values are substituted.

    Args:
        overrides: Explicit values that take precedence over the environment.

    Returns:
        ClientConfig: The validated configuration.

    Raises:
        ConfigurationError: If a required setting is missing or invalid.
    """
    try:
        return ClientConfig(**overrides)
    except ValidationError as e:
        missing = [
            ENV_PREFIX + ".".join(str(p) for p in err["loc"]).upper()
            for err in e.errors()
            if err["type"] == "missing"
        ]
        if missing:
            logger.error(f"Missing required configuration: {', '.join(missing)}")

        # Only locations and messages; input values may contain the client secret.
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid authentication configuration: {problems}") from e
