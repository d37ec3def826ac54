# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

"""
Configuration for the coreason-gatekeeper server.
"""

import secrets
from urllib.parse import urlparse

from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatekeeperConfig(BaseSettings):
    """
    Configuration settings for coreason-gatekeeper.

    Resolved once at startup and treated as immutable for the process lifetime.

    Attributes:
        port (int): Web server listener port.
        issuer (str): Access token issuer URL. Compared to the `iss` claim by exact string equality.
        audience (str): Expected access token audience (also the widget's client id).
        scope (str | None): Scope(s) required for the protected resource, space-delimited.
        api_token (SecretStr | None): Static SSWS credential for the IdP management API.
        http_timeout (float): Timeout in seconds for every outbound call.
    """

    model_config = SettingsConfigDict(
        env_prefix="GATEKEEPER_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    unsafe_local_dev: bool = False
    port: int = Field(default=8080, description="Web server listener port")
    issuer: str = Field(..., description="Access Token Issuer URL")
    audience: str = Field(..., description="Access Token Audience URI")
    scope: str | None = Field(default=None, description="OAuth 2.0 Scope for Protected Resource")
    api_token: SecretStr | None = Field(default=None, description="SSWS API Token for Social IdP Callbacks")
    authz_issuer: str | None = Field(default=None, description="Alternate Authorization URL")
    idp: str | None = Field(default=None, description="ID of the Social IdP")
    widget_scopes: list[str] = Field(
        default_factory=lambda: ["openid", "email", "profile"],
        description="Scopes for the Sign-In Widget to request",
    )
    http_timeout: float = Field(default=10.0, gt=0, description="Timeout in seconds for all IdP network operations.")
    allowed_algorithms: list[str] = Field(default_factory=lambda: ["RS256"])
    clock_skew_leeway: int = Field(default=0, ge=0)
    jwks_refresh_cooldown: float = Field(default=30.0, ge=0)
    session_secret: SecretStr = Field(default_factory=lambda: SecretStr(secrets.token_urlsafe(32)))
    session_ttl: int = Field(default=3600, gt=0)
    pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt")
    passthrough_provision_response: bool = True

    @field_validator("issuer", "authz_issuer", mode="after")
    @classmethod
    def validate_https(cls, v: str | None, info: ValidationInfo) -> str | None:
        """
        Ensures that issuer URLs are absolute and use HTTPS, unless strictly opted out for local dev.
        """
        if v is None:
            return v

        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"'{v}' is not an absolute URL")
        if parsed.scheme == "http" and not info.data.get("unsafe_local_dev", False):
            raise ValueError("HTTPS is required for production. Set 'unsafe_local_dev=True' only for local testing.")
        return v

    @property
    def metadata_url(self) -> str:
        return self.issuer.rstrip("/") + "/.well-known/openid-configuration"

    @property
    def org_url(self) -> str:
        """The Okta organization URL: scheme and authority of the issuer."""
        parsed = urlparse(self.issuer)
        return f"{parsed.scheme}://{parsed.netloc}"

    @property
    def admin_url(self) -> str:
        """The admin console of the organization (`example.okta.com` -> `example-admin.okta.com`)."""
        return self.org_url.replace(".", "-admin.", 1)

    @property
    def required_scopes(self) -> frozenset[str]:
        if not self.scope:
            return frozenset()
        return frozenset(self.scope.split())

    @classmethod
    def from_cli(cls, args: list[str] | None = None) -> "GatekeeperConfig":
        """
        Builds the configuration from command-line flags, falling back to environment variables.

        Args:
            args: The argument list to parse. Defaults to `sys.argv[1:]`.
        """
        return cls(_cli_parse_args=True if args is None else args, _cli_prog_name="coreason-gatekeeper")
