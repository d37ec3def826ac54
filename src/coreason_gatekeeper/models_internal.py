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
Internal data models for the coreason-gatekeeper package.
These mirror remote documents and are not exposed in the public API.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OIDCConfig(BaseModel):
    """
    OIDC Configuration from .well-known/openid-configuration.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str | None = Field(default=None, description="The OIDC issuer URL.")
    jwks_uri: str = Field(..., description="The URL to the JWKS.")


class IdPTransactionTarget(BaseModel):
    """
    Response of `GET /api/v1/idps/tx/{txId}/target`: the user the social IdP resolved to.
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    profile: dict[str, Any] = Field(default_factory=dict)

