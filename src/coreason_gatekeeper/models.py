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
Data models for the coreason-gatekeeper package.
"""

from datetime import datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Mapping

from authlib.jose import Key
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class SigningKeySet(BaseModel):
    """
    The identity provider's signing keys, indexed by key-id.

    Attributes:
        keys (Mapping[str, Key]): Public keys by `kid`.
        source_url (str): The JWKS URI the keys were loaded from.
        refreshed_at (float): Epoch seconds of the successful load.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    keys: Mapping[str, Key]
    source_url: str
    refreshed_at: float

    def __len__(self) -> int:
        return len(self.keys)


class TokenClaims(BaseModel):
    """
    The validated payload of a bearer token.

    Only produced by `TokenVerifier.verify`. This model is frozen (immutable) so it can be
    attached to the request context without being altered by handlers.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    subject: str = Field(..., description="The subject (`sub`) of the token.")
    issuer: str
    audience: str | tuple[str, ...]
    scopes: frozenset[str] = Field(default_factory=frozenset)
    expires_at: datetime
    issued_at: datetime | None = None
    not_before: datetime | None = None
    key_id: str
    raw: Mapping[str, Any] = Field(default_factory=lambda: MappingProxyType({}), repr=False)

    @field_validator("raw", mode="after")
    @classmethod
    def _freeze_raw(cls, raw: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(raw))

    @field_serializer("raw")
    def _serialize_raw(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        return dict(raw)

    def __repr__(self) -> str:
        # Subject is PII
        return (
            f"TokenClaims(subject='<REDACTED>', issuer={self.issuer!r}, "
            f"scopes={sorted(self.scopes)!r}, key_id={self.key_id!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()


class TransactionState(StrEnum):
    AWAITING_PROFILE = "AWAITING_PROFILE"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


class Transaction(BaseModel):
    """
    An in-progress social IdP registration handshake.

    Attributes:
        id (str): The opaque transaction id issued by the identity provider.
        profile (dict[str, Any]): The partial profile returned by the identity provider.
        state (TransactionState): Where the handshake stands.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    profile: dict[str, Any] = Field(default_factory=dict)
    state: TransactionState = TransactionState.AWAITING_PROFILE


class RegistrationProfile(BaseModel):
    """
    Supplemental profile collected from the registration form and sent to the IdP provisioning call.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    customer_id: str | None = Field(default=None, alias="customerId")
    street_address: str | None = Field(default=None, alias="streetAddress")
    city: str | None = None
    zip_code: str | None = Field(default=None, alias="zipCode")

    def to_idp(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CompletedRegistration(BaseModel):
    """Provisioning succeeded: the browser is sent to `finish_url` with a one-time `session_token`."""

    model_config = ConfigDict(frozen=True)

    finish_url: str
    session_token: str | None = None


class PendingRegistration(BaseModel):
    """Provisioning answered with a status other than `SUCCESS` (e.g. MFA enrollment required)."""

    model_config = ConfigDict(frozen=True)

    status: str | None = None
    body: dict[str, Any] = Field(default_factory=dict)
