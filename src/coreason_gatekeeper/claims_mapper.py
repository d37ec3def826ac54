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
ClaimsMapper component for normalizing a verified JWT payload into TokenClaims.
"""

import math
from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from coreason_gatekeeper.exceptions import MalformedTokenError
from coreason_gatekeeper.models import TokenClaims

MAX_UTC = datetime.max.replace(tzinfo=timezone.utc)
MIN_UTC = datetime.min.replace(tzinfo=timezone.utc)


def parse_scopes(payload: Mapping[str, Any]) -> frozenset[str]:
    """
    Reads the granted scopes from a payload.

    The space-delimited `scope` string (RFC 9068) wins; Okta's `scp` list is the fallback.
    """
    raw = payload.get("scope")
    if raw is None:
        raw = payload.get("scp")

    if isinstance(raw, str):
        return frozenset(raw.split())
    if isinstance(raw, (list, tuple)):
        return frozenset(str(item) for item in raw if item is not None)
    return frozenset()


class RawTokenPayload(BaseModel):
    """
    Internal model to parse and normalize a verified token payload.
    Validates structure and normalizes types before the claims are handed to handlers.
    """

    model_config = ConfigDict(extra="allow")

    sub: str
    iss: str
    aud: str | tuple[str, ...]
    exp: datetime
    iat: datetime | None = None
    nbf: datetime | None = None
    scopes: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("exp", "iat", "nbf", mode="before")
    @classmethod
    def epoch_to_datetime(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("timestamps must be numeric")
        if isinstance(v, (int, float)):
            if isinstance(v, float) and not math.isfinite(v):
                raise ValueError("timestamps must be finite")
            try:
                return datetime.fromtimestamp(v, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                # Outside the datetime range: pinned to its bounds
                return MAX_UTC if v > 0 else MIN_UTC
        return v


class ClaimsMapper:
    """
    Maps verified JWT payloads to the immutable TokenClaims.
    """

    def map_claims(self, payload: Mapping[str, Any], key_id: str) -> TokenClaims:
        """
        Builds TokenClaims from a payload whose signature and claims have already been checked.

        Args:
            payload: The decoded JWT payload.
            key_id: The key-id the signature was verified with.

        Returns:
            TokenClaims: The validated claims.

        Raises:
            MalformedTokenError: If a required claim is missing or has the wrong type.
        """
        try:
            parsed = RawTokenPayload.model_validate({**payload, "scopes": parse_scopes(payload)})
        except ValidationError as e:
            raise MalformedTokenError(f"Token claims are malformed: {e.error_count()} invalid field(s)") from e

        return TokenClaims(
            subject=parsed.sub,
            issuer=parsed.iss,
            audience=parsed.aud,
            scopes=parsed.scopes,
            expires_at=parsed.exp,
            issued_at=parsed.iat,
            not_before=parsed.nbf,
            key_id=key_id,
            raw=payload,
        )
