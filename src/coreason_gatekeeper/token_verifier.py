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
TokenVerifier component for validating bearer token signatures, claims and scopes.
"""

import hashlib
import hmac
import math
import time
from collections.abc import Iterable
from typing import Any

from authlib.common.encoding import json_loads, urlsafe_b64decode
from authlib.jose import JsonWebToken
from authlib.jose.errors import BadSignatureError, JoseError, UnsupportedAlgorithmError
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import SecretStr

from coreason_gatekeeper.claims_mapper import ClaimsMapper, parse_scopes
from coreason_gatekeeper.exceptions import (
    GatekeeperError,
    InsufficientScopeError,
    InvalidAudienceError,
    InvalidIssuerError,
    MalformedTokenError,
    SignatureVerificationError,
    TokenExpiredError,
    TokenNotYetValidError,
    UnknownKeyError,
    VerificationError,
)
from coreason_gatekeeper.key_store import KeyStore
from coreason_gatekeeper.models import TokenClaims
from coreason_gatekeeper.utils.logger import logger

tracer = trace.get_tracer(__name__)


def _is_timestamp(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not isinstance(value, float) or math.isfinite(value)


class TokenVerifier:
    """
    Validates JWT bearer tokens against the IdP's signing keys and the configured claims.

    Checks run in a fixed order: structure, key-id, signature, time window, issuer,
    audience, scope. No claim is inspected before the signature has been verified.

    Attributes:
        key_store (KeyStore): Source of the IdP's public keys.
        issuer (str): The expected `iss`, compared by exact string equality.
        audience (str): The expected `aud`.
    """

    def __init__(
        self,
        key_store: KeyStore,
        issuer: str,
        audience: str,
        pii_salt: SecretStr,
        allowed_algorithms: list[str],
        leeway: int = 0,
        mapper: ClaimsMapper | None = None,
    ) -> None:
        """
        Initialize the TokenVerifier.

        Args:
            key_store: The KeyStore resolving key-ids to public keys.
            issuer: The expected issuer (iss) claim.
            audience: The expected audience (aud) claim.
            pii_salt: Salt for anonymizing subject ids in logs and traces.
            allowed_algorithms: JWS algorithms accepted in the token header.
            leeway: Acceptable clock skew in seconds. Defaults to 0.
            mapper: Builds TokenClaims from the verified payload. Defaults to ClaimsMapper.
        """
        self.key_store = key_store
        self.issuer = issuer
        self.audience = audience
        self.pii_salt = pii_salt
        self.leeway = leeway
        self.mapper = mapper or ClaimsMapper()
        # Rejects any algorithm outside the allow-list, including "none"
        self.jwt = JsonWebToken(allowed_algorithms)

    def _anonymize(self, value: str) -> str:
        return hmac.new(
            self.pii_salt.get_secret_value().encode("utf-8"),
            value.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    @staticmethod
    def _parse_header(token: str) -> dict[str, Any]:
        segments = token.split(".")
        if len(segments) != 3 or not all(segments):
            raise MalformedTokenError("Token must have three non-empty segments")

        # The signature segment is only decoded by the signature check
        try:
            header = json_loads(urlsafe_b64decode(segments[0].encode("ascii")))
            payload = json_loads(urlsafe_b64decode(segments[1].encode("ascii")))
        except ValueError as e:
            raise MalformedTokenError(f"Token segments could not be decoded: {e}") from e

        if not isinstance(header, dict) or not isinstance(payload, dict):
            raise MalformedTokenError("Token header and payload must be JSON objects")
        return header

    def _check_time_window(self, payload: dict[str, Any]) -> None:
        now = time.time()

        exp = payload.get("exp")
        if not _is_timestamp(exp):
            raise MalformedTokenError("Token has no numeric exp claim")
        if now >= exp + self.leeway:
            raise TokenExpiredError("Token has expired")

        nbf = payload.get("nbf")
        if nbf is not None:
            if not _is_timestamp(nbf):
                raise MalformedTokenError("Token has a non-numeric nbf claim")
            if now < nbf - self.leeway:
                raise TokenNotYetValidError("Token is not valid yet")

    def _check_audience(self, aud: Any) -> None:
        if isinstance(aud, str):
            matched = aud == self.audience
        elif isinstance(aud, list):
            matched = self.audience in aud
        else:
            matched = False

        if not matched:
            raise InvalidAudienceError("Invalid audience")

    async def _verify(self, token: str, required: frozenset[str]) -> TokenClaims:
        header = self._parse_header(token)

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise UnknownKeyError("Token header carries no key-id")
        key = await self.key_store.get_key(kid)
        if key is None:
            raise UnknownKeyError(f"No signing key with key-id {kid}")

        try:
            payload = dict(self.jwt.decode(token, key))
        except UnsupportedAlgorithmError as e:
            raise SignatureVerificationError(f"Algorithm {header.get('alg')!r} is not allowed") from e
        except BadSignatureError as e:
            raise SignatureVerificationError(f"Invalid signature: {e}") from e
        except (JoseError, ValueError, TypeError) as e:
            raise SignatureVerificationError(f"Signature could not be verified: {e}") from e

        self._check_time_window(payload)

        if payload.get("iss") != self.issuer:
            raise InvalidIssuerError("Invalid issuer")

        self._check_audience(payload.get("aud"))

        if required:
            missing = required - parse_scopes(payload)
            if missing:
                raise InsufficientScopeError(f"Token lacks scope(s): {' '.join(sorted(missing))}", required)

        return self.mapper.map_claims(payload, key_id=kid)

    async def verify(self, raw_token: str, required_scopes: Iterable[str] = ()) -> TokenClaims:
        """
        Validates the JWT signature, claims and scopes.

        Emits an OpenTelemetry span `verify_token`.
        Sets attribute `enduser.id` (anonymized) on success.

        Args:
            raw_token: The raw bearer token string (without the "Bearer " prefix).
            required_scopes: Scopes that must all be granted. Empty means no scope check.

        Returns:
            TokenClaims: The validated claims.

        Raises:
            VerificationError: One subclass per failed check (see `VerificationFailure`).
            GatekeeperError: For unexpected errors.
        """
        required = frozenset(required_scopes)

        with tracer.start_as_current_span("verify_token") as span:
            try:
                claims = await self._verify(raw_token.strip(), required)
            except VerificationError as e:
                logger.warning(f"Token rejected ({e.reason}): {e}")
                span.set_attribute("verification.failure", str(e.reason))
                span.set_status(Status(StatusCode.ERROR, str(e.reason)))
                raise
            except Exception as e:
                logger.exception("Unexpected error during token verification")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise GatekeeperError(f"Unexpected error during token verification: {e}") from e

            user_hash = self._anonymize(claims.subject)
            logger.info(f"Token verified for user {user_hash}")
            span.set_attribute("enduser.id", user_hash)
            span.set_status(Status(StatusCode.OK))
            return claims
