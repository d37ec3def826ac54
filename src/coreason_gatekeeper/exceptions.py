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
Custom exceptions for the coreason-gatekeeper package.
"""

from enum import StrEnum


class GatekeeperError(Exception):
    """Base exception for all coreason-gatekeeper errors."""


class ConfigError(GatekeeperError):
    """Raised when the server cannot start (e.g. the discovery endpoint is unreachable)."""


class KeyFetchError(GatekeeperError):
    """Raised when the discovery document or the key set cannot be fetched. Cached keys are retained."""


class OversizedResponseError(GatekeeperError):
    """Raised when an HTTP response is too large."""


class VerificationFailure(StrEnum):
    MALFORMED = "malformed"
    UNKNOWN_KEY = "unknown_key"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    ISSUER_MISMATCH = "issuer_mismatch"
    AUDIENCE_MISMATCH = "audience_mismatch"
    INSUFFICIENT_SCOPE = "insufficient_scope"


class VerificationError(GatekeeperError):
    """
    Raised when a bearer token is rejected.

    `reason` identifies the failed check for logs and tests; it is never
    sent to the client beyond the `invalid_token` / `insufficient_scope` category.
    """

    reason: VerificationFailure = VerificationFailure.MALFORMED

    @property
    def category(self) -> str:
        return "invalid_token"


class MalformedTokenError(VerificationError):
    """Raised when the token cannot be split into header, payload and signature."""

    reason = VerificationFailure.MALFORMED


class UnknownKeyError(VerificationError):
    """Raised when the token's key-id is absent from the key set, even after a refresh."""

    reason = VerificationFailure.UNKNOWN_KEY


class SignatureVerificationError(VerificationError):
    """Raised when the token's signature cannot be verified."""

    reason = VerificationFailure.BAD_SIGNATURE


class TokenExpiredError(VerificationError):
    """Raised when the provided token has expired."""

    reason = VerificationFailure.EXPIRED


class TokenNotYetValidError(VerificationError):
    """Raised when the token's `nbf` lies in the future."""

    reason = VerificationFailure.NOT_YET_VALID


class InvalidIssuerError(VerificationError):
    """Raised when the token's issuer does not match the configured issuer."""

    reason = VerificationFailure.ISSUER_MISMATCH


class InvalidAudienceError(VerificationError):
    """Raised when the token's audience does not match the expected value."""

    reason = VerificationFailure.AUDIENCE_MISMATCH


class InsufficientScopeError(VerificationError):
    """Raised when the token lacks a scope the route requires."""

    reason = VerificationFailure.INSUFFICIENT_SCOPE

    def __init__(self, message: str, required_scopes: frozenset[str] = frozenset()) -> None:
        super().__init__(message)
        self.required_scopes = required_scopes

    @property
    def category(self) -> str:
        return "insufficient_scope"


class TransactionError(GatekeeperError):
    """Raised when a call to the IdP management API fails during a registration step."""


class MissingTransactionIdError(GatekeeperError):
    """Raised when the social callback arrives without a `tx_id`."""


class NoPendingTransactionError(GatekeeperError):
    """Raised when a profile is submitted without a transaction fetched earlier in the session."""
