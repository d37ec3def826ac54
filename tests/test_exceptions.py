# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import pytest

from coreason_gatekeeper.exceptions import (
    ConfigError,
    GatekeeperError,
    InsufficientScopeError,
    InvalidAudienceError,
    InvalidIssuerError,
    KeyFetchError,
    MalformedTokenError,
    MissingTransactionIdError,
    NoPendingTransactionError,
    OversizedResponseError,
    SignatureVerificationError,
    TokenExpiredError,
    TokenNotYetValidError,
    TransactionError,
    UnknownKeyError,
    VerificationError,
    VerificationFailure,
)

REASONS = {
    MalformedTokenError: VerificationFailure.MALFORMED,
    UnknownKeyError: VerificationFailure.UNKNOWN_KEY,
    SignatureVerificationError: VerificationFailure.BAD_SIGNATURE,
    TokenExpiredError: VerificationFailure.EXPIRED,
    TokenNotYetValidError: VerificationFailure.NOT_YET_VALID,
    InvalidIssuerError: VerificationFailure.ISSUER_MISMATCH,
    InvalidAudienceError: VerificationFailure.AUDIENCE_MISMATCH,
    InsufficientScopeError: VerificationFailure.INSUFFICIENT_SCOPE,
}


def test_exception_hierarchy() -> None:
    """Test that all custom exceptions inherit from GatekeeperError."""
    for exc_type in (
        ConfigError,
        KeyFetchError,
        OversizedResponseError,
        VerificationError,
        TransactionError,
        MissingTransactionIdError,
        NoPendingTransactionError,
    ):
        assert issubclass(exc_type, GatekeeperError)


@pytest.mark.parametrize(("exc_type", "reason"), REASONS.items())
def test_reasons(exc_type: type[VerificationError], reason: VerificationFailure) -> None:
    assert issubclass(exc_type, VerificationError)
    assert exc_type("x").reason == reason


def test_every_reason_has_an_exception() -> None:
    assert set(REASONS.values()) == set(VerificationFailure)


def test_categories() -> None:
    for exc_type in REASONS:
        expected = "insufficient_scope" if exc_type is InsufficientScopeError else "invalid_token"
        assert exc_type("x").category == expected


def test_exception_instantiation() -> None:
    err = TokenExpiredError("Token expired")
    assert str(err) == "Token expired"

    scoped = InsufficientScopeError("Token lacks scope(s): read", frozenset({"read"}))
    assert str(scoped) == "Token lacks scope(s): read"
    assert scoped.required_scopes == frozenset({"read"})
