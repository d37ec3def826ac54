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
Async Context Management for request-scoped TokenClaims.
"""

from contextvars import ContextVar

from coreason_gatekeeper.models import TokenClaims

_current_claims: ContextVar[TokenClaims | None] = ContextVar("current_claims", default=None)


def get_current_claims() -> TokenClaims | None:
    """
    Retrieve the verified claims of the request being handled.

    Returns:
        TokenClaims | None: The claims, or None outside a protected route.
    """
    return _current_claims.get()


def set_current_claims(claims: TokenClaims) -> None:
    _current_claims.set(claims)


def clear_current_claims() -> None:
    _current_claims.set(None)
