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
Request gate: the FastAPI dependency that verifies the bearer token before a protected handler runs.
"""

from collections.abc import AsyncIterator, Iterable

from fastapi import Request

from coreason_gatekeeper.async_context import clear_current_claims, set_current_claims
from coreason_gatekeeper.exceptions import InsufficientScopeError, VerificationError
from coreason_gatekeeper.models import TokenClaims

REALM = "OKTA"

_DESCRIPTIONS = {
    "invalid_token": "The access token is missing, malformed, expired or otherwise invalid",
    "insufficient_scope": "The access token does not grant the scope this resource requires",
}


def bearer_challenge(error: VerificationError) -> dict[str, str]:
    """
    Builds the RFC 6750 `WWW-Authenticate` challenge for a rejected token.

    Only the error category is disclosed, never the check that failed.
    """
    parts = [f'Bearer realm="{REALM}"', f'error="{error.category}"']
    parts.append(f'error_description="{_DESCRIPTIONS[error.category]}"')
    if isinstance(error, InsufficientScopeError) and error.required_scopes:
        parts.append(f'scope="{" ".join(sorted(error.required_scopes))}"')

    return {
        "WWW-Authenticate": ", ".join(parts),
        "Cache-Control": "no-store",
        "Pragma": "no-cache",
    }


def challenge_status(error: VerificationError) -> int:
    return 403 if isinstance(error, InsufficientScopeError) else 401


class RequireToken:
    """
    Dependency guarding a route with a verified bearer token.

    Usage:
        @app.get("/protected")
        async def protected(claims: TokenClaims = Depends(RequireToken({"read"}))): ...

    A rejected token raises VerificationError, rendered by the application's exception handler.
    The verified claims are readable through `get_current_claims()` until the handler returns.
    """

    def __init__(self, required_scopes: Iterable[str] = ()) -> None:
        self.required_scopes = frozenset(required_scopes)

    async def __call__(self, request: Request) -> AsyncIterator[TokenClaims]:
        gatekeeper = request.app.state.gatekeeper
        claims: TokenClaims = await gatekeeper.authenticate(
            request.headers.get("Authorization"), self.required_scopes
        )
        request.state.claims = claims
        set_current_claims(claims)
        try:
            yield claims
        finally:
            clear_current_claims()
