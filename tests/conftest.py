# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import time
from collections import Counter
from typing import Any

import anyio
import httpx
import pytest
from authlib.jose import JsonWebKey, Key, jwt
from pydantic import SecretStr

from coreason_gatekeeper.config import GatekeeperConfig

ISSUER = "https://idp"
AUDIENCE = "myapp"
JWKS_URI = "https://idp/keys"
DISCOVERY_PATH = "/.well-known/openid-configuration"


def generate_key(kid: str) -> Key:
    """Generates an RSA signing key carrying an explicit key-id."""
    jwk = JsonWebKey.generate_key("RSA", 2048, is_private=True).as_dict(is_private=True)
    jwk["kid"] = kid
    return JsonWebKey.import_key(jwk)


def public_jwks(*keys: Key) -> dict[str, Any]:
    return {"keys": [key.as_dict(is_private=False) for key in keys]}


def make_token(key: Key, kid: str | None = "k1", alg: str = "RS256", **overrides: Any) -> str:
    """
    Signs a token with sensible defaults. Pass a claim as None to drop it.
    """
    now = int(time.time())
    claims: dict[str, Any] = {
        "sub": "00u1abcd",
        "iss": ISSUER,
        "aud": AUDIENCE,
        "scope": "read",
        "iat": now,
        "exp": now + 3600,
    }
    claims.update(overrides)
    claims = {k: v for k, v in claims.items() if v is not None}

    header: dict[str, Any] = {"alg": alg}
    if kid is not None:
        header["kid"] = kid
    return jwt.encode(header, claims, key).decode("ascii")  # type: ignore[no-any-return]


class FakeIdP:
    """
    In-process identity provider behind `httpx.MockTransport`.

    Serves discovery and the key set by default. `responses` maps a path to either a
    `(status, body)` pair or an exception to raise. `calls` counts requests per path.
    """

    def __init__(self, jwks: dict[str, Any], delay: float = 0.0) -> None:
        self.jwks = jwks
        self.delay = delay
        self.calls: Counter[str] = Counter()
        self.requests: list[httpx.Request] = []
        self.responses: dict[str, tuple[int, Any] | Exception] = {
            DISCOVERY_PATH: (200, {"issuer": ISSUER, "jwks_uri": JWKS_URI}),
        }

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls[path] += 1
        self.requests.append(request)
        if self.delay:
            await anyio.sleep(self.delay)

        if path == "/keys" and path not in self.responses:
            return httpx.Response(200, json=self.jwks)

        outcome = self.responses.get(path)
        if outcome is None:
            return httpx.Response(404, json={"errorCode": "E0000007", "errorSummary": "Not found"})
        if isinstance(outcome, Exception):
            raise outcome

        status, body = outcome
        if isinstance(body, bytes):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), timeout=10.0)


@pytest.fixture(scope="session")
def signing_key() -> Key:
    return generate_key("k1")


@pytest.fixture(scope="session")
def other_key() -> Key:
    return generate_key("k2")


@pytest.fixture
def idp(signing_key: Key) -> FakeIdP:
    return FakeIdP(public_jwks(signing_key))


@pytest.fixture
def config() -> GatekeeperConfig:
    return GatekeeperConfig(
        issuer=ISSUER,
        audience=AUDIENCE,
        scope="read",
        api_token=SecretStr("ssws-test-token"),
        session_secret=SecretStr("test-session-secret"),
        jwks_refresh_cooldown=0.0,
    )
