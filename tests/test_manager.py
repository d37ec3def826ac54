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
Tests for the Gatekeeper component.
"""

import pytest
from authlib.jose import Key

from coreason_gatekeeper.config import GatekeeperConfig
from coreason_gatekeeper.exceptions import ConfigError, InsufficientScopeError, MalformedTokenError
from coreason_gatekeeper.manager import Gatekeeper

from .conftest import DISCOVERY_PATH, JWKS_URI, FakeIdP, make_token


class TestGatekeeper:
    @pytest.mark.asyncio
    async def test_start_loads_keys(self, config: GatekeeperConfig, idp: FakeIdP) -> None:
        async with Gatekeeper(config, client=idp.client()) as gatekeeper:
            key_set = await gatekeeper.start()

        assert len(key_set) == 1
        assert key_set.source_url == JWKS_URI

    @pytest.mark.asyncio
    async def test_start_failure_is_config_error(self, config: GatekeeperConfig, idp: FakeIdP) -> None:
        idp.responses[DISCOVERY_PATH] = (404, {"error": "not found"})

        async with Gatekeeper(config, client=idp.client()) as gatekeeper:
            with pytest.raises(ConfigError, match="Unable to load signing keys"):
                await gatekeeper.start()

    @pytest.mark.asyncio
    async def test_authenticate(self, config: GatekeeperConfig, idp: FakeIdP, signing_key: Key) -> None:
        token = make_token(signing_key, scope="read")

        async with Gatekeeper(config, client=idp.client()) as gatekeeper:
            await gatekeeper.start()
            claims = await gatekeeper.authenticate(f"Bearer {token}", config.required_scopes)

        assert claims.scopes == frozenset({"read"})

    @pytest.mark.asyncio
    async def test_authenticate_scope(self, config: GatekeeperConfig, idp: FakeIdP, signing_key: Key) -> None:
        token = make_token(signing_key, scope="profile")

        async with Gatekeeper(config, client=idp.client()) as gatekeeper:
            await gatekeeper.start()
            with pytest.raises(InsufficientScopeError):
                await gatekeeper.authenticate(f"Bearer {token}", {"read"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer ", "Bearer a b", "abc"])
    async def test_authenticate_bad_header(self, config: GatekeeperConfig, idp: FakeIdP, header: str | None) -> None:
        async with Gatekeeper(config, client=idp.client()) as gatekeeper:
            with pytest.raises(MalformedTokenError):
                await gatekeeper.authenticate(header)

        assert idp.calls[DISCOVERY_PATH] == 0

    @pytest.mark.asyncio
    async def test_external_client_left_open(self, config: GatekeeperConfig, idp: FakeIdP) -> None:
        client = idp.client()
        async with Gatekeeper(config, client=client):
            pass

        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_internal_client_closed(self, config: GatekeeperConfig) -> None:
        async with Gatekeeper(config) as gatekeeper:
            client = gatekeeper._client

        assert client.is_closed

    def test_internal_client_timeout(self, config: GatekeeperConfig) -> None:
        gatekeeper = Gatekeeper(config)
        assert gatekeeper._client.timeout.read == config.http_timeout
        assert gatekeeper._client.timeout.connect == config.http_timeout

    def test_wiring(self, config: GatekeeperConfig, idp: FakeIdP) -> None:
        gatekeeper = Gatekeeper(config, client=idp.client())

        assert gatekeeper.key_store.discovery_url == "https://idp/.well-known/openid-configuration"
        assert gatekeeper.idp_client.org_url == "https://idp"
        assert gatekeeper.coordinator.transactions is gatekeeper.transactions
        assert gatekeeper.transactions.sessions is gatekeeper.sessions
        assert gatekeeper.sessions.ttl == config.session_ttl
