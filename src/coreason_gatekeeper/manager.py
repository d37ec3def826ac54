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
Gatekeeper component wiring key discovery, token verification and the IdP registration handshake.
"""

import re
from collections.abc import Iterable
from typing import Any

import httpx
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from coreason_gatekeeper.config import GatekeeperConfig
from coreason_gatekeeper.coordinator import IdPTransactionCoordinator
from coreason_gatekeeper.exceptions import ConfigError, KeyFetchError, MalformedTokenError
from coreason_gatekeeper.idp_client import IdPManagementClient
from coreason_gatekeeper.key_store import KeyStore
from coreason_gatekeeper.models import SigningKeySet, TokenClaims
from coreason_gatekeeper.sessions import SessionStore
from coreason_gatekeeper.token_verifier import TokenVerifier
from coreason_gatekeeper.transactions import TransactionStore
from coreason_gatekeeper.transport import SafeHTTPTransport
from coreason_gatekeeper.utils.logger import logger

_BEARER = re.compile(r"^Bearer\s+(\S+)$", re.IGNORECASE)


class Gatekeeper:
    """
    The core of the resource server. Handles resources via async context manager.
    """

    def __init__(self, config: GatekeeperConfig, client: httpx.AsyncClient | None = None) -> None:
        """
        Initialize the Gatekeeper.

        Args:
            config: The configuration object.
            client: External async client (optional). If not provided, a client with the configured
                timeout is created, using `SafeHTTPTransport` unless `unsafe_local_dev` is set.
        """
        self.config = config
        self._internal_client = client is None

        if client is not None:
            self._client = client
        else:
            transport = None if config.unsafe_local_dev else SafeHTTPTransport()
            self._client = httpx.AsyncClient(transport=transport, timeout=config.http_timeout)

        HTTPXClientInstrumentor().instrument_client(self._client)

        self.key_store = KeyStore(
            config.metadata_url,
            self._client,
            refresh_cooldown=config.jwks_refresh_cooldown,
            expected_issuer=config.issuer,
        )
        self.verifier = TokenVerifier(
            key_store=self.key_store,
            issuer=config.issuer,
            audience=config.audience,
            pii_salt=config.pii_salt,
            allowed_algorithms=config.allowed_algorithms,
            leeway=config.clock_skew_leeway,
        )
        self.sessions = SessionStore(ttl=config.session_ttl)
        self.transactions = TransactionStore(self.sessions)
        self.idp_client = IdPManagementClient(config.org_url, config.api_token, self._client)
        self.coordinator = IdPTransactionCoordinator(self.idp_client, self.sessions, self.transactions)

    async def __aenter__(self) -> "Gatekeeper":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._internal_client:
            await self._client.aclose()

    async def start(self) -> SigningKeySet:
        """
        Startup phase 1: loads the signing keys before any connection is accepted.

        Returns:
            SigningKeySet: The initial key set.

        Raises:
            ConfigError: If discovery or the key set fetch fails. No route could ever be verified.
        """
        logger.info(f"Fetching issuer metadata configuration from {self.config.metadata_url}...")
        try:
            return await self.key_store.refresh()
        except KeyFetchError as e:
            raise ConfigError(f"Unable to load signing keys for issuer {self.config.issuer}: {e}") from e

    async def authenticate(self, auth_header: str | None, required_scopes: Iterable[str] = ()) -> TokenClaims:
        """
        Extracts the bearer token from an Authorization header and verifies it.

        Args:
            auth_header: The raw 'Authorization' header value (e.g., "Bearer <token>").
            required_scopes: Scopes the route requires.

        Returns:
            TokenClaims: The verified claims.

        Raises:
            VerificationError: If the header is missing or malformed, or the token is rejected.
        """
        if not auth_header:
            raise MalformedTokenError("Missing Authorization header.")

        match = _BEARER.match(auth_header)
        if not match:
            raise MalformedTokenError("Invalid Authorization header format. Must start with 'Bearer '.")

        return await self.verifier.verify(match.group(1), required_scopes)
