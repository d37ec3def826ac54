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
KeyStore component for discovering, fetching and caching the IdP's signing keys.
"""

import time

import anyio
import httpx
from authlib.jose import JsonWebKey, Key
from authlib.jose.errors import JoseError
from opentelemetry import trace

from coreason_gatekeeper.exceptions import GatekeeperError, KeyFetchError
from coreason_gatekeeper.models import SigningKeySet
from coreason_gatekeeper.models_internal import OIDCConfig
from coreason_gatekeeper.transport import safe_json_fetch
from coreason_gatekeeper.utils.logger import logger

tracer = trace.get_tracer(__name__)

MAX_UNKNOWN_KEY_IDS = 1024


class _RefreshFlight:
    """A refresh in progress. Every caller that finds one waits on it instead of fetching."""

    def __init__(self) -> None:
        self.done = anyio.Event()
        self.result: SigningKeySet | None = None
        self.error: KeyFetchError | None = None


class KeyStore:
    """
    Fetches and caches the Identity Provider's JWKS, resolved from its discovery document.

    A refresh failure never discards keys that were already loaded. Concurrent refreshes
    coalesce into a single outstanding fetch.

    Attributes:
        discovery_url (str): The OIDC discovery URL.
        refresh_cooldown (float): Seconds a key-id still unknown after a refresh is rejected without refetching.
    """

    def __init__(
        self,
        discovery_url: str,
        client: httpx.AsyncClient,
        refresh_cooldown: float = 30.0,
        expected_issuer: str | None = None,
    ) -> None:
        """
        Initialize the KeyStore.

        Args:
            discovery_url: The OIDC discovery URL (e.g., https://example.okta.com/.well-known/openid-configuration).
            client: The async HTTP client to use for requests.
            refresh_cooldown: Seconds to remember a key-id that a refresh did not find. Defaults to 30.0.
            expected_issuer: When given, a discovery document advertising another issuer is logged.
        """
        self.discovery_url = discovery_url
        self.client = client
        self.refresh_cooldown = refresh_cooldown
        self.expected_issuer = expected_issuer
        self._jwks_uri: str | None = None
        self._key_set: SigningKeySet | None = None
        self._flight: _RefreshFlight | None = None
        self._unknown_key_ids: dict[str, float] = {}

    @property
    def key_set(self) -> SigningKeySet | None:
        return self._key_set

    @property
    def jwks_uri(self) -> str | None:
        return self._jwks_uri

    async def _discover_jwks_uri(self) -> str:
        if self._jwks_uri is None:
            data = await safe_json_fetch(self.client, self.discovery_url)
            oidc_config = OIDCConfig.model_validate(data)
            if self.expected_issuer and oidc_config.issuer and oidc_config.issuer != self.expected_issuer:
                logger.warning(
                    f"Discovery document advertises issuer {oidc_config.issuer}, "
                    f"tokens must carry {self.expected_issuer}"
                )
            self._jwks_uri = oidc_config.jwks_uri
            logger.info(f"Trusting tokens signed with keys from {self._jwks_uri}")
        return self._jwks_uri

    async def _load(self) -> SigningKeySet:
        """
        Fetches the discovery document (once) and the key set.

        Raises:
            KeyFetchError: On non-2xx status, network error, timeout, malformed JSON or an unusable key set.
        """
        with tracer.start_as_current_span("keys.refresh") as span:
            try:
                jwks_uri = await self._discover_jwks_uri()
                span.set_attribute("jwks.uri", jwks_uri)
                jwks = await safe_json_fetch(self.client, jwks_uri)
                imported = JsonWebKey.import_key_set(jwks)
            except (GatekeeperError, httpx.HTTPError, JoseError, ValueError, KeyError, TypeError) as e:
                span.record_exception(e)
                raise KeyFetchError(f"Failed to load signing keys via {self.discovery_url}: {e}") from e

            keys: dict[str, Key] = {}
            for key in imported.keys:
                if not key.kid:
                    logger.warning("Ignoring signing key without a key-id")
                    continue
                keys[key.kid] = key

            if not keys:
                raise KeyFetchError(f"Key set at {jwks_uri} contains no usable keys")

            span.set_attribute("jwks.size", len(keys))
            return SigningKeySet(keys=keys, source_url=jwks_uri, refreshed_at=time.time())

    async def refresh(self) -> SigningKeySet:
        """
        Reloads the key set, joining a refresh already in progress if there is one.

        The load is shielded from the cancellation of the request that started it; every caller
        waiting on it observes its outcome. The client timeout bounds it.

        Returns:
            SigningKeySet: The freshly loaded keys.

        Raises:
            KeyFetchError: If the fetch failed. The previously cached keys stay in place.
        """
        flight = self._flight
        if flight is None:
            flight = self._flight = _RefreshFlight()
            try:
                with anyio.CancelScope(shield=True):
                    flight.result = await self._load()
                self._key_set = flight.result
                logger.info(f"Loaded {len(flight.result)} signing key(s)")
            except KeyFetchError as e:
                logger.error(f"Signing key refresh failed: {e}")
                flight.error = e
            finally:
                if flight.result is None and flight.error is None:
                    flight.error = KeyFetchError("Signing key refresh did not complete")
                self._flight = None
                flight.done.set()
        else:
            await flight.done.wait()

        if flight.error is not None:
            raise flight.error
        return flight.result  # type: ignore[return-value]

    def _recently_unknown(self, key_id: str) -> bool:
        missed_at = self._unknown_key_ids.get(key_id)
        return missed_at is not None and (time.monotonic() - missed_at) < self.refresh_cooldown

    def _remember_unknown(self, key_id: str) -> None:
        now = time.monotonic()
        expired = [kid for kid, missed_at in self._unknown_key_ids.items() if now - missed_at >= self.refresh_cooldown]
        for kid in expired:
            del self._unknown_key_ids[kid]
        if len(self._unknown_key_ids) >= MAX_UNKNOWN_KEY_IDS:
            del self._unknown_key_ids[next(iter(self._unknown_key_ids))]
        self._unknown_key_ids[key_id] = now

    async def get_key(self, key_id: str) -> Key | None:
        """
        Returns the public key for `key_id`.

        A cache miss triggers one refresh (shared with concurrent callers) and a single retry
        of the lookup. A key-id that was still unknown after a refresh is rejected without
        refetching for `refresh_cooldown` seconds; any other key-id always gets its refresh.

        Args:
            key_id: The `kid` from the token header.

        Returns:
            Key | None: The key, or None if it is still unknown after the refresh.
        """
        key_set = self._key_set
        if key_set is not None and key_id in key_set.keys:
            return key_set.keys[key_id]

        if self._flight is None and self._recently_unknown(key_id):
            logger.warning(f"Key-id {key_id!r} was unknown after the last refresh. Rejecting without refetching.")
            return None

        try:
            key_set = await self.refresh()
        except KeyFetchError:
            return None

        key = key_set.keys.get(key_id)
        if key is None and self.refresh_cooldown > 0:
            self._remember_unknown(key_id)
        return key
