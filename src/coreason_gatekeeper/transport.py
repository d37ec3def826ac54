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
Outbound HTTP helpers: a bounded JSON fetch and a DNS-pinning transport against SSRF.
"""

import ipaddress
import json
import socket
from typing import Any

import anyio
import httpx

from coreason_gatekeeper.exceptions import GatekeeperError, OversizedResponseError
from coreason_gatekeeper.utils.logger import logger

MAX_RESPONSE_BYTES = 1024 * 1024


class SecurityError(GatekeeperError):
    """Raised when a security violation is detected."""


async def safe_json_fetch(
    client: httpx.AsyncClient,
    url: str,
    method: str = "GET",
    max_bytes: int = MAX_RESPONSE_BYTES,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Performs a request and decodes a JSON object from the response body.

    The body is streamed and abandoned once it exceeds `max_bytes`.

    Args:
        client: The async HTTP client to use.
        url: The target URL.
        method: The HTTP method.
        max_bytes: The largest body accepted.
        **kwargs: Passed through to `client.stream` (headers, json, data, ...).

    Returns:
        dict[str, Any]: The decoded JSON object.

    Raises:
        httpx.HTTPStatusError: For non-2xx responses.
        httpx.HTTPError: For network errors and timeouts.
        OversizedResponseError: If the body is larger than `max_bytes`.
        GatekeeperError: If the body is not a JSON object.
    """
    async with client.stream(method, url, **kwargs) as response:
        declared = response.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > max_bytes:
            raise OversizedResponseError(f"Response from {url} declares {declared} bytes (limit {max_bytes})")

        body = bytearray()
        async for chunk in response.aiter_bytes():
            body.extend(chunk)
            if len(body) > max_bytes:
                raise OversizedResponseError(f"Response from {url} exceeded {max_bytes} bytes")

        if not response.is_success:
            raise httpx.HTTPStatusError(
                f"HTTP {response.status_code} from {url}", request=response.request, response=response
            )

    try:
        data = json.loads(body)
    except ValueError as e:
        raise GatekeeperError(f"Malformed JSON from {url}: {e}") from e

    if not isinstance(data, dict):
        raise GatekeeperError(f"Expected a JSON object from {url}, got {type(data).__name__}")
    return data


class SafeHTTPTransport(httpx.AsyncHTTPTransport):
    """
    A secure HTTP transport that enforces DNS pinning to prevent SSRF/DNS Rebinding attacks.

    It resolves the hostname, skips addresses in blocked ranges (private, loopback, link-local,
    reserved, multicast), and connects to the first safe address while preserving the Host
    header and SNI for TLS verification.
    """

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        hostname = request.url.host

        try:
            literal = ipaddress.ip_address(hostname)
        except ValueError:
            literal = None

        if literal is not None:
            self._validate_ip(literal, hostname)
            return await super().handle_async_request(request)

        try:
            addr_infos = await anyio.to_thread.run_sync(socket.getaddrinfo, hostname, None, 0, socket.SOCK_STREAM)
        except socket.gaierror as e:
            logger.error(f"DNS resolution failed for {hostname}: {e}")
            raise SecurityError(f"DNS resolution failed for {hostname}") from e

        target_ip: str | None = None
        for _, _, _, _, sockaddr in addr_infos:
            try:
                candidate = ipaddress.ip_address(sockaddr[0])
                self._validate_ip(candidate, hostname)
            except (SecurityError, ValueError):
                continue
            target_ip = str(candidate)
            break

        if not target_ip:
            logger.error(f"Security violation: No valid public IP found for {hostname}")
            raise SecurityError(f"Security violation: No valid public IP found for {hostname}")

        request.extensions["sni_hostname"] = hostname
        if "Host" not in request.headers:
            request.headers["Host"] = request.url.netloc.decode("ascii")
        request.url = request.url.copy_with(host=target_ip)

        logger.debug(f"DNS Pinned: {hostname} -> {target_ip}")
        return await super().handle_async_request(request)

    def _validate_ip(self, ip_obj: ipaddress.IPv4Address | ipaddress.IPv6Address, hostname: str) -> None:
        if (
            ip_obj.is_private
            or ip_obj.is_loopback
            or ip_obj.is_link_local
            or ip_obj.is_reserved
            or ip_obj.is_multicast
        ):
            logger.warning(f"Security violation: Blocked access to {hostname} ({ip_obj})")
            raise SecurityError(f"Access to {hostname} ({ip_obj}) is blocked")
