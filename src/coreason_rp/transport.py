# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rp

"""
Outbound HTTP helpers for talking to the Identity Provider.

SafeHTTPTransport mitigates SSRF via DNS rebinding; the fetch helpers cap response sizes.
"""

import ipaddress
import json
import socket
from typing import Any

import anyio
import httpx

from coreason_rp.exceptions import CoreasonRPError, OversizedResponseError, SecurityError
from coreason_rp.utils.logger import logger

MAX_RESPONSE_BYTES = 1_000_000


class SafeHTTPTransport(httpx.AsyncHTTPTransport):
    """
    A secure HTTP transport that enforces DNS pinning to prevent SSRF/DNS Rebinding attacks.

    It resolves the hostname, rejects private, loopback, link-local, reserved and multicast
    addresses, and connects to the first safe IP while preserving the Host header and SNI.
    """

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        hostname = request.url.host

        try:
            ip_obj = ipaddress.ip_address(hostname)
        except ValueError:
            ip_obj = None

        if ip_obj is not None:
            self._validate_ip(ip_obj, hostname)
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

        # Pin the connection to the validated IP; TLS still verifies against the hostname
        request.extensions["sni_hostname"] = hostname
        if "Host" not in request.headers:
            request.headers["Host"] = request.url.netloc.decode("ascii")
        request.url = request.url.copy_with(host=target_ip)

        logger.debug(f"DNS Pinned: {hostname} -> {target_ip}")
        return await super().handle_async_request(request)

    def _validate_ip(self, ip_obj: Any, hostname: str) -> None:
        if (
            ip_obj.is_private
            or ip_obj.is_loopback
            or ip_obj.is_link_local
            or ip_obj.is_reserved
            or ip_obj.is_multicast
        ):
            logger.warning(f"Security violation: Blocked access to {hostname} ({ip_obj})")
            raise SecurityError(f"Access to {hostname} ({ip_obj}) is blocked")


async def read_json_response(
    client: httpx.AsyncClient,
    url: str,
    method: str = "GET",
    **kwargs: Any,
) -> tuple[int, Any]:
    """
    Performs a request and returns the status code and the decoded JSON body.

    The body is streamed and capped at MAX_RESPONSE_BYTES. A body that is not JSON is
    returned as None, so callers can still act on the status code of an error response.

    Raises:
        OversizedResponseError: If the response exceeds the size limit.
        httpx.HTTPError: On network errors and timeouts.
    """
    async with client.stream(method, url, **kwargs) as response:
        content_length = response.headers.get("Content-Length")
        if content_length and content_length.isdigit() and int(content_length) > MAX_RESPONSE_BYTES:
            raise OversizedResponseError(f"Response from {url} too large")

        content = bytearray()
        async for chunk in response.aiter_bytes():
            content.extend(chunk)
            if len(content) > MAX_RESPONSE_BYTES:
                raise OversizedResponseError(f"Response from {url} too large")

        try:
            data = json.loads(content) if content else None
        except (json.JSONDecodeError, UnicodeDecodeError):
            data = None

        return response.status_code, data


async def safe_json_fetch(
    client: httpx.AsyncClient,
    url: str,
    method: str = "GET",
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Fetches a JSON object, failing on any non-2xx status or non-object body.

    Raises:
        CoreasonRPError: On error statuses or invalid JSON.
        OversizedResponseError: If the response exceeds the size limit.
        httpx.HTTPError: On network errors and timeouts.
    """
    status, data = await read_json_response(client, url, method=method, **kwargs)
    if status >= 400:
        raise CoreasonRPError(f"HTTP {status} from {url}")
    if not isinstance(data, dict):
        raise CoreasonRPError(f"Invalid JSON response from {url}")
    return data
