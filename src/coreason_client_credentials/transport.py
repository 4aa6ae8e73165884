# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_client_credentials

"""
Secure HTTP transport that pins the management API host to a validated public IP.
"""

import ipaddress
import socket

import anyio
import httpx

from coreason_client_credentials.exceptions import SecurityError
from coreason_client_credentials.utils.logger import logger

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def is_blocked_ip(ip_obj: IPAddress) -> bool:
    return (
        ip_obj.is_private
        or ip_obj.is_loopback
        or ip_obj.is_link_local
        or ip_obj.is_reserved
        or ip_obj.is_multicast
    )


class SafeAsyncTransport(httpx.AsyncHTTPTransport):
    """
    An async transport that enforces DNS pinning to prevent SSRF/DNS Rebinding attacks.

    The hostname is resolved once, the first public address is selected, and the request is sent to that
    address while the original Host header and SNI hostname are preserved for TLS verification.
    """

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        hostname = request.url.host

        try:
            ip_obj = ipaddress.ip_address(hostname)
        except ValueError:
            ip_obj = None

        if ip_obj is not None:
            if is_blocked_ip(ip_obj):
                logger.warning(f"Security violation: Blocked access to {hostname}")
                raise SecurityError(f"Access to {hostname} is blocked")
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
            except ValueError:
                continue
            if not is_blocked_ip(candidate):
                target_ip = str(candidate)
                break

        if target_ip is None:
            logger.error(f"Security violation: No valid public IP found for {hostname}")
            raise SecurityError(f"Security violation: No valid public IP found for {hostname}")

        request.extensions["sni_hostname"] = hostname
        if "Host" not in request.headers:
            request.headers["Host"] = request.url.netloc.decode("ascii")
        request.url = request.url.copy_with(host=target_ip)

        logger.debug(f"DNS Pinned: {hostname} -> {target_ip}")
        return await super().handle_async_request(request)
