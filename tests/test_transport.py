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
Tests for the SafeAsyncTransport component.
"""

import socket
from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from coreason_client_credentials.exceptions import SecurityError
from coreason_client_credentials.transport import SafeAsyncTransport


@pytest.fixture
def mock_getaddrinfo() -> Generator[MagicMock, None, None]:
    with patch("socket.getaddrinfo") as mock:
        yield mock


@pytest.mark.asyncio
async def test_safe_transport_blocks_private_ip(mock_getaddrinfo: MagicMock) -> None:
    mock_getaddrinfo.return_value = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("10.0.0.12", 443))]

    transport = SafeAsyncTransport()
    request = httpx.Request("GET", "https://tenant.internal/api/v2/clients/abc")

    with pytest.raises(SecurityError, match="No valid public IP"):
        await transport.handle_async_request(request)


@pytest.mark.asyncio
async def test_safe_transport_pins_public_ip(mock_getaddrinfo: MagicMock) -> None:
    mock_getaddrinfo.return_value = [
        (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("127.0.0.1", 443)),
        (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("8.8.8.8", 443)),
    ]

    transport = SafeAsyncTransport()
    with patch("httpx.AsyncHTTPTransport.handle_async_request", new_callable=AsyncMock) as mock_super:
        mock_super.return_value = httpx.Response(200)

        request = httpx.Request("GET", "https://tenant.example.com/api/v2/clients/abc")
        await transport.handle_async_request(request)

        assert request.url.host == "8.8.8.8"
        assert request.url.path == "/api/v2/clients/abc"
        assert request.headers["host"] == "tenant.example.com"
        assert request.extensions["sni_hostname"] == "tenant.example.com"
        mock_super.assert_awaited_once()


@pytest.mark.asyncio
async def test_safe_transport_blocks_literal_loopback() -> None:
    transport = SafeAsyncTransport()
    request = httpx.Request("GET", "https://127.0.0.1/api/v2/clients/abc")

    with pytest.raises(SecurityError, match="blocked"):
        await transport.handle_async_request(request)


@pytest.mark.asyncio
async def test_safe_transport_allows_literal_public_ip() -> None:
    transport = SafeAsyncTransport()
    with patch("httpx.AsyncHTTPTransport.handle_async_request", new_callable=AsyncMock) as mock_super:
        mock_super.return_value = httpx.Response(200)

        response = await transport.handle_async_request(httpx.Request("GET", "https://8.8.4.4/"))

        assert response.status_code == 200


@pytest.mark.asyncio
async def test_safe_transport_blocks_link_local(mock_getaddrinfo: MagicMock) -> None:
    mock_getaddrinfo.return_value = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("169.254.169.254", 80))]

    transport = SafeAsyncTransport()
    request = httpx.Request("GET", "https://metadata/")

    with pytest.raises(SecurityError):
        await transport.handle_async_request(request)


@pytest.mark.asyncio
async def test_safe_transport_blocks_loopback_ipv6(mock_getaddrinfo: MagicMock) -> None:
    mock_getaddrinfo.return_value = [(socket.AF_INET6, socket.SOCK_STREAM, 6, "", ("::1", 443, 0, 0))]

    transport = SafeAsyncTransport()
    request = httpx.Request("GET", "https://ipv6.local/")

    with pytest.raises(SecurityError):
        await transport.handle_async_request(request)


@pytest.mark.asyncio
async def test_safe_transport_dns_failure(mock_getaddrinfo: MagicMock) -> None:
    mock_getaddrinfo.side_effect = socket.gaierror("Name or service not known")

    transport = SafeAsyncTransport()
    request = httpx.Request("GET", "https://does-not-exist.example.com/")

    with pytest.raises(SecurityError, match="DNS resolution failed"):
        await transport.handle_async_request(request)
