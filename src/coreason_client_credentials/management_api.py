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
Async adapter for the client and credential endpoints of the management API.
"""

import json
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import SecretStr, ValidationError

from coreason_client_credentials.deadline_context import check_deadline
from coreason_client_credentials.exceptions import (
    ClientNotFoundError,
    CoreasonCredentialsError,
    CredentialNotFoundError,
    ManagementAPIError,
    OversizedResponseError,
)
from coreason_client_credentials.models import Credential
from coreason_client_credentials.models_internal import (
    ClientRecord,
    CredentialRecord,
    credential_create_payload,
    format_timestamp,
)
from coreason_client_credentials.utils.logger import logger

CLIENT_FIELDS = (
    "client_id",
    "app_type",
    "token_endpoint_auth_method",
    "client_secret",
    "client_authentication_methods",
    "signed_request_object",
)


class ManagementAPI:
    """
    Issues client and credential requests against the management API.

    Requests are never retried. A 404 on a client-scoped request means the client no longer
    exists and raises `ClientNotFoundError`; on a single-credential route it raises `CredentialNotFoundError`.
    Every other error status raises `ManagementAPIError` carrying the response body verbatim.

    Attributes:
        client (httpx.AsyncClient): The HTTP client to send requests with.
        base_url (str): Base URL of the management API, e.g. https://tenant.auth0.com/api/v2.
        max_response_bytes (int): Responses larger than this are rejected.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        api_token: SecretStr,
        max_response_bytes: int = 1_000_000,
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.max_response_bytes = max_response_bytes
        self._api_token = api_token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        not_found: type[CoreasonCredentialsError] = ClientNotFoundError,
    ) -> Any:
        check_deadline(f"{method} {path}")

        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {self._api_token.get_secret_value()}"}
        logger.debug(f"{method} {url}")

        try:
            async with self.client.stream(method, url, json=body, params=params, headers=headers) as response:
                content_length = response.headers.get("Content-Length")
                if content_length and content_length.isdigit() and int(content_length) > self.max_response_bytes:
                    raise OversizedResponseError(f"Response from {url} too large")

                content = bytearray()
                async for chunk in response.aiter_bytes():
                    content.extend(chunk)
                    if len(content) > self.max_response_bytes:
                        raise OversizedResponseError(f"Response from {url} too large")
        except httpx.HTTPError as e:
            raise CoreasonCredentialsError(f"{method} {url} failed: {e}") from e

        text = content.decode("utf-8", errors="replace")
        if response.status_code == httpx.codes.NOT_FOUND:
            raise not_found(f"{method} {url} returned 404: {text}")
        if response.status_code >= httpx.codes.BAD_REQUEST:
            logger.error(f"{method} {url} failed with status {response.status_code}")
            raise ManagementAPIError(response.status_code, text, method, url)

        if not content:
            return None
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise ManagementAPIError(response.status_code, f"Invalid JSON response: {text}", method, url) from e

    @staticmethod
    def _client_path(client_id: str, *parts: str) -> str:
        return "/".join(["/clients", quote(client_id, safe=""), *(quote(p, safe="") for p in parts)])

    async def read_client(self, client_id: str) -> ClientRecord:
        """
        Fetches the app type and the current authentication bindings of a client.

        Raises:
            ClientNotFoundError: If the client does not exist.
            ManagementAPIError: If the request is rejected.
        """
        data = await self._request(
            "GET",
            self._client_path(client_id),
            params={"fields": ",".join(CLIENT_FIELDS), "include_fields": "true"},
        )
        try:
            return ClientRecord.model_validate(data)
        except ValidationError as e:
            raise CoreasonCredentialsError(f"Invalid client payload for {client_id}: {e}") from e

    async def update_client(self, client_id: str, payload: dict[str, Any]) -> None:
        """
        Submits a sparse update. Keys absent from `payload` are left untouched; keys set to None are cleared.
        """
        await self._request("PATCH", self._client_path(client_id), body=payload)

    async def list_credentials(self, client_id: str) -> list[Credential]:
        data = await self._request("GET", self._client_path(client_id, "credentials"))
        return [self._parse_credential(item) for item in data or []]

    async def create_credential(self, client_id: str, credential: Credential) -> Credential:
        """
        Creates a credential and returns it with its remote-assigned fields.
        Material that the API never returns (pem, parse_expiry_from_cert) is kept from the input.
        """
        data = await self._request(
            "POST",
            self._client_path(client_id, "credentials"),
            body=credential_create_payload(credential),
        )
        return self._parse_credential(data).with_material_from(credential)

    async def update_credential(self, client_id: str, credential_id: str, expires_at: datetime) -> Credential:
        """
        Updates a credential in place. Only the expiry can change once a credential exists.
        """
        data = await self._request(
            "PATCH",
            self._client_path(client_id, "credentials", credential_id),
            body={"expires_at": format_timestamp(expires_at)},
            not_found=CredentialNotFoundError,
        )
        return self._parse_credential(data)

    async def delete_credential(self, client_id: str, credential_id: str) -> None:
        """
        Deletes a credential. A credential that is already gone counts as deleted.
        """
        try:
            await self._request(
                "DELETE",
                self._client_path(client_id, "credentials", credential_id),
                not_found=CredentialNotFoundError,
            )
        except CredentialNotFoundError:
            logger.info(f"Credential {credential_id} of client {client_id} was already deleted.")

    @staticmethod
    def _parse_credential(data: Any) -> Credential:
        try:
            return CredentialRecord.model_validate(data).to_credential()
        except ValidationError as e:
            raise CoreasonCredentialsError(f"Invalid credential payload: {e}") from e
