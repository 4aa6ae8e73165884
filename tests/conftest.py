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
Shared fixtures: a stateful in-memory management API served through httpx.MockTransport,
and generated RSA keys and certificates.
"""

import base64
import json
import re
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
from authlib.jose import JsonWebKey
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from pydantic import SecretStr

from coreason_client_credentials.config import CoreasonCredentialsConfig
from coreason_client_credentials.management_api import ManagementAPI
from coreason_client_credentials.manager import ClientCredentialsManagerAsync

MOCK_DOMAIN = "tenant.example.com"
API_URL = f"https://{MOCK_DOMAIN}/api/v2"
CERT_NOT_AFTER = (datetime(2030, 1, 1, tzinfo=UTC), datetime(2031, 6, 1, tzinfo=UTC))

_ROUTE = re.compile(r"^/api/v2/clients/(?P<client>[^/]+)(?P<collection>/credentials(?:/(?P<credential>[^/]+))?)?$")
_BINDINGS = ("private_key_jwt", "tls_client_auth", "self_signed_tls_client_auth")


def _timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _error(status: int, message: str) -> httpx.Response:
    return httpx.Response(status, json={"statusCode": status, "message": message})


def _bindings(client: dict[str, Any]) -> dict[str, list[str]]:
    methods = client["client_authentication_methods"] or {}
    return {name: [ref["id"] for ref in binding["credentials"]] for name, binding in methods.items() if binding}


class FakeManagementAPI:
    """
    In-memory stand-in for the client and credential endpoints.

    It enforces the remote rules the reconciliation pipeline relies on: a client carries at most one
    credential binding, bindings only reference existing credentials, a referenced credential cannot be
    deleted, and only the expiry of an existing credential can be patched.
    """

    def __init__(self) -> None:
        self.clients: dict[str, dict[str, Any]] = {}
        self.credentials: dict[str, dict[str, dict[str, Any]]] = {}
        self.calls: list[tuple[str, str]] = []
        self.bodies: list[Any] = []
        self.failures: dict[tuple[str, str], int] = {}
        self.hide_client_secret = False
        self.now = datetime(2025, 1, 1, tzinfo=UTC)
        self._next_id = 0

    def add_client(self, client_id: str, app_type: str = "regular_web", **fields: Any) -> dict[str, Any]:
        self.clients[client_id] = {
            "client_id": client_id,
            "app_type": app_type,
            "token_endpoint_auth_method": fields.pop("token_endpoint_auth_method", None),
            "client_secret": fields.pop("client_secret", "initial-secret"),
            "client_authentication_methods": fields.pop("client_authentication_methods", None),
            "signed_request_object": fields.pop("signed_request_object", None),
            **fields,
        }
        self.credentials[client_id] = {}
        return self.clients[client_id]

    def add_credential(self, client_id: str, **fields: Any) -> str:
        """Stores a credential directly, bypassing request validation. Returns its id."""
        record = self._new_credential(fields)
        self.credentials[client_id][record["id"]] = record
        return str(record["id"])

    def mutations(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] != "GET"]

    def credential_mutations(self) -> list[tuple[str, str]]:
        return [call for call in self.mutations() if "/credentials" in call[1]]

    def bound_ids(self, client_id: str) -> dict[str, list[str]]:
        return _bindings(self.clients[client_id])

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        body = json.loads(request.content) if request.content else None
        self.bodies.append(body)

        if (status := self.failures.get((request.method, path))) is not None:
            return _error(status, "Injected failure")

        match = _ROUTE.match(path)
        if match is None:
            return _error(404, "Not Found")
        client_id = match["client"]
        client = self.clients.get(client_id)
        if client is None:
            return _error(404, "The client does not exist")

        if match["collection"] is None:
            if request.method == "GET":
                if self.hide_client_secret:
                    return httpx.Response(200, json={k: v for k, v in client.items() if k != "client_secret"})
                return httpx.Response(200, json=client)
            if request.method == "PATCH":
                return self._patch_client(client_id, body)
        elif match["credential"] is None:
            if request.method == "GET":
                return httpx.Response(200, json=list(self.credentials[client_id].values()))
            if request.method == "POST":
                return self._create_credential(client_id, body)
        else:
            credential = self.credentials[client_id].get(match["credential"])
            if credential is None:
                return _error(404, "The credential does not exist")
            if request.method == "GET":
                return httpx.Response(200, json=credential)
            if request.method == "PATCH":
                return self._patch_credential(credential, body)
            if request.method == "DELETE":
                return self._delete_credential(client_id, credential["id"])
        return _error(405, "Method Not Allowed")

    def _tick(self) -> str:
        self.now += timedelta(seconds=1)
        return _timestamp(self.now)

    def _new_credential(self, fields: dict[str, Any]) -> dict[str, Any]:
        self._next_id += 1
        pem = fields.get("pem")
        expires_at = fields.get("expires_at")
        subject_dn = fields.get("subject_dn")
        kid = None
        thumbprint = None
        if pem is not None and fields["credential_type"] == "public_key":
            kid = JsonWebKey.import_key(pem).thumbprint()
        if pem is not None and "BEGIN CERTIFICATE" in pem:
            certificate = x509.load_pem_x509_certificate(pem.encode())
            digest = certificate.fingerprint(hashes.SHA256())
            thumbprint = base64.urlsafe_b64encode(digest).decode().rstrip("=")
            if expires_at is None and fields.get("parse_expiry_from_cert"):
                expires_at = _timestamp(certificate.not_valid_after_utc)
            if fields["credential_type"] == "cert_subject_dn":
                subject_dn = certificate.subject.rfc4514_string()
        now = self._tick()
        record = {
            "id": f"cred_{self._next_id}",
            "name": fields.get("name", ""),
            "credential_type": fields["credential_type"],
            "kid": kid,
            "thumbprint_sha256": thumbprint,
            "created_at": now,
            "updated_at": now,
            "expires_at": expires_at,
        }
        if fields["credential_type"] == "public_key":
            record["alg"] = fields.get("alg", "RS256")
        if subject_dn is not None:
            record["subject_dn"] = subject_dn
        return record

    def _create_credential(self, client_id: str, body: dict[str, Any]) -> httpx.Response:
        allowed = {"credential_type", "name", "pem", "subject_dn", "alg", "parse_expiry_from_cert", "expires_at"}
        if unknown := set(body) - allowed:
            return _error(400, f"Payload validation error: additional properties {sorted(unknown)}")
        record = self._new_credential(body)
        self.credentials[client_id][record["id"]] = record
        return httpx.Response(201, json=record)

    def _patch_credential(self, credential: dict[str, Any], body: dict[str, Any]) -> httpx.Response:
        if set(body) != {"expires_at"}:
            return _error(400, "Only expires_at can be updated")
        credential["expires_at"] = body["expires_at"]
        credential["updated_at"] = self._tick()
        return httpx.Response(200, json=credential)

    @staticmethod
    def _referenced_ids(client: dict[str, Any]) -> set[str]:
        ids = {ref for refs in _bindings(client).values() for ref in refs}
        sro = client["signed_request_object"]
        if sro is not None:
            ids.update(ref["id"] for ref in sro.get("credentials", []))
        return ids

    def _delete_credential(self, client_id: str, credential_id: str) -> httpx.Response:
        if credential_id in self._referenced_ids(self.clients[client_id]):
            return _error(400, "The credential is in use by the client and cannot be deleted")
        del self.credentials[client_id][credential_id]
        self._tick()
        return httpx.Response(204)

    def _patch_client(self, client_id: str, body: dict[str, Any]) -> httpx.Response:
        updated = json.loads(json.dumps(self.clients[client_id]))
        for key, value in body.items():
            if key == "client_authentication_methods" and value is not None:
                methods = updated[key] or {}
                methods.update(value)
                updated[key] = methods
            else:
                updated[key] = value

        populated = [name for name in _BINDINGS if (updated["client_authentication_methods"] or {}).get(name)]
        if len(populated) > 1:
            return _error(400, "Only one client authentication method can be set")
        if populated and updated["token_endpoint_auth_method"] is not None:
            return _error(400, "token_endpoint_auth_method must be null when client_authentication_methods is set")
        known = self.credentials[client_id]
        for credential_id in self._referenced_ids(updated):
            if credential_id not in known:
                return _error(400, f"Credential {credential_id} does not exist")

        self.clients[client_id] = updated
        self._tick()
        return httpx.Response(200, json=updated)


def _private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _public_pem(key: rsa.RSAPrivateKey) -> str:
    return (
        key.public_key()
        .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
        .decode()
    )


def _certificate_pem(key: rsa.RSAPrivateKey, common_name: str, not_after: datetime) -> str:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(datetime(2024, 1, 1, tzinfo=UTC))
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    return certificate.public_bytes(serialization.Encoding.PEM).decode()


@pytest.fixture(scope="session")
def private_keys() -> list[rsa.RSAPrivateKey]:
    return [_private_key() for _ in range(3)]


@pytest.fixture(scope="session")
def public_key_pems(private_keys: list[rsa.RSAPrivateKey]) -> list[str]:
    """Three distinct PEM encoded RSA public keys."""
    return [_public_pem(key) for key in private_keys]


@pytest.fixture(scope="session")
def certificate_pems(private_keys: list[rsa.RSAPrivateKey]) -> list[str]:
    """Two self-signed certificates expiring at CERT_NOT_AFTER[0] and CERT_NOT_AFTER[1]."""
    return [
        _certificate_pem(private_keys[0], "client-one.example.com", CERT_NOT_AFTER[0]),
        _certificate_pem(private_keys[1], "client-two.example.com", CERT_NOT_AFTER[1]),
    ]


@pytest.fixture(scope="session")
def private_key_pem(private_keys: list[rsa.RSAPrivateKey]) -> str:
    return (
        private_keys[2]
        .private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        .decode()
    )


@pytest.fixture
def config() -> CoreasonCredentialsConfig:
    return CoreasonCredentialsConfig(domain=MOCK_DOMAIN, api_token=SecretStr("test-api-token"), http_timeout=5.0)


@pytest.fixture
def fake_api() -> FakeManagementAPI:
    return FakeManagementAPI()


@pytest.fixture
async def http_client(fake_api: FakeManagementAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_api.handler)) as client:
        yield client


@pytest.fixture
def api(http_client: httpx.AsyncClient) -> ManagementAPI:
    return ManagementAPI(http_client, API_URL, SecretStr("test-api-token"))


@pytest.fixture
async def manager(
    config: CoreasonCredentialsConfig, http_client: httpx.AsyncClient
) -> AsyncGenerator[ClientCredentialsManagerAsync, None]:
    async with ClientCredentialsManagerAsync(config, client=http_client) as mgr:
        yield mgr
