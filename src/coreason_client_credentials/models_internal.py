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
Internal wire models for the management API.
These are not exposed in the public API.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from coreason_client_credentials.models import Credential, CredentialType, SigningAlgorithm, truncate_to_millis


def format_timestamp(value: datetime) -> str:
    """Formats a timestamp as RFC 3339 with milliseconds, e.g. 2025-05-13T09:33:13.000Z."""
    value = truncate_to_millis(value).astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class CredentialReference(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str


class CredentialBindingRecord(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    credentials: list[CredentialReference] = Field(default_factory=list)


class ClientAuthenticationMethods(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    private_key_jwt: CredentialBindingRecord | None = None
    tls_client_auth: CredentialBindingRecord | None = None
    self_signed_tls_client_auth: CredentialBindingRecord | None = None

    def populated(self) -> dict[str, CredentialBindingRecord]:
        """Returns the bindings that are present, keyed by method name."""
        return {
            name: binding
            for name in ("private_key_jwt", "tls_client_auth", "self_signed_tls_client_auth")
            if (binding := getattr(self, name)) is not None
        }


class SignedRequestObjectRecord(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    required: bool = False
    credentials: list[CredentialReference] = Field(default_factory=list)


class ClientRecord(BaseModel):
    """
    The subset of a client returned by `GET /clients/{id}` that this package reads.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    client_id: str
    app_type: str | None = None
    token_endpoint_auth_method: str | None = None
    client_secret: str | None = None
    client_authentication_methods: ClientAuthenticationMethods | None = None
    signed_request_object: SignedRequestObjectRecord | None = None


class CredentialRecord(BaseModel):
    """
    A credential as returned by the management API.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    name: str | None = None
    credential_type: CredentialType
    subject_dn: str | None = None
    alg: SigningAlgorithm | None = None
    kid: str | None = None
    thumbprint_sha256: str | None = None
    expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_credential(self) -> Credential:
        is_public_key = self.credential_type is CredentialType.PUBLIC_KEY
        return Credential(
            id=self.id,
            name=self.name or None,
            credential_type=self.credential_type,
            subject_dn=self.subject_dn or None,
            algorithm=self.alg if is_public_key else None,
            expires_at=self.expires_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
            key_id=self.kid,
            thumbprint_sha256=self.thumbprint_sha256,
        )


def credential_create_payload(credential: Credential) -> dict[str, Any]:
    """Builds the body of `POST /clients/{id}/credentials`. Read-only fields are never sent."""
    payload: dict[str, Any] = {"credential_type": credential.credential_type.value}
    if credential.name is not None:
        payload["name"] = credential.name
    if credential.pem is not None:
        payload["pem"] = credential.pem
    if credential.subject_dn is not None:
        payload["subject_dn"] = credential.subject_dn
    if credential.credential_type is CredentialType.PUBLIC_KEY:
        if credential.algorithm is not None:
            payload["alg"] = credential.algorithm.value
        payload["parse_expiry_from_cert"] = credential.parse_expiry_from_cert
    if credential.expires_at is not None:
        payload["expires_at"] = format_timestamp(credential.expires_at)
    return payload
