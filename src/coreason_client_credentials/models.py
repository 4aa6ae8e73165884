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
Data models for the coreason-client-credentials package.
"""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class CredentialType(StrEnum):
    PUBLIC_KEY = "public_key"
    CERT_SUBJECT_DN = "cert_subject_dn"
    X509_CERT = "x509_cert"


class SigningAlgorithm(StrEnum):
    RS256 = "RS256"
    RS384 = "RS384"
    PS256 = "PS256"


class AuthenticationMethod(StrEnum):
    """
    The mechanism a client uses to authenticate itself to the token endpoint.
    Exactly one is active per client.
    """

    NONE = "none"
    CLIENT_SECRET_POST = "client_secret_post"
    CLIENT_SECRET_BASIC = "client_secret_basic"
    PRIVATE_KEY_JWT = "private_key_jwt"
    TLS_CLIENT_AUTH = "tls_client_auth"
    SELF_SIGNED_TLS_CLIENT_AUTH = "self_signed_tls_client_auth"

    @property
    def uses_credentials(self) -> bool:
        return self in _CREDENTIAL_TYPES

    @property
    def uses_client_secret(self) -> bool:
        return self in (AuthenticationMethod.CLIENT_SECRET_POST, AuthenticationMethod.CLIENT_SECRET_BASIC)

    @property
    def credential_type(self) -> CredentialType | None:
        return _CREDENTIAL_TYPES.get(self)

    @property
    def max_credentials(self) -> int | None:
        return 2 if self is AuthenticationMethod.PRIVATE_KEY_JWT else None


_CREDENTIAL_TYPES: dict[AuthenticationMethod, CredentialType] = {
    AuthenticationMethod.PRIVATE_KEY_JWT: CredentialType.PUBLIC_KEY,
    AuthenticationMethod.TLS_CLIENT_AUTH: CredentialType.CERT_SUBJECT_DN,
    AuthenticationMethod.SELF_SIGNED_TLS_CLIENT_AUTH: CredentialType.X509_CERT,
}

CREDENTIAL_METHODS = tuple(_CREDENTIAL_TYPES)


def default_authentication_method(app_type: str | None) -> AuthenticationMethod:
    """
    Returns the authentication method a client of the given app type falls back to
    when no method is explicitly configured.

    Args:
        app_type: The client's application type (e.g. "spa", "regular_web").

    Returns:
        AuthenticationMethod: `none` for public clients, `client_secret_post` for
        web and machine-to-machine clients, `client_secret_basic` otherwise.
    """
    match app_type:
        case "native" | "spa":
            return AuthenticationMethod.NONE
        case "regular_web" | "non_interactive":
            return AuthenticationMethod.CLIENT_SECRET_POST
        case _:
            return AuthenticationMethod.CLIENT_SECRET_BASIC


def truncate_to_millis(value: datetime) -> datetime:
    """Normalizes a timestamp to UTC with millisecond precision, as stored remotely."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


class Credential(BaseModel):
    """
    A single cryptographic credential bound to a client.

    Every field except `expires_at` is immutable once the credential exists remotely;
    changing any of them requires deleting and recreating the credential.
    `id`, `created_at`, `updated_at`, `key_id` and `thumbprint_sha256` are assigned remotely.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str | None = Field(default=None, description="Remote-assigned identifier. Empty until created.")
    name: str | None = Field(default=None, description="Friendly label.")
    credential_type: CredentialType
    pem: str | None = Field(
        default=None, description="PEM public key or certificate. Never read back from the remote API."
    )
    subject_dn: str | None = Field(default=None, description="Subject DN for CA-issued mTLS certificates.")
    algorithm: SigningAlgorithm | None = Field(default=None, description="Only meaningful for public_key.")
    parse_expiry_from_cert: bool = Field(default=False, description="Only meaningful for public_key.")
    expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    key_id: str | None = None
    thumbprint_sha256: str | None = None

    def fingerprint(self) -> tuple[object, ...]:
        """The immutable fields, used to match a desired credential against an existing one."""
        return (
            self.credential_type,
            self.name,
            self.pem,
            self.subject_dn,
            self.algorithm,
            self.parse_expiry_from_cert,
        )

    def with_material_from(self, source: "Credential") -> "Credential":
        """
        Copies the fields the remote API never returns (pem, parse_expiry_from_cert) from `source`.
        When `source` was defined by its pem, its subject_dn is kept as well.
        """
        update: dict[str, object] = {"pem": source.pem, "parse_expiry_from_cert": source.parse_expiry_from_cert}
        if source.pem is not None:
            update["subject_dn"] = source.subject_dn
        return self.model_copy(update=update)

    def __repr__(self) -> str:
        # PEM material is long and noisy in logs
        return (
            f"Credential(id={self.id!r}, name={self.name!r}, credential_type={self.credential_type.value!r}, "
            f"expires_at={self.expires_at!r})"
        )


class SignedRequestObject(BaseModel):
    """
    Signed authorization request configuration.
    Independent of the client's active authentication method.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    required: bool = False
    credentials: tuple[Credential, ...] = ()


class ClientCredentialsState(BaseModel):
    """
    Normalized credential configuration of a client.

    Produced both by expanding a desired configuration and by reading remote state,
    so the two can be compared structurally.

    Attributes:
        client_id (str): The client being configured.
        authentication_method (AuthenticationMethod | None): Active method, or None to leave it unmanaged.
        client_secret (SecretStr | None): Shared secret for the client_secret_* methods.
        credentials (tuple[Credential, ...]): Credentials of the active credential-bearing method.
        signed_request_object (SignedRequestObject | None): Signed request object configuration.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    client_id: str = Field(..., min_length=1)
    authentication_method: AuthenticationMethod | None = None
    client_secret: SecretStr | None = None
    credentials: tuple[Credential, ...] = ()
    signed_request_object: SignedRequestObject | None = None
