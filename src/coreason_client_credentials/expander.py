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
Config Expander: turns a desired configuration into a validated ClientCredentialsState.

Validation happens before any remote call and fails on the first violation found.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from authlib.jose import JsonWebKey
from authlib.jose.errors import JoseError
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from coreason_client_credentials.exceptions import CredentialsValidationError
from coreason_client_credentials.models import (
    CREDENTIAL_METHODS,
    AuthenticationMethod,
    ClientCredentialsState,
    Credential,
    CredentialType,
    SignedRequestObject,
    SigningAlgorithm,
    truncate_to_millis,
)

CREDENTIALS_MISSING = "Client Credentials Missing"
CREDENTIALS_INVALID = "Client Credentials Invalid"

SIGNED_REQUEST_OBJECT = "signed_request_object"

Path = tuple[str | int, ...]


class RawCredential(BaseModel):
    """
    A credential descriptor as written in a desired configuration.
    Remote-assigned fields are not accepted.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    credential_type: CredentialType | None = None
    pem: str | None = None
    subject_dn: str | None = None
    algorithm: SigningAlgorithm | None = None
    parse_expiry_from_cert: bool = False
    expires_at: datetime | None = None

    @field_validator("name", "pem", "subject_dn", mode="before")
    @classmethod
    def empty_as_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class RawCredentialBlock(BaseModel):
    model_config = ConfigDict(extra="forbid")

    credentials: list[RawCredential] = Field(default_factory=list)


class RawSignedRequestObject(BaseModel):
    model_config = ConfigDict(extra="forbid")

    required: bool = False
    credentials: list[RawCredential] = Field(default_factory=list)


class RawCredentialsConfig(BaseModel):
    """
    The desired credential configuration of one client, before validation.

    Each credential-bearing authentication method has its own block; only the block of the
    selected `authentication_method` may be present.
    """

    model_config = ConfigDict(extra="forbid")

    client_id: str = Field(..., min_length=1)
    authentication_method: AuthenticationMethod | None = None
    client_secret: SecretStr | None = None
    private_key_jwt: RawCredentialBlock | None = None
    tls_client_auth: RawCredentialBlock | None = None
    self_signed_tls_client_auth: RawCredentialBlock | None = None
    signed_request_object: RawSignedRequestObject | None = None


def expand_credentials_config(raw: Mapping[str, Any]) -> ClientCredentialsState:
    """
    Parses and validates a desired configuration.

    Args:
        raw: The desired configuration, e.g.
            {"client_id": "...", "authentication_method": "private_key_jwt",
             "private_key_jwt": {"credentials": [{"credential_type": "public_key", "pem": "..."}]}}

    Returns:
        ClientCredentialsState: The normalized desired state.

    Raises:
        CredentialsValidationError: If the configuration violates a structural rule.
    """
    try:
        config = RawCredentialsConfig.model_validate(dict(raw))
    except ValidationError as e:
        error = e.errors()[0]
        raise CredentialsValidationError(CREDENTIALS_INVALID, error["msg"], error["loc"]) from e

    method = config.authentication_method
    for block_name in CREDENTIAL_METHODS:
        if getattr(config, block_name.value) is not None and block_name is not method:
            raise CredentialsValidationError(
                CREDENTIALS_INVALID,
                f"'{block_name.value}' credentials cannot be set when the authentication method is "
                f"{method.value if method else 'not set'}.",
                (block_name.value,),
            )

    credentials: tuple[Credential, ...] = ()
    if method is not None and method.uses_credentials:
        block = getattr(config, method.value)
        raw_credentials = block.credentials if block is not None else []
        credentials = tuple(
            _build_credential(item, method.credential_type, (method.value, "credentials", index))
            for index, item in enumerate(raw_credentials)
        )

    signed_request_object = None
    if config.signed_request_object is not None:
        signed_request_object = SignedRequestObject(
            required=config.signed_request_object.required,
            credentials=tuple(
                _build_credential(item, CredentialType.PUBLIC_KEY, (SIGNED_REQUEST_OBJECT, "credentials", index))
                for index, item in enumerate(config.signed_request_object.credentials)
            ),
        )

    state = ClientCredentialsState(
        client_id=config.client_id,
        authentication_method=method,
        client_secret=config.client_secret,
        credentials=credentials,
        signed_request_object=signed_request_object,
    )
    return validate_credentials_state(state)


def _build_credential(item: RawCredential, default_type: CredentialType | None, path: Path) -> Credential:
    credential_type = item.credential_type or default_type
    if credential_type is None:
        raise CredentialsValidationError(
            CREDENTIALS_INVALID, "credential_type is required.", (*path, "credential_type")
        )
    return Credential(
        name=item.name,
        credential_type=credential_type,
        pem=item.pem,
        subject_dn=item.subject_dn,
        algorithm=item.algorithm,
        parse_expiry_from_cert=item.parse_expiry_from_cert,
        expires_at=item.expires_at,
    )


def validate_credentials_state(state: ClientCredentialsState) -> ClientCredentialsState:
    """
    Validates a desired state and normalizes its credentials.

    Returns:
        ClientCredentialsState: The state with default algorithms filled in and expiries
        truncated to millisecond precision.

    Raises:
        CredentialsValidationError: If a structural rule is violated.
    """
    method = state.authentication_method

    if state.client_secret is not None and (method is None or not method.uses_client_secret):
        raise CredentialsValidationError(
            CREDENTIALS_INVALID,
            f"client_secret cannot be set when the authentication method is {method.value if method else 'not set'}.",
            ("client_secret",),
        )

    if method is not None and method.uses_credentials:
        path: Path = (method.value, "credentials")
        if not state.credentials:
            raise CredentialsValidationError(
                CREDENTIALS_MISSING,
                f"You must define client credentials when setting the authentication method as {method.value}.",
                path,
            )
        if method.max_credentials is not None and len(state.credentials) > method.max_credentials:
            raise CredentialsValidationError(
                CREDENTIALS_INVALID,
                f"A maximum of {method.max_credentials} client credentials can be set for {method.value}.",
                path,
            )
        expected_type = method.credential_type
    elif state.credentials:
        raise CredentialsValidationError(
            CREDENTIALS_INVALID,
            f"Credentials cannot be set when the authentication method is {method.value if method else 'not set'}.",
            ("credentials",),
        )
    else:
        path = ("credentials",)
        expected_type = None

    credentials = tuple(
        _validate_credential(credential, expected_type, (*path, index))
        for index, credential in enumerate(state.credentials)
    )

    signed_request_object = state.signed_request_object
    if signed_request_object is not None:
        sro_path: Path = (SIGNED_REQUEST_OBJECT, "credentials")
        if not signed_request_object.credentials:
            raise CredentialsValidationError(
                CREDENTIALS_MISSING,
                "You must define credentials when configuring the signed request object.",
                sro_path,
            )
        signed_request_object = signed_request_object.model_copy(
            update={
                "credentials": tuple(
                    _validate_credential(credential, CredentialType.PUBLIC_KEY, (*sro_path, index))
                    for index, credential in enumerate(signed_request_object.credentials)
                )
            }
        )

    return state.model_copy(update={"credentials": credentials, "signed_request_object": signed_request_object})


def _validate_credential(credential: Credential, expected_type: CredentialType | None, path: Path) -> Credential:
    credential_type = credential.credential_type
    if expected_type is not None and credential_type is not expected_type:
        raise CredentialsValidationError(
            CREDENTIALS_INVALID,
            f"Credential type must be {expected_type.value}, got {credential_type.value}.",
            (*path, "credential_type"),
        )

    if credential_type is CredentialType.CERT_SUBJECT_DN:
        if (credential.pem is None) == (credential.subject_dn is None):
            raise CredentialsValidationError(
                CREDENTIALS_INVALID,
                "Exactly one of pem or subject_dn must be set for a cert_subject_dn credential.",
                path,
            )
    else:
        if credential.pem is None:
            raise CredentialsValidationError(
                CREDENTIALS_INVALID, f"pem is required for a {credential_type.value} credential.", (*path, "pem")
            )
        if credential.subject_dn is not None:
            raise CredentialsValidationError(
                CREDENTIALS_INVALID,
                f"subject_dn cannot be set for a {credential_type.value} credential.",
                (*path, "subject_dn"),
            )

    if credential.pem is not None:
        _check_pem(credential.pem, requires_certificate=credential_type is not CredentialType.PUBLIC_KEY, path=path)

    update: dict[str, Any] = {}
    if credential_type is CredentialType.PUBLIC_KEY:
        if credential.algorithm is None:
            update["algorithm"] = SigningAlgorithm.RS256
    else:
        if credential.algorithm is not None:
            raise CredentialsValidationError(
                CREDENTIALS_INVALID,
                f"algorithm cannot be set for a {credential_type.value} credential.",
                (*path, "algorithm"),
            )
        if credential.parse_expiry_from_cert:
            raise CredentialsValidationError(
                CREDENTIALS_INVALID,
                f"parse_expiry_from_cert cannot be set for a {credential_type.value} credential.",
                (*path, "parse_expiry_from_cert"),
            )

    if credential.expires_at is not None:
        update["expires_at"] = truncate_to_millis(credential.expires_at)

    return credential.model_copy(update=update) if update else credential


def _check_pem(pem: str, requires_certificate: bool, path: Path) -> None:
    if "PRIVATE KEY" in pem:
        raise CredentialsValidationError(
            CREDENTIALS_INVALID, "pem must hold a public key or certificate, not a private key.", (*path, "pem")
        )
    if requires_certificate and "BEGIN CERTIFICATE" not in pem:
        raise CredentialsValidationError(CREDENTIALS_INVALID, "pem must hold an X.509 certificate.", (*path, "pem"))
    try:
        JsonWebKey.import_key(pem)
    except (JoseError, ValueError, TypeError, KeyError) as e:
        raise CredentialsValidationError(
            CREDENTIALS_INVALID, f"pem could not be parsed as a public key or certificate: {e}", (*path, "pem")
        ) from e
