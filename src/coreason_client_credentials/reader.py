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
Remote State Reader: fetches a client's authentication configuration and normalizes it into the same
shape the Config Expander produces.
"""

from collections.abc import Mapping, Sequence

from pydantic import SecretStr

from coreason_client_credentials.exceptions import ClientNotFoundError, CoreasonCredentialsError
from coreason_client_credentials.management_api import ManagementAPI
from coreason_client_credentials.models import (
    AuthenticationMethod,
    ClientCredentialsState,
    Credential,
    SignedRequestObject,
    default_authentication_method,
)
from coreason_client_credentials.models_internal import ClientRecord
from coreason_client_credentials.utils.logger import logger


def resolve_authentication_method(record: ClientRecord) -> AuthenticationMethod:
    """
    Determines the active authentication method of a client.

    An explicit `token_endpoint_auth_method` wins, then a populated credential binding,
    then the default for the client's app type.
    """
    if record.token_endpoint_auth_method:
        try:
            return AuthenticationMethod(record.token_endpoint_auth_method)
        except ValueError as e:
            raise CoreasonCredentialsError(
                f"Unsupported token_endpoint_auth_method '{record.token_endpoint_auth_method}' "
                f"on client {record.client_id}"
            ) from e

    if record.client_authentication_methods is not None:
        populated = record.client_authentication_methods.populated()
        if len(populated) > 1:
            logger.warning(f"Client {record.client_id} has several credential bindings: {list(populated)}.")
        if populated:
            return AuthenticationMethod(next(iter(populated)))

    return default_authentication_method(record.app_type)


def bound_credential_ids(record: ClientRecord, method: AuthenticationMethod) -> tuple[str, ...]:
    """Ids of the credentials referenced by the binding of `method`, in binding order."""
    if not method.uses_credentials or record.client_authentication_methods is None:
        return ()
    binding = record.client_authentication_methods.populated().get(method.value)
    return tuple(ref.id for ref in binding.credentials) if binding is not None else ()


class RemoteStateReader:
    """
    Reads the observed credential state of a client.

    The API never returns `pem` or `parse_expiry_from_cert`; they are carried over from a prior
    snapshot of the same credentials, matched by id. The client secret falls back to the prior one
    when the token is not allowed to read it.
    """

    def __init__(self, api: ManagementAPI) -> None:
        self.api = api

    async def read(self, client_id: str, prior: ClientCredentialsState | None = None) -> ClientCredentialsState | None:
        """
        Fetches and normalizes the client's current authentication method, credentials and
        signed request object.

        Args:
            client_id: The client to read.
            prior: A previous snapshot (desired or observed) used to fill in fields that are not read back.

        Returns:
            ClientCredentialsState | None: The observed state, or None if the client no longer exists.

        Raises:
            ManagementAPIError: If a request is rejected for any reason other than a missing client.
        """
        try:
            record = await self.api.read_client(client_id)
            method = resolve_authentication_method(record)
            auth_ids = bound_credential_ids(record, method)
            sro_record = record.signed_request_object
            sro_ids = tuple(ref.id for ref in sro_record.credentials) if sro_record is not None else ()

            existing: dict[str, Credential] = {}
            if auth_ids or sro_ids:
                existing = {c.id: c for c in await self.api.list_credentials(client_id) if c.id is not None}
        except ClientNotFoundError:
            logger.warning(f"Client {client_id} no longer exists.")
            return None

        known_secret = prior.client_secret if prior is not None else None
        known: dict[str, Credential] = {}
        if prior is not None:
            prior_sro = prior.signed_request_object.credentials if prior.signed_request_object else ()
            known = {c.id: c for c in (*prior.credentials, *prior_sro) if c.id is not None}

        signed_request_object = None
        if sro_record is not None and (sro_record.required or sro_ids):
            signed_request_object = SignedRequestObject(
                required=sro_record.required,
                credentials=self._resolve(client_id, sro_ids, existing, known),
            )

        return ClientCredentialsState(
            client_id=client_id,
            authentication_method=method,
            client_secret=SecretStr(record.client_secret) if record.client_secret else known_secret,
            credentials=self._resolve(client_id, auth_ids, existing, known),
            signed_request_object=signed_request_object,
        )

    async def unreferenced_credentials(
        self, client_id: str, observed: ClientCredentialsState
    ) -> tuple[Credential, ...]:
        """
        Lists the credentials of the client that neither the authentication binding nor the signed request
        object of `observed` references, for instance ones created by a pass that failed before attaching them.
        """
        sro_credentials = observed.signed_request_object.credentials if observed.signed_request_object else ()
        referenced = {credential.id for credential in (*observed.credentials, *sro_credentials)}
        return tuple(
            credential
            for credential in await self.api.list_credentials(client_id)
            if credential.id not in referenced
        )

    @staticmethod
    def _resolve(
        client_id: str,
        credential_ids: Sequence[str],
        existing: Mapping[str, Credential],
        known: Mapping[str, Credential],
    ) -> tuple[Credential, ...]:
        resolved: list[Credential] = []
        for credential_id in credential_ids:
            credential = existing.get(credential_id)
            if credential is None:
                logger.warning(f"Client {client_id} references missing credential {credential_id}; skipping it.")
                continue
            if credential_id in known:
                credential = credential.with_material_from(known[credential_id])
            resolved.append(credential)
        return tuple(resolved)
