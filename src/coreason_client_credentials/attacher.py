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
Authentication-Method Attacher: binds the client's active authentication method to a set of credentials.

Each binding is a tagged union keyed by AuthenticationMethod. Its payload populates only the active
variant and explicitly nulls every other one, because the management API rejects a client carrying
more than one credential binding.
"""

from collections.abc import Collection, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, SecretStr, ValidationError, model_validator

from coreason_client_credentials.exceptions import BindingError
from coreason_client_credentials.management_api import ManagementAPI
from coreason_client_credentials.models import CREDENTIAL_METHODS, AuthenticationMethod
from coreason_client_credentials.utils.logger import logger


def _references(credential_ids: Sequence[str]) -> list[dict[str, str]]:
    return [{"id": credential_id} for credential_id in credential_ids]


class AuthenticationBinding(BaseModel):
    """
    The active authentication method of a client and the credentials it references.

    Shared-secret methods and `none` reference no credentials; credential-bearing methods
    reference at least one, and `private_key_jwt` at most two.
    """

    model_config = ConfigDict(frozen=True)

    method: AuthenticationMethod
    credential_ids: tuple[str, ...] = ()

    @model_validator(mode="after")
    def check_credential_ids(self) -> "AuthenticationBinding":
        count = len(self.credential_ids)
        if not self.method.uses_credentials:
            if count:
                raise ValueError(f"{self.method.value} cannot reference credentials")
            return self
        if count == 0:
            raise ValueError(f"{self.method.value} requires at least one credential")
        if self.method.max_credentials is not None and count > self.method.max_credentials:
            raise ValueError(f"{self.method.value} references at most {self.method.max_credentials} credentials")
        if len(set(self.credential_ids)) != count:
            raise ValueError("credential ids must be unique")
        return self

    @classmethod
    def of(cls, method: AuthenticationMethod, credential_ids: Sequence[str] = ()) -> "AuthenticationBinding":
        """Builds a binding, raising BindingError instead of a pydantic ValidationError."""
        try:
            return cls(method=method, credential_ids=tuple(credential_ids))
        except ValidationError as e:
            raise BindingError(f"Invalid {method.value} binding: {e.errors()[0]['msg']}") from e

    def to_payload(self) -> dict[str, Any]:
        """The sparse client update that makes this binding the active one."""
        if not self.method.uses_credentials:
            return {"token_endpoint_auth_method": self.method.value, "client_authentication_methods": None}
        return {
            "token_endpoint_auth_method": None,
            "client_authentication_methods": {
                method.value: {"credentials": _references(self.credential_ids)} if method is self.method else None
                for method in CREDENTIAL_METHODS
            },
        }


class SignedRequestObjectBinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    required: bool = False
    credential_ids: tuple[str, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return {
            "signed_request_object": {
                "required": self.required,
                "credentials": _references(self.credential_ids),
            }
        }


class BindingTransition(BaseModel):
    """
    A checked change of the active binding.

    Attributes:
        target (AuthenticationBinding): The binding after the transition.
        payload (dict[str, Any]): The client update to submit.
        detached_ids (tuple[str, ...]): Credentials referenced before but not after. They are not deleted.
    """

    model_config = ConfigDict(frozen=True)

    target: AuthenticationBinding
    payload: dict[str, Any]
    detached_ids: tuple[str, ...] = ()


def populated_bindings(payload: dict[str, Any]) -> list[str]:
    methods = payload.get("client_authentication_methods") or {}
    return [name for name, binding in methods.items() if binding is not None]


def plan_transition(
    target: AuthenticationBinding,
    available_ids: Collection[str] | None = None,
    current_ids: Sequence[str] = (),
) -> BindingTransition:
    """
    Checks and builds the transition to `target`. Every pair of methods is a legal transition.

    Preconditions:
        every credential referenced by `target` already exists (is in `available_ids`).
    Postconditions:
        the payload populates exactly one credential binding for credential-bearing methods and none otherwise,
        and names the method either through `token_endpoint_auth_method` or through that binding, never both.

    Args:
        target: The binding to switch to.
        available_ids: Ids of credentials known to exist remotely. None skips the existence check.
        current_ids: Ids referenced by the binding being replaced.

    Raises:
        BindingError: If a pre- or postcondition does not hold.
    """
    if available_ids is not None:
        missing = [credential_id for credential_id in target.credential_ids if credential_id not in available_ids]
        if missing:
            raise BindingError(f"Cannot attach {target.method.value}: credentials {missing} do not exist.")

    payload = target.to_payload()
    populated = populated_bindings(payload)
    expected = [target.method.value] if target.method.uses_credentials else []
    if populated != expected or (payload["token_endpoint_auth_method"] is None) != bool(expected):
        raise BindingError(f"Refusing to submit {target.method.value} binding populating {populated}.")

    detached = tuple(credential_id for credential_id in current_ids if credential_id not in target.credential_ids)
    return BindingTransition(target=target, payload=payload, detached_ids=detached)


class AuthenticationMethodAttacher:
    """
    Rewrites which authentication method and credentials are active on a client.
    It never deletes credentials.
    """

    def __init__(self, api: ManagementAPI) -> None:
        self.api = api

    async def attach(
        self,
        client_id: str,
        binding: AuthenticationBinding,
        available_ids: Collection[str] | None = None,
        current_ids: Sequence[str] = (),
    ) -> BindingTransition:
        """
        Makes `binding` the active binding of the client in a single update.

        Returns:
            BindingTransition: The submitted transition, including credentials that are now detached.

        Raises:
            BindingError: If the transition would be rejected; nothing is submitted.
            ManagementAPIError: If the update is rejected remotely.
        """
        transition = plan_transition(binding, available_ids, current_ids)
        await self.api.update_client(client_id, transition.payload)
        logger.info(
            f"Client {client_id} now authenticates with {binding.method.value}"
            + (f" using {len(binding.credential_ids)} credential(s)." if binding.credential_ids else ".")
        )
        if transition.detached_ids:
            logger.info(f"Credentials {list(transition.detached_ids)} were detached from client {client_id}.")
        return transition

    async def attach_signed_request_object(
        self,
        client_id: str,
        binding: SignedRequestObjectBinding,
        available_ids: Collection[str] | None = None,
    ) -> None:
        if not binding.credential_ids:
            raise BindingError("A signed request object requires at least one credential.")
        if available_ids is not None:
            missing = [credential_id for credential_id in binding.credential_ids if credential_id not in available_ids]
            if missing:
                raise BindingError(f"Cannot attach signed request object: credentials {missing} do not exist.")
        await self.api.update_client(client_id, binding.to_payload())
        logger.info(f"Signed request object of client {client_id} set (required={binding.required}).")

    async def rotate_secret(self, client_id: str, client_secret: SecretStr) -> None:
        await self.api.update_client(client_id, {"client_secret": client_secret.get_secret_value()})
        logger.info(f"Rotated the client secret of client {client_id}.")

    async def detach(self, client_id: str, default_method: AuthenticationMethod) -> None:
        """
        Removes every credential reference from the client, including the signed request object,
        and restores `default_method`.
        """
        if default_method.uses_credentials:
            raise BindingError(f"Cannot detach credentials into {default_method.value}.")
        binding = AuthenticationBinding.of(default_method)
        await self.api.update_client(client_id, {**binding.to_payload(), "signed_request_object": None})
        logger.info(f"Detached all credentials from client {client_id}; method reset to {default_method.value}.")
