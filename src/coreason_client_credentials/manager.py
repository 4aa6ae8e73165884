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
ClientCredentialsManager: the create/read/update/delete contract for a client's credential configuration.
"""

from collections.abc import Awaitable, Mapping
from contextlib import AbstractContextManager
from typing import Any, TypeVar

import httpx
from anyio.from_thread import BlockingPortal, start_blocking_portal
from opentelemetry import trace
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.trace import Status, StatusCode

from coreason_client_credentials.attacher import (
    AuthenticationBinding,
    AuthenticationMethodAttacher,
    SignedRequestObjectBinding,
)
from coreason_client_credentials.config import CoreasonCredentialsConfig
from coreason_client_credentials.deadline_context import deadline_scope
from coreason_client_credentials.exceptions import ClientNotFoundError, CoreasonCredentialsError
from coreason_client_credentials.expander import expand_credentials_config, validate_credentials_state
from coreason_client_credentials.management_api import ManagementAPI
from coreason_client_credentials.models import AuthenticationMethod, ClientCredentialsState, Credential
from coreason_client_credentials.reader import RemoteStateReader
from coreason_client_credentials.reconciler import CredentialPlan, CredentialReconciler, OperationKind, plan_credentials
from coreason_client_credentials.teardown import TeardownCoordinator
from coreason_client_credentials.transport import SafeAsyncTransport
from coreason_client_credentials.utils.logger import logger

tracer = trace.get_tracer(__name__)

T = TypeVar("T")

DesiredState = ClientCredentialsState | Mapping[str, Any]


def _ids(credentials: tuple[Credential, ...]) -> list[str]:
    return [credential.id for credential in credentials if credential.id is not None]


def _summarize(plan: CredentialPlan) -> str:
    created, updated, deleted = (
        len(plan.of_kind(kind)) for kind in (OperationKind.CREATE, OperationKind.UPDATE, OperationKind.DELETE)
    )
    return f"{created} created, {updated} updated, {deleted} deleted"


class ClientCredentialsManagerAsync:
    """
    Async implementation of the credential reconciliation pipeline.
    Handles resources via async context manager.

    Reconciliation runs for the same client must be serialized by the caller.
    """

    def __init__(self, config: CoreasonCredentialsConfig, client: httpx.AsyncClient | None = None) -> None:
        """
        Initialize the manager.

        Args:
            config: The configuration object.
            client: External async client (optional). If not provided, a `SafeAsyncTransport` client is created.
        """
        self.config = config
        self._internal_client = client is None

        if client:
            self._client = client
        else:
            self._client = httpx.AsyncClient(transport=SafeAsyncTransport(), timeout=self.config.http_timeout)

        HTTPXClientInstrumentor().instrument_client(self._client)

        if self.config.api_url is None:
            raise CoreasonCredentialsError("Management API URL is missing")

        self.api = ManagementAPI(
            self._client,
            self.config.api_url,
            self.config.api_token,
            max_response_bytes=self.config.max_response_bytes,
        )
        self.reader = RemoteStateReader(self.api)
        self.reconciler = CredentialReconciler(self.api)
        self.attacher = AuthenticationMethodAttacher(self.api)
        self.teardown_coordinator = TeardownCoordinator(self.api, self.attacher)

    async def __aenter__(self) -> "ClientCredentialsManagerAsync":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._internal_client:
            await self._client.aclose()

    @staticmethod
    def expand(desired: DesiredState) -> ClientCredentialsState:
        """
        Validates a desired configuration without touching remote state.

        Raises:
            CredentialsValidationError: If a structural rule is violated.
        """
        if isinstance(desired, ClientCredentialsState):
            return validate_credentials_state(desired)
        return expand_credentials_config(desired)

    async def create(self, desired: DesiredState, timeout: float | None = None) -> ClientCredentialsState | None:
        """
        Applies a desired configuration to a client for the first time.

        Args:
            desired: The desired configuration (raw mapping or ClientCredentialsState).
            timeout: Seconds after which no further remote call is issued.

        Returns:
            ClientCredentialsState | None: The observed state after reconciliation, or None if the client no longer
            exists and its local representation should be dropped.

        Raises:
            CredentialsValidationError: Before any remote call, if the configuration is invalid.
            ManagementAPIError: If a remote call is rejected. Earlier calls are not undone.
            DeadlineExceededError: If the deadline passes mid-pipeline.
        """
        state = self.expand(desired)
        return await self._traced("create", state.client_id, self._reconcile(state, None), timeout)

    async def update(
        self,
        desired: DesiredState,
        prior: ClientCredentialsState | None = None,
        timeout: float | None = None,
    ) -> ClientCredentialsState | None:
        """
        Reconciles a client towards a desired configuration.

        The plan is always computed against freshly read remote state; `prior` (the result of the previous
        pass) only supplies credential material the API does not return.

        Returns:
            ClientCredentialsState | None: The observed state after reconciliation, or None if the client is gone.
        """
        state = self.expand(desired)
        return await self._traced("update", state.client_id, self._reconcile(state, prior), timeout)

    async def read(
        self,
        client_id: str,
        prior: ClientCredentialsState | None = None,
        timeout: float | None = None,
    ) -> ClientCredentialsState | None:
        """
        Reads the normalized observed state of a client.

        Returns:
            ClientCredentialsState | None: The observed state, or None if the client no longer exists.
        """
        return await self._traced("read", client_id, self.reader.read(client_id, prior), timeout)

    async def delete(self, client_id: str, timeout: float | None = None) -> AuthenticationMethod | None:
        """
        Removes the credential configuration: detaches and deletes every credential and restores
        the default authentication method of the client's app type.

        Returns:
            AuthenticationMethod | None: The method the client was reset to, or None if the client is gone.
        """
        return await self._traced("delete", client_id, self.teardown_coordinator.teardown(client_id), timeout)

    async def _traced(self, operation: str, client_id: str, call: Awaitable[T], timeout: float | None) -> T:
        with tracer.start_as_current_span(f"client_credentials.{operation}") as span, deadline_scope(timeout):
            span.set_attribute("client.id", client_id)
            try:
                result = await call
            except CoreasonCredentialsError as e:
                logger.error(f"Client credentials {operation} failed for client {client_id}: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise
            if result is None:
                span.add_event("client_not_found")
            span.set_status(Status(StatusCode.OK))
            return result

    async def _reconcile(
        self, desired: ClientCredentialsState, prior: ClientCredentialsState | None
    ) -> ClientCredentialsState | None:
        client_id = desired.client_id

        observed = await self.reader.read(client_id, prior)
        if observed is None:
            return None

        try:
            snapshot = await self._apply(desired, observed)
        except ClientNotFoundError:
            logger.warning(f"Client {client_id} disappeared during reconciliation.")
            return None
        return await self.reader.read(client_id, snapshot)

    async def _apply(self, desired: ClientCredentialsState, observed: ClientCredentialsState) -> ClientCredentialsState:
        client_id = desired.client_id
        credentials = observed.credentials
        client_secret = observed.client_secret

        method = desired.authentication_method
        if method is not None and method.uses_credentials:
            current = observed.credentials if observed.authentication_method is method else ()
            plan = await self._plan(desired.credentials, current, observed, taken=set())
            credentials = await self.reconciler.apply_upserts(client_id, plan)
            await self.attacher.attach(
                client_id,
                AuthenticationBinding.of(method, _ids(credentials)),
                available_ids={*_ids(credentials), *_ids(current)},
                current_ids=_ids(observed.credentials),
            )
            await self.reconciler.apply_deletes(client_id, plan)
            self._log_plan(f"{method.value} credentials", client_id, plan)
        elif method is not None:
            await self.attacher.attach(
                client_id, AuthenticationBinding.of(method), current_ids=_ids(observed.credentials)
            )
            credentials = ()
            secret = desired.client_secret
            if method.uses_client_secret and secret is not None:
                if client_secret is None or client_secret.get_secret_value() != secret.get_secret_value():
                    await self.attacher.rotate_secret(client_id, secret)
                client_secret = secret

        signed_request_object = observed.signed_request_object
        if desired.signed_request_object is not None:
            current_sro = observed.signed_request_object.credentials if observed.signed_request_object else ()
            sro_plan = await self._plan(
                desired.signed_request_object.credentials, current_sro, observed, taken=set(_ids(credentials))
            )
            sro_credentials = await self.reconciler.apply_upserts(client_id, sro_plan)
            await self.attacher.attach_signed_request_object(
                client_id,
                SignedRequestObjectBinding(
                    required=desired.signed_request_object.required,
                    credential_ids=tuple(_ids(sro_credentials)),
                ),
                available_ids={*_ids(sro_credentials), *_ids(current_sro)},
            )
            await self.reconciler.apply_deletes(client_id, sro_plan)
            signed_request_object = desired.signed_request_object.model_copy(update={"credentials": sro_credentials})
            self._log_plan("signed request object credentials", client_id, sro_plan)

        return observed.model_copy(
            update={
                "client_secret": client_secret,
                "credentials": credentials,
                "signed_request_object": signed_request_object,
            }
        )

    async def _plan(
        self,
        desired: tuple[Credential, ...],
        current: tuple[Credential, ...],
        observed: ClientCredentialsState,
        taken: set[str],
    ) -> CredentialPlan:
        plan = plan_credentials(desired, current)
        if not plan.of_kind(OperationKind.CREATE):
            return plan
        # reuse credentials left unattached by an interrupted pass instead of creating them again
        spare = [
            credential
            for credential in await self.reader.unreferenced_credentials(observed.client_id, observed)
            if credential.id not in taken
        ]
        return plan_credentials(desired, current, spare) if spare else plan

    @staticmethod
    def _log_plan(subject: str, client_id: str, plan: CredentialPlan) -> None:
        if plan.has_changes:
            logger.info(f"Reconciled {subject} of client {client_id}: {_summarize(plan)}.")
        else:
            logger.debug(f"{subject.capitalize()} of client {client_id} are up to date.")


class ClientCredentialsManager:
    """
    Sync facade for ClientCredentialsManagerAsync.

    All calls run on one event loop held by a blocking portal, so the pooled connections of the HTTP
    client stay usable between calls. The portal starts on first use and stops in `close()`
    or when the context manager exits.
    """

    def __init__(self, config: CoreasonCredentialsConfig, client: httpx.AsyncClient | None = None) -> None:
        self._async = ClientCredentialsManagerAsync(config, client)
        self._portal_cm: AbstractContextManager[BlockingPortal] | None = None
        self._portal: BlockingPortal | None = None

    def __enter__(self) -> "ClientCredentialsManager":
        self._get_portal()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        try:
            self._get_portal().call(self._async.__aexit__, exc_type, exc_val, exc_tb)
        finally:
            self.close()

    def _get_portal(self) -> BlockingPortal:
        if self._portal is None:
            self._portal_cm = start_blocking_portal()
            self._portal = self._portal_cm.__enter__()
        return self._portal

    def close(self) -> None:
        """Stops the event loop thread. Does not close an injected HTTP client."""
        if self._portal_cm is not None:
            portal_cm, self._portal_cm, self._portal = self._portal_cm, None, None
            portal_cm.__exit__(None, None, None)

    def create(self, desired: DesiredState, timeout: float | None = None) -> ClientCredentialsState | None:
        return self._get_portal().call(self._async.create, desired, timeout)

    def read(
        self, client_id: str, prior: ClientCredentialsState | None = None, timeout: float | None = None
    ) -> ClientCredentialsState | None:
        return self._get_portal().call(self._async.read, client_id, prior, timeout)

    def update(
        self, desired: DesiredState, prior: ClientCredentialsState | None = None, timeout: float | None = None
    ) -> ClientCredentialsState | None:
        return self._get_portal().call(self._async.update, desired, prior, timeout)

    def delete(self, client_id: str, timeout: float | None = None) -> AuthenticationMethod | None:
        return self._get_portal().call(self._async.delete, client_id, timeout)
