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
Credential Reconciler: computes and applies the credential changes between a desired and an observed list.

Planning is a pure function of (desired, observed). Applying a plan is sequential and never rolled back;
re-running the whole pipeline after a partial failure recomputes the plan from fresh remote state.
"""

from collections.abc import Sequence
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from coreason_client_credentials.management_api import ManagementAPI
from coreason_client_credentials.material import certificate_not_after, material_matches
from coreason_client_credentials.models import Credential, CredentialType
from coreason_client_credentials.utils.logger import logger


class OperationKind(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    KEEP = "keep"


class CredentialOperation(BaseModel):
    """
    One step of a credential plan.

    Attributes:
        kind (OperationKind): What to do.
        desired (Credential | None): The desired credential. None for deletes.
        observed (Credential | None): The matching existing credential. None for creates.
    """

    model_config = ConfigDict(frozen=True)

    kind: OperationKind
    desired: Credential | None = None
    observed: Credential | None = None


class CredentialPlan(BaseModel):
    """
    The operations needed to turn an observed credential list into a desired one.
    Non-delete operations follow desired order; deletes follow observed order.
    """

    model_config = ConfigDict(frozen=True)

    operations: tuple[CredentialOperation, ...] = ()

    def of_kind(self, kind: OperationKind) -> tuple[CredentialOperation, ...]:
        return tuple(op for op in self.operations if op.kind is kind)

    @property
    def upserts(self) -> tuple[CredentialOperation, ...]:
        return tuple(op for op in self.operations if op.kind is not OperationKind.DELETE)

    @property
    def deletes(self) -> tuple[CredentialOperation, ...]:
        return self.of_kind(OperationKind.DELETE)

    @property
    def has_changes(self) -> bool:
        return any(op.kind is not OperationKind.KEEP for op in self.operations)


def _is_identical(desired: Credential, observed: Credential) -> bool:
    return desired.fingerprint() == observed.fingerprint()


def _is_compatible(desired: Credential, observed: Credential) -> bool:
    """
    True when `observed` could be `desired` but its pem was never carried over from a prior snapshot.

    The reported fields must agree and the desired pem must hash to the identifiers the API reports.
    When the credential was created with its expiry parsed from the certificate, that expiry must agree too.
    """
    if observed.pem is not None or desired.pem is None:
        return False
    if (desired.credential_type, desired.name, desired.algorithm) != (
        observed.credential_type,
        observed.name,
        observed.algorithm,
    ):
        return False
    if desired.subject_dn is not None and desired.subject_dn != observed.subject_dn:
        return False
    if not material_matches(desired.pem, observed):
        return False
    if desired.parse_expiry_from_cert and desired.expires_at is None:
        return observed.expires_at == certificate_not_after(desired.pem)
    return True


def plan_credentials(
    desired: Sequence[Credential],
    observed: Sequence[Credential],
    spare: Sequence[Credential] = (),
) -> CredentialPlan:
    """
    Computes the create/update/delete set between desired and observed credentials.

    Desired entries are matched to observed ones by content (the immutable fields), so reordering
    a list does not recreate anything. Each existing credential matches at most one desired entry.
    A matched pair whose expiry changed to a concrete value is updated in place; any other change
    to an immutable field shows up as a delete plus a create.

    Args:
        desired: Desired credentials, in order.
        observed: Existing credentials of the same binding, in binding order.
        spare: Existing credentials no binding references, e.g. left behind by an interrupted pass.
            They are reused when they match and never deleted.

    Returns:
        CredentialPlan: The operations to apply.
    """
    candidates = (*observed, *spare)
    matches: dict[int, int] = {}
    unmatched = list(range(len(candidates)))

    for predicate in (_is_identical, _is_compatible):
        for desired_index, credential in enumerate(desired):
            if desired_index in matches:
                continue
            for candidate_index in unmatched:
                if predicate(credential, candidates[candidate_index]):
                    matches[desired_index] = candidate_index
                    unmatched.remove(candidate_index)
                    break

    operations: list[CredentialOperation] = []
    for desired_index, credential in enumerate(desired):
        if desired_index not in matches:
            operations.append(CredentialOperation(kind=OperationKind.CREATE, desired=credential))
            continue

        existing = candidates[matches[desired_index]]
        if credential.expires_at is not None and credential.expires_at != existing.expires_at:
            kind = OperationKind.UPDATE
        else:
            kind = OperationKind.KEEP
            if (
                credential.expires_at is None
                and existing.expires_at is not None
                and credential.credential_type is CredentialType.PUBLIC_KEY
                and not credential.parse_expiry_from_cert
            ):
                logger.warning(
                    f"Credential {existing.id} keeps its expiry {existing.expires_at.isoformat()}: "
                    "an expiry cannot be cleared, recreate the credential to remove it."
                )
        operations.append(CredentialOperation(kind=kind, desired=credential, observed=existing))

    for candidate_index in unmatched:
        if candidate_index < len(observed):
            operations.append(CredentialOperation(kind=OperationKind.DELETE, observed=observed[candidate_index]))

    return CredentialPlan(operations=tuple(operations))


class CredentialReconciler:
    """
    Applies credential plans against the management API, one remote call at a time.
    """

    def __init__(self, api: ManagementAPI) -> None:
        self.api = api

    async def apply_upserts(self, client_id: str, plan: CredentialPlan) -> tuple[Credential, ...]:
        """
        Creates and updates credentials in desired order.

        Returns:
            tuple[Credential, ...]: The desired credentials as they now exist remotely, with their ids.

        Raises:
            ManagementAPIError: If a call is rejected. Credentials created before the failure remain.
        """
        resolved: list[Credential] = []
        for op in plan.upserts:
            assert op.desired is not None
            match op.kind:
                case OperationKind.CREATE:
                    created = await self.api.create_credential(client_id, op.desired)
                    logger.info(f"Created credential {created.id} for client {client_id}.")
                    resolved.append(created)
                case OperationKind.UPDATE:
                    assert op.observed is not None and op.observed.id is not None
                    assert op.desired.expires_at is not None
                    updated = await self.api.update_credential(client_id, op.observed.id, op.desired.expires_at)
                    logger.info(f"Updated expiry of credential {updated.id} for client {client_id}.")
                    resolved.append(updated.with_material_from(op.desired))
                case OperationKind.KEEP:
                    assert op.observed is not None
                    resolved.append(op.observed.with_material_from(op.desired))
        return tuple(resolved)

    async def apply_deletes(self, client_id: str, plan: CredentialPlan) -> None:
        """
        Deletes credentials that are no longer desired.
        Must run after they have been detached from every binding.
        """
        for op in plan.deletes:
            assert op.observed is not None and op.observed.id is not None
            await self.api.delete_credential(client_id, op.observed.id)
            logger.info(f"Deleted credential {op.observed.id} of client {client_id}.")
