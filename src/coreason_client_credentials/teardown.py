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
Deletion/Teardown Coordinator: removes a client's whole credential configuration.
"""

from coreason_client_credentials.attacher import AuthenticationMethodAttacher
from coreason_client_credentials.exceptions import ClientNotFoundError
from coreason_client_credentials.management_api import ManagementAPI
from coreason_client_credentials.models import AuthenticationMethod, default_authentication_method
from coreason_client_credentials.utils.logger import logger


class TeardownCoordinator:
    """
    Restores a client to the default authentication method of its app type and deletes every credential.

    Credentials are detached before they are deleted, since the management API refuses to delete
    a credential that an active binding still references.
    """

    def __init__(self, api: ManagementAPI, attacher: AuthenticationMethodAttacher) -> None:
        self.api = api
        self.attacher = attacher

    async def teardown(self, client_id: str) -> AuthenticationMethod | None:
        """
        Detaches and deletes all credentials of the client and resets its authentication method.

        Returns:
            AuthenticationMethod | None: The method the client was reset to, or None if the client no longer exists.

        Raises:
            ManagementAPIError: If a call is rejected. Calls that already succeeded are kept.
        """
        try:
            return await self._teardown(client_id)
        except ClientNotFoundError:
            logger.info(f"Client {client_id} no longer exists; nothing to tear down.")
            return None

    async def _teardown(self, client_id: str) -> AuthenticationMethod:
        record = await self.api.read_client(client_id)
        default_method = default_authentication_method(record.app_type)
        credentials = await self.api.list_credentials(client_id)

        if not credentials:
            await self.api.update_client(client_id, {"token_endpoint_auth_method": default_method.value})
            logger.info(f"Client {client_id} reset to {default_method.value}.")
            return default_method

        await self.attacher.detach(client_id, default_method)
        for credential in credentials:
            assert credential.id is not None
            await self.api.delete_credential(client_id, credential.id)
            logger.info(f"Deleted credential {credential.id} of client {client_id}.")
        return default_method
