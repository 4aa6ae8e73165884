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
Credential reconciliation for identity-provider clients: keeps a client's authentication method,
its cryptographic credentials and its signed request object in line with a desired configuration.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .config import CoreasonCredentialsConfig
from .exceptions import (
    ClientNotFoundError,
    CredentialNotFoundError,
    CoreasonCredentialsError,
    CredentialsValidationError,
    ManagementAPIError,
)
from .manager import ClientCredentialsManager, ClientCredentialsManagerAsync
from .models import (
    AuthenticationMethod,
    ClientCredentialsState,
    Credential,
    CredentialType,
    SignedRequestObject,
    SigningAlgorithm,
)

__all__ = [
    "AuthenticationMethod",
    "ClientCredentialsManager",
    "ClientCredentialsManagerAsync",
    "ClientCredentialsState",
    "ClientNotFoundError",
    "CredentialNotFoundError",
    "CoreasonCredentialsConfig",
    "CoreasonCredentialsError",
    "Credential",
    "CredentialType",
    "CredentialsValidationError",
    "ManagementAPIError",
    "SignedRequestObject",
    "SigningAlgorithm",
]
