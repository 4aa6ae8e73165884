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
Custom exceptions for the coreason-client-credentials package.
"""

from collections.abc import Sequence


class CoreasonCredentialsError(Exception):
    """Base exception for all coreason-client-credentials errors."""


class CredentialsValidationError(CoreasonCredentialsError):
    """
    Raised when a desired configuration violates a structural rule.
    Detected before any remote call is issued.

    Attributes:
        summary (str): Short category, e.g. "Client Credentials Missing".
        detail (str): Human-readable explanation.
        attribute_path (tuple[str | int, ...]): Path of the offending field.
    """

    def __init__(self, summary: str, detail: str, attribute_path: Sequence[str | int] = ()) -> None:
        self.summary = summary
        self.detail = detail
        self.attribute_path = tuple(attribute_path)
        super().__init__(f"{summary}: {detail}")

    @property
    def path(self) -> str:
        """The attribute path rendered as a dotted string."""
        return ".".join(str(step) for step in self.attribute_path)


class ClientNotFoundError(CoreasonCredentialsError):
    """Raised when the client no longer exists on the remote side."""


class CredentialNotFoundError(CoreasonCredentialsError):
    """Raised when a credential route returns 404 for a credential that no longer exists."""


class ManagementAPIError(CoreasonCredentialsError):
    """
    Raised when the management API rejects a request.
    The response body is kept verbatim.
    """

    def __init__(self, status_code: int, body: str, method: str = "", url: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.method = method
        self.url = url
        super().__init__(f"{method} {url} failed with status {status_code}: {body}".strip())


class OversizedResponseError(CoreasonCredentialsError):
    """Raised when an HTTP response is too large."""


class BindingError(CoreasonCredentialsError):
    """Raised when an authentication method binding would violate its pre- or postconditions."""


class DeadlineExceededError(CoreasonCredentialsError):
    """Raised before a remote call when the caller-supplied deadline has passed."""


class SecurityError(CoreasonCredentialsError):
    """Raised when a security violation is detected."""
