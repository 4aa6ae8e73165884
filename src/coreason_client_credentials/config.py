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
Configuration for the coreason-client-credentials package.
"""

from urllib.parse import urlparse

from pydantic import Field, SecretStr, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoreasonCredentialsConfig(BaseSettings):
    """
    Configuration settings for coreason-client-credentials.

    Attributes:
        domain (str): The domain of the Identity Provider tenant (e.g. tenant.auth0.com).
        api_token (SecretStr): Bearer token for the management API.
        http_timeout (float): Timeout in seconds for every management API request.
        api_base_path (str): Path prefix of the management API.
        api_url (str | None): Base URL of the management API. Defaults to https://{domain}{api_base_path}.
        max_response_bytes (int): Upper bound on the size of any management API response.
        unsafe_local_dev (bool): Allows a plain HTTP api_url for local testing.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_MGMT_",
        case_sensitive=False,
    )

    domain: str
    api_token: SecretStr
    http_timeout: float = Field(..., gt=0, description="Timeout in seconds for all management API operations.")
    api_base_path: str = "/api/v2"
    max_response_bytes: int = Field(default=1_000_000, gt=0)
    unsafe_local_dev: bool = False
    api_url: str | None = None

    @field_validator("domain")
    @classmethod
    def normalize_domain(cls, v: str) -> str:
        """
        Ensures domain is just the hostname (e.g. tenant.auth0.com).
        Strips scheme and path if present.
        """
        v = v.strip().lower()
        if "://" not in v:
            v = f"https://{v}"

        parsed = urlparse(v)
        return parsed.netloc or v

    @field_validator("api_base_path")
    @classmethod
    def normalize_base_path(cls, v: str) -> str:
        return "/" + v.strip().strip("/")

    @field_validator("api_url", mode="after")
    @classmethod
    def validate_https(cls, v: str | None, info: ValidationInfo) -> str | None:
        """
        Ensures that the management API is reached over HTTPS, unless strictly opted out for local dev.
        """
        if v and v.startswith("http://") and not info.data.get("unsafe_local_dev", False):
            raise ValueError("HTTPS is required for production. Set 'unsafe_local_dev=True' only for local testing.")
        return v.rstrip("/") if v else v

    @model_validator(mode="after")
    def set_default_api_url(self) -> "CoreasonCredentialsConfig":
        if self.api_url is None:
            self.api_url = f"https://{self.domain}{self.api_base_path}"
        return self
