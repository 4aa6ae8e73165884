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
Credential material helpers: identifiers the management API reports for a PEM.

The API never returns the PEM a credential was created from, only identifiers derived from it:
the RFC 7638 JWK thumbprint as `kid` for public keys and the SHA-256 certificate thumbprint as
`thumbprint_sha256`. These helpers compute the same identifiers locally so a desired PEM can be
checked against an existing credential.
"""

import base64
from datetime import datetime

from authlib.jose import JsonWebKey
from cryptography import x509
from cryptography.hazmat.primitives import hashes

from coreason_client_credentials.models import Credential, CredentialType, truncate_to_millis


def is_certificate(pem: str) -> bool:
    return "BEGIN CERTIFICATE" in pem


def key_thumbprint(pem: str) -> str:
    """RFC 7638 thumbprint (base64url SHA-256) of the public key held by `pem`."""
    return str(JsonWebKey.import_key(pem).thumbprint())


def certificate_thumbprints(pem: str) -> set[str]:
    """
    SHA-256 thumbprint of a certificate in the encodings the API uses (hex and base64url).
    Empty for a bare public key.
    """
    if not is_certificate(pem):
        return set()
    digest = x509.load_pem_x509_certificate(pem.encode()).fingerprint(hashes.SHA256())
    return {digest.hex(), base64.urlsafe_b64encode(digest).decode().rstrip("=")}


def certificate_not_after(pem: str) -> datetime | None:
    """The expiry a certificate-derived credential gets remotely, or None for a bare public key."""
    if not is_certificate(pem):
        return None
    return truncate_to_millis(x509.load_pem_x509_certificate(pem.encode()).not_valid_after_utc)


def material_matches(pem: str, credential: Credential) -> bool:
    """
    Checks `pem` against the identifiers reported for an existing credential.

    Returns False when the credential reports no identifier that can be compared, so unverifiable
    material is never assumed to be unchanged.
    """
    checks: list[bool] = []
    if credential.thumbprint_sha256 and is_certificate(pem):
        reported = credential.thumbprint_sha256
        thumbprints = certificate_thumbprints(pem)
        checks.append(reported.rstrip("=") in thumbprints or reported.replace(":", "").lower() in thumbprints)
    if credential.key_id and credential.credential_type is CredentialType.PUBLIC_KEY:
        checks.append(credential.key_id == key_thumbprint(pem))
    return bool(checks) and all(checks)
