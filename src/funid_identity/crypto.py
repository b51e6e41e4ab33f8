# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/funid_identity

"""
Cryptographic primitives: base64url, hashing, constant-time comparison and secure tokens.
"""

import base64
import binascii
import hashlib
import hmac
import re
import secrets

from funid_identity.utils.logger import logger

CLIENT_SECRET_HASH_PREFIX = "sha256:"
AUTHORIZATION_CODE_BYTES = 32
REFRESH_TOKEN_BYTES = 48

_BASE64URL_RE = re.compile(r"[A-Za-z0-9_-]*")


def base64url_encode(data: bytes) -> str:
    """
    Encodes bytes as unpadded base64url (RFC 4648 section 5).

    Args:
        data: The raw bytes.

    Returns:
        str: The encoded string without ``=`` padding.
    """
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(value: str) -> bytes:
    """
    Decodes unpadded base64url, restoring padding first.

    Raises:
        ValueError: If the input is not valid base64url.
    """
    if not _BASE64URL_RE.fullmatch(value):
        raise ValueError("Invalid base64url value: characters outside the URL-safe alphabet")
    padded = value + "=" * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (UnicodeEncodeError, binascii.Error) as e:
        raise ValueError(f"Invalid base64url value: {e}") from e


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def secure_compare(a: str, b: str) -> bool:
    """
    Constant-time string comparison.

    Unequal lengths return False immediately; otherwise every byte is compared.
    """
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def generate_secure_token(byte_length: int = 32) -> str:
    """
    Generates ``byte_length`` cryptographically secure random bytes, base64url encoded.
    """
    if byte_length <= 0:
        raise ValueError("byte_length must be positive.")
    return base64url_encode(secrets.token_bytes(byte_length))


def generate_authorization_code() -> str:
    return generate_secure_token(AUTHORIZATION_CODE_BYTES)


def generate_refresh_token() -> str:
    # Longer than codes: refresh tokens live for weeks.
    return generate_secure_token(REFRESH_TOKEN_BYTES)


def hash_token(token: str) -> str:
    """
    One-way hash used to store refresh tokens at rest.

    Returns:
        str: base64url(SHA-256(token)).
    """
    return base64url_encode(sha256(token.encode("utf-8")))


def hash_client_secret(secret: str) -> str:
    """
    Hashes a client secret for storage, tagged with its algorithm so stored hashes can be migrated.
    """
    return f"{CLIENT_SECRET_HASH_PREFIX}{hash_token(secret)}"


def verify_client_secret(secret: str, stored_hash: str | None) -> bool:
    """
    Verifies a presented client secret against its stored hash.

    Unknown hash formats fail closed.
    """
    if not stored_hash or not stored_hash.startswith(CLIENT_SECRET_HASH_PREFIX):
        logger.warning("Client secret hash has an unknown format")
        return False

    expected = stored_hash[len(CLIENT_SECRET_HASH_PREFIX) :]
    return secure_compare(hash_token(secret), expected)
