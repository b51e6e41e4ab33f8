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
Proof Key for Code Exchange (RFC 7636). Only the S256 method is supported.
"""

import re
import secrets

from funid_identity.crypto import base64url_encode, secure_compare, sha256
from funid_identity.utils.logger import logger

S256 = "S256"

CODE_VERIFIER_PATTERN = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")
# SHA-256 output is 32 bytes, i.e. exactly 43 unpadded base64url characters.
CODE_CHALLENGE_PATTERN = re.compile(r"^[A-Za-z0-9\-_]{43}$")


def compute_code_challenge(code_verifier: str) -> str:
    """Returns BASE64URL(SHA256(code_verifier))."""
    return base64url_encode(sha256(code_verifier.encode("ascii")))


def generate_code_verifier() -> str:
    """Generates a 43 character verifier from 32 random bytes."""
    return base64url_encode(secrets.token_bytes(32))


def is_valid_code_challenge(code_challenge: str) -> bool:
    return CODE_CHALLENGE_PATTERN.fullmatch(code_challenge) is not None


def is_valid_code_verifier(code_verifier: str) -> bool:
    return CODE_VERIFIER_PATTERN.fullmatch(code_verifier) is not None


def verify_pkce(code_verifier: str, code_challenge: str, method: str = S256) -> bool:
    """
    Verifies a code_verifier against the code_challenge stored with the authorization code.

    Args:
        code_verifier: The verifier presented at the token endpoint.
        code_challenge: The challenge bound to the code at issuance.
        method: The code_challenge_method. ``plain`` is rejected.

    Returns:
        bool: True only if the method is S256, the verifier is well formed and its
        challenge matches in constant time.
    """
    if method != S256:
        logger.warning(f"Unsupported PKCE method: {method!r}")
        return False

    if not is_valid_code_verifier(code_verifier):
        logger.warning("Invalid code_verifier format")
        return False

    return secure_compare(compute_code_challenge(code_verifier), code_challenge)
