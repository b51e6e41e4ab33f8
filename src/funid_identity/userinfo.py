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
UserInfo endpoint: claims about the holder of an access token.
"""

import re
from typing import Any

from funid_identity.claims import ClaimsBuilder, split_scope
from funid_identity.exceptions import InvalidTokenError, KeyConfigurationError, OAuthError, ServerError
from funid_identity.tokens import TokenSigner

_BEARER_PATTERN = re.compile(r"^Bearer\s+(\S+)$")


def bearer_challenge(error: OAuthError) -> str:
    """Builds the ``WWW-Authenticate`` value for a bearer token error (RFC 6750 section 3)."""
    description = error.error_description.replace('"', "'")
    return f'Bearer error="{error.error}", error_description="{description}"'


def extract_bearer_token(auth_header: str | None) -> str:
    """
    Returns the token of a ``Bearer`` Authorization header.

    Raises:
        InvalidTokenError: If the header is missing or malformed.
    """
    if not auth_header:
        raise InvalidTokenError("Missing Authorization header.")

    # Strict regex validation to avoid raw string splitting
    match = _BEARER_PATTERN.match(auth_header.strip())
    if not match:
        raise InvalidTokenError("Invalid Authorization header format. Must start with 'Bearer '.")
    return match.group(1)


class UserInfoEndpoint:
    def __init__(self, signer: TokenSigner, claims: ClaimsBuilder) -> None:
        self.signer = signer
        self.claims = claims

    async def get_userinfo(self, auth_header: str | None) -> dict[str, Any]:
        """
        Verifies the access token and returns the claims its scope allows.

        Raises:
            InvalidTokenError: If the token is missing, malformed or fails verification.
            ServerError: If the signing key is unusable or the Identity Store fails.
        """
        token = extract_bearer_token(auth_header)
        try:
            payload = self.signer.verify_access_token(token)
        except KeyConfigurationError as e:
            raise ServerError("Token verification is not available") from e

        return await self.claims.build(payload["sub"], split_scope(payload.get("scope")))
