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
ClientRegistry component for resolving and authenticating OAuth clients.
"""

import base64
import binascii
import re
from urllib.parse import unquote_plus

from funid_identity.crypto import verify_client_secret
from funid_identity.exceptions import InvalidClientError
from funid_identity.models import OAuthClient
from funid_identity.storage import ClientStore
from funid_identity.utils.logger import logger

_BASIC_PATTERN = re.compile(r"^Basic\s+(\S+)$", re.IGNORECASE)


def parse_basic_credentials(auth_header: str | None) -> tuple[str, str] | None:
    """
    Extracts ``(client_id, client_secret)`` from an HTTP Basic ``Authorization`` header.

    Both parts are form-urlencoded before base64 encoding (RFC 6749 section 2.3.1).

    Returns:
        tuple[str, str] | None: The credentials, or None when the header is absent or not Basic.

    Raises:
        InvalidClientError: If the header is Basic but cannot be decoded.
    """
    if not auth_header:
        return None
    match = _BASIC_PATTERN.match(auth_header.strip())
    if not match:
        return None

    try:
        decoded = base64.b64decode(match.group(1), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise InvalidClientError("Malformed Basic authorization header.") from e

    client_id, sep, client_secret = decoded.partition(":")
    if not sep or not client_id:
        raise InvalidClientError("Malformed Basic authorization header.")
    return unquote_plus(client_id), unquote_plus(client_secret)


class ClientRegistry:
    """
    Looks up active clients and verifies their credentials.

    Unknown, inactive and unauthenticated clients all surface as ``invalid_client``.
    """

    def __init__(self, store: ClientStore) -> None:
        self.store = store

    async def get_client(self, client_id: str) -> OAuthClient:
        """
        Returns the active client with this id.

        Raises:
            InvalidClientError: If the client is unknown or inactive.
            UpstreamError: If the store is unreachable.
        """
        client = await self.store.get_active_client(client_id)
        if client is None:
            logger.info(f"Client lookup failed for client_id={client_id!r}")
            raise InvalidClientError("Unknown or inactive client.")
        return client

    def authenticate(self, client: OAuthClient, client_secret: str | None) -> None:
        """
        Authenticates a confidential client. Public clients pass without a secret.

        Raises:
            InvalidClientError: If the secret is missing or does not verify.
        """
        if not client.is_confidential:
            return

        if not client_secret:
            logger.warning(f"Confidential client {client.client_id!r} presented no secret")
            raise InvalidClientError("Client authentication failed.")

        if not verify_client_secret(client_secret, client.client_secret_hash):
            logger.warning(f"Confidential client {client.client_id!r} presented a wrong secret")
            raise InvalidClientError("Client authentication failed.")
