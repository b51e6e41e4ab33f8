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
Scope-gated user claims, shared by the ID token and the UserInfo response.
"""

from collections.abc import Iterable
from typing import Any

from funid_identity.exceptions import ServerError, UpstreamError
from funid_identity.identity_store import IdentityStore
from funid_identity.models import OAuthScope, UserProfile
from funid_identity.utils.logger import logger


def split_scope(scope: str | None) -> list[str]:
    """Splits a space separated scope string, dropping duplicates but keeping order."""
    if not scope:
        return []
    return list(dict.fromkeys(scope.split()))


class ClaimsBuilder:
    """
    Maps granted scopes to user claims.

    ``profile`` yields ``name`` and ``picture``, ``email`` yields ``email`` and
    ``email_verified``, ``wallet`` yields ``wallet_address`` and ``camly_balance``.
    Claims whose source value is absent are omitted.
    """

    def __init__(self, identity_store: IdentityStore) -> None:
        self.identity_store = identity_store

    async def build(self, user_id: str, scopes: Iterable[str]) -> dict[str, Any]:
        """
        Builds the claims visible under ``scopes``. ``sub`` is always present.

        Raises:
            ServerError: If the Identity Store fails.
        """
        granted = set(scopes)
        claims: dict[str, Any] = {"sub": user_id}

        try:
            profile: UserProfile | None = None
            if granted & {OAuthScope.PROFILE, OAuthScope.WALLET}:
                profile = await self.identity_store.get_profile(user_id)

            if OAuthScope.PROFILE in granted and profile:
                if profile.display_name:
                    claims["name"] = profile.display_name
                if profile.avatar_url:
                    claims["picture"] = profile.avatar_url

            if OAuthScope.EMAIL in granted:
                email = await self.identity_store.get_email(user_id)
                if email:
                    claims["email"] = email
                    claims["email_verified"] = True

            if OAuthScope.WALLET in granted and profile:
                if profile.wallet_address:
                    claims["wallet_address"] = profile.wallet_address
                if profile.camly_balance is not None:
                    claims["camly_balance"] = profile.camly_balance
        except UpstreamError as e:
            logger.error(f"Identity Store failure while building claims: {e}")
            raise ServerError("Failed to load user claims.") from e

        return claims
