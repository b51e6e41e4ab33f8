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
Housekeeping for expired OAuth state. Run out of band, never from a request handler.
"""

from datetime import datetime

from pydantic import BaseModel

from funid_identity.models import utcnow
from funid_identity.storage import AuthorizationCodeStore, RefreshTokenStore
from funid_identity.utils.logger import logger


class PurgeResult(BaseModel):
    authorization_codes: int
    refresh_tokens: int


async def purge_expired_oauth_data(
    codes: AuthorizationCodeStore,
    refresh_tokens: RefreshTokenStore,
    now: datetime | None = None,
) -> PurgeResult:
    """
    Deletes expired or used authorization codes and expired or revoked refresh tokens.

    Idempotent: running it twice removes nothing the second time.

    Raises:
        UpstreamError: If a store fails. Rows deleted before the failure stay deleted.
    """
    now = now or utcnow()
    removed_codes = await codes.purge_expired(now)
    removed_tokens = await refresh_tokens.purge_expired(now)
    logger.info(f"Purged {removed_codes} authorization code(s) and {removed_tokens} refresh token(s)")
    return PurgeResult(authorization_codes=removed_codes, refresh_tokens=removed_tokens)
