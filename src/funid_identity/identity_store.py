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
Identity Store interface: the user directory the IdP reads profiles and sessions from.
"""

from typing import Protocol

from funid_identity.models import UserProfile


class IdentityStore(Protocol):
    """
    Protocol for the user directory.

    Implementations raise ``UpstreamError`` when the directory is unreachable;
    "not found" is reported as None.
    """

    async def get_profile(self, user_id: str) -> UserProfile | None: ...

    async def get_email(self, user_id: str) -> str | None: ...

    async def authenticate_session(self, bearer_token: str) -> str | None:
        """
        Resolves a platform session bearer token to a user id.
        Returns None if the session is invalid or expired.
        """
        ...


class MemoryIdentityStore:
    """
    In-memory implementation of IdentityStore for tests and local development.
    """

    def __init__(self) -> None:
        self._profiles: dict[str, UserProfile] = {}
        self._emails: dict[str, str] = {}
        self._sessions: dict[str, str] = {}

    def add_user(self, profile: UserProfile, email: str | None = None) -> None:
        self._profiles[profile.id] = profile
        if email is not None:
            self._emails[profile.id] = email

    def add_session(self, bearer_token: str, user_id: str) -> None:
        self._sessions[bearer_token] = user_id

    async def get_profile(self, user_id: str) -> UserProfile | None:
        return self._profiles.get(user_id)

    async def get_email(self, user_id: str) -> str | None:
        return self._emails.get(user_id)

    async def authenticate_session(self, bearer_token: str) -> str | None:
        return self._sessions.get(bearer_token)
