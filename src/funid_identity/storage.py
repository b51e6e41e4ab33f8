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
Persistence protocols and their in-memory implementations.

Code redemption and refresh rotation are conditional updates: ``mark_used`` and
``revoke`` return False when another request won the race. The in-memory stores
perform the check-and-set under a lock with no awaits inside it.
"""

import threading
from datetime import datetime
from typing import Protocol

from funid_identity.models import AuthorizationCode, OAuthClient, OAuthConsent, RefreshTokenRecord, utcnow


class ClientStore(Protocol):
    """Read access to registered OAuth clients."""

    async def get_active_client(self, client_id: str) -> OAuthClient | None:
        """Returns the client only if it exists and is active."""
        ...


class AuthorizationCodeStore(Protocol):
    async def save(self, code: AuthorizationCode) -> None: ...

    async def get_unused(self, code: str) -> AuthorizationCode | None:
        """Returns the code only if it exists and has not been used."""
        ...

    async def mark_used(self, code: str) -> bool:
        """
        Atomically flips ``used`` from false to true.
        Returns False if the code was already used or does not exist.
        """
        ...

    async def purge_expired(self, now: datetime) -> int:
        """Deletes codes that are expired or used. Returns the number removed, if known."""
        ...


class RefreshTokenStore(Protocol):
    async def save(self, record: RefreshTokenRecord) -> None: ...

    async def get_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        """Returns the record whatever its revocation state, so replays can be recognised."""
        ...

    async def revoke(self, token_hash: str, now: datetime, rotated: bool = False) -> bool:
        """
        Atomically flips ``revoked`` from false to true.
        Returns False if the token was already revoked or does not exist.
        """
        ...

    async def revoke_family(self, family_id: str, now: datetime) -> int:
        """Revokes every live token of a lineage. Returns the number revoked, if known."""
        ...

    async def purge_expired(self, now: datetime) -> int:
        """Deletes tokens that are expired or revoked. Returns the number removed, if known."""
        ...


class ConsentStore(Protocol):
    async def get(self, user_id: str, client_id: str) -> OAuthConsent | None: ...

    async def save(self, consent: OAuthConsent) -> None:
        """Inserts or replaces the consent for (user_id, client_id)."""
        ...


class MemoryClientStore:
    """
    In-memory implementation of ClientStore.
    Suitable for tests and local development only.
    """

    def __init__(self, clients: list[OAuthClient] | None = None) -> None:
        self._clients: dict[str, OAuthClient] = {c.client_id: c for c in clients or []}

    def add(self, client: OAuthClient) -> None:
        self._clients[client.client_id] = client

    async def get_active_client(self, client_id: str) -> OAuthClient | None:
        client = self._clients.get(client_id)
        if client is None or not client.is_active:
            return None
        return client


class MemoryAuthorizationCodeStore:
    """
    In-memory implementation of AuthorizationCodeStore.
    Not shared between processes.
    """

    def __init__(self) -> None:
        self._codes: dict[str, AuthorizationCode] = {}
        self._lock = threading.Lock()

    def add(self, code: AuthorizationCode) -> None:
        with self._lock:
            self._codes[code.code] = code

    def peek(self, code: str) -> AuthorizationCode | None:
        """Returns the stored code whatever its state."""
        return self._codes.get(code)

    async def save(self, code: AuthorizationCode) -> None:
        self.add(code)

    async def get_unused(self, code: str) -> AuthorizationCode | None:
        stored = self._codes.get(code)
        if stored is None or stored.used:
            return None
        return stored

    async def mark_used(self, code: str) -> bool:
        with self._lock:
            stored = self._codes.get(code)
            if stored is None or stored.used:
                return False
            self._codes[code] = stored.model_copy(update={"used": True})
            return True

    async def purge_expired(self, now: datetime) -> int:
        with self._lock:
            stale = [k for k, v in self._codes.items() if v.used or v.expires_at <= now]
            for k in stale:
                del self._codes[k]
            return len(stale)


class MemoryRefreshTokenStore:
    """
    In-memory implementation of RefreshTokenStore, keyed by token hash.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, RefreshTokenRecord] = {}
        self._lock = threading.Lock()

    def add(self, record: RefreshTokenRecord) -> None:
        with self._lock:
            self._tokens[record.token_hash] = record

    async def save(self, record: RefreshTokenRecord) -> None:
        self.add(record)

    async def get_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        return self._tokens.get(token_hash)

    async def revoke(self, token_hash: str, now: datetime, rotated: bool = False) -> bool:
        with self._lock:
            stored = self._tokens.get(token_hash)
            if stored is None or stored.revoked:
                return False
            self._tokens[token_hash] = stored.model_copy(update={"revoked": True, "revoked_at": now, "rotated": rotated})
            return True

    async def revoke_family(self, family_id: str, now: datetime) -> int:
        with self._lock:
            live = [k for k, v in self._tokens.items() if v.family_id == family_id and not v.revoked]
            for k in live:
                self._tokens[k] = self._tokens[k].model_copy(update={"revoked": True, "revoked_at": now})
            return len(live)

    async def purge_expired(self, now: datetime) -> int:
        with self._lock:
            stale = [k for k, v in self._tokens.items() if v.revoked or v.expires_at <= now]
            for k in stale:
                del self._tokens[k]
            return len(stale)


class MemoryConsentStore:
    def __init__(self) -> None:
        self._consents: dict[tuple[str, str], OAuthConsent] = {}
        self._lock = threading.Lock()

    async def get(self, user_id: str, client_id: str) -> OAuthConsent | None:
        return self._consents.get((user_id, client_id))

    async def save(self, consent: OAuthConsent) -> None:
        key = (consent.user_id, consent.client_id)
        with self._lock:
            existing = self._consents.get(key)
            if existing is not None:
                consent = consent.model_copy(update={"created_at": existing.created_at, "updated_at": utcnow()})
            self._consents[key] = consent
