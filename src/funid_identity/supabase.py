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
Supabase implementations of the persistence protocols and the Identity Store.

Tables are reached through PostgREST (``/rest/v1/<table>``) and users through
GoTrue (``/auth/v1``), all authenticated with the service role key. Every call
goes over one shared ``httpx.AsyncClient``. Transport failures and non-success
responses raise ``UpstreamError``; nothing is retried.
"""

from datetime import datetime
from typing import Any

import httpx
from pydantic import SecretStr, ValidationError

from funid_identity.exceptions import UpstreamError
from funid_identity.models import AuthorizationCode, OAuthClient, OAuthConsent, RefreshTokenRecord, UserProfile
from funid_identity.utils.logger import logger

RETURN_REPRESENTATION = "return=representation"


def _eq(value: Any) -> str:
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


class SupabaseRestClient:
    """
    Thin PostgREST / GoTrue client.

    Attributes:
        base_url (str): The Supabase project URL, without trailing slash.
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str, service_role_key: SecretStr) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self._service_role_key = service_role_key

    def _headers(self, bearer: str | None = None, prefer: str | None = None) -> dict[str, str]:
        key = self._service_role_key.get_secret_value()
        headers = {"apikey": key, "Authorization": f"Bearer {bearer or key}"}
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
        bearer: str | None = None,
        allowed_statuses: tuple[int, ...] = (),
    ) -> httpx.Response:
        """
        Performs one request.

        Args:
            allowed_statuses: Error statuses returned to the caller instead of raised.

        Raises:
            UpstreamError: On transport failure or an unexpected non-success status.
        """
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.request(
                method, url, params=params, json=json, headers=self._headers(bearer=bearer, prefer=prefer)
            )
        except httpx.HTTPError as e:
            logger.error(f"Upstream {method} {path} failed: {type(e).__name__}")
            raise UpstreamError(f"Upstream request {method} {path} failed: {e}") from e

        if response.is_success or response.status_code in allowed_statuses:
            return response

        logger.error(f"Upstream {method} {path} returned {response.status_code}")
        raise UpstreamError(f"Upstream request {method} {path} returned HTTP {response.status_code}")

    @staticmethod
    def _rows(response: httpx.Response) -> list[dict[str, Any]]:
        if not response.content:
            return []
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("Upstream returned a non-JSON body") from e
        if not isinstance(data, list):
            raise UpstreamError("Upstream returned an unexpected body")
        return data

    async def select(self, table: str, filters: dict[str, Any]) -> list[dict[str, Any]]:
        params = {k: _eq(v) for k, v in filters.items()}
        params["select"] = "*"
        return self._rows(await self.request("GET", f"/rest/v1/{table}", params=params))

    async def insert(self, table: str, row: dict[str, Any], on_conflict: str | None = None) -> None:
        prefer = "return=minimal"
        params = None
        if on_conflict:
            prefer = "resolution=merge-duplicates,return=minimal"
            params = {"on_conflict": on_conflict}
        await self.request("POST", f"/rest/v1/{table}", params=params, json=row, prefer=prefer)

    async def update(self, table: str, filters: dict[str, Any], values: dict[str, Any]) -> list[dict[str, Any]]:
        """
        Conditional update. Returns the rows that matched every filter and were changed.
        """
        params = {k: _eq(v) for k, v in filters.items()}
        return self._rows(
            await self.request("PATCH", f"/rest/v1/{table}", params=params, json=values, prefer=RETURN_REPRESENTATION)
        )

    async def delete(self, table: str, params: dict[str, str]) -> int:
        response = await self.request("DELETE", f"/rest/v1/{table}", params=params, prefer=RETURN_REPRESENTATION)
        return len(self._rows(response))


def _parse(model: type[Any], row: dict[str, Any]) -> Any:
    try:
        return model.model_validate(row)
    except ValidationError as e:
        raise UpstreamError(f"Upstream returned a malformed {model.__name__} row") from e


class SupabaseClientStore:
    def __init__(self, rest: SupabaseRestClient) -> None:
        self.rest = rest

    async def get_active_client(self, client_id: str) -> OAuthClient | None:
        rows = await self.rest.select("oauth_clients", {"client_id": client_id, "is_active": True})
        if not rows:
            return None
        client: OAuthClient = _parse(OAuthClient, rows[0])
        return client


class SupabaseAuthorizationCodeStore:
    TABLE = "oauth_authorization_codes"

    def __init__(self, rest: SupabaseRestClient) -> None:
        self.rest = rest

    async def save(self, code: AuthorizationCode) -> None:
        await self.rest.insert(self.TABLE, code.model_dump(mode="json"))

    async def get_unused(self, code: str) -> AuthorizationCode | None:
        rows = await self.rest.select(self.TABLE, {"code": code, "used": False})
        if not rows:
            return None
        stored: AuthorizationCode = _parse(AuthorizationCode, rows[0])
        return stored

    async def mark_used(self, code: str) -> bool:
        rows = await self.rest.update(self.TABLE, {"code": code, "used": False}, {"used": True})
        return len(rows) > 0

    async def purge_expired(self, now: datetime) -> int:
        return await self.rest.delete(self.TABLE, {"or": f"(expires_at.lt.{now.isoformat()},used.eq.true)"})


class SupabaseRefreshTokenStore:
    TABLE = "oauth_refresh_tokens"

    def __init__(self, rest: SupabaseRestClient) -> None:
        self.rest = rest

    @staticmethod
    def _record(row: dict[str, Any]) -> RefreshTokenRecord:
        # Rows written before lineage tracking form a family of their own.
        if not row.get("family_id"):
            row = {**row, "family_id": row.get("token_hash")}
        record: RefreshTokenRecord = _parse(RefreshTokenRecord, row)
        return record

    async def save(self, record: RefreshTokenRecord) -> None:
        await self.rest.insert(self.TABLE, record.model_dump(mode="json"))

    async def get_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        rows = await self.rest.select(self.TABLE, {"token_hash": token_hash})
        if not rows:
            return None
        return self._record(rows[0])

    async def revoke(self, token_hash: str, now: datetime, rotated: bool = False) -> bool:
        rows = await self.rest.update(
            self.TABLE,
            {"token_hash": token_hash, "revoked": False},
            {"revoked": True, "revoked_at": now.isoformat(), "rotated": rotated},
        )
        return len(rows) > 0

    async def revoke_family(self, family_id: str, now: datetime) -> int:
        rows = await self.rest.update(
            self.TABLE,
            {"family_id": family_id, "revoked": False},
            {"revoked": True, "revoked_at": now.isoformat()},
        )
        return len(rows)

    async def purge_expired(self, now: datetime) -> int:
        return await self.rest.delete(self.TABLE, {"or": f"(expires_at.lt.{now.isoformat()},revoked.eq.true)"})


class SupabaseConsentStore:
    TABLE = "oauth_consents"

    def __init__(self, rest: SupabaseRestClient) -> None:
        self.rest = rest

    async def get(self, user_id: str, client_id: str) -> OAuthConsent | None:
        rows = await self.rest.select(self.TABLE, {"user_id": user_id, "client_id": client_id})
        if not rows:
            return None
        consent: OAuthConsent = _parse(OAuthConsent, rows[0])
        return consent

    async def save(self, consent: OAuthConsent) -> None:
        row = consent.model_dump(mode="json", exclude={"created_at"})
        await self.rest.insert(self.TABLE, row, on_conflict="user_id,client_id")


class SupabaseIdentityStore:
    """
    Identity Store backed by the ``profiles`` table and the GoTrue admin API.
    """

    def __init__(self, rest: SupabaseRestClient) -> None:
        self.rest = rest

    async def get_profile(self, user_id: str) -> UserProfile | None:
        rows = await self.rest.select("profiles", {"id": user_id})
        if not rows:
            return None
        profile: UserProfile = _parse(UserProfile, rows[0])
        return profile

    async def get_email(self, user_id: str) -> str | None:
        response = await self.rest.request("GET", f"/auth/v1/admin/users/{user_id}", allowed_statuses=(404,))
        if response.status_code == 404:
            return None
        try:
            email = response.json().get("email")
        except (ValueError, AttributeError) as e:
            raise UpstreamError("Upstream returned a malformed user") from e
        return email if isinstance(email, str) and email else None

    async def authenticate_session(self, bearer_token: str) -> str | None:
        response = await self.rest.request("GET", "/auth/v1/user", bearer=bearer_token, allowed_statuses=(401, 403))
        if response.status_code in (401, 403):
            return None
        try:
            user_id = response.json().get("id")
        except (ValueError, AttributeError) as e:
            raise UpstreamError("Upstream returned a malformed session user") from e
        return user_id if isinstance(user_id, str) and user_id else None
