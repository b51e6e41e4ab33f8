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
IdentityProvider component wiring stores, keys and endpoints together.
"""

from typing import Any

import httpx
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from funid_identity.authorize import AuthorizationEndpoint
from funid_identity.claims import ClaimsBuilder
from funid_identity.clients import ClientRegistry
from funid_identity.config import FunIDConfig
from funid_identity.discovery import build_jwks, build_openid_configuration
from funid_identity.exceptions import InvalidTokenError, ServerError, UpstreamError
from funid_identity.identity_store import IdentityStore, MemoryIdentityStore
from funid_identity.keys import KeyMaterial
from funid_identity.models import JsonWebKeySet, OpenIDConfiguration
from funid_identity.storage import (
    AuthorizationCodeStore,
    ClientStore,
    ConsentStore,
    MemoryAuthorizationCodeStore,
    MemoryClientStore,
    MemoryConsentStore,
    MemoryRefreshTokenStore,
    RefreshTokenStore,
)
from funid_identity.supabase import (
    SupabaseAuthorizationCodeStore,
    SupabaseClientStore,
    SupabaseConsentStore,
    SupabaseIdentityStore,
    SupabaseRefreshTokenStore,
    SupabaseRestClient,
)
from funid_identity.token_endpoint import TokenEndpoint
from funid_identity.tokens import TokenSigner
from funid_identity.userinfo import UserInfoEndpoint, extract_bearer_token
from funid_identity.utils.logger import logger


class IdentityProvider:
    """
    The FUN-ID identity provider (The Core).
    Handles resources via async context manager.

    Stores default to the Supabase implementations when ``supabase_url`` is configured
    and to in-memory ones otherwise. Any store may be passed explicitly.
    """

    def __init__(
        self,
        config: FunIDConfig,
        client: httpx.AsyncClient | None = None,
        *,
        key_material: KeyMaterial | None = None,
        clients: ClientStore | None = None,
        codes: AuthorizationCodeStore | None = None,
        refresh_tokens: RefreshTokenStore | None = None,
        consents: ConsentStore | None = None,
        identity_store: IdentityStore | None = None,
    ) -> None:
        """
        Initialize the IdentityProvider.

        Args:
            config: The configuration object.
            client: External async client (optional). If not provided, one is created with the configured timeout.
            key_material: Signing key service. Built from the configuration if omitted.
        """
        self.config = config
        self._internal_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.http_timeout)

        # Instrument the client for distributed tracing
        HTTPXClientInstrumentor().instrument_client(self._client)

        if config.supabase_url and config.supabase_service_role_key:
            rest = SupabaseRestClient(self._client, config.supabase_url, config.supabase_service_role_key)
            self.clients: ClientStore = clients or SupabaseClientStore(rest)
            self.codes: AuthorizationCodeStore = codes or SupabaseAuthorizationCodeStore(rest)
            self.refresh_tokens: RefreshTokenStore = refresh_tokens or SupabaseRefreshTokenStore(rest)
            self.consents: ConsentStore = consents or SupabaseConsentStore(rest)
            self.identity_store: IdentityStore = identity_store or SupabaseIdentityStore(rest)
        else:
            logger.warning("No persistence platform configured; using in-memory stores")
            self.clients = clients or MemoryClientStore()
            self.codes = codes or MemoryAuthorizationCodeStore()
            self.refresh_tokens = refresh_tokens or MemoryRefreshTokenStore()
            self.consents = consents or MemoryConsentStore()
            self.identity_store = identity_store or MemoryIdentityStore()

        self.key_material = key_material or KeyMaterial.from_config(config)
        if not self.key_material.has_signing_key:
            logger.warning("No RSA private key configured; token issuance will fail with server_error")

        self.registry = ClientRegistry(self.clients)
        self.signer = TokenSigner(
            self.key_material,
            issuer=config.issuer,
            access_ttl=config.access_token_ttl,
            id_ttl=config.id_token_ttl,
        )
        self.claims = ClaimsBuilder(self.identity_store)
        self.authorization = AuthorizationEndpoint(
            self.registry,
            self.codes,
            self.consents,
            consent_url=config.consent_url,
            code_ttl=config.authorization_code_ttl,
            pii_salt=config.pii_salt,
        )
        self.token = TokenEndpoint(
            self.registry,
            self.codes,
            self.refresh_tokens,
            self.signer,
            self.claims,
            refresh_ttl=config.refresh_token_ttl,
            revoke_family_on_replay=config.revoke_family_on_replay,
            pii_salt=config.pii_salt,
        )
        self.userinfo = UserInfoEndpoint(self.signer, self.claims)

    async def __aenter__(self) -> "IdentityProvider":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._internal_client:
            await self._client.aclose()

    async def authenticate_session(self, auth_header: str | None) -> str:
        """
        Resolves the platform session bearer of a Consent UI request to a user id.

        Raises:
            InvalidTokenError: If the header is missing or malformed or the session is invalid.
            ServerError: If the Identity Store is unreachable.
        """
        token = extract_bearer_token(auth_header)
        try:
            user_id = await self.identity_store.authenticate_session(token)
        except UpstreamError as e:
            raise ServerError("Failed to validate session") from e
        if user_id is None:
            raise InvalidTokenError("Invalid or expired session.")
        return user_id

    def openid_configuration(self) -> OpenIDConfiguration:
        return build_openid_configuration(self.config)

    def jwks(self) -> tuple[JsonWebKeySet, str]:
        return build_jwks(self.key_material)
