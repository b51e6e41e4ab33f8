# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/funid_identity

from collections.abc import Callable
from datetime import timedelta
from typing import Any

import pytest
from authlib.jose import JsonWebKey
from pydantic import SecretStr

from funid_identity.config import FunIDConfig
from funid_identity.crypto import hash_client_secret
from funid_identity.identity_store import MemoryIdentityStore
from funid_identity.keys import KeyMaterial
from funid_identity.models import AuthorizationCode, OAuthClient, UserProfile, utcnow
from funid_identity.pkce import compute_code_challenge, generate_code_verifier
from funid_identity.provider import IdentityProvider
from funid_identity.storage import (
    MemoryAuthorizationCodeStore,
    MemoryClientStore,
    MemoryConsentStore,
    MemoryRefreshTokenStore,
)

ISSUER = "https://id.fun.test"
FRONTEND_URL = "https://app.fun.test"
REDIRECT_URI = "https://rp.fun.test/callback"
CLIENT_SECRET = "correct-horse-battery-staple"
USER_ID = "4b6f0c1e-8a43-4d4e-9a39-0f6f7b2b1c11"
SESSION_TOKEN = "platform-session-token"


@pytest.fixture(scope="session")
def rsa_key() -> Any:
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture(scope="session")
def private_pem(rsa_key: Any) -> str:
    return str(rsa_key.as_pem(is_private=True).decode("ascii"))


@pytest.fixture(scope="session")
def public_pem(rsa_key: Any) -> str:
    return str(rsa_key.as_pem(is_private=False).decode("ascii"))


@pytest.fixture
def config(private_pem: str) -> FunIDConfig:
    return FunIDConfig(
        issuer=ISSUER,
        frontend_url=FRONTEND_URL,
        rsa_private_key=SecretStr(private_pem),
        pii_salt=SecretStr("test-salt"),
    )


@pytest.fixture
def key_material(private_pem: str) -> KeyMaterial:
    return KeyMaterial(private_key_pem=private_pem, kid="test-kid")


@pytest.fixture
def public_client() -> OAuthClient:
    return OAuthClient(
        client_id="public-app",
        client_name="Public App",
        redirect_uris=[REDIRECT_URI],
        scopes=["openid", "profile", "email", "wallet"],
        is_confidential=False,
        logo_uri="https://rp.fun.test/logo.png",
    )


@pytest.fixture
def confidential_client() -> OAuthClient:
    return OAuthClient(
        client_id="confidential-app",
        client_name="Confidential App",
        client_secret_hash=hash_client_secret(CLIENT_SECRET),
        redirect_uris=[REDIRECT_URI, "https://rp.fun.test/alt?tenant=acme"],
        scopes=["openid", "profile"],
        is_confidential=True,
    )


@pytest.fixture
def client_store(public_client: OAuthClient, confidential_client: OAuthClient) -> MemoryClientStore:
    inactive = OAuthClient(
        client_id="inactive-app",
        client_name="Inactive App",
        redirect_uris=[REDIRECT_URI],
        is_confidential=False,
        is_active=False,
    )
    return MemoryClientStore([public_client, confidential_client, inactive])


@pytest.fixture
def code_store() -> MemoryAuthorizationCodeStore:
    return MemoryAuthorizationCodeStore()


@pytest.fixture
def refresh_store() -> MemoryRefreshTokenStore:
    return MemoryRefreshTokenStore()


@pytest.fixture
def consent_store() -> MemoryConsentStore:
    return MemoryConsentStore()


@pytest.fixture
def identity_store() -> MemoryIdentityStore:
    store = MemoryIdentityStore()
    store.add_user(
        UserProfile(
            id=USER_ID,
            display_name="Camly Duong",
            avatar_url="https://cdn.fun.test/avatar.png",
            wallet_address="0x1234abcd",
            camly_balance=0,
        ),
        email="camly@fun.test",
    )
    store.add_session(SESSION_TOKEN, USER_ID)
    return store


@pytest.fixture
def provider(
    config: FunIDConfig,
    key_material: KeyMaterial,
    client_store: MemoryClientStore,
    code_store: MemoryAuthorizationCodeStore,
    refresh_store: MemoryRefreshTokenStore,
    consent_store: MemoryConsentStore,
    identity_store: MemoryIdentityStore,
) -> IdentityProvider:
    return IdentityProvider(
        config,
        key_material=key_material,
        clients=client_store,
        codes=code_store,
        refresh_tokens=refresh_store,
        consents=consent_store,
        identity_store=identity_store,
    )


@pytest.fixture
def pkce_pair() -> tuple[str, str]:
    verifier = generate_code_verifier()
    return verifier, compute_code_challenge(verifier)


@pytest.fixture
def make_code(code_store: MemoryAuthorizationCodeStore) -> Callable[..., AuthorizationCode]:
    """Seeds an authorization code directly into the memory store."""

    def _make(
        challenge: str,
        client_id: str = "public-app",
        scope: str = "openid profile email wallet",
        code: str = "test-code",
        nonce: str | None = "n-0S6_WzA2Mj",
        ttl: int = 600,
        used: bool = False,
    ) -> AuthorizationCode:
        stored = AuthorizationCode(
            code=code,
            client_id=client_id,
            user_id=USER_ID,
            redirect_uri=REDIRECT_URI,
            scope=scope,
            code_challenge=challenge,
            state="xyz",
            nonce=nonce,
            expires_at=utcnow() + timedelta(seconds=ttl),
            used=used,
        )
        code_store.add(stored)
        return stored

    return _make
