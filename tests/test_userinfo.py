# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/funid_identity

import pytest

from funid_identity.exceptions import InvalidTokenError, ServerError
from funid_identity.keys import KeyMaterial
from funid_identity.provider import IdentityProvider
from funid_identity.tokens import TokenSigner
from funid_identity.userinfo import UserInfoEndpoint, bearer_challenge, extract_bearer_token

USER_ID = "4b6f0c1e-8a43-4d4e-9a39-0f6f7b2b1c11"


class TestBearerHeader:
    def test_extract(self) -> None:
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing(self, header: str | None) -> None:
        with pytest.raises(InvalidTokenError, match="Missing"):
            extract_bearer_token(header)

    @pytest.mark.parametrize("header", ["Basic abc", "Bearer", "Bearer a b", "bearer abc", "Token abc"])
    def test_malformed(self, header: str) -> None:
        with pytest.raises(InvalidTokenError, match="format"):
            extract_bearer_token(header)

    def test_challenge(self) -> None:
        challenge = bearer_challenge(InvalidTokenError('Token "x" has expired.'))
        assert challenge == "Bearer error=\"invalid_token\", error_description=\"Token 'x' has expired.\""


class TestUserInfo:
    @pytest.mark.asyncio
    async def test_claims_follow_token_scope(self, provider: IdentityProvider) -> None:
        token = provider.signer.sign_access_token(USER_ID, "public-app", "openid email")
        claims = await provider.userinfo.get_userinfo(f"Bearer {token}")
        assert claims == {"sub": USER_ID, "email": "camly@fun.test", "email_verified": True}

    @pytest.mark.asyncio
    async def test_profile_scope_withholds_email_and_wallet(self, provider: IdentityProvider) -> None:
        token = provider.signer.sign_access_token(USER_ID, "public-app", "openid profile")
        claims = await provider.userinfo.get_userinfo(f"Bearer {token}")
        assert claims == {
            "sub": USER_ID,
            "name": "Camly Duong",
            "picture": "https://cdn.fun.test/avatar.png",
        }

    @pytest.mark.asyncio
    async def test_wallet_scope(self, provider: IdentityProvider) -> None:
        token = provider.signer.sign_access_token(USER_ID, "public-app", "openid wallet")
        claims = await provider.userinfo.get_userinfo(f"Bearer {token}")
        assert claims["wallet_address"] == "0x1234abcd"
        assert claims["camly_balance"] == 0

    @pytest.mark.asyncio
    async def test_id_token_is_rejected(self, provider: IdentityProvider) -> None:
        id_token = provider.signer.sign_id_token(USER_ID, "public-app", {})
        with pytest.raises(InvalidTokenError):
            await provider.userinfo.get_userinfo(f"Bearer {id_token}")

    @pytest.mark.asyncio
    async def test_garbage_token(self, provider: IdentityProvider) -> None:
        with pytest.raises(InvalidTokenError):
            await provider.userinfo.get_userinfo("Bearer not-a-token")

    @pytest.mark.asyncio
    async def test_unknown_user_gets_sub_only(self, provider: IdentityProvider) -> None:
        token = provider.signer.sign_access_token("someone-else", "public-app", "openid profile email")
        assert await provider.userinfo.get_userinfo(f"Bearer {token}") == {"sub": "someone-else"}

    @pytest.mark.asyncio
    async def test_unusable_public_key(self, provider: IdentityProvider) -> None:
        token = provider.signer.sign_access_token(USER_ID, "public-app", "openid")
        broken = KeyMaterial(public_key_pem="-----BEGIN PUBLIC KEY-----\nnope\n-----END PUBLIC KEY-----")
        endpoint = UserInfoEndpoint(TokenSigner(broken, issuer=provider.config.issuer), provider.claims)
        with pytest.raises(ServerError):
            await endpoint.get_userinfo(f"Bearer {token}")
