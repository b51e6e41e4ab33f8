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
Data models for the funid-identity package.
"""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(UTC)


class OAuthScope(StrEnum):
    OPENID = "openid"
    PROFILE = "profile"
    EMAIL = "email"
    WALLET = "wallet"


SUPPORTED_SCOPES: tuple[str, ...] = tuple(s.value for s in OAuthScope)


class TokenKind(StrEnum):
    """
    The kind of JWT being signed. The value is the ``typ`` header placed on the token,
    so an access token can never be accepted where an ID token is expected and vice versa.
    """

    ACCESS = "at+jwt"
    ID = "JWT"


class AuthorizationState(StrEnum):
    """States of a single authorization request."""

    RECEIVED = "received"
    VALIDATED = "validated"
    AWAITING_CONSENT = "awaiting_consent"
    CODE_ISSUED = "code_issued"
    REJECTED = "rejected"
    DENIED = "denied"


class OAuthClient(BaseModel):
    """
    A registered relying-party application.

    Read-only to the identity provider; registration and deactivation are administrative.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    client_id: str = Field(..., description="Opaque, unique and stable client identifier.")
    client_name: str
    client_secret_hash: str | None = Field(
        default=None, description="Format-tagged one-way hash of the shared secret. Confidential clients only."
    )
    redirect_uris: list[str] = Field(default_factory=list, description="Exact-match redirect URI allow list.")
    scopes: list[str] = Field(default_factory=lambda: ["openid", "profile"])
    grant_types: list[str] = Field(default_factory=lambda: ["authorization_code"])
    is_confidential: bool = True
    is_active: bool = True
    logo_uri: str | None = None
    client_uri: str | None = None

    def __repr__(self) -> str:
        return (
            f"OAuthClient(client_id={self.client_id!r}, client_name={self.client_name!r}, "
            f"is_confidential={self.is_confidential!r}, is_active={self.is_active!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()


class AuthorizationCode(BaseModel):
    """
    A short-lived, single-use authorization grant.

    ``expires_at`` is fixed at creation and never extended. Once ``used`` is true the
    code is permanently unredeemable.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    code: str
    client_id: str
    user_id: str
    redirect_uri: str
    scope: str
    code_challenge: str
    code_challenge_method: str = "S256"
    state: str | None = None
    nonce: str | None = None
    expires_at: datetime
    used: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())


class RefreshTokenRecord(BaseModel):
    """
    Persisted state of a rotating refresh token. Only the hash of the token is kept.

    Attributes:
        family_id (str): Lineage shared by every token rotated from one code exchange.
        rotated (bool): True when the record was revoked by a successful rotation.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    token_hash: str
    client_id: str
    user_id: str
    scope: str
    family_id: str
    expires_at: datetime
    revoked: bool = False
    revoked_at: datetime | None = None
    rotated: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())


class OAuthConsent(BaseModel):
    """A remembered (user, client, scopes) grant."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    user_id: str
    client_id: str
    scopes: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def covers(self, scopes: list[str]) -> bool:
        return set(scopes).issubset(self.scopes)


class UserProfile(BaseModel):
    """Profile attributes supplied by the Identity Store."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    display_name: str | None = None
    avatar_url: str | None = None
    wallet_address: str | None = None
    camly_balance: int | float | None = None


class TokenResponse(BaseModel):
    """
    Successful token endpoint response.

    Attributes:
        access_token (str): Signed RS256 access token (``typ=at+jwt``).
        token_type (str): Always ``Bearer``.
        expires_in (int): Access token lifetime in seconds.
        refresh_token (str): Raw refresh token. Returned exactly once, never stored.
        id_token (str): Signed OIDC ID token.
        scope (str): Space separated granted scopes.
    """

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str
    id_token: str
    scope: str


class JsonWebKeyModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    kty: str
    kid: str
    use: str = "sig"
    alg: str = "RS256"
    n: str
    e: str


class JsonWebKeySet(BaseModel):
    keys: list[JsonWebKeyModel] = Field(default_factory=list)


class OpenIDConfiguration(BaseModel):
    """OIDC discovery document served at ``/.well-known/openid-configuration``."""

    model_config = ConfigDict(frozen=True)

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    jwks_uri: str
    scopes_supported: list[str]
    response_types_supported: list[str]
    grant_types_supported: list[str]
    subject_types_supported: list[str]
    id_token_signing_alg_values_supported: list[str]
    token_endpoint_auth_methods_supported: list[str]
    claims_supported: list[str]
    code_challenge_methods_supported: list[str]
