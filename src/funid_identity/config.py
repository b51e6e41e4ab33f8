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
Configuration for the funid-identity package.
"""

from pydantic import Field, SecretStr, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_KID = "funid-key-2026"


class FunIDConfig(BaseSettings):
    """
    Configuration settings for the FUN-ID identity provider.

    Attributes:
        issuer (str): The issuer identifier, also the public base URL of the IdP.
        frontend_url (str): Origin of the Consent UI (``/oauth/consent`` is appended).
        rsa_private_key (SecretStr | None): PKCS8 PEM used to sign access and ID tokens.
        rsa_public_key (str | None): SPKI PEM published in the JWKS. Derived from the private key if omitted.
        rsa_kid (str): Key identifier placed in token headers and the JWKS.
        supabase_url (str | None): Base URL of the persistence platform. Memory stores are used when unset.
        supabase_service_role_key (SecretStr | None): Service role key for the persistence platform.
        pii_salt (SecretStr): Salt for anonymizing subject identifiers in logs.
    """

    model_config = SettingsConfigDict(
        env_prefix="FUNID_",
        case_sensitive=False,
    )

    unsafe_local_dev: bool = False
    issuer: str
    frontend_url: str
    rsa_private_key: SecretStr | None = None
    rsa_public_key: str | None = None
    rsa_kid: str = DEFAULT_KID

    supabase_url: str | None = None
    supabase_service_role_key: SecretStr | None = None
    http_timeout: float = Field(10.0, gt=0, description="Timeout in seconds for persistence and Identity Store calls.")

    access_token_ttl: int = Field(3600, gt=0)
    id_token_ttl: int = Field(3600, gt=0)
    refresh_token_ttl: int = Field(30 * 24 * 3600, gt=0)
    authorization_code_ttl: int = Field(600, gt=0)

    revoke_family_on_replay: bool = True
    pii_salt: SecretStr = SecretStr("funid-unsafe-default-salt")
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    @field_validator("issuer", "frontend_url", mode="after")
    @classmethod
    def validate_https(cls, v: str, info: ValidationInfo) -> str:
        """
        Ensures public URLs use HTTPS, unless strictly opted out for local dev.
        Trailing slashes are stripped so endpoint URLs can be joined by concatenation.
        """
        v = v.strip().rstrip("/")
        if not v.startswith(("https://", "http://")):
            raise ValueError(f"'{info.field_name}' must be an absolute http(s) URL.")
        if v.startswith("http://") and not info.data.get("unsafe_local_dev", False):
            raise ValueError("HTTPS is required for production. Set 'unsafe_local_dev=True' only for local testing.")
        return v

    @field_validator("rsa_kid")
    @classmethod
    def validate_kid(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("rsa_kid must not be empty.")
        return v

    @model_validator(mode="after")
    def check_supabase_pair(self) -> "FunIDConfig":
        """
        The persistence platform needs both its URL and its service role key.
        """
        if (self.supabase_url is None) != (self.supabase_service_role_key is None):
            raise ValueError("supabase_url and supabase_service_role_key must be configured together.")
        if self.supabase_url is not None:
            self.supabase_url = self.supabase_url.rstrip("/")
        return self

    @property
    def token_endpoint(self) -> str:
        return f"{self.issuer}/oauth/token"

    @property
    def authorization_endpoint(self) -> str:
        return f"{self.issuer}/oauth/authorize"

    @property
    def userinfo_endpoint(self) -> str:
        return f"{self.issuer}/oauth/userinfo"

    @property
    def jwks_uri(self) -> str:
        return f"{self.issuer}/.well-known/jwks.json"

    @property
    def consent_url(self) -> str:
        return f"{self.frontend_url}/oauth/consent"
