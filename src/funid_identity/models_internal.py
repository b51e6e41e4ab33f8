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
Internal request models for the funid-identity package.

Raw request bodies are decoded once at the HTTP boundary into these models.
Endpoint logic never reads raw key/value maps.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator


class BodyEncoding(StrEnum):
    """Encodings accepted by the token endpoint."""

    FORM = "application/x-www-form-urlencoded"
    JSON = "application/json"


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and v == "":
        return None
    return v


class AuthorizeRequest(BaseModel):
    """A fully validated ``GET /oauth/authorize`` request."""

    model_config = ConfigDict(frozen=True)

    response_type: str
    client_id: str
    redirect_uri: str
    scope: str
    state: str
    code_challenge: str
    code_challenge_method: str = "S256"
    nonce: str | None = None


class AuthorizeCallbackRequest(BaseModel):
    """
    Consent decision posted back by the Consent UI.

    Every field is re-validated against the client registration; nothing is trusted
    because it passed validation on the first leg.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    client_id: str = Field(..., min_length=1)
    redirect_uri: str = Field(..., min_length=1)
    scope: str = "openid"
    state: str = Field(..., min_length=1)
    code_challenge: str = ""
    code_challenge_method: str = "S256"
    nonce: str | None = None
    approved: StrictBool

    @field_validator("nonce", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        return _blank_to_none(v)


class TokenRequest(BaseModel):
    """
    A decoded ``POST /oauth/token`` body, before grant-specific validation.

    Empty strings are treated as absent parameters.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    encoding: BodyEncoding
    grant_type: str | None = None
    code: str | None = None
    redirect_uri: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    code_verifier: str | None = None
    refresh_token: str | None = None

    @field_validator(
        "grant_type",
        "code",
        "redirect_uri",
        "client_id",
        "client_secret",
        "code_verifier",
        "refresh_token",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        return _blank_to_none(v)


class AuthorizationCodeGrant(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    redirect_uri: str
    client_id: str
    code_verifier: str
    client_secret: str | None = None


class RefreshTokenGrant(BaseModel):
    model_config = ConfigDict(frozen=True)

    refresh_token: str
    client_id: str
    client_secret: str | None = None
