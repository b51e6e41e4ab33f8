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
OIDC discovery document and JWKS publication.
"""

from funid_identity.config import FunIDConfig
from funid_identity.exceptions import KeyConfigurationError, ServerError
from funid_identity.keys import SIGNING_ALGORITHM, KeyMaterial
from funid_identity.models import SUPPORTED_SCOPES, JsonWebKeySet, OpenIDConfiguration
from funid_identity.pkce import S256
from funid_identity.utils.logger import logger

CLAIMS_SUPPORTED = [
    "sub",
    "iss",
    "aud",
    "exp",
    "iat",
    "nonce",
    "name",
    "picture",
    "email",
    "email_verified",
    "wallet_address",
    "camly_balance",
]

DISCOVERY_CACHE_CONTROL = "public, max-age=3600"
JWKS_CACHE_CONTROL = "public, max-age=3600, stale-while-revalidate=86400"
EMPTY_JWKS_CACHE_CONTROL = "public, max-age=3600"


def build_openid_configuration(config: FunIDConfig) -> OpenIDConfiguration:
    return OpenIDConfiguration(
        issuer=config.issuer,
        authorization_endpoint=config.authorization_endpoint,
        token_endpoint=config.token_endpoint,
        userinfo_endpoint=config.userinfo_endpoint,
        jwks_uri=config.jwks_uri,
        scopes_supported=list(SUPPORTED_SCOPES),
        response_types_supported=["code"],
        grant_types_supported=["authorization_code", "refresh_token"],
        subject_types_supported=["public"],
        id_token_signing_alg_values_supported=[SIGNING_ALGORITHM],
        token_endpoint_auth_methods_supported=["client_secret_post", "client_secret_basic", "none"],
        claims_supported=list(CLAIMS_SUPPORTED),
        code_challenge_methods_supported=[S256],
    )


def build_jwks(key_material: KeyMaterial) -> tuple[JsonWebKeySet, str]:
    """
    Returns the published key set and the ``Cache-Control`` value to serve it with.

    An unconfigured key yields an empty set so relying parties can still bootstrap.

    Raises:
        ServerError: If a key is configured but cannot be exported.
    """
    try:
        jwks = key_material.jwks()
    except KeyConfigurationError as e:
        logger.error(f"JWKS export failed: {e}")
        raise ServerError("Failed to generate JWKS") from e

    if not jwks.keys:
        logger.warning("JWKS requested but no signing key is configured")
        return jwks, EMPTY_JWKS_CACHE_CONTROL
    return jwks, JWKS_CACHE_CONTROL
