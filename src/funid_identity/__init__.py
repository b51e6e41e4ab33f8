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
FUN-ID: an OAuth 2.0 / OpenID Connect identity provider with mandatory PKCE,
rotating refresh tokens and RS256 signed tokens.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .config import FunIDConfig
from .exceptions import FunIDError, InvalidTokenError, OAuthError
from .keys import KeyMaterial
from .provider import IdentityProvider
from .tokens import TokenSigner

__all__ = [
    "FunIDConfig",
    "FunIDError",
    "IdentityProvider",
    "InvalidTokenError",
    "KeyMaterial",
    "OAuthError",
    "TokenSigner",
]
