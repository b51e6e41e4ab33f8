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
TokenSigner component for signing and verifying the IdP's own RS256 JWTs.
"""

import time
from typing import Any, cast

from authlib.jose import JsonWebToken
from authlib.jose.errors import ExpiredTokenError, JoseError
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from funid_identity.exceptions import InvalidTokenError
from funid_identity.keys import SIGNING_ALGORITHM, KeyMaterial
from funid_identity.models import TokenKind
from funid_identity.utils.logger import logger

tracer = trace.get_tracer(__name__)


class TokenSigner:
    """
    Signs access and ID tokens with the configured key and verifies access tokens
    against the JWKS the IdP itself publishes.

    Attributes:
        key_material (KeyMaterial): Source of the signing key and the published JWKS.
        issuer (str): Value of the ``iss`` claim.
        access_ttl (int): Access token lifetime in seconds.
        id_ttl (int): ID token lifetime in seconds.
    """

    def __init__(self, key_material: KeyMaterial, issuer: str, access_ttl: int = 3600, id_ttl: int = 3600) -> None:
        self.key_material = key_material
        self.issuer = issuer
        self.access_ttl = access_ttl
        self.id_ttl = id_ttl
        # Only RS256 is accepted, "none" and HMAC algorithms are rejected by construction.
        self.jwt = JsonWebToken([SIGNING_ALGORITHM])

    def sign(self, claims: dict[str, Any], kind: TokenKind) -> str:
        """
        Signs ``claims`` after adding ``iss``, ``iat`` and ``exp``.

        Args:
            claims: Token-specific claims (``sub``, ``aud`` and so on).
            kind: Selects the ``typ`` header and the lifetime.

        Returns:
            str: The compact JWS.

        Raises:
            KeyConfigurationError: If no usable signing key is configured.
        """
        now = int(time.time())
        lifetime = self.access_ttl if kind is TokenKind.ACCESS else self.id_ttl
        payload = {**claims, "iss": self.issuer, "iat": now, "exp": now + lifetime}
        header = {"alg": SIGNING_ALGORITHM, "typ": kind.value, "kid": self.key_material.kid}

        jwt_any = cast("Any", self.jwt)
        token: bytes = jwt_any.encode(header, payload, self.key_material.private_key())
        return token.decode("ascii")

    def sign_access_token(self, user_id: str, client_id: str, scope: str) -> str:
        claims = {"sub": user_id, "aud": client_id, "client_id": client_id, "scope": scope}
        return self.sign(claims, TokenKind.ACCESS)

    def sign_id_token(self, user_id: str, client_id: str, claims: dict[str, Any], nonce: str | None = None) -> str:
        payload: dict[str, Any] = {**claims, "sub": user_id, "aud": client_id}
        if nonce:
            payload["nonce"] = nonce
        return self.sign(payload, TokenKind.ID)

    def verify(self, token: str, kind: TokenKind) -> dict[str, Any]:
        """
        Verifies a token issued by this IdP.

        Emits an OpenTelemetry span `verify_token`.

        Args:
            token: The compact JWS.
            kind: The expected ``typ`` header. A token of the other kind is rejected.

        Returns:
            dict[str, Any]: The verified claims.

        Raises:
            InvalidTokenError: If the signature, ``iss``, ``exp``, ``typ`` or ``sub`` check fails.
            KeyConfigurationError: If the configured key cannot be imported.
        """
        with tracer.start_as_current_span("verify_token") as span:
            span.set_attribute("token.kind", kind.value)
            jwks = self.key_material.jwks()
            if not jwks.keys:
                span.set_status(Status(StatusCode.ERROR, "no verification key"))
                raise InvalidTokenError("No verification key is configured.")

            claims_options = {
                "iss": {"essential": True, "value": self.issuer},
                "exp": {"essential": True},
                "sub": {"essential": True},
            }

            try:
                jwt_any = cast("Any", self.jwt)
                claims = jwt_any.decode(token.strip(), jwks.model_dump(), claims_options=claims_options)
                claims.validate()
            except ExpiredTokenError as e:
                logger.info("Token rejected: expired")
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise InvalidTokenError("Token has expired.") from e
            except JoseError as e:
                logger.warning(f"Token rejected: {type(e).__name__}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise InvalidTokenError("Invalid token.") from e
            except ValueError as e:
                # Unknown kid or an undecodable segment.
                logger.warning(f"Token rejected: {e}")
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise InvalidTokenError("Invalid token.") from e

            if claims.header.get("typ") != kind.value:
                logger.warning(f"Token rejected: typ {claims.header.get('typ')!r}, expected {kind.value!r}")
                span.set_status(Status(StatusCode.ERROR, "wrong typ"))
                raise InvalidTokenError("Invalid token type.")

            payload = dict(claims)
            if not isinstance(payload.get("sub"), str) or not payload["sub"]:
                span.set_status(Status(StatusCode.ERROR, "bad sub"))
                raise InvalidTokenError("Token subject is missing.")

            span.set_status(Status(StatusCode.OK))
            return payload

    def verify_access_token(self, token: str) -> dict[str, Any]:
        return self.verify(token, TokenKind.ACCESS)
