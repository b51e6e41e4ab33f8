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
KeyMaterial component holding the RSA signing key and its published public half.
"""

from typing import Any

from authlib.jose import JsonWebKey
from authlib.jose.rfc7518 import RSAKey

from funid_identity.config import DEFAULT_KID, FunIDConfig
from funid_identity.exceptions import KeyConfigurationError
from funid_identity.models import JsonWebKeyModel, JsonWebKeySet
from funid_identity.utils.logger import logger

SIGNING_ALGORITHM = "RS256"
MIN_RSA_KEY_SIZE = 2048


def _normalize_pem(pem: str) -> str:
    # PEMs supplied through environment variables often carry literal "\n" sequences.
    return pem.replace("\\n", "\n").strip()


class KeyMaterial:
    """
    Imports and caches the RSA key pair used for token signing and JWKS publication.

    Import happens lazily on first use and the result is cached on the instance.
    Two concurrent first imports of the same PEM produce equivalent keys, so the
    cache needs no lock. ``clear()`` and ``rotate()`` drop the cache without a
    process restart.

    Attributes:
        kid (str): The key identifier published in the JWKS and placed in token headers.
    """

    def __init__(
        self,
        private_key_pem: str | None = None,
        public_key_pem: str | None = None,
        kid: str = DEFAULT_KID,
    ) -> None:
        self._private_pem = _normalize_pem(private_key_pem) if private_key_pem else None
        self._public_pem = _normalize_pem(public_key_pem) if public_key_pem else None
        self._kid = kid
        self._private_key: RSAKey | None = None
        self._public_key: RSAKey | None = None

    @classmethod
    def from_config(cls, config: FunIDConfig) -> "KeyMaterial":
        private_pem = config.rsa_private_key.get_secret_value() if config.rsa_private_key else None
        return cls(private_key_pem=private_pem, public_key_pem=config.rsa_public_key, kid=config.rsa_kid)

    @property
    def kid(self) -> str:
        return self._kid

    @property
    def has_signing_key(self) -> bool:
        return self._private_pem is not None

    @property
    def has_public_key(self) -> bool:
        return self._public_pem is not None or self._private_pem is not None

    def _import(self, pem: str, is_private: bool) -> RSAKey:
        kind = "private" if is_private else "public"
        try:
            key = JsonWebKey.import_key(pem, {"kty": "RSA"})
        except Exception as e:
            logger.error(f"Failed to import RSA {kind} key: {type(e).__name__}")
            raise KeyConfigurationError(f"Unable to import RSA {kind} key: {e}") from e

        if not isinstance(key, RSAKey):
            raise KeyConfigurationError(f"Configured {kind} key is not an RSA key.")
        if is_private and "d" not in key.tokens:
            raise KeyConfigurationError("Configured private key PEM holds a public key.")

        key_size = key.get_public_key().key_size
        if key_size < MIN_RSA_KEY_SIZE:
            raise KeyConfigurationError(f"RSA key is {key_size} bits; at least {MIN_RSA_KEY_SIZE} are required.")
        return key

    def private_key(self) -> RSAKey:
        """
        Returns the cached signing key, importing it on first use.

        Raises:
            KeyConfigurationError: If no private key is configured or it cannot be imported.
        """
        if self._private_key is None:
            if self._private_pem is None:
                raise KeyConfigurationError("RSA private key not configured")
            self._private_key = self._import(self._private_pem, is_private=True)
            logger.info(f"Imported RSA signing key (kid={self._kid})")
        return self._private_key

    def public_key(self) -> RSAKey:
        """
        Returns the cached verification key. Derived from the private key when no public PEM is set.

        Raises:
            KeyConfigurationError: If no key is configured or it cannot be imported.
        """
        if self._public_key is None:
            if self._public_pem is not None:
                self._public_key = self._import(self._public_pem, is_private=False)
            elif self._private_pem is not None:
                public_half = self.private_key().as_dict(is_private=False)
                self._public_key = JsonWebKey.import_key({"kty": "RSA", "n": public_half["n"], "e": public_half["e"]})
            else:
                raise KeyConfigurationError("RSA public key not configured")
        return self._public_key

    def public_jwk(self) -> JsonWebKeyModel | None:
        """
        Exports the public key as a JWK, or None when no key is configured.

        Raises:
            KeyConfigurationError: If a key is configured but cannot be imported.
        """
        if not self.has_public_key:
            return None

        exported: dict[str, Any] = self.public_key().as_dict(is_private=False)
        return JsonWebKeyModel(
            kty="RSA",
            kid=self._kid,
            use="sig",
            alg=SIGNING_ALGORITHM,
            n=exported["n"],
            e=exported["e"],
        )

    def jwks(self) -> JsonWebKeySet:
        jwk = self.public_jwk()
        return JsonWebKeySet(keys=[jwk] if jwk else [])

    def clear(self) -> None:
        """Drops the imported keys. The next use re-imports from the configured PEMs."""
        self._private_key = None
        self._public_key = None

    def rotate(self, private_key_pem: str | None, public_key_pem: str | None = None, kid: str | None = None) -> None:
        """
        Replaces the key material and drops the cache.

        Tokens signed with the previous key stop verifying immediately since only one key is published.
        """
        self._private_pem = _normalize_pem(private_key_pem) if private_key_pem else None
        self._public_pem = _normalize_pem(public_key_pem) if public_key_pem else None
        if kid:
            self._kid = kid
        self.clear()
        logger.info(f"Signing key rotated (kid={self._kid})")
