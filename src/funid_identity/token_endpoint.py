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
TokenEndpoint component: authorization code exchange and refresh token rotation.
"""

import json
import uuid
from datetime import datetime, timedelta
from typing import Any, TypeVar
from urllib.parse import parse_qsl

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import SecretStr, ValidationError

from funid_identity.claims import ClaimsBuilder, split_scope
from funid_identity.clients import ClientRegistry, parse_basic_credentials
from funid_identity.crypto import generate_refresh_token, hash_token
from funid_identity.exceptions import (
    InvalidGrantError,
    InvalidRequestError,
    KeyConfigurationError,
    ServerError,
    UnsupportedGrantTypeError,
    UpstreamError,
)
from funid_identity.models import OAuthClient, RefreshTokenRecord, TokenResponse, utcnow
from funid_identity.models_internal import AuthorizationCodeGrant, BodyEncoding, RefreshTokenGrant, TokenRequest
from funid_identity.pkce import verify_pkce
from funid_identity.storage import AuthorizationCodeStore, RefreshTokenStore
from funid_identity.tokens import TokenSigner
from funid_identity.utils.logger import anonymize, logger

tracer = trace.get_tracer(__name__)

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"

# Every token endpoint response, success or error, carries these.
NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def parse_token_request(content_type: str | None, body: bytes) -> TokenRequest:
    """
    Decodes a token request body once, according to its content type.

    Raises:
        InvalidRequestError: If the content type is unsupported or the body cannot be decoded.
    """
    media_type = (content_type or "").split(";", 1)[0].strip().lower()

    data: Any
    if media_type == BodyEncoding.FORM:
        encoding = BodyEncoding.FORM
        try:
            data = dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
        except UnicodeDecodeError as e:
            raise InvalidRequestError("Request body is not valid UTF-8") from e
    elif media_type == BodyEncoding.JSON:
        encoding = BodyEncoding.JSON
        try:
            data = json.loads(body or b"{}")
        except ValueError as e:
            raise InvalidRequestError("Invalid JSON body") from e
        if not isinstance(data, dict):
            raise InvalidRequestError("JSON body must be an object")
    else:
        raise InvalidRequestError("Content-Type must be application/x-www-form-urlencoded or application/json")

    try:
        return TokenRequest.model_validate({**data, "encoding": encoding})
    except ValidationError as e:
        raise InvalidRequestError("Malformed token request parameters") from e


_G = TypeVar("_G", AuthorizationCodeGrant, RefreshTokenGrant)


def _build_grant(model: type[_G], **values: str | None) -> _G:
    missing = [k for k, v in values.items() if v is None and model.model_fields[k].is_required()]
    if missing:
        raise InvalidRequestError(f"Missing required parameter(s): {', '.join(missing)}")
    return model(**values)


class TokenEndpoint:
    """
    Handles ``POST /oauth/token``.

    Authorization codes are redeemed with a conditional ``used=false -> true`` update
    and refresh tokens rotated with a conditional ``revoked=false -> true`` update, so
    of two concurrent requests presenting the same credential exactly one succeeds.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        codes: AuthorizationCodeStore,
        refresh_tokens: RefreshTokenStore,
        signer: TokenSigner,
        claims: ClaimsBuilder,
        refresh_ttl: int = 30 * 24 * 3600,
        revoke_family_on_replay: bool = True,
        pii_salt: SecretStr | None = None,
    ) -> None:
        self.registry = registry
        self.codes = codes
        self.refresh_tokens = refresh_tokens
        self.signer = signer
        self.claims = claims
        self.refresh_ttl = refresh_ttl
        self.revoke_family_on_replay = revoke_family_on_replay
        self.pii_salt = pii_salt or SecretStr("")

    def _anonymize(self, user_id: str) -> str:
        return anonymize(user_id, self.pii_salt.get_secret_value())

    @staticmethod
    def _client_credentials(request: TokenRequest, authorization: str | None) -> tuple[str | None, str | None]:
        basic = parse_basic_credentials(authorization)
        if basic is None:
            return request.client_id, request.client_secret

        basic_id, basic_secret = basic
        if request.client_secret is not None:
            raise InvalidRequestError("Client credentials must be sent using exactly one method")
        if request.client_id is not None and request.client_id != basic_id:
            raise InvalidRequestError("client_id does not match the authenticated client")
        return basic_id, basic_secret

    async def handle(self, request: TokenRequest, authorization: str | None = None) -> TokenResponse:
        """
        Dispatches a decoded token request on its grant type.

        Args:
            request: The decoded body.
            authorization: The raw ``Authorization`` header, for ``client_secret_basic``.

        Returns:
            TokenResponse: The issued token set.

        Raises:
            OAuthError: ``invalid_request``, ``invalid_client``, ``invalid_grant``,
                ``unsupported_grant_type`` or ``server_error``.
        """
        client_id, client_secret = self._client_credentials(request, authorization)

        if request.grant_type is None:
            raise InvalidRequestError("Missing grant_type parameter")

        if request.grant_type == GRANT_AUTHORIZATION_CODE:
            code_grant = _build_grant(
                AuthorizationCodeGrant,
                code=request.code,
                redirect_uri=request.redirect_uri,
                client_id=client_id,
                code_verifier=request.code_verifier,
                client_secret=client_secret,
            )
            return await self.exchange_code(code_grant)

        if request.grant_type == GRANT_REFRESH_TOKEN:
            refresh_grant = _build_grant(
                RefreshTokenGrant,
                refresh_token=request.refresh_token,
                client_id=client_id,
                client_secret=client_secret,
            )
            return await self.rotate_refresh_token(refresh_grant)

        logger.info(f"Unsupported grant_type {request.grant_type!r}")
        raise UnsupportedGrantTypeError(f"Unsupported grant_type: {request.grant_type}")

    async def _authenticated_client(self, client_id: str, client_secret: str | None) -> OAuthClient:
        try:
            client = await self.registry.get_client(client_id)
        except UpstreamError as e:
            raise ServerError("Failed to load client") from e
        self.registry.authenticate(client, client_secret)
        return client

    async def exchange_code(self, grant: AuthorizationCodeGrant) -> TokenResponse:
        """
        Redeems an authorization code.

        Emits an OpenTelemetry span `exchange_code`.
        """
        with tracer.start_as_current_span("exchange_code") as span:
            span.set_attribute("oauth.client_id", grant.client_id)
            now = utcnow()
            try:
                stored = await self.codes.get_unused(grant.code)
            except UpstreamError as e:
                raise ServerError("Failed to load authorization code") from e

            if stored is None:
                logger.warning(f"Code exchange rejected: code not found or already used (client_id={grant.client_id!r})")
                span.set_status(Status(StatusCode.ERROR, "code not found or used"))
                raise InvalidGrantError("Invalid or expired authorization code")

            if stored.is_expired(now):
                logger.warning(f"Code exchange rejected: code expired (client_id={grant.client_id!r})")
                span.set_status(Status(StatusCode.ERROR, "code expired"))
                try:
                    await self.codes.mark_used(grant.code)
                except UpstreamError as e:
                    raise ServerError("Failed to update authorization code") from e
                raise InvalidGrantError("Invalid or expired authorization code")

            if stored.client_id != grant.client_id:
                logger.warning(f"Code exchange rejected: code issued to another client (client_id={grant.client_id!r})")
                span.set_status(Status(StatusCode.ERROR, "client mismatch"))
                raise InvalidGrantError("Authorization code was not issued to this client")

            if stored.redirect_uri != grant.redirect_uri:
                logger.warning(f"Code exchange rejected: redirect_uri mismatch (client_id={grant.client_id!r})")
                span.set_status(Status(StatusCode.ERROR, "redirect mismatch"))
                raise InvalidGrantError("redirect_uri does not match the authorization request")

            if not verify_pkce(grant.code_verifier, stored.code_challenge, stored.code_challenge_method):
                logger.warning(f"Code exchange rejected: PKCE verification failed (client_id={grant.client_id!r})")
                span.set_status(Status(StatusCode.ERROR, "pkce failed"))
                raise InvalidGrantError("PKCE verification failed")

            await self._authenticated_client(grant.client_id, grant.client_secret)

            try:
                redeemed = await self.codes.mark_used(grant.code)
            except UpstreamError as e:
                raise ServerError("Failed to update authorization code") from e
            if not redeemed:
                logger.warning(f"Code exchange rejected: lost redemption race (client_id={grant.client_id!r})")
                span.set_status(Status(StatusCode.ERROR, "code already redeemed"))
                raise InvalidGrantError("Invalid or expired authorization code")

            response = await self._issue_tokens(
                user_id=stored.user_id,
                client_id=stored.client_id,
                scope=stored.scope,
                family_id=uuid.uuid4().hex,
                nonce=stored.nonce,
                now=now,
            )
            span.set_status(Status(StatusCode.OK))
            return response

    async def rotate_refresh_token(self, grant: RefreshTokenGrant) -> TokenResponse:
        """
        Exchanges a refresh token for a new token set, revoking the presented one.

        Emits an OpenTelemetry span `rotate_refresh_token`.
        """
        with tracer.start_as_current_span("rotate_refresh_token") as span:
            span.set_attribute("oauth.client_id", grant.client_id)
            now = utcnow()
            token_hash = hash_token(grant.refresh_token)
            try:
                record = await self.refresh_tokens.get_by_hash(token_hash)
            except UpstreamError as e:
                raise ServerError("Failed to load refresh token") from e

            if record is None:
                logger.warning(f"Refresh rejected: token not found (client_id={grant.client_id!r})")
                span.set_status(Status(StatusCode.ERROR, "token not found"))
                raise InvalidGrantError("Invalid or expired refresh token")

            if record.revoked:
                if record.rotated and self.revoke_family_on_replay:
                    await self._revoke_family(record, now)
                logger.warning(
                    f"Refresh rejected: token revoked (rotated={record.rotated}, client_id={grant.client_id!r})"
                )
                span.set_status(Status(StatusCode.ERROR, "token revoked"))
                raise InvalidGrantError("Invalid or expired refresh token")

            if record.is_expired(now):
                logger.warning(f"Refresh rejected: token expired (client_id={grant.client_id!r})")
                span.set_status(Status(StatusCode.ERROR, "token expired"))
                try:
                    await self.refresh_tokens.revoke(token_hash, now)
                except UpstreamError as e:
                    raise ServerError("Failed to revoke refresh token") from e
                raise InvalidGrantError("Invalid or expired refresh token")

            if record.client_id != grant.client_id:
                logger.warning(f"Refresh rejected: token issued to another client (client_id={grant.client_id!r})")
                span.set_status(Status(StatusCode.ERROR, "client mismatch"))
                raise InvalidGrantError("Refresh token was not issued to this client")

            await self._authenticated_client(grant.client_id, grant.client_secret)

            try:
                rotated = await self.refresh_tokens.revoke(token_hash, now, rotated=True)
            except UpstreamError as e:
                raise ServerError("Failed to revoke refresh token") from e
            if not rotated:
                logger.warning(f"Refresh rejected: lost rotation race (client_id={grant.client_id!r})")
                span.set_status(Status(StatusCode.ERROR, "token already rotated"))
                raise InvalidGrantError("Invalid or expired refresh token")

            response = await self._issue_tokens(
                user_id=record.user_id,
                client_id=record.client_id,
                scope=record.scope,
                family_id=record.family_id,
                nonce=None,
                now=now,
            )
            span.set_status(Status(StatusCode.OK))
            return response

    async def _revoke_family(self, record: RefreshTokenRecord, now: datetime) -> None:
        try:
            count = await self.refresh_tokens.revoke_family(record.family_id, now)
        except UpstreamError as e:
            raise ServerError("Failed to revoke refresh token family") from e
        logger.warning(
            f"Refresh token replay detected for user {self._anonymize(record.user_id)}: "
            f"revoked {count} token(s) of family {record.family_id}"
        )

    async def _issue_tokens(
        self,
        user_id: str,
        client_id: str,
        scope: str,
        family_id: str,
        nonce: str | None,
        now: datetime,
    ) -> TokenResponse:
        with tracer.start_as_current_span("issue_tokens") as span:
            user_hash = self._anonymize(user_id)
            span.set_attribute("enduser.id", user_hash)
            try:
                access_token = self.signer.sign_access_token(user_id, client_id, scope)
                claims = await self.claims.build(user_id, split_scope(scope))
                id_token = self.signer.sign_id_token(user_id, client_id, claims, nonce=nonce)
            except KeyConfigurationError as e:
                logger.error(f"Token signing failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise ServerError("Token signing is not available") from e

            refresh_token = generate_refresh_token()
            record = RefreshTokenRecord(
                token_hash=hash_token(refresh_token),
                client_id=client_id,
                user_id=user_id,
                scope=scope,
                family_id=family_id,
                expires_at=now + timedelta(seconds=self.refresh_ttl),
                created_at=now,
            )
            try:
                await self.refresh_tokens.save(record)
            except UpstreamError as e:
                logger.error(f"Failed to persist refresh token: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise ServerError("Failed to store refresh token") from e

            logger.info(f"Issued tokens for user {user_hash} to client {client_id!r}")
            span.set_status(Status(StatusCode.OK))
            return TokenResponse(
                access_token=access_token,
                expires_in=self.signer.access_ttl,
                refresh_token=refresh_token,
                id_token=id_token,
                scope=scope,
            )
