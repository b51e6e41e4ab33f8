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
AuthorizationEndpoint component: the two legs of the authorization code flow.

``start`` validates ``GET /oauth/authorize`` and sends the browser to the Consent UI.
``callback`` receives the user's decision and mints the authorization code.
"""

from collections.abc import Mapping
from datetime import timedelta
from typing import Any, TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import SecretStr, ValidationError

from funid_identity.claims import split_scope
from funid_identity.clients import ClientRegistry
from funid_identity.crypto import generate_authorization_code
from funid_identity.exceptions import (
    AccessDeniedError,
    AuthorizationRedirectError,
    InvalidClientError,
    InvalidRequestError,
    InvalidScopeError,
    ServerError,
    UnsupportedResponseTypeError,
    UpstreamError,
)
from funid_identity.models import (
    SUPPORTED_SCOPES,
    AuthorizationCode,
    AuthorizationState,
    OAuthClient,
    OAuthConsent,
    utcnow,
)
from funid_identity.models_internal import AuthorizeCallbackRequest, AuthorizeRequest
from funid_identity.pkce import S256, is_valid_code_challenge
from funid_identity.storage import AuthorizationCodeStore, ConsentStore
from funid_identity.utils.logger import anonymize, logger

tracer = trace.get_tracer(__name__)

_E = TypeVar("_E", bound=Exception)

DEFAULT_SCOPE = "openid"
DENIAL_DESCRIPTION = "User denied consent"


def append_query(url: str, params: Mapping[str, str | None]) -> str:
    """
    Sets query parameters on ``url``, keeping its other parameters.

    Parameters whose value is None are skipped. A parameter already present is replaced.
    """
    parts = urlsplit(url)
    updates = {k: v for k, v in params.items() if v is not None}
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in updates]
    query.extend(updates.items())
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def filter_scopes(requested: str | None, client: OAuthClient) -> list[str]:
    """
    Keeps the requested scopes that are supported and, if the client declares any, allowed for it.
    """
    allowed = set(client.scopes) if client.scopes else set(SUPPORTED_SCOPES)
    return [s for s in split_scope(requested or DEFAULT_SCOPE) if s in SUPPORTED_SCOPES and s in allowed]


class AuthorizationEndpoint:
    """
    Authorization endpoint state machine.

    A request moves ``received -> validated -> awaiting_consent`` on the first leg and
    ``code_issued`` or ``denied`` on the callback. Any validation failure is terminal
    (``rejected``). Errors detected before the redirect URI is verified are raised as
    ``OAuthError`` and rendered directly; later ones as ``AuthorizationRedirectError``.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        codes: AuthorizationCodeStore,
        consents: ConsentStore,
        consent_url: str,
        code_ttl: int = 600,
        pii_salt: SecretStr | None = None,
    ) -> None:
        self.registry = registry
        self.codes = codes
        self.consents = consents
        self.consent_url = consent_url
        self.code_ttl = code_ttl
        self.pii_salt = pii_salt or SecretStr("")

    def _anonymize(self, user_id: str) -> str:
        return anonymize(user_id, self.pii_salt.get_secret_value())

    def _reject(self, error: _E, client_id: str | None) -> _E:
        logger.info(f"Authorization {AuthorizationState.REJECTED}: client_id={client_id!r}: {error}")
        return error

    @staticmethod
    def _parse_request(params: Mapping[str, str]) -> AuthorizeRequest:
        response_type = params.get("response_type")
        client_id = params.get("client_id")
        redirect_uri = params.get("redirect_uri")
        state = params.get("state")
        code_challenge = params.get("code_challenge")
        code_challenge_method = params.get("code_challenge_method")

        if response_type != "code":
            raise UnsupportedResponseTypeError("Only response_type=code is supported")
        if not client_id:
            raise InvalidRequestError("Missing client_id parameter")
        if not redirect_uri:
            raise InvalidRequestError("Missing redirect_uri parameter")
        if not state:
            raise InvalidRequestError("Missing state parameter (required for CSRF protection)")
        if not code_challenge:
            raise InvalidRequestError("Missing code_challenge parameter (PKCE is required)")
        if code_challenge_method and code_challenge_method != S256:
            raise InvalidRequestError("Only S256 code_challenge_method is supported")
        if not is_valid_code_challenge(code_challenge):
            raise InvalidRequestError("Invalid code_challenge format")

        return AuthorizeRequest(
            response_type=response_type,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=params.get("scope") or DEFAULT_SCOPE,
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method or S256,
            nonce=params.get("nonce") or None,
        )

    async def _resolve_client(self, client_id: str, redirect_uri: str) -> OAuthClient:
        try:
            client = await self.registry.get_client(client_id)
        except InvalidClientError as e:
            # Returned to the browser, not to an authenticating client.
            raise InvalidClientError("Client not found or inactive", status_code=400) from e
        except UpstreamError as e:
            raise ServerError("Failed to load client") from e

        # Exact string match only: no prefix, normalization or wildcard.
        if redirect_uri not in client.redirect_uris:
            raise InvalidRequestError("redirect_uri not registered for this client")
        return client

    async def start(self, params: Mapping[str, str], user_id: str | None = None) -> str:
        """
        Validates an authorization request and returns the Consent UI URL.

        Args:
            params: The query parameters of ``GET /oauth/authorize``.
            user_id: The signed-in user, when the request carried a valid session.
                Used only to flag an existing consent.

        Returns:
            str: The URL to redirect the browser to.

        Raises:
            OAuthError: For failures 1 to 9, rendered as a 400 JSON response.
            AuthorizationRedirectError: For ``invalid_scope``, delivered to the verified redirect URI.
            ServerError: If the client store or consent store fails.
        """
        client_id = params.get("client_id")
        logger.debug(f"Authorization {AuthorizationState.RECEIVED}: client_id={client_id!r}")
        try:
            request = self._parse_request(params)
            client = await self._resolve_client(request.client_id, request.redirect_uri)
        except (InvalidRequestError, InvalidClientError, UnsupportedResponseTypeError) as e:
            self._reject(e, client_id)
            raise

        scopes = filter_scopes(request.scope, client)
        if not scopes:
            error = InvalidScopeError("No valid scopes requested")
            redirect_to = append_query(
                request.redirect_uri,
                {"error": error.error, "error_description": error.error_description, "state": request.state},
            )
            raise AuthorizationRedirectError(self._reject(error, client_id), redirect_to)

        logger.debug(f"Authorization {AuthorizationState.VALIDATED}: client_id={client_id!r}")

        consented = False
        if user_id is not None:
            try:
                consent = await self.consents.get(user_id, client.client_id)
            except UpstreamError as e:
                raise ServerError("Failed to load consent") from e
            consented = consent is not None and consent.covers(scopes)

        consent_params: dict[str, str | None] = {
            "client_id": client.client_id,
            "client_name": client.client_name,
            "logo_uri": client.logo_uri,
            "scope": " ".join(scopes),
            "state": request.state,
            "redirect_uri": request.redirect_uri,
            "code_challenge": request.code_challenge,
            "code_challenge_method": request.code_challenge_method,
            "nonce": request.nonce,
            "consented": "true" if consented else None,
        }
        logger.info(f"Authorization {AuthorizationState.AWAITING_CONSENT}: client_id={client_id!r}")
        return append_query(self.consent_url, consent_params)

    async def callback(self, user_id: str, body: Any) -> dict[str, str]:
        """
        Processes the Consent UI decision for an authenticated user.

        Client, redirect URI, PKCE challenge and scopes are re-validated here; none of
        them is trusted because it passed the first leg.

        Args:
            user_id: The user resolved from the platform session.
            body: The decoded JSON body.

        Returns:
            dict[str, str]: ``{"redirect_uri": ...}`` for the Consent UI to navigate to.

        Raises:
            InvalidRequestError: If the body is malformed or the redirect URI is not registered.
            InvalidClientError: If the client is unknown or inactive.
            InvalidScopeError: If no requested scope survives filtering.
            ServerError: If persistence fails.
        """
        with tracer.start_as_current_span("authorize_callback") as span:
            try:
                request = AuthorizeCallbackRequest.model_validate(body)
            except ValidationError as e:
                span.set_status(Status(StatusCode.ERROR, "invalid body"))
                raise InvalidRequestError("Invalid JSON body") from e

            span.set_attribute("oauth.client_id", request.client_id)
            client = await self._resolve_client(request.client_id, request.redirect_uri)

            if not request.approved:
                logger.info(f"Authorization {AuthorizationState.DENIED}: client_id={request.client_id!r}")
                span.set_attribute("oauth.approved", False)
                denial = AccessDeniedError(DENIAL_DESCRIPTION)
                return {
                    "redirect_uri": append_query(
                        request.redirect_uri,
                        {
                            "error": denial.error,
                            "error_description": denial.error_description,
                            "state": request.state,
                        },
                    )
                }

            if request.code_challenge_method != S256:
                raise self._reject(InvalidRequestError("Only S256 code_challenge_method is supported"), client.client_id)
            if not is_valid_code_challenge(request.code_challenge):
                raise self._reject(InvalidRequestError("Invalid code_challenge format"), client.client_id)

            scopes = filter_scopes(request.scope, client)
            if not scopes:
                raise self._reject(InvalidScopeError("No valid scopes requested"), client.client_id)
            scope = " ".join(scopes)

            now = utcnow()
            code = AuthorizationCode(
                code=generate_authorization_code(),
                client_id=client.client_id,
                user_id=user_id,
                redirect_uri=request.redirect_uri,
                scope=scope,
                code_challenge=request.code_challenge,
                code_challenge_method=S256,
                state=request.state,
                nonce=request.nonce,
                expires_at=now + timedelta(seconds=self.code_ttl),
                created_at=now,
            )

            try:
                await self.consents.save(
                    OAuthConsent(user_id=user_id, client_id=client.client_id, scopes=scopes, created_at=now, updated_at=now)
                )
                await self.codes.save(code)
            except UpstreamError as e:
                logger.error(f"Failed to persist authorization code: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise ServerError("Failed to generate authorization code") from e

            logger.info(
                f"Authorization {AuthorizationState.CODE_ISSUED}: client_id={client.client_id!r} "
                f"user={self._anonymize(user_id)}"
            )
            span.set_status(Status(StatusCode.OK))
            return {"redirect_uri": append_query(request.redirect_uri, {"code": code.code, "state": request.state})}
