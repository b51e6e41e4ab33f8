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
HTTP surface of the identity provider.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response

from funid_identity import __version__
from funid_identity.discovery import DISCOVERY_CACHE_CONTROL
from funid_identity.exceptions import AuthorizationRedirectError, InvalidClientError, InvalidRequestError, OAuthError
from funid_identity.provider import IdentityProvider
from funid_identity.token_endpoint import NO_STORE_HEADERS, parse_token_request
from funid_identity.userinfo import bearer_challenge
from funid_identity.utils.logger import logger

PUBLIC_HEADERS = {"Access-Control-Allow-Origin": "*"}


def error_response(error: OAuthError, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(error.to_dict(), status_code=error.status_code, headers=headers)


def create_app(provider: IdentityProvider) -> FastAPI:
    """
    Builds the FastAPI application serving the OAuth 2.0 / OIDC endpoints.

    The provider is closed when the application shuts down.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(f"FUN-ID identity provider starting (issuer={provider.config.issuer})")
        yield
        await provider.aclose()
        logger.info("FUN-ID identity provider stopped")

    app = FastAPI(title="FUN-ID Identity Provider", version=__version__, lifespan=lifespan)
    app.state.provider = provider

    app.add_middleware(
        CORSMiddleware,
        allow_origins=provider.config.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
        max_age=86400,
    )

    @app.exception_handler(OAuthError)
    async def oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
        return error_response(exc)

    @app.exception_handler(AuthorizationRedirectError)
    async def authorization_redirect_handler(request: Request, exc: AuthorizationRedirectError) -> RedirectResponse:
        return RedirectResponse(exc.redirect_to, status_code=302)

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.get("/oauth/authorize")
    async def authorize(request: Request) -> RedirectResponse:
        user_id = None
        auth_header = request.headers.get("authorization")
        if auth_header:
            # A session is optional here; it only lets the Consent UI skip a prompt.
            try:
                user_id = await provider.authenticate_session(auth_header)
            except OAuthError as e:
                logger.debug(f"Ignoring session on authorize request: {e.error}")

        consent_url = await provider.authorization.start(request.query_params, user_id=user_id)
        return RedirectResponse(consent_url, status_code=302)

    @app.post("/oauth/authorize/callback")
    async def authorize_callback(request: Request) -> JSONResponse:
        try:
            user_id = await provider.authenticate_session(request.headers.get("authorization"))
        except OAuthError as e:
            headers = {"WWW-Authenticate": bearer_challenge(e)} if e.status_code == 401 else None
            return error_response(e, headers)

        try:
            body = await request.json()
        except ValueError as e:
            raise InvalidRequestError("Invalid JSON body") from e

        descriptor = await provider.authorization.callback(user_id, body)
        return JSONResponse(descriptor)

    @app.post("/oauth/token")
    async def token(request: Request) -> JSONResponse:
        auth_header = request.headers.get("authorization")
        try:
            token_request = parse_token_request(request.headers.get("content-type"), await request.body())
            response = await provider.token.handle(token_request, authorization=auth_header)
        except OAuthError as e:
            headers = dict(NO_STORE_HEADERS)
            if isinstance(e, InvalidClientError) and auth_header and auth_header.lower().startswith("basic"):
                headers["WWW-Authenticate"] = 'Basic realm="funid"'
            return error_response(e, headers)
        return JSONResponse(response.model_dump(), headers=NO_STORE_HEADERS)

    async def userinfo(request: Request) -> JSONResponse:
        try:
            claims = await provider.userinfo.get_userinfo(request.headers.get("authorization"))
        except OAuthError as e:
            return error_response(e, {"WWW-Authenticate": bearer_challenge(e), "Cache-Control": "no-store"})
        return JSONResponse(claims, headers={"Cache-Control": "no-store"})

    app.add_api_route("/oauth/userinfo", userinfo, methods=["GET", "POST"])

    @app.get("/.well-known/openid-configuration")
    async def openid_configuration() -> JSONResponse:
        document = provider.openid_configuration()
        return JSONResponse(
            document.model_dump(), headers={**PUBLIC_HEADERS, "Cache-Control": DISCOVERY_CACHE_CONTROL}
        )

    @app.get("/.well-known/jwks.json")
    async def jwks() -> Response:
        try:
            key_set, cache_control = provider.jwks()
        except OAuthError as e:
            return error_response(e, PUBLIC_HEADERS)
        return JSONResponse(key_set.model_dump(), headers={**PUBLIC_HEADERS, "Cache-Control": cache_control})

    return app
