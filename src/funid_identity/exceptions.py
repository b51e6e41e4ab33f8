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
Custom exceptions for the funid-identity package.

OAuth protocol failures carry their RFC 6749 error code and HTTP status so the
HTTP layer can render them without inspecting the message.
"""


class FunIDError(Exception):
    """Base exception for all funid-identity errors."""


class OAuthError(FunIDError):
    """
    An error reported to the caller in the OAuth 2.0 error-response shape.

    Attributes:
        error (str): The OAuth error code (e.g. ``invalid_grant``).
        status_code (int): The HTTP status used when rendering the error.
        error_description (str): Human readable description.
    """

    error: str = "invalid_request"
    status_code: int = 400

    def __init__(self, error_description: str, status_code: int | None = None) -> None:
        super().__init__(error_description)
        self.error_description = error_description
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.error_description}


class InvalidRequestError(OAuthError):
    """Missing, repeated or malformed request parameter."""

    error = "invalid_request"


class InvalidClientError(OAuthError):
    """Unknown or inactive client, or failed client authentication."""

    error = "invalid_client"
    status_code = 401


class InvalidGrantError(OAuthError):
    """Authorization code or refresh token is invalid, expired, used, revoked or mismatched."""

    error = "invalid_grant"


class InvalidScopeError(OAuthError):
    """No requested scope is supported."""

    error = "invalid_scope"


class UnsupportedResponseTypeError(OAuthError):
    error = "unsupported_response_type"


class UnsupportedGrantTypeError(OAuthError):
    error = "unsupported_grant_type"


class AccessDeniedError(OAuthError):
    """The resource owner declined the authorization request."""

    error = "access_denied"


class InvalidTokenError(OAuthError):
    """Bearer token missing, malformed, expired or not signed by us."""

    error = "invalid_token"
    status_code = 401


class ServerError(OAuthError):
    """Upstream or internal failure. Clients may retry."""

    error = "server_error"
    status_code = 500


class AuthorizationRedirectError(FunIDError):
    """
    An authorization error that must be delivered by redirecting to the client.

    Raised only once the redirect_uri has been verified against the client registration.
    """

    def __init__(self, cause: OAuthError, redirect_to: str) -> None:
        super().__init__(cause.error_description)
        self.cause = cause
        self.redirect_to = redirect_to


class UpstreamError(FunIDError):
    """Raised when the persistence layer or the Identity Store fails or is unreachable."""


class KeyConfigurationError(FunIDError):
    """Raised when the signing key is missing or cannot be imported."""
