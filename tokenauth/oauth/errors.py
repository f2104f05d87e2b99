"""
OAuth 2.0 error taxonomy for token issuance and bearer validation.

Every failure the core can report is an OAuthError subclass carrying the
RFC 6749 error code, a human-readable description and the HTTP status the
web layer should answer with. The core only raises these; rendering them
into a response is done by the handlers registered at the bottom of this
module.

References:
- RFC 6749 Section 5.2: Token Error Response
- RFC 6750 Section 3: The WWW-Authenticate Response Header Field
"""

import logging
from enum import Enum
from typing import Dict, List, Optional

from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class OAuthErrorCode(str, Enum):
    """
    OAuth 2.0 error codes produced by this server.

    Token endpoint errors (RFC 6749 Section 5.2):
    - invalid_request
    - invalid_client
    - invalid_grant
    - unsupported_grant_type
    - invalid_scope

    Resource access errors:
    - access_denied
    - server_error
    """

    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    INVALID_SCOPE = "invalid_scope"
    ACCESS_DENIED = "access_denied"
    SERVER_ERROR = "server_error"


class OAuthError(Exception):
    """
    Base OAuth error exception.

    Attributes:
        error_code: The OAuth error code enum value
        description: Human-readable error description
        status_code: HTTP status the error maps to
    """

    error_code: OAuthErrorCode = OAuthErrorCode.INVALID_REQUEST
    description: str = ""
    status_code: int = 400

    def __init__(
        self,
        error_code: Optional[OAuthErrorCode] = None,
        description: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        if error_code is not None:
            self.error_code = error_code
        if description is not None:
            self.description = description
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.description or self.error_code.value)

    def to_dict(self) -> Dict[str, str]:
        return {
            "error": self.error_code.value,
            "error_description": self.description,
        }


class InvalidClient(OAuthError):
    error_code = OAuthErrorCode.INVALID_CLIENT
    description = "Client id was not found in the headers or body"


class MissingParameters(OAuthError):
    """One or more required request parameters are absent."""

    error_code = OAuthErrorCode.INVALID_REQUEST

    def __init__(self, parameters: List[str]):
        self.parameters = list(parameters)
        super().__init__(description=_describe_missing(self.parameters))


class InvalidGrantType(OAuthError):
    error_code = OAuthErrorCode.UNSUPPORTED_GRANT_TYPE
    description = (
        "The authorization grant type is not supported by the authorization server"
    )


class InvalidUsernamePassword(OAuthError):
    error_code = OAuthErrorCode.INVALID_GRANT
    description = "Invalid username and password combination"


class InvalidAccessToken(OAuthError):
    error_code = OAuthErrorCode.INVALID_GRANT
    description = "Invalid access token"
    status_code = 401


class InvalidRefreshToken(OAuthError):
    error_code = OAuthErrorCode.INVALID_GRANT
    description = "Invalid refresh token"


class AccessDenied(OAuthError):
    error_code = OAuthErrorCode.ACCESS_DENIED
    description = "OAuth2 authentication required"
    status_code = 401


class InvalidScope(OAuthError):
    """The token's scope set does not cover the scopes a route requires."""

    error_code = OAuthErrorCode.INVALID_SCOPE

    def __init__(self, scopes: List[str]):
        self.scopes = list(scopes)
        super().__init__(
            description=f"Not authorized to request the scopes [{', '.join(self.scopes)}]"
        )


class StorageError(Exception):
    """A token store operation failed (connectivity, constraint violation)."""


def _describe_missing(parameters: List[str]) -> str:
    quoted = [f'"{name}"' for name in parameters]
    if len(quoted) <= 1:
        return f"Missing parameter. {''.join(quoted)} required"
    return f"Missing parameters. {', '.join(quoted[:-1])} and {quoted[-1]} required"


def create_token_error_response(error: OAuthError) -> JSONResponse:
    """
    Create a JSON error response for an OAuth error.

    As per RFC 6749 Section 5.2 the body carries "error" and
    "error_description". Errors answered with 401 also carry a
    WWW-Authenticate challenge per RFC 6750 Section 3.

    Args:
        error: The OAuth error raised by the core

    Returns:
        JSONResponse with the error's status code and no-store headers

    Example:
        >>> response = create_token_error_response(InvalidRefreshToken())
        >>> # Returns HTTP 400 with body: {"error": "invalid_grant", "error_description": "..."}
    """
    headers = {
        "Cache-Control": "no-store",
        "Pragma": "no-cache",
    }
    if error.status_code == 401:
        headers["WWW-Authenticate"] = f'Bearer error="{error.error_code.value}"'

    return JSONResponse(
        status_code=error.status_code,
        content=error.to_dict(),
        headers=headers,
    )


def register_oauth_exception_handlers(app) -> None:
    """
    Register OAuth and storage exception handlers with the FastAPI application.

    Args:
        app: The FastAPI application instance
    """

    @app.exception_handler(OAuthError)
    async def oauth_error_handler(request, exc: OAuthError):
        """Handle OAuth errors and return proper error responses."""
        return create_token_error_response(exc)

    @app.exception_handler(StorageError)
    async def storage_error_handler(request, exc: StorageError):
        """Storage failures are never retried here; surface them as server_error."""
        logger.error("Token store failure on %s %s: %s", request.method, request.url.path, exc)
        return create_token_error_response(
            OAuthError(
                error_code=OAuthErrorCode.SERVER_ERROR,
                description="The token store is unavailable",
                status_code=500,
            )
        )
