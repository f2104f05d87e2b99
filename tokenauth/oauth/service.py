import logging
from typing import Any, Dict, Iterable, Optional

from tokenauth.config import RotationPolicy
from tokenauth.oauth.client_auth import (
    ClientAuthenticator,
    UserAuthenticator,
    get_client_credentials,
)
from tokenauth.oauth.errors import AccessDenied, InvalidClient, MissingParameters
from tokenauth.oauth.grants import GrantType, process_grant
from tokenauth.oauth.lifecycle import TokenLifecycle
from tokenauth.oauth.models import Token
from tokenauth.oauth.request import IncomingRequest

logger = logging.getLogger(__name__)

BEARER_SCHEME = "Bearer"


class AuthorizationService:
    """
    Entry points for route handlers.

    issue_token answers an /oauth/token request; authorize_request guards a
    protected route. Both raise OAuthError subclasses and never touch the
    response themselves.
    """

    def __init__(
        self,
        lifecycle: TokenLifecycle,
        rotation_policy: Optional[RotationPolicy] = None,
    ):
        self.lifecycle = lifecycle
        self.rotation_policy = rotation_policy

    def issue_token(
        self,
        request: IncomingRequest,
        client_authenticator: ClientAuthenticator,
        user_authenticator: Optional[UserAuthenticator] = None,
    ) -> Dict[str, Any]:
        """
        Handle a token request for any supported grant type.

        Args:
            request: The incoming token request
            client_authenticator: Verifies (grant_type, client_id, client_secret)
            user_authenticator: Verifies (username, password) for password grants

        Returns:
            Token response body (access_token, refresh_token, expires_in, ...)

        Raises:
            MissingParameters, InvalidGrantType, InvalidClient,
            InvalidUsernamePassword, InvalidRefreshToken
        """
        grant_type_value = request.param("grant_type")
        if grant_type_value is None:
            raise MissingParameters(["grant_type"])
        grant_type = GrantType.parse(grant_type_value)

        credentials = get_client_credentials(request)
        if credentials is None:
            logger.warning("client_id and/or client_secret are missing or malformed")
            raise InvalidClient()
        if not client_authenticator(
            grant_type.value, credentials.client_id, credentials.client_secret
        ):
            logger.warning("Client authentication failed for client_id=%s", credentials.client_id)
            raise InvalidClient()

        grant = process_grant(
            grant_type,
            request,
            self.lifecycle,
            user_authenticator=user_authenticator,
            policy=self.rotation_policy,
        )
        token = grant.token or self.lifecycle.issue(
            user_id=grant.user_id,
            scope=grant.scope,
            parent_id=grant.parent_id,
        )

        logger.info(
            "%s grant: token id=%s issued to client_id=%s",
            grant_type.value,
            token.id,
            credentials.client_id,
        )
        return token.to_json(self.lifecycle.clock())

    def authorize_request(
        self,
        request: IncomingRequest,
        scopes: Optional[Iterable[str]] = None,
    ) -> Token:
        """
        Validate the bearer token of a request to a protected route.

        Raises:
            AccessDenied: no 'Authorization: Bearer <token>' header
            InvalidAccessToken, InvalidScope: see TokenLifecycle.validate
        """
        logger.debug("Validating authorization in request %s %s", request.method, request.path)
        bearer = parse_bearer(request.header("Authorization"))
        if bearer is None:
            raise AccessDenied()
        return self.lifecycle.validate(bearer, scopes)


def parse_bearer(header_value: Optional[str]) -> Optional[str]:
    """Token from 'Bearer <token>'; None for any other shape."""
    if not header_value:
        return None
    parts = header_value.split(" ")
    if len(parts) != 2 or parts[0] != BEARER_SCHEME or not parts[1]:
        return None
    return parts[1]
