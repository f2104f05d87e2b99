import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tokenauth.config import RotationPolicy
from tokenauth.oauth.client_auth import UserAuthenticator
from tokenauth.oauth.errors import InvalidGrantType, InvalidUsernamePassword, MissingParameters
from tokenauth.oauth.lifecycle import TokenLifecycle
from tokenauth.oauth.models import Token
from tokenauth.oauth.request import IncomingRequest

logger = logging.getLogger(__name__)


class GrantType(str, Enum):
    CLIENT_CREDENTIALS = "client_credentials"
    PASSWORD = "password"
    REFRESH_TOKEN = "refresh_token"
    AUTHORIZATION_CODE = "authorization_code"

    @classmethod
    def parse(cls, value: str) -> "GrantType":
        try:
            return cls(value)
        except ValueError:
            logger.warning("Invalid grant_type: %s", value)
            raise InvalidGrantType() from None


@dataclass
class Grant:
    """
    Identity resolved from a token request.

    `token` is set when resolving the grant already persisted the new token
    (refresh_token rotation); otherwise the caller issues one.
    """

    user_id: int = 0
    scope: str = ""
    parent_id: int = 0
    token: Optional[Token] = None


def require_params(request: IncomingRequest, *names: str) -> list:
    """Return the values of `names`, or raise listing every missing one."""
    values = [request.param(name) for name in names]
    missing = [name for name, value in zip(names, values) if value is None]
    if missing:
        raise MissingParameters(missing)
    return values


def process_grant(
    grant_type: GrantType,
    request: IncomingRequest,
    lifecycle: TokenLifecycle,
    user_authenticator: Optional[UserAuthenticator] = None,
    policy: Optional[RotationPolicy] = None,
) -> Grant:
    """
    Resolve (user_id, scope, parent_id) for an authenticated client's request.

    Supports:
    - client_credentials: no user, scope from the request
    - password: user from the user authenticator, scope from the request
    - refresh_token: rotates the presented refresh token
    - authorization_code: not implemented; treated like client_credentials
    """
    scope = request.param("scope") or ""

    if grant_type is GrantType.CLIENT_CREDENTIALS:
        return Grant(scope=scope)

    if grant_type is GrantType.PASSWORD:
        username, password = require_params(request, "username", "password")
        user_id = user_authenticator(username, password) if user_authenticator else None
        if user_id is None:
            logger.warning("Invalid username (%s) and/or password (***)", username)
            raise InvalidUsernamePassword()
        return Grant(user_id=user_id, scope=scope)

    if grant_type is GrantType.REFRESH_TOKEN:
        (refresh_token,) = require_params(request, "refresh_token")
        token = lifecycle.rotate(refresh_token, policy)
        return Grant(
            user_id=token.user_id,
            scope=token.scope,
            parent_id=token.parent_id,
            token=token,
        )

    # TODO: authorization_code needs an authorize endpoint and code storage
    # before it can verify anything; until then it issues client tokens.
    logger.warning("authorization_code grant is not implemented, issuing a client token")
    return Grant(scope=scope)
