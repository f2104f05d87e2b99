"""
Client credentials for the token endpoint. RFC 6749 §2.3.1.
Credentials via Authorization: Basic base64(client_id:client_secret) or
client_id + client_secret as form/query parameters. The header wins when both
are sent; a header that is present but not valid Basic is rejected outright.
"""
import base64
import binascii
import logging
import secrets
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from tokenauth.oauth.request import IncomingRequest

logger = logging.getLogger(__name__)

# (grant_type, client_id, client_secret) -> bool
ClientAuthenticator = Callable[[str, str, str], bool]

# (username, password) -> user id, or None when the credentials are wrong
UserAuthenticator = Callable[[str, str], Optional[int]]


@dataclass(frozen=True)
class ClientCredentials:
    client_id: str
    client_secret: str


def parse_basic(header_value: str) -> Optional[ClientCredentials]:
    """Parse 'Basic <base64(client_id:client_secret)>'. Returns None if malformed."""
    parts = header_value.split(" ")
    if len(parts) != 2 or parts[0] != "Basic":
        return None
    try:
        decoded = base64.b64decode(parts[1], validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    client_id, sep, client_secret = decoded.partition(":")
    if not sep or not client_id:
        return None
    return ClientCredentials(client_id, client_secret)


def get_client_credentials(request: IncomingRequest) -> Optional[ClientCredentials]:
    """Get client credentials from the Authorization header or from parameters."""
    authorization = request.header("Authorization")
    if authorization is not None:
        credentials = parse_basic(authorization)
        if credentials is None:
            logger.warning("Missing 'Authorization: Basic <base64_encoded>' header")
        return credentials

    client_id = request.param("client_id")
    client_secret = request.param("client_secret")
    if client_id and client_secret is not None:
        logger.debug("Using client_id and client_secret from request parameters")
        return ClientCredentials(client_id, client_secret)
    return None


def static_client_authenticator(clients: Mapping[str, str]) -> ClientAuthenticator:
    """
    Authenticator over a fixed client_id -> client_secret table.

    Every grant type is allowed for a known client; secrets are compared in
    constant time.
    """

    def authenticate(grant_type: str, client_id: str, client_secret: str) -> bool:
        expected = clients.get(client_id)
        if expected is None:
            return False
        return secrets.compare_digest(expected.encode(), client_secret.encode())

    return authenticate
