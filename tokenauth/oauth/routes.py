from typing import Optional

from fastapi import APIRouter, Depends, Form, Request

from tokenauth.oauth.models import Token
from tokenauth.oauth.request import FormRequest
from tokenauth.oauth.service import AuthorizationService
from tokenauth.oauth.utils import create_token_response, get_authorization_service

router = APIRouter(prefix="/oauth", tags=["oauth"])


@router.post("/token")
def token(
    request: Request,
    grant_type: Optional[str] = Form(None),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
    username: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    refresh_token: Optional[str] = Form(None),
    scope: Optional[str] = Form(None),
    service: AuthorizationService = Depends(get_authorization_service),
):
    """
    OAuth 2.0 Token Endpoint.

    Supports:
    - client_credentials grant (RFC 6749 §4.4)
    - password grant (RFC 6749 §4.3)
    - refresh_token grant (RFC 6749 §6)

    Client credentials come from HTTP Basic auth or from the form. Any
    parameter may also be sent in the query string.
    """
    incoming = FormRequest.from_fastapi(
        request,
        form={
            "grant_type": grant_type,
            "client_id": client_id,
            "client_secret": client_secret,
            "username": username,
            "password": password,
            "refresh_token": refresh_token,
            "scope": scope,
        },
    )
    content = service.issue_token(
        incoming,
        client_authenticator=request.app.state.client_authenticator,
        user_authenticator=request.app.state.user_authenticator,
    )
    return create_token_response(content)


def require_token(*scopes: str):
    """
    Dependency factory: require a valid bearer token carrying `scopes`.

    Example:
        >>> @app.get("/me")
        ... def me(token: Token = require_token("profile")):
        ...     return {"user_id": token.user_id}
    """

    def _check(
        request: Request,
        service: AuthorizationService = Depends(get_authorization_service),
    ) -> Token:
        return service.authorize_request(
            FormRequest.from_fastapi(request),
            scopes=list(scopes) if scopes else None,
        )

    return Depends(_check)
