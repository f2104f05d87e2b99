import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool

from tokenauth.config import settings
from tokenauth.db import SessionLocal, init_db
from tokenauth.oauth.client_auth import (
    ClientAuthenticator,
    UserAuthenticator,
    static_client_authenticator,
)
from tokenauth.oauth.errors import register_oauth_exception_handlers
from tokenauth.oauth.lifecycle import TokenLifecycle
from tokenauth.oauth.models import Token
from tokenauth.oauth.routes import require_token
from tokenauth.oauth.routes import router as oauth_router
from tokenauth.oauth.service import AuthorizationService
from tokenauth.oauth.store import SQLTokenStore

logger = logging.getLogger(__name__)


async def sweep_periodically(lifecycle: TokenLifecycle, interval: int) -> None:
    """Background task: delete refresh-expired tokens every `interval` seconds."""
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(lifecycle.sweep_expired_refresh_tokens)
        except Exception:
            logger.exception("Expired token sweep failed")


def create_app(
    service: Optional[AuthorizationService] = None,
    client_authenticator: Optional[ClientAuthenticator] = None,
    user_authenticator: Optional[UserAuthenticator] = None,
) -> FastAPI:
    """
    Build the token server.

    Without a service the app uses the configured database; without a client
    authenticator it accepts the clients listed in settings.CLIENTS.
    """
    if service is None:
        service = AuthorizationService(TokenLifecycle(SQLTokenStore(SessionLocal)))
        prepare_storage = init_db
    else:
        prepare_storage = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create tables, sweep expired tokens, start the recurring sweep."""
        if prepare_storage is not None:
            prepare_storage()
        lifecycle = app.state.authorization_service.lifecycle
        await run_in_threadpool(lifecycle.sweep_expired_refresh_tokens)

        task = None
        interval = lifecycle.settings.SWEEP_INTERVAL_SECONDS
        if interval > 0:
            task = asyncio.create_task(sweep_periodically(lifecycle, interval))
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

    app = FastAPI(title="Token Server", version="0.1.0", lifespan=lifespan)
    app.state.authorization_service = service
    app.state.client_authenticator = client_authenticator or static_client_authenticator(
        settings.CLIENTS
    )
    app.state.user_authenticator = user_authenticator

    app.include_router(oauth_router)
    register_oauth_exception_handlers(app)

    @app.get("/")
    def root():
        return {"status": "ok"}

    @app.get("/me")
    def me(token: Token = require_token()):
        """Identity behind the presented bearer token."""
        return {"user_id": token.user_id, "scope": token.scope}

    return app


logging.basicConfig(level=settings.LOG_LEVEL)

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tokenauth.main:app", host="127.0.0.1", port=8000, reload=True)
