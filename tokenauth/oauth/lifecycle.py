"""
Token lifecycle: issuance, bearer validation, refresh rotation and cleanup.

A token row moves through these states:

    Active          access and refresh both unexpired
    AccessExpired   access expired, refresh still valid (row kept)
    RefreshExpired  refresh expired; terminal, the row is deleted
    Revoked         deleted explicitly, from any non-terminal state

Rotation under the "wait" policy links the new token to the old one through
parent_id. The old token stays usable for a grace period and is deleted the
first time the new access token is presented.

Nothing is cached between calls: every operation re-reads the store, so a
revocation made elsewhere is seen by the next request.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from tokenauth.config import RotationPolicy, Settings, settings as default_settings
from tokenauth.oauth.errors import InvalidAccessToken, InvalidRefreshToken, InvalidScope
from tokenauth.oauth.models import Token
from tokenauth.oauth.store import TokenStore
from tokenauth.oauth.tokens import RandomTokenGenerator, TokenGenerator

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenLifecycle:
    def __init__(
        self,
        store: TokenStore,
        generator: Optional[TokenGenerator] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.settings = settings or default_settings
        self.generator = generator or RandomTokenGenerator(self.settings.TOKEN_LENGTH)
        self.clock = clock

    def issue(self, user_id: int = 0, scope: str = "", parent_id: int = 0) -> Token:
        """
        Create and persist a new token pair.

        Args:
            user_id: Resource owner; 0 when no user is involved
            scope: Space-separated granted scopes
            parent_id: Id of the token this one was rotated from, 0 for a root token

        Returns:
            The stored Token
        """
        now = self.clock()
        fields = {
            "user_id": user_id or 0,
            "access_token": self.generator.generate(),
            "refresh_token": self.generator.generate(),
            "scope": scope or "",
            "access_token_expires_at": now
            + timedelta(seconds=self.settings.ACCESS_TOKEN_EXPIRE_SECONDS),
            "refresh_token_expires_at": now
            + timedelta(seconds=self.settings.REFRESH_TOKEN_EXPIRE_SECONDS),
            "parent_id": parent_id or 0,
        }
        token_id = self.store.create(**fields)
        token = Token(id=token_id, **fields)

        logger.info(
            "Issued token id=%s user_id=%s parent_id=%s scope=%r",
            token.id,
            token.user_id,
            token.parent_id,
            token.scope,
        )
        return token

    def validate(self, bearer: str, scopes: Optional[Iterable[str]] = None) -> Token:
        """
        Resolve a bearer access token to its Token.

        The first successful use of a rotated token deletes its parent and
        detaches it from the chain.

        Raises:
            InvalidAccessToken: unknown, access-expired or refresh-expired token
            InvalidScope: the token does not cover every requested scope
        """
        token = self.store.find_one(access_token=bearer)
        if token is None:
            logger.warning("Unknown access token presented")
            raise InvalidAccessToken()

        if scopes is not None:
            scopes = list(scopes)
            if not token.has_scopes(scopes):
                logger.warning(
                    "Token id=%s lacks scopes %s (has %r)", token.id, scopes, token.scope
                )
                raise InvalidScope(scopes)

        now = self.clock()
        if token.is_refresh_expired(now):
            logger.info("Refresh window of token id=%s has passed, deleting", token.id)
            self.invalidate(token)
            raise InvalidAccessToken()

        if token.is_access_expired(now):
            logger.info("Access token id=%s is expired", token.id)
            raise InvalidAccessToken()

        if token.parent_id:
            self._finalize_rotation(token)

        return token

    def _finalize_rotation(self, token: Token) -> None:
        """Cut the chain once the new access token is actually used."""
        parent_id = token.parent_id
        if not self.store.delete(parent_id):
            logger.debug("Parent token id=%s of id=%s was already gone", parent_id, token.id)
        self.store.update_fields(token.id, parent_id=0)
        token.parent_id = 0
        logger.info("Token id=%s in use, parent id=%s invalidated", token.id, parent_id)

    def rotate(self, refresh_token: str, policy: Optional[RotationPolicy] = None) -> Token:
        """
        Exchange a refresh token for a new token pair.

        Store writes touch the old token first and insert the new one last, so
        a crash mid-rotation leaves the old token usable and no orphan child.

        Args:
            refresh_token: The refresh token value presented by the client
            policy: Rotation policy; defaults to REFRESH_TOKEN_ROTATION

        Returns:
            The newly issued Token, carrying the old token's user and scope

        Raises:
            InvalidRefreshToken: unknown or expired refresh token, or a
                concurrent rotation of the same token won
        """
        policy = RotationPolicy(policy or self.settings.REFRESH_TOKEN_ROTATION)

        old = self.store.find_one(refresh_token=refresh_token)
        if old is None:
            logger.warning("Unknown refresh token presented")
            raise InvalidRefreshToken()

        now = self.clock()
        if old.is_refresh_expired(now):
            logger.info("Refresh token of token id=%s is expired, deleting", old.id)
            self.invalidate(old)
            raise InvalidRefreshToken()

        if policy is RotationPolicy.INVALIDATE_IMMEDIATELY:
            if not self.store.delete(old.id):
                logger.warning("Token id=%s was consumed by a concurrent rotation", old.id)
                raise InvalidRefreshToken()
            token = self.issue(user_id=old.user_id, scope=old.scope)
            logger.info("Rotated token id=%s -> id=%s (old invalidated)", old.id, token.id)
            return token

        grace_expiry = now + timedelta(seconds=self.settings.GRACE_PERIOD_SECONDS)
        if not self.store.update_fields(old.id, refresh_token_expires_at=grace_expiry):
            logger.warning("Token id=%s disappeared during rotation", old.id)
            raise InvalidRefreshToken()

        # Children left behind by an earlier, abandoned rotation of the same token
        for sibling in self.store.find_all(parent_id=old.id):
            self.store.delete(sibling.id)
            logger.info("Deleted stale child id=%s of token id=%s", sibling.id, old.id)

        token = self.issue(user_id=old.user_id, scope=old.scope, parent_id=old.id)
        self._settle_children(old.id, token)

        logger.info(
            "Rotated token id=%s -> id=%s (old valid until %s)",
            old.id,
            token.id,
            grace_expiry.isoformat(),
        )
        return token

    def _settle_children(self, parent_id: int, token: Token) -> None:
        """
        Keep a single live child per parent when rotations race.

        The lowest surviving child wins, matched by token value as well as id.
        A losing rotation removes its own token, if a concurrent sibling sweep
        has not already, and reports the refresh token as spent.
        """
        children = self.store.find_all(parent_id=parent_id)
        if children:
            winner = min(children, key=lambda child: child.id)
            if winner.id == token.id and winner.access_token == token.access_token:
                return

        own = self.store.find_one(access_token=token.access_token)
        if own is not None:
            self.store.delete(own.id)
        logger.warning(
            "Rotation of token id=%s lost to a concurrent rotation, dropped id=%s",
            parent_id,
            token.id,
        )
        raise InvalidRefreshToken()

    def invalidate(self, token: Token) -> None:
        """Delete a token. Already-deleted tokens are not an error."""
        if not self.store.delete(token.id):
            logger.debug("Token id=%s was already invalidated", token.id)
        else:
            logger.info("Invalidated token id=%s", token.id)

    def sweep_expired_refresh_tokens(self) -> int:
        """
        Delete every token whose refresh window has passed.

        validate and rotate already clean up lazily; this bounds storage from
        tokens nobody presents again.

        Returns:
            Number of tokens deleted
        """
        now = self.clock()
        removed = 0
        for token in self.store.all():
            if token.is_refresh_expired(now) and self.store.delete(token.id):
                removed += 1

        logger.info("Swept %d expired refresh token(s)", removed)
        return removed
