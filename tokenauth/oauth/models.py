from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text

from tokenauth.db import Base

TOKEN_TYPE = "bearer"


class AccessToken(Base):
    __tablename__ = "access_tokens"
    # Ids must never be reused; SQLite only guarantees that with AUTOINCREMENT
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, default=0, index=True)
    access_token = Column(String(255), unique=True, nullable=False, index=True)
    refresh_token = Column(String(255), unique=True, nullable=False, index=True)
    scope = Column(Text, nullable=False, default="")

    access_token_expires_at = Column(DateTime(timezone=True), nullable=False)
    refresh_token_expires_at = Column(DateTime(timezone=True), nullable=False)

    # Token this one was rotated from; 0 for root tokens. Not a foreign key:
    # the parent is deleted once the chain is finalized.
    parent_id = Column(Integer, nullable=False, default=0, index=True)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class Token:
    """A persisted access/refresh token pair, independent of the store backing it."""

    id: int
    access_token: str
    refresh_token: str
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime
    user_id: int = 0
    scope: str = ""
    parent_id: int = 0

    def __post_init__(self):
        self.access_token_expires_at = _as_utc(self.access_token_expires_at)
        self.refresh_token_expires_at = _as_utc(self.refresh_token_expires_at)
        self.user_id = self.user_id or 0
        self.scope = self.scope or ""
        self.parent_id = self.parent_id or 0

    @classmethod
    def from_row(cls, row: AccessToken) -> "Token":
        return cls(
            id=row.id,
            user_id=row.user_id,
            access_token=row.access_token,
            refresh_token=row.refresh_token,
            scope=row.scope,
            access_token_expires_at=row.access_token_expires_at,
            refresh_token_expires_at=row.refresh_token_expires_at,
            parent_id=row.parent_id,
        )

    @property
    def scopes(self) -> set:
        return set(self.scope.split())

    def has_scopes(self, scopes: Iterable[str]) -> bool:
        """True when every requested scope is granted to this token."""
        return set(scopes).issubset(self.scopes)

    def is_access_expired(self, now: datetime) -> bool:
        return now >= self.access_token_expires_at

    def is_refresh_expired(self, now: datetime) -> bool:
        return now >= self.refresh_token_expires_at

    def to_json(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Token response body per RFC 6749 Section 5.1.

        expires_in counts down from now and may be negative; scope is left out
        entirely for unscoped tokens.
        """
        now = now or datetime.now(timezone.utc)
        content = {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_in": int((self.access_token_expires_at - now).total_seconds()),
            "token_type": TOKEN_TYPE,
        }
        if self.scope:
            content["scope"] = self.scope
        return content
