"""
Token storage backends.

The lifecycle only talks to the TokenStore interface; any engine that can
create, find by field, update and delete rows can back it. Two stores ship
here: SQLTokenStore on SQLAlchemy and MemoryTokenStore for tests and
single-process deployments.

Every store must hand out strictly increasing ids and reject duplicate
access/refresh token values; rotation relies on both.
"""

import itertools
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from tokenauth.oauth.errors import StorageError
from tokenauth.oauth.models import AccessToken, Token


TOKEN_FIELDS = frozenset(
    {
        "user_id",
        "access_token",
        "refresh_token",
        "scope",
        "access_token_expires_at",
        "refresh_token_expires_at",
        "parent_id",
    }
)
UNIQUE_FIELDS = ("access_token", "refresh_token")


def _check_fields(fields: Dict[str, Any]) -> None:
    unknown = set(fields) - TOKEN_FIELDS
    if unknown:
        raise ValueError(f"Unknown token fields: {', '.join(sorted(unknown))}")


class TokenStore(ABC):
    """Durable keyed storage of token records."""

    @abstractmethod
    def create(self, **fields) -> int:
        """Persist a new token and return its id."""

    @abstractmethod
    def find_one(self, **match) -> Optional[Token]:
        """Return the first token whose fields equal `match`, or None."""

    @abstractmethod
    def find_all(self, **match) -> List[Token]:
        """Return every token whose fields equal `match`, ordered by id."""

    @abstractmethod
    def get(self, token_id: int) -> Optional[Token]:
        """Return the token with this id, or None."""

    @abstractmethod
    def update_fields(self, token_id: int, **fields) -> bool:
        """Update fields of an existing token; False if it no longer exists."""

    @abstractmethod
    def delete(self, token_id: int) -> bool:
        """
        Delete a token. Deleting a missing id is not an error.

        Returns True only when this call removed the row, so callers can use
        it as a compare-and-delete.
        """

    def all(self) -> List[Token]:
        return self.find_all()


class SQLTokenStore(TokenStore):
    """
    TokenStore over the access_tokens table.

    Each operation runs in its own short session. SQLAlchemy failures are
    rolled back and re-raised as StorageError; nothing is retried.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _run(self, operation, commit: bool = False):
        db: Session = self.session_factory()
        try:
            result = operation(db)
            if commit:
                db.commit()
            return result
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(str(exc)) from exc
        finally:
            db.close()

    def create(self, **fields) -> int:
        _check_fields(fields)

        def operation(db: Session) -> int:
            row = AccessToken(**fields)
            db.add(row)
            db.flush()
            return row.id

        return self._run(operation, commit=True)

    def find_one(self, **match) -> Optional[Token]:
        _check_fields(match)

        def operation(db: Session) -> Optional[Token]:
            row = db.query(AccessToken).filter_by(**match).order_by(AccessToken.id).first()
            return Token.from_row(row) if row else None

        return self._run(operation)

    def find_all(self, **match) -> List[Token]:
        _check_fields(match)

        def operation(db: Session) -> List[Token]:
            rows = db.query(AccessToken).filter_by(**match).order_by(AccessToken.id).all()
            return [Token.from_row(row) for row in rows]

        return self._run(operation)

    def get(self, token_id: int) -> Optional[Token]:
        def operation(db: Session) -> Optional[Token]:
            row = db.get(AccessToken, token_id)
            return Token.from_row(row) if row else None

        return self._run(operation)

    def update_fields(self, token_id: int, **fields) -> bool:
        _check_fields(fields)

        def operation(db: Session) -> bool:
            updated = (
                db.query(AccessToken)
                .filter(AccessToken.id == token_id)
                .update(fields, synchronize_session=False)
            )
            return updated > 0

        return self._run(operation, commit=True)

    def delete(self, token_id: int) -> bool:
        def operation(db: Session) -> bool:
            deleted = (
                db.query(AccessToken)
                .filter(AccessToken.id == token_id)
                .delete(synchronize_session=False)
            )
            return deleted > 0

        return self._run(operation, commit=True)


class MemoryTokenStore(TokenStore):
    """Process-local TokenStore; a single lock makes each call atomic."""

    def __init__(self):
        self._tokens: Dict[int, Token] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create(self, **fields) -> int:
        _check_fields(fields)
        with self._lock:
            for name in UNIQUE_FIELDS:
                value = fields.get(name)
                if any(getattr(t, name) == value for t in self._tokens.values()):
                    raise StorageError(f"Duplicate value for unique field {name}")
            token_id = next(self._ids)
            self._tokens[token_id] = Token(id=token_id, **fields)
            return token_id

    def _matches(self, token: Token, match: Dict[str, Any]) -> bool:
        return all(getattr(token, name) == value for name, value in match.items())

    def find_one(self, **match) -> Optional[Token]:
        found = self.find_all(**match)
        return found[0] if found else None

    def find_all(self, **match) -> List[Token]:
        _check_fields(match)
        with self._lock:
            return [
                replace(token)
                for token_id, token in sorted(self._tokens.items())
                if self._matches(token, match)
            ]

    def get(self, token_id: int) -> Optional[Token]:
        with self._lock:
            token = self._tokens.get(token_id)
            return replace(token) if token else None

    def update_fields(self, token_id: int, **fields) -> bool:
        _check_fields(fields)
        with self._lock:
            token = self._tokens.get(token_id)
            if token is None:
                return False
            self._tokens[token_id] = replace(token, **fields)
            return True

    def delete(self, token_id: int) -> bool:
        with self._lock:
            return self._tokens.pop(token_id, None) is not None
