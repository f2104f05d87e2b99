from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from tokenauth.config import settings


def make_engine(database_url: str):
    """
    Build an engine for the given URL.

    In-memory SQLite needs StaticPool so every session shares one database;
    SQLite also needs check_same_thread=False under FastAPI's threadpool.
    """
    if database_url.startswith("sqlite:///:memory:"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(database_url, connect_args=connect_args)


engine = make_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def init_db(bind=None) -> None:
    """Create the token table if it does not exist yet."""
    # Import models so SQLAlchemy registers them on Base.metadata
    from tokenauth.oauth import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
