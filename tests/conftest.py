"""
Shared fixtures. In-memory SQLite so tests never touch the filesystem, a
movable clock and a predictable token generator.
"""

import base64
import itertools
import os
from datetime import datetime, timedelta, timezone

os.environ["TOKENAUTH_DATABASE_URL"] = "sqlite:///:memory:"

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from tokenauth.config import RotationPolicy, Settings  # noqa: E402
from tokenauth.db import init_db, make_engine  # noqa: E402
from tokenauth.oauth.lifecycle import TokenLifecycle  # noqa: E402
from tokenauth.oauth.request import FormRequest  # noqa: E402
from tokenauth.oauth.service import AuthorizationService  # noqa: E402
from tokenauth.oauth.store import MemoryTokenStore, SQLTokenStore  # noqa: E402
from tokenauth.oauth.tokens import TokenGenerator  # noqa: E402

CLIENT_ID = "test_client"
CLIENT_SECRET = "test_secret"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class CountingTokenGenerator(TokenGenerator):
    """Fixed-length, unique, predictable tokens: tok-000...1, tok-000...2, ..."""

    def __init__(self, length: int = 64):
        self.length = length
        self._counter = itertools.count(1)

    def generate(self) -> str:
        return f"tok-{next(self._counter):0{self.length - 4}d}"


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def generator():
    return CountingTokenGenerator()


@pytest.fixture
def test_settings():
    return Settings(
        ACCESS_TOKEN_EXPIRE_SECONDS=3600,
        REFRESH_TOKEN_EXPIRE_SECONDS=182 * 24 * 3600,
        GRACE_PERIOD_SECONDS=3600,
        REFRESH_TOKEN_ROTATION=RotationPolicy.INVALIDATE_IMMEDIATELY,
    )


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Every test using a store runs against both backends."""
    if request.param == "memory":
        return MemoryTokenStore()
    engine = make_engine("sqlite:///:memory:")
    init_db(bind=engine)
    return SQLTokenStore(sessionmaker(bind=engine, expire_on_commit=False))


@pytest.fixture
def lifecycle(store, generator, test_settings, clock):
    return TokenLifecycle(store, generator=generator, settings=test_settings, clock=clock)


@pytest.fixture
def service(lifecycle):
    return AuthorizationService(lifecycle)


@pytest.fixture
def client_authenticator():
    def authenticate(grant_type, client_id, client_secret):
        return client_id == CLIENT_ID and client_secret == CLIENT_SECRET

    return authenticate


@pytest.fixture
def user_authenticator():
    def authenticate(username, password):
        return 42 if (username, password) == ("alice", "wonderland") else None

    return authenticate


def basic_auth(client_id: str = CLIENT_ID, client_secret: str = CLIENT_SECRET) -> str:
    encoded = base64.b64encode(f"{client_id}:{client_secret}".encode()).decode()
    return f"Basic {encoded}"


def token_request(headers=None, **form) -> FormRequest:
    return FormRequest(method="POST", path="/oauth/token", headers=headers, form=form)


def bearer_request(value: str) -> FormRequest:
    return FormRequest(method="GET", path="/me", headers={"Authorization": f"Bearer {value}"})
