"""Pytest configuration and fixtures."""

from typing import Any, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from core.auth_utils import TokenIssuer
from core.database import build_engine, build_sessionmaker, create_tables
from core.sessions import RefreshSessionStore
from main import create_app
from settings import Settings

TEST_JWT_SECRET = "test-signing-key-with-at-least-32-characters"
TEST_ISSUER = "advance-test"
TEST_AUDIENCE = "advance-clients"


class FakeCredentialStore:
    """Credential store answering from a dict; records every call."""

    def __init__(self, answers: Optional[Dict[Tuple[str, str], Any]] = None, error: Optional[Exception] = None):
        self.answers = answers or {}
        self.error = error
        self.calls: List[Tuple[str, str]] = []

    async def check(self, username: str, secret: str) -> Any:
        self.calls.append((username, secret))
        if self.error is not None:
            raise self.error
        return self.answers.get((username, secret), False)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        jwt_secret=TEST_JWT_SECRET,
        jwt_issuer=TEST_ISSUER,
        jwt_audience=TEST_AUDIENCE,
        refresh_token_secret="test-refresh-secret",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        app_env="test",
        notify_send_timeout_seconds=1.0,
    )


@pytest.fixture
def credential_store() -> FakeCredentialStore:
    return FakeCredentialStore({("alice", "secret"): True, ("bob", "hunter2"): 1})


@pytest.fixture
def issuer(settings, credential_store) -> TokenIssuer:
    return TokenIssuer(settings, credential_store)


@pytest.fixture
async def db_sessionmaker(settings):
    engine = build_engine(settings.database_url, settings.db_timeout_seconds)
    await create_tables(engine)
    yield build_sessionmaker(engine)
    await engine.dispose()


@pytest.fixture
async def session_store(db_sessionmaker, settings):
    async with db_sessionmaker() as session:
        yield RefreshSessionStore(session, settings)


@pytest.fixture
def app(settings, credential_store):
    return create_app(settings, credential_store=credential_store)


@pytest.fixture
def client(app):
    with TestClient(app) as tc:
        yield tc
