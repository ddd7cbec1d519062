from __future__ import annotations

import os

# Settings and the module-level engine read DATABASE_URL at import time.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

import pytest
from httpx import ASGITransport, AsyncClient

from privacycore.apps.api.main import create_app
from privacycore.core.config import Settings
from privacycore.persistence.db import build_engine, build_session_factory, create_schema
from privacycore.services.context import PrivacyCore


TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FakeClock:
    # Monotonic clock the masking cache can be driven with.
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url=TEST_DATABASE_URL, auth_dev_bypass=True)


@pytest.fixture
async def session_factory(settings: Settings):
    # One in-memory database per test keeps state isolated.
    engine = build_engine(settings.database_url)
    await create_schema(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def core(settings: Settings, session_factory, clock: FakeClock) -> PrivacyCore:
    return PrivacyCore(settings=settings, session_factory=session_factory, time_source=clock)


@pytest.fixture
def app(core: PrivacyCore):
    return create_app(core, await_access_logging=True)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
