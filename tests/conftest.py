"""
tests/conftest.py -- Shared test fixtures for Gatekeeper.

This module provides:
  - FakeRedis: in-memory stand-in for a redis.asyncio.Redis handle, with TTLs
    and a `fail` switch that makes every call raise RedisError
  - RecordingMailer: Mailer double that records messages instead of sending
  - async unit fixtures: engine, user_store, token_store, cache, sessions,
    issuer, service -- one fresh SQLite file per test
  - api: TestClient over the real app with a patched lifespan that wires the
    same object graph around a temp-file DB and a FakeRedis

Design: The database is a temp file rather than :memory: because every pooled
aiosqlite connection to :memory: would see its own empty database. bcrypt runs
at cost 4 so the suite stays fast; the hash format is unchanged.

The DEBUG env var must be set before any app import so get_settings() could
auto-generate SECRET_KEY if anything reaches it.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any app import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from api.main import app, stop_purge_task, wire_services
from auth.service import AuthService
from auth.sessions import SessionManager
from auth.store import TokenStore, UserStore, create_schema, make_engine
from auth.tokens import ResetTokenIssuer
from cache.store import CacheStore
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeRedis:
    """The subset of redis.asyncio.Redis used by CacheStore and SessionManager."""

    def __init__(self) -> None:
        self._data: dict[str, tuple[bytes, float]] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("simulated outage")

    def _live(self, key: str) -> bytes | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires = entry
        if time.monotonic() >= expires:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> bytes | None:
        self._check()
        return self._live(key)

    async def setex(self, key: str, seconds: int, value: str | bytes) -> bool:
        self._check()
        if isinstance(value, str):
            value = value.encode("utf-8")
        self._data[key] = (value, time.monotonic() + seconds)
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        return sum(1 for k in keys if self._data.pop(k, None) is not None)

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self) -> None:
        pass

    # Assertion helpers (not part of the Redis API)

    def keys(self) -> list[str]:
        return [k for k in list(self._data) if self._live(k) is not None]

    def ttl(self, key: str) -> float | None:
        entry = self._data.get(key)
        return None if entry is None else entry[1] - time.monotonic()

    def expire_now(self, key: str) -> None:
        value, _ = self._data[key]
        self._data[key] = (value, time.monotonic() - 1)


@dataclass
class SentMail:
    to: str
    subject: str
    body: str


class RecordingMailer:
    """Mailer double. Set fail=True to simulate a transport outage."""

    def __init__(self) -> None:
        self.sent: list[SentMail] = []
        self.fail = False

    async def send(self, to: str, subject: str, body: str) -> bool:
        if self.fail:
            return False
        self.sent.append(SentMail(to, subject, body))
        return True


class Clock:
    """Settable clock for token expiry tests."""

    def __init__(self, now: float | None = None) -> None:
        self.now = time.time() if now is None else now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def secret_key() -> str:
    return TEST_SECRET


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        debug=True,
        secret_key=TEST_SECRET,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}",
        redis_enabled=False,
        bcrypt_rounds=4,
        client_url="http://client.test",
    )


# ---------------------------------------------------------------------------
# Unit fixtures (async, one event loop per test)
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine(settings: Settings):
    eng = make_engine(settings.database_url)
    await create_schema(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def token_store(engine) -> TokenStore:
    return TokenStore(engine)


@pytest.fixture
def cache(fake_redis: FakeRedis) -> CacheStore:
    return CacheStore(fake_redis)


@pytest.fixture
def sessions(fake_redis: FakeRedis) -> SessionManager:
    return SessionManager(fake_redis)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def issuer(token_store: TokenStore, clock: Clock) -> ResetTokenIssuer:
    return ResetTokenIssuer(token_store, TEST_SECRET, ttl_seconds=3600, clock=clock)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def service(user_store, cache, sessions, issuer, mailer, settings) -> AuthService:
    return AuthService(
        user_store,
        cache,
        sessions,
        issuer,
        mailer,
        client_url=settings.client_url,
        bcrypt_rounds=settings.bcrypt_rounds,
    )


# ---------------------------------------------------------------------------
# Integration fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    app: FastAPI
    redis: FakeRedis
    mailer: RecordingMailer

    @property
    def service(self) -> AuthService:
        return self.app.state.auth_service

    def run(self, func, *args):
        """Await func(*args) on the app's event loop (the engine is bound to it)."""
        return self.client.portal.call(func, *args)


def _patch_lifespan(settings: Settings, redis: FakeRedis, mailer: RecordingMailer):
    """Return a lifespan that wires the real services around test handles.

    The engine is created inside the lifespan so its connections belong to
    the TestClient's event loop.
    """

    @asynccontextmanager
    async def test_lifespan(app: FastAPI) -> AsyncIterator[None]:
        engine = make_engine(settings.database_url)
        await create_schema(engine)
        wire_services(app, settings, engine, redis)
        app.state.auth_service.mailer = mailer
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        await stop_purge_task(app.state.purge_task)
        await engine.dispose()

    return test_lifespan


@pytest.fixture
def api(settings: Settings) -> Iterator[ApiHarness]:
    """Yield an ApiHarness around a TestClient with isolated stores.

    Function-scoped: every test starts with an empty user table, an empty
    FakeRedis and no cookies.
    """
    redis = FakeRedis()
    mailer = RecordingMailer()
    original = app.router.lifespan_context
    app.router.lifespan_context = _patch_lifespan(settings, redis, mailer)
    try:
        with TestClient(app, raise_server_exceptions=True) as client:
            yield ApiHarness(client=client, app=app, redis=redis, mailer=mailer)
    finally:
        app.router.lifespan_context = original
