"""
tests/conftest.py -- Shared test fixtures for Chirp.

This module provides:
  - hasher / credential_store / session_store: isolated units on a fresh
    on-disk SQLite file under tmp_path
  - clock: a controllable time source for expiry tests
  - client: TestClient over the real ASGI app (real lifespan, fresh DB)

Design: on-disk SQLite files (not :memory:) because every store call runs on
a worker thread. A plain :memory: database is per-connection and would show
each thread a blank schema.

Environment variables must be set before any application import so
get_settings() sees them: DEBUG auto-generates SECRET_KEY, BCRYPT_ROUNDS=4
keeps hashing fast, and "testserver" must be an allowed host.
"""

from __future__ import annotations

import os
from collections.abc import Generator

# CRITICAL: set before any core/auth/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("SWEEP_INTERVAL_SECONDS", "3600")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.passwords import PasswordHasher
from auth.store import CredentialStore
from core.config import get_settings
from sessions.store import SessionStore

TEST_SECRET_KEY = "k" * 48
COOKIE_NAME = "chirp_session"


class FakeClock:
    """Monotonic-enough time source the tests move by hand."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'chirp_test.db'}"


@pytest.fixture
def hasher() -> Generator[PasswordHasher, None, None]:
    h = PasswordHasher(rounds=4, max_workers=2)
    yield h
    h.close()


@pytest.fixture
def credential_store(db_url) -> Generator[CredentialStore, None, None]:
    store = CredentialStore(db_url, timeout=5.0)
    yield store
    store.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_store(db_url, clock) -> Generator[SessionStore, None, None]:
    store = SessionStore(db_url, secret_key=TEST_SECRET_KEY, timeout=5.0, clock=clock)
    yield store
    store.close()


# ---------------------------------------------------------------------------
# HTTP fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def client(tmp_path, monkeypatch) -> Generator[TestClient, None, None]:
    """Yield a TestClient running the real lifespan against a fresh database.

    base_url is https so the Secure session cookie round-trips through the
    client's cookie jar. follow_redirects=False so form tests can assert on
    redirect Location headers.
    """
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'chirp_app.db'}")
    get_settings.cache_clear()
    with TestClient(app, base_url="https://testserver", follow_redirects=False) as c:
        yield c
    get_settings.cache_clear()


def use_token(client: TestClient, token: str | None) -> None:
    """Make the client present exactly this session token (or none)."""
    client.cookies.clear()
    if token:
        client.cookies.set(COOKIE_NAME, token)


def register(client: TestClient, identifier: str, secret: str) -> None:
    resp = client.post("/api/v1/auth/register", json={"identifier": identifier, "secret": secret})
    assert resp.status_code == 201, resp.text


def login(client: TestClient, identifier: str, secret: str):
    """POST the JSON login and return (response, token or None)."""
    resp = client.post("/api/v1/auth/login", json={"identifier": identifier, "secret": secret})
    return resp, resp.cookies.get(COOKIE_NAME)
