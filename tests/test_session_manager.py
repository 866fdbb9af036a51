"""Unit tests for sessions/manager.py -- SessionManager.

Covers:
- resolve(): no token, unknown token, expired token, live token
- login(): rejected credentials create no session; presented token is replaced
- principal revalidation vs. cached principals after the identity disappears
- rolling expiry
- store outages propagate instead of looking like "logged out"
"""

import asyncio

import pytest
import pytest_asyncio
from sqlalchemy import func, select, text

from auth.codec import CachedPrincipalCodec, StorePrincipalCodec
from auth.strategy import AuthenticationStrategy
from core.errors import InvalidCredentials, StoreUnavailable
from sessions.manager import ANONYMOUS, SessionManager
from sessions.store import _sessions

TTL = 3600


@pytest_asyncio.fixture
async def alice(credential_store, hasher):
    return await credential_store.insert("alice@example.com", hasher.hash("s3cr3t!"), display_name="Alice")


def make_manager(credential_store, hasher, session_store, clock, *, revalidate=True, rolling=False):
    codec = StorePrincipalCodec(credential_store) if revalidate else CachedPrincipalCodec()
    return SessionManager(
        session_store,
        AuthenticationStrategy(credential_store, hasher),
        codec,
        ttl_seconds=TTL,
        rolling=rolling,
        clock=clock,
    )


@pytest.fixture
def manager(credential_store, hasher, session_store, clock) -> SessionManager:
    return make_manager(credential_store, hasher, session_store, clock)


def _session_count(session_store) -> int:
    with session_store.engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(_sessions)).scalar_one()


@pytest.mark.asyncio
async def test_resolve_without_token_is_anonymous(manager) -> None:
    ctx = await manager.resolve(None)
    assert ctx is ANONYMOUS
    assert not ctx.authenticated
    assert not ctx.clear_token


@pytest.mark.asyncio
async def test_resolve_unknown_token_clears_cookie(manager) -> None:
    ctx = await manager.resolve("never-issued")
    assert not ctx.authenticated
    assert ctx.clear_token


@pytest.mark.asyncio
async def test_login_then_resolve(manager, alice) -> None:
    principal, token = await manager.login("alice@example.com", "s3cr3t!")

    ctx = await manager.resolve(token)

    assert principal.identifier == "alice@example.com"
    assert ctx.authenticated
    assert ctx.principal.identifier == "alice@example.com"
    assert ctx.principal.display_name == "Alice"
    assert ctx.token == token
    assert not ctx.clear_token


@pytest.mark.asyncio
async def test_expired_session_resolves_anonymous(manager, alice, clock) -> None:
    _, token = await manager.login("alice@example.com", "s3cr3t!")
    clock.advance(TTL)

    ctx = await manager.resolve(token)

    assert not ctx.authenticated
    assert ctx.clear_token


@pytest.mark.asyncio
@pytest.mark.parametrize("identifier,secret", [("alice@example.com", "wrong"), ("bob@example.com", "s3cr3t!")])
async def test_failed_login_creates_no_session(manager, alice, session_store, identifier, secret) -> None:
    with pytest.raises(InvalidCredentials):
        await manager.login(identifier, secret)
    assert _session_count(session_store) == 0


@pytest.mark.asyncio
async def test_login_replaces_presented_token(manager, alice) -> None:
    _, first = await manager.login("alice@example.com", "s3cr3t!")

    _, second = await manager.login("alice@example.com", "s3cr3t!", presented_token=first)

    assert second != first
    assert not (await manager.resolve(first)).authenticated
    assert (await manager.resolve(second)).authenticated


@pytest.mark.asyncio
async def test_failed_login_keeps_presented_session(manager, alice) -> None:
    _, token = await manager.login("alice@example.com", "s3cr3t!")
    with pytest.raises(InvalidCredentials):
        await manager.login("alice@example.com", "wrong", presented_token=token)
    assert (await manager.resolve(token)).authenticated


@pytest.mark.asyncio
async def test_logout(manager, alice) -> None:
    _, token = await manager.login("alice@example.com", "s3cr3t!")
    await manager.logout(token)
    await manager.logout(token)
    await manager.logout(None)
    assert not (await manager.resolve(token)).authenticated


@pytest.mark.asyncio
async def test_revalidating_codec_drops_deleted_identity(manager, alice, credential_store, session_store) -> None:
    _, token = await manager.login("alice@example.com", "s3cr3t!")
    with credential_store.engine.begin() as conn:
        conn.execute(text("DELETE FROM identities"))

    ctx = await manager.resolve(token)

    assert not ctx.authenticated
    assert ctx.clear_token
    assert await session_store.get(token) is None


@pytest.mark.asyncio
async def test_cached_codec_trusts_recorded_identity(credential_store, hasher, session_store, clock, alice) -> None:
    manager = make_manager(credential_store, hasher, session_store, clock, revalidate=False)
    _, token = await manager.login("alice@example.com", "s3cr3t!")
    with credential_store.engine.begin() as conn:
        conn.execute(text("DELETE FROM identities"))

    ctx = await manager.resolve(token)

    assert ctx.authenticated
    assert ctx.principal.identifier == "alice@example.com"


@pytest.mark.asyncio
async def test_rolling_session_extends_on_resolve(credential_store, hasher, session_store, clock, alice) -> None:
    manager = make_manager(credential_store, hasher, session_store, clock, rolling=True)
    _, token = await manager.login("alice@example.com", "s3cr3t!")

    clock.advance(TTL - 10)
    ctx = await manager.resolve(token)
    assert ctx.refreshed
    assert ctx.session.expires_at == clock.now + TTL

    clock.advance(TTL - 10)
    assert (await manager.resolve(token)).authenticated


@pytest.mark.asyncio
async def test_fixed_session_does_not_extend(manager, alice, clock) -> None:
    _, token = await manager.login("alice@example.com", "s3cr3t!")
    clock.advance(TTL - 10)
    ctx = await manager.resolve(token)
    assert ctx.authenticated
    assert not ctx.refreshed

    clock.advance(10)
    assert not (await manager.resolve(token)).authenticated


@pytest.mark.asyncio
async def test_revoke_others(manager, alice) -> None:
    _, current = await manager.login("alice@example.com", "s3cr3t!")
    _, elsewhere = await manager.login("alice@example.com", "s3cr3t!")

    assert await manager.revoke_others("alice@example.com", keep=current) == 1

    assert (await manager.resolve(current)).authenticated
    assert not (await manager.resolve(elsewhere)).authenticated


@pytest.mark.asyncio
async def test_store_outage_propagates_from_resolve(manager, session_store) -> None:
    with session_store.engine.begin() as conn:
        conn.execute(text("DROP TABLE sessions"))
    with pytest.raises(StoreUnavailable):
        await manager.resolve("some-token")


@pytest.mark.asyncio
async def test_concurrent_logins_get_independent_sessions(manager, alice) -> None:
    (_, t1), (_, t2) = await asyncio.gather(
        manager.login("alice@example.com", "s3cr3t!"),
        manager.login("alice@example.com", "s3cr3t!"),
    )
    assert t1 != t2

    await manager.logout(t1)

    assert not (await manager.resolve(t1)).authenticated
    assert (await manager.resolve(t2)).authenticated


class _PrefixCodec:
    """Stores principals under a prefixed reference to show the codec owns the format."""

    def __init__(self) -> None:
        self.encoded: list[str] = []

    def encode(self, principal) -> str:
        self.encoded.append(principal.identifier)
        return f"user:{principal.identifier}"

    async def decode(self, reference: str):
        assert reference.startswith("user:")
        return await CachedPrincipalCodec().decode(reference[len("user:"):])


@pytest.mark.asyncio
async def test_login_persists_the_codec_reference(credential_store, hasher, session_store, clock, alice) -> None:
    codec = _PrefixCodec()
    manager = SessionManager(
        session_store, AuthenticationStrategy(credential_store, hasher), codec, ttl_seconds=TTL, clock=clock
    )

    _, token = await manager.login("alice@example.com", "s3cr3t!")

    assert codec.encoded == ["alice@example.com"]
    assert (await session_store.get(token)).identifier == "user:alice@example.com"
    ctx = await manager.resolve(token)
    assert ctx.principal.identifier == "alice@example.com"
