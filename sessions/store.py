"""
sessions/store.py -- SQLAlchemy-backed session records with expiry.

Usage:
    store = SessionStore("sqlite:///chirp.db", secret_key=settings.secret_key)
    token = await store.create(codec.encode(principal), ttl=3600)
    session = await store.get(token)        # Session or None
    await store.touch(token, time.time() + 3600)
    await store.update_data(token, lambda data: data.update(visits=1))
    await store.destroy(token)
    await store.sweep_expired()             # call periodically to trim old rows

Invariants:
  - Rows are keyed by HMAC(SECRET_KEY, token); the raw token is never stored.
  - get() treats a row with expires_at <= now exactly like a missing row.
    Nothing here extends a session implicitly; sweep_expired() only bounds
    table growth and correctness never depends on it having run.
  - expires_at > created_at for every row: create() rejects ttl <= 0 and
    touch() ignores targets at or before created_at.
  - Every write is one statement guarded by the row's version column, so
    concurrent touch/data updates on one token are linearizable and never
    interleave into a torn data bag.
  - create() is a single INSERT on the primary key. A collision with any
    existing row regenerates the token; a cancelled request leaves either a
    complete row or none.
"""

from __future__ import annotations

import copy
import json
import logging
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.store import make_engine
from auth.tokens import generate_session_token, hash_session_token
from core.errors import SessionNotFound, StoreUnavailable
from core.offload import run_bounded
from sessions.models import Session

T = TypeVar("T")

logger = logging.getLogger("chirp.sessions")

_MAX_CREATE_ATTEMPTS = 3
_MAX_UPDATE_ATTEMPTS = 10

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("token_hash", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("identifier", String(320), nullable=False, index=True),
    Column("created_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False, index=True),
    Column("data", Text, nullable=False, server_default="{}"),  # JSON data bag
    Column("version", Integer, nullable=False, server_default="1"),
)


class SessionStore:
    """Repository for Session records.

    clock is injectable so expiry behaviour can be tested without sleeping.
    """

    def __init__(
        self,
        db_url: str,
        secret_key: str,
        timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.timeout = timeout
        self._secret_key = secret_key
        self._clock = clock
        self.engine: Engine = make_engine(db_url, timeout)
        _metadata.create_all(self.engine)

    def _key(self, token: str) -> str:
        return hash_session_token(token, self._secret_key)

    async def _run(self, func: Callable[..., T], *args, operation: str) -> T:
        return await run_bounded(self._guarded, func, operation, *args, timeout=self.timeout, operation=operation)

    @staticmethod
    def _guarded(func: Callable[..., T], operation: str, *args) -> T:
        try:
            return func(*args)
        except SQLAlchemyError as exc:
            logger.error("Session store %s failed (%s)", operation, exc.__class__.__name__)
            raise StoreUnavailable(f"session store {operation} failed") from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(self, reference: str, ttl: float) -> str:
        """Persist a new session for an encoded principal reference and return its raw token.

        reference is whatever PrincipalCodec.encode() produced; it is stored as
        the row's identifier and handed back to PrincipalCodec.decode() on resolve.
        """
        if ttl <= 0:
            raise ValueError("session ttl must be positive")
        return await self._run(self._create, reference, ttl, operation="create")

    async def get(self, token: str) -> Session | None:
        """Return the live session for token, or None if absent or expired."""
        if not token:
            return None
        return await self._run(self._get, token, operation="get")

    async def touch(self, token: str, extend_to: float) -> bool:
        """Move expires_at to extend_to. No-op (False) if the session is not live."""
        return await self._run(self._touch, token, extend_to, operation="touch")

    async def save_data(self, token: str, data: dict, expected_version: int) -> bool:
        """Compare-and-set the data bag. False if the version moved or the session is gone.

        The bag must survive a JSON round-trip unchanged (str keys, lists rather
        than tuples); anything else raises ValueError before the write.
        """
        return await self._run(self._save_data, token, data, expected_version, operation="save_data")

    async def update_data(self, token: str, mutate: Callable[[dict], dict | None]) -> Session:
        """Apply mutate() to a copy of the data bag and write it back atomically.

        mutate may modify the dict in place (returning None) or return a new
        dict. On a version conflict the read-modify-write is retried with the
        fresh data, so mutate must be free of side effects.
        Raises SessionNotFound when the session is absent or expired, and
        ValueError when the mutated bag is not JSON-native.
        """
        return await self._run(self._update_data, token, mutate, operation="update_data")

    async def destroy(self, token: str) -> None:
        """Remove the session. Destroying an unknown or already destroyed token is fine."""
        if not token:
            return
        await self._run(self._destroy, token, operation="destroy")

    async def destroy_all_for(self, identifier: str, keep: str | None = None) -> int:
        """Remove every session of identifier except `keep`. Returns rows removed."""
        return await self._run(self._destroy_all_for, identifier, keep, operation="destroy_all_for")

    async def sweep_expired(self) -> int:
        """Delete rows past expires_at. Returns number of rows removed."""
        removed = await self._run(self._sweep_expired, operation="sweep_expired")
        if removed:
            logger.info("Swept %d expired session(s)", removed)
        return removed

    # ------------------------------------------------------------------
    # Blocking bodies (run on a worker thread)
    # ------------------------------------------------------------------

    def _create(self, identifier: str, ttl: float) -> str:
        now = self._clock()
        for _ in range(_MAX_CREATE_ATTEMPTS):
            token = generate_session_token()
            try:
                with self.engine.begin() as conn:
                    conn.execute(
                        _sessions.insert().values(
                            token_hash=self._key(token),
                            identifier=identifier,
                            created_at=now,
                            expires_at=now + ttl,
                            data="{}",
                            version=1,
                        )
                    )
            except IntegrityError:
                logger.warning("Session token collision, regenerating")
                continue
            return token
        raise StoreUnavailable("could not allocate a unique session token")

    def _get(self, token: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where(
                    (_sessions.c.token_hash == self._key(token)) & (_sessions.c.expires_at > self._clock())
                )
            ).fetchone()
        if row is None:
            return None
        try:
            data = json.loads(row.data)
        except ValueError:
            logger.error("Session row has an unreadable data bag; treating it as absent")
            return None
        return Session(
            token=token,
            identifier=row.identifier,
            created_at=row.created_at,
            expires_at=row.expires_at,
            data=data,
            version=row.version,
        )

    def _touch(self, token: str, extend_to: float) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.token_hash == self._key(token))
                    & (_sessions.c.expires_at > self._clock())
                    & (_sessions.c.created_at < extend_to)
                )
                .values(expires_at=extend_to, version=_sessions.c.version + 1)
            )
        return result.rowcount > 0

    def _save_data(self, token: str, data: dict, expected_version: int) -> bool:
        payload = json.dumps(data, separators=(",", ":"))
        if json.loads(payload) != data:
            raise ValueError("session data must be JSON-native (str keys, lists, no tuples)")
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.token_hash == self._key(token))
                    & (_sessions.c.expires_at > self._clock())
                    & (_sessions.c.version == expected_version)
                )
                .values(data=payload, version=expected_version + 1)
            )
        return result.rowcount > 0

    def _update_data(self, token: str, mutate: Callable[[dict], dict | None]) -> Session:
        for _ in range(_MAX_UPDATE_ATTEMPTS):
            session = self._get(token)
            if session is None:
                raise SessionNotFound("session is absent or expired")
            data = copy.deepcopy(session.data)
            result = mutate(data)
            if result is not None:
                data = result
            if self._save_data(token, data, session.version):
                session.data = data
                session.version += 1
                return session
            logger.debug("Session data version conflict, retrying")
        raise StoreUnavailable("session data update kept conflicting")

    def _destroy(self, token: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.token_hash == self._key(token)))

    def _destroy_all_for(self, identifier: str, keep: str | None) -> int:
        condition = _sessions.c.identifier == identifier
        if keep:
            condition = condition & (_sessions.c.token_hash != self._key(keep))
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(condition))
        return result.rowcount

    def _sweep_expired(self) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= self._clock()))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()
