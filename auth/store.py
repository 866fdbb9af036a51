"""
auth/store.py -- SQLAlchemy Core persistence layer for identity records.

Pattern: Repository + Data Mapper.
CredentialStore is the repository; _row_to_identity is the mapper.
Route, strategy and registration code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL. The identifier a
  client submits is only ever a parameter value, never query text.

  Identifiers are normalized (strip + lowercase) on every read and write, and
  the column carries a UNIQUE constraint. The constraint -- not a prior
  SELECT -- is what keeps identifiers unique under concurrent registrations.

Concurrency:
  Public methods are coroutines. Each runs one short blocking transaction on
  a worker thread via core.offload.run_bounded(), so a slow or locked
  database surfaces as StoreUnavailable after `timeout` seconds instead of
  hanging the request.

Layer rule: no imports from api/, web/, or sessions/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TypeVar

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import IdentityRecord
from core.errors import DuplicateIdentifier, StoreUnavailable
from core.offload import run_bounded

T = TypeVar("T")

logger = logging.getLogger("chirp.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_identities = Table(
    "identities",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identifier", String(320), nullable=False, unique=True),  # normalized
    Column("secret_hash", Text, nullable=False),  # self-describing bcrypt record
    Column("display_name", String(255)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),  # last password change
)


# ---------------------------------------------------------------------------
# SQLite tuning
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers proceed while a writer holds the lock.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, timeout: float) -> Engine:
    """Create an engine for db_url. Shared with sessions/store.py.

    For SQLite the driver's busy timeout is aligned with the store timeout so
    a locked database fails within the same bound.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_identifier(identifier: str) -> str:
    """Case-normalize an identifier. "  Alice@Example.COM " -> "alice@example.com"."""
    return identifier.strip().lower()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for IdentityRecord entities.

    Usage:
        store = CredentialStore("sqlite:///chirp.db")
        await store.insert("alice@example.com", hasher.hash("s3cr3t!"))
        record = await store.find_by_identifier("Alice@Example.com")
        store.close()
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        self.timeout = timeout
        self.engine: Engine = make_engine(db_url, timeout)
        _metadata.create_all(self.engine)

    async def _run(self, func: Callable[..., T], *args, operation: str) -> T:
        return await run_bounded(self._guarded, func, operation, *args, timeout=self.timeout, operation=operation)

    @staticmethod
    def _guarded(func: Callable[..., T], operation: str, *args) -> T:
        # Driver errors carry SQL text and parameters. Log the class name only.
        try:
            return func(*args)
        except SQLAlchemyError as exc:
            logger.error("Credential store %s failed (%s)", operation, exc.__class__.__name__)
            raise StoreUnavailable(f"credential store {operation} failed") from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def find_by_identifier(self, identifier: str) -> IdentityRecord | None:
        """Exact lookup by normalized identifier. Returns None when absent."""
        return await self._run(self._find, normalize_identifier(identifier), operation="find_by_identifier")

    async def exists(self, identifier: str) -> bool:
        return await self._run(self._exists, normalize_identifier(identifier), operation="exists")

    async def insert(self, identifier: str, hash_record: str, display_name: str | None = None) -> IdentityRecord:
        """Persist a new identity. Raises DuplicateIdentifier if it already exists."""
        return await self._run(
            self._insert, normalize_identifier(identifier), hash_record, display_name, operation="insert"
        )

    async def update_secret_hash(self, identifier: str, hash_record: str) -> bool:
        """Replace the stored hash. Returns False if the identifier is unknown."""
        return await self._run(
            self._update_secret_hash, normalize_identifier(identifier), hash_record, operation="update_secret_hash"
        )

    async def ping(self) -> None:
        """Round-trip the database. Raises StoreUnavailable if it is unreachable."""
        await self._run(self._ping, operation="ping")

    # ------------------------------------------------------------------
    # Blocking bodies (run on a worker thread)
    # ------------------------------------------------------------------

    def _ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(select(1))

    def _find(self, identifier: str) -> IdentityRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(_identities.c.identifier == identifier)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def _exists(self, identifier: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_identities.c.id).where(_identities.c.identifier == identifier)).fetchone()
        return row is not None

    def _insert(self, identifier: str, hash_record: str, display_name: str | None) -> IdentityRecord:
        created_at = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _identities.insert().values(
                        identifier=identifier,
                        secret_hash=hash_record,
                        display_name=display_name,
                        created_at=created_at,
                    )
                )
        except IntegrityError as exc:
            raise DuplicateIdentifier("identifier already registered") from exc
        return IdentityRecord(
            id=result.inserted_primary_key[0],
            identifier=identifier,
            secret_hash=hash_record,
            display_name=display_name,
            created_at=created_at,
        )

    def _update_secret_hash(self, identifier: str, hash_record: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _identities.update()
                .where(_identities.c.identifier == identifier)
                .values(secret_hash=hash_record, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> IdentityRecord:
    return IdentityRecord(
        id=row.id,
        identifier=row.identifier,
        secret_hash=row.secret_hash,
        display_name=row.display_name,
        created_at=row.created_at,
    )
