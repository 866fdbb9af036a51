"""
auth/passwords.py -- One-way adaptive password hashing (bcrypt).

Security design decisions:
  bcrypt directly, no passlib wrapper. passlib's wrap-bug detection feeds
  bcrypt a >72 byte password, which bcrypt 4.x+ rejects outright.

  Records are self-describing ("$2b$<cost>$<22-char salt><31-char digest>"),
  so verify() needs only the record. A record that does not parse is data
  corruption: HashingFailure, never "no match" and never "match".

  bcrypt only looks at the first 72 bytes of a secret. _encode() truncates
  explicitly so hash() and verify() agree on every bcrypt release (5.x raises
  instead of truncating silently).

  hash()/verify() are CPU-bound and slow on purpose. Request handlers must use
  hash_async()/verify_async(), which run on this hasher's own thread pool so a
  burst of logins cannot stall unrelated requests on the event loop.

  dummy_hash is computed once per hasher with the configured cost. The
  strategy verifies against it when an identifier does not exist, so both
  rejection paths pay the same bcrypt cost [C1].
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
from concurrent.futures import ThreadPoolExecutor

import bcrypt

from core.errors import HashingFailure

logger = logging.getLogger("chirp.auth")

_MAX_SECRET_BYTES = 72
_BCRYPT_RECORD = re.compile(r"^\$2[aby]\$(\d{2})\$[./A-Za-z0-9]{53}$")


def _encode(secret: str) -> bytes:
    return secret.encode("utf-8")[:_MAX_SECRET_BYTES]


def _parse_cost(hash_record: str) -> int:
    match = _BCRYPT_RECORD.match(hash_record or "")
    if match is None:
        raise HashingFailure("stored hash is not a recognised bcrypt record")
    return int(match.group(1))


class PasswordHasher:
    """bcrypt hasher with a dedicated worker pool.

    Usage:
        hasher = PasswordHasher(rounds=12)
        record = await hasher.hash_async("s3cr3t!")
        ok = await hasher.verify_async("s3cr3t!", record)
        hasher.close()
    """

    def __init__(self, rounds: int = 12, max_workers: int = 4) -> None:
        if not 4 <= rounds <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31")
        self.rounds = rounds
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="chirp-hash")
        self.dummy_hash = self.hash(secrets.token_urlsafe(32))

    # ------------------------------------------------------------------
    # Blocking primitives
    # ------------------------------------------------------------------

    def hash(self, secret: str) -> str:
        """Return a fresh bcrypt record for secret. New salt on every call."""
        return bcrypt.hashpw(_encode(secret), bcrypt.gensalt(rounds=self.rounds)).decode("ascii")

    def verify(self, secret: str, hash_record: str) -> bool:
        """Return True if secret matches hash_record.

        bcrypt.checkpw recomputes with the embedded cost and salt and compares
        digests in constant time. Raises HashingFailure on a malformed record.
        """
        _parse_cost(hash_record)
        try:
            return bcrypt.checkpw(_encode(secret), hash_record.encode("ascii"))
        except ValueError as exc:
            raise HashingFailure("stored hash could not be verified") from exc

    def needs_rehash(self, hash_record: str) -> bool:
        """True when the record was produced with a lower cost than configured."""
        return _parse_cost(hash_record) < self.rounds

    # ------------------------------------------------------------------
    # Event-loop friendly wrappers
    # ------------------------------------------------------------------

    async def hash_async(self, secret: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._pool, self.hash, secret)

    async def verify_async(self, secret: str, hash_record: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._pool, self.verify, secret, hash_record)

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)
