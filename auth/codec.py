"""
auth/codec.py -- Turning a principal into a session reference and back.

A session row stores only the principal's identifier. On every request that
identifier has to become a Principal again. Two policies:

  CachedPrincipalCodec -- trust the identifier recorded at login. No store
      round-trip; a deleted identity keeps working until its sessions expire.

  StorePrincipalCodec  -- look the identifier up in CredentialStore. A
      deleted identity raises PrincipalDecodeError, which the session layer
      turns into "anonymous" (the session is invalid, not a crash).

Settings.revalidate_sessions selects the policy at startup.
"""

from __future__ import annotations

from typing import Protocol

from auth.models import Principal
from auth.store import CredentialStore
from core.errors import PrincipalDecodeError


class PrincipalCodec(Protocol):
    def encode(self, principal: Principal) -> str: ...

    async def decode(self, identifier: str) -> Principal: ...


class CachedPrincipalCodec:
    def encode(self, principal: Principal) -> str:
        return principal.identifier

    async def decode(self, identifier: str) -> Principal:
        if not identifier:
            raise PrincipalDecodeError("session carries no identifier")
        return Principal(identifier=identifier)


class StorePrincipalCodec:
    def __init__(self, store: CredentialStore) -> None:
        self.store = store

    def encode(self, principal: Principal) -> str:
        return principal.identifier

    async def decode(self, identifier: str) -> Principal:
        """Re-derive the principal from the identity table.

        StoreUnavailable propagates -- an outage is not an invalid session.
        """
        record = await self.store.find_by_identifier(identifier)
        if record is None:
            raise PrincipalDecodeError("identity no longer exists")
        return record.to_principal()
