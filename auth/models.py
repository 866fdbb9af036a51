"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
strategy do the work; these types only carry shape.

Layer rule: no imports from api/, web/, or sessions/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class IdentityRecord:
    """A persisted identity: normalized identifier plus a one-way secret hash.

    secret_hash is self-describing (bcrypt "$2b$<cost>$<salt><digest>"), so the
    verifier needs nothing beyond the record to re-check a secret. It is never
    returned to clients and never logged.
    """

    identifier: str
    secret_hash: str
    display_name: str | None = None
    id: int | None = None
    created_at: str | None = None

    def to_principal(self) -> Principal:
        return Principal(identifier=self.identifier, display_name=self.display_name)


@dataclass(frozen=True)
class Principal:
    """The authenticated identity attached to one request.

    Frozen: a principal is derived per request (from an IdentityRecord or a
    session's identifier) and never shared or mutated across requests.
    """

    identifier: str
    display_name: str | None = None
