"""
sessions/models.py -- Domain dataclass for a server-side session.

Times are UNIX epoch seconds (float) so expiry checks are plain SQL
comparisons.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Session:
    """A live session as seen by one request.

    token is the raw value the client presented; the store itself only ever
    persists its HMAC. version increases on every write and is the
    compare-and-set guard for data-bag and expiry updates.
    """

    token: str
    identifier: str
    created_at: float
    expires_at: float
    data: dict = field(default_factory=dict)
    version: int = 1
