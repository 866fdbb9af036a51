"""
core/errors.py -- Error taxonomy for credential and session handling.

Two families, handled differently at the HTTP boundary:

  Recoverable outcomes (never crash a request):
    InvalidCredentials   -- wrong identifier/secret pair; always this one kind.
    SessionNotFound      -- missing OR expired session; collapsed to "anonymous".
    PrincipalDecodeError -- session points at an identity that is gone.
    DuplicateIdentifier  -- registration conflict (409).

  Server-side failures (propagate, distinct from "bad credentials"):
    HashingFailure       -- stored hash is malformed. Data corruption; fail closed.
    StoreUnavailable     -- backing store unreachable or timed out (503).

Messages on these exceptions are for logs only. Route handlers map each type
to a fixed client-facing message; str(exc) is never sent to the client.

Layer rule: core/ is the kernel and imports nothing from the project.
"""

from __future__ import annotations


class ChirpError(Exception):
    """Base class for every domain error raised by auth/ and sessions/."""

    code = "internal_error"


class InvalidCredentials(ChirpError):
    """The identifier/secret pair was rejected.

    Deliberately carries no detail about which step failed [anti-enumeration].
    """

    code = "invalid_credentials"

    def __init__(self) -> None:
        super().__init__("Invalid identifier or secret.")


class SessionNotFound(ChirpError):
    """No live session for the token (never existed, destroyed, or expired)."""

    code = "session_not_found"


class PrincipalDecodeError(ChirpError):
    """A session's stored identifier no longer resolves to a principal."""

    code = "principal_unavailable"


class DuplicateIdentifier(ChirpError):
    code = "duplicate_identifier"


class HashingFailure(ChirpError):
    """A stored hash record could not be parsed (unknown tag, bad salt, ...)."""

    code = "internal_error"


class StoreUnavailable(ChirpError):
    """A credential or session store call failed or exceeded its time bound."""

    code = "store_unavailable"
