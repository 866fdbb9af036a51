"""
auth/strategy.py -- Local identifier/secret authentication.

State machine for one attempt:

    START -> LOOKING_UP -+-> VERIFYING -+-> AUTHENTICATED
                         |              |
                         |              +-> REJECTED
                         |
                         +-> (dummy verify) -> REJECTED

Anti-enumeration [C1]:
  An unknown identifier still pays for a full bcrypt verification against
  the hasher's dummy hash before it is rejected, so "no such identifier" and
  "wrong secret" take comparable time. Both paths return the same REJECTED
  outcome with the single reason "invalid_credentials".

Not handled here:
  - Rate limiting / backoff. That is the HTTP layer's job (api/limiter.py).
  - StoreUnavailable and HashingFailure. They propagate: an outage or a
    corrupt record is not a bad password and must not look like one.

Layer rule: no imports from api/, web/, or sessions/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from auth.models import Principal
from auth.passwords import PasswordHasher
from auth.store import CredentialStore

logger = logging.getLogger("chirp.auth")

INVALID_CREDENTIALS = "invalid_credentials"


class AuthState(str, Enum):
    START = "start"
    LOOKING_UP = "looking_up"
    VERIFYING = "verifying"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AuthOutcome:
    """Terminal result of one authentication attempt."""

    state: AuthState
    principal: Principal | None = None
    reason: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.state is AuthState.AUTHENTICATED


_REJECTED = AuthOutcome(state=AuthState.REJECTED, reason=INVALID_CREDENTIALS)


def _advance(current: AuthState, new: AuthState) -> AuthState:
    logger.debug("Authentication %s -> %s", current.value, new.value)
    return new


class AuthenticationStrategy:
    """Validate a submitted credential against CredentialStore via PasswordHasher.

    Both collaborators are injected; the strategy holds no other state and is
    safe to share across concurrent requests.
    """

    def __init__(self, store: CredentialStore, hasher: PasswordHasher) -> None:
        self.store = store
        self.hasher = hasher

    async def authenticate(self, identifier: str, secret: str) -> AuthOutcome:
        state = _advance(AuthState.START, AuthState.LOOKING_UP)
        record = await self.store.find_by_identifier(identifier)

        if record is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            await self.hasher.verify_async(secret, self.hasher.dummy_hash)
            _advance(state, AuthState.REJECTED)
            return _REJECTED

        state = _advance(state, AuthState.VERIFYING)
        if not await self.hasher.verify_async(secret, record.secret_hash):
            _advance(state, AuthState.REJECTED)
            return _REJECTED

        if self.hasher.needs_rehash(record.secret_hash):
            upgraded = await self.hasher.hash_async(secret)
            await self.store.update_secret_hash(record.identifier, upgraded)
            logger.info("Upgraded password hash cost for an identity")

        return AuthOutcome(state=_advance(state, AuthState.AUTHENTICATED), principal=record.to_principal())
