"""
sessions/manager.py -- Per-request session orchestration.

Request states:

    no token      -> anonymous            (login may then mint a new session)
    token present -> store lookup -> live    -> authenticated
                                  -> missing -> anonymous, clear cookie
                                  -> expired -> anonymous, clear cookie

SessionManager owns no storage of its own. The session store, the
authentication strategy and the principal codec are constructed once at
startup (api/main.py lifespan) and injected here.

Session fixation: login() always mints a brand-new token and destroys any
token the client presented, even a live one.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from auth.codec import PrincipalCodec
from auth.models import Principal
from auth.strategy import AuthenticationStrategy
from core.errors import InvalidCredentials, PrincipalDecodeError
from sessions.models import Session
from sessions.store import SessionStore

logger = logging.getLogger("chirp.sessions")


@dataclass(frozen=True)
class AuthContext:
    """What the session middleware learned about one request.

    Immutable. Handlers read it from request.state.auth; cookie changes go on
    the response, never back into this object.
    """

    principal: Principal | None = None
    session: Session | None = None
    # The client presented a token that no longer maps to a live session.
    clear_token: bool = False
    # Rolling sessions: expiry was extended and the cookie should be re-sent.
    refreshed: bool = False

    @property
    def authenticated(self) -> bool:
        return self.principal is not None

    @property
    def token(self) -> str | None:
        return self.session.token if self.session is not None else None


ANONYMOUS = AuthContext()


class SessionManager:
    def __init__(
        self,
        store: SessionStore,
        strategy: AuthenticationStrategy,
        codec: PrincipalCodec,
        ttl_seconds: int,
        rolling: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.strategy = strategy
        self.codec = codec
        self.ttl_seconds = ttl_seconds
        self.rolling = rolling
        self._clock = clock

    async def resolve(self, token: str | None) -> AuthContext:
        """Map a presented token to an AuthContext.

        Missing, expired and orphaned sessions all collapse to anonymous.
        StoreUnavailable propagates: an outage is not "logged out".
        """
        if not token:
            return ANONYMOUS

        session = await self.store.get(token)
        if session is None:
            return AuthContext(clear_token=True)

        try:
            principal = await self.codec.decode(session.identifier)
        except PrincipalDecodeError:
            logger.info("Dropping session whose identity no longer resolves")
            await self.store.destroy(token)
            return AuthContext(clear_token=True)

        refreshed = False
        if self.rolling:
            extend_to = self._clock() + self.ttl_seconds
            refreshed = await self.store.touch(token, extend_to)
            if refreshed:
                session.expires_at = extend_to
                session.version += 1

        return AuthContext(principal=principal, session=session, refreshed=refreshed)

    async def login(
        self, identifier: str, secret: str, presented_token: str | None = None
    ) -> tuple[Principal, str]:
        """Authenticate and open a new session. Returns (principal, new token).

        Raises InvalidCredentials for any rejected credential, whatever the cause.
        """
        outcome = await self.strategy.authenticate(identifier, secret)
        if not outcome.authenticated:
            raise InvalidCredentials()

        if presented_token:
            await self.store.destroy(presented_token)
        token = await self.store.create(self.codec.encode(outcome.principal), self.ttl_seconds)
        logger.info("Session opened")
        return outcome.principal, token

    async def logout(self, token: str | None) -> None:
        await self.store.destroy(token or "")

    async def update_data(self, token: str, mutate: Callable[[dict], dict | None]) -> Session:
        return await self.store.update_data(token, mutate)

    async def revoke_others(self, identifier: str, keep: str | None) -> int:
        """End every session of identifier except `keep` (used after a password change)."""
        return await self.store.destroy_all_for(identifier, keep=keep)
