"""
auth/tokens.py -- Session token generation, hashing, and the cookie carrier.

Security design decisions:
  Tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. Collisions
       across any realistic population of live sessions are negligible, and
       brute-force guessing is computationally infeasible. Tokens carry no
       structure; clients must treat them as opaque.

  Storage: the session store never persists the raw token. It keys rows by
       HMAC-SHA256(SECRET_KEY, token), so a copy of the sessions table does
       not yield usable cookies without also knowing SECRET_KEY. The hash is
       deterministic, so lookup stays a primary-key read.

  Cookie: httponly (page scripts cannot read it), secure (HTTPS only, on by
       default), samesite=strict by default (not sent on cross-site
       requests). max_age matches the session TTL so browser and server
       expire together.

Layer rule: no imports from api/, web/, or sessions/. Import from core/
is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

from core.config import get_settings

_TOKEN_BYTES = 32


def generate_session_token() -> str:
    return secrets.token_urlsafe(_TOKEN_BYTES)


def hash_session_token(token: str, secret_key: str) -> str:
    """Return HMAC-SHA256(secret_key, token) as a hex string."""
    return hmac.new(secret_key.encode(), token.encode(), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, max_age: int = 0) -> None:
    """Write the session token as an httpOnly cookie on the response.

    Args:
        response: FastAPI/Starlette response object.
        token:    Raw session token returned by SessionStore.create().
        max_age:  Cookie lifetime in seconds. If 0 (default), uses
                  Settings.session_ttl_seconds.
    """
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite=settings.cookie_samesite,
        secure=settings.secure_cookies,
        max_age=max_age if max_age > 0 else settings.session_ttl_seconds,
    )


def clear_session_cookie(response) -> None:
    """Expire the session cookie on the client.

    The attributes must match the ones used when setting it, otherwise some
    browsers keep the original cookie.
    """
    settings = get_settings()
    response.delete_cookie(
        settings.session_cookie_name,
        httponly=True,
        samesite=settings.cookie_samesite,
        secure=settings.secure_cookies,
    )


def sets_session_cookie(response) -> bool:
    """True if the response already carries a Set-Cookie for the session cookie."""
    prefix = f"{get_settings().session_cookie_name}="
    return any(value.startswith(prefix) for value in response.headers.getlist("set-cookie"))
