"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in every route module
that applies a per-route limit with @limiter.limit().

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Login throttling is the brute-force mitigation the authentication strategy
deliberately leaves out; the limit string comes from LOGIN_RATE_LIMIT.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Dynamic limit for login routes, read at request time."""
    return get_settings().login_rate_limit
