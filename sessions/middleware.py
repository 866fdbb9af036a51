"""
sessions/middleware.py -- Resolve the session cookie before every route.

Pipeline per request:
  1. Read the session cookie (if any).
  2. SessionManager.resolve() -> frozen AuthContext on request.state.auth.
  3. Run the route. Routes that log in or out set/clear the cookie themselves.
  4. If the route did not touch the cookie: clear a stale one, or re-send a
     refreshed one for rolling sessions.

The manager is looked up on app.state at request time. It is built in the
lifespan, after middleware registration, and replaced wholesale in tests.

Exceptions raised here never reach FastAPI's route-level exception handlers,
so StoreUnavailable is turned into the standard 503 envelope in place.
"""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from auth.tokens import clear_session_cookie, set_session_cookie, sets_session_cookie
from core.config import get_settings
from core.errors import StoreUnavailable
from sessions.manager import SessionManager

logger = logging.getLogger("chirp.sessions")


class SessionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        manager: SessionManager = request.app.state.sessions
        token = request.cookies.get(get_settings().session_cookie_name)

        try:
            context = await manager.resolve(token)
        except StoreUnavailable:
            logger.error("Session lookup failed for %s %s", request.method, request.url.path)
            return JSONResponse(
                status_code=503,
                content={
                    "error": {
                        "code": "store_unavailable",
                        "message": "Service temporarily unavailable.",
                        "detail": None,
                    }
                },
            )

        request.state.auth = context
        response = await call_next(request)

        if sets_session_cookie(response):
            return response
        if context.clear_token:
            clear_session_cookie(response)
        elif context.refreshed and context.token:
            set_session_cookie(response, context.token)
        return response
