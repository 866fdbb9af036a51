"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session middleware (sessions/middleware.py) has already resolved the
request's cookie into an AuthContext on request.state.auth before any route
runs. These helpers only read that result; they never touch a store.

try_get_principal() is the soft variant (returns None when anonymous).
get_current_principal() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: auth/dependencies.py may import from fastapi (for
HTTPException/Request) because it is part of the FastAPI dependency
injection system. It reads request.state.auth by duck typing rather than
importing sessions/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Principal


def try_get_principal(request: Request) -> Principal | None:
    """Return the request's Principal, or None for anonymous requests.

    Never raises. Requests that bypassed the session middleware (it is not
    mounted) are anonymous.
    """
    context = getattr(request.state, "auth", None)
    return getattr(context, "principal", None)


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request is anonymous.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return principal
