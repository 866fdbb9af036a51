"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST /api/v1/auth/login     -- identifier/secret login; sets session cookie
  POST /api/v1/auth/logout    -- destroys the session, clears the cookie
  POST /api/v1/auth/register  -- create an identity (when self-registration is on)
  GET  /api/v1/auth/me        -- current principal (requires auth)
  POST /api/v1/auth/password  -- change secret, revoke other sessions (requires auth)
  GET  /api/v1/session        -- session metadata + visit counter (requires auth)

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] SessionManager.login() goes through AuthenticationStrategy, which
       equalizes timing. Never inline a store lookup + verify here.
  [M5] Cache-Control: no-store on login responses.
  Anti-enumeration: every rejected login returns the same 401
       "invalid_credentials" body, whatever failed.
  Fixation: login mints a new token and destroys the presented one;
       registration ignores the presented token entirely.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    IdentityResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    PasswordChangeRequest,
    RegisterRequest,
    SessionInfoResponse,
)
from auth.dependencies import get_current_principal
from auth.models import Principal
from auth.registration import change_secret, register_identity
from auth.tokens import clear_session_cookie, set_session_cookie
from core.config import get_settings
from core.errors import DuplicateIdentifier, InvalidCredentials, SessionNotFound
from sessions.manager import SessionManager

# Auth policy:
# - POST /api/v1/auth/login:     public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:    public -- destroying an unknown token is a no-op
# - POST /api/v1/auth/register:  public, gated by SELF_REGISTRATION_ENABLED
# - GET  /api/v1/auth/me:        requires auth (get_current_principal)
# - POST /api/v1/auth/password:  requires auth (get_current_principal)
# - GET  /api/v1/session:        requires auth (get_current_principal)
router = APIRouter()


def _invalid_credentials_response() -> JSONResponse:
    resp = JSONResponse(
        status_code=401,
        content={"error": {"code": "invalid_credentials", "message": "Invalid identifier or secret."}},
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(login_rate_limit)  # [H2] below @router so the limited wrapper is what gets registered
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with identifier and secret; set a fresh session cookie."""
    settings = get_settings()
    manager: SessionManager = request.app.state.sessions
    presented = request.cookies.get(settings.session_cookie_name)

    try:
        principal, token = await manager.login(body.identifier, body.secret, presented_token=presented)
    except InvalidCredentials:
        return _invalid_credentials_response()

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            identifier=principal.identifier,
            display_name=principal.display_name,
            expires_in=settings.session_ttl_seconds,
        ).model_dump(),
    )
    set_session_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request) -> JSONResponse:
    """Destroy the current session (if any) and clear the cookie."""
    manager: SessionManager = request.app.state.sessions
    await manager.logout(request.cookies.get(get_settings().session_cookie_name))
    resp = JSONResponse(content={"message": "Logged out."})
    clear_session_cookie(resp)
    return resp


@router.post("/auth/register", response_model=IdentityResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> IdentityResponse:
    """Create a new identity. Does not log the caller in."""
    if not get_settings().self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    try:
        record = await register_identity(
            request.app.state.credential_store,
            request.app.state.hasher,
            body.identifier,
            body.secret,
            display_name=body.display_name,
        )
    except DuplicateIdentifier as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "duplicate_identifier", "message": "That identifier is already registered."},
        ) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=422,
            detail={"code": "validation_error", "message": str(exc)},
        ) from exc

    return IdentityResponse(
        identifier=record.identifier,
        display_name=record.display_name,
        created_at=record.created_at or "",
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(request: Request, principal: Principal = Depends(get_current_principal)) -> MeResponse:
    """Return identity information for the currently authenticated principal."""
    return MeResponse(
        identifier=principal.identifier,
        display_name=principal.display_name,
        session_expires_at=request.state.auth.session.expires_at,
    )


@router.post("/auth/password", response_model=MessageResponse)
async def password_change(
    request: Request,
    body: PasswordChangeRequest,
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    """Change the secret and end every other session of this identity."""
    try:
        await change_secret(
            request.app.state.credential_store,
            request.app.state.hasher,
            principal.identifier,
            body.current_secret,
            body.new_secret,
        )
    except InvalidCredentials as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": "invalid_credentials", "message": "Invalid identifier or secret."},
        ) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=422,
            detail={"code": "validation_error", "message": str(exc)},
        ) from exc

    manager: SessionManager = request.app.state.sessions
    await manager.revoke_others(principal.identifier, keep=request.state.auth.token)
    return MessageResponse(message="Secret changed.")


@router.get("/session", response_model=SessionInfoResponse)
async def session_info(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> SessionInfoResponse:
    """Return session metadata and count visits in the session's data bag."""
    manager: SessionManager = request.app.state.sessions

    def _count_visit(data: dict) -> None:
        data["visit_count"] = int(data.get("visit_count", 0)) + 1

    try:
        session = await manager.update_data(request.state.auth.token, _count_visit)
    except SessionNotFound as exc:
        # Expired or destroyed between middleware resolution and this write.
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        ) from exc

    return SessionInfoResponse(
        identifier=session.identifier,
        created_at=session.created_at,
        expires_at=session.expires_at,
        visit_count=session.data["visit_count"],
    )
