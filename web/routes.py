"""
web/routes.py -- Jinja2 form routes for the Chirp login flow.

These routes serve server-rendered HTML and answer with redirects. They share
app.state with the API routes (same SessionManager, stores and hasher).

Routes:
  GET  /               -- redirect to the success page or the login form
  GET  /login          -- login form
  POST /login          -- handle form login (fields: identifier, secret)
  GET  /login-success  -- landing page after login (auth required)
  POST /logout         -- destroy session, clear cookie, redirect /login
  GET  /register       -- registration form
  POST /register       -- create identity, redirect /login?registered=1
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from api.limiter import limiter, login_rate_limit
from auth.dependencies import try_get_principal
from auth.registration import register_identity
from auth.tokens import clear_session_cookie, set_session_cookie
from core.config import get_settings
from core.errors import DuplicateIdentifier, InvalidCredentials
from sessions.manager import SessionManager

logger = logging.getLogger("chirp.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= query params on /login and /register [M3].
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted error query strings.
# There is exactly one login failure message [anti-enumeration].
_ERROR_MESSAGES: dict[str, str] = {
    "invalid_credentials": "Invalid identifier or secret.",
    "duplicate_identifier": "That identifier is already registered.",
    "registration_disabled": "Self-registration is disabled.",
    "invalid_input": "Enter an identifier and a secret of at least 6 characters.",
}


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]

    Rejects absolute URLs and protocol-relative ones ("//host", "/\\host"),
    which would redirect off-site after login.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith(("//", "/\\")):
        return next_url
    return get_settings().login_success_path


def _session_token(request: Request) -> Optional[str]:
    return request.cookies.get(get_settings().session_cookie_name)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/")
def index(request: Request) -> RedirectResponse:
    if try_get_principal(request) is not None:
        return RedirectResponse(get_settings().login_success_path, status_code=302)
    return RedirectResponse("/login", status_code=302)


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login page."""
    if try_get_principal(request) is not None:
        return RedirectResponse(get_settings().login_success_path, status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""), None)
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "error_msg": error_msg,
            "registered": request.query_params.get("registered") == "1",
            "next": _safe_next(request.query_params.get("next")),
        },
    )


@router.post("/login", response_class=HTMLResponse)
@limiter.limit(login_rate_limit)  # [H2]
async def login_post(
    request: Request,
    identifier: str = Form(...),
    secret: str = Form(...),
) -> RedirectResponse:
    """Handle the login form. Success and failure both answer with a redirect."""
    manager: SessionManager = request.app.state.sessions
    try:
        _principal, token = await manager.login(identifier, secret, presented_token=_session_token(request))
    except InvalidCredentials:
        resp = RedirectResponse("/login?error=invalid_credentials", status_code=302)
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    next_url = _safe_next(request.query_params.get("next"))  # [C2]
    resp = RedirectResponse(next_url, status_code=302)
    set_session_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/login-success", response_class=HTMLResponse)
def login_success(request: Request) -> HTMLResponse:
    principal = try_get_principal(request)
    if principal is None:
        return RedirectResponse(f"/login?next={request.url.path}", status_code=302)
    return templates.TemplateResponse(request, "login_success.html", {"principal": principal})


@router.post("/logout")
async def logout(request: Request) -> RedirectResponse:
    """Destroy the session and redirect to the login page."""
    manager: SessionManager = request.app.state.sessions
    await manager.logout(_session_token(request))
    resp = RedirectResponse("/login", status_code=302)
    clear_session_cookie(resp)
    return resp


@router.get("/register", response_class=HTMLResponse)
def register_form(request: Request) -> HTMLResponse:
    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""), None)
    return templates.TemplateResponse(
        request,
        "register.html",
        {"error_msg": error_msg, "enabled": get_settings().self_registration_enabled},
    )


@router.post("/register", response_class=HTMLResponse)
async def register_post(
    request: Request,
    identifier: str = Form(...),
    secret: str = Form(...),
) -> RedirectResponse:
    """Create an identity from the registration form.

    Any session cookie the client already holds is ignored: registering does
    not log in, and it never adopts a pre-existing session.
    """
    if not get_settings().self_registration_enabled:
        return RedirectResponse("/register?error=registration_disabled", status_code=302)
    try:
        await register_identity(request.app.state.credential_store, request.app.state.hasher, identifier, secret)
    except DuplicateIdentifier:
        return RedirectResponse("/register?error=duplicate_identifier", status_code=302)
    except ValueError:
        return RedirectResponse("/register?error=invalid_input", status_code=302)
    return RedirectResponse("/login?registered=1", status_code=302)
