"""
API request and response models for Chirp REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
sessions/models.py, which own the internal domain representation. Route
handlers map between the two.

Secrets are accepted in request models only. No response model has a field
that could carry a secret, a hash, or a raw session token.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(min_length=1, max_length=320)
    # Not stripped: whitespace is significant in a secret. Capped at bcrypt's
    # 72-byte input window (multi-byte characters are truncated by the hasher).
    secret: str = Field(min_length=1, max_length=72, json_schema_extra={"format": "password"})


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(min_length=3, max_length=320)
    secret: str = Field(min_length=6, max_length=72)
    display_name: Optional[str] = Field(default=None, max_length=255)


class PasswordChangeRequest(BaseModel):
    """Request body for POST /api/v1/auth/password."""

    current_secret: str = Field(min_length=1, max_length=72)
    new_secret: str = Field(min_length=6, max_length=72)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Response for POST /api/v1/auth/login. The token itself travels only in the cookie."""

    model_config = ConfigDict(frozen=True)

    identifier: str
    display_name: Optional[str] = None
    expires_in: int


class IdentityResponse(BaseModel):
    """Response for POST /api/v1/auth/register."""

    model_config = ConfigDict(frozen=True)

    identifier: str
    display_name: Optional[str] = None
    created_at: str


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    identifier: str
    display_name: Optional[str] = None
    session_expires_at: float


class SessionInfoResponse(BaseModel):
    """Response for GET /api/v1/session."""

    model_config = ConfigDict(frozen=True)

    identifier: str
    created_at: float
    expires_at: float
    visit_count: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
