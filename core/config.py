"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Chirp happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. The session
       store keys every row by HMAC-SHA256(SECRET_KEY, token) -- a short key
       weakens that.

  [M7] Outside DEBUG mode a missing SECRET_KEY is a hard startup failure.
       There is no shipped default secret. DEBUG mode generates a random key
       per process, so sessions do not survive a restart.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, or sessions/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("chirp.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'chirp.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field except secret_key has a working default. Defaults lean to the
    strict side: secure cookies, samesite=strict, re-validated sessions.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `session_ttl_seconds` reads from SESSION_TTL_SECONDS.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # Upper bound for any single credential/session store call.
    store_timeout_seconds: float = Field(default=5.0, gt=0)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_ttl_seconds: int = Field(default=86400, gt=0)
    # Slide expiry forward on every authenticated request.
    session_rolling: bool = False
    session_cookie_name: str = "chirp_session"
    secure_cookies: bool = True
    cookie_samesite: Literal["strict", "lax"] = "strict"
    # Re-check the identity table when resolving a session. False trusts the
    # identifier cached in the session row.
    revalidate_sessions: bool = True
    sweep_interval_seconds: int = Field(default=900, gt=0)

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    hash_workers: int = Field(default=4, ge=1)

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    self_registration_enabled: bool = True
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    login_success_path: str = "/login-success"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start without SECRET_KEY.
        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() after changing environment
    variables so the next call re-reads them.
    """
    return Settings()
