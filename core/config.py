"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for campgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Dev mode generates missing signing secrets with a warning,
      production mode refuses to start without them.

Security notes:
  [S1] Signing secrets shorter than 32 chars are rejected outright. HS256
       relies on key entropy -- a short key weakens every issued token.

  [S2] Access and refresh tokens must be signed with different secrets, so a
       refresh token can never be replayed as an access token (or vice versa).

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("campgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'campgate.db'}"

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    database_url: str = _DEFAULT_DB_URL
    # Comma-separated list, e.g. "http://localhost:5173,https://app.example.com"
    cors_origins: str = "http://localhost:5173"
    # JSON and form bodies larger than this are refused with 413.
    max_body_bytes: int = 16 * 1024

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    access_token_secret: str = ""
    access_token_expire_seconds: int = 15 * 60
    refresh_token_secret: str = ""
    refresh_token_expire_seconds: int = 10 * 24 * 3600

    secure_cookies: bool = True

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    # The reset mail links to {forgot_password_redirect_url}/{plain_token};
    # the frontend page then POSTs the new password to /auth/reset-password.
    forgot_password_redirect_url: str = "http://localhost:5173/reset-password"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Outbound mail (empty smtp_host means "log instead of send")
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = "mail.campgate@example.com"
    mail_product_name: str = "Campgate"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_token_secrets(self) -> "Settings":
        """Enforce the signing secret policy [S1][S2].

        Dev mode (DEBUG=true): auto-generate each missing secret with a
            warning. Sessions will not survive a restart.

        Production mode: refuse to start if either secret is missing.
        """
        for field in ("access_token_secret", "refresh_token_secret"):
            value = getattr(self, field)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{field.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                value = secrets.token_hex(32)
                setattr(self, field, value)
                logger.warning("Using auto-generated %s. Sessions will not persist across restarts.", field.upper())
            if len(value) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{field.upper()} must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ.")
        return self

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
