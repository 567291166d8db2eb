"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authcore happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used to make a missing or short
      SECRET_KEY a hard startup failure.

Security notes:
  Short key: a SECRET_KEY shorter than 32 chars is rejected outright. Access-token
       signatures rely on key entropy -- a short key weakens every session.

  Missing key: a missing SECRET_KEY is a hard startup failure in every mode, DEBUG
       included. Access tokens issued under a throwaway key would silently
       stop validating on restart while their refresh tokens stayed live.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authcore.config")

MIN_SECRET_KEY_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field except secret_key has a default so Settings() can be
    instantiated in test environments with only SECRET_KEY exported.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `secret_key` reads from SECRET_KEY, `bcrypt_rounds` from BCRYPT_ROUNDS.
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
    # below raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///./authcore.db"

    # ------------------------------------------------------------------
    # Token lifetimes
    # ------------------------------------------------------------------

    access_token_ttl_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_ttl_days: int = Field(default=7, gt=0)
    magic_link_ttl_seconds: int = Field(default=15 * 60, gt=0)
    password_reset_ttl_seconds: int = Field(default=60 * 60, gt=0)

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    # bcrypt accepts 4..31. Tests drop to 4; production stays at 12.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    login_rate_limit: str = "10/minute"
    link_request_rate_limit: str = "5/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Outbound email (empty smtp_host = log instead of send)
    # ------------------------------------------------------------------

    app_base_url: str = "http://localhost:3000"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = ""
    email_from_name: str = "authcore"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Missing key: refuse to start. There is no dev-mode fallback; set
            SECRET_KEY in the environment or .env file, even locally.

        Short key: refuse to start. Keys under 32 characters have
            insufficient entropy for HMAC-SHA256 signing.
        """
        if not self.secret_key:
            raise ValueError(
                "SECRET_KEY is required. Set SECRET_KEY in your environment or .env file "
                "(at least 32 characters, e.g. `python -c 'import secrets; print(secrets.token_hex(32))'`)."
            )
        if len(self.secret_key) < MIN_SECRET_KEY_LENGTH:
            raise ValueError(f"SECRET_KEY must be at least {MIN_SECRET_KEY_LENGTH} characters.")
        if self.debug:
            logger.warning("DEBUG is enabled -- do not run this configuration in production.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
