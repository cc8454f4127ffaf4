"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for slidingauth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. redis_url -> REDIS_URL). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. The session store is the one piece of infrastructure that must
      be shared between processes, so production mode refuses to start without
      REDIS_URL while dev mode falls back to the in-process store with a warning.

Cookie/TTL pairing:
  session_duration_seconds and remember_me_duration_seconds are the ONLY source
  of both the store TTL and the cookie max_age. Nothing else may derive either
  value, otherwise the cookie and the store record drift apart.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, or cache/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("slidingauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'slidingauth_users.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    # "production" is the only value that turns on secure cookies.
    environment: str = "development"
    app_base_url: str = "http://localhost:8000"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # Empty string means "use the in-process MemoryStore" (dev and tests only).
    redis_url: str = ""
    redis_socket_timeout: float = 5.0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_duration_seconds: int = 24 * 60 * 60
    remember_me_duration_seconds: int = 30 * 24 * 60 * 60
    session_cookie_name: str = "sessionId"
    session_key_prefix: str = "session:"
    auto_login_on_register: bool = False

    # ------------------------------------------------------------------
    # Request gate
    # ------------------------------------------------------------------

    protected_routes: list[str] = ["/me", "/api/auth/me"]
    auth_routes: list[str] = ["/auth", "/verify"]
    login_path: str = "/auth/login"
    home_path: str = "/"

    # ------------------------------------------------------------------
    # Reset / verification tokens
    # ------------------------------------------------------------------

    password_reset_ttl_seconds: int = 60 * 60
    email_verification_ttl_seconds: int = 24 * 60 * 60
    # Empty keeps the unsigned token format. See auth/tokens.py.
    token_signing_key: str = ""

    # ------------------------------------------------------------------
    # Email (optional -- empty smtp_host means dev-mode logging only)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = ""
    email_from_name: str = "slidingauth"

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def secure_cookies(self) -> bool:
        """Cookies carry the Secure attribute only in a production environment."""
        return self.is_production

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_session_backend(self) -> "Settings":
        """Enforce the session store and duration policy at startup.

        Production mode: REDIS_URL is required. The in-process store is not
            shared between workers, so a login on one worker would look like
            "not authenticated" on every other.

        Dev mode: fall back to the in-process store with a warning.

        Both modes: durations must be positive, and a configured signing key
            must be long enough to be worth having.
        """
        if not self.redis_url:
            if self.is_production:
                raise ValueError(
                    "REDIS_URL is required in production mode. "
                    "Set REDIS_URL in your environment or .env file."
                )
            logger.warning("REDIS_URL not set -- sessions are kept in process memory and lost on restart.")
        if self.session_duration_seconds <= 0 or self.remember_me_duration_seconds <= 0:
            raise ValueError("Session durations must be positive.")
        if self.password_reset_ttl_seconds <= 0 or self.email_verification_ttl_seconds <= 0:
            raise ValueError("Token lifetimes must be positive.")
        if self.token_signing_key and len(self.token_signing_key) < 32:
            raise ValueError("TOKEN_SIGNING_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
