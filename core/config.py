"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Dev mode generates a SECRET_KEY with a warning, production mode
      refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Session ids and bearer
  tokens are stored as HMAC-SHA256(SECRET_KEY, raw) -- a short key weakens that.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a hard
  startup failure. A random key would silently orphan every stored session and
  token on restart.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
or auth/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true still required for the
    secret key).
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
    database_url: str = "sqlite:///authgate.db"

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    # bcrypt accepts 4..31. Each step doubles the work.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Grant storage (sessions and bearer tokens)
    # ------------------------------------------------------------------

    grant_backend: Literal["sql", "memory"] = "sql"
    grant_shards: int = Field(default=16, ge=1)
    purge_interval_seconds: int = Field(default=15 * 60, ge=0)  # 0 disables the sweep

    # ------------------------------------------------------------------
    # Sessions (cookie channel)
    # ------------------------------------------------------------------

    session_cookie_name: str = "session_id"
    secure_cookies: bool = False
    session_expire_seconds: int = Field(default=8 * 3600, gt=0)
    session_sliding: bool = False
    # Hard cap for sliding sessions. 0 = no cap.
    session_absolute_seconds: int = Field(default=0, ge=0)

    # ------------------------------------------------------------------
    # Bearer tokens (API channel)
    # ------------------------------------------------------------------

    # 0 = tokens never expire; they live until revoked.
    token_expire_seconds: int = Field(default=30 * 24 * 3600, ge=0)
    token_policy: Literal["multi", "single"] = "multi"
    allow_query_token: bool = True
    token_authority: Literal["local", "delegated"] = "local"

    # ------------------------------------------------------------------
    # Delegated authority (external JWT issuer, e.g. an OAuth2 provider)
    # ------------------------------------------------------------------

    delegated_provider: str = ""
    delegated_key: str = ""  # HS* shared secret or RS*/ES* public key (PEM)
    delegated_algorithm: str = "RS256"
    delegated_issuer: str = ""
    delegated_audience: str = ""

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    rate_limit_storage: str = "memory://"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions and tokens will not survive restart.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions and tokens will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_delegated(self) -> "Settings":
        """A delegated token authority is useless without a verification key and provider name."""
        if self.token_authority == "delegated" and not (self.delegated_key and self.delegated_provider):
            raise ValueError("TOKEN_AUTHORITY=delegated requires DELEGATED_KEY and DELEGATED_PROVIDER.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings()
    directly, except tests that need a one-off configuration.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
