"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for pcvisor happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. session_secret -> SESSION_SECRET).

  @model_validator(mode="after"): DEBUG-conditional SESSION_SECRET policy.
      Dev mode generates a key with a warning, production refuses to start.

Security notes:
  [M6] SESSION_SECRET shorter than 32 chars is rejected outright. It signs
       bearer tokens and keys the API key HMAC.

  [M7] In production mode a missing SESSION_SECRET is a hard startup failure.

  [L1] LICENSE_SECRET left at its default value is logged loudly. Tokens
       signed with the public default can be forged by anyone.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, licensing/, backups/ or any other feature package.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("pcvisor.config")

DEFAULT_LICENSE_SECRET = "default-license-secret-change-in-production"

_ROOT = Path(__file__).resolve().parent.parent


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    session_secret: str = ""
    database_url: str = f"sqlite:///{_ROOT / 'pcvisor.db'}"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost:5000", "http://localhost:5173"]
    trust_proxy: bool = False

    # ------------------------------------------------------------------
    # Sessions and tokens
    # ------------------------------------------------------------------

    redis_url: str = ""
    session_cookie_name: str = "pcvisor.sid"
    # 30 days, matching the browser cookie lifetime.
    session_max_age: int = 30 * 24 * 60 * 60
    secure_cookies: bool = False
    token_expire_seconds: int = 8 * 3600
    login_rate_limit: str = "10/minute"
    self_registration_enabled: bool = True

    # ------------------------------------------------------------------
    # Licensing
    # ------------------------------------------------------------------

    license_server_url: str = ""
    license_secret: str = DEFAULT_LICENSE_SECRET
    license_instance_file: str = "/var/lib/myapp/license-instance-id"
    license_server_timeout: int = 15

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    # Kept out of the backups/ package directory.
    backup_dir: str = str(Path.cwd() / "data" / "backups")
    upload_dir: str = str(Path.cwd() / "data" / "uploads")
    pg_dump_path: str = "pg_dump"
    # IANA zone whose wall clock backup cron expressions follow.
    backup_timezone: str = "UTC"

    # ------------------------------------------------------------------
    # Web Push (VAPID)
    # ------------------------------------------------------------------

    vapid_public_key: str = ""
    vapid_private_key: str = ""
    vapid_subject: str = "mailto:admin@pcvisor.com"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("backup_timezone")
    @classmethod
    def validate_backup_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"BACKUP_TIMEZONE {value!r} is not a known IANA time zone") from e
        return value

    @model_validator(mode="after")
    def validate_session_secret(self) -> "Settings":
        """Enforce the SESSION_SECRET policy [M6][M7] and warn on [L1]."""
        if not self.session_secret:
            if self.debug:
                self.session_secret = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SESSION_SECRET. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SESSION_SECRET is required in production mode. "
                    "Set SESSION_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.session_secret) < 32:
            raise ValueError("SESSION_SECRET must be at least 32 characters.")
        if self.license_secret == DEFAULT_LICENSE_SECRET and not self.debug:
            logger.warning("LICENSE_SECRET is the built-in default. Set LICENSE_SECRET in production.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
