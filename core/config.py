"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the service happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, code_ttl_seconds -> CODE_TTL_SECONDS).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode generates a signing key with a warning, production
      mode refuses to start without one.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import json
import logging
import secrets
from functools import lru_cache
from typing import Annotated

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger("orgauth.config")


def _parse_list(value: object) -> list[str]:
    """Parse a host/origin list from a JSON array or comma-separated string."""
    if isinstance(value, (list, tuple)):
        return [str(x).strip() for x in value if str(x).strip()]
    s = str(value or "").strip()
    if s.startswith("["):
        return [str(x).strip() for x in json.loads(s) if x]
    return [x.strip() for x in s.split(",") if x.strip()]


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
    # Empty string is the sentinel for "not configured".
    secret_key: str = ""
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///orgauth.db"
    # Startup only; request handlers never retry storage calls.
    db_connect_retries: int = 10
    db_connect_backoff_seconds: float = 3.0

    # ------------------------------------------------------------------
    # Tokens and verification codes
    # ------------------------------------------------------------------

    token_expire_seconds: int = 12 * 60 * 60
    code_ttl_seconds: int = 120

    # ------------------------------------------------------------------
    # SMS gateway (disabled means codes are logged, not sent)
    # ------------------------------------------------------------------

    sms_enabled: bool = False
    sms_gateway_url: str = ""
    sms_api_key: str = ""
    sms_sign_name: str = ""
    sms_template_id: str = ""
    sms_country_prefix: str = "+86"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    # NoDecode hands the raw env string to parse_lists instead of json-decoding it.
    cors_origins: Annotated[list[str], NoDecode] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: Annotated[list[str], NoDecode] = ["localhost", "127.0.0.1", "*.localhost"]

    @field_validator("cors_origins", "allowed_hosts", mode="before")
    @classmethod
    def parse_lists(cls, v: object) -> list[str]:
        return _parse_list(v)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the signing-key policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
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
    def validate_sms_gateway(self) -> "Settings":
        if self.sms_enabled and not self.sms_gateway_url:
            raise ValueError("SMS_GATEWAY_URL is required when SMS_ENABLED=true.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
