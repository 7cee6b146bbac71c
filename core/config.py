"""
core/config.py -- Centralized client configuration via pydantic-settings.

All environment variable reads for the client happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() or
accept a Settings instance from the caller.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. api_base_url -> API_BASE_URL). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Rejects a malformed credential key before any store opens,
      and a retry policy that could never wait between attempts.

Layer rule: core/ is the kernel. This module may not import from api/, auth/
or storage/.
"""

import logging
from functools import lru_cache

from cryptography.fernet import Fernet
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.models import DEFAULT_API_BASE_URL

logger = logging.getLogger("automatedlife.config")


class Settings(BaseSettings):
    """Client settings loaded from environment variables and .env file.

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
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    api_base_url: str = DEFAULT_API_BASE_URL
    connect_timeout: float = 30.0
    receive_timeout: float = 30.0

    # Fixed schedule, not exponential. When max_retries exceeds the schedule
    # length the last delay is reused.
    max_retries: int = 3
    retry_delays: list[float] = [1.0, 2.0, 3.0]

    # Diagnostic request/response logging. Never enable in production builds:
    # request bodies include passwords on the login path.
    enable_request_logging: bool = False

    # ------------------------------------------------------------------
    # Credential storage
    # ------------------------------------------------------------------

    # Empty string means "use the store's default database file".
    credential_db_url: str = ""
    # Urlsafe base64 Fernet key. Empty string means a key file is generated
    # next to the credential database on first use.
    credential_key: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_policy(self) -> "Settings":
        """Reject settings that would fail later in a less obvious place.

        credential_key: Fernet() raises ValueError on anything that is not
            32 urlsafe-base64 bytes. Failing here surfaces the problem at
            startup instead of on the first token write.

        Retry policy: negative retry counts are meaningless, and enabled
            retries need at least one delay in the schedule.
        """
        if self.credential_key:
            try:
                Fernet(self.credential_key.encode())
            except ValueError as exc:
                raise ValueError("CREDENTIAL_KEY must be a urlsafe base64-encoded 32-byte Fernet key.") from exc
        if self.max_retries < 0:
            raise ValueError("MAX_RETRIES must be zero or greater.")
        if self.max_retries and not self.retry_delays:
            raise ValueError("RETRY_DELAYS must contain at least one delay when retries are enabled.")
        if self.enable_request_logging and not self.debug:
            logger.warning("WARNING: Request logging is enabled outside debug mode. Request bodies will be logged.")
        return self

    @property
    def timeout(self) -> tuple[float, float]:
        """(connect, read) tuple in the form requests expects."""
        return (self.connect_timeout, self.receive_timeout)


@lru_cache
def get_settings() -> Settings:
    """Return the client Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.

    In tests: construct Settings(...) directly and pass it in, or call
    get_settings.cache_clear() between test cases if you need to inject
    different environment variables.
    """
    return Settings()
