"""
core/config.py -- Townzy runtime settings (pydantic-settings).

Every environment read goes through get_settings(). Modules never touch
os.environ themselves; the one exception is tests/conftest.py, which sets
variables before the first get_settings() call.

Sources, highest priority first: process environment, then .env in the
working directory, then the field defaults below. Env var names are the
upper-cased field names (token_expire_seconds -> TOKEN_EXPIRE_SECONDS).
List fields (ALLOWED_HOSTS, ALLOWED_ORIGINS) take JSON arrays.

SECRET_KEY policy (enforced in Settings.check_policy):
  DEBUG=true    missing key is replaced by a random one and a warning is
                logged. Every credential dies with the process.
  otherwise     missing key stops the process at startup.
  always        fewer than 32 characters is rejected; an HS256 key that
                short makes credentials forgeable.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, catalog/, or client/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("townzy.config")

_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Townzy settings. Every field has a default so tests need no .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    app_version: str = "2.2.0"
    # "" means unset; check_policy replaces or rejects it.
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    # Every flow issues 24h credentials. There is no refresh path; an expired
    # credential means a new login.
    token_expire_seconds: int = 24 * 60 * 60
    bcrypt_rounds: int = 12
    merchant_id_attempts: int = 10

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    auth_db_url: str = f"sqlite:///{_ROOT / 'auth' / 'townzy_auth.db'}"
    catalog_db_url: str = f"sqlite:///{_ROOT / 'catalog' / 'townzy_catalog.db'}"
    seed_categories: bool = True
    # Parent hops allowed before a walk is treated as corrupted data.
    max_tree_depth: int = 10

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    auth_rate_limit: str = "15 per 15 minutes"
    default_rate_limit: str = "200 per 15 minutes"
    allowed_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def check_policy(self) -> "Settings":
        """Apply the SECRET_KEY policy and sanity-check numeric knobs."""
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY is not set. Export a key of at least 32 characters, "
                    "or set DEBUG=true for a throwaway development key."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning("DEBUG is on and SECRET_KEY is unset: using a random key for this process only.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.max_tree_depth < 2:
            raise ValueError("MAX_TREE_DEPTH must allow at least the three catalog levels.")
        if self.merchant_id_attempts < 1:
            raise ValueError("MERCHANT_ID_ATTEMPTS must be at least 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Build Settings on first call and return the same instance afterwards.

    Tests that need different values must set the environment and call
    get_settings.cache_clear().
    """
    return Settings()
