"""
core/config.py -- Every setting shopfront reads from the environment.

Nothing else in the tree touches os.environ; callers go through
get_settings(), which builds Settings on first use and caches it.

How values arrive:
  pydantic-settings maps each field to the upper-cased env var of the same
      name (jwt_access_secret <- JWT_ACCESS_SECRET), falling back to .env
      and then to the defaults below.

  Explicit injection: the Settings instance is handed to the credential
      service, identity providers and mailer by the app lifespan. Those
      classes never call get_settings() themselves, so tests can build them
      with deterministic keys.

Security notes:
  Signing secrets shorter than 32 chars are rejected outright. The access and
  refresh secrets must differ -- a refresh token must never verify as an
  access token.

  In production mode (DEBUG not set or false), a missing signing secret is a
  hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or catalog/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("shopfront.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'shopfront.db'}"


class Settings(BaseSettings):
    """Process-wide configuration.

    Every field has a default, so tests can build Settings(...) from keyword
    arguments alone. validate_signing_secrets() runs at construction and is
    what stops a misconfigured production start.
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

    # ------------------------------------------------------------------
    # Credentials and tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The validator below
    # either generates a dev key or raises, so callers never see "".
    jwt_access_secret: str = ""
    jwt_refresh_secret: str = ""
    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    bcrypt_rounds: int = 12

    verification_token_hours: int = 24
    reset_token_hours: int = 1

    # ------------------------------------------------------------------
    # Identity backend
    # ------------------------------------------------------------------

    identity_backend: Literal["local", "supabase"] = "local"
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # ------------------------------------------------------------------
    # Mail
    # ------------------------------------------------------------------

    app_url: str = "http://localhost:3000"
    app_name: str = "Shopfront"
    email_from: str = "no-reply@localhost"
    email_from_name: str = "Shopfront"
    aws_region: str = "us-east-1"
    # Log emails instead of calling SES. Turn off in production.
    email_development_mode: bool = True

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_secrets(self) -> "Settings":
        """Enforce the signing-secret policy.

        Dev mode (DEBUG=true): auto-generate any missing secret with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject secrets shorter than 32 characters, and reject
            identical access and refresh secrets.
        """
        for field in ("jwt_access_secret", "jwt_refresh_secret"):
            if getattr(self, field):
                continue
            if not self.debug:
                raise ValueError(
                    f"{field.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, field, secrets.token_hex(32))
            logger.warning("Using auto-generated %s. Sessions will not persist across restarts.", field.upper())

        if len(self.jwt_access_secret) < 32 or len(self.jwt_refresh_secret) < 32:
            raise ValueError("JWT signing secrets must be at least 32 characters.")
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ.")

        if self.identity_backend == "supabase" and not (self.supabase_url and self.supabase_anon_key):
            raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY are required when IDENTITY_BACKEND=supabase.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
