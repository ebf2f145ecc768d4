from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("medportal.core.config")

# Load .env.local first, then .env; existing env vars win (useful for CI/CD)
_PROJECT_ROOT = Path(__file__).parent.parent.parent
_ENV_LOCAL = _PROJECT_ROOT / ".env.local"
_ENV_FILE = _PROJECT_ROOT / ".env"
for _env_path in (_ENV_LOCAL, _ENV_FILE):
    if _env_path.exists():
        load_dotenv(_env_path, override=False)
        log.info("[config] Loaded %s", _env_path)

_PROD_ENVS = {"prod", "production", "stage", "staging"}
_DEV_ENVS = {"dev", "development", "local", "test", "testing"}

_DEFAULT_SUPERADMIN_EMAILS = "admin@medicos-ar.com,superadmin@medicos-ar.com"


class Settings(BaseSettings):
    # --- Core Infrastructure ---
    APP_ENV: str = Field(
        default="dev",
        validation_alias=AliasChoices("APP_ENV", "ENV", "PYTHON_ENV"),
    )
    DATABASE_URL: Optional[str] = None
    SECRET_KEY: str = "dev-secret-key-change-me"  # Verifies principal tokens from the auth provider
    ALGORITHM: str = "HS256"

    # --- Application Behavior ---
    APP_BASE_URL: Optional[str] = None  # Used to build referral links
    CORS_ALLOWED_ORIGINS: str = "http://127.0.0.1:3000,http://localhost:3000"
    SENTRY_DSN: Optional[str] = None

    # --- Identity ---
    SUPERADMIN_EMAILS: str = Field(
        default=_DEFAULT_SUPERADMIN_EMAILS,
        description="Comma-separated allow-list of superadmin emails",
    )
    ROLE_CACHE_TTL_SECONDS: int = Field(default=300, ge=0)
    ROLE_DETECT_GRACE_SECONDS: float = Field(
        default=3.0,
        ge=0,
        description="How long an unresolved role is shown as 'detecting' before failing closed",
    )
    ROLE_RESOLVE_ATTEMPTS: int = Field(default=3, ge=1)
    ROLE_RESOLVE_RETRY_SECONDS: float = Field(default=0.2, ge=0)

    # --- Referrals ---
    REFERRAL_CODE_MAX_ATTEMPTS: int = Field(default=100, ge=1)

    @property
    def is_dev_mode(self) -> bool:
        env = (self.APP_ENV or "dev").strip().lower()
        return env in _DEV_ENVS

    @property
    def superadmin_emails(self) -> frozenset[str]:
        raw = (self.SUPERADMIN_EMAILS or "").replace(";", ",")
        return frozenset(e.strip().lower() for e in raw.split(",") if e.strip())

    @property
    def cors_allowed_origin_list(self) -> list[str]:
        raw = (self.CORS_ALLOWED_ORIGINS or "").replace(";", ",")
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    @property
    def database_url(self) -> str:
        url = (self.DATABASE_URL or "").strip()
        if url:
            return url
        return f"sqlite:///{(_PROJECT_ROOT / 'medportal.db').as_posix()}"

    @model_validator(mode="after")
    def _check_secrets(self) -> "Settings":
        env = (self.APP_ENV or "dev").strip().lower()
        if env in _PROD_ENVS:
            if not self.SECRET_KEY or self.SECRET_KEY == "dev-secret-key-change-me":
                raise ValueError("SECRET_KEY must be configured for production deployments")
            if not (self.DATABASE_URL or "").strip():
                raise ValueError("DATABASE_URL must be configured for production deployments")
        elif self.SECRET_KEY == "dev-secret-key-change-me":
            log.warning("[config] Using placeholder SECRET_KEY (dev allowed)")
        return self

    model_config = SettingsConfigDict(
        env_file=(str(_ENV_LOCAL), str(_ENV_FILE)),
        extra="ignore",
    )


settings = Settings()
