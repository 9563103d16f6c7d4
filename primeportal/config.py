"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Variable names follow the hosted deployment (``NEXT_PUBLIC_*``, ``VERCEL_URL``)
    so the same environment can drive this service.  Credentials are optional
    here; the client factories raise ``ConfigurationError`` when they need one
    that is missing.
    """

    # --- App ---
    app_name: str = "Prime Portal"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | preview | production

    # --- Supabase ---
    supabase_url: str | None = Field(default=None, validation_alias="NEXT_PUBLIC_SUPABASE_URL")
    supabase_anon_key: str | None = Field(
        default=None, validation_alias="NEXT_PUBLIC_SUPABASE_ANON_KEY"
    )
    supabase_service_role_key: str | None = Field(
        default=None, validation_alias="SUPABASE_SERVICE_ROLE_KEY"
    )  # server-side only, never expose to client
    supabase_db_url: str | None = Field(default=None, validation_alias="SUPABASE_DB_URL")
    supabase_jwt_secret: str | None = Field(default=None, validation_alias="SUPABASE_JWT_SECRET")

    # --- Cron ---
    cron_secret: str | None = Field(default=None, validation_alias="CRON_SECRET")

    # --- Base URL resolution ---
    nextauth_url: str | None = Field(default=None, validation_alias="NEXTAUTH_URL")
    app_url: str | None = Field(default=None, validation_alias="NEXT_PUBLIC_APP_URL")
    site_url: str | None = Field(default=None, validation_alias="NEXT_PUBLIC_SITE_URL")
    vercel_url: str | None = Field(default=None, validation_alias="VERCEL_URL")

    # --- WHOOP ---
    whoop_client_id: str = Field(default="", validation_alias="WHOOP_CLIENT_ID")
    whoop_client_secret: str = Field(default="", validation_alias="WHOOP_CLIENT_SECRET")
    whoop_encryption_key: str | None = Field(default=None, validation_alias="WHOOP_ENCRYPTION_KEY")

    # --- Doctor auto-assignment ---
    # Profile id every new athlete is assigned to; falls back to the first doctor
    default_doctor_id: str | None = Field(default=None, validation_alias="DEFAULT_DOCTOR_ID")

    # --- Local key/value storage ---
    local_storage_path: str | None = Field(default=None, validation_alias="LOCAL_STORAGE_PATH")

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def supabase_jwks_url(self) -> str | None:
        if not self.supabase_url:
            return None
        return f"{self.supabase_url.rstrip('/')}/auth/v1/.well-known/jwks.json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
