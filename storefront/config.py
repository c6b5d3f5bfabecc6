"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="PlayFree Vault", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    supabase_url: str = Field(
        default="http://localhost:54321", alias="SUPABASE_URL"
    )
    supabase_anon_key: str | None = Field(default=None, alias="SUPABASE_ANON_KEY")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./playfree.db", alias="DATABASE_URL"
    )

    request_timeout_seconds: float | None = Field(
        default=None, alias="REQUEST_TIMEOUT", gt=0
    )
    session_refresh_margin_seconds: int = Field(
        default=60, alias="SESSION_REFRESH_MARGIN", ge=0, le=3_600
    )
    admin_email_heuristic: bool = Field(
        default=True, alias="ADMIN_EMAIL_HEURISTIC"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )

    @field_validator("supabase_url", mode="before")
    @classmethod
    def _normalise_supabase_url(cls, value: object) -> str:
        """Strip whitespace and trailing slashes from the project URL."""

        text = str(value or "").strip().rstrip("/")
        parsed = urlparse(text)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("SUPABASE_URL must be an absolute http(s) URL")
        return text

    @field_validator("supabase_anon_key", mode="before")
    @classmethod
    def _blank_key_is_missing(cls, value: object) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @property
    def auth_url(self) -> str:
        """Base URL of the hosted auth endpoints."""

        return f"{self.supabase_url}/auth/v1"

    @property
    def rest_url(self) -> str:
        """Base URL of the hosted table endpoints."""

        return f"{self.supabase_url}/rest/v1"

    @property
    def project_ref(self) -> str:
        """Return the project reference (first label of the backend host)."""

        host = urlparse(self.supabase_url).hostname or "local"
        return host.split(".")[0]

    @property
    def session_storage_key(self) -> str:
        """Key under which the persisted auth session is stored."""

        return f"sb-{self.project_ref}-auth-token"

    @property
    def backend_configured(self) -> bool:
        return self.supabase_anon_key is not None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
