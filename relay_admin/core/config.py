"""relay-admin configuration - loaded from environment variables."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Every value can be overridden through the environment (or a ``.env`` file).
    The hosted store is addressed by STORE_URL (project base URL, without the
    ``/rest/v1`` suffix) and STORE_API_KEY (the project's anon/service key).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "relay-admin"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # Hosted backend (PostgREST + auth)
    store_url: str = "http://localhost:54321"
    store_api_key: str = ""
    # Optional: when set, session tokens are signature-checked
    store_jwt_secret: str | None = None
    store_jwt_audience: str = "authenticated"

    # Cookie carrying the operator's access token to the browser
    session_cookie_name: str = "relay_admin_session"
    session_cookie_secure: bool = False

    http_timeout: float = Field(30.0, gt=0)

    default_page_size: int = Field(20, ge=1, le=500)

    # Forwarding tags used for ingress/egress rows
    default_strategy: str = "round"
    default_transport: str = "raw"

    cors_origins: str = "http://localhost:5173"

    @field_validator("store_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("STORE_URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return level

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def rest_url(self) -> str:
        return f"{self.store_url}/rest/v1"

    @property
    def auth_url(self) -> str:
        return f"{self.store_url}/auth/v1"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
