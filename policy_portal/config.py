"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Backend
    api_base_url: str = "http://localhost:8081"

    # Durable client-side storage for credentials
    storage_url: str = "sqlite:///./policy_portal.db"

    # Service
    service_name: str = "policy-portal-client"
    log_level: str = "INFO"

    # HTTP Client
    http_timeout_seconds: float = 10.0
    refresh_timeout_seconds: float = 15.0  # A hung refresh must not block every request forever

    # Navigation target handed to the UI when the session is gone
    login_redirect_path: str = "/login?auth_error=true"


settings = Settings()
