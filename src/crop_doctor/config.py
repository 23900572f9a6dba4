"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    openai_api_key: str
    openai_model: str = "gpt-4o"
    polar_organization: str = "nmdong-hue"
    polar_webhook_secret: str | None = None
    guest_diagnosis_limit: int = 5
    account_diagnosis_limit: int = 20
    max_history_items: int = 20
    image_target_width: int = 400
    image_quality: int = 80
    device_storage_dir: str = ".device-storage"
    device_storage_capacity_bytes: int = 5 * 1024 * 1024
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )
