"""Application configuration — reads from environment variables and Docker Swarm secrets."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def _read_secret(name: str) -> str | None:
    """Read a Docker Swarm secret from /run/secrets/."""
    secret_path = Path(f"/run/secrets/{name}")
    if secret_path.exists():
        return secret_path.read_text().strip()
    return None


def _default_preferences_path() -> Path:
    return Path.home() / ".config" / "prompt-vault" / "preferences.json"


class Settings(BaseSettings):
    """Application settings with env var and secret support."""

    supabase_url: str = ""
    supabase_key: str = ""
    storage_bucket: str = "prompt-images"

    page_size: int = 24
    signed_url_ttl: int = 3600
    max_upload_bytes: int = 8 * 1024 * 1024
    image_max_dimension: int = 512
    image_quality: float = 0.6
    action_cooldown: float = 1.5
    cache_ttl: float = 30.0
    cache_max_entries: int = 1024

    preferences_path: Path = _default_preferences_path()
    port: int = 8400
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Override with Docker Swarm secrets if available
        if secret := _read_secret("supabase_url"):
            self.supabase_url = secret
        if secret := _read_secret("supabase_key"):
            self.supabase_key = secret

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
