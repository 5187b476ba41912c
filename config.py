"""
Application settings, read from the environment (prefix VIDSHARE_) or a .env file.
"""
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8",
        env_prefix="VIDSHARE_", case_sensitive=False,
    )

    # -------------------- App --------------------
    app_name: str = "Video Sharing Backend"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    api_prefix: str = "/api/v1"
    cors_origins: List[str] = ["*"]

    # -------------------- MongoDB --------------------
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "vidshare"
    database_timeout_ms: int = 5000

    # -------------------- Auth --------------------
    access_token_secret: str = "change-me-access"
    refresh_token_secret: str = "change-me-refresh"
    token_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24
    refresh_token_expire_days: int = 14
    cookie_secure: bool = False
    bcrypt_rounds: int = 12

    # -------------------- Uploads --------------------
    upload_dir: str = "uploads"
    static_url: str = "/static"

    # -------------------- Limits --------------------
    watch_history_limit: int = 100
    playlist_max_videos: int = 500
    default_page_size: int = 10
    max_page_size: int = 100


@lru_cache()
def get_settings() -> Settings:
    return Settings()
