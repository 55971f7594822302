from functools import lru_cache
from typing import Literal
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration settings"""

    # App
    environment: Literal["development", "production"] = "development"
    frontend_url: str = "http://localhost:3000"

    # API
    api_v1_prefix: str = "/api/v1"

    # Supabase
    supabase_url: str
    supabase_key: str

    # Catalog search (YouTube Data API v3)
    youtube_api_key: str = ""
    search_max_requests: int = 100
    search_window_seconds: int = 100
    search_rate_limit_storage: str = "memory://"
    search_timeout_seconds: float = 10.0
    search_default_results: int = 10
    search_max_results: int = 50
    search_qualifier: str = "karaoke"

    # Storage retry policy
    storage_max_attempts: int = 3
    storage_retry_base_delay_ms: int = 200
    storage_retry_jitter_ms: int = 100

    # Rooms
    room_code_max_attempts: int = 10
    history_limit: int = 50

    # Logging
    log_level: str = "INFO"

    @property
    def allowed_cors_origins(self) -> list[str]:
        """CORS allowed origins"""
        return [self.frontend_url]

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def debug(self) -> bool:
        return self.environment == "development"

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()
