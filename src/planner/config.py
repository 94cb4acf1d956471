from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./planner.db"

    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = "http://localhost:8000/integrations/google/callback"
    frontend_url: str = "/"

    # 64 hex chars (32 bytes). Generate with: openssl rand -hex 32
    encryption_key: str = ""

    vapid_public_key: str = ""
    vapid_private_key: str = ""
    vapid_subject: str = "mailto:contact@derplanner.space"

    sync_interval_minutes: int = 5
    sync_stale_after_minutes: int = 15
    sync_page_size: int = 100
    notification_interval_seconds: int = 60
    default_minutes_before: int = 15

    token_cache_ttl_seconds: int = 3600
    oauth_state_ttl_seconds: int = 600
    provider_timeout_seconds: float = 30.0
    last_error_max_length: int = 500

    # Run the sync and reminder timers inside the API process
    run_background_jobs: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def push_enabled(self) -> bool:
        return bool(self.vapid_public_key and self.vapid_private_key)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
