from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "Pick Alerts"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "info"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./pick_alerts.db"

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # External event service
    EVENTS_API_URL: str = "http://localhost:8001/events/upcoming"
    EVENTS_API_TIMEOUT: float = 10.0
    HEALTH_CHECK_URL: str = "http://localhost:8000/api/v1/health/"

    # Notification scheduling
    NOTIFICATION_RESYNC_INTERVAL_SECONDS: float = 60.0
    UPCOMING_EVENTS_SCAN_MINUTES: int = 5
    NOTIFICATION_ICON: str = "/icons/icon-192x192.png"
    NOTIFICATION_BADGE: str = "/icons/icon-72x72.png"
    APP_FEED_PATH: str = "/feed"
    PUSH_DEFAULT_TITLE: str = "New pick"
    PUSH_VIBRATE_PATTERN: List[int] = [200, 100, 200]

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()
