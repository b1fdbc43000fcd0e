"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "Fleetwatch_Geofence_Alerts"
    ENV: str = "development"
    DEBUG: bool = True
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"
    # Only enable behind a reverse proxy that overwrites X-Forwarded-For / X-Real-IP.
    TRUST_PROXY_HEADERS: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./fleetwatch.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    PROCESS_EVENTS_BATCH_SIZE: int = 100

    # JWT (tokens are issued by the auth service, only verified here)
    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_LEEWAY_SECONDS: int = 30  # clock skew tolerance for exp validation

    # Crossing detector webhook
    DETECTOR_SHARED_SECRET: str = "change-me-detector-secret"
    # Must match the clock granularity of the upstream detector.
    EVENT_DEDUPE_WINDOW_SECONDS: int = 60

    # Dispatch worker pool
    DISPATCH_MAX_WORKERS: int = 4
    DISPATCH_QUEUE_SIZE: int = 200
    DISPATCH_QUEUE_POLICY: str = "block"  # "block" or "reject"
    DISPATCH_SUBMIT_TIMEOUT_SECONDS: float = 5.0
    # Deliveries stuck in pending longer than this are resubmitted by the sweeper.
    DELIVERY_PENDING_TIMEOUT_SECONDS: int = 10 * 60

    # Notification gateways (comma-separated channel names to skip)
    NOTIFY_DISABLED_CHANNELS: str = ""
    EMAIL_GATEWAY_URL: str | None = None
    WHATSAPP_GATEWAY_URL: str | None = None
    NOTIFY_GATEWAY_TOKEN: str | None = None
    NOTIFY_HTTP_TIMEOUT_SECONDS: int = 10

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def disabled_channels(self) -> set[str]:
        """Get administratively disabled notification channels."""
        return {
            channel.strip().lower()
            for channel in self.NOTIFY_DISABLED_CHANNELS.split(",")
            if channel.strip()
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
