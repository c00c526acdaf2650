"""Application configuration."""

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceName(str, Enum):
    """Deployable services built from this code base."""

    IDENTITY = "identity"
    PROFILE = "profile"
    SCHEDULING = "scheduling"


class LeadTimePolicy(str, Enum):
    """Which timestamp the client lead-time rule is measured against on reschedule."""

    ORIGINAL = "original"
    TARGET = "target"


class EventDeliveryMode(str, Enum):
    """How domain events leave the scheduling service."""

    DIRECT = "direct"
    OUTBOX = "outbox"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="Dental Clinic API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")
    service_name: ServiceName = Field(default=ServiceName.SCHEDULING, alias="SERVICE_NAME")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database (one database per service)
    database_url: str = Field(..., alias="DATABASE_URL")

    # Redis (cache and event bus)
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")

    # JWT
    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60 * 24, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Inter-service communication
    identity_service_url: str = Field(
        default="http://identity-service:8000", alias="IDENTITY_SERVICE_URL"
    )
    profile_service_url: str = Field(
        default="http://profile-service:8000", alias="PROFILE_SERVICE_URL"
    )
    internal_service_token: str = Field(
        default="internal-token-for-development-only",
        alias="INTERNAL_SERVICE_TOKEN",
        description="Shared value of the X-Internal-Service header between services",
    )
    service_timeout_seconds: float = Field(default=5.0, alias="SERVICE_TIMEOUT_SECONDS")

    # Event bus
    event_stream_prefix: str = Field(default="events", alias="EVENT_STREAM_PREFIX")
    event_stream_maxlen: int = Field(default=10000, alias="EVENT_STREAM_MAXLEN")
    event_consumer_name: str = Field(default="", alias="EVENT_CONSUMER_NAME")
    event_batch_size: int = Field(default=10, alias="EVENT_BATCH_SIZE")
    event_block_ms: int = Field(default=5000, alias="EVENT_BLOCK_MS")
    event_redelivery_delay_ms: int = Field(default=5000, alias="EVENT_REDELIVERY_DELAY_MS")
    # 0 keeps requeueing forever
    event_max_deliveries: int = Field(default=0, alias="EVENT_MAX_DELIVERIES")
    event_delivery_mode: EventDeliveryMode = Field(
        default=EventDeliveryMode.DIRECT, alias="EVENT_DELIVERY_MODE"
    )
    outbox_relay_interval_seconds: int = Field(default=10, alias="OUTBOX_RELAY_INTERVAL_SECONDS")
    consumers_enabled: bool = Field(default=True, alias="CONSUMERS_ENABLED")

    # Clinic calendar
    clinic_timezone: str = Field(default="UTC", alias="CLINIC_TIMEZONE")
    clinic_opening_hour: int = Field(default=8, ge=0, le=23, alias="CLINIC_OPENING_HOUR")
    clinic_closing_hour: int = Field(default=18, ge=1, le=24, alias="CLINIC_CLOSING_HOUR")
    slot_minutes: int = Field(default=30, alias="SLOT_MINUTES")
    default_duration_minutes: int = Field(default=60, alias="DEFAULT_DURATION_MINUTES")

    # Booking rules
    client_lead_time_hours: int = Field(default=24, alias="CLIENT_LEAD_TIME_HOURS")
    reschedule_lead_time_policy: LeadTimePolicy = Field(
        default=LeadTimePolicy.ORIGINAL, alias="RESCHEDULE_LEAD_TIME_POLICY"
    )

    # Reminder / expiry sweeps
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")
    scheduler_timezone: str = Field(default="UTC", alias="SCHEDULER_TIMEZONE")
    reminder_window_hours: int = Field(default=24, alias="REMINDER_WINDOW_HOURS")
    short_reminder_window_hours: int = Field(default=2, alias="SHORT_REMINDER_WINDOW_HOURS")
    no_show_grace_hours: int = Field(default=2, alias="NO_SHOW_GRACE_HOURS")
    cancelled_retention_months: int = Field(default=6, alias="CANCELLED_RETENTION_MONTHS")

    # Caching
    user_cache_ttl_seconds: int = Field(default=1800, alias="USER_CACHE_TTL_SECONDS")
    cache_enabled: bool = Field(default=True, alias="CACHE_ENABLED")

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
