"""
Gear Popularity Engine
Centralized Configuration Management

Pydantic settings with environment variable support, validation, and type safety.
"""

from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL Database Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="gear_popularity", alias="database", description="Database name")
    user: str = Field(default="gear", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Database URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL for asyncpg"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis Cache Configuration"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    enabled: bool = Field(default=True, description="Use Redis for the trending baseline cache")
    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=100, description="Max connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    decode_responses: bool = Field(default=True, description="Decode responses to strings")
    url: Optional[str] = Field(default=None, alias="REDIS_URL", description="Redis URL (overrides host/port)")

    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class SecuritySettings(BaseSettings):
    """Security and Authentication Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    rollup_secret: Optional[SecretStr] = Field(
        default=None,
        alias="CRON_SECRET",
        description="Shared bearer secret for the rollup trigger",
    )

    # Visitor identity cookie for anonymous dedupe
    visitor_cookie_name: str = Field(default="visitorId", alias="VISITOR_COOKIE_NAME")
    visitor_cookie_max_age: int = Field(
        default=60 * 60 * 24 * 3,
        alias="VISITOR_COOKIE_MAX_AGE",
        description="Visitor cookie lifetime in seconds",
    )

    # Rate limiting
    rate_limit_requests: int = Field(default=100, alias="RATE_LIMIT_REQUESTS", description="Rate limit requests")
    rate_limit_window_seconds: int = Field(default=60, alias="RATE_LIMIT_WINDOW_SECONDS", description="Rate limit window")
    trusted_proxies: List[str] = Field(
        default=[],
        alias="TRUSTED_PROXIES",
        description="Proxy addresses whose X-Forwarded-For header identifies the client",
    )

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )


class MonitoringSettings(BaseSettings):
    """Monitoring and Observability Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class PopularitySettings(BaseSettings):
    """Popularity scoring and rollup configuration"""

    model_config = SettingsConfigDict(env_prefix="POPULARITY_")

    # Per-event-type weights
    weight_view: float = Field(default=0.1, description="Weight of a view")
    weight_wishlist_add: float = Field(default=2.0, description="Weight of a wishlist add")
    weight_owner_add: float = Field(default=3.0, description="Weight of an ownership add")
    weight_compare_add: float = Field(default=1.5, description="Weight of a compare add")
    weight_review_submit: float = Field(default=2.5, description="Weight of a review submit")
    weight_api_fetch: float = Field(default=0.0, description="Weight of an API fetch")

    # Rollup
    late_arrival_lookback_days: int = Field(
        default=7,
        description="How many days before the as-of date are scanned for late arrivals",
    )
    rollup_timeout_seconds: float = Field(default=300.0, description="Wall-clock budget of one rollup run")

    # Recorder
    dedupe_event_types: List[str] = Field(
        default=["view"],
        description="Event types deduped per actor per UTC day",
    )

    # Trending reads
    default_per_page: int = Field(default=10, description="Default trending page size")
    max_per_page: int = Field(default=100, description="Largest accepted trending page size")
    trending_cache_ttl_seconds: int = Field(
        default=60 * 60 * 12,
        description="TTL of the cached windowed baseline",
    )

    @field_validator("late_arrival_lookback_days")
    @classmethod
    def validate_lookback(cls, v: int) -> int:
        """Lookback cannot be negative"""
        if v < 0:
            raise ValueError("late_arrival_lookback_days must be >= 0")
        return v


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="gear-popularity", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    popularity: PopularitySettings = Field(default_factory=PopularitySettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()


# Convenience function for accessing settings
settings = get_settings()
