# app/core/config.py - Settings for the observable correlation service
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List


class Settings(BaseSettings):
    """
    Settings for the Correlator API, read from the environment or .env
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database Settings
    DATABASE_URL: str = Field(
        "sqlite+aiosqlite:///./correlator.db",
        description="Async database URL (postgresql+asyncpg:// or sqlite+aiosqlite://)"
    )

    # Application Settings
    ENVIRONMENT: str = Field("development", description="Environment name")
    LOG_LEVEL: str = Field("INFO", description="Log level")

    # Logging Configuration
    ENABLE_JSON_LOGGING: bool = Field(True, description="Enable JSON structured logging")

    # OpenTelemetry Tracing Settings
    ENABLE_OTEL_EXPORTER: bool = Field(True, description="Enable OpenTelemetry tracing")
    ENABLE_OTEL_CONSOLE_EXPORT: bool = Field(False, description="Enable OpenTelemetry console export (JSON spam)")
    ENABLE_EXTERNAL_TRACING: bool = Field(False, description="Enable external OTLP tracing")
    OTLP_ENDPOINT: str = Field("http://localhost:4317", description="OTLP endpoint for external tracing")

    # CORS Settings
    CORS_ORIGINS: str = Field(
        "http://localhost:3000,http://127.0.0.1:3000",
        description="Comma-separated list of allowed CORS origins"
    )

    # Rate Limiting Settings
    RATE_LIMIT_ENABLED: bool = Field(True, description="Enable rate limiting")
    DEFAULT_RATE_LIMIT: str = Field("100/minute", description="Default rate limit")

    # Performance Settings
    DB_POOL_SIZE: int = Field(20, description="Database connection pool size")
    DB_MAX_OVERFLOW: int = Field(0, description="Database max overflow connections")

    # Correlation engine
    AUTO_EXTRACT_OBSERVABLES: bool = Field(
        True, description="Scan evidence content and attachments for indicators on write"
    )
    DEFAULT_THREAT_LEVEL: str = Field(
        "suspicious", description="Threat level given to automatically extracted indicators"
    )
    AUDIT_ACTOR: str = Field("local", description="Actor recorded on audit log entries")

    @property
    def cors_origins_list(self) -> List[str]:
        """Convert CORS_ORIGINS string to list"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def should_use_json_logging(self) -> bool:
        """Use JSON logging in production or when explicitly enabled"""
        return self.ENVIRONMENT == "production" or self.ENABLE_JSON_LOGGING

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


# Create settings instance
settings = Settings()
