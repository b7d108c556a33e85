"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional, List
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins when set (tests point it at SQLite).
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="coach_app")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis Configuration (admission control counters)
    # Unset means the in-process fallback limiter is used from startup.
    REDIS_URL: Optional[str] = Field(default=None)

    # Session tokens - REQUIRED for signing the session cookie
    SECRET_KEY: str = Field(
        default=...,  # Required - no default
        description="Session signing key. Must be cryptographically secure (32+ chars). "
                    "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )
    SESSION_COOKIE_NAME: str = Field(default="session")
    GUEST_MODE_COOKIE_NAME: str = Field(default="guest-mode")

    # Demo / guest identity. Its data is always visible to the coach.
    DEMO_USER_ID: str = Field(default="00000000-0000-0000-0000-000000000001")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = Field(default=True)
    RATE_LIMIT_CHAT_PER_MINUTE: int = Field(default=20)
    RATE_LIMIT_FEEDBACK_PER_MINUTE: int = Field(default=30)
    RATE_LIMIT_AUTH_PER_MINUTE: int = Field(default=5)
    RATE_LIMIT_PER_MINUTE: int = Field(default=100)
    RATE_LIMIT_FALLBACK_PRUNE_THRESHOLD: int = Field(default=1000)

    # Upstream model
    ANTHROPIC_API_KEY: Optional[str] = Field(default=None)
    COACH_MODEL: str = Field(default="claude-sonnet-4-5")
    COACH_MAX_OUTPUT_TOKENS: int = Field(default=1500)

    # Chat request budgets
    CHAT_MAX_DURATION_SECONDS: float = Field(default=30.0)
    TOOL_TIMEOUT_SECONDS: float = Field(default=5.0)
    MAX_TOOL_ROUNDS: int = Field(default=3, ge=0, le=10)
    CONTEXT_CHAR_BUDGET: int = Field(default=8000)

    # Health check: detailed status only with X-Health-Secret
    HEALTH_CHECK_SECRET: Optional[str] = Field(default=None)

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)
    APP_VERSION: str = Field(default="1.0.0")

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)  # 10% of transactions

    def required_config_missing(self) -> List[str]:
        """Names of settings the coach cannot serve traffic without."""
        missing = []
        if not self.ANTHROPIC_API_KEY:
            missing.append("ANTHROPIC_API_KEY")
        if not (self.DATABASE_URL or self.POSTGRES_HOST):
            missing.append("DATABASE_URL")
        return missing


# Global settings instance
settings = Settings()
