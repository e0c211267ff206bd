"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Gem Ledger API"
    api_version: str = "0.1.0"
    api_description: str = "Gems ledger, customization purchases and partner offer redemption"

    # Session authentication - JWTs issued by the platform session service
    session_jwt_secret: str = ""
    session_jwt_algorithm: str = "HS256"

    # Admin API key for grant/deduct and ledger audits
    admin_api_key: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "gem-ledger-api"

    # External points ledger
    points_ledger_url: str = "http://points-ledger:8080"
    points_ledger_token: str = ""
    points_ledger_timeout_seconds: float = 5.0

    # Gem economy
    points_per_gem: int = 100
    max_points_per_conversion: int = 10000
    history_max_limit: int = 100

    # Apply pending Alembic migrations before serving
    run_migrations_on_startup: bool = False

    # Partner offers and proof issuance
    partner_catalog_path: str | None = None  # JSON file overriding the built-in partners
    proof_issuer_timeout_seconds: float = 10.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres", "sqlite")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL or SQLite URL, got: {self.database_url[:20]}..."
            )

        if not self.session_jwt_secret:
            errors.append("SESSION_JWT_SECRET is required but empty or missing")

        if self.points_per_gem <= 0:
            errors.append(f"POINTS_PER_GEM must be positive, got: {self.points_per_gem}")

        if self.max_points_per_conversion < self.points_per_gem:
            errors.append(
                "MAX_POINTS_PER_CONVERSION must be at least POINTS_PER_GEM "
                f"({self.max_points_per_conversion} < {self.points_per_gem})"
            )

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
