"""
Centralized configuration for Shopify Insights.

This module provides a single source of truth for all configuration values.
Configuration is loaded from environment variables with sensible defaults.

Usage:
    from core.config import config

    page_size = config.sync.page_size
    otp_ttl = config.auth.verify_otp_ttl_seconds
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class DatabaseConfig:
    """DuckDB storage configuration."""

    path: Path = field(
        default_factory=lambda: Path(
            os.getenv("DUCKDB_PATH", str(Path(__file__).parent.parent / "data" / "insights.duckdb"))
        )
    )
    query_timeout: float = field(default_factory=lambda: float(os.getenv("DB_QUERY_TIMEOUT", "30")))
    long_query_timeout: float = 120.0


@dataclass(frozen=True)
class ShopifyConfig:
    """Shopify Admin REST API configuration."""

    api_version: str = field(default_factory=lambda: os.getenv("SHOPIFY_API_VERSION", "2024-10"))
    request_timeout: float = 30.0
    # Shopify REST leaky bucket: 40 request burst, 2 requests/second refill
    rate_limit_per_second: float = 2.0
    rate_limit_burst: int = 40


@dataclass(frozen=True)
class SyncConfig:
    """Sync pipeline configuration."""

    page_size: int = field(default_factory=lambda: int(os.getenv("SYNC_PAGE_SIZE", "50")))
    batch_size: int = 10
    max_consecutive_page_errors: int = 3
    max_pages: Optional[int] = None
    # 0 disables the periodic all-stores sync
    interval_minutes: int = field(default_factory=lambda: int(os.getenv("SYNC_INTERVAL_MINUTES", "0")))
    scheduler_timezone: str = field(default_factory=lambda: os.getenv("SCHEDULER_TIMEZONE", "UTC"))


@dataclass(frozen=True)
class AuthConfig:
    """Authentication and OTP configuration."""

    secret_key: str = field(default_factory=lambda: os.getenv("SECRET_KEY", ""))
    token_max_age_seconds: int = 7 * 24 * 60 * 60
    bcrypt_rounds: int = 12
    verify_otp_ttl_seconds: int = 10 * 60
    reset_otp_ttl_seconds: int = 30 * 60
    otp_max_attempts: int = 5
    allow_unverified_emails: List[str] = field(
        default_factory=lambda: _env_list("ALLOW_UNVERIFIED_EMAILS")
    )


@dataclass(frozen=True)
class RedisConfig:
    """Redis configuration (cache and OTP store)."""

    url: str = field(default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379/0"))
    cache_enabled: bool = field(default_factory=lambda: _env_bool("CACHE_ENABLED", "true"))
    cache_ttl_seconds: int = field(default_factory=lambda: int(os.getenv("CACHE_DEFAULT_TTL", "300")))


@dataclass(frozen=True)
class EmailConfig:
    """Outgoing email (SMTP) configuration."""

    host: str = field(default_factory=lambda: os.getenv("EMAIL_HOST", ""))
    port: int = field(default_factory=lambda: int(os.getenv("EMAIL_PORT", "587")))
    user: str = field(default_factory=lambda: os.getenv("EMAIL_USER", ""))
    password: str = field(default_factory=lambda: os.getenv("EMAIL_PASS", ""))
    sender: str = field(
        default_factory=lambda: os.getenv("EMAIL_FROM", "Shopify Insights <no-reply@localhost>")
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.password)


@dataclass(frozen=True)
class WebConfig:
    """HTTP API configuration."""

    host: str = field(default_factory=lambda: os.getenv("WEB_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("WEB_PORT", "8080")))
    cors_origins: List[str] = field(
        default_factory=lambda: [
            o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()
        ]
    )

    # Rate limiting (slowapi syntax)
    auth_rate_limit: str = "10/hour"
    otp_rate_limit: str = "5/hour"
    api_rate_limit: str = "100 per 15 minutes"

    request_timeout: float = field(default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT", "30")))


@dataclass(frozen=True)
class DevConfig:
    """Development-only store auto-provisioning."""

    shopify_domain: str = field(default_factory=lambda: os.getenv("DEV_SHOPIFY_DOMAIN", ""))
    shopify_access_token: str = field(default_factory=lambda: os.getenv("DEV_SHOPIFY_ACCESS_TOKEN", ""))
    store_name: str = field(default_factory=lambda: os.getenv("DEV_SHOPIFY_STORE_NAME", "Development Store"))


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "1.0.0"
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    shopify: ShopifyConfig = field(default_factory=ShopifyConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    web: WebConfig = field(default_factory=WebConfig)
    dev: DevConfig = field(default_factory=DevConfig)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def dev_store_enabled(self) -> bool:
        """Whether a development store should be auto-provisioned."""
        return self.is_development and bool(
            self.dev.shopify_domain and self.dev.shopify_access_token
        )


# Global config instance
config = AppConfig()


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(app_config: AppConfig = None) -> None:
    """
    Validate that all required configuration is present.

    Call this on application startup to fail fast with clear error messages
    instead of cryptic runtime failures.

    Raises:
        ConfigurationError: If required configuration is missing
    """
    cfg = app_config or config
    errors = []

    if cfg.environment not in ("development", "test", "production"):
        errors.append(
            f"ENVIRONMENT must be development, test or production (got {cfg.environment!r})"
        )

    if cfg.is_production and not cfg.auth.secret_key:
        errors.append("SECRET_KEY is required in production")

    if cfg.auth.secret_key and len(cfg.auth.secret_key) < 16:
        errors.append("SECRET_KEY appears to be invalid (too short, need 16+ characters)")

    if cfg.sync.page_size <= 0 or cfg.sync.page_size > 250:
        errors.append("SYNC_PAGE_SIZE must be between 1 and 250 (Shopify maximum)")

    if cfg.sync.interval_minutes < 0:
        errors.append("SYNC_INTERVAL_MINUTES cannot be negative")

    if cfg.is_production and not cfg.email.is_configured:
        errors.append("EMAIL_HOST, EMAIL_USER and EMAIL_PASS are required in production")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
