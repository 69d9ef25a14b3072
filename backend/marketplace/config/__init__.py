"""Configuration module for backend services."""

from marketplace.config.settings import (
    CRON_SECRET,
    DATABASE_URL,
    DEFAULT_PRIORITY_COSTS,
    ENTITLEMENT_CACHE_TTL_SECONDS,
    EXPIRY_WARNING_DAYS,
    FREE_PACKAGE_CREDITS,
    FREE_PACKAGE_DURATION_DAYS,
    FREE_PACKAGE_NAME,
    REDIS_URL,
    configure_logging,
)

__all__ = [
    "CRON_SECRET",
    "DATABASE_URL",
    "DEFAULT_PRIORITY_COSTS",
    "ENTITLEMENT_CACHE_TTL_SECONDS",
    "EXPIRY_WARNING_DAYS",
    "FREE_PACKAGE_CREDITS",
    "FREE_PACKAGE_DURATION_DAYS",
    "FREE_PACKAGE_NAME",
    "REDIS_URL",
    "configure_logging",
]
