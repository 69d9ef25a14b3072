"""
Runtime settings for the marketplace backend.

Values come from environment variables with safe development defaults.
"""

import logging
import os
from typing import Dict, Optional

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./marketplace.db")
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"

# Redis (entitlement cache). Cache is disabled when unset.
REDIS_URL: Optional[str] = os.getenv("REDIS_URL") or None
ENTITLEMENT_CACHE_TTL_SECONDS = int(os.getenv("ENTITLEMENT_CACHE_TTL_SECONDS", "3600"))

# Subscriptions
EXPIRY_WARNING_DAYS = int(os.getenv("EXPIRY_WARNING_DAYS", "7"))

# Registration package, created on first boot when missing
FREE_PACKAGE_NAME = os.getenv("FREE_PACKAGE_NAME", "Free Plan")
FREE_PACKAGE_CREDITS = int(os.getenv("FREE_PACKAGE_CREDITS", "1"))
FREE_PACKAGE_DURATION_DAYS = int(os.getenv("FREE_PACKAGE_DURATION_DAYS", "14"))

# Priority surcharges used when a service type predates per-service priority costs
DEFAULT_PRIORITY_COSTS: Dict[str, int] = {
    "low": 0,
    "medium": 1,
    "high": 2,
}

# Shared secret for scheduler-triggered endpoints (unset = no check)
CRON_SECRET: Optional[str] = os.getenv("CRON_SECRET") or None

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
