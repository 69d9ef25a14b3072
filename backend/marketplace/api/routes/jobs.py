"""
Scheduler-triggered job endpoints.

When CRON_SECRET is configured the caller must send
``Authorization: Bearer <CRON_SECRET>``.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header

from marketplace.api.dependencies.db import get_db_session
from marketplace.config import settings
from marketplace.jobs.subscription_expiry import run_expiry_check
from marketplace.platform.errors import AuthenticationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    secret = settings.CRON_SECRET
    if not secret:
        return
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        logger.warning("Rejected job trigger with invalid credentials")
        raise AuthenticationError("Invalid cron credentials")


@router.post("/subscription-expiry", dependencies=[Depends(verify_cron_secret)])
async def trigger_subscription_expiry(db_session=Depends(get_db_session)):
    """Run the daily expiry sweep and return its summary."""
    return run_expiry_check(db_session)
