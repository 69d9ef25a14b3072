"""
Subscriptions API routes.

All routes act on the caller's own subscriptions.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends

from marketplace.api.dependencies.db import get_db_session, get_notifier
from marketplace.api.schemas.subscriptions import (
    ActiveSubscriptionResponse,
    BalanceResponse,
    BalanceSubscription,
    SubscribeBody,
    SubscriptionResponse,
    UsageStatsResponse,
)
from marketplace.models.subscription import ClientSubscription
from marketplace.models.user import UserRole
from marketplace.platform.caller_context import CallerContext, get_caller_context, require_role
from marketplace.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])

client_only = require_role(UserRole.CLIENT)


def subscription_to_response(subscription: ClientSubscription) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=subscription.id,
        package_id=subscription.package_id,
        package_name=subscription.package.name,
        remaining_credits=subscription.remaining_credits,
        start_date=subscription.start_date,
        end_date=subscription.end_date,
        is_active=subscription.is_active,
        status=subscription.status,
        cancelled_at=subscription.cancelled_at,
        created_at=subscription.created_at,
    )


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    caller: CallerContext = Depends(get_caller_context),
    db_session=Depends(get_db_session),
):
    """Remaining credits on the live subscription (0 when there is none)."""
    balance = SubscriptionService(db_session).get_balance(caller.user_id)
    sub = balance["subscription"]
    return BalanceResponse(
        remaining_credits=balance["remaining_credits"],
        subscription=BalanceSubscription(**sub) if sub else None,
    )


@router.get("/active", response_model=Optional[ActiveSubscriptionResponse])
async def get_active_subscription(
    caller: CallerContext = Depends(get_caller_context),
    db_session=Depends(get_db_session),
):
    active = SubscriptionService(db_session).get_active(caller.user_id)
    if active is None:
        return None
    return ActiveSubscriptionResponse(
        subscription=subscription_to_response(active["subscription"]),
        is_expiring=active["is_expiring"],
        days_remaining=active["days_remaining"],
    )


@router.get("/history", response_model=List[SubscriptionResponse])
async def get_subscription_history(
    caller: CallerContext = Depends(get_caller_context),
    db_session=Depends(get_db_session),
):
    history = SubscriptionService(db_session).get_history(caller.user_id)
    return [subscription_to_response(s) for s in history]


@router.get("/usage", response_model=Optional[UsageStatsResponse])
async def get_usage_stats(
    caller: CallerContext = Depends(get_caller_context),
    db_session=Depends(get_db_session),
):
    stats = SubscriptionService(db_session).get_usage_stats(caller.user_id)
    if stats is None:
        return None
    return UsageStatsResponse(**{k: v for k, v in stats.items() if k != "as_of"})


@router.post("", response_model=SubscriptionResponse, status_code=201)
async def subscribe(
    body: SubscribeBody,
    caller: CallerContext = Depends(client_only),
    db_session=Depends(get_db_session),
    notifier=Depends(get_notifier),
):
    """Start a purchase. The subscription stays pending until payment is approved."""
    subscription = SubscriptionService(db_session, notifier).subscribe(caller.user_id, body.package_id)
    return subscription_to_response(subscription)


@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    subscription_id: str,
    caller: CallerContext = Depends(client_only),
    db_session=Depends(get_db_session),
    notifier=Depends(get_notifier),
):
    subscription = SubscriptionService(db_session, notifier).cancel(subscription_id, caller.user_id)
    return subscription_to_response(subscription)
