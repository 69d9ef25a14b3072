"""
Pydantic schemas for the Subscriptions and Packages API.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class PackageResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    price: float
    credits: int
    duration_days: int
    features: List[str] = Field(default_factory=list)
    support_all_services: bool
    service_type_ids: List[str] = Field(default_factory=list)


class ServiceTypeResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    credit_cost: int
    max_free_revisions: int
    paid_revision_cost: int
    priority_cost_low: int
    priority_cost_medium: int
    priority_cost_high: int
    attributes: list = Field(default_factory=list)

    class Config:
        from_attributes = True


class SubscriptionResponse(BaseModel):
    """Subscription details response."""
    id: str
    package_id: str
    package_name: str
    remaining_credits: int
    start_date: datetime
    end_date: datetime
    is_active: bool
    status: str
    cancelled_at: Optional[datetime] = None
    created_at: datetime


class ActiveSubscriptionResponse(BaseModel):
    subscription: SubscriptionResponse
    is_expiring: bool
    days_remaining: int


class BalanceSubscription(BaseModel):
    id: str
    package_name: str
    end_date: datetime


class BalanceResponse(BaseModel):
    remaining_credits: int
    subscription: Optional[BalanceSubscription] = None


class SubscribeBody(BaseModel):
    package_id: str = Field(..., description="Package to subscribe to")


class UsageStatsResponse(BaseModel):
    total_requests: int
    completed_requests: int
    active_requests: int
    credits_total: int
    credits_used: int
    credits_remaining: int
    subscription_start_date: datetime
    subscription_end_date: datetime
    package_name: str
