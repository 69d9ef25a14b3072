"""
Pydantic schemas for the Payments API.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from marketplace.api.schemas.subscriptions import SubscriptionResponse
from marketplace.models.payment_proof import PaymentStatus


class SubmitProofBody(BaseModel):
    subscription_id: str
    transfer_image: str = Field(..., min_length=1, description="Transfer image is required")
    sender_name: str = Field(..., min_length=2)
    sender_bank: str = Field(..., min_length=2)
    sender_country: str = Field(..., min_length=2)
    amount: Decimal = Field(..., gt=0)
    currency: str = "USD"
    transfer_date: datetime
    reference_number: Optional[str] = None
    notes: Optional[str] = None


class PaymentProofResponse(BaseModel):
    id: str
    subscription_id: str
    user_id: str
    sender_name: str
    sender_bank: str
    sender_country: str
    amount: float
    currency: str
    transfer_date: datetime
    reference_number: Optional[str] = None
    status: PaymentStatus
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RejectPaymentBody(BaseModel):
    reason: str = Field(..., min_length=10, description="Please provide a detailed reason for rejection")


class ApprovePaymentResponse(BaseModel):
    success: bool
    subscription: SubscriptionResponse


class PaymentStatsResponse(BaseModel):
    pending: int
    approved: int
    rejected: int
    total: int
