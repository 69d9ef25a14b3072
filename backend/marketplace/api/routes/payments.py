"""
Payments API routes.

Clients submit bank-transfer proofs; admins review them. Approval is the
only route that grants credits outside registration.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends

from marketplace.api.dependencies.db import get_db_session, get_notifier
from marketplace.api.routes.subscriptions import subscription_to_response
from marketplace.api.schemas.payments import (
    ApprovePaymentResponse,
    PaymentProofResponse,
    PaymentStatsResponse,
    RejectPaymentBody,
    SubmitProofBody,
)
from marketplace.models.user import UserRole
from marketplace.platform.caller_context import CallerContext, require_role
from marketplace.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])

client_only = require_role(UserRole.CLIENT)
admin_only = require_role(UserRole.SUPER_ADMIN)


@router.post("/proof", response_model=PaymentProofResponse, status_code=201)
async def submit_payment_proof(
    body: SubmitProofBody,
    caller: CallerContext = Depends(client_only),
    db_session=Depends(get_db_session),
    notifier=Depends(get_notifier),
):
    proof = PaymentService(db_session, notifier).submit_proof(
        client_id=caller.user_id,
        subscription_id=body.subscription_id,
        transfer_image=body.transfer_image,
        sender_name=body.sender_name,
        sender_bank=body.sender_bank,
        sender_country=body.sender_country,
        amount=body.amount,
        transfer_date=body.transfer_date,
        currency=body.currency,
        reference_number=body.reference_number,
        notes=body.notes,
    )
    return PaymentProofResponse.model_validate(proof)


@router.get("/pending", response_model=List[PaymentProofResponse])
async def list_pending_payments(
    caller: CallerContext = Depends(admin_only),
    db_session=Depends(get_db_session),
):
    """Pending proofs, oldest first."""
    payments = PaymentService(db_session).get_pending_payments()
    return [PaymentProofResponse.model_validate(p) for p in payments]


@router.get("/stats", response_model=PaymentStatsResponse)
async def get_payment_stats(
    caller: CallerContext = Depends(admin_only),
    db_session=Depends(get_db_session),
):
    return PaymentStatsResponse(**PaymentService(db_session).get_stats())


@router.post("/{payment_id}/approve", response_model=ApprovePaymentResponse)
async def approve_payment(
    payment_id: str,
    caller: CallerContext = Depends(admin_only),
    db_session=Depends(get_db_session),
    notifier=Depends(get_notifier),
):
    subscription = PaymentService(db_session, notifier).approve_payment(payment_id, caller.user_id)
    return ApprovePaymentResponse(success=True, subscription=subscription_to_response(subscription))


@router.post("/{payment_id}/reject", response_model=PaymentProofResponse)
async def reject_payment(
    payment_id: str,
    body: RejectPaymentBody,
    caller: CallerContext = Depends(admin_only),
    db_session=Depends(get_db_session),
    notifier=Depends(get_notifier),
):
    payment = PaymentService(db_session, notifier).reject_payment(payment_id, caller.user_id, body.reason)
    return PaymentProofResponse.model_validate(payment)
