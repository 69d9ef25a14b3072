"""
Revision handling for delivered requests.

A client who rejects a deliverable moves the request
DELIVERED -> REVISION_REQUESTED. The first `max_free_revisions` revisions
are free; after that each costs `paid_revision_cost` credits. When the
service type has `reset_free_revisions_on_paid`, a paid revision resets
the counter so the next batch is free again:

    max_free_revisions=3:
      revisions 1-3  free   (count 1, 2, 3)
      revision 4     paid   (count reset to 0)
      revisions 5-7  free
      revision 8     paid   ...

Every revision appends a SYSTEM comment with a `revision_free` or
`revision_paid` event. Those events are the history; the counters on the
request row (`current_revision_count`, `total_revisions`) are a cached
aggregate written in the same UPDATE as the status transition, and can be
rebuilt from the events with `derive_revision_state`.

Paid revisions are priced from the service type's CURRENT
`paid_revision_cost`; the amount actually charged is recorded on the
comment and the ledger entry.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from marketplace.models.request import Request, RequestStatus
from marketplace.models.request_comment import (
    REVISION_EVENTS,
    CommentEvent,
    CommentType,
    RequestComment,
)
from marketplace.platform.errors import ForbiddenError, NotFoundError, PreconditionFailedError
from marketplace.services.credit_ledger import CreditLedger

logger = logging.getLogger(__name__)

NOT_DELIVERED_MESSAGE = "Revisions can only be requested for delivered work."
NOT_OWNER_MESSAGE = "Only the request owner can request revisions."


@dataclass(frozen=True)
class RevisionState:
    """Revision counters derived from the comment history."""
    current_count: int
    total_revisions: int


@dataclass(frozen=True)
class RevisionPlan:
    is_free: bool
    credit_cost: int
    new_revision_count: int


@dataclass(frozen=True)
class RevisionResult:
    allowed: bool
    is_free: bool
    credit_cost: int
    new_revision_count: int
    message: str
    request: Optional[Request] = None
    credits_remaining: Optional[int] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "is_free": self.is_free,
            "credit_cost": self.credit_cost,
            "new_revision_count": self.new_revision_count,
            "message": self.message,
            "credits_remaining": self.credits_remaining,
        }


def derive_revision_state(events: Iterable[str], reset_on_paid: bool) -> RevisionState:
    """
    Fold revision events (oldest first) into counters.

    Non-revision events are ignored, so the full event column of a
    request's comments can be passed as-is.
    """
    count = 0
    total = 0
    for event in events:
        if event not in REVISION_EVENTS:
            continue
        total += 1
        if event == CommentEvent.REVISION_PAID.value and reset_on_paid:
            count = 0
        else:
            count += 1
    return RevisionState(current_count=count, total_revisions=total)


def plan_revision(
    current_count: int,
    max_free_revisions: int,
    paid_revision_cost: int,
    reset_on_paid: bool,
) -> RevisionPlan:
    """Decide whether the next revision is free and what the counter becomes."""
    if current_count < max_free_revisions:
        return RevisionPlan(is_free=True, credit_cost=0, new_revision_count=current_count + 1)
    return RevisionPlan(
        is_free=False,
        credit_cost=paid_revision_cost,
        new_revision_count=0 if reset_on_paid else current_count + 1,
    )


class RevisionService:
    """Free/paid revision decisions for a client's delivered request."""

    def __init__(self, session: Session):
        self.session = session
        self.ledger = CreditLedger(session)

    def _load(self, request_id: str) -> Request:
        # Always read current column values; a cached instance may be stale
        request = self.session.get(Request, request_id, populate_existing=True)
        if request is None:
            raise NotFoundError("Request", request_id)
        return request

    def handle_revision_request(self, request_id: str, client_id: str) -> RevisionResult:
        """
        Move a DELIVERED request to REVISION_REQUESTED, charging if due.

        Business-rule refusals (wrong status, no subscription, insufficient
        credits) come back as allowed=False with nothing changed.

        Raises:
            NotFoundError: Unknown request
            ForbiddenError: Caller is not the request's client
            PreconditionFailedError: A concurrent transition won the race after
                credits were deducted; the caller must roll back
        """
        request = self._load(request_id)

        if request.client_id != client_id:
            raise ForbiddenError(NOT_OWNER_MESSAGE)

        if request.status != RequestStatus.DELIVERED:
            return RevisionResult(
                allowed=False,
                is_free=False,
                credit_cost=0,
                new_revision_count=request.current_revision_count,
                message=NOT_DELIVERED_MESSAGE,
                request=request,
                reason="invalid_status",
            )

        service_type = request.service_type
        max_free = service_type.max_free_revisions
        reset_on_paid = bool(service_type.reset_free_revisions_on_paid)
        expected_count = request.current_revision_count

        plan = plan_revision(
            current_count=expected_count,
            max_free_revisions=max_free,
            paid_revision_cost=service_type.paid_revision_cost,
            reset_on_paid=reset_on_paid,
        )

        credits_remaining = None
        if not plan.is_free:
            deduction = self.ledger.check_and_deduct(
                client_id,
                plan.credit_cost,
                memo=f"Paid revision for request: {request.title}",
                request_id=request.id,
            )
            if not deduction.success:
                logger.info(
                    "Paid revision refused",
                    extra={
                        "request_id": request.id,
                        "client_id": client_id,
                        "credit_cost": plan.credit_cost,
                        "reason": deduction.reason,
                    },
                )
                return RevisionResult(
                    allowed=False,
                    is_free=False,
                    credit_cost=plan.credit_cost,
                    new_revision_count=expected_count,
                    message=(
                        f"You've used all {max_free} free revisions. Additional revisions cost "
                        f"{plan.credit_cost} credit(s). {deduction.message}"
                    ),
                    request=request,
                    reason=deduction.reason,
                )
            credits_remaining = deduction.new_balance

        result = self.session.execute(
            update(Request)
            .where(
                Request.id == request.id,
                Request.status == RequestStatus.DELIVERED,
                Request.current_revision_count == expected_count,
            )
            .values(
                status=RequestStatus.REVISION_REQUESTED,
                is_revision=True,
                current_revision_count=plan.new_revision_count,
                total_revisions=Request.total_revisions + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "Revision transition lost to a concurrent update",
                extra={"request_id": request.id, "client_id": client_id},
            )
            raise PreconditionFailedError(NOT_DELIVERED_MESSAGE)

        if plan.is_free:
            event = CommentEvent.REVISION_FREE
            content = f"Revision requested ({plan.new_revision_count}/{max_free} free revisions used)"
            message = (
                f"Free revision requested ({plan.new_revision_count}/{max_free} used). "
                "Provider will be notified."
            )
        else:
            event = CommentEvent.REVISION_PAID
            content = f"Paid revision requested ({plan.credit_cost} credit(s) used)."
            message = f"Paid revision requested ({plan.credit_cost} credit(s) deducted)."
            if reset_on_paid:
                content += (
                    f" Free revision counter reset - you now have {max_free} "
                    "free revisions available again."
                )
                message += (
                    f" Your free revision counter has been reset - you now have {max_free} "
                    "free revisions available again."
                )
            message += f" Credits remaining: {credits_remaining}"

        self.session.add(RequestComment(
            request_id=request.id,
            user_id=client_id,
            content=content,
            comment_type=CommentType.SYSTEM,
            event=event.value,
            credits_charged=plan.credit_cost,
        ))
        self.session.flush()
        self.session.refresh(request)

        logger.info(
            "Revision requested",
            extra={
                "request_id": request.id,
                "client_id": client_id,
                "is_free": plan.is_free,
                "credit_cost": plan.credit_cost,
                "revision_count": plan.new_revision_count,
            },
        )

        return RevisionResult(
            allowed=True,
            is_free=plan.is_free,
            credit_cost=plan.credit_cost,
            new_revision_count=plan.new_revision_count,
            message=message,
            request=request,
            credits_remaining=credits_remaining,
        )

    def derive_state(self, request: Request) -> RevisionState:
        """Recompute the counters from the request's revision comments."""
        events = [
            row.event
            for row in self.session.query(RequestComment.event)
            .filter(
                RequestComment.request_id == request.id,
                RequestComment.event.in_(REVISION_EVENTS),
            )
            .order_by(RequestComment.created_at.asc())
        ]
        return derive_revision_state(events, bool(request.service_type.reset_free_revisions_on_paid))

    def get_revision_info(self, request_id: str, client_id: str) -> Dict[str, int]:
        """Revision counters and the price of the next revision, for the request's client."""
        request = self.session.get(Request, request_id)
        if request is None or request.client_id != client_id:
            return {
                "current_count": 0,
                "max_free": 0,
                "total_revisions": 0,
                "next_revision_cost": 0,
                "free_revisions_remaining": 0,
            }

        service_type = request.service_type
        free_remaining = max(0, service_type.max_free_revisions - request.current_revision_count)
        return {
            "current_count": request.current_revision_count,
            "max_free": service_type.max_free_revisions,
            "total_revisions": request.total_revisions,
            "next_revision_cost": 0 if free_remaining > 0 else service_type.paid_revision_cost,
            "free_revisions_remaining": free_remaining,
        }
