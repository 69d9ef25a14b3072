"""
Request orchestration: creation, revisions and the rest of the lifecycle.

Creation runs, in one transaction:
    1. load the service type (404 if missing, inactive or soft-deleted)
    2. entitlement check (412 no subscription / 403 service not in plan)
    3. attribute validation (400)
    4. cost calculation
    5. credit deduction (412 on refusal), BEFORE the request row exists
    6. request insert with the frozen cost breakdown
    7. creation SYSTEM comment
and only after commit:
    8. best-effort provider notifications (never raised, never rolled back)

Status transitions are conditional UPDATEs keyed on the expected prior
status, so concurrent callers cannot both move the same request.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.database.session import transactional
from marketplace.entitlements import require_access
from marketplace.models.rating import Rating
from marketplace.models.request import (
    PROVIDER_TRANSITIONS,
    Request,
    RequestPriority,
    RequestStatus,
)
from marketplace.models.request_comment import CommentEvent, CommentType, RequestComment
from marketplace.models.service_type import ServiceType
from marketplace.models.user import UserRole
from marketplace.platform.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionFailedError,
)
from marketplace.pricing import CostBreakdown, calculate_cost, validate_attribute_responses
from marketplace.services.credit_ledger import CreditLedger
from marketplace.services.notification_service import NotificationDispatcher
from marketplace.services.revision_service import RevisionResult, RevisionService

logger = logging.getLogger(__name__)

CREATED_MESSAGE = "Request created. Waiting for a provider to accept."
NO_ACCESS_MESSAGE = "You don't have access to this request"

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class CreateRequestResult:
    success: bool
    request: Request
    credits_remaining: int
    message: str
    cost: CostBreakdown


class RequestService:
    """
    Client, provider and admin operations on requests.

    Each public mutation owns its transaction: it commits on success and
    rolls back on any error, then dispatches notifications.
    """

    def __init__(self, session: Session, notifier: Optional[NotificationDispatcher] = None):
        self.session = session
        self.notifier = notifier if notifier is not None else NotificationDispatcher()
        self.ledger = CreditLedger(session)
        self.revisions = RevisionService(session)

    def _get_request(self, request_id: str) -> Request:
        request = self.session.get(Request, request_id, populate_existing=True)
        if request is None:
            raise NotFoundError("Request", request_id)
        return request

    def _after_commit(self, fn: Callable, *args) -> None:
        try:
            fn(*args)
        except Exception:
            logger.warning(
                "Notification dispatch failed",
                extra={"notification": getattr(fn, "__name__", repr(fn))},
                exc_info=True,
            )

    def _append_comment(
        self,
        request_id: str,
        user_id: str,
        content: str,
        comment_type: CommentType = CommentType.SYSTEM,
        event: Optional[CommentEvent] = None,
        files: Optional[List[str]] = None,
    ) -> RequestComment:
        comment = RequestComment(
            request_id=request_id,
            user_id=user_id,
            content=content,
            comment_type=comment_type,
            event=event.value if event else None,
            files=list(files or []),
        )
        self.session.add(comment)
        return comment

    def _transition(self, request: Request, expected: RequestStatus, criteria=(), **values) -> bool:
        result = self.session.execute(
            update(Request)
            .where(Request.id == request.id, Request.status == expected, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # =========================================================================
    # Creation
    # =========================================================================

    def create_request(
        self,
        client_id: str,
        title: str,
        description: str,
        service_type_id: str,
        priority: int = RequestPriority.MEDIUM.value,
        attribute_responses: Optional[List[Dict[str, Any]]] = None,
        attachments: Optional[List[str]] = None,
        form_data: Optional[Dict[str, Any]] = None,
    ) -> CreateRequestResult:
        """
        Create a request and pay for it.

        Raises:
            NotFoundError: Service type missing or not orderable
            PreconditionFailedError: No live subscription or insufficient credits
            ForbiddenError: Plan doesn't include the service
            BadRequestError: Invalid priority or attribute responses
        """
        if priority not in {p.value for p in RequestPriority}:
            raise BadRequestError("Priority must be 1 (low), 2 (medium) or 3 (high)")

        with transactional(self.session):
            service_type = self.session.get(ServiceType, service_type_id)
            if service_type is None or not service_type.is_available:
                raise NotFoundError("Service type", service_type_id)

            require_access(self.session, client_id, service_type.id)

            definitions = service_type.attribute_definitions
            if definitions or attribute_responses:
                validation = validate_attribute_responses(definitions, attribute_responses or [])
                if not validation.valid:
                    raise BadRequestError(
                        f"Invalid attribute responses: {', '.join(validation.errors)}",
                        details={"errors": validation.errors},
                    )

            cost = calculate_cost(service_type, attribute_responses, priority)

            request_id = str(uuid.uuid4())
            deduction = self.ledger.check_and_deduct(
                client_id,
                cost.total,
                memo=f"New request: {title} (Priority {priority})",
                request_id=request_id,
            )
            if not deduction.success:
                raise PreconditionFailedError(deduction.message, details={"reason": deduction.reason})

            request = Request(
                id=request_id,
                title=title,
                description=description,
                client_id=client_id,
                service_type_id=service_type.id,
                status=RequestStatus.PENDING,
                priority=priority,
                credit_cost=cost.total,
                base_credit_cost=cost.base,
                attribute_credits=cost.attribute_surcharge,
                priority_credit_cost=cost.priority_surcharge,
                attribute_responses=list(attribute_responses) if attribute_responses else None,
                form_data=dict(form_data or {}),
                attachments=list(attachments or []),
            )
            self.session.add(request)
            self.session.flush()
            self._append_comment(request.id, client_id, CREATED_MESSAGE, event=CommentEvent.REQUEST_CREATED)

        logger.info(
            "Request created",
            extra={
                "request_id": request.id,
                "client_id": client_id,
                "service_type_id": service_type.id,
                "credit_cost": cost.total,
                "credits_remaining": deduction.new_balance,
            },
        )

        self._after_commit(self.notifier.notify_new_request, request.id, request.title, request.service_type_id)

        return CreateRequestResult(
            success=True,
            request=request,
            credits_remaining=deduction.new_balance,
            message=f"Request created successfully. {cost.total} credit(s) deducted.",
            cost=cost,
        )

    # =========================================================================
    # Client operations
    # =========================================================================

    def request_revision(self, request_id: str, client_id: str, feedback: str) -> RevisionResult:
        """Reject a deliverable; free or paid per the service type's revision policy."""
        with transactional(self.session):
            result = self.revisions.handle_revision_request(request_id, client_id)
            if not result.allowed:
                raise PreconditionFailedError(result.message, details={"reason": result.reason})
            self._append_comment(request_id, client_id, feedback, comment_type=CommentType.MESSAGE)

        request = result.request
        self._after_commit(
            self.notifier.notify_revision_requested,
            request.provider_id, request.id, request.title, result.is_free,
        )
        return result

    def approve(self, request_id: str, client_id: str) -> Request:
        """DELIVERED -> COMPLETED by the request's client."""
        with transactional(self.session):
            request = self._get_request(request_id)
            if request.client_id != client_id:
                raise ForbiddenError("You don't own this request")
            if request.status != RequestStatus.DELIVERED:
                raise PreconditionFailedError("Request must be in DELIVERED status to approve")

            moved = self._transition(
                request,
                RequestStatus.DELIVERED,
                status=RequestStatus.COMPLETED,
                completed_at=datetime.now(timezone.utc),
            )
            if not moved:
                raise PreconditionFailedError("Request must be in DELIVERED status to approve")
            self._append_comment(
                request.id, client_id, "Request approved and completed.",
                event=CommentEvent.REQUEST_COMPLETED,
            )
            self.session.flush()
            self.session.refresh(request)

        logger.info("Request completed", extra={"request_id": request.id, "client_id": client_id})
        self._after_commit(self.notifier.notify_request_completed, request.provider_id, request.id, request.title)
        return request

    def cancel(self, request_id: str, user_id: str, role: UserRole = UserRole.CLIENT) -> Dict[str, Any]:
        """
        Cancel a request nobody has picked up yet and refund its frozen cost.

        The refund is a separate REFUND ledger entry; the original
        deduction is never rewritten.
        """
        with transactional(self.session):
            request = self._get_request(request_id)
            if request.client_id != user_id and role != UserRole.SUPER_ADMIN:
                raise ForbiddenError("You don't own this request")
            if request.status != RequestStatus.PENDING or request.provider_id is not None:
                raise PreconditionFailedError(
                    "Only pending requests that no provider has accepted can be cancelled"
                )

            moved = self._transition(
                request,
                RequestStatus.PENDING,
                criteria=(Request.provider_id.is_(None),),
                status=RequestStatus.CANCELLED,
            )
            if not moved:
                raise ConflictError("This request has already been accepted")

            refund = self.ledger.refund(
                request.client_id,
                request.credit_cost,
                memo=f"Refund for cancelled request: {request.title}",
                request_id=request.id,
            )
            refunded = request.credit_cost if refund.success else 0
            self._append_comment(
                request.id, user_id,
                f"Request cancelled. {refunded} credit(s) refunded.",
                event=CommentEvent.REQUEST_CANCELLED,
            )
            self.session.flush()
            self.session.refresh(request)

        logger.info(
            "Request cancelled",
            extra={"request_id": request.id, "user_id": user_id, "credits_refunded": refunded},
        )
        return {
            "success": True,
            "request": request,
            "credits_refunded": refunded,
            "credits_remaining": refund.new_balance,
        }

    def rate(self, request_id: str, client_id: str, rating: int, review_text: Optional[str] = None) -> Rating:
        if not 1 <= rating <= 5:
            raise BadRequestError("Rating must be between 1 and 5")

        with transactional(self.session):
            request = self._get_request(request_id)
            if request.client_id != client_id:
                raise ForbiddenError("You don't own this request")
            if request.status != RequestStatus.COMPLETED:
                raise PreconditionFailedError("Request must be completed before rating")
            if not request.provider_id:
                raise PreconditionFailedError("No provider assigned to this request")

            existing = self.session.query(Rating).filter(Rating.request_id == request.id).first()
            if existing is not None:
                raise ConflictError("This request has already been rated")

            record = Rating(
                request_id=request.id,
                client_id=client_id,
                provider_id=request.provider_id,
                rating=rating,
                review_text=review_text,
            )
            self.session.add(record)
            try:
                self.session.flush()
            except IntegrityError as e:
                raise ConflictError("This request has already been rated") from e

        self._after_commit(self.notifier.notify_new_rating, request.provider_id, request.id, request.title, rating)
        return record

    # =========================================================================
    # Provider operations
    # =========================================================================

    def accept(
        self,
        request_id: str,
        provider_id: str,
        role: UserRole = UserRole.PROVIDER,
        estimated_days: Optional[int] = None,
    ) -> Request:
        """Claim a pending request. Exactly one provider wins a race."""
        if role not in (UserRole.PROVIDER, UserRole.SUPER_ADMIN):
            raise ForbiddenError("Only providers can accept requests")
        if estimated_days is not None and not 1 <= estimated_days <= 90:
            raise BadRequestError("Estimated days must be between 1 and 90")

        with transactional(self.session):
            request = self._get_request(request_id)
            if request.provider_id is not None:
                raise ConflictError("This request has already been accepted")
            if request.status != RequestStatus.PENDING:
                raise PreconditionFailedError("Only pending requests can be accepted")

            estimated_delivery = None
            if estimated_days:
                estimated_delivery = datetime.now(timezone.utc) + timedelta(days=estimated_days)

            moved = self._transition(
                request,
                RequestStatus.PENDING,
                criteria=(Request.provider_id.is_(None),),
                provider_id=provider_id,
                status=RequestStatus.IN_PROGRESS,
                estimated_delivery=estimated_delivery,
            )
            if not moved:
                raise ConflictError("This request has already been accepted")

            content = "Request accepted."
            if estimated_delivery:
                content += f" Estimated delivery: {estimated_delivery.date().isoformat()}"
            self._append_comment(request.id, provider_id, content, event=CommentEvent.REQUEST_ACCEPTED)
            self.session.flush()
            self.session.refresh(request)

        logger.info("Request accepted", extra={"request_id": request.id, "provider_id": provider_id})
        self._after_commit(self.notifier.notify_request_accepted, request.client_id, request.id, request.title)
        return request

    def update_status(
        self,
        request_id: str,
        user_id: str,
        new_status: RequestStatus,
        role: UserRole = UserRole.PROVIDER,
        message: Optional[str] = None,
        files: Optional[List[str]] = None,
    ) -> Request:
        """Provider moves work along: IN_PROGRESS <-> DELIVERED, REVISION_REQUESTED -> either."""
        new_status = RequestStatus(new_status)
        if new_status not in (RequestStatus.IN_PROGRESS, RequestStatus.DELIVERED):
            raise BadRequestError("Status must be IN_PROGRESS or DELIVERED")

        with transactional(self.session):
            request = self._get_request(request_id)
            if request.provider_id != user_id and role != UserRole.SUPER_ADMIN:
                raise ForbiddenError("You are not assigned to this request")

            current = request.status
            if new_status not in PROVIDER_TRANSITIONS.get(current, frozenset()):
                raise PreconditionFailedError(
                    f"Cannot change request status from {current.value} to {new_status.value}"
                )

            if not self._transition(request, current, status=new_status):
                raise PreconditionFailedError("Request status changed concurrently; reload and retry")

            delivered = new_status == RequestStatus.DELIVERED
            self._append_comment(
                request.id,
                user_id,
                message or f"Status updated to {new_status.value}",
                comment_type=CommentType.DELIVERABLE if delivered else CommentType.SYSTEM,
                event=CommentEvent.STATUS_CHANGED,
                files=files,
            )
            self.session.flush()
            self.session.refresh(request)

        logger.info(
            "Request status updated",
            extra={
                "request_id": request.id,
                "user_id": user_id,
                "from_status": current.value,
                "to_status": new_status.value,
            },
        )
        self._after_commit(self.notifier.notify_status_changed, request.client_id, request.id, request.title, delivered)
        return request

    # =========================================================================
    # Shared
    # =========================================================================

    def add_comment(
        self,
        request_id: str,
        user_id: str,
        content: str,
        role: UserRole = UserRole.CLIENT,
        files: Optional[List[str]] = None,
    ) -> RequestComment:
        if not content or not content.strip():
            raise BadRequestError("Comment content is required")

        with transactional(self.session):
            request = self._get_request(request_id)
            is_client = request.client_id == user_id
            is_provider = request.provider_id is not None and request.provider_id == user_id
            if not (is_client or is_provider or role == UserRole.SUPER_ADMIN):
                raise ForbiddenError(NO_ACCESS_MESSAGE)

            comment = self._append_comment(
                request.id, user_id, content, comment_type=CommentType.MESSAGE, files=files
            )
            self.session.flush()

        recipient = request.provider_id if is_client else request.client_id
        self._after_commit(self.notifier.notify_new_message, recipient, request.id, request.title, is_client)
        return comment

    def get_by_id(self, request_id: str, user_id: str, role: UserRole) -> Dict[str, Any]:
        """
        Request with its comments; revision info for the client and admins.

        Providers see requests assigned to them and unclaimed pending ones.
        """
        request = self._get_request(request_id)

        if role == UserRole.CLIENT and request.client_id != user_id:
            raise ForbiddenError(NO_ACCESS_MESSAGE)
        if (
            role == UserRole.PROVIDER
            and request.provider_id != user_id
            and request.status != RequestStatus.PENDING
        ):
            raise ForbiddenError(NO_ACCESS_MESSAGE)

        revision_info = None
        if role in (UserRole.CLIENT, UserRole.SUPER_ADMIN):
            revision_info = self.revisions.get_revision_info(request.id, request.client_id)

        comments = (
            self.session.query(RequestComment)
            .filter(RequestComment.request_id == request.id)
            .order_by(RequestComment.created_at.asc())
            .all()
        )
        return {"request": request, "comments": comments, "revision_info": revision_info}

    def list_for_user(
        self,
        user_id: str,
        role: UserRole,
        status: Optional[RequestStatus] = None,
        limit: int = 20,
        cursor: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Newest-first page of the requests visible to the caller.

        Args:
            cursor: id of the last request from the previous page

        Returns:
            {"requests": [...], "next_cursor": id or None}
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        query = self.session.query(Request)

        if role == UserRole.CLIENT:
            query = query.filter(Request.client_id == user_id)
        elif role == UserRole.PROVIDER:
            query = query.filter(or_(
                Request.provider_id == user_id,
                and_(Request.status == RequestStatus.PENDING, Request.provider_id.is_(None)),
            ))

        if status is not None:
            query = query.filter(Request.status == RequestStatus(status))

        if cursor:
            anchor = self.session.get(Request, cursor)
            if anchor is None:
                raise BadRequestError("Invalid cursor")
            query = query.filter(or_(
                Request.created_at < anchor.created_at,
                and_(Request.created_at == anchor.created_at, Request.id < anchor.id),
            ))

        requests = query.order_by(Request.created_at.desc(), Request.id.desc()).limit(limit).all()
        next_cursor = requests[-1].id if len(requests) == limit else None
        return {"requests": requests, "next_cursor": next_cursor}
