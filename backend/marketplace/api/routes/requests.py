"""
Requests API routes.

Provides endpoints for:
- Creating a request (entitlement -> pricing -> credit deduction)
- Revisions, acceptance, status updates, approval, cancellation
- Comments and ratings
- Listing and reading requests

Caller identity comes from the auth layer (see platform.caller_context);
client_id / provider_id are NEVER accepted from the request body.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from marketplace.api.dependencies.db import get_db_session, get_notifier
from marketplace.api.schemas.requests import (
    AcceptBody,
    CancelResponse,
    CommentBody,
    CommentResponse,
    CostBreakdownResponse,
    CreateRequestBody,
    CreateRequestResponse,
    RatingBody,
    RatingResponse,
    RequestActionResponse,
    RequestDetailResponse,
    RequestListResponse,
    RequestResponse,
    RevisionBody,
    RevisionInfoResponse,
    RevisionResponse,
    StatusUpdateBody,
)
from marketplace.models.request import RequestStatus
from marketplace.models.user import UserRole
from marketplace.platform.caller_context import CallerContext, get_caller_context, require_role
from marketplace.services.request_service import RequestService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/requests", tags=["requests"])

client_only = require_role(UserRole.CLIENT)
provider_only = require_role(UserRole.PROVIDER)


def _to_response(request) -> RequestResponse:
    return RequestResponse.model_validate(request)


@router.post("", response_model=CreateRequestResponse, status_code=201)
async def create_request(
    body: CreateRequestBody,
    caller: CallerContext = Depends(client_only),
    db_session=Depends(get_db_session),
    notifier=Depends(get_notifier),
):
    """
    Create a request and pay for it with credits.

    Errors: NOT_FOUND (service), PRECONDITION_FAILED (no subscription or
    insufficient credits), FORBIDDEN (service not in plan), BAD_REQUEST
    (invalid attribute responses).
    """
    service = RequestService(db_session, notifier)
    result = service.create_request(
        client_id=caller.user_id,
        title=body.title,
        description=body.description,
        service_type_id=body.service_type_id,
        priority=body.priority,
        attribute_responses=(
            [item.model_dump() for item in body.attribute_responses]
            if body.attribute_responses else None
        ),
        attachments=body.attachments,
        form_data=body.form_data,
    )
    return CreateRequestResponse(
        success=result.success,
        request=_to_response(result.request),
        credits_remaining=result.credits_remaining,
        message=result.message,
        cost=CostBreakdownResponse(**result.cost.to_dict()),
    )


@router.get("", response_model=RequestListResponse)
async def list_requests(
    caller: CallerContext = Depends(get_caller_context),
    db_session=Depends(get_db_session),
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = Query(None, description="id of the last request of the previous page"),
):
    """Requests visible to the caller, newest first."""
    service = RequestService(db_session)
    page = service.list_for_user(
        caller.user_id, caller.role, status=status_filter, limit=limit, cursor=cursor
    )
    return RequestListResponse(
        requests=[_to_response(r) for r in page["requests"]],
        next_cursor=page["next_cursor"],
    )


@router.get("/{request_id}", response_model=RequestDetailResponse)
async def get_request(
    request_id: str,
    caller: CallerContext = Depends(get_caller_context),
    db_session=Depends(get_db_session),
):
    service = RequestService(db_session)
    detail = service.get_by_id(request_id, caller.user_id, caller.role)
    revision_info = detail["revision_info"]
    return RequestDetailResponse(
        request=_to_response(detail["request"]),
        comments=[CommentResponse.model_validate(c) for c in detail["comments"]],
        revision_info=RevisionInfoResponse(**revision_info) if revision_info else None,
    )


@router.post("/{request_id}/revision", response_model=RevisionResponse)
async def request_revision(
    request_id: str,
    body: RevisionBody,
    caller: CallerContext = Depends(client_only),
    db_session=Depends(get_db_session),
    notifier=Depends(get_notifier),
):
    """Reject a deliverable. Free within the service's allowance, paid after."""
    service = RequestService(db_session, notifier)
    result = service.request_revision(request_id, caller.user_id, body.feedback)
    return RevisionResponse(
        allowed=result.allowed,
        is_free=result.is_free,
        credit_cost=result.credit_cost,
        new_revision_count=result.new_revision_count,
        message=result.message,
        credits_remaining=result.credits_remaining,
        request=_to_response(result.request),
    )


@router.post("/{request_id}/accept", response_model=RequestActionResponse)
async def accept_request(
    request_id: str,
    body: Optional[AcceptBody] = None,
    caller: CallerContext = Depends(provider_only),
    db_session=Depends(get_db_session),
    notifier=Depends(get_notifier),
):
    service = RequestService(db_session, notifier)
    request = service.accept(
        request_id,
        caller.user_id,
        role=caller.role,
        estimated_days=body.estimated_days if body else None,
    )
    return RequestActionResponse(success=True, request=_to_response(request))


@router.post("/{request_id}/status", response_model=RequestActionResponse)
async def update_request_status(
    request_id: str,
    body: StatusUpdateBody,
    caller: CallerContext = Depends(provider_only),
    db_session=Depends(get_db_session),
    notifier=Depends(get_notifier),
):
    service = RequestService(db_session, notifier)
    request = service.update_status(
        request_id,
        caller.user_id,
        body.status,
        role=caller.role,
        message=body.message,
        files=body.files,
    )
    return RequestActionResponse(success=True, request=_to_response(request))


@router.post("/{request_id}/approve", response_model=RequestActionResponse)
async def approve_request(
    request_id: str,
    caller: CallerContext = Depends(client_only),
    db_session=Depends(get_db_session),
    notifier=Depends(get_notifier),
):
    service = RequestService(db_session, notifier)
    request = service.approve(request_id, caller.user_id)
    return RequestActionResponse(success=True, request=_to_response(request))


@router.post("/{request_id}/cancel", response_model=CancelResponse)
async def cancel_request(
    request_id: str,
    caller: CallerContext = Depends(client_only),
    db_session=Depends(get_db_session),
    notifier=Depends(get_notifier),
):
    """Cancel an unclaimed request; its credits are refunded."""
    service = RequestService(db_session, notifier)
    result = service.cancel(request_id, caller.user_id, role=caller.role)
    return CancelResponse(
        success=result["success"],
        request=_to_response(result["request"]),
        credits_refunded=result["credits_refunded"],
        credits_remaining=result["credits_remaining"],
    )


@router.post("/{request_id}/comments", response_model=CommentResponse, status_code=201)
async def add_comment(
    request_id: str,
    body: CommentBody,
    caller: CallerContext = Depends(get_caller_context),
    db_session=Depends(get_db_session),
    notifier=Depends(get_notifier),
):
    service = RequestService(db_session, notifier)
    comment = service.add_comment(
        request_id, caller.user_id, body.content, role=caller.role, files=body.files
    )
    return CommentResponse.model_validate(comment)


@router.post("/{request_id}/rating", response_model=RatingResponse, status_code=201)
async def rate_request(
    request_id: str,
    body: RatingBody,
    caller: CallerContext = Depends(client_only),
    db_session=Depends(get_db_session),
    notifier=Depends(get_notifier),
):
    service = RequestService(db_session, notifier)
    rating = service.rate(request_id, caller.user_id, body.rating, body.review_text)
    return RatingResponse.model_validate(rating)
