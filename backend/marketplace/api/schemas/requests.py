"""
Pydantic schemas for the Requests API.

Request and response models for request lifecycle endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from marketplace.models.request import RequestStatus
from marketplace.models.request_comment import CommentType


class AttributeResponseItem(BaseModel):
    """Client's answer to one service question."""

    question: str = Field(..., min_length=1)
    answer: Any = Field(None, description="String, number or list of strings for multiselect")


class CreateRequestBody(BaseModel):
    title: str = Field(..., min_length=5, description="Title must be at least 5 characters")
    description: str = Field(..., min_length=20, description="Description must be at least 20 characters")
    service_type_id: str
    priority: int = Field(2, ge=1, le=3, description="1 (low), 2 (medium), 3 (high)")
    attribute_responses: Optional[List[AttributeResponseItem]] = None
    attachments: Optional[List[str]] = Field(None, description="File references")
    form_data: Optional[Dict[str, Any]] = None


class CostBreakdownResponse(BaseModel):
    base: int
    attribute_surcharge: int
    priority_surcharge: int
    total: int


class RequestResponse(BaseModel):
    """Response model for a single request."""

    id: str
    title: str
    description: str
    client_id: str
    provider_id: Optional[str] = None
    service_type_id: str
    status: RequestStatus
    priority: int
    credit_cost: int
    base_credit_cost: int
    attribute_credits: int
    priority_credit_cost: int
    attribute_responses: Optional[List[Dict[str, Any]]] = None
    attachments: List[str] = Field(default_factory=list)
    is_revision: bool
    current_revision_count: int
    total_revisions: int
    estimated_delivery: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CreateRequestResponse(BaseModel):
    success: bool
    request: RequestResponse
    credits_remaining: int
    message: str
    cost: CostBreakdownResponse


class RevisionBody(BaseModel):
    feedback: str = Field(..., min_length=10, description="Please provide detailed feedback")


class RevisionResponse(BaseModel):
    allowed: bool
    is_free: bool
    credit_cost: int
    new_revision_count: int
    message: str
    credits_remaining: Optional[int] = None
    request: RequestResponse


class AcceptBody(BaseModel):
    estimated_days: Optional[int] = Field(None, ge=1, le=90)


class StatusUpdateBody(BaseModel):
    status: RequestStatus
    message: Optional[str] = None
    files: Optional[List[str]] = None


class CommentBody(BaseModel):
    content: str = Field(..., min_length=1)
    files: Optional[List[str]] = None


class CommentResponse(BaseModel):
    id: str
    request_id: str
    user_id: str
    content: str
    comment_type: CommentType
    event: Optional[str] = None
    credits_charged: int
    files: List[str] = Field(default_factory=list)
    created_at: datetime

    class Config:
        from_attributes = True


class RatingBody(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review_text: Optional[str] = None


class RatingResponse(BaseModel):
    id: str
    request_id: str
    provider_id: str
    rating: int
    review_text: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RevisionInfoResponse(BaseModel):
    current_count: int
    max_free: int
    total_revisions: int
    next_revision_cost: int
    free_revisions_remaining: int


class RequestDetailResponse(BaseModel):
    request: RequestResponse
    comments: List[CommentResponse]
    revision_info: Optional[RevisionInfoResponse] = None


class RequestListResponse(BaseModel):
    requests: List[RequestResponse]
    next_cursor: Optional[str] = None


class RequestActionResponse(BaseModel):
    success: bool
    request: RequestResponse


class CancelResponse(BaseModel):
    success: bool
    request: RequestResponse
    credits_refunded: int
    credits_remaining: int
