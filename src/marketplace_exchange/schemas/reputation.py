"""Pydantic schemas for reviews, reactions, reports and moderation."""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from marketplace_exchange.domain.enums import (  # noqa: TC001
    AlertAction,
    AlertSeverity,
    AlertTargetType,
    ReactionType,
    ReviewTargetType,
)

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateReviewRequest(BaseModel):
    """Request body for reviewing an item (listing id) or a user."""

    target_type: ReviewTargetType
    target_id: str = Field(..., min_length=1, max_length=64)
    rating: int = Field(..., ge=1, le=5)
    body: str = Field(..., min_length=1, max_length=5000)
    title: str | None = Field(default=None, max_length=200)
    verified_purchase: bool | None = Field(
        default=None,
        description="Derived from completed transactions when omitted",
    )
    images: list[str] = Field(default_factory=list, max_length=10)


class AddReviewImagesRequest(BaseModel):
    images: list[str] = Field(..., min_length=1, max_length=10)


class ReactRequest(BaseModel):
    reaction_type: ReactionType
    value: bool = Field(default=True, description="False clears the reaction")


class ReportRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class RecordAlertRequest(BaseModel):
    """Verdict from the fraud scoring collaborator."""

    target_type: AlertTargetType
    target_id: str = Field(..., min_length=1, max_length=64)
    severity: AlertSeverity
    activity_type: str = Field(default="scoring", min_length=1, max_length=40)
    details: dict | None = None


class ProcessAlertRequest(BaseModel):
    action: AlertAction
    note: str | None = Field(default=None, max_length=5000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    target_type: str
    target_id: str
    reviewer_id: str
    rating: int
    title: str | None
    body: str
    verified_purchase: bool
    images: list[str]
    helpful_count: int
    unhelpful_count: int
    created_at: datetime


class RatingAggregateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    target_type: str
    target_id: str
    review_count: int
    mean_rating: Decimal


class ReviewPageResponse(BaseModel):
    """Visible reviews plus the target's rating summary."""

    model_config = ConfigDict(from_attributes=True)

    reviews: list[ReviewResponse]
    aggregate: RatingAggregateResponse
    distribution: dict[int, int]


class ContentReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    target_type: str
    target_id: str
    reporter_id: str
    reason: str
    alert_id: uuid.UUID | None
    created_at: datetime


class FraudAlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    target_type: str
    target_id: str
    severity: str
    status: str
    activity_type: str
    details: dict | None
    reviewer_id: str | None
    review_notes: str | None
    reviewed_at: datetime | None
    created_at: datetime


class AlertStatsResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    by_severity: dict[str, int]
    accuracy: float | None = Field(
        description="resolved / (resolved + dismissed); null until an alert closes"
    )
