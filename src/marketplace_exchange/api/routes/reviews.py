"""Review and reputation REST API routes.

Routes:
    POST   /api/v1/reviews                                  — Write a review
    GET    /api/v1/reviews/{target_type}/{target_id}        — Reviews + rating summary
    GET    /api/v1/reviews/{target_type}/{target_id}/rating — Aggregate only
    POST   /api/v1/reviews/{id}/images                      — Reviewer adds images
    POST   /api/v1/reviews/{id}/reactions                   — Helpful/unhelpful toggle
    POST   /api/v1/reviews/{id}/report                      — Report to moderation
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from marketplace_exchange.api.deps import get_actor_id, get_db_session, get_notifier
from marketplace_exchange.domain.enums import ReviewTargetType  # noqa: TC001
from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher  # noqa: TC001
from marketplace_exchange.schemas.reputation import (
    AddReviewImagesRequest,
    ContentReportResponse,
    CreateReviewRequest,
    RatingAggregateResponse,
    ReactRequest,
    ReportRequest,
    ReviewPageResponse,
    ReviewResponse,
)
from marketplace_exchange.services.review_service import ReviewService

router = APIRouter(prefix="/api/v1/reviews", tags=["Reviews"])


@router.post("", response_model=ReviewResponse, status_code=201, summary="Write a review")
async def create_review(
    request: CreateReviewRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> ReviewResponse:
    svc = ReviewService(session, notifier)
    review = await svc.create_review(
        target_type=request.target_type,
        target_id=request.target_id,
        reviewer_id=actor_id,
        rating=request.rating,
        body=request.body,
        title=request.title,
        verified_purchase=request.verified_purchase,
        images=request.images,
    )
    return ReviewResponse.model_validate(review)


@router.get(
    "/{target_type}/{target_id}",
    response_model=ReviewPageResponse,
    summary="Reviews of a target",
)
async def list_reviews(
    target_type: ReviewTargetType,
    target_id: str,
    sort: str = Query(default="recent", pattern="^(recent|helpful|rating_high|rating_low)$"),
    rating: int | None = Query(default=None, ge=1, le=5),
    session: AsyncSession = Depends(get_db_session),
) -> ReviewPageResponse:
    page = await ReviewService(session).list_reviews(target_type, target_id, sort=sort, rating=rating)
    return ReviewPageResponse.model_validate(page)


@router.get(
    "/{target_type}/{target_id}/rating",
    response_model=RatingAggregateResponse,
    summary="Rating aggregate",
)
async def get_rating(
    target_type: ReviewTargetType,
    target_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> RatingAggregateResponse:
    aggregate = await ReviewService(session).get_aggregate(target_type, target_id)
    return RatingAggregateResponse.model_validate(aggregate)


@router.post(
    "/{review_id}/images",
    response_model=ReviewResponse,
    summary="Add images to a review",
)
async def add_review_images(
    review_id: uuid.UUID,
    request: AddReviewImagesRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
) -> ReviewResponse:
    review = await ReviewService(session).add_review_images(review_id, actor_id, request.images)
    return ReviewResponse.model_validate(review)


@router.post(
    "/{review_id}/reactions",
    response_model=ReviewResponse,
    summary="React to a review",
)
async def react(
    review_id: uuid.UUID,
    request: ReactRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
) -> ReviewResponse:
    review = await ReviewService(session).react(
        review_id, user_id=actor_id, reaction_type=request.reaction_type, value=request.value
    )
    return ReviewResponse.model_validate(review)


@router.post(
    "/{review_id}/report",
    response_model=ContentReportResponse,
    status_code=201,
    summary="Report a review",
)
async def report_review(
    review_id: uuid.UUID,
    request: ReportRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> ContentReportResponse:
    """Report a review. Opens a medium severity moderation alert."""
    report = await ReviewService(session, notifier).report(
        review_id, reporter_id=actor_id, reason=request.reason
    )
    return ContentReportResponse.model_validate(report)
