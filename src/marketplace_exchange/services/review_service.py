"""Review Service — reviews, reactions, reports and rating aggregates.

Review content is immutable once written. The only later changes are:
    - images appended by the reviewer,
    - helpful/unhelpful counters moved by reactions,
    - soft removal by the Moderation Gate.

Aggregates are never adjusted incrementally. Every change re-aggregates
the target over its visible reviews, so the stored mean always equals
the mean of the reviews a reader can see.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from marketplace_exchange.domain.enums import (
    AlertSeverity,
    EntityType,
    EventType,
    ReactionType,
    ReportTargetType,
    ReviewTargetType,
)
from marketplace_exchange.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from marketplace_exchange.infrastructure.database.orm_models import (
    ContentReport,
    RatingAggregate,
    Review,
    ReviewReaction,
)
from marketplace_exchange.infrastructure.database.repositories import (
    ListingRepository,
    ReactionRepository,
    ReviewRepository,
    TransactionRepository,
)
from marketplace_exchange.logging_config import get_logger
from marketplace_exchange.services.base import BaseService, require_text
from marketplace_exchange.services.moderation_service import ModerationService

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_exchange.config import Settings
    from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher

logger = get_logger(__name__)

MAX_REVIEW_IMAGES = 10
REVIEW_SORTS = ("recent", "helpful", "rating_high", "rating_low")


@dataclass
class ReviewPage:
    """Visible reviews of a target together with its rating summary."""

    reviews: list[Review]
    aggregate: RatingAggregate
    distribution: dict[int, int] = field(default_factory=dict)


def _clean_images(images: Iterable[str] | None) -> list[str]:
    cleaned: list[str] = []
    for image in images or ():
        ref = require_text(image, "images")
        if ref not in cleaned:
            cleaned.append(ref)
    return cleaned


class ReviewService(BaseService):
    """Writes reviews and keeps reputation aggregates in step."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(session, notifier, settings)
        self._review_repo = ReviewRepository(session)
        self._reaction_repo = ReactionRepository(session)
        self._listing_repo = ListingRepository(session)
        self._transaction_repo = TransactionRepository(session)

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    async def create_review(
        self,
        target_type: ReviewTargetType | str,
        target_id: object,
        reviewer_id: str,
        rating: int,
        body: str,
        title: str | None = None,
        verified_purchase: bool | None = None,
        images: Iterable[str] = (),
    ) -> Review:
        """Write a review of an item (listing) or a user.

        ``verified_purchase`` is derived from completed transactions when
        omitted. Claiming it without a completed transaction is rejected.
        """
        try:
            target_type = ReviewTargetType(target_type)
        except ValueError as err:
            raise ValidationError(f"Unknown review target '{target_type}'", field="target_type") from err
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("rating must be an integer from 1 to 5", field="rating")
        body = require_text(body, "body")
        image_refs = _clean_images(images)
        if len(image_refs) > MAX_REVIEW_IMAGES:
            raise ValidationError(f"At most {MAX_REVIEW_IMAGES} images per review", field="images")

        target_key = self._target_key(target_type, target_id)
        await self._check_reviewable(target_type, target_key, reviewer_id)

        existing = await self._review_repo.get_by_reviewer(target_type.value, target_key, reviewer_id)
        if existing is not None:
            raise DuplicateError(f"{reviewer_id} already reviewed {target_type.value} {target_key}")

        has_purchase = await self._has_completed_transaction(target_type, target_key, reviewer_id)
        if verified_purchase and not has_purchase:
            raise ValidationError(
                "verified_purchase requires a completed transaction",
                field="verified_purchase",
            )

        try:
            review = await self._review_repo.add(
                Review(
                    target_type=target_type.value,
                    target_id=target_key,
                    reviewer_id=reviewer_id,
                    rating=rating,
                    title=title,
                    body=body,
                    verified_purchase=has_purchase if verified_purchase is None else verified_purchase,
                    images=image_refs,
                )
            )
        except IntegrityError as err:
            raise DuplicateError(
                f"{reviewer_id} already reviewed {target_type.value} {target_key}"
            ) from err

        aggregate = await self._review_repo.recompute_aggregate(target_type.value, target_key)

        await self._record_event(
            entity_type=EntityType.REVIEW,
            entity_id=review.id,
            event_type=EventType.REVIEW_CREATED,
            old_status=None,
            new_status="visible",
            actor=reviewer_id,
            metadata={"target": f"{target_type.value}:{target_key}", "rating": rating},
        )
        await self._notify(
            EventType.REVIEW_CREATED,
            EntityType.REVIEW,
            review.id,
            recipients=(await self._review_subject(target_type, target_key),),
            rating=rating,
        )

        logger.info(
            "review.created",
            review_id=str(review.id),
            target_type=target_type.value,
            target_id=target_key,
            rating=rating,
            review_count=aggregate.review_count,
        )
        return review

    async def get_review(self, review_id: uuid.UUID) -> Review:
        review = await self._review_repo.get(review_id)
        if review is None:
            raise NotFoundError("review", review_id)
        return review

    async def get_aggregate(
        self,
        target_type: ReviewTargetType | str,
        target_id: object,
    ) -> RatingAggregate:
        """Review count and mean for a target. Zero for targets with no reviews."""
        target_type = ReviewTargetType(target_type)
        target_key = self._target_key(target_type, target_id)
        aggregate = await self._review_repo.get_aggregate(target_type.value, target_key)
        if aggregate is None:
            return RatingAggregate(
                target_type=target_type.value,
                target_id=target_key,
                review_count=0,
                mean_rating=Decimal("0.00"),
            )
        return aggregate

    async def list_reviews(
        self,
        target_type: ReviewTargetType | str,
        target_id: object,
        sort: str = "recent",
        rating: int | None = None,
    ) -> ReviewPage:
        """Visible reviews of a target, sorted, with aggregate and star distribution."""
        if sort not in REVIEW_SORTS:
            raise ValidationError(f"sort must be one of {', '.join(REVIEW_SORTS)}", field="sort")
        if rating is not None and not 1 <= rating <= 5:
            raise ValidationError("rating filter must be from 1 to 5", field="rating")
        target_type = ReviewTargetType(target_type)
        target_key = self._target_key(target_type, target_id)

        reviews = await self._review_repo.list_for_target(
            target_type.value, target_key, sort=sort, rating=rating
        )
        return ReviewPage(
            reviews=reviews,
            aggregate=await self.get_aggregate(target_type, target_key),
            distribution=await self._review_repo.rating_distribution(target_type.value, target_key),
        )

    async def add_review_images(
        self,
        review_id: uuid.UUID,
        reviewer_id: str,
        images: Iterable[str],
    ) -> Review:
        """Append image references to the reviewer's own review."""
        review = await self._get_visible_review_or_raise(review_id)
        if reviewer_id != review.reviewer_id:
            raise AuthorizationError(reviewer_id, f"add images to review {review_id}")

        merged = list(review.images)
        for ref in _clean_images(images):
            if ref not in merged:
                merged.append(ref)
        if len(merged) > MAX_REVIEW_IMAGES:
            raise ValidationError(f"At most {MAX_REVIEW_IMAGES} images per review", field="images")

        updated = await self._review_repo.set_images(review, merged)
        if updated is None:
            raise ConflictError(f"Review {review_id} changed while adding images")
        return updated

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    async def react(
        self,
        review_id: uuid.UUID,
        user_id: str,
        reaction_type: ReactionType | str,
        value: bool = True,
    ) -> Review:
        """Set or clear the user's helpful/unhelpful reaction on a review.

        Counters move by exactly one per change: a new reaction adds one to
        its bucket, switching type moves one between buckets, clearing
        subtracts one. Repeating the current state is a no-op.
        """
        try:
            reaction_type = ReactionType(reaction_type)
        except ValueError as err:
            raise ValidationError(f"Unknown reaction '{reaction_type}'", field="reaction_type") from err
        await self._get_visible_review_or_raise(review_id)

        existing = await self._reaction_repo.get_for_user(review_id, user_id)

        if not value:
            if existing is not None:
                if not await self._reaction_repo.remove(existing):
                    raise ConflictError(f"Reaction on review {review_id} changed concurrently")
                await self._review_repo.adjust_counters(
                    review_id, **self._deltas(ReactionType(existing.reaction_type), -1)
                )
        elif existing is None:
            try:
                await self._reaction_repo.add(
                    ReviewReaction(
                        review_id=review_id,
                        user_id=user_id,
                        reaction_type=reaction_type.value,
                    )
                )
            except IntegrityError as err:
                raise ConflictError(f"Reaction on review {review_id} changed concurrently") from err
            await self._review_repo.adjust_counters(review_id, **self._deltas(reaction_type, +1))
        elif existing.reaction_type != reaction_type:
            if await self._reaction_repo.change_type(existing, reaction_type.value) is None:
                raise ConflictError(f"Reaction on review {review_id} changed concurrently")
            helpful_step = 1 if reaction_type is ReactionType.HELPFUL else -1
            await self._review_repo.adjust_counters(
                review_id, helpful_delta=helpful_step, unhelpful_delta=-helpful_step
            )

        logger.debug(
            "review.reacted",
            review_id=str(review_id),
            user_id=user_id,
            reaction=reaction_type.value,
            value=value,
        )
        return await self._review_repo.refresh(review_id)

    @staticmethod
    def _deltas(reaction_type: ReactionType, step: int) -> dict[str, int]:
        if reaction_type is ReactionType.HELPFUL:
            return {"helpful_delta": step, "unhelpful_delta": 0}
        return {"helpful_delta": 0, "unhelpful_delta": step}

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def report(self, review_id: uuid.UUID, reporter_id: str, reason: str) -> ContentReport:
        """Report a review for moderation. Opens a medium severity alert."""
        reason = require_text(reason, "reason")
        review = await self._get_visible_review_or_raise(review_id)

        moderation = ModerationService(self._session, self._notifier, self._settings)
        return await moderation.file_report(
            target_type=ReportTargetType.REVIEW,
            target_id=str(review.id),
            reporter_id=reporter_id,
            reason=reason,
            severity=AlertSeverity.MEDIUM,
            activity_type="review_report",
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_visible_review_or_raise(self, review_id: uuid.UUID) -> Review:
        review = await self._review_repo.get(review_id)
        if review is None or review.removed_at is not None:
            raise NotFoundError("review", review_id)
        return review

    async def _check_reviewable(
        self,
        target_type: ReviewTargetType,
        target_id: str,
        reviewer_id: str,
    ) -> None:
        if target_type is ReviewTargetType.USER:
            if target_id == reviewer_id:
                raise ValidationError("Users cannot review themselves", field="target_id")
            return

        listing = await self._listing_repo.get(self._listing_key(target_id))
        if listing is None:
            raise NotFoundError("listing", target_id)
        if listing.seller_id == reviewer_id:
            raise AuthorizationError(reviewer_id, f"review their own listing {target_id}")

    async def _has_completed_transaction(
        self,
        target_type: ReviewTargetType,
        target_id: str,
        reviewer_id: str,
    ) -> bool:
        if target_type is ReviewTargetType.ITEM:
            return await self._transaction_repo.has_completed_purchase(
                reviewer_id, self._listing_key(target_id)
            )
        return await self._transaction_repo.has_completed_with(reviewer_id, target_id)

    async def _review_subject(self, target_type: ReviewTargetType, target_id: str) -> str:
        """User who is told about a new review: the seller for items."""
        if target_type is ReviewTargetType.USER:
            return target_id
        listing = await self._listing_repo.get(self._listing_key(target_id))
        return listing.seller_id if listing is not None else ""

    @classmethod
    def _target_key(cls, target_type: ReviewTargetType, target_id: object) -> str:
        """Canonical key a target is stored under. Items use the listing's UUID form."""
        if target_type is ReviewTargetType.ITEM:
            return str(cls._listing_key(str(target_id)))
        return str(target_id)

    @staticmethod
    def _listing_key(target_id: str) -> uuid.UUID:
        try:
            return uuid.UUID(target_id)
        except ValueError as err:
            raise NotFoundError("listing", target_id) from err
