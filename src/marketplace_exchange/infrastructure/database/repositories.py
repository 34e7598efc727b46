"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Guarded status writes go through ``compare_and_set``: a single
``UPDATE ... WHERE id = :id AND <expected columns>`` that only succeeds
when exactly one row still holds the expected values. A ``None`` return
means another writer got there first and nothing was changed.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import delete, func, select, update

from marketplace_exchange.domain.enums import (
    AlertSeverity,
    AlertStatus,
    DeliveryStatus,
    ListingStatus,
    OfferStatus,
    PaymentStatus,
    TransactionStatus,
)
from marketplace_exchange.infrastructure.database.orm_models import (
    ContentReport,
    ExchangeEvent,
    FraudAlert,
    Listing,
    Offer,
    RatingAggregate,
    Review,
    ReviewReaction,
    Transaction,
    TransactionMessage,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Mapping

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_exchange.domain.enums import EntityType, EventType

ModelT = TypeVar("ModelT")

_CENT = Decimal("0.01")
_OPEN_TRANSACTION_STATUSES = (
    TransactionStatus.PENDING.value,
    TransactionStatus.IN_PROGRESS.value,
    TransactionStatus.DISPUTED.value,
)
_CLOSED_TRANSACTION_STATUSES = (
    TransactionStatus.COMPLETED.value,
    TransactionStatus.CANCELLED.value,
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _Repository(Generic[ModelT]):
    """CRUD plus compare-and-set for a single mapped model with an ``id`` key."""

    model: type[ModelT]

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, entity: ModelT) -> ModelT:
        """Insert a new row and flush so database defaults and constraints apply."""
        self._session.add(entity)
        await self._session.flush()
        return entity

    async def get(self, entity_id: uuid.UUID) -> ModelT | None:
        """Fetch a row by primary key."""
        return await self._session.get(self.model, entity_id)

    async def refresh(self, entity_id: uuid.UUID) -> ModelT | None:
        """Re-read a row, overwriting whatever the identity map holds."""
        return await self._session.get(self.model, entity_id, populate_existing=True)

    async def compare_and_set(
        self,
        entity_id: uuid.UUID,
        expected: Mapping[str, Any],
        values: Mapping[str, Any],
    ) -> ModelT | None:
        """Write ``values`` only if the row still matches ``expected``.

        Expected values that are tuples match any of their members.

        Returns:
            The refreshed entity on success, None if no row matched.
        """
        criteria = [self.model.id == entity_id]
        for column_name, value in expected.items():
            column = getattr(self.model, column_name)
            if isinstance(value, tuple):
                criteria.append(column.in_(value))
            else:
                criteria.append(column == value)

        stmt = (
            update(self.model)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            return None
        return await self.refresh(entity_id)


class ListingRepository(_Repository[Listing]):
    """Data access for listings."""

    model = Listing

    async def list_listings(
        self,
        status: ListingStatus | None = None,
        seller_id: str | None = None,
    ) -> list[Listing]:
        stmt = select(Listing).order_by(Listing.created_at.desc())
        if status is not None:
            stmt = stmt.where(Listing.status == status.value)
        if seller_id is not None:
            stmt = stmt.where(Listing.seller_id == seller_id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def mark_sold(self, listing_id: uuid.UUID, buyer_id: str) -> Listing | None:
        """active -> sold. None if the listing is no longer active."""
        return await self.compare_and_set(
            listing_id,
            expected={"status": ListingStatus.ACTIVE.value},
            values={"status": ListingStatus.SOLD.value, "buyer_id": buyer_id},
        )

    async def relist(self, listing_id: uuid.UUID) -> Listing | None:
        """sold -> active, clearing the buyer."""
        return await self.compare_and_set(
            listing_id,
            expected={"status": ListingStatus.SOLD.value},
            values={"status": ListingStatus.ACTIVE.value, "buyer_id": None},
        )

    async def force_remove(
        self,
        listing_id: uuid.UUID,
        reason: str,
        removed_by: str,
    ) -> Listing | None:
        """Moderation override: any non-removed listing -> removed.

        Bypasses ListingStateMachine. Only ModerationService may call this.
        """
        return await self.compare_and_set(
            listing_id,
            expected={"status": (ListingStatus.ACTIVE.value, ListingStatus.SOLD.value)},
            values={
                "status": ListingStatus.REMOVED.value,
                "removed_reason": reason,
                "removed_by": removed_by,
                "removed_at": _utcnow(),
            },
        )


class OfferRepository(_Repository[Offer]):
    """Data access for offers."""

    model = Offer

    async def get_pending_for_buyer(
        self,
        listing_id: uuid.UUID,
        buyer_id: str,
    ) -> Offer | None:
        result = await self._session.execute(
            select(Offer).where(
                Offer.listing_id == listing_id,
                Offer.buyer_id == buyer_id,
                Offer.status == OfferStatus.PENDING.value,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_listing(
        self,
        listing_id: uuid.UUID,
        status: OfferStatus | None = None,
    ) -> list[Offer]:
        """Fetch offers on a listing, newest first."""
        stmt = (
            select(Offer)
            .where(Offer.listing_id == listing_id)
            .order_by(Offer.created_at.desc())
        )
        if status is not None:
            stmt = stmt.where(Offer.status == status.value)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_due_for_expiry(self, now: datetime) -> list[Offer]:
        """Pending offers whose expiry is at or before ``now``."""
        result = await self._session.execute(
            select(Offer)
            .where(
                Offer.status == OfferStatus.PENDING.value,
                Offer.expires_at <= now,
            )
            .order_by(Offer.expires_at.asc())
        )
        return list(result.scalars().all())

    async def transition(
        self,
        offer_id: uuid.UUID,
        from_status: OfferStatus,
        to_status: OfferStatus,
    ) -> Offer | None:
        """Move an offer between statuses (call AFTER state machine validation)."""
        return await self.compare_and_set(
            offer_id,
            expected={"status": from_status.value},
            values={"status": to_status.value},
        )


class TransactionRepository(_Repository[Transaction]):
    """Data access for transactions."""

    model = Transaction

    async def list_for_listing(self, listing_id: uuid.UUID) -> list[Transaction]:
        result = await self._session.execute(
            select(Transaction)
            .where(Transaction.listing_id == listing_id)
            .order_by(Transaction.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_for_party(self, user_id: str) -> list[Transaction]:
        """Fetch every transaction the user is buyer or seller on, newest first."""
        result = await self._session.execute(
            select(Transaction)
            .where((Transaction.buyer_id == user_id) | (Transaction.seller_id == user_id))
            .order_by(Transaction.created_at.desc())
        )
        return list(result.scalars().all())

    async def record_payment(self, transaction_id: uuid.UUID) -> Transaction | None:
        return await self.compare_and_set(
            transaction_id,
            expected={
                "status": TransactionStatus.PENDING.value,
                "payment_status": PaymentStatus.PENDING.value,
            },
            values={"payment_status": PaymentStatus.PAID.value},
        )

    async def set_delivery_status(
        self,
        transaction_id: uuid.UUID,
        from_statuses: tuple[DeliveryStatus, ...],
        to_status: DeliveryStatus,
        **extra: Any,
    ) -> Transaction | None:
        return await self.compare_and_set(
            transaction_id,
            expected={
                "status": TransactionStatus.PENDING.value,
                "delivery_status": tuple(s.value for s in from_statuses),
            },
            values={"delivery_status": to_status.value, **extra},
        )

    async def set_delivery_proofs(
        self,
        transaction: Transaction,
        proofs: list[str],
    ) -> Transaction | None:
        """Replace the proof list, guarded by the row's last update timestamp."""
        return await self.compare_and_set(
            transaction.id,
            expected={
                "status": TransactionStatus.PENDING.value,
                "delivery_status": (
                    DeliveryStatus.PENDING.value,
                    DeliveryStatus.IN_TRANSIT.value,
                ),
                "updated_at": transaction.updated_at,
            },
            values={"delivery_proofs": proofs},
        )

    async def try_complete(self, transaction_id: uuid.UUID) -> Transaction | None:
        """pending -> completed, only once both payment and delivery are recorded.

        Exactly one caller can win this write for a given transaction.
        """
        return await self.compare_and_set(
            transaction_id,
            expected={
                "status": TransactionStatus.PENDING.value,
                "payment_status": PaymentStatus.PAID.value,
                "delivery_status": DeliveryStatus.DELIVERED.value,
            },
            values={
                "status": TransactionStatus.COMPLETED.value,
                "completed_at": _utcnow(),
            },
        )

    async def cancel(self, transaction_id: uuid.UUID, reason: str) -> Transaction | None:
        """pending with no payment and no delivery -> cancelled."""
        return await self.compare_and_set(
            transaction_id,
            expected={
                "status": TransactionStatus.PENDING.value,
                "payment_status": PaymentStatus.PENDING.value,
                "delivery_status": (
                    DeliveryStatus.PENDING.value,
                    DeliveryStatus.IN_TRANSIT.value,
                ),
            },
            values={"status": TransactionStatus.CANCELLED.value, "cancel_reason": reason},
        )

    async def open_dispute(self, transaction_id: uuid.UUID, reason: str) -> Transaction | None:
        """pending (effective pending or in_progress) -> disputed. Flags untouched."""
        return await self.compare_and_set(
            transaction_id,
            expected={"status": TransactionStatus.PENDING.value},
            values={
                "status": TransactionStatus.DISPUTED.value,
                "dispute_reason": reason,
                "disputed_at": _utcnow(),
            },
        )

    async def resolve_dispute(
        self,
        transaction_id: uuid.UUID,
        note: str,
        favor: str,
    ) -> Transaction | None:
        """disputed -> completed with the administrative decision recorded."""
        now = _utcnow()
        return await self.compare_and_set(
            transaction_id,
            expected={"status": TransactionStatus.DISPUTED.value},
            values={
                "status": TransactionStatus.COMPLETED.value,
                "resolution_note": note,
                "resolution_favor": favor,
                "resolved_at": now,
                "completed_at": now,
            },
        )

    async def force_cancel(self, transaction_id: uuid.UUID, reason: str) -> Transaction | None:
        """Moderation override: any non-terminal transaction -> cancelled.

        Bypasses TransactionStateMachine. Only ModerationService may call this.
        """
        return await self.compare_and_set(
            transaction_id,
            expected={"status": _OPEN_TRANSACTION_STATUSES},
            values={"status": TransactionStatus.CANCELLED.value, "cancel_reason": reason},
        )

    async def has_completed_purchase(self, buyer_id: str, listing_id: uuid.UUID) -> bool:
        """True if the buyer completed a transaction for the listing."""
        result = await self._session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.buyer_id == buyer_id,
                Transaction.listing_id == listing_id,
                Transaction.status == TransactionStatus.COMPLETED.value,
            )
        )
        return result.scalar_one() > 0

    async def has_completed_with(self, user_id: str, counterparty_id: str) -> bool:
        """True if the two users completed a transaction with each other."""
        result = await self._session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.status == TransactionStatus.COMPLETED.value,
                (
                    (Transaction.buyer_id == user_id) & (Transaction.seller_id == counterparty_id)
                )
                | (
                    (Transaction.seller_id == user_id) & (Transaction.buyer_id == counterparty_id)
                ),
            )
        )
        return result.scalar_one() > 0


class MessageRepository(_Repository[TransactionMessage]):
    """Data access for transaction message threads (append-only)."""

    model = TransactionMessage

    async def list_for_transaction(self, transaction_id: uuid.UUID) -> list[TransactionMessage]:
        """Fetch a thread in chronological order."""
        result = await self._session.execute(
            select(TransactionMessage)
            .where(TransactionMessage.transaction_id == transaction_id)
            .order_by(TransactionMessage.created_at.asc())
        )
        return list(result.scalars().all())

    async def mark_read(self, transaction_id: uuid.UUID, reader_id: str) -> int:
        """Stamp read_at on every unread message not sent by the reader."""
        result = await self._session.execute(
            update(TransactionMessage)
            .where(
                TransactionMessage.transaction_id == transaction_id,
                TransactionMessage.read_at.is_(None),
                (TransactionMessage.sender_id.is_(None))
                | (TransactionMessage.sender_id != reader_id),
            )
            .values(read_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class ReviewRepository(_Repository[Review]):
    """Data access for reviews and their rating aggregates."""

    model = Review

    _SORTS = {
        "recent": (Review.created_at.desc(),),
        "helpful": (Review.helpful_count.desc(), Review.created_at.desc()),
        "rating_high": (Review.rating.desc(), Review.created_at.desc()),
        "rating_low": (Review.rating.asc(), Review.created_at.desc()),
    }

    async def get_by_reviewer(
        self,
        target_type: str,
        target_id: str,
        reviewer_id: str,
    ) -> Review | None:
        result = await self._session.execute(
            select(Review).where(
                Review.target_type == target_type,
                Review.target_id == target_id,
                Review.reviewer_id == reviewer_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_target(
        self,
        target_type: str,
        target_id: str,
        sort: str = "recent",
        rating: int | None = None,
    ) -> list[Review]:
        """Visible (non-removed) reviews of a target."""
        stmt = (
            select(Review)
            .where(
                Review.target_type == target_type,
                Review.target_id == target_id,
                Review.removed_at.is_(None),
            )
            .order_by(*self._SORTS[sort])
        )
        if rating is not None:
            stmt = stmt.where(Review.rating == rating)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def rating_distribution(self, target_type: str, target_id: str) -> dict[int, int]:
        """Count of visible reviews per star, 1..5 all present."""
        result = await self._session.execute(
            select(Review.rating, func.count(Review.id))
            .where(
                Review.target_type == target_type,
                Review.target_id == target_id,
                Review.removed_at.is_(None),
            )
            .group_by(Review.rating)
        )
        distribution = dict.fromkeys(range(1, 6), 0)
        for stars, count in result.all():
            distribution[int(stars)] = int(count)
        return distribution

    async def recompute_aggregate(self, target_type: str, target_id: str) -> RatingAggregate:
        """Rebuild the target's count and mean from every visible review."""
        result = await self._session.execute(
            select(func.count(Review.id), func.coalesce(func.sum(Review.rating), 0)).where(
                Review.target_type == target_type,
                Review.target_id == target_id,
                Review.removed_at.is_(None),
            )
        )
        count, total = result.one()
        count = int(count)
        mean = (
            (Decimal(int(total)) / count).quantize(_CENT, rounding=ROUND_HALF_UP)
            if count
            else Decimal("0.00")
        )

        aggregate = await self._session.get(RatingAggregate, (target_type, target_id))
        if aggregate is None:
            aggregate = RatingAggregate(target_type=target_type, target_id=target_id)
            self._session.add(aggregate)
        aggregate.review_count = count
        aggregate.mean_rating = mean
        await self._session.flush()
        return aggregate

    async def get_aggregate(self, target_type: str, target_id: str) -> RatingAggregate | None:
        return await self._session.get(RatingAggregate, (target_type, target_id))

    async def adjust_counters(
        self,
        review_id: uuid.UUID,
        helpful_delta: int = 0,
        unhelpful_delta: int = 0,
    ) -> None:
        """Atomically add deltas to the reaction counters."""
        await self._session.execute(
            update(Review)
            .where(Review.id == review_id)
            .values(
                helpful_count=Review.helpful_count + helpful_delta,
                unhelpful_count=Review.unhelpful_count + unhelpful_delta,
            )
            .execution_options(synchronize_session=False)
        )

    async def set_images(self, review: Review, images: list[str]) -> Review | None:
        return await self.compare_and_set(
            review.id,
            expected={"updated_at": review.updated_at, "removed_at": None},
            values={"images": images},
        )

    async def soft_remove(self, review_id: uuid.UUID, reason: str) -> Review | None:
        """Hide a review from listings and aggregates. None if already removed."""
        return await self.compare_and_set(
            review_id,
            expected={"removed_at": None},
            values={"removed_at": _utcnow(), "removed_reason": reason},
        )


class ReactionRepository(_Repository[ReviewReaction]):
    """Data access for per-user review reactions."""

    model = ReviewReaction

    async def get_for_user(self, review_id: uuid.UUID, user_id: str) -> ReviewReaction | None:
        result = await self._session.execute(
            select(ReviewReaction).where(
                ReviewReaction.review_id == review_id,
                ReviewReaction.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def change_type(
        self,
        reaction: ReviewReaction,
        new_type: str,
    ) -> ReviewReaction | None:
        return await self.compare_and_set(
            reaction.id,
            expected={"reaction_type": reaction.reaction_type},
            values={"reaction_type": new_type},
        )

    async def remove(self, reaction: ReviewReaction) -> bool:
        """Delete the reaction if it still has the type we read."""
        result = await self._session.execute(
            delete(ReviewReaction)
            .where(
                ReviewReaction.id == reaction.id,
                ReviewReaction.reaction_type == reaction.reaction_type,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class ReportRepository(_Repository[ContentReport]):
    """Data access for user content reports."""

    model = ContentReport

    async def get_by_reporter(
        self,
        target_type: str,
        target_id: str,
        reporter_id: str,
    ) -> ContentReport | None:
        result = await self._session.execute(
            select(ContentReport).where(
                ContentReport.target_type == target_type,
                ContentReport.target_id == target_id,
                ContentReport.reporter_id == reporter_id,
            )
        )
        return result.scalar_one_or_none()


class AlertRepository(_Repository[FraudAlert]):
    """Data access for fraud alerts."""

    model = FraudAlert

    async def list_alerts(self, status: AlertStatus | None = None) -> list[FraudAlert]:
        """Fetch alerts, newest first."""
        stmt = select(FraudAlert).order_by(FraudAlert.created_at.desc())
        if status is not None:
            stmt = stmt.where(FraudAlert.status == status.value)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def transition(
        self,
        alert_id: uuid.UUID,
        from_statuses: tuple[AlertStatus, ...],
        values: Mapping[str, Any],
    ) -> FraudAlert | None:
        return await self.compare_and_set(
            alert_id,
            expected={"status": tuple(s.value for s in from_statuses)},
            values=values,
        )

    async def count_by_status(self) -> dict[str, int]:
        result = await self._session.execute(
            select(FraudAlert.status, func.count(FraudAlert.id)).group_by(FraudAlert.status)
        )
        counts = {status.value: 0 for status in AlertStatus}
        for status, count in result.all():
            counts[status] = int(count)
        return counts

    async def count_by_severity(self) -> dict[str, int]:
        result = await self._session.execute(
            select(FraudAlert.severity, func.count(FraudAlert.id)).group_by(FraudAlert.severity)
        )
        counts = dict.fromkeys((s.value for s in AlertSeverity), 0)
        for severity, count in result.all():
            counts[severity] = int(count)
        return counts


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        entity_type: EntityType,
        entity_id: object,
        event_type: EventType,
        old_status: str | None,
        new_status: str | None,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
    ) -> ExchangeEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = ExchangeEvent(
            entity_type=entity_type.value,
            entity_id=str(entity_id),
            event_type=event_type.value,
            old_status=str(old_status) if old_status is not None else None,
            new_status=str(new_status) if new_status is not None else None,
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def list_for_entity(
        self,
        entity_type: EntityType,
        entity_id: object,
    ) -> list[ExchangeEvent]:
        """Fetch all events for an entity in chronological order."""
        result = await self._session.execute(
            select(ExchangeEvent)
            .where(
                ExchangeEvent.entity_type == entity_type.value,
                ExchangeEvent.entity_id == str(entity_id),
            )
            .order_by(ExchangeEvent.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_by_type(self, event_type: EventType) -> list[ExchangeEvent]:
        result = await self._session.execute(
            select(ExchangeEvent)
            .where(ExchangeEvent.event_type == event_type.value)
            .order_by(ExchangeEvent.created_at.asc())
        )
        return list(result.scalars().all())
