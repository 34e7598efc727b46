"""Offer Service — negotiation between a buyer and a listing's seller.

Acceptance is the critical section of the whole engine. Two buyers can
have their offers accepted at the same moment; only one may win the
listing. The listing's ``active -> sold`` write is a compare-and-set and
runs first, so the loser fails with ConflictError before anything else is
written and its offer stays pending.

After the listing is secured, in the same unit of work:
    1. The offer moves pending -> accepted (compare-and-set).
    2. A Transaction is created in pending with the offer amount.
    3. A system message opens the transaction thread.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from marketplace_exchange.domain.enums import (
    DeliveryStatus,
    EntityType,
    EventType,
    ListingStatus,
    OfferAction,
    OfferStatus,
    PartyRole,
    PaymentStatus,
    TransactionStatus,
)
from marketplace_exchange.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from marketplace_exchange.domain.state_machine import ListingStateMachine, OfferStateMachine
from marketplace_exchange.infrastructure.database.orm_models import (
    Offer,
    Transaction,
    TransactionMessage,
)
from marketplace_exchange.infrastructure.database.repositories import (
    ListingRepository,
    MessageRepository,
    OfferRepository,
    TransactionRepository,
)
from marketplace_exchange.logging_config import get_logger
from marketplace_exchange.services.base import BaseService, parse_money

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_exchange.config import Settings
    from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher
    from marketplace_exchange.infrastructure.database.orm_models import Listing

logger = get_logger(__name__)

_EVENT_FOR_STATUS = {
    OfferStatus.ACCEPTED: EventType.OFFER_ACCEPTED,
    OfferStatus.REJECTED: EventType.OFFER_REJECTED,
    OfferStatus.COUNTERED: EventType.OFFER_COUNTERED,
    OfferStatus.EXPIRED: EventType.OFFER_EXPIRED,
    OfferStatus.WITHDRAWN: EventType.OFFER_WITHDRAWN,
}


@dataclass(frozen=True)
class OfferResponse:
    """Outcome of respond_to_offer.

    Attributes:
        offer: The responded-to offer in its new terminal state.
        transaction: The created transaction (accept only).
        counter_offer: The new pending offer (counter only).
    """

    offer: Offer
    transaction: Transaction | None = None
    counter_offer: Offer | None = None


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


class OfferService(BaseService):
    """Creates offers and processes responses, withdrawals and expiry."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(session, notifier, settings)
        self._listing_repo = ListingRepository(session)
        self._offer_repo = OfferRepository(session)
        self._transaction_repo = TransactionRepository(session)
        self._message_repo = MessageRepository(session)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_offer(
        self,
        listing_id: uuid.UUID,
        buyer_id: str,
        amount: Decimal | str | int,
        note: str | None = None,
        expires_at: datetime | None = None,
    ) -> Offer:
        """Open a PENDING offer from a buyer on an active listing."""
        value = parse_money(amount)
        if value <= 0:
            raise ValidationError("amount must be positive", field="amount")

        listing = await self._listing_repo.get(listing_id)
        if listing is None:
            raise NotFoundError("listing", listing_id)
        if buyer_id == listing.seller_id:
            raise AuthorizationError(buyer_id, "make an offer on their own listing")
        if listing.status != ListingStatus.ACTIVE:
            raise ConflictError(
                f"Listing {listing_id} is {listing.status}, not accepting offers",
                code="LISTING_NOT_AVAILABLE",
            )

        now = datetime.now(UTC)
        expires = self._default_expiry(now) if expires_at is None else _as_utc(expires_at)
        if expires <= now:
            raise ValidationError("expires_at must be in the future", field="expires_at")

        if await self._offer_repo.get_pending_for_buyer(listing_id, buyer_id) is not None:
            raise DuplicateError(
                f"Buyer {buyer_id} already has a pending offer on listing {listing_id}"
            )

        offer = await self._insert_offer(
            Offer(
                listing_id=listing_id,
                buyer_id=buyer_id,
                seller_id=listing.seller_id,
                proposer_role=PartyRole.BUYER.value,
                amount=value,
                note=note,
                status=OfferStatus.PENDING.value,
                expires_at=expires,
            )
        )

        await self._record_event(
            entity_type=EntityType.OFFER,
            entity_id=offer.id,
            event_type=EventType.OFFER_CREATED,
            old_status=None,
            new_status=OfferStatus.PENDING,
            actor=buyer_id,
            metadata={"listing_id": str(listing_id), "amount": str(value)},
        )
        await self._notify(
            EventType.OFFER_CREATED,
            EntityType.OFFER,
            offer.id,
            recipients=(listing.seller_id,),
            listing_id=listing_id,
            amount=value,
        )

        logger.info(
            "offer.created",
            offer_id=str(offer.id),
            listing_id=str(listing_id),
            amount=str(value),
        )
        return offer

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    async def respond_to_offer(
        self,
        offer_id: uuid.UUID,
        actor_id: str,
        action: OfferAction | str,
        counter_amount: Decimal | str | int | None = None,
    ) -> OfferResponse:
        """Accept, reject or counter a pending offer as the receiving party."""
        try:
            action = OfferAction(action)
        except ValueError as err:
            raise ValidationError(f"Unknown offer action '{action}'", field="action") from err

        offer = await self._get_open_offer_or_raise(offer_id)
        if actor_id != offer.responder_id:
            raise AuthorizationError(actor_id, f"{action.value} offer {offer_id}")
        if offer.expires_at <= datetime.now(UTC):
            raise ConflictError(f"Offer {offer_id} has expired", code="OFFER_EXPIRED")

        if action is OfferAction.ACCEPT:
            return await self._accept(offer, actor_id)
        if action is OfferAction.REJECT:
            rejected = await self._close_offer(offer, OfferStatus.REJECTED, "reject", actor_id)
            return OfferResponse(offer=rejected)
        return await self._counter(offer, actor_id, counter_amount)

    async def _accept(self, offer: Offer, actor_id: str) -> OfferResponse:
        self._fire_transition(OfferStateMachine, "offer", offer.status, "accept")

        listing = await self._listing_repo.get(offer.listing_id)
        if listing is None:
            raise NotFoundError("listing", offer.listing_id)
        self._fire_transition(ListingStateMachine, "listing", listing.status, "sell")

        # The compare-and-set point: exactly one acceptance wins the listing.
        sold = await self._listing_repo.mark_sold(offer.listing_id, offer.buyer_id)
        if sold is None:
            raise ConflictError(
                f"Listing {offer.listing_id} is no longer available",
                code="LISTING_NOT_AVAILABLE",
            )

        accepted = await self._offer_repo.transition(
            offer.id, OfferStatus.PENDING, OfferStatus.ACCEPTED
        )
        if accepted is None:
            raise ConflictError(f"Offer {offer.id} is no longer pending")

        transaction = await self._create_transaction(accepted, sold)

        await self._record_event(
            entity_type=EntityType.LISTING,
            entity_id=sold.id,
            event_type=EventType.LISTING_SOLD,
            old_status=ListingStatus.ACTIVE,
            new_status=ListingStatus.SOLD,
            actor=actor_id,
            metadata={"buyer_id": accepted.buyer_id, "offer_id": str(accepted.id)},
        )
        await self._record_event(
            entity_type=EntityType.OFFER,
            entity_id=accepted.id,
            event_type=EventType.OFFER_ACCEPTED,
            old_status=OfferStatus.PENDING,
            new_status=OfferStatus.ACCEPTED,
            actor=actor_id,
            metadata={"transaction_id": str(transaction.id)},
        )
        await self._notify(
            EventType.OFFER_ACCEPTED,
            EntityType.OFFER,
            accepted.id,
            recipients=(accepted.buyer_id, accepted.seller_id),
            listing_id=sold.id,
            transaction_id=transaction.id,
            amount=accepted.amount,
        )

        logger.info(
            "offer.accepted",
            offer_id=str(accepted.id),
            listing_id=str(sold.id),
            transaction_id=str(transaction.id),
        )
        return OfferResponse(offer=accepted, transaction=transaction)

    async def _create_transaction(self, offer: Offer, listing: Listing) -> Transaction:
        transaction = Transaction(
            listing_id=listing.id,
            offer_id=offer.id,
            buyer_id=offer.buyer_id,
            seller_id=offer.seller_id,
            amount=offer.amount,
            status=TransactionStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            delivery_status=DeliveryStatus.PENDING.value,
            delivery_proofs=[],
        )
        try:
            transaction = await self._transaction_repo.add(transaction)
        except IntegrityError as err:
            raise ConflictError(
                f"Listing {listing.id} already has an open transaction",
                code="LISTING_NOT_AVAILABLE",
            ) from err

        await self._message_repo.add(
            TransactionMessage(
                transaction_id=transaction.id,
                sender_id=None,
                sender_role=PartyRole.SYSTEM.value,
                body=(
                    f"Offer of {offer.amount} accepted for '{listing.title}'. "
                    "Arrange payment and delivery here."
                ),
            )
        )
        await self._record_event(
            entity_type=EntityType.TRANSACTION,
            entity_id=transaction.id,
            event_type=EventType.TRANSACTION_CREATED,
            old_status=None,
            new_status=TransactionStatus.PENDING,
            actor="SYSTEM",
            metadata={"offer_id": str(offer.id), "amount": str(offer.amount)},
        )
        return transaction

    async def _counter(
        self,
        offer: Offer,
        actor_id: str,
        counter_amount: Decimal | str | int | None,
    ) -> OfferResponse:
        if counter_amount is None:
            raise ValidationError("counter_amount is required to counter", field="counter_amount")
        value = parse_money(counter_amount, "counter_amount")
        if value <= 0:
            raise ValidationError("counter_amount must be positive", field="counter_amount")

        countered = await self._close_offer(offer, OfferStatus.COUNTERED, "counter", actor_id)

        proposer = (
            PartyRole.SELLER if countered.proposer_role == PartyRole.BUYER else PartyRole.BUYER
        )
        counter_offer = await self._insert_offer(
            Offer(
                listing_id=countered.listing_id,
                buyer_id=countered.buyer_id,
                seller_id=countered.seller_id,
                proposer_role=proposer.value,
                parent_offer_id=countered.id,
                amount=value,
                status=OfferStatus.PENDING.value,
                expires_at=self._default_expiry(datetime.now(UTC)),
            )
        )

        await self._record_event(
            entity_type=EntityType.OFFER,
            entity_id=counter_offer.id,
            event_type=EventType.OFFER_CREATED,
            old_status=None,
            new_status=OfferStatus.PENDING,
            actor=actor_id,
            metadata={"parent_offer_id": str(countered.id), "amount": str(value)},
        )
        await self._notify(
            EventType.OFFER_COUNTERED,
            EntityType.OFFER,
            countered.id,
            recipients=(counter_offer.responder_id,),
            counter_offer_id=counter_offer.id,
            amount=value,
        )

        logger.info(
            "offer.countered",
            offer_id=str(countered.id),
            counter_offer_id=str(counter_offer.id),
            amount=str(value),
        )
        return OfferResponse(offer=countered, counter_offer=counter_offer)

    # ------------------------------------------------------------------
    # Withdrawal
    # ------------------------------------------------------------------

    async def withdraw_offer(self, offer_id: uuid.UUID, actor_id: str) -> Offer:
        """The proposer takes back a pending offer."""
        offer = await self._get_open_offer_or_raise(offer_id)
        if actor_id != offer.proposer_id:
            raise AuthorizationError(actor_id, f"withdraw offer {offer_id}")
        return await self._close_offer(offer, OfferStatus.WITHDRAWN, "withdraw", actor_id)

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    async def expire_offers(self, now: datetime | None = None) -> list[Offer]:
        """Expire every pending offer whose expiry has passed.

        Each offer is moved with its own compare-and-set, so a concurrent
        sweep or response simply skips the offers it lost. Returns the
        offers this call expired.
        """
        now = datetime.now(UTC) if now is None else _as_utc(now)
        expired: list[Offer] = []

        for candidate in await self._offer_repo.list_due_for_expiry(now):
            self._fire_transition(OfferStateMachine, "offer", candidate.status, "expire")
            offer = await self._offer_repo.transition(
                candidate.id, OfferStatus.PENDING, OfferStatus.EXPIRED
            )
            if offer is None:
                continue

            await self._record_event(
                entity_type=EntityType.OFFER,
                entity_id=offer.id,
                event_type=EventType.OFFER_EXPIRED,
                old_status=OfferStatus.PENDING,
                new_status=OfferStatus.EXPIRED,
                actor="SYSTEM",
                metadata={"expires_at": offer.expires_at.isoformat()},
            )
            await self._notify(
                EventType.OFFER_EXPIRED,
                EntityType.OFFER,
                offer.id,
                recipients=(offer.buyer_id, offer.seller_id),
                listing_id=offer.listing_id,
            )
            expired.append(offer)

        if expired:
            logger.info("offer.expired", count=len(expired))
        return expired

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_offer(self, offer_id: uuid.UUID) -> Offer:
        """Get an offer (any status) or raise."""
        offer = await self._offer_repo.get(offer_id)
        if offer is None:
            raise NotFoundError("offer", offer_id)
        return offer

    async def list_offers_for_listing(
        self,
        listing_id: uuid.UUID,
        status: OfferStatus | None = None,
    ) -> list[Offer]:
        if await self._listing_repo.get(listing_id) is None:
            raise NotFoundError("listing", listing_id)
        return await self._offer_repo.list_for_listing(listing_id, status=status)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _default_expiry(self, now: datetime) -> datetime:
        return now + timedelta(hours=self._settings.offer_ttl_hours)

    async def _get_open_offer_or_raise(self, offer_id: uuid.UUID) -> Offer:
        """Pending offers only: terminal offers are gone as far as callers are concerned."""
        offer = await self._offer_repo.get(offer_id)
        if offer is None:
            raise NotFoundError("offer", offer_id)
        if offer.status != OfferStatus.PENDING:
            raise NotFoundError("offer", offer_id, detail=f"offer is {offer.status}")
        return offer

    async def _insert_offer(self, offer: Offer) -> Offer:
        try:
            return await self._offer_repo.add(offer)
        except IntegrityError as err:
            raise DuplicateError(
                f"Buyer {offer.buyer_id} already has a pending offer on listing {offer.listing_id}"
            ) from err

    async def _close_offer(
        self,
        offer: Offer,
        to_status: OfferStatus,
        event_name: str,
        actor_id: str,
    ) -> Offer:
        """Move a pending offer into a terminal state other than accepted."""
        self._fire_transition(OfferStateMachine, "offer", offer.status, event_name)
        closed = await self._offer_repo.transition(offer.id, OfferStatus.PENDING, to_status)
        if closed is None:
            raise ConflictError(f"Offer {offer.id} is no longer pending")

        await self._record_event(
            entity_type=EntityType.OFFER,
            entity_id=closed.id,
            event_type=_EVENT_FOR_STATUS[to_status],
            old_status=OfferStatus.PENDING,
            new_status=to_status,
            actor=actor_id,
        )
        if to_status is not OfferStatus.COUNTERED:
            await self._notify(
                _EVENT_FOR_STATUS[to_status],
                EntityType.OFFER,
                closed.id,
                recipients=(closed.buyer_id, closed.seller_id),
                listing_id=closed.listing_id,
            )

        logger.info("offer.closed", offer_id=str(closed.id), status=to_status.value)
        return closed
