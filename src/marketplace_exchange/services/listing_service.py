"""Listing Service — the listing store.

Listings are only created and read here. The status changes happen
elsewhere, each through exactly one path:
    - active -> sold     OfferService, on acceptance (compare-and-set)
    - sold -> active     return_to_market(), driven by the relist policy flags
    - any -> removed     ModerationService override
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_exchange.domain.enums import (
    EntityType,
    EventType,
    ListingStatus,
)
from marketplace_exchange.domain.exceptions import NotFoundError, ValidationError
from marketplace_exchange.domain.state_machine import ListingStateMachine
from marketplace_exchange.infrastructure.database.orm_models import Listing
from marketplace_exchange.infrastructure.database.repositories import ListingRepository
from marketplace_exchange.logging_config import get_logger
from marketplace_exchange.services.base import BaseService, parse_money, require_text

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_exchange.config import Settings
    from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher

logger = get_logger(__name__)


class ListingService(BaseService):
    """Creates and reads listings."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(session, notifier, settings)
        self._listing_repo = ListingRepository(session)

    async def create_listing(
        self,
        seller_id: str,
        title: str,
        price: Decimal | str | int,
        category: str,
        description: str | None = None,
    ) -> Listing:
        """Publish a new listing in ACTIVE state."""
        seller_id = require_text(seller_id, "seller_id")
        title = require_text(title, "title")
        category = require_text(category, "category")
        amount = parse_money(price, "price")
        if amount <= 0:
            raise ValidationError("price must be positive", field="price")

        listing = Listing(
            seller_id=seller_id,
            title=title,
            description=description,
            price=amount,
            category=category,
            status=ListingStatus.ACTIVE.value,
        )
        listing = await self._listing_repo.add(listing)

        await self._record_event(
            entity_type=EntityType.LISTING,
            entity_id=listing.id,
            event_type=EventType.LISTING_CREATED,
            old_status=None,
            new_status=ListingStatus.ACTIVE,
            actor=seller_id,
            metadata={"price": str(amount), "category": category},
        )

        logger.info("listing.created", listing_id=str(listing.id), price=str(amount))
        return listing

    async def get_listing(self, listing_id: uuid.UUID) -> Listing:
        """Get a listing or raise."""
        listing = await self._listing_repo.get(listing_id)
        if listing is None:
            raise NotFoundError("listing", listing_id)
        return listing

    async def list_listings(
        self,
        status: ListingStatus | None = None,
        seller_id: str | None = None,
    ) -> list[Listing]:
        return await self._listing_repo.list_listings(status=status, seller_id=seller_id)

    async def return_to_market(
        self, listing_id: uuid.UUID, actor: str, cause: str
    ) -> Listing | None:
        """sold -> active after the sale was unwound.

        Only reached when a relist policy flag is enabled. A listing that is
        no longer sold (moderation removed it, or another writer got there
        first) is left as it is and None is returned; the cancel or
        resolution that asked for the relist still goes through.
        """
        listing = await self.get_listing(listing_id)
        if listing.status != ListingStatus.SOLD:
            logger.info(
                "listing.relist_skipped",
                listing_id=str(listing_id),
                status=listing.status,
                cause=cause,
            )
            return None
        self._fire_transition(ListingStateMachine, "listing", listing.status, "relist")

        relisted = await self._listing_repo.relist(listing_id)
        if relisted is None:
            logger.info(
                "listing.relist_skipped",
                listing_id=str(listing_id),
                status="changed",
                cause=cause,
            )
            return None

        await self._record_event(
            entity_type=EntityType.LISTING,
            entity_id=listing_id,
            event_type=EventType.LISTING_RELISTED,
            old_status=ListingStatus.SOLD,
            new_status=ListingStatus.ACTIVE,
            actor=actor,
            metadata={"cause": cause},
        )
        await self._notify(
            EventType.LISTING_RELISTED,
            EntityType.LISTING,
            listing_id,
            recipients=(relisted.seller_id,),
            cause=cause,
        )

        logger.info("listing.relisted", listing_id=str(listing_id), cause=cause)
        return relisted
