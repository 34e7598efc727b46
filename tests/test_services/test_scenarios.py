"""End-to-end exchange scenarios across all services."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from marketplace_exchange.domain.enums import EventType, ListingStatus, TransactionStatus
from marketplace_exchange.domain.exceptions import ConflictError
from marketplace_exchange.infrastructure.database.orm_models import Listing

SELLER = "seller-1"
BUYER = "buyer-1"


class TestHappyPathScenario:
    @pytest.mark.asyncio
    async def test_offer_to_review(self, market) -> None:
        listing = await market.create_listing(price="100.00")

        async with market.scope() as session:
            offer = await market.offers(session).create_offer(
                listing.id,
                BUYER,
                Decimal("90"),
                expires_at=datetime.now(UTC) + timedelta(hours=24),
            )

        result = await market.accept(offer.id)
        transaction = result.transaction
        assert transaction.amount == Decimal("90.00")
        assert transaction.status == TransactionStatus.PENDING

        async with market.scope() as session:
            assert (await session.get(Listing, listing.id)).status == ListingStatus.SOLD

        async with market.scope() as session:
            paid = await market.transactions(session).record_payment(transaction.id, "90")
        assert paid.payment_status == "paid"
        assert paid.status == TransactionStatus.PENDING

        async with market.scope() as session:
            done = await market.transactions(session).mark_delivered(transaction.id, SELLER)
        assert done.status == TransactionStatus.COMPLETED
        assert done.completed_at is not None

        async with market.scope() as session:
            review = await market.reviews(session).create_review(
                "item", listing.id, BUYER, 5, "Exactly as pictured."
            )
        assert review.verified_purchase is True

        async with market.scope() as session:
            aggregate = await market.reviews(session).get_aggregate("item", listing.id)
        assert aggregate.review_count == 1
        assert aggregate.mean_rating == Decimal("5.00")

        assert market.notifier.types() == [
            EventType.OFFER_CREATED,
            EventType.OFFER_ACCEPTED,
            EventType.PAYMENT_RECORDED,
            EventType.DELIVERY_CONFIRMED,
            EventType.TRANSACTION_COMPLETED,
            EventType.REVIEW_CREATED,
        ]


class TestDisputeScenario:
    @pytest.mark.asyncio
    async def test_dispute_freezes_then_resolves(self, market) -> None:
        transaction = await market.open_transaction("90.00")

        async with market.scope() as session:
            disputed = await market.disputes(session).raise_dispute(
                transaction.id, "item not as described", BUYER
            )
        assert disputed.status == TransactionStatus.DISPUTED

        async with market.scope() as session:
            with pytest.raises(ConflictError):
                await market.transactions(session).record_payment(transaction.id, "90.00")

        async with market.scope() as session:
            resolved = await market.disputes(session).resolve_dispute(
                transaction.id, "partial refund agreed", "buyer"
            )
        assert resolved.status == TransactionStatus.COMPLETED
        assert resolved.resolution_favor == "buyer"

        async with market.scope() as session:
            events = await market.transactions(session).get_events(transaction.id)
        assert [e.event_type for e in events][-2:] == ["DISPUTE_RAISED", "DISPUTE_RESOLVED"]
