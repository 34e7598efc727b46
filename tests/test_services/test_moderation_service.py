"""Tests for ModerationService: alert intake, triage and overrides."""

from __future__ import annotations

import uuid

import pytest

from marketplace_exchange.domain.enums import AlertStatus, ListingStatus, TransactionStatus
from marketplace_exchange.domain.exceptions import (
    ConflictError,
    DuplicateError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from marketplace_exchange.infrastructure.database.orm_models import (
    Listing,
    Review,
    Transaction,
)

SELLER = "seller-1"
BUYER = "buyer-1"
MODERATOR = "moderator-1"


class TestIntake:
    @pytest.mark.asyncio
    async def test_record_alert(self, market) -> None:
        async with market.scope() as session:
            alert = await market.moderation(session).record_alert(
                "user", "buyer-9", "high", activity_type="velocity", details={"score": 0.93}
            )

        assert alert.status == AlertStatus.NEW
        assert alert.details == {"score": 0.93}
        assert "ALERT_RAISED" in market.notifier.types()

    @pytest.mark.asyncio
    async def test_unknown_severity(self, market) -> None:
        async with market.scope() as session:
            with pytest.raises(ValidationError):
                await market.moderation(session).record_alert("user", "buyer-9", "apocalyptic")

    @pytest.mark.asyncio
    async def test_report_listing_once_per_reporter(self, market) -> None:
        listing = await market.create_listing()
        async with market.scope() as session:
            report = await market.moderation(session).report_listing(
                listing.id, BUYER, "looks counterfeit"
            )
        assert report.alert_id is not None

        async with market.scope() as session:
            with pytest.raises(DuplicateError):
                await market.moderation(session).report_listing(listing.id, BUYER, "again")

            # A different reporter is fine.
            await market.moderation(session).report_listing(listing.id, "buyer-2", "fake")

    @pytest.mark.asyncio
    async def test_report_unknown_listing(self, market) -> None:
        async with market.scope() as session:
            with pytest.raises(NotFoundError):
                await market.moderation(session).report_listing(uuid.uuid4(), BUYER, "spam")


class TestTriage:
    @pytest.mark.asyncio
    async def test_dismiss_changes_only_the_alert(self, market) -> None:
        listing = await market.create_listing()
        async with market.scope() as session:
            alert = await market.moderation(session).record_alert("item", listing.id, "low")
        async with market.scope() as session:
            await market.moderation(session).start_review(alert.id, MODERATOR)
        async with market.scope() as session:
            closed = await market.moderation(session).process_alert(
                alert.id, "dismiss", MODERATOR, note="legitimate seller"
            )

        assert closed.status == AlertStatus.DISMISSED
        assert closed.reviewer_id == MODERATOR
        assert closed.reviewed_at is not None
        async with market.scope() as session:
            assert (await session.get(Listing, listing.id)).status == ListingStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_closed_alert_cannot_be_processed_again(self, market) -> None:
        async with market.scope() as session:
            alert = await market.moderation(session).record_alert("user", "buyer-9", "low")
        async with market.scope() as session:
            await market.moderation(session).process_alert(alert.id, "dismiss", MODERATOR)

        async with market.scope() as session:
            with pytest.raises(ConflictError) as exc_info:
                await market.moderation(session).process_alert(alert.id, "resolve", MODERATOR)
        assert exc_info.value.code == "ALERT_CLOSED"

    @pytest.mark.asyncio
    async def test_review_cannot_start_twice(self, market) -> None:
        async with market.scope() as session:
            alert = await market.moderation(session).record_alert("user", "buyer-9", "low")
        async with market.scope() as session:
            await market.moderation(session).start_review(alert.id, MODERATOR)

        async with market.scope() as session:
            with pytest.raises(InvalidStateTransitionError):
                await market.moderation(session).start_review(alert.id, "moderator-2")

    @pytest.mark.asyncio
    async def test_unknown_action(self, market) -> None:
        async with market.scope() as session:
            alert = await market.moderation(session).record_alert("user", "buyer-9", "low")
        async with market.scope() as session:
            with pytest.raises(ValidationError):
                await market.moderation(session).process_alert(alert.id, "escalate", MODERATOR)


class TestOverrides:
    @pytest.mark.asyncio
    async def test_resolving_item_alert_removes_sold_listing(self, market) -> None:
        transaction = await market.open_transaction()
        async with market.scope() as session:
            alert = await market.moderation(session).record_alert(
                "item", transaction.listing_id, "critical"
            )
        async with market.scope() as session:
            await market.moderation(session).process_alert(
                alert.id, "resolve", MODERATOR, note="stolen goods"
            )

        async with market.scope() as session:
            listing = await session.get(Listing, transaction.listing_id)
        assert listing.status == ListingStatus.REMOVED
        assert listing.removed_reason == "stolen goods"
        assert listing.removed_by == MODERATOR

    @pytest.mark.asyncio
    async def test_resolving_transaction_alert_forces_cancellation(self, market) -> None:
        transaction = await market.open_transaction("90.00")
        async with market.scope() as session:
            await market.transactions(session).record_payment(transaction.id, "90.00")
        async with market.scope() as session:
            alert = await market.moderation(session).record_alert(
                "transaction", transaction.id, "high"
            )
        async with market.scope() as session:
            await market.moderation(session).process_alert(alert.id, "resolve", MODERATOR)

        async with market.scope() as session:
            stored = await session.get(Transaction, transaction.id)
        # Paid transactions cannot be cancelled by the parties, but the override can.
        assert stored.status == TransactionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_resolving_review_alert_hides_review_and_reaggregates(self, market) -> None:
        async with market.scope() as session:
            reviews = market.reviews(session)
            spam = await reviews.create_review("user", SELLER, "shill-1", 1, "Terrible!!!")
            await reviews.create_review("user", SELLER, BUYER, 5, "Great seller.")

        async with market.scope() as session:
            report = await market.reviews(session).report(spam.id, SELLER, "fake review")
        async with market.scope() as session:
            await market.moderation(session).process_alert(report.alert_id, "resolve", MODERATOR)

        async with market.scope() as session:
            removed = await session.get(Review, spam.id)
            page = await market.reviews(session).list_reviews("user", SELLER)
        assert removed.removed_at is not None
        assert [r.reviewer_id for r in page.reviews] == [BUYER]
        assert page.aggregate.review_count == 1
        assert page.aggregate.mean_rating == 5

    @pytest.mark.asyncio
    async def test_user_alert_records_decision_only(self, market) -> None:
        async with market.scope() as session:
            alert = await market.moderation(session).record_alert("user", "buyer-9", "medium")
        async with market.scope() as session:
            closed = await market.moderation(session).process_alert(alert.id, "resolve", MODERATOR)
        assert closed.status == AlertStatus.RESOLVED


class TestStats:
    @pytest.mark.asyncio
    async def test_accuracy(self, market) -> None:
        async with market.scope() as session:
            service = market.moderation(session)
            alerts = [await service.record_alert("user", f"u{i}", "low") for i in range(4)]
            await service.record_alert("user", "u9", "critical")
        async with market.scope() as session:
            service = market.moderation(session)
            for alert, action in zip(alerts, ("resolve", "resolve", "resolve", "dismiss"), strict=True):
                await service.process_alert(alert.id, action, MODERATOR)

        async with market.scope() as session:
            stats = await market.moderation(session).alert_stats()

        assert stats["total"] == 5
        assert stats["by_status"] == {"new": 1, "reviewing": 0, "resolved": 3, "dismissed": 1}
        assert stats["by_severity"]["low"] == 4
        assert stats["by_severity"]["critical"] == 1
        assert stats["accuracy"] == 0.75

    @pytest.mark.asyncio
    async def test_accuracy_undefined_without_closed_alerts(self, market) -> None:
        async with market.scope() as session:
            stats = await market.moderation(session).alert_stats()
        assert stats["total"] == 0
        assert stats["accuracy"] is None
