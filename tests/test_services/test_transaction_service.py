"""Tests for TransactionService: payment, delivery, completion and cancellation."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from marketplace_exchange.domain.enums import EventType, ListingStatus, TransactionStatus
from marketplace_exchange.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from marketplace_exchange.infrastructure.database.orm_models import Listing, Transaction
from marketplace_exchange.infrastructure.database.repositories import EventRepository


SELLER = "seller-1"
BUYER = "buyer-1"
OUTSIDER = "someone-else"
MODERATOR = "moderator-1"


class TestPayment:
    @pytest.mark.asyncio
    async def test_payment_moves_to_in_progress(self, market) -> None:
        transaction = await market.open_transaction("90.00")

        async with market.scope() as session:
            paid = await market.transactions(session).record_payment(
                transaction.id, Decimal("90.00"), actor_id=BUYER
            )

        assert paid.payment_status == "paid"
        assert paid.status == TransactionStatus.PENDING
        assert paid.effective_status == TransactionStatus.IN_PROGRESS
        assert "PAYMENT_RECORDED" in market.notifier.types()

    @pytest.mark.asyncio
    async def test_amount_must_match_exactly(self, market) -> None:
        transaction = await market.open_transaction("90.00")

        async with market.scope() as session:
            with pytest.raises(ValidationError):
                await market.transactions(session).record_payment(
                    transaction.id, Decimal("89.99")
                )

    @pytest.mark.asyncio
    async def test_payment_cannot_be_recorded_twice(self, market) -> None:
        transaction = await market.open_transaction("90.00")
        async with market.scope() as session:
            await market.transactions(session).record_payment(transaction.id, "90.00")

        async with market.scope() as session:
            with pytest.raises(ConflictError) as exc_info:
                await market.transactions(session).record_payment(transaction.id, "90.00")
        assert exc_info.value.code == "ALREADY_PAID"

    @pytest.mark.asyncio
    async def test_only_buyer_pays(self, market) -> None:
        transaction = await market.open_transaction()

        async with market.scope() as session:
            with pytest.raises(AuthorizationError):
                await market.transactions(session).record_payment(
                    transaction.id, "90.00", actor_id=SELLER
                )

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, market) -> None:
        async with market.scope() as session:
            with pytest.raises(NotFoundError):
                await market.transactions(session).record_payment(uuid.uuid4(), "1.00")


class TestCompletion:
    @pytest.mark.asyncio
    async def test_payment_then_delivery_completes(self, market) -> None:
        completed = await market.complete_transaction("90.00")

        assert completed.status == TransactionStatus.COMPLETED
        assert completed.completed_at is not None
        assert market.notifier.types().count("TRANSACTION_COMPLETED") == 1

    @pytest.mark.asyncio
    async def test_delivery_then_payment_completes(self, market) -> None:
        transaction = await market.open_transaction("90.00")
        async with market.scope() as session:
            delivered = await market.transactions(session).confirm_delivery(transaction.id, BUYER)
        assert delivered.effective_status == TransactionStatus.IN_PROGRESS

        async with market.scope() as session:
            completed = await market.transactions(session).record_payment(transaction.id, "90.00")
        assert completed.status == TransactionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_completion_recorded_once(self, market) -> None:
        """A late flag write after completion does not complete again."""
        completed = await market.complete_transaction()

        async with market.scope() as session:
            with pytest.raises(ConflictError):
                await market.transactions(session).confirm_delivery(completed.id, BUYER)
            events = await EventRepository(session).list_by_type(EventType.TRANSACTION_COMPLETED)
        assert [e.entity_id for e in events] == [str(completed.id)]

    @pytest.mark.asyncio
    async def test_stale_flag_writers_complete_once(self, market) -> None:
        """Both writers read the transaction before either wrote its flag."""
        transaction = await market.open_transaction("90.00")

        async with market.scope() as buyer_session:
            await buyer_session.get(Transaction, transaction.id)

            async with market.scope() as seller_session:
                await market.transactions(seller_session).mark_delivered(transaction.id, SELLER)

            result = await market.transactions(buyer_session).record_payment(
                transaction.id, "90.00"
            )

        assert result.status == TransactionStatus.COMPLETED
        assert market.notifier.types().count("TRANSACTION_COMPLETED") == 1


class TestDelivery:
    @pytest.mark.asyncio
    async def test_in_transit_then_delivered(self, market) -> None:
        transaction = await market.open_transaction()

        async with market.scope() as session:
            shipped = await market.transactions(session).mark_in_transit(
                transaction.id, SELLER, tracking_number="1Z999"
            )
        assert shipped.delivery_status == "in_transit"
        assert shipped.tracking_number == "1Z999"
        assert shipped.effective_status == TransactionStatus.PENDING

        async with market.scope() as session:
            delivered = await market.transactions(session).mark_delivered(transaction.id, SELLER)
        assert delivered.delivery_status == "delivered"

    @pytest.mark.asyncio
    async def test_buyer_cannot_mark_delivered(self, market) -> None:
        transaction = await market.open_transaction()

        async with market.scope() as session:
            with pytest.raises(AuthorizationError):
                await market.transactions(session).mark_delivered(transaction.id, BUYER)

    @pytest.mark.asyncio
    async def test_double_delivery_conflicts(self, market) -> None:
        transaction = await market.open_transaction()
        async with market.scope() as session:
            await market.transactions(session).mark_delivered(transaction.id, SELLER)

        async with market.scope() as session:
            with pytest.raises(ConflictError) as exc_info:
                await market.transactions(session).confirm_delivery(transaction.id, BUYER)
        assert exc_info.value.code == "ALREADY_DELIVERED"


class TestDeliveryProofs:
    @pytest.mark.asyncio
    async def test_upload_and_remove(self, market) -> None:
        transaction = await market.open_transaction()

        async with market.scope() as session:
            service = market.transactions(session)
            await service.upload_delivery_proof(transaction.id, "receipt.png", SELLER)
            updated = await service.upload_delivery_proof(transaction.id, "photo.jpg", SELLER)
        assert updated.delivery_proofs == ["receipt.png", "photo.jpg"]

        async with market.scope() as session:
            trimmed = await market.transactions(session).remove_delivery_proof(
                transaction.id, "receipt.png", SELLER
            )
        assert trimmed.delivery_proofs == ["photo.jpg"]

    @pytest.mark.asyncio
    async def test_duplicate_proof(self, market) -> None:
        transaction = await market.open_transaction()
        async with market.scope() as session:
            await market.transactions(session).upload_delivery_proof(
                transaction.id, "receipt.png", SELLER
            )

        async with market.scope() as session:
            with pytest.raises(ConflictError):
                await market.transactions(session).upload_delivery_proof(
                    transaction.id, "receipt.png", SELLER
                )

    @pytest.mark.asyncio
    async def test_removing_missing_proof(self, market) -> None:
        transaction = await market.open_transaction()

        async with market.scope() as session:
            with pytest.raises(NotFoundError):
                await market.transactions(session).remove_delivery_proof(
                    transaction.id, "nope.png", SELLER
                )

    @pytest.mark.asyncio
    async def test_proofs_frozen_after_delivery(self, market) -> None:
        transaction = await market.open_transaction()
        async with market.scope() as session:
            await market.transactions(session).mark_delivered(transaction.id, SELLER)

        async with market.scope() as session:
            with pytest.raises(ConflictError):
                await market.transactions(session).upload_delivery_proof(
                    transaction.id, "late.png", SELLER
                )


class TestCancellation:
    @pytest.mark.asyncio
    async def test_either_party_cancels_untouched_transaction(self, market) -> None:
        transaction = await market.open_transaction()

        async with market.scope() as session:
            cancelled = await market.transactions(session).cancel(
                transaction.id, "changed my mind", BUYER
            )

        assert cancelled.status == TransactionStatus.CANCELLED
        assert cancelled.cancel_reason == "changed my mind"

        # Relisting is off by default: the listing stays sold.
        async with market.scope() as session:
            listing = await session.get(Listing, transaction.listing_id)
        assert listing.status == ListingStatus.SOLD

    @pytest.mark.asyncio
    async def test_cannot_cancel_after_payment(self, market) -> None:
        transaction = await market.open_transaction("90.00")
        async with market.scope() as session:
            await market.transactions(session).record_payment(transaction.id, "90.00")

        async with market.scope() as session:
            with pytest.raises(InvalidStateTransitionError):
                await market.transactions(session).cancel(transaction.id, "too late", SELLER)

    @pytest.mark.asyncio
    async def test_outsider_cannot_cancel(self, market) -> None:
        transaction = await market.open_transaction()

        async with market.scope() as session:
            with pytest.raises(AuthorizationError):
                await market.transactions(session).cancel(transaction.id, "meddling", OUTSIDER)

    @pytest.mark.asyncio
    async def test_reason_required(self, market) -> None:
        transaction = await market.open_transaction()

        async with market.scope() as session:
            with pytest.raises(ValidationError):
                await market.transactions(session).cancel(transaction.id, "   ", BUYER)

    @pytest.mark.asyncio
    async def test_relist_on_cancel(self, make_market) -> None:
        market = make_market(relist_on_cancel=True)
        transaction = await market.open_transaction()

        async with market.scope() as session:
            await market.transactions(session).cancel(transaction.id, "no show", SELLER)

        async with market.scope() as session:
            listing = await session.get(Listing, transaction.listing_id)
        assert listing.status == ListingStatus.ACTIVE
        assert listing.buyer_id is None
        assert "LISTING_RELISTED" in market.notifier.types()

        # The listing accepts offers again.
        offer = await market.create_offer(listing.id, buyer_id="buyer-3")
        assert offer.listing_id == listing.id

    @pytest.mark.asyncio
    async def test_cancel_with_relist_leaves_removed_listing_alone(self, make_market) -> None:
        market = make_market(relist_on_cancel=True)
        transaction = await market.open_transaction()
        async with market.scope() as session:
            alert = await market.moderation(session).record_alert(
                "item", transaction.listing_id, "high"
            )
        async with market.scope() as session:
            await market.moderation(session).process_alert(alert.id, "resolve", MODERATOR)

        async with market.scope() as session:
            cancelled = await market.transactions(session).cancel(
                transaction.id, "listing taken down", SELLER
            )

        assert cancelled.status == TransactionStatus.CANCELLED
        async with market.scope() as session:
            listing = await session.get(Listing, transaction.listing_id)
        assert listing.status == ListingStatus.REMOVED
        assert "LISTING_RELISTED" not in market.notifier.types()


class TestMessages:
    @pytest.mark.asyncio
    async def test_thread_and_read_receipts(self, market) -> None:
        transaction = await market.open_transaction()

        async with market.scope() as session:
            service = market.transactions(session)
            await service.post_message(transaction.id, BUYER, "When can I pick it up?")
            await service.post_message(transaction.id, SELLER, "Saturday works.")

        async with market.scope() as session:
            thread = await market.transactions(session).list_messages(transaction.id, BUYER)
            assert [m.sender_role for m in thread] == ["system", "buyer", "seller"]

            # System message and the seller's reply, not the buyer's own.
            marked = await market.transactions(session).mark_messages_read(transaction.id, BUYER)
        assert marked == 2
        assert "MESSAGE_POSTED" in market.notifier.types()

    @pytest.mark.asyncio
    async def test_outsider_cannot_post(self, market) -> None:
        transaction = await market.open_transaction()

        async with market.scope() as session:
            with pytest.raises(AuthorizationError):
                await market.transactions(session).post_message(transaction.id, OUTSIDER, "hi")


class TestNotificationFailures:
    @pytest.mark.asyncio
    async def test_failing_dispatcher_does_not_block_transition(
        self, market, make_market, failing_notifier
    ) -> None:
        transaction = await market.open_transaction("90.00")
        broken = make_market(notifier=failing_notifier)

        async with broken.scope() as session:
            paid = await broken.transactions(session).record_payment(transaction.id, "90.00")

        assert failing_notifier.calls == 1
        async with market.scope() as session:
            stored = await session.get(Transaction, transaction.id)
        assert stored.payment_status == "paid"
        assert paid.effective_status == TransactionStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_events_are_audited(self, market) -> None:
        completed = await market.complete_transaction()

        async with market.scope() as session:
            events = await market.transactions(session).get_events(completed.id)
        assert {e.event_type for e in events} == {
            "TRANSACTION_CREATED",
            "PAYMENT_RECORDED",
            "DELIVERY_CONFIRMED",
            "TRANSACTION_COMPLETED",
        }


class TestNotificationDelivery:
    @pytest.mark.asyncio
    async def test_events_go_out_after_commit(self, market) -> None:
        transaction = await market.open_transaction("90.00")

        async with market.scope() as session:
            await market.transactions(session).record_payment(transaction.id, "90.00")
            assert "PAYMENT_RECORDED" not in market.notifier.types()

        assert "PAYMENT_RECORDED" in market.notifier.types()

    @pytest.mark.asyncio
    async def test_rolled_back_work_sends_nothing(self, market) -> None:
        transaction = await market.open_transaction("90.00")
        async with market.scope() as session:
            await market.disputes(session).raise_dispute(transaction.id, "not as described", BUYER)

        with pytest.raises(RuntimeError):
            async with market.scope() as session:
                await market.disputes(session).resolve_dispute(transaction.id, "refunded", "buyer")
                raise RuntimeError("ledger write failed")

        async with market.scope() as session:
            stored = await session.get(Transaction, transaction.id)
        assert stored.status == TransactionStatus.DISPUTED
        assert "DISPUTE_RAISED" in market.notifier.types()
        assert "DISPUTE_RESOLVED" not in market.notifier.types()
