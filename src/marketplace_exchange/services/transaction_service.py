"""Transaction Service — payment, delivery and completion of a sale.

Payment and delivery can be recorded in either order, and concurrently.
Each flag write is its own compare-and-set. Immediately afterwards, in
the same unit of work, a completion compare-and-set runs:

    UPDATE transactions SET status = 'completed'
    WHERE id = :id AND status = 'pending'
      AND payment_status = 'paid' AND delivery_status = 'delivered'

Whichever call's update matches the row performs the terminal write and
emits the completion notification; the other sees no row and returns the
transaction as it is.

The stored status stays ``pending`` while only one flag is set. The
implicit ``in_progress`` state is exposed as ``Transaction.effective_status``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_exchange.domain.enums import (
    DeliveryStatus,
    EntityType,
    EventType,
    PartyRole,
    PaymentStatus,
    TransactionStatus,
)
from marketplace_exchange.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from marketplace_exchange.domain.state_machine import TransactionStateMachine
from marketplace_exchange.infrastructure.database.orm_models import TransactionMessage
from marketplace_exchange.infrastructure.database.repositories import (
    MessageRepository,
    TransactionRepository,
)
from marketplace_exchange.logging_config import get_logger
from marketplace_exchange.services.base import BaseService, parse_money, require_text
from marketplace_exchange.services.listing_service import ListingService

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_exchange.config import Settings
    from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher
    from marketplace_exchange.infrastructure.database.orm_models import Transaction

logger = get_logger(__name__)


class TransactionService(BaseService):
    """Drives a transaction from pending to completed or cancelled."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(session, notifier, settings)
        self._transaction_repo = TransactionRepository(session)
        self._message_repo = MessageRepository(session)

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    async def record_payment(
        self,
        transaction_id: uuid.UUID,
        amount_paid: Decimal | str | int,
        actor_id: str | None = None,
    ) -> Transaction:
        """Mark the agreed amount as paid. Must match the offer amount exactly."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        if actor_id is not None and actor_id != transaction.buyer_id:
            raise AuthorizationError(actor_id, f"pay for transaction {transaction_id}")
        self._require_open(transaction, "record payment")
        if transaction.payment_status != PaymentStatus.PENDING:
            raise ConflictError(
                f"Transaction {transaction_id} is already {transaction.payment_status}",
                code="ALREADY_PAID",
            )

        paid = parse_money(amount_paid, "amount_paid")
        if paid != transaction.amount:
            raise ValidationError(
                f"Payment of {paid} does not match the agreed amount {transaction.amount}",
                field="amount_paid",
            )

        updated = await self._transaction_repo.record_payment(transaction_id)
        if updated is None:
            raise ConflictError(f"Transaction {transaction_id} changed before payment was recorded")

        await self._record_event(
            entity_type=EntityType.TRANSACTION,
            entity_id=transaction_id,
            event_type=EventType.PAYMENT_RECORDED,
            old_status=PaymentStatus.PENDING,
            new_status=PaymentStatus.PAID,
            actor=actor_id or "SYSTEM",
            metadata={"amount": str(paid)},
        )
        await self._notify(
            EventType.PAYMENT_RECORDED,
            EntityType.TRANSACTION,
            transaction_id,
            recipients=(updated.seller_id,),
            amount=paid,
        )

        logger.info("transaction.payment_recorded", transaction_id=str(transaction_id))
        return await self._complete_if_ready(updated, actor_id or "SYSTEM")

    # ------------------------------------------------------------------
    # Delivery proofs
    # ------------------------------------------------------------------

    async def upload_delivery_proof(
        self,
        transaction_id: uuid.UUID,
        proof_ref: str,
        actor_id: str,
    ) -> Transaction:
        """Attach a proof reference (photo, receipt URL) before delivery completes."""
        proof_ref = require_text(proof_ref, "proof_ref")
        transaction = await self._get_proof_editable_or_raise(transaction_id, actor_id, "upload")
        if proof_ref in transaction.delivery_proofs:
            raise ConflictError(
                f"Proof {proof_ref} is already attached to transaction {transaction_id}",
                code="DUPLICATE",
            )

        updated = await self._transaction_repo.set_delivery_proofs(
            transaction, [*transaction.delivery_proofs, proof_ref]
        )
        if updated is None:
            raise ConflictError(f"Transaction {transaction_id} changed while attaching proof")

        logger.info("transaction.proof_uploaded", transaction_id=str(transaction_id))
        return updated

    async def remove_delivery_proof(
        self,
        transaction_id: uuid.UUID,
        proof_ref: str,
        actor_id: str,
    ) -> Transaction:
        transaction = await self._get_proof_editable_or_raise(transaction_id, actor_id, "remove")
        if proof_ref not in transaction.delivery_proofs:
            raise NotFoundError("proof", proof_ref, detail=f"transaction {transaction_id}")

        updated = await self._transaction_repo.set_delivery_proofs(
            transaction, [p for p in transaction.delivery_proofs if p != proof_ref]
        )
        if updated is None:
            raise ConflictError(f"Transaction {transaction_id} changed while removing proof")

        logger.info("transaction.proof_removed", transaction_id=str(transaction_id))
        return updated

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def mark_in_transit(
        self,
        transaction_id: uuid.UUID,
        actor_id: str,
        tracking_number: str | None = None,
    ) -> Transaction:
        """Seller reports the item shipped."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        if actor_id != transaction.seller_id:
            raise AuthorizationError(actor_id, f"ship transaction {transaction_id}")
        self._require_open(transaction, "mark in transit")
        if transaction.delivery_status != DeliveryStatus.PENDING:
            raise ConflictError(
                f"Transaction {transaction_id} delivery is already {transaction.delivery_status}"
            )

        extra = {"tracking_number": tracking_number} if tracking_number else {}
        updated = await self._transaction_repo.set_delivery_status(
            transaction_id, (DeliveryStatus.PENDING,), DeliveryStatus.IN_TRANSIT, **extra
        )
        if updated is None:
            raise ConflictError(f"Transaction {transaction_id} changed before shipping")

        await self._record_event(
            entity_type=EntityType.TRANSACTION,
            entity_id=transaction_id,
            event_type=EventType.DELIVERY_IN_TRANSIT,
            old_status=DeliveryStatus.PENDING,
            new_status=DeliveryStatus.IN_TRANSIT,
            actor=actor_id,
            metadata={"tracking_number": tracking_number} if tracking_number else None,
        )
        await self._notify(
            EventType.DELIVERY_IN_TRANSIT,
            EntityType.TRANSACTION,
            transaction_id,
            recipients=(updated.buyer_id,),
            tracking_number=tracking_number,
        )
        return updated

    async def mark_delivered(self, transaction_id: uuid.UUID, actor_id: str) -> Transaction:
        """Seller reports delivery."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        if actor_id != transaction.seller_id:
            raise AuthorizationError(actor_id, f"mark transaction {transaction_id} delivered")
        return await self._record_delivery(transaction, actor_id)

    async def confirm_delivery(self, transaction_id: uuid.UUID, actor_id: str) -> Transaction:
        """Buyer confirms receipt."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        if actor_id != transaction.buyer_id:
            raise AuthorizationError(actor_id, f"confirm delivery of transaction {transaction_id}")
        return await self._record_delivery(transaction, actor_id)

    async def _record_delivery(self, transaction: Transaction, actor_id: str) -> Transaction:
        self._require_open(transaction, "record delivery")
        if transaction.delivery_status == DeliveryStatus.DELIVERED:
            raise ConflictError(
                f"Transaction {transaction.id} is already delivered",
                code="ALREADY_DELIVERED",
            )

        old_delivery = transaction.delivery_status
        updated = await self._transaction_repo.set_delivery_status(
            transaction.id,
            (DeliveryStatus.PENDING, DeliveryStatus.IN_TRANSIT),
            DeliveryStatus.DELIVERED,
        )
        if updated is None:
            raise ConflictError(
                f"Transaction {transaction.id} changed before delivery was recorded"
            )

        await self._record_event(
            entity_type=EntityType.TRANSACTION,
            entity_id=transaction.id,
            event_type=EventType.DELIVERY_CONFIRMED,
            old_status=old_delivery,
            new_status=DeliveryStatus.DELIVERED,
            actor=actor_id,
        )
        await self._notify(
            EventType.DELIVERY_CONFIRMED,
            EntityType.TRANSACTION,
            transaction.id,
            recipients=(updated.buyer_id, updated.seller_id),
        )

        logger.info("transaction.delivered", transaction_id=str(transaction.id), by=actor_id)
        return await self._complete_if_ready(updated, actor_id)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel(
        self,
        transaction_id: uuid.UUID,
        reason: str,
        actor_id: str,
    ) -> Transaction:
        """Either party backs out before any payment or delivery."""
        reason = require_text(reason, "reason")
        transaction = await self._get_transaction_or_raise(transaction_id)
        self._require_party(transaction, actor_id, f"cancel transaction {transaction_id}")

        effective = transaction.effective_status
        self._fire_transition(TransactionStateMachine, "transaction", effective, "cancel")

        cancelled = await self._transaction_repo.cancel(transaction_id, reason)
        if cancelled is None:
            raise ConflictError(f"Transaction {transaction_id} changed before it could be cancelled")

        await self._record_event(
            entity_type=EntityType.TRANSACTION,
            entity_id=transaction_id,
            event_type=EventType.TRANSACTION_CANCELLED,
            old_status=effective,
            new_status=TransactionStatus.CANCELLED,
            actor=actor_id,
            metadata={"reason": reason},
        )
        await self._notify(
            EventType.TRANSACTION_CANCELLED,
            EntityType.TRANSACTION,
            transaction_id,
            recipients=(cancelled.buyer_id, cancelled.seller_id),
            reason=reason,
        )

        if self._settings.relist_on_cancel:
            await ListingService(self._session, self._notifier, self._settings).return_to_market(
                cancelled.listing_id, actor=actor_id, cause="transaction_cancelled"
            )

        logger.info("transaction.cancelled", transaction_id=str(transaction_id), by=actor_id)
        return cancelled

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def post_message(
        self,
        transaction_id: uuid.UUID,
        sender_id: str,
        body: str,
    ) -> TransactionMessage:
        """Append a message from the buyer or seller to the thread."""
        body = require_text(body, "body")
        transaction = await self._get_transaction_or_raise(transaction_id)
        role = self._require_party(transaction, sender_id, f"message on transaction {transaction_id}")

        message = await self._message_repo.add(
            TransactionMessage(
                transaction_id=transaction_id,
                sender_id=sender_id,
                sender_role=role,
                body=body,
            )
        )
        counterparty = transaction.seller_id if role == PartyRole.BUYER else transaction.buyer_id
        await self._notify(
            EventType.MESSAGE_POSTED,
            EntityType.TRANSACTION,
            transaction_id,
            recipients=(counterparty,),
            message_id=message.id,
        )
        return message

    async def list_messages(
        self,
        transaction_id: uuid.UUID,
        actor_id: str,
    ) -> list[TransactionMessage]:
        transaction = await self._get_transaction_or_raise(transaction_id)
        self._require_party(transaction, actor_id, f"read transaction {transaction_id}")
        return await self._message_repo.list_for_transaction(transaction_id)

    async def mark_messages_read(self, transaction_id: uuid.UUID, reader_id: str) -> int:
        """Stamp the counterparty's and system messages as read. Returns how many."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        self._require_party(transaction, reader_id, f"read transaction {transaction_id}")
        return await self._message_repo.mark_read(transaction_id, reader_id)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: uuid.UUID) -> Transaction:
        """Get a transaction or raise."""
        return await self._get_transaction_or_raise(transaction_id)

    async def list_for_party(self, user_id: str) -> list[Transaction]:
        return await self._transaction_repo.list_for_party(user_id)

    async def get_events(self, transaction_id: uuid.UUID) -> list:
        """Get audit trail."""
        await self._get_transaction_or_raise(transaction_id)
        return await self._event_repo.list_for_entity(EntityType.TRANSACTION, transaction_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_transaction_or_raise(self, transaction_id: uuid.UUID) -> Transaction:
        transaction = await self._transaction_repo.get(transaction_id)
        if transaction is None:
            raise NotFoundError("transaction", transaction_id)
        return transaction

    @staticmethod
    def _require_open(transaction: Transaction, action: str) -> None:
        """Payment and delivery writes need a stored status of pending."""
        if transaction.status != TransactionStatus.PENDING:
            raise ConflictError(
                f"Cannot {action}: transaction {transaction.id} is {transaction.status}",
                code="INVALID_STATE_TRANSITION",
            )

    async def _get_proof_editable_or_raise(
        self,
        transaction_id: uuid.UUID,
        actor_id: str,
        verb: str,
    ) -> Transaction:
        transaction = await self._get_transaction_or_raise(transaction_id)
        if actor_id != transaction.seller_id:
            raise AuthorizationError(actor_id, f"{verb} delivery proof on {transaction_id}")
        self._require_open(transaction, f"{verb} delivery proof")
        if transaction.delivery_status == DeliveryStatus.DELIVERED:
            raise ConflictError(
                f"Transaction {transaction_id} delivery is already confirmed",
                code="ALREADY_DELIVERED",
            )
        return transaction

    async def _complete_if_ready(self, transaction: Transaction, actor: str) -> Transaction:
        """Run the completion compare-and-set; only the winning call emits completion."""
        if transaction.effective_status != TransactionStatus.COMPLETED:
            return transaction

        self._fire_transition(
            TransactionStateMachine, "transaction", TransactionStatus.IN_PROGRESS, "complete"
        )
        completed = await self._transaction_repo.try_complete(transaction.id)
        if completed is None:
            return await self._transaction_repo.refresh(transaction.id)

        await self._record_event(
            entity_type=EntityType.TRANSACTION,
            entity_id=completed.id,
            event_type=EventType.TRANSACTION_COMPLETED,
            old_status=TransactionStatus.IN_PROGRESS,
            new_status=TransactionStatus.COMPLETED,
            actor=actor,
        )
        await self._notify(
            EventType.TRANSACTION_COMPLETED,
            EntityType.TRANSACTION,
            completed.id,
            recipients=(completed.buyer_id, completed.seller_id),
            amount=completed.amount,
        )

        logger.info("transaction.completed", transaction_id=str(completed.id))
        return completed
