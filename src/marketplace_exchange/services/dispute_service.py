"""Dispute Service — raising and resolving disputes on transactions.

A dispute freezes the transaction: payment and delivery flags stay as
they were and no further flag writes are accepted. Resolution is an
administrative decision that completes the transaction regardless of the
flags and records which party it favored.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_exchange.domain.enums import (
    EntityType,
    EventType,
    ResolutionFavor,
    TransactionStatus,
)
from marketplace_exchange.domain.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
)
from marketplace_exchange.domain.state_machine import TransactionStateMachine
from marketplace_exchange.infrastructure.database.repositories import TransactionRepository
from marketplace_exchange.logging_config import get_logger
from marketplace_exchange.services.base import BaseService, require_text
from marketplace_exchange.services.listing_service import ListingService

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_exchange.config import Settings
    from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher
    from marketplace_exchange.infrastructure.database.orm_models import Transaction

logger = get_logger(__name__)


class DisputeService(BaseService):
    """Moves transactions into and out of the disputed state."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(session, notifier, settings)
        self._transaction_repo = TransactionRepository(session)

    async def raise_dispute(
        self,
        transaction_id: uuid.UUID,
        reason: str,
        actor_id: str,
    ) -> Transaction:
        """Either party disputes a pending or in-progress transaction."""
        reason = require_text(reason, "reason")
        transaction = await self._get_transaction_or_raise(transaction_id)
        self._require_party(transaction, actor_id, f"dispute transaction {transaction_id}")

        old_status = transaction.effective_status
        self._fire_transition(TransactionStateMachine, "transaction", old_status, "dispute")

        disputed = await self._transaction_repo.open_dispute(transaction_id, reason)
        if disputed is None:
            raise ConflictError(f"Transaction {transaction_id} changed before the dispute was raised")

        await self._record_event(
            entity_type=EntityType.TRANSACTION,
            entity_id=transaction_id,
            event_type=EventType.DISPUTE_RAISED,
            old_status=old_status,
            new_status=TransactionStatus.DISPUTED,
            actor=actor_id,
            metadata={"reason": reason},
        )
        await self._notify(
            EventType.DISPUTE_RAISED,
            EntityType.TRANSACTION,
            transaction_id,
            recipients=(disputed.buyer_id, disputed.seller_id),
            raised_by=actor_id,
            reason=reason,
        )

        logger.info("dispute.raised", transaction_id=str(transaction_id), by=actor_id)
        return disputed

    async def resolve_dispute(
        self,
        transaction_id: uuid.UUID,
        resolution_note: str,
        favor: ResolutionFavor | str,
        resolver_id: str = "SYSTEM",
    ) -> Transaction:
        """Close a dispute with an administrative decision."""
        resolution_note = require_text(resolution_note, "resolution_note")
        try:
            favor = ResolutionFavor(favor)
        except ValueError as err:
            raise ValidationError(f"Unknown resolution favor '{favor}'", field="favor") from err

        transaction = await self._get_transaction_or_raise(transaction_id)
        self._fire_transition(TransactionStateMachine, "transaction", transaction.status, "resolve")

        resolved = await self._transaction_repo.resolve_dispute(
            transaction_id, resolution_note, favor.value
        )
        if resolved is None:
            raise ConflictError(f"Transaction {transaction_id} is no longer disputed")

        await self._record_event(
            entity_type=EntityType.TRANSACTION,
            entity_id=transaction_id,
            event_type=EventType.DISPUTE_RESOLVED,
            old_status=TransactionStatus.DISPUTED,
            new_status=TransactionStatus.COMPLETED,
            actor=resolver_id,
            metadata={"favor": favor.value, "note": resolution_note},
        )
        await self._notify(
            EventType.DISPUTE_RESOLVED,
            EntityType.TRANSACTION,
            transaction_id,
            recipients=(resolved.buyer_id, resolved.seller_id),
            favor=favor.value,
        )

        if favor is ResolutionFavor.BUYER and self._settings.relist_on_buyer_favored_resolution:
            await ListingService(self._session, self._notifier, self._settings).return_to_market(
                resolved.listing_id, actor=resolver_id, cause="dispute_resolved_for_buyer"
            )

        logger.info(
            "dispute.resolved",
            transaction_id=str(transaction_id),
            favor=favor.value,
            by=resolver_id,
        )
        return resolved

    async def _get_transaction_or_raise(self, transaction_id: uuid.UUID) -> Transaction:
        transaction = await self._transaction_repo.get(transaction_id)
        if transaction is None:
            raise NotFoundError("transaction", transaction_id)
        return transaction
