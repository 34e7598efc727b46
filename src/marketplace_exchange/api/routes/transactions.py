"""Transaction REST API routes.

Routes:
    GET    /api/v1/transactions                          — Acting user's transactions
    GET    /api/v1/transactions/{id}                     — Get transaction details
    GET    /api/v1/transactions/{id}/events              — Audit trail
    POST   /api/v1/transactions/{id}/payment             — Record payment
    POST   /api/v1/transactions/{id}/proofs              — Upload delivery proof
    DELETE /api/v1/transactions/{id}/proofs              — Remove delivery proof
    POST   /api/v1/transactions/{id}/in-transit          — Seller ships
    POST   /api/v1/transactions/{id}/delivered           — Seller marks delivered
    POST   /api/v1/transactions/{id}/confirm-delivery    — Buyer confirms receipt
    POST   /api/v1/transactions/{id}/cancel              — Either party cancels
    GET    /api/v1/transactions/{id}/messages            — Message thread
    POST   /api/v1/transactions/{id}/messages            — Post a message
    POST   /api/v1/transactions/{id}/messages/read       — Mark thread read
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from marketplace_exchange.api.deps import get_actor_id, get_db_session, get_notifier
from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher  # noqa: TC001
from marketplace_exchange.schemas.exchange import (
    CancelTransactionRequest,
    DeliveryProofRequest,
    ExchangeEventResponse,
    MarkInTransitRequest,
    MarkReadResponse,
    MessageResponse,
    PostMessageRequest,
    RecordPaymentRequest,
    TransactionResponse,
)
from marketplace_exchange.services.transaction_service import TransactionService

router = APIRouter(prefix="/api/v1/transactions", tags=["Transactions"])


@router.get("", response_model=list[TransactionResponse], summary="My transactions")
async def list_transactions(
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
) -> list[TransactionResponse]:
    transactions = await TransactionService(session).list_for_party(actor_id)
    return [TransactionResponse.model_validate(t) for t in transactions]


@router.get("/{transaction_id}", response_model=TransactionResponse, summary="Get transaction")
async def get_transaction(
    transaction_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> TransactionResponse:
    transaction = await TransactionService(session).get_transaction(transaction_id)
    return TransactionResponse.model_validate(transaction)


@router.get(
    "/{transaction_id}/events",
    response_model=list[ExchangeEventResponse],
    summary="Get audit trail",
)
async def get_events(
    transaction_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> list[ExchangeEventResponse]:
    """Every recorded transition of the transaction, oldest first."""
    events = await TransactionService(session).get_events(transaction_id)
    return [ExchangeEventResponse.model_validate(e) for e in events]


# ---------------------------------------------------------------------------
# Payment & delivery
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/payment",
    response_model=TransactionResponse,
    summary="Record payment",
)
async def record_payment(
    transaction_id: uuid.UUID,
    request: RecordPaymentRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> TransactionResponse:
    """Record the buyer's payment. Completes the transaction if already delivered."""
    svc = TransactionService(session, notifier)
    transaction = await svc.record_payment(
        transaction_id, amount_paid=request.amount_paid, actor_id=actor_id
    )
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/proofs",
    response_model=TransactionResponse,
    summary="Upload delivery proof",
)
async def upload_delivery_proof(
    transaction_id: uuid.UUID,
    request: DeliveryProofRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
) -> TransactionResponse:
    transaction = await TransactionService(session).upload_delivery_proof(
        transaction_id, proof_ref=request.proof_ref, actor_id=actor_id
    )
    return TransactionResponse.model_validate(transaction)


@router.delete(
    "/{transaction_id}/proofs",
    response_model=TransactionResponse,
    summary="Remove delivery proof",
)
async def remove_delivery_proof(
    transaction_id: uuid.UUID,
    proof_ref: str,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
) -> TransactionResponse:
    transaction = await TransactionService(session).remove_delivery_proof(
        transaction_id, proof_ref=proof_ref, actor_id=actor_id
    )
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/in-transit",
    response_model=TransactionResponse,
    summary="Mark shipped",
)
async def mark_in_transit(
    transaction_id: uuid.UUID,
    request: MarkInTransitRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> TransactionResponse:
    transaction = await TransactionService(session, notifier).mark_in_transit(
        transaction_id, actor_id=actor_id, tracking_number=request.tracking_number
    )
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/delivered",
    response_model=TransactionResponse,
    summary="Seller marks delivered",
)
async def mark_delivered(
    transaction_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> TransactionResponse:
    transaction = await TransactionService(session, notifier).mark_delivered(
        transaction_id, actor_id=actor_id
    )
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/confirm-delivery",
    response_model=TransactionResponse,
    summary="Buyer confirms delivery",
)
async def confirm_delivery(
    transaction_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> TransactionResponse:
    transaction = await TransactionService(session, notifier).confirm_delivery(
        transaction_id, actor_id=actor_id
    )
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/cancel",
    response_model=TransactionResponse,
    summary="Cancel a transaction",
)
async def cancel_transaction(
    transaction_id: uuid.UUID,
    request: CancelTransactionRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> TransactionResponse:
    """Cancel before any payment or delivery has been recorded."""
    transaction = await TransactionService(session, notifier).cancel(
        transaction_id, reason=request.reason, actor_id=actor_id
    )
    return TransactionResponse.model_validate(transaction)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.get(
    "/{transaction_id}/messages",
    response_model=list[MessageResponse],
    summary="Message thread",
)
async def list_messages(
    transaction_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
) -> list[MessageResponse]:
    messages = await TransactionService(session).list_messages(transaction_id, actor_id)
    return [MessageResponse.model_validate(m) for m in messages]


@router.post(
    "/{transaction_id}/messages",
    response_model=MessageResponse,
    status_code=201,
    summary="Post a message",
)
async def post_message(
    transaction_id: uuid.UUID,
    request: PostMessageRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> MessageResponse:
    message = await TransactionService(session, notifier).post_message(
        transaction_id, sender_id=actor_id, body=request.body
    )
    return MessageResponse.model_validate(message)


@router.post(
    "/{transaction_id}/messages/read",
    response_model=MarkReadResponse,
    summary="Mark thread read",
)
async def mark_messages_read(
    transaction_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
) -> MarkReadResponse:
    count = await TransactionService(session).mark_messages_read(transaction_id, actor_id)
    return MarkReadResponse(marked_read=count)
