"""Dispute REST API routes.

Routes:
    POST   /api/v1/transactions/{id}/dispute   — Either party raises a dispute
    POST   /api/v1/transactions/{id}/resolve   — Administrator resolves it
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from marketplace_exchange.api.deps import get_actor_id, get_db_session, get_notifier
from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher  # noqa: TC001
from marketplace_exchange.schemas.exchange import (
    RaiseDisputeRequest,
    ResolveDisputeRequest,
    TransactionResponse,
)
from marketplace_exchange.services.dispute_service import DisputeService

router = APIRouter(prefix="/api/v1/transactions", tags=["Disputes"])


@router.post(
    "/{transaction_id}/dispute",
    response_model=TransactionResponse,
    summary="Raise a dispute",
)
async def raise_dispute(
    transaction_id: uuid.UUID,
    request: RaiseDisputeRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> TransactionResponse:
    """Freeze a pending or in-progress transaction for review."""
    transaction = await DisputeService(session, notifier).raise_dispute(
        transaction_id, reason=request.reason, actor_id=actor_id
    )
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/resolve",
    response_model=TransactionResponse,
    summary="Resolve a dispute",
)
async def resolve_dispute(
    transaction_id: uuid.UUID,
    request: ResolveDisputeRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> TransactionResponse:
    """Complete a disputed transaction with an administrative decision."""
    transaction = await DisputeService(session, notifier).resolve_dispute(
        transaction_id,
        resolution_note=request.resolution_note,
        favor=request.favor,
        resolver_id=actor_id,
    )
    return TransactionResponse.model_validate(transaction)
