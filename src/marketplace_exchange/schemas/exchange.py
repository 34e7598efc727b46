"""Pydantic schemas for listings, offers, transactions and disputes.

These schemas define the request/response shapes for the REST API. They
are separate from the ORM models to maintain clean boundaries between
the API and database layers. Acting users are identified by the
X-Actor-ID header, not by request bodies.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from marketplace_exchange.domain.enums import OfferAction, ResolutionFavor  # noqa: TC001

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateListingRequest(BaseModel):
    """Request body for publishing a listing."""

    title: str = Field(..., min_length=1, max_length=200, examples=["Oak desk, barely used"])
    price: Decimal = Field(..., gt=0, decimal_places=2, examples=[100])
    category: str = Field(..., min_length=1, max_length=40, examples=["furniture"])
    description: str | None = Field(default=None, max_length=5000)


class CreateOfferRequest(BaseModel):
    """Request body for a buyer's offer on a listing."""

    amount: Decimal = Field(..., decimal_places=2, description="Proposed price", examples=[90])
    note: str | None = Field(default=None, max_length=1000)
    expires_at: datetime | None = Field(
        default=None,
        description="Defaults to the configured offer lifetime (7 days)",
    )


class RespondToOfferRequest(BaseModel):
    """Request body for accepting, rejecting or countering an offer."""

    action: OfferAction
    counter_amount: Decimal | None = Field(
        default=None,
        decimal_places=2,
        description="Required when action is counter",
    )


class RecordPaymentRequest(BaseModel):
    amount_paid: Decimal = Field(..., decimal_places=2, description="Must equal the agreed amount")


class DeliveryProofRequest(BaseModel):
    proof_ref: str = Field(..., min_length=1, max_length=500, description="Photo or receipt URL")


class MarkInTransitRequest(BaseModel):
    tracking_number: str | None = Field(default=None, max_length=100)


class CancelTransactionRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class PostMessageRequest(BaseModel):
    body: str = Field(..., min_length=1, max_length=5000)


class RaiseDisputeRequest(BaseModel):
    """Request body for raising a dispute against a transaction."""

    reason: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Detailed reason for the dispute",
    )


class ResolveDisputeRequest(BaseModel):
    """Request body for an administrator resolving a dispute."""

    resolution_note: str = Field(..., min_length=1, max_length=5000)
    favor: ResolutionFavor


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class ListingResponse(BaseModel):
    """Response schema for a listing."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    seller_id: str
    buyer_id: str | None
    title: str
    description: str | None
    price: Decimal
    category: str
    status: str
    removed_reason: str | None
    removed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class OfferResponse(BaseModel):
    """Response schema for an offer."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    listing_id: uuid.UUID
    buyer_id: str
    seller_id: str
    proposer_role: str
    parent_offer_id: uuid.UUID | None
    amount: Decimal
    note: str | None
    status: str
    expires_at: datetime
    created_at: datetime


class TransactionResponse(BaseModel):
    """Response schema for a transaction, including its derived status."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    listing_id: uuid.UUID
    offer_id: uuid.UUID
    buyer_id: str
    seller_id: str
    amount: Decimal
    status: str
    effective_status: str = Field(
        description="Stored status refined by payment/delivery (adds in_progress)"
    )
    payment_status: str
    delivery_status: str
    tracking_number: str | None
    delivery_proofs: list[str]
    dispute_reason: str | None
    disputed_at: datetime | None
    resolution_note: str | None
    resolution_favor: str | None
    resolved_at: datetime | None
    cancel_reason: str | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class OfferResponseResult(BaseModel):
    """Outcome of responding to an offer."""

    offer: OfferResponse
    transaction: TransactionResponse | None = None
    counter_offer: OfferResponse | None = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    sender_id: str | None
    sender_role: str
    body: str
    read_at: datetime | None
    created_at: datetime


class MarkReadResponse(BaseModel):
    marked_read: int


class ExchangeEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    entity_type: str
    entity_id: str
    event_type: str
    old_status: str | None
    new_status: str | None
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class ExpireOffersResponse(BaseModel):
    expired: list[OfferResponse]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    notifications: str = "unknown"
