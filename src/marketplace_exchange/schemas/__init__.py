"""Pydantic API schemas."""

from marketplace_exchange.schemas.exchange import (
    CancelTransactionRequest,
    CreateListingRequest,
    CreateOfferRequest,
    DeliveryProofRequest,
    ExchangeEventResponse,
    ExpireOffersResponse,
    HealthResponse,
    ListingResponse,
    MarkInTransitRequest,
    MarkReadResponse,
    MessageResponse,
    OfferResponse,
    OfferResponseResult,
    PostMessageRequest,
    RaiseDisputeRequest,
    RecordPaymentRequest,
    ResolveDisputeRequest,
    RespondToOfferRequest,
    TransactionResponse,
)
from marketplace_exchange.schemas.reputation import (
    AddReviewImagesRequest,
    AlertStatsResponse,
    ContentReportResponse,
    CreateReviewRequest,
    FraudAlertResponse,
    ProcessAlertRequest,
    RatingAggregateResponse,
    ReactRequest,
    RecordAlertRequest,
    ReportRequest,
    ReviewPageResponse,
    ReviewResponse,
)

__all__ = [
    "AddReviewImagesRequest",
    "AlertStatsResponse",
    "CancelTransactionRequest",
    "ContentReportResponse",
    "CreateListingRequest",
    "CreateOfferRequest",
    "CreateReviewRequest",
    "DeliveryProofRequest",
    "ExchangeEventResponse",
    "ExpireOffersResponse",
    "FraudAlertResponse",
    "HealthResponse",
    "ListingResponse",
    "MarkInTransitRequest",
    "MarkReadResponse",
    "MessageResponse",
    "OfferResponse",
    "OfferResponseResult",
    "PostMessageRequest",
    "ProcessAlertRequest",
    "RaiseDisputeRequest",
    "RatingAggregateResponse",
    "ReactRequest",
    "RecordAlertRequest",
    "RecordPaymentRequest",
    "ReportRequest",
    "ResolveDisputeRequest",
    "RespondToOfferRequest",
    "ReviewPageResponse",
    "ReviewResponse",
    "TransactionResponse",
]
