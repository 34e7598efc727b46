"""Application services — use case orchestration."""

from marketplace_exchange.services.dispute_service import DisputeService
from marketplace_exchange.services.listing_service import ListingService
from marketplace_exchange.services.moderation_service import ModerationService
from marketplace_exchange.services.offer_service import OfferResponse, OfferService
from marketplace_exchange.services.review_service import ReviewPage, ReviewService
from marketplace_exchange.services.transaction_service import TransactionService

__all__ = [
    "DisputeService",
    "ListingService",
    "ModerationService",
    "OfferResponse",
    "OfferService",
    "ReviewPage",
    "ReviewService",
    "TransactionService",
]
