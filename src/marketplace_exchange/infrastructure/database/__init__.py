"""Database infrastructure — engine, ORM models, and repositories."""

from marketplace_exchange.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
    session_scope,
)
from marketplace_exchange.infrastructure.database.orm_models import (
    Base,
    ContentReport,
    ExchangeEvent,
    FraudAlert,
    Listing,
    Offer,
    RatingAggregate,
    Review,
    ReviewReaction,
    Transaction,
    TransactionMessage,
)
from marketplace_exchange.infrastructure.database.repositories import (
    AlertRepository,
    EventRepository,
    ListingRepository,
    MessageRepository,
    OfferRepository,
    ReactionRepository,
    ReportRepository,
    ReviewRepository,
    TransactionRepository,
)

__all__ = [
    "Base",
    "ContentReport",
    "ExchangeEvent",
    "FraudAlert",
    "Listing",
    "Offer",
    "RatingAggregate",
    "Review",
    "ReviewReaction",
    "Transaction",
    "TransactionMessage",
    "AlertRepository",
    "EventRepository",
    "ListingRepository",
    "MessageRepository",
    "OfferRepository",
    "ReactionRepository",
    "ReportRepository",
    "ReviewRepository",
    "TransactionRepository",
    "get_async_session",
    "session_scope",
    "init_db",
    "close_db",
]
