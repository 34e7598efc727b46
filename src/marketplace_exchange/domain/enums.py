"""Domain enumerations for the marketplace exchange engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class ListingStatus(enum.StrEnum):
    """Lifecycle of a listing. Listings are never hard-deleted."""

    ACTIVE = "active"
    SOLD = "sold"
    REMOVED = "removed"


class OfferStatus(enum.StrEnum):
    """Lifecycle of an offer. Everything except PENDING is terminal."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTERED = "countered"
    EXPIRED = "expired"
    WITHDRAWN = "withdrawn"


class OfferAction(enum.StrEnum):
    """Responses available to the receiving party of an offer."""

    ACCEPT = "accept"
    REJECT = "reject"
    COUNTER = "counter"


class PartyRole(enum.StrEnum):
    """Which side of an exchange an actor is on."""

    BUYER = "buyer"
    SELLER = "seller"
    SYSTEM = "system"


class TransactionStatus(enum.StrEnum):
    """Lifecycle of a transaction.

    IN_PROGRESS is derived (see domain/state_machine.py
    derive_effective_status) and is not written by the engine.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


TERMINAL_TRANSACTION_STATUSES = frozenset(
    {TransactionStatus.COMPLETED, TransactionStatus.CANCELLED}
)


class PaymentStatus(enum.StrEnum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class DeliveryStatus(enum.StrEnum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"


class ResolutionFavor(enum.StrEnum):
    """Party a dispute was resolved in favor of."""

    BUYER = "buyer"
    SELLER = "seller"


class ReviewTargetType(enum.StrEnum):
    ITEM = "item"
    USER = "user"


class ReactionType(enum.StrEnum):
    HELPFUL = "helpful"
    UNHELPFUL = "unhelpful"


class ReportTargetType(enum.StrEnum):
    """Content that users can report for moderator triage."""

    ITEM = "item"
    REVIEW = "review"


class AlertTargetType(enum.StrEnum):
    ITEM = "item"
    REVIEW = "review"
    USER = "user"
    TRANSACTION = "transaction"


class AlertSeverity(enum.StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(enum.StrEnum):
    NEW = "new"
    REVIEWING = "reviewing"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class AlertAction(enum.StrEnum):
    RESOLVE = "resolve"
    DISMISS = "dismiss"


class EntityType(enum.StrEnum):
    """Entity kinds recorded in the exchange_events audit log."""

    LISTING = "listing"
    OFFER = "offer"
    TRANSACTION = "transaction"
    REVIEW = "review"
    ALERT = "alert"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the exchange_events table.

    Every state transition MUST produce exactly one event. The same
    values are used as the notification event names.
    """

    # Listing events
    LISTING_CREATED = "LISTING_CREATED"
    LISTING_SOLD = "LISTING_SOLD"
    LISTING_RELISTED = "LISTING_RELISTED"
    LISTING_REMOVED = "LISTING_REMOVED"

    # Offer events
    OFFER_CREATED = "OFFER_CREATED"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"
    OFFER_REJECTED = "OFFER_REJECTED"
    OFFER_COUNTERED = "OFFER_COUNTERED"
    OFFER_EXPIRED = "OFFER_EXPIRED"
    OFFER_WITHDRAWN = "OFFER_WITHDRAWN"

    # Transaction events
    TRANSACTION_CREATED = "TRANSACTION_CREATED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    DELIVERY_IN_TRANSIT = "DELIVERY_IN_TRANSIT"
    DELIVERY_CONFIRMED = "DELIVERY_CONFIRMED"
    TRANSACTION_COMPLETED = "TRANSACTION_COMPLETED"
    TRANSACTION_CANCELLED = "TRANSACTION_CANCELLED"

    # Dispute events
    DISPUTE_RAISED = "DISPUTE_RAISED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"

    # Message events (notification only)
    MESSAGE_POSTED = "MESSAGE_POSTED"

    # Review and moderation events
    REVIEW_CREATED = "REVIEW_CREATED"
    REVIEW_REMOVED = "REVIEW_REMOVED"
    ALERT_RAISED = "ALERT_RAISED"
    ALERT_REVIEWING = "ALERT_REVIEWING"
    ALERT_RESOLVED = "ALERT_RESOLVED"
    ALERT_DISMISSED = "ALERT_DISMISSED"
