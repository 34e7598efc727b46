"""SQLAlchemy 2.0 ORM models for the marketplace exchange engine.

Tables:
    1. listings              — Items posted by sellers (soft lifecycle, never deleted).
    2. offers                — Proposed prices against a listing.
    3. transactions          — Binding agreements spawned by an accepted offer.
    4. transaction_messages  — Append-only thread per transaction.
    5. reviews               — Post-transaction reviews of items and users.
    6. review_reactions      — One helpful/unhelpful reaction per (review, user).
    7. content_reports       — One report per (reporter, reported content).
    8. rating_aggregates     — Re-aggregated review count/mean per target.
    9. fraud_alerts          — Moderation signals that drive override actions.
   10. exchange_events       — Append-only audit log of every state transition.

Design decisions:
    - UUIDs as primary keys; user ids are opaque strings owned by the platform.
    - Decimal for money (no floating point rounding errors).
    - Generic JSON columns (JSONB on PostgreSQL) so tests can run on SQLite.
    - Partial unique indexes enforce "one pending offer per buyer and listing"
      and "one open transaction per listing" at the database level.
    - CHECK constraints on every status column and on the completion rule.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    event,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from marketplace_exchange.domain.state_machine import derive_effective_status

JSONType = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back in UTC.

    SQLite drops tzinfo on storage; this restores it on load so Python-side
    comparisons against ``datetime.now(UTC)`` stay valid on every backend.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001, ANN201
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):  # noqa: ANN001, ANN201
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. listings
# ---------------------------------------------------------------------------
class Listing(TimestampMixin, Base):
    """A sellable item posted by a user."""

    __tablename__ = "listings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    buyer_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        default=None,
        comment="Set only when the listing is sold",
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    category: Mapped[str] = mapped_column(String(40), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="active",
        comment="Current lifecycle state (guarded by ListingStateMachine)",
    )

    # --- Moderation override ---
    removed_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
    removed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    removed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'sold', 'removed')",
            name="ck_listing_valid_status",
        ),
        CheckConstraint("price > 0", name="ck_listing_positive_price"),
        Index("idx_listing_status", "status"),
        Index("idx_listing_seller", "seller_id"),
        Index("idx_listing_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Listing id={self.id} status={self.status} price={self.price}>"


# ---------------------------------------------------------------------------
# 2. offers
# ---------------------------------------------------------------------------
class Offer(TimestampMixin, Base):
    """A proposed price against a listing, awaiting the other party's response."""

    __tablename__ = "offers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("listings.id"),
        nullable=False,
    )
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Denormalized from the listing owner for authorization checks",
    )
    proposer_role: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="buyer",
        comment="Who proposed this amount; the other party responds",
    )
    parent_offer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("offers.id"),
        nullable=True,
        comment="The offer this one counters",
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'countered', 'expired', 'withdrawn')",
            name="ck_offer_valid_status",
        ),
        CheckConstraint("proposer_role IN ('buyer', 'seller')", name="ck_offer_proposer"),
        CheckConstraint("amount > 0", name="ck_offer_positive_amount"),
        Index(
            "uq_offer_one_pending_per_buyer",
            "listing_id",
            "buyer_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("idx_offer_listing", "listing_id"),
        Index("idx_offer_expiry", "status", "expires_at"),
    )

    @property
    def responder_id(self) -> str:
        """The party expected to accept, reject or counter this offer."""
        return self.seller_id if self.proposer_role == "buyer" else self.buyer_id

    @property
    def proposer_id(self) -> str:
        return self.buyer_id if self.proposer_role == "buyer" else self.seller_id

    def __repr__(self) -> str:
        return f"<Offer id={self.id} status={self.status} amount={self.amount}>"


# ---------------------------------------------------------------------------
# 3. transactions
# ---------------------------------------------------------------------------
class Transaction(TimestampMixin, Base):
    """The binding agreement created once an offer is accepted."""

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("listings.id"),
        nullable=False,
    )
    offer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("offers.id"),
        nullable=False,
        unique=True,
        comment="Exactly one transaction per accepted offer",
    )
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Copied from the accepted offer; immutable",
    )

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    delivery_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    # --- Delivery ---
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    delivery_proofs: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    # --- Dispute ---
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution_favor: Mapped[str | None] = mapped_column(String(10), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'disputed', 'cancelled')",
            name="ck_transaction_valid_status",
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'paid', 'refunded')",
            name="ck_transaction_valid_payment_status",
        ),
        CheckConstraint(
            "delivery_status IN ('pending', 'in_transit', 'delivered')",
            name="ck_transaction_valid_delivery_status",
        ),
        CheckConstraint(
            "status <> 'completed' OR resolution_favor IS NOT NULL "
            "OR (payment_status = 'paid' AND delivery_status = 'delivered')",
            name="ck_transaction_completion_rule",
        ),
        CheckConstraint("amount > 0", name="ck_transaction_positive_amount"),
        Index(
            "uq_transaction_one_open_per_listing",
            "listing_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'in_progress', 'disputed')"),
            sqlite_where=text("status IN ('pending', 'in_progress', 'disputed')"),
        ),
        Index("idx_transaction_status", "status"),
        Index("idx_transaction_buyer", "buyer_id"),
        Index("idx_transaction_seller", "seller_id"),
    )

    @property
    def effective_status(self) -> str:
        """Stored status refined by the payment/delivery flags."""
        return derive_effective_status(
            self.status, self.payment_status, self.delivery_status
        ).value

    def role_of(self, actor_id: str) -> str | None:
        """Return "buyer"/"seller" for a party, None for anyone else."""
        if actor_id == self.buyer_id:
            return "buyer"
        if actor_id == self.seller_id:
            return "seller"
        return None

    def __repr__(self) -> str:
        return (
            f"<Transaction id={self.id} status={self.status} "
            f"payment={self.payment_status} delivery={self.delivery_status}>"
        )


# ---------------------------------------------------------------------------
# 4. transaction_messages (Append-Only)
# ---------------------------------------------------------------------------
class TransactionMessage(Base):
    """A message in a transaction thread. Only read_at is ever updated."""

    __tablename__ = "transaction_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("transactions.id"),
        nullable=False,
    )
    sender_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Null for system-authored messages",
    )
    sender_role: Mapped[str] = mapped_column(String(10), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "sender_role IN ('buyer', 'seller', 'system')",
            name="ck_message_valid_sender_role",
        ),
        Index("idx_message_transaction", "transaction_id", "created_at"),
    )


# ---------------------------------------------------------------------------
# 5. reviews
# ---------------------------------------------------------------------------
class Review(TimestampMixin, Base):
    """A rating of an item or a user. Content is immutable after creation."""

    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    target_type: Mapped[str] = mapped_column(String(10), nullable=False)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reviewer_id: Mapped[str] = mapped_column(String(64), nullable=False)

    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    verified_purchase: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    images: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    helpful_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unhelpful_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # --- Moderation soft removal ---
    removed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    removed_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "target_type", "target_id", "reviewer_id", name="uq_review_one_per_target"
        ),
        CheckConstraint("target_type IN ('item', 'user')", name="ck_review_target_type"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_review_rating_range"),
        CheckConstraint(
            "helpful_count >= 0 AND unhelpful_count >= 0",
            name="ck_review_counters_non_negative",
        ),
        Index("idx_review_target", "target_type", "target_id"),
    )

    def __repr__(self) -> str:
        return f"<Review id={self.id} target={self.target_type}:{self.target_id} rating={self.rating}>"


# ---------------------------------------------------------------------------
# 6. review_reactions
# ---------------------------------------------------------------------------
class ReviewReaction(TimestampMixin, Base):
    __tablename__ = "review_reactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    review_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("reviews.id"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reaction_type: Mapped[str] = mapped_column(String(10), nullable=False)

    __table_args__ = (
        UniqueConstraint("review_id", "user_id", name="uq_reaction_one_per_user"),
        CheckConstraint(
            "reaction_type IN ('helpful', 'unhelpful')",
            name="ck_reaction_valid_type",
        ),
    )


# ---------------------------------------------------------------------------
# 7. content_reports
# ---------------------------------------------------------------------------
class ContentReport(Base):
    """A user report against a listing or review, linked to the alert it raised."""

    __tablename__ = "content_reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    target_type: Mapped[str] = mapped_column(String(10), nullable=False)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reporter_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    alert_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("fraud_alerts.id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint(
            "target_type", "target_id", "reporter_id", name="uq_report_one_per_reporter"
        ),
        CheckConstraint("target_type IN ('item', 'review')", name="ck_report_target_type"),
    )


# ---------------------------------------------------------------------------
# 8. rating_aggregates
# ---------------------------------------------------------------------------
class RatingAggregate(Base):
    """Review count and mean rating per target, rebuilt from scratch on change."""

    __tablename__ = "rating_aggregates"

    target_type: Mapped[str] = mapped_column(String(10), primary_key=True)
    target_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mean_rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


# ---------------------------------------------------------------------------
# 9. fraud_alerts
# ---------------------------------------------------------------------------
class FraudAlert(TimestampMixin, Base):
    """A moderation signal against a listing, review, user or transaction."""

    __tablename__ = "fraud_alerts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    target_type: Mapped[str] = mapped_column(String(20), nullable=False)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="new")
    activity_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        default="scoring",
        comment="Category label, e.g. review_report, listing_report, scoring",
    )
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True, default=None)

    reviewer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "target_type IN ('item', 'review', 'user', 'transaction')",
            name="ck_alert_target_type",
        ),
        CheckConstraint(
            "severity IN ('low', 'medium', 'high', 'critical')",
            name="ck_alert_valid_severity",
        ),
        CheckConstraint(
            "status IN ('new', 'reviewing', 'resolved', 'dismissed')",
            name="ck_alert_valid_status",
        ),
        Index("idx_alert_status", "status"),
        Index("idx_alert_target", "target_type", "target_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<FraudAlert id={self.id} target={self.target_type}:{self.target_id} "
            f"severity={self.severity} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# 10. exchange_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class ExchangeEvent(Base):
    """Immutable audit record of a single state transition.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level. It is the evidence trail for disputes and
    moderation reviews.
    """

    __tablename__ = "exchange_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="SYSTEM",
        comment="Who triggered this event (user id or SYSTEM)",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_event_entity", "entity_type", "entity_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ExchangeEvent {self.entity_type}:{self.entity_id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


for _model in (Listing, Offer, Transaction, Review, ReviewReaction, FraudAlert):
    event.listen(_model, "before_update", _set_updated_at)
