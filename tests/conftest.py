"""Shared test fixtures for the marketplace exchange test suite.

Provides:
    - A file-backed SQLite database per test (aiosqlite)
    - Recording and failing notification dispatchers
    - A Marketplace helper that builds services and common test data
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

import pytest
import pytest_asyncio

from marketplace_exchange.config import Settings
from marketplace_exchange.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    session_scope,
)
from marketplace_exchange.infrastructure.database.orm_models import Base
from marketplace_exchange.services import (
    DisputeService,
    ListingService,
    ModerationService,
    OfferService,
    ReviewService,
    TransactionService,
)

SELLER = "seller-1"
BUYER = "buyer-1"
OTHER_BUYER = "buyer-2"
MODERATOR = "moderator-1"


# ---------------------------------------------------------------------------
# Notification doubles
# ---------------------------------------------------------------------------


class RecordingNotifier:
    """Collects every dispatched TransitionEvent."""

    def __init__(self) -> None:
        self.events = []

    async def dispatch(self, event) -> None:  # noqa: ANN001
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.event_type for e in self.events]


class FailingNotifier:
    """Raises on every dispatch, like an unreachable message broker."""

    def __init__(self) -> None:
        self.calls = 0

    async def dispatch(self, event) -> None:  # noqa: ANN001
        self.calls += 1
        raise RuntimeError("notification backend down")


# ---------------------------------------------------------------------------
# Marketplace helper
# ---------------------------------------------------------------------------


@dataclass
class Marketplace:
    """Builds services bound to a session and seeds common data.

    Every helper runs in its own committed unit of work, like a separate
    API request would.
    """

    session_factory: object
    settings: Settings
    notifier: RecordingNotifier = field(default_factory=RecordingNotifier)

    def scope(self):  # noqa: ANN201
        return session_scope(self.session_factory)

    def listings(self, session) -> ListingService:  # noqa: ANN001
        return ListingService(session, self.notifier, self.settings)

    def offers(self, session) -> OfferService:  # noqa: ANN001
        return OfferService(session, self.notifier, self.settings)

    def transactions(self, session) -> TransactionService:  # noqa: ANN001
        return TransactionService(session, self.notifier, self.settings)

    def disputes(self, session) -> DisputeService:  # noqa: ANN001
        return DisputeService(session, self.notifier, self.settings)

    def reviews(self, session) -> ReviewService:  # noqa: ANN001
        return ReviewService(session, self.notifier, self.settings)

    def moderation(self, session) -> ModerationService:  # noqa: ANN001
        return ModerationService(session, self.notifier, self.settings)

    async def create_listing(self, seller_id: str = SELLER, price: str = "100.00"):  # noqa: ANN201
        async with self.scope() as session:
            return await self.listings(session).create_listing(
                seller_id=seller_id,
                title="Oak desk",
                price=Decimal(price),
                category="furniture",
            )

    async def create_offer(self, listing_id, buyer_id: str = BUYER, amount: str = "90.00"):  # noqa: ANN001, ANN201
        async with self.scope() as session:
            return await self.offers(session).create_offer(
                listing_id=listing_id, buyer_id=buyer_id, amount=Decimal(amount)
            )

    async def accept(self, offer_id, actor_id: str = SELLER):  # noqa: ANN001, ANN201
        async with self.scope() as session:
            return await self.offers(session).respond_to_offer(offer_id, actor_id, "accept")

    async def open_transaction(self, amount: str = "90.00"):  # noqa: ANN201
        """Listing -> offer -> accepted. Returns the pending transaction."""
        listing = await self.create_listing()
        offer = await self.create_offer(listing.id, amount=amount)
        result = await self.accept(offer.id)
        return result.transaction

    async def complete_transaction(self, amount: str = "90.00"):  # noqa: ANN201
        transaction = await self.open_transaction(amount)
        async with self.scope() as session:
            await self.transactions(session).record_payment(transaction.id, Decimal(amount))
        async with self.scope() as session:
            return await self.transactions(session).mark_delivered(transaction.id, SELLER)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None, app_env="development", offer_ttl_hours=168)


@pytest_asyncio.fixture
async def engine(tmp_path):  # noqa: ANN001, ANN201
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'exchange.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):  # noqa: ANN001, ANN201
    return build_session_factory(engine)


@pytest.fixture
def market(session_factory, settings) -> Marketplace:  # noqa: ANN001
    return Marketplace(session_factory=session_factory, settings=settings)


@pytest.fixture
def make_market(session_factory, settings):  # noqa: ANN001, ANN201
    """Build a Marketplace with settings overrides, e.g. relist_on_cancel=True."""

    def _make(notifier=None, **overrides) -> Marketplace:  # noqa: ANN001
        return Marketplace(
            session_factory=session_factory,
            settings=settings.model_copy(update=overrides),
            notifier=notifier or RecordingNotifier(),
        )

    return _make


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()
