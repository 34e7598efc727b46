"""Listing and offer REST API routes.

Routes:
    POST   /api/v1/listings                      — Publish a listing
    GET    /api/v1/listings                      — List listings (filter by status/seller)
    GET    /api/v1/listings/{id}                 — Get listing details
    POST   /api/v1/listings/{id}/offers          — Make an offer
    GET    /api/v1/listings/{id}/offers          — Offers on a listing
    POST   /api/v1/listings/{id}/report          — Report a listing to moderation
    GET    /api/v1/offers/{id}                   — Get offer details
    POST   /api/v1/offers/{id}/respond           — Accept, reject or counter
    POST   /api/v1/offers/{id}/withdraw          — Proposer withdraws
    POST   /api/v1/offers/expire                 — Run the expiry sweep now
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from marketplace_exchange.api.deps import get_actor_id, get_db_session, get_notifier
from marketplace_exchange.domain.enums import ListingStatus, OfferStatus  # noqa: TC001
from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher  # noqa: TC001
from marketplace_exchange.logging_config import get_logger
from marketplace_exchange.schemas.exchange import (
    CreateListingRequest,
    CreateOfferRequest,
    ExpireOffersResponse,
    ListingResponse,
    OfferResponse,
    OfferResponseResult,
    RespondToOfferRequest,
)
from marketplace_exchange.schemas.reputation import ContentReportResponse, ReportRequest
from marketplace_exchange.services.listing_service import ListingService
from marketplace_exchange.services.moderation_service import ModerationService
from marketplace_exchange.services.offer_service import OfferService

router = APIRouter(prefix="/api/v1", tags=["Listings & Offers"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


@router.post(
    "/listings",
    response_model=ListingResponse,
    status_code=201,
    summary="Publish a listing",
)
async def create_listing(
    request: CreateListingRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
) -> ListingResponse:
    """Publish a new listing in ACTIVE state, owned by the acting user."""
    svc = ListingService(session)
    listing = await svc.create_listing(
        seller_id=actor_id,
        title=request.title,
        price=request.price,
        category=request.category,
        description=request.description,
    )
    return ListingResponse.model_validate(listing)


@router.get("/listings", response_model=list[ListingResponse], summary="List listings")
async def list_listings(
    status: ListingStatus | None = None,
    seller_id: str | None = None,
    session: AsyncSession = Depends(get_db_session),
) -> list[ListingResponse]:
    listings = await ListingService(session).list_listings(status=status, seller_id=seller_id)
    return [ListingResponse.model_validate(listing) for listing in listings]


@router.get("/listings/{listing_id}", response_model=ListingResponse, summary="Get listing")
async def get_listing(
    listing_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> ListingResponse:
    listing = await ListingService(session).get_listing(listing_id)
    return ListingResponse.model_validate(listing)


@router.post(
    "/listings/{listing_id}/report",
    response_model=ContentReportResponse,
    status_code=201,
    summary="Report a listing",
)
async def report_listing(
    listing_id: uuid.UUID,
    request: ReportRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> ContentReportResponse:
    """Report a listing. Opens a low severity moderation alert."""
    svc = ModerationService(session, notifier)
    report = await svc.report_listing(listing_id, reporter_id=actor_id, reason=request.reason)
    return ContentReportResponse.model_validate(report)


# ---------------------------------------------------------------------------
# Offers
# ---------------------------------------------------------------------------


@router.post(
    "/listings/{listing_id}/offers",
    response_model=OfferResponse,
    status_code=201,
    summary="Make an offer on a listing",
)
async def create_offer(
    listing_id: uuid.UUID,
    request: CreateOfferRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> OfferResponse:
    """Open a PENDING offer from the acting user (the buyer)."""
    svc = OfferService(session, notifier)
    offer = await svc.create_offer(
        listing_id=listing_id,
        buyer_id=actor_id,
        amount=request.amount,
        note=request.note,
        expires_at=request.expires_at,
    )
    return OfferResponse.model_validate(offer)


@router.get(
    "/listings/{listing_id}/offers",
    response_model=list[OfferResponse],
    summary="Offers on a listing",
)
async def list_offers(
    listing_id: uuid.UUID,
    status: OfferStatus | None = None,
    session: AsyncSession = Depends(get_db_session),
) -> list[OfferResponse]:
    offers = await OfferService(session).list_offers_for_listing(listing_id, status=status)
    return [OfferResponse.model_validate(offer) for offer in offers]


@router.post(
    "/offers/expire",
    response_model=ExpireOffersResponse,
    summary="Run the offer expiry sweep",
)
async def expire_offers(
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> ExpireOffersResponse:
    """Expire overdue offers now instead of waiting for the scheduled sweep."""
    expired = await OfferService(session, notifier).expire_offers()
    return ExpireOffersResponse(expired=[OfferResponse.model_validate(o) for o in expired])


@router.get("/offers/{offer_id}", response_model=OfferResponse, summary="Get offer")
async def get_offer(
    offer_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> OfferResponse:
    offer = await OfferService(session).get_offer(offer_id)
    return OfferResponse.model_validate(offer)


@router.post(
    "/offers/{offer_id}/respond",
    response_model=OfferResponseResult,
    summary="Accept, reject or counter an offer",
)
async def respond_to_offer(
    offer_id: uuid.UUID,
    request: RespondToOfferRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> OfferResponseResult:
    """Respond as the receiving party. Accepting creates the transaction."""
    svc = OfferService(session, notifier)
    result = await svc.respond_to_offer(
        offer_id,
        actor_id=actor_id,
        action=request.action,
        counter_amount=request.counter_amount,
    )
    return OfferResponseResult.model_validate(result, from_attributes=True)


@router.post(
    "/offers/{offer_id}/withdraw",
    response_model=OfferResponse,
    summary="Withdraw a pending offer",
)
async def withdraw_offer(
    offer_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> OfferResponse:
    offer = await OfferService(session, notifier).withdraw_offer(offer_id, actor_id)
    return OfferResponse.model_validate(offer)
