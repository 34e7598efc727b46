"""HTTP-level tests for the REST API.

The application runs in-process through httpx's ASGI transport with the
database session dependency pointed at the per-test SQLite database.
"""

from __future__ import annotations

import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from marketplace_exchange.api.deps import get_app_settings, get_db_session
from marketplace_exchange.infrastructure.database.engine import session_scope
from marketplace_exchange.main import create_app

SELLER = {"X-Actor-ID": "seller-1"}
BUYER = {"X-Actor-ID": "buyer-1"}
MODERATOR = {"X-Actor-ID": "moderator-1"}


@pytest_asyncio.fixture
async def client(session_factory, market):  # noqa: ANN001, ANN201
    app = create_app()
    app.state.notifier = market.notifier

    async def _session():  # noqa: ANN202
        async with session_scope(session_factory) as session:
            yield session

    app.dependency_overrides[get_db_session] = _session
    app.dependency_overrides[get_app_settings] = lambda: market.settings
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def _open_transaction(client) -> dict:  # noqa: ANN001
    listing = await client.post(
        "/api/v1/listings",
        json={"title": "Oak desk", "price": "100.00", "category": "furniture"},
        headers=SELLER,
    )
    assert listing.status_code == 201
    offer = await client.post(
        f"/api/v1/listings/{listing.json()['id']}/offers",
        json={"amount": "90.00"},
        headers=BUYER,
    )
    assert offer.status_code == 201
    accepted = await client.post(
        f"/api/v1/offers/{offer.json()['id']}/respond",
        json={"action": "accept"},
        headers=SELLER,
    )
    assert accepted.status_code == 200
    return accepted.json()["transaction"]


class TestHealth:
    @pytest.mark.asyncio
    async def test_ok_without_redis_when_notifications_are_logged(self, client) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["database"] == "healthy"
        assert body["notifications"] == "disabled"


class TestListingsAndOffers:
    @pytest.mark.asyncio
    async def test_create_and_get_listing(self, client) -> None:
        created = await client.post(
            "/api/v1/listings",
            json={"title": "Lamp", "price": "25.50", "category": "home"},
            headers=SELLER,
        )
        assert created.status_code == 201
        body = created.json()
        assert body["seller_id"] == "seller-1"
        assert body["status"] == "active"

        fetched = await client.get(f"/api/v1/listings/{body['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["title"] == "Lamp"

    @pytest.mark.asyncio
    async def test_missing_actor_header(self, client) -> None:
        response = await client.post(
            "/api/v1/listings",
            json={"title": "Lamp", "price": "25.50", "category": "home"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_listing_is_404(self, client) -> None:
        response = await client.get(f"/api/v1/listings/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["error"] == "LISTING_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_offer_on_own_listing_is_403(self, client) -> None:
        listing = await client.post(
            "/api/v1/listings",
            json={"title": "Lamp", "price": "25.50", "category": "home"},
            headers=SELLER,
        )
        response = await client.post(
            f"/api/v1/listings/{listing.json()['id']}/offers",
            json={"amount": "20.00"},
            headers=SELLER,
        )
        assert response.status_code == 403
        assert response.json()["error"] == "NOT_AUTHORIZED"

    @pytest.mark.asyncio
    async def test_accept_returns_transaction(self, client) -> None:
        transaction = await _open_transaction(client)

        assert transaction["status"] == "pending"
        assert transaction["effective_status"] == "pending"
        assert transaction["amount"] == "90.00"

    @pytest.mark.asyncio
    async def test_offer_on_sold_listing_is_409(self, client) -> None:
        transaction = await _open_transaction(client)

        response = await client.post(
            f"/api/v1/listings/{transaction['listing_id']}/offers",
            json={"amount": "95.00"},
            headers={"X-Actor-ID": "buyer-2"},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "LISTING_NOT_AVAILABLE"


class TestTransactionFlow:
    @pytest.mark.asyncio
    async def test_pay_then_deliver_completes(self, client) -> None:
        transaction = await _open_transaction(client)
        tx_url = f"/api/v1/transactions/{transaction['id']}"

        paid = await client.post(f"{tx_url}/payment", json={"amount_paid": "90.00"}, headers=BUYER)
        assert paid.status_code == 200
        assert paid.json()["effective_status"] == "in_progress"

        delivered = await client.post(f"{tx_url}/delivered", headers=SELLER)
        assert delivered.status_code == 200
        assert delivered.json()["status"] == "completed"

        events = await client.get(f"{tx_url}/events")
        assert events.status_code == 200
        assert "TRANSACTION_COMPLETED" in [e["event_type"] for e in events.json()]

    @pytest.mark.asyncio
    async def test_mismatched_payment_is_422(self, client) -> None:
        transaction = await _open_transaction(client)

        response = await client.post(
            f"/api/v1/transactions/{transaction['id']}/payment",
            json={"amount_paid": "80.00"},
            headers=BUYER,
        )
        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_dispute_blocks_payment(self, client) -> None:
        transaction = await _open_transaction(client)
        tx_url = f"/api/v1/transactions/{transaction['id']}"

        disputed = await client.post(
            f"{tx_url}/dispute", json={"reason": "item not as described"}, headers=BUYER
        )
        assert disputed.status_code == 200
        assert disputed.json()["status"] == "disputed"

        blocked = await client.post(
            f"{tx_url}/payment", json={"amount_paid": "90.00"}, headers=BUYER
        )
        assert blocked.status_code == 409

        resolved = await client.post(
            f"{tx_url}/resolve",
            json={"resolution_note": "partial refund agreed", "favor": "buyer"},
            headers=MODERATOR,
        )
        assert resolved.status_code == 200
        assert resolved.json()["status"] == "completed"
        assert resolved.json()["resolution_favor"] == "buyer"

    @pytest.mark.asyncio
    async def test_messages(self, client) -> None:
        transaction = await _open_transaction(client)
        tx_url = f"/api/v1/transactions/{transaction['id']}"

        posted = await client.post(f"{tx_url}/messages", json={"body": "Pickup Sat?"}, headers=BUYER)
        assert posted.status_code == 201
        assert posted.json()["sender_role"] == "buyer"

        thread = await client.get(f"{tx_url}/messages", headers=SELLER)
        assert [m["sender_role"] for m in thread.json()] == ["system", "buyer"]

        outsider = await client.get(f"{tx_url}/messages", headers={"X-Actor-ID": "nosy"})
        assert outsider.status_code == 403


class TestReviewsAndModeration:
    @pytest.mark.asyncio
    async def test_review_and_rating(self, client) -> None:
        created = await client.post(
            "/api/v1/reviews",
            json={"target_type": "user", "target_id": "seller-1", "rating": 4, "body": "Friendly"},
            headers=BUYER,
        )
        assert created.status_code == 201
        assert created.json()["verified_purchase"] is False

        duplicate = await client.post(
            "/api/v1/reviews",
            json={"target_type": "user", "target_id": "seller-1", "rating": 2, "body": "Again"},
            headers=BUYER,
        )
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "DUPLICATE"

        rating = await client.get("/api/v1/reviews/user/seller-1/rating")
        assert rating.json()["review_count"] == 1
        assert rating.json()["mean_rating"] == "4.00"

        page = await client.get("/api/v1/reviews/user/seller-1", params={"sort": "helpful"})
        assert page.status_code == 200
        assert page.json()["distribution"]["4"] == 1

    @pytest.mark.asyncio
    async def test_invalid_sort_is_422(self, client) -> None:
        response = await client.get("/api/v1/reviews/user/seller-1", params={"sort": "random"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_report_and_resolve_removes_listing(self, client) -> None:
        listing = await client.post(
            "/api/v1/listings",
            json={"title": "Designer bag", "price": "40.00", "category": "fashion"},
            headers=SELLER,
        )
        listing_id = listing.json()["id"]

        report = await client.post(
            f"/api/v1/listings/{listing_id}/report",
            json={"reason": "counterfeit"},
            headers=BUYER,
        )
        assert report.status_code == 201
        alert_id = report.json()["alert_id"]

        processed = await client.post(
            f"/api/v1/moderation/alerts/{alert_id}/process",
            json={"action": "resolve", "note": "confirmed counterfeit"},
            headers=MODERATOR,
        )
        assert processed.status_code == 200
        assert processed.json()["status"] == "resolved"

        removed = await client.get(f"/api/v1/listings/{listing_id}")
        assert removed.json()["status"] == "removed"

        again = await client.post(
            f"/api/v1/moderation/alerts/{alert_id}/process",
            json={"action": "dismiss"},
            headers=MODERATOR,
        )
        assert again.status_code == 409

        stats = await client.get("/api/v1/moderation/alerts/stats")
        assert stats.json()["by_status"]["resolved"] == 1
        assert stats.json()["accuracy"] == 1.0
