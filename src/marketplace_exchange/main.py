"""FastAPI application entry point for the marketplace exchange engine.

Lifecycle:
    1. Startup: Initialize logging, database, the notification dispatcher
       (and its Redis connection when that backend is selected) and the
       offer expiry scheduler.
    2. Running: Serve the REST API at /api/v1/* on a single Uvicorn process.
    3. Shutdown: Stop the scheduler, close database and Redis connections.

Run with:
    uvicorn marketplace_exchange.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from marketplace_exchange.config import get_settings
from marketplace_exchange.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Initialize database
    from marketplace_exchange.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Redis, only when notifications are published through it
    from marketplace_exchange.infrastructure.redis_client import (
        close_redis,
        init_redis,
        redis_enabled,
    )

    if redis_enabled(settings):
        try:
            await init_redis(settings)
        except Exception as exc:
            logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Notification dispatcher
    from marketplace_exchange.infrastructure.notifications import build_dispatcher

    app.state.notifier = build_dispatcher(settings)

    # 5. Offer expiry sweep
    scheduler = None
    if settings.offer_expiry_sweep_enabled:
        from marketplace_exchange.jobs.offer_expiry import OfferExpiryScheduler

        scheduler = OfferExpiryScheduler(notifier=app.state.notifier, settings=settings)
        scheduler.start()

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    if scheduler is not None:
        scheduler.shutdown()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Marketplace Exchange",
        description=(
            "Peer-to-peer exchange workflow engine: listings, offers, "
            "transactions, disputes, reviews and moderation."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from marketplace_exchange.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from marketplace_exchange.api.routes.disputes import router as disputes_router
    from marketplace_exchange.api.routes.health import router as health_router
    from marketplace_exchange.api.routes.listings import router as listings_router
    from marketplace_exchange.api.routes.moderation import router as moderation_router
    from marketplace_exchange.api.routes.reviews import router as reviews_router
    from marketplace_exchange.api.routes.transactions import router as transactions_router

    app.include_router(health_router)
    app.include_router(listings_router)
    app.include_router(transactions_router)
    app.include_router(disputes_router)
    app.include_router(reviews_router)
    app.include_router(moderation_router)

    return app


# The app instance used by Uvicorn
app = create_app()
