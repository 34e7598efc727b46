"""Health check endpoint.

Reports the database and the notification channel. The channel reads
``disabled`` when events go to the log instead of Redis, which does not
degrade the service.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from marketplace_exchange.api.deps import get_app_settings, get_db_session
from marketplace_exchange.config import Settings  # noqa: TC001
from marketplace_exchange.infrastructure.redis_client import channel_status
from marketplace_exchange.logging_config import get_logger
from marketplace_exchange.schemas.exchange import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)

_USABLE_CHANNEL = ("healthy", "disabled")


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Database and notification channel status.",
)
async def health_check(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> HealthResponse:
    try:
        await session.execute(text("SELECT 1"))
        database = "healthy"
    except Exception as exc:
        database = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    notifications = await channel_status(settings)
    healthy = database == "healthy" and notifications in _USABLE_CHANNEL

    return HealthResponse(
        status="ok" if healthy else "degraded",
        database=database,
        notifications=notifications,
    )
