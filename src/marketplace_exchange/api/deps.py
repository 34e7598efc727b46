"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database
sessions, the acting user, the notification dispatcher and configuration.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import Header, Request
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from marketplace_exchange.config import Settings, get_settings
from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher  # noqa: TC001
from marketplace_exchange.infrastructure.database.engine import get_async_session
from marketplace_exchange.infrastructure.notifications import build_dispatcher


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_actor_id(
    x_actor_id: str = Header(
        ...,
        alias="X-Actor-ID",
        min_length=1,
        max_length=64,
        description="Identifier of the user performing the operation",
    ),
) -> str:
    """Provide the acting user's id. Authentication happens upstream."""
    return x_actor_id


def get_notifier(request: Request) -> NotificationDispatcher:
    """Provide the dispatcher created at startup, or build one from settings."""
    notifier = getattr(request.app.state, "notifier", None)
    if notifier is None:
        notifier = build_dispatcher(get_settings())
        request.app.state.notifier = notifier
    return notifier


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
