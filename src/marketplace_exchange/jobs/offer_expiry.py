"""Periodic offer expiry sweep.

The only background activity in the engine. An APScheduler interval job
opens its own unit of work and calls ``OfferService.expire_offers``.
``max_instances=1`` and ``coalesce=True`` keep a slow sweep from piling
up behind itself; overlapping sweeps from other processes are still safe
because each offer is expired with its own compare-and-set.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from marketplace_exchange.config import get_settings
from marketplace_exchange.infrastructure.database.engine import session_scope
from marketplace_exchange.logging_config import get_logger
from marketplace_exchange.services.offer_service import OfferService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from marketplace_exchange.config import Settings
    from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher

logger = get_logger(__name__)

JOB_ID = "offer_expiry_sweep"


class OfferExpiryScheduler:
    """Owns the AsyncIOScheduler that runs the expiry sweep."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        notifier: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self._settings = settings or get_settings()
        self.scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 60},
            timezone="UTC",
        )

    async def run_once(self) -> int:
        """Expire every overdue pending offer. Returns how many this sweep expired."""
        async with session_scope(self._session_factory) as session:
            service = OfferService(session, notifier=self._notifier, settings=self._settings)
            expired = await service.expire_offers()
        logger.info("jobs.offer_expiry_swept", expired=len(expired))
        return len(expired)

    def start(self) -> None:
        """Register the sweep and start the scheduler. Needs a running event loop."""
        interval = self._settings.offer_expiry_sweep_seconds
        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=interval),
            id=JOB_ID,
            name="Expire overdue offers",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("jobs.scheduler_started", job=JOB_ID, interval_seconds=interval)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("jobs.scheduler_stopped")
