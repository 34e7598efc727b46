"""Moderation Service — the gate that can intervene on any entity.

Alerts arrive from two places: verdicts of the external fraud scoring
collaborator (``record_alert``) and user reports (``report_listing`` here,
``ReviewService.report`` for reviews). Moderators triage them:

    new -> reviewing -> resolved | dismissed

Resolving an alert runs the override transition for its target. These
overrides deliberately bypass the normal state machines:

    item         listing forced to removed, even when already sold
    review       review soft-removed, target rating re-aggregated
    transaction  non-terminal transaction forced to cancelled
    user         decision recorded only

Dismissing an alert changes nothing but the alert.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from marketplace_exchange.domain.enums import (
    AlertAction,
    AlertSeverity,
    AlertStatus,
    AlertTargetType,
    EntityType,
    EventType,
    ListingStatus,
    ReportTargetType,
    TransactionStatus,
)
from marketplace_exchange.domain.exceptions import (
    ConflictError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from marketplace_exchange.domain.state_machine import AlertStateMachine
from marketplace_exchange.infrastructure.database.orm_models import ContentReport, FraudAlert
from marketplace_exchange.infrastructure.database.repositories import (
    AlertRepository,
    ListingRepository,
    ReportRepository,
    ReviewRepository,
    TransactionRepository,
)
from marketplace_exchange.logging_config import get_logger
from marketplace_exchange.services.base import BaseService, require_text

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_exchange.config import Settings
    from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher

logger = get_logger(__name__)

_CLOSED_ALERT_STATUSES = (AlertStatus.RESOLVED, AlertStatus.DISMISSED)


def _parse_uuid(value: str, kind: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as err:
        raise NotFoundError(kind, value) from err


class ModerationService(BaseService):
    """Records, triages and acts on fraud alerts."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(session, notifier, settings)
        self._alert_repo = AlertRepository(session)
        self._report_repo = ReportRepository(session)
        self._listing_repo = ListingRepository(session)
        self._transaction_repo = TransactionRepository(session)
        self._review_repo = ReviewRepository(session)

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def record_alert(
        self,
        target_type: AlertTargetType | str,
        target_id: object,
        severity: AlertSeverity | str,
        activity_type: str = "scoring",
        details: dict | None = None,
    ) -> FraudAlert:
        """Open a NEW alert against a listing, review, user or transaction."""
        try:
            target_type = AlertTargetType(target_type)
            severity = AlertSeverity(severity)
        except ValueError as err:
            raise ValidationError(str(err)) from err
        activity_type = require_text(activity_type, "activity_type")

        alert = await self._alert_repo.add(
            FraudAlert(
                target_type=target_type.value,
                target_id=str(target_id),
                severity=severity.value,
                status=AlertStatus.NEW.value,
                activity_type=activity_type,
                details=details,
            )
        )

        await self._record_event(
            entity_type=EntityType.ALERT,
            entity_id=alert.id,
            event_type=EventType.ALERT_RAISED,
            old_status=None,
            new_status=AlertStatus.NEW,
            metadata={"target": f"{target_type.value}:{target_id}", "severity": severity.value},
        )
        await self._notify(
            EventType.ALERT_RAISED,
            EntityType.ALERT,
            alert.id,
            target_type=target_type.value,
            target_id=target_id,
            severity=severity.value,
        )

        logger.info(
            "moderation.alert_raised",
            alert_id=str(alert.id),
            target_type=target_type.value,
            target_id=str(target_id),
            severity=severity.value,
            activity_type=activity_type,
        )
        return alert

    async def report_listing(
        self,
        listing_id: uuid.UUID,
        reporter_id: str,
        reason: str,
    ) -> ContentReport:
        """A user reports a listing. One report per reporter per listing."""
        reason = require_text(reason, "reason")
        listing = await self._listing_repo.get(listing_id)
        if listing is None:
            raise NotFoundError("listing", listing_id)

        return await self.file_report(
            target_type=ReportTargetType.ITEM,
            target_id=str(listing.id),
            reporter_id=reporter_id,
            reason=reason,
            severity=AlertSeverity.LOW,
            activity_type="listing_report",
        )

    async def file_report(
        self,
        target_type: ReportTargetType,
        target_id: str,
        reporter_id: str,
        reason: str,
        severity: AlertSeverity,
        activity_type: str,
    ) -> ContentReport:
        """Store a user report and open the alert it raises."""
        existing = await self._report_repo.get_by_reporter(target_type.value, target_id, reporter_id)
        if existing is not None:
            raise DuplicateError(f"{reporter_id} already reported {target_type.value} {target_id}")

        alert = await self.record_alert(
            target_type=AlertTargetType(target_type.value),
            target_id=target_id,
            severity=severity,
            activity_type=activity_type,
            details={"reporter_id": reporter_id, "reason": reason},
        )
        try:
            report = await self._report_repo.add(
                ContentReport(
                    target_type=target_type.value,
                    target_id=target_id,
                    reporter_id=reporter_id,
                    reason=reason,
                    alert_id=alert.id,
                )
            )
        except IntegrityError as err:
            raise DuplicateError(
                f"{reporter_id} already reported {target_type.value} {target_id}"
            ) from err

        logger.info(
            "moderation.content_reported",
            target_type=target_type.value,
            target_id=target_id,
            alert_id=str(alert.id),
        )
        return report

    # ------------------------------------------------------------------
    # Triage
    # ------------------------------------------------------------------

    async def start_review(self, alert_id: uuid.UUID, reviewer_id: str) -> FraudAlert:
        """A moderator picks up a NEW alert."""
        alert = await self._get_alert_or_raise(alert_id)
        self._fire_transition(AlertStateMachine, "alert", alert.status, "start_review")

        updated = await self._alert_repo.transition(
            alert_id,
            (AlertStatus.NEW,),
            {"status": AlertStatus.REVIEWING.value, "reviewer_id": reviewer_id},
        )
        if updated is None:
            raise ConflictError(f"Alert {alert_id} changed before review started")

        await self._record_event(
            entity_type=EntityType.ALERT,
            entity_id=alert_id,
            event_type=EventType.ALERT_REVIEWING,
            old_status=AlertStatus.NEW,
            new_status=AlertStatus.REVIEWING,
            actor=reviewer_id,
        )
        return updated

    async def process_alert(
        self,
        alert_id: uuid.UUID,
        action: AlertAction | str,
        reviewer_id: str,
        note: str | None = None,
    ) -> FraudAlert:
        """Resolve or dismiss an open alert. Resolving runs the target override."""
        try:
            action = AlertAction(action)
        except ValueError as err:
            raise ValidationError(f"Unknown alert action '{action}'", field="action") from err

        alert = await self._get_alert_or_raise(alert_id)
        if alert.status in _CLOSED_ALERT_STATUSES:
            raise ConflictError(f"Alert {alert_id} is already {alert.status}", code="ALERT_CLOSED")

        old_status = alert.status
        new_status = self._fire_transition(AlertStateMachine, "alert", old_status, action.value)

        closed = await self._alert_repo.transition(
            alert_id,
            (AlertStatus.NEW, AlertStatus.REVIEWING),
            {
                "status": new_status,
                "reviewer_id": reviewer_id,
                "review_notes": note,
                "reviewed_at": datetime.now(UTC),
            },
        )
        if closed is None:
            raise ConflictError(f"Alert {alert_id} was closed concurrently", code="ALERT_CLOSED")

        await self._record_event(
            entity_type=EntityType.ALERT,
            entity_id=alert_id,
            event_type=(
                EventType.ALERT_RESOLVED
                if action is AlertAction.RESOLVE
                else EventType.ALERT_DISMISSED
            ),
            old_status=old_status,
            new_status=new_status,
            actor=reviewer_id,
            metadata={"note": note} if note else None,
        )

        if action is AlertAction.RESOLVE:
            await self._apply_override(closed, reviewer_id, note)

        logger.info(
            "moderation.alert_processed",
            alert_id=str(alert_id),
            action=action.value,
            target_type=closed.target_type,
            reviewer=reviewer_id,
        )
        return closed

    async def _apply_override(self, alert: FraudAlert, reviewer_id: str, note: str | None) -> None:
        reason = note or f"Moderation alert {alert.id} ({alert.activity_type})"
        target = AlertTargetType(alert.target_type)

        if target is AlertTargetType.ITEM:
            await self._remove_listing(_parse_uuid(alert.target_id, "listing"), reason, reviewer_id)
        elif target is AlertTargetType.REVIEW:
            await self._remove_review(_parse_uuid(alert.target_id, "review"), reason, reviewer_id)
        elif target is AlertTargetType.TRANSACTION:
            await self._cancel_transaction(
                _parse_uuid(alert.target_id, "transaction"), reason, reviewer_id
            )
        else:
            logger.info("moderation.user_actioned", user_id=alert.target_id, alert_id=str(alert.id))

    async def _remove_listing(self, listing_id: uuid.UUID, reason: str, reviewer_id: str) -> None:
        listing = await self._listing_repo.get(listing_id)
        if listing is None:
            raise NotFoundError("listing", listing_id)
        old_status = listing.status

        removed = await self._listing_repo.force_remove(listing_id, reason, reviewer_id)
        if removed is None:
            logger.info("moderation.listing_already_removed", listing_id=str(listing_id))
            return

        await self._record_event(
            entity_type=EntityType.LISTING,
            entity_id=listing_id,
            event_type=EventType.LISTING_REMOVED,
            old_status=old_status,
            new_status=ListingStatus.REMOVED,
            actor=reviewer_id,
            metadata={"reason": reason},
        )
        await self._notify(
            EventType.LISTING_REMOVED,
            EntityType.LISTING,
            listing_id,
            recipients=(removed.seller_id,),
            reason=reason,
        )
        logger.info("moderation.listing_removed", listing_id=str(listing_id), was=old_status)

    async def _remove_review(self, review_id: uuid.UUID, reason: str, reviewer_id: str) -> None:
        review = await self._review_repo.get(review_id)
        if review is None:
            raise NotFoundError("review", review_id)

        removed = await self._review_repo.soft_remove(review_id, reason)
        if removed is None:
            logger.info("moderation.review_already_removed", review_id=str(review_id))
            return
        await self._review_repo.recompute_aggregate(removed.target_type, removed.target_id)

        await self._record_event(
            entity_type=EntityType.REVIEW,
            entity_id=review_id,
            event_type=EventType.REVIEW_REMOVED,
            old_status="visible",
            new_status="removed",
            actor=reviewer_id,
            metadata={"reason": reason},
        )
        await self._notify(
            EventType.REVIEW_REMOVED,
            EntityType.REVIEW,
            review_id,
            recipients=(removed.reviewer_id,),
            reason=reason,
        )
        logger.info("moderation.review_removed", review_id=str(review_id))

    async def _cancel_transaction(
        self,
        transaction_id: uuid.UUID,
        reason: str,
        reviewer_id: str,
    ) -> None:
        transaction = await self._transaction_repo.get(transaction_id)
        if transaction is None:
            raise NotFoundError("transaction", transaction_id)
        old_status = transaction.effective_status

        cancelled = await self._transaction_repo.force_cancel(transaction_id, reason)
        if cancelled is None:
            logger.info(
                "moderation.transaction_already_closed",
                transaction_id=str(transaction_id),
                status=transaction.status,
            )
            return

        await self._record_event(
            entity_type=EntityType.TRANSACTION,
            entity_id=transaction_id,
            event_type=EventType.TRANSACTION_CANCELLED,
            old_status=old_status,
            new_status=TransactionStatus.CANCELLED,
            actor=reviewer_id,
            metadata={"reason": reason, "override": True},
        )
        await self._notify(
            EventType.TRANSACTION_CANCELLED,
            EntityType.TRANSACTION,
            transaction_id,
            recipients=(cancelled.buyer_id, cancelled.seller_id),
            reason=reason,
        )
        logger.info("moderation.transaction_cancelled", transaction_id=str(transaction_id))

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_alert(self, alert_id: uuid.UUID) -> FraudAlert:
        return await self._get_alert_or_raise(alert_id)

    async def list_alerts(self, status: AlertStatus | str | None = None) -> list[FraudAlert]:
        if status is not None:
            try:
                status = AlertStatus(status)
            except ValueError as err:
                raise ValidationError(f"Unknown alert status '{status}'", field="status") from err
        return await self._alert_repo.list_alerts(status=status)

    async def alert_stats(self) -> dict:
        """Counts per status and severity, plus moderator accuracy.

        Accuracy is resolved / (resolved + dismissed): the share of closed
        alerts that turned out to need action. None until an alert closes.
        """
        by_status = await self._alert_repo.count_by_status()
        by_severity = await self._alert_repo.count_by_severity()
        resolved = by_status[AlertStatus.RESOLVED.value]
        closed = resolved + by_status[AlertStatus.DISMISSED.value]
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_severity": by_severity,
            "accuracy": round(resolved / closed, 4) if closed else None,
        }

    async def _get_alert_or_raise(self, alert_id: uuid.UUID) -> FraudAlert:
        alert = await self._alert_repo.get(alert_id)
        if alert is None:
            raise NotFoundError("alert", alert_id)
        return alert
