"""Moderation REST API routes.

Routes:
    POST   /api/v1/moderation/alerts               — Ingest a scoring verdict
    GET    /api/v1/moderation/alerts               — List alerts (filter by status)
    GET    /api/v1/moderation/alerts/stats         — Counts and moderator accuracy
    GET    /api/v1/moderation/alerts/{id}          — Get alert
    POST   /api/v1/moderation/alerts/{id}/review   — Start reviewing
    POST   /api/v1/moderation/alerts/{id}/process  — Resolve or dismiss
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from marketplace_exchange.api.deps import get_actor_id, get_db_session, get_notifier
from marketplace_exchange.domain.enums import AlertStatus  # noqa: TC001
from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher  # noqa: TC001
from marketplace_exchange.schemas.reputation import (
    AlertStatsResponse,
    FraudAlertResponse,
    ProcessAlertRequest,
    RecordAlertRequest,
)
from marketplace_exchange.services.moderation_service import ModerationService

router = APIRouter(prefix="/api/v1/moderation", tags=["Moderation"])


@router.post(
    "/alerts",
    response_model=FraudAlertResponse,
    status_code=201,
    summary="Record a fraud alert",
)
async def record_alert(
    request: RecordAlertRequest,
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> FraudAlertResponse:
    alert = await ModerationService(session, notifier).record_alert(
        target_type=request.target_type,
        target_id=request.target_id,
        severity=request.severity,
        activity_type=request.activity_type,
        details=request.details,
    )
    return FraudAlertResponse.model_validate(alert)


@router.get("/alerts", response_model=list[FraudAlertResponse], summary="List alerts")
async def list_alerts(
    status: AlertStatus | None = None,
    session: AsyncSession = Depends(get_db_session),
) -> list[FraudAlertResponse]:
    alerts = await ModerationService(session).list_alerts(status=status)
    return [FraudAlertResponse.model_validate(a) for a in alerts]


@router.get("/alerts/stats", response_model=AlertStatsResponse, summary="Alert statistics")
async def alert_stats(
    session: AsyncSession = Depends(get_db_session),
) -> AlertStatsResponse:
    return AlertStatsResponse(**await ModerationService(session).alert_stats())


@router.get("/alerts/{alert_id}", response_model=FraudAlertResponse, summary="Get alert")
async def get_alert(
    alert_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> FraudAlertResponse:
    alert = await ModerationService(session).get_alert(alert_id)
    return FraudAlertResponse.model_validate(alert)


@router.post(
    "/alerts/{alert_id}/review",
    response_model=FraudAlertResponse,
    summary="Start reviewing an alert",
)
async def start_review(
    alert_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
) -> FraudAlertResponse:
    alert = await ModerationService(session).start_review(alert_id, reviewer_id=actor_id)
    return FraudAlertResponse.model_validate(alert)


@router.post(
    "/alerts/{alert_id}/process",
    response_model=FraudAlertResponse,
    summary="Resolve or dismiss an alert",
)
async def process_alert(
    alert_id: uuid.UUID,
    request: ProcessAlertRequest,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> FraudAlertResponse:
    """Close an alert. Resolving applies the moderation override to its target."""
    alert = await ModerationService(session, notifier).process_alert(
        alert_id, action=request.action, reviewer_id=actor_id, note=request.note
    )
    return FraudAlertResponse.model_validate(alert)
