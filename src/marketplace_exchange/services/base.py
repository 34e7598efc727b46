"""Shared plumbing for the application services.

Every service is constructed per unit of work with the caller's
AsyncSession. Services never commit: the caller (``session_scope`` or the
FastAPI session dependency) commits on success and rolls back on any
exception, so a failed operation leaves no partial writes behind. Transition
events are queued on the session and only reach subscribers after that
commit.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from statemachine.exceptions import TransitionNotAllowed

from marketplace_exchange.config import get_settings
from marketplace_exchange.domain.exceptions import (
    AuthorizationError,
    InvalidStateTransitionError,
    ValidationError,
)
from marketplace_exchange.domain.notifier_protocol import TransitionEvent
from marketplace_exchange.infrastructure.database.repositories import EventRepository
from marketplace_exchange.infrastructure.notifications import (
    LoggingNotificationDispatcher,
    queue_notification,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession
    from statemachine import StateMachine

    from marketplace_exchange.config import Settings
    from marketplace_exchange.domain.enums import EntityType, EventType
    from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher
    from marketplace_exchange.infrastructure.database.orm_models import Transaction

_CENT = Decimal("0.01")


def parse_money(value: object, field: str = "amount") -> Decimal:
    """Convert user input to a two-decimal Decimal.

    Raises:
        ValidationError: If the value is not a finite number with at most
            two fractional digits.
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as err:
        raise ValidationError(f"{field} must be a number", field=field) from err
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    if amount != amount.quantize(_CENT):
        raise ValidationError(f"{field} has more than two decimal places", field=field)
    return amount.quantize(_CENT)


def require_text(value: str | None, field: str) -> str:
    """Return the stripped value, or raise ValidationError if it is blank."""
    if value is None or not value.strip():
        raise ValidationError(f"{field} must not be blank", field=field)
    return value.strip()


class BaseService:
    """Session, collaborators and transition helpers shared by all services."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._notifier = notifier or LoggingNotificationDispatcher()
        self._settings = settings or get_settings()
        self._event_repo = EventRepository(session)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @staticmethod
    def _fire_transition(
        machine_cls: type[StateMachine],
        entity: str,
        current_status: str,
        event_name: str,
    ) -> str:
        """Validate a transition against the state machine and return the new status.

        Raises InvalidStateTransitionError if the transition is illegal.
        """
        sm = machine_cls(current_status=current_status)
        event_method = getattr(sm, event_name, None)
        if event_method is None:
            raise InvalidStateTransitionError(entity, current_status, event_name)
        try:
            event_method()
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(entity, current_status, event_name) from err
        return sm.status

    async def _record_event(
        self,
        entity_type: EntityType,
        entity_id: object,
        event_type: EventType,
        old_status: str | None,
        new_status: str | None,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
    ) -> None:
        await self._event_repo.record(
            entity_type=entity_type,
            entity_id=entity_id,
            event_type=event_type,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def _notify(
        self,
        event_type: EventType,
        entity_type: EntityType,
        entity_id: object,
        recipients: tuple[str, ...] = (),
        **payload: object,
    ) -> None:
        """Queue a transition event for delivery once the unit of work commits."""
        event = TransitionEvent(
            event_type=event_type.value,
            entity_type=entity_type.value,
            entity_id=str(entity_id),
            recipients=tuple(r for r in recipients if r),
            payload={k: str(v) if v is not None else None for k, v in payload.items()},
        )
        queue_notification(self._session, self._notifier, event)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @staticmethod
    def _require_party(transaction: Transaction, actor_id: str, action: str) -> str:
        """Return the actor's role on the transaction or raise AuthorizationError."""
        role = transaction.role_of(actor_id)
        if role is None:
            raise AuthorizationError(actor_id, action)
        return role
