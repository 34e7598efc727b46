"""Notification Dispatcher Protocol.

Defines the interface of the notification collaborator that is informed
of every state transition (offer accepted, transaction completed, dispute
raised, ...). This is a Protocol (structural subtyping), so dispatchers
don't need to inherit from a base class.

Services queue events on their session. The unit of work dispatches them
after it commits and drops them if it rolls back, so subscribers only hear
about durable transitions and a failing dispatcher never blocks one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class TransitionEvent:
    """A state change worth telling the outside world about.

    Attributes:
        event_type: EventType value (e.g., "OFFER_ACCEPTED").
        entity_type: EntityType value of the entity that changed.
        entity_id: Identifier of that entity.
        recipients: User ids that should hear about it.
        payload: Extra context (amounts, statuses, related ids).
        occurred_at: When the transition happened.
    """

    event_type: str
    entity_type: str
    entity_id: str
    recipients: tuple[str, ...] = ()
    payload: dict = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        """Serialize for publishing on a message channel."""
        return {
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "recipients": list(self.recipients),
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Protocol that all notification dispatchers must satisfy.

    Concrete implementations:
        - infrastructure/notifications.py LoggingNotificationDispatcher
        - infrastructure/notifications.py RedisNotificationDispatcher
    """

    async def dispatch(self, event: TransitionEvent) -> None:
        """Deliver a transition event. May raise; callers guard it."""
        ...
