"""Domain layer — pure business rules with zero framework dependencies."""

from marketplace_exchange.domain.enums import (
    ListingStatus,
    OfferStatus,
    TransactionStatus,
)
from marketplace_exchange.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    ExchangeError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from marketplace_exchange.domain.notifier_protocol import (
    NotificationDispatcher,
    TransitionEvent,
)
from marketplace_exchange.domain.state_machine import (
    AlertStateMachine,
    ListingStateMachine,
    OfferStateMachine,
    TransactionStateMachine,
    derive_effective_status,
    validate_transition,
)

__all__ = [
    "ListingStatus",
    "OfferStatus",
    "TransactionStatus",
    "AuthorizationError",
    "ConflictError",
    "ExchangeError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "ValidationError",
    "NotificationDispatcher",
    "TransitionEvent",
    "AlertStateMachine",
    "ListingStateMachine",
    "OfferStateMachine",
    "TransactionStateMachine",
    "derive_effective_status",
    "validate_transition",
]
