"""Lifecycle State Machine Guards.

Uses python-statemachine to enforce legal state transitions at the domain
level. No matter what the API or a background job does, an illegal
transition (e.g., completed -> disputed) raises TransitionNotAllowed.

A machine is instantiated per entity at its current stored status and is
fired before the repository performs the compare-and-set write.

Transaction transition table:
    pending      -> in_progress  (progress)       one of payment/delivery recorded
    pending      -> completed    (complete)       payment AND delivery recorded
    in_progress  -> completed    (complete)
    pending      -> disputed     (dispute)
    in_progress  -> disputed     (dispute)
    pending      -> cancelled    (cancel)         before any payment or delivery
    disputed     -> completed    (resolve)

The stored transaction status never holds in_progress; that state is
derived from the payment/delivery flags by derive_effective_status() and
the machine is always started from the effective status.

Moderation overrides (forced listing removal, forced transaction
cancellation) do not go through these machines. They live in the
repositories and are only called by the ModerationService.
"""

from __future__ import annotations

from statemachine import State, StateMachine

from marketplace_exchange.domain.enums import (
    DeliveryStatus,
    PaymentStatus,
    TransactionStatus,
)


class _StatusGuard:
    """Shared constructor and helpers for the lifecycle machines."""

    def __init__(self, current_status: str | None = None) -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: A stored status value (e.g., "pending"). Defaults
                to the machine's initial state.
        """
        if current_status is not None:
            valid_values = {s.value for s in self.states}
            if current_status not in valid_values:
                valid = ", ".join(sorted(valid_values))
                raise ValueError(
                    f"Unknown status '{current_status}'. Valid states: {valid}"
                )
            super().__init__(start_value=current_status)
        else:
            super().__init__()

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches the status enums)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.name for event in self.allowed_events]


class ListingStateMachine(_StatusGuard, StateMachine):
    """Guards listing lifecycle transitions."""

    active = State("Active", value="active", initial=True)
    sold = State("Sold", value="sold")
    removed = State("Removed", value="removed", final=True)

    sell = active.to(sold)
    relist = sold.to(active)
    takedown = active.to(removed) | sold.to(removed)


class OfferStateMachine(_StatusGuard, StateMachine):
    """Guards offer lifecycle transitions. Every state but pending is final."""

    pending = State("Pending", value="pending", initial=True)
    accepted = State("Accepted", value="accepted", final=True)
    rejected = State("Rejected", value="rejected", final=True)
    countered = State("Countered", value="countered", final=True)
    expired = State("Expired", value="expired", final=True)
    withdrawn = State("Withdrawn", value="withdrawn", final=True)

    accept = pending.to(accepted)
    reject = pending.to(rejected)
    counter = pending.to(countered)
    expire = pending.to(expired)
    withdraw = pending.to(withdrawn)


class TransactionStateMachine(_StatusGuard, StateMachine):
    """Guards transaction lifecycle transitions (see module docstring)."""

    pending = State("Pending", value="pending", initial=True)
    in_progress = State("In Progress", value="in_progress")
    completed = State("Completed", value="completed", final=True)
    disputed = State("Disputed", value="disputed")
    cancelled = State("Cancelled", value="cancelled", final=True)

    progress = pending.to(in_progress)
    complete = pending.to(completed) | in_progress.to(completed)
    dispute = pending.to(disputed) | in_progress.to(disputed)
    cancel = pending.to(cancelled)
    resolve = disputed.to(completed)


class AlertStateMachine(_StatusGuard, StateMachine):
    """Guards fraud alert triage transitions."""

    new = State("New", value="new", initial=True)
    reviewing = State("Reviewing", value="reviewing")
    resolved = State("Resolved", value="resolved", final=True)
    dismissed = State("Dismissed", value="dismissed", final=True)

    start_review = new.to(reviewing)
    resolve = new.to(resolved) | reviewing.to(resolved)
    dismiss = new.to(dismissed) | reviewing.to(dismissed)


def derive_effective_status(
    status: str,
    payment_status: str,
    delivery_status: str,
) -> TransactionStatus:
    """Compute the effective transaction status from the stored columns.

    Terminal and disputed statuses are authoritative. Otherwise the flags
    decide: both recorded means the completion write is due, exactly one
    means in_progress.
    """
    stored = TransactionStatus(status)
    if stored in (
        TransactionStatus.COMPLETED,
        TransactionStatus.CANCELLED,
        TransactionStatus.DISPUTED,
    ):
        return stored

    paid = payment_status == PaymentStatus.PAID
    delivered = delivery_status == DeliveryStatus.DELIVERED
    if paid and delivered:
        return TransactionStatus.COMPLETED
    if paid or delivered:
        return TransactionStatus.IN_PROGRESS
    return TransactionStatus.PENDING


def validate_transition(
    machine_cls: type[StateMachine],
    current_status: str,
    event_name: str,
) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns
    the resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = machine_cls(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
