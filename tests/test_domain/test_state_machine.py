"""Tests for the lifecycle state machine guards.

These tests verify that:
    1. All valid transitions are allowed.
    2. All invalid transitions are blocked.
    3. The convenience function validate_transition works.
    4. The effective transaction status is derived from the flags.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from marketplace_exchange.domain.state_machine import (
    AlertStateMachine,
    ListingStateMachine,
    OfferStateMachine,
    TransactionStateMachine,
    derive_effective_status,
    validate_transition,
)


class TestListingMachine:
    def test_sell_and_relist(self) -> None:
        sm = ListingStateMachine("active")
        sm.sell()
        assert sm.status == "sold"

        sm.relist()
        assert sm.status == "active"

    def test_cannot_sell_twice(self) -> None:
        sm = ListingStateMachine("sold")
        with pytest.raises(TransitionNotAllowed):
            sm.sell()

    def test_removed_is_final(self) -> None:
        sm = ListingStateMachine("removed")
        assert sm.get_allowed_events() == []


class TestOfferMachine:
    @pytest.mark.parametrize(
        ("event", "expected"),
        [
            ("accept", "accepted"),
            ("reject", "rejected"),
            ("counter", "countered"),
            ("expire", "expired"),
            ("withdraw", "withdrawn"),
        ],
    )
    def test_pending_exits(self, event: str, expected: str) -> None:
        assert validate_transition(OfferStateMachine, "pending", event) == expected

    @pytest.mark.parametrize("status", ["accepted", "rejected", "countered", "expired", "withdrawn"])
    def test_terminal_offers_cannot_be_accepted(self, status: str) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition(OfferStateMachine, status, "accept")


class TestTransactionHappyPath:
    def test_progress_then_complete(self) -> None:
        sm = TransactionStateMachine("pending")
        sm.progress()
        assert sm.status == "in_progress"

        sm.complete()
        assert sm.status == "completed"

    def test_complete_directly_from_pending(self) -> None:
        assert validate_transition(TransactionStateMachine, "pending", "complete") == "completed"


class TestTransactionDisputePath:
    def test_dispute_from_pending(self) -> None:
        assert validate_transition(TransactionStateMachine, "pending", "dispute") == "disputed"

    def test_dispute_from_in_progress(self) -> None:
        assert validate_transition(TransactionStateMachine, "in_progress", "dispute") == "disputed"

    def test_resolve_completes(self) -> None:
        assert validate_transition(TransactionStateMachine, "disputed", "resolve") == "completed"

    def test_no_dispute_after_completion(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition(TransactionStateMachine, "completed", "dispute")

    def test_disputed_cannot_be_cancelled(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition(TransactionStateMachine, "disputed", "cancel")


class TestTransactionCancellation:
    def test_cancel_from_pending(self) -> None:
        assert validate_transition(TransactionStateMachine, "pending", "cancel") == "cancelled"

    def test_cannot_cancel_in_progress(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition(TransactionStateMachine, "in_progress", "cancel")

    def test_cancelled_is_final(self) -> None:
        sm = TransactionStateMachine("cancelled")
        assert sm.get_allowed_events() == []


class TestAlertMachine:
    def test_review_then_resolve(self) -> None:
        sm = AlertStateMachine("new")
        sm.start_review()
        sm.resolve()
        assert sm.status == "resolved"

    def test_dismiss_straight_from_new(self) -> None:
        assert validate_transition(AlertStateMachine, "new", "dismiss") == "dismissed"

    def test_closed_alert_cannot_reopen(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition(AlertStateMachine, "dismissed", "resolve")


class TestDeriveEffectiveStatus:
    @pytest.mark.parametrize(
        ("payment", "delivery", "expected"),
        [
            ("pending", "pending", "pending"),
            ("pending", "in_transit", "pending"),
            ("paid", "pending", "in_progress"),
            ("pending", "delivered", "in_progress"),
            ("paid", "delivered", "completed"),
        ],
    )
    def test_flags_decide_open_transactions(
        self, payment: str, delivery: str, expected: str
    ) -> None:
        assert derive_effective_status("pending", payment, delivery) == expected

    @pytest.mark.parametrize("stored", ["completed", "cancelled", "disputed"])
    def test_stored_status_wins(self, stored: str) -> None:
        assert derive_effective_status(stored, "paid", "pending") == stored


class TestValidateTransition:
    def test_unknown_status_raises_value_error(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            validate_transition(TransactionStateMachine, "NONEXISTENT", "cancel")

    def test_unknown_event_raises_value_error(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            validate_transition(TransactionStateMachine, "pending", "teleport")
