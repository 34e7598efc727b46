"""Tests for domain enumerations."""

from __future__ import annotations

from marketplace_exchange.domain.enums import (
    TERMINAL_TRANSACTION_STATUSES,
    AlertStatus,
    EventType,
    ListingStatus,
    OfferStatus,
    ReviewTargetType,
    TransactionStatus,
)


class TestListingStatus:
    def test_all_statuses_exist(self) -> None:
        assert {s.value for s in ListingStatus} == {"active", "sold", "removed"}

    def test_status_is_str_enum(self) -> None:
        assert isinstance(ListingStatus.ACTIVE, str)
        assert ListingStatus.SOLD == "sold"


class TestOfferStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {"pending", "accepted", "rejected", "countered", "expired", "withdrawn"}
        assert {s.value for s in OfferStatus} == expected


class TestTransactionStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {"pending", "in_progress", "completed", "disputed", "cancelled"}
        assert {s.value for s in TransactionStatus} == expected

    def test_terminal_statuses(self) -> None:
        assert TERMINAL_TRANSACTION_STATUSES == {"completed", "cancelled"}
        assert TransactionStatus.DISPUTED not in TERMINAL_TRANSACTION_STATUSES


class TestEventType:
    def test_values_match_names(self) -> None:
        for event_type in EventType:
            assert event_type.value == event_type.name

    def test_event_type_is_str_enum(self) -> None:
        assert isinstance(EventType.OFFER_ACCEPTED, str)


class TestMiscEnums:
    def test_review_targets(self) -> None:
        assert ReviewTargetType.ITEM == "item"
        assert ReviewTargetType.USER == "user"

    def test_alert_statuses(self) -> None:
        assert [s.value for s in AlertStatus] == ["new", "reviewing", "resolved", "dismissed"]
