"""Tests for money parsing shared by the services."""

from __future__ import annotations

from decimal import Decimal

import pytest

from marketplace_exchange.domain.exceptions import ValidationError
from marketplace_exchange.services.base import parse_money, require_text


class TestParseMoney:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("90", "90.00"), ("90.5", "90.50"), (Decimal("0.01"), "0.01"), (12, "12.00")],
    )
    def test_normalizes_to_cents(self, raw, expected: str) -> None:  # noqa: ANN001
        assert parse_money(raw) == Decimal(expected)
        assert str(parse_money(raw)) == expected

    @pytest.mark.parametrize("raw", ["abc", "NaN", "Infinity", "1.005"])
    def test_rejects_bad_values(self, raw: str) -> None:
        with pytest.raises(ValidationError):
            parse_money(raw)


class TestRequireText:
    def test_strips(self) -> None:
        assert require_text("  hi  ", "body") == "hi"

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_blank(self, raw) -> None:  # noqa: ANN001
        with pytest.raises(ValidationError):
            require_text(raw, "body")
