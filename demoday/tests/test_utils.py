"""Tests for demoday.utils helpers."""
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from demoday.errors import InvalidAmount
from demoday.utils import add_months, from_cents, json_parse, month_start, to_cents, utcnow


class TestJsonParse:
    def test_valid_json(self):
        assert json_parse('{"a": 1}') == {"a": 1}

    def test_invalid_json_default(self):
        assert json_parse("not json") == {}

    def test_none_input(self):
        assert json_parse(None) == {}

    def test_custom_default(self):
        assert json_parse("bad", []) == []


class TestDates:
    def test_month_start(self):
        assert month_start(date(2026, 10, 17)) == date(2026, 10, 1)

    def test_add_months_rolls_year(self):
        assert add_months(date(2026, 12, 1), 1) == date(2027, 1, 1)
        assert add_months(date(2026, 1, 1), -1) == date(2025, 12, 1)

    def test_utcnow_is_naive(self):
        assert utcnow().tzinfo is None


class TestToCents:
    @pytest.mark.parametrize("amount,cents", [
        (Decimal("1"), 100),
        (Decimal("0.01"), 1),
        ("250000.50", 25_000_050),
        (3, 300),
        (0.1, 10),
        (Decimal("1.10"), 110),
    ])
    def test_valid(self, amount, cents):
        assert to_cents(amount) == cents

    @pytest.mark.parametrize("amount", [
        0, -1, Decimal("-0.01"), Decimal("0.001"), "1.234", "abc", "NaN", "Infinity", True,
    ])
    def test_invalid(self, amount):
        with pytest.raises(InvalidAmount):
            to_cents(amount)


class TestFromCents:
    def test_units(self):
        assert from_cents(12_345) == Decimal("123.45")

    def test_none(self):
        assert from_cents(None) is None
