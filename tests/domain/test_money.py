"""Tests for amount parsing and rounding (claims_kernel/domain/money.py)."""

from decimal import Decimal

import pytest
from hypothesis import given, strategies as st

from claims_kernel.domain.money import round_amount, sum_amounts, to_amount
from claims_kernel.exceptions import ValidationError


class TestToAmount:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("1500", Decimal("1500.00")),
            (1500, Decimal("1500.00")),
            (Decimal("10.005"), Decimal("10.01")),
            ("0", Decimal("0.00")),
            (19.99, Decimal("19.99")),
        ],
    )
    def test_accepts_numeric_input(self, raw, expected):
        assert to_amount(raw) == expected

    @pytest.mark.parametrize("raw", [None, True, "abc", "NaN", "Infinity", ""])
    def test_rejects_non_numeric(self, raw):
        with pytest.raises(ValidationError):
            to_amount(raw, "amount_claimed")

    def test_negative_rejected_with_field(self):
        with pytest.raises(ValidationError) as exc_info:
            to_amount("-0.01", "amount_claimed")
        assert exc_info.value.field == "amount_claimed"
        assert exc_info.value.code == "VALIDATION_ERROR"


class TestSumAmounts:

    def test_empty_is_zero(self):
        assert sum_amounts([]) == Decimal("0.00")

    @given(st.lists(st.decimals(min_value=0, max_value=10**9, places=2), max_size=20))
    def test_sum_matches_builtin(self, amounts):
        assert sum_amounts(amounts) == round_amount(sum(amounts, Decimal("0")))
