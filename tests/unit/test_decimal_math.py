"""
Unit tests for 4-decimal string arithmetic.

Money equality is string equality of canonical forms, so every helper must
return exactly four fraction digits.
"""

from decimal import Decimal

import pytest

from posting_spine.domain.decimal_math import (
    ZERO_AMOUNT,
    add_decimal,
    amounts_equal,
    compare_decimal,
    format_amount,
    from_scaled_int,
    is_zero,
    negate_decimal,
    parse_amount,
    subtract_decimal,
    sum_decimals,
    to_scaled_int,
)
from posting_spine.exceptions import InvalidAmountError


class TestScaledIntegers:
    def test_to_scaled_int(self):
        assert to_scaled_int("1.2345") == 12345
        assert to_scaled_int("100") == 1_000_000
        assert to_scaled_int(Decimal("0.0001")) == 1

    def test_half_up_rounding(self):
        assert to_scaled_int("0.00005") == 1
        assert to_scaled_int("0.00004") == 0

    def test_from_scaled_int_pads_fraction(self):
        assert from_scaled_int(1) == "0.0001"
        assert from_scaled_int(1_000_000) == "100.0000"
        assert from_scaled_int(0) == ZERO_AMOUNT

    def test_negative_values(self):
        assert from_scaled_int(-100) == "-0.0100"
        assert from_scaled_int(-12345) == "-1.2345"


class TestArithmetic:
    def test_add(self):
        assert add_decimal("100.00", "0.0050") == "100.0050"

    def test_add_avoids_float_error(self):
        assert add_decimal("0.1", "0.2") == "0.3000"

    def test_subtract(self):
        assert subtract_decimal("100.0000", "99.9900") == "0.0100"
        assert subtract_decimal("99.9900", "100.0000") == "-0.0100"

    def test_negate(self):
        assert negate_decimal("5") == "-5.0000"
        assert negate_decimal("-5") == "5.0000"

    def test_sum_empty_is_zero(self):
        assert sum_decimals([]) == ZERO_AMOUNT

    def test_sum_many(self):
        assert sum_decimals(["0.0001"] * 10_000) == "1.0000"

    def test_compare(self):
        assert compare_decimal("1", "1.0000") == 0
        assert compare_decimal("1.0001", "1") == 1
        assert compare_decimal("0.9999", "1") == -1

    def test_amounts_equal_uses_canonical_form(self):
        assert amounts_equal("100", "100.0000")
        assert not amounts_equal("100", "100.0001")

    def test_is_zero(self):
        assert is_zero("0")
        assert is_zero("-0.0000")
        assert not is_zero("0.0001")

    def test_format_amount(self):
        assert format_amount(42) == "42.0000"
        assert format_amount("3.5") == "3.5000"


class TestParseAmount:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("100", "100.0000"),
            ("100.5", "100.5000"),
            ("0.0001", "0.0001"),
            ("0", "0.0000"),
            (" 12.34 ", "12.3400"),
            (7, "7.0000"),
            (Decimal("1.2300"), "1.2300"),
            ("999999999999999.9999", "999999999999999.9999"),
        ],
    )
    def test_valid_amounts(self, raw, expected):
        assert parse_amount(raw) == expected

    @pytest.mark.parametrize(
        "raw",
        ["-1", "-0.0001", "abc", "", "1.23456", "NaN", "Infinity", "1e400", "1000000000000000"],
    )
    def test_invalid_amounts(self, raw):
        with pytest.raises(InvalidAmountError):
            parse_amount(raw)

    def test_float_rejected(self):
        with pytest.raises(InvalidAmountError, match="decimal string"):
            parse_amount(0.1)

    def test_bool_rejected(self):
        with pytest.raises(InvalidAmountError):
            parse_amount(True)

    def test_error_carries_reason(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            parse_amount("-5")
        assert exc_info.value.code == "INVALID_AMOUNT"
        assert exc_info.value.amount == "-5"
        assert "negative" in exc_info.value.reason
