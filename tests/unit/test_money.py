"""Unit tests for the money helpers in ledger_kernel.db.types."""

from decimal import Decimal

import pytest

from ledger_kernel.db.types import round_money, to_money, validate_currency


class TestToMoney:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (Decimal("12.50"), Decimal("12.50")),
            ("12.5", Decimal("12.5")),
            (7, Decimal("7")),
            (None, Decimal("0")),
        ],
    )
    def test_accepted_inputs(self, value, expected):
        assert to_money(value) == expected

    def test_float_rejected(self):
        with pytest.raises(TypeError, match="floats"):
            to_money(0.1)

    def test_bool_rejected(self):
        with pytest.raises(TypeError, match="booleans"):
            to_money(True)

    def test_garbage_string_rejected(self):
        with pytest.raises(ValueError, match="Not a monetary amount"):
            to_money("ten naira")

    @pytest.mark.parametrize("value", ["NaN", "Infinity", Decimal("-Infinity")])
    def test_non_finite_rejected(self, value):
        with pytest.raises(ValueError, match="finite"):
            to_money(value)


class TestRoundMoney:
    def test_half_up(self):
        assert round_money(Decimal("2.345")) == Decimal("2.35")
        assert round_money(Decimal("-2.345")) == Decimal("-2.35")

    def test_decimal_places(self):
        assert round_money(Decimal("1.23456"), 4) == Decimal("1.2346")
        assert round_money(Decimal("1.5"), 0) == Decimal("2")

    def test_result_has_fixed_exponent(self):
        assert round_money(Decimal("3")).as_tuple().exponent == -2


class TestValidateCurrency:
    def test_normalizes_case_and_whitespace(self):
        assert validate_currency(" ngn ") == "NGN"

    @pytest.mark.parametrize("code", ["", "NG", "NAIRA", "N1N"])
    def test_invalid_codes(self, code):
        with pytest.raises(ValueError, match="ISO 4217"):
            validate_currency(code)
