"""
Test suite for monetary amount handling

Amounts are exact 2-digit Decimals; floats and over-precise values are rejected.
"""

import pytest
from decimal import Decimal

from flashpay.currency import to_amount, AMOUNT_QUANTUM
from flashpay.exceptions import InvalidAmount


class TestToAmount:
    """Test conversion of raw values into amounts"""

    def test_decimal_is_quantized(self):
        assert to_amount(Decimal('40')) == Decimal('40.00')
        assert to_amount(Decimal('40')).as_tuple().exponent == -2

    def test_int_and_string_accepted(self):
        assert to_amount(100) == Decimal('100.00')
        assert to_amount("12.5") == Decimal('12.50')
        assert to_amount("  7.25 ") == Decimal('7.25')

    def test_negative_values_convert(self):
        """Sign checks belong to callers, conversion keeps the sign"""
        assert to_amount("-3.10") == Decimal('-3.10')

    def test_float_rejected(self):
        with pytest.raises(InvalidAmount):
            to_amount(0.1)

    def test_bool_rejected(self):
        with pytest.raises(InvalidAmount):
            to_amount(True)

    def test_too_many_decimal_places(self):
        with pytest.raises(InvalidAmount) as exc_info:
            to_amount("10.001")
        assert "decimal places" in exc_info.value.message

    def test_trailing_zeros_allowed(self):
        assert to_amount("10.500") == Decimal('10.50')

    @pytest.mark.parametrize("value", ["abc", "", "1.2.3", None])
    def test_non_numeric_rejected(self, value):
        with pytest.raises(InvalidAmount):
            to_amount(value)

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_rejected(self, value):
        with pytest.raises(InvalidAmount):
            to_amount(value)

    def test_quantum(self):
        assert AMOUNT_QUANTUM == Decimal('0.01')

    @pytest.mark.parametrize("value", ["1e30", Decimal("1E+27"), "9" * 40])
    def test_magnitude_beyond_precision_rejected(self, value):
        with pytest.raises(InvalidAmount) as exc_info:
            to_amount(value)
        assert "magnitude" in exc_info.value.message

    def test_largest_representable_amount(self):
        assert to_amount("9" * 26) == Decimal("9" * 26 + ".00")
