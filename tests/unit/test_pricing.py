"""
Tests for line pricing: subtotal, discount, tax and rounding.

Money is Decimal end to end, rounded half-up once per line to the
currency's minor units.
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from quote_kernel.domain.currency import CurrencyPolicy, round_money
from quote_kernel.domain.pricing import (
    NO_DISCOUNT,
    Discount,
    DiscountType,
    calculate_discount,
    calculate_line,
    is_tax_exempt,
    parse_discount,
    to_decimal,
)
from quote_kernel.exceptions import InvalidCurrencyError, ValidationError


class TestCalculateLine:
    """Tax-exclusive and tax-inclusive line arithmetic."""

    def test_forty_hours_at_one_fifty(self):
        """40 x 150.00 @ 15% -> 6000.00 / 900.00 / 6900.00."""
        result = calculate_line(Decimal("40"), Decimal("150.00"), tax_rate=Decimal("0.15"))

        assert result.subtotal == Decimal("6000.00")
        assert result.discount_amount == Decimal("0.00")
        assert result.taxable_amount == Decimal("6000.00")
        assert result.tax_amount == Decimal("900.00")
        assert result.total_amount == Decimal("6900.00")

    def test_subtotal_rounds_half_up(self):
        """0.5 cent rounds away from zero."""
        result = calculate_line(Decimal("1"), Decimal("0.125"))
        assert result.subtotal == Decimal("0.13")

    def test_tax_rounds_half_up(self):
        """10.10 x 15% = 1.515 -> 1.52."""
        result = calculate_line(Decimal("1"), Decimal("10.10"), tax_rate=Decimal("0.15"))
        assert result.tax_amount == Decimal("1.52")
        assert result.total_amount == Decimal("11.62")

    def test_percentage_discount(self):
        discount = Discount(DiscountType.PERCENTAGE, Decimal("10"))
        result = calculate_line(
            Decimal("10"), Decimal("100"), discount=discount, tax_rate=Decimal("0.15"),
        )
        assert result.subtotal == Decimal("1000.00")
        assert result.discount_amount == Decimal("100.00")
        assert result.taxable_amount == Decimal("900.00")
        assert result.tax_amount == Decimal("135.00")
        assert result.total_amount == Decimal("1035.00")

    def test_fixed_discount_capped_at_subtotal(self):
        discount = Discount(DiscountType.FIXED, Decimal("500"))
        result = calculate_line(Decimal("1"), Decimal("200"), discount=discount)
        assert result.discount_amount == Decimal("200.00")
        assert result.taxable_amount == Decimal("0.00")
        assert result.total_amount == Decimal("0.00")

    def test_tax_inclusive_extracts_tax(self):
        """115.00 gross at 15% -> 100.00 taxable + 15.00 tax."""
        result = calculate_line(
            Decimal("1"), Decimal("115.00"), tax_rate=Decimal("0.15"), tax_inclusive=True,
        )
        assert result.taxable_amount == Decimal("100.00")
        assert result.tax_amount == Decimal("15.00")
        assert result.total_amount == Decimal("115.00")

    def test_tax_inclusive_parts_sum_to_gross(self):
        """Inclusive tax is the remainder, so the parts reproduce the gross."""
        result = calculate_line(
            Decimal("3"), Decimal("33.33"), tax_rate=Decimal("0.15"), tax_inclusive=True,
        )
        assert result.taxable_amount + result.tax_amount == result.total_amount
        assert result.total_amount == Decimal("99.99")

    def test_zero_rate_has_no_tax(self):
        result = calculate_line(Decimal("2"), Decimal("50"), tax_rate=Decimal("0"))
        assert result.tax_amount == Decimal("0.00")
        assert result.total_amount == Decimal("100.00")

    def test_tax_exempt_line_has_no_tax(self):
        result = calculate_line(
            Decimal("2"), Decimal("50"), tax_rate=Decimal("0.15"), tax_exempt=True,
        )
        assert result.tax_amount == Decimal("0.00")
        assert result.total_amount == Decimal("100.00")

    def test_zero_decimal_currency(self):
        """JPY has no minor units: every amount is a whole number."""
        result = calculate_line(
            Decimal("3"), Decimal("333.5"), tax_rate=Decimal("0.10"), decimal_places=0,
        )
        assert result.subtotal == Decimal("1001")
        assert result.tax_amount == Decimal("100")
        assert result.total_amount == Decimal("1101")

    def test_float_inputs_go_through_str(self):
        """0.1 as a float is taken as Decimal('0.1'), not its binary expansion."""
        result = calculate_line(3, 0.1, tax_rate=0.15)
        assert result.subtotal == Decimal("0.30")
        assert result.tax_amount == Decimal("0.05")


class TestValidation:
    """Out-of-range inputs raise ValidationError."""

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            calculate_line(Decimal("-1"), Decimal("10"))
        assert exc_info.value.field == "quantity"

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            calculate_line(Decimal("1"), Decimal("-10"))
        assert exc_info.value.field == "unit_price"

    @pytest.mark.parametrize("rate", ["-0.01", "1.01", "15"])
    def test_tax_rate_outside_unit_interval_rejected(self, rate):
        with pytest.raises(ValidationError):
            calculate_line(Decimal("1"), Decimal("10"), tax_rate=Decimal(rate))

    @pytest.mark.parametrize("value", ["-1", "100.01"])
    def test_percentage_outside_range_rejected(self, value):
        with pytest.raises(ValidationError):
            parse_discount("percentage", value)

    def test_negative_fixed_discount_rejected(self):
        with pytest.raises(ValidationError):
            parse_discount("fixed", "-5")

    def test_unknown_discount_type_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_discount("bogus", "5")
        assert exc_info.value.field == "discount_type"

    @pytest.mark.parametrize("value", [True, "abc", float("nan"), "Infinity", None, [1]])
    def test_to_decimal_rejects_non_numbers(self, value):
        with pytest.raises(ValidationError):
            to_decimal(value, "amount")


class TestDiscount:

    def test_no_discount_is_zero(self):
        assert calculate_discount(Decimal("100.00"), NO_DISCOUNT) == Decimal("0.00")

    def test_discount_never_exceeds_base(self):
        discount = Discount(DiscountType.PERCENTAGE, Decimal("100"))
        assert calculate_discount(Decimal("42.42"), discount) == Decimal("42.42")

    def test_none_type_with_value_is_no_discount(self):
        assert parse_discount("none", "10").is_none


class TestTaxExemption:

    def test_configured_types_are_exempt(self):
        exempt = frozenset({"travel", "mileage", "expenses"})
        assert is_tax_exempt("travel", exempt)
        assert is_tax_exempt("Mileage", exempt)
        assert not is_tax_exempt("service", exempt)
        assert not is_tax_exempt(None, exempt)


class TestCurrencyPolicy:

    def test_builtin_precision(self):
        policy = CurrencyPolicy()
        assert policy.decimal_places("NZD") == 2
        assert policy.decimal_places("JPY") == 0
        assert policy.decimal_places("KWD") == 3

    def test_override_wins(self):
        policy = CurrencyPolicy(overrides={"JPY": 2})
        assert policy.decimal_places("jpy") == 2

    @pytest.mark.parametrize("code", ["", "US", "USDD", "12A", None])
    def test_invalid_code_rejected(self, code):
        with pytest.raises(InvalidCurrencyError):
            CurrencyPolicy().validate(code)

    @pytest.mark.parametrize("code", ["XXX", "ABC", "XTS", "xau"])
    def test_unknown_code_rejected(self, code):
        with pytest.raises(InvalidCurrencyError):
            CurrencyPolicy().validate(code)
        with pytest.raises(InvalidCurrencyError):
            CurrencyPolicy().decimal_places(code)

    def test_override_registers_private_code(self):
        policy = CurrencyPolicy(overrides={"ABC": 1})
        assert policy.validate("abc") == "ABC"
        assert policy.decimal_places("ABC") == 1

    def test_four_decimal_unit_of_account(self):
        assert CurrencyPolicy().decimal_places("CLF") == 4

    def test_round_money_half_up(self):
        assert round_money(Decimal("2.345")) == Decimal("2.35")
        assert round_money(Decimal("2.5"), 0) == Decimal("3")


money = st.decimals(min_value=Decimal("0"), max_value=Decimal("100000"), places=2)
quantities = st.decimals(min_value=Decimal("0"), max_value=Decimal("1000"), places=3)
rates = st.decimals(min_value=Decimal("0"), max_value=Decimal("1"), places=4)


class TestLineProperties:
    """Properties that hold for every valid line."""

    @settings(max_examples=200, deadline=None)
    @given(quantity=quantities, price=money, rate=rates, inclusive=st.booleans())
    def test_parts_are_consistent(self, quantity, price, rate, inclusive):
        result = calculate_line(quantity, price, tax_rate=rate, tax_inclusive=inclusive)

        for amount in (result.subtotal, result.tax_amount, result.total_amount):
            assert amount == round_money(amount)
            assert amount >= 0
        assert result.taxable_amount + result.tax_amount == result.total_amount
        assert result.subtotal - result.discount_amount >= result.taxable_amount

    @settings(max_examples=200, deadline=None)
    @given(quantity=quantities, price=money, rate=rates, pct=st.decimals(min_value=0, max_value=100, places=2))
    def test_deterministic(self, quantity, price, rate, pct):
        discount = Discount(DiscountType.PERCENTAGE, pct)
        first = calculate_line(quantity, price, discount=discount, tax_rate=rate)
        second = calculate_line(quantity, price, discount=discount, tax_rate=rate)
        assert first == second
        assert 0 <= first.discount_amount <= first.subtotal
