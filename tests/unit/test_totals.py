"""
Tests for quote-level aggregation.

Quote totals are sums of already-rounded line values; a quote-level
discount is applied to the summed taxable base and tax is rounded once.
"""

from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from quote_kernel.domain.pricing import Discount, DiscountType, calculate_line
from quote_kernel.domain.totals import PricedLine, aggregate_quote

RATE = Decimal("0.15")


def priced(quantity, price, rate=RATE, exempt=False, inclusive=False, discount=None, decimal_places=2):
    kwargs = {"discount": discount} if discount is not None else {}
    calc = calculate_line(
        Decimal(quantity), Decimal(price), tax_rate=rate,
        tax_inclusive=inclusive, tax_exempt=exempt, decimal_places=decimal_places, **kwargs,
    )
    return PricedLine(calc, rate, inclusive, exempt)


class TestAggregation:

    def test_single_line_example(self):
        totals = aggregate_quote([priced("40", "150.00")])
        assert totals.subtotal == Decimal("6000.00")
        assert totals.tax_amount == Decimal("900.00")
        assert totals.total_amount == Decimal("6900.00")

    def test_two_line_example(self):
        """Adding 20 x 100.00 @ 15% -> 8000.00 / 1200.00 / 9200.00."""
        totals = aggregate_quote([priced("40", "150.00"), priced("20", "100.00")])
        assert totals.subtotal == Decimal("8000.00")
        assert totals.tax_amount == Decimal("1200.00")
        assert totals.total_amount == Decimal("9200.00")

    def test_sums_rounded_line_values_not_raw_products(self):
        """Three lines of 0.333 each: each rounds to 0.33, the sum is 0.99."""
        lines = [priced("1", "0.333", rate=Decimal("0")) for _ in range(3)]
        totals = aggregate_quote(lines)
        assert totals.subtotal == Decimal("0.99")
        assert totals.total_amount == Decimal("0.99")

    def test_line_discounts_are_reported(self):
        discount = Discount(DiscountType.FIXED, Decimal("50"))
        totals = aggregate_quote([priced("1", "200", discount=discount)])
        assert totals.discount_amount == Decimal("50.00")
        assert totals.line_discount_amount == Decimal("50.00")
        assert totals.quote_discount_amount == Decimal("0.00")
        assert totals.taxable_amount == Decimal("150.00")

    def test_empty_quote_is_all_zeros(self):
        totals = aggregate_quote([])
        assert totals.subtotal == Decimal("0.00")
        assert totals.tax_amount == Decimal("0.00")
        assert totals.total_amount == Decimal("0.00")
        assert totals.tax_breakdown == ()

    def test_zero_decimal_places(self):
        totals = aggregate_quote(
            [priced("3", "333.5", rate=Decimal("0.10"), decimal_places=0)], decimal_places=0,
        )
        assert totals.total_amount == Decimal("1101")


class TestQuoteDiscount:

    def test_percentage_quote_discount_with_mixed_rates(self):
        lines = [priced("40", "150.00"), priced("1", "1000.00", exempt=True)]
        totals = aggregate_quote(
            lines, quote_discount=Discount(DiscountType.PERCENTAGE, Decimal("10")),
        )

        assert totals.subtotal == Decimal("7000.00")
        assert totals.quote_discount_amount == Decimal("700.00")
        assert totals.discount_amount == Decimal("700.00")
        assert totals.taxable_amount == Decimal("6300.00")
        assert totals.tax_amount == Decimal("810.00")
        assert totals.total_amount == Decimal("7110.00")

        by_rate = {b.rate: b for b in totals.tax_breakdown}
        assert by_rate[Decimal("0")].taxable_amount == Decimal("900.00")
        assert by_rate[RATE].taxable_amount == Decimal("5400.00")
        assert by_rate[RATE].tax_amount == Decimal("810.00")

    def test_fixed_quote_discount_capped_at_taxable(self):
        totals = aggregate_quote(
            [priced("1", "100.00")],
            quote_discount=Discount(DiscountType.FIXED, Decimal("500")),
        )
        assert totals.quote_discount_amount == Decimal("100.00")
        assert totals.taxable_amount == Decimal("0.00")
        assert totals.tax_amount == Decimal("0.00")
        assert totals.total_amount == Decimal("0.00")

    def test_tax_rounded_once_at_quote_level(self):
        """With a quote discount, tax comes from the scaled base in one rounding."""
        lines = [priced("1", "10.10"), priced("1", "10.10")]
        totals = aggregate_quote(
            lines, quote_discount=Discount(DiscountType.FIXED, Decimal("0.00")),
        )
        # Zero discount means no quote-level adjustment at all.
        assert totals.tax_amount == Decimal("3.04")

        totals = aggregate_quote(
            lines, quote_discount=Discount(DiscountType.PERCENTAGE, Decimal("50")),
        )
        # Taxable 20.20 -> 10.10; tax 10.10 x 0.15 = 1.515 -> 1.52.
        assert totals.taxable_amount == Decimal("10.10")
        assert totals.tax_amount == Decimal("1.52")


lines_strategy = st.lists(
    st.tuples(
        st.decimals(min_value=0, max_value=500, places=2),
        st.decimals(min_value=0, max_value=5000, places=2),
        st.sampled_from([Decimal("0"), Decimal("0.10"), Decimal("0.15")]),
    ),
    min_size=1,
    max_size=8,
)


class TestAggregationProperties:

    @settings(max_examples=150, deadline=None)
    @given(lines=lines_strategy)
    def test_totals_equal_sum_of_lines(self, lines):
        priced_lines = [priced(q, p, rate=r) for q, p, r in lines]
        totals = aggregate_quote(priced_lines)

        assert totals.subtotal == sum(l.calculation.subtotal for l in priced_lines)
        assert totals.tax_amount == sum(l.calculation.tax_amount for l in priced_lines)
        assert totals.total_amount == totals.taxable_amount + totals.tax_amount

    @settings(max_examples=150, deadline=None)
    @given(lines=lines_strategy, pct=st.decimals(min_value=0, max_value=100, places=1))
    def test_quote_discount_never_increases_taxable(self, lines, pct):
        priced_lines = [priced(q, p, rate=r) for q, p, r in lines]
        plain = aggregate_quote(priced_lines)
        discounted = aggregate_quote(
            priced_lines, quote_discount=Discount(DiscountType.PERCENTAGE, pct),
        )
        assert discounted.taxable_amount <= plain.taxable_amount
        assert discounted.total_amount == discounted.taxable_amount + discounted.tax_amount
        assert discounted.tax_amount >= 0
