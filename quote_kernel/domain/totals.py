"""
Totals -- aggregation of per-line results into quote totals.

Rounding contract
-----------------
Line values are rounded once, in ``pricing.calculate_line``.  This module
only adds them; it never re-derives anything from quantity x price.

When a quote-level discount is present it is applied to the sum of the
already-rounded line taxable amounts.  Quote tax is then computed once, at
the quote level, from those rounded line taxable amounts: each rate's
taxable sum is scaled by the post-discount ratio, multiplied by its rate,
and the grand sum is rounded a single time.  Without a quote-level
discount the line taxes are summed as-is.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from quote_kernel.domain.currency import round_money
from quote_kernel.domain.pricing import (
    NO_DISCOUNT,
    ZERO,
    Discount,
    LineCalculation,
    calculate_discount,
)


@dataclass(frozen=True)
class PricedLine:
    """A line's inputs relevant to aggregation plus its calculation."""

    calculation: LineCalculation
    tax_rate: Decimal
    tax_inclusive: bool = False
    tax_exempt: bool = False

    @property
    def effective_rate(self) -> Decimal:
        return ZERO if self.tax_exempt else self.tax_rate


@dataclass(frozen=True)
class TaxBreakdown:
    rate: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal


@dataclass(frozen=True)
class QuoteTotals:
    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    line_discount_amount: Decimal
    quote_discount_amount: Decimal
    tax_breakdown: tuple[TaxBreakdown, ...] = field(default_factory=tuple)


def _breakdown(lines: list[PricedLine]) -> dict[Decimal, list[Decimal]]:
    by_rate: dict[Decimal, list[Decimal]] = defaultdict(lambda: [ZERO, ZERO])
    for line in lines:
        bucket = by_rate[line.effective_rate]
        bucket[0] += line.calculation.taxable_amount
        bucket[1] += line.calculation.tax_amount
    return by_rate


def aggregate_quote(
    lines: Iterable[PricedLine],
    decimal_places: int = 2,
    quote_discount: Discount = NO_DISCOUNT,
) -> QuoteTotals:
    """Sum line results and apply an optional quote-level discount."""
    lines = list(lines)
    zero = round_money(ZERO, decimal_places)

    subtotal = sum((line.calculation.subtotal for line in lines), zero)
    line_discount = sum((line.calculation.discount_amount for line in lines), zero)
    line_taxable = sum((line.calculation.taxable_amount for line in lines), zero)
    line_tax = sum((line.calculation.tax_amount for line in lines), zero)

    by_rate = _breakdown(lines)

    if quote_discount.is_none or line_taxable == ZERO:
        breakdown = tuple(
            TaxBreakdown(rate=rate, taxable_amount=taxable, tax_amount=tax)
            for rate, (taxable, tax) in sorted(by_rate.items())
        )
        return QuoteTotals(
            subtotal=subtotal,
            discount_amount=line_discount,
            taxable_amount=line_taxable,
            tax_amount=line_tax,
            total_amount=line_taxable + line_tax,
            line_discount_amount=line_discount,
            quote_discount_amount=zero,
            tax_breakdown=breakdown,
        )

    quote_discount_amount = calculate_discount(line_taxable, quote_discount, decimal_places)
    taxable = line_taxable - quote_discount_amount
    ratio = taxable / line_taxable

    raw_tax = ZERO
    breakdown_items = []
    for rate, (rate_taxable, _) in sorted(by_rate.items()):
        scaled = rate_taxable * ratio
        raw_tax += scaled * rate
        breakdown_items.append(
            TaxBreakdown(
                rate=rate,
                taxable_amount=round_money(scaled, decimal_places),
                tax_amount=round_money(scaled * rate, decimal_places),
            )
        )
    tax = round_money(raw_tax, decimal_places)

    return QuoteTotals(
        subtotal=subtotal,
        discount_amount=line_discount + quote_discount_amount,
        taxable_amount=taxable,
        tax_amount=tax,
        total_amount=taxable + tax,
        line_discount_amount=line_discount,
        quote_discount_amount=quote_discount_amount,
        tax_breakdown=tuple(breakdown_items),
    )
