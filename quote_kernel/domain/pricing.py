"""
Pricing -- per-line money, discount and tax calculators.

Responsibility
--------------
Pure functions that turn ``(quantity, unit_price, discount, tax_rate,
tax_inclusive)`` into a ``LineCalculation``.  No I/O, no clock, no
configuration lookups: the caller resolves decimal places and tax
exemption before calling.

Invariants enforced
-------------------
* Arithmetic is ``Decimal`` only.  Floats are converted through ``str()``
  at the boundary so that ``0.1`` becomes ``Decimal("0.1")``.
* Rounding is half-up, applied at the line level to each component.
* ``0 <= discount_amount <= subtotal``.
* Tax-exclusive lines satisfy ``total = subtotal - discount + tax``.
* Tax-inclusive lines satisfy ``total = subtotal - discount`` and
  ``taxable + tax = total``.
* A zero rate or a tax-exempt line has ``tax_amount == 0``.

Failure modes
-------------
* Negative quantity or price  -> ``ValidationError``.
* Tax rate outside ``[0, 1]``  -> ``ValidationError``.
* Percentage outside ``[0, 100]`` or negative fixed discount
  -> ``ValidationError``.
* Non-finite or non-numeric input  -> ``ValidationError``.
* Fixed discount above ``MAX_FIXED_DISCOUNT``  -> ``ValidationError``.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from quote_kernel.domain.currency import round_money
from quote_kernel.exceptions import ValidationError

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

# Input ceilings.  With MAX_LINE_ITEMS lines every stored amount stays
# within NUMERIC(38, 9) and the 28-digit decimal context, so no product
# or sum is silently truncated.
MAX_QUANTITY = Decimal("1000000")
MAX_UNIT_PRICE = Decimal("1000000000")
MAX_FIXED_DISCOUNT = MAX_QUANTITY * MAX_UNIT_PRICE
MAX_EXCHANGE_RATE = Decimal("1000000")


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    NONE = "none"


@dataclass(frozen=True)
class Discount:
    """A discount rule: a percentage of the base, or a fixed amount."""

    type: DiscountType = DiscountType.NONE
    value: Decimal = ZERO

    @property
    def is_none(self) -> bool:
        return self.type == DiscountType.NONE or self.value == ZERO


NO_DISCOUNT = Discount()


@dataclass(frozen=True)
class LineCalculation:
    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def to_decimal(value: Any, field: str) -> Decimal:
    """
    Convert a boundary value to Decimal.

    Accepts Decimal, int, str and float (via ``str``).  Booleans, NaN and
    infinities are rejected.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number, got {value!r}", field=field) from None
    else:
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field)
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite, got {value!r}", field=field)
    return result


def parse_discount(discount_type: Any, value: Any, field: str = "discount") -> Discount:
    """Build and validate a Discount from raw type/value."""
    if discount_type is None:
        discount_type = DiscountType.NONE
    try:
        dtype = DiscountType(discount_type)
    except ValueError:
        raise ValidationError(
            f"{field}_type must be one of percentage, fixed, none; got {discount_type!r}",
            field=f"{field}_type",
        ) from None
    amount = ZERO if value is None else to_decimal(value, f"{field}_value")
    discount = Discount(type=dtype, value=amount)
    validate_discount(discount, field)
    return discount


def validate_discount(discount: Discount, field: str = "discount") -> None:
    if discount.type == DiscountType.PERCENTAGE:
        if discount.value < ZERO or discount.value > HUNDRED:
            raise ValidationError(
                f"{field} percentage must be within [0, 100], got {discount.value}",
                field=f"{field}_value",
            )
    elif discount.type == DiscountType.FIXED:
        if discount.value < ZERO:
            raise ValidationError(
                f"{field} fixed amount must not be negative, got {discount.value}",
                field=f"{field}_value",
            )
        if discount.value > MAX_FIXED_DISCOUNT:
            raise ValidationError(
                f"{field} fixed amount must not exceed {MAX_FIXED_DISCOUNT}, got {discount.value}",
                field=f"{field}_value",
            )


def validate_tax_rate(rate: Decimal, field: str = "tax_rate") -> None:
    if rate < ZERO or rate > ONE:
        raise ValidationError(
            f"{field} must be within [0, 1], got {rate}", field=field
        )


def calculate_discount(base: Decimal, discount: Discount, decimal_places: int = 2) -> Decimal:
    """
    Discount amount for ``base``.

    Percentage: ``round(base * value / 100)``.  Fixed: ``min(value, base)``.
    The result is never negative and never exceeds ``base``.
    """
    validate_discount(discount)
    if discount.is_none or base <= ZERO:
        return round_money(ZERO, decimal_places)
    if discount.type == DiscountType.PERCENTAGE:
        amount = round_money(base * discount.value / HUNDRED, decimal_places)
    else:
        amount = round_money(min(discount.value, base), decimal_places)
    return min(amount, base)


def is_tax_exempt(service_type: str | None, exempt_types: frozenset[str]) -> bool:
    return service_type is not None and service_type.lower() in exempt_types


def calculate_line(
    quantity: Decimal,
    unit_price: Decimal,
    discount: Discount = NO_DISCOUNT,
    tax_rate: Decimal = ZERO,
    tax_inclusive: bool = False,
    decimal_places: int = 2,
    tax_exempt: bool = False,
) -> LineCalculation:
    """
    Compute one line.

    Tax-exclusive:
        taxable = subtotal - discount
        tax     = round(taxable * rate)
        total   = taxable + tax

    Tax-inclusive (price already contains tax):
        gross   = subtotal - discount
        taxable = round(gross / (1 + rate))
        tax     = gross - taxable
        total   = gross

    The inclusive tax is the remainder of the extraction so that
    ``taxable + tax`` reproduces the gross exactly.
    """
    quantity = to_decimal(quantity, "quantity")
    unit_price = to_decimal(unit_price, "unit_price")
    tax_rate = to_decimal(tax_rate, "tax_rate")

    if quantity < ZERO:
        raise ValidationError(f"quantity must not be negative, got {quantity}", field="quantity")
    if unit_price < ZERO:
        raise ValidationError(f"unit_price must not be negative, got {unit_price}", field="unit_price")
    validate_tax_rate(tax_rate)

    subtotal = round_money(quantity * unit_price, decimal_places)
    discount_amount = calculate_discount(subtotal, discount, decimal_places)
    net = subtotal - discount_amount

    effective_rate = ZERO if tax_exempt else tax_rate

    if effective_rate == ZERO:
        taxable = net
        tax = round_money(ZERO, decimal_places)
        total = net
    elif tax_inclusive:
        taxable = round_money(net / (ONE + effective_rate), decimal_places)
        tax = net - taxable
        total = net
    else:
        taxable = net
        tax = round_money(taxable * effective_rate, decimal_places)
        total = taxable + tax

    return LineCalculation(
        subtotal=subtotal,
        discount_amount=discount_amount,
        taxable_amount=taxable,
        tax_amount=tax,
        total_amount=total,
    )
