"""
Typed commands (``quote_kernel.domain.commands``).

Responsibility
--------------
Parses raw, shape-validated request payloads (snake_case dicts) into
frozen command objects exactly once, at the engine boundary.  Services
never re-inspect loosely-typed maps after this point.

Invariants enforced
-------------------
* Monetary and rate fields are ``Decimal``; floats pass through ``str()``.
* A create command carries at least one line item and at most
  ``MAX_LINE_ITEMS``; line numbers are unique and positive.
* ``valid_from < valid_until`` whenever both are known.
* Quantities, prices, costs and exchange rates are capped (``MAX_*`` in
  ``pricing``) so stored amounts fit their columns exactly.
* Unknown keys are rejected rather than ignored.

Failure modes
-------------
* Any violation raises ``ValidationError`` with ``field`` set to the
  offending key (``line_items[2].quantity`` for nested fields).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Mapping

from quote_kernel.domain.pricing import (
    MAX_EXCHANGE_RATE,
    MAX_QUANTITY,
    MAX_UNIT_PRICE,
    NO_DISCOUNT,
    ZERO,
    Discount,
    DiscountType,
    parse_discount,
    to_decimal,
    validate_discount,
    validate_tax_rate,
)
from quote_kernel.exceptions import ValidationError

MAX_LINE_ITEMS = 1000
DEFAULT_QUOTE_TYPE = "project"
DEFAULT_LINE_TYPE = "service"
DEFAULT_UNIT = "hour"
DEFAULT_CURRENCY = "NZD"
DEFAULT_TAX_RATE = Decimal("0.15")

QUOTE_TYPES = frozenset({"project", "service", "product", "recurring", "one_time"})
LINE_ITEM_TYPES = frozenset(
    {"service", "product", "material", "travel", "mileage", "expense", "expenses", "discount", "tax"}
)

_DISCOUNT_ALIASES = {"fixed_amount": "fixed"}

_LINE_KEYS = frozenset({
    "line_number", "type", "sku", "description", "quantity", "unit_price",
    "unit_cost", "unit", "tax_inclusive", "tax_rate", "discount_type",
    "discount_value",
})

_HEADER_KEYS = frozenset({
    "title", "description", "type", "valid_from", "valid_until", "currency",
    "exchange_rate", "tax_rate", "discount_type", "discount_value",
    "terms_conditions", "notes", "internal_notes",
})

_CREATE_KEYS = _HEADER_KEYS | {"customer_id", "project_id", "line_items"}
_UPDATE_KEYS = _HEADER_KEYS | {"line_items", "create_version"}


@dataclass(frozen=True)
class LineItemInput:
    line_number: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal | None = None
    type: str = DEFAULT_LINE_TYPE
    sku: str | None = None
    unit_cost: Decimal | None = None
    unit: str = DEFAULT_UNIT
    tax_inclusive: bool = False
    discount: Discount = NO_DISCOUNT

    def resolved_tax_rate(self, quote_tax_rate: Decimal) -> Decimal:
        return quote_tax_rate if self.tax_rate is None else self.tax_rate


@dataclass(frozen=True)
class CreateQuoteCommand:
    customer_id: str
    title: str
    valid_from: datetime
    valid_until: datetime
    line_items: tuple[LineItemInput, ...]
    project_id: str | None = None
    description: str | None = None
    type: str = DEFAULT_QUOTE_TYPE
    currency: str = DEFAULT_CURRENCY
    exchange_rate: Decimal = Decimal("1")
    tax_rate: Decimal = DEFAULT_TAX_RATE
    discount: Discount = NO_DISCOUNT
    terms_conditions: str | None = None
    notes: str | None = None
    internal_notes: str | None = None


@dataclass(frozen=True)
class UpdateQuoteCommand:
    """
    Partial update.  ``header`` holds only the fields the caller supplied,
    already normalized.  ``discount_type`` and ``discount_value`` may arrive
    separately; ``merge_discount`` validates them against the stored pair.
    ``line_items`` is ``None`` when the caller left lines untouched.
    """

    header: Mapping[str, Any]
    line_items: tuple[LineItemInput, ...] | None = None
    create_version: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.header and self.line_items is None


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------


def _reject_unknown(data: Mapping[str, Any], allowed: frozenset[str], prefix: str = "") -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError(
            f"Unknown field(s): {', '.join(prefix + k for k in unknown)}",
            field=prefix + unknown[0],
        )


def _text(data: Mapping[str, Any], key: str, *, required: bool = False,
          min_len: int = 0, max_len: int | None = None, field: str | None = None) -> str | None:
    field = field or key
    value = data.get(key)
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field=field)
    value = value.strip()
    if len(value) < min_len:
        raise ValidationError(f"{field} must be at least {min_len} characters", field=field)
    if max_len is not None and len(value) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters", field=field)
    return value


def parse_datetime(value: Any, field: str) -> datetime:
    """ISO 8601 string or datetime; naive values are taken as UTC."""
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, str):
        try:
            result = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"{field} must be an ISO 8601 datetime", field=field) from None
    else:
        raise ValidationError(f"{field} must be an ISO 8601 datetime", field=field)
    if result.tzinfo is None:
        result = result.replace(tzinfo=UTC)
    return result.astimezone(UTC)


def _choice(value: Any, allowed: frozenset[str], field: str) -> str:
    if not isinstance(value, str) or value not in allowed:
        raise ValidationError(
            f"{field} must be one of {', '.join(sorted(allowed))}; got {value!r}",
            field=field,
        )
    return value


def _rate(value: Any, field: str) -> Decimal:
    rate = to_decimal(value, field)
    validate_tax_rate(rate, field)
    return rate


def _exchange_rate(value: Any) -> Decimal:
    rate = to_decimal(value, "exchange_rate")
    if rate <= ZERO:
        raise ValidationError("exchange_rate must be positive", field="exchange_rate")
    _at_most(rate, MAX_EXCHANGE_RATE, "exchange_rate")
    return rate


def _discount(data: Mapping[str, Any], prefix: str) -> Discount:
    dtype = data.get("discount_type")
    if isinstance(dtype, str):
        dtype = _DISCOUNT_ALIASES.get(dtype, dtype)
    return parse_discount(dtype, data.get("discount_value"), field=f"{prefix}discount")


def _discount_type(value: Any) -> str:
    if value is None:
        return DiscountType.NONE.value
    if isinstance(value, str):
        value = _DISCOUNT_ALIASES.get(value, value)
    try:
        return DiscountType(value).value
    except ValueError:
        raise ValidationError(
            f"discount_type must be one of percentage, fixed, none; got {value!r}",
            field="discount_type",
        ) from None


def merge_discount(header: Mapping[str, Any], current_type: str, current_value: Decimal) -> Discount:
    """
    The quote-level discount after a partial update.

    A patch may carry only one half of the pair; the other half keeps its
    stored value and the combination is validated as a whole.
    """
    discount = Discount(
        type=DiscountType(header.get("discount_type", current_type)),
        value=header.get("discount_value", current_value),
    )
    validate_discount(discount)
    return discount


def _at_most(value: Decimal, maximum: Decimal, field: str) -> None:
    if value > maximum:
        raise ValidationError(f"{field} must not exceed {maximum}, got {value}", field=field)


def _flag(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be a boolean", field=field)
    return value


def parse_line_item(data: Mapping[str, Any], index: int) -> LineItemInput:
    prefix = f"line_items[{index}]."
    if not isinstance(data, Mapping):
        raise ValidationError(f"line_items[{index}] must be an object", field=f"line_items[{index}]")
    _reject_unknown(data, _LINE_KEYS, prefix)

    line_number = data.get("line_number", index + 1)
    if isinstance(line_number, bool) or not isinstance(line_number, int) or line_number < 1:
        raise ValidationError(
            f"{prefix}line_number must be a positive integer", field=f"{prefix}line_number"
        )

    for key in ("quantity", "unit_price"):
        if data.get(key) is None:
            raise ValidationError(f"{prefix}{key} is required", field=f"{prefix}{key}")

    quantity = to_decimal(data["quantity"], f"{prefix}quantity")
    unit_price = to_decimal(data["unit_price"], f"{prefix}unit_price")
    if quantity < ZERO:
        raise ValidationError(f"{prefix}quantity must not be negative", field=f"{prefix}quantity")
    if unit_price < ZERO:
        raise ValidationError(f"{prefix}unit_price must not be negative", field=f"{prefix}unit_price")
    _at_most(quantity, MAX_QUANTITY, f"{prefix}quantity")
    _at_most(unit_price, MAX_UNIT_PRICE, f"{prefix}unit_price")

    unit_cost = None
    if data.get("unit_cost") is not None:
        unit_cost = to_decimal(data["unit_cost"], f"{prefix}unit_cost")
        _at_most(unit_cost, MAX_UNIT_PRICE, f"{prefix}unit_cost")

    tax_rate = None
    if data.get("tax_rate") is not None:
        tax_rate = _rate(data["tax_rate"], f"{prefix}tax_rate")

    return LineItemInput(
        line_number=line_number,
        description=_text(data, "description", required=True, min_len=1,
                          max_len=1000, field=f"{prefix}description"),
        quantity=quantity,
        unit_price=unit_price,
        tax_rate=tax_rate,
        type=_choice(data.get("type", DEFAULT_LINE_TYPE), LINE_ITEM_TYPES, f"{prefix}type"),
        sku=_text(data, "sku", max_len=50, field=f"{prefix}sku"),
        unit_cost=unit_cost,
        unit=_text(data, "unit", max_len=50, field=f"{prefix}unit") or DEFAULT_UNIT,
        tax_inclusive=_flag(data.get("tax_inclusive", False), f"{prefix}tax_inclusive"),
        discount=_discount(data, prefix),
    )


def parse_line_items(raw: Any) -> tuple[LineItemInput, ...]:
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("line_items must be a list", field="line_items")
    if not raw:
        raise ValidationError("At least one line item is required", field="line_items")
    if len(raw) > MAX_LINE_ITEMS:
        raise ValidationError(
            f"At most {MAX_LINE_ITEMS} line items are allowed", field="line_items"
        )
    items = tuple(parse_line_item(item, i) for i, item in enumerate(raw))
    seen: set[int] = set()
    for item in items:
        if item.line_number in seen:
            raise ValidationError(
                f"Duplicate line_number {item.line_number}", field="line_items"
            )
        seen.add(item.line_number)
    return tuple(sorted(items, key=lambda item: item.line_number))


def validate_validity_window(valid_from: datetime, valid_until: datetime) -> None:
    if valid_from >= valid_until:
        raise ValidationError(
            "valid_from must be before valid_until", field="valid_until"
        )


def _parse_header(data: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize every supplied header field; absent keys stay absent."""
    header: dict[str, Any] = {}
    if "title" in data:
        header["title"] = _text(data, "title", required=True, min_len=3, max_len=255)
    if "description" in data:
        header["description"] = _text(data, "description", max_len=2000)
    if "type" in data:
        header["type"] = _choice(data["type"], QUOTE_TYPES, "type")
    for key in ("valid_from", "valid_until"):
        if key in data:
            header[key] = parse_datetime(data[key], key)
    if "currency" in data:
        currency = _text(data, "currency", required=True, min_len=3, max_len=3)
        header["currency"] = currency.upper()
    if "exchange_rate" in data:
        header["exchange_rate"] = _exchange_rate(data["exchange_rate"])
    if "tax_rate" in data:
        header["tax_rate"] = _rate(data["tax_rate"], "tax_rate")
    if "discount_type" in data:
        header["discount_type"] = _discount_type(data["discount_type"])
    if "discount_value" in data:
        value = data["discount_value"]
        header["discount_value"] = ZERO if value is None else to_decimal(value, "discount_value")
    if "terms_conditions" in data:
        header["terms_conditions"] = _text(data, "terms_conditions", max_len=5000)
    for key in ("notes", "internal_notes"):
        if key in data:
            header[key] = _text(data, key, max_len=2000)
    return header


def parse_create_command(data: Mapping[str, Any]) -> CreateQuoteCommand:
    if not isinstance(data, Mapping):
        raise ValidationError("Request body must be an object")
    _reject_unknown(data, _CREATE_KEYS)

    for key in ("customer_id", "title", "valid_from", "valid_until"):
        if data.get(key) is None:
            raise ValidationError(f"{key} is required", field=key)
    if data.get("line_items") is None:
        raise ValidationError("At least one line item is required", field="line_items")

    header = _parse_header(data)
    validate_validity_window(header["valid_from"], header["valid_until"])

    return CreateQuoteCommand(
        customer_id=str(data["customer_id"]),
        project_id=str(data["project_id"]) if data.get("project_id") is not None else None,
        title=header["title"],
        description=header.get("description"),
        type=header.get("type", DEFAULT_QUOTE_TYPE),
        valid_from=header["valid_from"],
        valid_until=header["valid_until"],
        currency=header.get("currency", DEFAULT_CURRENCY),
        exchange_rate=header.get("exchange_rate", Decimal("1")),
        tax_rate=header.get("tax_rate", DEFAULT_TAX_RATE),
        discount=_discount(data, ""),
        terms_conditions=header.get("terms_conditions"),
        notes=header.get("notes"),
        internal_notes=header.get("internal_notes"),
        line_items=parse_line_items(data["line_items"]),
    )


def parse_update_command(data: Mapping[str, Any]) -> UpdateQuoteCommand:
    if not isinstance(data, Mapping):
        raise ValidationError("Request body must be an object")
    _reject_unknown(data, _UPDATE_KEYS)

    header = _parse_header(data)
    if "valid_from" in header and "valid_until" in header:
        validate_validity_window(header["valid_from"], header["valid_until"])

    line_items = None
    if data.get("line_items") is not None:
        line_items = parse_line_items(data["line_items"])

    return UpdateQuoteCommand(
        header=header,
        line_items=line_items,
        create_version=_flag(data.get("create_version", False), "create_version"),
    )
