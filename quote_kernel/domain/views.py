"""
Read models returned by the engine.

Frozen DTOs built from ORM rows.  Money is rendered at the quote's minor-
unit precision; rates and quantities drop storage padding.  ``to_dict``
produces the JSON-ready shape the handler surface serializes.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from quote_kernel.domain.currency import round_money


def _money(value: Decimal | None, decimal_places: int) -> Decimal | None:
    if value is None:
        return None
    return round_money(value, decimal_places)


def _plain(value: Decimal | None) -> Decimal | None:
    """Strip trailing zeros without switching to exponent notation."""
    if value is None:
        return None
    return Decimal(format(value.normalize(), "f"))


@dataclass(frozen=True)
class LineItemView:
    id: UUID
    line_number: int
    type: str
    sku: str | None
    description: str
    quantity: Decimal
    unit_price: Decimal
    unit_cost: Decimal | None
    unit: str
    tax_inclusive: bool
    tax_rate: Decimal
    discount_type: str
    discount_value: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class QuoteView:
    id: UUID
    organization_id: str
    quote_number: str
    customer_id: str
    project_id: str | None
    title: str
    description: str | None
    status: str
    type: str
    valid_from: datetime
    valid_until: datetime
    currency: str
    exchange_rate: Decimal
    tax_rate: Decimal
    discount_type: str
    discount_value: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    terms_conditions: str | None
    notes: str | None
    internal_notes: str | None
    created_by: str
    approved_by: str | None
    approved_at: datetime | None
    sent_at: datetime | None
    accepted_at: datetime | None
    metadata: dict[str, Any]
    version_count: int
    created_at: datetime
    updated_at: datetime
    line_items: tuple[LineItemView, ...]

    @property
    def current_version_id(self) -> str | None:
        return self.metadata.get("current_version_id")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class QuoteVersionSummary:
    id: UUID
    quote_id: UUID
    version_number: int
    title: str
    status: str
    total_amount: Decimal
    reason: str
    created_at: datetime
    created_by: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class QuoteVersionView:
    summary: QuoteVersionSummary
    quote_number: str
    customer_id: str
    project_id: str | None
    description: str | None
    type: str
    valid_from: datetime
    valid_until: datetime
    currency: str
    exchange_rate: Decimal
    tax_rate: Decimal
    discount_type: str
    discount_value: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    terms_conditions: str | None
    notes: str | None
    internal_notes: str | None
    line_items: tuple[LineItemView, ...]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        summary = data.pop("summary")
        return {**summary, **data}


def line_item_view(row: Any, decimal_places: int) -> LineItemView:
    return LineItemView(
        id=row.id,
        line_number=row.line_number,
        type=row.type,
        sku=row.sku,
        description=row.description,
        quantity=_plain(row.quantity),
        unit_price=_money(row.unit_price, decimal_places),
        unit_cost=_money(row.unit_cost, decimal_places),
        unit=row.unit,
        tax_inclusive=row.tax_inclusive,
        tax_rate=_plain(row.tax_rate),
        discount_type=row.discount_type,
        discount_value=_plain(row.discount_value),
        subtotal=_money(row.subtotal, decimal_places),
        discount_amount=_money(row.discount_amount, decimal_places),
        taxable_amount=_money(row.taxable_amount, decimal_places),
        tax_amount=_money(row.tax_amount, decimal_places),
        total_amount=_money(row.total_amount, decimal_places),
    )


def quote_view(row: Any) -> QuoteView:
    dp = row.decimal_places
    return QuoteView(
        id=row.id,
        organization_id=row.organization_id,
        quote_number=row.quote_number,
        customer_id=row.customer_id,
        project_id=row.project_id,
        title=row.title,
        description=row.description,
        status=row.status,
        type=row.type,
        valid_from=row.valid_from,
        valid_until=row.valid_until,
        currency=row.currency,
        exchange_rate=_plain(row.exchange_rate),
        tax_rate=_plain(row.tax_rate),
        discount_type=row.discount_type,
        discount_value=_plain(row.discount_value),
        subtotal=_money(row.subtotal, dp),
        discount_amount=_money(row.discount_amount, dp),
        taxable_amount=_money(row.taxable_amount, dp),
        tax_amount=_money(row.tax_amount, dp),
        total_amount=_money(row.total_amount, dp),
        terms_conditions=row.terms_conditions,
        notes=row.notes,
        internal_notes=row.internal_notes,
        created_by=row.created_by,
        approved_by=row.approved_by,
        approved_at=row.approved_at,
        sent_at=row.sent_at,
        accepted_at=row.accepted_at,
        metadata=dict(row.meta or {}),
        version_count=row.version_count,
        created_at=row.created_at,
        updated_at=row.updated_at,
        line_items=tuple(line_item_view(li, dp) for li in row.line_items),
    )


def version_summary(row: Any) -> QuoteVersionSummary:
    return QuoteVersionSummary(
        id=row.id,
        quote_id=row.quote_id,
        version_number=row.version_number,
        title=row.title,
        status=row.status,
        total_amount=_money(row.total_amount, row.decimal_places),
        reason=row.reason,
        created_at=row.created_at,
        created_by=row.created_by,
    )


def version_view(row: Any) -> QuoteVersionView:
    dp = row.decimal_places
    return QuoteVersionView(
        summary=version_summary(row),
        quote_number=row.quote_number,
        customer_id=row.customer_id,
        project_id=row.project_id,
        description=row.description,
        type=row.type,
        valid_from=row.valid_from,
        valid_until=row.valid_until,
        currency=row.currency,
        exchange_rate=_plain(row.exchange_rate),
        tax_rate=_plain(row.tax_rate),
        discount_type=row.discount_type,
        discount_value=_plain(row.discount_value),
        subtotal=_money(row.subtotal, dp),
        discount_amount=_money(row.discount_amount, dp),
        taxable_amount=_money(row.taxable_amount, dp),
        tax_amount=_money(row.tax_amount, dp),
        total_amount=_money(row.total_amount, dp),
        terms_conditions=row.terms_conditions,
        notes=row.notes,
        internal_notes=row.internal_notes,
        line_items=tuple(line_item_view(li, dp) for li in row.line_items),
    )


@dataclass(frozen=True)
class LinePreview:
    line_number: int
    tax_rate: Decimal
    tax_exempt: bool
    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class QuotePreview:
    """Unpersisted pricing result for a candidate quote."""

    currency: str
    decimal_places: int
    line_items: tuple[LinePreview, ...]
    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    tax_breakdown: tuple[dict[str, Decimal], ...]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
