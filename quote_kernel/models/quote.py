"""
Module: quote_kernel.models.quote
Responsibility: ORM persistence for quotes and their line items.

Architecture position: Kernel > Models.  May import from db/ only (views
    are imported lazily in ``to_dto``).

Invariants enforced:
    - Tenant scoping: every row carries organization_id; services filter on it.
    - Status values limited by a check constraint; transitions are enforced
      by the status machine in the service layer.
    - UNIQUE(quote_id, line_number) on line items.
    - UNIQUE(organization_id, quote_number).
    - version_count is the locked counter that numbers QuoteVersion rows.

Failure modes:
    - IntegrityError on duplicate line number or quote number.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quote_kernel.db.base import TrackedBase, UUIDString
from quote_kernel.db.types import (
    Currency,
    ExternalId,
    LongText,
    Money,
    Quantity,
    Rate,
    ShortCode,
    Title,
)

if TYPE_CHECKING:
    from quote_kernel.domain.views import LineItemView, QuoteView

# Scalar columns considered material for versioning, in comparison order.
MATERIAL_QUOTE_FIELDS = (
    "title",
    "description",
    "type",
    "valid_from",
    "valid_until",
    "currency",
    "exchange_rate",
    "tax_rate",
    "discount_type",
    "discount_value",
    "terms_conditions",
    "notes",
    "internal_notes",
)

MATERIAL_LINE_FIELDS = (
    "description",
    "quantity",
    "unit_price",
    "unit_cost",
    "unit",
    "tax_inclusive",
    "tax_rate",
    "discount_type",
    "discount_value",
)

TOTAL_FIELDS = (
    "subtotal",
    "discount_amount",
    "taxable_amount",
    "tax_amount",
    "total_amount",
)


class QuoteFieldsMixin:
    """Quote scalar fields shared by the live row and its version snapshots."""

    quote_number: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_id: Mapped[str] = mapped_column(ExternalId, nullable=False)
    project_id: Mapped[str | None] = mapped_column(ExternalId, nullable=True)
    title: Mapped[str] = mapped_column(Title, nullable=False)
    description: Mapped[str | None] = mapped_column(LongText, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    type: Mapped[str] = mapped_column(ShortCode, nullable=False, default="project")
    valid_from: Mapped[datetime] = mapped_column(nullable=False)
    valid_until: Mapped[datetime] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(Currency, nullable=False)
    decimal_places: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    exchange_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False, default=Decimal("1"))
    tax_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False)
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False, default="none")
    discount_value: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    taxable_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    terms_conditions: Mapped[str | None] = mapped_column(LongText, nullable=True)
    notes: Mapped[str | None] = mapped_column(LongText, nullable=True)
    internal_notes: Mapped[str | None] = mapped_column(LongText, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(ExternalId, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)


class LineItemFieldsMixin:
    """Line item fields shared by live lines and their version snapshots."""

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(ShortCode, nullable=False, default="service")
    sku: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str] = mapped_column(String(1000), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    unit: Mapped[str] = mapped_column(String(50), nullable=False, default="hour")
    tax_inclusive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tax_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False)
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False, default="none")
    discount_value: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    taxable_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)


class Quote(QuoteFieldsMixin, TrackedBase):
    """
    Tenant-scoped quote aggregate root.

    Contract:
        Line items are owned exclusively by the quote (delete-orphan).
        ``meta`` maps to the ``metadata`` JSON column and holds
        ``current_version_id``; it must be reassigned, not mutated in place.

    Guarantees:
        - Soft-deleted quotes keep their row; ``deleted_at`` is set.
    """

    __tablename__ = "quotes"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'pending', 'approved', 'sent', "
            "'accepted', 'rejected', 'cancelled')",
            name="ck_quotes_valid_status",
        ),
        CheckConstraint(
            "discount_type IN ('percentage', 'fixed', 'none')",
            name="ck_quotes_discount_type",
        ),
        UniqueConstraint("organization_id", "quote_number", name="uq_quotes_org_number"),
        Index("ix_quotes_org_status", "organization_id", "status"),
        Index("ix_quotes_org_deleted", "organization_id", "deleted_at"),
    )

    organization_id: Mapped[str] = mapped_column(ExternalId, nullable=False)
    created_by: Mapped[str] = mapped_column(ExternalId, nullable=False)
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )
    version_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    line_items: Mapped[list[QuoteLineItem]] = relationship(
        "QuoteLineItem",
        back_populates="quote",
        order_by="QuoteLineItem.line_number",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def current_version_id(self) -> str | None:
        return (self.meta or {}).get("current_version_id")

    def __repr__(self) -> str:
        return f"<Quote {self.quote_number} org={self.organization_id} status={self.status}>"

    def to_dto(self) -> QuoteView:
        from quote_kernel.domain.views import quote_view

        return quote_view(self)


class QuoteLineItem(LineItemFieldsMixin, TrackedBase):
    """Line of a quote. Computed columns are written only by the pricing path."""

    __tablename__ = "quote_line_items"

    __table_args__ = (
        UniqueConstraint("quote_id", "line_number", name="uq_quote_line_items_number"),
        CheckConstraint(
            "discount_type IN ('percentage', 'fixed', 'none')",
            name="ck_quote_line_items_discount_type",
        ),
        Index("ix_quote_line_items_org_quote", "organization_id", "quote_id"),
    )

    quote_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False,
    )
    organization_id: Mapped[str] = mapped_column(ExternalId, nullable=False)

    quote: Mapped[Quote] = relationship("Quote", back_populates="line_items")

    def __repr__(self) -> str:
        return f"<QuoteLineItem #{self.line_number} quote={self.quote_id}>"

    def to_dto(self, decimal_places: int = 2) -> LineItemView:
        from quote_kernel.domain.views import line_item_view

        return line_item_view(self, decimal_places)
