"""
Module: quote_kernel.models.quote_version
Responsibility: ORM persistence for immutable quote version snapshots.

Architecture position: Kernel > Models.  May import from db/ and sibling
    models only.

Invariants enforced:
    - UNIQUE(quote_id, version_number): the backstop against two writers
      claiming the same number.
    - Append-only: ORM listeners in db/immutability.py reject UPDATE and
      DELETE of both tables.

Failure modes:
    - IntegrityError on duplicate version number (surfaced by the
      versioning service as VersionConflictError and retried).
    - ImmutabilityViolationError on UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quote_kernel.db.base import Base, UUIDString, utcnow
from quote_kernel.db.types import ExternalId
from quote_kernel.models.quote import LineItemFieldsMixin, QuoteFieldsMixin

if TYPE_CHECKING:
    from quote_kernel.domain.views import QuoteVersionSummary, QuoteVersionView


class QuoteVersion(QuoteFieldsMixin, Base):
    """
    Snapshot of a quote's scalar fields at ``created_at``.

    Contract:
        Written once by VersioningService.create_version and never changed.
    """

    __tablename__ = "quote_versions"

    __table_args__ = (
        UniqueConstraint("quote_id", "version_number", name="uq_quote_versions_number"),
        Index("ix_quote_versions_org_quote", "organization_id", "quote_id"),
    )

    quote_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False,
    )
    organization_id: Mapped[str] = mapped_column(ExternalId, nullable=False)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    created_by: Mapped[str] = mapped_column(ExternalId, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    line_items: Mapped[list[QuoteLineItemVersion]] = relationship(
        "QuoteLineItemVersion",
        back_populates="version",
        order_by="QuoteLineItemVersion.line_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<QuoteVersion quote={self.quote_id} v{self.version_number}>"

    def to_summary(self) -> QuoteVersionSummary:
        from quote_kernel.domain.views import version_summary

        return version_summary(self)

    def to_dto(self) -> QuoteVersionView:
        from quote_kernel.domain.views import version_view

        return version_view(self)


class QuoteLineItemVersion(LineItemFieldsMixin, Base):
    """Line item copy belonging to one QuoteVersion."""

    __tablename__ = "quote_line_item_versions"

    __table_args__ = (
        UniqueConstraint("version_id", "line_number", name="uq_quote_line_item_versions_number"),
        Index("ix_quote_line_item_versions_org_quote", "organization_id", "quote_id"),
    )

    version_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("quote_versions.id", ondelete="CASCADE"), nullable=False,
    )
    quote_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    organization_id: Mapped[str] = mapped_column(ExternalId, nullable=False)
    source_line_item_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    version: Mapped[QuoteVersion] = relationship("QuoteVersion", back_populates="line_items")

    def __repr__(self) -> str:
        return f"<QuoteLineItemVersion #{self.line_number} version={self.version_id}>"
