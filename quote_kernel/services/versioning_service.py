"""
VersioningService -- immutable quote snapshots and material-change detection.

Responsibility:
    ``create_version`` copies a quote's scalar fields and line items into
    QuoteVersion / QuoteLineItemVersion rows numbered N+1.
    ``material_changes`` compares a candidate update against the persisted
    quote and names every material field that would change.

Architecture position:
    Services -- imperative shell.  Runs inside the caller's transaction and
    never commits.

Invariants enforced:
    - Version numbers come from the quote's ``version_count`` read under a
      row lock (SELECT ... FOR UPDATE), not from MAX(version_number).
    - UNIQUE(quote_id, version_number) is the backstop.  A violation is
      raised as VersionConflictError, which the transaction runner retries
      in a fresh transaction.
    - The quote's ``metadata.current_version_id`` points at the newest
      version in the same transaction that inserts it.

Failure modes:
    - VersionConflictError on a duplicate version number.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quote_kernel.domain.clock import Clock, SystemClock
from quote_kernel.domain.commands import LineItemInput, UpdateQuoteCommand
from quote_kernel.domain.tenancy import TenantContext
from quote_kernel.exceptions import QuoteVersionNotFoundError, VersionConflictError
from quote_kernel.logging_config import get_logger
from quote_kernel.models.quote import (
    MATERIAL_LINE_FIELDS,
    MATERIAL_QUOTE_FIELDS,
    Quote,
    QuoteLineItem,
)
from quote_kernel.models.quote_version import QuoteLineItemVersion, QuoteVersion
from quote_kernel.services.tenancy_guard import coerce_uuid

logger = get_logger("services.versioning")

_SNAPSHOT_QUOTE_FIELDS = (
    "quote_number",
    "customer_id",
    "project_id",
    "title",
    "description",
    "status",
    "type",
    "valid_from",
    "valid_until",
    "currency",
    "decimal_places",
    "exchange_rate",
    "tax_rate",
    "discount_type",
    "discount_value",
    "subtotal",
    "discount_amount",
    "taxable_amount",
    "tax_amount",
    "total_amount",
    "terms_conditions",
    "notes",
    "internal_notes",
    "approved_by",
    "approved_at",
    "sent_at",
    "accepted_at",
)

_SNAPSHOT_LINE_FIELDS = (
    "line_number",
    "type",
    "sku",
    "description",
    "quantity",
    "unit_price",
    "unit_cost",
    "unit",
    "tax_inclusive",
    "tax_rate",
    "discount_type",
    "discount_value",
    "subtotal",
    "discount_amount",
    "taxable_amount",
    "tax_amount",
    "total_amount",
)


class VersionReason:
    FORCE_EDIT = "force_edit"
    MATERIAL_CHANGE = "material_change"
    EXPLICIT = "explicit"


def _differs(current: Any, candidate: Any) -> bool:
    if isinstance(current, Decimal) or isinstance(candidate, Decimal):
        if current is None or candidate is None:
            return current is not candidate
        return Decimal(current) != Decimal(candidate)
    if isinstance(current, datetime) and isinstance(candidate, datetime):
        return current != candidate
    return (current or None) != (candidate or None)


def _candidate_line(item: LineItemInput, quote_tax_rate: Decimal) -> dict[str, Any]:
    return {
        "description": item.description,
        "quantity": item.quantity,
        "unit_price": item.unit_price,
        "unit_cost": item.unit_cost,
        "unit": item.unit,
        "tax_inclusive": item.tax_inclusive,
        "tax_rate": item.resolved_tax_rate(quote_tax_rate),
        "discount_type": item.discount.type.value,
        "discount_value": item.discount.value,
    }


class VersioningService:
    """
    Contract:
        Operates on a quote already loaded through the tenancy guard.
        Never commits.
    Non-goals:
        Does not decide *whether* to version; QuoteService combines the lock
        check, material-change result and explicit requests.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def create_version(
        self,
        quote: Quote,
        tenant: TenantContext,
        reason: str = VersionReason.EXPLICIT,
    ) -> QuoteVersion:
        current = self._session.execute(
            select(Quote.version_count)
            .where(
                Quote.id == quote.id,
                Quote.organization_id == tenant.organization_id,
            )
            .with_for_update()
        ).scalar_one()
        number = current + 1

        version = QuoteVersion(
            id=uuid4(),
            quote_id=quote.id,
            organization_id=quote.organization_id,
            version_number=number,
            reason=reason,
            created_by=tenant.user_id,
            created_at=self._clock.now(),
            **{name: getattr(quote, name) for name in _SNAPSHOT_QUOTE_FIELDS},
        )
        for line in quote.line_items:
            version.line_items.append(
                QuoteLineItemVersion(
                    quote_id=quote.id,
                    organization_id=quote.organization_id,
                    source_line_item_id=line.id,
                    **{name: getattr(line, name) for name in _SNAPSHOT_LINE_FIELDS},
                )
            )

        savepoint = self._session.begin_nested()
        try:
            self._session.add(version)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.warning(
                "version_number_conflict",
                extra={"quote_id": str(quote.id), "version_number": number},
            )
            raise VersionConflictError(str(quote.id), number) from None

        quote.version_count = number
        quote.meta = {**(quote.meta or {}), "current_version_id": str(version.id)}
        self._session.flush()

        logger.info(
            "version_created",
            extra={
                "quote_id": str(quote.id),
                "version_id": str(version.id),
                "version_number": number,
                "reason": reason,
                "line_count": len(version.line_items),
            },
        )
        return version

    def material_changes(self, quote: Quote, command: UpdateQuoteCommand) -> list[str]:
        """Names of material fields the command would change."""
        changed: list[str] = []
        for name in MATERIAL_QUOTE_FIELDS:
            if name in command.header and _differs(getattr(quote, name), command.header[name]):
                changed.append(name)

        if command.line_items is None:
            return changed

        current_lines: list[QuoteLineItem] = list(quote.line_items)
        if len(current_lines) != len(command.line_items):
            changed.append("line_items.count")
            return changed

        quote_tax_rate = command.header.get("tax_rate", quote.tax_rate)
        for existing, item in zip(current_lines, command.line_items):
            candidate = _candidate_line(item, quote_tax_rate)
            for name in MATERIAL_LINE_FIELDS:
                if _differs(getattr(existing, name), candidate[name]):
                    changed.append(f"line_items[{existing.line_number}].{name}")
        return changed

    def has_material_changes(self, quote: Quote, command: UpdateQuoteCommand) -> bool:
        return bool(self.material_changes(quote, command))

    def get_versions(self, quote: Quote) -> list[QuoteVersion]:
        """Newest first."""
        return list(
            self._session.execute(
                select(QuoteVersion)
                .where(
                    QuoteVersion.quote_id == quote.id,
                    QuoteVersion.organization_id == quote.organization_id,
                )
                .order_by(QuoteVersion.version_number.desc())
            ).scalars()
        )

    def get_version(self, quote: Quote, version_id: str | UUID) -> QuoteVersion:
        vid = coerce_uuid(version_id)
        version = None
        if vid is not None:
            version = self._session.execute(
                select(QuoteVersion).where(
                    QuoteVersion.id == vid,
                    QuoteVersion.quote_id == quote.id,
                    QuoteVersion.organization_id == quote.organization_id,
                )
            ).scalar_one_or_none()
        if version is None:
            raise QuoteVersionNotFoundError(str(quote.id), str(version_id))
        return version
