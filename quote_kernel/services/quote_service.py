"""
QuoteService -- the engine's public operations.

Responsibility:
    Orchestrates the tenancy guard, pricing, status machine, lock policy and
    versioning store.  Each write runs as one unit of work through the
    TransactionRunner: parse, authorize, load under lock, mutate, flush,
    commit.

Architecture position:
    Services -- imperative shell.  Pure computation lives in domain/; this
    module owns sessions and transactions.

Invariants enforced:
    - Every operation validates the tenant and its operation permission
      before touching the store.
    - Quotes are only reachable through TenancyGuard.load_quote.
    - An edit of a locked quote either raises QuoteLockedError or snapshots
      the pre-edit state first, in the same transaction.
    - Stored totals are always the aggregate of the stored line results.

Failure modes:
    - ValidationError and subclasses for bad input (before any I/O).
    - TenantContextError, PermissionDeniedError, QuoteLockedError.
    - QuoteNotFoundError, InvalidTransitionError, QuoteNotDeletableError.
    - DeadlineExceededError, InternalEngineError from the runner.
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from quote_kernel.config import EngineConfig
from quote_kernel.domain.clock import Clock, SystemClock
from quote_kernel.domain.commands import (
    DEFAULT_CURRENCY,
    DEFAULT_TAX_RATE,
    LineItemInput,
    merge_discount,
    parse_create_command,
    parse_line_items,
    parse_update_command,
    validate_validity_window,
)
from quote_kernel.domain.currency import CurrencyPolicy
from quote_kernel.domain.lock_policy import LockCheck, LockPolicy
from quote_kernel.domain.pricing import (
    Discount,
    DiscountType,
    LineCalculation,
    calculate_line,
    is_tax_exempt,
    parse_discount,
    to_decimal,
    validate_tax_rate,
)
from quote_kernel.domain.status import QuoteStatus, StatusMachine
from quote_kernel.domain.tenancy import TenantContext
from quote_kernel.domain.totals import PricedLine, QuoteTotals, aggregate_quote
from quote_kernel.domain.views import (
    LinePreview,
    QuotePreview,
    QuoteVersionView,
    QuoteView,
)
from quote_kernel.exceptions import QuoteNotDeletableError, ValidationError
from quote_kernel.logging_config import LogContext, get_logger
from quote_kernel.models.quote import TOTAL_FIELDS, Quote, QuoteLineItem
from quote_kernel.services.lock_service import LockService
from quote_kernel.services.sequence_service import SequenceService
from quote_kernel.services.tenancy_guard import TenancyGuard
from quote_kernel.services.transaction import Deadline, TransactionRunner
from quote_kernel.services.versioning_service import VersioningService, VersionReason

logger = get_logger("services.quote")


class QuoteService:
    """
    Contract:
        Methods take a TenantContext and raw request data, and return frozen
        views.  No ORM object escapes a transaction.

    Non-goals:
        HTTP concerns and idempotency live in handlers and
        IdempotencyService respectively.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._config = config or EngineConfig()
        self._clock = clock or SystemClock()
        self._runner = TransactionRunner(session_factory, self._config.retry, sleep=sleep)
        self._guard = TenancyGuard(self._config.permissions.operations)
        self._currency = CurrencyPolicy.from_config(self._config.pricing)
        self._status_machine = StatusMachine.from_config(self._config.status)
        self._lock_policy = LockPolicy.from_config(self._config)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def status_machine(self) -> StatusMachine:
        return self._status_machine

    # -------------------------------------------------------------------------
    # Pricing helpers
    # -------------------------------------------------------------------------

    def _price_item(self, item: LineItemInput, quote_tax_rate: Decimal, decimal_places: int) -> PricedLine:
        rate = item.resolved_tax_rate(quote_tax_rate)
        exempt = is_tax_exempt(item.type, self._config.pricing.tax_exempt_types)
        calculation = calculate_line(
            item.quantity,
            item.unit_price,
            discount=item.discount,
            tax_rate=rate,
            tax_inclusive=item.tax_inclusive,
            decimal_places=decimal_places,
            tax_exempt=exempt,
        )
        return PricedLine(calculation, rate, item.tax_inclusive, exempt)

    def _price_row(self, row: QuoteLineItem, decimal_places: int) -> PricedLine:
        exempt = is_tax_exempt(row.type, self._config.pricing.tax_exempt_types)
        calculation = calculate_line(
            row.quantity,
            row.unit_price,
            discount=Discount(DiscountType(row.discount_type), row.discount_value),
            tax_rate=row.tax_rate,
            tax_inclusive=row.tax_inclusive,
            decimal_places=decimal_places,
            tax_exempt=exempt,
        )
        return PricedLine(calculation, row.tax_rate, row.tax_inclusive, exempt)

    @staticmethod
    def _write_calculation(target: Any, calculation: LineCalculation | QuoteTotals) -> None:
        for name in TOTAL_FIELDS:
            setattr(target, name, getattr(calculation, name))

    def _line_row(self, quote: Quote, item: LineItemInput, priced: PricedLine) -> QuoteLineItem:
        now = self._clock.now()
        row = QuoteLineItem(
            organization_id=quote.organization_id,
            line_number=item.line_number,
            type=item.type,
            sku=item.sku,
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            unit_cost=item.unit_cost,
            unit=item.unit,
            tax_inclusive=item.tax_inclusive,
            tax_rate=priced.tax_rate,
            discount_type=item.discount.type.value,
            discount_value=item.discount.value,
            created_at=now,
            updated_at=now,
        )
        self._write_calculation(row, priced.calculation)
        return row

    def _recompute_totals(self, quote: Quote, priced: list[PricedLine]) -> QuoteTotals:
        quote_discount = Discount(DiscountType(quote.discount_type), quote.discount_value)
        totals = aggregate_quote(priced, quote.decimal_places, quote_discount)
        self._write_calculation(quote, totals)
        return totals

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_quote(
        self,
        tenant: TenantContext,
        data: Mapping[str, Any],
        deadline: Deadline | None = None,
    ) -> QuoteView:
        self._guard.authorize(tenant, "create_quote")
        command = parse_create_command(data)
        currency = self._currency.validate(command.currency)
        decimal_places = self._currency.decimal_places(currency)
        priced = [
            self._price_item(item, command.tax_rate, decimal_places)
            for item in command.line_items
        ]

        def _create(session: Session) -> QuoteView:
            now = self._clock.now()
            numbers = self._config.quote_numbers
            quote_number = SequenceService(session).next_quote_number(
                tenant.organization_id, now.year, numbers.prefix, numbers.padding,
            )
            quote = Quote(
                organization_id=tenant.organization_id,
                created_by=tenant.user_id,
                quote_number=quote_number,
                customer_id=command.customer_id,
                project_id=command.project_id,
                title=command.title,
                description=command.description,
                status=QuoteStatus.DRAFT.value,
                type=command.type,
                valid_from=command.valid_from,
                valid_until=command.valid_until,
                currency=currency,
                decimal_places=decimal_places,
                exchange_rate=command.exchange_rate,
                tax_rate=command.tax_rate,
                discount_type=command.discount.type.value,
                discount_value=command.discount.value,
                terms_conditions=command.terms_conditions,
                notes=command.notes,
                internal_notes=command.internal_notes,
                meta={},
                version_count=0,
                created_at=now,
                updated_at=now,
            )
            quote.line_items = [
                self._line_row(quote, item, line)
                for item, line in zip(command.line_items, priced)
            ]
            self._recompute_totals(quote, priced)
            session.add(quote)
            session.flush()

            logger.info(
                "quote_created",
                extra={
                    "quote_id": str(quote.id),
                    "quote_number": quote.quote_number,
                    "line_count": len(quote.line_items),
                    "total_amount": str(quote.total_amount),
                    "currency": quote.currency,
                },
            )
            return quote.to_dto()

        with LogContext.bind(organization_id=tenant.organization_id, user_id=tenant.user_id):
            return self._runner.run("create_quote", _create, deadline)

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    def _version_reason(self, lock: LockCheck, changes: list[str], explicit: bool) -> str | None:
        if lock.requires_versioning:
            return VersionReason.FORCE_EDIT
        if explicit:
            return VersionReason.EXPLICIT
        if changes and self._config.versioning.version_on_material_change:
            return VersionReason.MATERIAL_CHANGE
        return None

    def update_quote(
        self,
        tenant: TenantContext,
        quote_id: str | UUID,
        data: Mapping[str, Any],
        deadline: Deadline | None = None,
    ) -> QuoteView:
        """
        Patch header fields and optionally replace all line items.

        Order inside the transaction: load under lock, lock check,
        material-change detection, snapshot (when required), patch,
        reprice, recompute totals.
        """
        self._guard.authorize(tenant, "update_quote")
        command = parse_update_command(data)
        if command.is_empty:
            raise ValidationError("Update contains no fields to change")
        if "currency" in command.header:
            self._currency.validate(command.header["currency"])

        def _update(session: Session) -> QuoteView:
            quote = self._guard.load_quote(session, tenant, quote_id, for_update=True)
            lock = LockService(session, self._guard, self._lock_policy).enforce(quote, tenant)
            if "discount_type" in command.header or "discount_value" in command.header:
                merge_discount(command.header, quote.discount_type, quote.discount_value)

            versioning = VersioningService(session, self._clock)
            changes = versioning.material_changes(quote, command)
            reason = self._version_reason(lock, changes, command.create_version)
            if reason is not None:
                versioning.create_version(quote, tenant, reason)

            for name, value in command.header.items():
                setattr(quote, name, value)
            validate_validity_window(quote.valid_from, quote.valid_until)
            if "currency" in command.header:
                quote.decimal_places = self._currency.decimal_places(quote.currency)

            if command.line_items is not None:
                quote.line_items.clear()
                # Old rows must be gone before new ones reuse their line numbers.
                session.flush()
                priced = []
                for item in command.line_items:
                    line = self._price_item(item, quote.tax_rate, quote.decimal_places)
                    quote.line_items.append(self._line_row(quote, item, line))
                    priced.append(line)
            else:
                priced = []
                for row in quote.line_items:
                    line = self._price_row(row, quote.decimal_places)
                    self._write_calculation(row, line.calculation)
                    priced.append(line)

            self._recompute_totals(quote, priced)
            quote.updated_at = self._clock.now()
            session.flush()

            logger.info(
                "quote_updated",
                extra={
                    "quote_id": str(quote.id),
                    "material_changes": changes,
                    "version_reason": reason,
                    "total_amount": str(quote.total_amount),
                },
            )
            return quote.to_dto()

        with LogContext.bind(
            organization_id=tenant.organization_id,
            user_id=tenant.user_id,
            quote_id=quote_id,
        ):
            return self._runner.run("update_quote", _update, deadline)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def transition_status(
        self,
        tenant: TenantContext,
        quote_id: str | UUID,
        target_status: str | QuoteStatus,
        deadline: Deadline | None = None,
    ) -> QuoteView:
        self._guard.authorize(tenant, "transition_status")

        def _transition(session: Session) -> QuoteView:
            quote = self._guard.load_quote(session, tenant, quote_id, for_update=True)
            now = self._clock.now()
            outcome = self._status_machine.transition(quote.status, target_status, tenant.user_id, now)
            if outcome.noop:
                return quote.to_dto()

            quote.status = outcome.to_status.value
            for column, value in outcome.stamps.items():
                setattr(quote, column, value)
            quote.updated_at = now
            session.flush()

            logger.info(
                "quote_status_changed",
                extra={
                    "quote_id": str(quote.id),
                    "from_status": outcome.from_status.value,
                    "to_status": outcome.to_status.value,
                },
            )
            return quote.to_dto()

        with LogContext.bind(
            organization_id=tenant.organization_id,
            user_id=tenant.user_id,
            quote_id=quote_id,
        ):
            return self._runner.run("transition_status", _transition, deadline)

    # -------------------------------------------------------------------------
    # Reads and delete
    # -------------------------------------------------------------------------

    def get_quote(self, tenant: TenantContext, quote_id: str | UUID) -> QuoteView:
        self._guard.authorize(tenant, "get_quote")
        return self._runner.run(
            "get_quote",
            lambda session: self._guard.load_quote(session, tenant, quote_id).to_dto(),
        )

    def delete_quote(self, tenant: TenantContext, quote_id: str | UUID) -> None:
        """Soft delete.  Only drafts may be deleted."""
        self._guard.authorize(tenant, "delete_quote")

        def _delete(session: Session) -> None:
            quote = self._guard.load_quote(session, tenant, quote_id, for_update=True)
            if quote.status != QuoteStatus.DRAFT.value:
                raise QuoteNotDeletableError(str(quote.id), quote.status)
            quote.deleted_at = self._clock.now()
            session.flush()
            logger.info("quote_deleted", extra={"quote_id": str(quote.id)})

        with LogContext.bind(organization_id=tenant.organization_id, quote_id=quote_id):
            self._runner.run("delete_quote", _delete)

    def check_lock(self, tenant: TenantContext, quote_id: str | UUID) -> LockCheck:
        self._guard.authorize(tenant, "get_quote")
        return self._runner.run(
            "check_lock",
            lambda session: LockService(session, self._guard, self._lock_policy).check_lock(tenant, quote_id),
        )

    def has_material_changes(
        self,
        tenant: TenantContext,
        quote_id: str | UUID,
        data: Mapping[str, Any],
    ) -> bool:
        self._guard.authorize(tenant, "get_quote")
        command = parse_update_command(data)

        def _compare(session: Session) -> bool:
            quote = self._guard.load_quote(session, tenant, quote_id)
            return VersioningService(session, self._clock).has_material_changes(quote, command)

        return self._runner.run("has_material_changes", _compare)

    def get_quote_versions(self, tenant: TenantContext, quote_id: str | UUID) -> list[QuoteVersionView]:
        """All snapshots of a quote, newest first."""
        self._guard.authorize(tenant, "get_quote_versions")

        def _versions(session: Session) -> list[QuoteVersionView]:
            quote = self._guard.load_quote(session, tenant, quote_id)
            return [v.to_dto() for v in VersioningService(session, self._clock).get_versions(quote)]

        return self._runner.run("get_quote_versions", _versions)

    def get_quote_version(
        self,
        tenant: TenantContext,
        quote_id: str | UUID,
        version_id: str | UUID,
    ) -> QuoteVersionView:
        self._guard.authorize(tenant, "get_quote_versions")

        def _version(session: Session) -> QuoteVersionView:
            quote = self._guard.load_quote(session, tenant, quote_id)
            return VersioningService(session, self._clock).get_version(quote, version_id).to_dto()

        return self._runner.run("get_quote_version", _version)

    # -------------------------------------------------------------------------
    # Preview
    # -------------------------------------------------------------------------

    def calculate_quote(self, data: Mapping[str, Any]) -> QuotePreview:
        """
        Price a candidate quote without persisting anything.

        Accepts ``line_items`` plus optional ``currency``, ``tax_rate``,
        ``discount_type`` and ``discount_value``.
        """
        if not isinstance(data, Mapping):
            raise ValidationError("Request body must be an object")
        unknown = sorted(set(data) - {"line_items", "currency", "tax_rate", "discount_type", "discount_value"})
        if unknown:
            raise ValidationError(f"Unknown field(s): {', '.join(unknown)}", field=unknown[0])

        currency = self._currency.validate(data.get("currency") or DEFAULT_CURRENCY)
        decimal_places = self._currency.decimal_places(currency)
        tax_rate = DEFAULT_TAX_RATE
        if data.get("tax_rate") is not None:
            tax_rate = to_decimal(data["tax_rate"], "tax_rate")
            validate_tax_rate(tax_rate)
        discount = parse_discount(data.get("discount_type"), data.get("discount_value"))
        items = parse_line_items(data.get("line_items"))

        priced = [self._price_item(item, tax_rate, decimal_places) for item in items]
        totals = aggregate_quote(priced, decimal_places, discount)
        return QuotePreview(
            currency=currency,
            decimal_places=decimal_places,
            line_items=tuple(
                LinePreview(
                    line_number=item.line_number,
                    tax_rate=line.tax_rate,
                    tax_exempt=line.tax_exempt,
                    subtotal=line.calculation.subtotal,
                    discount_amount=line.calculation.discount_amount,
                    taxable_amount=line.calculation.taxable_amount,
                    tax_amount=line.calculation.tax_amount,
                    total_amount=line.calculation.total_amount,
                )
                for item, line in zip(items, priced)
            ),
            subtotal=totals.subtotal,
            discount_amount=totals.discount_amount,
            taxable_amount=totals.taxable_amount,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
            tax_breakdown=tuple(
                {"rate": b.rate, "taxable_amount": b.taxable_amount, "tax_amount": b.tax_amount}
                for b in totals.tax_breakdown
            ),
        )
