"""
Pure domain layer.

Calculators, the status machine, the lock policy, typed commands and read
models.  Nothing here touches the ORM, a session, or the wall clock;
time arrives through an injected Clock.
"""

from quote_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from quote_kernel.domain.commands import (
    CreateQuoteCommand,
    LineItemInput,
    UpdateQuoteCommand,
    merge_discount,
    parse_create_command,
    parse_update_command,
)
from quote_kernel.domain.currency import CurrencyPolicy, round_money
from quote_kernel.domain.lock_policy import LockCheck, LockPolicy
from quote_kernel.domain.pricing import (
    NO_DISCOUNT,
    Discount,
    DiscountType,
    LineCalculation,
    calculate_discount,
    calculate_line,
)
from quote_kernel.domain.status import QuoteStatus, StatusMachine, TransitionOutcome
from quote_kernel.domain.tenancy import TenantContext
from quote_kernel.domain.totals import PricedLine, QuoteTotals, TaxBreakdown, aggregate_quote
from quote_kernel.domain.views import (
    LineItemView,
    QuotePreview,
    QuoteVersionSummary,
    QuoteVersionView,
    QuoteView,
)

__all__ = [
    "Clock",
    "CreateQuoteCommand",
    "CurrencyPolicy",
    "DeterministicClock",
    "Discount",
    "DiscountType",
    "LineCalculation",
    "LineItemInput",
    "LineItemView",
    "LockCheck",
    "LockPolicy",
    "NO_DISCOUNT",
    "PricedLine",
    "QuotePreview",
    "QuoteStatus",
    "QuoteTotals",
    "QuoteVersionSummary",
    "QuoteVersionView",
    "QuoteView",
    "StatusMachine",
    "SystemClock",
    "TaxBreakdown",
    "TenantContext",
    "TransitionOutcome",
    "UpdateQuoteCommand",
    "aggregate_quote",
    "calculate_discount",
    "calculate_line",
    "merge_discount",
    "parse_create_command",
    "parse_update_command",
    "round_money",
]
