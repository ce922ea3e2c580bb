"""Services for the quote kernel (transactional shell)."""

from quote_kernel.services.idempotency_service import (
    IdempotencyCheck,
    IdempotencyService,
    IdempotencyStats,
    IdempotentResult,
)
from quote_kernel.services.lock_service import LockService
from quote_kernel.services.quote_service import QuoteService
from quote_kernel.services.sequence_service import SequenceService
from quote_kernel.services.sweeper import IdempotencySweeper
from quote_kernel.services.tenancy_guard import TenancyGuard
from quote_kernel.services.transaction import Deadline, TransactionRunner, is_transient
from quote_kernel.services.versioning_service import VersioningService, VersionReason

__all__ = [
    "Deadline",
    "IdempotencyCheck",
    "IdempotencyService",
    "IdempotencyStats",
    "IdempotencySweeper",
    "IdempotentResult",
    "LockService",
    "QuoteService",
    "SequenceService",
    "TenancyGuard",
    "TransactionRunner",
    "VersionReason",
    "VersioningService",
    "is_transient",
]
