"""
LockService -- store-backed lock checks.

Loads the quote through the tenancy guard and evaluates the pure
LockPolicy against it.  ``enforce`` is the mutation gate used by
QuoteService; ``check_lock`` answers the read-only question.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from quote_kernel.domain.lock_policy import LockCheck, LockPolicy
from quote_kernel.domain.tenancy import TenantContext
from quote_kernel.exceptions import QuoteLockedError
from quote_kernel.logging_config import get_logger
from quote_kernel.models.quote import Quote
from quote_kernel.services.tenancy_guard import TenancyGuard

logger = get_logger("services.lock")


class LockService:

    def __init__(self, session: Session, guard: TenancyGuard, policy: LockPolicy):
        self._session = session
        self._guard = guard
        self._policy = policy

    def check_lock(self, tenant: TenantContext, quote_id: str | UUID) -> LockCheck:
        quote = self._guard.load_quote(self._session, tenant, quote_id)
        return self._policy.evaluate(quote.status, tenant)

    def enforce(self, quote: Quote, tenant: TenantContext) -> LockCheck:
        """Raise QuoteLockedError unless the actor may edit ``quote``."""
        check = self._policy.evaluate(quote.status, tenant)
        if not check.may_edit:
            logger.warning(
                "quote_edit_rejected_locked",
                extra={"quote_id": str(quote.id), "status": quote.status},
            )
            raise QuoteLockedError(str(quote.id), quote.status, check.reason or "locked")
        if check.locked:
            logger.info(
                "quote_force_edit",
                extra={"quote_id": str(quote.id), "status": quote.status},
            )
        return check
