"""
TenancyGuard -- context validation, operation permissions, scoped loads.

Responsibility:
    Every engine entry point passes through ``authorize`` and loads quotes
    only through ``load_quote``.  Loads always carry the organization and
    soft-delete predicates.

Invariants enforced:
    - A quote that is absent, soft-deleted, or owned by another
      organization produces the same QuoteNotFoundError.  The caller
      cannot distinguish the three cases.
    - A malformed quote id is also "not found", not a validation error.
"""

from __future__ import annotations

from typing import Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from quote_kernel.domain.tenancy import TenantContext
from quote_kernel.exceptions import PermissionDeniedError, QuoteNotFoundError
from quote_kernel.logging_config import get_logger
from quote_kernel.models.quote import Quote

logger = get_logger("services.tenancy_guard")


def coerce_uuid(value: str | UUID) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class TenancyGuard:

    def __init__(self, operation_permissions: Mapping[str, str] | None = None):
        self._operation_permissions = dict(operation_permissions or {})

    def authorize(self, tenant: TenantContext, operation: str) -> None:
        """Validate the context and the permission mapped to ``operation``."""
        tenant.validate()
        permission = self._operation_permissions.get(operation)
        if permission and not tenant.has_permission(permission):
            logger.warning(
                "permission_denied",
                extra={"operation": operation, "permission": permission},
            )
            raise PermissionDeniedError(operation, permission)

    def load_quote(
        self,
        session: Session,
        tenant: TenantContext,
        quote_id: str | UUID,
        for_update: bool = False,
    ) -> Quote:
        qid = coerce_uuid(quote_id)
        if qid is None:
            raise QuoteNotFoundError(str(quote_id))

        stmt = select(Quote).where(
            Quote.id == qid,
            Quote.organization_id == tenant.organization_id,
            Quote.deleted_at.is_(None),
        )
        if for_update:
            stmt = stmt.with_for_update(of=Quote).execution_options(populate_existing=True)

        quote = session.execute(stmt).scalar_one_or_none()
        if quote is None:
            logger.info("quote_not_found", extra={"quote_id": str(quote_id)})
            raise QuoteNotFoundError(str(quote_id))
        return quote
