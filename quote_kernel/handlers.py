"""
Handler surface -- engine calls rendered as (status_code, JSON body).

Routes ``Idempotency-Key`` to create and update only.  Every
QuoteKernelError becomes ``{error, message, details?}`` with its stable
code and HTTP status; unexpected exceptions become INTERNAL_ERROR 500.
Bodies are canonical JSON text so an idempotent replay is byte-identical
to the original response.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping
from uuid import UUID

from quote_kernel.domain.tenancy import TenantContext
from quote_kernel.exceptions import QuoteKernelError, error_response
from quote_kernel.logging_config import LogContext, get_logger
from quote_kernel.services.idempotency_service import IdempotencyService
from quote_kernel.services.quote_service import QuoteService
from quote_kernel.utils.hashing import render_json

logger = get_logger("handlers")

QUOTES_ROUTE = "/api/quotes"


@dataclass(frozen=True)
class HandlerResponse:
    status_code: int
    body: str
    replayed: bool = False


class QuoteHandlers:

    def __init__(
        self,
        service: QuoteService,
        idempotency: IdempotencyService,
        debug: bool = False,
    ):
        self._service = service
        self._idempotency = idempotency
        self._debug = debug

    def _fail(self, exc: Exception) -> HandlerResponse:
        status, body = error_response(exc, debug=self._debug)
        if isinstance(exc, QuoteKernelError) and exc.http_status < 500:
            logger.info("request_rejected", extra={"error": exc.code, "status_code": status})
        else:
            logger.error("request_failed", extra={"status_code": status}, exc_info=exc)
        return HandlerResponse(status, render_json(body))

    def _respond(self, call: Callable[[], tuple[int, Any]]) -> HandlerResponse:
        try:
            status, payload = call()
        except Exception as exc:
            return self._fail(exc)
        return HandlerResponse(status, render_json(payload))

    def _idempotent(
        self,
        key: str | None,
        tenant: TenantContext,
        method: str,
        route: str,
        body: Mapping[str, Any],
        params: Mapping[str, Any] | None,
        call: Callable[[], tuple[int, Any]],
    ) -> HandlerResponse:
        try:
            result = self._idempotency.with_idempotency(
                key, tenant, method, route, call, body=body, params=params,
            )
        except Exception as exc:
            return self._fail(exc)
        return HandlerResponse(result.status_code, result.body, result.replayed)

    # -------------------------------------------------------------------------
    # Routes
    # -------------------------------------------------------------------------

    def create_quote(
        self,
        tenant: TenantContext,
        body: Mapping[str, Any],
        idempotency_key: str | None = None,
    ) -> HandlerResponse:
        """POST /api/quotes"""
        with LogContext.bind(organization_id=tenant.organization_id, user_id=tenant.user_id):
            return self._idempotent(
                idempotency_key, tenant, "POST", QUOTES_ROUTE, body, None,
                lambda: (201, self._service.create_quote(tenant, body).to_dict()),
            )

    def update_quote(
        self,
        tenant: TenantContext,
        quote_id: str | UUID,
        body: Mapping[str, Any],
        idempotency_key: str | None = None,
    ) -> HandlerResponse:
        """PUT /api/quotes/{id}"""
        route = f"{QUOTES_ROUTE}/{{id}}"
        with LogContext.bind(organization_id=tenant.organization_id, quote_id=quote_id):
            return self._idempotent(
                idempotency_key, tenant, "PUT", route, body, {"id": str(quote_id)},
                lambda: (200, self._service.update_quote(tenant, quote_id, body).to_dict()),
            )

    def transition_status(
        self,
        tenant: TenantContext,
        quote_id: str | UUID,
        body: Mapping[str, Any],
    ) -> HandlerResponse:
        """POST /api/quotes/{id}/status with ``{"status": ...}``"""

        def _call() -> tuple[int, Any]:
            target = body.get("status") if isinstance(body, Mapping) else None
            view = self._service.transition_status(tenant, quote_id, target)
            return 200, view.to_dict()

        return self._respond(_call)

    def get_quote(self, tenant: TenantContext, quote_id: str | UUID) -> HandlerResponse:
        return self._respond(lambda: (200, self._service.get_quote(tenant, quote_id).to_dict()))

    def delete_quote(self, tenant: TenantContext, quote_id: str | UUID) -> HandlerResponse:
        def _call() -> tuple[int, Any]:
            self._service.delete_quote(tenant, quote_id)
            return 200, {"id": str(quote_id), "deleted": True}

        return self._respond(_call)

    def get_quote_versions(self, tenant: TenantContext, quote_id: str | UUID) -> HandlerResponse:
        def _call() -> tuple[int, Any]:
            versions = self._service.get_quote_versions(tenant, quote_id)
            return 200, {"versions": [v.to_dict() for v in versions]}

        return self._respond(_call)

    def get_quote_version(
        self,
        tenant: TenantContext,
        quote_id: str | UUID,
        version_id: str | UUID,
    ) -> HandlerResponse:
        return self._respond(
            lambda: (200, self._service.get_quote_version(tenant, quote_id, version_id).to_dict())
        )

    def calculate_quote(self, body: Mapping[str, Any]) -> HandlerResponse:
        return self._respond(lambda: (200, self._service.calculate_quote(body).to_dict()))
