"""
IdempotencyService -- exactly-once responses for retried unsafe requests.

Responsibility:
    Fingerprints a request (method, route, body, query, params), looks up a
    prior response under ``(organization_id, idempotency_key)``, and stores
    the response of the first successful execution with a TTL.

Architecture position:
    Services -- imperative shell.  Owns its own short transactions through
    TransactionRunner; the business operation commits first, then the
    response is stored.

Invariants enforced:
    - Key validation (non-empty, bounded length) happens before hashing.
    - A hit within TTL with the same fingerprint returns the stored status
      and body text verbatim.  The wrapped function is not called.
    - The same key with a different fingerprint within TTL raises
      IdempotencyConflictError.  It never silently runs as a new request.
    - Concurrent writers of one key serialize on the unique constraint; the
      loser returns the winner's stored response instead of overwriting it.
    - Only 2xx responses are stored.  A storage failure after the operation
      succeeded is logged and swallowed.

Tenant scope:
    Every request-path query filters on ``organization_id``.  The two
    maintenance operations are the exception: ``cleanup_expired`` is the
    process-wide expiry sweep (run by IdempotencySweeper and the CLI, where
    no tenant context exists), and ``get_stats(None)`` reports the same
    global counts.  Neither returns record contents.

Failure modes:
    - InvalidIdempotencyKeyError, IdempotencyConflictError.
    - Errors raised by the wrapped function propagate unchanged and
      nothing is cached.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from quote_kernel.config import IdempotencyConfig, RetryConfig
from quote_kernel.domain.clock import Clock, SystemClock
from quote_kernel.domain.tenancy import TenantContext
from quote_kernel.exceptions import (
    IdempotencyConflictError,
    InvalidIdempotencyKeyError,
    TransientStoreError,
)
from quote_kernel.logging_config import LogContext, get_logger
from quote_kernel.models.idempotency import IdempotencyRecord
from quote_kernel.services.transaction import Deadline, TransactionRunner
from quote_kernel.utils.hashing import hash_request, render_json

logger = get_logger("services.idempotency")


@dataclass(frozen=True)
class CachedResponse:
    status_code: int
    body: str


@dataclass(frozen=True)
class IdempotencyCheck:
    exists: bool
    request_hash: str
    cached_response: CachedResponse | None = None


@dataclass(frozen=True)
class IdempotentResult:
    status_code: int
    body: str
    replayed: bool = False


@dataclass(frozen=True)
class IdempotencyStats:
    total_records: int
    active_records: int
    expired_records: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total_records": self.total_records,
            "active_records": self.active_records,
            "expired_records": self.expired_records,
        }


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


class IdempotencyService:
    """
    Contract:
        ``with_idempotency`` runs ``fn`` at most once per live key.  ``fn``
        returns ``(status_code, body)``; a non-string body is rendered as
        canonical JSON so the stored text is what the first caller saw.

    Non-goals:
        Two *concurrent* first requests may both execute; the store step
        makes them return the same response.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: IdempotencyConfig | None = None,
        clock: Clock | None = None,
        retry: RetryConfig | None = None,
    ):
        self._config = config or IdempotencyConfig()
        self._clock = clock or SystemClock()
        self._runner = TransactionRunner(session_factory, retry)

    @property
    def ttl(self) -> timedelta:
        return timedelta(hours=self._config.ttl_hours)

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    # -------------------------------------------------------------------------
    # Key and fingerprint
    # -------------------------------------------------------------------------

    def validate_key(self, key: Any) -> str:
        max_length = self._config.max_key_length
        if not isinstance(key, str) or not key.strip():
            raise InvalidIdempotencyKeyError("key must be a non-empty string", max_length)
        if len(key) > max_length:
            raise InvalidIdempotencyKeyError(
                f"key exceeds {max_length} characters", max_length
            )
        return key

    # -------------------------------------------------------------------------
    # Check / store
    # -------------------------------------------------------------------------

    def _find(self, session: Session, tenant: TenantContext, key: str, lock: bool = False) -> IdempotencyRecord | None:
        stmt = select(IdempotencyRecord).where(
            IdempotencyRecord.organization_id == tenant.organization_id,
            IdempotencyRecord.idempotency_key == key,
        )
        if lock:
            stmt = stmt.with_for_update()
        return session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _live_response(self, record: IdempotencyRecord | None, key: str, request_hash: str) -> CachedResponse | None:
        if record is None or record.is_expired(self._clock.now()):
            return None
        if record.request_hash != request_hash:
            logger.warning(
                "idempotency_key_conflict",
                extra={"expected_hash": record.request_hash, "received_hash": request_hash},
            )
            raise IdempotencyConflictError(key, record.request_hash, request_hash)
        return CachedResponse(status_code=record.status_code, body=record.response_body)

    def check(
        self,
        key: str,
        tenant: TenantContext,
        method: str,
        route: str,
        body: Any = None,
        query: Any = None,
        params: Any = None,
        deadline: Deadline | None = None,
    ) -> IdempotencyCheck:
        key = self.validate_key(key)
        tenant.validate()
        request_hash = hash_request(method, route, body, query, params)
        if not self.enabled:
            return IdempotencyCheck(exists=False, request_hash=request_hash)

        def _check(session: Session) -> IdempotencyCheck:
            cached = self._live_response(self._find(session, tenant, key), key, request_hash)
            return IdempotencyCheck(
                exists=cached is not None,
                request_hash=request_hash,
                cached_response=cached,
            )

        return self._runner.run("idempotency_check", _check, deadline)

    def store(
        self,
        key: str,
        tenant: TenantContext,
        method: str,
        route: str,
        status_code: int,
        response_body: str,
        body: Any = None,
        query: Any = None,
        params: Any = None,
        deadline: Deadline | None = None,
    ) -> CachedResponse:
        """
        Persist a response.  Returns the response now stored under the key,
        which is the earlier writer's if one got there first.
        """
        key = self.validate_key(key)
        request_hash = hash_request(method, route, body, query, params)
        ours = CachedResponse(status_code=status_code, body=response_body)
        if not self.enabled:
            return ours

        def _store(session: Session) -> CachedResponse:
            existing = self._find(session, tenant, key, lock=True)
            cached = self._live_response(existing, key, request_hash)
            if cached is not None:
                return cached
            if existing is not None:
                session.delete(existing)
                session.flush()

            now = self._clock.now()
            savepoint = session.begin_nested()
            try:
                session.add(IdempotencyRecord(
                    organization_id=tenant.organization_id,
                    idempotency_key=key,
                    request_hash=request_hash,
                    method=method.upper(),
                    route=route,
                    user_id=tenant.user_id,
                    status_code=status_code,
                    response_body=response_body,
                    created_at=now,
                    expires_at=now + self.ttl,
                ))
                session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                winner = self._live_response(self._find(session, tenant, key), key, request_hash)
                if winner is None:
                    raise TransientStoreError("idempotency record vanished during store") from None
                logger.info("idempotency_store_lost_race")
                return winner
            return ours

        return self._runner.run("idempotency_store", _store, deadline)

    # -------------------------------------------------------------------------
    # Wrapper
    # -------------------------------------------------------------------------

    def with_idempotency(
        self,
        key: str | None,
        tenant: TenantContext,
        method: str,
        route: str,
        fn: Callable[[], tuple[int, Any]],
        body: Any = None,
        query: Any = None,
        params: Any = None,
        deadline: Deadline | None = None,
    ) -> IdempotentResult:
        """Execute ``fn`` only on the first occurrence of ``key``."""
        if key is None:
            status_code, payload = fn()
            return IdempotentResult(status_code, _render(payload))

        with LogContext.bind(idempotency_key=key):
            check = self.check(key, tenant, method, route, body, query, params, deadline)
            if check.exists:
                logger.info("idempotency_replayed", extra={"status_code": check.cached_response.status_code})
                return IdempotentResult(
                    check.cached_response.status_code,
                    check.cached_response.body,
                    replayed=True,
                )

            status_code, payload = fn()
            text = _render(payload)
            if not _is_success(status_code):
                return IdempotentResult(status_code, text)

            try:
                stored = self.store(
                    key, tenant, method, route, status_code, text,
                    body, query, params, deadline,
                )
            except Exception:
                logger.warning("idempotency_store_failed", exc_info=True)
                return IdempotentResult(status_code, text)

            if stored.body != text or stored.status_code != status_code:
                return IdempotentResult(stored.status_code, stored.body, replayed=True)
            return IdempotentResult(status_code, text)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def cleanup_expired(self) -> int:
        """
        Delete expired records for every organization; returns the number
        removed.  The only write that spans tenants.
        """
        now = self._clock.now()

        def _cleanup(session: Session) -> int:
            result = session.execute(
                delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= now)
            )
            return result.rowcount or 0

        removed = self._runner.run("idempotency_cleanup", _cleanup)
        logger.info("idempotency_records_purged", extra={"count": removed})
        return removed

    def get_stats(self, tenant: TenantContext | None = None) -> IdempotencyStats:
        """Record counts for one organization, or for all when ``tenant`` is None."""
        now = self._clock.now()

        def _stats(session: Session) -> IdempotencyStats:
            scope = []
            if tenant is not None:
                scope.append(IdempotencyRecord.organization_id == tenant.organization_id)
            total = session.execute(
                select(func.count()).select_from(IdempotencyRecord).where(*scope)
            ).scalar_one()
            expired = session.execute(
                select(func.count())
                .select_from(IdempotencyRecord)
                .where(IdempotencyRecord.expires_at <= now, *scope)
            ).scalar_one()
            return IdempotencyStats(
                total_records=total,
                active_records=total - expired,
                expired_records=expired,
            )

        return self._runner.run("idempotency_stats", _stats)


def _render(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    return render_json(payload)
