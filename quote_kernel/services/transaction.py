"""
TransactionRunner -- one unit of work per transaction, with bounded retry.

Responsibility:
    Opens a fresh session per attempt, runs the caller's function, and
    commits as the final step.  Transient store failures (serialization
    conflicts, deadlocks, dropped connections, SQLite busy errors, version
    number collisions) roll back and retry with bounded exponential
    backoff.  Everything else rolls back and propagates unchanged.

Architecture position:
    Services -- imperative shell.  Every QuoteService write goes through
    ``run``.  The function passed in never commits.

Invariants enforced:
    - Commit is the last step: a failure or an expired deadline before it
      leaves nothing persisted.
    - At most ``max_attempts`` attempts; exhaustion raises
      InternalEngineError chained to the last transient error.
    - The deadline is checked before each attempt and before commit.

Failure modes:
    - DeadlineExceededError: caller deadline passed; rolled back.
    - InternalEngineError: transient failures outlasted the retry budget.
    - Any non-transient exception: rolled back and re-raised as-is.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from quote_kernel.config import RetryConfig
from quote_kernel.exceptions import (
    DeadlineExceededError,
    InternalEngineError,
    TransientStoreError,
)
from quote_kernel.logging_config import get_logger

logger = get_logger("services.transaction")

T = TypeVar("T")

# SQLSTATE serialization_failure, deadlock_detected
_TRANSIENT_SQLSTATES = frozenset({"40001", "40P01"})

_TRANSIENT_MESSAGES = (
    "deadlock",
    "could not serialize",
    "database is locked",
    "database table is locked",
    "connection reset",
    "server closed the connection",
    "connection was closed",
)


def is_transient(exc: BaseException) -> bool:
    """Classify an exception as safe to retry in a fresh transaction."""
    if isinstance(exc, TransientStoreError):
        return True
    if not isinstance(exc, DBAPIError):
        return False
    if exc.connection_invalidated:
        return True
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _TRANSIENT_SQLSTATES:
        return True
    if isinstance(exc, OperationalError):
        message = str(orig).lower()
        return any(fragment in message for fragment in _TRANSIENT_MESSAGES)
    return False


@dataclass(frozen=True)
class Deadline:
    """Absolute deadline on a monotonic clock, inherited from the caller."""

    expires_at: float
    monotonic: Callable[[], float] = field(default=time.monotonic, compare=False)

    @classmethod
    def after(cls, seconds: float, monotonic: Callable[[], float] = time.monotonic) -> Deadline:
        return cls(expires_at=monotonic() + seconds, monotonic=monotonic)

    def remaining(self) -> float:
        return self.expires_at - self.monotonic()

    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, operation: str) -> None:
        if self.expired():
            raise DeadlineExceededError(operation)


class TransactionRunner:
    """
    Contract:
        ``run(name, fn)`` calls ``fn(session)`` and commits.  The return value
        of the successful attempt is returned.  ``fn`` may be called more than
        once and must not have side effects outside the session.

    Non-goals:
        Does not retry IntegrityError in general; callers that expect a
        specific constraint race translate it into TransientStoreError.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        retry: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._retry = retry or RetryConfig()
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._retry.max_attempts

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        delay = self._retry.base_delay_seconds * (2 ** (attempt - 1))
        return min(delay, self._retry.max_delay_seconds)

    def run(
        self,
        operation: str,
        fn: Callable[[Session], T],
        deadline: Deadline | None = None,
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            if deadline is not None:
                deadline.check(operation)

            session = self._session_factory()
            try:
                result = fn(session)
                if deadline is not None:
                    deadline.check(operation)
                session.commit()
                if attempt > 1:
                    logger.info(
                        "transaction_succeeded_after_retry",
                        extra={"operation": operation, "attempt": attempt},
                    )
                return result
            except Exception as exc:
                session.rollback()
                if not is_transient(exc):
                    raise
                if attempt >= self._retry.max_attempts:
                    logger.error(
                        "transaction_retries_exhausted",
                        extra={"operation": operation, "attempts": attempt},
                        exc_info=True,
                    )
                    raise InternalEngineError(operation, attempt) from exc
                delay = self.backoff(attempt)
                if deadline is not None and delay >= deadline.remaining():
                    raise DeadlineExceededError(operation) from exc
                logger.warning(
                    "transaction_retry",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "delay_seconds": delay,
                        "error_type": type(exc).__name__,
                    },
                )
                self._sleep(delay)
            finally:
                session.close()
