"""
Typed Exception Hierarchy for the Quote Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failure the engine can produce is a class with a stable, machine-
readable ``code`` and an ``http_status`` that handler collaborators use to
build responses. Callers catch by type and read structured attributes;
they never parse message strings.

    try:
        service.update_quote(tenant, quote_id, data)
    except QuoteLockedError as e:
        respond(e.http_status, {"error": e.code, "status": e.status})

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    QuoteKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidCurrencyError
    |   +-- InvalidIdempotencyKeyError
    |
    +-- TenantContextError
    +-- PermissionDeniedError
    |   +-- QuoteLockedError
    |
    +-- NotFoundError
    |   +-- QuoteNotFoundError
    |   +-- QuoteVersionNotFoundError
    |
    +-- ConflictError
    |   +-- InvalidTransitionError
    |   +-- IdempotencyConflictError
    |   +-- QuoteNotDeletableError
    |
    +-- ImmutabilityViolationError
    |
    +-- TransientStoreError
    |   +-- VersionConflictError
    |
    +-- DeadlineExceededError
    +-- InternalEngineError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                       | HTTP | When Raised
---------------------------|------|------------------------------------------
VALIDATION_ERROR           | 400  | Out-of-range numeric input, bad payload
INVALID_CURRENCY           | 400  | Currency code is not ISO 4217 shaped
INVALID_IDEMPOTENCY_KEY    | 400  | Key empty or longer than the limit
TENANT_CONTEXT_INVALID     | 401  | Missing organization or user
PERMISSION_DENIED          | 403  | Actor lacks the operation permission
QUOTE_LOCKED               | 403  | Edit of approved/accepted without force-edit
QUOTE_NOT_FOUND            | 404  | Absent, soft-deleted, or other tenant
QUOTE_VERSION_NOT_FOUND    | 404  | Version id not owned by the quote
INVALID_STATUS_TRANSITION  | 409  | Pair not in the transition table
IDEMPOTENCY_KEY_CONFLICT   | 409  | Key reused with a different request hash
QUOTE_NOT_DELETABLE        | 409  | Soft delete of a quote that is not a draft
IMMUTABILITY_VIOLATION     | 500  | Update/delete of a version snapshot
TRANSIENT_STORE_ERROR      | 503  | Retryable store failure (internal only)
VERSION_CONFLICT           | 503  | Duplicate version number (retried)
DEADLINE_EXCEEDED          | 504  | Caller deadline passed, nothing committed
INTERNAL_ERROR             | 500  | Retries exhausted or unexpected failure

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Cross-tenant access raises QuoteNotFoundError with the same message as a
   missing quote. The organization that owns the row is never echoed.

2. TransientStoreError is raised and consumed inside the transaction
   runner. It only reaches callers wrapped in InternalEngineError once the
   retry budget is spent.

3. ``error_response`` is the single place that renders an exception for a
   caller. Tracebacks are attached only in debug mode.

===============================================================================
"""

from __future__ import annotations

import traceback
from typing import Any


class QuoteKernelError(Exception):
    """
    Base exception for all quote kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification and an ``http_status`` for the handler surface.
    """

    code: str = "QUOTE_KERNEL_ERROR"
    http_status: int = 500

    def details(self) -> dict[str, Any]:
        """Public structured attributes, safe to return to a caller."""
        return {
            k: v for k, v in vars(self).items()
            if not k.startswith("_")
        }


# Validation


class ValidationError(QuoteKernelError):
    """Malformed or out-of-range input."""

    code: str = "VALIDATION_ERROR"
    http_status: int = 400

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidCurrencyError(ValidationError):
    """Currency code is not a valid ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid currency code: {currency!r}", field="currency")


class InvalidIdempotencyKeyError(ValidationError):
    """Idempotency key is empty or exceeds the configured maximum length."""

    code: str = "INVALID_IDEMPOTENCY_KEY"

    def __init__(self, reason: str, max_length: int):
        self.reason = reason
        self.max_length = max_length
        super().__init__(
            f"Invalid idempotency key: {reason}", field="idempotency_key"
        )


# Tenancy and authorization


class TenantContextError(QuoteKernelError):
    """Tenant context is missing an organization or user."""

    code: str = "TENANT_CONTEXT_INVALID"
    http_status: int = 401

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid tenant context: {reason}")


class PermissionDeniedError(QuoteKernelError):
    """Actor does not hold the permission an operation requires."""

    code: str = "PERMISSION_DENIED"
    http_status: int = 403

    def __init__(self, operation: str, permission: str):
        self.operation = operation
        self.permission = permission
        super().__init__(
            f"Permission {permission!r} required for {operation}"
        )


class QuoteLockedError(PermissionDeniedError):
    """
    Edit attempted on a locked quote by an actor without force-edit.

    Locked quotes are those in an approved or accepted state.
    """

    code: str = "QUOTE_LOCKED"

    def __init__(self, quote_id: str, status: str, reason: str):
        self.quote_id = quote_id
        self.status = status
        self.reason = reason
        QuoteKernelError.__init__(self, f"Quote {quote_id} is locked: {reason}")


# Not found


class NotFoundError(QuoteKernelError):
    """Base for missing resources."""

    code: str = "NOT_FOUND"
    http_status: int = 404


class QuoteNotFoundError(NotFoundError):
    """Quote is absent, soft-deleted, or owned by another organization."""

    code: str = "QUOTE_NOT_FOUND"

    def __init__(self, quote_id: str):
        self.quote_id = quote_id
        super().__init__(f"Quote not found: {quote_id}")


class QuoteVersionNotFoundError(NotFoundError):
    """Version id does not belong to the quote."""

    code: str = "QUOTE_VERSION_NOT_FOUND"

    def __init__(self, quote_id: str, version_id: str):
        self.quote_id = quote_id
        self.version_id = version_id
        super().__init__(f"Version {version_id} not found for quote {quote_id}")


# Conflicts


class ConflictError(QuoteKernelError):
    """Base for requests that conflict with current state."""

    code: str = "CONFLICT"
    http_status: int = 409


class InvalidTransitionError(ConflictError):
    """Requested status change is not in the transition table."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, current_status: str, requested_status: str):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Invalid status transition from {current_status} "
            f"to {requested_status}"
        )


class IdempotencyConflictError(ConflictError):
    """
    Idempotency key reused with a different request fingerprint.

    This is a client protocol violation: a key identifies one request.
    """

    code: str = "IDEMPOTENCY_KEY_CONFLICT"

    def __init__(self, idempotency_key: str, expected_hash: str, received_hash: str):
        self.idempotency_key = idempotency_key
        self.expected_hash = expected_hash
        self.received_hash = received_hash
        super().__init__(
            f"Idempotency key {idempotency_key!r} was already used "
            f"with a different request"
        )


class QuoteNotDeletableError(ConflictError):
    """Only draft quotes may be soft-deleted."""

    code: str = "QUOTE_NOT_DELETABLE"

    def __init__(self, quote_id: str, status: str):
        self.quote_id = quote_id
        self.status = status
        super().__init__(f"Quote {quote_id} is {status}; only draft quotes can be deleted")


# Immutability


class ImmutabilityViolationError(QuoteKernelError):
    """Attempt to update or delete an immutable version snapshot."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# Store and runtime


class TransientStoreError(QuoteKernelError):
    """Retryable failure of the underlying store."""

    code: str = "TRANSIENT_STORE_ERROR"
    http_status: int = 503

    def __init__(self, message: str, cause: BaseException | None = None):
        self.cause_type = type(cause).__name__ if cause is not None else None
        super().__init__(message)


class VersionConflictError(TransientStoreError):
    """A concurrent writer claimed the same version number."""

    code: str = "VERSION_CONFLICT"

    def __init__(self, quote_id: str, version_number: int):
        self.quote_id = quote_id
        self.version_number = version_number
        super().__init__(
            f"Version {version_number} of quote {quote_id} already exists"
        )


class DeadlineExceededError(QuoteKernelError):
    """Caller deadline passed before the operation could commit."""

    code: str = "DEADLINE_EXCEEDED"
    http_status: int = 504

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Deadline exceeded during {operation}")


class InternalEngineError(QuoteKernelError):
    """Generic internal failure. Raised when retries are exhausted."""

    code: str = "INTERNAL_ERROR"
    http_status: int = 500

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} failed after {attempts} attempt(s)"
        )


_INTERNAL_MESSAGE = "An internal error occurred"


def error_response(exc: BaseException, debug: bool = False) -> tuple[int, dict[str, Any]]:
    """
    Render an exception as ``(http_status, body)``.

    Internal errors (5xx) never expose their message or attributes unless
    ``debug`` is set. Anything that is not a QuoteKernelError renders as
    INTERNAL_ERROR.
    """
    if isinstance(exc, QuoteKernelError) and exc.http_status < 500:
        body: dict[str, Any] = {"error": exc.code, "message": str(exc)}
        details = exc.details()
        if details:
            body["details"] = details
        status = exc.http_status
    elif isinstance(exc, QuoteKernelError):
        body = {"error": exc.code, "message": _INTERNAL_MESSAGE}
        status = exc.http_status
        if debug:
            body["message"] = str(exc)
            body["details"] = exc.details()
    else:
        body = {"error": InternalEngineError.code, "message": _INTERNAL_MESSAGE}
        status = 500
        if debug:
            body["message"] = str(exc)

    if debug:
        body["traceback"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
    return status, body
