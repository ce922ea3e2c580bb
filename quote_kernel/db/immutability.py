"""
ORM-Level Immutability Enforcement for quote version snapshots.

===============================================================================
WHY THIS EXISTS
===============================================================================

A QuoteVersion is the historical record of what a quote said at a point in
time.  Versions are appended, never edited: an auditor comparing version 3
to version 4 must see exactly what was snapshotted.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
Listeners intercept them and raise:

    session.flush()
         |
         v
    [before_update] --> _check_version_immutability() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_version_delete() ---------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                  | When Immutable
------------------------|------------------------
QuoteVersion            | ALWAYS (from creation)
QuoteLineItemVersion    | ALWAYS (from creation)

Bulk ``update()``/``delete()`` statements bypass mapper events; services never
issue them against version tables.

===============================================================================
"""

from sqlalchemy import event

from quote_kernel.exceptions import ImmutabilityViolationError
from quote_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(target, operation: str) -> None:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    verb = "modified" if operation == "UPDATE" else "deleted"
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"Version snapshots cannot be {verb}",
    )


def _check_version_immutability(mapper, connection, target):
    _block(target, "UPDATE")


def _check_version_delete(mapper, connection, target):
    _block(target, "DELETE")


def _listener_targets():
    from quote_kernel.models.quote_version import QuoteLineItemVersion, QuoteVersion

    return (QuoteVersion, QuoteLineItemVersion)


def register_immutability_listeners() -> None:
    """
    Register immutability listeners on the version models.

    Safe to call more than once; already-registered listeners are skipped.
    """
    for model in _listener_targets():
        for event_name, fn in (
            ("before_update", _check_version_immutability),
            ("before_delete", _check_version_delete),
        ):
            if not event.contains(model, event_name, fn):
                event.listen(model, event_name, fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the listeners.

    WARNING: Only use this in tests that need to bypass the guard.
    """
    for model in _listener_targets():
        for event_name, fn in (
            ("before_update", _check_version_immutability),
            ("before_delete", _check_version_delete),
        ):
            if event.contains(model, event_name, fn):
                event.remove(model, event_name, fn)
