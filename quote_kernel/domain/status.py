"""
Quote status state machine (``quote_kernel.domain.status``).

Responsibility
--------------
Validates a requested status change against an explicit transition table
and describes the stamps the change carries.  The table is injected from
``StatusConfig`` so that tests and deployments can substitute a policy.

Architecture position
---------------------
**Domain layer** -- pure value objects.  ZERO I/O.  The quote service
applies the returned ``TransitionOutcome`` to the ORM row inside the same
transaction as the status change.

Invariants enforced
-------------------
* Only pairs listed in the table are accepted; no state is skipped.
* ``accepted``, ``rejected`` and ``cancelled`` are terminal in the default
  table.
* Re-requesting the current status is rejected unless the machine was
  built with ``allow_same_state_noop=True``, in which case it is a no-op
  with no stamps.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from quote_kernel.exceptions import InvalidTransitionError, ValidationError


class QuoteStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Transition:
    from_state: QuoteStatus
    to_state: QuoteStatus


# Timestamp/actor columns stamped on entry into a status.
STATUS_STAMPS: dict[QuoteStatus, tuple[str, ...]] = {
    QuoteStatus.APPROVED: ("approved_at", "approved_by"),
    QuoteStatus.SENT: ("sent_at",),
    QuoteStatus.ACCEPTED: ("accepted_at",),
}


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of a validated transition.

    ``stamps`` maps column name to value; empty for a same-state no-op.
    """

    from_status: QuoteStatus
    to_status: QuoteStatus
    stamps: dict[str, object]
    noop: bool = False


def parse_status(value: str | QuoteStatus) -> QuoteStatus:
    try:
        return QuoteStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown quote status: {value!r}", field="status"
        ) from None


class StatusMachine:
    """Transition authority for quote statuses.

    Contract: ``transition()`` either returns an outcome or raises
    ``InvalidTransitionError`` naming the current and requested states.
    Non-goals: does not persist anything or check permissions.
    """

    def __init__(
        self,
        transitions: dict[str, frozenset[str]],
        allow_same_state_noop: bool = False,
    ):
        self._table: dict[QuoteStatus, frozenset[QuoteStatus]] = {
            QuoteStatus(src): frozenset(QuoteStatus(dst) for dst in dsts)
            for src, dsts in transitions.items()
        }
        self.allow_same_state_noop = allow_same_state_noop

    @classmethod
    def from_config(cls, status_config) -> StatusMachine:
        return cls(
            status_config.transitions,
            allow_same_state_noop=status_config.allow_same_state_noop,
        )

    @property
    def transitions(self) -> tuple[Transition, ...]:
        return tuple(
            Transition(src, dst)
            for src in QuoteStatus
            for dst in sorted(self._table.get(src, ()), key=lambda s: s.value)
        )

    def allowed_targets(self, current: str | QuoteStatus) -> frozenset[QuoteStatus]:
        return self._table.get(QuoteStatus(current), frozenset())

    def is_terminal(self, status: str | QuoteStatus) -> bool:
        return not self.allowed_targets(status)

    def can_transition(self, current: str | QuoteStatus, target: str | QuoteStatus) -> bool:
        return QuoteStatus(target) in self.allowed_targets(current)

    def transition(
        self,
        current: str | QuoteStatus,
        target: str | QuoteStatus,
        actor_id: str,
        now: datetime,
    ) -> TransitionOutcome:
        current = QuoteStatus(current)
        target = parse_status(target)

        if current == target and self.allow_same_state_noop:
            return TransitionOutcome(current, target, stamps={}, noop=True)

        if not self.can_transition(current, target):
            raise InvalidTransitionError(current.value, target.value)

        stamps: dict[str, object] = {}
        for column in STATUS_STAMPS.get(target, ()):
            stamps[column] = actor_id if column.endswith("_by") else now
        return TransitionOutcome(current, target, stamps=stamps)
