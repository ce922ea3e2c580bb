"""
SequenceService -- per-organization quote numbers via locked counter rows.

Responsibility:
    Allocates strictly increasing numbers per ``(organization_id, name)``
    and formats quote numbers such as ``Q-2024-0007``.  Uses a counter
    table with row-level locking (``SELECT ... FOR UPDATE``).

Architecture position:
    Services -- imperative shell.  Called by QuoteService inside the
    create transaction.

Invariants enforced:
    - The counter row is the sole source of truth; MAX(quote_number)+1 is
      never used.
    - The increment is visible only after the caller commits.  A rolled
      back create returns its number.

Failure modes:
    - IntegrityError on a concurrent first-use race, handled via savepoint
      rollback and re-read.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quote_kernel.logging_config import get_logger
from quote_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Contract:
        ``next_value`` returns the next integer for the named counter of one
        organization.  Never commits; the caller owns the transaction.
    """

    QUOTE_NUMBER = "quote_number"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, organization_id: str, name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(
                SequenceCounter.organization_id == organization_id,
                SequenceCounter.name == name,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, organization_id: str, name: str) -> int:
        counter = self._locked_counter(organization_id, name)

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(
                    organization_id=organization_id, name=name, current_value=1,
                )
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": name},
                )
                savepoint.rollback()
                counter = self._locked_counter(organization_id, name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, organization_id: str, name: str) -> int | None:
        counter = self._session.execute(
            select(SequenceCounter).where(
                SequenceCounter.organization_id == organization_id,
                SequenceCounter.name == name,
            )
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def next_quote_number(self, organization_id: str, year: int, prefix: str = "Q", padding: int = 4) -> str:
        """Allocate ``{prefix}-{year}-{n}``; the counter restarts each year."""
        value = self.next_value(organization_id, f"{self.QUOTE_NUMBER}:{year}")
        return f"{prefix}-{year}-{value:0{padding}d}"
