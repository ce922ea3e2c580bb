"""
Module: quote_kernel.models.sequence
Responsibility: Per-organization named counters backing quote numbers.

Invariants enforced:
    - UNIQUE(organization_id, name).
    - current_value only ever increases; allocation happens under a row lock.
"""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from quote_kernel.db.base import Base
from quote_kernel.db.types import ExternalId


class SequenceCounter(Base):

    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_sequence_counters_org_name"),
    )

    organization_id: Mapped[str] = mapped_column(ExternalId, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    current_value: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.organization_id}/{self.name}={self.current_value}>"
