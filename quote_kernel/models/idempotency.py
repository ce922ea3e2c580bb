"""
Module: quote_kernel.models.idempotency
Responsibility: ORM persistence for cached responses of unsafe requests.

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - UNIQUE(organization_id, idempotency_key): concurrent writers of the
      same key serialize on the constraint; the loser reads the winner.
    - response_body is stored as the exact text returned to the first caller
      and replayed byte-for-byte.
    - request_hash is write-once; a different hash under the same key is a
      conflict, never an overwrite.

Failure modes:
    - IntegrityError on a concurrent insert of the same key (handled by
      IdempotencyService.store).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from quote_kernel.config import MAX_IDEMPOTENCY_KEY_LENGTH
from quote_kernel.db.base import Base
from quote_kernel.db.types import ExternalId, LongText, RequestHash


class IdempotencyRecord(Base):
    """Stored outcome of the first successful request under a key."""

    __tablename__ = "idempotency_records"

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "idempotency_key",
            name="uq_idempotency_records_org_key",
        ),
        Index("ix_idempotency_records_expires_at", "expires_at"),
    )

    organization_id: Mapped[str] = mapped_column(ExternalId, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(MAX_IDEMPOTENCY_KEY_LENGTH), nullable=False)
    request_hash: Mapped[str] = mapped_column(RequestHash, nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    route: Mapped[str] = mapped_column(String(500), nullable=False)
    user_id: Mapped[str] = mapped_column(ExternalId, nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    response_body: Mapped[str] = mapped_column(LongText, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def __repr__(self) -> str:
        return (
            f"<IdempotencyRecord {self.idempotency_key} "
            f"org={self.organization_id} status={self.status_code}>"
        )
