"""
Module: quote_kernel.db.base
Responsibility: the declarative base every quote_kernel table derives from,
    plus the three column types that keep storage backend-neutral.
Architecture position: bottom of the package.  Model modules import from
    here; nothing here imports models, services or domain code.

Storage rules:
    - Primary keys are uuid4 values kept in 36-character string columns.
    - Money, rates and quantities are Decimal end to end.  PostgreSQL gets
      NUMERIC(38, 9); SQLite, which would coerce NUMERIC to float, gets the
      decimal's text form.
    - Timestamps always come back tz-aware in UTC.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """uuid.UUID in Python, 36-character text in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(str(value))


class ExactDecimal(TypeDecorator):
    """
    Decimal column that never round-trips through float.

    Contract:
        PostgreSQL stores NUMERIC(precision, scale).  SQLite has no exact
        numeric storage, so the canonical string form is stored instead.

    Guarantees:
        - Loaded values are Decimal on every backend.
        - Values are compared for equality by value, not representation.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 38, scale: int = 9):
        super().__init__()
        self.precision = precision
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(self.precision + 2))
        return dialect.type_descriptor(
            Numeric(self.precision, self.scale, asdecimal=True)
        )

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        value = value.quantize(Decimal(1).scaleb(-self.scale))
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp normalized to UTC.

    SQLite drops tzinfo on storage; results are re-tagged as UTC so that
    comparisons against an aware clock never mix naive and aware values.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """
    Root of the model hierarchy.

    Annotated columns pick their SQL type from ``type_annotation_map``, so a
    model declaring ``Mapped[Decimal]`` is exact without naming a type.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: ExactDecimal(38, 9),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with row timestamps.

    Services stamp both columns from the injected clock; the column
    defaults only cover rows written outside a service.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
    )


UUID = PyUUID
