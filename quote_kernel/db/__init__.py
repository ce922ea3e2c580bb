"""Database layer - engine, base classes, types, and immutability."""

from quote_kernel.db.base import UUID, Base, ExactDecimal, TrackedBase, UTCDateTime, UUIDString
from quote_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from quote_kernel.db.types import Currency, ExternalId, Money, Quantity, Rate, RequestHash

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "Base",
    "TrackedBase",
    "UUIDString",
    "ExactDecimal",
    "UTCDateTime",
    "UUID",
    "Money",
    "Rate",
    "Quantity",
    "Currency",
    "RequestHash",
    "ExternalId",
]
