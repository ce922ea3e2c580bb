"""SQLAlchemy ORM models."""

from quote_kernel.models.idempotency import IdempotencyRecord
from quote_kernel.models.quote import Quote, QuoteLineItem
from quote_kernel.models.quote_version import QuoteLineItemVersion, QuoteVersion
from quote_kernel.models.sequence import SequenceCounter

__all__ = [
    "Quote",
    "QuoteLineItem",
    "QuoteVersion",
    "QuoteLineItemVersion",
    "IdempotencyRecord",
    "SequenceCounter",
]
