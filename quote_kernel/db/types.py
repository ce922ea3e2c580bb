"""
Module: quote_kernel.db.types
Responsibility: Column type constants for quote tables.  Centralizes
    precision so that every model declares money, rates and hashes the same
    way.
Architecture position: Kernel > DB.  May be imported by models/.  MUST NOT
    import from services/ or domain/.

Invariants enforced:
    - No floats: every monetary amount and rate is an ExactDecimal column.
    - Rates carry more scale than amounts so tax and exchange rates survive
      storage unchanged.
"""

from sqlalchemy import String, Text

from quote_kernel.db.base import ExactDecimal

# Monetary amount: 38 digits total, 9 decimal places
Money = ExactDecimal(38, 9)

# Tax, discount and exchange rates
Rate = ExactDecimal(38, 18)

# Quantities may be fractional (hours, kilometres)
Quantity = ExactDecimal(38, 9)

# ISO 4217 currency code (e.g., "USD", "EUR", "JPY")
Currency = String(3)

# SHA-256 hash as hex string
RequestHash = String(64)

# External identifiers handed in by the tenancy collaborator
ExternalId = String(64)

ShortCode = String(50)

Title = String(500)

LongText = Text
