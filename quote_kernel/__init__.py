"""
Quote Kernel

A multi-tenant quote lifecycle engine with:
- Exact decimal pricing with line-level half-up rounding
- A configurable status state machine with lock enforcement
- Immutable, gaplessly numbered version snapshots
- Idempotent replay of unsafe requests
- Organization-scoped access to every row
"""

__version__ = "0.1.0"
