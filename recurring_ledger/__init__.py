"""
Recurring Ledger - Source Package

The recurring schedule and idempotent posting engine of a personal
finance ledger. Turns declarative recurring rules ("R$500 on day 5,
until cancelled") into dated ledger entries, exactly once per period.

DESIGN PRINCIPLES:
1. Never backfill the past, only ever post to the future
2. At most one posting per (rule, period), enforced by a durable marker
3. Money is integer cents internally, never binary floating point
4. Skips are values, not exceptions
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Recurring Ledger Team"
