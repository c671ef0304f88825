"""Exact currency arithmetic package."""

from recurring_ledger.money.currency import (
    CENT,
    ZERO,
    CheckedAmount,
    CurrencyArithmetic,
    default_arithmetic,
    format_currency,
    parse_currency,
)

__all__ = [
    "CENT",
    "ZERO",
    "CheckedAmount",
    "CurrencyArithmetic",
    "default_arithmetic",
    "format_currency",
    "parse_currency",
]
