"""
Currency Arithmetic

DESIGN DECISION: Every monetary value is a 2-decimal Decimal at the
boundary and an integer number of cents inside. Addition, subtraction,
summation and comparison happen on ints only, so no binary floating
point ever reaches a balance.

Values outside +/- max_abs_amount are CAPPED, never wrapped, and every
cap is observable:
- a structlog warning is emitted
- `overflow_count` is incremented
- the optional `on_overflow(operation, raw_cents, capped_cents)` hook runs
- the checked_* variants return `capped=True`

Parsing is deliberately forgiving (UI input): garbage becomes zero.
"""

import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from functools import lru_cache
from typing import Callable, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict

from recurring_ledger.config import CurrencySettings, get_settings


logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

AmountLike = Union[Decimal, int, float, str, None]
OverflowHook = Callable[[str, int, int], None]

_NON_NUMERIC = re.compile(r"[^0-9.,]")


class CheckedAmount(BaseModel):
    """An arithmetic result plus whether it had to be capped."""
    model_config = ConfigDict(frozen=True)

    amount: Decimal
    capped: bool = False

    @property
    def cents(self) -> int:
        return int((self.amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


class CurrencyArithmetic:
    """
    Exact money math, formatting and parsing.

    Usage:
        money = CurrencyArithmetic()
        money.format(Decimal("1234.5"))      # 'R$ 1.234,50'
        money.parse("R$ 1.234,50")           # Decimal('1234.50')
        money.sum("0.10", "0.20")            # Decimal('0.30')
    """

    def __init__(
        self,
        symbol: str = "R$",
        thousands_separator: str = ".",
        decimal_separator: str = ",",
        max_abs_amount: Decimal = Decimal("999999999.99"),
        on_overflow: Optional[OverflowHook] = None,
    ):
        if thousands_separator == decimal_separator:
            raise ValueError("Decimal and thousands separators must differ")
        self.symbol = symbol
        self.thousands_separator = thousands_separator
        self.decimal_separator = decimal_separator
        self.max_cents = self._decimal_to_cents(Decimal(max_abs_amount))
        self.on_overflow = on_overflow
        self.overflow_count = 0

    @classmethod
    def from_settings(
        cls,
        settings: Optional[CurrencySettings] = None,
        on_overflow: Optional[OverflowHook] = None,
    ) -> "CurrencyArithmetic":
        settings = settings or get_settings().currency
        return cls(
            symbol=settings.symbol,
            thousands_separator=settings.thousands_separator,
            decimal_separator=settings.decimal_separator,
            max_abs_amount=settings.max_abs_amount,
            on_overflow=on_overflow,
        )

    @property
    def max_amount(self) -> Decimal:
        return self.from_cents(self.max_cents)

    # =========================================================================
    # CENTS CONVERSION
    # =========================================================================

    @staticmethod
    def _decimal_to_cents(value: Decimal) -> int:
        return int((value * 100).to_integral_value(rounding=ROUND_HALF_UP))

    @staticmethod
    def from_cents(cents: int) -> Decimal:
        """Integer cents -> 2-decimal Decimal. Exact."""
        return (Decimal(cents) / 100).quantize(CENT)

    def to_cents(self, value: AmountLike) -> int:
        """Any amount-like value -> clamped integer cents."""
        return self._clamp_cents(self._raw_cents(value), "to_cents")

    def _raw_cents(self, value: AmountLike) -> int:
        """Unclamped cents. Invalid input counts as zero."""
        if value is None or isinstance(value, bool):
            return 0
        if isinstance(value, Decimal):
            if not value.is_finite():
                return 0
            return self._decimal_to_cents(value)
        if isinstance(value, int):
            return value * 100
        if isinstance(value, float):
            if math.isnan(value) or math.isinf(value):
                return 0
            # Via str() so 0.1 is 0.1, not 0.1000000000000000055...
            return self._decimal_to_cents(Decimal(str(value)))
        if isinstance(value, str):
            return self._parse_to_raw_cents(value)
        return 0

    def _clamp_cents(self, cents: int, operation: str) -> int:
        if -self.max_cents <= cents <= self.max_cents:
            return cents
        capped = self.max_cents if cents > 0 else -self.max_cents
        self._report_overflow(operation, cents, capped)
        return capped

    def _report_overflow(self, operation: str, raw_cents: int, capped_cents: int) -> None:
        self.overflow_count += 1
        logger.warning(
            "currency_overflow_capped",
            operation=operation,
            raw_cents=raw_cents,
            capped_cents=capped_cents,
        )
        if self.on_overflow is not None:
            self.on_overflow(operation, raw_cents, capped_cents)

    # =========================================================================
    # PARSE / FORMAT
    # =========================================================================

    def _parse_to_raw_cents(self, text: str) -> int:
        clean = text.strip()
        if not clean:
            return 0

        is_negative = "-" in clean or "(" in clean
        numeric = _NON_NUMERIC.sub("", clean)
        if not numeric:
            return 0

        numeric = self._normalize_separators(numeric)
        try:
            value = Decimal(numeric)
        except InvalidOperation:
            return 0
        if not value.is_finite():
            return 0

        cents = self._decimal_to_cents(value)
        return -cents if is_negative else cents

    @staticmethod
    def _normalize_separators(numeric: str) -> str:
        """
        Reduce '1.234,56' / '1,234.56' / '1.234.567' to a plain decimal string.

        - both ',' and '.' present: the rightmost one is the decimal mark
        - one kind, once: it is the decimal mark
        - one kind, repeated: grouping, unless the last group has <= 2 digits
        """
        has_comma = "," in numeric
        has_dot = "." in numeric

        if has_comma and has_dot:
            if numeric.rfind(",") > numeric.rfind("."):
                decimal_mark, grouping = ",", "."
            else:
                decimal_mark, grouping = ".", ","
            numeric = numeric.replace(grouping, "")
            integer, _, fraction = numeric.rpartition(decimal_mark)
            return f"{integer.replace(decimal_mark, '') or '0'}.{fraction}"

        if not has_comma and not has_dot:
            return numeric

        mark = "," if has_comma else "."
        parts = numeric.split(mark)
        if len(parts) == 2:
            return f"{parts[0] or '0'}.{parts[1]}"

        last = parts[-1]
        if len(last) <= 2:
            return f"{''.join(parts[:-1]) or '0'}.{last}"
        return "".join(parts)

    def parse(self, value: AmountLike) -> Decimal:
        """
        Parse user input into a clamped 2-decimal amount.

        Accepts localized strings ('R$ 1.234,56', '-1,234.56', '(500,00)'),
        numbers and Decimals. Empty or non-numeric input yields 0.00.
        """
        return self.from_cents(self._clamp_cents(self._raw_cents(value), "parse"))

    def format(self, value: AmountLike) -> str:
        """
        Render an amount as currency text, e.g. 'R$ 1.234,56' / '-R$ 500,99'.

        None, NaN, Infinity and unparseable input render as zero.
        """
        cents = self._clamp_cents(self._raw_cents(value), "format")
        is_negative = cents < 0
        integer_part, fraction = divmod(abs(cents), 100)

        grouped = f"{integer_part:,}".replace(",", self.thousands_separator)
        number = f"{grouped}{self.decimal_separator}{fraction:02d}"
        text = f"{self.symbol} {number}" if self.symbol else number
        return f"-{text}" if is_negative else text

    def format_signed(self, value: AmountLike) -> str:
        """Format with an explicit +/- sign."""
        cents = self.to_cents(value)
        text = self.format(abs(self.from_cents(cents)))
        return f"-{text}" if cents < 0 else f"+{text}"

    def format_for_editing(self, value: AmountLike) -> str:
        """Bare absolute value for an input field, e.g. '1234,56'."""
        cents = abs(self.to_cents(value))
        integer_part, fraction = divmod(cents, 100)
        return f"{integer_part}{self.decimal_separator}{fraction:02d}"

    # =========================================================================
    # ARITHMETIC (integer cents only)
    # =========================================================================

    def checked_sum(self, *amounts: AmountLike) -> CheckedAmount:
        total = sum(self._raw_cents(amount) for amount in amounts)
        clamped = self._clamp_cents(total, "sum")
        return CheckedAmount(amount=self.from_cents(clamped), capped=clamped != total)

    def sum(self, *amounts: AmountLike) -> Decimal:
        """Exact sum of any number of amounts, capped at the clamp range."""
        return self.checked_sum(*amounts).amount

    def checked_subtract(self, minuend: AmountLike, subtrahend: AmountLike) -> CheckedAmount:
        raw = self._raw_cents(minuend) - self._raw_cents(subtrahend)
        clamped = self._clamp_cents(raw, "subtract")
        return CheckedAmount(amount=self.from_cents(clamped), capped=clamped != raw)

    def subtract(self, minuend: AmountLike, subtrahend: AmountLike) -> Decimal:
        return self.checked_subtract(minuend, subtrahend).amount

    def compare(self, a: AmountLike, b: AmountLike) -> int:
        """-1, 0 or 1 after rounding both sides to cents."""
        a_cents = self._raw_cents(a)
        b_cents = self._raw_cents(b)
        if a_cents > b_cents:
            return 1
        if a_cents < b_cents:
            return -1
        return 0

    def clamp(self, value: AmountLike) -> Decimal:
        return self.from_cents(self.to_cents(value))

    def cents_to_amount(self, cents: int, operation: str = "clamp") -> CheckedAmount:
        """Clamp an already-computed cents value, reporting any cap."""
        clamped = self._clamp_cents(cents, operation)
        return CheckedAmount(amount=self.from_cents(clamped), capped=clamped != cents)

    def round_trip_ok(self, value: AmountLike) -> bool:
        """parse(format(x)) == x within one cent."""
        original = self.to_cents(value)
        return abs(self.to_cents(self.parse(self.format(value))) - original) <= 1


@lru_cache()
def default_arithmetic() -> CurrencyArithmetic:
    """
    Arithmetic built from settings (cached).

    Call default_arithmetic.cache_clear() after changing currency settings.
    """
    return CurrencyArithmetic.from_settings()


def parse_currency(value: AmountLike) -> Decimal:
    return default_arithmetic().parse(value)


def format_currency(value: AmountLike) -> str:
    return default_arithmetic().format(value)
