"""
Balance Propagation

Folds dated postings into per-day totals and answers running-balance
questions about them.

Invariant, for every day d:
    balance(d) == balance(d - 1) + income(d) - expense(d)

Informational totals are tracked per day but never reach the balance.
Everything is kept in integer cents; Decimals only appear at the return
boundary, so a closing balance carried into the next month or year is the
identical cents value.
"""

import calendar
from bisect import bisect_right
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import structlog

from recurring_ledger.models.ledger import DailyLedgerEntry, Posting, PostingKind
from recurring_ledger.money import ZERO, CurrencyArithmetic
from recurring_ledger.money.currency import AmountLike


logger = structlog.get_logger(__name__)


@dataclass
class _DayTotals:
    income: int = 0
    expense: int = 0
    informational: int = 0

    @property
    def net(self) -> int:
        return self.income - self.expense

    def is_empty(self) -> bool:
        return not (self.income or self.expense or self.informational)


class BalancePropagator:
    """
    Running balance over a set of postings.

    Usage:
        balance = BalancePropagator(opening_balance=Decimal("100.00"))
        balance.fold(Posting(day=date(2024, 2, 29), kind=PostingKind.EXPENSE, amount=Decimal("30.00")))
        balance.daily_balance(date(2024, 2, 29))   # Decimal('70.00')
        balance.carry_forward(date(2024, 2, 29))   # opening of 2024-03-01
    """

    def __init__(
        self,
        arithmetic: Optional[CurrencyArithmetic] = None,
        opening_balance: AmountLike = ZERO,
    ):
        self._money = arithmetic or CurrencyArithmetic()
        self._opening_cents = self._money.to_cents(opening_balance)
        self._days: dict[date, _DayTotals] = {}
        self._postings: dict[UUID, Posting] = {}

    @property
    def postings(self) -> list[Posting]:
        return sorted(self._postings.values(), key=lambda p: p.day)

    @property
    def active_days(self) -> list[date]:
        return sorted(self._days)

    # =========================================================================
    # FOLD / UNFOLD
    # =========================================================================

    def _apply(self, posting: Posting, sign: int) -> None:
        cents = self._money.to_cents(posting.amount) * sign
        totals = self._days.setdefault(posting.day, _DayTotals())
        if posting.kind == PostingKind.INCOME:
            totals.income += cents
        elif posting.kind == PostingKind.EXPENSE:
            totals.expense += cents
        elif posting.kind == PostingKind.INFORMATIONAL:
            totals.informational += cents
        else:
            raise TypeError(f"Unknown posting kind: {posting.kind}")
        if totals.is_empty():
            del self._days[posting.day]

    def fold(self, posting: Posting) -> bool:
        """
        Add a posting to its day.

        Returns False (and changes nothing) if a posting with the same id
        was already folded.
        """
        if posting.id in self._postings:
            logger.debug("posting_already_folded", posting_id=str(posting.id))
            return False
        self._postings[posting.id] = posting
        self._apply(posting, 1)
        return True

    def unfold(self, posting: Posting) -> bool:
        """Remove a previously folded posting. Returns False if it wasn't folded."""
        folded = self._postings.pop(posting.id, None)
        if folded is None:
            return False
        self._apply(folded, -1)
        return True

    def rebuild(self, postings: Iterable[Posting]) -> None:
        """Discard everything and fold `postings` from scratch."""
        self._days = {}
        self._postings = {}
        for posting in postings:
            self.fold(posting)

    # =========================================================================
    # BALANCES
    # =========================================================================

    def _balance_cents(self, day: date) -> int:
        days = self.active_days
        cents = self._opening_cents
        for active in days[:bisect_right(days, day)]:
            cents += self._days[active].net
        return cents

    def _to_amount(self, cents: int) -> Decimal:
        return self._money.cents_to_amount(cents, "balance").amount

    def daily_balance(self, day: date) -> Decimal:
        """Balance at the end of `day`."""
        return self._to_amount(self._balance_cents(day))

    def opening_balance(self, day: date) -> Decimal:
        """Balance at the start of `day`, i.e. the close of the previous day."""
        return self._to_amount(self._balance_cents(day - timedelta(days=1)))

    def daily_entry(self, day: date) -> DailyLedgerEntry:
        closing = self._balance_cents(day)
        totals = self._days.get(day, _DayTotals())
        return DailyLedgerEntry(
            day=day,
            income=self._money.from_cents(totals.income),
            expense=self._money.from_cents(totals.expense),
            informational=self._money.from_cents(totals.informational),
            opening_balance=self._to_amount(closing - totals.net),
            balance=self._to_amount(closing),
        )

    def month_closing_balance(self, year: int, month: int) -> Decimal:
        last_day = calendar.monthrange(year, month)[1]
        return self.daily_balance(date(year, month, last_day))

    def year_closing_balance(self, year: int) -> Decimal:
        return self.daily_balance(date(year, 12, 31))

    def carry_forward(self, period_end: date) -> Decimal:
        """
        Opening balance of the period that starts the day after `period_end`.

        The closing cents are copied as-is, never re-derived.
        """
        return self._to_amount(self._balance_cents(period_end))

    def month_entries(self, year: int, month: int) -> list[DailyLedgerEntry]:
        """One entry per calendar day of the month, quiet days included."""
        first = date(year, month, 1)
        running = self._balance_cents(first - timedelta(days=1))
        entries = []
        for day_number in range(1, calendar.monthrange(year, month)[1] + 1):
            day = date(year, month, day_number)
            totals = self._days.get(day, _DayTotals())
            opening = running
            running += totals.net
            entries.append(DailyLedgerEntry(
                day=day,
                income=self._money.from_cents(totals.income),
                expense=self._money.from_cents(totals.expense),
                informational=self._money.from_cents(totals.informational),
                opening_balance=self._to_amount(opening),
                balance=self._to_amount(running),
            ))
        return entries
