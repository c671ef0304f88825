"""
Ledger Models

Postings are what the balance propagator folds; daily entries are what it
reports. A posting is either a generated instance or any other ledger
entry handed in by the surrounding application.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from recurring_ledger.models.recurring import Direction, GeneratedInstance


class PostingKind(str, Enum):
    """
    How a posting affects the running balance.

    INFORMATIONAL totals are tracked per day but never touch the balance.
    """
    INCOME = "income"
    EXPENSE = "expense"
    INFORMATIONAL = "informational"


class Posting(BaseModel):
    """A dated amount to fold into the running balance."""
    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    day: date
    kind: PostingKind
    amount: Annotated[
        Decimal,
        Field(ge=0, decimal_places=2, description="Non-negative amount; kind gives the sign")
    ]
    source_id: Optional[UUID] = Field(
        default=None,
        description="Generated instance this posting came from, if any"
    )

    @classmethod
    def from_instance(cls, instance: GeneratedInstance) -> "Posting":
        kind = (
            PostingKind.INCOME
            if instance.direction == Direction.INCOME
            else PostingKind.EXPENSE
        )
        return cls(
            id=instance.id,
            day=instance.date,
            kind=kind,
            amount=instance.amount,
            source_id=instance.id,
        )


class DailyLedgerEntry(BaseModel):
    """
    Per-day aggregate plus the running balance for that day.

    balance == previous balance + income - expense
    """

    day: date
    income: Decimal = Decimal("0.00")
    expense: Decimal = Decimal("0.00")
    informational: Decimal = Decimal("0.00")
    opening_balance: Decimal = Decimal("0.00")
    balance: Decimal = Decimal("0.00")

    @property
    def net(self) -> Decimal:
        return self.income - self.expense
