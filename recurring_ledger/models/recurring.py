"""
Core Data Models for the Recurring Ledger

These models define the strict schemas for everything the posting engine
reads and writes. They are designed to:
1. Enforce rule invariants at construction time (amount > 0, day in 1-31)
2. Keep money as 2-decimal Decimal, never float
3. Be serializable for storage and logging

DESIGN DECISION: The frequency policy is a closed, tagged union.
Every consumer dispatches on the concrete variant; adding a policy means
touching every dispatch site on purpose.
"""

import hashlib
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Direction(str, Enum):
    """Which side of the ledger a posting lands on."""
    INCOME = "income"
    EXPENSE = "expense"


class PostingOutcome(str, Enum):
    """
    Result of asking the processor to post a rule into a period.

    Only POSTED creates anything. Every other value is an ordinary,
    expected result - never an error.
    """
    POSTED = "posted"
    SKIPPED_ALREADY_PROCESSED = "skipped_already_processed"
    SKIPPED_NOT_YET_STARTED = "skipped_not_yet_started"
    SKIPPED_PAST_MONTH = "skipped_past_month"
    SKIPPED_INACTIVE_OR_EXHAUSTED = "skipped_inactive_or_exhausted"
    SKIPPED_DAY_ALREADY_PASSED_THIS_MONTH = "skipped_day_already_passed_this_month"

    @property
    def is_posted(self) -> bool:
        return self is PostingOutcome.POSTED


# =============================================================================
# FREQUENCY POLICY - closed sum type
# =============================================================================

class UntilCancelled(BaseModel):
    """Runs until the user deactivates or deletes the rule."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["until_cancelled"] = "until_cancelled"


class FixedCount(BaseModel):
    """Posts a fixed number of times, then deactivates."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["fixed_count"] = "fixed_count"
    remaining: int = Field(
        ...,
        ge=0,
        description="Postings left before the rule is exhausted"
    )


class MonthlyDuration(BaseModel):
    """Posts for a number of distinct calendar months, then deactivates."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["monthly_duration"] = "monthly_duration"
    remaining_months: int = Field(
        ...,
        ge=0,
        description="Distinct posted months left before the rule is exhausted"
    )


FrequencyPolicy = Annotated[
    Union[UntilCancelled, FixedCount, MonthlyDuration],
    Field(discriminator="kind"),
]


# =============================================================================
# RECURRING RULE
# =============================================================================

class RecurringRule(BaseModel):
    """
    A user-owned schedule declaration.

    The engine mutates only the policy counters and `is_active`; it does
    so by producing updated copies (`model_copy`), never in place.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique rule ID"
    )
    direction: Direction = Field(
        ...,
        description="Income or expense"
    )
    amount: Annotated[
        Decimal,
        Field(gt=0, decimal_places=2, description="Amount posted every period")
    ]
    description: str = Field(
        default="",
        max_length=200,
        description="Free-text description copied onto each posting"
    )
    day_of_month: int = Field(
        ...,
        ge=1,
        le=31,
        description="Target day; clamped to the month's last day when too large"
    )
    policy: FrequencyPolicy = Field(
        default_factory=UntilCancelled,
        description="Termination policy"
    )
    start_date: date = Field(
        ...,
        description="First date the schedule may post on (immutable)"
    )
    is_active: bool = Field(
        default=True,
        description="Inactive rules never post"
    )
    category: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Optional category label"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the rule was created"
    )

    @field_validator('amount')
    @classmethod
    def quantize_amount(cls, v: Decimal) -> Decimal:
        """Store amounts with exactly two fractional digits."""
        return v.quantize(Decimal("0.01"))


# =============================================================================
# GENERATED INSTANCE
# =============================================================================

class GeneratedInstance(BaseModel):
    """
    A concrete ledger entry produced from a rule.

    `rule_id` is a lookup key only. Deleting the rule does not delete the
    instance unless the caller asks for a cascade.
    """

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique instance ID"
    )
    rule_id: UUID = Field(
        ...,
        description="Weak back-reference to the originating rule"
    )
    date: date
    amount: Annotated[
        Decimal,
        Field(gt=0, decimal_places=2, description="Posted amount")
    ]
    direction: Direction
    description: str = ""
    created_at: datetime = Field(
        default_factory=datetime.utcnow
    )

    @property
    def period(self) -> tuple[int, int]:
        """(year, month) this instance was posted into."""
        return self.date.year, self.date.month


# =============================================================================
# PROCESSING MARKER
# =============================================================================

def marker_fingerprint(
    rule_id: UUID,
    year: int,
    month: int,
    day: int,
    amount: Decimal,
    direction: Direction,
) -> str:
    """Integrity hash over a marker's key and recorded value."""
    data = f"{rule_id}|{year}|{month}|{day}|{amount:.2f}|{direction.value}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()[:16]


class ProcessingMarker(BaseModel):
    """
    Idempotency record: (rule_id, year, month) has produced a posting.

    Immutable once written. Re-processing the same key is a no-op.
    """
    model_config = ConfigDict(frozen=True)

    rule_id: UUID
    year: int = Field(..., ge=1, le=9999)
    month: int = Field(..., ge=1, le=12)

    # The exact posting that was made for this key
    day: int = Field(..., ge=1, le=31)
    amount: Annotated[Decimal, Field(gt=0, decimal_places=2)]
    direction: Direction

    instance_id: UUID = Field(
        ...,
        description="Instance the marker was written for"
    )
    processed_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    fingerprint: str = Field(
        default="",
        description="Integrity hash; computed when left empty"
    )

    def model_post_init(self, __context) -> None:
        if not self.fingerprint:
            object.__setattr__(self, "fingerprint", self.expected_fingerprint())

    @property
    def key(self) -> tuple[UUID, int, int]:
        return self.rule_id, self.year, self.month

    @property
    def posting_date(self) -> date:
        return date(self.year, self.month, self.day)

    def expected_fingerprint(self) -> str:
        return marker_fingerprint(
            self.rule_id, self.year, self.month,
            self.day, self.amount, self.direction,
        )

    def verify(self) -> bool:
        """True when the stored fingerprint matches the recorded value."""
        return self.fingerprint == self.expected_fingerprint()


class InstanceTombstone(BaseModel):
    """Records that a generated instance was deleted on purpose."""
    model_config = ConfigDict(frozen=True)

    instance_id: UUID
    rule_id: UUID
    date: date
    deleted_at: datetime = Field(
        default_factory=datetime.utcnow
    )


# =============================================================================
# RESULT MODELS
# =============================================================================

class ProcessResult(BaseModel):
    """What one `process` call did."""

    outcome: PostingOutcome
    rule_id: UUID
    rule: Optional[RecurringRule] = Field(
        default=None,
        description="The rule after processing (counters possibly advanced); "
                    "None when a past-month request names a rule that no longer exists"
    )
    year: int
    month: int
    instance: Optional[GeneratedInstance] = None
    counter_consumed: bool = Field(
        default=False,
        description="Whether a policy unit was consumed by this posting"
    )

    @property
    def posted(self) -> bool:
        return self.outcome.is_posted


class DeletionResult(BaseModel):
    """Result of deleting a rule."""

    rule_deleted: bool
    instances_deleted: int = Field(default=0, ge=0)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class RuleDraft(BaseModel):
    """
    Unvalidated rule input, as entered by the user.

    Every field is optional so that the validator can report what is
    missing instead of failing on the first problem.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    direction: Optional[Direction] = None
    amount: Optional[Decimal] = None
    description: str = ""
    day_of_month: Optional[int] = None
    policy: FrequencyPolicy = Field(default_factory=UntilCancelled)
    start_date: Optional[date] = None
    category: Optional[str] = None

    def to_rule(self) -> RecurringRule:
        """Build the rule. Pydantic enforces the schema constraints."""
        return RecurringRule(
            direction=self.direction,
            amount=self.amount,
            description=self.description,
            day_of_month=self.day_of_month,
            policy=self.policy,
            start_date=self.start_date,
            category=self.category,
        )


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'out_of_range', 'will_clamp')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage rule validation.

    Stage 1: Schema validation (required fields, ranges)
    Stage 2: Semantic validation (clamping, dates, limits)
    """

    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    schema_valid: bool = Field(
        ...,
        description="Passed schema validation"
    )
    semantic_valid: bool = Field(
        ...,
        description="Passed semantic validation"
    )
    is_valid: bool = Field(
        ...,
        description="Passed both stages"
    )
    issues: list[ValidationIssue] = Field(
        default_factory=list,
    )
    warnings: list[str] = Field(
        default_factory=list,
        description="Warning messages (non-blocking)"
    )

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def has_errors(self) -> bool:
        return any(i.severity == "error" for i in self.issues)

    @property
    def error_count(self) -> int:
        return len(self.errors)
