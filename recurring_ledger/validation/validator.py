"""
Two-Stage Rule Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence
- Ranges (amount > 0, day 1-31, counters >= 1)
- This catches malformed input before a rule can exist

STAGE 2 - SEMANTIC VALIDATION:
- Amount within the representable currency range
- Days that will be clamped in shorter months
- Start dates in the past (never back-filled) or absurdly far ahead

Malformed rules are rejected at creation time and never reach the
processor. Validation NEVER silently fixes issues; it reports them.
"""

from datetime import date
from typing import Optional

from recurring_ledger.models.recurring import (
    FixedCount,
    MonthlyDuration,
    RecurringRule,
    RuleDraft,
    ValidationIssue,
    ValidationResult,
)
from recurring_ledger.money import CurrencyArithmetic


MAX_DESCRIPTION_LENGTH = 200
FAR_FUTURE_YEARS = 50


class RuleValidationError(Exception):
    """A rule draft failed validation."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = "; ".join(issue.message for issue in result.errors)
        super().__init__(f"Invalid recurring rule: {messages}")


class ImmutableFieldError(Exception):
    """An update tried to change a field that is fixed after creation."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Field '{field}' cannot be changed after creation")


IMMUTABLE_FIELDS = ("id", "start_date", "created_at")

# Owned by the posting engine; an ordinary edit keeps the stored values
ENGINE_MANAGED_FIELDS = ("policy", "is_active")


class RuleValidator:
    """
    Validates rule drafts through a two-stage pipeline.

    Stage 2 only runs when stage 1 passes.
    """

    def __init__(self, arithmetic: Optional[CurrencyArithmetic] = None):
        self._money = arithmetic or CurrencyArithmetic()

    def _validate_schema(self, draft: RuleDraft) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if draft.direction is None:
            issues.append(ValidationIssue(
                field="direction",
                issue_type="missing",
                message="Choose whether the rule is income or expense",
                severity="error",
            ))

        if draft.amount is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Amount is required",
                severity="error",
            ))
        elif not draft.amount.is_finite() or draft.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                severity="error",
            ))
        elif draft.amount.as_tuple().exponent < -2:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_format",
                message="Amount cannot have more than two decimal places",
                severity="error",
                suggested_fix=f"Use {self._money.parse(draft.amount)}",
            ))

        if not draft.description:
            issues.append(ValidationIssue(
                field="description",
                issue_type="missing",
                message="Description is required",
                severity="error",
            ))
        elif len(draft.description) > MAX_DESCRIPTION_LENGTH:
            issues.append(ValidationIssue(
                field="description",
                issue_type="too_long",
                message=f"Description is longer than {MAX_DESCRIPTION_LENGTH} characters",
                severity="error",
            ))

        if draft.day_of_month is None:
            issues.append(ValidationIssue(
                field="day_of_month",
                issue_type="missing",
                message="Day of month is required",
                severity="error",
            ))
        elif not 1 <= draft.day_of_month <= 31:
            issues.append(ValidationIssue(
                field="day_of_month",
                issue_type="out_of_range",
                message=f"Day of month must be between 1 and 31, got {draft.day_of_month}",
                severity="error",
            ))

        if draft.start_date is None:
            issues.append(ValidationIssue(
                field="start_date",
                issue_type="missing",
                message="Start date is required",
                severity="error",
            ))

        policy = draft.policy
        if isinstance(policy, FixedCount) and policy.remaining < 1:
            issues.append(ValidationIssue(
                field="policy",
                issue_type="out_of_range",
                message="A fixed-count rule needs at least one posting",
                severity="error",
            ))
        elif isinstance(policy, MonthlyDuration) and policy.remaining_months < 1:
            issues.append(ValidationIssue(
                field="policy",
                issue_type="out_of_range",
                message="A monthly-duration rule needs at least one month",
                severity="error",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        draft: RuleDraft,
        today: date,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if draft.amount > self._money.max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="out_of_range",
                message=f"Amount exceeds the maximum of {self._money.format(self._money.max_amount)}",
                severity="error",
            ))

        if draft.day_of_month >= 29:
            issues.append(ValidationIssue(
                field="day_of_month",
                issue_type="will_clamp",
                message=(
                    f"Day {draft.day_of_month} does not exist in every month; "
                    "shorter months post on their last day"
                ),
                severity="warning",
            ))

        if draft.start_date < date(today.year, today.month, 1):
            issues.append(ValidationIssue(
                field="start_date",
                issue_type="past_date",
                message=(
                    f"Start date ({draft.start_date}) is in a past month; "
                    "past months are never posted"
                ),
                severity="warning",
            ))
        elif draft.start_date.year > today.year + FAR_FUTURE_YEARS:
            issues.append(ValidationIssue(
                field="start_date",
                issue_type="suspicious_date",
                message=f"Start date ({draft.start_date}) is unusually far in the future",
                severity="warning",
                suggested_fix="Please verify the year",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(self, draft: RuleDraft, today: date) -> ValidationResult:
        """
        Run the full two-stage pipeline.

        Args:
            draft: The rule input to validate
            today: Reference date for date checks, supplied by the caller
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(draft)
        all_issues.extend(schema_issues)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(draft, today)
            all_issues.extend(semantic_issues)

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=[i.message for i in all_issues if i.severity == "warning"],
        )

    def check_update(self, existing: RecurringRule, updated: RecurringRule) -> list[str]:
        """
        Names of the fields an update changes.

        Raises:
            ImmutableFieldError: If the update touches an immutable field
        """
        before = existing.model_dump()
        after = updated.model_dump()
        for field in IMMUTABLE_FIELDS:
            if before[field] != after[field]:
                raise ImmutableFieldError(field)
        return [name for name in after if before[name] != after[name]]

    def merge_update(
        self,
        existing: RecurringRule,
        updated: RecurringRule,
        reset_policy: bool = False,
    ) -> RecurringRule:
        """
        The rule an edit should store.

        Engine-managed fields (policy counters, active flag) keep their
        stored values unless `reset_policy` is set.
        """
        if reset_policy:
            return updated
        return updated.model_copy(update={
            field: getattr(existing, field) for field in ENGINE_MANAGED_FIELDS
        })
