"""Tests for the pydantic models: rules, policies, markers and audit events."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError

from recurring_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from recurring_ledger.models.ledger import Posting, PostingKind
from recurring_ledger.models.recurring import (
    Direction,
    FixedCount,
    GeneratedInstance,
    MonthlyDuration,
    PostingOutcome,
    ProcessingMarker,
    RecurringRule,
    UntilCancelled,
    ValidationIssue,
    ValidationResult,
)


class TestRecurringRule:
    """Tests for RecurringRule constraints."""

    def test_rule_creation(self, rule_builder):
        rule = rule_builder()
        assert rule.is_active is True
        assert rule.policy == UntilCancelled()
        assert rule.category is None

    def test_amount_must_be_positive(self, rule_builder):
        with pytest.raises(ValidationError):
            rule_builder(amount=Decimal("0"))

    @pytest.mark.parametrize("day", [0, 32])
    def test_day_of_month_range(self, rule_builder, day):
        with pytest.raises(ValidationError):
            rule_builder(day_of_month=day)

    def test_amount_quantized(self, rule_builder):
        """Test amounts always carry exactly two decimals."""
        assert str(rule_builder(amount=Decimal("50")).amount) == "50.00"

    def test_description_strips_whitespace(self, rule_builder):
        assert rule_builder(description="  Rent  ").description == "Rent"

    def test_policy_from_tagged_dict(self):
        """Test the policy union is discriminated by 'kind'."""
        rule = RecurringRule(
            direction="income",
            amount="10.00",
            day_of_month=1,
            start_date=date(2024, 1, 1),
            policy={"kind": "monthly_duration", "remaining_months": 6},
        )
        assert isinstance(rule.policy, MonthlyDuration)
        assert rule.direction == Direction.INCOME

    def test_unknown_policy_kind_rejected(self):
        with pytest.raises(ValidationError):
            RecurringRule(
                direction="income",
                amount="10.00",
                day_of_month=1,
                start_date=date(2024, 1, 1),
                policy={"kind": "weekly"},
            )

    def test_policies_are_frozen(self):
        policy = FixedCount(remaining=2)
        with pytest.raises(ValidationError):
            policy.remaining = 1


class TestProcessingMarker:
    """Tests for the idempotency marker."""

    def make_marker(self, **overrides):
        fields = dict(
            rule_id=uuid4(),
            year=2024,
            month=2,
            day=29,
            amount=Decimal("100.00"),
            direction=Direction.EXPENSE,
            instance_id=uuid4(),
        )
        fields.update(overrides)
        return ProcessingMarker(**fields)

    def test_fingerprint_computed(self):
        marker = self.make_marker()
        assert len(marker.fingerprint) == 16
        assert marker.verify() is True

    def test_tampered_fingerprint_fails(self):
        assert self.make_marker(fingerprint="ffffffffffffffff").verify() is False

    def test_key_and_posting_date(self):
        marker = self.make_marker()
        assert marker.key == (marker.rule_id, 2024, 2)
        assert marker.posting_date == date(2024, 2, 29)

    def test_immutable(self):
        marker = self.make_marker()
        with pytest.raises(ValidationError):
            marker.day = 1


class TestLedgerModels:

    def test_posting_from_instance(self):
        instance = GeneratedInstance(
            rule_id=uuid4(),
            date=date(2024, 3, 5),
            amount=Decimal("3500.00"),
            direction=Direction.INCOME,
        )
        posting = Posting.from_instance(instance)
        assert posting.kind == PostingKind.INCOME
        assert posting.day == date(2024, 3, 5)
        assert posting.source_id == instance.id
        assert instance.period == (2024, 3)

    def test_outcome_is_posted(self):
        assert PostingOutcome.POSTED.is_posted is True
        assert PostingOutcome.SKIPPED_PAST_MONTH.is_posted is False


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        event = AuditEvent(
            event_type=AuditEventType.RULE_CREATED,
            description="Rule created",
        )
        assert event.event_type == AuditEventType.RULE_CREATED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        event = AuditEvent(
            event_type=AuditEventType.POSTING_CREATED,
            description="Posted",
            details={"amount": "100.00"},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "posting_created"
        assert log_dict["details"]["amount"] == "100.00"

    def test_audit_event_to_row(self):
        event = AuditEventBuilder.posting_rolled_back(
            rule_id=uuid4(), year=2024, month=2, error_message="disk full",
        )
        row = event.to_row()
        assert len(row) == 10
        assert row[2] == "posting_rolled_back"
        assert row[3] == "error"
        assert row[9] == "disk full"

    def test_posting_skipped_is_debug(self):
        event = AuditEventBuilder.posting_skipped(uuid4(), 2024, 1, "skipped_past_month")
        assert event.severity == AuditSeverity.DEBUG
        assert event.description == "No posting for 2024-01: skipped_past_month"

    def test_overflow_capped(self):
        event = AuditEventBuilder.overflow_capped("sum", 100000000099, 99999999999)
        assert event.event_type == AuditEventType.ARITHMETIC_OVERFLOW_CAPPED
        assert event.severity == AuditSeverity.WARNING
        assert event.details["raw_cents"] == 100000000099


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        result = ValidationResult(
            schema_valid=False,
            semantic_valid=False,
            is_valid=False,
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="missing",
                    message="Amount is required",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1

    def test_validation_result_warnings_only(self):
        result = ValidationResult(
            schema_valid=True,
            semantic_valid=True,
            is_valid=True,
            issues=[
                ValidationIssue(
                    field="day_of_month",
                    issue_type="will_clamp",
                    message="Day 31 will be clamped",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0
