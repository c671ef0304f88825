"""Tests for the service facade and its wiring."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from recurring_ledger.config import Settings, validate_all_settings
from recurring_ledger.models.audit import AuditEventType
from recurring_ledger.models.recurring import (
    Direction,
    FixedCount,
    PostingOutcome,
    RuleDraft,
)
from recurring_ledger.orchestrator import RecurringLedgerService, create_app_components
from recurring_ledger.storage import InMemoryLedgerStorage, NotFoundError, StorageError
from recurring_ledger.validation import ImmutableFieldError, RuleValidationError


TODAY = date(2024, 1, 15)


class FailingInstanceStorage(InMemoryLedgerStorage):
    """Storage whose instance write always fails."""

    def save_instance(self, instance):
        raise StorageError("disk full")


@pytest.fixture
def service(storage, audit_logger):
    return RecurringLedgerService(storage, audit_logger=audit_logger)


def salary(**overrides) -> RuleDraft:
    fields = {
        "direction": Direction.INCOME,
        "amount": Decimal("3500.00"),
        "description": "Salary",
        "day_of_month": 31,
        "start_date": date(2024, 1, 1),
    }
    fields.update(overrides)
    return RuleDraft(**fields)


class TestRuleLifecycle:

    def test_create_rule(self, service, audit_storage):
        rule = service.create_rule(salary(), TODAY)

        assert service.get_rule(rule.id) == rule
        event = audit_storage.get_recent_events(limit=1)[0]
        assert event.event_type == AuditEventType.RULE_CREATED

    def test_invalid_rule_is_rejected(self, service):
        with pytest.raises(RuleValidationError):
            service.create_rule(salary(amount=Decimal("0")), TODAY)
        assert service.list_rules() == []

    def test_start_date_cannot_change(self, service):
        rule = service.create_rule(salary(), TODAY)
        with pytest.raises(ImmutableFieldError):
            service.update_rule(rule.model_copy(update={"start_date": date(2024, 5, 1)}))

    def test_update_rule(self, service):
        rule = service.create_rule(salary(), TODAY)
        service.update_rule(rule.model_copy(update={"amount": Decimal("3600.00")}))
        assert service.get_rule(rule.id).amount == Decimal("3600.00")

    def test_stale_edit_keeps_used_units(self, service):
        """Test editing an outdated copy cannot restore a used unit."""
        rule = service.create_rule(salary(policy=FixedCount(remaining=1)), TODAY)
        stale = service.get_rule(rule.id)
        service.process(rule.id, 2024, 2, TODAY)

        saved = service.update_rule(stale.model_copy(update={"description": "Salary (net)"}))

        stored = service.get_rule(rule.id)
        assert saved == stored
        assert stored.description == "Salary (net)"
        assert stored.policy.remaining == 0
        assert stored.is_active is False
        result = service.process(rule.id, 2024, 3, TODAY)
        assert result.outcome == PostingOutcome.SKIPPED_INACTIVE_OR_EXHAUSTED

    def test_explicit_policy_reset(self, service):
        rule = service.create_rule(salary(policy=FixedCount(remaining=1)), TODAY)
        service.process(rule.id, 2024, 2, TODAY)
        exhausted = service.get_rule(rule.id)

        service.update_rule(
            exhausted.model_copy(update={"policy": FixedCount(remaining=3), "is_active": True}),
            reset_policy=True,
        )

        assert service.get_rule(rule.id).policy.remaining == 3
        assert service.process(rule.id, 2024, 3, TODAY).posted

    def test_deactivate_rule(self, service):
        rule = service.create_rule(salary(), TODAY)
        service.deactivate_rule(rule.id)
        assert service.list_rules(active_only=True) == []


class TestPostingThroughService:

    def test_process_period(self, service):
        rule = service.create_rule(salary(), TODAY)

        results = service.process_period(2024, 2, TODAY)

        assert results[rule.id].outcome == PostingOutcome.POSTED
        assert results[rule.id].instance.date == date(2024, 2, 29)
        assert service.daily_balance(date(2024, 2, 29)) == Decimal("3500.00")

    def test_process_period_twice(self, service):
        rule = service.create_rule(salary(), TODAY)
        service.process_period(2024, 2, TODAY)

        results = service.process_period(2024, 2, TODAY)

        assert results[rule.id].outcome == PostingOutcome.SKIPPED_ALREADY_PROCESSED
        assert len(service.list_instances(rule.id)) == 1

    def test_projections(self, service):
        rule = service.create_rule(salary(policy=FixedCount(remaining=2)), TODAY)

        assert service.next_occurrence(rule.id, TODAY) == date(2024, 1, 31)
        assert service.upcoming_occurrences(rule.id, TODAY) == [
            date(2024, 1, 31),
            date(2024, 2, 29),
            date(2024, 3, 31),
        ]

    @pytest.mark.parametrize("count_current_month", [False, True])
    def test_projection_matches_postings(self, storage, count_current_month):
        """Test the projected dates are exactly the dates that get posted."""
        service = RecurringLedgerService(storage, count_current_month=count_current_month)
        rule = service.create_rule(
            salary(day_of_month=20, policy=FixedCount(remaining=1)), TODAY
        )

        projected = service.upcoming_occurrences(rule.id, TODAY)
        posted = []
        for month in range(1, 7):
            result = service.process(rule.id, 2024, month, TODAY)
            if result.posted:
                posted.append(result.instance.date)

        assert projected == posted

    def test_unknown_rule(self, service):
        with pytest.raises(NotFoundError):
            service.next_occurrence(uuid4(), TODAY)

    def test_past_month_of_deleted_rule(self, service):
        """Test a past month is skipped before the rule is looked up."""
        rule = service.create_rule(salary(), TODAY)
        service.delete_rule(rule.id, cascade=False)

        result = service.process(rule.id, 2023, 12, TODAY)

        assert result.outcome == PostingOutcome.SKIPPED_PAST_MONTH
        assert result.rule_id == rule.id
        assert result.rule is None

    def test_current_month_of_deleted_rule(self, service):
        rule = service.create_rule(salary(), TODAY)
        service.delete_rule(rule.id, cascade=False)

        with pytest.raises(NotFoundError):
            service.process(rule.id, 2024, 1, TODAY)

    def test_failed_period_is_audited(self, audit_logger, audit_storage):
        service = RecurringLedgerService(FailingInstanceStorage(), audit_logger=audit_logger)
        service.create_rule(salary(), TODAY)

        with pytest.raises(StorageError):
            service.process_period(2024, 2, TODAY)

        event = audit_storage.get_recent_events(limit=1)[0]
        assert event.event_type == AuditEventType.SYSTEM_ERROR
        assert event.details == {"year": 2024, "month": 2}
        assert event.error_message == "disk full"


class TestDeletionThroughService:

    def test_orphan_resolves_to_none(self, service):
        rule = service.create_rule(salary(), TODAY)
        result = service.process(rule.id, 2024, 2, TODAY)

        service.delete_rule(rule.id, cascade=False)

        assert service.get_instance(result.instance.id) is not None
        assert service.resolve_rule(result.instance.id) is None

    def test_cascade_updates_balance(self, service):
        rule = service.create_rule(salary(), TODAY)
        service.process(rule.id, 2024, 2, TODAY)

        deletion = service.delete_rule(rule.id, cascade=True)

        assert deletion.instances_deleted == 1
        assert service.daily_balance(date(2024, 2, 29)) == Decimal("0.00")

    def test_reconcile_clean(self, service):
        rule = service.create_rule(salary(), TODAY)
        service.process(rule.id, 2024, 2, TODAY)
        assert service.reconcile().is_consistent is True


class TestWiring:

    def test_balance_rebuilt_from_storage(self, storage, make_rule):
        """Test a new service starts from the instances already stored."""
        rule = make_rule(direction=Direction.INCOME)
        RecurringLedgerService(storage).process(rule.id, 2024, 2, TODAY)

        fresh = RecurringLedgerService(storage)

        assert fresh.daily_balance(date(2024, 2, 29)) == Decimal("100.00")

    def test_overflow_is_audited(self, storage, audit_logger, audit_storage):
        service = RecurringLedgerService(storage, audit_logger=audit_logger)

        service.money.sum(Decimal("999999999.99"), Decimal("0.01"))

        event = audit_storage.get_recent_events(limit=1)[0]
        assert event.event_type == AuditEventType.ARITHMETIC_OVERFLOW_CAPPED

    def test_format_and_parse(self, service):
        assert service.format(Decimal("1234.56")) == "R$ 1.234,56"
        assert service.parse("R$ 1.234,56") == Decimal("1234.56")

    def test_create_app_components_defaults(self):
        """Test the default settings wire an in-memory service."""
        service = create_app_components(Settings())

        assert isinstance(service, RecurringLedgerService)
        assert service.processor.count_current_month is False
        assert service.upcoming_default_count == 12

    def test_create_app_components_rejects_invalid_settings(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "postgres")

        with pytest.raises(ValueError, match="storage"):
            create_app_components(Settings())

    def test_settings_status(self, monkeypatch):
        monkeypatch.setenv("LEDGER_UPCOMING_DEFAULT_COUNT", "0")

        status = validate_all_settings(Settings())

        assert status["ledger"] is False
        assert "ledger_error" in status
        assert status["currency"] is True

    def test_create_app_components_sqlite(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STORAGE_BACKEND", "sqlite")
        monkeypatch.setenv("STORAGE_SQLITE_PATH", str(tmp_path / "ledger.db"))
        monkeypatch.setenv("LEDGER_COUNT_CURRENT_MONTH_POSTINGS", "true")

        service = create_app_components(Settings())
        rule = service.create_rule(salary(policy=FixedCount(remaining=3)), TODAY)
        result = service.process(rule.id, 2024, 1, TODAY)

        assert result.counter_consumed is True
        assert service.get_rule(rule.id).policy.remaining == 2
