"""Tests for the idempotent posting processor."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from recurring_ledger.engine import BalancePropagator, IdempotentProcessor
from recurring_ledger.models.audit import AuditEventType
from recurring_ledger.models.recurring import (
    FixedCount,
    MonthlyDuration,
    PostingOutcome,
    ProcessingMarker,
)
from recurring_ledger.storage import InMemoryLedgerStorage, NotFoundError, StorageError


TODAY = date(2024, 1, 15)


class FailingInstanceStorage(InMemoryLedgerStorage):
    """Storage whose instance write always fails."""

    def save_instance(self, instance):
        raise StorageError("disk full")


class RacingStorage(InMemoryLedgerStorage):
    """Storage that hides markers from the pre-check, as a racing duplicate would."""

    def get_marker(self, rule_id, year, month):
        return None


@pytest.fixture
def processor(storage, audit_logger):
    return IdempotentProcessor(storage, audit_logger=audit_logger)


class TestIdempotence:

    def test_second_call_is_already_processed(self, processor, storage, make_rule):
        """Test Posted then SkippedAlreadyProcessed, with one instance."""
        rule = make_rule()

        first = processor.process(rule, 2024, 2, TODAY)
        second = processor.process(rule, 2024, 2, TODAY)

        assert first.outcome == PostingOutcome.POSTED
        assert second.outcome == PostingOutcome.SKIPPED_ALREADY_PROCESSED
        assert len(storage.list_instances(rule_id=rule.id)) == 1

    def test_marker_records_posting(self, processor, storage, make_rule):
        rule = make_rule(day_of_month=31)
        result = processor.process(rule, 2024, 4, TODAY)

        marker = storage.get_marker(rule.id, 2024, 4)
        assert marker is not None
        assert marker.day == 30
        assert marker.amount == Decimal("100.00")
        assert marker.instance_id == result.instance.id
        assert marker.verify()

    def test_duplicate_that_raced_past_the_check(self, audit_logger, rule_builder):
        """Test the insert-if-absent loses cleanly when the pre-check missed the marker."""
        storage = RacingStorage()
        rule = rule_builder()
        storage.save_rule(rule)
        processor = IdempotentProcessor(storage, audit_logger=audit_logger)

        first = processor.process(rule, 2024, 2, TODAY)
        second = processor.process(rule, 2024, 2, TODAY)

        assert first.posted
        assert second.outcome == PostingOutcome.SKIPPED_ALREADY_PROCESSED
        assert len(storage.list_instances()) == 1


class TestSkipOutcomes:

    def test_past_month_never_backfills(self, processor, make_rule):
        rule = make_rule(start_date=date(2023, 1, 1))
        result = processor.process(rule, 2023, 12, TODAY)
        assert result.outcome == PostingOutcome.SKIPPED_PAST_MONTH

    def test_past_month_regardless_of_rule_state(self, processor, rule_builder):
        """Test check 1 wins even for an inactive rule that was never stored."""
        rule = rule_builder(is_active=False)
        result = processor.process(rule, 2023, 6, TODAY)
        assert result.outcome == PostingOutcome.SKIPPED_PAST_MONTH

    def test_not_yet_started(self, processor, make_rule):
        rule = make_rule(start_date=date(2024, 5, 1))
        result = processor.process(rule, 2024, 3, TODAY)
        assert result.outcome == PostingOutcome.SKIPPED_NOT_YET_STARTED

    def test_start_date_after_day_in_start_month(self, processor, make_rule):
        """Test the start month is skipped when its occurrence precedes start_date."""
        rule = make_rule(day_of_month=10, start_date=date(2024, 3, 20))
        assert processor.process(rule, 2024, 3, TODAY).outcome == (
            PostingOutcome.SKIPPED_NOT_YET_STARTED
        )
        assert processor.process(rule, 2024, 4, TODAY).posted

    def test_inactive(self, processor, make_rule):
        rule = make_rule(is_active=False)
        result = processor.process(rule, 2024, 2, TODAY)
        assert result.outcome == PostingOutcome.SKIPPED_INACTIVE_OR_EXHAUSTED

    def test_exhausted(self, processor, make_rule):
        rule = make_rule(policy=FixedCount(remaining=0))
        result = processor.process(rule, 2024, 2, TODAY)
        assert result.outcome == PostingOutcome.SKIPPED_INACTIVE_OR_EXHAUSTED

    @pytest.mark.parametrize("day", [1, 10, 15])
    def test_day_already_passed_this_month(self, processor, make_rule, day):
        """Test days on or before today do not post in the current month."""
        rule = make_rule(day_of_month=day)
        result = processor.process(rule, 2024, 1, TODAY)
        assert result.outcome == PostingOutcome.SKIPPED_DAY_ALREADY_PASSED_THIS_MONTH

    def test_skips_write_nothing(self, processor, storage, make_rule):
        rule = make_rule(day_of_month=10)
        processor.process(rule, 2024, 1, TODAY)
        assert storage.list_instances() == []
        assert storage.list_markers() == []

    def test_unknown_rule_raises(self, processor, rule_builder):
        with pytest.raises(NotFoundError):
            processor.process(rule_builder(), 2024, 2, TODAY)


class TestCounters:

    def test_leap_year_scenario(self, processor, storage, make_rule):
        """Test day 31 with FixedCount(2): Jan posts free, Feb posts on the 29th and counts."""
        rule = make_rule(day_of_month=31, policy=FixedCount(remaining=2))

        january = processor.process(rule, 2024, 1, TODAY)
        assert january.posted
        assert january.instance.date == date(2024, 1, 31)
        assert january.counter_consumed is False
        assert january.rule.policy.remaining == 2

        february = processor.process(rule, 2024, 2, TODAY)
        assert february.posted
        assert february.instance.date == date(2024, 2, 29)
        assert february.instance.amount == Decimal("100.00")
        assert february.rule.policy.remaining == 1
        assert storage.get_rule(rule.id).policy.remaining == 1

    def test_fixed_count_one_posts_once(self, processor, storage, make_rule):
        """Test FixedCount(1) posts exactly once and then deactivates."""
        rule = make_rule(policy=FixedCount(remaining=1))

        results = processor.process_range(rule, 2024, 2, 3, TODAY)

        assert [r.outcome for r in results] == [
            PostingOutcome.POSTED,
            PostingOutcome.SKIPPED_INACTIVE_OR_EXHAUSTED,
            PostingOutcome.SKIPPED_INACTIVE_OR_EXHAUSTED,
        ]
        assert storage.get_rule(rule.id).is_active is False
        assert len(storage.list_instances()) == 1

    def test_monthly_duration_two_months(self, processor, storage, make_rule):
        """Test MonthlyDuration(2) posts in exactly two months then deactivates."""
        rule = make_rule(policy=MonthlyDuration(remaining_months=2))

        results = processor.process_range(rule, 2024, 2, 4, TODAY)

        posted_months = [(r.year, r.month) for r in results if r.posted]
        assert posted_months == [(2024, 2), (2024, 3)]
        stored = storage.get_rule(rule.id)
        assert stored.is_active is False
        assert stored.policy.remaining_months == 0

    def test_current_month_counts_when_enabled(self, storage, make_rule):
        """Test the count_current_month flag makes current-month postings consume a unit."""
        processor = IdempotentProcessor(storage, count_current_month=True)
        rule = make_rule(day_of_month=20, policy=FixedCount(remaining=2))

        result = processor.process(rule, 2024, 1, TODAY)

        assert result.counter_consumed is True
        assert storage.get_rule(rule.id).policy.remaining == 1

    def test_current_month_free_by_default(self, processor, storage, make_rule):
        rule = make_rule(day_of_month=20, policy=FixedCount(remaining=1))

        result = processor.process(rule, 2024, 1, TODAY)

        assert result.posted
        assert storage.get_rule(rule.id).policy.remaining == 1
        assert storage.get_rule(rule.id).is_active is True

    def test_stored_counters_are_authoritative(self, processor, storage, make_rule):
        """Test a stale rule object does not resurrect consumed units."""
        stale = make_rule(policy=FixedCount(remaining=1))
        processor.process(stale, 2024, 2, TODAY)

        result = processor.process(stale, 2024, 3, TODAY)

        assert result.outcome == PostingOutcome.SKIPPED_INACTIVE_OR_EXHAUSTED


class TestFailureSemantics:

    def test_instance_failure_rolls_back_marker(self, audit_logger, audit_storage, rule_builder):
        """Test no marker survives a failed instance write."""
        storage = FailingInstanceStorage()
        rule = rule_builder(policy=FixedCount(remaining=3))
        storage.save_rule(rule)
        processor = IdempotentProcessor(storage, audit_logger=audit_logger)

        with pytest.raises(StorageError, match="disk full"):
            processor.process(rule, 2024, 2, TODAY)

        assert storage.get_marker(rule.id, 2024, 2) is None
        assert storage.list_instances() == []
        assert storage.get_rule(rule.id).policy.remaining == 3

        events = audit_storage.get_recent_events()
        assert events[0].event_type == AuditEventType.POSTING_ROLLED_BACK
        assert events[0].error_message == "disk full"


class TestCollaborators:

    def test_posting_is_folded_into_balance(self, storage, make_rule):
        balance = BalancePropagator()
        processor = IdempotentProcessor(storage, balance=balance)
        rule = make_rule(day_of_month=31)

        processor.process(rule, 2024, 2, TODAY)

        assert balance.daily_balance(date(2024, 2, 29)) == Decimal("-100.00")
        assert balance.daily_balance(date(2024, 2, 28)) == Decimal("0.00")

    def test_posting_is_audited(self, processor, audit_storage, make_rule):
        rule = make_rule(policy=FixedCount(remaining=1))
        correlation_id = uuid4()

        result = processor.process(rule, 2024, 2, TODAY, correlation_id=correlation_id)

        events = audit_storage.get_events_by_correlation_id(correlation_id)
        types = [e.event_type for e in events]
        assert types == [AuditEventType.POSTING_CREATED, AuditEventType.RULE_DEACTIVATED]
        assert events[0].entity_id == result.instance.id

    def test_skip_is_audited(self, processor, audit_storage, make_rule):
        rule = make_rule()
        processor.process(rule, 2023, 1, TODAY)
        event = audit_storage.get_recent_events(limit=1)[0]
        assert event.event_type == AuditEventType.POSTING_SKIPPED
        assert event.details["outcome"] == "skipped_past_month"


class TestBatches:

    def test_process_many(self, processor, make_rule):
        due = make_rule(day_of_month=20)
        passed = make_rule(day_of_month=5)

        results = processor.process_many([due, passed], 2024, 1, TODAY)

        assert results[due.id].outcome == PostingOutcome.POSTED
        assert results[passed.id].outcome == PostingOutcome.SKIPPED_DAY_ALREADY_PASSED_THIS_MONTH

    def test_process_range_walks_forward(self, processor, make_rule):
        rule = make_rule(day_of_month=5, policy=FixedCount(remaining=3))

        results = processor.process_range(rule, 2023, 12, 6, TODAY)

        assert [r.outcome for r in results] == [
            PostingOutcome.SKIPPED_PAST_MONTH,
            PostingOutcome.SKIPPED_DAY_ALREADY_PASSED_THIS_MONTH,
            PostingOutcome.POSTED,
            PostingOutcome.POSTED,
            PostingOutcome.POSTED,
            PostingOutcome.SKIPPED_INACTIVE_OR_EXHAUSTED,
        ]

    def test_check_matches_process(self, processor, storage, make_rule):
        """Test check() is read-only and agrees with process()."""
        rule = make_rule()
        assert processor.check(rule, 2024, 2, TODAY) is None
        assert storage.list_markers() == []

        storage.insert_marker_if_absent(ProcessingMarker(
            rule_id=rule.id, year=2024, month=2, day=20,
            amount=rule.amount, direction=rule.direction, instance_id=uuid4(),
        ))
        assert processor.check(rule, 2024, 2, TODAY) == PostingOutcome.SKIPPED_ALREADY_PROCESSED
