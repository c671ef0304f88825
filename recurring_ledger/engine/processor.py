"""
Idempotent Posting Processor

Decides whether a rule posts into a target month and, if so, posts it
exactly once.

The checks run in a fixed order and the first one that fails wins:
1. Target month before today's month        -> SKIPPED_PAST_MONTH (no backfill)
2. Rule not started by the target month     -> SKIPPED_NOT_YET_STARTED
3. Rule inactive or its policy exhausted    -> SKIPPED_INACTIVE_OR_EXHAUSTED
4. Marker already present for the period    -> SKIPPED_ALREADY_PROCESSED
5. Current month, day not strictly ahead    -> SKIPPED_DAY_ALREADY_PASSED_THIS_MONTH
6. Otherwise post                           -> POSTED

DESIGN DECISION: Mark-before-act.
The processing marker is inserted (insert-if-absent) BEFORE the instance
is written, and both writes plus the rule's counter update share one
storage transaction. A duplicate invocation either sees the marker at
step 4 or loses the insert in step 6; a failure rolls everything back.

Skips are values, never exceptions. Storage failures propagate.

The caller supplies `today`; the processor never reads the clock.
"""

from datetime import date
from typing import Iterable, Optional
from uuid import UUID

import structlog

from recurring_ledger.audit import AuditLogger
from recurring_ledger.engine.balance import BalancePropagator
from recurring_ledger.models.audit import AuditEventBuilder
from recurring_ledger.models.ledger import Posting
from recurring_ledger.models.recurring import (
    GeneratedInstance,
    PostingOutcome,
    ProcessingMarker,
    ProcessResult,
    RecurringRule,
)
from recurring_ledger.schedule import (
    add_months,
    apply_advance,
    is_exhausted,
    month_index,
    occurrence_in_month,
    remaining_units,
)
from recurring_ledger.storage import LedgerStorageInterface, NotFoundError


logger = structlog.get_logger(__name__)


class IdempotentProcessor:
    """
    Posts recurring rules into monthly periods, at most once per period.

    Args:
        storage: Ledger storage providing markers, instances and rules
        audit_logger: Optional audit trail for postings and skips
        balance: Optional running balance; posted instances are folded in
        count_current_month: Whether a posting into today's month consumes
            a FixedCount / MonthlyDuration unit. Off by default: only
            postings into future months are counted.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        balance: Optional[BalancePropagator] = None,
        count_current_month: bool = False,
    ):
        self._storage = storage
        self._audit_logger = audit_logger
        self._balance = balance
        self.count_current_month = count_current_month

    def _audit(self, event) -> None:
        if self._audit_logger:
            self._audit_logger.log(event)

    # =========================================================================
    # DECISION
    # =========================================================================

    def check(
        self,
        rule: RecurringRule,
        year: int,
        month: int,
        today: date,
    ) -> Optional[PostingOutcome]:
        """
        Run checks 1-5 without writing anything.

        Returns the skip outcome, or None when the rule would post.
        """
        target = month_index(year, month)
        current = month_index(today.year, today.month)

        if target < current:
            return PostingOutcome.SKIPPED_PAST_MONTH

        start = rule.start_date
        if target < month_index(start.year, start.month):
            return PostingOutcome.SKIPPED_NOT_YET_STARTED
        if occurrence_in_month(rule, year, month) < start:
            return PostingOutcome.SKIPPED_NOT_YET_STARTED

        if not rule.is_active or is_exhausted(rule.policy):
            return PostingOutcome.SKIPPED_INACTIVE_OR_EXHAUSTED

        if self._storage.get_marker(rule.id, year, month) is not None:
            return PostingOutcome.SKIPPED_ALREADY_PROCESSED

        if target == current and occurrence_in_month(rule, year, month).day <= today.day:
            return PostingOutcome.SKIPPED_DAY_ALREADY_PASSED_THIS_MONTH

        return None

    def consumes_counter(self, rule: RecurringRule, year: int, month: int, today: date) -> bool:
        """Whether posting `rule` into (year, month) uses up a policy unit."""
        if remaining_units(rule.policy) is None:
            return False
        is_current = (year, month) == (today.year, today.month)
        return self.count_current_month or not is_current

    # =========================================================================
    # PROCESS
    # =========================================================================

    def process(
        self,
        rule: RecurringRule,
        year: int,
        month: int,
        today: date,
        correlation_id: Optional[UUID] = None,
    ) -> ProcessResult:
        """
        Post `rule` into (year, month) if every check passes.

        The stored version of the rule is authoritative for counters and
        the active flag; `rule` only identifies it.

        Raises:
            NotFoundError: If the rule is not in storage
            StorageError: If a write fails (all writes are rolled back)
        """
        return self._process(rule.id, year, month, today, correlation_id, known=rule)

    def process_id(
        self,
        rule_id: UUID,
        year: int,
        month: int,
        today: date,
        correlation_id: Optional[UUID] = None,
    ) -> ProcessResult:
        """
        Like `process`, for callers holding only the rule id.

        A past month is skipped before the lookup, so it is reported even
        for a rule that has since been deleted (with `rule` set to None).
        """
        return self._process(rule_id, year, month, today, correlation_id)

    def _process(
        self,
        rule_id: UUID,
        year: int,
        month: int,
        today: date,
        correlation_id: Optional[UUID],
        known: Optional[RecurringRule] = None,
    ) -> ProcessResult:
        # Check 1 does not depend on rule state
        if month_index(year, month) < month_index(today.year, today.month):
            return self._skipped(
                rule_id, known, year, month,
                PostingOutcome.SKIPPED_PAST_MONTH, correlation_id,
            )

        stored = self._storage.get_rule(rule_id)
        if stored is None:
            raise NotFoundError(f"Rule not found: {rule_id}")

        outcome = self.check(stored, year, month, today)
        if outcome is not None:
            return self._skipped(rule_id, stored, year, month, outcome, correlation_id)

        return self._post(stored, year, month, today, correlation_id)

    def _skipped(
        self,
        rule_id: UUID,
        rule: Optional[RecurringRule],
        year: int,
        month: int,
        outcome: PostingOutcome,
        correlation_id: Optional[UUID],
    ) -> ProcessResult:
        logger.debug(
            "posting_skipped",
            rule_id=str(rule_id),
            year=year,
            month=month,
            outcome=outcome.value,
        )
        self._audit(AuditEventBuilder.posting_skipped(
            rule_id=rule_id,
            year=year,
            month=month,
            outcome=outcome.value,
            correlation_id=correlation_id,
        ))
        return ProcessResult(
            outcome=outcome,
            rule_id=rule_id,
            rule=rule,
            year=year,
            month=month,
        )

    def _post(
        self,
        rule: RecurringRule,
        year: int,
        month: int,
        today: date,
        correlation_id: Optional[UUID],
    ) -> ProcessResult:
        posting_date = occurrence_in_month(rule, year, month)
        instance = GeneratedInstance(
            rule_id=rule.id,
            date=posting_date,
            amount=rule.amount,
            direction=rule.direction,
            description=rule.description,
        )
        marker = ProcessingMarker(
            rule_id=rule.id,
            year=year,
            month=month,
            day=posting_date.day,
            amount=rule.amount,
            direction=rule.direction,
            instance_id=instance.id,
        )
        counter_consumed = self.consumes_counter(rule, year, month, today)
        updated = apply_advance(rule) if counter_consumed else rule

        try:
            with self._storage.transaction():
                if not self._storage.insert_marker_if_absent(marker):
                    # A duplicate invocation got here first
                    return self._skipped(
                        rule.id, rule, year, month,
                        PostingOutcome.SKIPPED_ALREADY_PROCESSED, correlation_id,
                    )
                self._storage.save_instance(instance)
                if updated != rule:
                    self._storage.update_rule(updated)
        except Exception as e:
            logger.error(
                "posting_rolled_back",
                rule_id=str(rule.id),
                year=year,
                month=month,
                error=str(e),
            )
            self._audit(AuditEventBuilder.posting_rolled_back(
                rule_id=rule.id,
                year=year,
                month=month,
                error_message=str(e),
                correlation_id=correlation_id,
            ))
            raise

        if self._balance is not None:
            self._balance.fold(Posting.from_instance(instance))

        logger.info(
            "posting_created",
            rule_id=str(rule.id),
            instance_id=str(instance.id),
            date=posting_date.isoformat(),
            amount=str(instance.amount),
            counter_consumed=counter_consumed,
        )
        self._audit(AuditEventBuilder.posting_created(
            instance_id=instance.id,
            rule_id=rule.id,
            posting_date=posting_date.isoformat(),
            amount=str(instance.amount),
            direction=instance.direction.value,
            counter_consumed=counter_consumed,
            correlation_id=correlation_id,
        ))
        if rule.is_active and not updated.is_active:
            self._audit(AuditEventBuilder.rule_deactivated(
                rule_id=rule.id,
                reason="frequency policy exhausted",
                correlation_id=correlation_id,
            ))

        return ProcessResult(
            outcome=PostingOutcome.POSTED,
            rule_id=rule.id,
            rule=updated,
            year=year,
            month=month,
            instance=instance,
            counter_consumed=counter_consumed,
        )

    # =========================================================================
    # BATCHES
    # =========================================================================

    def process_many(
        self,
        rules: Iterable[RecurringRule],
        year: int,
        month: int,
        today: date,
        correlation_id: Optional[UUID] = None,
    ) -> dict[UUID, ProcessResult]:
        """Process every rule into the same period."""
        results = {}
        for rule in rules:
            results[rule.id] = self.process(rule, year, month, today, correlation_id)

        posted = sum(1 for r in results.values() if r.posted)
        logger.info(
            "period_processed",
            year=year,
            month=month,
            rules=len(results),
            posted=posted,
        )
        return results

    def process_range(
        self,
        rule: RecurringRule,
        start_year: int,
        start_month: int,
        months: int,
        today: date,
        correlation_id: Optional[UUID] = None,
    ) -> list[ProcessResult]:
        """Process one rule into `months` consecutive periods, oldest first."""
        results = []
        current = rule
        for offset in range(months):
            year, month = add_months(start_year, start_month, offset)
            result = self.process(current, year, month, today, correlation_id)
            current = result.rule or current
            results.append(result)
        return results
