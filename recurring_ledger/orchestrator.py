"""
Service Facade for the Recurring Ledger

This module ties together all the components and exposes the operations
the surrounding application calls:
1. Rule lifecycle (validate -> create -> update -> deactivate)
2. Posting (process one rule or a whole period, idempotently)
3. Projections (next occurrence, next N occurrences)
4. Deletion (rule with/without cascade, single instance)
5. Balances and reconciliation

DESIGN DECISION: The facade enforces the boundaries:
- No rule is stored without passing validation
- `start_date` never changes after creation
- Every state change is audited
- The clock is always passed in by the caller
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from recurring_ledger.audit import AuditLogger, create_correlation_id
from recurring_ledger.config import Settings, get_settings, validate_all_settings
from recurring_ledger.engine import (
    BalancePropagator,
    DeletionCoordinator,
    IdempotentProcessor,
    Reconciler,
    ReconciliationReport,
)
from recurring_ledger.models.audit import AuditEventBuilder
from recurring_ledger.models.ledger import DailyLedgerEntry, Posting
from recurring_ledger.models.recurring import (
    DeletionResult,
    GeneratedInstance,
    ProcessResult,
    RecurringRule,
    RuleDraft,
)
from recurring_ledger.money import CurrencyArithmetic
from recurring_ledger.money.currency import AmountLike
from recurring_ledger.schedule import next_occurrence, upcoming_occurrences
from recurring_ledger.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
    StorageError,
)
from recurring_ledger.validation import RuleValidationError, RuleValidator


logger = structlog.get_logger(__name__)


class RecurringLedgerService:
    """
    Orchestrates rules, postings, deletions and balances.

    All collaborators are injected; `create_app_components` wires them
    from settings.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        arithmetic: Optional[CurrencyArithmetic] = None,
        opening_balance: AmountLike = Decimal("0.00"),
        count_current_month: bool = False,
        upcoming_default_count: int = 12,
    ):
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()
        self.money = arithmetic or CurrencyArithmetic(on_overflow=self._audit_logger.log_overflow)
        self.upcoming_default_count = upcoming_default_count

        self.balance = BalancePropagator(self.money, opening_balance)
        self.balance.rebuild(
            Posting.from_instance(i) for i in self._storage.list_instances()
        )

        self.validator = RuleValidator(self.money)
        self.processor = IdempotentProcessor(
            storage,
            audit_logger=self._audit_logger,
            balance=self.balance,
            count_current_month=count_current_month,
        )
        self.deletion = DeletionCoordinator(
            storage,
            audit_logger=self._audit_logger,
            balance=self.balance,
        )
        self.reconciler = Reconciler(storage, audit_logger=self._audit_logger)

    # =========================================================================
    # RULES
    # =========================================================================

    def _require_rule(self, rule_id: UUID) -> RecurringRule:
        rule = self._storage.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(f"Rule not found: {rule_id}")
        return rule

    def create_rule(self, draft: RuleDraft, today: date) -> RecurringRule:
        """
        Validate and store a new rule.

        Raises:
            RuleValidationError: If the draft has blocking issues
        """
        result = self.validator.validate(draft, today)
        if not result.is_valid:
            logger.info(
                "rule_rejected",
                errors=[issue.message for issue in result.errors],
            )
            raise RuleValidationError(result)

        rule = draft.to_rule()
        self._storage.save_rule(rule)

        logger.info("rule_created", rule_id=str(rule.id), warnings=result.warnings)
        self._audit_logger.log(AuditEventBuilder.rule_created(
            rule_id=rule.id,
            direction=rule.direction.value,
            amount=str(rule.amount),
            day_of_month=rule.day_of_month,
        ))
        return rule

    def update_rule(self, rule: RecurringRule, reset_policy: bool = False) -> RecurringRule:
        """
        Apply an edit to a stored rule.

        The policy and the active flag keep their stored values, so an edit
        made on an outdated copy cannot hand back units that postings have
        already used. Pass `reset_policy=True` to replace them deliberately.

        Raises:
            NotFoundError: If the rule doesn't exist
            ImmutableFieldError: If the update changes start_date
        """
        existing = self._require_rule(rule.id)
        rule = self.validator.merge_update(existing, rule, reset_policy)
        changed = self.validator.check_update(existing, rule)
        if changed:
            self._storage.update_rule(rule)
        self._audit_logger.log(AuditEventBuilder.rule_updated(rule.id, changed))
        return rule

    def deactivate_rule(self, rule_id: UUID, reason: str = "deactivated by user") -> RecurringRule:
        rule = self._require_rule(rule_id)
        if not rule.is_active:
            return rule
        updated = rule.model_copy(update={"is_active": False})
        self._storage.update_rule(updated)
        self._audit_logger.log(AuditEventBuilder.rule_deactivated(rule_id, reason))
        return updated

    def get_rule(self, rule_id: UUID) -> Optional[RecurringRule]:
        return self._storage.get_rule(rule_id)

    def list_rules(self, active_only: bool = False) -> list[RecurringRule]:
        return self._storage.list_rules(active_only=active_only)

    # =========================================================================
    # POSTING
    # =========================================================================

    def process(self, rule_id: UUID, year: int, month: int, today: date) -> ProcessResult:
        return self.processor.process_id(rule_id, year, month, today)

    def process_period(
        self,
        year: int,
        month: int,
        today: date,
        correlation_id: Optional[UUID] = None,
    ) -> dict[UUID, ProcessResult]:
        """Process every active rule into (year, month) as one correlated run."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            return self.processor.process_many(
                self._storage.list_rules(active_only=True),
                year,
                month,
                today,
                correlation_id=correlation_id,
            )
        except StorageError as e:
            self._audit_logger.log_error(
                error_type="period_processing_failed",
                error_message=str(e),
                details={"year": year, "month": month},
                correlation_id=correlation_id,
            )
            raise

    # =========================================================================
    # PROJECTIONS
    # =========================================================================

    def next_occurrence(self, rule_id: UUID, reference_date: date) -> date:
        return next_occurrence(self._require_rule(rule_id), reference_date)

    def upcoming_occurrences(
        self,
        rule_id: UUID,
        reference_date: date,
        n: Optional[int] = None,
    ) -> list[date]:
        return upcoming_occurrences(
            self._require_rule(rule_id),
            n or self.upcoming_default_count,
            reference_date,
            count_current_month=self.processor.count_current_month,
        )

    # =========================================================================
    # DELETION
    # =========================================================================

    def delete_rule(self, rule_id: UUID, cascade: bool) -> DeletionResult:
        return self.deletion.delete_rule(rule_id, cascade)

    def delete_instance(self, instance_id: UUID) -> bool:
        return self.deletion.delete_instance(instance_id)

    def get_instance(self, instance_id: UUID) -> Optional[GeneratedInstance]:
        return self._storage.get_instance(instance_id)

    def list_instances(self, rule_id: Optional[UUID] = None) -> list[GeneratedInstance]:
        return self._storage.list_instances(rule_id=rule_id)

    def resolve_rule(self, instance_id: UUID) -> Optional[RecurringRule]:
        """Originating rule of an instance; None when orphaned."""
        instance = self._storage.get_instance(instance_id)
        if instance is None:
            raise NotFoundError(f"Instance not found: {instance_id}")
        return self.deletion.resolve_rule(instance)

    def clear_period(self, year: int, month: int, rule_id: Optional[UUID] = None) -> int:
        return self.deletion.clear_period(year, month, rule_id)

    # =========================================================================
    # BALANCES / RECONCILIATION / MONEY
    # =========================================================================

    def daily_balance(self, day: date) -> Decimal:
        return self.balance.daily_balance(day)

    def month_entries(self, year: int, month: int) -> list[DailyLedgerEntry]:
        return self.balance.month_entries(year, month)

    def reconcile(self) -> ReconciliationReport:
        return self.reconciler.auto_repair()

    def format(self, amount: AmountLike) -> str:
        return self.money.format(amount)

    def parse(self, text: AmountLike) -> Decimal:
        return self.money.parse(text)


def create_storage(
    settings: Optional[Settings] = None,
) -> tuple[LedgerStorageInterface, AuditStorageInterface]:
    """Ledger and audit storage for the configured backend."""
    storage_settings = (settings or get_settings()).storage
    if storage_settings.backend == "sqlite":
        client = SQLiteClient.from_settings(storage_settings)
        return SQLiteLedgerStorage(client), SQLiteAuditStorage(client)
    return InMemoryLedgerStorage(), InMemoryAuditStorage()


def create_app_components(
    settings: Optional[Settings] = None,
) -> RecurringLedgerService:
    """
    Factory function to create the service from settings.

    Args:
        settings: Root settings; defaults to the cached environment settings

    Returns:
        A fully wired RecurringLedgerService

    Raises:
        ValueError: If a settings group fails validation
    """
    settings = settings or get_settings()
    status = validate_all_settings(settings)
    invalid = [name for name, ok in status.items() if ok is False]
    if invalid:
        logger.error("invalid_settings", groups=invalid, status=status)
        raise ValueError(f"Invalid settings: {', '.join(invalid)}")

    ledger_storage, audit_storage = create_storage(settings)
    audit_logger = AuditLogger(audit_storage)
    arithmetic = CurrencyArithmetic.from_settings(
        settings.currency,
        on_overflow=audit_logger.log_overflow,
    )
    ledger_settings = settings.ledger

    logger.info(
        "app_components_created",
        backend=settings.storage.backend,
        count_current_month_postings=ledger_settings.count_current_month_postings,
    )
    return RecurringLedgerService(
        ledger_storage,
        audit_logger=audit_logger,
        arithmetic=arithmetic,
        opening_balance=ledger_settings.opening_balance,
        count_current_month=ledger_settings.count_current_month_postings,
        upcoming_default_count=ledger_settings.upcoming_default_count,
    )
