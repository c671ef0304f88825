"""
Deletion Coordinator

Rule deletion is a caller-chosen policy:
- cascade=True:  delete every instance generated by the rule, then the rule
- cascade=False: delete only the rule; its instances become orphans whose
                 back-reference resolves to "no such rule"

Single-instance deletion never touches the rule or its processing
markers. It leaves a tombstone so reconciliation can tell a deliberate
deletion apart from a crash between marker and instance writes.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from recurring_ledger.audit import AuditLogger
from recurring_ledger.engine.balance import BalancePropagator
from recurring_ledger.models.audit import AuditEventBuilder
from recurring_ledger.models.ledger import Posting
from recurring_ledger.models.recurring import (
    DeletionResult,
    GeneratedInstance,
    InstanceTombstone,
    RecurringRule,
)
from recurring_ledger.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)


class DeletionCoordinator:
    """Deletes rules and generated instances."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        balance: Optional[BalancePropagator] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger
        self._balance = balance

    def _audit(self, event) -> None:
        if self._audit_logger:
            self._audit_logger.log(event)

    def _unfold(self, instances: list[GeneratedInstance]) -> None:
        if self._balance is None:
            return
        for instance in instances:
            self._balance.unfold(Posting.from_instance(instance))

    @staticmethod
    def _tombstone(instance: GeneratedInstance) -> InstanceTombstone:
        return InstanceTombstone(
            instance_id=instance.id,
            rule_id=instance.rule_id,
            date=instance.date,
            deleted_at=datetime.utcnow(),
        )

    def delete_rule(self, rule_id: UUID, cascade: bool) -> DeletionResult:
        """
        Delete a rule, optionally with all of its generated instances.

        Instances go first, then the rule, in one transaction: either both
        happen or neither does. An unknown rule returns (False, 0).
        Cascaded instances are tombstoned; their markers stay, so the rule
        id cannot post those periods again.
        """
        if self._storage.get_rule(rule_id) is None:
            logger.info("rule_delete_not_found", rule_id=str(rule_id))
            return DeletionResult(rule_deleted=False, instances_deleted=0)

        doomed: list[GeneratedInstance] = []
        with self._storage.transaction():
            instances_deleted = 0
            if cascade:
                doomed = self._storage.list_instances(rule_id=rule_id)
                instances_deleted = self._storage.delete_instances_for_rule(rule_id)
                for instance in doomed:
                    self._storage.record_tombstone(self._tombstone(instance))
            rule_deleted = self._storage.delete_rule(rule_id)

        self._unfold(doomed)

        logger.info(
            "rule_deleted",
            rule_id=str(rule_id),
            cascade=cascade,
            instances_deleted=instances_deleted,
        )
        self._audit(AuditEventBuilder.rule_deleted(
            rule_id=rule_id,
            cascade=cascade,
            instances_deleted=instances_deleted,
        ))
        return DeletionResult(rule_deleted=rule_deleted, instances_deleted=instances_deleted)

    def delete_instance(self, instance_id: UUID) -> bool:
        """
        Delete one generated instance.

        The rule and its markers are left alone, so the period is not
        re-posted unless its marker is cleared separately.
        """
        instance = self._storage.get_instance(instance_id)
        if instance is None:
            return False

        with self._storage.transaction():
            self._storage.delete_instance(instance_id)
            self._storage.record_tombstone(self._tombstone(instance))

        self._unfold([instance])

        logger.info(
            "instance_deleted",
            instance_id=str(instance_id),
            rule_id=str(instance.rule_id),
        )
        self._audit(AuditEventBuilder.instance_deleted(
            instance_id=instance_id,
            rule_id=instance.rule_id,
        ))
        return True

    def resolve_rule(self, instance: GeneratedInstance) -> Optional[RecurringRule]:
        """The instance's originating rule, or None if it has been deleted."""
        return self._storage.get_rule(instance.rule_id)

    def clear_period(
        self,
        year: int,
        month: int,
        rule_id: Optional[UUID] = None,
    ) -> int:
        """
        Administrative: drop the processing markers of a period.

        Allows the period to be posted again. Generated instances are not
        touched.
        """
        cleared = self._storage.clear_period(year, month, rule_id)
        logger.warning(
            "period_cleared",
            year=year,
            month=month,
            rule_id=str(rule_id) if rule_id else None,
            markers_cleared=cleared,
        )
        self._audit(AuditEventBuilder.period_cleared(
            year=year,
            month=month,
            markers_cleared=cleared,
            rule_id=rule_id,
        ))
        return cleared
