"""
Marker / Instance Reconciliation

Mark-before-act leaves a narrow window: a crash after the marker insert
but before the instance write produces a marker with no instance. That is
a recoverable inconsistency, not data loss. This module finds it (and the
reverse case) and repairs it.

Detected issues:
- MARKER_WITHOUT_INSTANCE: marker's instance is gone and was not deleted
  on purpose (no tombstone)
- INSTANCE_WITHOUT_MARKER: generated instance whose period has no marker
- MARKER_FINGERPRINT_MISMATCH: marker value no longer matches its hash

Only orphan markers are repaired automatically (cleared). Everything else
is reported for an operator to resolve with `repair`.
"""

from enum import Enum
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from recurring_ledger.audit import AuditLogger
from recurring_ledger.models.audit import AuditEventBuilder
from recurring_ledger.models.recurring import GeneratedInstance, ProcessingMarker
from recurring_ledger.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)


class IssueKind(str, Enum):
    MARKER_WITHOUT_INSTANCE = "marker_without_instance"
    INSTANCE_WITHOUT_MARKER = "instance_without_marker"
    MARKER_FINGERPRINT_MISMATCH = "marker_fingerprint_mismatch"


class RepairStrategy(str, Enum):
    """
    CLEAR_MARKER:        delete the marker so the period can post again
    SYNTHESIZE_INSTANCE: recreate the missing instance from the marker
    RESTORE_MARKER:      rewrite the marker from the existing instance
    """
    CLEAR_MARKER = "clear_marker"
    SYNTHESIZE_INSTANCE = "synthesize_instance"
    RESTORE_MARKER = "restore_marker"


_ALLOWED = {
    IssueKind.MARKER_WITHOUT_INSTANCE: {
        RepairStrategy.CLEAR_MARKER,
        RepairStrategy.SYNTHESIZE_INSTANCE,
    },
    IssueKind.INSTANCE_WITHOUT_MARKER: {RepairStrategy.RESTORE_MARKER},
    IssueKind.MARKER_FINGERPRINT_MISMATCH: {
        RepairStrategy.CLEAR_MARKER,
        RepairStrategy.RESTORE_MARKER,
    },
}


class ConsistencyIssue(BaseModel):
    """One inconsistency between markers and instances."""

    kind: IssueKind
    rule_id: UUID
    year: int
    month: int
    marker: Optional[ProcessingMarker] = None
    instance: Optional[GeneratedInstance] = None
    description: str = ""

    @property
    def allowed_strategies(self) -> set[RepairStrategy]:
        return _ALLOWED[self.kind]


class ReconciliationReport(BaseModel):
    """Outcome of an auto-repair pass."""

    issues_found: list[ConsistencyIssue] = Field(default_factory=list)
    repaired: list[ConsistencyIssue] = Field(default_factory=list)
    unresolved: list[ConsistencyIssue] = Field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.unresolved


class Reconciler:
    """Detects and repairs marker/instance inconsistencies."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger

    def _audit(self, event) -> None:
        if self._audit_logger:
            self._audit_logger.log(event)

    # =========================================================================
    # DETECTION
    # =========================================================================

    def _instances_for(
        self,
        year: Optional[int],
        month: Optional[int],
    ) -> list[GeneratedInstance]:
        instances = self._storage.list_instances()
        if year is not None:
            instances = [i for i in instances if i.date.year == year]
        if month is not None:
            instances = [i for i in instances if i.date.month == month]
        return instances

    def find_issues(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> list[ConsistencyIssue]:
        """Scan markers and instances, optionally limited to one year/month."""
        markers = self._storage.list_markers(year=year, month=month)
        instances = self._instances_for(year, month)
        instances_by_id = {i.id: i for i in instances}
        markers_by_key = {m.key: m for m in markers}
        tombstoned = {t.instance_id for t in self._storage.list_tombstones()}

        issues = []
        for marker in markers:
            if not marker.verify():
                issues.append(ConsistencyIssue(
                    kind=IssueKind.MARKER_FINGERPRINT_MISMATCH,
                    rule_id=marker.rule_id,
                    year=marker.year,
                    month=marker.month,
                    marker=marker,
                    instance=instances_by_id.get(marker.instance_id)
                    or self._storage.get_instance(marker.instance_id),
                    description="Marker fingerprint does not match its recorded posting",
                ))
                continue

            if marker.instance_id in instances_by_id or marker.instance_id in tombstoned:
                continue
            if self._storage.get_instance(marker.instance_id) is not None:
                # Instance moved to another period by an edit; still present
                continue
            issues.append(ConsistencyIssue(
                kind=IssueKind.MARKER_WITHOUT_INSTANCE,
                rule_id=marker.rule_id,
                year=marker.year,
                month=marker.month,
                marker=marker,
                description=(
                    f"Marker for {marker.year}-{marker.month:02d} has no generated instance"
                ),
            ))

        for instance in instances:
            period_year, period_month = instance.period
            if (instance.rule_id, period_year, period_month) in markers_by_key:
                continue
            if self._storage.get_marker(instance.rule_id, period_year, period_month) is not None:
                continue
            issues.append(ConsistencyIssue(
                kind=IssueKind.INSTANCE_WITHOUT_MARKER,
                rule_id=instance.rule_id,
                year=period_year,
                month=period_month,
                instance=instance,
                description=(
                    f"Instance on {instance.date.isoformat()} has no processing marker"
                ),
            ))

        for issue in issues:
            logger.warning(
                "consistency_issue_detected",
                kind=issue.kind.value,
                rule_id=str(issue.rule_id),
                year=issue.year,
                month=issue.month,
            )
            self._audit(AuditEventBuilder.consistency_issue(
                kind=issue.kind.value,
                rule_id=issue.rule_id,
                year=issue.year,
                month=issue.month,
                description=issue.description,
            ))
        return issues

    # =========================================================================
    # REPAIR
    # =========================================================================

    def _synthesize_instance(self, marker: ProcessingMarker) -> GeneratedInstance:
        rule = self._storage.get_rule(marker.rule_id)
        return GeneratedInstance(
            id=marker.instance_id,
            rule_id=marker.rule_id,
            date=marker.posting_date,
            amount=marker.amount,
            direction=marker.direction,
            description=rule.description if rule else "",
        )

    @staticmethod
    def _marker_from_instance(instance: GeneratedInstance) -> ProcessingMarker:
        return ProcessingMarker(
            rule_id=instance.rule_id,
            year=instance.date.year,
            month=instance.date.month,
            day=instance.date.day,
            amount=instance.amount,
            direction=instance.direction,
            instance_id=instance.id,
        )

    def repair(self, issue: ConsistencyIssue, strategy: RepairStrategy) -> bool:
        """
        Apply one repair.

        Raises:
            ValueError: If the strategy does not apply to the issue kind, or
                RESTORE_MARKER is requested without an instance to restore from
        """
        if strategy not in issue.allowed_strategies:
            raise ValueError(
                f"Strategy {strategy.value} cannot repair {issue.kind.value}"
            )

        with self._storage.transaction():
            if strategy == RepairStrategy.CLEAR_MARKER:
                repaired = self._storage.delete_marker(issue.rule_id, issue.year, issue.month)
            elif strategy == RepairStrategy.SYNTHESIZE_INSTANCE:
                repaired = self._storage.save_instance(self._synthesize_instance(issue.marker))
            else:
                if issue.instance is None:
                    raise ValueError("No instance to restore the marker from")
                self._storage.delete_marker(issue.rule_id, issue.year, issue.month)
                repaired = self._storage.insert_marker_if_absent(
                    self._marker_from_instance(issue.instance)
                )

        logger.info(
            "consistency_repaired",
            kind=issue.kind.value,
            strategy=strategy.value,
            rule_id=str(issue.rule_id),
            year=issue.year,
            month=issue.month,
            repaired=repaired,
        )
        self._audit(AuditEventBuilder.consistency_repaired(
            kind=issue.kind.value,
            strategy=strategy.value,
            rule_id=issue.rule_id,
            year=issue.year,
            month=issue.month,
        ))
        return repaired

    def auto_repair(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> ReconciliationReport:
        """
        Clear orphan markers; report everything else as unresolved.

        A cleared orphan marker lets the period post again, which is the
        outcome the crashed posting would have had.
        """
        report = ReconciliationReport(issues_found=self.find_issues(year, month))
        for issue in report.issues_found:
            if issue.kind == IssueKind.MARKER_WITHOUT_INSTANCE:
                self.repair(issue, RepairStrategy.CLEAR_MARKER)
                report.repaired.append(issue)
            else:
                logger.warning(
                    "consistency_issue_needs_manual_resolution",
                    kind=issue.kind.value,
                    rule_id=str(issue.rule_id),
                    year=issue.year,
                    month=issue.month,
                )
                report.unresolved.append(issue)

        logger.info(
            "reconciliation_completed",
            found=len(report.issues_found),
            repaired=len(report.repaired),
            unresolved=len(report.unresolved),
        )
        return report
