"""
Audit Models for the Recurring Ledger

Every posting, skip, deletion and repair is recorded as an audit event.
This provides:
1. Traceability of every generated ledger entry back to its rule
2. Visibility of capped arithmetic and consistency problems
3. The operator trail required for manual reconciliation

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Rule lifecycle
    RULE_CREATED = "rule_created"
    RULE_UPDATED = "rule_updated"
    RULE_DEACTIVATED = "rule_deactivated"
    RULE_DELETED = "rule_deleted"

    # Posting
    POSTING_CREATED = "posting_created"
    POSTING_SKIPPED = "posting_skipped"
    POSTING_ROLLED_BACK = "posting_rolled_back"

    # Instances and markers
    INSTANCE_DELETED = "instance_deleted"
    PERIOD_CLEARED = "period_cleared"

    # Reconciliation
    CONSISTENCY_ISSUE_DETECTED = "consistency_issue_detected"
    CONSISTENCY_REPAIRED = "consistency_repaired"

    # Arithmetic
    ARITHMETIC_OVERFLOW_CAPPED = "arithmetic_overflow_capped"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'rule', 'instance', 'marker')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one processing run)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_row(self) -> tuple:
        """
        Convert to a row for tabular storage.

        Columns in order:
        (event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message)
        """
        return (
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.posting_created(instance, correlation_id)
        event = AuditEventBuilder.rule_deleted(rule_id, cascade=True, instances_deleted=5)
    """

    @staticmethod
    def rule_created(
        rule_id: UUID,
        direction: str,
        amount: str,
        day_of_month: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_CREATED,
            entity_type="rule",
            entity_id=rule_id,
            description=f"Recurring {direction} of {amount} on day {day_of_month} created",
            details={
                "direction": direction,
                "amount": amount,
                "day_of_month": day_of_month,
            },
        )

    @staticmethod
    def rule_updated(
        rule_id: UUID,
        changed_fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_UPDATED,
            entity_type="rule",
            entity_id=rule_id,
            description=f"Rule updated: {', '.join(changed_fields) or 'no changes'}",
            details={"changed_fields": changed_fields},
        )

    @staticmethod
    def rule_deactivated(
        rule_id: UUID,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_DEACTIVATED,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Rule deactivated: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def rule_deleted(
        rule_id: UUID,
        cascade: bool,
        instances_deleted: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_DELETED,
            entity_type="rule",
            entity_id=rule_id,
            description=(
                f"Rule deleted with {instances_deleted} generated instances"
                if cascade
                else "Rule deleted, generated instances kept"
            ),
            details={
                "cascade": cascade,
                "instances_deleted": instances_deleted,
            },
        )

    @staticmethod
    def posting_created(
        instance_id: UUID,
        rule_id: UUID,
        posting_date: str,
        amount: str,
        direction: str,
        counter_consumed: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.POSTING_CREATED,
            entity_type="instance",
            entity_id=instance_id,
            correlation_id=correlation_id,
            description=f"Posted {direction} {amount} on {posting_date}",
            details={
                "rule_id": str(rule_id),
                "date": posting_date,
                "amount": amount,
                "direction": direction,
                "counter_consumed": counter_consumed,
            },
        )

    @staticmethod
    def posting_skipped(
        rule_id: UUID,
        year: int,
        month: int,
        outcome: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.POSTING_SKIPPED,
            severity=AuditSeverity.DEBUG,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"No posting for {year}-{month:02d}: {outcome}",
            details={
                "year": year,
                "month": month,
                "outcome": outcome,
            },
        )

    @staticmethod
    def posting_rolled_back(
        rule_id: UUID,
        year: int,
        month: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.POSTING_ROLLED_BACK,
            severity=AuditSeverity.ERROR,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Posting for {year}-{month:02d} failed and was rolled back",
            details={"year": year, "month": month},
            error_message=error_message,
        )

    @staticmethod
    def instance_deleted(
        instance_id: UUID,
        rule_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSTANCE_DELETED,
            entity_type="instance",
            entity_id=instance_id,
            description="Generated instance deleted",
            details={"rule_id": str(rule_id)},
        )

    @staticmethod
    def period_cleared(
        year: int,
        month: int,
        markers_cleared: int,
        rule_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERIOD_CLEARED,
            severity=AuditSeverity.WARNING,
            entity_type="marker",
            entity_id=rule_id,
            description=f"Cleared {markers_cleared} processing markers for {year}-{month:02d}",
            details={
                "year": year,
                "month": month,
                "markers_cleared": markers_cleared,
            },
        )

    @staticmethod
    def consistency_issue(
        kind: str,
        rule_id: UUID,
        year: int,
        month: int,
        description: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONSISTENCY_ISSUE_DETECTED,
            severity=AuditSeverity.WARNING,
            entity_type="marker",
            entity_id=rule_id,
            description=description,
            details={"kind": kind, "year": year, "month": month},
        )

    @staticmethod
    def consistency_repaired(
        kind: str,
        strategy: str,
        rule_id: UUID,
        year: int,
        month: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONSISTENCY_REPAIRED,
            entity_type="marker",
            entity_id=rule_id,
            description=f"Repaired {kind} for {year}-{month:02d} via {strategy}",
            details={
                "kind": kind,
                "strategy": strategy,
                "year": year,
                "month": month,
            },
        )

    @staticmethod
    def overflow_capped(
        operation: str,
        raw_cents: int,
        capped_cents: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ARITHMETIC_OVERFLOW_CAPPED,
            severity=AuditSeverity.WARNING,
            description=f"Currency {operation} exceeded the representable range and was capped",
            details={
                "operation": operation,
                "raw_cents": raw_cents,
                "capped_cents": capped_cents,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
