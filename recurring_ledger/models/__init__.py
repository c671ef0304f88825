"""
Data Models Package

This package contains all Pydantic models used by the recurring ledger.
All data flowing through the engine must conform to these schemas.
"""

from recurring_ledger.models.recurring import (
    DeletionResult,
    Direction,
    FixedCount,
    FrequencyPolicy,
    GeneratedInstance,
    InstanceTombstone,
    MonthlyDuration,
    PostingOutcome,
    ProcessingMarker,
    ProcessResult,
    RecurringRule,
    RuleDraft,
    UntilCancelled,
    ValidationIssue,
    ValidationResult,
    marker_fingerprint,
)
from recurring_ledger.models.ledger import (
    DailyLedgerEntry,
    Posting,
    PostingKind,
)
from recurring_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Recurring models
    "DeletionResult",
    "Direction",
    "FixedCount",
    "FrequencyPolicy",
    "GeneratedInstance",
    "InstanceTombstone",
    "MonthlyDuration",
    "PostingOutcome",
    "ProcessingMarker",
    "ProcessResult",
    "RecurringRule",
    "RuleDraft",
    "UntilCancelled",
    "ValidationIssue",
    "ValidationResult",
    "marker_fingerprint",
    # Ledger models
    "DailyLedgerEntry",
    "Posting",
    "PostingKind",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
