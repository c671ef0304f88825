"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Use in-memory storage for tests and short-lived sessions
2. Use SQLite (or a real database later) for durable state
3. Keep the posting engine decoupled from storage implementation

Two capabilities are load-bearing for the engine:
- `insert_marker_if_absent` is a durable insert-if-absent on the
  (rule_id, year, month) key. It is the concurrency control primitive.
- `transaction()` groups marker, instance and rule writes so that a
  failure rolls all of them back together.

GeneratedInstance.rule_id is a plain lookup key. Implementations MUST NOT
cascade rule deletion into instances on their own.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import date
from typing import Optional
from uuid import UUID

from recurring_ledger.models.audit import AuditEvent
from recurring_ledger.models.recurring import (
    GeneratedInstance,
    InstanceTombstone,
    ProcessingMarker,
    RecurringRule,
)


class LedgerStorageInterface(ABC):
    """
    Abstract interface for rules, generated instances and processing markers.
    """

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        """
        Group writes into one atomic unit.

        Everything written inside the block is committed on normal exit and
        rolled back if the block raises. Nested blocks join the outer one.
        """
        pass

    # =========================================================================
    # RULES
    # =========================================================================

    @abstractmethod
    def save_rule(self, rule: RecurringRule) -> bool:
        """
        Save a new rule.

        Raises:
            DuplicateError: If a rule with the same ID exists
        """
        pass

    @abstractmethod
    def get_rule(self, rule_id: UUID) -> Optional[RecurringRule]:
        """Return the rule, or None if it doesn't exist."""
        pass

    @abstractmethod
    def update_rule(self, rule: RecurringRule) -> bool:
        """
        Replace an existing rule.

        Raises:
            NotFoundError: If rule doesn't exist
        """
        pass

    @abstractmethod
    def delete_rule(self, rule_id: UUID) -> bool:
        """Delete a rule. Returns False if it didn't exist."""
        pass

    @abstractmethod
    def list_rules(self, active_only: bool = False) -> list[RecurringRule]:
        """List rules ordered by creation time."""
        pass

    # =========================================================================
    # GENERATED INSTANCES
    # =========================================================================

    @abstractmethod
    def save_instance(self, instance: GeneratedInstance) -> bool:
        """
        Save a generated instance.

        Raises:
            DuplicateError: If an instance with the same ID exists
        """
        pass

    @abstractmethod
    def get_instance(self, instance_id: UUID) -> Optional[GeneratedInstance]:
        pass

    @abstractmethod
    def delete_instance(self, instance_id: UUID) -> bool:
        """Delete one instance. Returns False if it didn't exist."""
        pass

    @abstractmethod
    def list_instances(
        self,
        rule_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[GeneratedInstance]:
        """
        List instances with optional filters, ordered by date.

        Args:
            rule_id: Only instances generated by this rule
            date_from: Instances on or after this date
            date_to: Instances on or before this date
        """
        pass

    @abstractmethod
    def delete_instances_for_rule(self, rule_id: UUID) -> int:
        """Delete every instance whose back-reference is rule_id. Returns count."""
        pass

    # =========================================================================
    # PROCESSING MARKERS
    # =========================================================================

    @abstractmethod
    def insert_marker_if_absent(self, marker: ProcessingMarker) -> bool:
        """
        Insert the marker unless one exists for its key.

        Returns:
            True if inserted, False if a marker already existed (the existing
            marker is left untouched)
        """
        pass

    @abstractmethod
    def get_marker(
        self,
        rule_id: UUID,
        year: int,
        month: int,
    ) -> Optional[ProcessingMarker]:
        pass

    @abstractmethod
    def list_markers(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
        rule_id: Optional[UUID] = None,
    ) -> list[ProcessingMarker]:
        pass

    @abstractmethod
    def delete_marker(self, rule_id: UUID, year: int, month: int) -> bool:
        """Administrative: remove a single marker."""
        pass

    @abstractmethod
    def clear_period(
        self,
        year: int,
        month: int,
        rule_id: Optional[UUID] = None,
    ) -> int:
        """Administrative: remove all markers of a period. Returns count."""
        pass

    # =========================================================================
    # TOMBSTONES
    # =========================================================================

    @abstractmethod
    def record_tombstone(self, tombstone: InstanceTombstone) -> bool:
        """Remember that an instance was deleted on purpose."""
        pass

    @abstractmethod
    def list_tombstones(self, rule_id: Optional[UUID] = None) -> list[InstanceTombstone]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events for a correlation ID, in chronological order."""
        pass

    @abstractmethod
    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """All events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """The most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
