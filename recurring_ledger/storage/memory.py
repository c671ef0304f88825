"""
In-Memory Storage Implementation

Plain dicts keyed the same way the durable backend keys its tables.
Transactions snapshot the dicts on entry and restore them if the block
raises, which gives the engine the same all-or-nothing behaviour it gets
from SQLite.

TRADEOFFS:
- Not durable (process lifetime only)
- Single process; no cross-process marker guarantees
"""

import copy
from contextlib import contextmanager
from datetime import date
from typing import Iterator, Optional
from uuid import UUID

import structlog

from recurring_ledger.models.audit import AuditEvent
from recurring_ledger.models.recurring import (
    GeneratedInstance,
    InstanceTombstone,
    ProcessingMarker,
    RecurringRule,
)
from recurring_ledger.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
)


logger = structlog.get_logger(__name__)

MarkerKey = tuple[UUID, int, int]


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Dict-backed ledger storage with snapshot transactions."""

    def __init__(self):
        self._rules: dict[UUID, RecurringRule] = {}
        self._instances: dict[UUID, GeneratedInstance] = {}
        self._markers: dict[MarkerKey, ProcessingMarker] = {}
        self._tombstones: dict[UUID, InstanceTombstone] = {}
        self._depth = 0

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def _snapshot(self) -> tuple:
        # Models are immutable or replaced wholesale, so shallow dict copies suffice
        return (
            copy.copy(self._rules),
            copy.copy(self._instances),
            copy.copy(self._markers),
            copy.copy(self._tombstones),
        )

    def _restore(self, snapshot: tuple) -> None:
        self._rules, self._instances, self._markers, self._tombstones = snapshot

    @contextmanager
    def transaction(self) -> Iterator["InMemoryLedgerStorage"]:
        if self._depth > 0:
            # Nested block joins the outer transaction
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        snapshot = self._snapshot()
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._restore(snapshot)
            logger.warning("memory_transaction_rolled_back")
            raise
        finally:
            self._depth = 0

    # =========================================================================
    # RULES
    # =========================================================================

    def save_rule(self, rule: RecurringRule) -> bool:
        if rule.id in self._rules:
            raise DuplicateError(f"Rule already exists: {rule.id}")
        self._rules[rule.id] = rule
        return True

    def get_rule(self, rule_id: UUID) -> Optional[RecurringRule]:
        return self._rules.get(rule_id)

    def update_rule(self, rule: RecurringRule) -> bool:
        if rule.id not in self._rules:
            raise NotFoundError(f"Rule not found: {rule.id}")
        self._rules[rule.id] = rule
        return True

    def delete_rule(self, rule_id: UUID) -> bool:
        return self._rules.pop(rule_id, None) is not None

    def list_rules(self, active_only: bool = False) -> list[RecurringRule]:
        rules = sorted(self._rules.values(), key=lambda r: r.created_at)
        if active_only:
            rules = [r for r in rules if r.is_active]
        return rules

    # =========================================================================
    # GENERATED INSTANCES
    # =========================================================================

    def save_instance(self, instance: GeneratedInstance) -> bool:
        if instance.id in self._instances:
            raise DuplicateError(f"Instance already exists: {instance.id}")
        self._instances[instance.id] = instance
        return True

    def get_instance(self, instance_id: UUID) -> Optional[GeneratedInstance]:
        return self._instances.get(instance_id)

    def delete_instance(self, instance_id: UUID) -> bool:
        return self._instances.pop(instance_id, None) is not None

    def list_instances(
        self,
        rule_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[GeneratedInstance]:
        result = []
        for instance in self._instances.values():
            if rule_id is not None and instance.rule_id != rule_id:
                continue
            if date_from and instance.date < date_from:
                continue
            if date_to and instance.date > date_to:
                continue
            result.append(instance)
        return sorted(result, key=lambda i: (i.date, i.created_at))

    def delete_instances_for_rule(self, rule_id: UUID) -> int:
        doomed = [i.id for i in self._instances.values() if i.rule_id == rule_id]
        for instance_id in doomed:
            del self._instances[instance_id]
        return len(doomed)

    # =========================================================================
    # PROCESSING MARKERS
    # =========================================================================

    def insert_marker_if_absent(self, marker: ProcessingMarker) -> bool:
        if marker.key in self._markers:
            return False
        self._markers[marker.key] = marker
        return True

    def get_marker(
        self,
        rule_id: UUID,
        year: int,
        month: int,
    ) -> Optional[ProcessingMarker]:
        return self._markers.get((rule_id, year, month))

    def list_markers(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
        rule_id: Optional[UUID] = None,
    ) -> list[ProcessingMarker]:
        result = [
            m for m in self._markers.values()
            if (year is None or m.year == year)
            and (month is None or m.month == month)
            and (rule_id is None or m.rule_id == rule_id)
        ]
        return sorted(result, key=lambda m: (m.year, m.month, m.processed_at))

    def delete_marker(self, rule_id: UUID, year: int, month: int) -> bool:
        return self._markers.pop((rule_id, year, month), None) is not None

    def clear_period(
        self,
        year: int,
        month: int,
        rule_id: Optional[UUID] = None,
    ) -> int:
        doomed = [m.key for m in self.list_markers(year=year, month=month, rule_id=rule_id)]
        for key in doomed:
            del self._markers[key]
        return len(doomed)

    # =========================================================================
    # TOMBSTONES
    # =========================================================================

    def record_tombstone(self, tombstone: InstanceTombstone) -> bool:
        self._tombstones[tombstone.instance_id] = tombstone
        return True

    def list_tombstones(self, rule_id: Optional[UUID] = None) -> list[InstanceTombstone]:
        return [
            t for t in self._tombstones.values()
            if rule_id is None or t.rule_id == rule_id
        ]


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._events[-limit:])) if limit > 0 else []
