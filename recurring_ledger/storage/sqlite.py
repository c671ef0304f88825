"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the durable backend because:
1. The processing marker needs a real insert-if-absent (PRIMARY KEY +
   INSERT OR IGNORE), not an in-memory check
2. Marker, instance and rule writes need one atomic transaction
3. No server to run for a personal ledger

Money is stored as TEXT ('1234.50') so Decimal values round-trip exactly.
There is deliberately NO foreign key from instances to rules: the
back-reference is a lookup key and cascading is the caller's decision.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

import structlog
from pydantic import TypeAdapter
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from recurring_ledger.config import StorageSettings, get_settings
from recurring_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from recurring_ledger.models.recurring import (
    Direction,
    FrequencyPolicy,
    GeneratedInstance,
    InstanceTombstone,
    ProcessingMarker,
    RecurringRule,
)
from recurring_ledger.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger(__name__)

_policy_adapter = TypeAdapter(FrequencyPolicy)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS recurring_rules (
        id            TEXT PRIMARY KEY,
        direction     TEXT NOT NULL CHECK(direction IN ('income','expense')),
        amount        TEXT NOT NULL,
        description   TEXT NOT NULL DEFAULT '',
        day_of_month  INTEGER NOT NULL CHECK(day_of_month BETWEEN 1 AND 31),
        policy_json   TEXT NOT NULL,
        start_date    TEXT NOT NULL,
        is_active     INTEGER NOT NULL DEFAULT 1,
        category      TEXT,
        created_at    TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS generated_instances (
        id            TEXT PRIMARY KEY,
        rule_id       TEXT NOT NULL,
        date          TEXT NOT NULL,
        amount        TEXT NOT NULL,
        direction     TEXT NOT NULL CHECK(direction IN ('income','expense')),
        description   TEXT NOT NULL DEFAULT '',
        created_at    TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_instances_rule ON generated_instances(rule_id);
    CREATE INDEX IF NOT EXISTS idx_instances_date ON generated_instances(date);

    CREATE TABLE IF NOT EXISTS processing_markers (
        rule_id       TEXT NOT NULL,
        year          INTEGER NOT NULL,
        month         INTEGER NOT NULL CHECK(month BETWEEN 1 AND 12),
        day           INTEGER NOT NULL,
        amount        TEXT NOT NULL,
        direction     TEXT NOT NULL,
        instance_id   TEXT NOT NULL,
        processed_at  TEXT NOT NULL,
        fingerprint   TEXT NOT NULL,
        PRIMARY KEY (rule_id, year, month)
    );

    CREATE TABLE IF NOT EXISTS instance_tombstones (
        instance_id   TEXT PRIMARY KEY,
        rule_id       TEXT NOT NULL,
        date          TEXT NOT NULL,
        deleted_at    TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS audit_events (
        event_id        TEXT PRIMARY KEY,
        timestamp       TEXT NOT NULL,
        event_type      TEXT NOT NULL,
        severity        TEXT NOT NULL,
        entity_type     TEXT NOT NULL DEFAULT '',
        entity_id       TEXT NOT NULL DEFAULT '',
        correlation_id  TEXT NOT NULL DEFAULT '',
        description     TEXT NOT NULL,
        details_json    TEXT NOT NULL DEFAULT '',
        error_message   TEXT NOT NULL DEFAULT ''
    );
    CREATE INDEX IF NOT EXISTS idx_audit_correlation ON audit_events(correlation_id);
"""


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    """Translate sqlite3 errors into the storage exception hierarchy."""
    try:
        yield
    except sqlite3.IntegrityError as e:
        raise DuplicateError(f"Failed to {action}: {e}") from e
    except sqlite3.Error as e:
        raise StorageError(f"Failed to {action}: {e}") from e


class SQLiteClient:
    """
    Low-level SQLite connection wrapper.

    Owns the single connection, the schema, and the transaction depth.
    Runs in autocommit mode; `transaction()` opens explicit
    BEGIN IMMEDIATE / COMMIT / ROLLBACK blocks.
    """

    def __init__(self, db_path: Optional[str] = None, connect_attempts: int = 3):
        self.db_path = db_path or get_settings().storage.sqlite_path
        self.connect_attempts = connect_attempts
        self._conn: Optional[sqlite3.Connection] = None
        self._depth = 0

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "SQLiteClient":
        return cls(db_path=settings.sqlite_path, connect_attempts=settings.connect_attempts)

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        if self.db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
        conn.executescript(SCHEMA)
        return conn

    def get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            # A locked or busy file is worth retrying
            retrying = Retrying(
                retry=retry_if_exception_type(sqlite3.OperationalError),
                stop=stop_after_attempt(self.connect_attempts),
                wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
                reraise=True,
            )
            try:
                self._conn = retrying(self._open)
            except sqlite3.Error as e:
                raise ConnectionError(f"Failed to open SQLite database {self.db_path}: {e}") from e
            logger.info("sqlite_connected", db_path=self.db_path)
        return self._conn

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        return self.get_connection().execute(sql, params)

    @contextmanager
    def transaction(self) -> Iterator["SQLiteClient"]:
        if self._depth > 0:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        conn = self.get_connection()
        with _storage_errors("begin transaction"):
            conn.execute("BEGIN IMMEDIATE")
        self._depth = 1
        try:
            yield self
        except BaseException:
            conn.execute("ROLLBACK")
            logger.warning("sqlite_transaction_rolled_back", db_path=self.db_path)
            raise
        else:
            with _storage_errors("commit transaction"):
                conn.execute("COMMIT")
        finally:
            self._depth = 0

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


class SQLiteLedgerStorage(LedgerStorageInterface):
    """
    SQLite implementation of ledger storage.

    One row per rule / instance / marker / tombstone. The policy is stored
    as the JSON of its tagged-union model.
    """

    def __init__(self, client: Optional[SQLiteClient] = None):
        self._client = client or SQLiteClient()

    @property
    def client(self) -> SQLiteClient:
        return self._client

    def transaction(self):
        return self._client.transaction()

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    def _rule_to_row(self, rule: RecurringRule) -> tuple:
        return (
            str(rule.id),
            rule.direction.value,
            str(rule.amount),
            rule.description,
            rule.day_of_month,
            rule.policy.model_dump_json(),
            rule.start_date.isoformat(),
            int(rule.is_active),
            rule.category,
            rule.created_at.isoformat(),
        )

    def _row_to_rule(self, row: sqlite3.Row) -> RecurringRule:
        return RecurringRule(
            id=UUID(row["id"]),
            direction=Direction(row["direction"]),
            amount=Decimal(row["amount"]),
            description=row["description"],
            day_of_month=row["day_of_month"],
            policy=_policy_adapter.validate_json(row["policy_json"]),
            start_date=date.fromisoformat(row["start_date"]),
            is_active=bool(row["is_active"]),
            category=row["category"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_instance(self, row: sqlite3.Row) -> GeneratedInstance:
        return GeneratedInstance(
            id=UUID(row["id"]),
            rule_id=UUID(row["rule_id"]),
            date=date.fromisoformat(row["date"]),
            amount=Decimal(row["amount"]),
            direction=Direction(row["direction"]),
            description=row["description"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_marker(self, row: sqlite3.Row) -> ProcessingMarker:
        return ProcessingMarker(
            rule_id=UUID(row["rule_id"]),
            year=row["year"],
            month=row["month"],
            day=row["day"],
            amount=Decimal(row["amount"]),
            direction=Direction(row["direction"]),
            instance_id=UUID(row["instance_id"]),
            processed_at=datetime.fromisoformat(row["processed_at"]),
            fingerprint=row["fingerprint"],
        )

    def _row_to_tombstone(self, row: sqlite3.Row) -> InstanceTombstone:
        return InstanceTombstone(
            instance_id=UUID(row["instance_id"]),
            rule_id=UUID(row["rule_id"]),
            date=date.fromisoformat(row["date"]),
            deleted_at=datetime.fromisoformat(row["deleted_at"]),
        )

    # =========================================================================
    # RULES
    # =========================================================================

    def save_rule(self, rule: RecurringRule) -> bool:
        with _storage_errors("save rule"):
            self._client.execute(
                """INSERT INTO recurring_rules
                   (id, direction, amount, description, day_of_month, policy_json,
                    start_date, is_active, category, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                self._rule_to_row(rule),
            )
        return True

    def get_rule(self, rule_id: UUID) -> Optional[RecurringRule]:
        with _storage_errors("get rule"):
            row = self._client.execute(
                "SELECT * FROM recurring_rules WHERE id = ?", (str(rule_id),)
            ).fetchone()
        return self._row_to_rule(row) if row else None

    def update_rule(self, rule: RecurringRule) -> bool:
        row = self._rule_to_row(rule)
        with _storage_errors("update rule"):
            cursor = self._client.execute(
                """UPDATE recurring_rules
                   SET direction = ?, amount = ?, description = ?, day_of_month = ?,
                       policy_json = ?, start_date = ?, is_active = ?, category = ?,
                       created_at = ?
                   WHERE id = ?""",
                row[1:] + (row[0],),
            )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Rule not found: {rule.id}")
        return True

    def delete_rule(self, rule_id: UUID) -> bool:
        with _storage_errors("delete rule"):
            cursor = self._client.execute(
                "DELETE FROM recurring_rules WHERE id = ?", (str(rule_id),)
            )
        return cursor.rowcount > 0

    def list_rules(self, active_only: bool = False) -> list[RecurringRule]:
        sql = "SELECT * FROM recurring_rules"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY created_at"
        with _storage_errors("list rules"):
            rows = self._client.execute(sql).fetchall()
        return [self._row_to_rule(r) for r in rows]

    # =========================================================================
    # GENERATED INSTANCES
    # =========================================================================

    def save_instance(self, instance: GeneratedInstance) -> bool:
        with _storage_errors("save instance"):
            self._client.execute(
                """INSERT INTO generated_instances
                   (id, rule_id, date, amount, direction, description, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    str(instance.id),
                    str(instance.rule_id),
                    instance.date.isoformat(),
                    str(instance.amount),
                    instance.direction.value,
                    instance.description,
                    instance.created_at.isoformat(),
                ),
            )
        return True

    def get_instance(self, instance_id: UUID) -> Optional[GeneratedInstance]:
        with _storage_errors("get instance"):
            row = self._client.execute(
                "SELECT * FROM generated_instances WHERE id = ?", (str(instance_id),)
            ).fetchone()
        return self._row_to_instance(row) if row else None

    def delete_instance(self, instance_id: UUID) -> bool:
        with _storage_errors("delete instance"):
            cursor = self._client.execute(
                "DELETE FROM generated_instances WHERE id = ?", (str(instance_id),)
            )
        return cursor.rowcount > 0

    def list_instances(
        self,
        rule_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[GeneratedInstance]:
        clauses = []
        params: list = []
        if rule_id is not None:
            clauses.append("rule_id = ?")
            params.append(str(rule_id))
        if date_from:
            clauses.append("date >= ?")
            params.append(date_from.isoformat())
        if date_to:
            clauses.append("date <= ?")
            params.append(date_to.isoformat())

        sql = "SELECT * FROM generated_instances"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY date, created_at"
        with _storage_errors("list instances"):
            rows = self._client.execute(sql, tuple(params)).fetchall()
        return [self._row_to_instance(r) for r in rows]

    def delete_instances_for_rule(self, rule_id: UUID) -> int:
        with _storage_errors("delete instances"):
            cursor = self._client.execute(
                "DELETE FROM generated_instances WHERE rule_id = ?", (str(rule_id),)
            )
        return cursor.rowcount

    # =========================================================================
    # PROCESSING MARKERS
    # =========================================================================

    def insert_marker_if_absent(self, marker: ProcessingMarker) -> bool:
        with _storage_errors("insert marker"):
            cursor = self._client.execute(
                """INSERT OR IGNORE INTO processing_markers
                   (rule_id, year, month, day, amount, direction,
                    instance_id, processed_at, fingerprint)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    str(marker.rule_id),
                    marker.year,
                    marker.month,
                    marker.day,
                    str(marker.amount),
                    marker.direction.value,
                    str(marker.instance_id),
                    marker.processed_at.isoformat(),
                    marker.fingerprint,
                ),
            )
        return cursor.rowcount == 1

    def get_marker(
        self,
        rule_id: UUID,
        year: int,
        month: int,
    ) -> Optional[ProcessingMarker]:
        with _storage_errors("get marker"):
            row = self._client.execute(
                """SELECT * FROM processing_markers
                   WHERE rule_id = ? AND year = ? AND month = ?""",
                (str(rule_id), year, month),
            ).fetchone()
        return self._row_to_marker(row) if row else None

    def _marker_filter(
        self,
        year: Optional[int],
        month: Optional[int],
        rule_id: Optional[UUID],
    ) -> tuple[str, tuple]:
        clauses = []
        params: list = []
        if year is not None:
            clauses.append("year = ?")
            params.append(year)
        if month is not None:
            clauses.append("month = ?")
            params.append(month)
        if rule_id is not None:
            clauses.append("rule_id = ?")
            params.append(str(rule_id))
        where = " WHERE " + " AND ".join(clauses) if clauses else ""
        return where, tuple(params)

    def list_markers(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
        rule_id: Optional[UUID] = None,
    ) -> list[ProcessingMarker]:
        where, params = self._marker_filter(year, month, rule_id)
        with _storage_errors("list markers"):
            rows = self._client.execute(
                "SELECT * FROM processing_markers" + where
                + " ORDER BY year, month, processed_at",
                params,
            ).fetchall()
        return [self._row_to_marker(r) for r in rows]

    def delete_marker(self, rule_id: UUID, year: int, month: int) -> bool:
        with _storage_errors("delete marker"):
            cursor = self._client.execute(
                """DELETE FROM processing_markers
                   WHERE rule_id = ? AND year = ? AND month = ?""",
                (str(rule_id), year, month),
            )
        return cursor.rowcount > 0

    def clear_period(
        self,
        year: int,
        month: int,
        rule_id: Optional[UUID] = None,
    ) -> int:
        where, params = self._marker_filter(year, month, rule_id)
        with _storage_errors("clear period"):
            cursor = self._client.execute(
                "DELETE FROM processing_markers" + where, params
            )
        return cursor.rowcount

    # =========================================================================
    # TOMBSTONES
    # =========================================================================

    def record_tombstone(self, tombstone: InstanceTombstone) -> bool:
        with _storage_errors("record tombstone"):
            self._client.execute(
                """INSERT OR REPLACE INTO instance_tombstones
                   (instance_id, rule_id, date, deleted_at)
                   VALUES (?, ?, ?, ?)""",
                (
                    str(tombstone.instance_id),
                    str(tombstone.rule_id),
                    tombstone.date.isoformat(),
                    tombstone.deleted_at.isoformat(),
                ),
            )
        return True

    def list_tombstones(self, rule_id: Optional[UUID] = None) -> list[InstanceTombstone]:
        sql = "SELECT * FROM instance_tombstones"
        params: tuple = ()
        if rule_id is not None:
            sql += " WHERE rule_id = ?"
            params = (str(rule_id),)
        with _storage_errors("list tombstones"):
            rows = self._client.execute(sql, params).fetchall()
        return [self._row_to_tombstone(r) for r in rows]


class SQLiteAuditStorage(AuditStorageInterface):
    """SQLite implementation of the append-only audit log."""

    def __init__(self, client: Optional[SQLiteClient] = None):
        self._client = client or SQLiteClient()

    def _row_to_event(self, row: sqlite3.Row) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row["event_id"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            event_type=AuditEventType(row["event_type"]),
            severity=AuditSeverity(row["severity"]),
            entity_type=row["entity_type"] or None,
            entity_id=UUID(row["entity_id"]) if row["entity_id"] else None,
            correlation_id=UUID(row["correlation_id"]) if row["correlation_id"] else None,
            description=row["description"],
            details=json.loads(row["details_json"]) if row["details_json"] else {},
            error_message=row["error_message"] or None,
        )

    def append_event(self, event: AuditEvent) -> bool:
        with _storage_errors("append audit event"):
            self._client.execute(
                """INSERT INTO audit_events
                   (event_id, timestamp, event_type, severity, entity_type, entity_id,
                    correlation_id, description, details_json, error_message)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                event.to_row(),
            )
        return True

    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        with _storage_errors("get audit events"):
            rows = self._client.execute(
                "SELECT * FROM audit_events WHERE correlation_id = ? ORDER BY timestamp, rowid",
                (str(correlation_id),),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        with _storage_errors("get audit events"):
            rows = self._client.execute(
                """SELECT * FROM audit_events
                   WHERE entity_type = ? AND entity_id = ? ORDER BY timestamp, rowid""",
                (entity_type, str(entity_id)),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        with _storage_errors("get audit events"):
            rows = self._client.execute(
                "SELECT * FROM audit_events ORDER BY timestamp DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]
