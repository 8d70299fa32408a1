"""
PostgreSQL Storage Implementation

DESIGN DECISION: PostgreSQL is the production backend because the engine
relies on two database guarantees:
1. A UNIQUE(owner, context, field_key) constraint, which makes default
   seeding idempotent under concurrent first visits
2. Transactions, which make the active-period switch all-or-nothing

TRADEOFFS:
- psycopg2 is synchronous; calls block the event loop for their duration
  (acceptable for request-scoped, per-owner traffic)
- Writes are never retried. Only opening the pool is retried, since
  that has no side effects.
"""

import json
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterator, Optional
from uuid import UUID

import psycopg2
import structlog
from psycopg2 import errors, extras, pool
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledgerforms.config import DatabaseSettings, get_settings
from ledgerforms.models.audit import AuditEvent, AuditEventType, AuditSeverity
from ledgerforms.models.budget import BudgetPeriod, PeriodType
from ledgerforms.models.field import FieldDefinition, FieldKind, RecordContext
from ledgerforms.models.record import Record
from ledgerforms.services.storage.interface import (
    AuditStorageInterface,
    BudgetPeriodStorageInterface,
    ConflictError,
    ConnectionError,
    FieldStorageInterface,
    NotFoundError,
    RecordStorageInterface,
    StorageError,
)

logger = structlog.get_logger(__name__)


SCHEMA_SQL = """
-- Field definitions: one catalog per (owner, context)
CREATE TABLE IF NOT EXISTS form_fields (
    id              SERIAL PRIMARY KEY,
    owner           VARCHAR(100) NOT NULL,
    context         VARCHAR(10) NOT NULL CHECK (context IN ('expense', 'income')),
    field_key       VARCHAR(200) NOT NULL,
    label           VARCHAR(200) NOT NULL,
    kind            VARCHAR(10) NOT NULL CHECK (kind IN ('text', 'number', 'select')),
    is_core         BOOLEAN NOT NULL DEFAULT FALSE,
    is_enabled      BOOLEAN NOT NULL DEFAULT TRUE,
    ordering        INT NOT NULL DEFAULT 0,
    created_at      TIMESTAMP NOT NULL DEFAULT NOW(),
    UNIQUE(owner, context, field_key)
);

-- Records: typed core columns plus the attribute bag
CREATE TABLE IF NOT EXISTS records (
    id              UUID PRIMARY KEY,
    owner           VARCHAR(100) NOT NULL,
    context         VARCHAR(10) NOT NULL CHECK (context IN ('expense', 'income')),
    amount          NUMERIC(14,2) NOT NULL CHECK (amount > 0),
    description     TEXT NOT NULL DEFAULT '',
    category        VARCHAR(100),
    occurred_on     DATE NOT NULL DEFAULT CURRENT_DATE,
    attributes      JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at      TIMESTAMP NOT NULL DEFAULT NOW(),
    updated_at      TIMESTAMP NOT NULL DEFAULT NOW()
);

-- Budget periods: exactly one active per owner
CREATE TABLE IF NOT EXISTS budget_periods (
    id              UUID PRIMARY KEY,
    owner           VARCHAR(100) NOT NULL,
    name            VARCHAR(100) NOT NULL,
    period_type     VARCHAR(10) NOT NULL
                    CHECK (period_type IN ('daily', 'weekly', 'monthly', 'yearly', 'custom')),
    start_date      DATE,
    end_date        DATE,
    is_active       BOOLEAN NOT NULL DEFAULT FALSE,
    created_at      TIMESTAMP NOT NULL DEFAULT NOW()
);
CREATE UNIQUE INDEX IF NOT EXISTS uq_budget_periods_owner_name
    ON budget_periods(owner, LOWER(name));
CREATE UNIQUE INDEX IF NOT EXISTS uq_budget_periods_one_active
    ON budget_periods(owner) WHERE is_active;

-- Audit log: append-only
CREATE TABLE IF NOT EXISTS audit_log (
    event_id        UUID PRIMARY KEY,
    timestamp       TIMESTAMP NOT NULL,
    event_type      VARCHAR(50) NOT NULL,
    severity        VARCHAR(10) NOT NULL,
    owner           VARCHAR(100),
    entity_type     VARCHAR(20),
    entity_id       VARCHAR(100),
    correlation_id  UUID,
    description     VARCHAR(500) NOT NULL,
    details_json    JSONB NOT NULL DEFAULT '{}'::jsonb,
    error_message   TEXT,
    is_user_action  BOOLEAN NOT NULL DEFAULT FALSE
);

CREATE INDEX IF NOT EXISTS idx_form_fields_scope ON form_fields(owner, context);
CREATE INDEX IF NOT EXISTS idx_records_scope_date ON records(owner, context, occurred_on);
CREATE INDEX IF NOT EXISTS idx_audit_owner ON audit_log(owner, timestamp);
"""


# =============================================================================
# ROW CONVERSION
# =============================================================================

def row_to_field(row: dict) -> FieldDefinition:
    """Convert a form_fields row to a FieldDefinition."""
    return FieldDefinition(
        id=row["id"],
        owner=row["owner"],
        context=RecordContext(row["context"]),
        key=row["field_key"],
        label=row["label"],
        kind=FieldKind(row["kind"]),
        is_core=row["is_core"],
        is_enabled=row["is_enabled"],
        order=row["ordering"],
        created_at=row["created_at"],
    )


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Not JSON serializable: {type(value).__name__}")


def attributes_to_json(attributes: dict[str, Any]) -> extras.Json:
    """Wrap the attribute bag for a JSONB column."""
    return extras.Json(attributes, dumps=lambda obj: json.dumps(obj, default=_json_default))


def row_to_record(row: dict) -> Record:
    """Convert a records row to a Record."""
    attributes = row.get("attributes") or {}
    if isinstance(attributes, str):
        attributes = json.loads(attributes)
    return Record(
        id=UUID(str(row["id"])),
        owner=row["owner"],
        context=RecordContext(row["context"]),
        amount=Decimal(str(row["amount"])),
        description=row["description"] or "",
        category=row["category"],
        occurred_on=row["occurred_on"],
        attributes=attributes,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def row_to_period(row: dict) -> BudgetPeriod:
    """Convert a budget_periods row to a BudgetPeriod."""
    return BudgetPeriod(
        id=UUID(str(row["id"])),
        owner=row["owner"],
        name=row["name"],
        period_type=PeriodType(row["period_type"]),
        start_date=row["start_date"],
        end_date=row["end_date"],
        is_active=row["is_active"],
        created_at=row["created_at"],
    )


def row_to_event(row: dict) -> AuditEvent:
    """Convert an audit_log row to an AuditEvent."""
    details = row.get("details_json") or {}
    if isinstance(details, str):
        details = json.loads(details)
    return AuditEvent(
        event_id=UUID(str(row["event_id"])),
        timestamp=row["timestamp"],
        event_type=AuditEventType(row["event_type"]),
        severity=AuditSeverity(row["severity"]),
        owner=row["owner"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        correlation_id=UUID(str(row["correlation_id"])) if row["correlation_id"] else None,
        description=row["description"],
        details=details,
        error_message=row["error_message"],
        is_user_action=row["is_user_action"],
    )


# =============================================================================
# CONNECTION MANAGEMENT
# =============================================================================

class PostgresClient:
    """
    Connection pool wrapper.

    Handles pool creation (with retry) and per-transaction connection
    checkout. Driver errors leave this class as StorageError subclasses.
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self._settings = settings or get_settings().database
        self._pool: Optional[pool.SimpleConnectionPool] = None

    @retry(
        retry=retry_if_exception_type(psycopg2.OperationalError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _open_pool(self) -> pool.SimpleConnectionPool:
        return pool.SimpleConnectionPool(
            self._settings.min_connections,
            self._settings.max_connections,
            self._settings.dsn,
            connect_timeout=self._settings.connect_timeout_seconds,
        )

    def connect(self) -> pool.SimpleConnectionPool:
        """Open the pool if it is not open yet."""
        if self._pool is None:
            try:
                self._pool = self._open_pool()
            except psycopg2.OperationalError as e:
                logger.error("database_connect_failed", error=str(e))
                raise ConnectionError(f"Failed to connect to PostgreSQL: {e}")
            logger.info("database_pool_opened", max_connections=self._settings.max_connections)
        return self._pool

    def close(self) -> None:
        """Close all connections in the pool."""
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("database_pool_closed")

    @contextmanager
    def transaction(self) -> Iterator[extras.RealDictCursor]:
        """
        Yield a cursor inside one transaction.

        Commits on success, rolls back on any error. A unique violation
        becomes ConflictError; other driver errors become StorageError.
        """
        conn = self.connect().getconn()
        try:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                yield cur
            conn.commit()
        except errors.UniqueViolation as e:
            conn.rollback()
            raise ConflictError(f"Uniqueness violation: {e}")
        except psycopg2.Error as e:
            conn.rollback()
            logger.error("database_transaction_failed", error=str(e))
            raise StorageError(f"Database error: {e}")
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def create_tables(self) -> None:
        """
        Execute the schema SQL to create all tables.
        Safe to call multiple times (uses IF NOT EXISTS).
        """
        with self.transaction() as cur:
            cur.execute(SCHEMA_SQL)
        logger.info("database_schema_initialized")


# =============================================================================
# STORAGE IMPLEMENTATIONS
# =============================================================================

class PostgresFieldStorage(FieldStorageInterface):
    """Field definitions in the form_fields table."""

    def __init__(self, client: PostgresClient):
        self._client = client

    async def count_fields(self, owner: str, context: RecordContext) -> int:
        with self._client.transaction() as cur:
            cur.execute(
                "SELECT COUNT(*) AS n FROM form_fields WHERE owner = %s AND context = %s",
                (owner, context.value),
            )
            return cur.fetchone()["n"]

    async def insert_fields(
        self,
        fields: list[FieldDefinition],
    ) -> list[FieldDefinition]:
        sql = """
            INSERT INTO form_fields
                (owner, context, field_key, label, kind, is_core, is_enabled, ordering, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
        """
        inserted = []
        with self._client.transaction() as cur:
            for field in fields:
                cur.execute(sql, (
                    field.owner, field.context.value, field.key, field.label,
                    field.kind.value, field.is_core, field.is_enabled,
                    field.order, field.created_at,
                ))
                inserted.append(row_to_field(cur.fetchone()))
        return inserted

    async def get_field(
        self,
        owner: str,
        field_id: int,
    ) -> Optional[FieldDefinition]:
        with self._client.transaction() as cur:
            cur.execute(
                "SELECT * FROM form_fields WHERE id = %s AND owner = %s",
                (field_id, owner),
            )
            row = cur.fetchone()
        return row_to_field(row) if row else None

    async def list_fields(
        self,
        owner: str,
        context: RecordContext,
        include_disabled: bool = False,
    ) -> list[FieldDefinition]:
        sql = "SELECT * FROM form_fields WHERE owner = %s AND context = %s"
        if not include_disabled:
            sql += " AND is_enabled = TRUE"
        sql += " ORDER BY ordering ASC, id ASC"
        with self._client.transaction() as cur:
            cur.execute(sql, (owner, context.value))
            return [row_to_field(r) for r in cur.fetchall()]

    async def max_order(self, owner: str, context: RecordContext) -> Optional[int]:
        with self._client.transaction() as cur:
            cur.execute(
                "SELECT MAX(ordering) AS max_val FROM form_fields WHERE owner = %s AND context = %s",
                (owner, context.value),
            )
            return cur.fetchone()["max_val"]

    async def set_field_orders(
        self,
        owner: str,
        context: RecordContext,
        ranks: dict[int, int],
    ) -> int:
        updated = 0
        with self._client.transaction() as cur:
            for field_id, rank in ranks.items():
                cur.execute(
                    "UPDATE form_fields SET ordering = %s "
                    "WHERE id = %s AND owner = %s AND context = %s",
                    (rank, field_id, owner, context.value),
                )
                updated += cur.rowcount
        return updated

    async def update_field(self, field: FieldDefinition) -> FieldDefinition:
        with self._client.transaction() as cur:
            cur.execute(
                "UPDATE form_fields SET label = %s, kind = %s, is_enabled = %s "
                "WHERE id = %s AND owner = %s RETURNING *",
                (field.label, field.kind.value, field.is_enabled, field.id, field.owner),
            )
            row = cur.fetchone()
        if row is None:
            raise NotFoundError(f"Field not found: {field.id}")
        return row_to_field(row)

    async def delete_field(self, owner: str, field_id: int) -> bool:
        with self._client.transaction() as cur:
            cur.execute(
                "DELETE FROM form_fields WHERE id = %s AND owner = %s",
                (field_id, owner),
            )
            return cur.rowcount > 0


class PostgresRecordStorage(RecordStorageInterface):
    """Expenses and incomes in the records table."""

    def __init__(self, client: PostgresClient):
        self._client = client

    async def save_record(self, record: Record) -> Record:
        sql = """
            INSERT INTO records
                (id, owner, context, amount, description, category,
                 occurred_on, attributes, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
        """
        with self._client.transaction() as cur:
            cur.execute(sql, (
                str(record.id), record.owner, record.context.value,
                record.amount, record.description, record.category,
                record.occurred_on, attributes_to_json(record.attributes),
                record.created_at, record.updated_at,
            ))
            return row_to_record(cur.fetchone())

    async def get_record(
        self,
        owner: str,
        context: RecordContext,
        record_id: UUID,
    ) -> Optional[Record]:
        with self._client.transaction() as cur:
            cur.execute(
                "SELECT * FROM records WHERE id = %s AND owner = %s AND context = %s",
                (str(record_id), owner, context.value),
            )
            row = cur.fetchone()
        return row_to_record(row) if row else None

    async def update_record(self, record: Record) -> Record:
        sql = """
            UPDATE records
            SET amount = %s, description = %s, category = %s,
                occurred_on = %s, attributes = %s, updated_at = NOW()
            WHERE id = %s AND owner = %s AND context = %s
            RETURNING *
        """
        with self._client.transaction() as cur:
            cur.execute(sql, (
                record.amount, record.description, record.category,
                record.occurred_on, attributes_to_json(record.attributes),
                str(record.id), record.owner, record.context.value,
            ))
            row = cur.fetchone()
        if row is None:
            raise NotFoundError(f"Record not found: {record.id}")
        return row_to_record(row)

    async def delete_record(
        self,
        owner: str,
        context: RecordContext,
        record_id: UUID,
    ) -> bool:
        with self._client.transaction() as cur:
            cur.execute(
                "DELETE FROM records WHERE id = %s AND owner = %s AND context = %s",
                (str(record_id), owner, context.value),
            )
            return cur.rowcount > 0

    async def list_records(
        self,
        owner: str,
        context: RecordContext,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> list[Record]:
        sql = "SELECT * FROM records WHERE owner = %s AND context = %s"
        params: list = [owner, context.value]
        # Lexical comparison on the canonical date string
        if date_from:
            sql += " AND to_char(occurred_on, 'YYYY-MM-DD') >= %s"
            params.append(date_from)
        if date_to:
            sql += " AND to_char(occurred_on, 'YYYY-MM-DD') <= %s"
            params.append(date_to)
        sql += " ORDER BY occurred_on DESC, created_at DESC"

        with self._client.transaction() as cur:
            cur.execute(sql, params)
            return [row_to_record(r) for r in cur.fetchall()]


class PostgresBudgetPeriodStorage(BudgetPeriodStorageInterface):
    """Budget periods in the budget_periods table."""

    def __init__(self, client: PostgresClient):
        self._client = client

    async def count_periods(self, owner: str) -> int:
        with self._client.transaction() as cur:
            cur.execute("SELECT COUNT(*) AS n FROM budget_periods WHERE owner = %s", (owner,))
            return cur.fetchone()["n"]

    async def insert_periods(
        self,
        periods: list[BudgetPeriod],
    ) -> list[BudgetPeriod]:
        sql = """
            INSERT INTO budget_periods
                (id, owner, name, period_type, start_date, end_date, is_active, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
        """
        inserted = []
        with self._client.transaction() as cur:
            for period in periods:
                cur.execute(sql, (
                    str(period.id), period.owner, period.name,
                    period.period_type.value, period.start_date, period.end_date,
                    period.is_active, period.created_at,
                ))
                inserted.append(row_to_period(cur.fetchone()))
        return inserted

    async def get_period(self, owner: str, period_id: UUID) -> Optional[BudgetPeriod]:
        with self._client.transaction() as cur:
            cur.execute(
                "SELECT * FROM budget_periods WHERE id = %s AND owner = %s",
                (str(period_id), owner),
            )
            row = cur.fetchone()
        return row_to_period(row) if row else None

    async def list_periods(self, owner: str) -> list[BudgetPeriod]:
        with self._client.transaction() as cur:
            cur.execute(
                "SELECT * FROM budget_periods WHERE owner = %s ORDER BY created_at ASC",
                (owner,),
            )
            return [row_to_period(r) for r in cur.fetchall()]

    async def get_active_period(self, owner: str) -> Optional[BudgetPeriod]:
        with self._client.transaction() as cur:
            cur.execute(
                "SELECT * FROM budget_periods WHERE owner = %s AND is_active = TRUE LIMIT 1",
                (owner,),
            )
            row = cur.fetchone()
        return row_to_period(row) if row else None

    def _lock_owner_periods(self, cur, owner: str) -> set[str]:
        """Row-lock every period of the owner; returns their ids."""
        cur.execute(
            "SELECT id FROM budget_periods WHERE owner = %s ORDER BY id FOR UPDATE",
            (owner,),
        )
        return {str(row["id"]) for row in cur.fetchall()}

    def _switch(self, cur, owner: str, period_id: UUID, locked: set[str]) -> dict:
        """Deactivate-all then activate-one; caller holds the owner's row locks."""
        if str(period_id) not in locked:
            raise NotFoundError(f"Budget period not found: {period_id}")
        cur.execute(
            "UPDATE budget_periods SET is_active = FALSE WHERE owner = %s AND is_active = TRUE",
            (owner,),
        )
        cur.execute(
            "UPDATE budget_periods SET is_active = TRUE WHERE id = %s AND owner = %s RETURNING *",
            (str(period_id), owner),
        )
        return cur.fetchone()

    async def switch_active_period(
        self,
        owner: str,
        period_id: UUID,
    ) -> BudgetPeriod:
        with self._client.transaction() as cur:
            locked = self._lock_owner_periods(cur, owner)
            row = self._switch(cur, owner, period_id, locked)
        return row_to_period(row)

    async def delete_period(
        self,
        owner: str,
        period_id: UUID,
        activate_instead: Optional[UUID] = None,
    ) -> bool:
        with self._client.transaction() as cur:
            locked = self._lock_owner_periods(cur, owner)
            if str(period_id) not in locked:
                return False
            if activate_instead is not None:
                self._switch(cur, owner, activate_instead, locked)
            cur.execute(
                "DELETE FROM budget_periods WHERE id = %s AND owner = %s",
                (str(period_id), owner),
            )
            return cur.rowcount > 0


class PostgresAuditStorage(AuditStorageInterface):
    """
    Audit events in the audit_log table.

    Audit events are append-only.
    """

    def __init__(self, client: PostgresClient):
        self._client = client

    async def append_event(self, event: AuditEvent) -> bool:
        sql = """
            INSERT INTO audit_log
                (event_id, timestamp, event_type, severity, owner, entity_type,
                 entity_id, correlation_id, description, details_json,
                 error_message, is_user_action)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        try:
            with self._client.transaction() as cur:
                cur.execute(sql, event.to_row())
            return True
        except StorageError as e:
            # Audit logging should not break the main flow
            logger.warning("audit_event_write_failed", error=str(e))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        with self._client.transaction() as cur:
            cur.execute(
                "SELECT * FROM audit_log WHERE correlation_id = %s ORDER BY timestamp ASC",
                (str(correlation_id),),
            )
            return [row_to_event(r) for r in cur.fetchall()]

    async def get_recent_events(
        self,
        owner: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        with self._client.transaction() as cur:
            cur.execute(
                "SELECT * FROM audit_log WHERE owner = %s ORDER BY timestamp DESC LIMIT %s",
                (owner, limit),
            )
            return [row_to_event(r) for r in cur.fetchall()]
