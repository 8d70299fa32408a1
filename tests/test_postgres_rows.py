"""
Tests for the PostgreSQL backend that need no database:
row conversion, driver error translation and period-switch locking.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import MagicMock, patch
from uuid import uuid4

import psycopg2
import pytest
from psycopg2 import errors

from ledgerforms.models.audit import AuditEventBuilder, AuditEventType
from ledgerforms.models.budget import PeriodType
from ledgerforms.models.field import FieldKind, RecordContext
from ledgerforms.services.storage import (
    ConflictError,
    ConnectionError,
    NotFoundError,
    PostgresClient,
    StorageError,
)
from ledgerforms.services.storage.postgres import (
    SCHEMA_SQL,
    PostgresBudgetPeriodStorage,
    attributes_to_json,
    row_to_event,
    row_to_field,
    row_to_period,
    row_to_record,
)


NOW = datetime(2024, 5, 1, 12, 0, 0)


class TestRowConversion:

    def test_row_to_field(self):
        field = row_to_field({
            "id": 7,
            "owner": "alice",
            "context": "expense",
            "field_key": "amount",
            "label": "Amount",
            "kind": "number",
            "is_core": True,
            "is_enabled": True,
            "ordering": 1,
            "created_at": NOW,
        })
        assert field.id == 7
        assert field.context == RecordContext.EXPENSE
        assert field.kind == FieldKind.NUMBER
        assert field.order == 1
        assert field.is_protected

    def test_row_to_record_parses_json_text(self):
        """Attributes may arrive as already-decoded JSONB or as text."""
        record_id = uuid4()
        row = {
            "id": str(record_id),
            "owner": "alice",
            "context": "income",
            "amount": Decimal("12.50"),
            "description": None,
            "category": None,
            "occurred_on": date(2024, 5, 1),
            "attributes": '{"tag": "urgent"}',
            "created_at": NOW,
            "updated_at": NOW,
        }
        record = row_to_record(row)
        assert record.id == record_id
        assert record.amount == Decimal("12.50")
        assert record.description == ""
        assert record.attributes == {"tag": "urgent"}

    def test_row_to_period(self):
        period = row_to_period({
            "id": uuid4(),
            "owner": "alice",
            "name": "Trip",
            "period_type": "custom",
            "start_date": date(2024, 1, 1),
            "end_date": date(2024, 1, 3),
            "is_active": False,
            "created_at": NOW,
        })
        assert period.period_type == PeriodType.CUSTOM
        assert period.date_range().end == "2024-01-03"

    def test_event_row_round_trip(self):
        cid = uuid4()
        event = AuditEventBuilder.field_created("alice", 3, "trip_1", "Trip", cid)
        columns = [
            "event_id", "timestamp", "event_type", "severity", "owner",
            "entity_type", "entity_id", "correlation_id", "description",
            "details_json", "error_message", "is_user_action",
        ]
        restored = row_to_event(dict(zip(columns, event.to_row())))

        assert restored.event_id == event.event_id
        assert restored.event_type == AuditEventType.FIELD_CREATED
        assert restored.correlation_id == cid
        assert restored.details == event.details

    def test_attributes_to_json_serializes_decimals_and_dates(self):
        wrapped = attributes_to_json({"rate": Decimal("1.5"), "when": date(2024, 1, 2)})
        assert json.loads(wrapped.dumps(wrapped.adapted)) == {
            "rate": "1.5",
            "when": "2024-01-02",
        }


class TestClientErrors:
    """Driver errors leave the client as storage errors."""

    def _client_with_connection(self):
        client = PostgresClient(settings=MagicMock())
        conn = MagicMock()
        client._pool = MagicMock()
        client._pool.getconn.return_value = conn
        return client, conn

    def test_unique_violation_becomes_conflict(self):
        client, conn = self._client_with_connection()

        with pytest.raises(ConflictError):
            with client.transaction():
                raise errors.UniqueViolation("duplicate key")

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        client._pool.putconn.assert_called_once_with(conn)

    def test_driver_error_becomes_storage_error(self):
        client, conn = self._client_with_connection()

        with pytest.raises(StorageError):
            with client.transaction():
                raise psycopg2.DataError("bad value")

        conn.rollback.assert_called_once()

    def test_success_commits(self):
        client, conn = self._client_with_connection()

        with client.transaction() as cur:
            cur.execute("SELECT 1")

        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()

    def test_unreachable_database(self):
        client = PostgresClient(settings=MagicMock())
        with patch.object(
            PostgresClient,
            "_open_pool",
            side_effect=psycopg2.OperationalError("connection refused"),
        ):
            with pytest.raises(ConnectionError):
                client.connect()


class TestPeriodSwitchLocking:
    """The switch locks every period of the owner before changing any."""

    def _storage(self):
        client = PostgresClient(settings=MagicMock())
        conn = MagicMock()
        client._pool = MagicMock()
        client._pool.getconn.return_value = conn
        cur = conn.cursor.return_value.__enter__.return_value
        return PostgresBudgetPeriodStorage(client), cur

    def _period_row(self, period_id, active=True):
        return {
            "id": str(period_id),
            "owner": "alice",
            "name": "Weekly",
            "period_type": "weekly",
            "start_date": None,
            "end_date": None,
            "is_active": active,
            "created_at": NOW,
        }

    @pytest.mark.asyncio
    async def test_switch_locks_all_owner_rows_first(self):
        storage, cur = self._storage()
        target, other = uuid4(), uuid4()
        cur.fetchall.return_value = [{"id": str(target)}, {"id": str(other)}]
        cur.fetchone.return_value = self._period_row(target)

        period = await storage.switch_active_period("alice", target)

        statements = [c.args[0] for c in cur.execute.call_args_list]
        assert "WHERE owner = %s ORDER BY id FOR UPDATE" in statements[0]
        assert "id = %s" not in statements[0]
        assert "SET is_active = FALSE" in statements[1]
        assert "SET is_active = TRUE" in statements[2]
        assert period.id == target

    @pytest.mark.asyncio
    async def test_switch_to_unknown_period_changes_nothing(self):
        storage, cur = self._storage()
        cur.fetchall.return_value = [{"id": str(uuid4())}]

        with pytest.raises(NotFoundError):
            await storage.switch_active_period("alice", uuid4())

        assert cur.execute.call_count == 1

    @pytest.mark.asyncio
    async def test_delete_takes_the_same_locks(self):
        storage, cur = self._storage()
        doomed, fallback = uuid4(), uuid4()
        cur.fetchall.return_value = [{"id": str(doomed)}, {"id": str(fallback)}]
        cur.fetchone.return_value = self._period_row(fallback)
        cur.rowcount = 1

        assert await storage.delete_period("alice", doomed, activate_instead=fallback)

        statements = [c.args[0] for c in cur.execute.call_args_list]
        assert "ORDER BY id FOR UPDATE" in statements[0]
        assert statements[-1].strip().startswith("DELETE FROM budget_periods")

    def test_schema_allows_one_active_period_per_owner(self):
        assert "ON budget_periods(owner) WHERE is_active" in SCHEMA_SQL


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
