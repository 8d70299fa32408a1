"""
Integration tests for the flows, wired to one in-memory store.
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch
from uuid import uuid4

from ledgerforms.audit import AuditLogger
from ledgerforms.budget import BudgetPeriodService
from ledgerforms.catalog import FieldCatalog, ProtectedFieldError
from ledgerforms.models.audit import AuditEventType
from ledgerforms.models.budget import PeriodType
from ledgerforms.models.field import RecordContext
from ledgerforms.orchestrator import (
    BudgetPeriodFlow,
    FieldSchemaFlow,
    RecordFlow,
    create_app_components,
)
from ledgerforms.records import RecordComposer
from ledgerforms.services.storage import (
    ConnectionError,
    InMemoryStore,
    NotFoundError,
    PostgresClient,
)
from ledgerforms.validation import ValidationError


EXPENSE = RecordContext.EXPENSE
INCOME = RecordContext.INCOME


class Components:
    def __init__(self):
        self.store = InMemoryStore()
        audit_logger = AuditLogger(self.store)
        self.schema = FieldSchemaFlow(
            FieldCatalog(self.store, max_label_length=100),
            audit_logger=audit_logger,
        )
        self.periods = BudgetPeriodFlow(
            BudgetPeriodService(self.store),
            audit_logger=audit_logger,
        )
        self.records = RecordFlow(
            self.store,
            self.schema,
            composer=RecordComposer("Miscellaneous"),
            period_flow=self.periods,
            audit_logger=audit_logger,
        )

    async def event_types(self, owner):
        return [e.event_type for e in await self.store.get_recent_events(owner)]


@pytest.fixture
def app():
    return Components()


class TestFieldSchemaFlow:

    @pytest.mark.asyncio
    async def test_first_visit_seeds_and_audits_once(self, app):
        await app.schema.get_active_fields("alice", EXPENSE)
        await app.schema.get_active_fields("alice", EXPENSE)

        types = await app.event_types("alice")
        assert types.count(AuditEventType.FIELD_DEFAULTS_SEEDED) == 1

    @pytest.mark.asyncio
    async def test_create_and_reorder(self, app):
        field = await app.schema.create_field("alice", INCOME, "Source")
        fields = await app.schema.get_active_fields("alice", INCOME)
        assert fields[-1].id == field.id

        ids = [f.id for f in reversed(fields)]
        assert await app.schema.reorder_fields("alice", INCOME, ids) == 3
        assert [f.id for f in await app.schema.get_active_fields("alice", INCOME)] == ids

        types = await app.event_types("alice")
        assert AuditEventType.FIELD_CREATED in types
        assert AuditEventType.FIELDS_REORDERED in types

    @pytest.mark.asyncio
    async def test_empty_label_is_audited(self, app):
        with pytest.raises(ValidationError):
            await app.schema.create_field("alice", EXPENSE, "")
        assert AuditEventType.VALIDATION_FAILED in await app.event_types("alice")

    @pytest.mark.asyncio
    async def test_retiring_amount_is_blocked_and_audited(self, app):
        fields = await app.schema.get_active_fields("alice", EXPENSE)
        amount = next(f for f in fields if f.key == "amount")

        with pytest.raises(ProtectedFieldError):
            await app.schema.retire_field("alice", amount.id)

        assert AuditEventType.PROTECTED_FIELD_BLOCKED in await app.event_types("alice")

    @pytest.mark.asyncio
    async def test_retire_and_restore(self, app):
        fields = await app.schema.get_active_fields("alice", EXPENSE)
        category = next(f for f in fields if f.key == "category")
        custom = await app.schema.create_field("alice", EXPENSE, "Trip")

        await app.schema.retire_field("alice", category.id)
        await app.schema.retire_field("alice", custom.id)
        assert [f.key for f in await app.schema.get_active_fields("alice", EXPENSE)] == [
            "description", "amount",
        ]

        await app.schema.restore_field("alice", category.id)
        types = await app.event_types("alice")
        assert AuditEventType.FIELD_RETIRED in types
        assert AuditEventType.FIELD_DELETED in types
        assert AuditEventType.FIELD_RESTORED in types

    @pytest.mark.asyncio
    async def test_relabel(self, app):
        fields = await app.schema.get_active_fields("alice", EXPENSE)
        amount = next(f for f in fields if f.key == "amount")

        field = await app.schema.relabel_field("alice", amount.id, "Cost")

        assert field.label == "Cost"
        assert field.key == "amount"


class TestRecordFlow:

    @pytest.mark.asyncio
    async def test_create_and_get(self, app):
        record = await app.records.create_record("alice", EXPENSE, {"amount": 12.5})
        stored = await app.records.get_record("alice", EXPENSE, record.id)
        assert stored.amount == Decimal("12.5")
        assert stored.category == "Miscellaneous"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, "abc"])
    async def test_bad_amount_writes_nothing(self, app, amount):
        with pytest.raises(ValidationError):
            await app.records.create_record("alice", EXPENSE, {"amount": amount, "tag": "x"})

        assert await app.records.list_records("alice", EXPENSE) == []
        assert AuditEventType.VALIDATION_FAILED in await app.event_types("alice")

    @pytest.mark.asyncio
    async def test_update_replaces_attributes(self, app):
        record = await app.records.create_record("alice", EXPENSE, {"amount": 5, "tag": "urgent"})

        updated = await app.records.update_record("alice", EXPENSE, record.id, {"amount": 7})

        assert updated.attributes == {}
        stored = await app.records.get_record("alice", EXPENSE, record.id)
        assert stored.attributes == {}
        assert stored.amount == Decimal("7")

    @pytest.mark.asyncio
    async def test_update_keeps_date_when_absent(self, app):
        record = await app.records.create_record(
            "alice", INCOME, {"amount": 5, "occurred_on": "2023-01-02"}
        )
        updated = await app.records.update_record("alice", INCOME, record.id, {"amount": 6})
        assert updated.occurred_on == date(2023, 1, 2)

    @pytest.mark.asyncio
    async def test_update_with_bad_amount_changes_nothing(self, app):
        record = await app.records.create_record("alice", INCOME, {"amount": 5, "tag": "a"})
        with pytest.raises(ValidationError):
            await app.records.update_record("alice", INCOME, record.id, {"amount": -1})
        stored = await app.records.get_record("alice", INCOME, record.id)
        assert stored.attributes == {"tag": "a"}

    @pytest.mark.asyncio
    async def test_other_owner_cannot_touch_record(self, app):
        record = await app.records.create_record("alice", EXPENSE, {"amount": 5})

        with pytest.raises(NotFoundError):
            await app.records.update_record("bob", EXPENSE, record.id, {"amount": 9})
        with pytest.raises(NotFoundError):
            await app.records.delete_record("bob", EXPENSE, record.id)
        with pytest.raises(NotFoundError):
            await app.records.get_record("alice", INCOME, record.id)

        stored = await app.records.get_record("alice", EXPENSE, record.id)
        assert stored.amount == Decimal("5")

    @pytest.mark.asyncio
    async def test_update_unknown_record(self, app):
        with pytest.raises(NotFoundError):
            await app.records.update_record("alice", EXPENSE, uuid4(), {"amount": 1})

    @pytest.mark.asyncio
    async def test_delete(self, app):
        record = await app.records.create_record("alice", EXPENSE, {"amount": 5})
        await app.records.delete_record("alice", EXPENSE, record.id)
        assert await app.records.list_records("alice", EXPENSE) == []
        assert AuditEventType.RECORD_DELETED in await app.event_types("alice")

    @pytest.mark.asyncio
    async def test_list_newest_first_and_date_filter(self, app):
        for day in ("2024-01-01", "2024-01-15", "2024-02-01"):
            await app.records.create_record("alice", INCOME, {"amount": 1, "occurred_on": day})

        everything = await app.records.list_records("alice", INCOME)
        assert [r.occurred_on.isoformat() for r in everything] == [
            "2024-02-01", "2024-01-15", "2024-01-01",
        ]

        january = await app.records.list_records(
            "alice", INCOME, date_from="2024-01-01", date_to=date(2024, 1, 31)
        )
        assert [r.occurred_on.isoformat() for r in january] == ["2024-01-15", "2024-01-01"]

    @pytest.mark.asyncio
    async def test_list_rejects_bad_bound(self, app):
        with pytest.raises(ValidationError):
            await app.records.list_records("alice", INCOME, date_from="January")

    @pytest.mark.asyncio
    async def test_list_in_active_period(self, app):
        today = date.today()
        await app.records.create_record("alice", EXPENSE, {"amount": 1})
        await app.records.create_record("alice", EXPENSE, {"amount": 2, "occurred_on": "2000-01-01"})

        records = await app.records.list_records_in_active_period("alice", EXPENSE, today)
        assert [r.amount for r in records] == [Decimal("1")]

        periods = await app.periods.list_periods("alice")
        yearly = next(p for p in periods if p.period_type == PeriodType.YEARLY)
        await app.periods.activate_period("alice", yearly.id)
        records = await app.records.list_records_in_active_period("alice", EXPENSE, today)
        assert len(records) == 1

    @pytest.mark.asyncio
    async def test_custom_period_filters_records(self, app):
        await app.records.create_record("alice", INCOME, {"amount": 3, "occurred_on": "2000-01-05"})
        await app.records.create_record("alice", INCOME, {"amount": 4})
        period = await app.periods.create_custom_period("alice", "Y2K", "2000-01-01", "2000-01-31")
        await app.periods.activate_period("alice", period.id)

        records = await app.records.list_records_in_active_period("alice", INCOME)
        assert [r.amount for r in records] == [Decimal("3")]

    @pytest.mark.asyncio
    async def test_edit_form(self, app):
        await app.schema.create_field("alice", EXPENSE, "Vendor")
        fields = await app.schema.get_active_fields("alice", EXPENSE)
        vendor_key = fields[-1].key

        record = await app.records.create_record("alice", EXPENSE, {
            "amount": 5, "description": "Taxi", vendor_key: "Uber", "occurred_on": "2024-03-04",
        })
        values = await app.records.edit_form("alice", EXPENSE, record.id)

        assert values == {
            "description": "Taxi",
            "amount": Decimal("5"),
            "category": "Miscellaneous",
            vendor_key: "Uber",
            "occurred_on": "2024-03-04",
        }

    @pytest.mark.asyncio
    async def test_duplicate(self, app):
        original = await app.records.create_record("alice", EXPENSE, {
            "amount": 5,
            "category": "Food",
            "tag": "x",
            "occurred_on": (date.today() - timedelta(days=40)).isoformat(),
        })

        copy = await app.records.duplicate_record("alice", EXPENSE, original.id)

        assert copy.id != original.id
        assert copy.amount == original.amount
        assert copy.category == "Food"
        assert copy.attributes == {"tag": "x"}
        assert copy.occurred_on == date.today()


class TestFactory:

    def test_memory_backend(self):
        schema, records, periods, client = create_app_components("memory")
        assert client is None
        assert isinstance(schema, FieldSchemaFlow)
        assert isinstance(records, RecordFlow)
        assert isinstance(periods, BudgetPeriodFlow)

    def test_unreachable_postgres_is_reported(self):
        """An unreachable database fails startup instead of running in memory."""
        with patch.object(
            PostgresClient,
            "connect",
            side_effect=ConnectionError("connection refused"),
        ):
            with pytest.raises(ConnectionError):
                create_app_components("postgres")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
