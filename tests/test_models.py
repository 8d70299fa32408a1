"""
Tests for Ledgerforms models

Test strategy:
1. Unit tests for individual components (models, validators, composer)
2. Service tests against the in-memory store (no database needed)
3. Postgres row conversion tested as pure functions
"""

import json

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from ledgerforms.models.field import (
    FieldDefinition,
    FieldKind,
    RecordContext,
    default_fields_for,
    sort_fields,
)
from ledgerforms.models.record import Record
from ledgerforms.models.budget import (
    BudgetPeriod,
    DateRange,
    PeriodType,
    default_periods_for,
    range_for,
)
from ledgerforms.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestFieldModels:
    """Tests for field definition models."""

    def test_expense_defaults(self):
        """Expense forms start with description, amount, category."""
        fields = default_fields_for("alice", RecordContext.EXPENSE)
        assert [f.key for f in fields] == ["description", "amount", "category"]
        assert all(f.is_core and f.is_enabled for f in fields)
        assert [f.kind for f in fields] == [FieldKind.TEXT, FieldKind.NUMBER, FieldKind.SELECT]

    def test_income_defaults(self):
        """Income forms start with description, amount."""
        fields = default_fields_for("alice", RecordContext.INCOME)
        assert [f.key for f in fields] == ["description", "amount"]

    def test_only_core_amount_is_protected(self):
        """The protected predicate needs both is_core and key == amount."""
        core = FieldDefinition(owner="a", context=RecordContext.EXPENSE, key="amount", label="Amount", is_core=True)
        custom = FieldDefinition(owner="a", context=RecordContext.EXPENSE, key="amount", label="Amount")
        description = FieldDefinition(owner="a", context=RecordContext.EXPENSE, key="description", label="D", is_core=True)
        assert core.is_protected
        assert not custom.is_protected
        assert not description.is_protected

    def test_label_whitespace_stripped(self):
        """Whitespace is stripped from labels."""
        field = FieldDefinition(owner="a", context=RecordContext.INCOME, key="k", label="  Trip  ")
        assert field.label == "Trip"

    def test_sort_ties_broken_by_id(self):
        """Equal order sorts by id ascending."""
        fields = [
            FieldDefinition(id=3, owner="a", context=RecordContext.INCOME, key="c", label="C", order=1),
            FieldDefinition(id=1, owner="a", context=RecordContext.INCOME, key="a", label="A", order=1),
            FieldDefinition(id=2, owner="a", context=RecordContext.INCOME, key="b", label="B", order=0),
        ]
        assert [f.id for f in sort_fields(fields)] == [2, 1, 3]


class TestRecordModel:
    """Tests for the record model."""

    def test_rejects_zero_amount(self):
        """Amount must be strictly positive."""
        with pytest.raises(ValueError):
            Record(owner="a", context=RecordContext.INCOME, amount=Decimal("0"))

    def test_rejects_negative_amount(self):
        with pytest.raises(ValueError):
            Record(owner="a", context=RecordContext.EXPENSE, amount=Decimal("-5"), category="Food")

    def test_income_cannot_have_category(self):
        """Incomes have no category column."""
        with pytest.raises(ValueError, match="category"):
            Record(owner="a", context=RecordContext.INCOME, amount=Decimal("1"), category="Food")

    def test_expense_requires_category(self):
        with pytest.raises(ValueError, match="category"):
            Record(owner="a", context=RecordContext.EXPENSE, amount=Decimal("1"))

    def test_core_values_by_context(self):
        """Only expenses expose a category core value."""
        expense = Record(owner="a", context=RecordContext.EXPENSE, amount=Decimal("2"), category="Food")
        income = Record(owner="a", context=RecordContext.INCOME, amount=Decimal("2"))
        assert "category" in expense.core_values()
        assert "category" not in income.core_values()
        assert expense.is_expense() and income.is_income()


class TestBudgetModels:
    """Tests for budget period models."""

    def test_weekly_range_monday_to_sunday(self):
        """Weeks start on Monday."""
        # 2024-05-16 is a Thursday
        result = range_for(PeriodType.WEEKLY, date(2024, 5, 16))
        assert result.start == "2024-05-13"
        assert result.end == "2024-05-19"

    def test_monthly_range_handles_leap_year(self):
        result = range_for(PeriodType.MONTHLY, date(2024, 2, 10))
        assert (result.start, result.end) == ("2024-02-01", "2024-02-29")

    def test_daily_and_yearly_ranges(self):
        today = date(2023, 7, 4)
        assert range_for(PeriodType.DAILY, today).start == "2023-07-04"
        yearly = range_for(PeriodType.YEARLY, today)
        assert (yearly.start, yearly.end) == ("2023-01-01", "2023-12-31")

    def test_custom_has_no_derived_range(self):
        with pytest.raises(ValueError):
            range_for(PeriodType.CUSTOM, date.today())

    def test_custom_period_requires_dates(self):
        """Custom periods need both dates."""
        with pytest.raises(ValueError, match="start and end"):
            BudgetPeriod(owner="a", name="Trip", period_type=PeriodType.CUSTOM)

    def test_custom_period_range(self):
        period = BudgetPeriod(
            owner="a",
            name="Trip",
            period_type=PeriodType.CUSTOM,
            start_date=date(2024, 1, 5),
            end_date=date(2024, 1, 9),
        )
        assert period.date_range() == DateRange(start="2024-01-05", end="2024-01-09")

    def test_date_range_rejects_reversed_bounds(self):
        with pytest.raises(ValueError):
            DateRange(start="2024-02-01", end="2024-01-01")

    def test_date_range_contains_is_inclusive(self):
        date_range = DateRange(start="2024-01-01", end="2024-01-31")
        assert date_range.contains(date(2024, 1, 1))
        assert date_range.contains(date(2024, 1, 31))
        assert not date_range.contains(date(2024, 2, 1))

    def test_default_periods_have_one_active_monthly(self):
        periods = default_periods_for("alice")
        assert [p.name for p in periods] == ["Daily", "Weekly", "Monthly", "Yearly"]
        active = [p for p in periods if p.is_active]
        assert len(active) == 1
        assert active[0].period_type == PeriodType.MONTHLY


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.FIELD_CREATED,
            description="Field created",
        )
        assert event.event_type == AuditEventType.FIELD_CREATED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_audit_event_to_row(self):
        """Test conversion to an audit_log row."""
        event = AuditEvent(
            event_type=AuditEventType.RECORD_CREATED,
            owner="alice",
            description="Expense created",
            details={"amount": Decimal("12.50")},
        )
        row = event.to_row()
        assert len(row) == 12
        assert row[2] == "record_created"
        assert row[4] == "alice"
        assert json.loads(row[9]) == {"amount": "12.50"}

    def test_builder_field_retired_distinguishes_delete(self):
        """Hard deletes and soft retires are different event types."""
        deleted = AuditEventBuilder.field_retired("a", 1, "trip_1", hard_deleted=True)
        disabled = AuditEventBuilder.field_retired("a", 2, "category", hard_deleted=False)
        assert deleted.event_type == AuditEventType.FIELD_DELETED
        assert disabled.event_type == AuditEventType.FIELD_RETIRED

    def test_builder_protected_field_is_warning(self):
        event = AuditEventBuilder.protected_field_blocked("a", 7)
        assert event.severity == AuditSeverity.WARNING
        assert event.entity_id == "7"

    def test_builder_record_saved(self):
        cid = uuid4()
        event = AuditEventBuilder.record_saved(
            owner="a",
            record_id=uuid4(),
            context="expense",
            amount="12.5",
            is_update=True,
            correlation_id=cid,
        )
        assert event.event_type == AuditEventType.RECORD_UPDATED
        assert event.correlation_id == cid
        assert event.to_log_dict()["correlation_id"] == str(cid)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
