"""
Budget Period Models

A budget period is a named date-range selector. Exactly one period per
owner is active; its range filters record listings.

DESIGN DECISION: Ranges are expressed as canonical YYYY-MM-DD strings.
Records are filtered by lexical comparison on that form, which matches
calendar order and never depends on a time zone.
"""

import calendar
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PeriodType(str, Enum):
    """How a period derives its date range."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


def canonical_date(value: date) -> str:
    """Format a date as YYYY-MM-DD."""
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


class DateRange(BaseModel):
    """Inclusive range of canonical date strings."""

    start: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    end: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")

    @model_validator(mode='after')
    def validate_order(self) -> 'DateRange':
        if self.end < self.start:
            raise ValueError("Range end cannot be before start")
        return self

    @classmethod
    def from_dates(cls, start: date, end: date) -> 'DateRange':
        return cls(start=canonical_date(start), end=canonical_date(end))

    def contains(self, value: date) -> bool:
        """Lexical containment check on the canonical form."""
        day = canonical_date(value)
        return self.start <= day <= self.end


def range_for(period_type: PeriodType, today: date) -> DateRange:
    """
    Derive the range of a built-in period type from today's date.

    Weeks run Monday to Sunday.
    """
    if period_type == PeriodType.DAILY:
        return DateRange.from_dates(today, today)
    if period_type == PeriodType.WEEKLY:
        monday = today - timedelta(days=today.weekday())
        return DateRange.from_dates(monday, monday + timedelta(days=6))
    if period_type == PeriodType.MONTHLY:
        last_day = calendar.monthrange(today.year, today.month)[1]
        return DateRange.from_dates(
            today.replace(day=1),
            today.replace(day=last_day),
        )
    if period_type == PeriodType.YEARLY:
        return DateRange.from_dates(
            date(today.year, 1, 1),
            date(today.year, 12, 31),
        )
    raise ValueError(f"Custom periods have no derived range: {period_type}")


MAX_PERIOD_NAME_LENGTH = 100


class BudgetPeriod(BaseModel):
    """
    A named date-range selector owned by one user.

    Built-in types compute their range from the current date.
    CUSTOM periods store two explicit dates.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=MAX_PERIOD_NAME_LENGTH)
    period_type: PeriodType
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_dates(self) -> 'BudgetPeriod':
        """Custom periods need both dates, in order."""
        if self.period_type == PeriodType.CUSTOM:
            if self.start_date is None or self.end_date is None:
                raise ValueError("Custom periods require start and end dates")
            if self.end_date < self.start_date:
                raise ValueError("Period end cannot be before start")
        return self

    @property
    def is_custom(self) -> bool:
        return self.period_type == PeriodType.CUSTOM

    def date_range(self, today: Optional[date] = None) -> DateRange:
        """Resolve this period to a concrete range."""
        if self.is_custom:
            return DateRange.from_dates(self.start_date, self.end_date)
        return range_for(self.period_type, today or date.today())


# Seeded for every owner on first use; MONTHLY starts active.
DEFAULT_PERIODS: tuple[tuple[str, PeriodType], ...] = (
    ("Daily", PeriodType.DAILY),
    ("Weekly", PeriodType.WEEKLY),
    ("Monthly", PeriodType.MONTHLY),
    ("Yearly", PeriodType.YEARLY),
)
DEFAULT_ACTIVE_PERIOD = PeriodType.MONTHLY


def default_periods_for(owner: str) -> list[BudgetPeriod]:
    """Build the unsaved built-in periods for an owner."""
    return [
        BudgetPeriod(
            owner=owner,
            name=name,
            period_type=period_type,
            is_active=period_type == DEFAULT_ACTIVE_PERIOD,
        )
        for name, period_type in DEFAULT_PERIODS
    ]
