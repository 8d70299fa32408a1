"""
Record Models

A record is one money movement: an expense or an income.

Records are a small fixed struct (the core columns) plus an open
attribute bag. The bag holds values for every field that has no
dedicated column, including fields that were later renamed, disabled
or deleted. Records are never migrated when the schema changes.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ledgerforms.models.field import RecordContext


# Submission key carrying the record date.
OCCURRED_ON_KEY = "occurred_on"

# Matches the category column width.
MAX_CATEGORY_LENGTH = 100

# Keys backed by a dedicated column, per context.
CORE_KEYS: dict[RecordContext, tuple[str, ...]] = {
    RecordContext.EXPENSE: ("amount", "description", "category"),
    RecordContext.INCOME: ("amount", "description"),
}


class Record(BaseModel):
    """
    A stored expense or income.

    CRITICAL: amount must be strictly positive. This is enforced here
    as well as when parsing submissions, so no code path can persist
    a zero or negative amount.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner: str = Field(..., min_length=1)
    context: RecordContext

    amount: Annotated[
        Decimal,
        Field(gt=0, description="Positive amount")
    ]
    description: str = ""
    category: Optional[str] = Field(
        default=None,
        max_length=MAX_CATEGORY_LENGTH,
        description="Expense category (always None for incomes)"
    )
    occurred_on: date = Field(default_factory=date.today)
    attributes: dict[str, Any] = Field(
        default_factory=dict,
        description="Values for fields without a dedicated column"
    )

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_context_columns(self) -> 'Record':
        """Incomes have no category column."""
        if self.context == RecordContext.INCOME and self.category is not None:
            raise ValueError("Income records cannot carry a category")
        if self.context == RecordContext.EXPENSE and not self.category:
            raise ValueError("Expense records require a category")
        return self

    def core_values(self) -> dict[str, Any]:
        """Core column values keyed by their submission key."""
        values: dict[str, Any] = {
            "amount": self.amount,
            "description": self.description,
            OCCURRED_ON_KEY: self.occurred_on,
        }
        if self.context == RecordContext.EXPENSE:
            values["category"] = self.category
        return values

    def is_expense(self) -> bool:
        return self.context == RecordContext.EXPENSE

    def is_income(self) -> bool:
        return self.context == RecordContext.INCOME

    def __str__(self) -> str:
        sign = "-" if self.is_expense() else "+"
        label = self.category or self.description
        return f"{sign}{self.amount:.2f} | {label} | {self.occurred_on}"
