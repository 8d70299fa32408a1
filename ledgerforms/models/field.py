"""
Field Definition Models

A field definition describes one input of the expense or income form
for one user. Every user owns a separate catalog per context.

DESIGN DECISION: Core and custom fields share one model.
Behavior branches on `is_core` and `is_protected` instead of subclassing,
so storage, ordering and rendering treat every field the same way.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMS
# =============================================================================

class RecordContext(str, Enum):
    """The record kind a field definition or record belongs to."""
    EXPENSE = "expense"
    INCOME = "income"


class FieldKind(str, Enum):
    """
    Primitive field kinds.

    The kind decides the input widget. For SELECT the value space is
    the owner's category list.
    """
    TEXT = "text"
    NUMBER = "number"
    SELECT = "select"


# Longest stored field key.
MAX_KEY_LENGTH = 200

# Key of the one field that can never be retired.
PROTECTED_FIELD_KEY = "amount"


# =============================================================================
# FIELD DEFINITION
# =============================================================================

class FieldDefinition(BaseModel):
    """
    One user-visible field of a record form.

    `id` is assigned by storage and increases with insertion, so sorting
    by (order, id) gives a total order with insertion-order ties.
    `key` never changes once assigned; `label` may.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = Field(
        default=None,
        description="Storage-assigned identifier (None before insert)"
    )
    owner: str = Field(
        ...,
        min_length=1,
        description="Identifier of the owning user"
    )
    context: RecordContext
    key: str = Field(
        ...,
        min_length=1,
        max_length=MAX_KEY_LENGTH,
        description="Machine-readable attribute name, unique per (owner, context)"
    )
    label: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name"
    )
    kind: FieldKind = FieldKind.TEXT
    is_core: bool = False
    is_enabled: bool = True
    order: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_protected(self) -> bool:
        """True for the amount-bearing core field."""
        return self.is_core and self.key == PROTECTED_FIELD_KEY

    @property
    def sort_key(self) -> tuple[int, int]:
        """Display position: order ascending, then id ascending."""
        return (self.order, self.id if self.id is not None else 0)


class DefaultField(BaseModel):
    """A core field seeded into an empty catalog."""

    key: str
    label: str
    kind: FieldKind
    order: int


# Seeding policy: fixed core set per context, in display order.
DEFAULT_FIELDS: dict[RecordContext, tuple[DefaultField, ...]] = {
    RecordContext.EXPENSE: (
        DefaultField(key="description", label="Description", kind=FieldKind.TEXT, order=0),
        DefaultField(key="amount", label="Amount", kind=FieldKind.NUMBER, order=1),
        DefaultField(key="category", label="Category", kind=FieldKind.SELECT, order=2),
    ),
    RecordContext.INCOME: (
        DefaultField(key="description", label="Description", kind=FieldKind.TEXT, order=0),
        DefaultField(key="amount", label="Amount", kind=FieldKind.NUMBER, order=1),
    ),
}


def default_fields_for(owner: str, context: RecordContext) -> list[FieldDefinition]:
    """Build the unsaved default field set for (owner, context)."""
    return [
        FieldDefinition(
            owner=owner,
            context=context,
            key=default.key,
            label=default.label,
            kind=default.kind,
            is_core=True,
            is_enabled=True,
            order=default.order,
        )
        for default in DEFAULT_FIELDS[context]
    ]


def sort_fields(fields: list[FieldDefinition]) -> list[FieldDefinition]:
    """Return fields in display order."""
    return sorted(fields, key=lambda f: f.sort_key)
