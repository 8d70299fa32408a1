"""
Data Models Package

This package contains all Pydantic models used by Ledgerforms.
All data flowing through the engine must conform to these schemas.
"""

from ledgerforms.models.field import (
    DEFAULT_FIELDS,
    PROTECTED_FIELD_KEY,
    DefaultField,
    FieldDefinition,
    FieldKind,
    RecordContext,
    default_fields_for,
    sort_fields,
)
from ledgerforms.models.record import (
    CORE_KEYS,
    OCCURRED_ON_KEY,
    Record,
)
from ledgerforms.models.budget import (
    DEFAULT_ACTIVE_PERIOD,
    DEFAULT_PERIODS,
    BudgetPeriod,
    DateRange,
    PeriodType,
    canonical_date,
    default_periods_for,
    range_for,
)
from ledgerforms.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Field models
    "DEFAULT_FIELDS",
    "PROTECTED_FIELD_KEY",
    "DefaultField",
    "FieldDefinition",
    "FieldKind",
    "RecordContext",
    "default_fields_for",
    "sort_fields",
    # Record models
    "CORE_KEYS",
    "OCCURRED_ON_KEY",
    "Record",
    # Budget models
    "DEFAULT_ACTIVE_PERIOD",
    "DEFAULT_PERIODS",
    "BudgetPeriod",
    "DateRange",
    "PeriodType",
    "canonical_date",
    "default_periods_for",
    "range_for",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
