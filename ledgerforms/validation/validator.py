"""
Submission Validation

Parses the few values the engine types strictly: record amounts,
record dates, and user-supplied labels.

IMPORTANT: Validation NEVER silently fixes issues.
A value that cannot be used is reported with the field it came from,
before any side effect happens.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


# Amounts are stored as NUMERIC(14,2)
AMOUNT_DECIMAL_PLACES = 2
MAX_AMOUNT = Decimal(10) ** 12


class ValidationError(ValueError):
    """A user-correctable problem with one submitted value."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


def is_blank(value: Any) -> bool:
    """True for None and whitespace-only strings."""
    return value is None or (isinstance(value, str) and not value.strip())


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    """
    Parse a strictly positive decimal amount.

    Accepts numbers and numeric strings. Rejects missing values,
    booleans, non-numeric text, NaN/Infinity, zero and negatives.
    """
    if is_blank(value):
        raise ValidationError(field, "Amount is required")
    if isinstance(value, bool):
        raise ValidationError(field, "Amount must be a number")

    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(field, f"Amount is not a number: {value!r}")

    if not amount.is_finite():
        raise ValidationError(field, "Amount must be a finite number")
    if amount <= 0:
        raise ValidationError(field, "Amount must be greater than zero")
    if amount.normalize().as_tuple().exponent < -AMOUNT_DECIMAL_PLACES:
        raise ValidationError(
            field, f"Amount may have at most {AMOUNT_DECIMAL_PLACES} decimal places"
        )
    if amount >= MAX_AMOUNT:
        raise ValidationError(field, f"Amount must be less than {MAX_AMOUNT:,}")
    return amount


def parse_occurred_on(
    value: Any,
    default: Optional[date] = None,
    field: str = "occurred_on",
) -> date:
    """
    Parse a record date as a plain calendar date.

    Date-times keep the calendar date they were written with; no
    time-zone conversion is applied. Missing values fall back to
    `default`, or today's local date.
    """
    if is_blank(value):
        return default or date.today()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if len(text) > 10:
                # ISO date-time; keep its own calendar date
                return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
            return date.fromisoformat(text)
        except ValueError:
            raise ValidationError(field, f"Not a valid date (YYYY-MM-DD): {value!r}")
    raise ValidationError(field, f"Unsupported date value: {value!r}")


def require_label(value: Any, max_length: int, field: str = "label") -> str:
    """Return a stripped, non-empty label no longer than max_length."""
    if is_blank(value):
        raise ValidationError(field, "A name is required")
    label = str(value).strip()
    if len(label) > max_length:
        raise ValidationError(field, f"Must be at most {max_length} characters")
    return label
