"""Validation package."""

from ledgerforms.validation.validator import (
    ValidationError,
    is_blank,
    parse_amount,
    parse_occurred_on,
    require_label,
)

__all__ = [
    "ValidationError",
    "is_blank",
    "parse_amount",
    "parse_occurred_on",
    "require_label",
]
