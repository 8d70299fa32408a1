"""
Record Composer

Converts between the flat key/value shape a form submits and the stored
record shape (core columns plus attribute bag).

encode: flat submission -> Record
decode: Record + active fields -> flat values in field order

Both directions are pure: no storage, no clock except the "today"
fallback for a missing date.
"""

from datetime import date
from typing import Any, Mapping, Optional

from ledgerforms.models.field import FieldDefinition, RecordContext, sort_fields
from ledgerforms.models.record import MAX_CATEGORY_LENGTH, OCCURRED_ON_KEY, Record
from ledgerforms.validation import is_blank, parse_amount, parse_occurred_on, require_label


def _display_value(value: Any) -> Any:
    """Dates render as YYYY-MM-DD whatever their stored precision."""
    if isinstance(value, date):
        return value.isoformat()
    return value


class RecordComposer:
    """
    Splits submissions into core columns and attributes, and merges
    them back for display and editing.

    Args:
        default_category: Category used when an expense submission
            carries none.
    """

    def __init__(self, default_category: str = "Miscellaneous"):
        self.default_category = default_category

    def encode(
        self,
        owner: str,
        context: RecordContext,
        submission: Mapping[str, Any],
        default_occurred_on: Optional[date] = None,
    ) -> Record:
        """
        Compose a record from a flat submission.

        The amount is parsed first, so a submission without a usable
        amount fails before anything else is looked at. Every key that
        is not a core column goes into the attribute bag verbatim,
        including keys of fields that are no longer enabled.

        Args:
            owner: Owner of the new record
            context: Expense or income
            submission: Flat key -> value mapping from the form
            default_occurred_on: Date used when the submission has none
                (today if None)

        Raises:
            ValidationError: On an unusable amount, an unparseable
                date or an over-long category
        """
        values = dict(submission)

        amount = parse_amount(values.pop("amount", None))
        occurred_on = parse_occurred_on(
            values.pop(OCCURRED_ON_KEY, None),
            default=default_occurred_on,
        )

        description = values.pop("description", None)
        description = "" if is_blank(description) else str(description).strip()

        category = None
        if context == RecordContext.EXPENSE:
            category = values.pop("category", None)
            if is_blank(category):
                category = self.default_category
            else:
                category = require_label(category, MAX_CATEGORY_LENGTH, field="category")

        return Record(
            owner=owner,
            context=context,
            amount=amount,
            description=description,
            category=category,
            occurred_on=occurred_on,
            attributes=values,
        )

    def apply(self, record: Record, submission: Mapping[str, Any]) -> Record:
        """
        Replace a stored record's values with a new submission.

        Full replace: description, category, amount and the whole
        attribute bag come from the submission. Omitting a custom field
        removes its stored value. The date is kept unless the
        submission carries one.
        """
        updated = self.encode(
            record.owner,
            record.context,
            submission,
            default_occurred_on=record.occurred_on,
        )
        return record.model_copy(update={
            "amount": updated.amount,
            "description": updated.description,
            "category": updated.category,
            "occurred_on": updated.occurred_on,
            "attributes": updated.attributes,
        })

    def decode(
        self,
        record: Record,
        active_fields: list[FieldDefinition],
    ) -> dict[str, Any]:
        """
        Flatten a record against the current field list.

        For each field, in display order, the value is taken from the
        core columns and otherwise from the attribute bag. Absent and
        empty values are left out. Keys with no active field are not
        returned (see `flatten` for everything).
        """
        core = record.core_values()
        flat: dict[str, Any] = {}
        for field in sort_fields(active_fields):
            value = core.get(field.key)
            if is_blank(value):
                value = record.attributes.get(field.key)
            if is_blank(value):
                continue
            flat[field.key] = _display_value(value)
        return flat

    def edit_values(
        self,
        record: Record,
        active_fields: list[FieldDefinition],
    ) -> dict[str, Any]:
        """`decode` plus the record date, to prefill an edit form."""
        values = self.decode(record, active_fields)
        values[OCCURRED_ON_KEY] = record.occurred_on.isoformat()
        return values

    def flatten(self, record: Record) -> dict[str, Any]:
        """Every non-empty value of a record, core and attributes."""
        flat: dict[str, Any] = {}
        for key, value in {**record.attributes, **record.core_values()}.items():
            if not is_blank(value):
                flat[key] = _display_value(value)
        return flat
