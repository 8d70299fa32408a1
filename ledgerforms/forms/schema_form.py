"""
Schema-Bound Form

View logic shared by every front end: turns the current field list into
input descriptors, renders stored values by field key, and collects a
flat submission back from the inputs.
"""

from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

from ledgerforms.models.field import FieldDefinition, FieldKind, sort_fields
from ledgerforms.validation import is_blank


WIDGETS: dict[FieldKind, str] = {
    FieldKind.TEXT: "text_input",
    FieldKind.NUMBER: "number_input",
    FieldKind.SELECT: "selectbox",
}


class FormInput(BaseModel):
    """One input of a rendered form."""

    field_id: Optional[int] = None
    key: str
    label: str
    kind: FieldKind
    widget: str
    options: list[str] = Field(default_factory=list)
    value: Any = None
    is_core: bool = False


class SchemaBoundForm:
    """
    A form bound to one field list.

    Args:
        fields: Field definitions to render (disabled ones are skipped)
        categories: Choices offered to SELECT fields
    """

    def __init__(self, fields: list[FieldDefinition], categories: list[str]):
        self.fields = [f for f in sort_fields(fields) if f.is_enabled]
        self.categories = list(categories)

    @property
    def keys(self) -> list[str]:
        return [f.key for f in self.fields]

    def inputs(self, values: Optional[Mapping[str, Any]] = None) -> list[FormInput]:
        """Input descriptors in display order, prefilled from `values`."""
        values = values or {}
        inputs = []
        for field in self.fields:
            options = list(self.categories) if field.kind == FieldKind.SELECT else []
            value = values.get(field.key)
            # keep a stored category selectable after it left the list
            if options and not is_blank(value) and value not in options:
                options.append(str(value))
            inputs.append(FormInput(
                field_id=field.id,
                key=field.key,
                label=field.label,
                kind=field.kind,
                widget=WIDGETS[field.kind],
                options=options,
                value=value,
                is_core=field.is_core,
            ))
        return inputs

    def render_record(self, flat: Mapping[str, Any]) -> list[tuple[str, Any]]:
        """(label, value) pairs for display, skipping absent or empty values."""
        return [
            (field.label, flat[field.key])
            for field in self.fields
            if not is_blank(flat.get(field.key))
        ]

    def collect(self, values: Mapping[str, Any]) -> dict[str, Any]:
        """Flat submission holding only the keys this form renders."""
        return {key: values.get(key) for key in self.keys if key in values}
