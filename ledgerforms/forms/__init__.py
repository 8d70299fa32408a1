"""Form rendering package."""

from ledgerforms.forms.schema_form import WIDGETS, FormInput, SchemaBoundForm

__all__ = ["WIDGETS", "FormInput", "SchemaBoundForm"]
