"""Field catalog package."""

from ledgerforms.catalog.field_catalog import (
    FieldCatalog,
    ProtectedFieldError,
    make_field_key,
    normalize_label,
)

__all__ = [
    "FieldCatalog",
    "ProtectedFieldError",
    "make_field_key",
    "normalize_label",
]
