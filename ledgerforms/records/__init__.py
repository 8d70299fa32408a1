"""Record composition package."""

from ledgerforms.records.composer import RecordComposer

__all__ = ["RecordComposer"]
