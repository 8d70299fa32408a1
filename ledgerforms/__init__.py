"""
Ledgerforms - Source Package

The dynamic record-schema engine behind a personal finance tracker:
per-user form fields for expenses and incomes, the records built from
them, and the budget periods used to filter those records.

DESIGN PRINCIPLES:
1. The amount field is always there
2. Historical records are never migrated
3. Field order belongs to the user, not to the database
4. Every read and write is scoped by owner
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledgerforms Team"
