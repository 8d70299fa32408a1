"""Budget period package."""

from ledgerforms.budget.periods import BudgetPeriodService

__all__ = ["BudgetPeriodService"]
