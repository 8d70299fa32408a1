"""
Budget Period Service

Manages each owner's budget periods and the single active one.

The active period is a selector with one transition, `activate`.
Callers never toggle `is_active` directly; the storage layer performs
deactivate-all + activate-one as one atomic switch.
"""

from datetime import date
from typing import Any, Optional
from uuid import UUID

import structlog

from ledgerforms.models.budget import (
    MAX_PERIOD_NAME_LENGTH,
    BudgetPeriod,
    DateRange,
    PeriodType,
    default_periods_for,
)
from ledgerforms.services.storage import (
    BudgetPeriodStorageInterface,
    ConflictError,
    NotFoundError,
)
from ledgerforms.validation import (
    ValidationError,
    is_blank,
    parse_occurred_on,
    require_label,
)

logger = structlog.get_logger(__name__)


class BudgetPeriodService:
    """Budget periods for every owner, scoped by owner."""

    def __init__(self, storage: BudgetPeriodStorageInterface):
        self._storage = storage

    async def ensure_default_periods(self, owner: str) -> bool:
        """
        Seed Daily, Weekly, Monthly (active) and Yearly for a new owner.

        Returns:
            True if this call inserted them
        """
        if await self._storage.count_periods(owner) > 0:
            return False

        try:
            await self._storage.insert_periods(default_periods_for(owner))
        except ConflictError:
            logger.info("period_defaults_already_seeded", owner=owner)
            return False

        logger.info("period_defaults_seeded", owner=owner)
        return True

    async def list_periods(self, owner: str) -> list[BudgetPeriod]:
        await self.ensure_default_periods(owner)
        return await self._storage.list_periods(owner)

    async def get(self, owner: str, period_id: UUID) -> BudgetPeriod:
        period = await self._storage.get_period(owner, period_id)
        if period is None:
            raise NotFoundError(f"Budget period not found: {period_id}")
        return period

    async def create_custom(
        self,
        owner: str,
        name: Any,
        start: Any,
        end: Any,
    ) -> BudgetPeriod:
        """
        Add a custom period with two explicit dates.

        Raises:
            ValidationError: Empty or over-long name, missing or
                unordered dates, or a name the owner already uses
        """
        name = require_label(name, MAX_PERIOD_NAME_LENGTH, field="name")
        if is_blank(start) or is_blank(end):
            raise ValidationError("start_date", "Custom periods need a start and an end date")

        start_date = parse_occurred_on(start, field="start_date")
        end_date = parse_occurred_on(end, field="end_date")
        if end_date < start_date:
            raise ValidationError("end_date", "End date cannot be before start date")

        await self.ensure_default_periods(owner)

        period = BudgetPeriod(
            owner=owner,
            name=name,
            period_type=PeriodType.CUSTOM,
            start_date=start_date,
            end_date=end_date,
            is_active=False,
        )
        try:
            created = await self._storage.insert_periods([period])
        except ConflictError:
            raise ValidationError("name", f"A period named '{period.name}' already exists")
        return created[0]

    async def activate(self, owner: str, period_id: UUID) -> BudgetPeriod:
        """
        Make one period the owner's active period.

        Raises:
            NotFoundError: If the period does not exist under `owner`
            StorageError: If the switch failed (nothing changed)
        """
        return await self._storage.switch_active_period(owner, period_id)

    async def delete(self, owner: str, period_id: UUID) -> Optional[UUID]:
        """
        Delete a custom period.

        Deleting the active period activates the owner's monthly period
        in the same transaction.

        Returns:
            Id of the period activated instead, or None

        Raises:
            NotFoundError: If the period does not exist under `owner`
            ValidationError: If the period is a built-in one
        """
        period = await self.get(owner, period_id)
        if not period.is_custom:
            raise ValidationError("period", "Built-in periods cannot be deleted")

        fallback_id = None
        if period.is_active:
            fallback = await self._find_type(owner, PeriodType.MONTHLY)
            fallback_id = fallback.id if fallback else None

        if not await self._storage.delete_period(owner, period_id, activate_instead=fallback_id):
            raise NotFoundError(f"Budget period not found: {period_id}")
        return fallback_id

    async def _find_type(self, owner: str, period_type: PeriodType) -> Optional[BudgetPeriod]:
        for period in await self._storage.list_periods(owner):
            if period.period_type == period_type:
                return period
        return None

    async def active_period(self, owner: str) -> Optional[BudgetPeriod]:
        await self.ensure_default_periods(owner)
        return await self._storage.get_active_period(owner)

    async def active_range(self, owner: str, today: Optional[date] = None) -> Optional[DateRange]:
        """Date range of the active period, or None if there is none."""
        period = await self.active_period(owner)
        if period is None:
            return None
        return period.date_range(today or date.today())
