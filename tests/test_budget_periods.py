"""
Tests for budget periods and the atomic active-period switch.
"""

import asyncio

import pytest
from datetime import date

from ledgerforms.budget import BudgetPeriodService
from ledgerforms.models.budget import PeriodType
from ledgerforms.services.storage import InMemoryStore, NotFoundError, StorageError
from ledgerforms.validation import ValidationError


class FailingSwitchStore(InMemoryStore):
    """Fails between deactivate-all and activate-one."""

    def _activate(self, period_id):
        raise RuntimeError("write failed mid-switch")


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def service(store):
    return BudgetPeriodService(store)


async def _by_type(service, owner, period_type):
    for period in await service.list_periods(owner):
        if period.period_type == period_type:
            return period
    raise AssertionError(f"no {period_type} period")


async def _active_ids(store, owner):
    return [p.id for p in await store.list_periods(owner) if p.is_active]


class TestDefaults:

    @pytest.mark.asyncio
    async def test_seeds_four_with_monthly_active(self, service):
        periods = await service.list_periods("alice")
        assert [p.name for p in periods] == ["Daily", "Weekly", "Monthly", "Yearly"]
        active = await service.active_period("alice")
        assert active.period_type == PeriodType.MONTHLY

    @pytest.mark.asyncio
    async def test_concurrent_seeding_once(self, service, store):
        results = await asyncio.gather(
            service.ensure_default_periods("alice"),
            service.ensure_default_periods("alice"),
        )
        assert sorted(results) == [False, True]
        assert await store.count_periods("alice") == 4

    @pytest.mark.asyncio
    async def test_active_range(self, service):
        date_range = await service.active_range("alice", today=date(2024, 2, 10))
        assert (date_range.start, date_range.end) == ("2024-02-01", "2024-02-29")


class TestCustomPeriods:

    @pytest.mark.asyncio
    async def test_create_custom(self, service):
        period = await service.create_custom("alice", "Holiday", "2024-07-01", date(2024, 7, 14))
        assert period.is_custom
        assert not period.is_active
        assert period.date_range().end == "2024-07-14"

    @pytest.mark.asyncio
    async def test_reversed_dates_rejected(self, service):
        with pytest.raises(ValidationError) as exc_info:
            await service.create_custom("alice", "Bad", "2024-07-10", "2024-07-01")
        assert exc_info.value.field == "end_date"

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.create_custom("alice", "  ", "2024-07-01", "2024-07-02")

    @pytest.mark.asyncio
    async def test_long_name_rejected(self, service):
        with pytest.raises(ValidationError) as exc_info:
            await service.create_custom("alice", "x" * 101, "2024-07-01", "2024-07-02")
        assert exc_info.value.field == "name"

    @pytest.mark.asyncio
    async def test_name_at_limit_accepted(self, service):
        period = await service.create_custom("alice", "x" * 100, "2024-07-01", "2024-07-02")
        assert len(period.name) == 100

    @pytest.mark.asyncio
    async def test_missing_dates_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.create_custom("alice", "Trip", None, "2024-07-02")

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, service):
        """Names are unique per owner, ignoring case."""
        await service.create_custom("alice", "Trip", "2024-07-01", "2024-07-02")
        with pytest.raises(ValidationError) as exc_info:
            await service.create_custom("alice", "trip", "2024-08-01", "2024-08-02")
        assert exc_info.value.field == "name"
        # another owner may reuse it
        await service.create_custom("bob", "Trip", "2024-07-01", "2024-07-02")

    @pytest.mark.asyncio
    async def test_builtin_cannot_be_deleted(self, service):
        weekly = await _by_type(service, "alice", PeriodType.WEEKLY)
        with pytest.raises(ValidationError):
            await service.delete("alice", weekly.id)

    @pytest.mark.asyncio
    async def test_delete_active_custom_falls_back_to_monthly(self, service, store):
        trip = await service.create_custom("alice", "Trip", "2024-07-01", "2024-07-02")
        await service.activate("alice", trip.id)

        fallback_id = await service.delete("alice", trip.id)

        monthly = await _by_type(service, "alice", PeriodType.MONTHLY)
        assert fallback_id == monthly.id
        assert await _active_ids(store, "alice") == [monthly.id]

    @pytest.mark.asyncio
    async def test_delete_inactive_custom(self, service, store):
        trip = await service.create_custom("alice", "Trip", "2024-07-01", "2024-07-02")
        assert await service.delete("alice", trip.id) is None
        assert len(await _active_ids(store, "alice")) == 1

    @pytest.mark.asyncio
    async def test_delete_other_owners_period(self, service):
        trip = await service.create_custom("alice", "Trip", "2024-07-01", "2024-07-02")
        with pytest.raises(NotFoundError):
            await service.delete("bob", trip.id)


class TestActivate:
    """Tests for the atomic switch."""

    @pytest.mark.asyncio
    async def test_switch(self, service, store):
        weekly = await _by_type(service, "alice", PeriodType.WEEKLY)

        activated = await service.activate("alice", weekly.id)

        assert activated.is_active
        assert await _active_ids(store, "alice") == [weekly.id]

    @pytest.mark.asyncio
    async def test_switch_is_per_owner(self, service, store):
        await service.ensure_default_periods("bob")
        bob_before = await _active_ids(store, "bob")
        yearly = await _by_type(service, "alice", PeriodType.YEARLY)

        await service.activate("alice", yearly.id)

        assert await _active_ids(store, "bob") == bob_before

    @pytest.mark.asyncio
    async def test_unknown_period(self, service, store):
        await service.ensure_default_periods("alice")
        before = await _active_ids(store, "alice")
        weekly = await _by_type(service, "alice", PeriodType.WEEKLY)

        with pytest.raises(NotFoundError):
            await service.activate("bob", weekly.id)
        assert await _active_ids(store, "alice") == before

    @pytest.mark.asyncio
    async def test_failure_mid_switch_keeps_previous(self):
        """A failed switch rolls back; A stays active."""
        store = FailingSwitchStore()
        service = BudgetPeriodService(store)
        monthly = await _by_type(service, "alice", PeriodType.MONTHLY)
        daily = await _by_type(service, "alice", PeriodType.DAILY)

        with pytest.raises(StorageError):
            await service.activate("alice", daily.id)

        assert await _active_ids(store, "alice") == [monthly.id]

    @pytest.mark.asyncio
    async def test_readers_never_see_zero_active(self, service, store):
        """Concurrent readers always find exactly one active period."""
        periods = await service.list_periods("alice")
        observed = []

        async def reader():
            for _ in range(20):
                observed.append(len(await _active_ids(store, "alice")))
                active = await store.get_active_period("alice")
                observed.append(0 if active is None else 1)

        async def switcher():
            for period in periods * 3:
                await service.activate("alice", period.id)

        await asyncio.gather(reader(), switcher(), reader())

        assert observed
        assert set(observed) == {1}

    @pytest.mark.asyncio
    async def test_readers_during_failed_switch(self):
        store = FailingSwitchStore()
        service = BudgetPeriodService(store)
        daily = await _by_type(service, "alice", PeriodType.DAILY)
        observed = []

        async def reader():
            for _ in range(10):
                observed.append(len(await _active_ids(store, "alice")))

        async def switcher():
            with pytest.raises(StorageError):
                await service.activate("alice", daily.id)

        await asyncio.gather(reader(), switcher())

        assert set(observed) == {1}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
