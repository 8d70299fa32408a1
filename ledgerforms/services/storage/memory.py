"""
In-Memory Storage Implementation

Backs the `memory` storage backend and the test suite.

It honors the same guarantees as the PostgreSQL backend:
- (owner, context, key) is unique across field definitions
- (owner, name) is unique across budget periods
- batch inserts and the active-period switch are all-or-nothing

Every call yields to the event loop once before touching data, so
concurrent callers interleave the way they would around real I/O.
Reads and mutations then run synchronously under one threading.Lock,
which plays the role of the database's transaction isolation. The lock
is never held across an await, so one store can be shared by sessions
running on separate threads and event loops.
"""

import asyncio
import itertools
import threading
from datetime import datetime
from typing import Optional
from uuid import UUID

from ledgerforms.models.audit import AuditEvent
from ledgerforms.models.budget import BudgetPeriod, canonical_date
from ledgerforms.models.field import FieldDefinition, RecordContext, sort_fields
from ledgerforms.models.record import Record
from ledgerforms.services.storage.interface import (
    AuditStorageInterface,
    BudgetPeriodStorageInterface,
    ConflictError,
    FieldStorageInterface,
    NotFoundError,
    RecordStorageInterface,
    StorageError,
)


class InMemoryStore(
    FieldStorageInterface,
    RecordStorageInterface,
    BudgetPeriodStorageInterface,
    AuditStorageInterface,
):
    """Process-local store implementing every storage interface."""

    def __init__(self):
        self._lock = threading.Lock()
        self._field_ids = itertools.count(1)
        self._fields: dict[int, FieldDefinition] = {}
        self._records: dict[UUID, Record] = {}
        self._periods: dict[UUID, BudgetPeriod] = {}
        self._events: list[AuditEvent] = []

    async def _io(self) -> None:
        await asyncio.sleep(0)

    # -------------------------------------------------------------------------
    # Field definitions
    # -------------------------------------------------------------------------

    def _owned_fields(self, owner: str, context: RecordContext) -> list[FieldDefinition]:
        return [
            f for f in self._fields.values()
            if f.owner == owner and f.context == context
        ]

    async def count_fields(self, owner: str, context: RecordContext) -> int:
        await self._io()
        with self._lock:
            return len(self._owned_fields(owner, context))

    async def insert_fields(
        self,
        fields: list[FieldDefinition],
    ) -> list[FieldDefinition]:
        await self._io()
        with self._lock:
            taken = {(f.owner, f.context, f.key) for f in self._fields.values()}
            for field in fields:
                identity = (field.owner, field.context, field.key)
                if identity in taken:
                    raise ConflictError(
                        f"Field key already exists: {field.owner}/{field.context.value}/{field.key}"
                    )
                taken.add(identity)

            inserted = []
            for field in fields:
                stored = field.model_copy(update={"id": next(self._field_ids)}, deep=True)
                self._fields[stored.id] = stored
                inserted.append(stored.model_copy(deep=True))
            return inserted

    async def get_field(
        self,
        owner: str,
        field_id: int,
    ) -> Optional[FieldDefinition]:
        await self._io()
        with self._lock:
            field = self._fields.get(field_id)
            if field is None or field.owner != owner:
                return None
            return field.model_copy(deep=True)

    async def list_fields(
        self,
        owner: str,
        context: RecordContext,
        include_disabled: bool = False,
    ) -> list[FieldDefinition]:
        await self._io()
        with self._lock:
            fields = [
                f.model_copy(deep=True)
                for f in self._owned_fields(owner, context)
                if include_disabled or f.is_enabled
            ]
        return sort_fields(fields)

    async def max_order(self, owner: str, context: RecordContext) -> Optional[int]:
        await self._io()
        with self._lock:
            orders = [f.order for f in self._owned_fields(owner, context)]
            return max(orders) if orders else None

    async def set_field_orders(
        self,
        owner: str,
        context: RecordContext,
        ranks: dict[int, int],
    ) -> int:
        await self._io()
        with self._lock:
            updated = 0
            for field_id, rank in ranks.items():
                field = self._fields.get(field_id)
                if field is None or field.owner != owner or field.context != context:
                    continue
                self._fields[field_id] = field.model_copy(update={"order": rank})
                updated += 1
            return updated

    async def update_field(self, field: FieldDefinition) -> FieldDefinition:
        await self._io()
        with self._lock:
            current = self._fields.get(field.id)
            if current is None or current.owner != field.owner:
                raise NotFoundError(f"Field not found: {field.id}")
            # key, context and core flag are fixed at creation
            stored = current.model_copy(update={
                "label": field.label,
                "kind": field.kind,
                "is_enabled": field.is_enabled,
            })
            self._fields[field.id] = stored
            return stored.model_copy(deep=True)

    async def delete_field(self, owner: str, field_id: int) -> bool:
        await self._io()
        with self._lock:
            field = self._fields.get(field_id)
            if field is None or field.owner != owner:
                return False
            del self._fields[field_id]
            return True

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def _find_record(
        self,
        owner: str,
        context: RecordContext,
        record_id: UUID,
    ) -> Optional[Record]:
        record = self._records.get(record_id)
        if record is None or record.owner != owner or record.context != context:
            return None
        return record

    async def save_record(self, record: Record) -> Record:
        await self._io()
        with self._lock:
            if record.id in self._records:
                raise ConflictError(f"Record already exists: {record.id}")
            self._records[record.id] = record.model_copy(deep=True)
            return record.model_copy(deep=True)

    async def get_record(
        self,
        owner: str,
        context: RecordContext,
        record_id: UUID,
    ) -> Optional[Record]:
        await self._io()
        with self._lock:
            record = self._find_record(owner, context, record_id)
            return record.model_copy(deep=True) if record else None

    async def update_record(self, record: Record) -> Record:
        await self._io()
        with self._lock:
            current = self._find_record(record.owner, record.context, record.id)
            if current is None:
                raise NotFoundError(f"Record not found: {record.id}")
            stored = current.model_copy(update={
                "amount": record.amount,
                "description": record.description,
                "category": record.category,
                "occurred_on": record.occurred_on,
                "attributes": dict(record.attributes),
                "updated_at": datetime.utcnow(),
            }, deep=True)
            self._records[record.id] = stored
            return stored.model_copy(deep=True)

    async def delete_record(
        self,
        owner: str,
        context: RecordContext,
        record_id: UUID,
    ) -> bool:
        await self._io()
        with self._lock:
            if self._find_record(owner, context, record_id) is None:
                return False
            del self._records[record_id]
            return True

    async def list_records(
        self,
        owner: str,
        context: RecordContext,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> list[Record]:
        await self._io()
        with self._lock:
            records = []
            for record in self._records.values():
                if record.owner != owner or record.context != context:
                    continue
                day = canonical_date(record.occurred_on)
                if date_from and day < date_from:
                    continue
                if date_to and day > date_to:
                    continue
                records.append(record.model_copy(deep=True))

        records.sort(key=lambda r: (r.occurred_on, r.created_at), reverse=True)
        return records

    # -------------------------------------------------------------------------
    # Budget periods
    # -------------------------------------------------------------------------

    def _owned_periods(self, owner: str) -> list[BudgetPeriod]:
        return [p for p in self._periods.values() if p.owner == owner]

    async def count_periods(self, owner: str) -> int:
        await self._io()
        with self._lock:
            return len(self._owned_periods(owner))

    async def insert_periods(
        self,
        periods: list[BudgetPeriod],
    ) -> list[BudgetPeriod]:
        await self._io()
        with self._lock:
            taken = {(p.owner, p.name.lower()) for p in self._periods.values()}
            for period in periods:
                identity = (period.owner, period.name.lower())
                if identity in taken:
                    raise ConflictError(f"Budget period already exists: {period.name}")
                taken.add(identity)

            for period in periods:
                self._periods[period.id] = period.model_copy(deep=True)
            return [p.model_copy(deep=True) for p in periods]

    async def get_period(self, owner: str, period_id: UUID) -> Optional[BudgetPeriod]:
        await self._io()
        with self._lock:
            period = self._periods.get(period_id)
            if period is None or period.owner != owner:
                return None
            return period.model_copy(deep=True)

    async def list_periods(self, owner: str) -> list[BudgetPeriod]:
        await self._io()
        with self._lock:
            periods = [p.model_copy(deep=True) for p in self._owned_periods(owner)]
        periods.sort(key=lambda p: p.created_at)
        return periods

    async def get_active_period(self, owner: str) -> Optional[BudgetPeriod]:
        await self._io()
        with self._lock:
            for period in self._owned_periods(owner):
                if period.is_active:
                    return period.model_copy(deep=True)
            return None

    def _set_active(self, period_id: UUID, active: bool) -> None:
        period = self._periods[period_id]
        self._periods[period_id] = period.model_copy(update={"is_active": active})

    def _activate(self, period_id: UUID) -> None:
        self._set_active(period_id, True)

    def _switch_locked(self, owner: str, period_id: UUID) -> None:
        """Deactivate-all then activate-one; caller holds the lock."""
        snapshot = {p.id: p.is_active for p in self._owned_periods(owner)}
        try:
            for pid in snapshot:
                self._set_active(pid, False)
            self._activate(period_id)
        except Exception as e:
            for pid, was_active in snapshot.items():
                self._set_active(pid, was_active)
            raise StorageError(f"Failed to switch active period: {e}") from e

    async def switch_active_period(
        self,
        owner: str,
        period_id: UUID,
    ) -> BudgetPeriod:
        await self._io()
        with self._lock:
            target = self._periods.get(period_id)
            if target is None or target.owner != owner:
                raise NotFoundError(f"Budget period not found: {period_id}")
            self._switch_locked(owner, period_id)
            return self._periods[period_id].model_copy(deep=True)

    async def delete_period(
        self,
        owner: str,
        period_id: UUID,
        activate_instead: Optional[UUID] = None,
    ) -> bool:
        await self._io()
        with self._lock:
            period = self._periods.get(period_id)
            if period is None or period.owner != owner:
                return False
            if activate_instead is not None:
                fallback = self._periods.get(activate_instead)
                if fallback is None or fallback.owner != owner:
                    raise NotFoundError(f"Budget period not found: {activate_instead}")
                self._switch_locked(owner, activate_instead)
            del self._periods[period_id]
            return True

    # -------------------------------------------------------------------------
    # Audit log
    # -------------------------------------------------------------------------

    async def append_event(self, event: AuditEvent) -> bool:
        await self._io()
        with self._lock:
            self._events.append(event.model_copy(deep=True))
            return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        await self._io()
        with self._lock:
            events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        owner: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        await self._io()
        with self._lock:
            events = [e for e in self._events if e.owner == owner]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
