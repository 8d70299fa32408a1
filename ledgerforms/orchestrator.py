"""
Main Orchestrator for Ledgerforms

This module ties together all the components and defines the
end-to-end flows for:
1. Field schema (seed → list → create / relabel / reorder / retire)
2. Records (submission → encode → persist → decode for display)
3. Budget periods (seed → switch active → filter records)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No record is written without a valid amount
- Every operation is scoped by owner; foreign ids look like missing ids
- Every change is audited

Front ends talk only to these flows, never to storage directly.
"""

from datetime import date
from typing import Any, Mapping, Optional
from uuid import UUID

import structlog

from ledgerforms.audit import AuditLogger, configure_logging, create_correlation_id
from ledgerforms.budget import BudgetPeriodService
from ledgerforms.catalog import FieldCatalog, ProtectedFieldError
from ledgerforms.config import get_settings
from ledgerforms.models.budget import BudgetPeriod, DateRange, canonical_date
from ledgerforms.models.field import FieldDefinition, FieldKind, RecordContext
from ledgerforms.models.record import OCCURRED_ON_KEY, Record
from ledgerforms.records import RecordComposer
from ledgerforms.services.storage import (
    InMemoryStore,
    NotFoundError,
    PostgresAuditStorage,
    PostgresBudgetPeriodStorage,
    PostgresClient,
    PostgresFieldStorage,
    PostgresRecordStorage,
    RecordStorageInterface,
    StorageError,
)
from ledgerforms.validation import ValidationError, is_blank, parse_occurred_on

logger = structlog.get_logger(__name__)


class FieldSchemaFlow:
    """
    Orchestrates the per-owner form schema.

    Flow:
    1. First visit → seed the core fields (race-safe, audited once)
    2. List → enabled fields in display order
    3. Edit → create / relabel / reorder / retire / restore

    The amount field can be relabeled but never retired.
    """

    def __init__(
        self,
        catalog: FieldCatalog,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._catalog = catalog
        self._audit_logger = audit_logger

    async def _ensure_defaults(
        self,
        owner: str,
        context: RecordContext,
        correlation_id: UUID,
    ) -> None:
        seeded = await self._catalog.ensure_defaults(owner, context)
        if seeded and self._audit_logger:
            fields = await self._catalog.list_all(owner, context)
            await self._audit_logger.log_field_defaults_seeded(
                owner=owner,
                context=context.value,
                keys=[f.key for f in fields],
                correlation_id=correlation_id,
            )

    async def get_active_fields(
        self,
        owner: str,
        context: RecordContext,
        correlation_id: Optional[UUID] = None,
    ) -> list[FieldDefinition]:
        """Enabled fields in display order, seeding defaults on first use."""
        correlation_id = correlation_id or create_correlation_id()
        await self._ensure_defaults(owner, context, correlation_id)
        return await self._catalog.list_active(owner, context)

    async def get_all_fields(
        self,
        owner: str,
        context: RecordContext,
        correlation_id: Optional[UUID] = None,
    ) -> list[FieldDefinition]:
        """Every field including disabled ones."""
        correlation_id = correlation_id or create_correlation_id()
        await self._ensure_defaults(owner, context, correlation_id)
        return await self._catalog.list_all(owner, context)

    async def create_field(
        self,
        owner: str,
        context: RecordContext,
        label: Any,
        kind: FieldKind = FieldKind.TEXT,
        correlation_id: Optional[UUID] = None,
    ) -> FieldDefinition:
        """
        Add a user field at the end of the form.

        Raises:
            ValidationError: If the label is empty or too long
        """
        correlation_id = correlation_id or create_correlation_id()
        await self._ensure_defaults(owner, context, correlation_id)

        try:
            field = await self._catalog.create(owner, context, label, kind)
        except ValidationError as e:
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    owner=owner,
                    field=e.field,
                    message=e.message,
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_field_created(
                owner=owner,
                field_id=field.id,
                key=field.key,
                label=field.label,
                correlation_id=correlation_id,
            )
        return field

    async def relabel_field(
        self,
        owner: str,
        field_id: int,
        label: Any,
        correlation_id: Optional[UUID] = None,
    ) -> FieldDefinition:
        """
        Rename a field. Its key, and so its stored data, is unchanged.

        Raises:
            NotFoundError: If the field does not exist under `owner`
            ValidationError: If the label is empty or too long
        """
        correlation_id = correlation_id or create_correlation_id()
        old_label = (await self._catalog.get(owner, field_id)).label
        field = await self._catalog.relabel(owner, field_id, label)

        if self._audit_logger:
            await self._audit_logger.log_field_relabeled(
                owner=owner,
                field_id=field_id,
                old_label=old_label,
                new_label=field.label,
                correlation_id=correlation_id,
            )
        return field

    async def reorder_fields(
        self,
        owner: str,
        context: RecordContext,
        ordered_ids: list[Any],
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Persist a new field order. Foreign or unknown ids are ignored.

        Returns:
            Number of fields whose order was rewritten
        """
        correlation_id = correlation_id or create_correlation_id()
        updated = await self._catalog.reorder(owner, context, ordered_ids)

        if self._audit_logger:
            await self._audit_logger.log_fields_reordered(
                owner=owner,
                context=context.value,
                ordered_ids=[str(i) for i in ordered_ids],
                updated=updated,
                correlation_id=correlation_id,
            )
        return updated

    async def retire_field(
        self,
        owner: str,
        field_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> FieldDefinition:
        """
        Remove a field from the form.

        Raises:
            ProtectedFieldError: If the field is the amount field
            NotFoundError: If the field does not exist under `owner`
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            field = await self._catalog.retire(owner, field_id)
        except ProtectedFieldError:
            if self._audit_logger:
                await self._audit_logger.log_protected_field_blocked(
                    owner=owner,
                    field_id=field_id,
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_field_retired(
                owner=owner,
                field_id=field_id,
                key=field.key,
                hard_deleted=not field.is_core,
                correlation_id=correlation_id,
            )
        return field

    async def restore_field(
        self,
        owner: str,
        field_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> FieldDefinition:
        """Bring a retired core field back onto the form."""
        correlation_id = correlation_id or create_correlation_id()
        field = await self._catalog.restore(owner, field_id)

        if self._audit_logger:
            await self._audit_logger.log_field_restored(
                owner=owner,
                field_id=field_id,
                key=field.key,
                correlation_id=correlation_id,
            )
        return field


class BudgetPeriodFlow:
    """
    Orchestrates budget periods.

    The active period can only change through `activate_period`, which
    storage performs as one all-or-nothing switch.
    """

    def __init__(
        self,
        service: BudgetPeriodService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._service = service
        self._audit_logger = audit_logger

    async def _ensure_defaults(self, owner: str, correlation_id: UUID) -> None:
        seeded = await self._service.ensure_default_periods(owner)
        if seeded and self._audit_logger:
            periods = await self._service.list_periods(owner)
            await self._audit_logger.log_period_defaults_seeded(
                owner=owner,
                names=[p.name for p in periods],
                correlation_id=correlation_id,
            )

    async def list_periods(
        self,
        owner: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[BudgetPeriod]:
        correlation_id = correlation_id or create_correlation_id()
        await self._ensure_defaults(owner, correlation_id)
        return await self._service.list_periods(owner)

    async def active_period(
        self,
        owner: str,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[BudgetPeriod]:
        correlation_id = correlation_id or create_correlation_id()
        await self._ensure_defaults(owner, correlation_id)
        return await self._service.active_period(owner)

    async def active_range(
        self,
        owner: str,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[DateRange]:
        correlation_id = correlation_id or create_correlation_id()
        await self._ensure_defaults(owner, correlation_id)
        return await self._service.active_range(owner, today)

    async def create_custom_period(
        self,
        owner: str,
        name: Any,
        start: Any,
        end: Any,
        correlation_id: Optional[UUID] = None,
    ) -> BudgetPeriod:
        """
        Add a custom date range.

        Raises:
            ValidationError: Bad name or dates, or a duplicate name
        """
        correlation_id = correlation_id or create_correlation_id()
        await self._ensure_defaults(owner, correlation_id)

        try:
            period = await self._service.create_custom(owner, name, start, end)
        except ValidationError as e:
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    owner=owner,
                    field=e.field,
                    message=e.message,
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_period_created(
                owner=owner,
                period_id=period.id,
                name=period.name,
                correlation_id=correlation_id,
            )
        return period

    async def activate_period(
        self,
        owner: str,
        period_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> BudgetPeriod:
        """
        Switch the active period.

        Raises:
            NotFoundError: If the period does not exist under `owner`
            StorageError: If the switch failed; the previous period
                stays active
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            period = await self._service.activate(owner, period_id)
        except NotFoundError:
            raise
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_save_failed(
                    owner=owner,
                    operation="activate_period",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_period_activated(
                owner=owner,
                period_id=period.id,
                name=period.name,
                correlation_id=correlation_id,
            )
        return period

    async def delete_period(
        self,
        owner: str,
        period_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[UUID]:
        """
        Delete a custom period.

        Returns:
            Id of the period activated in its place, if it was active
        """
        correlation_id = correlation_id or create_correlation_id()
        fallback_id = await self._service.delete(owner, period_id)

        if self._audit_logger:
            await self._audit_logger.log_period_deleted(
                owner=owner,
                period_id=period_id,
                fallback_id=fallback_id,
                correlation_id=correlation_id,
            )
        return fallback_id


class RecordFlow:
    """
    Orchestrates expense and income records.

    Flow:
    1. Submit → encode (amount validated before any side effect)
    2. Persist → owner-scoped write
    3. Display → decode against the current field list

    Updates replace the whole record; they never merge attributes.
    """

    def __init__(
        self,
        record_storage: RecordStorageInterface,
        schema_flow: FieldSchemaFlow,
        composer: Optional[RecordComposer] = None,
        period_flow: Optional[BudgetPeriodFlow] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = record_storage
        self._schema_flow = schema_flow
        self._composer = composer or RecordComposer(
            get_settings().app.default_expense_category
        )
        self._period_flow = period_flow
        self._audit_logger = audit_logger

    @property
    def composer(self) -> RecordComposer:
        return self._composer

    async def _encode(
        self,
        owner: str,
        correlation_id: UUID,
        encode,
        *args,
    ) -> Record:
        try:
            return encode(*args)
        except ValidationError as e:
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    owner=owner,
                    field=e.field,
                    message=e.message,
                    correlation_id=correlation_id,
                )
            raise

    async def _log_save_failed(
        self,
        owner: str,
        operation: str,
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_save_failed(
                owner=owner,
                operation=operation,
                error_message=str(error),
                correlation_id=correlation_id,
            )

    async def create_record(
        self,
        owner: str,
        context: RecordContext,
        submission: Mapping[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Record:
        """
        Compose and save a new record.

        Raises:
            ValidationError: On a bad or missing amount or date
            StorageError: If the write failed
        """
        correlation_id = correlation_id or create_correlation_id()
        record = await self._encode(
            owner, correlation_id,
            self._composer.encode, owner, context, submission,
        )

        try:
            saved = await self._storage.save_record(record)
        except StorageError as e:
            await self._log_save_failed(owner, "create_record", e, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_record_saved(
                owner=owner,
                record_id=saved.id,
                context=context.value,
                amount=str(saved.amount),
                correlation_id=correlation_id,
            )
        return saved

    async def get_record(
        self,
        owner: str,
        context: RecordContext,
        record_id: UUID,
    ) -> Record:
        """
        Raises:
            NotFoundError: If no such record exists under `owner`
        """
        record = await self._storage.get_record(owner, context, record_id)
        if record is None:
            raise NotFoundError(f"Record not found: {record_id}")
        return record

    async def update_record(
        self,
        owner: str,
        context: RecordContext,
        record_id: UUID,
        submission: Mapping[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Record:
        """
        Replace a record's values with a new submission.

        Raises:
            NotFoundError: If no such record exists under `owner`
            ValidationError: On a bad or missing amount or date
        """
        correlation_id = correlation_id or create_correlation_id()
        existing = await self.get_record(owner, context, record_id)
        record = await self._encode(
            owner, correlation_id,
            self._composer.apply, existing, submission,
        )

        try:
            saved = await self._storage.update_record(record)
        except NotFoundError:
            raise
        except StorageError as e:
            await self._log_save_failed(owner, "update_record", e, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_record_saved(
                owner=owner,
                record_id=saved.id,
                context=context.value,
                amount=str(saved.amount),
                is_update=True,
                correlation_id=correlation_id,
            )
        return saved

    async def delete_record(
        self,
        owner: str,
        context: RecordContext,
        record_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Raises:
            NotFoundError: If no such record exists under `owner`
        """
        correlation_id = correlation_id or create_correlation_id()
        if not await self._storage.delete_record(owner, context, record_id):
            raise NotFoundError(f"Record not found: {record_id}")

        if self._audit_logger:
            await self._audit_logger.log_record_deleted(
                owner=owner,
                record_id=record_id,
                context=context.value,
                correlation_id=correlation_id,
            )

    async def edit_form(
        self,
        owner: str,
        context: RecordContext,
        record_id: UUID,
    ) -> dict[str, Any]:
        """Current values of a record keyed by the active fields, plus its date."""
        record = await self.get_record(owner, context, record_id)
        fields = await self._schema_flow.get_active_fields(owner, context)
        return self._composer.edit_values(record, fields)

    async def duplicate_record(
        self,
        owner: str,
        context: RecordContext,
        record_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Record:
        """Save a copy of a record, dated today."""
        record = await self.get_record(owner, context, record_id)
        submission = self._composer.flatten(record)
        submission.pop(OCCURRED_ON_KEY, None)
        return await self.create_record(owner, context, submission, correlation_id)

    async def list_records(
        self,
        owner: str,
        context: RecordContext,
        date_from: Any = None,
        date_to: Any = None,
    ) -> list[Record]:
        """
        Records newest first, optionally within an inclusive date range.

        Bounds are compared as canonical YYYY-MM-DD strings.

        Raises:
            ValidationError: If a bound is not a valid date
        """
        start = None if is_blank(date_from) else canonical_date(
            parse_occurred_on(date_from, field="date_from")
        )
        end = None if is_blank(date_to) else canonical_date(
            parse_occurred_on(date_to, field="date_to")
        )
        return await self._storage.list_records(owner, context, start, end)

    async def list_records_in_active_period(
        self,
        owner: str,
        context: RecordContext,
        today: Optional[date] = None,
    ) -> list[Record]:
        """Records within the owner's active budget period."""
        if self._period_flow is None:
            return await self.list_records(owner, context)

        date_range = await self._period_flow.active_range(owner, today)
        if date_range is None:
            return await self.list_records(owner, context)
        return await self.list_records(owner, context, date_range.start, date_range.end)


def create_app_components(
    backend: Optional[str] = None,
) -> tuple[FieldSchemaFlow, RecordFlow, BudgetPeriodFlow, Optional[PostgresClient]]:
    """
    Factory function to create all application components.

    Args:
        backend: "memory" or "postgres". Defaults to the configured
                 storage backend.

    Returns:
        (field_schema_flow, record_flow, budget_period_flow, postgres_client)

    Raises:
        StorageError: If the postgres backend is selected but the
            database cannot be reached or initialized
    """
    settings = get_settings().app
    configure_logging(settings.log_level)
    backend = (backend or settings.storage_backend).lower()

    client = None

    if backend == "postgres":
        client = PostgresClient()
        try:
            client.create_tables()
        except StorageError as e:
            logger.error("postgres_unavailable", error=str(e))
            raise
        field_storage = PostgresFieldStorage(client)
        record_storage = PostgresRecordStorage(client)
        period_storage = PostgresBudgetPeriodStorage(client)
        audit_storage = PostgresAuditStorage(client)
    else:
        store = InMemoryStore()
        field_storage = record_storage = period_storage = audit_storage = store

    audit_logger = AuditLogger(audit_storage)

    catalog = FieldCatalog(field_storage, settings.max_field_label_length)
    schema_flow = FieldSchemaFlow(catalog, audit_logger=audit_logger)
    period_flow = BudgetPeriodFlow(
        BudgetPeriodService(period_storage),
        audit_logger=audit_logger,
    )
    record_flow = RecordFlow(
        record_storage,
        schema_flow,
        composer=RecordComposer(settings.default_expense_category),
        period_flow=period_flow,
        audit_logger=audit_logger,
    )

    return schema_flow, record_flow, period_flow, client
