"""
Audit Logger

DESIGN DECISION: Every change to a user's schema, records or budget
periods is logged. Field definitions have no version history, so the
audit trail is the only record of how a catalog evolved.

The audit logger:
- Is async to match the storage layer
- Gracefully handles failures (doesn't break the operation if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledgerforms.models.audit import AuditEvent, AuditEventBuilder
from ledgerforms.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route stdlib logging (and so structlog) to stdout at `level`."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("ledgerforms.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_field_defaults_seeded(
        self,
        owner: str,
        context: str,
        keys: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.field_defaults_seeded(
            owner=owner,
            context=context,
            keys=keys,
            correlation_id=correlation_id,
        ))

    async def log_field_created(
        self,
        owner: str,
        field_id: int,
        key: str,
        label: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.field_created(
            owner=owner,
            field_id=field_id,
            key=key,
            label=label,
            correlation_id=correlation_id,
        ))

    async def log_field_relabeled(
        self,
        owner: str,
        field_id: int,
        old_label: str,
        new_label: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.field_relabeled(
            owner=owner,
            field_id=field_id,
            old_label=old_label,
            new_label=new_label,
            correlation_id=correlation_id,
        ))

    async def log_fields_reordered(
        self,
        owner: str,
        context: str,
        ordered_ids: list[int],
        updated: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.fields_reordered(
            owner=owner,
            context=context,
            ordered_ids=ordered_ids,
            updated=updated,
            correlation_id=correlation_id,
        ))

    async def log_field_retired(
        self,
        owner: str,
        field_id: int,
        key: str,
        hard_deleted: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.field_retired(
            owner=owner,
            field_id=field_id,
            key=key,
            hard_deleted=hard_deleted,
            correlation_id=correlation_id,
        ))

    async def log_field_restored(
        self,
        owner: str,
        field_id: int,
        key: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.field_restored(
            owner=owner,
            field_id=field_id,
            key=key,
            correlation_id=correlation_id,
        ))

    async def log_protected_field_blocked(
        self,
        owner: str,
        field_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.protected_field_blocked(
            owner=owner,
            field_id=field_id,
            correlation_id=correlation_id,
        ))

    async def log_record_saved(
        self,
        owner: str,
        record_id: UUID,
        context: str,
        amount: str,
        is_update: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.record_saved(
            owner=owner,
            record_id=record_id,
            context=context,
            amount=amount,
            is_update=is_update,
            correlation_id=correlation_id,
        ))

    async def log_record_deleted(
        self,
        owner: str,
        record_id: UUID,
        context: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.record_deleted(
            owner=owner,
            record_id=record_id,
            context=context,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        owner: str,
        field: str,
        message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.validation_failed(
            owner=owner,
            field=field,
            message=message,
            correlation_id=correlation_id,
        ))

    async def log_period_defaults_seeded(
        self,
        owner: str,
        names: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.period_defaults_seeded(
            owner=owner,
            names=names,
            correlation_id=correlation_id,
        ))

    async def log_period_created(
        self,
        owner: str,
        period_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.period_created(
            owner=owner,
            period_id=period_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_period_activated(
        self,
        owner: str,
        period_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.period_activated(
            owner=owner,
            period_id=period_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_period_deleted(
        self,
        owner: str,
        period_id: UUID,
        fallback_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.period_deleted(
            owner=owner,
            period_id=period_id,
            fallback_id=fallback_id,
            correlation_id=correlation_id,
        ))

    async def log_save_failed(
        self,
        owner: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.save_failed(
            owner=owner,
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., saving a record).
    Pass it through all subsequent operations.
    """
    return uuid4()
