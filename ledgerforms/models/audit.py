"""
Audit Models for Ledgerforms

Every change to a user's schema, records or budget periods is logged.
This provides:
1. Traceability of schema evolution (fields are never versioned otherwise)
2. Debugging information when a write fails
3. A history the user can inspect

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Field catalog
    FIELD_DEFAULTS_SEEDED = "field_defaults_seeded"
    FIELD_CREATED = "field_created"
    FIELD_RELABELED = "field_relabeled"
    FIELDS_REORDERED = "fields_reordered"
    FIELD_RETIRED = "field_retired"
    FIELD_DELETED = "field_deleted"
    FIELD_RESTORED = "field_restored"
    PROTECTED_FIELD_BLOCKED = "protected_field_blocked"

    # Records
    RECORD_CREATED = "record_created"
    RECORD_UPDATED = "record_updated"
    RECORD_DELETED = "record_deleted"
    VALIDATION_FAILED = "validation_failed"

    # Budget periods
    PERIOD_DEFAULTS_SEEDED = "period_defaults_seeded"
    PERIOD_CREATED = "period_created"
    PERIOD_ACTIVATED = "period_activated"
    PERIOD_DELETED = "period_deleted"

    # System events
    SAVE_FAILED = "save_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Who and what
    owner: Optional[str] = Field(
        default=None,
        description="Owner whose data the event touched"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'field', 'record', 'period')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate the events of one user action"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner": self.owner,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> tuple:
        """
        Convert to a row for the audit_log table.

        Columns: event_id, timestamp, event_type, severity, owner,
        entity_type, entity_id, correlation_id, description,
        details_json, error_message, is_user_action
        """
        return (
            str(self.event_id),
            self.timestamp,
            self.event_type.value,
            self.severity.value,
            self.owner,
            self.entity_type,
            self.entity_id,
            str(self.correlation_id) if self.correlation_id else None,
            self.description,
            json.dumps(self.details, default=str),
            self.error_message,
            self.is_user_action,
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.field_created(owner, field_id, key, label, cid)
        event = AuditEventBuilder.record_deleted(owner, record_id, cid)
    """

    @staticmethod
    def field_defaults_seeded(
        owner: str,
        context: str,
        keys: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FIELD_DEFAULTS_SEEDED,
            owner=owner,
            entity_type="catalog",
            entity_id=context,
            correlation_id=correlation_id,
            description=f"Default {context} fields seeded",
            details={"context": context, "keys": keys},
        )

    @staticmethod
    def field_created(
        owner: str,
        field_id: int,
        key: str,
        label: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FIELD_CREATED,
            owner=owner,
            entity_type="field",
            entity_id=str(field_id),
            correlation_id=correlation_id,
            description=f"Field created: {label}",
            details={"key": key, "label": label},
            is_user_action=True,
        )

    @staticmethod
    def field_relabeled(
        owner: str,
        field_id: int,
        old_label: str,
        new_label: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FIELD_RELABELED,
            owner=owner,
            entity_type="field",
            entity_id=str(field_id),
            correlation_id=correlation_id,
            description=f"Field relabeled: {old_label} -> {new_label}",
            details={"old_label": old_label, "new_label": new_label},
            is_user_action=True,
        )

    @staticmethod
    def fields_reordered(
        owner: str,
        context: str,
        ordered_ids: list[int],
        updated: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FIELDS_REORDERED,
            owner=owner,
            entity_type="catalog",
            entity_id=context,
            correlation_id=correlation_id,
            description=f"Reordered {updated} {context} fields",
            details={"ordered_ids": ordered_ids, "updated": updated},
            is_user_action=True,
        )

    @staticmethod
    def field_retired(
        owner: str,
        field_id: int,
        key: str,
        hard_deleted: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.FIELD_DELETED
            if hard_deleted
            else AuditEventType.FIELD_RETIRED
        )
        action = "deleted" if hard_deleted else "disabled"
        return AuditEvent(
            event_type=event_type,
            owner=owner,
            entity_type="field",
            entity_id=str(field_id),
            correlation_id=correlation_id,
            description=f"Field {action}: {key}",
            details={"key": key},
            is_user_action=True,
        )

    @staticmethod
    def field_restored(
        owner: str,
        field_id: int,
        key: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FIELD_RESTORED,
            owner=owner,
            entity_type="field",
            entity_id=str(field_id),
            correlation_id=correlation_id,
            description=f"Field re-enabled: {key}",
            details={"key": key},
            is_user_action=True,
        )

    @staticmethod
    def protected_field_blocked(
        owner: str,
        field_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROTECTED_FIELD_BLOCKED,
            severity=AuditSeverity.WARNING,
            owner=owner,
            entity_type="field",
            entity_id=str(field_id),
            correlation_id=correlation_id,
            description="Attempt to retire the amount field was blocked",
            is_user_action=True,
        )

    @staticmethod
    def record_saved(
        owner: str,
        record_id: UUID,
        context: str,
        amount: str,
        is_update: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.RECORD_UPDATED
            if is_update
            else AuditEventType.RECORD_CREATED
        )
        verb = "updated" if is_update else "created"
        return AuditEvent(
            event_type=event_type,
            owner=owner,
            entity_type="record",
            entity_id=str(record_id),
            correlation_id=correlation_id,
            description=f"{context.capitalize()} {verb}: {amount}",
            details={"context": context, "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def record_deleted(
        owner: str,
        record_id: UUID,
        context: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_DELETED,
            owner=owner,
            entity_type="record",
            entity_id=str(record_id),
            correlation_id=correlation_id,
            description=f"{context.capitalize()} deleted",
            details={"context": context},
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        owner: str,
        field: str,
        message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            owner=owner,
            correlation_id=correlation_id,
            description=f"Validation failed on {field}",
            details={"field": field},
            error_message=message,
            is_user_action=True,
        )

    @staticmethod
    def period_defaults_seeded(
        owner: str,
        names: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERIOD_DEFAULTS_SEEDED,
            owner=owner,
            entity_type="period",
            correlation_id=correlation_id,
            description="Default budget periods seeded",
            details={"names": names},
        )

    @staticmethod
    def period_created(
        owner: str,
        period_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERIOD_CREATED,
            owner=owner,
            entity_type="period",
            entity_id=str(period_id),
            correlation_id=correlation_id,
            description=f"Budget period created: {name}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def period_activated(
        owner: str,
        period_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERIOD_ACTIVATED,
            owner=owner,
            entity_type="period",
            entity_id=str(period_id),
            correlation_id=correlation_id,
            description=f"Budget period activated: {name}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def period_deleted(
        owner: str,
        period_id: UUID,
        fallback_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERIOD_DELETED,
            owner=owner,
            entity_type="period",
            entity_id=str(period_id),
            correlation_id=correlation_id,
            description="Budget period deleted",
            details={"activated_instead": str(fallback_id) if fallback_id else None},
            is_user_action=True,
        )

    @staticmethod
    def save_failed(
        owner: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            owner=owner,
            correlation_id=correlation_id,
            description=f"Storage failure during {operation}",
            details={"operation": operation},
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
