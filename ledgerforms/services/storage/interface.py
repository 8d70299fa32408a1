"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the engine against PostgreSQL in production
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

Every method is scoped by owner. A row owned by someone else is
indistinguishable from a row that does not exist.

Backends MUST provide:
- a uniqueness guarantee on (owner, context, key) for field definitions,
  raising ConflictError on violation
- all-or-nothing batch inserts
- an all-or-nothing active-period switch
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from ledgerforms.models.audit import AuditEvent
from ledgerforms.models.budget import BudgetPeriod
from ledgerforms.models.field import FieldDefinition, RecordContext
from ledgerforms.models.record import Record


class FieldStorageInterface(ABC):
    """Storage for field definitions."""

    @abstractmethod
    async def count_fields(self, owner: str, context: RecordContext) -> int:
        """Number of definitions (enabled or not) for (owner, context)."""
        pass

    @abstractmethod
    async def insert_fields(
        self,
        fields: list[FieldDefinition],
    ) -> list[FieldDefinition]:
        """
        Insert definitions in one all-or-nothing write.

        Returns:
            The definitions with their storage ids assigned

        Raises:
            ConflictError: If any (owner, context, key) already exists.
                Nothing is inserted in that case.
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get_field(
        self,
        owner: str,
        field_id: int,
    ) -> Optional[FieldDefinition]:
        """Fetch one definition owned by `owner`, or None."""
        pass

    @abstractmethod
    async def list_fields(
        self,
        owner: str,
        context: RecordContext,
        include_disabled: bool = False,
    ) -> list[FieldDefinition]:
        """
        List definitions in display order (order, then id).

        Args:
            owner: Owning user
            context: Record kind
            include_disabled: Also return soft-retired fields
        """
        pass

    @abstractmethod
    async def max_order(self, owner: str, context: RecordContext) -> Optional[int]:
        """Largest `order` for (owner, context), None when empty."""
        pass

    @abstractmethod
    async def set_field_orders(
        self,
        owner: str,
        context: RecordContext,
        ranks: dict[int, int],
    ) -> int:
        """
        Rewrite `order` for the given field ids.

        Ids not owned by `owner` in `context` are skipped.

        Returns:
            Number of definitions updated
        """
        pass

    @abstractmethod
    async def update_field(self, field: FieldDefinition) -> FieldDefinition:
        """
        Persist label / kind / enabled changes of an existing definition.

        Raises:
            NotFoundError: If the id does not exist under field.owner
        """
        pass

    @abstractmethod
    async def delete_field(self, owner: str, field_id: int) -> bool:
        """Hard-delete a definition. Returns True if a row was removed."""
        pass


class RecordStorageInterface(ABC):
    """Storage for expense and income records."""

    @abstractmethod
    async def save_record(self, record: Record) -> Record:
        """
        Insert a new record.

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_record(
        self,
        owner: str,
        context: RecordContext,
        record_id: UUID,
    ) -> Optional[Record]:
        """Fetch a record by id within the owner's scope."""
        pass

    @abstractmethod
    async def update_record(self, record: Record) -> Record:
        """
        Replace amount, description, category, date and attributes of
        an existing record. Never merges attributes.

        Raises:
            NotFoundError: If no record with this id exists for record.owner
            StorageError: If update fails
        """
        pass

    @abstractmethod
    async def delete_record(
        self,
        owner: str,
        context: RecordContext,
        record_id: UUID,
    ) -> bool:
        """Delete a record. Returns True if a row was removed."""
        pass

    @abstractmethod
    async def list_records(
        self,
        owner: str,
        context: RecordContext,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> list[Record]:
        """
        List records newest first.

        Args:
            owner: Owning user
            context: Record kind
            date_from: Inclusive lower bound, canonical YYYY-MM-DD
            date_to: Inclusive upper bound, canonical YYYY-MM-DD

        Bounds compare lexically against the canonical form of
        `occurred_on`.
        """
        pass


class BudgetPeriodStorageInterface(ABC):
    """Storage for budget periods."""

    @abstractmethod
    async def count_periods(self, owner: str) -> int:
        pass

    @abstractmethod
    async def insert_periods(
        self,
        periods: list[BudgetPeriod],
    ) -> list[BudgetPeriod]:
        """
        Insert periods in one all-or-nothing write.

        Raises:
            ConflictError: If an (owner, name) pair already exists
        """
        pass

    @abstractmethod
    async def get_period(self, owner: str, period_id: UUID) -> Optional[BudgetPeriod]:
        pass

    @abstractmethod
    async def list_periods(self, owner: str) -> list[BudgetPeriod]:
        """All periods of an owner, oldest first."""
        pass

    @abstractmethod
    async def get_active_period(self, owner: str) -> Optional[BudgetPeriod]:
        pass

    @abstractmethod
    async def switch_active_period(
        self,
        owner: str,
        period_id: UUID,
    ) -> BudgetPeriod:
        """
        Deactivate every period of the owner and activate one, atomically.

        No reader may observe the owner with zero active periods.
        On failure the previous active period stays active.

        Raises:
            NotFoundError: If the period does not exist under `owner`
            StorageError: If the switch fails
        """
        pass

    @abstractmethod
    async def delete_period(
        self,
        owner: str,
        period_id: UUID,
        activate_instead: Optional[UUID] = None,
    ) -> bool:
        """
        Delete a period, optionally activating another in the same
        transaction.

        Returns:
            True if a row was removed
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events of one user action in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        owner: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events for an owner (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage (or not owned by the caller)."""
    pass


class ConflictError(StorageError):
    """A uniqueness constraint rejected the write."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
