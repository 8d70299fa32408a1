"""
Field Catalog

Owns the field definitions of one owner, per record context.

Responsibilities:
1. Seed the core fields on first use (idempotent, race-safe)
2. Create user fields with collision-free keys
3. Persist user-controlled order
4. Protect the amount field from removal

DESIGN DECISION: Seeding is check-then-insert, which is not atomic.
Two first visits can both see an empty catalog. Idempotence comes from
the storage layer's UNIQUE(owner, context, key) constraint: the losing
insert fails as a whole with ConflictError, which we read as
"already seeded".
"""

import re
import threading
import time
from typing import Any, Iterable, Optional

import structlog

from ledgerforms.config import get_settings
from ledgerforms.models.field import (
    FieldDefinition,
    MAX_KEY_LENGTH,
    FieldKind,
    RecordContext,
    default_fields_for,
)
from ledgerforms.services.storage import (
    ConflictError,
    FieldStorageInterface,
    NotFoundError,
)
from ledgerforms.validation import ValidationError, require_label

logger = structlog.get_logger(__name__)


class ProtectedFieldError(Exception):
    """Attempted to retire the amount field."""

    def __init__(self, field_id: int, message: str = "The amount field cannot be removed"):
        self.field_id = field_id
        super().__init__(message)


# =============================================================================
# KEY GENERATION
# =============================================================================

_token_lock = threading.Lock()
_last_token = 0


def _next_key_token() -> int:
    """Millisecond timestamp, bumped so consecutive calls never repeat."""
    global _last_token
    with _token_lock:
        token = max(int(time.time() * 1000), _last_token + 1)
        _last_token = token
        return token


def normalize_label(label: str) -> str:
    """Lower-case the label and replace every non [a-z0-9] char with '_'."""
    return re.sub(r"[^a-z0-9]", "_", label.lower())


def make_field_key(label: str, token: Optional[int] = None) -> str:
    """
    Derive a field key from its label plus a uniqueness token.

    "Trip Name" -> "trip_name_1718000000000"

    The label part is cut so the key never exceeds MAX_KEY_LENGTH.
    """
    if token is None:
        token = _next_key_token()
    suffix = f"_{token}"
    return normalize_label(label)[:MAX_KEY_LENGTH - len(suffix)] + suffix


# =============================================================================
# CATALOG
# =============================================================================

class FieldCatalog:
    """
    Field definitions for every (owner, context) pair.

    All methods are scoped by owner: a field id owned by someone else
    behaves exactly like an id that does not exist.
    """

    def __init__(
        self,
        storage: FieldStorageInterface,
        max_label_length: Optional[int] = None,
    ):
        self._storage = storage
        if max_label_length is None:
            max_label_length = get_settings().app.max_field_label_length
        self._max_label_length = max_label_length

    async def ensure_defaults(self, owner: str, context: RecordContext) -> bool:
        """
        Seed the context's core fields if the catalog is empty.

        Returns:
            True if this call inserted the defaults, False if they
            already existed (including losing a concurrent seeding race).
        """
        if await self._storage.count_fields(owner, context) > 0:
            return False

        try:
            await self._storage.insert_fields(default_fields_for(owner, context))
        except ConflictError:
            logger.info(
                "field_defaults_already_seeded",
                owner=owner,
                context=context.value,
            )
            return False

        logger.info("field_defaults_seeded", owner=owner, context=context.value)
        return True

    async def list_active(self, owner: str, context: RecordContext) -> list[FieldDefinition]:
        """Enabled fields in display order. Used to build forms."""
        return await self._storage.list_fields(owner, context)

    async def list_all(self, owner: str, context: RecordContext) -> list[FieldDefinition]:
        """Every field including disabled ones. Used for historical display."""
        return await self._storage.list_fields(owner, context, include_disabled=True)

    async def get(self, owner: str, field_id: int) -> FieldDefinition:
        """
        Fetch one field.

        Raises:
            NotFoundError: If the id does not resolve under `owner`
        """
        field = await self._storage.get_field(owner, field_id)
        if field is None:
            raise NotFoundError(f"Field not found: {field_id}")
        return field

    async def create(
        self,
        owner: str,
        context: RecordContext,
        label: Any,
        kind: FieldKind = FieldKind.TEXT,
    ) -> FieldDefinition:
        """
        Add a user field at the end of the form.

        The key is derived from the label plus a uniqueness token, so
        repeated identical labels still get distinct keys.

        Raises:
            ValidationError: If the label is empty or too long, or the
                generated key collided with an existing one
        """
        label = require_label(label, self._max_label_length)

        # Core fields must exist before the first user field, otherwise
        # the catalog is never empty again and would never be seeded.
        await self.ensure_defaults(owner, context)

        max_order = await self._storage.max_order(owner, context)
        field = FieldDefinition(
            owner=owner,
            context=context,
            key=make_field_key(label),
            label=label,
            kind=kind,
            is_core=False,
            is_enabled=True,
            order=(max_order or 0) + 1,
        )

        try:
            created = await self._storage.insert_fields([field])
        except ConflictError:
            raise ValidationError("label", "A field with this name was just added, please retry")
        return created[0]

    async def relabel(self, owner: str, field_id: int, label: Any) -> FieldDefinition:
        """
        Change a field's display name. The key never changes.

        Allowed for every field, including amount.
        """
        label = require_label(label, self._max_label_length)
        field = await self.get(owner, field_id)
        field.label = label
        return await self._storage.update_field(field)

    async def reorder(
        self,
        owner: str,
        context: RecordContext,
        ordered_ids: Iterable[Any],
    ) -> int:
        """
        Set each listed field's order to its index in `ordered_ids`.

        Ids that are malformed, unknown, or not owned by `owner` in
        `context` are ignored, to tolerate stale client state.

        Returns:
            Number of fields updated
        """
        ranks: dict[int, int] = {}
        for rank, raw_id in enumerate(ordered_ids):
            try:
                field_id = int(raw_id)
            except (TypeError, ValueError):
                continue
            ranks[field_id] = rank

        if not ranks:
            return 0
        return await self._storage.set_field_orders(owner, context, ranks)

    async def retire(self, owner: str, field_id: int) -> FieldDefinition:
        """
        Remove a field from the form.

        Core fields are disabled (their data stays renderable); user
        fields are deleted outright.

        Returns:
            The field as it was retired

        Raises:
            NotFoundError: If the id does not resolve under `owner`
            ProtectedFieldError: If the field is the amount field
        """
        field = await self.get(owner, field_id)

        if field.is_core:
            if field.is_protected:
                raise ProtectedFieldError(field_id)
            if field.is_enabled:
                field.is_enabled = False
                field = await self._storage.update_field(field)
            return field

        if not await self._storage.delete_field(owner, field_id):
            raise NotFoundError(f"Field not found: {field_id}")
        return field

    async def restore(self, owner: str, field_id: int) -> FieldDefinition:
        """Re-enable a disabled core field."""
        field = await self.get(owner, field_id)
        if not field.is_enabled:
            field.is_enabled = True
            field = await self._storage.update_field(field)
        return field
