"""
Activity log for maintenance state changes.

Every lifecycle transition records exactly one entry here. The log is:
- Append-only (entries never modified or deleted)
- User-attributed (who made the change)
- Transactional (written through the same store transaction as the change,
  so an aborted operation leaves no entry behind)

Services never read the log back on their own paths. Reading history is for
operators and tests.
"""

from typing import Any
from uuid import UUID, uuid4

from core.models import ActivityEntry, ActivityType
from core.stores import MaintenanceStore, StoreTransaction
from utils.timezone import now_utc
from utils.user_context import get_current_user_id


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two entity states.

    Args:
        old: Previous state of entity
        new: New state of entity
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = exclude_fields or {"updated_at"}
    changes = {}

    all_keys = set(old.keys()) | set(new.keys())
    for key in all_keys:
        if key in exclude:
            continue

        old_val = old.get(key)
        new_val = new.get(key)

        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}

    return changes


class AuditLogger:
    """
    Activity-log trigger.

    Metadata must be JSON-compatible: pass ids through str() and models
    through model_dump(mode="json").

    Usage:
        audit = AuditLogger()

        with store.transaction() as tx:
            ...
            audit.log_activity(
                tx,
                type=ActivityType.TICKET_ASSIGNED,
                action=f"Assigned {vendor.business_name} to {ticket.title}",
                metadata={"ticket_id": str(ticket.id), "vendor_id": str(vendor.id)},
            )

        # Operator view
        history = audit.get_entity_history(store, "ticket_id", ticket.id)
    """

    def log_activity(
        self,
        tx: StoreTransaction,
        type: ActivityType,
        action: str,
        metadata: dict[str, Any] | None = None,
        user_id: UUID | None = None
    ) -> ActivityEntry:
        """
        Append one activity entry through the transaction.

        Args:
            tx: Open store transaction of the operation being recorded
            type: Kind of action
            action: Human-readable sentence
            metadata: Ids, amounts, previous/new status
            user_id: Acting user (defaults to current context)

        Returns:
            The staged entry
        """
        if user_id is None:
            user_id = get_current_user_id()

        entry = ActivityEntry(
            id=uuid4(),
            user_id=user_id,
            type=type,
            action=action,
            metadata=metadata or {},
            created_at=now_utc(),
        )
        tx.insert_activity(entry)
        return entry

    def get_entity_history(
        self,
        store: MaintenanceStore,
        key: str,
        entity_id: UUID,
        limit: int = 100
    ) -> list[ActivityEntry]:
        """
        Entries whose metadata references an entity, newest first.

        Args:
            store: Store to read from
            key: Metadata key naming the entity ("ticket_id", "invoice_id", ...)
            entity_id: Id to match
            limit: Maximum entries scanned
        """
        with store.transaction() as tx:
            entries = tx.list_activity(limit=limit)
        return [e for e in entries if e.metadata.get(key) == str(entity_id)]

    def get_user_activity(
        self,
        store: MaintenanceStore,
        user_id: UUID | None = None,
        limit: int = 100
    ) -> list[ActivityEntry]:
        """Recent entries by user (defaults to current context), newest first."""
        if user_id is None:
            user_id = get_current_user_id()

        with store.transaction() as tx:
            return tx.list_activity(user_id=user_id, limit=limit)
