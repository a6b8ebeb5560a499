"""Vendor directory: registration, profile updates and deactivation."""

import logging
from uuid import UUID, uuid4

from core.audit import AuditLogger, compute_changes
from core.authority import Role, is_vendor_for
from core.errors import NotFoundError, UnauthorizedError
from core.models import ActivityType, Vendor, VendorCreate, VendorUpdate
from core.stores import MaintenanceStore
from utils.timezone import now_utc
from utils.user_context import get_current_actor

logger = logging.getLogger(__name__)


class VendorService:
    """Service for vendor operations."""

    def __init__(self, store: MaintenanceStore, audit: AuditLogger):
        self.store = store
        self.audit = audit

    def create(self, data: VendorCreate) -> Vendor:
        """
        Register a vendor. Landlords and admins only.

        Args:
            data: Vendor creation data

        Returns:
            Created active vendor
        """
        actor = get_current_actor()
        if actor.role not in (Role.LANDLORD, Role.ADMIN):
            raise UnauthorizedError("Only landlords and admins can register vendors")

        now = now_utc()
        vendor = Vendor(id=uuid4(), created_at=now, updated_at=now, **data.model_dump())

        with self.store.transaction() as tx:
            tx.insert_vendor(vendor)
            self.audit.log_activity(
                tx,
                type=ActivityType.VENDOR_CREATED,
                action=f"Registered vendor: {vendor.business_name}",
                metadata={"vendor_id": str(vendor.id), "created": data.model_dump(mode="json", exclude_none=True)},
            )

        logger.info(f"Vendor {vendor.id} registered ({vendor.category})")
        return vendor

    def get_by_id(self, vendor_id: UUID) -> Vendor:
        """
        Get vendor by ID.

        Raises:
            NotFoundError: Vendor unknown
        """
        with self.store.transaction() as tx:
            vendor = tx.get_vendor(vendor_id)

        if vendor is None:
            raise NotFoundError(f"Vendor {vendor_id} not found")
        return vendor

    def update(self, vendor_id: UUID, data: VendorUpdate) -> Vendor:
        """
        Update vendor profile fields. The vendor themself or an admin.

        Returns:
            Updated vendor (unchanged when nothing differs)
        """
        actor = get_current_actor()
        if actor.role != Role.ADMIN and not is_vendor_for(actor, vendor_id):
            raise UnauthorizedError(f"Not authorized to update vendor {vendor_id}")

        with self.store.transaction() as tx:
            current = tx.get_vendor(vendor_id)
            if current is None:
                raise NotFoundError(f"Vendor {vendor_id} not found")

            updates = data.model_dump(exclude_none=True)
            if not updates:
                return current

            updated = current.model_copy(update={**updates, "updated_at": now_utc()})
            changes = compute_changes(current.model_dump(mode="json"), updated.model_dump(mode="json"))
            if not changes:
                return current

            tx.update_vendor(updated)
            self.audit.log_activity(
                tx,
                type=ActivityType.VENDOR_UPDATED,
                action=f"Updated vendor: {updated.business_name}",
                metadata={"vendor_id": str(vendor_id), "changes": changes},
            )

        return updated

    def deactivate(self, vendor_id: UUID) -> Vendor:
        """
        Take a vendor out of rotation. Admin only.

        Existing assignments and appointments are left in place; the vendor
        simply can no longer be assigned.
        """
        actor = get_current_actor()
        if actor.role != Role.ADMIN:
            raise UnauthorizedError("Only admins can deactivate vendors")

        with self.store.transaction() as tx:
            current = tx.get_vendor(vendor_id)
            if current is None:
                raise NotFoundError(f"Vendor {vendor_id} not found")
            if not current.is_active:
                return current

            updated = current.model_copy(update={"is_active": False, "updated_at": now_utc()})
            tx.update_vendor(updated)
            self.audit.log_activity(
                tx,
                type=ActivityType.VENDOR_UPDATED,
                action=f"Deactivated vendor: {updated.business_name}",
                metadata={"vendor_id": str(vendor_id), "changes": {"is_active": {"old": True, "new": False}}},
            )

        logger.info(f"Vendor {vendor_id} deactivated")
        return updated

    def list_active(self, category: str | None = None) -> list[Vendor]:
        """Active vendors, optionally by trade category, ordered by name."""
        with self.store.transaction() as tx:
            return tx.list_vendors(category=category, active_only=True)
