"""
Acting principal and the authority predicates consumed by the services.

Credential checking lives outside this package. An upstream collaborator
resolves the caller into an Actor and supplies a PropertyAuthority that
answers "may this actor manage this property?". The services combine that
predicate with entity-level checks (is this the assigned vendor?) using the
closed Role enumeration.
"""

from enum import Enum
from typing import Protocol
from uuid import UUID

from pydantic import BaseModel, model_validator


class Role(str, Enum):
    """Role of the acting principal."""

    LANDLORD = "landlord"
    VENDOR = "vendor"
    ADMIN = "admin"
    TENANT = "tenant"


class Actor(BaseModel):
    """The authenticated principal performing an operation."""

    user_id: UUID
    role: Role
    vendor_id: UUID | None = None  # required for Role.VENDOR

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def vendor_needs_vendor_id(self) -> "Actor":
        if self.role == Role.VENDOR and self.vendor_id is None:
            raise ValueError("vendor_id is required for vendor actors")
        return self


class PropertyAuthority(Protocol):
    """Authorization collaborator contract."""

    def can_manage(self, actor: Actor, property_id: UUID) -> bool:
        """Whether actor has landlord-level authority over the property."""
        ...

    def landlord_user_id(self, property_id: UUID) -> UUID | None:
        """User who should hear about activity on the property."""
        ...


class StaticPropertyAuthority:
    """
    In-process PropertyAuthority backed by a property -> landlord map.

    Suitable for embedding and tests; production deployments typically wrap
    the property service instead.
    """

    def __init__(self, owners: dict[UUID, UUID] | None = None):
        self._owners: dict[UUID, UUID] = dict(owners or {})

    def register(self, property_id: UUID, landlord_user_id: UUID) -> None:
        self._owners[property_id] = landlord_user_id

    def can_manage(self, actor: Actor, property_id: UUID) -> bool:
        if actor.role == Role.ADMIN:
            return True
        return actor.role == Role.LANDLORD and self._owners.get(property_id) == actor.user_id

    def landlord_user_id(self, property_id: UUID) -> UUID | None:
        return self._owners.get(property_id)


def has_property_authority(authority: PropertyAuthority, actor: Actor, property_id: UUID) -> bool:
    """Landlord-or-admin check, exhaustive over Role."""
    match actor.role:
        case Role.ADMIN:
            return True
        case Role.LANDLORD:
            return authority.can_manage(actor, property_id)
        case Role.VENDOR | Role.TENANT:
            return False


def is_vendor_for(actor: Actor, vendor_id: UUID | None) -> bool:
    """Whether actor is the vendor principal for vendor_id."""
    return (
        actor.role == Role.VENDOR
        and vendor_id is not None
        and actor.vendor_id == vendor_id
    )
