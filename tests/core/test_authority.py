"""Tests for core/authority.py - roles and property authority."""

from uuid import uuid4

import pytest

from core.authority import Actor, Role, StaticPropertyAuthority, has_property_authority, is_vendor_for


@pytest.fixture
def owners():
    return {"property": uuid4(), "landlord": uuid4()}


@pytest.fixture
def static_authority(owners):
    return StaticPropertyAuthority({owners["property"]: owners["landlord"]})


class TestStaticPropertyAuthority:

    def test_owner_can_manage(self, static_authority, owners):
        actor = Actor(user_id=owners["landlord"], role=Role.LANDLORD)

        assert static_authority.can_manage(actor, owners["property"])

    def test_other_landlord_cannot_manage(self, static_authority, owners):
        actor = Actor(user_id=uuid4(), role=Role.LANDLORD)

        assert not static_authority.can_manage(actor, owners["property"])

    def test_tenant_with_owner_id_still_cannot_manage(self, static_authority, owners):
        """Authority comes from the landlord role, not the user id alone."""
        actor = Actor(user_id=owners["landlord"], role=Role.TENANT)

        assert not static_authority.can_manage(actor, owners["property"])

    def test_register_and_lookup(self, static_authority):
        property_id, landlord_id = uuid4(), uuid4()

        assert static_authority.landlord_user_id(property_id) is None
        static_authority.register(property_id, landlord_id)
        assert static_authority.landlord_user_id(property_id) == landlord_id


class TestHasPropertyAuthority:

    def test_admin_always(self, static_authority):
        assert has_property_authority(static_authority, Actor(user_id=uuid4(), role=Role.ADMIN), uuid4())

    @pytest.mark.parametrize("role", [Role.VENDOR, Role.TENANT])
    def test_vendor_and_tenant_never(self, static_authority, owners, role):
        actor = Actor(user_id=owners["landlord"], role=role, vendor_id=uuid4())

        assert not has_property_authority(static_authority, actor, owners["property"])

    def test_landlord_delegates_to_collaborator(self, static_authority, owners):
        actor = Actor(user_id=owners["landlord"], role=Role.LANDLORD)

        assert has_property_authority(static_authority, actor, owners["property"])
        assert not has_property_authority(static_authority, actor, uuid4())


class TestIsVendorFor:

    def test_matching_vendor(self):
        vendor_id = uuid4()
        actor = Actor(user_id=uuid4(), role=Role.VENDOR, vendor_id=vendor_id)

        assert is_vendor_for(actor, vendor_id)

    def test_unassigned_ticket(self):
        actor = Actor(user_id=uuid4(), role=Role.VENDOR, vendor_id=uuid4())

        assert not is_vendor_for(actor, None)

    def test_admin_is_not_a_vendor(self):
        vendor_id = uuid4()
        actor = Actor(user_id=uuid4(), role=Role.ADMIN, vendor_id=vendor_id)

        assert not is_vendor_for(actor, vendor_id)

    def test_actor_is_immutable(self):
        from pydantic import ValidationError

        actor = Actor(user_id=uuid4(), role=Role.TENANT)
        with pytest.raises(ValidationError):
            actor.role = Role.ADMIN

    def test_vendor_requires_vendor_id(self):
        """A vendor principal without a vendor record cannot be built."""
        from pydantic import ValidationError

        with pytest.raises(ValidationError, match="vendor_id is required"):
            Actor(user_id=uuid4(), role=Role.VENDOR)
