"""Tests for users, roles and delivery zones."""

from decimal import Decimal

import pytest

from clickmarket.errors import ConflictError, RoleError, ValidationError
from clickmarket.models import SupplierProfile
from clickmarket.users import is_admin, is_client, is_supplier, require_role


@pytest.fixture
def supplier(users):
    return users.register_user(
        "supplier", "Ibrahima", "Fall", "contact@fall-sarl.sn",
        profile={"company_name": "Fall SARL", "company_location": "Thiès"},
    )


@pytest.fixture
def admin(users):
    return users.register_user("admin", "Root", "Admin", "admin@clickmarket.sn")


class TestRegisterUser:
    def test_client(self, client_user):
        assert client_user.role == "client"
        assert is_client(client_user)
        assert not is_supplier(client_user)

    def test_supplier_profile_round_trip(self, users, supplier):
        loaded = users.get_user(supplier.id)

        assert isinstance(loaded.profile, SupplierProfile)
        assert loaded.profile.company_name == "Fall SARL"
        assert loaded.profile.verified is False

    def test_supplier_needs_company_name(self, users):
        with pytest.raises(ValidationError) as exc_info:
            users.register_user("supplier", "A", "B", "a@b.sn")
        assert exc_info.value.field == "profile.company_name"

    def test_unknown_role(self, users):
        with pytest.raises(ValidationError):
            users.register_user("courier", "A", "B", "a@b.sn")

    def test_email_is_unique_case_insensitive(self, users, client_user):
        with pytest.raises(ConflictError):
            users.register_user("client", "Awa", "Diop", "AWA@example.com")

    def test_invalid_email(self, users):
        with pytest.raises(ValidationError):
            users.register_user("client", "Awa", "Diop", "not-an-email")

    def test_list_by_role(self, users, client_user, supplier, admin):
        assert [u.id for u in users.list_users(role="supplier").items] == [supplier.id]
        assert users.list_users().total == 3


class TestRoles:
    def test_require_role(self, client_user, admin):
        assert require_role(admin, "admin") is admin
        assert is_admin(admin)

        with pytest.raises(RoleError) as exc_info:
            require_role(client_user, "admin", "supplier")
        assert exc_info.value.required == ("admin", "supplier")

    def test_admin_verifies_supplier(self, users, supplier, admin):
        verified = users.verify_supplier(admin.id, supplier.id)

        assert verified.profile.verified is True
        assert users.get_user(supplier.id).profile.verified is True

    def test_client_cannot_verify(self, users, supplier, client_user):
        with pytest.raises(RoleError):
            users.verify_supplier(client_user.id, supplier.id)

    def test_only_suppliers_are_verified(self, users, admin, client_user):
        with pytest.raises(RoleError):
            users.verify_supplier(admin.id, client_user.id)


class TestZones:
    def test_create_zone(self, zone):
        assert zone.price == Decimal("1000")
        assert zone.active is True

    def test_duplicate_code(self, users, zone):
        with pytest.raises(ConflictError):
            users.create_zone("Other", zone.code, 500)

    def test_negative_price(self, users):
        with pytest.raises(ValidationError):
            users.create_zone("Free", "FREE", -1)

    def test_deactivate(self, users, zone):
        assert users.set_zone_active(zone.id, False).active is False
