"""Users and role checks for clickmarket."""

import logging
from datetime import datetime
from typing import Any, Callable

from .errors import RoleError, ValidationError
from .models import (
    PROFILE_TYPES,
    ROLE_ADMIN,
    ROLE_CLIENT,
    ROLE_SUPPLIER,
    ROLES,
    DeliveryZone,
    SupplierProfile,
    User,
)
from .store import Database, Page
from .utils import generate_id, require_text, to_decimal, utc_now

logger = logging.getLogger(__name__)


def is_client(user: User) -> bool:
    return user.role == ROLE_CLIENT


def is_supplier(user: User) -> bool:
    return user.role == ROLE_SUPPLIER


def is_admin(user: User) -> bool:
    return user.role == ROLE_ADMIN


def require_role(user: User, *roles: str) -> User:
    """
    Check that the user holds one of the roles.

    Raises:
        RoleError: If it does not.
    """
    if user.role not in roles:
        raise RoleError(user.id, user.role, roles)
    return user


class UserService:
    """Registers users and delivery zones."""

    def __init__(self, db: Database, clock: Callable[[], datetime] | None = None):
        self.db = db
        self.clock = clock or utc_now

    def register_user(
        self,
        role: str,
        first_name: str,
        last_name: str,
        email: str,
        phone: str | None = None,
        address: str | None = None,
        profile: dict[str, Any] | None = None,
    ) -> User:
        """
        Register a user with a role-specific profile.

        Args:
            role: One of client, supplier, admin.
            profile: Role-specific fields (suppliers need company_name).

        Raises:
            ValidationError: On a missing field or unknown role.
            ConflictError: If the email is already registered.
        """
        if role not in ROLES:
            raise ValidationError("role", f"'{role}' is not one of: {', '.join(ROLES)}")
        email = require_text(email, "email").lower()
        if "@" not in email:
            raise ValidationError("email", f"not an email address: {email}")

        profile_data = dict(profile or {})
        if role == ROLE_SUPPLIER:
            profile_data["company_name"] = require_text(
                profile_data.get("company_name"), "profile.company_name"
            )
        now = self.clock()
        user = User(
            id=generate_id(),
            first_name=require_text(first_name, "first_name"),
            last_name=require_text(last_name, "last_name"),
            email=email,
            profile=PROFILE_TYPES[role].from_dict(profile_data),
            phone=phone,
            address=address,
            created_at=now,
            updated_at=now,
        )
        self.db.users.insert(user)
        logger.info("Registered %s %s", role, user.id)
        return user

    def get_user(self, user_id: str) -> User:
        return self.db.users.get(user_id)

    def list_users(self, role: str | None = None, **query: Any) -> Page[User]:
        return self.db.users.list(role=role, **query)

    def update_profile(
        self,
        user_id: str,
        first_name: str | None = None,
        last_name: str | None = None,
        phone: str | None = None,
        address: str | None = None,
    ) -> User:
        """Update contact fields. Invoices keep the snapshot taken at billing time."""
        with self.db.users.lock():
            user = self.db.users.get(user_id)
            if first_name is not None:
                user.first_name = require_text(first_name, "first_name")
            if last_name is not None:
                user.last_name = require_text(last_name, "last_name")
            if phone is not None:
                user.phone = phone
            if address is not None:
                user.address = address
            user.updated_at = self.clock()
            return self.db.users.update(user)

    def verify_supplier(self, admin_id: str, supplier_id: str) -> User:
        """Mark a supplier as verified. Only admins may do this."""
        require_role(self.db.users.get(admin_id), ROLE_ADMIN)
        with self.db.users.lock():
            supplier = require_role(self.db.users.get(supplier_id), ROLE_SUPPLIER)
            profile: SupplierProfile = supplier.profile
            profile.verified = True
            supplier.updated_at = self.clock()
            return self.db.users.update(supplier)

    def create_zone(
        self,
        name: str,
        code: str,
        price: Any,
        description: str | None = None,
        active: bool = True,
    ) -> DeliveryZone:
        """
        Register a delivery zone.

        Raises:
            ValidationError: If the price is negative.
            ConflictError: If the code is already used.
        """
        value = to_decimal(price, "price")
        if value < 0:
            raise ValidationError("price", f"must be >= 0, got {value}")
        now = self.clock()
        zone = DeliveryZone(
            id=generate_id(),
            name=require_text(name, "name"),
            code=require_text(code, "code"),
            price=value,
            description=description,
            active=active,
            created_at=now,
            updated_at=now,
        )
        self.db.zones.insert(zone)
        return zone

    def get_zone(self, zone_id: str) -> DeliveryZone:
        return self.db.zones.get(zone_id)

    def set_zone_active(self, zone_id: str, active: bool) -> DeliveryZone:
        with self.db.zones.lock():
            zone = self.db.zones.get(zone_id)
            zone.active = active
            zone.updated_at = self.clock()
            return self.db.zones.update(zone)
