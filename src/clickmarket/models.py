"""Data models for clickmarket."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from .utils import format_ts, generate_id, parse_ts, utc_now

# Order lifecycle
ORDER_DRAFT = "draft"
ORDER_CONFIRMED = "confirmed"
ORDER_PROCESSING = "processing"
ORDER_SHIPPED = "shipped"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"
ORDER_STATUSES = (
    ORDER_DRAFT,
    ORDER_CONFIRMED,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
)

# Payment lifecycle
PAYMENT_PENDING = "pending"
PAYMENT_PROCESSING = "processing"
PAYMENT_SUCCEEDED = "succeeded"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"
PAYMENT_CANCELLED = "cancelled"
PAYMENT_STATUSES = (
    PAYMENT_PENDING,
    PAYMENT_PROCESSING,
    PAYMENT_SUCCEEDED,
    PAYMENT_FAILED,
    PAYMENT_REFUNDED,
    PAYMENT_CANCELLED,
)

PAYMENT_METHODS = ("card", "mobile_money", "orange_money", "wave", "cash", "bank_transfer")
# Methods settled through a phone wallet; phone_number is mandatory for these
PHONE_PAYMENT_METHODS = ("mobile_money", "orange_money", "wave")
INVOICE_PAYMENT_METHODS = PAYMENT_METHODS + ("other",)

# Invoice lifecycle
INVOICE_DRAFT = "draft"
INVOICE_ISSUED = "issued"
INVOICE_PAID = "paid"
INVOICE_PARTIALLY_PAID = "partially_paid"
INVOICE_OVERDUE = "overdue"
INVOICE_CANCELLED = "cancelled"
INVOICE_STATUSES = (
    INVOICE_DRAFT,
    INVOICE_ISSUED,
    INVOICE_PAID,
    INVOICE_PARTIALLY_PAID,
    INVOICE_OVERDUE,
    INVOICE_CANCELLED,
)

# Delivery lifecycle
DELIVERY_PENDING = "pending"
DELIVERY_PREPARED = "prepared"
DELIVERY_IN_TRANSIT = "in_transit"
DELIVERY_DELIVERED = "delivered"
DELIVERY_FAILED = "failed"
DELIVERY_RETURNED = "returned"
DELIVERY_STATUSES = (
    DELIVERY_PENDING,
    DELIVERY_PREPARED,
    DELIVERY_IN_TRANSIT,
    DELIVERY_DELIVERED,
    DELIVERY_FAILED,
    DELIVERY_RETURNED,
)

# User roles
ROLE_CLIENT = "client"
ROLE_SUPPLIER = "supplier"
ROLE_ADMIN = "admin"
ROLES = (ROLE_CLIENT, ROLE_SUPPLIER, ROLE_ADMIN)


def _dec(value: Decimal) -> str:
    return str(value)


def _load_dec(value: Any, default: str = "0") -> Decimal:
    return Decimal(str(value if value is not None else default))


@dataclass
class LineItem:
    """One product entry within an order or invoice."""

    product_id: str
    product_name: str  # snapshot of the product name at ordering time
    quantity: int
    unit_price: Decimal
    line_total: Decimal = Decimal("0")  # derived, never trusted from input

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": _dec(self.unit_price),
            "line_total": _dec(self.line_total),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LineItem":
        return cls(
            product_id=data["product_id"],
            product_name=data.get("product_name", ""),
            quantity=data["quantity"],
            unit_price=_load_dec(data["unit_price"]),
            line_total=_load_dec(data.get("line_total")),
        )


@dataclass
class DeliveryAddress:
    """Physical address a delivery is shipped to."""

    street: str
    city: str
    phone: str
    postal_code: str | None = None
    district: str | None = None
    address_line2: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "street": self.street,
            "city": self.city,
            "phone": self.phone,
        }
        for key in ("postal_code", "district", "address_line2"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeliveryAddress":
        return cls(
            street=data.get("street", ""),
            city=data.get("city", ""),
            phone=data.get("phone", ""),
            postal_code=data.get("postal_code"),
            district=data.get("district"),
            address_line2=data.get("address_line2"),
        )


@dataclass
class OrderStatusChange:
    """One entry of an order's status audit log."""

    from_status: str
    to_status: str
    changed_at: datetime
    changed_by: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_at": format_ts(self.changed_at),
        }
        if self.changed_by is not None:
            result["changed_by"] = self.changed_by
        if self.reason is not None:
            result["reason"] = self.reason
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderStatusChange":
        return cls(
            from_status=data["from_status"],
            to_status=data["to_status"],
            changed_at=parse_ts(data["changed_at"]),
            changed_by=data.get("changed_by"),
            reason=data.get("reason"),
        )


@dataclass
class OrderModification:
    """One entry of an order's field modification log."""

    field_name: str
    old_value: Any
    new_value: Any
    changed_at: datetime
    changed_by: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "field_name": self.field_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "changed_at": format_ts(self.changed_at),
        }
        if self.changed_by is not None:
            result["changed_by"] = self.changed_by
        if self.reason is not None:
            result["reason"] = self.reason
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderModification":
        return cls(
            field_name=data["field_name"],
            old_value=data.get("old_value"),
            new_value=data.get("new_value"),
            changed_at=parse_ts(data["changed_at"]),
            changed_by=data.get("changed_by"),
            reason=data.get("reason"),
        )


@dataclass
class OrderComment:
    """A free-text comment left on an order."""

    id: str
    author_id: str
    text: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "author_id": self.author_id,
            "text": self.text,
            "created_at": format_ts(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderComment":
        return cls(
            id=data["id"],
            author_id=data["author_id"],
            text=data["text"],
            created_at=parse_ts(data["created_at"]),
        )


@dataclass
class Order:
    """A customer order built from a cart snapshot."""

    id: str
    customer_id: str
    line_items: list[LineItem]
    shipping_fee: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")  # percent, 0-100
    discount: Decimal = Decimal("0")
    subtotal: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    grand_total: Decimal = Decimal("0")
    tax_applied: bool = False
    status: str = ORDER_DRAFT
    delivery_address: DeliveryAddress | None = None  # None for pick-up orders
    zone_id: str | None = None
    requested_delivery_date: datetime | None = None
    status_history: list[OrderStatusChange] = field(default_factory=list)
    comments: list[OrderComment] = field(default_factory=list)
    modifications: list[OrderModification] = field(default_factory=list)
    confirmed_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "customer_id": self.customer_id,
            "line_items": [item.to_dict() for item in self.line_items],
            "shipping_fee": _dec(self.shipping_fee),
            "tax_rate": _dec(self.tax_rate),
            "discount": _dec(self.discount),
            "subtotal": _dec(self.subtotal),
            "tax": _dec(self.tax),
            "grand_total": _dec(self.grand_total),
            "tax_applied": self.tax_applied,
            "status": self.status,
            "status_history": [h.to_dict() for h in self.status_history],
            "comments": [c.to_dict() for c in self.comments],
            "modifications": [m.to_dict() for m in self.modifications],
            "confirmed_at": format_ts(self.confirmed_at),
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
        }
        if self.delivery_address is not None:
            result["delivery_address"] = self.delivery_address.to_dict()
        if self.requested_delivery_date is not None:
            result["requested_delivery_date"] = format_ts(self.requested_delivery_date)
        if self.zone_id is not None:
            result["zone_id"] = self.zone_id
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        return cls(
            id=data["id"],
            customer_id=data["customer_id"],
            line_items=[LineItem.from_dict(i) for i in data.get("line_items", [])],
            shipping_fee=_load_dec(data.get("shipping_fee")),
            tax_rate=_load_dec(data.get("tax_rate")),
            discount=_load_dec(data.get("discount")),
            subtotal=_load_dec(data.get("subtotal")),
            tax=_load_dec(data.get("tax")),
            grand_total=_load_dec(data.get("grand_total")),
            tax_applied=data.get("tax_applied", False),
            status=data.get("status", ORDER_DRAFT),
            delivery_address=(
                DeliveryAddress.from_dict(data["delivery_address"])
                if data.get("delivery_address")
                else None
            ),
            zone_id=data.get("zone_id"),
            requested_delivery_date=parse_ts(data.get("requested_delivery_date")),
            status_history=[OrderStatusChange.from_dict(h) for h in data.get("status_history", [])],
            comments=[OrderComment.from_dict(c) for c in data.get("comments", [])],
            modifications=[OrderModification.from_dict(m) for m in data.get("modifications", [])],
            confirmed_at=parse_ts(data.get("confirmed_at")),
            created_at=parse_ts(data.get("created_at")),
            updated_at=parse_ts(data.get("updated_at")),
        )

    @classmethod
    def create(
        cls,
        customer_id: str,
        line_items: list[LineItem],
        shipping_fee: Decimal,
        tax_rate: Decimal,
        discount: Decimal,
        now: datetime,
        delivery_address: DeliveryAddress | None = None,
        zone_id: str | None = None,
        requested_delivery_date: datetime | None = None,
    ) -> "Order":
        """Create a new draft order with generated ID and timestamps."""
        return cls(
            id=generate_id(),
            customer_id=customer_id,
            line_items=line_items,
            shipping_fee=shipping_fee,
            tax_rate=tax_rate,
            discount=discount,
            status=ORDER_DRAFT,
            delivery_address=delivery_address,
            zone_id=zone_id,
            requested_delivery_date=requested_delivery_date,
            created_at=now,
            updated_at=now,
        )


@dataclass
class Payment:
    """A payment attempt against an order."""

    id: str
    order_id: str
    customer_id: str
    amount: Decimal
    method: str
    status: str = PAYMENT_PENDING
    transaction_reference: str | None = None  # unique when present
    phone_number: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    paid_at: datetime | None = None  # set once, on first success
    validated_at: datetime | None = None
    error_message: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "amount": _dec(self.amount),
            "method": self.method,
            "status": self.status,
            "details": self.details,
            "paid_at": format_ts(self.paid_at),
            "validated_at": format_ts(self.validated_at),
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
        }
        if self.transaction_reference is not None:
            result["transaction_reference"] = self.transaction_reference
        if self.phone_number is not None:
            result["phone_number"] = self.phone_number
        if self.error_message is not None:
            result["error_message"] = self.error_message
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Payment":
        return cls(
            id=data["id"],
            order_id=data["order_id"],
            customer_id=data["customer_id"],
            amount=_load_dec(data["amount"]),
            method=data["method"],
            status=data.get("status", PAYMENT_PENDING),
            transaction_reference=data.get("transaction_reference"),
            phone_number=data.get("phone_number"),
            details=data.get("details", {}),
            paid_at=parse_ts(data.get("paid_at")),
            validated_at=parse_ts(data.get("validated_at")),
            error_message=data.get("error_message"),
            created_at=parse_ts(data.get("created_at")),
            updated_at=parse_ts(data.get("updated_at")),
        )


@dataclass
class ClientSnapshot:
    """Customer contact details frozen on an invoice at billing time."""

    name: str
    email: str
    first_name: str | None = None
    phone: str | None = None
    address: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "email": self.email}
        if self.first_name is not None:
            result["first_name"] = self.first_name
        if self.phone is not None:
            result["phone"] = self.phone
        if self.address is not None:
            result["address"] = self.address
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientSnapshot":
        return cls(
            name=data["name"],
            email=data["email"],
            first_name=data.get("first_name"),
            phone=data.get("phone"),
            address=data.get("address"),
        )

    @classmethod
    def from_user(cls, user: "User") -> "ClientSnapshot":
        """Copy the contact fields of a user; later profile edits do not propagate."""
        return cls(
            name=user.last_name,
            email=user.email,
            first_name=user.first_name,
            phone=user.phone,
            address=user.address,
        )


@dataclass
class Invoice:
    """A billing document with its own copy of the order lines."""

    id: str
    invoice_number: str  # FAC-YYYYMM-NNNN, assigned once at creation
    order_id: str
    customer_id: str
    client: ClientSnapshot
    line_items: list[LineItem]
    payment_id: str | None = None
    shipping_fee: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    subtotal: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    grand_total: Decimal = Decimal("0")
    tax_applied: bool = False
    status: str = INVOICE_DRAFT
    issue_date: datetime | None = None
    due_date: datetime | None = None
    paid_date: datetime | None = None
    payment_method: str | None = None
    notes: str | None = None
    terms: str | None = None
    pdf_file: str | None = None
    sent: bool = False
    sent_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "client": self.client.to_dict(),
            "line_items": [item.to_dict() for item in self.line_items],
            "shipping_fee": _dec(self.shipping_fee),
            "tax_rate": _dec(self.tax_rate),
            "discount": _dec(self.discount),
            "subtotal": _dec(self.subtotal),
            "tax": _dec(self.tax),
            "grand_total": _dec(self.grand_total),
            "tax_applied": self.tax_applied,
            "status": self.status,
            "issue_date": format_ts(self.issue_date),
            "due_date": format_ts(self.due_date),
            "paid_date": format_ts(self.paid_date),
            "sent": self.sent,
            "sent_at": format_ts(self.sent_at),
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
        }
        for key in ("payment_id", "payment_method", "notes", "terms", "pdf_file"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Invoice":
        return cls(
            id=data["id"],
            invoice_number=data["invoice_number"],
            order_id=data["order_id"],
            customer_id=data["customer_id"],
            client=ClientSnapshot.from_dict(data["client"]),
            line_items=[LineItem.from_dict(i) for i in data.get("line_items", [])],
            payment_id=data.get("payment_id"),
            shipping_fee=_load_dec(data.get("shipping_fee")),
            tax_rate=_load_dec(data.get("tax_rate")),
            discount=_load_dec(data.get("discount")),
            subtotal=_load_dec(data.get("subtotal")),
            tax=_load_dec(data.get("tax")),
            grand_total=_load_dec(data.get("grand_total")),
            tax_applied=data.get("tax_applied", False),
            status=data.get("status", INVOICE_DRAFT),
            issue_date=parse_ts(data.get("issue_date")),
            due_date=parse_ts(data.get("due_date")),
            paid_date=parse_ts(data.get("paid_date")),
            payment_method=data.get("payment_method"),
            notes=data.get("notes"),
            terms=data.get("terms"),
            pdf_file=data.get("pdf_file"),
            sent=data.get("sent", False),
            sent_at=parse_ts(data.get("sent_at")),
            created_at=parse_ts(data.get("created_at")),
            updated_at=parse_ts(data.get("updated_at")),
        )


@dataclass
class Courier:
    name: str | None = None
    phone: str | None = None
    vehicle: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "phone": self.phone, "vehicle": self.vehicle}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Courier":
        return cls(
            name=data.get("name"),
            phone=data.get("phone"),
            vehicle=data.get("vehicle"),
        )


@dataclass
class StatusHistoryEntry:
    """One entry of a delivery's append-only status log."""

    status: str
    timestamp: datetime
    comment: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "status": self.status,
            "timestamp": format_ts(self.timestamp),
        }
        if self.comment is not None:
            result["comment"] = self.comment
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatusHistoryEntry":
        return cls(
            status=data["status"],
            timestamp=parse_ts(data["timestamp"]),
            comment=data.get("comment"),
        )


@dataclass
class Delivery:
    """Physical fulfillment of an order."""

    id: str
    order_id: str
    customer_id: str
    address: DeliveryAddress
    zone_id: str
    scheduled_date: datetime
    shipping_fee: Decimal
    status: str = DELIVERY_PENDING
    courier: Courier = field(default_factory=Courier)
    tracking_number: str | None = None
    actual_delivery_date: datetime | None = None
    departure_date: datetime | None = None
    departure_time: str | None = None  # HH:MM
    arrival_time: str | None = None  # HH:MM
    instructions: str | None = None
    customer_note: str | None = None
    signature: str | None = None
    recipient_name: str | None = None
    delivery_comment: str | None = None
    status_history: list[StatusHistoryEntry] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "address": self.address.to_dict(),
            "zone_id": self.zone_id,
            "scheduled_date": format_ts(self.scheduled_date),
            "shipping_fee": _dec(self.shipping_fee),
            "status": self.status,
            "courier": self.courier.to_dict(),
            "actual_delivery_date": format_ts(self.actual_delivery_date),
            "departure_date": format_ts(self.departure_date),
            "status_history": [h.to_dict() for h in self.status_history],
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
        }
        for key in (
            "tracking_number",
            "departure_time",
            "arrival_time",
            "instructions",
            "customer_note",
            "signature",
            "recipient_name",
            "delivery_comment",
        ):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Delivery":
        return cls(
            id=data["id"],
            order_id=data["order_id"],
            customer_id=data["customer_id"],
            address=DeliveryAddress.from_dict(data["address"]),
            zone_id=data["zone_id"],
            scheduled_date=parse_ts(data["scheduled_date"]),
            shipping_fee=_load_dec(data.get("shipping_fee")),
            status=data.get("status", DELIVERY_PENDING),
            courier=Courier.from_dict(data.get("courier", {})),
            tracking_number=data.get("tracking_number"),
            actual_delivery_date=parse_ts(data.get("actual_delivery_date")),
            departure_date=parse_ts(data.get("departure_date")),
            departure_time=data.get("departure_time"),
            arrival_time=data.get("arrival_time"),
            instructions=data.get("instructions"),
            customer_note=data.get("customer_note"),
            signature=data.get("signature"),
            recipient_name=data.get("recipient_name"),
            delivery_comment=data.get("delivery_comment"),
            status_history=[StatusHistoryEntry.from_dict(h) for h in data.get("status_history", [])],
            created_at=parse_ts(data.get("created_at")),
            updated_at=parse_ts(data.get("updated_at")),
        )


@dataclass
class DeliveryZone:
    """A delivery area with a flat shipping price."""

    id: str
    name: str
    code: str
    price: Decimal
    description: str | None = None
    active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "price": _dec(self.price),
            "description": self.description,
            "active": self.active,
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeliveryZone":
        return cls(
            id=data["id"],
            name=data["name"],
            code=data["code"],
            price=_load_dec(data["price"]),
            description=data.get("description"),
            active=data.get("active", True),
            created_at=parse_ts(data.get("created_at")),
            updated_at=parse_ts(data.get("updated_at")),
        )


# User role variants. Each profile carries only the fields of its role.


@dataclass
class ClientProfile:
    ROLE = ROLE_CLIENT

    def to_dict(self) -> dict[str, Any]:
        return {}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientProfile":
        return cls()


@dataclass
class SupplierProfile:
    ROLE = ROLE_SUPPLIER

    company_name: str
    company_number: str | None = None
    company_location: str | None = None
    verified: bool = False
    product_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "company_name": self.company_name,
            "company_number": self.company_number,
            "company_location": self.company_location,
            "verified": self.verified,
            "product_ids": self.product_ids,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SupplierProfile":
        return cls(
            company_name=data["company_name"],
            company_number=data.get("company_number"),
            company_location=data.get("company_location"),
            verified=data.get("verified", False),
            product_ids=data.get("product_ids", []),
        )


@dataclass
class AdminProfile:
    ROLE = ROLE_ADMIN

    def to_dict(self) -> dict[str, Any]:
        return {}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AdminProfile":
        return cls()


RoleProfile = ClientProfile | SupplierProfile | AdminProfile

PROFILE_TYPES: dict[str, type] = {
    ROLE_CLIENT: ClientProfile,
    ROLE_SUPPLIER: SupplierProfile,
    ROLE_ADMIN: AdminProfile,
}


@dataclass
class User:
    """Shared user record; the role is fixed by the profile variant."""

    id: str
    first_name: str
    last_name: str
    email: str
    profile: RoleProfile
    phone: str | None = None
    address: str | None = None
    email_verified: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def role(self) -> str:
        return self.profile.ROLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "role": self.role,
            "profile": self.profile.to_dict(),
            "phone": self.phone,
            "address": self.address,
            "email_verified": self.email_verified,
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        profile_cls = PROFILE_TYPES[data["role"]]
        return cls(
            id=data["id"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            email=data["email"],
            profile=profile_cls.from_dict(data.get("profile", {})),
            phone=data.get("phone"),
            address=data.get("address"),
            email_verified=data.get("email_verified", False),
            created_at=parse_ts(data.get("created_at")),
            updated_at=parse_ts(data.get("updated_at")),
        )
