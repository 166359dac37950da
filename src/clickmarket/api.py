"""FastAPI REST API for clickmarket."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .checkout import CheckoutService
from .deliveries import DeliveryService
from .errors import (
    ClickMarketError,
    ConflictError,
    ImmutableError,
    InvalidSchemaVersionError,
    InvalidStateError,
    NotFoundError,
    ResourceExhaustedError,
    RoleError,
    ValidationError,
)
from .invoices import InvoiceService
from .orders import OrderService
from .payments import PaymentService
from .store import Database, Page
from .users import UserService


# --- Pydantic Schemas ---


class LineItemSchema(BaseModel):
    product_id: str
    product_name: str = ""
    quantity: int
    unit_price: Decimal


class AddressSchema(BaseModel):
    street: str
    city: str
    phone: str
    postal_code: Optional[str] = None
    district: Optional[str] = None
    address_line2: Optional[str] = None


class ClientSchema(BaseModel):
    """Client details copied onto an invoice."""

    name: str
    email: str
    first_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class CourierSchema(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    vehicle: Optional[str] = None


class OrderCreateRequest(BaseModel):
    customer_id: str
    line_items: list[LineItemSchema]
    shipping_fee: Decimal = Decimal("0")
    tax_rate: Decimal = Field(default=Decimal("0"), description="Percent, 0-100")
    discount: Decimal = Decimal("0")
    delivery_address: Optional[AddressSchema] = None
    zone_id: Optional[str] = None
    requested_delivery_date: Optional[datetime] = None


class OrderStatusRequest(BaseModel):
    status: str
    changed_by: Optional[str] = None
    reason: Optional[str] = None


class OrderCancelRequest(BaseModel):
    reason: Optional[str] = None
    changed_by: Optional[str] = None


class LineItemsRequest(BaseModel):
    line_items: list[LineItemSchema]
    changed_by: Optional[str] = None
    reason: Optional[str] = None


class ChargesRequest(BaseModel):
    shipping_fee: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    changed_by: Optional[str] = None
    reason: Optional[str] = None


class AddressRequest(BaseModel):
    delivery_address: AddressSchema
    changed_by: Optional[str] = None
    reason: Optional[str] = None


class CommentRequest(BaseModel):
    author_id: str
    text: str


class PaymentCreateRequest(BaseModel):
    order_id: str
    customer_id: str
    amount: Decimal
    method: str = Field(..., description="card, mobile_money, orange_money, wave, cash or bank_transfer")
    phone_number: Optional[str] = None
    transaction_reference: Optional[str] = None
    details: Optional[dict[str, Any]] = None


class PaymentValidateRequest(BaseModel):
    transaction_reference: Optional[str] = None


class PaymentFailRequest(BaseModel):
    error_message: str


class InvoiceCreateRequest(BaseModel):
    order_id: str
    client: ClientSchema
    line_items: list[LineItemSchema]
    shipping_fee: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    payment_id: Optional[str] = None
    invoice_number: Optional[str] = Field(None, description="Allocated when omitted")
    customer_id: Optional[str] = None
    due_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    terms: Optional[str] = None


class InvoicePayRequest(BaseModel):
    paid_date: Optional[datetime] = None
    method: Optional[str] = None


class DeliveryCreateRequest(BaseModel):
    order_id: str
    customer_id: str
    address: AddressSchema
    zone_id: str
    scheduled_date: datetime
    shipping_fee: Decimal
    tracking_number: Optional[str] = None
    instructions: Optional[str] = None
    customer_note: Optional[str] = None


class DeliveryStatusRequest(BaseModel):
    status: str
    comment: Optional[str] = None


class DeliveredRequest(BaseModel):
    recipient_name: str
    comment: Optional[str] = None
    signature: Optional[str] = None


class CheckoutRequest(BaseModel):
    customer_id: str
    line_items: list[LineItemSchema]
    method: str
    phone_number: Optional[str] = None
    zone_id: Optional[str] = None
    delivery_address: Optional[AddressSchema] = None
    requested_delivery_date: Optional[datetime] = None
    tax_rate: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")


class SettleRequest(BaseModel):
    succeeded: bool
    error_message: Optional[str] = None
    transaction_reference: Optional[str] = None


class UserCreateRequest(BaseModel):
    role: str = Field(..., description="client, supplier or admin")
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    profile: Optional[dict[str, Any]] = None


class VerifySupplierRequest(BaseModel):
    admin_id: str


class ZoneCreateRequest(BaseModel):
    name: str
    code: str
    price: Decimal
    description: Optional[str] = None
    active: bool = True


class PageResponse(BaseModel):
    items: list[dict[str, Any]]
    total: int
    page: int
    limit: Optional[int]


# --- Helper Functions ---


def get_database() -> Database:
    """Get the Database for the configured data directory."""
    return Database()


def page_to_response(page: Page) -> PageResponse:
    return PageResponse(
        items=[item.to_dict() for item in page.items],
        total=page.total,
        page=page.page,
        limit=page.limit,
    )


def _items(line_items: list[LineItemSchema]) -> list[dict[str, Any]]:
    return [item.model_dump() for item in line_items]


def _dump(model: Optional[BaseModel]) -> Optional[dict[str, Any]]:
    return model.model_dump() if model is not None else None


def list_query(
    status: Optional[str] = Query(default=None),
    customer_id: Optional[str] = Query(default=None),
    date_from: Optional[datetime] = Query(default=None, description="Inclusive, on created_at"),
    date_to: Optional[datetime] = Query(default=None, description="Exclusive, on created_at"),
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    sort: str = Query(default="-created_at", description="Field name, '-' prefix for descending"),
) -> dict[str, Any]:
    return {
        "status": status,
        "customer_id": customer_id,
        "date_from": date_from,
        "date_to": date_to,
        "page": page,
        "limit": limit,
        "sort": sort,
    }


# --- FastAPI App ---


app = FastAPI(
    title="clickmarket API",
    description="REST API for orders, payments, invoices and deliveries",
    version=__version__,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Global Exception Handler ---


# Map exception types to HTTP status codes
ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    InvalidStateError: 409,
    ImmutableError: 409,
    NotFoundError: 404,
    ConflictError: 409,
    ResourceExhaustedError: 503,
    RoleError: 403,
    InvalidSchemaVersionError: 500,
}


@app.exception_handler(ClickMarketError)
async def clickmarket_error_handler(request: Request, exc: ClickMarketError) -> JSONResponse:
    """Map ClickMarketError subclasses to appropriate HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


# --- Endpoints ---


@app.get("/api/health")
def health_check():
    """Health check endpoint with document counts."""
    db = get_database()
    return {
        "status": "ok",
        "version": __version__,
        "orders": len(db.orders.all()),
        "invoices": len(db.invoices.all()),
    }


# --- Order Endpoints ---


@app.post("/api/orders", status_code=201)
def create_order(request: OrderCreateRequest):
    """Create a draft order."""
    order = OrderService(get_database()).create_order(
        request.customer_id,
        _items(request.line_items),
        shipping_fee=request.shipping_fee,
        tax_rate=request.tax_rate,
        discount=request.discount,
        delivery_address=_dump(request.delivery_address),
        zone_id=request.zone_id,
        requested_delivery_date=request.requested_delivery_date,
    )
    return order.to_dict()


@app.get("/api/orders", response_model=PageResponse)
def list_orders(query: dict = Depends(list_query)):
    """List orders with filters, sorting and pagination."""
    return page_to_response(OrderService(get_database()).list_orders(**query))


@app.get("/api/orders/{order_id}")
def get_order(order_id: str):
    return OrderService(get_database()).get_order(order_id).to_dict()


@app.post("/api/orders/{order_id}/confirm")
def confirm_order(order_id: str, changed_by: Optional[str] = Query(default=None)):
    """Confirm a draft order; lines and charges are frozen afterwards."""
    return OrderService(get_database()).confirm_order(order_id, changed_by=changed_by).to_dict()


@app.post("/api/orders/{order_id}/status")
def change_order_status(order_id: str, request: OrderStatusRequest):
    """Move an order to its next status (or cancel it)."""
    order = OrderService(get_database()).advance_order(
        order_id, request.status, changed_by=request.changed_by, reason=request.reason
    )
    return order.to_dict()


@app.post("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, request: OrderCancelRequest):
    """Cancel an order and void its payments, deliveries and unpaid invoices."""
    order = OrderService(get_database()).cancel_order(
        order_id, reason=request.reason, changed_by=request.changed_by
    )
    return order.to_dict()


@app.put("/api/orders/{order_id}/items")
def replace_order_items(order_id: str, request: LineItemsRequest):
    """Replace the lines of a draft order."""
    order = OrderService(get_database()).replace_line_items(
        order_id, _items(request.line_items), changed_by=request.changed_by, reason=request.reason
    )
    return order.to_dict()


@app.put("/api/orders/{order_id}/charges")
def update_order_charges(order_id: str, request: ChargesRequest):
    """Change the shipping fee, tax rate or discount of a draft order."""
    order = OrderService(get_database()).update_charges(
        order_id,
        shipping_fee=request.shipping_fee,
        tax_rate=request.tax_rate,
        discount=request.discount,
        changed_by=request.changed_by,
        reason=request.reason,
    )
    return order.to_dict()


@app.put("/api/orders/{order_id}/address")
def update_order_address(order_id: str, request: AddressRequest):
    order = OrderService(get_database()).update_delivery_address(
        order_id,
        _dump(request.delivery_address),
        changed_by=request.changed_by,
        reason=request.reason,
    )
    return order.to_dict()


@app.post("/api/orders/{order_id}/comments", status_code=201)
def add_order_comment(order_id: str, request: CommentRequest):
    order = OrderService(get_database()).add_comment(order_id, request.author_id, request.text)
    return order.to_dict()


# --- Payment Endpoints ---


@app.post("/api/payments", status_code=201)
def create_payment(request: PaymentCreateRequest):
    """Create a pending payment for an order."""
    payment = PaymentService(get_database()).create_payment(
        request.order_id,
        request.customer_id,
        request.amount,
        request.method,
        phone_number=request.phone_number,
        transaction_reference=request.transaction_reference,
        details=request.details,
    )
    return payment.to_dict()


@app.get("/api/payments", response_model=PageResponse)
def list_payments(query: dict = Depends(list_query)):
    return page_to_response(PaymentService(get_database()).list_payments(**query))


@app.get("/api/payments/{payment_id}")
def get_payment(payment_id: str):
    return PaymentService(get_database()).get_payment(payment_id).to_dict()


@app.post("/api/payments/{payment_id}/process")
def process_payment(payment_id: str):
    return PaymentService(get_database()).start_processing(payment_id).to_dict()


@app.post("/api/payments/{payment_id}/validate")
def validate_payment(payment_id: str, request: PaymentValidateRequest):
    """Mark a payment as succeeded."""
    payment = PaymentService(get_database()).validate_payment(
        payment_id, transaction_reference=request.transaction_reference
    )
    return payment.to_dict()


@app.post("/api/payments/{payment_id}/fail")
def fail_payment(payment_id: str, request: PaymentFailRequest):
    return PaymentService(get_database()).fail_payment(payment_id, request.error_message).to_dict()


@app.post("/api/payments/{payment_id}/refund")
def refund_payment(payment_id: str):
    return PaymentService(get_database()).refund_payment(payment_id).to_dict()


@app.post("/api/payments/{payment_id}/cancel")
def cancel_payment(payment_id: str):
    return PaymentService(get_database()).cancel_payment(payment_id).to_dict()


# --- Invoice Endpoints ---


@app.post("/api/invoices", status_code=201)
def create_invoice(request: InvoiceCreateRequest):
    """Create a draft invoice; a number is allocated unless supplied."""
    invoice = InvoiceService(get_database()).create_invoice(
        request.order_id,
        request.client.model_dump(),
        _items(request.line_items),
        shipping_fee=request.shipping_fee,
        tax_rate=request.tax_rate,
        discount=request.discount,
        payment_id=request.payment_id,
        invoice_number=request.invoice_number,
        customer_id=request.customer_id,
        due_date=request.due_date,
        payment_method=request.payment_method,
        notes=request.notes,
        terms=request.terms,
    )
    return invoice.to_dict()


@app.get("/api/invoices", response_model=PageResponse)
def list_invoices(query: dict = Depends(list_query)):
    return page_to_response(InvoiceService(get_database()).list_invoices(**query))


@app.get("/api/invoices/{invoice_id}")
def get_invoice(invoice_id: str):
    return InvoiceService(get_database()).get_invoice(invoice_id).to_dict()


@app.post("/api/invoices/{invoice_id}/issue")
def issue_invoice(invoice_id: str):
    return InvoiceService(get_database()).issue_invoice(invoice_id).to_dict()


@app.post("/api/invoices/{invoice_id}/pay")
def pay_invoice(invoice_id: str, request: InvoicePayRequest):
    invoice = InvoiceService(get_database()).mark_paid(
        invoice_id, paid_date=request.paid_date, method=request.method
    )
    return invoice.to_dict()


@app.post("/api/invoices/{invoice_id}/partial")
def partially_pay_invoice(invoice_id: str, method: Optional[str] = Query(default=None)):
    return InvoiceService(get_database()).mark_partially_paid(invoice_id, method=method).to_dict()


@app.post("/api/invoices/{invoice_id}/send")
def send_invoice(invoice_id: str):
    return InvoiceService(get_database()).mark_sent(invoice_id).to_dict()


@app.post("/api/invoices/{invoice_id}/cancel")
def cancel_invoice(invoice_id: str):
    return InvoiceService(get_database()).cancel_invoice(invoice_id).to_dict()


@app.post("/api/invoices/{invoice_id}/refresh")
def refresh_invoice(invoice_id: str):
    """Re-evaluate the overdue rule against the current time."""
    return InvoiceService(get_database()).refresh_invoice(invoice_id).to_dict()


# --- Delivery Endpoints ---


@app.post("/api/deliveries", status_code=201)
def create_delivery(request: DeliveryCreateRequest):
    """Create a pending delivery; a tracking number is generated unless supplied."""
    delivery = DeliveryService(get_database()).create_delivery(
        request.order_id,
        request.customer_id,
        request.address.model_dump(),
        request.zone_id,
        request.scheduled_date,
        request.shipping_fee,
        tracking_number=request.tracking_number,
        instructions=request.instructions,
        customer_note=request.customer_note,
    )
    return delivery.to_dict()


@app.get("/api/deliveries", response_model=PageResponse)
def list_deliveries(query: dict = Depends(list_query)):
    return page_to_response(DeliveryService(get_database()).list_deliveries(**query))


@app.get("/api/deliveries/track/{tracking_number}")
def track_delivery(tracking_number: str):
    """Look up a delivery by its tracking number."""
    return DeliveryService(get_database()).get_by_tracking_number(tracking_number).to_dict()


@app.get("/api/deliveries/{delivery_id}")
def get_delivery(delivery_id: str):
    return DeliveryService(get_database()).get_delivery(delivery_id).to_dict()


@app.post("/api/deliveries/{delivery_id}/status")
def change_delivery_status(delivery_id: str, request: DeliveryStatusRequest):
    delivery = DeliveryService(get_database()).change_status(
        delivery_id, request.status, comment=request.comment
    )
    return delivery.to_dict()


@app.post("/api/deliveries/{delivery_id}/courier")
def assign_courier(delivery_id: str, request: CourierSchema):
    """Assign a courier; the delivery moves to prepared."""
    return DeliveryService(get_database()).assign_courier(delivery_id, request.model_dump()).to_dict()


@app.post("/api/deliveries/{delivery_id}/delivered")
def mark_delivered(delivery_id: str, request: DeliveredRequest):
    delivery = DeliveryService(get_database()).mark_delivered(
        delivery_id, request.recipient_name, comment=request.comment, signature=request.signature
    )
    return delivery.to_dict()


# --- Checkout Endpoints ---


@app.post("/api/checkout", status_code=201)
def checkout(request: CheckoutRequest):
    """Place a confirmed order and open its pending payment."""
    result = CheckoutService(get_database()).place_order(
        request.customer_id,
        _items(request.line_items),
        request.method,
        phone_number=request.phone_number,
        zone_id=request.zone_id,
        delivery_address=_dump(request.delivery_address),
        requested_delivery_date=request.requested_delivery_date,
        tax_rate=request.tax_rate,
        discount=request.discount,
    )
    return {"order": result.order.to_dict(), "payment": result.payment.to_dict()}


@app.post("/api/checkout/{payment_id}/settle")
def settle_payment(payment_id: str, request: SettleRequest):
    """
    Apply the payment provider's outcome.

    On success the response also carries the paid invoice and, for home
    delivery orders, the new delivery.
    """
    result = CheckoutService(get_database()).settle_payment(
        payment_id,
        request.succeeded,
        error_message=request.error_message,
        transaction_reference=request.transaction_reference,
    )
    return {
        "payment": result.payment.to_dict(),
        "order": result.order.to_dict(),
        "invoice": result.invoice.to_dict() if result.invoice else None,
        "delivery": result.delivery.to_dict() if result.delivery else None,
    }


# --- User and Zone Endpoints ---


@app.post("/api/users", status_code=201)
def register_user(request: UserCreateRequest):
    user = UserService(get_database()).register_user(
        request.role,
        request.first_name,
        request.last_name,
        request.email,
        phone=request.phone,
        address=request.address,
        profile=request.profile,
    )
    return user.to_dict()


@app.get("/api/users/{user_id}")
def get_user(user_id: str):
    return UserService(get_database()).get_user(user_id).to_dict()


@app.post("/api/users/{user_id}/verify")
def verify_supplier(user_id: str, request: VerifySupplierRequest):
    """Mark a supplier as verified (admins only)."""
    return UserService(get_database()).verify_supplier(request.admin_id, user_id).to_dict()


@app.post("/api/zones", status_code=201)
def create_zone(request: ZoneCreateRequest):
    zone = UserService(get_database()).create_zone(
        request.name,
        request.code,
        request.price,
        description=request.description,
        active=request.active,
    )
    return zone.to_dict()


@app.get("/api/zones/{zone_id}")
def get_zone(zone_id: str):
    return UserService(get_database()).get_zone(zone_id).to_dict()
