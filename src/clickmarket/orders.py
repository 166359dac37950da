"""Order lifecycle for clickmarket."""

import logging
from datetime import datetime
from typing import Any, Callable, Iterable

from . import money
from .deliveries import DeliveryService, build_address
from .errors import ImmutableError, InvalidStateError, ValidationError
from .invoices import InvoiceService
from .models import (
    DELIVERY_FAILED,
    DELIVERY_IN_TRANSIT,
    DELIVERY_PENDING,
    DELIVERY_PREPARED,
    DELIVERY_RETURNED,
    INVOICE_CANCELLED,
    INVOICE_PAID,
    ORDER_CANCELLED,
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_DRAFT,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_STATUSES,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    PAYMENT_PROCESSING,
    PAYMENT_SUCCEEDED,
    DeliveryAddress,
    LineItem,
    Order,
    OrderComment,
    OrderModification,
    OrderStatusChange,
)
from .payments import PaymentService
from .store import Database, Page
from .utils import generate_id, parse_ts, require_text, utc_now

logger = logging.getLogger(__name__)

# Forward progression; cancellation is handled separately
NEXT_ORDER_STATUS: dict[str, str] = {
    ORDER_DRAFT: ORDER_CONFIRMED,
    ORDER_CONFIRMED: ORDER_PROCESSING,
    ORDER_PROCESSING: ORDER_SHIPPED,
    ORDER_SHIPPED: ORDER_DELIVERED,
}
TERMINAL_ORDER_STATUSES = (ORDER_DELIVERED, ORDER_CANCELLED)

MAX_COMMENT_LENGTH = 500
MAX_REASON_LENGTH = 200


class OrderService:
    """Creates orders and drives their status transitions."""

    def __init__(
        self,
        db: Database,
        clock: Callable[[], datetime] | None = None,
        payments: PaymentService | None = None,
        deliveries: DeliveryService | None = None,
        invoices: InvoiceService | None = None,
    ):
        self.db = db
        self.clock = clock or utc_now
        self.payments = payments or PaymentService(db, clock=self.clock)
        self.deliveries = deliveries or DeliveryService(db, clock=self.clock)
        self.invoices = invoices or InvoiceService(db, clock=self.clock)

    def create_order(
        self,
        customer_id: str,
        line_items: Iterable[dict[str, Any] | LineItem],
        shipping_fee: Any = 0,
        tax_rate: Any = 0,
        discount: Any = 0,
        delivery_address: dict[str, Any] | DeliveryAddress | None = None,
        zone_id: str | None = None,
        requested_delivery_date: datetime | str | None = None,
    ) -> Order:
        """
        Create a draft order.

        Raises:
            ValidationError: If there are no line items, a quantity is not
                an integer >= 1, a unit price is negative, or a charge is out
                of range.
        """
        if not customer_id:
            raise ValidationError("customer_id", "is required")
        items = money.build_line_items(line_items)
        rate, fee, disc = money.validate_charges(tax_rate, shipping_fee, discount)
        address = build_address(delivery_address) if delivery_address is not None else None

        order = Order.create(
            customer_id=customer_id,
            line_items=items,
            shipping_fee=fee,
            tax_rate=rate,
            discount=disc,
            now=self.clock(),
            delivery_address=address,
            zone_id=zone_id,
            requested_delivery_date=parse_ts(requested_delivery_date),
        )
        money.recompute(order)
        self.db.orders.insert(order)
        logger.info("Order %s created for %s, total %s", order.id, customer_id, order.grand_total)
        return order

    def get_order(self, order_id: str) -> Order:
        return self.db.orders.get(order_id)

    def list_orders(self, **query: Any) -> Page[Order]:
        return self.db.orders.list(**query)

    def save(self, order: Order) -> Order:
        """Persist an order; totals are recomputed before every write."""
        money.recompute(order)
        order.updated_at = self.clock()
        return self.db.orders.update(order)

    def _record_status(
        self,
        order: Order,
        new_status: str,
        changed_by: str | None,
        reason: str | None,
    ) -> None:
        now = self.clock()
        order.status_history.append(
            OrderStatusChange(
                from_status=order.status,
                to_status=new_status,
                changed_at=now,
                changed_by=changed_by,
                reason=reason,
            )
        )
        logger.info("Order %s: %s -> %s", order.id, order.status, new_status)
        order.status = new_status
        if new_status == ORDER_CONFIRMED:
            order.confirmed_at = now

    def confirm_order(self, order_id: str, changed_by: str | None = None) -> Order:
        """
        Confirm a draft order; its lines and charges are frozen from now on.

        Raises:
            InvalidStateError: If the order is not a draft.
        """
        with self.db.orders.lock():
            order = self.db.orders.get(order_id)
            if order.status != ORDER_DRAFT:
                raise InvalidStateError("order", order.id, order.status, "confirm")
            self._record_status(order, ORDER_CONFIRMED, changed_by, None)
            return self.save(order)

    def advance_order(
        self,
        order_id: str,
        new_status: str,
        changed_by: str | None = None,
        reason: str | None = None,
    ) -> Order:
        """
        Move an order one step forward (confirmed -> processing -> shipped -> delivered).

        Raises:
            ValidationError: If the status is unknown.
            InvalidStateError: If new_status is not the immediate next status.
        """
        if new_status not in ORDER_STATUSES:
            raise ValidationError(
                "status", f"'{new_status}' is not one of: {', '.join(ORDER_STATUSES)}"
            )
        if new_status == ORDER_CANCELLED:
            return self.cancel_order(order_id, reason=reason, changed_by=changed_by)
        if new_status == ORDER_CONFIRMED:
            return self.confirm_order(order_id, changed_by=changed_by)

        with self.db.orders.lock():
            order = self.db.orders.get(order_id)
            if NEXT_ORDER_STATUS.get(order.status) != new_status:
                raise InvalidStateError(
                    "order", order.id, order.status, f"move to '{new_status}'"
                )
            self._record_status(order, new_status, changed_by, reason)
            return self.save(order)

    def cancel_order(
        self,
        order_id: str,
        reason: str | None = None,
        changed_by: str | None = None,
    ) -> Order:
        """
        Cancel an order that is not yet delivered.

        Linked payments are cancelled, or refunded when they had succeeded.
        Linked deliveries are marked returned when in transit, failed when
        not yet departed. Unpaid linked invoices are cancelled; paid ones
        stay paid as the record of the refunded payment.

        Raises:
            InvalidStateError: If the order is delivered or already cancelled.
        """
        with self.db.orders.lock():
            order = self.db.orders.get(order_id)
            if order.status in TERMINAL_ORDER_STATUSES:
                raise InvalidStateError("order", order.id, order.status, "cancel")

            note = f"Order cancelled: {reason}" if reason else "Order cancelled"
            for payment in self.payments.payments_for_order(order.id):
                if payment.status == PAYMENT_SUCCEEDED:
                    self.payments.refund_payment(payment.id)
                elif payment.status in (PAYMENT_PENDING, PAYMENT_PROCESSING, PAYMENT_FAILED):
                    self.payments.cancel_payment(payment.id)
            for delivery in self.deliveries.deliveries_for_order(order.id):
                if delivery.status == DELIVERY_IN_TRANSIT:
                    self.deliveries.change_status(delivery.id, DELIVERY_RETURNED, note)
                elif delivery.status in (DELIVERY_PENDING, DELIVERY_PREPARED):
                    self.deliveries.change_status(delivery.id, DELIVERY_FAILED, note)
            for invoice in self.invoices.invoices_for_order(order.id):
                if invoice.status not in (INVOICE_PAID, INVOICE_CANCELLED):
                    self.invoices.cancel_invoice(invoice.id)

            self._record_status(order, ORDER_CANCELLED, changed_by, reason)
            return self.save(order)

    def _record_modification(
        self,
        order: Order,
        field_name: str,
        old_value: Any,
        new_value: Any,
        changed_by: str | None,
        reason: str | None,
    ) -> None:
        if old_value == new_value:
            return
        order.modifications.append(
            OrderModification(
                field_name=field_name,
                old_value=old_value,
                new_value=new_value,
                changed_at=self.clock(),
                changed_by=changed_by,
                reason=reason,
            )
        )

    def _draft_for_edit(self, order_id: str, field_name: str) -> Order:
        order = self.db.orders.get(order_id)
        if order.status != ORDER_DRAFT:
            raise ImmutableError("order", order.id, field_name, order.status)
        return order

    def replace_line_items(
        self,
        order_id: str,
        line_items: Iterable[dict[str, Any] | LineItem],
        changed_by: str | None = None,
        reason: str | None = None,
    ) -> Order:
        """
        Replace the lines of a draft order.

        Raises:
            ImmutableError: If the order has been confirmed.
        """
        reason = _check_reason(reason)
        with self.db.orders.lock():
            order = self._draft_for_edit(order_id, "line_items")
            old = [item.to_dict() for item in order.line_items]
            order.line_items = money.build_line_items(line_items)
            money.recompute(order)
            self._record_modification(
                order, "line_items", old, [item.to_dict() for item in order.line_items], changed_by, reason
            )
            return self.save(order)

    def update_charges(
        self,
        order_id: str,
        shipping_fee: Any = None,
        tax_rate: Any = None,
        discount: Any = None,
        changed_by: str | None = None,
        reason: str | None = None,
    ) -> Order:
        """
        Change the shipping fee, tax rate or discount of a draft order.

        Each changed charge gets its own modification entry.

        Raises:
            ImmutableError: If the order has been confirmed.
        """
        reason = _check_reason(reason)
        requested = {"shipping_fee": shipping_fee, "tax_rate": tax_rate, "discount": discount}
        with self.db.orders.lock():
            order = self.db.orders.get(order_id)
            if order.status != ORDER_DRAFT:
                changed = [name for name, value in requested.items() if value is not None]
                raise ImmutableError(
                    "order", order.id, ", ".join(changed) or "charges", order.status
                )
            rate, fee, disc = money.validate_charges(
                order.tax_rate if tax_rate is None else tax_rate,
                order.shipping_fee if shipping_fee is None else shipping_fee,
                order.discount if discount is None else discount,
            )
            for name, value in (("shipping_fee", fee), ("tax_rate", rate), ("discount", disc)):
                if getattr(order, name) != value:
                    self._record_modification(
                        order, name, str(getattr(order, name)), str(value), changed_by, reason
                    )
            order.tax_rate, order.shipping_fee, order.discount = rate, fee, disc
            return self.save(order)

    def update_delivery_address(
        self,
        order_id: str,
        delivery_address: dict[str, Any] | DeliveryAddress,
        changed_by: str | None = None,
        reason: str | None = None,
    ) -> Order:
        """
        Change the delivery address of a draft order.

        Raises:
            ImmutableError: If the order has been confirmed.
        """
        address = build_address(delivery_address)
        reason = _check_reason(reason)
        with self.db.orders.lock():
            order = self._draft_for_edit(order_id, "delivery_address")
            old = order.delivery_address.to_dict() if order.delivery_address is not None else None
            order.delivery_address = address
            self._record_modification(
                order, "delivery_address", old, address.to_dict(), changed_by, reason
            )
            return self.save(order)

    def add_comment(self, order_id: str, author_id: str, text: str) -> Order:
        """Append a comment (at most 500 characters) to an order."""
        body = require_text(text, "text", max_length=MAX_COMMENT_LENGTH)
        with self.db.orders.lock():
            order = self.db.orders.get(order_id)
            order.comments.append(
                OrderComment(id=generate_id(), author_id=author_id, text=body, created_at=self.clock())
            )
            return self.save(order)


def _check_reason(reason: str | None) -> str | None:
    if reason is None or not reason.strip():
        return None
    return require_text(reason, "reason", max_length=MAX_REASON_LENGTH)
