"""Checkout flow tying orders, payments, invoices and deliveries together."""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from .deliveries import DeliveryService
from .errors import InvalidStateError, ValidationError
from .invoices import InvoiceService
from .models import (
    INVOICE_DRAFT,
    INVOICE_PAID,
    ORDER_CONFIRMED,
    ORDER_PROCESSING,
    PAYMENT_PENDING,
    PAYMENT_PROCESSING,
    PAYMENT_SUCCEEDED,
    ROLE_CLIENT,
    ClientSnapshot,
    Delivery,
    DeliveryAddress,
    Invoice,
    LineItem,
    Order,
    Payment,
)
from .orders import OrderService
from .payments import PaymentService, validate_payment_method
from .store import Database
from .users import require_role
from .utils import utc_now

logger = logging.getLogger(__name__)

# Scheduled date of a delivery when the customer did not ask for one
DEFAULT_DELIVERY_LEAD = timedelta(days=1)


@dataclass
class CheckoutResult:
    order: Order
    payment: Payment


@dataclass
class SettlementResult:
    payment: Payment
    order: Order
    invoice: Invoice | None = None
    delivery: Delivery | None = None


class CheckoutService:
    """
    Runs the purchase flow of a client.

    place_order creates and confirms the order and opens a pending payment
    for its grand total. settle_payment records the provider's answer; on
    success the order is billed, shipped to the delivery queue and moved to
    processing.
    """

    def __init__(
        self,
        db: Database,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
    ):
        self.db = db
        self.clock = clock or utc_now
        self.payments = PaymentService(db, clock=self.clock)
        self.deliveries = DeliveryService(db, clock=self.clock, rng=rng)
        self.invoices = InvoiceService(db, clock=self.clock)
        self.orders = OrderService(
            db,
            clock=self.clock,
            payments=self.payments,
            deliveries=self.deliveries,
            invoices=self.invoices,
        )

    def place_order(
        self,
        customer_id: str,
        line_items: Iterable[dict[str, Any] | LineItem],
        method: str,
        phone_number: str | None = None,
        zone_id: str | None = None,
        delivery_address: dict[str, Any] | DeliveryAddress | None = None,
        requested_delivery_date: datetime | str | None = None,
        tax_rate: Any = 0,
        discount: Any = 0,
    ) -> CheckoutResult:
        """
        Create a confirmed order and its pending payment.

        The shipping fee is the price of the delivery zone. Orders without a
        delivery address are pick-up orders and ship for free.

        Raises:
            RoleError: If the customer is not a client.
            ValidationError: On bad input, an inactive zone, or a delivery
                address without a zone.
            NotFoundError: If the customer or zone doesn't exist.
        """
        require_role(self.db.users.get(customer_id), ROLE_CLIENT)
        validate_payment_method(method, phone_number)

        shipping_fee = 0
        if delivery_address is not None and not zone_id:
            raise ValidationError("zone_id", "is required for home delivery")
        if zone_id:
            zone = self.db.zones.get(zone_id)
            if not zone.active:
                raise ValidationError("zone_id", f"delivery zone '{zone.code}' is not active")
            shipping_fee = zone.price

        order = self.orders.create_order(
            customer_id,
            line_items,
            shipping_fee=shipping_fee,
            tax_rate=tax_rate,
            discount=discount,
            delivery_address=delivery_address,
            zone_id=zone_id,
            requested_delivery_date=requested_delivery_date,
        )
        order = self.orders.confirm_order(order.id, changed_by=customer_id)
        payment = self.payments.create_payment(
            order.id, customer_id, order.grand_total, method, phone_number=phone_number
        )
        logger.info("Checkout: order %s awaiting payment %s", order.id, payment.id)
        return CheckoutResult(order=order, payment=payment)

    def settle_payment(
        self,
        payment_id: str,
        succeeded: bool,
        error_message: str | None = None,
        transaction_reference: str | None = None,
    ) -> SettlementResult:
        """
        Apply the payment provider's outcome.

        The whole settlement runs under the order and payment locks, so two
        concurrent calls for the same payment cannot both bill the order.
        A succeeded payment whose order is still confirmed was interrupted
        half-way; settling it again creates only the missing invoice,
        payment mark or delivery and then advances the order.

        Raises:
            InvalidStateError: If the payment was already settled.
        """
        with self.db.orders.lock(), self.db.payments.lock():
            payment = self.payments.get_payment(payment_id)
            order = self.orders.get_order(payment.order_id)

            if payment.status == PAYMENT_SUCCEEDED and succeeded and order.status == ORDER_CONFIRMED:
                logger.warning("Resuming settlement of payment %s for order %s", payment.id, order.id)
            elif payment.status not in (PAYMENT_PENDING, PAYMENT_PROCESSING):
                raise InvalidStateError("payment", payment.id, payment.status, "settle")
            elif not succeeded:
                payment = self.payments.fail_payment(payment_id, error_message or "Payment declined")
                logger.warning("Payment %s for order %s failed", payment.id, order.id)
                return SettlementResult(payment=payment, order=order)
            else:
                payment = self.payments.validate_payment(payment_id, transaction_reference)

            invoice = self._bill(order, payment)
            delivery = self._ship(order)
            if order.status == ORDER_CONFIRMED:
                order = self.orders.advance_order(order.id, ORDER_PROCESSING, reason="payment received")
            return SettlementResult(payment=payment, order=order, invoice=invoice, delivery=delivery)

    def _bill(self, order: Order, payment: Payment) -> Invoice:
        """Return the paid invoice of a payment, creating what is missing."""
        existing = [i for i in self.invoices.invoices_for_order(order.id) if i.payment_id == payment.id]
        if existing:
            invoice = existing[0]
        else:
            customer = self.db.users.get(order.customer_id)
            invoice = self.invoices.create_invoice(
                order.id,
                ClientSnapshot.from_user(customer),
                order.line_items,
                shipping_fee=order.shipping_fee,
                tax_rate=order.tax_rate,
                discount=order.discount,
                payment_id=payment.id,
                customer_id=order.customer_id,
                payment_method=payment.method,
            )
        if invoice.status == INVOICE_DRAFT:
            invoice = self.invoices.issue_invoice(invoice.id)
        if invoice.status != INVOICE_PAID:
            invoice = self.invoices.mark_paid(invoice.id, paid_date=payment.paid_at, method=payment.method)
        return invoice

    def _ship(self, order: Order) -> Delivery | None:
        if order.delivery_address is None:
            return None
        existing = self.deliveries.deliveries_for_order(order.id)
        if existing:
            return existing[0]
        scheduled = order.requested_delivery_date or self.clock() + DEFAULT_DELIVERY_LEAD
        return self.deliveries.create_delivery(
            order.id,
            order.customer_id,
            order.delivery_address,
            order.zone_id,
            scheduled,
            order.shipping_fee,
        )
