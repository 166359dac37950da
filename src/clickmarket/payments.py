"""Payment lifecycle for clickmarket."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable

from .errors import InvalidStateError, ValidationError
from .models import (
    PAYMENT_CANCELLED,
    PAYMENT_FAILED,
    PAYMENT_METHODS,
    PAYMENT_PENDING,
    PAYMENT_PROCESSING,
    PAYMENT_REFUNDED,
    PAYMENT_SUCCEEDED,
    PHONE_PAYMENT_METHODS,
    Payment,
)
from .store import Database, Page
from .utils import generate_id, to_decimal, utc_now

logger = logging.getLogger(__name__)

# Allowed target statuses per current status. Self-loops make the
# operation idempotent.
PAYMENT_TRANSITIONS: dict[str, set[str]] = {
    PAYMENT_PENDING: {PAYMENT_PROCESSING, PAYMENT_SUCCEEDED, PAYMENT_FAILED, PAYMENT_CANCELLED},
    PAYMENT_PROCESSING: {PAYMENT_SUCCEEDED, PAYMENT_FAILED, PAYMENT_CANCELLED},
    PAYMENT_SUCCEEDED: {PAYMENT_SUCCEEDED, PAYMENT_REFUNDED},
    PAYMENT_FAILED: {PAYMENT_CANCELLED},
    PAYMENT_REFUNDED: set(),
    PAYMENT_CANCELLED: {PAYMENT_CANCELLED},
}


def validate_payment_method(method: str, phone_number: str | None = None) -> str | None:
    """
    Check a payment method and return the normalized phone number.

    Raises:
        ValidationError: If the method is unknown or a wallet method has no
            phone number.
    """
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            "method", f"'{method}' is not one of: {', '.join(PAYMENT_METHODS)}"
        )
    phone = (phone_number or "").strip() or None
    if method in PHONE_PAYMENT_METHODS and phone is None:
        raise ValidationError("phone_number", f"is required for method '{method}'")
    return phone


class PaymentService:
    """Creates payments and drives their status transitions."""

    def __init__(self, db: Database, clock: Callable[[], datetime] | None = None):
        self.db = db
        self.clock = clock or utc_now

    def create_payment(
        self,
        order_id: str,
        customer_id: str,
        amount: Any,
        method: str,
        phone_number: str | None = None,
        transaction_reference: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> Payment:
        """
        Create a pending payment for an order.

        Raises:
            ValidationError: If the method is unknown, the amount is negative,
                or a wallet method (mobile_money, orange_money, wave) has no
                phone number.
            NotFoundError: If the order doesn't exist.
            ConflictError: If the transaction reference is already used.
        """
        phone = validate_payment_method(method, phone_number)
        value = to_decimal(amount, "amount")
        if value < Decimal("0"):
            raise ValidationError("amount", f"must be >= 0, got {value}")

        reference = (transaction_reference or "").strip() or None

        self.db.orders.get(order_id)

        now = self.clock()
        payment = Payment(
            id=generate_id(),
            order_id=order_id,
            customer_id=customer_id,
            amount=value,
            method=method,
            status=PAYMENT_PENDING,
            transaction_reference=reference,
            phone_number=phone,
            details=dict(details or {}),
            created_at=now,
            updated_at=now,
        )
        self.db.payments.insert(payment)
        logger.info("Payment %s created for order %s (%s %s)", payment.id, order_id, value, method)
        return payment

    def get_payment(self, payment_id: str) -> Payment:
        return self.db.payments.get(payment_id)

    def list_payments(self, **query: Any) -> Page[Payment]:
        return self.db.payments.list(**query)

    def payments_for_order(self, order_id: str) -> list[Payment]:
        return [p for p in self.db.payments.all() if p.order_id == order_id]

    def save(self, payment: Payment) -> Payment:
        """
        Persist a payment after enforcing its derived fields.

        paid_at is stamped the first time the status is succeeded and is
        never overwritten afterwards.
        """
        now = self.clock()
        if payment.status == PAYMENT_SUCCEEDED and payment.paid_at is None:
            payment.paid_at = now
        payment.updated_at = now
        return self.db.payments.update(payment)

    def _transition(self, payment: Payment, target: str, operation: str) -> None:
        if target not in PAYMENT_TRANSITIONS[payment.status]:
            raise InvalidStateError("payment", payment.id, payment.status, operation)
        if payment.status != target:
            logger.info("Payment %s: %s -> %s", payment.id, payment.status, target)
        payment.status = target

    def start_processing(self, payment_id: str) -> Payment:
        """Mark a pending payment as handed to the payment provider."""
        with self.db.payments.lock():
            payment = self.db.payments.get(payment_id)
            self._transition(payment, PAYMENT_PROCESSING, "process")
            return self.save(payment)

    def validate_payment(
        self, payment_id: str, transaction_reference: str | None = None
    ) -> Payment:
        """
        Mark a payment as succeeded.

        Re-validating a succeeded payment refreshes validated_at but keeps
        the original paid_at.

        Raises:
            InvalidStateError: If the payment failed, was refunded or cancelled.
            ConflictError: If the transaction reference is already used.
        """
        with self.db.payments.lock():
            payment = self.db.payments.get(payment_id)
            self._transition(payment, PAYMENT_SUCCEEDED, "validate")
            now = self.clock()
            payment.validated_at = now
            if payment.paid_at is None:
                payment.paid_at = now
            if transaction_reference:
                payment.transaction_reference = transaction_reference.strip()
            return self.save(payment)

    def fail_payment(self, payment_id: str, error_message: str) -> Payment:
        """Mark a pending or processing payment as failed."""
        with self.db.payments.lock():
            payment = self.db.payments.get(payment_id)
            self._transition(payment, PAYMENT_FAILED, "fail")
            payment.error_message = error_message
            return self.save(payment)

    def refund_payment(self, payment_id: str) -> Payment:
        """Mark a succeeded payment as refunded."""
        with self.db.payments.lock():
            payment = self.db.payments.get(payment_id)
            self._transition(payment, PAYMENT_REFUNDED, "refund")
            return self.save(payment)

    def cancel_payment(self, payment_id: str) -> Payment:
        """
        Cancel a payment that has not succeeded.

        Raises:
            InvalidStateError: If the payment succeeded or was refunded.
        """
        with self.db.payments.lock():
            payment = self.db.payments.get(payment_id)
            self._transition(payment, PAYMENT_CANCELLED, "cancel")
            return self.save(payment)
