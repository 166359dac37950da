"""Delivery lifecycle for clickmarket."""

import logging
import random
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable

from .errors import InvalidStateError, NotFoundError, ValidationError
from .models import (
    DELIVERY_DELIVERED,
    DELIVERY_IN_TRANSIT,
    DELIVERY_PENDING,
    DELIVERY_PREPARED,
    DELIVERY_RETURNED,
    DELIVERY_STATUSES,
    Courier,
    Delivery,
    DeliveryAddress,
    StatusHistoryEntry,
)
from .sequence import next_tracking_number
from .store import Database, Page
from .utils import generate_id, parse_ts, require_text, to_decimal, utc_now

logger = logging.getLogger(__name__)

# Once reached, these statuses only accept a repeat of themselves
TERMINAL_DELIVERY_STATUSES = (DELIVERY_DELIVERED, DELIVERY_RETURNED)


def build_address(data: dict[str, Any] | DeliveryAddress) -> DeliveryAddress:
    """
    Validate a delivery address.

    Raises:
        ValidationError: If street, city or phone is missing.
    """
    if isinstance(data, DeliveryAddress):
        data = data.to_dict()
    return DeliveryAddress(
        street=require_text(data.get("street"), "address.street"),
        city=require_text(data.get("city"), "address.city"),
        phone=require_text(data.get("phone"), "address.phone"),
        postal_code=data.get("postal_code"),
        district=data.get("district"),
        address_line2=data.get("address_line2"),
    )


class DeliveryService:
    """Creates deliveries and records their status changes."""

    def __init__(
        self,
        db: Database,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
    ):
        self.db = db
        self.clock = clock or utc_now
        self.rng = rng or random.Random()

    def create_delivery(
        self,
        order_id: str,
        customer_id: str,
        address: dict[str, Any] | DeliveryAddress,
        zone_id: str,
        scheduled_date: datetime | str,
        shipping_fee: Any,
        tracking_number: str | None = None,
        instructions: str | None = None,
        customer_note: str | None = None,
    ) -> Delivery:
        """
        Create a pending delivery for an order.

        A tracking number is generated when none is supplied. The status
        history starts with a single pending entry.

        Raises:
            ValidationError: On a bad address, fee, zone or date.
            NotFoundError: If the order doesn't exist.
            ConflictError: If a supplied tracking number is taken.
            ResourceExhaustedError: If no free tracking number was found.
        """
        addr = build_address(address)
        if not zone_id:
            raise ValidationError("zone_id", "is required")
        fee = to_decimal(shipping_fee, "shipping_fee")
        if fee < Decimal("0"):
            raise ValidationError("shipping_fee", f"must be >= 0, got {fee}")
        try:
            scheduled = parse_ts(scheduled_date)
        except ValueError:
            raise ValidationError("scheduled_date", f"not a valid date: {scheduled_date!r}")
        if scheduled is None:
            raise ValidationError("scheduled_date", "is required")

        self.db.orders.get(order_id)

        now = self.clock()
        with self.db.deliveries.lock():
            if tracking_number is None:
                tracking_number = next_tracking_number(
                    lambda candidate: self.db.deliveries.exists("tracking_number", candidate),
                    now,
                    rng=self.rng,
                )
            delivery = Delivery(
                id=generate_id(),
                order_id=order_id,
                customer_id=customer_id,
                address=addr,
                zone_id=zone_id,
                scheduled_date=scheduled,
                shipping_fee=fee,
                status=DELIVERY_PENDING,
                tracking_number=tracking_number,
                instructions=instructions,
                customer_note=customer_note,
                status_history=[StatusHistoryEntry(status=DELIVERY_PENDING, timestamp=now)],
                created_at=now,
                updated_at=now,
            )
            self.db.deliveries.insert(delivery)

        logger.info("Delivery %s created for order %s (%s)", delivery.id, order_id, tracking_number)
        return delivery

    def get_delivery(self, delivery_id: str) -> Delivery:
        return self.db.deliveries.get(delivery_id)

    def get_by_tracking_number(self, tracking_number: str) -> Delivery:
        delivery = self.db.deliveries.find_one("tracking_number", tracking_number)
        if delivery is None:
            raise NotFoundError("delivery", tracking_number)
        return delivery

    def list_deliveries(self, **query: Any) -> Page[Delivery]:
        return self.db.deliveries.list(**query)

    def deliveries_for_order(self, order_id: str) -> list[Delivery]:
        return [d for d in self.db.deliveries.all() if d.order_id == order_id]

    def save(self, delivery: Delivery) -> Delivery:
        """
        Persist a delivery after enforcing its derived fields.

        A status that differs from the last history entry gets a history
        entry; departure and arrival are stamped on the first in_transit and
        delivered statuses.
        """
        now = self.clock()
        history = delivery.status_history
        if not history or history[-1].status != delivery.status:
            history.append(StatusHistoryEntry(status=delivery.status, timestamp=now))

        if delivery.status == DELIVERY_IN_TRANSIT and delivery.departure_date is None:
            delivery.departure_date = now
            if delivery.departure_time is None:
                delivery.departure_time = now.strftime("%H:%M")
        if delivery.status == DELIVERY_DELIVERED and delivery.actual_delivery_date is None:
            delivery.actual_delivery_date = now
            if delivery.arrival_time is None:
                delivery.arrival_time = now.strftime("%H:%M")

        delivery.updated_at = now
        return self.db.deliveries.update(delivery)

    def _set_status(self, delivery: Delivery, new_status: str, comment: str | None, operation: str) -> None:
        if new_status not in DELIVERY_STATUSES:
            raise ValidationError(
                "status", f"'{new_status}' is not one of: {', '.join(DELIVERY_STATUSES)}"
            )
        if delivery.status in TERMINAL_DELIVERY_STATUSES and new_status != delivery.status:
            raise InvalidStateError("delivery", delivery.id, delivery.status, operation)

        if delivery.status != new_status:
            logger.info("Delivery %s: %s -> %s", delivery.id, delivery.status, new_status)
        delivery.status = new_status
        delivery.status_history.append(
            StatusHistoryEntry(status=new_status, timestamp=self.clock(), comment=comment)
        )

    def change_status(self, delivery_id: str, new_status: str, comment: str | None = None) -> Delivery:
        """
        Move a delivery to a new status.

        Every call appends exactly one status history entry, including a
        repeat of the current status.

        Raises:
            ValidationError: If the status is unknown.
            InvalidStateError: If the delivery is delivered or returned and
                the new status differs.
        """
        with self.db.deliveries.lock():
            delivery = self.db.deliveries.get(delivery_id)
            self._set_status(delivery, new_status, comment, f"change status to '{new_status}'")
            return self.save(delivery)

    def assign_courier(self, delivery_id: str, courier: dict[str, Any] | Courier) -> Delivery:
        """Set the courier; the delivery always moves to prepared."""
        if isinstance(courier, dict):
            courier = Courier.from_dict(courier)
        with self.db.deliveries.lock():
            delivery = self.db.deliveries.get(delivery_id)
            self._set_status(delivery, DELIVERY_PREPARED, None, "assign courier to")
            delivery.courier = courier
            return self.save(delivery)

    def mark_delivered(
        self,
        delivery_id: str,
        recipient_name: str,
        comment: str | None = None,
        signature: str | None = None,
    ) -> Delivery:
        """Record the hand-over: change_status(delivered) plus recipient details."""
        with self.db.deliveries.lock():
            delivery = self.db.deliveries.get(delivery_id)
            self._set_status(delivery, DELIVERY_DELIVERED, comment, "mark delivered")
            delivery.recipient_name = recipient_name
            if comment:
                delivery.delivery_comment = comment
            if signature:
                delivery.signature = signature
            return self.save(delivery)
