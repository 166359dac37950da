"""Tests for the delivery lifecycle."""

import random
from decimal import Decimal

import pytest

from clickmarket.deliveries import DeliveryService
from clickmarket.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError

from conftest import SAMPLE_ADDRESS, utc


@pytest.fixture
def delivery(deliveries, draft_order):
    return deliveries.create_delivery(
        draft_order.id, draft_order.customer_id, SAMPLE_ADDRESS, "zone-1", utc(2024, 1, 2), 1000
    )


class TestCreateDelivery:
    def test_pending_with_tracking_number(self, delivery, clock):
        millis = int(clock.now.timestamp() * 1000)

        assert delivery.status == "pending"
        assert delivery.tracking_number.startswith(f"LIV{millis}")
        assert delivery.shipping_fee == Decimal("1000")
        assert [h.status for h in delivery.status_history] == ["pending"]

    def test_same_seed_still_unique(self, db, clock, draft_order):
        numbers = set()
        for _ in range(3):
            service = DeliveryService(db, clock=clock, rng=random.Random(7))
            created = service.create_delivery(
                draft_order.id, "cust-1", SAMPLE_ADDRESS, "zone-1", utc(2024, 1, 2), 0
            )
            numbers.add(created.tracking_number)

        assert len(numbers) == 3

    def test_supplied_tracking_number_collision(self, deliveries, delivery, draft_order):
        with pytest.raises(ConflictError):
            deliveries.create_delivery(
                draft_order.id, "cust-1", SAMPLE_ADDRESS, "zone-1", utc(2024, 1, 2), 0,
                tracking_number=delivery.tracking_number,
            )

    @pytest.mark.parametrize("scheduled", [None, "", "next tuesday"])
    def test_scheduled_date_required(self, deliveries, draft_order, scheduled):
        with pytest.raises(ValidationError) as exc_info:
            deliveries.create_delivery(
                draft_order.id, "cust-1", SAMPLE_ADDRESS, "zone-1", scheduled, 0
            )
        assert exc_info.value.field == "scheduled_date"

    def test_address_phone_required(self, deliveries, draft_order):
        address = dict(SAMPLE_ADDRESS, phone="")

        with pytest.raises(ValidationError):
            deliveries.create_delivery(draft_order.id, "cust-1", address, "zone-1", utc(2024, 1, 2), 0)

    def test_unknown_order(self, deliveries):
        with pytest.raises(NotFoundError):
            deliveries.create_delivery("missing", "cust-1", SAMPLE_ADDRESS, "zone-1", utc(2024, 1, 2), 0)

    def test_lookup_by_tracking_number(self, deliveries, delivery):
        assert deliveries.get_by_tracking_number(delivery.tracking_number).id == delivery.id

        with pytest.raises(NotFoundError):
            deliveries.get_by_tracking_number("LIV0")


class TestStatusChanges:
    def test_every_change_appends_history(self, deliveries, delivery):
        deliveries.change_status(delivery.id, "prepared", "packed")
        updated = deliveries.change_status(delivery.id, "prepared")

        assert [h.status for h in updated.status_history] == ["pending", "prepared", "prepared"]
        assert updated.status_history[1].comment == "packed"

    def test_in_transit_stamps_departure(self, deliveries, delivery, clock):
        clock.set(utc(2024, 1, 2, 8, 30))
        updated = deliveries.change_status(delivery.id, "in_transit")

        assert updated.departure_date == utc(2024, 1, 2, 8, 30)
        assert updated.departure_time == "08:30"

    def test_mark_delivered_twice(self, deliveries, delivery, clock):
        clock.set(utc(2024, 1, 2, 14, 5))
        first = deliveries.mark_delivered(delivery.id, "Awa Diop", comment="Left with guard")
        assert first.actual_delivery_date == utc(2024, 1, 2, 14, 5)
        assert first.arrival_time == "14:05"
        assert first.recipient_name == "Awa Diop"
        assert len(first.status_history) == 2

        clock.advance(hours=1)
        second = deliveries.mark_delivered(delivery.id, "Awa Diop")

        assert second.actual_delivery_date == utc(2024, 1, 2, 14, 5)
        assert len(second.status_history) == 3
        assert second.delivery_comment == "Left with guard"

    def test_unknown_status(self, deliveries, delivery):
        with pytest.raises(ValidationError):
            deliveries.change_status(delivery.id, "lost")

    @pytest.mark.parametrize("terminal", ["delivered", "returned"])
    def test_terminal_states_only_repeat(self, deliveries, delivery, terminal):
        deliveries.change_status(delivery.id, terminal)

        with pytest.raises(InvalidStateError):
            deliveries.change_status(delivery.id, "in_transit")
        assert deliveries.change_status(delivery.id, terminal).status == terminal

    def test_failed_delivery_can_be_retried(self, deliveries, delivery):
        deliveries.change_status(delivery.id, "failed", "nobody home")

        assert deliveries.change_status(delivery.id, "in_transit").status == "in_transit"


class TestAssignCourier:
    def test_forces_prepared(self, deliveries, delivery):
        deliveries.change_status(delivery.id, "in_transit")

        updated = deliveries.assign_courier(
            delivery.id, {"name": "Moussa", "phone": "+221760000000", "vehicle": "scooter"}
        )

        assert updated.status == "prepared"
        assert updated.courier.name == "Moussa"
        assert updated.status_history[-1].status == "prepared"

    def test_not_after_delivery(self, deliveries, delivery):
        deliveries.mark_delivered(delivery.id, "Awa Diop")

        with pytest.raises(InvalidStateError):
            deliveries.assign_courier(delivery.id, {"name": "Moussa"})
