"""Tests for the checkout flow."""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal

import pytest

from clickmarket.checkout import SettlementResult
from clickmarket.errors import InvalidStateError, ResourceExhaustedError, RoleError, ValidationError

from conftest import SAMPLE_ADDRESS, SAMPLE_LINES, utc


@pytest.fixture
def placed(checkout, client_user, zone):
    return checkout.place_order(
        client_user.id,
        SAMPLE_LINES,
        "wave",
        phone_number="+221770000000",
        zone_id=zone.id,
        delivery_address=SAMPLE_ADDRESS,
        tax_rate=10,
    )


class TestPlaceOrder:
    def test_confirmed_order_and_pending_payment(self, placed, zone):
        assert placed.order.status == "confirmed"
        assert placed.order.shipping_fee == zone.price
        assert placed.order.grand_total == Decimal("7820")
        assert placed.payment.status == "pending"
        assert placed.payment.amount == Decimal("7820")
        assert placed.payment.order_id == placed.order.id

    def test_only_clients_can_order(self, checkout, users, zone):
        admin = users.register_user("admin", "Root", "Admin", "admin@clickmarket.sn")

        with pytest.raises(RoleError):
            checkout.place_order(admin.id, SAMPLE_LINES, "cash")

    def test_inactive_zone(self, checkout, users, client_user, zone):
        users.set_zone_active(zone.id, False)

        with pytest.raises(ValidationError):
            checkout.place_order(
                client_user.id, SAMPLE_LINES, "cash", zone_id=zone.id, delivery_address=SAMPLE_ADDRESS
            )

    def test_address_requires_zone(self, checkout, client_user):
        with pytest.raises(ValidationError) as exc_info:
            checkout.place_order(client_user.id, SAMPLE_LINES, "cash", delivery_address=SAMPLE_ADDRESS)
        assert exc_info.value.field == "zone_id"

    def test_payment_checked_before_order_is_created(self, checkout, db, client_user, zone):
        with pytest.raises(ValidationError):
            checkout.place_order(client_user.id, SAMPLE_LINES, "orange_money", zone_id=zone.id)

        assert db.orders.all() == []

    def test_pick_up_order_ships_free(self, checkout, client_user):
        result = checkout.place_order(client_user.id, SAMPLE_LINES, "cash")

        assert result.order.shipping_fee == Decimal("0")
        assert result.order.grand_total == Decimal("6200")


class TestSettlePayment:
    def test_success_bills_and_ships(self, checkout, placed, clock):
        clock.advance(minutes=3)
        result = checkout.settle_payment(placed.payment.id, True, transaction_reference="WAVE-123")

        assert result.payment.status == "succeeded"
        assert result.payment.transaction_reference == "WAVE-123"

        invoice = result.invoice
        assert invoice.status == "paid"
        assert invoice.invoice_number == "FAC-202401-0001"
        assert invoice.payment_id == placed.payment.id
        assert invoice.payment_method == "wave"
        assert invoice.paid_date == result.payment.paid_at
        assert invoice.due_date == clock.now + timedelta(days=30)
        assert invoice.grand_total == Decimal("7820")
        assert invoice.client.name == "Diop"
        assert invoice.client.first_name == "Awa"

        delivery = result.delivery
        assert delivery.status == "pending"
        assert delivery.zone_id == placed.order.zone_id
        assert delivery.address.city == "Dakar"
        assert delivery.scheduled_date == clock.now + timedelta(days=1)

        assert result.order.status == "processing"
        assert result.order.status_history[-1].reason == "payment received"

    def test_requested_delivery_date_is_used(self, checkout, client_user, zone):
        placed = checkout.place_order(
            client_user.id, SAMPLE_LINES, "card", zone_id=zone.id,
            delivery_address=SAMPLE_ADDRESS, requested_delivery_date=utc(2024, 1, 5, 9, 0),
        )

        result = checkout.settle_payment(placed.payment.id, True)

        assert result.delivery.scheduled_date == utc(2024, 1, 5, 9, 0)

    def test_pick_up_order_has_no_delivery(self, checkout, client_user):
        placed = checkout.place_order(client_user.id, SAMPLE_LINES, "cash")

        result = checkout.settle_payment(placed.payment.id, True)

        assert result.delivery is None
        assert result.invoice.status == "paid"

    def test_failure(self, checkout, placed, db):
        result = checkout.settle_payment(placed.payment.id, False, error_message="timeout")

        assert result.payment.status == "failed"
        assert result.payment.error_message == "timeout"
        assert result.order.status == "confirmed"
        assert result.invoice is None
        assert db.invoices.all() == []

    def test_settle_twice_raises(self, checkout, placed):
        checkout.settle_payment(placed.payment.id, True)

        with pytest.raises(InvalidStateError):
            checkout.settle_payment(placed.payment.id, True)

    def test_cancel_after_settlement_refunds(self, checkout, placed):
        result = checkout.settle_payment(placed.payment.id, True)

        checkout.orders.cancel_order(placed.order.id, reason="customer request")

        assert checkout.payments.get_payment(placed.payment.id).status == "refunded"
        assert checkout.deliveries.get_delivery(result.delivery.id).status == "failed"


class TestSettlementRecovery:
    def test_concurrent_settlements_bill_once(self, checkout, placed, db):
        def settle(_):
            try:
                return checkout.settle_payment(placed.payment.id, True)
            except InvalidStateError as e:
                return e

        with ThreadPoolExecutor(max_workers=2) as pool:
            outcomes = list(pool.map(settle, range(2)))

        settled = [o for o in outcomes if isinstance(o, SettlementResult)]
        refused = [o for o in outcomes if isinstance(o, InvalidStateError)]
        assert len(settled) == 1
        assert len(refused) == 1
        assert [i.invoice_number for i in db.invoices.all()] == ["FAC-202401-0001"]
        assert len(db.deliveries.all()) == 1
        assert checkout.orders.get_order(placed.order.id).status == "processing"

    def test_resumes_after_delivery_failure(self, checkout, placed, db, monkeypatch):
        create_delivery = checkout.deliveries.create_delivery

        def exhausted(*args, **kwargs):
            raise ResourceExhaustedError("tracking number", 5)

        monkeypatch.setattr(checkout.deliveries, "create_delivery", exhausted)
        with pytest.raises(ResourceExhaustedError):
            checkout.settle_payment(placed.payment.id, True)

        assert checkout.payments.get_payment(placed.payment.id).status == "succeeded"
        assert checkout.orders.get_order(placed.order.id).status == "confirmed"
        assert db.deliveries.all() == []

        monkeypatch.setattr(checkout.deliveries, "create_delivery", create_delivery)
        result = checkout.settle_payment(placed.payment.id, True)

        assert result.order.status == "processing"
        assert [i.id for i in db.invoices.all()] == [result.invoice.id]
        assert result.invoice.status == "paid"
        assert [d.id for d in db.deliveries.all()] == [result.delivery.id]

    def test_resumes_draft_invoice(self, checkout, placed, db, monkeypatch):
        def unavailable(invoice_id):
            raise ResourceExhaustedError("invoice issuance", 1)

        with monkeypatch.context() as patch:
            patch.setattr(checkout.invoices, "issue_invoice", unavailable)
            with pytest.raises(ResourceExhaustedError):
                checkout.settle_payment(placed.payment.id, True)

        [draft] = db.invoices.all()
        assert draft.status == "draft"

        result = checkout.settle_payment(placed.payment.id, True)

        assert result.invoice.id == draft.id
        assert result.invoice.invoice_number == draft.invoice_number
        assert result.invoice.status == "paid"
        assert result.invoice.paid_date == result.payment.paid_at
        assert len(db.invoices.all()) == 1

    def test_succeeded_payment_cannot_be_failed(self, checkout, placed, monkeypatch):
        def exhausted(*args, **kwargs):
            raise ResourceExhaustedError("tracking number", 5)

        with monkeypatch.context() as patch:
            patch.setattr(checkout.deliveries, "create_delivery", exhausted)
            with pytest.raises(ResourceExhaustedError):
                checkout.settle_payment(placed.payment.id, True)

        with pytest.raises(InvalidStateError):
            checkout.settle_payment(placed.payment.id, False, error_message="late decline")
