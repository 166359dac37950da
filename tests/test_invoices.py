"""Tests for the invoice lifecycle."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from clickmarket.errors import ConflictError, ImmutableError, InvalidStateError, ValidationError
from clickmarket.invoices import InvoiceService
from clickmarket.models import ClientSnapshot

from conftest import SAMPLE_LINES, utc

CLIENT = {"name": "Diop", "first_name": "Awa", "email": "awa@example.com"}


@pytest.fixture
def new_year(clock):
    clock.set(utc(2024, 1, 1))
    return clock


@pytest.fixture
def invoice(invoices, draft_order, new_year):
    return invoices.create_invoice(
        draft_order.id, CLIENT, SAMPLE_LINES, shipping_fee=1000, tax_rate=10
    )


class TestCreateInvoice:
    def test_draft_with_number_and_totals(self, invoice, draft_order):
        assert invoice.status == "draft"
        assert invoice.invoice_number == "FAC-202401-0001"
        assert invoice.grand_total == Decimal("7820")
        assert invoice.customer_id == draft_order.customer_id

    def test_numbers_increase_within_month(self, invoices, invoice, draft_order):
        second = invoices.create_invoice(draft_order.id, CLIENT, SAMPLE_LINES)

        assert second.invoice_number == "FAC-202401-0002"

    def test_supplied_number_collision(self, invoices, invoice, draft_order):
        with pytest.raises(ConflictError):
            invoices.create_invoice(
                draft_order.id, CLIENT, SAMPLE_LINES, invoice_number=invoice.invoice_number
            )

    def test_allocation_skips_manually_used_number(self, invoices, draft_order, new_year):
        invoices.create_invoice(
            draft_order.id, CLIENT, SAMPLE_LINES, invoice_number="FAC-202401-0001"
        )

        allocated = invoices.create_invoice(draft_order.id, CLIENT, SAMPLE_LINES)

        assert allocated.invoice_number == "FAC-202401-0002"

    def test_client_requires_name_and_email(self, invoices, draft_order):
        with pytest.raises(ValidationError):
            invoices.create_invoice(draft_order.id, {"name": "Diop"}, SAMPLE_LINES)

    def test_unknown_payment_method(self, invoices, draft_order):
        with pytest.raises(ValidationError):
            invoices.create_invoice(draft_order.id, CLIENT, SAMPLE_LINES, payment_method="barter")

    def test_concurrent_creation_yields_unique_numbers(self, db, draft_order, new_year):
        def create(_):
            service = InvoiceService(db, clock=new_year)
            return service.create_invoice(draft_order.id, CLIENT, SAMPLE_LINES).invoice_number

        with ThreadPoolExecutor(max_workers=10) as pool:
            numbers = list(pool.map(create, range(20)))

        assert sorted(numbers) == [f"FAC-202401-{i:04d}" for i in range(1, 21)]


class TestSnapshots:
    def test_order_edits_do_not_reach_invoice(self, invoices, orders, invoice, draft_order):
        orders.replace_line_items(
            draft_order.id, [{"product_id": "other", "quantity": 9, "unit_price": 1}]
        )

        stored = invoices.get_invoice(invoice.id)
        assert stored.line_items[0].product_id == "prod-mil"
        assert stored.grand_total == Decimal("7820")

    def test_profile_edits_do_not_reach_invoice(self, invoices, users, client_user, draft_order):
        created = invoices.create_invoice(
            draft_order.id, ClientSnapshot.from_user(client_user), SAMPLE_LINES
        )
        users.update_profile(client_user.id, last_name="Ndiaye", phone="+221780000000")

        stored = invoices.get_invoice(created.id)
        assert stored.client.name == "Diop"
        assert stored.client.phone == "+221770000000"


class TestIssueAndOverdue:
    def test_issue_sets_due_date(self, invoices, invoice):
        issued = invoices.issue_invoice(invoice.id)

        assert issued.status == "issued"
        assert issued.issue_date == utc(2024, 1, 1)
        assert issued.due_date == utc(2024, 1, 31)

    def test_issue_keeps_explicit_due_date(self, invoices, draft_order, new_year):
        created = invoices.create_invoice(
            draft_order.id, CLIENT, SAMPLE_LINES, due_date="2024-01-15T00:00:00Z"
        )

        assert invoices.issue_invoice(created.id).due_date == utc(2024, 1, 15)

    def test_issue_twice_raises(self, invoices, invoice):
        invoices.issue_invoice(invoice.id)

        with pytest.raises(InvalidStateError):
            invoices.issue_invoice(invoice.id)

    def test_refresh_flips_to_overdue(self, invoices, invoice, clock):
        invoices.issue_invoice(invoice.id)

        clock.set(utc(2024, 1, 15))
        assert invoices.refresh_invoice(invoice.id).status == "issued"

        clock.set(utc(2024, 2, 5))
        assert invoices.refresh_invoice(invoice.id).status == "overdue"

    def test_sweep_overdue(self, invoices, invoice, draft_order, clock):
        invoices.issue_invoice(invoice.id)
        untouched = invoices.create_invoice(draft_order.id, CLIENT, SAMPLE_LINES)

        clock.set(utc(2024, 3, 1))
        flipped = invoices.sweep_overdue()

        assert [i.id for i in flipped] == [invoice.id]
        assert invoices.get_invoice(untouched.id).status == "draft"

    def test_billing_fields_frozen_after_issue(self, invoices, invoice):
        invoices.issue_invoice(invoice.id)

        with pytest.raises(ImmutableError) as exc_info:
            invoices.update_invoice(invoice.id, tax_rate=20)
        assert exc_info.value.field == "tax_rate"

        updated = invoices.update_invoice(invoice.id, notes="Merci", pdf_file="fac-0001.pdf")
        assert updated.notes == "Merci"
        assert updated.grand_total == Decimal("7820")

    def test_draft_edit_recomputes(self, invoices, invoice):
        updated = invoices.update_invoice(invoice.id, discount=820)

        assert updated.grand_total == Decimal("7000")


class TestPaymentStatus:
    def test_mark_paid_keeps_first_paid_date(self, invoices, invoice, clock):
        invoices.issue_invoice(invoice.id)
        first = invoices.mark_paid(invoice.id, method="wave")
        assert first.status == "paid"
        assert first.paid_date == utc(2024, 1, 1)

        clock.advance(days=3)
        second = invoices.mark_paid(invoice.id)

        assert second.paid_date == utc(2024, 1, 1)
        assert second.payment_method == "wave"

    def test_mark_paid_on_draft_raises(self, invoices, invoice):
        with pytest.raises(InvalidStateError):
            invoices.mark_paid(invoice.id)

    def test_overdue_invoice_can_be_paid(self, invoices, invoice, clock):
        invoices.issue_invoice(invoice.id)
        clock.set(utc(2024, 2, 5))
        invoices.refresh_invoice(invoice.id)

        assert invoices.mark_paid(invoice.id).status == "paid"

    def test_partial_then_paid(self, invoices, invoice):
        invoices.issue_invoice(invoice.id)

        assert invoices.mark_partially_paid(invoice.id, method="cash").status == "partially_paid"
        assert invoices.mark_paid(invoice.id).status == "paid"

    def test_mark_sent_in_any_status(self, invoices, invoice, clock):
        sent = invoices.mark_sent(invoice.id)

        assert sent.sent is True
        assert sent.sent_at == clock.now
        assert sent.status == "draft"

    def test_cancel_unpaid(self, invoices, invoice):
        assert invoices.cancel_invoice(invoice.id).status == "cancelled"

    def test_cannot_cancel_paid(self, invoices, invoice):
        invoices.issue_invoice(invoice.id)
        invoices.mark_paid(invoice.id)

        with pytest.raises(InvalidStateError):
            invoices.cancel_invoice(invoice.id)

    def test_get_by_number(self, invoices, invoice):
        assert invoices.get_by_number("FAC-202401-0001").id == invoice.id
