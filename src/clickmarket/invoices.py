"""Invoice lifecycle for clickmarket."""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from . import money
from .errors import ConflictError, ImmutableError, InvalidStateError, NotFoundError, ResourceExhaustedError, ValidationError
from .models import (
    INVOICE_CANCELLED,
    INVOICE_DRAFT,
    INVOICE_ISSUED,
    INVOICE_OVERDUE,
    INVOICE_PAID,
    INVOICE_PARTIALLY_PAID,
    INVOICE_PAYMENT_METHODS,
    ClientSnapshot,
    Invoice,
    LineItem,
)
from .sequence import next_invoice_number
from .store import Database, Page
from .utils import generate_id, parse_ts, require_text, utc_now

logger = logging.getLogger(__name__)

INVOICE_PAYMENT_TERMS_DAYS = 30
INVOICE_NUMBER_MAX_ATTEMPTS = 5

PAYABLE_STATUSES = (INVOICE_ISSUED, INVOICE_OVERDUE, INVOICE_PARTIALLY_PAID, INVOICE_PAID)
CANCELLABLE_STATUSES = (INVOICE_DRAFT, INVOICE_ISSUED, INVOICE_OVERDUE, INVOICE_PARTIALLY_PAID, INVOICE_CANCELLED)


def build_client_snapshot(data: dict[str, Any] | ClientSnapshot) -> ClientSnapshot:
    """
    Validate and copy client details.

    Raises:
        ValidationError: If name or email is missing.
    """
    if isinstance(data, ClientSnapshot):
        data = data.to_dict()
    return ClientSnapshot(
        name=require_text(data.get("name"), "client.name"),
        email=require_text(data.get("email"), "client.email"),
        first_name=data.get("first_name"),
        phone=data.get("phone"),
        address=data.get("address"),
    )


def _check_method(method: str | None) -> None:
    if method is not None and method not in INVOICE_PAYMENT_METHODS:
        raise ValidationError(
            "payment_method", f"'{method}' is not one of: {', '.join(INVOICE_PAYMENT_METHODS)}"
        )


class InvoiceService:
    """Creates invoices, allocates their numbers and drives their status."""

    def __init__(self, db: Database, clock: Callable[[], datetime] | None = None):
        self.db = db
        self.clock = clock or utc_now

    def _prepare(self, invoice: Invoice, now: datetime) -> None:
        """Recompute totals and apply the overdue rule; runs before every write."""
        money.recompute(invoice)
        if (
            invoice.status == INVOICE_ISSUED
            and invoice.due_date is not None
            and now > invoice.due_date
        ):
            logger.info(
                "Invoice %s overdue (due %s)", invoice.invoice_number, invoice.due_date.date()
            )
            invoice.status = INVOICE_OVERDUE
        invoice.updated_at = now

    def create_invoice(
        self,
        order_id: str,
        client: dict[str, Any] | ClientSnapshot,
        line_items: Iterable[dict[str, Any] | LineItem],
        shipping_fee: Any = 0,
        tax_rate: Any = 0,
        discount: Any = 0,
        payment_id: str | None = None,
        invoice_number: str | None = None,
        customer_id: str | None = None,
        due_date: datetime | str | None = None,
        payment_method: str | None = None,
        notes: str | None = None,
        terms: str | None = None,
    ) -> Invoice:
        """
        Create a draft invoice.

        The line items are copied, so later edits of the order do not reach
        the invoice. A number is allocated from the monthly counter unless
        one is supplied.

        Raises:
            ValidationError: On invalid lines, charges or client details.
            NotFoundError: If the order or payment doesn't exist.
            ConflictError: If a supplied invoice number is taken.
            ResourceExhaustedError: If allocated numbers keep colliding with
                manually supplied ones.
        """
        items = money.build_line_items(line_items)
        rate, fee, disc = money.validate_charges(tax_rate, shipping_fee, discount)
        snapshot = build_client_snapshot(client)
        _check_method(payment_method)

        order = self.db.orders.get(order_id)
        if payment_id is not None:
            self.db.payments.get(payment_id)

        now = self.clock()
        invoice = Invoice(
            id=generate_id(),
            invoice_number=invoice_number or "",
            order_id=order_id,
            customer_id=customer_id or order.customer_id,
            client=snapshot,
            line_items=items,
            payment_id=payment_id,
            shipping_fee=fee,
            tax_rate=rate,
            discount=disc,
            status=INVOICE_DRAFT,
            due_date=parse_ts(due_date),
            payment_method=payment_method,
            notes=notes,
            terms=terms,
            created_at=now,
        )
        self._prepare(invoice, now)

        if invoice_number:
            self.db.invoices.insert(invoice)
        else:
            self._insert_with_number(invoice, now)

        logger.info("Invoice %s created for order %s", invoice.invoice_number, order_id)
        return invoice

    def _insert_with_number(self, invoice: Invoice, now: datetime) -> None:
        for attempt in range(1, INVOICE_NUMBER_MAX_ATTEMPTS + 1):
            invoice.invoice_number = next_invoice_number(self.db.counters, now)
            try:
                self.db.invoices.insert(invoice)
                return
            except ConflictError as e:
                if e.field != "invoice_number":
                    raise
                logger.warning(
                    "Invoice number %s already taken (attempt %d)", invoice.invoice_number, attempt
                )
        raise ResourceExhaustedError("invoice number", INVOICE_NUMBER_MAX_ATTEMPTS)

    def get_invoice(self, invoice_id: str) -> Invoice:
        return self.db.invoices.get(invoice_id)

    def get_by_number(self, invoice_number: str) -> Invoice:
        invoice = self.db.invoices.find_one("invoice_number", invoice_number)
        if invoice is None:
            raise NotFoundError("invoice", invoice_number)
        return invoice

    def list_invoices(self, **query: Any) -> Page[Invoice]:
        return self.db.invoices.list(**query)

    def invoices_for_order(self, order_id: str) -> list[Invoice]:
        return [i for i in self.db.invoices.all() if i.order_id == order_id]

    def save(self, invoice: Invoice) -> Invoice:
        """Persist an invoice; totals and the overdue rule are re-applied first."""
        self._prepare(invoice, self.clock())
        return self.db.invoices.update(invoice)

    def refresh_invoice(self, invoice_id: str) -> Invoice:
        """Re-save an invoice so date-driven rules are evaluated against now."""
        with self.db.invoices.lock():
            return self.save(self.db.invoices.get(invoice_id))

    def sweep_overdue(self) -> list[Invoice]:
        """
        Re-save every issued invoice.

        Returns:
            The invoices that became overdue.
        """
        flipped = []
        with self.db.invoices.lock():
            for invoice in self.db.invoices.all():
                if invoice.status != INVOICE_ISSUED:
                    continue
                self.save(invoice)
                if invoice.status == INVOICE_OVERDUE:
                    flipped.append(invoice)
        return flipped

    def update_invoice(
        self,
        invoice_id: str,
        notes: str | None = None,
        terms: str | None = None,
        pdf_file: str | None = None,
        due_date: datetime | str | None = None,
        line_items: Iterable[dict[str, Any] | LineItem] | None = None,
        shipping_fee: Any = None,
        tax_rate: Any = None,
        discount: Any = None,
    ) -> Invoice:
        """
        Edit an invoice.

        Notes, terms and the PDF reference can change at any time; lines,
        charges and the due date only while the invoice is a draft.

        Raises:
            ImmutableError: If a billing field is changed after issuance.
        """
        with self.db.invoices.lock():
            invoice = self.db.invoices.get(invoice_id)
            billing = {
                "line_items": line_items,
                "shipping_fee": shipping_fee,
                "tax_rate": tax_rate,
                "discount": discount,
                "due_date": due_date,
            }
            for name, value in billing.items():
                if value is not None and invoice.status != INVOICE_DRAFT:
                    raise ImmutableError("invoice", invoice.id, name, invoice.status)

            if line_items is not None:
                invoice.line_items = money.build_line_items(line_items)
            if any(v is not None for v in (shipping_fee, tax_rate, discount)):
                rate, fee, disc = money.validate_charges(
                    invoice.tax_rate if tax_rate is None else tax_rate,
                    invoice.shipping_fee if shipping_fee is None else shipping_fee,
                    invoice.discount if discount is None else discount,
                )
                invoice.tax_rate, invoice.shipping_fee, invoice.discount = rate, fee, disc
            if due_date is not None:
                invoice.due_date = parse_ts(due_date)
            if notes is not None:
                invoice.notes = notes
            if terms is not None:
                invoice.terms = terms
            if pdf_file is not None:
                invoice.pdf_file = pdf_file
            return self.save(invoice)

    def issue_invoice(self, invoice_id: str) -> Invoice:
        """
        Issue a draft invoice.

        The due date defaults to 30 days after the issue date.

        Raises:
            InvalidStateError: If the invoice is not a draft.
        """
        with self.db.invoices.lock():
            invoice = self.db.invoices.get(invoice_id)
            if invoice.status != INVOICE_DRAFT:
                raise InvalidStateError("invoice", invoice.id, invoice.status, "issue")
            now = self.clock()
            invoice.status = INVOICE_ISSUED
            invoice.issue_date = now
            if invoice.due_date is None:
                invoice.due_date = now + timedelta(days=INVOICE_PAYMENT_TERMS_DAYS)
            logger.info("Invoice %s issued, due %s", invoice.invoice_number, invoice.due_date.date())
            return self.save(invoice)

    def mark_paid(
        self,
        invoice_id: str,
        paid_date: datetime | str | None = None,
        method: str | None = None,
    ) -> Invoice:
        """
        Mark an issued, overdue or partially paid invoice as paid.

        The first recorded paid date is kept on repeat calls.

        Raises:
            InvalidStateError: If the invoice is a draft or cancelled.
        """
        _check_method(method)
        with self.db.invoices.lock():
            invoice = self.db.invoices.get(invoice_id)
            if invoice.status not in PAYABLE_STATUSES:
                raise InvalidStateError("invoice", invoice.id, invoice.status, "mark paid")
            invoice.status = INVOICE_PAID
            if invoice.paid_date is None:
                invoice.paid_date = parse_ts(paid_date) or self.clock()
            if method:
                invoice.payment_method = method
            logger.info("Invoice %s paid", invoice.invoice_number)
            return self.save(invoice)

    def mark_partially_paid(self, invoice_id: str, method: str | None = None) -> Invoice:
        """Record a partial settlement of an issued or overdue invoice."""
        _check_method(method)
        with self.db.invoices.lock():
            invoice = self.db.invoices.get(invoice_id)
            if invoice.status not in (INVOICE_ISSUED, INVOICE_OVERDUE, INVOICE_PARTIALLY_PAID):
                raise InvalidStateError("invoice", invoice.id, invoice.status, "mark partially paid")
            invoice.status = INVOICE_PARTIALLY_PAID
            if method:
                invoice.payment_method = method
            return self.save(invoice)

    def mark_sent(self, invoice_id: str) -> Invoice:
        """Flag the invoice as sent to the client. Allowed in any status."""
        with self.db.invoices.lock():
            invoice = self.db.invoices.get(invoice_id)
            invoice.sent = True
            invoice.sent_at = self.clock()
            return self.save(invoice)

    def cancel_invoice(self, invoice_id: str) -> Invoice:
        """
        Cancel an unpaid invoice.

        Raises:
            InvalidStateError: If the invoice is already paid.
        """
        with self.db.invoices.lock():
            invoice = self.db.invoices.get(invoice_id)
            if invoice.status not in CANCELLABLE_STATUSES:
                raise InvalidStateError("invoice", invoice.id, invoice.status, "cancel")
            invoice.status = INVOICE_CANCELLED
            logger.info("Invoice %s cancelled", invoice.invoice_number)
            return self.save(invoice)
