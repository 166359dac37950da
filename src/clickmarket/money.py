"""Monetary computation shared by orders and invoices."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Protocol

from .errors import ValidationError
from .models import LineItem
from .utils import to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class Totals:
    """Derived monetary fields of a billable document."""

    subtotal: Decimal
    tax: Decimal
    grand_total: Decimal
    tax_applied: bool  # False means "untaxed", not "taxed at zero"


class Billable(Protocol):
    """Anything carrying line items and the inputs of compute_totals (Order, Invoice)."""

    line_items: list[LineItem]
    shipping_fee: Decimal
    tax_rate: Decimal
    discount: Decimal
    subtotal: Decimal
    tax: Decimal
    grand_total: Decimal
    tax_applied: bool


def build_line_item(data: dict[str, Any] | LineItem) -> LineItem:
    """
    Validate raw line-item input and return a LineItem.

    Any line_total supplied by the caller is ignored.

    Raises:
        ValidationError: On missing product, non-integer or < 1 quantity,
            or negative unit price.
    """
    if isinstance(data, LineItem):
        data = data.to_dict()

    product_id = data.get("product_id")
    if not product_id:
        raise ValidationError("line_items.product_id", "is required")

    quantity = data.get("quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("line_items.quantity", f"must be an integer, got {quantity!r}")
    if quantity < 1:
        raise ValidationError("line_items.quantity", f"must be >= 1, got {quantity}")

    unit_price = to_decimal(data.get("unit_price"), "line_items.unit_price")
    if unit_price < ZERO:
        raise ValidationError("line_items.unit_price", f"must be >= 0, got {unit_price}")

    return LineItem(
        product_id=str(product_id),
        product_name=str(data.get("product_name") or ""),
        quantity=quantity,
        unit_price=unit_price,
        line_total=quantity * unit_price,
    )


def build_line_items(items: Iterable[dict[str, Any] | LineItem]) -> list[LineItem]:
    """
    Validate a whole line-item sequence.

    Raises:
        ValidationError: If the sequence is empty or any item is invalid.
    """
    result = [build_line_item(item) for item in items]
    if not result:
        raise ValidationError("line_items", "at least one line item is required")
    return result


def validate_charges(
    tax_rate: Any, shipping_fee: Any, discount: Any
) -> tuple[Decimal, Decimal, Decimal]:
    """
    Convert and range-check the non-line inputs of compute_totals.

    Returns:
        Tuple of (tax_rate, shipping_fee, discount) as Decimal.
    """
    rate = to_decimal(tax_rate, "tax_rate")
    if rate < ZERO or rate > HUNDRED:
        raise ValidationError("tax_rate", f"must be between 0 and 100, got {rate}")
    fee = to_decimal(shipping_fee, "shipping_fee")
    if fee < ZERO:
        raise ValidationError("shipping_fee", f"must be >= 0, got {fee}")
    disc = to_decimal(discount, "discount")
    if disc < ZERO:
        raise ValidationError("discount", f"must be >= 0, got {disc}")
    return rate, fee, disc


def compute_totals(
    line_items: list[LineItem],
    tax_rate: Any,
    shipping_fee: Any,
    discount: Any,
) -> Totals:
    """
    Compute subtotal, tax and grand total.

    Each line total is recomputed as quantity * unit_price (and written
    back onto the item). Tax is only applied when the rate is positive.
    The grand total is not clamped: a discount larger than
    subtotal + shipping + tax yields a negative total.

    Raises:
        ValidationError: If any input is out of range.
    """
    rate, fee, disc = validate_charges(tax_rate, shipping_fee, discount)
    if not line_items:
        raise ValidationError("line_items", "at least one line item is required")

    subtotal = ZERO
    for item in line_items:
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity < 1:
            raise ValidationError("line_items.quantity", f"must be an integer >= 1, got {item.quantity!r}")
        if item.unit_price < ZERO:
            raise ValidationError("line_items.unit_price", f"must be >= 0, got {item.unit_price}")
        item.line_total = item.quantity * item.unit_price
        subtotal += item.line_total

    if rate > ZERO:
        tax = subtotal * rate / HUNDRED
        tax_applied = True
    else:
        logger.debug("Tax rate is zero; tax not applied (subtotal %s)", subtotal)
        tax = ZERO
        tax_applied = False

    grand_total = subtotal + fee + tax - disc
    return Totals(subtotal=subtotal, tax=tax, grand_total=grand_total, tax_applied=tax_applied)


def recompute(document: Billable) -> Totals:
    """Recompute and overwrite the derived monetary fields of an order or invoice."""
    totals = compute_totals(
        document.line_items, document.tax_rate, document.shipping_fee, document.discount
    )
    document.subtotal = totals.subtotal
    document.tax = totals.tax
    document.grand_total = totals.grand_total
    document.tax_applied = totals.tax_applied
    return totals
