"""Tests for the monetary calculator."""

from decimal import Decimal

import pytest

from clickmarket.errors import ValidationError
from clickmarket.models import LineItem
from clickmarket.money import build_line_item, build_line_items, compute_totals, validate_charges


def lines(*rows):
    return [
        LineItem(product_id=pid, product_name=pid, quantity=qty, unit_price=Decimal(price))
        for pid, qty, price in rows
    ]


class TestComputeTotals:
    def test_taxed_order(self):
        totals = compute_totals(lines(("p1", 2, "3100")), tax_rate=10, shipping_fee=1000, discount=0)

        assert totals.subtotal == Decimal("6200")
        assert totals.tax == Decimal("620")
        assert totals.grand_total == Decimal("7820")
        assert totals.tax_applied is True

    def test_line_totals_are_recomputed(self):
        items = lines(("p1", 3, "250"))
        items[0].line_total = Decimal("1")

        compute_totals(items, 0, 0, 0)

        assert items[0].line_total == Decimal("750")

    def test_line_order_does_not_matter(self):
        a = compute_totals(lines(("p1", 2, "3100"), ("p2", 1, "499.99")), 18, 500, 100)
        b = compute_totals(lines(("p2", 1, "499.99"), ("p1", 2, "3100")), 18, 500, 100)

        assert a == b

    def test_zero_rate_is_untaxed(self):
        totals = compute_totals(lines(("p1", 2, "3100")), 0, 1000, 0)

        assert totals.tax == Decimal("0")
        assert totals.tax_applied is False
        assert totals.grand_total == Decimal("7200")

    def test_large_discount_gives_negative_total(self):
        totals = compute_totals(lines(("p1", 2, "3100")), 0, 1000, 10000)

        assert totals.grand_total == Decimal("-2800")

    def test_decimal_arithmetic_is_exact(self):
        totals = compute_totals(lines(("p1", 3, "0.1")), 0, 0, 0)

        assert totals.subtotal == Decimal("0.3")

    def test_empty_lines_raise(self):
        with pytest.raises(ValidationError):
            compute_totals([], 0, 0, 0)

    @pytest.mark.parametrize(
        "tax_rate,shipping_fee,discount,field",
        [
            (-1, 0, 0, "tax_rate"),
            (101, 0, 0, "tax_rate"),
            (0, -5, 0, "shipping_fee"),
            (0, 0, -5, "discount"),
            ("abc", 0, 0, "tax_rate"),
            (float("nan"), 0, 0, "tax_rate"),
        ],
    )
    def test_out_of_range_charges(self, tax_rate, shipping_fee, discount, field):
        with pytest.raises(ValidationError) as exc_info:
            compute_totals(lines(("p1", 1, "10")), tax_rate, shipping_fee, discount)
        assert exc_info.value.field == field


class TestBuildLineItem:
    def test_supplied_line_total_is_ignored(self):
        item = build_line_item(
            {"product_id": "p1", "quantity": 3, "unit_price": "2.5", "line_total": "999"}
        )

        assert item.line_total == Decimal("7.5")

    def test_float_prices_keep_their_decimal_value(self):
        item = build_line_item({"product_id": "p1", "quantity": 3, "unit_price": 0.1})

        assert item.unit_price == Decimal("0.1")
        assert item.line_total == Decimal("0.3")

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True, "2", None])
    def test_invalid_quantity(self, quantity):
        with pytest.raises(ValidationError) as exc_info:
            build_line_item({"product_id": "p1", "quantity": quantity, "unit_price": 10})
        assert exc_info.value.field == "line_items.quantity"

    def test_negative_unit_price(self):
        with pytest.raises(ValidationError):
            build_line_item({"product_id": "p1", "quantity": 1, "unit_price": -1})

    def test_missing_product(self):
        with pytest.raises(ValidationError):
            build_line_item({"quantity": 1, "unit_price": 10})

    def test_empty_sequence(self):
        with pytest.raises(ValidationError):
            build_line_items([])

    def test_validate_charges_returns_decimals(self):
        assert validate_charges("19.25", 0, "0.5") == (Decimal("19.25"), Decimal("0"), Decimal("0.5"))
