"""Unit tests for transaction totals, tax decomposition, and checkout building."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from voltflow_erp import totals
from voltflow_erp.cart import Cart
from voltflow_erp.constants import CartKind, TransactionType
from voltflow_erp.models import TransactionItem, ValidationError


def _item(unit_price: str, quantity: str, discount: str = "0", **extra) -> TransactionItem:
    return TransactionItem(
        product_name="Item",
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        discount=Decimal(discount),
        **extra,
    )


def test_line_total_applies_percentage_discount():
    item = _item("100", "3", "10")

    assert totals.gross_amount(item) == Decimal("300")
    assert totals.line_total(item) == Decimal("270")


def test_compute_totals_splits_subtotal_and_discount():
    result = totals.compute_totals([_item("100", "3", "10"), _item("50", "2")])

    assert result.subtotal == Decimal("400")
    assert result.total_amount == Decimal("370")
    assert result.total_discount == Decimal("30")


def test_compute_totals_of_nothing_is_zero():
    result = totals.compute_totals([])
    assert (result.subtotal, result.total_discount, result.total_amount) == (0, 0, 0)


def test_decompose_tax_uses_standard_rate():
    breakdown = totals.decompose_tax(Decimal("120"))

    assert breakdown.tax_exclusive == Decimal("100")
    assert breakdown.tax_amount == Decimal("20")
    assert breakdown.total_amount == Decimal("120")


def test_decompose_tax_by_line_uses_line_snapshots():
    items = [
        _item("110", "1", vat_rate=Decimal("0.10")),
        _item("120", "1", vat_rate=Decimal("0.20")),
        _item("60", "1", is_labor=True),
    ]
    breakdown = totals.decompose_tax_by_line(items, Decimal("0.20"))

    assert breakdown.tax_exclusive == Decimal("250")
    assert breakdown.tax_amount == Decimal("40")
    assert breakdown.total_amount == Decimal("290")


def test_generate_transaction_id_is_sortable_timestamp():
    moment = datetime(2024, 5, 1, 10, 30, 15, 123456, tzinfo=UTC)
    first = totals.generate_transaction_id(when=moment)

    prefix, _, suffix = first.partition("-")
    assert prefix == "T20240501103015123456"
    assert len(suffix) == 6
    assert totals.generate_transaction_id(prefix="E", when=moment).startswith("E20240501103015123456-")
    assert first < totals.generate_transaction_id(when=datetime(2024, 5, 1, 10, 30, 16, tzinfo=UTC))


def test_generate_transaction_id_is_unique_for_shared_timestamp():
    moment = datetime(2024, 3, 1, tzinfo=UTC)
    ids = {totals.generate_transaction_id(when=moment) for _ in range(50)}
    assert len(ids) == 50


def test_build_sale_transaction(make_product, customer):
    cart = Cart(CartKind.SALE)
    cart.add_product_line(make_product(selling_price="100"), Decimal("3"), Decimal("10"))
    cart.add_labor_line("Installation", Decimal("50"))
    moment = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)

    tx = totals.build_transaction(cart, customer, user="ayse", timestamp=moment)

    assert tx.transaction_type is TransactionType.OUT
    assert tx.contact_id == "C1"
    assert tx.contact_name == "Bright Homes Ltd"
    assert tx.subtotal == Decimal("350")
    assert tx.total_discount == Decimal("30")
    assert tx.total_amount == Decimal("320")
    assert tx.timestamp_iso == "2024-05-01T09:00:00+00:00"
    assert tx.transaction_id.startswith("T20240501090000000000-")
    assert tx.items == cart.lines
    assert tx.is_return is False


def test_build_purchase_return_keeps_in_type(make_product, supplier):
    cart = Cart(CartKind.PURCHASE)
    cart.add_product_line(make_product(), Decimal("5"))

    tx = totals.build_transaction(cart, supplier, user="mehmet", is_return=True)

    assert tx.transaction_type is TransactionType.IN
    assert tx.is_return is True


def test_build_rejects_empty_cart(customer):
    with pytest.raises(ValidationError):
        totals.build_transaction(Cart(CartKind.SALE), customer, user="ayse")


def test_build_rejects_missing_counterparty(make_product):
    cart = Cart(CartKind.SALE)
    cart.add_product_line(make_product(), Decimal("1"))
    with pytest.raises(ValidationError):
        totals.build_transaction(cart, None, user="ayse")


def test_build_rejects_supplier_on_sale(make_product, supplier):
    cart = Cart(CartKind.SALE)
    cart.add_product_line(make_product(), Decimal("1"))
    with pytest.raises(ValidationError):
        totals.build_transaction(cart, supplier, user="ayse")


def test_build_rejects_return_on_sale_cart(make_product, customer):
    cart = Cart(CartKind.SALE)
    cart.add_product_line(make_product(), Decimal("1"))
    with pytest.raises(ValidationError):
        totals.build_transaction(cart, customer, user="ayse", is_return=True)
