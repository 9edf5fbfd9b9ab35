"""Unit tests for the stock effect of committed transactions."""

from __future__ import annotations

from decimal import Decimal

import pytest

from voltflow_erp import stock_ledger
from voltflow_erp.constants import TransactionType
from voltflow_erp.models import Transaction, TransactionItem


def _transaction(transaction_type: TransactionType, *items: TransactionItem, is_return: bool = False) -> Transaction:
    return Transaction(
        transaction_id="T1",
        items=tuple(items),
        transaction_type=transaction_type,
        contact_id="X",
        contact_name="X",
        subtotal=Decimal("0"),
        total_discount=Decimal("0"),
        total_amount=Decimal("0"),
        timestamp_iso="2024-01-01T00:00:00+00:00",
        user="tester",
        is_return=is_return,
    )


def _line(product_id: str | None, quantity: str, *, is_labor: bool = False) -> TransactionItem:
    return TransactionItem(
        product_id=product_id,
        product_name="Line",
        quantity=Decimal(quantity),
        unit_price=Decimal("1"),
        is_labor=is_labor,
    )


@pytest.mark.parametrize(
    ("transaction_type", "is_return", "expected"),
    [
        (TransactionType.OUT, False, Decimal("15")),
        (TransactionType.IN, True, Decimal("15")),
        (TransactionType.IN, False, Decimal("25")),
    ],
)
def test_sign_rule(make_product, transaction_type, is_return, expected):
    tx = _transaction(transaction_type, _line("P1", "5"), is_return=is_return)

    result = stock_ledger.apply_transaction([make_product(stock="20")], tx)

    assert result.products[0].stock == expected
    assert result.updated_ids == ("P1",)


def test_apply_transaction_does_not_mutate_input(make_product):
    catalog = [make_product(stock="20")]
    stock_ledger.apply_transaction(catalog, _transaction(TransactionType.OUT, _line("P1", "5")))
    assert catalog[0].stock == Decimal("20")


def test_labor_lines_do_not_move_stock(make_product):
    tx = _transaction(TransactionType.OUT, _line(None, "1", is_labor=True))
    result = stock_ledger.apply_transaction([make_product(stock="20")], tx)

    assert result.products[0].stock == Decimal("20")
    assert result.updated_ids == ()


def test_repeated_product_lines_are_aggregated(make_product):
    tx = _transaction(TransactionType.OUT, _line("P1", "2"), _line("P1", "3"))
    assert stock_ledger.stock_deltas(tx) == {"P1": Decimal("-5")}

    result = stock_ledger.apply_transaction([make_product(stock="20")], tx)
    assert result.products[0].stock == Decimal("15")


def test_missing_product_is_skipped_and_logged(make_product, caplog):
    tx = _transaction(TransactionType.OUT, _line("GHOST", "1"), _line("P1", "1"))

    with caplog.at_level("WARNING", logger="voltflow_erp"):
        result = stock_ledger.apply_transaction([make_product(stock="3")], tx)

    assert result.missing_ids == ("GHOST",)
    assert result.products[0].stock == Decimal("2")
    assert "GHOST" in caplog.text


def test_stock_may_go_negative(make_product):
    tx = _transaction(TransactionType.OUT, _line("P1", "5"))
    result = stock_ledger.apply_transaction([make_product(stock="2")], tx)
    assert result.products[0].stock == Decimal("-3")


def test_critical_products_inclusive_threshold(make_product):
    catalog = [
        make_product("P1", stock="5", critical_threshold="5"),
        make_product("P2", stock="6", critical_threshold="5"),
        make_product("P3", stock="-1", critical_threshold="0"),
    ]
    assert [p.product_id for p in stock_ledger.critical_products(catalog)] == ["P1", "P3"]
