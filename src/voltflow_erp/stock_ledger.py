"""Stock ledger: the stock effect of committed transactions.

Every non-labor line with a product id moves that product's stock by
``direction × quantity``, where the direction is ``-1`` for ``OUT``
transactions and for supplier returns (``IN`` with ``is_return``), and
``+1`` otherwise. Effects are never undone; a mistake is corrected by a new
compensating transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from . import log
from .constants import TransactionType
from .models import Product, Transaction


@dataclass(frozen=True)
class LedgerResult:
    """New catalog state after applying one transaction."""

    products: Tuple[Product, ...]
    updated_ids: Tuple[str, ...]
    missing_ids: Tuple[str, ...]


def stock_direction(transaction: Transaction) -> int:
    if transaction.transaction_type is TransactionType.OUT:
        return -1
    if transaction.is_return:
        return -1
    return 1


def stock_deltas(transaction: Transaction) -> Dict[str, Decimal]:
    """Signed quantity change per product id, labor lines skipped."""

    direction = stock_direction(transaction)
    deltas: Dict[str, Decimal] = {}
    for item in transaction.items:
        if item.is_labor or not item.product_id:
            continue
        deltas[item.product_id] = deltas.get(item.product_id, Decimal("0")) + direction * item.quantity
    return deltas


def apply_transaction(products: Iterable[Product], transaction: Transaction) -> LedgerResult:
    """Return the catalog with ``transaction``'s stock effect applied.

    The input is not modified. Lines that reference a product absent from
    ``products`` are skipped and reported in ``missing_ids``; the
    transaction itself remains valid.
    """

    catalog: List[Product] = list(products)
    index = {product.product_id: position for position, product in enumerate(catalog)}
    updated: List[str] = []
    missing: List[str] = []

    for product_id, delta in stock_deltas(transaction).items():
        position = index.get(product_id)
        if position is None:
            log.warning(
                "Stock update skipped for unknown product '%s' in transaction '%s'",
                product_id,
                transaction.transaction_id,
            )
            missing.append(product_id)
            continue
        current = catalog[position]
        catalog[position] = replace(current, stock=current.stock + delta)
        updated.append(product_id)
        log.debug(
            "Stock for '%s' moved %s -> %s",
            product_id,
            current.stock,
            catalog[position].stock,
        )

    return LedgerResult(
        products=tuple(catalog),
        updated_ids=tuple(updated),
        missing_ids=tuple(missing),
    )


def critical_products(products: Iterable[Product]) -> List[Product]:
    """Products whose stock has fallen to or below their reorder threshold."""

    return [product for product in products if product.stock <= product.critical_threshold]
