"""Financial reporting and inventory valuation.

All functions here are pure read-side aggregations recomputed from scratch
on every call, so repeated calls on the same input return equal results.
Date filtering works at day granularity: the time of day of a record and of
the range bounds is ignored and both bounds are inclusive.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from . import log
from .constants import TransactionType
from .models import Expense, Product, Transaction
from .pricing import net_unit_cost
from .stock_ledger import critical_products

DateBound = Union[date, datetime, str, None]

ALL_CATEGORIES = "All"


@dataclass(frozen=True)
class FinancialSummary:
    total_sales: Decimal
    total_inventory_purchases: Decimal
    total_expenses: Decimal
    net_profit: Decimal
    expense_to_revenue_ratio: Decimal
    transaction_count: int
    expense_count: int

    @property
    def expense_to_revenue_percent(self) -> Decimal:
        return self.expense_to_revenue_ratio * Decimal("100")

    @property
    def total_outflow(self) -> Decimal:
        return self.total_inventory_purchases + self.total_expenses


@dataclass(frozen=True)
class DashboardSnapshot:
    critical_products: Tuple[Product, ...]
    total_stock_value: Decimal
    category_counts: Dict[str, int]
    recent_transactions: Tuple[Transaction, ...]


@dataclass(frozen=True)
class ValuationLine:
    product: Product
    net_unit_cost: Decimal
    line_value: Decimal


@dataclass(frozen=True)
class ValuationReport:
    lines: Tuple[ValuationLine, ...]
    total_inventory_value: Decimal


def to_day(value: Union[date, datetime, str]) -> date:
    """Reduce a timestamp, date, or ISO string to its calendar day."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(value).date()


def in_date_range(timestamp: Union[date, datetime, str], start: DateBound = None, end: DateBound = None) -> bool:
    """Return whether ``timestamp`` falls within the inclusive ``[start, end]``.

    Either bound may be ``None`` (or an empty string) to leave that side open.
    """

    day = to_day(timestamp)
    if start and day < to_day(start):
        return False
    if end and day > to_day(end):
        return False
    return True


def financial_summary(
    transactions: Iterable[Transaction],
    expenses: Iterable[Expense],
    start: DateBound = None,
    end: DateBound = None,
) -> FinancialSummary:
    """Aggregate sales, purchases, and expenses into a profit figure.

    ``net_profit`` is ``sales - (purchases + expenses)``; the
    expense-to-revenue ratio is ``(purchases + expenses) / sales`` and zero
    when there were no sales. Purchases are counted at their full stored
    ``total_amount`` whether or not they are supplier returns.
    """

    selected_transactions = [tx for tx in transactions if in_date_range(tx.timestamp_iso, start, end)]
    selected_expenses = [exp for exp in expenses if in_date_range(exp.timestamp_iso, start, end)]

    total_sales = sum(
        (tx.total_amount for tx in selected_transactions if tx.transaction_type is TransactionType.OUT),
        Decimal("0"),
    )
    total_purchases = sum(
        (tx.total_amount for tx in selected_transactions if tx.transaction_type is TransactionType.IN),
        Decimal("0"),
    )
    total_expenses = sum((exp.amount for exp in selected_expenses), Decimal("0"))
    outflow = total_purchases + total_expenses
    ratio = outflow / total_sales if total_sales != 0 else Decimal("0")

    summary = FinancialSummary(
        total_sales=total_sales,
        total_inventory_purchases=total_purchases,
        total_expenses=total_expenses,
        net_profit=total_sales - outflow,
        expense_to_revenue_ratio=ratio,
        transaction_count=len(selected_transactions),
        expense_count=len(selected_expenses),
    )
    log.debug(
        "Financial summary [%s..%s]: sales=%s purchases=%s expenses=%s profit=%s",
        start,
        end,
        summary.total_sales,
        summary.total_inventory_purchases,
        summary.total_expenses,
        summary.net_profit,
    )
    return summary


def expenses_by_category(expenses: Iterable[Expense]) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = {}
    for expense in expenses:
        totals[expense.category] = totals.get(expense.category, Decimal("0")) + expense.amount
    return totals


def stock_value(products: Iterable[Product]) -> Decimal:
    """Tax-exclusive value of the stock on hand."""

    return sum((net_unit_cost(p.pricing) * p.stock for p in products), Decimal("0"))


def dashboard_snapshot(
    products: Sequence[Product],
    transactions: Iterable[Transaction],
    *,
    recent: int = 5,
) -> DashboardSnapshot:
    """Headline figures for the overview screen."""

    latest = sorted(transactions, key=lambda tx: tx.timestamp_iso, reverse=True)[:recent]
    return DashboardSnapshot(
        critical_products=tuple(critical_products(products)),
        total_stock_value=stock_value(products),
        category_counts=dict(Counter(p.category for p in products)),
        recent_transactions=tuple(latest),
    )


def filter_products(
    products: Iterable[Product],
    search: Optional[str] = None,
    category: Optional[str] = None,
) -> List[Product]:
    """Filter by a case-insensitive name/SKU search and an exact category."""

    needle = (search or "").strip().lower()
    selected: List[Product] = []
    for product in products:
        if needle and needle not in product.name.lower() and needle not in product.sku.lower():
            continue
        if category and category != ALL_CATEGORIES and product.category != category:
            continue
        selected.append(product)
    return selected


def inventory_valuation(
    products: Iterable[Product],
    search: Optional[str] = None,
    category: Optional[str] = None,
) -> ValuationReport:
    """Tax-exclusive valuation of the filtered catalog.

    Each line is valued at ``net_unit_cost × stock``, never at the landed
    cost, so VAT and incidental surcharges are excluded from the total.
    """

    lines = []
    for product in filter_products(products, search, category):
        unit_cost = net_unit_cost(product.pricing)
        lines.append(ValuationLine(product=product, net_unit_cost=unit_cost, line_value=unit_cost * product.stock))
    total = sum((line.line_value for line in lines), Decimal("0"))
    return ValuationReport(lines=tuple(lines), total_inventory_value=total)
