"""Bulk product import and tabular export.

Import files carry one product per row after a header row, in either the
short layout::

    SKU, Name, Category, Unit, Stock, CriticalThreshold, PurchasePrice, SellingPrice

or the long layout, which inserts ``ExchangeRate, VATRate%, OtherExpenses``
before ``SellingPrice``. A single malformed row rejects the whole batch.

Exports are lists of flat dictionaries written as CSV with the header taken
from the first record's keys. Money columns are pre-formatted strings such as
``1.234,50 TL``.
"""

from __future__ import annotations

import csv
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import openpyxl

from . import log
from .constants import DEFAULT_CURRENCY_SYMBOL, STANDARD_VAT_RATE
from .models import Expense, ImportFormatError, Pricing, Product, Transaction
from .reporting import ValuationReport

SHORT_LAYOUT = 8
LONG_LAYOUT = 11

_CENT = Decimal("0.01")


def _number(raw: object, *, row_number: int, column: str) -> Decimal:
    text = "" if raw is None else str(raw).strip()
    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise ImportFormatError(f"Row {row_number}: column '{column}' is not a number ({text!r})") from exc
    if not value.is_finite():
        raise ImportFormatError(f"Row {row_number}: column '{column}' is not a number ({text!r})")
    return value


def _blank(row: Sequence[object]) -> bool:
    return all(cell is None or str(cell).strip() == "" for cell in row)


def _header_width(header: Sequence[object]) -> int:
    cells = [("" if cell is None else str(cell).strip()) for cell in header]
    while cells and cells[-1] == "":
        cells.pop()
    return len(cells)


def parse_product_rows(
    rows: Iterable[Sequence[object]],
    *,
    first_row_number: int = 2,
    width: Optional[int] = None,
) -> List[Product]:
    """Turn raw import rows (header already removed) into draft products.

    Drafts carry an empty ``product_id``; identifiers are assigned when the
    batch is stored. Fully blank rows are ignored. ``VATRate%`` is a
    percentage (``18`` means ``0.18``). When ``width`` is given (the header
    row's width) every row is cut to it, so cells to the right of the
    header are ignored.

    Raises:
        ImportFormatError: On the first row with the wrong column count, an
            empty SKU or name, or a non-numeric value. Nothing is returned
            for the batch in that case.
    """

    drafts: List[Product] = []
    for row_number, raw in enumerate(rows, start=first_row_number):
        cells = [("" if cell is None else str(cell).strip()) for cell in raw]
        if width is not None:
            cells = cells[:width]
        if _blank(cells):
            continue
        # Spreadsheets often pad rows with trailing empty cells.
        while width is None and len(cells) > SHORT_LAYOUT and cells[-1] == "" and len(cells) != LONG_LAYOUT:
            cells.pop()
        if len(cells) not in (SHORT_LAYOUT, LONG_LAYOUT):
            log.error("Import rejected: row %d has %d columns", row_number, len(cells))
            raise ImportFormatError(
                f"Row {row_number}: expected {SHORT_LAYOUT} or {LONG_LAYOUT} columns, found {len(cells)}"
            )

        sku, name, category, unit = cells[0], cells[1], cells[2], cells[3]
        if not sku or not name:
            log.error("Import rejected: row %d is missing SKU or name", row_number)
            raise ImportFormatError(f"Row {row_number}: SKU and Name are required")

        stock = _number(cells[4], row_number=row_number, column="Stock")
        threshold = _number(cells[5], row_number=row_number, column="CriticalThreshold")
        purchase_price = _number(cells[6], row_number=row_number, column="PurchasePrice")
        if len(cells) == LONG_LAYOUT:
            exchange_rate = _number(cells[7], row_number=row_number, column="ExchangeRate")
            vat_rate = _number(cells[8], row_number=row_number, column="VATRate%") / Decimal("100")
            other_expenses = _number(cells[9], row_number=row_number, column="OtherExpenses")
            selling_price = _number(cells[10], row_number=row_number, column="SellingPrice")
        else:
            exchange_rate = Decimal("1")
            vat_rate = STANDARD_VAT_RATE
            other_expenses = Decimal("0")
            selling_price = _number(cells[7], row_number=row_number, column="SellingPrice")

        drafts.append(
            Product(
                product_id="",
                sku=sku,
                name=name,
                category=category,
                unit=unit,
                stock=stock,
                critical_threshold=threshold,
                pricing=Pricing(
                    purchase_price=purchase_price,
                    exchange_rate=exchange_rate,
                    vat_rate=vat_rate,
                    other_expenses=other_expenses,
                ),
                selling_price=selling_price,
            )
        )

    log.debug("Parsed %d product rows for import", len(drafts))
    return drafts


def read_product_csv(path: Path) -> List[Product]:
    """Parse a comma-separated import file. The first line is the header."""

    with Path(path).open("r", newline="", encoding="utf-8-sig") as handle:
        rows = list(csv.reader(handle))
    if not rows:
        return []
    return parse_product_rows(rows[1:], width=_header_width(rows[0]))


def read_product_xlsx(path: Path) -> List[Product]:
    """Parse the first worksheet of an Excel import file."""

    workbook = openpyxl.load_workbook(Path(path), read_only=True, data_only=True)
    try:
        rows = list(workbook.active.iter_rows(values_only=True))
    finally:
        workbook.close()
    if not rows:
        return []
    return parse_product_rows(rows[1:], width=_header_width(rows[0]))


def read_product_file(path: Path) -> List[Product]:
    """Dispatch on the file suffix to the CSV or Excel reader.

    Raises:
        ImportFormatError: If the suffix is neither ``.csv`` nor an Excel one.
    """

    suffix = Path(path).suffix.lower()
    if suffix == ".csv":
        return read_product_csv(path)
    if suffix in {".xlsx", ".xlsm"}:
        return read_product_xlsx(path)
    raise ImportFormatError(f"Unsupported import file type: {suffix or '(none)'}")


def format_currency(value: Decimal, symbol: str = DEFAULT_CURRENCY_SYMBOL) -> str:
    """Format ``value`` with dot thousands and comma decimals: ``1.234,50 TL``."""

    amount = Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    grouped = f"{abs(amount):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}{grouped} {symbol}".rstrip()


def write_csv(rows: Sequence[Mapping[str, Any]], destination: Path) -> int:
    """Write ``rows`` to ``destination`` and return the number written.

    The header is the first record's keys. An empty sequence writes nothing.
    """

    if not rows:
        log.info("No rows to export to '%s'", destination)
        return 0

    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    with destination.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(rows[0].keys()), extrasaction="ignore")
        writer.writeheader()
        writer.writerows(rows)
    log.info("Exported %d rows to '%s'", len(rows), destination)
    return len(rows)


def transaction_rows(transactions: Iterable[Transaction], currency: str = DEFAULT_CURRENCY_SYMBOL) -> List[Dict[str, str]]:
    return [
        {
            "Transaction ID": tx.transaction_id,
            "Date": tx.timestamp_iso[:10],
            "Type": tx.transaction_type.value,
            "Return": "Yes" if tx.is_return else "No",
            "Contact": tx.contact_name,
            "Lines": str(len(tx.items)),
            "Subtotal": format_currency(tx.subtotal, currency),
            "Discount": format_currency(tx.total_discount, currency),
            "Total": format_currency(tx.total_amount, currency),
            "User": tx.user,
        }
        for tx in transactions
    ]


def valuation_rows(report: ValuationReport, currency: str = DEFAULT_CURRENCY_SYMBOL) -> List[Dict[str, str]]:
    """One export row per valued product, all amounts tax-exclusive."""

    return [
        {
            "SKU": line.product.sku,
            "Name": line.product.name,
            "Category": line.product.category,
            "Stock": str(line.product.stock),
            "Unit": line.product.unit,
            "Net Unit Cost": format_currency(line.net_unit_cost, currency),
            "Line Value": format_currency(line.line_value, currency),
        }
        for line in report.lines
    ]


def expense_rows(expenses: Iterable[Expense], currency: str = DEFAULT_CURRENCY_SYMBOL) -> List[Dict[str, str]]:
    return [
        {
            "Expense ID": expense.expense_id,
            "Date": expense.timestamp_iso[:10],
            "Category": expense.category,
            "Description": expense.description,
            "Amount": format_currency(expense.amount, currency),
            "User": expense.user_name,
        }
        for expense in expenses
    ]
