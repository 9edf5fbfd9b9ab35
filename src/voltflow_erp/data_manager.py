"""Data access layer for VoltFlow ERP.

This module provides low-level helpers that read from and write to the
master workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and atomically persisting the Excel file.
3. Sheet operations: loading typed records for one tenant and appending,
   updating, or deleting individual rows.

Every sheet carries a ``CompanyID`` column. Readers only ever yield rows of
the requested tenant and row lookups match on the tenant as well as the key.
"""


from __future__ import annotations

import configparser
import os
import tempfile
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import openpyxl
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_CURRENCY_SYMBOL,
    STANDARD_VAT_RATE,
    ContactType,
    SheetName,
    TransactionType,
)
from .models import CatalogSettings, Contact, Expense, Pricing, Product, Transaction, TransactionItem


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
CONTACTS_SHEET = SheetName.CONTACTS.value
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
TRANSACTION_ITEMS_SHEET = SheetName.TRANSACTION_ITEMS.value
EXPENSES_SHEET = SheetName.EXPENSES.value
SETTINGS_SHEET = SheetName.SETTINGS.value

SETTING_CATEGORY = "CATEGORY"
SETTING_UNIT = "UNIT"

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    PRODUCTS_SHEET: [
        "ProductID",
        "CompanyID",
        "SKU",
        "Name",
        "Category",
        "Unit",
        "Stock",
        "CriticalThreshold",
        "PurchasePrice",
        "ExchangeRate",
        "VatRate",
        "OtherExpenses",
        "SellingPrice",
        "IsActive",
    ],
    CONTACTS_SHEET: [
        "ContactID",
        "CompanyID",
        "Name",
        "ContactType",
        "Phone",
        "Address",
    ],
    TRANSACTIONS_SHEET: [
        "TransactionID",
        "CompanyID",
        "Timestamp",
        "TransactionType",
        "ContactID",
        "ContactName",
        "Subtotal",
        "TotalDiscount",
        "TotalAmount",
        "UserName",
        "IsReturn",
    ],
    TRANSACTION_ITEMS_SHEET: [
        "TransactionID",
        "CompanyID",
        "LineNo",
        "ProductID",
        "ProductName",
        "Quantity",
        "UnitPrice",
        "Discount",
        "IsLabor",
        "VatRate",
    ],
    EXPENSES_SHEET: [
        "ExpenseID",
        "CompanyID",
        "Timestamp",
        "Category",
        "Amount",
        "Description",
        "UserName",
    ],
    SETTINGS_SHEET: [
        "CompanyID",
        "Kind",
        "Value",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    company_name: str
    schema_version: str
    company_id: str
    default_customer_id: Optional[str] = None
    standard_vat_rate: Decimal = STANDARD_VAT_RATE
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file.

    An explicit path wins without verification. Otherwise the search walks
    up from the current working directory and returns the first
    ``config.ini`` it finds.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are anchored to ``base_path`` (or the
    current working directory) and resolved. The ``[Tax]`` and ``[Locale]``
    sections and ``Defaults.DefaultCustomer`` are optional.

    Raises:
        KeyError: If one of the required sections or options is missing, or
            the configured VAT rate is not a number.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        company_name = parser.get("System", "CompanyName")
        schema_version = parser.get("System", "SchemaVersion")
        company_id = parser.get("Defaults", "CompanyID")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    default_customer = parser.get("Defaults", "DefaultCustomer", fallback="").strip() or None
    vat_raw = parser.get("Tax", "StandardVatRate", fallback=str(STANDARD_VAT_RATE))
    try:
        vat_rate = Decimal(vat_raw.strip())
    except InvalidOperation as exc:
        raise KeyError(f"Invalid Tax.StandardVatRate value: {vat_raw!r}") from exc
    currency_symbol = parser.get("Locale", "CurrencySymbol", fallback=DEFAULT_CURRENCY_SYMBOL)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        company_name=company_name,
        schema_version=schema_version,
        company_id=company_id,
        default_customer_id=default_customer,
        standard_vat_rate=vat_rate,
        currency_symbol=currency_symbol,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook in a single atomic replace.

    The workbook is serialized to a temporary sibling file first and then
    moved over ``destination``, so readers never observe a half-written
    file and a crash mid-save leaves the previous version intact.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    handle, temp_name = tempfile.mkstemp(prefix=f".{dest.stem}-", suffix=dest.suffix, dir=dest.parent)
    os.close(handle)
    try:
        workbook.save(temp_name)
        os.replace(temp_name, dest)
    except BaseException:
        log.error("Saving workbook '%s' failed; previous file left in place", dest)
        Path(temp_name).unlink(missing_ok=True)
        raise
    log.debug("Workbook written atomically to '%s'", dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding unsaved in-memory changes."""

    return open_workbook(data_file)


def _header_map(workbook: Workbook, sheet_name: str) -> Dict[str, int]:
    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def _iter_tenant_rows(workbook: Workbook, sheet_name: str, company_id: str) -> Iterable[Dict[str, Any]]:
    """Yield non-empty rows of ``sheet_name`` belonging to ``company_id`` as dicts."""

    columns = SHEET_COLUMNS[sheet_name]
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, max_col=len(columns), values_only=True):
        if not any(cell is not None for cell in raw):
            continue
        row = dict(zip(columns, raw))
        if str(row["CompanyID"]) == company_id:
            yield row


def locate_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    *,
    company_id: Optional[str] = None,
) -> Optional[int]:
    """Find the first row whose ``key_column`` equals ``key_value``.

    When ``company_id`` is given the row must also belong to that tenant.

    Returns:
        int | None: 1-based Excel row index, or ``None`` when nothing matches.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_index = header_map[key_column] - 1
    company_index = header_map["CompanyID"] - 1
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_index] is None or str(row[key_index]) != key_value:
            continue
        if company_id is not None and str(row[company_index]) != company_id:
            continue
        return row_idx

    return None


def _write_row(workbook: Workbook, sheet_name: str, row_index: int, values: Sequence[object]) -> None:
    sheet = workbook[sheet_name]
    for column, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=column, value=value)


def _upsert_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str, company_id: str, values: Sequence[object]) -> bool:
    """Overwrite the tenant's row for ``key_value`` or append a new one.

    Returns:
        bool: ``True`` when a new row was appended.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value, company_id=company_id)
    if row_index is None:
        workbook[sheet_name].append(list(values))
        return True
    _write_row(workbook, sheet_name, row_index, values)
    return False


def _delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str, company_id: str) -> bool:
    row_index = locate_row(workbook, sheet_name, key_column, key_value, company_id=company_id)
    if row_index is None:
        return False
    workbook[sheet_name].delete_rows(row_index)
    return True


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def iter_products(workbook: Workbook, company_id: str) -> Iterable[Product]:
    for row in _iter_tenant_rows(workbook, PRODUCTS_SHEET, company_id):
        yield deserialize_product(row)


def upsert_product(workbook: Workbook, company_id: str, record: Product) -> bool:
    """Write ``record`` over the tenant's existing row or append it.

    Returns:
        bool: ``True`` when the product was new.
    """

    return _upsert_row(
        workbook,
        PRODUCTS_SHEET,
        "ProductID",
        record.product_id,
        company_id,
        serialize_product(company_id, record),
    )


def update_product_stock(workbook: Workbook, company_id: str, product_id: str, stock: Decimal) -> None:
    """Overwrite the ``Stock`` cell of one product.

    Raises:
        KeyError: If the tenant has no product ``product_id``.
    """

    row_index = locate_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, company_id=company_id)
    if row_index is None:
        raise KeyError(f"Product not found: {product_id}")
    column = _header_map(workbook, PRODUCTS_SHEET)["Stock"]
    workbook[PRODUCTS_SHEET].cell(row=row_index, column=column, value=stock)


def delete_product(workbook: Workbook, company_id: str, product_id: str) -> bool:
    return _delete_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, company_id)


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


def iter_contacts(workbook: Workbook, company_id: str) -> Iterable[Contact]:
    for row in _iter_tenant_rows(workbook, CONTACTS_SHEET, company_id):
        yield deserialize_contact(row)


def upsert_contact(workbook: Workbook, company_id: str, record: Contact) -> bool:
    return _upsert_row(
        workbook,
        CONTACTS_SHEET,
        "ContactID",
        record.contact_id,
        company_id,
        serialize_contact(company_id, record),
    )


def delete_contact(workbook: Workbook, company_id: str, contact_id: str) -> bool:
    return _delete_row(workbook, CONTACTS_SHEET, "ContactID", contact_id, company_id)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def iter_transactions(workbook: Workbook, company_id: str) -> Iterable[Transaction]:
    """Stream the tenant's transactions with their line items attached.

    Line items are grouped by ``TransactionID`` and ordered by ``LineNo``
    before being attached, so the original cart order is preserved.
    """

    items_by_transaction: Dict[str, List[tuple[int, TransactionItem]]] = {}
    for row in _iter_tenant_rows(workbook, TRANSACTION_ITEMS_SHEET, company_id):
        line_no = int(row["LineNo"] or 0)
        items_by_transaction.setdefault(str(row["TransactionID"]), []).append(
            (line_no, deserialize_transaction_item(row))
        )

    for row in _iter_tenant_rows(workbook, TRANSACTIONS_SHEET, company_id):
        lines = sorted(items_by_transaction.get(str(row["TransactionID"]), []), key=lambda pair: pair[0])
        yield deserialize_transaction(row, [item for _, item in lines])


def append_transaction(workbook: Workbook, company_id: str, record: Transaction) -> None:
    """Append a transaction header and all of its line items."""

    workbook[TRANSACTIONS_SHEET].append(serialize_transaction(company_id, record))
    items_sheet = workbook[TRANSACTION_ITEMS_SHEET]
    for line_no, item in enumerate(record.items, start=1):
        items_sheet.append(serialize_transaction_item(company_id, record.transaction_id, line_no, item))


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


def iter_expenses(workbook: Workbook, company_id: str) -> Iterable[Expense]:
    for row in _iter_tenant_rows(workbook, EXPENSES_SHEET, company_id):
        yield deserialize_expense(row)


def append_expense(workbook: Workbook, record: Expense) -> None:
    workbook[EXPENSES_SHEET].append(serialize_expense(record))


def delete_expense(workbook: Workbook, company_id: str, expense_id: str) -> bool:
    return _delete_row(workbook, EXPENSES_SHEET, "ExpenseID", expense_id, company_id)


# ---------------------------------------------------------------------------
# Catalog settings
# ---------------------------------------------------------------------------


def read_catalog_settings(workbook: Workbook, company_id: str) -> CatalogSettings:
    categories: List[str] = []
    units: List[str] = []
    for row in _iter_tenant_rows(workbook, SETTINGS_SHEET, company_id):
        target = categories if row["Kind"] == SETTING_CATEGORY else units
        target.append(str(row["Value"]))
    return CatalogSettings(categories=tuple(categories), units=tuple(units))


def write_catalog_settings(workbook: Workbook, company_id: str, settings: CatalogSettings) -> None:
    """Replace every settings row of the tenant with ``settings``."""

    sheet = workbook[SETTINGS_SHEET]
    stale = [
        row_idx
        for row_idx, row in enumerate(sheet.iter_rows(min_row=2, max_col=1, values_only=True), start=2)
        if row[0] is not None and str(row[0]) == company_id
    ]
    for row_idx in reversed(stale):
        sheet.delete_rows(row_idx)
    for category in settings.categories:
        sheet.append([company_id, SETTING_CATEGORY, category])
    for unit in settings.units:
        sheet.append([company_id, SETTING_UNIT, unit])


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _decimal(raw: object, default: str = "0") -> Decimal:
    if raw is None or raw == "":
        return Decimal(default)
    return Decimal(str(raw))


def _optional_decimal(raw: object) -> Optional[Decimal]:
    if raw is None or raw == "":
        return None
    return Decimal(str(raw))


def _optional_text(raw: object) -> Optional[str]:
    if raw is None or raw == "":
        return None
    return str(raw)


def serialize_product(company_id: str, record: Product) -> list[object]:
    """Arrange a product in the ``Products`` sheet column order."""

    return [
        record.product_id,
        company_id,
        record.sku,
        record.name,
        record.category,
        record.unit,
        record.stock,
        record.critical_threshold,
        record.pricing.purchase_price,
        record.pricing.exchange_rate,
        record.pricing.vat_rate,
        record.pricing.other_expenses,
        record.selling_price,
        record.is_active,
    ]


def deserialize_product(row: Mapping[str, object]) -> Product:
    """Convert a ``Products`` row into a :class:`Product`.

    Excel may hand numbers back as ``int`` or ``float`` and may interpret
    identifiers as numbers; both are normalized here.
    """

    return Product(
        product_id=str(row["ProductID"]),
        sku=str(row["SKU"] or ""),
        name=str(row["Name"] or ""),
        category=str(row["Category"] or ""),
        unit=str(row["Unit"] or ""),
        stock=_decimal(row["Stock"]),
        critical_threshold=_decimal(row["CriticalThreshold"]),
        pricing=Pricing(
            purchase_price=_decimal(row["PurchasePrice"]),
            exchange_rate=_decimal(row["ExchangeRate"], "1"),
            vat_rate=_decimal(row["VatRate"], str(STANDARD_VAT_RATE)),
            other_expenses=_decimal(row["OtherExpenses"]),
        ),
        selling_price=_decimal(row["SellingPrice"]),
        is_active=True if row["IsActive"] is None else bool(row["IsActive"]),
    )


def serialize_contact(company_id: str, record: Contact) -> list[object]:
    return [
        record.contact_id,
        company_id,
        record.name,
        record.contact_type.value,
        record.phone,
        record.address,
    ]


def deserialize_contact(row: Mapping[str, object]) -> Contact:
    return Contact(
        contact_id=str(row["ContactID"]),
        name=str(row["Name"] or ""),
        contact_type=ContactType(str(row["ContactType"])),
        phone=str(row["Phone"] or ""),
        address=str(row["Address"] or ""),
    )


def serialize_transaction(company_id: str, record: Transaction) -> list[object]:
    return [
        record.transaction_id,
        company_id,
        record.timestamp_iso,
        record.transaction_type.value,
        record.contact_id,
        record.contact_name,
        record.subtotal,
        record.total_discount,
        record.total_amount,
        record.user,
        record.is_return,
    ]


def deserialize_transaction(row: Mapping[str, object], items: Sequence[TransactionItem]) -> Transaction:
    return Transaction(
        transaction_id=str(row["TransactionID"]),
        items=tuple(items),
        transaction_type=TransactionType(str(row["TransactionType"])),
        contact_id=str(row["ContactID"] or ""),
        contact_name=str(row["ContactName"] or ""),
        subtotal=_decimal(row["Subtotal"]),
        total_discount=_decimal(row["TotalDiscount"]),
        total_amount=_decimal(row["TotalAmount"]),
        timestamp_iso=str(row["Timestamp"] or ""),
        user=str(row["UserName"] or ""),
        is_return=bool(row["IsReturn"]),
    )


def serialize_transaction_item(company_id: str, transaction_id: str, line_no: int, item: TransactionItem) -> list[object]:
    return [
        transaction_id,
        company_id,
        line_no,
        item.product_id,
        item.product_name,
        item.quantity,
        item.unit_price,
        item.discount,
        item.is_labor,
        item.vat_rate,
    ]


def deserialize_transaction_item(row: Mapping[str, object]) -> TransactionItem:
    return TransactionItem(
        product_id=_optional_text(row["ProductID"]),
        product_name=str(row["ProductName"] or ""),
        quantity=_decimal(row["Quantity"]),
        unit_price=_decimal(row["UnitPrice"]),
        discount=_decimal(row["Discount"]),
        is_labor=bool(row["IsLabor"]),
        vat_rate=_optional_decimal(row["VatRate"]),
    )


def serialize_expense(record: Expense) -> list[object]:
    return [
        record.expense_id,
        record.company_id,
        record.timestamp_iso,
        record.category,
        record.amount,
        record.description,
        record.user_name,
    ]


def deserialize_expense(row: Mapping[str, object]) -> Expense:
    return Expense(
        expense_id=str(row["ExpenseID"]),
        company_id=str(row["CompanyID"]),
        category=str(row["Category"] or ""),
        amount=_decimal(row["Amount"]),
        description=str(row["Description"] or ""),
        timestamp_iso=str(row["Timestamp"] or ""),
        user_name=str(row["UserName"] or ""),
    )
