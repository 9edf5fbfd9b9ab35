"""Unit tests for bulk product import and CSV export."""

from __future__ import annotations

import csv
from decimal import Decimal

import openpyxl
import pytest

from voltflow_erp import reporting, transfer
from voltflow_erp.constants import TransactionType
from voltflow_erp.models import ImportFormatError, Transaction


SHORT_ROW = ["LED-01", "LED Panel", "Lighting", "Piece", "12", "3", "10.5", "25"]
LONG_ROW = ["CBL-25", "NYM Cable", "Cable", "Metre", "500", "100", "2", "30", "18", "0.5", "4"]


def test_parse_short_layout_applies_defaults():
    (product,) = transfer.parse_product_rows([SHORT_ROW])

    assert product.product_id == ""
    assert product.sku == "LED-01"
    assert product.stock == Decimal("12")
    assert product.critical_threshold == Decimal("3")
    assert product.pricing.purchase_price == Decimal("10.5")
    assert product.pricing.exchange_rate == Decimal("1")
    assert product.pricing.vat_rate == Decimal("0.20")
    assert product.pricing.other_expenses == Decimal("0")
    assert product.selling_price == Decimal("25")


def test_parse_long_layout_reads_percentage_vat():
    (product,) = transfer.parse_product_rows([LONG_ROW])

    assert product.pricing.exchange_rate == Decimal("30")
    assert product.pricing.vat_rate == Decimal("0.18")
    assert product.pricing.other_expenses == Decimal("0.5")
    assert product.selling_price == Decimal("4")


def test_parse_skips_blank_rows():
    products = transfer.parse_product_rows([SHORT_ROW, ["", "", ""], [], LONG_ROW])
    assert [p.sku for p in products] == ["LED-01", "CBL-25"]


def test_bad_column_count_rejects_whole_batch():
    with pytest.raises(ImportFormatError, match="Row 3"):
        transfer.parse_product_rows([SHORT_ROW, SHORT_ROW[:5]])


def test_non_numeric_value_rejects_whole_batch():
    bad = list(SHORT_ROW)
    bad[4] = "twelve"
    with pytest.raises(ImportFormatError, match="Stock"):
        transfer.parse_product_rows([SHORT_ROW, bad])


def test_missing_sku_is_rejected():
    bad = list(SHORT_ROW)
    bad[0] = ""
    with pytest.raises(ImportFormatError):
        transfer.parse_product_rows([bad])


def test_read_product_csv_skips_header(tmp_path):
    path = tmp_path / "products.csv"
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(["SKU", "Name", "Category", "Unit", "Stock", "Critical", "Purchase", "Selling"])
        writer.writerow(SHORT_ROW)

    products = transfer.read_product_file(path)

    assert [p.sku for p in products] == ["LED-01"]


def test_read_product_xlsx_handles_numeric_cells(tmp_path):
    path = tmp_path / "products.xlsx"
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.append(["SKU", "Name", "Category", "Unit", "Stock", "Critical", "Purchase", "Selling"])
    sheet.append(["LED-01", "LED Panel", "Lighting", "Piece", 12, 3, 10.5, 25])
    workbook.save(path)

    (product,) = transfer.read_product_file(path)

    assert product.stock == Decimal("12")
    assert product.pricing.purchase_price == Decimal("10.5")


def test_read_product_xlsx_ignores_cells_beyond_header(tmp_path):
    path = tmp_path / "products.xlsx"
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.append(["SKU", "Name", "Category", "Unit", "Stock", "Critical", "Purchase", "Selling"])
    sheet.append(["LED-01", "LED Panel", "Lighting", "Piece", 12, 3, 10.5, 25])
    sheet.append(["CBL-25", "NYM Cable", "Cable", "Metre", 500, 100, 2, 4])
    sheet["M3"] = "check supplier price"
    workbook.save(path)

    products = transfer.read_product_file(path)

    assert [p.sku for p in products] == ["LED-01", "CBL-25"]
    assert products[1].pricing.exchange_rate == Decimal("1")
    assert products[1].selling_price == Decimal("4")


def test_parse_rows_cut_to_header_width():
    padded = SHORT_ROW + ["", "", "note"]
    (product,) = transfer.parse_product_rows([padded, ["", "", "", "", "", "", "", "", "x"]], width=8)
    assert product.selling_price == Decimal("25")


def test_unsupported_file_type_rejected(tmp_path):
    with pytest.raises(ImportFormatError):
        transfer.read_product_file(tmp_path / "products.json")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (Decimal("1234.5"), "1.234,50 TL"),
        (Decimal("0"), "0,00 TL"),
        (Decimal("1234567.891"), "1.234.567,89 TL"),
        (Decimal("-42.005"), "-42,01 TL"),
    ],
)
def test_format_currency(value, expected):
    assert transfer.format_currency(value) == expected


def test_format_currency_custom_symbol():
    assert transfer.format_currency(Decimal("5"), "EUR") == "5,00 EUR"


def test_write_csv_uses_first_record_keys(tmp_path):
    destination = tmp_path / "out" / "report.csv"
    rows = [{"SKU": "A", "Value": "1,00 TL"}, {"SKU": "B", "Value": "2,00 TL"}]

    assert transfer.write_csv(rows, destination) == 2

    with destination.open(newline="", encoding="utf-8") as handle:
        content = list(csv.reader(handle))
    assert content == [["SKU", "Value"], ["A", "1,00 TL"], ["B", "2,00 TL"]]


def test_write_csv_with_no_rows_writes_nothing(tmp_path):
    destination = tmp_path / "empty.csv"
    assert transfer.write_csv([], destination) == 0
    assert not destination.exists()


def test_valuation_rows(make_product):
    report = reporting.inventory_valuation([make_product(purchase_price="1000", stock="2")])

    (row,) = transfer.valuation_rows(report)

    assert row["Net Unit Cost"] == "1.000,00 TL"
    assert row["Line Value"] == "2.000,00 TL"
    assert list(row) == ["SKU", "Name", "Category", "Stock", "Unit", "Net Unit Cost", "Line Value"]


def test_transaction_rows():
    tx = Transaction(
        transaction_id="T1",
        items=(),
        transaction_type=TransactionType.IN,
        contact_id="S1",
        contact_name="Cable Wholesale",
        subtotal=Decimal("100"),
        total_discount=Decimal("0"),
        total_amount=Decimal("100"),
        timestamp_iso="2024-03-01T10:00:00+00:00",
        user="mehmet",
        is_return=True,
    )

    (row,) = transfer.transaction_rows([tx])

    assert row["Date"] == "2024-03-01"
    assert row["Type"] == "IN"
    assert row["Return"] == "Yes"
    assert row["Total"] == "100,00 TL"
