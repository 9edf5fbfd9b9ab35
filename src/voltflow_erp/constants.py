"""Enumerations and fixed values shared across VoltFlow ERP modules.

Centralises domain constants so that the data access layer (DAL), business
logic layer (BLL), and the CLI rely on a single source of truth for
identifiers, sheet names, and tax defaults.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Single VAT-style rate used for receipt tax decomposition.
STANDARD_VAT_RATE = Decimal("0.20")

DEFAULT_EXCHANGE_RATE = Decimal("1")
DEFAULT_CURRENCY_SYMBOL = "TL"


class TransactionType(str, Enum):
    """Direction of a committed transaction relative to stock."""

    IN = "IN"
    OUT = "OUT"


class ContactType(str, Enum):
    """Enumerate the counterparty kinds kept in the contact book."""

    CUSTOMER = "CUSTOMER"
    SUPPLIER = "SUPPLIER"


class CartKind(str, Enum):
    """Enumerate the two cart flavours that feed checkout."""

    PURCHASE = "PURCHASE"
    SALE = "SALE"


class UserRole(str, Enum):
    """Enumerate the roles a tenant user can hold."""

    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    PURCHASE = "PURCHASE"
    SALES = "SALES"


class Action(str, Enum):
    """Enumerate the capabilities checked at the access-control boundary."""

    VIEW_DASHBOARD = "VIEW_DASHBOARD"
    VIEW_INVENTORY = "VIEW_INVENTORY"
    EDIT_PRODUCTS = "EDIT_PRODUCTS"
    VIEW_COSTS = "VIEW_COSTS"
    MANAGE_CONTACTS = "MANAGE_CONTACTS"
    RECORD_PURCHASE = "RECORD_PURCHASE"
    RECORD_SALE = "RECORD_SALE"
    MANAGE_EXPENSES = "MANAGE_EXPENSES"
    VIEW_TRANSACTIONS = "VIEW_TRANSACTIONS"
    VIEW_FINANCIALS = "VIEW_FINANCIALS"
    MANAGE_SETTINGS = "MANAGE_SETTINGS"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    CONTACTS = "Contacts"
    TRANSACTIONS = "Transactions"
    TRANSACTION_ITEMS = "TransactionItems"
    EXPENSES = "Expenses"
    SETTINGS = "Settings"


EXPENSE_CATEGORIES: tuple[str, ...] = (
    "Fuel",
    "Shipping",
    "Tax",
    "Rent",
    "Meals",
    "Groceries",
    "Payroll",
    "Utilities",
    "Other",
)

DEFAULT_PRODUCT_CATEGORIES: tuple[str, ...] = (
    "Lighting",
    "Cable",
    "Switchgear",
    "Switches & Sockets",
    "Installation",
    "Labor",
    "Other",
)

DEFAULT_UNITS: tuple[str, ...] = ("Piece", "Metre", "Box", "Roll")

# Marketplace commission rates used by the margin simulator.
CHANNEL_COMMISSIONS: dict[str, Decimal] = {
    "Store": Decimal("0.00"),
    "Trendyol": Decimal("0.20"),
    "Hepsiburada": Decimal("0.18"),
    "N11": Decimal("0.15"),
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "STANDARD_VAT_RATE",
    "DEFAULT_EXCHANGE_RATE",
    "DEFAULT_CURRENCY_SYMBOL",
    "TransactionType",
    "ContactType",
    "CartKind",
    "UserRole",
    "Action",
    "SheetName",
    "EXPENSE_CATEGORIES",
    "DEFAULT_PRODUCT_CATEGORIES",
    "DEFAULT_UNITS",
    "CHANNEL_COMMISSIONS",
]
