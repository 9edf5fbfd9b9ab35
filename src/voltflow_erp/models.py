"""Immutable records shared by every layer of VoltFlow ERP.

The records mirror the workbook sheets one-to-one, but carry no I/O. Money
and quantity fields are :class:`~decimal.Decimal` so that workbook round
trips never introduce binary floating point drift.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple

from .constants import DEFAULT_EXCHANGE_RATE, STANDARD_VAT_RATE, ContactType, TransactionType


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class ValidationError(BusinessRuleViolation):
    """Raised for user-correctable input problems; nothing is mutated."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, contact, transaction, or expense is unknown."""


class ImportFormatError(BusinessRuleViolation):
    """Raised when a bulk import batch is malformed and must be rejected whole."""


class PermissionDenied(BusinessRuleViolation):
    """Raised when a role lacks the capability for an action."""


@dataclass(frozen=True)
class Pricing:
    """Supplier-side cost inputs for one product."""

    purchase_price: Decimal
    exchange_rate: Decimal = DEFAULT_EXCHANGE_RATE
    vat_rate: Decimal = STANDARD_VAT_RATE
    other_expenses: Decimal = Decimal("0")


@dataclass(frozen=True)
class Product:
    """Catalog entry; ``stock`` is signed and may go negative."""

    product_id: str
    sku: str
    name: str
    category: str
    unit: str
    stock: Decimal
    critical_threshold: Decimal
    pricing: Pricing
    selling_price: Decimal
    is_active: bool = True


@dataclass(frozen=True)
class TransactionItem:
    """One line of a purchase or sale, priced at the moment it was queued."""

    product_name: str
    quantity: Decimal
    unit_price: Decimal
    product_id: Optional[str] = None
    discount: Decimal = Decimal("0")
    is_labor: bool = False
    vat_rate: Optional[Decimal] = None


@dataclass(frozen=True)
class Transaction:
    """Committed, append-only purchase or sale."""

    transaction_id: str
    items: Tuple[TransactionItem, ...]
    transaction_type: TransactionType
    contact_id: str
    contact_name: str
    subtotal: Decimal
    total_discount: Decimal
    total_amount: Decimal
    timestamp_iso: str
    user: str
    is_return: bool = False


@dataclass(frozen=True)
class Expense:
    """Operating expense entry."""

    expense_id: str
    company_id: str
    category: str
    amount: Decimal
    description: str
    timestamp_iso: str
    user_name: str


@dataclass(frozen=True)
class Contact:
    """Customer or supplier; referential only."""

    contact_id: str
    name: str
    contact_type: ContactType
    phone: str = ""
    address: str = ""


@dataclass(frozen=True)
class CatalogSettings:
    """Per-tenant lists of allowed product categories and units."""

    categories: Tuple[str, ...] = field(default_factory=tuple)
    units: Tuple[str, ...] = field(default_factory=tuple)


__all__ = [
    "BusinessRuleViolation",
    "ValidationError",
    "MissingReferenceError",
    "ImportFormatError",
    "PermissionDenied",
    "Pricing",
    "Product",
    "TransactionItem",
    "Transaction",
    "Expense",
    "Contact",
    "CatalogSettings",
]
