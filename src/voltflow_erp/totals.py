"""Transaction aggregator.

Turns a finalized list of line items into the monetary totals stored on a
:class:`~voltflow_erp.models.Transaction`, and materializes a cart into a
transaction at checkout::

    subtotal       = sum(unit_price * quantity)
    line_total     = unit_price * quantity * (1 - discount / 100)
    total_amount   = sum(line_total)
    total_discount = subtotal - total_amount

Receipts show a tax decomposition computed from ``total_amount`` with the
single standard VAT rate, ignoring the rate each product was configured
with. :func:`decompose_tax_by_line` computes the per-line figure from the
VAT snapshot carried on each item so the two can be compared.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Iterable, Optional

from . import log
from .cart import Cart
from .constants import STANDARD_VAT_RATE, CartKind, ContactType, TransactionType
from .models import Contact, Transaction, TransactionItem, ValidationError

ONE = Decimal("1")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class TransactionTotals:
    subtotal: Decimal
    total_discount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class TaxBreakdown:
    """Split of a tax-inclusive amount into its net and tax parts."""

    tax_exclusive: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def gross_amount(item: TransactionItem) -> Decimal:
    return item.unit_price * item.quantity


def line_total(item: TransactionItem) -> Decimal:
    """Return the discounted amount of a single line."""

    discount = item.discount or Decimal("0")
    return gross_amount(item) * (ONE - discount / HUNDRED)


def compute_totals(items: Iterable[TransactionItem]) -> TransactionTotals:
    subtotal = Decimal("0")
    total_amount = Decimal("0")
    for item in items:
        subtotal += gross_amount(item)
        total_amount += line_total(item)
    return TransactionTotals(
        subtotal=subtotal,
        total_discount=subtotal - total_amount,
        total_amount=total_amount,
    )


def decompose_tax(total_amount: Decimal, vat_rate: Decimal = STANDARD_VAT_RATE) -> TaxBreakdown:
    """Split ``total_amount`` assuming a single VAT rate on every line."""

    tax_exclusive = total_amount / (ONE + vat_rate)
    return TaxBreakdown(
        tax_exclusive=tax_exclusive,
        tax_amount=total_amount - tax_exclusive,
        total_amount=total_amount,
    )


def decompose_tax_by_line(
    items: Iterable[TransactionItem],
    default_rate: Decimal = STANDARD_VAT_RATE,
) -> TaxBreakdown:
    """Split the total using the VAT snapshot stored on each line.

    Labor lines and lines without a snapshot fall back to ``default_rate``.
    """

    tax_exclusive = Decimal("0")
    total_amount = Decimal("0")
    for item in items:
        rate = item.vat_rate if item.vat_rate is not None else default_rate
        amount = line_total(item)
        total_amount += amount
        tax_exclusive += amount / (ONE + rate)
    return TaxBreakdown(
        tax_exclusive=tax_exclusive,
        tax_amount=total_amount - tax_exclusive,
        total_amount=total_amount,
    )


def generate_transaction_id(*, prefix: str = "T", when: Optional[datetime] = None) -> str:
    """Generate ``{prefix}{YYYYMMDDHHMMSSffffff}-{suffix}``.

    The timestamp part keeps identifiers sortable by time; the random six-hex
    suffix keeps records sharing a backdated ``when`` distinct.
    """

    when = when or datetime.now(UTC)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:6].upper()}"


def build_transaction(
    cart: Cart,
    contact: Optional[Contact],
    *,
    user: str,
    is_return: bool = False,
    timestamp: Optional[datetime] = None,
    transaction_id: Optional[str] = None,
) -> Transaction:
    """Materialize ``cart`` into an immutable transaction.

    Sale carts become ``OUT`` transactions. Purchase carts become ``IN``
    transactions; a supplier return keeps the ``IN`` type and sets
    ``is_return`` so the stock ledger inverts its effect.

    Raises:
        ValidationError: If the cart is empty, no counterparty was selected,
            the counterparty is of the wrong kind, or a return is requested
            on a sale cart.
    """

    if cart.is_empty:
        log.error("Checkout rejected: cart is empty")
        raise ValidationError("Cannot complete a transaction with an empty cart")
    if contact is None:
        log.error("Checkout rejected: no counterparty selected")
        raise ValidationError("A counterparty must be selected before checkout")

    if cart.kind is CartKind.SALE:
        if is_return:
            raise ValidationError("Returns are recorded on purchase carts")
        expected_contact = ContactType.CUSTOMER
        transaction_type = TransactionType.OUT
    else:
        expected_contact = ContactType.SUPPLIER
        transaction_type = TransactionType.IN
    if contact.contact_type is not expected_contact:
        log.error(
            "Checkout rejected: contact '%s' is a %s, expected %s",
            contact.contact_id,
            contact.contact_type.value,
            expected_contact.value,
        )
        raise ValidationError(
            f"Contact '{contact.name}' is not a {expected_contact.value.lower()}"
        )

    moment = timestamp if timestamp is not None else datetime.now(UTC)
    totals = compute_totals(cart.lines)
    return Transaction(
        transaction_id=transaction_id or generate_transaction_id(when=moment),
        items=cart.lines,
        transaction_type=transaction_type,
        contact_id=contact.contact_id,
        contact_name=contact.name,
        subtotal=totals.subtotal,
        total_discount=totals.total_discount,
        total_amount=totals.total_amount,
        timestamp_iso=moment.isoformat(),
        user=user,
        is_return=is_return,
    )
