"""In-progress purchase and sale carts.

A :class:`Cart` accumulates :class:`~voltflow_erp.models.TransactionItem`
lines before checkout. Unit prices are snapshotted when a line is queued:
purchase lines use the landed unit cost, sale lines use the configured
selling price of the product. Every rejected request leaves the cart as it
was.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import List, Optional, Tuple

from . import log
from .constants import CartKind
from .models import Product, TransactionItem, ValidationError
from .pricing import landed_unit_cost

MAX_DISCOUNT = Decimal("100")


def require_positive_quantity(quantity: Decimal) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValidationError: If ``quantity`` is zero or negative.
    """

    if quantity <= Decimal("0"):
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be greater than zero")


def require_discount_in_range(discount: Decimal) -> None:
    """Validate that a percentage discount lies within ``[0, 100]``."""

    if discount < Decimal("0") or discount > MAX_DISCOUNT:
        log.error("Discount validation failed: %s", discount)
        raise ValidationError("Discount must be between 0 and 100 percent")


class Cart:
    """Single in-memory accumulator for one open purchase or sale."""

    def __init__(self, kind: CartKind) -> None:
        self.kind = CartKind(kind)
        self._lines: List[TransactionItem] = []

    def __len__(self) -> int:
        return len(self._lines)

    def __repr__(self) -> str:
        return f"Cart(kind={self.kind.value!r}, lines={len(self._lines)})"

    @property
    def lines(self) -> Tuple[TransactionItem, ...]:
        return tuple(self._lines)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def queued_quantity(self, product_id: str) -> Decimal:
        """Total quantity already queued for ``product_id`` across all lines."""

        return sum(
            (line.quantity for line in self._lines if line.product_id == product_id),
            Decimal("0"),
        )

    def unit_price_for(self, product: Product) -> Decimal:
        if self.kind is CartKind.PURCHASE:
            return landed_unit_cost(product.pricing)
        return product.selling_price

    def add_product_line(
        self,
        product: Product,
        quantity: Decimal,
        discount: Decimal = Decimal("0"),
    ) -> TransactionItem:
        """Queue ``quantity`` units of ``product``, merging with a matching line.

        A line merges into an existing one only when both the product id and
        the discount match; otherwise it is queued separately. Sale lines are
        rejected when the product's stock cannot cover the quantity already
        queued plus the new request.

        Returns:
            TransactionItem: The new or merged line as it now sits in the cart.

        Raises:
            ValidationError: On a non-positive quantity, a discount outside
                ``[0, 100]``, or insufficient stock for a sale.
        """

        require_positive_quantity(quantity)
        require_discount_in_range(discount)

        if self.kind is CartKind.SALE:
            requested = self.queued_quantity(product.product_id) + quantity
            if requested > product.stock:
                log.warning(
                    "Rejected sale line for '%s': requested %s, in stock %s",
                    product.product_id,
                    requested,
                    product.stock,
                )
                raise ValidationError(
                    f"Insufficient stock for '{product.name}': "
                    f"requested {requested}, available {product.stock}"
                )

        index = self._find_mergeable(product.product_id, discount)
        if index is not None:
            existing = self._lines[index]
            merged = replace(existing, quantity=existing.quantity + quantity)
            self._lines[index] = merged
            log.debug("Merged %s units into cart line %d", quantity, index)
            return merged

        line = TransactionItem(
            product_id=product.product_id,
            product_name=product.name,
            quantity=quantity,
            unit_price=self.unit_price_for(product),
            discount=discount,
            vat_rate=product.pricing.vat_rate,
        )
        self._lines.append(line)
        return line

    def add_labor_line(self, description: str, amount: Decimal) -> TransactionItem:
        """Append a service charge that never touches stock.

        Raises:
            ValidationError: If ``amount`` is zero or negative.
        """

        if amount <= Decimal("0"):
            log.error("Labor amount validation failed: %s", amount)
            raise ValidationError("Labor amount must be greater than zero")
        line = TransactionItem(
            product_name=description,
            quantity=Decimal("1"),
            unit_price=amount,
            is_labor=True,
        )
        self._lines.append(line)
        return line

    def remove_line(self, index: int) -> TransactionItem:
        """Remove and return the line at ``index``.

        Raises:
            IndexError: If ``index`` does not address an existing line.
        """

        if not 0 <= index < len(self._lines):
            raise IndexError(f"No cart line at position {index}")
        return self._lines.pop(index)

    def clear(self) -> None:
        self._lines.clear()

    def _find_mergeable(self, product_id: str, discount: Decimal) -> Optional[int]:
        for index, line in enumerate(self._lines):
            if line.is_labor or line.product_id != product_id:
                continue
            if line.discount != discount:
                continue
            return index
        return None
