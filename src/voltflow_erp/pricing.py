"""Pricing engine.

Two distinct cost bases are derived from a :class:`~voltflow_erp.models.Pricing`
record and must not be conflated:

* the *landed* unit cost prices inbound (purchase) transaction lines and
  includes currency conversion, VAT, and the flat per-unit surcharge;
* the *net* unit cost excludes VAT and surcharges and is used for
  tax-exclusive inventory valuation.

Neither formula validates its inputs. Negative or otherwise odd values flow
through arithmetically; :func:`validate_pricing` is the explicit guard used
at the product boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from . import log
from .constants import CHANNEL_COMMISSIONS
from .models import Pricing, ValidationError

HUNDRED = Decimal("100")
SUGGESTED_MARKUP = Decimal("1.5")


@dataclass(frozen=True)
class MarginSimulation:
    """Outcome of selling one unit through a sales channel."""

    channel: str
    selling_price: Decimal
    unit_cost: Decimal
    commission_rate: Decimal
    commission: Decimal
    net_profit: Decimal
    margin_percent: Decimal


def landed_unit_cost(pricing: Pricing) -> Decimal:
    """Return ``(purchase × exchange) × (1 + vat) + other_expenses``."""

    converted = pricing.purchase_price * pricing.exchange_rate
    return converted * (Decimal("1") + pricing.vat_rate) + pricing.other_expenses


def net_unit_cost(pricing: Pricing) -> Decimal:
    """Return the tax-exclusive unit cost ``purchase × exchange``."""

    return pricing.purchase_price * pricing.exchange_rate


def validate_pricing(pricing: Pricing) -> None:
    """Reject pricing records that carry a negative cost field.

    Raises:
        ValidationError: If any of the four cost inputs is below zero.
    """

    for name in ("purchase_price", "exchange_rate", "vat_rate", "other_expenses"):
        value = getattr(pricing, name)
        if value < Decimal("0"):
            log.error("Pricing validation failed: %s=%s", name, value)
            raise ValidationError(f"Pricing field '{name}' must be zero or positive")


def suggested_selling_price(pricing: Pricing) -> Decimal:
    """Initial retail price suggestion: landed cost with a 50% markup."""

    return landed_unit_cost(pricing) * SUGGESTED_MARKUP


def simulate_margin(pricing: Pricing, selling_price: Decimal, channel: str = "Store") -> MarginSimulation:
    """Estimate the per-unit profit of selling through ``channel``.

    The unit cost is the landed cost, so VAT paid on purchase is treated as a
    cost. Unknown channels carry no commission. The margin is expressed as a
    percentage of the selling price and is zero when the price is zero.
    """

    unit_cost = landed_unit_cost(pricing)
    rate = CHANNEL_COMMISSIONS.get(channel, Decimal("0"))
    commission = selling_price * rate
    net_profit = selling_price - commission - unit_cost
    margin = (net_profit / selling_price) * HUNDRED if selling_price > 0 else Decimal("0")
    return MarginSimulation(
        channel=channel,
        selling_price=selling_price,
        unit_cost=unit_cost,
        commission_rate=rate,
        commission=commission,
        net_profit=net_profit,
        margin_percent=margin,
    )
