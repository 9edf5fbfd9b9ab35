"""Unit tests for landed cost, net cost, and margin simulation."""

from __future__ import annotations

from decimal import Decimal

import pytest

from voltflow_erp import pricing
from voltflow_erp.models import Pricing, ValidationError


def test_landed_unit_cost_applies_rate_vat_and_surcharge():
    """(10 × 2) × 1.20 + 5 = 29."""

    cost = Pricing(
        purchase_price=Decimal("10"),
        exchange_rate=Decimal("2"),
        vat_rate=Decimal("0.20"),
        other_expenses=Decimal("5"),
    )
    assert pricing.landed_unit_cost(cost) == Decimal("29")


def test_net_unit_cost_excludes_vat_and_surcharge():
    cost = Pricing(
        purchase_price=Decimal("10"),
        exchange_rate=Decimal("2"),
        vat_rate=Decimal("0.20"),
        other_expenses=Decimal("5"),
    )
    assert pricing.net_unit_cost(cost) == Decimal("20")


def test_defaults_mean_plain_local_purchase():
    cost = Pricing(purchase_price=Decimal("50"))
    assert pricing.net_unit_cost(cost) == Decimal("50")
    assert pricing.landed_unit_cost(cost) == Decimal("60")


def test_negative_inputs_flow_through_unvalidated():
    """The formulas themselves never raise on odd inputs."""

    cost = Pricing(purchase_price=Decimal("-10"), vat_rate=Decimal("0"))
    assert pricing.landed_unit_cost(cost) == Decimal("-10")


@pytest.mark.parametrize("field", ["purchase_price", "exchange_rate", "vat_rate", "other_expenses"])
def test_validate_pricing_rejects_negative_fields(field):
    values = {
        "purchase_price": Decimal("1"),
        "exchange_rate": Decimal("1"),
        "vat_rate": Decimal("0.2"),
        "other_expenses": Decimal("0"),
    }
    values[field] = Decimal("-0.01")
    with pytest.raises(ValidationError):
        pricing.validate_pricing(Pricing(**values))


def test_validate_pricing_accepts_zero_values():
    pricing.validate_pricing(Pricing(purchase_price=Decimal("0"), vat_rate=Decimal("0")))


def test_suggested_selling_price_adds_fifty_percent():
    cost = Pricing(purchase_price=Decimal("10"))
    assert pricing.suggested_selling_price(cost) == Decimal("18")


def test_simulate_margin_on_marketplace_deducts_commission():
    cost = Pricing(purchase_price=Decimal("50"), vat_rate=Decimal("0"))
    result = pricing.simulate_margin(cost, Decimal("100"), "Trendyol")

    assert result.commission == Decimal("20")
    assert result.net_profit == Decimal("30")
    assert result.margin_percent == Decimal("30")


def test_simulate_margin_unknown_channel_has_no_commission():
    cost = Pricing(purchase_price=Decimal("50"), vat_rate=Decimal("0"))
    result = pricing.simulate_margin(cost, Decimal("100"), "Street Market")

    assert result.commission_rate == Decimal("0")
    assert result.net_profit == Decimal("50")


def test_simulate_margin_zero_price_reports_zero_margin():
    cost = Pricing(purchase_price=Decimal("5"))
    result = pricing.simulate_margin(cost, Decimal("0"))
    assert result.margin_percent == Decimal("0")
    assert result.net_profit == Decimal("-6")
