"""Revenue split arithmetic."""
from decimal import Decimal

import pytest

from app.unieats.modules.orders.service import calculate_revenue, generate_order_number
from app.unieats.modules.platform_settings.service import FeeRates
from app.unieats.utils import money


def test_default_split():
    r = calculate_revenue([("50.00", 2), ("25.50", 1)])
    assert r.subtotal == Decimal("125.50")
    assert r.user_service_fee == Decimal("5.02")
    assert r.cafeteria_commission == Decimal("12.55")
    assert r.admin_revenue == Decimal("17.57")
    assert r.total_amount == Decimal("130.52")
    assert r.service_fee_percentage == Decimal("4.00")


def test_service_fee_capped():
    r = calculate_revenue([("1000.00", 1)])
    assert r.user_service_fee == Decimal("20.00")
    assert r.cafeteria_commission == Decimal("100.00")
    assert r.total_amount == Decimal("1020.00")


@pytest.mark.parametrize(
    "items",
    [
        [("0.01", 1)],
        [("9.99", 3)],
        [("33.33", 7), ("0.05", 1)],
        [("499.99", 1)],
        [("12.345", 2)],
    ],
)
def test_split_always_sums_to_total(items):
    r = calculate_revenue(items)
    assert (r.subtotal - r.cafeteria_commission) + r.admin_revenue == r.total_amount
    assert r.cafeteria_net == r.subtotal - r.cafeteria_commission


def test_custom_rates():
    rates = FeeRates(
        service_fee_rate=Decimal("0.05"),
        service_fee_cap=Decimal("3.00"),
        commission_rate=Decimal("0.15"),
    )
    r = calculate_revenue([("40.00", 2)], rates)
    assert r.user_service_fee == Decimal("3.00")
    assert r.cafeteria_commission == Decimal("12.00")
    assert r.admin_revenue == Decimal("15.00")


def test_money_rounds_half_up():
    assert money("2.345") == Decimal("2.35")
    assert money("2.344") == Decimal("2.34")
    assert money(Decimal("0.005")) == Decimal("0.01")


def test_order_number_format():
    from datetime import datetime

    n = generate_order_number(datetime(2024, 3, 9, 12, 0))
    assert n.startswith("ORD-20240309-")
    assert len(n.split("-")[-1]) == 6
