from datetime import date, datetime
from decimal import Decimal

import pytest

from app.unieats.db import session_scope
from app.unieats.modules.analytics.service import busiest_hour, resolve_time_range, summarize_orders
from app.unieats.modules.orders.models import Order
from app.unieats.utils import end_of_day_exclusive


def _order(number, status, total, split=None, created_at=None, cafeteria_id=None, user_id=None):
    o = Order(
        order_number=number,
        status=status,
        total_amount=Decimal(total),
        cafeteria_id=cafeteria_id,
        user_id=user_id,
        created_at=created_at or datetime.utcnow(),
    )
    if split:
        subtotal, fee, commission = (Decimal(v) for v in split)
        o.subtotal = subtotal
        o.user_service_fee = fee
        o.cafeteria_commission = commission
        o.admin_revenue = fee + commission
    return o


@pytest.mark.parametrize(
    "label,start,end",
    [
        ("Today", datetime(2024, 5, 15), datetime(2024, 5, 16)),
        ("This Week", datetime(2024, 5, 12), datetime(2024, 5, 19)),
        ("This Month", datetime(2024, 5, 1), datetime(2024, 6, 1)),
        ("This Quarter", datetime(2024, 4, 1), datetime(2024, 7, 1)),
        ("This Year", datetime(2024, 1, 1), datetime(2025, 1, 1)),
        ("Next Decade", datetime(2024, 5, 1), datetime(2024, 6, 1)),
    ],
)
def test_resolve_time_range(label, start, end):
    tr = resolve_time_range(label, datetime(2024, 5, 15, 13, 30))
    assert (tr.start, tr.end) == (start, end)


def test_week_starting_on_sunday_includes_that_sunday():
    tr = resolve_time_range("This Week", datetime(2024, 5, 12, 8, 0))
    assert tr.start == datetime(2024, 5, 12)
    assert tr.contains(datetime(2024, 5, 18, 23, 59))
    assert not tr.contains(datetime(2024, 5, 19))


def test_all_time_is_unbounded():
    tr = resolve_time_range("All Time")
    assert tr.start is None and tr.end is None


def test_summary_excludes_cancelled_orders():
    orders = [
        _order("A", "completed", "104.00", split=("100", "4", "10")),
        _order("B", "cancelled", "52.00", split=("50", "2", "5")),
        _order("C", "pending", "30.00"),
    ]
    summary = summarize_orders(orders)
    assert summary["total_orders"] == 2
    assert summary["total_order_value"] == 134.0
    assert summary["total_revenue"] == 14.0
    assert summary["gross_revenue"] == 130.0
    assert summary["net_earnings"] == 120.0
    assert summary["average_order_value"] == 67.0


def test_busiest_hour_prefers_earliest_on_ties():
    orders = [
        _order("A", "completed", "1", created_at=datetime(2024, 5, 1, 13)),
        _order("B", "completed", "1", created_at=datetime(2024, 5, 1, 9)),
        _order("C", "cancelled", "1", created_at=datetime(2024, 5, 1, 18)),
    ]
    assert busiest_hour(orders) == 9
    assert busiest_hour([]) is None


@pytest.fixture()
def orders(app, seed):
    with session_scope(app) as s:
        common = {"cafeteria_id": seed.cafeteria, "user_id": seed.student}
        s.add_all(
            [
                _order("ORD-A", "completed", "104.00", split=("100", "4", "10"), **common),
                _order("ORD-B", "pending", "52.00", split=("50", "2", "5"), **common),
                _order("ORD-C", "cancelled", "20.80", split=("20", "0.80", "2"), **common),
                _order("ORD-D", "completed", "30.00", **common),
            ]
        )


def test_admin_dashboard(client, seed, login, orders):
    login(client, "admin@example.com", "admin")
    r = client.get("/admin/dashboard", query_string={"timeRange": "This Month"})
    assert r.status_code == 200
    data = r.json
    assert data["total_orders"] == 3
    assert data["total_revenue"] == 21.0
    assert data["total_order_value"] == 186.0
    assert data["active_cafeterias"] == 1
    assert data["total_users"] == 3
    assert len(data["monthly"]) == 12
    assert data["monthly"][-1]["orders"] == 3
    assert data["status_breakdown"]["cancelled"] == 1
    assert data["top_cafeterias"][0]["name"] == "Main Hall"

    r = client.get("/admin/dashboard?cafeteriaId=9999")
    assert r.json["total_orders"] == 0


def test_cafeteria_dashboard(client, seed, login, orders):
    login(client, "owner@example.com", "cafeteria_manager")
    data = client.get("/cafeteria/dashboard").json
    assert data["time_range"] == "This Month"
    assert data["total_orders"] == 3
    assert data["gross_revenue"] == 180.0
    assert data["commission"] == 15.0
    assert data["net_earnings"] == 165.0
    assert data["pending_orders"] == 1


def test_revenue_summary_counts_split_orders_only(client, seed, login, orders):
    login(client, "admin@example.com", "admin")
    today = datetime.utcnow().date().isoformat()
    r = client.get(f"/admin/analytics/revenue?start={today}&end={today}")
    assert r.status_code == 200
    assert r.json["order_count"] == 2
    assert r.json["admin_revenue"] == 21.0
    assert r.json["service_fees"] == 6.0
    assert r.json["commission"] == 15.0

    assert client.get("/admin/analytics/revenue?start=2024-02-01&end=2024-01-01").status_code == 400
    assert client.get("/admin/analytics/revenue?start=last-week").status_code == 400


def test_order_insights(client, seed, login, orders):
    login(client, "admin@example.com", "admin")
    data = client.get("/admin/order-insights").json
    assert data["time_range"] == "All Time"
    row = data["cafeterias"][0]
    assert row["orders"] == 4
    assert row["cancelled"] == 1
    assert row["cancellation_rate"] == 0.25


def test_student_cannot_see_dashboards(client, seed, login):
    login(client, "student@example.com", "student")
    assert client.get("/admin/dashboard").status_code == 403
    assert client.get("/cafeteria/dashboard").status_code == 403


def test_revenue_summary_open_ended_at_max_date(client, seed, login, orders):
    login(client, "admin@example.com", "admin")
    r = client.get("/admin/analytics/revenue?end=9999-12-31")
    assert r.status_code == 200
    r = client.get("/admin/analytics/revenue?start=2024-01-01&end=9999-12-31")
    assert r.status_code == 200
    assert r.json["order_count"] == 2


def test_end_of_day_exclusive():
    assert end_of_day_exclusive(date(2024, 2, 29)) == datetime(2024, 3, 1)
    assert end_of_day_exclusive(date.max) is None
