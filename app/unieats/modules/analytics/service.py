"""
Dashboard aggregation over orders.

Every dashboard figure excludes cancelled orders. Aggregation is done in
Python over the rows of the selected window so the same helpers serve the
admin and cafeteria dashboards and can be tested without a database.
"""
from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable

from sqlalchemy import func

from app.unieats.models import User
from app.unieats.modules.cafeterias.models import Cafeteria
from app.unieats.modules.orders.models import Order
from app.unieats.utils import end_of_day_exclusive, money

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

TIME_RANGES = ("Today", "This Week", "This Month", "This Quarter", "This Year", "All Time")
DEFAULT_TIME_RANGE = "This Month"

ZERO = Decimal("0")


@dataclass(frozen=True)
class TimeRange:
    label: str
    start: datetime | None
    end: datetime | None

    def contains(self, ts: datetime | None) -> bool:
        if ts is None:
            return False
        if self.start is not None and ts < self.start:
            return False
        if self.end is not None and ts >= self.end:
            return False
        return True


def _add_months(d: date, months: int) -> date:
    idx = d.year * 12 + (d.month - 1) + months
    return date(idx // 12, idx % 12 + 1, 1)


def resolve_time_range(label: str | None, now: datetime | None = None) -> TimeRange:
    """Half-open [start, end) window for a dashboard label; unknown labels fall back to This Month."""
    now = now or datetime.utcnow()
    today = now.date()
    label = label if label in TIME_RANGES else DEFAULT_TIME_RANGE

    def at_midnight(d: date) -> datetime:
        return datetime.combine(d, time.min)

    if label == "Today":
        start = today
        end = today + timedelta(days=1)
    elif label == "This Week":
        # Weeks start on Sunday.
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        end = start + timedelta(days=7)
    elif label == "This Month":
        start = today.replace(day=1)
        end = _add_months(start, 1)
    elif label == "This Quarter":
        start = date(today.year, ((today.month - 1) // 3) * 3 + 1, 1)
        end = _add_months(start, 3)
    elif label == "This Year":
        start = date(today.year, 1, 1)
        end = date(today.year + 1, 1, 1)
    else:
        return TimeRange(label=label, start=None, end=None)
    return TimeRange(label=label, start=at_midnight(start), end=at_midnight(end))


def _dec(value: Any) -> Decimal:
    return Decimal(str(value)) if value is not None else ZERO


def _f(value: Decimal) -> float:
    return float(money(value))


def active_orders(orders: Iterable[Order]) -> list[Order]:
    return [o for o in orders if o.status != "cancelled"]


def summarize_orders(orders: Iterable[Order]) -> dict[str, Any]:
    """Totals over non-cancelled orders."""
    rows = active_orders(orders)
    count = len(rows)
    order_value = sum((_dec(o.total_amount) for o in rows), ZERO)
    platform_revenue = sum((_dec(o.admin_revenue) for o in rows), ZERO)
    subtotal = sum((_dec(o.subtotal if o.subtotal is not None else o.total_amount) for o in rows), ZERO)
    commission = sum((_dec(o.cafeteria_commission) for o in rows), ZERO)
    fees = sum((_dec(o.user_service_fee) for o in rows), ZERO)
    return {
        "total_orders": count,
        "total_order_value": _f(order_value),
        "total_revenue": _f(platform_revenue),
        "gross_revenue": _f(subtotal),
        "total_commission": _f(commission),
        "total_service_fees": _f(fees),
        "net_earnings": _f(subtotal - commission),
        "average_order_value": _f(order_value / count) if count else 0.0,
    }


def monthly_series(orders: Iterable[Order], now: datetime, months: int = 12) -> list[dict[str, Any]]:
    """Last `months` calendar months (oldest first) of platform revenue and order counts."""
    first = _add_months(now.date().replace(day=1), -(months - 1))
    buckets: dict[str, dict[str, Any]] = {}
    for i in range(months):
        key = _add_months(first, i).strftime("%Y-%m")
        buckets[key] = {"month": key, "revenue": ZERO, "order_value": ZERO, "orders": 0}
    for o in active_orders(orders):
        if o.created_at is None:
            continue
        key = o.created_at.strftime("%Y-%m")
        if key in buckets:
            buckets[key]["revenue"] += _dec(o.admin_revenue)
            buckets[key]["order_value"] += _dec(o.total_amount)
            buckets[key]["orders"] += 1
    return [
        {"month": b["month"], "revenue": _f(b["revenue"]), "order_value": _f(b["order_value"]), "orders": b["orders"]}
        for b in buckets.values()
    ]


def top_cafeterias(orders: Iterable[Order], limit: int = 5) -> list[dict[str, Any]]:
    agg: dict[int, dict[str, Any]] = {}
    for o in active_orders(orders):
        row = agg.setdefault(
            o.cafeteria_id,
            {
                "cafeteria_id": o.cafeteria_id,
                "name": o.cafeteria.name if o.cafeteria else None,
                "orders": 0,
                "order_value": ZERO,
                "revenue": ZERO,
            },
        )
        row["orders"] += 1
        row["order_value"] += _dec(o.total_amount)
        row["revenue"] += _dec(o.admin_revenue)
    ranked = sorted(agg.values(), key=lambda r: (r["order_value"], r["orders"]), reverse=True)[:limit]
    return [{**r, "order_value": _f(r["order_value"]), "revenue": _f(r["revenue"])} for r in ranked]


def status_breakdown(orders: Iterable[Order]) -> dict[str, int]:
    counts = Counter(o.status for o in orders)
    return {k: counts.get(k, 0) for k in ("pending", "preparing", "ready", "completed", "cancelled")}


def top_items(orders: Iterable[Order], limit: int = 5) -> list[dict[str, Any]]:
    agg: dict[int, dict[str, Any]] = {}
    for o in active_orders(orders):
        for line in o.items:
            if line.menu_item_id is None:
                continue
            row = agg.setdefault(
                line.menu_item_id,
                {
                    "menu_item_id": line.menu_item_id,
                    "name": line.menu_item.name if line.menu_item else None,
                    "quantity": 0,
                    "revenue": ZERO,
                },
            )
            row["quantity"] += line.quantity
            row["revenue"] += _dec(line.price) * line.quantity
    ranked = sorted(agg.values(), key=lambda r: (r["quantity"], r["revenue"]), reverse=True)[:limit]
    return [{**r, "revenue": _f(r["revenue"])} for r in ranked]


def daily_breakdown(orders: Iterable[Order]) -> list[dict[str, Any]]:
    """Per-day orders and gross revenue keyed by ISO date, oldest first."""
    days: dict[str, dict[str, Any]] = defaultdict(lambda: {"orders": 0, "revenue": ZERO})
    for o in active_orders(orders):
        if o.created_at is None:
            continue
        key = o.created_at.date().isoformat()
        days[key]["orders"] += 1
        days[key]["revenue"] += _dec(o.subtotal if o.subtotal is not None else o.total_amount)
    return [{"date": k, "orders": v["orders"], "revenue": _f(v["revenue"])} for k, v in sorted(days.items())]


def busiest_hour(orders: Iterable[Order]) -> int | None:
    hours = Counter(o.created_at.hour for o in active_orders(orders) if o.created_at is not None)
    if not hours:
        return None
    return sorted(hours.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]


def _orders_in(s: "Session", tr: TimeRange, *filters) -> list[Order]:
    q = s.query(Order).filter(*filters)
    if tr.start is not None:
        q = q.filter(Order.created_at >= tr.start)
    if tr.end is not None:
        q = q.filter(Order.created_at < tr.end)
    return q.order_by(Order.created_at.asc(), Order.id.asc()).all()


def admin_dashboard(
    s: "Session", *, time_range: str | None = None, cafeteria_id: int | None = None, now: datetime | None = None
) -> dict[str, Any]:
    now = now or datetime.utcnow()
    tr = resolve_time_range(time_range, now)
    filters = [Order.cafeteria_id == cafeteria_id] if cafeteria_id else []
    orders = _orders_in(s, tr, *filters)

    year_window = TimeRange("12 Months", datetime.combine(_add_months(now.date().replace(day=1), -11), time.min), None)
    series_orders = _orders_in(s, year_window, *filters)

    active_cafeterias = (
        s.query(func.count(Cafeteria.id))
        .filter(Cafeteria.approval_status == "approved", Cafeteria.is_active.is_(True))
        .scalar()
        or 0
    )
    total_users = s.query(func.count(User.id)).scalar() or 0

    return {
        "time_range": tr.label,
        "start": tr.start.isoformat() if tr.start else None,
        "end": tr.end.isoformat() if tr.end else None,
        **summarize_orders(orders),
        "active_cafeterias": int(active_cafeterias),
        "total_users": int(total_users),
        "monthly": monthly_series(series_orders, now),
        "top_cafeterias": top_cafeterias(orders),
        "status_breakdown": status_breakdown(orders),
    }


def cafeteria_dashboard(
    s: "Session", cafeteria: Cafeteria, *, time_range: str | None = None, now: datetime | None = None
) -> dict[str, Any]:
    now = now or datetime.utcnow()
    tr = resolve_time_range(time_range, now)
    orders = _orders_in(s, tr, Order.cafeteria_id == cafeteria.id)
    summary = summarize_orders(orders)
    pending = (
        s.query(func.count(Order.id))
        .filter(Order.cafeteria_id == cafeteria.id, Order.status == "pending")
        .scalar()
        or 0
    )
    return {
        "time_range": tr.label,
        "cafeteria_id": cafeteria.id,
        "total_orders": summary["total_orders"],
        "gross_revenue": summary["gross_revenue"],
        "commission": summary["total_commission"],
        "net_earnings": summary["net_earnings"],
        "average_order_value": summary["average_order_value"],
        "pending_orders": int(pending),
        "status_breakdown": status_breakdown(orders),
        "top_items": top_items(orders),
        "daily": daily_breakdown(orders),
    }


def revenue_summary(s: "Session", *, start: date | None = None, end: date | None = None) -> dict[str, Any]:
    """Platform revenue over orders that carry the revenue split. `end` is inclusive."""
    tr = TimeRange(
        "Custom",
        datetime.combine(start, time.min) if start else None,
        end_of_day_exclusive(end) if end else None,
    )
    orders = [o for o in _orders_in(s, tr, Order.admin_revenue.isnot(None)) if o.status != "cancelled"]
    summary = summarize_orders(orders)
    return {
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
        "order_count": summary["total_orders"],
        "subtotal": summary["gross_revenue"],
        "service_fees": summary["total_service_fees"],
        "commission": summary["total_commission"],
        "admin_revenue": summary["total_revenue"],
        "total_amount": summary["total_order_value"],
        "average_order_value": summary["average_order_value"],
    }


def order_insights(s: "Session", *, time_range: str | None = None, now: datetime | None = None) -> dict[str, Any]:
    tr = resolve_time_range(time_range or "All Time", now)
    orders = _orders_in(s, tr)
    by_cafeteria: dict[int, list[Order]] = defaultdict(list)
    for o in orders:
        by_cafeteria[o.cafeteria_id].append(o)

    rows = []
    for cafeteria_id, rows_for in by_cafeteria.items():
        total = len(rows_for)
        cancelled = sum(1 for o in rows_for if o.status == "cancelled")
        summary = summarize_orders(rows_for)
        first = rows_for[0]
        rows.append(
            {
                "cafeteria_id": cafeteria_id,
                "name": first.cafeteria.name if first.cafeteria else None,
                "orders": total,
                "completed": sum(1 for o in rows_for if o.status == "completed"),
                "cancelled": cancelled,
                "cancellation_rate": round(cancelled / total, 4) if total else 0.0,
                "order_value": summary["total_order_value"],
                "revenue": summary["total_revenue"],
                "average_order_value": summary["average_order_value"],
                "busiest_hour": busiest_hour(rows_for),
            }
        )
    rows.sort(key=lambda r: r["orders"], reverse=True)
    return {
        "time_range": tr.label,
        "cafeterias": rows,
        "busiest_hour": busiest_hour(orders),
        "status_breakdown": status_breakdown(orders),
    }
