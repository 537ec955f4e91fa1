"""
Orders: placement, revenue split and the fulfilment status machine.

Revenue model (all amounts Decimal, rounded half-up to cents):
    subtotal        = sum(price * quantity)
    service fee     = min(subtotal * fee rate, fee cap)       paid by the student
    commission      = subtotal * commission rate               paid by the cafeteria
    admin revenue   = service fee + commission
    total           = subtotal + service fee

so (subtotal - commission) + admin revenue == total for every order.
"""
from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable

from sqlalchemy import func

from app.unieats.audit import record_event
from app.unieats.models import ROLE_ADMIN, ROLE_CAFETERIA_MANAGER, ROLE_STUDENT
from app.unieats.modules.cafeterias.models import Cafeteria
from app.unieats.modules.cafeterias.service import can_accept_orders
from app.unieats.modules.inventory.service import deduct_for_order
from app.unieats.modules.menu.models import MenuItem
from app.unieats.modules.notifications.service import notify
from app.unieats.modules.orders.models import Order, OrderItem
from app.unieats.modules.platform_settings.service import FeeRates, get_fee_rates, get_setting
from app.unieats.utils import as_float, money, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.unieats.models import User

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("pending", "preparing", "ready", "completed", "cancelled")

STATUS_TRANSITIONS = {
    "pending": {"preparing", "cancelled"},
    "preparing": {"ready", "cancelled"},
    "ready": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}

STATUS_CATEGORIES = {
    "active": ("pending", "preparing", "ready"),
    "completed": ("completed",),
    "cancelled": ("cancelled",),
}

PAYMENT_METHODS = ("cash", "card", "wallet")

_STATUS_MESSAGES = {
    "preparing": "is being prepared",
    "ready": "is ready for pickup",
    "completed": "has been completed",
    "cancelled": "has been cancelled",
}


@dataclass(frozen=True)
class RevenueBreakdown:
    subtotal: Decimal
    user_service_fee: Decimal
    cafeteria_commission: Decimal
    admin_revenue: Decimal
    total_amount: Decimal
    service_fee_percentage: Decimal

    @property
    def cafeteria_net(self) -> Decimal:
        return self.subtotal - self.cafeteria_commission


def calculate_revenue(items: Iterable[tuple[Any, int]], rates: FeeRates | None = None) -> RevenueBreakdown:
    """items: (unit price, quantity) pairs."""
    rates = rates or FeeRates.defaults()
    subtotal = money(sum((Decimal(str(price)) * int(qty) for price, qty in items), Decimal("0")))
    fee = money(min(subtotal * rates.service_fee_rate, rates.service_fee_cap))
    commission = money(subtotal * rates.commission_rate)
    return RevenueBreakdown(
        subtotal=subtotal,
        user_service_fee=fee,
        cafeteria_commission=commission,
        admin_revenue=fee + commission,
        total_amount=subtotal + fee,
        service_fee_percentage=rates.service_fee_rate * 100,
    )


def _apply_revenue(order: Order, revenue: RevenueBreakdown) -> None:
    order.subtotal = revenue.subtotal
    order.user_service_fee = revenue.user_service_fee
    order.cafeteria_commission = revenue.cafeteria_commission
    order.admin_revenue = revenue.admin_revenue
    order.total_amount = revenue.total_amount
    order.service_fee_percentage = revenue.service_fee_percentage


def generate_order_number(now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"ORD-{now.strftime('%Y%m%d')}-{suffix}"


def _unique_order_number(s: "Session") -> str:
    for _ in range(10):
        number = generate_order_number()
        if not s.query(Order.id).filter(Order.order_number == number).first():
            return number
    raise RuntimeError("Could not allocate a unique order number")


def _parse_pickup_time(raw: Any) -> datetime | None:
    if raw is None or str(raw).strip() == "":
        return None
    try:
        return datetime.fromisoformat(str(raw).strip())
    except ValueError:
        raise ValueError("pickup_time must be an ISO timestamp.") from None


def create_order(s: "Session", student: "User", payload: dict) -> Order:
    if get_setting(s, "maintenance_mode"):
        raise ValueError("Ordering is paused while the platform is under maintenance.")

    cafeteria_id = parse_int(payload.get("cafeteria_id"), "cafeteria_id")
    cafeteria = s.get(Cafeteria, cafeteria_id) if cafeteria_id is not None else None
    if cafeteria is None:
        raise ValueError("Cafeteria not found.")
    if not can_accept_orders(cafeteria):
        raise ValueError(f"{cafeteria.name} is not accepting orders right now.")

    lines = payload.get("items")
    if not isinstance(lines, list) or not lines:
        raise ValueError("An order needs at least one item.")

    payment_method = (payload.get("payment_method") or "cash").strip()
    if payment_method not in PAYMENT_METHODS:
        raise ValueError(f"Invalid payment method. Must be one of: {', '.join(PAYMENT_METHODS)}")

    order_items: list[OrderItem] = []
    for line in lines:
        if not isinstance(line, dict):
            raise ValueError("Each order item must be an object.")
        menu_item_id = parse_int(line.get("menu_item_id"), "menu_item_id")
        quantity = parse_int(line.get("quantity", 1), "quantity")
        if quantity is None or quantity < 1:
            raise ValueError("Quantity must be at least 1.")
        menu_item = s.get(MenuItem, menu_item_id) if menu_item_id is not None else None
        if menu_item is None or menu_item.cafeteria_id != cafeteria.id:
            raise ValueError(f"Menu item {menu_item_id} is not on this cafeteria's menu.")
        if not menu_item.is_available:
            raise ValueError(f"{menu_item.name} is currently unavailable.")
        order_items.append(
            OrderItem(
                menu_item_id=menu_item.id,
                quantity=quantity,
                price=money(menu_item.price),
                notes=(line.get("notes") or "").strip() or None,
            )
        )

    revenue = calculate_revenue(((i.price, i.quantity) for i in order_items), get_fee_rates(s))
    minimum = Decimal(str(get_setting(s, "minimum_order_amount")))
    if revenue.subtotal < minimum:
        raise ValueError(f"Minimum order amount is {minimum}.")

    now = datetime.utcnow()
    order = Order(
        order_number=_unique_order_number(s),
        user_id=student.id,
        cafeteria_id=cafeteria.id,
        status="pending",
        pickup_time=_parse_pickup_time(payload.get("pickup_time")),
        payment_method=payment_method,
        platform=(payload.get("platform") or "web").strip(),
        notes=(payload.get("notes") or "").strip() or None,
        created_at=now,
        updated_at=now,
    )
    _apply_revenue(order, revenue)
    order.items = order_items
    s.add(order)
    s.flush()

    record_event(
        s,
        actor=student,
        action="order.create",
        entity_type="Order",
        entity_id=str(order.id),
        metadata={
            "order_number": order.order_number,
            "cafeteria_id": cafeteria.id,
            "subtotal": revenue.subtotal,
            "total_amount": revenue.total_amount,
        },
    )
    if cafeteria.owner_user_id:
        notify(
            s,
            cafeteria.owner_user_id,
            type="order",
            title="New order",
            message=f"Order {order.order_number} received ({revenue.total_amount}).",
            data={"order_id": order.id},
            priority="high",
        )
    logger.info("Order %s placed at cafeteria_id=%s", order.order_number, cafeteria.id)
    return order


def validate_transition(order: Order, new_status: str) -> list[str]:
    if new_status not in ORDER_STATUSES:
        return [f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}"]
    if new_status not in STATUS_TRANSITIONS.get(order.status, set()):
        return [f"Cannot change order from '{order.status}' to '{new_status}'"]
    return []


def _notify_student(s: "Session", order: Order) -> None:
    if not order.user_id:
        return
    message = f"Your order {order.order_number} {_STATUS_MESSAGES.get(order.status, 'was updated')}."
    if order.status == "cancelled" and order.cancellation_reason:
        message += f" Reason: {order.cancellation_reason}"
    notify(
        s,
        order.user_id,
        type="order",
        title=f"Order {order.status}",
        message=message,
        data={"order_id": order.id, "status": order.status},
        priority="high" if order.status in ("ready", "cancelled") else "medium",
    )


def change_status(s: "Session", order: Order, new_status: str, *, actor: "User") -> Order:
    """Move an order forward. Cancellation goes through cancel_order so a reason is captured."""
    if new_status == "cancelled":
        raise ValueError("Use cancel to cancel an order; a reason is required.")
    errors = validate_transition(order, new_status)
    if errors:
        raise ValueError(errors[0])

    old = order.status
    now = datetime.utcnow()
    order.status = new_status
    order.updated_at = now
    result: dict[str, Any] = {}
    if new_status == "completed":
        order.completed_at = now
        result = deduct_for_order(s, order, actor=actor)

    record_event(
        s,
        actor=actor,
        action="order.status_change",
        entity_type="Order",
        entity_id=str(order.id),
        metadata={"order_number": order.order_number, "from": old, "to": new_status, **result},
    )
    _notify_student(s, order)
    logger.info("Order %s: %s -> %s (user_id=%s)", order.order_number, old, new_status, actor.id)
    return order


def cancel_order(s: "Session", order: Order, *, reason: str, actor: "User", cancelled_by: str) -> Order:
    reason = (reason or "").strip()
    if not reason:
        raise ValueError("A cancellation reason is required.")
    if cancelled_by == "student" and order.status != "pending":
        raise ValueError("Orders can only be cancelled by the student while pending.")
    errors = validate_transition(order, "cancelled")
    if errors:
        raise ValueError(errors[0])

    old = order.status
    now = datetime.utcnow()
    order.status = "cancelled"
    order.cancellation_reason = reason
    order.cancelled_by = cancelled_by
    order.cancelled_at = now
    order.updated_at = now

    record_event(
        s,
        actor=actor,
        action="order.cancel",
        entity_type="Order",
        entity_id=str(order.id),
        reason=reason,
        metadata={"order_number": order.order_number, "from": old, "cancelled_by": cancelled_by},
        severity="medium",
    )
    _notify_student(s, order)
    if cancelled_by == "student" and order.cafeteria and order.cafeteria.owner_user_id:
        notify(
            s,
            order.cafeteria.owner_user_id,
            type="order",
            title="Order cancelled",
            message=f"Order {order.order_number} was cancelled by the student.",
            data={"order_id": order.id},
        )
    logger.info("Order %s cancelled by %s (user_id=%s)", order.order_number, cancelled_by, actor.id)
    return order


def can_view_order(user: "User", order: Order) -> bool:
    if user.role == ROLE_ADMIN:
        return True
    if user.role == ROLE_STUDENT:
        return order.user_id == user.id
    if user.role == ROLE_CAFETERIA_MANAGER:
        return order.cafeteria is not None and order.cafeteria.owner_user_id == user.id
    return False


def status_counts(s: "Session", *filters) -> dict[str, int]:
    counts = {k: 0 for k in ORDER_STATUSES}
    for status, cnt in s.query(Order.status, func.count(Order.id)).filter(*filters).group_by(Order.status).all():
        counts[status] = int(cnt)
    return counts


def category_counts(counts: dict[str, int]) -> dict[str, int]:
    return {cat: sum(counts.get(st, 0) for st in statuses) for cat, statuses in STATUS_CATEGORIES.items()}


def group_for_kitchen(orders: Iterable[Order]) -> dict[str, list[Order]]:
    """Kitchen board columns; pending orders are shown as "new"."""
    groups: dict[str, list[Order]] = {"new": [], "preparing": [], "ready": [], "completed": [], "cancelled": []}
    for o in orders:
        groups["new" if o.status == "pending" else o.status].append(o)
    return groups


def recalculate_missing_revenue(s: "Session", *, actor: "User") -> dict[str, Any]:
    """Fill in the revenue split for orders created without one."""
    rates = get_fee_rates(s)
    orders = (
        s.query(Order)
        .filter((Order.subtotal.is_(None)) | (Order.admin_revenue.is_(None)))
        .order_by(Order.id.asc())
        .all()
    )
    updated = 0
    errors: list[dict[str, Any]] = []
    for order in orders:
        if not order.items:
            errors.append({"order_id": order.id, "error": "Order has no items"})
            continue
        _apply_revenue(order, calculate_revenue(((i.price, i.quantity) for i in order.items), rates))
        order.updated_at = datetime.utcnow()
        updated += 1

    record_event(
        s,
        actor=actor,
        action="order.recalculate_revenue",
        entity_type="Order",
        metadata={"total": len(orders), "updated": updated, "errors": len(errors)},
        severity="medium",
    )
    logger.info("Revenue recalculated: %s/%s orders updated", updated, len(orders))
    return {"total": len(orders), "updated": updated, "errors": errors}


def order_view(order: Order) -> dict[str, Any]:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "user_id": order.user_id,
        "customer_name": order.user.display_name if order.user else None,
        "cafeteria_id": order.cafeteria_id,
        "cafeteria_name": order.cafeteria.name if order.cafeteria else None,
        "subtotal": as_float(order.subtotal),
        "user_service_fee": as_float(order.user_service_fee),
        "cafeteria_commission": as_float(order.cafeteria_commission),
        "admin_revenue": as_float(order.admin_revenue),
        "total_amount": as_float(order.total_amount),
        "service_fee_percentage": as_float(order.service_fee_percentage),
        "pickup_time": order.pickup_time.isoformat() if order.pickup_time else None,
        "payment_method": order.payment_method,
        "platform": order.platform,
        "notes": order.notes,
        "cancellation_reason": order.cancellation_reason,
        "cancelled_by": order.cancelled_by,
        "cancelled_at": order.cancelled_at.isoformat() if order.cancelled_at else None,
        "completed_at": order.completed_at.isoformat() if order.completed_at else None,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "items": [
            {
                "menu_item_id": i.menu_item_id,
                "name": i.menu_item.name if i.menu_item else None,
                "quantity": i.quantity,
                "price": as_float(i.price),
                "line_total": as_float(money(i.price * i.quantity)),
                "notes": i.notes,
            }
            for i in order.items
        ],
    }
