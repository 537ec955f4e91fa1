"""
Cafeteria stock and the ingredient deduction that runs when an order completes.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from app.unieats.audit import record_event
from app.unieats.constants import INVENTORY_CATEGORIES
from app.unieats.modules.inventory.models import InventoryItem
from app.unieats.modules.menu.models import MenuItem, MenuItemIngredient
from app.unieats.modules.notifications.service import notify
from app.unieats.utils import as_float, parse_date, parse_decimal

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.unieats.models import User
    from app.unieats.modules.cafeterias.models import Cafeteria
    from app.unieats.modules.orders.models import Order

logger = logging.getLogger(__name__)

STOCK_STATUSES = ("in_stock", "low_stock", "out_of_stock")


def stock_status(item: InventoryItem) -> str:
    quantity = Decimal(item.quantity or 0)
    if quantity <= 0:
        return "out_of_stock"
    if quantity <= Decimal(item.min_quantity or 0):
        return "low_stock"
    return "in_stock"


def validate_inventory_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not (payload.get("name") or "").strip():
            errors.append("Name is required.")
    category = (payload.get("category") or "").strip()
    if category and category not in INVENTORY_CATEGORIES:
        errors.append(f"Invalid category. Must be one of: {', '.join(INVENTORY_CATEGORIES)}")
    for field in ("quantity", "min_quantity", "cost_per_unit"):
        try:
            value = parse_decimal(payload.get(field), field)
        except ValueError as e:
            errors.append(str(e))
            continue
        if value is not None and value < 0:
            errors.append(f"{field} cannot be negative.")
    try:
        parse_date(payload.get("expiry_date"), "expiry_date")
    except ValueError as e:
        errors.append(str(e))
    return errors


def create_inventory_item(s: "Session", cafeteria: "Cafeteria", payload: dict, user: "User") -> InventoryItem:
    now = datetime.utcnow()
    item = InventoryItem(
        cafeteria_id=cafeteria.id,
        name=(payload.get("name") or "").strip(),
        category=(payload.get("category") or "").strip() or "other",
        quantity=parse_decimal(payload.get("quantity"), "quantity") or Decimal("0"),
        unit=(payload.get("unit") or "").strip() or "unit",
        min_quantity=parse_decimal(payload.get("min_quantity"), "min_quantity") or Decimal("0"),
        cost_per_unit=parse_decimal(payload.get("cost_per_unit"), "cost_per_unit"),
        supplier=(payload.get("supplier") or "").strip() or None,
        expiry_date=parse_date(payload.get("expiry_date"), "expiry_date"),
        created_at=now,
        updated_at=now,
    )
    s.add(item)
    s.flush()

    record_event(
        s,
        actor=user,
        action="inventory.create",
        entity_type="InventoryItem",
        entity_id=str(item.id),
        metadata={"name": item.name, "cafeteria_id": cafeteria.id, "quantity": item.quantity},
    )
    return item


def update_inventory_item(s: "Session", item: InventoryItem, payload: dict, user: "User") -> InventoryItem:
    changes = {}

    def _set(attr: str, val):
        if val != getattr(item, attr):
            changes[attr] = {"old": getattr(item, attr), "new": val}
            setattr(item, attr, val)

    if "name" in payload:
        _set("name", (payload.get("name") or "").strip())
    if "category" in payload:
        _set("category", (payload.get("category") or "").strip() or "other")
    if "unit" in payload:
        _set("unit", (payload.get("unit") or "").strip() or "unit")
    if "quantity" in payload:
        _set("quantity", parse_decimal(payload.get("quantity"), "quantity") or Decimal("0"))
    if "min_quantity" in payload:
        _set("min_quantity", parse_decimal(payload.get("min_quantity"), "min_quantity") or Decimal("0"))
    if "cost_per_unit" in payload:
        _set("cost_per_unit", parse_decimal(payload.get("cost_per_unit"), "cost_per_unit"))
    if "supplier" in payload:
        _set("supplier", (payload.get("supplier") or "").strip() or None)
    if "expiry_date" in payload:
        _set("expiry_date", parse_date(payload.get("expiry_date"), "expiry_date"))

    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="inventory.update",
        entity_type="InventoryItem",
        entity_id=str(item.id),
        metadata={"name": item.name, "changes": changes},
    )
    return item


def delete_inventory_item(s: "Session", item: InventoryItem, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="inventory.delete",
        entity_type="InventoryItem",
        entity_id=str(item.id),
        metadata={"name": item.name, "cafeteria_id": item.cafeteria_id},
    )
    s.delete(item)


def adjust_stock(s: "Session", item: InventoryItem, delta: Decimal, *, reason: str, user: "User") -> InventoryItem:
    """Apply a +/- stock movement. Stock cannot go below zero."""
    reason = (reason or "").strip()
    if not reason:
        raise ValueError("A reason is required for stock adjustments.")
    if delta == 0:
        raise ValueError("Adjustment cannot be zero.")
    old = Decimal(item.quantity or 0)
    new = old + delta
    if new < 0:
        raise ValueError(f"Insufficient stock: {item.name} has {old} {item.unit}.")
    item.quantity = new
    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="inventory.adjust",
        entity_type="InventoryItem",
        entity_id=str(item.id),
        reason=reason,
        metadata={"name": item.name, "from": old, "to": new, "delta": delta},
    )
    return item


def _refresh_menu_availability(s: "Session", inventory_ids: set[int]) -> list[MenuItem]:
    """Mark menu items unavailable when an ingredient can no longer cover one serving."""
    if not inventory_ids:
        return []
    affected = (
        s.query(MenuItem)
        .join(MenuItemIngredient, MenuItemIngredient.menu_item_id == MenuItem.id)
        .filter(MenuItemIngredient.inventory_item_id.in_(inventory_ids))
        .filter(MenuItem.is_available.is_(True))
        .distinct()
        .all()
    )
    disabled = []
    for menu_item in affected:
        for ing in menu_item.ingredients:
            if Decimal(ing.inventory_item.quantity or 0) < Decimal(ing.quantity_required or 0):
                menu_item.is_available = False
                menu_item.updated_at = datetime.utcnow()
                disabled.append(menu_item)
                break
    return disabled


def deduct_for_order(s: "Session", order: "Order", *, actor: "User | None") -> dict[str, Any]:
    """
    Deduct ingredient stock for a completed order.

    Each line consumes quantity_required x quantity of every linked inventory
    item, floored at zero. Returns {"deducted": [...], "low_stock": [...],
    "disabled_menu_items": [...]}.
    """
    usage: dict[int, Decimal] = {}
    for line in order.items:
        if line.menu_item is None:
            continue
        for ing in line.menu_item.ingredients:
            need = Decimal(ing.quantity_required or 0) * line.quantity
            usage[ing.inventory_item_id] = usage.get(ing.inventory_item_id, Decimal("0")) + need

    deducted = []
    low = []
    for inventory_id, amount in sorted(usage.items()):
        item = s.get(InventoryItem, inventory_id)
        if item is None:
            continue
        old = Decimal(item.quantity or 0)
        new = max(old - amount, Decimal("0"))
        item.quantity = new
        item.updated_at = datetime.utcnow()
        deducted.append({"inventory_item_id": item.id, "name": item.name, "from": old, "to": new})
        if stock_status(item) != "in_stock":
            low.append(item)

    disabled = _refresh_menu_availability(s, set(usage))

    if deducted:
        record_event(
            s,
            actor=actor,
            action="inventory.deduct",
            entity_type="Order",
            entity_id=str(order.id),
            metadata={"order_number": order.order_number, "items": deducted},
        )

    owner_id = order.cafeteria.owner_user_id if order.cafeteria else None
    if low and owner_id:
        names = ", ".join(i.name for i in low)
        notify(
            s,
            owner_id,
            type="alert",
            title="Low stock",
            message=f"Running low on: {names}",
            data={"inventory_item_ids": [i.id for i in low]},
            priority="high",
        )
        logger.info("Low stock after order %s: %s", order.order_number, names)

    return {
        "deducted": deducted,
        "low_stock": [i.id for i in low],
        "disabled_menu_items": [m.id for m in disabled],
    }


def inventory_view(item: InventoryItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "cafeteria_id": item.cafeteria_id,
        "name": item.name,
        "category": item.category,
        "quantity": as_float(item.quantity),
        "unit": item.unit,
        "min_quantity": as_float(item.min_quantity),
        "cost_per_unit": as_float(item.cost_per_unit),
        "supplier": item.supplier,
        "expiry_date": item.expiry_date.isoformat() if item.expiry_date else None,
        "status": stock_status(item),
        "updated_at": item.updated_at.isoformat() if item.updated_at else None,
    }
