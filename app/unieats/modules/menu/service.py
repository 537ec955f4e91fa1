from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable

from sqlalchemy import func

from app.unieats.audit import record_event
from app.unieats.constants import MENU_CATEGORIES
from app.unieats.modules.inventory.models import InventoryItem
from app.unieats.modules.menu.models import MenuItem, MenuItemIngredient, MenuItemRating
from app.unieats.modules.platform_settings.service import get_setting
from app.unieats.utils import as_float, money, parse_decimal, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.unieats.models import User
    from app.unieats.modules.cafeterias.models import Cafeteria


# Numeric(10, 2)
MAX_PRICE = Decimal("100000000")


def validate_menu_item_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not (payload.get("name") or "").strip():
            errors.append("Name is required.")
    if not partial or "price" in payload:
        try:
            price = parse_decimal(payload.get("price"), "Price")
        except ValueError as e:
            errors.append(str(e))
        else:
            if price is not None and price >= MAX_PRICE:
                errors.append(f"Price must be less than {MAX_PRICE}.")
            elif price is None or money(price) <= 0:
                errors.append("Price must be greater than 0.")
    if not partial or "category" in payload:
        category = (payload.get("category") or "").strip()
        if category not in MENU_CATEGORIES:
            errors.append(f"Invalid category. Must be one of: {', '.join(MENU_CATEGORIES)}")
    if "preparation_time" in payload:
        try:
            minutes = parse_int(payload.get("preparation_time"), "preparation_time")
        except ValueError as e:
            errors.append(str(e))
        else:
            if minutes is not None and minutes <= 0:
                errors.append("preparation_time must be positive.")
    return errors


def _to_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def create_menu_item(s: "Session", cafeteria: "Cafeteria", payload: dict, user: "User") -> MenuItem:
    prep = parse_int(payload.get("preparation_time"), "preparation_time")
    if prep is None:
        prep = int(get_setting(s, "default_preparation_time"))
    now = datetime.utcnow()
    item = MenuItem(
        cafeteria_id=cafeteria.id,
        name=(payload.get("name") or "").strip(),
        description=(payload.get("description") or "").strip() or None,
        price=money(parse_decimal(payload.get("price"), "Price")),
        category=(payload.get("category") or "").strip(),
        is_available=_to_bool(payload.get("is_available")),
        preparation_time=prep,
        created_at=now,
        updated_at=now,
    )
    s.add(item)
    s.flush()
    record_event(
        s,
        actor=user,
        action="menu_item.create",
        entity_type="MenuItem",
        entity_id=str(item.id),
        metadata={"name": item.name, "price": item.price, "cafeteria_id": cafeteria.id},
    )
    return item


def update_menu_item(s: "Session", item: MenuItem, payload: dict, user: "User") -> MenuItem:
    changes = {}

    def _set(attr: str, val):
        if val != getattr(item, attr):
            changes[attr] = {"old": getattr(item, attr), "new": val}
            setattr(item, attr, val)

    if "name" in payload:
        _set("name", (payload.get("name") or "").strip())
    if "description" in payload:
        _set("description", (payload.get("description") or "").strip() or None)
    if "price" in payload:
        _set("price", money(parse_decimal(payload.get("price"), "Price")))
    if "category" in payload:
        _set("category", (payload.get("category") or "").strip())
    if "is_available" in payload:
        _set("is_available", _to_bool(payload.get("is_available")))
    if "preparation_time" in payload:
        _set("preparation_time", parse_int(payload.get("preparation_time"), "preparation_time"))

    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="menu_item.update",
        entity_type="MenuItem",
        entity_id=str(item.id),
        metadata={"name": item.name, "changes": changes},
    )
    return item


def delete_menu_item(s: "Session", item: MenuItem, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="menu_item.delete",
        entity_type="MenuItem",
        entity_id=str(item.id),
        metadata={"name": item.name, "cafeteria_id": item.cafeteria_id},
    )
    s.delete(item)


def toggle_availability(s: "Session", item: MenuItem, user: "User") -> MenuItem:
    item.is_available = not item.is_available
    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="menu_item.toggle_availability",
        entity_type="MenuItem",
        entity_id=str(item.id),
        metadata={"name": item.name, "is_available": item.is_available},
    )
    return item


def set_menu_item_image(s: "Session", item: MenuItem, storage_key: str, user: "User") -> MenuItem:
    old = item.image_key
    item.image_key = storage_key
    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="menu_item.image_upload",
        entity_type="MenuItem",
        entity_id=str(item.id),
        metadata={"old": old, "new": storage_key},
    )
    return item


def set_ingredients(s: "Session", item: MenuItem, rows: Iterable[dict], user: "User") -> MenuItem:
    """Replace the ingredient links of a menu item. Inventory must belong to the same cafeteria."""
    wanted: dict[int, Decimal] = {}
    for row in rows:
        if not isinstance(row, dict):
            raise ValueError("Each ingredient must be an object.")
        inventory_id = parse_int(row.get("inventory_item_id"), "inventory_item_id")
        if inventory_id is None:
            raise ValueError("inventory_item_id is required.")
        qty = parse_decimal(row.get("quantity_required"), "quantity_required")
        if qty is None or qty <= 0:
            raise ValueError("quantity_required must be greater than 0.")
        if inventory_id in wanted:
            raise ValueError(f"Inventory item {inventory_id} listed twice.")
        inv = s.get(InventoryItem, inventory_id)
        if inv is None or inv.cafeteria_id != item.cafeteria_id:
            raise ValueError(f"Inventory item {inventory_id} not found in this cafeteria.")
        wanted[inventory_id] = qty

    existing = {ing.inventory_item_id: ing for ing in item.ingredients}
    for inventory_id, ing in existing.items():
        if inventory_id not in wanted:
            item.ingredients.remove(ing)
    for inventory_id, qty in wanted.items():
        if inventory_id in existing:
            existing[inventory_id].quantity_required = qty
        else:
            item.ingredients.append(MenuItemIngredient(inventory_item_id=inventory_id, quantity_required=qty))

    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="menu_item.ingredients",
        entity_type="MenuItem",
        entity_id=str(item.id),
        metadata={"ingredients": {str(k): v for k, v in wanted.items()}},
    )
    return item


def rate_menu_item(
    s: "Session",
    item: MenuItem,
    user: "User",
    *,
    rating: Any,
    order_id: Any = None,
    comment: str | None = None,
) -> MenuItemRating:
    """A student may rate an item once per completed order that contained it."""
    from app.unieats.modules.orders.models import Order, OrderItem

    try:
        value = int(rating)
    except (TypeError, ValueError):
        raise ValueError("Rating must be a whole number between 1 and 5.") from None
    if value < 1 or value > 5:
        raise ValueError("Rating must be a whole number between 1 and 5.")

    q = (
        s.query(Order)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .filter(Order.user_id == user.id, Order.status == "completed", OrderItem.menu_item_id == item.id)
    )
    oid = parse_int(order_id, "order_id")
    if oid is not None:
        q = q.filter(Order.id == oid)
    order = q.order_by(Order.completed_at.desc(), Order.id.desc()).first()
    if order is None:
        raise ValueError("You can only rate items from your completed orders.")

    duplicate = (
        s.query(MenuItemRating)
        .filter(
            MenuItemRating.user_id == user.id,
            MenuItemRating.menu_item_id == item.id,
            MenuItemRating.order_id == order.id,
        )
        .one_or_none()
    )
    if duplicate:
        raise ValueError("You have already rated this item for this order.")

    r = MenuItemRating(
        menu_item_id=item.id,
        user_id=user.id,
        order_id=order.id,
        rating=value,
        comment=(comment or "").strip() or None,
    )
    s.add(r)
    s.flush()
    record_event(
        s,
        actor=user,
        action="menu_item.rate",
        entity_type="MenuItem",
        entity_id=str(item.id),
        metadata={"rating": value, "order_id": order.id},
    )
    return r


def rating_summary(s: "Session", item_ids: Iterable[int]) -> dict[int, tuple[float, int]]:
    ids = list(item_ids)
    if not ids:
        return {}
    rows = (
        s.query(MenuItemRating.menu_item_id, func.avg(MenuItemRating.rating), func.count(MenuItemRating.id))
        .filter(MenuItemRating.menu_item_id.in_(ids))
        .group_by(MenuItemRating.menu_item_id)
        .all()
    )
    return {mid: (round(float(avg or 0), 2), int(cnt)) for mid, avg, cnt in rows}


def menu_item_view(item: MenuItem, ratings: dict[int, tuple[float, int]] | None = None) -> dict[str, Any]:
    avg, count = (ratings or {}).get(item.id, (0.0, 0))
    return {
        "id": item.id,
        "cafeteria_id": item.cafeteria_id,
        "name": item.name,
        "description": item.description,
        "price": as_float(item.price),
        "category": item.category,
        "is_available": item.is_available,
        "preparation_time": item.preparation_time,
        "has_image": bool(item.image_key),
        "average_rating": avg,
        "rating_count": count,
        "ingredients": [
            {
                "inventory_item_id": ing.inventory_item_id,
                "name": ing.inventory_item.name if ing.inventory_item else None,
                "quantity_required": as_float(ing.quantity_required),
            }
            for ing in item.ingredients
        ],
    }
