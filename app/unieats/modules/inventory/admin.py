from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request
from sqlalchemy import or_

from app.unieats.db import db_session
from app.unieats.modules.cafeterias.admin import owned_cafeteria_or_404
from app.unieats.modules.inventory.models import InventoryItem
from app.unieats.modules.inventory.service import (
    STOCK_STATUSES,
    adjust_stock,
    create_inventory_item,
    delete_inventory_item,
    inventory_view,
    stock_status,
    update_inventory_item,
    validate_inventory_payload,
)
from app.unieats.rbac import require_permission
from app.unieats.utils import parse_decimal

bp = Blueprint("inventory", __name__)


def _owned_item_or_404(item_id: int) -> InventoryItem:
    cafeteria = owned_cafeteria_or_404()
    item = db_session().get(InventoryItem, item_id)
    if not item or item.cafeteria_id != cafeteria.id:
        abort(404)
    return item


@bp.get("/cafeteria/inventory")
@require_permission("inventory.manage")
def inventory_list():
    s = db_session()
    cafeteria = owned_cafeteria_or_404()
    q = s.query(InventoryItem).filter(InventoryItem.cafeteria_id == cafeteria.id)
    category = (request.args.get("category") or "").strip()
    if category and category != "all":
        q = q.filter(InventoryItem.category == category)
    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(InventoryItem.name.ilike(like), InventoryItem.supplier.ilike(like)))
    items = q.order_by(InventoryItem.name.asc()).all()

    counts = {k: 0 for k in STOCK_STATUSES}
    for item in items:
        counts[stock_status(item)] += 1

    low_only = (request.args.get("low_stock") or "").strip().lower() in ("1", "true")
    if low_only:
        items = [i for i in items if stock_status(i) != "in_stock"]
    return jsonify({"items": [inventory_view(i) for i in items], "counts": counts})


@bp.post("/cafeteria/inventory")
@require_permission("inventory.manage")
def inventory_create():
    s = db_session()
    cafeteria = owned_cafeteria_or_404()
    payload = request.get_json(silent=True) or request.form.to_dict()
    errors = validate_inventory_payload(payload)
    if errors:
        return jsonify({"error": "; ".join(errors), "errors": errors}), 400
    item = create_inventory_item(s, cafeteria, payload, g.current_user)
    s.commit()
    return jsonify({"success": True, "item": inventory_view(item)}), 201


@bp.post("/cafeteria/inventory/<int:item_id>")
@require_permission("inventory.manage")
def inventory_update(item_id: int):
    s = db_session()
    item = _owned_item_or_404(item_id)
    payload = request.get_json(silent=True) or request.form.to_dict()
    errors = validate_inventory_payload(payload, partial=True)
    if errors:
        return jsonify({"error": "; ".join(errors), "errors": errors}), 400
    update_inventory_item(s, item, payload, g.current_user)
    s.commit()
    return jsonify({"success": True, "item": inventory_view(item)})


@bp.post("/cafeteria/inventory/<int:item_id>/delete")
@require_permission("inventory.manage")
def inventory_delete(item_id: int):
    s = db_session()
    item = _owned_item_or_404(item_id)
    delete_inventory_item(s, item, g.current_user)
    s.commit()
    return jsonify({"success": True})


@bp.post("/cafeteria/inventory/<int:item_id>/adjust")
@require_permission("inventory.manage")
def inventory_adjust(item_id: int):
    s = db_session()
    item = _owned_item_or_404(item_id)
    payload = request.get_json(silent=True) or request.form.to_dict()
    try:
        delta = parse_decimal(payload.get("delta"), "delta")
        if delta is None:
            raise ValueError("delta is required.")
        adjust_stock(s, item, delta, reason=payload.get("reason") or "", user=g.current_user)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "item": inventory_view(item)})
