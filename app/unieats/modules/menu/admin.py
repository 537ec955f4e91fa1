from __future__ import annotations

from flask import Blueprint, abort, current_app, g, jsonify, request
from sqlalchemy import or_

from app.unieats.constants import ALLOWED_IMAGE_TYPES, MENU_CATEGORIES
from app.unieats.db import db_session
from app.unieats.modules.cafeterias.admin import owned_cafeteria_or_404
from app.unieats.modules.cafeterias.models import Cafeteria
from app.unieats.modules.cafeterias.service import cafeteria_view
from app.unieats.modules.menu.models import MenuItem
from app.unieats.modules.menu.service import (
    create_menu_item,
    delete_menu_item,
    menu_item_view,
    rate_menu_item,
    rating_summary,
    set_ingredients,
    set_menu_item_image,
    toggle_availability,
    update_menu_item,
    validate_menu_item_payload,
)
from app.unieats.rbac import require_permission
from app.unieats.storage import build_storage_key, storage_from_config

bp = Blueprint("menu", __name__)


def _owned_item_or_404(item_id: int) -> MenuItem:
    cafeteria = owned_cafeteria_or_404()
    item = db_session().get(MenuItem, item_id)
    if not item or item.cafeteria_id != cafeteria.id:
        abort(404)
    return item


def _filtered(q):
    category = (request.args.get("category") or "").strip()
    if category and category != "all":
        q = q.filter(MenuItem.category == category)
    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(MenuItem.name.ilike(like), MenuItem.description.ilike(like)))
    return q.order_by(MenuItem.category.asc(), MenuItem.name.asc())


# ---------- Public ----------
@bp.get("/cafeterias/<int:cafeteria_id>/menu")
def public_menu(cafeteria_id: int):
    s = db_session()
    cafeteria = s.get(Cafeteria, cafeteria_id)
    if not cafeteria or cafeteria.approval_status != "approved" or not cafeteria.is_active:
        abort(404)
    items = _filtered(
        s.query(MenuItem).filter(MenuItem.cafeteria_id == cafeteria.id, MenuItem.is_available.is_(True))
    ).all()
    ratings = rating_summary(s, [i.id for i in items])
    return jsonify(
        {
            "cafeteria": cafeteria_view(cafeteria),
            "items": [menu_item_view(i, ratings) for i in items],
            "categories": list(MENU_CATEGORIES),
        }
    )


@bp.post("/menu-items/<int:item_id>/ratings")
@require_permission("menu.rate")
def menu_item_rate(item_id: int):
    s = db_session()
    item = s.get(MenuItem, item_id)
    if not item:
        abort(404)
    payload = request.get_json(silent=True) or request.form.to_dict()
    try:
        r = rate_menu_item(
            s,
            item,
            g.current_user,
            rating=payload.get("rating"),
            order_id=payload.get("order_id"),
            comment=payload.get("comment"),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    avg, count = rating_summary(s, [item.id]).get(item.id, (0.0, 0))
    return jsonify({"success": True, "rating_id": r.id, "average_rating": avg, "rating_count": count}), 201


# ---------- Owner ----------
@bp.get("/cafeteria/menu")
@require_permission("menu.manage")
def menu_list():
    s = db_session()
    cafeteria = owned_cafeteria_or_404()
    items = _filtered(s.query(MenuItem).filter(MenuItem.cafeteria_id == cafeteria.id)).all()
    ratings = rating_summary(s, [i.id for i in items])
    return jsonify(
        {
            "items": [menu_item_view(i, ratings) for i in items],
            "total": len(items),
            "available": sum(1 for i in items if i.is_available),
            "categories": list(MENU_CATEGORIES),
        }
    )


@bp.post("/cafeteria/menu")
@require_permission("menu.manage")
def menu_create():
    s = db_session()
    cafeteria = owned_cafeteria_or_404()
    payload = request.get_json(silent=True) or request.form.to_dict()
    errors = validate_menu_item_payload(payload)
    if errors:
        return jsonify({"error": "; ".join(errors), "errors": errors}), 400
    item = create_menu_item(s, cafeteria, payload, g.current_user)
    s.commit()
    return jsonify({"success": True, "item": menu_item_view(item)}), 201


@bp.post("/cafeteria/menu/<int:item_id>")
@require_permission("menu.manage")
def menu_update(item_id: int):
    s = db_session()
    item = _owned_item_or_404(item_id)
    payload = request.get_json(silent=True) or request.form.to_dict()
    errors = validate_menu_item_payload(payload, partial=True)
    if errors:
        return jsonify({"error": "; ".join(errors), "errors": errors}), 400
    update_menu_item(s, item, payload, g.current_user)
    s.commit()
    return jsonify({"success": True, "item": menu_item_view(item)})


@bp.post("/cafeteria/menu/<int:item_id>/delete")
@require_permission("menu.manage")
def menu_delete(item_id: int):
    s = db_session()
    item = _owned_item_or_404(item_id)
    key = item.image_key
    delete_menu_item(s, item, g.current_user)
    s.commit()
    if key:
        storage_from_config(current_app.config).delete(key)
    return jsonify({"success": True})


@bp.post("/cafeteria/menu/<int:item_id>/toggle")
@require_permission("menu.manage")
def menu_toggle(item_id: int):
    s = db_session()
    item = _owned_item_or_404(item_id)
    toggle_availability(s, item, g.current_user)
    s.commit()
    return jsonify({"success": True, "item": menu_item_view(item)})


@bp.post("/cafeteria/menu/<int:item_id>/image")
@require_permission("menu.manage")
def menu_image_upload(item_id: int):
    s = db_session()
    item = _owned_item_or_404(item_id)
    f = request.files.get("file")
    if not f or not f.filename:
        return jsonify({"error": "No file uploaded"}), 400
    content_type = f.mimetype or "application/octet-stream"
    if content_type not in ALLOWED_IMAGE_TYPES:
        return jsonify({"error": "File must be a JPEG, PNG, WebP or GIF image"}), 400

    key = build_storage_key("menu-items", item.id, f.filename)
    storage = storage_from_config(current_app.config)
    storage.put_bytes(key, f.read(), content_type=content_type)
    old_key = item.image_key
    set_menu_item_image(s, item, key, g.current_user)
    s.commit()
    if old_key and old_key != key:
        storage.delete(old_key)
    return jsonify({"success": True, "item": menu_item_view(item)})


@bp.post("/cafeteria/menu/<int:item_id>/ingredients")
@require_permission("menu.manage")
def menu_ingredients(item_id: int):
    s = db_session()
    item = _owned_item_or_404(item_id)
    payload = request.get_json(silent=True) or {}
    rows = payload.get("ingredients")
    if not isinstance(rows, list):
        return jsonify({"error": "ingredients must be a list"}), 400
    try:
        set_ingredients(s, item, rows, g.current_user)
    except ValueError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "item": menu_item_view(item)})
