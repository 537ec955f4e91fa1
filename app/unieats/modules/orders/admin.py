from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.unieats.db import db_session
from app.unieats.models import ROLE_STUDENT
from app.unieats.modules.cafeterias.admin import owned_cafeteria_or_404
from app.unieats.modules.orders.models import Order
from app.unieats.modules.orders.service import (
    ORDER_STATUSES,
    STATUS_CATEGORIES,
    cancel_order,
    can_view_order,
    category_counts,
    change_status,
    create_order,
    group_for_kitchen,
    order_view,
    recalculate_missing_revenue,
    status_counts,
)
from app.unieats.rbac import require_login, require_permission

bp = Blueprint("orders", __name__)


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _limit(default: int = 100, maximum: int = 500) -> int:
    limit = request.args.get("limit", default, type=int) or default
    return max(1, min(limit, maximum))


# ---------- Student ----------
@bp.post("/orders")
@require_permission("orders.place")
def order_create():
    s = db_session()
    try:
        order = create_order(s, g.current_user, _payload())
    except ValueError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "order": order_view(order)}), 201


@bp.get("/orders/mine")
@require_permission("orders.place")
def orders_mine():
    s = db_session()
    orders = (
        s.query(Order)
        .filter(Order.user_id == g.current_user.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(_limit())
        .all()
    )
    return jsonify({"orders": [order_view(o) for o in orders]})


@bp.get("/orders/<int:order_id>")
@require_login
def order_detail(order_id: int):
    s = db_session()
    order = s.get(Order, order_id)
    if not order or not can_view_order(g.current_user, order):
        abort(404)
    return jsonify({"order": order_view(order)})


@bp.post("/orders/<int:order_id>/cancel")
@require_permission("orders.place")
def order_cancel_own(order_id: int):
    s = db_session()
    order = s.get(Order, order_id)
    if not order or order.user_id != g.current_user.id:
        abort(404)
    reason = _payload().get("reason") or "Cancelled by student"
    try:
        cancel_order(s, order, reason=reason, actor=g.current_user, cancelled_by=ROLE_STUDENT)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "order": order_view(order)})


# ---------- Cafeteria owner ----------
def _owned_order_or_404(order_id: int) -> Order:
    cafeteria = owned_cafeteria_or_404()
    order = db_session().get(Order, order_id)
    if not order or order.cafeteria_id != cafeteria.id:
        abort(404)
    return order


@bp.get("/cafeteria/orders")
@require_permission("orders.fulfil")
def cafeteria_orders():
    s = db_session()
    cafeteria = owned_cafeteria_or_404()
    orders = (
        s.query(Order)
        .filter(Order.cafeteria_id == cafeteria.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(_limit())
        .all()
    )
    groups = group_for_kitchen(orders)
    return jsonify(
        {
            "orders": {k: [order_view(o) for o in v] for k, v in groups.items()},
            "counts": {k: len(v) for k, v in groups.items()},
        }
    )


@bp.post("/cafeteria/orders/<int:order_id>/status")
@require_permission("orders.fulfil")
def cafeteria_order_status(order_id: int):
    s = db_session()
    order = _owned_order_or_404(order_id)
    new_status = (_payload().get("status") or "").strip()
    try:
        change_status(s, order, new_status, actor=g.current_user)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "order": order_view(order)})


@bp.post("/cafeteria/orders/<int:order_id>/cancel")
@require_permission("orders.fulfil")
def cafeteria_order_cancel(order_id: int):
    s = db_session()
    order = _owned_order_or_404(order_id)
    try:
        cancel_order(s, order, reason=_payload().get("reason") or "", actor=g.current_user, cancelled_by="cafeteria")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "order": order_view(order)})


# ---------- Admin ----------
@bp.get("/admin/orders")
@require_permission("orders.view_all")
def admin_orders():
    s = db_session()
    q = s.query(Order)
    status_filter = (request.args.get("status") or "").strip()
    if status_filter and status_filter != "all":
        if status_filter in STATUS_CATEGORIES:
            q = q.filter(Order.status.in_(STATUS_CATEGORIES[status_filter]))
        elif status_filter in ORDER_STATUSES:
            q = q.filter(Order.status == status_filter)
        else:
            return jsonify({"error": f"Invalid status: {status_filter}"}), 400
    cafeteria_id = request.args.get("cafeteria_id", type=int)
    if cafeteria_id:
        q = q.filter(Order.cafeteria_id == cafeteria_id)
    orders = q.order_by(Order.created_at.desc(), Order.id.desc()).limit(_limit()).all()

    counts = status_counts(s)
    return jsonify(
        {
            "orders": [order_view(o) for o in orders],
            "counts": counts,
            "category_counts": category_counts(counts),
            "total": sum(counts.values()),
        }
    )


@bp.post("/admin/orders/<int:order_id>/cancel")
@require_permission("orders.manage_all")
def admin_order_cancel(order_id: int):
    s = db_session()
    order = s.get(Order, order_id)
    if not order:
        abort(404)
    try:
        cancel_order(s, order, reason=_payload().get("reason") or "", actor=g.current_user, cancelled_by="admin")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "order": order_view(order)})


@bp.post("/admin/orders/recalculate-revenue")
@require_permission("orders.manage_all")
def admin_recalculate_revenue():
    s = db_session()
    result = recalculate_missing_revenue(s, actor=g.current_user)
    s.commit()
    return jsonify({"success": True, **result})
