from __future__ import annotations

from flask import Blueprint, abort, current_app, g, jsonify, request
from sqlalchemy import func

from app.unieats.audit import record_event
from app.unieats.constants import ALLOWED_IMAGE_TYPES
from app.unieats.db import db_session
from app.unieats.models import User
from app.unieats.modules.cafeterias.models import Cafeteria, CafeteriaApplication
from app.unieats.modules.cafeterias.service import (
    APPLICATION_STATUSES,
    DuplicateApplicationError,
    application_view,
    cafeteria_view,
    get_owned_cafeteria,
    review_application,
    revoke_cafeteria,
    submit_application,
    update_cafeteria_profile,
    update_operational_status,
    validate_application_payload,
)
from app.unieats.rbac import require_permission
from app.unieats.storage import build_storage_key, storage_from_config

bp = Blueprint("cafeterias", __name__)


def owned_cafeteria_or_404() -> Cafeteria:
    """The signed-in manager's cafeteria; 404 when they have none."""
    s = db_session()
    user: User = g.current_user
    cafeteria = get_owned_cafeteria(s, user)
    if cafeteria is None:
        abort(404)
    return cafeteria


# ---------- Public ----------
@bp.get("/cafeterias")
def public_cafeterias():
    s = db_session()
    cafeterias = (
        s.query(Cafeteria)
        .filter(Cafeteria.approval_status == "approved", Cafeteria.is_active.is_(True))
        .order_by(Cafeteria.name.asc())
        .all()
    )
    return jsonify({"cafeterias": [cafeteria_view(c) for c in cafeterias]})


@bp.post("/cafeteria-applications")
def application_submit():
    s = db_session()
    payload = request.get_json(silent=True) or request.form.to_dict()
    errors = validate_application_payload(payload)
    if errors:
        return jsonify({"error": "; ".join(errors), "errors": errors}), 400
    try:
        application = submit_application(s, payload)
    except DuplicateApplicationError as e:
        return jsonify({"error": str(e)}), 409
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return (
        jsonify(
            {
                "success": True,
                "application": application_view(application),
                "message": "Application submitted. You will be able to sign in once an admin approves it.",
            }
        ),
        201,
    )


# ---------- Admin: applications ----------
@bp.get("/admin/cafeteria-applications")
@require_permission("cafeterias.review")
def applications_list():
    s = db_session()
    status_filter = (request.args.get("status") or "").strip()
    q = s.query(CafeteriaApplication)
    if status_filter and status_filter != "all":
        if status_filter not in APPLICATION_STATUSES:
            return jsonify({"error": f"Invalid status: {status_filter}"}), 400
        q = q.filter(CafeteriaApplication.status == status_filter)
    applications = q.order_by(CafeteriaApplication.created_at.desc(), CafeteriaApplication.id.desc()).all()

    counts = {k: 0 for k in APPLICATION_STATUSES}
    for status, cnt in (
        s.query(CafeteriaApplication.status, func.count(CafeteriaApplication.id))
        .group_by(CafeteriaApplication.status)
        .all()
    ):
        counts[status] = int(cnt)

    return jsonify({"applications": [application_view(a) for a in applications], "counts": counts})


@bp.post("/admin/cafeteria-applications/<int:application_id>/review")
@require_permission("cafeterias.review")
def application_review(application_id: int):
    s = db_session()
    application = s.get(CafeteriaApplication, application_id)
    if not application:
        abort(404)
    payload = request.get_json(silent=True) or request.form.to_dict()
    try:
        review_application(
            s,
            application,
            status=(payload.get("status") or "").strip(),
            reviewer=g.current_user,
            notes=payload.get("review_notes"),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "application": application_view(application)})


# ---------- Admin: cafeterias ----------
@bp.get("/admin/cafeterias")
@require_permission("cafeterias.view_all")
def cafeterias_list():
    from app.unieats.modules.menu.models import MenuItem, MenuItemRating
    from app.unieats.modules.orders.models import Order

    s = db_session()
    status_filter = (request.args.get("approval_status") or "").strip()
    q = s.query(Cafeteria)
    if status_filter and status_filter != "all":
        q = q.filter(Cafeteria.approval_status == status_filter)
    cafeterias = q.order_by(Cafeteria.name.asc()).all()

    order_stats = {
        cid: (int(cnt), float(revenue or 0))
        for cid, cnt, revenue in (
            s.query(Order.cafeteria_id, func.count(Order.id), func.sum(Order.total_amount))
            .filter(Order.status != "cancelled")
            .group_by(Order.cafeteria_id)
            .all()
        )
    }
    rating_stats = {
        cid: (float(avg or 0), int(cnt))
        for cid, avg, cnt in (
            s.query(MenuItem.cafeteria_id, func.avg(MenuItemRating.rating), func.count(MenuItemRating.id))
            .join(MenuItemRating, MenuItemRating.menu_item_id == MenuItem.id)
            .group_by(MenuItem.cafeteria_id)
            .all()
        )
    }

    rows = []
    for c in cafeterias:
        view = cafeteria_view(c)
        orders, revenue = order_stats.get(c.id, (0, 0.0))
        avg_rating, rating_count = rating_stats.get(c.id, (0.0, 0))
        view.update(
            {
                "order_count": orders,
                "revenue": round(revenue, 2),
                "average_rating": round(avg_rating, 2),
                "rating_count": rating_count,
                "owner_email": c.owner.email if c.owner else None,
            }
        )
        rows.append(view)
    return jsonify({"cafeterias": rows, "total": len(rows)})


@bp.post("/admin/cafeterias/<int:cafeteria_id>/revoke")
@require_permission("cafeterias.review")
def cafeteria_revoke(cafeteria_id: int):
    s = db_session()
    cafeteria = s.get(Cafeteria, cafeteria_id)
    if not cafeteria:
        abort(404)
    payload = request.get_json(silent=True) or request.form.to_dict()
    try:
        revoke_cafeteria(s, cafeteria, reason=payload.get("reason") or "", actor=g.current_user)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "cafeteria": cafeteria_view(cafeteria)})


# ---------- Owner: profile and status ----------
@bp.get("/cafeteria/profile")
@require_permission("cafeteria.profile")
def owner_profile_get():
    return jsonify({"cafeteria": cafeteria_view(owned_cafeteria_or_404())})


@bp.post("/cafeteria/profile")
@require_permission("cafeteria.profile")
def owner_profile_update():
    s = db_session()
    cafeteria = owned_cafeteria_or_404()
    payload = request.get_json(silent=True) or request.form.to_dict()
    try:
        update_cafeteria_profile(s, cafeteria, payload, g.current_user)
    except ValueError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "cafeteria": cafeteria_view(cafeteria)})


@bp.post("/cafeteria/status")
@require_permission("cafeteria.profile")
def owner_status_update():
    s = db_session()
    cafeteria = owned_cafeteria_or_404()
    payload = request.get_json(silent=True) or request.form.to_dict()
    try:
        update_operational_status(
            s,
            cafeteria,
            status=(payload.get("status") or "").strip(),
            message=payload.get("message"),
            user=g.current_user,
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "cafeteria": cafeteria_view(cafeteria)})


@bp.post("/cafeteria/profile/image")
@require_permission("cafeteria.profile")
def owner_image_upload():
    s = db_session()
    cafeteria = owned_cafeteria_or_404()
    f = request.files.get("file")
    if not f or not f.filename:
        return jsonify({"error": "No file uploaded"}), 400
    content_type = f.mimetype or "application/octet-stream"
    if content_type not in ALLOWED_IMAGE_TYPES:
        return jsonify({"error": "File must be a JPEG, PNG, WebP or GIF image"}), 400

    key = build_storage_key("cafeterias", cafeteria.id, f.filename)
    storage = storage_from_config(current_app.config)
    storage.put_bytes(key, f.read(), content_type=content_type)
    old_key = cafeteria.image_key
    cafeteria.image_key = key
    record_event(
        s,
        actor=g.current_user,
        action="cafeteria.image_upload",
        entity_type="Cafeteria",
        entity_id=str(cafeteria.id),
        metadata={"storage_key": key},
    )
    s.commit()
    if old_key and old_key != key:
        storage.delete(old_key)
    return jsonify({"success": True, "cafeteria": cafeteria_view(cafeteria)})
