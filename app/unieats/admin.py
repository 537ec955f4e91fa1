from __future__ import annotations

import json
from datetime import date, datetime, time

from flask import Blueprint, abort, g, jsonify, request
from sqlalchemy import func, or_

from app.unieats.audit import CATEGORIES, SEVERITIES
from app.unieats.db import db_session
from app.unieats.models import PROFILE_ROLES, AuditEvent, User
from app.unieats.rbac import require_permission
from app.unieats.users import (
    change_user_role,
    create_user,
    set_user_active,
    suspend_user,
    unsuspend_user,
    user_view,
    validate_user_payload,
)
from app.unieats.utils import end_of_day_exclusive

bp = Blueprint("admin", __name__)

BULK_ACTIONS = ("suspend", "unsuspend", "activate")


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _user_or_404(user_id: int) -> User:
    user = db_session().get(User, user_id)
    if not user:
        abort(404)
    return user


# ---------- Users ----------
@bp.get("/users")
@require_permission("users.view")
def users_list():
    s = db_session()
    q = s.query(User)
    role = (request.args.get("role") or "").strip()
    if role and role != "all":
        if role not in PROFILE_ROLES:
            return jsonify({"error": f"Invalid role: {role}"}), 400
        q = q.filter(User.role == role)
    status = (request.args.get("status") or "").strip()
    if status == "suspended":
        q = q.filter(User.is_suspended.is_(True))
    elif status == "active":
        q = q.filter(User.is_suspended.is_(False), User.is_active.is_(True))
    elif status == "pending":
        q = q.filter(User.is_suspended.is_(False), User.is_active.is_(False))
    elif status and status != "all":
        return jsonify({"error": f"Invalid status: {status}"}), 400
    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search.lower()}%"
        q = q.filter(or_(func.lower(User.full_name).like(like), User.email.like(like)))
    users = q.order_by(User.created_at.desc(), User.id.desc()).all()

    role_counts = {r: 0 for r in PROFILE_ROLES}
    for r, cnt in s.query(User.role, func.count(User.id)).group_by(User.role).all():
        role_counts[r] = int(cnt)
    suspended = s.query(func.count(User.id)).filter(User.is_suspended.is_(True)).scalar() or 0

    return jsonify(
        {
            "users": [user_view(u) for u in users],
            "counts": {**role_counts, "suspended": int(suspended), "total": sum(role_counts.values())},
        }
    )


@bp.post("/users")
@require_permission("users.manage")
def users_create():
    s = db_session()
    payload = _payload()
    errors = validate_user_payload(payload)
    if not (payload.get("role") or "").strip():
        errors.append("Role is required.")
    if errors:
        return jsonify({"error": "; ".join(errors), "errors": errors}), 400
    try:
        user = create_user(
            s,
            email=payload["email"],
            password=payload["password"],
            role=payload["role"].strip(),
            full_name=payload.get("full_name"),
            phone=payload.get("phone"),
            actor=g.current_user,
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 409
    s.commit()
    return jsonify({"success": True, "user": user_view(user)}), 201


@bp.post("/users/<int:user_id>/suspend")
@require_permission("users.manage")
def users_suspend(user_id: int):
    s = db_session()
    user = _user_or_404(user_id)
    try:
        suspend_user(s, user, reason=_payload().get("reason") or "", actor=g.current_user)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "user": user_view(user)})


@bp.post("/users/<int:user_id>/unsuspend")
@require_permission("users.manage")
def users_unsuspend(user_id: int):
    s = db_session()
    user = _user_or_404(user_id)
    unsuspend_user(s, user, actor=g.current_user)
    s.commit()
    return jsonify({"success": True, "user": user_view(user)})


@bp.post("/users/<int:user_id>/role")
@require_permission("users.manage")
def users_role(user_id: int):
    s = db_session()
    user = _user_or_404(user_id)
    role = (_payload().get("role") or "").strip()
    try:
        change_user_role(s, user, role, actor=g.current_user)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "user": user_view(user)})


@bp.post("/users/bulk")
@require_permission("users.manage")
def users_bulk():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    action = (payload.get("action") or "").strip()
    if action not in BULK_ACTIONS:
        return jsonify({"error": f"Invalid action. Must be one of: {', '.join(BULK_ACTIONS)}"}), 400
    ids = payload.get("user_ids")
    if not isinstance(ids, list) or not ids:
        return jsonify({"error": "user_ids must be a non-empty list"}), 400
    reason = (payload.get("reason") or "").strip()

    results = []
    for raw_id in ids:
        try:
            user = s.get(User, int(raw_id))
        except (TypeError, ValueError):
            results.append({"id": raw_id, "success": False, "error": "Invalid id"})
            continue
        if user is None:
            results.append({"id": raw_id, "success": False, "error": "User not found"})
            continue
        try:
            if action == "suspend":
                suspend_user(s, user, reason=reason, actor=g.current_user)
            elif action == "unsuspend":
                unsuspend_user(s, user, actor=g.current_user)
            else:
                set_user_active(s, user, True, actor=g.current_user, reason=reason or None)
        except ValueError as e:
            results.append({"id": user.id, "success": False, "error": str(e)})
            continue
        results.append({"id": user.id, "success": True, "status": user_view(user)["status"]})
    s.commit()

    succeeded = sum(1 for r in results if r["success"])
    return jsonify(
        {"action": action, "results": results, "succeeded": succeeded, "failed": len(results) - succeeded}
    )


# ---------- Audit ----------
@bp.get("/audit")
@require_permission("audit.view")
def audit_list():
    """
    Audit trail (last 200 events) with filters:
    - action (contains)
    - actor_email (contains)
    - category / severity (exact)
    - date range (YYYY-MM-DD, inclusive end date)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    category = (request.args.get("category") or "").strip()
    severity = (request.args.get("severity") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    if (request.args.get("date_from") or "").strip() and not date_from:
        return jsonify({"error": "date_from must be YYYY-MM-DD"}), 400
    if (request.args.get("date_to") or "").strip() and not date_to:
        return jsonify({"error": "date_to must be YYYY-MM-DD"}), 400
    if category and category != "all" and category not in CATEGORIES:
        return jsonify({"error": f"Invalid category: {category}"}), 400
    if severity and severity != "all" and severity not in SEVERITIES:
        return jsonify({"error": f"Invalid severity: {severity}"}), 400

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if category and category != "all":
        q = q.filter(AuditEvent.category == category)
    if severity and severity != "all":
        q = q.filter(AuditEvent.severity == severity)
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    upper = end_of_day_exclusive(date_to) if date_to else None
    if upper is not None:
        q = q.filter(AuditEvent.created_at < upper)

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return jsonify(
        {
            "events": [
                {
                    "id": e.id,
                    "created_at": e.created_at.isoformat() if e.created_at else None,
                    "request_id": e.request_id,
                    "actor_user_id": e.actor_user_id,
                    "actor_email": e.actor_user_email,
                    "action": e.action,
                    "entity_type": e.entity_type,
                    "entity_id": e.entity_id,
                    "reason": e.reason,
                    "metadata": json.loads(e.metadata_json) if e.metadata_json else None,
                    "severity": e.severity,
                    "category": e.category,
                    "client_ip": e.client_ip,
                }
                for e in events
            ]
        }
    )
