from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.unieats.db import db_session
from app.unieats.modules.notifications.models import Notification
from app.unieats.modules.notifications.service import (
    list_notifications,
    mark_all_read,
    mark_read,
    notification_view,
    send_notification,
    unread_count,
)
from app.unieats.rbac import require_permission

bp = Blueprint("notifications", __name__)


@bp.get("/notifications")
@require_permission("notifications.view")
def notifications_list():
    s = db_session()
    unread_only = (request.args.get("unread") or "").strip().lower() in ("1", "true")
    limit = min(request.args.get("limit", 50, type=int) or 50, 200)
    items = list_notifications(s, g.current_user, unread_only=unread_only, limit=limit)
    return jsonify(
        {
            "notifications": [notification_view(n) for n in items],
            "unread_count": unread_count(s, g.current_user),
        }
    )


@bp.get("/notifications/unread-count")
@require_permission("notifications.view")
def notifications_unread_count():
    s = db_session()
    return jsonify({"unread_count": unread_count(s, g.current_user)})


@bp.post("/notifications/<int:notification_id>/read")
@require_permission("notifications.view")
def notification_mark_read(notification_id: int):
    s = db_session()
    n = s.get(Notification, notification_id)
    if not n or n.user_id != g.current_user.id:
        abort(404)
    mark_read(s, n, g.current_user)
    s.commit()
    return jsonify({"success": True, "notification": notification_view(n)})


@bp.post("/notifications/read-all")
@require_permission("notifications.view")
def notifications_mark_all_read():
    s = db_session()
    count = mark_all_read(s, g.current_user)
    s.commit()
    return jsonify({"success": True, "updated": count})


@bp.post("/admin/notifications/send")
@require_permission("notifications.send")
def notifications_send():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    user_id = payload.get("user_id")
    try:
        sent = send_notification(
            s,
            g.current_user,
            title=str(payload.get("title") or ""),
            message=str(payload.get("message") or ""),
            type=(payload.get("type") or "system"),
            priority=(payload.get("priority") or "medium"),
            user_id=int(user_id) if user_id not in (None, "") else None,
            role=payload.get("role") or None,
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "recipients": sent})
