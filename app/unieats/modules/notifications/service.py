from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.unieats.audit import record_event
from app.unieats.models import PROFILE_ROLES, User
from app.unieats.modules.notifications.models import Notification

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


NOTIFICATION_TYPES = ("order", "system", "promotion", "alert", "reminder")
PRIORITIES = ("low", "medium", "high", "urgent")


def notify(
    s: "Session",
    user_id: int,
    *,
    type: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
    priority: str = "medium",
) -> Notification:
    if type not in NOTIFICATION_TYPES:
        raise ValueError(f"Invalid notification type: {type}")
    if priority not in PRIORITIES:
        raise ValueError(f"Invalid priority: {priority}")
    n = Notification(
        user_id=user_id,
        type=type,
        title=title.strip(),
        message=message.strip(),
        data_json=json.dumps(data, sort_keys=True, default=str) if data else None,
        priority=priority,
    )
    s.add(n)
    return n


def list_notifications(s: "Session", user: User, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    q = s.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def unread_count(s: "Session", user: User) -> int:
    return (
        s.query(func.count(Notification.id))
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
        .scalar()
        or 0
    )


def mark_read(s: "Session", notification: Notification, user: User) -> Notification:
    if notification.user_id != user.id:
        raise ValueError("Notification belongs to another user.")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.utcnow()
    return notification


def mark_all_read(s: "Session", user: User) -> int:
    now = datetime.utcnow()
    pending = (
        s.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
        .all()
    )
    for n in pending:
        n.is_read = True
        n.read_at = now
    return len(pending)


def send_notification(
    s: "Session",
    sender: User,
    *,
    title: str,
    message: str,
    type: str = "system",
    priority: str = "medium",
    user_id: int | None = None,
    role: str | None = None,
) -> int:
    """Admin send: to one user, or to every signed-in-capable user of a role. Returns recipients."""
    if not title.strip() or not message.strip():
        raise ValueError("Title and message are required.")
    if (user_id is None) == (role is None):
        raise ValueError("Provide exactly one of user_id or role.")

    if user_id is not None:
        target = s.get(User, user_id)
        if not target:
            raise ValueError("Recipient not found.")
        recipients = [target]
    else:
        if role not in PROFILE_ROLES:
            raise ValueError(f"Invalid role: {role}")
        recipients = (
            s.query(User)
            .filter(User.role == role, User.is_active.is_(True), User.is_suspended.is_(False))
            .all()
        )

    for r in recipients:
        notify(s, r.id, type=type, title=title, message=message, priority=priority)

    record_event(
        s,
        actor=sender,
        action="notification.send",
        entity_type="User" if user_id is not None else "Role",
        entity_id=str(user_id) if user_id is not None else role,
        metadata={"title": title, "recipients": len(recipients), "type": type},
    )
    return len(recipients)


def notification_view(n: Notification) -> dict[str, Any]:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "data": json.loads(n.data_json) if n.data_json else None,
        "priority": n.priority,
        "is_read": n.is_read,
        "read_at": n.read_at.isoformat() if n.read_at else None,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }
