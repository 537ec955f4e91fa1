"""
Profile/user management shared by auth, the admin back-office and the
cafeteria application flow.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.unieats.audit import record_event
from app.unieats.constants import ROLE_NAMES
from app.unieats.models import PROFILE_ROLES, ROLE_ADMIN, ROLE_CAFETERIA_MANAGER, Role, User

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def validate_user_payload(payload: dict, *, require_password: bool = True) -> list[str]:
    errors = []
    email = normalize_email(payload.get("email"))
    if not email or not _EMAIL_RE.match(email):
        errors.append("A valid email is required.")
    password = payload.get("password") or ""
    if require_password and len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    role = (payload.get("role") or "").strip()
    if role and role not in PROFILE_ROLES:
        errors.append(f"Invalid role. Must be one of: {', '.join(PROFILE_ROLES)}")
    return errors


def get_user_by_email(s: Session, email: str) -> User | None:
    return s.query(User).filter(User.email == normalize_email(email)).one_or_none()


def _ensure_role(s: Session, role_key: str) -> Role:
    role = s.query(Role).filter(Role.key == role_key).one_or_none()
    if role is None:
        role = Role(key=role_key, name=ROLE_NAMES.get(role_key, role_key))
        s.add(role)
    return role


def set_user_role(s: Session, user: User, role_key: str) -> None:
    """Set the profile role and keep the RBAC role membership in step with it."""
    if role_key not in PROFILE_ROLES:
        raise ValueError(f"Invalid role: {role_key}")
    user.role = role_key
    user.roles = [r for r in user.roles if r.key not in PROFILE_ROLES]
    user.roles.append(_ensure_role(s, role_key))


def create_user(
    s: Session,
    *,
    email: str,
    password: str,
    role: str,
    full_name: str | None = None,
    phone: str | None = None,
    is_active: bool = True,
    actor: User | None = None,
) -> User:
    email = normalize_email(email)
    if get_user_by_email(s, email):
        raise ValueError("An account with this email already exists.")
    now = datetime.utcnow()
    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        full_name=(full_name or "").strip() or None,
        phone=(phone or "").strip() or None,
        is_active=is_active,
        created_at=now,
        updated_at=now,
    )
    set_user_role(s, user, role)
    s.add(user)
    s.flush()

    record_event(
        s,
        actor=actor or user,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email, "role": user.role, "is_active": user.is_active},
    )
    return user


def suspend_user(s: Session, user: User, *, reason: str, actor: User) -> User:
    reason = (reason or "").strip()
    if not reason:
        raise ValueError("A reason is required to suspend a user.")
    if user.id == actor.id:
        raise ValueError("You cannot suspend your own account.")
    if user.is_suspended:
        return user
    user.is_suspended = True
    user.suspension_reason = reason
    user.suspended_at = datetime.utcnow()
    user.updated_at = user.suspended_at
    record_event(
        s,
        actor=actor,
        action="user.suspend",
        entity_type="User",
        entity_id=str(user.id),
        reason=reason,
        metadata={"email": user.email},
        severity="high",
    )
    logger.info("User suspended: user_id=%s by=%s", user.id, actor.id)
    return user


def unsuspend_user(s: Session, user: User, *, actor: User) -> User:
    if not user.is_suspended:
        return user
    user.is_suspended = False
    user.suspension_reason = None
    user.suspended_at = None
    user.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="user.unsuspend",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email},
        severity="medium",
    )
    return user


def set_user_active(s: Session, user: User, active: bool, *, actor: User | None, reason: str | None = None) -> User:
    if user.is_active == active:
        return user
    user.is_active = active
    user.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="user.activate" if active else "user.deactivate",
        entity_type="User",
        entity_id=str(user.id),
        reason=reason,
        metadata={"email": user.email},
    )
    return user


def change_user_role(s: Session, user: User, role_key: str, *, actor: User) -> User:
    if user.id == actor.id and role_key != ROLE_ADMIN:
        raise ValueError("You cannot remove your own admin role.")
    old = user.role
    if old == role_key:
        return user
    set_user_role(s, user, role_key)
    user.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="user.role_change",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"from": old, "to": role_key},
        severity="high",
    )
    return user


def update_profile(s: Session, user: User, payload: dict) -> User:
    """Self-service edit of display fields. Email and role are not editable here."""
    changes = {}
    if "full_name" in payload:
        full_name = (payload.get("full_name") or "").strip()
        if not full_name:
            raise ValueError("Full name is required.")
        if len(full_name) > 255:
            raise ValueError("Full name must be at most 255 characters.")
        if full_name != user.full_name:
            changes["full_name"] = {"old": user.full_name, "new": full_name}
            user.full_name = full_name
    if "phone" in payload:
        phone = (payload.get("phone") or "").strip() or None
        if phone and len(phone) > 64:
            raise ValueError("Phone must be at most 64 characters.")
        if phone != user.phone:
            changes["phone"] = {"old": user.phone, "new": phone}
            user.phone = phone
    if not changes:
        return user
    user.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="user.profile_update",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"changes": changes},
    )
    return user


def user_status(user: User) -> str:
    if user.is_suspended:
        return "suspended"
    if not user.is_active:
        return "pending" if user.role == ROLE_CAFETERIA_MANAGER else "inactive"
    return "active"


def user_view(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "name": user.display_name,
        "phone": user.phone,
        "role": user.role,
        "status": user_status(user),
        "is_active": user.is_active,
        "is_suspended": user.is_suspended,
        "suspension_reason": user.suspension_reason,
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }
