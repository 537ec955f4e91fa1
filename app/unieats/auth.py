from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from app.unieats.audit import record_event
from app.unieats.db import db_session
from app.unieats.models import PROFILE_ROLES, ROLE_ADMIN, ROLE_CAFETERIA_MANAGER, ROLE_STUDENT, User
from app.unieats.modules.platform_settings.service import get_setting
from app.unieats.rbac import require_login
from app.unieats.security import ensure_csrf_token
from app.unieats.users import (
    MIN_PASSWORD_LENGTH,
    create_user,
    get_user_by_email,
    normalize_email,
    update_profile,
    user_view,
    validate_user_payload,
)

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)

_ROLE_ALIASES = {"cafeteria": ROLE_CAFETERIA_MANAGER}
_HOME_PATHS = {
    ROLE_ADMIN: "/admin/dashboard",
    ROLE_CAFETERIA_MANAGER: "/cafeteria/dashboard",
    ROLE_STUDENT: "/",
}


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=current_app.config.get("LOGIN_RATE_WINDOW_SECONDS", 300))
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= current_app.config.get("LOGIN_RATE_LIMIT", 5)


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def reset_rate_limits() -> None:
    _login_attempts.clear()


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Suspended users and inactive accounts are signed out here.
    Also assigns a per-request request_id for audit/log correlation.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.can_sign_in:
            if user is not None:
                current_app.logger.info("Signing out user_id=%s (suspended=%s active=%s)", user.id, user.is_suspended, user.is_active)
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _login_failed(s, email: str, reason: str) -> None:
    record_event(
        s,
        actor=None,
        action="auth.login_failed",
        entity_type="User",
        entity_id=email,
        reason=reason,
        metadata={"email": email},
        severity="medium",
    )
    s.commit()
    current_app.logger.info("Login rejected (%s): %s", reason, email)


@bp.post("/login")
def login_post():
    payload = _payload()
    email = normalize_email(payload.get("email"))
    password = payload.get("password") or ""
    role = (payload.get("role") or ROLE_STUDENT).strip()
    role = _ROLE_ALIASES.get(role, role)
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return jsonify({"success": False, "message": "Too many login attempts. Please wait 5 minutes."}), 429
    _record_attempt(ip)

    try:
        s = db_session()
        user = get_user_by_email(s, email)
        if not user or not check_password_hash(user.password_hash, password):
            _login_failed(s, email, "Invalid credentials")
            return jsonify({"success": False, "message": "Invalid email or password."}), 401

        if role not in PROFILE_ROLES or user.role != role:
            _login_failed(s, email, "Role mismatch")
            return (
                jsonify({"success": False, "message": f"Invalid role. Expected: {role}, but user has: {user.role}"}),
                403,
            )

        if user.is_suspended:
            _login_failed(s, email, "Suspended")
            return (
                jsonify(
                    {
                        "success": False,
                        "message": "Your account has been suspended. Please contact support for assistance.",
                        "suspended": True,
                    }
                ),
                403,
            )

        if not user.is_active:
            _login_failed(s, email, "Pending approval")
            if user.role == ROLE_CAFETERIA_MANAGER:
                message = (
                    "Your cafeteria application is still pending approval. "
                    "You will be able to login once an admin approves your application."
                )
            else:
                message = "Your account is not active. Please contact support."
            return jsonify({"success": False, "message": message, "pending": True}), 403

        session.clear()
        session["user_id"] = user.id
        session.permanent = True
        ensure_csrf_token()
        _login_attempts[ip].clear()
        user.last_login_at = datetime.utcnow()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        return jsonify(
            {
                "success": True,
                "user": user_view(user),
                "redirect": _HOME_PATHS.get(user.role, "/"),
                "csrf_token": session["csrf_token"],
            }
        )
    except Exception:
        current_app.logger.exception("Login crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.post("/register")
def register():
    s = db_session()
    payload = _payload()
    if not get_setting(s, "new_registrations"):
        return jsonify({"success": False, "message": "New registrations are currently disabled."}), 403
    payload = {**payload, "role": ROLE_STUDENT}
    errors = validate_user_payload(payload)
    if not (payload.get("full_name") or "").strip():
        errors.append("Full name is required.")
    if errors:
        return jsonify({"success": False, "message": "; ".join(errors), "errors": errors}), 400
    try:
        user = create_user(
            s,
            email=payload["email"],
            password=payload["password"],
            role=ROLE_STUDENT,
            full_name=payload.get("full_name"),
            phone=payload.get("phone"),
        )
    except ValueError as e:
        return jsonify({"success": False, "message": str(e)}), 409
    s.commit()
    return jsonify({"success": True, "user": user_view(user)}), 201


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return jsonify({"success": True})


@bp.get("/me")
@require_login
def me():
    return jsonify({"user": user_view(g.current_user)})


@bp.get("/csrf")
def csrf():
    return jsonify({"csrf_token": ensure_csrf_token()})


@bp.post("/password")
@require_login
def change_password():
    s = db_session()
    payload = _payload()
    user: User = g.current_user
    current = payload.get("current_password") or ""
    new = payload.get("new_password") or ""
    if not check_password_hash(user.password_hash, current):
        return jsonify({"success": False, "message": "Current password is incorrect."}), 400
    if len(new) < MIN_PASSWORD_LENGTH:
        return jsonify({"success": False, "message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters."}), 400
    user.password_hash = generate_password_hash(new)
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="auth.password_change", entity_type="User", entity_id=str(user.id), severity="medium")
    s.commit()
    return jsonify({"success": True})


@bp.post("/profile")
@require_login
def update_own_profile():
    s = db_session()
    user: User = g.current_user
    try:
        update_profile(s, user, _payload())
    except ValueError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "user": user_view(user)})
