from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, jsonify

from app.unieats.models import Permission, Role, User


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.can_sign_in:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → 401 so clients can send the user to sign-in.
            if not user or not user.can_sign_in:
                return jsonify({"error": "Authentication required."}), 401
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.can_sign_in:
            return jsonify({"error": "Authentication required."}), 401
        return fn(*args, **kwargs)

    return wrapped


def sync_roles_and_permissions(s) -> dict[str, Role]:
    """Idempotently create the permission catalog and the three profile roles with their grants."""
    from app.unieats.constants import PERMISSIONS, ROLE_NAMES, ROLE_PERMISSIONS

    perms: dict[str, Permission] = {}
    for key, name in PERMISSIONS.items():
        p = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not p:
            p = Permission(key=key, name=name)
            s.add(p)
        perms[key] = p

    roles: dict[str, Role] = {}
    for role_key, perm_keys in ROLE_PERMISSIONS.items():
        r = s.query(Role).filter(Role.key == role_key).one_or_none()
        if not r:
            r = Role(key=role_key, name=ROLE_NAMES[role_key])
            s.add(r)
        for pk in perm_keys:
            if perms[pk] not in r.permissions:
                r.permissions.append(perms[pk])
        roles[role_key] = r
    s.flush()
    return roles
