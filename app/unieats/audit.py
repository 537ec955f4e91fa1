import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.unieats.models import AuditEvent, User

SEVERITIES = ("low", "medium", "high", "critical")
CATEGORIES = (
    "authentication",
    "user_management",
    "cafeteria_actions",
    "orders",
    "security",
    "system",
    "support",
    "general",
)


def _category_for(action: str) -> str:
    prefix = action.split(".", 1)[0]
    return {
        "auth": "authentication",
        "user": "user_management",
        "cafeteria": "cafeteria_actions",
        "cafeteria_application": "cafeteria_actions",
        "menu_item": "cafeteria_actions",
        "inventory": "cafeteria_actions",
        "order": "orders",
        "support_ticket": "support",
        "chat": "support",
        "settings": "system",
        "notification": "system",
    }.get(prefix, "general")


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
    severity: str = "low",
    category: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper.
    """
    if severity not in SEVERITIES:
        raise ValueError(f"Invalid severity: {severity}")
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    ev = AuditEvent(
        request_id=rid,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        severity=severity,
        category=category or _category_for(action),
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev
