from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.unieats.db import db_session
from app.unieats.modules.platform_settings.service import (
    get_all_settings,
    update_settings,
    validate_settings_payload,
)
from app.unieats.rbac import require_permission

bp = Blueprint("platform_settings", __name__)


@bp.get("/settings")
@require_permission("settings.view")
def settings_get():
    s = db_session()
    return jsonify({"settings": get_all_settings(s)})


@bp.post("/settings")
@require_permission("settings.edit")
def settings_update():
    s = db_session()
    payload = request.get_json(silent=True) or request.form.to_dict()
    clean, errors = validate_settings_payload(payload)
    if errors:
        return jsonify({"error": "; ".join(errors), "errors": errors}), 400

    changes = update_settings(s, clean, g.current_user)
    s.commit()
    return jsonify({"success": True, "changes": changes, "settings": get_all_settings(s)})
