from flask import Blueprint, current_app, jsonify

from app.unieats.db import db_session
from app.unieats.modules.platform_settings.service import get_all_settings

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    settings = get_all_settings(db_session())
    return jsonify(
        {
            "name": settings["platform_name"],
            "support_email": settings["support_email"],
            "currency": current_app.config.get("CURRENCY", "EGP"),
            "maintenance_mode": settings["maintenance_mode"],
            "maintenance_message": settings["maintenance_message"] if settings["maintenance_mode"] else None,
            "registrations_open": settings["new_registrations"],
            "cafeteria_applications_open": settings["cafeteria_applications"],
        }
    )


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for probes. No DB access, minimal overhead.
    """
    return "ok", 200
