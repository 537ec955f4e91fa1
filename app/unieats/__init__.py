import logging
import os

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, session
from werkzeug.exceptions import HTTPException

from app.unieats.config import load_config
from app.unieats.db import init_db, missing_tables, teardown_db_session
from app.unieats.routes import bp as routes_bp
from app.unieats.auth import bp as auth_bp, load_current_user
from app.unieats.admin import bp as admin_bp
from app.unieats.modules.platform_settings.admin import bp as platform_settings_bp
from app.unieats.modules.cafeterias.admin import bp as cafeterias_bp
from app.unieats.modules.menu.admin import bp as menu_bp
from app.unieats.modules.orders.admin import bp as orders_bp
from app.unieats.modules.inventory.admin import bp as inventory_bp
from app.unieats.modules.support.admin import bp as support_bp
from app.unieats.modules.notifications.admin import bp as notifications_bp
from app.unieats.modules.analytics.admin import bp as analytics_bp

logger = logging.getLogger(__name__)

_PROBE_PATHS = ("/static/", "/health", "/healthz")
_CSRF_EXEMPT_ENDPOINTS = {"auth.login_post", "auth.register", "auth.logout"}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())

    from app.unieats.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_PROBE_PATHS):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if (request.endpoint or "") in _CSRF_EXEMPT_ENDPOINTS:
                return None
            if not validate_csrf(request):
                return jsonify({"error": "CSRF token missing or invalid."}), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    if hasattr(os, "register_at_fork"):
        def _after_fork_child():
            engine = app.extensions.get("sqlalchemy_engine")
            if engine:
                engine.dispose()
                app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

        os.register_at_fork(after_in_child=_after_fork_child)

    # Storage config check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(platform_settings_bp, url_prefix="/admin")
    app.register_blueprint(cafeterias_bp)
    app.register_blueprint(menu_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(support_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(analytics_bp)

    def _load_user_wrapper():
        if request.path.startswith(_PROBE_PATHS):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Schema health: checked once on the first real request, so tests and
    # scripts may create tables after the app is built.
    app.config.setdefault("_schema_health_checked", False)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            missing = missing_tables(app)
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)
        app.config["_schema_health_missing"] = missing
        app.config["_schema_health_checked"] = True
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    @app.before_request
    def _schema_health_guardrail():
        if request.path.startswith(_PROBE_PATHS):
            return None
        if not app.config.get("_schema_health_checked"):
            _run_schema_health_check()
        missing = app.config.get("_schema_health_missing") or []
        if missing:
            return jsonify({"error": "Database schema is out of date.", "missing": missing}), 503
        return None

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return jsonify({"error": "Something went wrong. Please try again.", "request_id": rid}), 500

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return jsonify({"error": "You do not have permission to do that.", "missing_permission": missing}), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = (app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
        return jsonify({"error": f"File too large. Maximum size is {limit_mb}MB."}), 413

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        return jsonify({"error": e.description or e.name}), e.code or 500

    logger.info("create_app() complete; app ready to serve")
    return app
