from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.unieats.db import db_session
from app.unieats.modules.analytics.service import (
    admin_dashboard,
    cafeteria_dashboard,
    order_insights,
    revenue_summary,
)
from app.unieats.modules.cafeterias.admin import owned_cafeteria_or_404
from app.unieats.rbac import require_permission
from app.unieats.utils import parse_date

bp = Blueprint("analytics", __name__)


@bp.get("/admin/dashboard")
@require_permission("analytics.view")
def admin_dashboard_view():
    s = db_session()
    data = admin_dashboard(
        s,
        time_range=request.args.get("timeRange"),
        cafeteria_id=request.args.get("cafeteriaId", type=int),
    )
    return jsonify(data)


@bp.get("/cafeteria/dashboard")
@require_permission("cafeteria.dashboard")
def cafeteria_dashboard_view():
    s = db_session()
    cafeteria = owned_cafeteria_or_404()
    return jsonify(cafeteria_dashboard(s, cafeteria, time_range=request.args.get("timeRange")))


@bp.get("/admin/analytics/revenue")
@require_permission("analytics.view")
def revenue_summary_view():
    s = db_session()
    try:
        start = parse_date(request.args.get("start"), "start")
        end = parse_date(request.args.get("end"), "end")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if start and end and start > end:
        return jsonify({"error": "start must be on or before end"}), 400
    return jsonify(revenue_summary(s, start=start, end=end))


@bp.get("/admin/order-insights")
@require_permission("analytics.view")
def order_insights_view():
    s = db_session()
    return jsonify(order_insights(s, time_range=request.args.get("timeRange")))
