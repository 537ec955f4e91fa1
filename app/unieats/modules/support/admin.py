from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.unieats.db import db_session
from app.unieats.models import ROLE_ADMIN
from app.unieats.modules.support.models import ChatConversation, SupportTicket
from app.unieats.modules.support.service import (
    CONVERSATION_STATUSES,
    TICKET_STATUSES,
    USER_TYPES,
    build_ticket_views,
    can_access_conversation,
    close_conversation,
    conversation_view,
    create_ticket,
    mark_conversation_read,
    post_message,
    reply_to_ticket,
    start_conversation,
    ticket_status_counts,
    update_ticket,
)
from app.unieats.rbac import require_permission

bp = Blueprint("support", __name__)


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _tickets_response(tickets: list[SupportTicket]):
    s = db_session()
    return jsonify({"tickets": build_ticket_views(s, tickets), "counts": ticket_status_counts(tickets)})


# ---------- Tickets ----------
@bp.post("/support-tickets")
@require_permission("support.create")
def ticket_create():
    s = db_session()
    try:
        ticket = create_ticket(s, g.current_user, _payload())
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "ticket": build_ticket_views(s, [ticket])[0]}), 201


@bp.get("/support-tickets/mine")
@require_permission("support.create")
def tickets_mine():
    s = db_session()
    tickets = (
        s.query(SupportTicket)
        .filter(SupportTicket.user_id == g.current_user.id)
        .order_by(SupportTicket.created_at.desc(), SupportTicket.id.desc())
        .all()
    )
    return _tickets_response(tickets)


@bp.get("/admin/support-tickets")
@require_permission("support.manage")
def tickets_admin_list():
    s = db_session()
    q = s.query(SupportTicket)
    status = (request.args.get("status") or "").strip()
    if status and status != "all":
        if status not in TICKET_STATUSES:
            return jsonify({"error": f"Invalid status: {status}"}), 400
        q = q.filter(SupportTicket.status == status)
    user_type = (request.args.get("userType") or "").strip()
    if user_type and user_type != "all":
        if user_type not in USER_TYPES:
            return jsonify({"error": f"Invalid userType: {user_type}"}), 400
        q = q.filter(SupportTicket.user_type == user_type)
    user_id = request.args.get("userId", type=int)
    if user_id:
        q = q.filter(SupportTicket.user_id == user_id)
    limit = max(1, min(request.args.get("limit", 100, type=int) or 100, 500))
    tickets = q.order_by(SupportTicket.created_at.desc(), SupportTicket.id.desc()).limit(limit).all()
    return _tickets_response(tickets)


@bp.route("/admin/support-tickets/<int:ticket_id>", methods=["PATCH", "POST"])
@require_permission("support.manage")
def ticket_update(ticket_id: int):
    s = db_session()
    ticket = s.get(SupportTicket, ticket_id)
    if not ticket:
        abort(404)
    try:
        update_ticket(s, ticket, _payload(), g.current_user)
    except ValueError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "ticket": build_ticket_views(s, [ticket])[0]})


@bp.post("/support-tickets/<int:ticket_id>/replies")
@require_permission("support.create")
def ticket_reply(ticket_id: int):
    s = db_session()
    ticket = s.get(SupportTicket, ticket_id)
    user = g.current_user
    if not ticket or (user.role != ROLE_ADMIN and ticket.user_id != user.id):
        abort(404)
    try:
        reply_to_ticket(s, ticket, user, _payload().get("message") or "")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "ticket": build_ticket_views(s, [ticket])[0]}), 201


# ---------- Chat ----------
def _conversation_or_404(conversation_id: int) -> ChatConversation:
    conv = db_session().get(ChatConversation, conversation_id)
    if not conv or not can_access_conversation(g.current_user, conv):
        abort(404)
    return conv


@bp.get("/chat/conversations")
@require_permission("chat.use")
def conversations_list():
    s = db_session()
    user = g.current_user
    q = s.query(ChatConversation)
    if user.role != ROLE_ADMIN:
        q = q.filter(ChatConversation.user_id == user.id)
    else:
        user_type = (request.args.get("userType") or "").strip()
        if user_type and user_type != "all":
            q = q.filter(ChatConversation.user_type == user_type)
    status = (request.args.get("status") or "").strip()
    if status and status != "all":
        if status not in CONVERSATION_STATUSES:
            return jsonify({"error": f"Invalid status: {status}"}), 400
        q = q.filter(ChatConversation.status == status)
    conversations = q.order_by(ChatConversation.updated_at.desc(), ChatConversation.id.desc()).limit(200).all()
    return jsonify({"conversations": [conversation_view(c, viewer=user) for c in conversations]})


@bp.get("/chat/conversations/<int:conversation_id>")
@require_permission("chat.use")
def conversation_detail(conversation_id: int):
    s = db_session()
    conv = _conversation_or_404(conversation_id)
    if mark_conversation_read(conv, g.current_user):
        s.commit()
    return jsonify({"conversation": conversation_view(conv, viewer=g.current_user, include_messages=True)})


@bp.post("/chat/conversations")
@require_permission("chat.use")
def conversation_start():
    s = db_session()
    try:
        conv = start_conversation(s, g.current_user, _payload())
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "conversation": conversation_view(conv, include_messages=True)}), 201


@bp.post("/chat/conversations/<int:conversation_id>/messages")
@require_permission("chat.use")
def conversation_message(conversation_id: int):
    s = db_session()
    conv = _conversation_or_404(conversation_id)
    payload = _payload()
    try:
        msg = post_message(s, conv, g.current_user, payload.get("content") or payload.get("message") or "")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if conv.ticket_id and g.current_user.role == ROLE_ADMIN:
        ticket = s.get(SupportTicket, conv.ticket_id)
        if ticket is not None and ticket.status == "open":
            ticket.status = "in_progress"
    s.commit()
    return jsonify({"success": True, "message_id": msg.id}), 201


@bp.post("/chat/conversations/<int:conversation_id>/close")
@require_permission("chat.use")
def conversation_close(conversation_id: int):
    s = db_session()
    conv = _conversation_or_404(conversation_id)
    payload = _payload()
    try:
        close_conversation(s, conv, g.current_user, rating=payload.get("rating"), feedback=payload.get("feedback"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "conversation": conversation_view(conv, viewer=g.current_user)})
