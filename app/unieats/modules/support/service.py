"""
Support tickets and the chat conversations behind them.

A ticket opens a conversation whose first message is the ticket description;
every later message in that conversation is a "response" on the ticket.
"""
from __future__ import annotations

import logging
import secrets
import string
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable

from app.unieats.audit import record_event
from app.unieats.models import ROLE_ADMIN, ROLE_CAFETERIA_MANAGER, User
from app.unieats.modules.notifications.service import notify
from app.unieats.modules.support.models import ChatConversation, ChatMessage, SupportTicket
from app.unieats.utils import parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

TICKET_STATUSES = ("open", "in_progress", "resolved", "closed")
TICKET_PRIORITIES = ("low", "medium", "high", "urgent")
TICKET_CATEGORIES = ("general", "order", "payment", "technical", "account", "feedback")
USER_TYPES = ("student", "cafeteria", "admin")
CONVERSATION_STATUSES = ("open", "closed")

STATUS_LABELS = {
    "open": ("Open", "blue"),
    "in_progress": ("In Progress", "yellow"),
    "resolved": ("Resolved", "green"),
    "closed": ("Closed", "gray"),
}
PRIORITY_LABELS = {
    "low": ("Low", "gray"),
    "medium": ("Medium", "blue"),
    "high": ("High", "orange"),
    "urgent": ("Urgent", "red"),
}


def user_type_for(user: User) -> str:
    if user.role == ROLE_CAFETERIA_MANAGER:
        return "cafeteria"
    if user.role == ROLE_ADMIN:
        return "admin"
    return "student"


def generate_ticket_number(now_ms: int | None = None) -> str:
    """TKT-<epoch ms>-<5 upper alphanumerics>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(5))
    return f"TKT-{now_ms}-{suffix}"


def _choice(value: Any, allowed: tuple[str, ...], field: str, default: str) -> str:
    value = (str(value).strip() if value is not None else "") or default
    if value not in allowed:
        raise ValueError(f"Invalid {field}. Must be one of: {', '.join(allowed)}")
    return value


# ---------- Tickets ----------
def create_ticket(s: "Session", user: User, payload: dict) -> SupportTicket:
    title = (payload.get("title") or "").strip()
    description = (payload.get("description") or "").strip()
    if not title or not description:
        raise ValueError("Title and description are required.")
    category = _choice(payload.get("category"), TICKET_CATEGORIES, "category", "general")
    priority = _choice(payload.get("priority"), TICKET_PRIORITIES, "priority", "medium")

    now = datetime.utcnow()
    ticket = SupportTicket(
        ticket_number=generate_ticket_number(),
        user_id=user.id,
        user_type=user_type_for(user),
        title=title,
        description=description,
        category=category,
        priority=priority,
        status="open",
        order_id=parse_int(payload.get("order_id"), "order_id"),
        created_at=now,
        updated_at=now,
    )
    s.add(ticket)
    s.flush()

    conversation = ChatConversation(
        user_id=user.id,
        user_type=ticket.user_type,
        subject=title,
        status="open",
        priority=priority,
        category=category,
        order_id=ticket.order_id,
        ticket_id=ticket.id,
        created_at=now,
        updated_at=now,
    )
    conversation.messages.append(ChatMessage(sender_id=user.id, content=description, created_at=now))
    s.add(conversation)
    s.flush()

    record_event(
        s,
        actor=user,
        action="support_ticket.create",
        entity_type="SupportTicket",
        entity_id=str(ticket.id),
        metadata={"ticket_number": ticket.ticket_number, "priority": priority, "category": category},
    )
    return ticket


def ticket_conversation(s: "Session", ticket: SupportTicket) -> ChatConversation | None:
    return (
        s.query(ChatConversation)
        .filter(ChatConversation.ticket_id == ticket.id)
        .order_by(ChatConversation.id.asc())
        .first()
    )


def ticket_responses(ticket: SupportTicket, messages: Iterable[ChatMessage]) -> list[dict[str, Any]]:
    """Conversation messages minus the opening description, oldest first."""
    responses = [m for m in messages if m.content != ticket.description]
    responses.sort(key=lambda m: (m.created_at or datetime.min, m.id or 0))
    return [
        {
            "id": m.id,
            "message": m.content,
            "created_at": m.created_at.isoformat() if m.created_at else None,
            "sender_id": m.sender_id,
            "sender_name": m.sender.display_name if m.sender else None,
            "isAdmin": bool(m.sender and m.sender.role == ROLE_ADMIN),
        }
        for m in responses
    ]


def ticket_view(ticket: SupportTicket, messages: Iterable[ChatMessage] = ()) -> dict[str, Any]:
    responses = ticket_responses(ticket, messages)
    status_label, status_color = STATUS_LABELS.get(ticket.status, (ticket.status, "gray"))
    priority_label, priority_color = PRIORITY_LABELS.get(ticket.priority, (ticket.priority, "gray"))
    return {
        "id": ticket.id,
        "ticket_number": ticket.ticket_number,
        "user_id": ticket.user_id,
        "user_type": ticket.user_type,
        "user_name": ticket.user.display_name if ticket.user else None,
        "user_email": ticket.user.email if ticket.user else None,
        "title": ticket.title,
        "description": ticket.description,
        "category": ticket.category,
        "priority": ticket.priority,
        "priority_label": priority_label,
        "priority_color": priority_color,
        "status": ticket.status,
        "status_label": status_label,
        "status_color": status_color,
        "assigned_to_user_id": ticket.assigned_to_user_id,
        "resolution": ticket.resolution,
        "order_id": ticket.order_id,
        "created_at": ticket.created_at.isoformat() if ticket.created_at else None,
        "updated_at": ticket.updated_at.isoformat() if ticket.updated_at else None,
        "responses": responses,
        "responseCount": len(responses),
        "lastResponseAt": responses[-1]["created_at"] if responses else None,
    }


def build_ticket_views(s: "Session", tickets: list[SupportTicket]) -> list[dict[str, Any]]:
    ids = [t.id for t in tickets]
    by_ticket: dict[int, list[ChatMessage]] = {}
    if ids:
        conversations = s.query(ChatConversation).filter(ChatConversation.ticket_id.in_(ids)).all()
        for conv in conversations:
            by_ticket.setdefault(conv.ticket_id, []).extend(conv.messages)
    return [ticket_view(t, by_ticket.get(t.id, [])) for t in tickets]


def ticket_status_counts(tickets: Iterable[SupportTicket]) -> dict[str, int]:
    counts = {k: 0 for k in TICKET_STATUSES}
    total = 0
    for t in tickets:
        counts[t.status] = counts.get(t.status, 0) + 1
        total += 1
    counts["total"] = total
    return counts


def update_ticket(s: "Session", ticket: SupportTicket, payload: dict, actor: User) -> SupportTicket:
    changes: dict[str, Any] = {}

    if "status" in payload:
        status = _choice(payload.get("status"), TICKET_STATUSES, "status", ticket.status)
        if status != ticket.status:
            changes["status"] = {"old": ticket.status, "new": status}
            ticket.status = status
    if "priority" in payload:
        priority = _choice(payload.get("priority"), TICKET_PRIORITIES, "priority", ticket.priority)
        if priority != ticket.priority:
            changes["priority"] = {"old": ticket.priority, "new": priority}
            ticket.priority = priority
    if "assigned_to_user_id" in payload:
        assignee_id = parse_int(payload.get("assigned_to_user_id"), "assigned_to_user_id")
        if assignee_id is not None:
            assignee = s.get(User, assignee_id)
            if assignee is None or assignee.role != ROLE_ADMIN:
                raise ValueError("Tickets can only be assigned to admins.")
        if assignee_id != ticket.assigned_to_user_id:
            changes["assigned_to_user_id"] = {"old": ticket.assigned_to_user_id, "new": assignee_id}
            ticket.assigned_to_user_id = assignee_id
    resolution_key = "resolution" if "resolution" in payload else "resolution_notes"
    if resolution_key in payload:
        resolution = (payload.get(resolution_key) or "").strip() or None
        if resolution != ticket.resolution:
            changes["resolution"] = {"old": ticket.resolution, "new": resolution}
            ticket.resolution = resolution

    if not changes:
        return ticket

    ticket.updated_at = datetime.utcnow()
    if "status" in changes and ticket.status in ("resolved", "closed"):
        conv = ticket_conversation(s, ticket)
        if conv is not None and conv.status == "open":
            conv.status = "closed"
            conv.closed_at = ticket.updated_at

    record_event(
        s,
        actor=actor,
        action="support_ticket.update",
        entity_type="SupportTicket",
        entity_id=str(ticket.id),
        metadata={"ticket_number": ticket.ticket_number, "changes": changes},
    )
    if "status" in changes and ticket.user_id:
        label = STATUS_LABELS[ticket.status][0]
        notify(
            s,
            ticket.user_id,
            type="system",
            title=f"Ticket {ticket.ticket_number} updated",
            message=f'Your ticket "{ticket.title}" is now {label}.',
            data={"ticket_id": ticket.id, "status": ticket.status},
        )
    return ticket


def reply_to_ticket(s: "Session", ticket: SupportTicket, user: User, message: str) -> ChatMessage:
    message = (message or "").strip()
    if not message:
        raise ValueError("Message cannot be empty.")
    if ticket.status == "closed":
        raise ValueError("This ticket is closed.")

    now = datetime.utcnow()
    conv = ticket_conversation(s, ticket)
    if conv is None:
        conv = ChatConversation(
            user_id=ticket.user_id,
            user_type=ticket.user_type,
            subject=ticket.title,
            priority=ticket.priority,
            category=ticket.category,
            ticket_id=ticket.id,
            created_at=now,
            updated_at=now,
        )
        s.add(conv)
    is_admin = user.role == ROLE_ADMIN
    if is_admin and conv.support_agent_id is None:
        conv.support_agent_id = user.id
    msg = ChatMessage(sender_id=user.id, content=message, created_at=now)
    conv.messages.append(msg)
    conv.updated_at = now
    ticket.updated_at = now

    if is_admin and ticket.status == "open":
        ticket.status = "in_progress"
    s.flush()

    record_event(
        s,
        actor=user,
        action="support_ticket.reply",
        entity_type="SupportTicket",
        entity_id=str(ticket.id),
        metadata={"ticket_number": ticket.ticket_number, "is_admin": is_admin},
    )
    if is_admin and ticket.user_id and ticket.user_id != user.id:
        notify(
            s,
            ticket.user_id,
            type="system",
            title="New reply on your ticket",
            message=f'Support replied to "{ticket.title}".',
            data={"ticket_id": ticket.id},
        )
    return msg


# ---------- Chat ----------
def can_access_conversation(user: User, conv: ChatConversation) -> bool:
    return user.role == ROLE_ADMIN or conv.user_id == user.id


def start_conversation(s: "Session", user: User, payload: dict) -> ChatConversation:
    subject = (payload.get("subject") or "").strip()
    message = (payload.get("message") or "").strip()
    if not subject:
        raise ValueError("Subject is required.")
    now = datetime.utcnow()
    conv = ChatConversation(
        user_id=user.id,
        user_type=user_type_for(user),
        subject=subject,
        status="open",
        priority=_choice(payload.get("priority"), TICKET_PRIORITIES, "priority", "medium"),
        category=_choice(payload.get("category"), TICKET_CATEGORIES, "category", "general"),
        order_id=parse_int(payload.get("order_id"), "order_id"),
        created_at=now,
        updated_at=now,
    )
    if message:
        conv.messages.append(ChatMessage(sender_id=user.id, content=message, created_at=now))
    s.add(conv)
    s.flush()
    record_event(
        s,
        actor=user,
        action="chat.start",
        entity_type="ChatConversation",
        entity_id=str(conv.id),
        metadata={"subject": subject},
    )
    return conv


def post_message(s: "Session", conv: ChatConversation, user: User, content: str, message_type: str = "text") -> ChatMessage:
    content = (content or "").strip()
    if not content:
        raise ValueError("Message cannot be empty.")
    if conv.status != "open":
        raise ValueError("This conversation is closed.")
    now = datetime.utcnow()
    if user.role == ROLE_ADMIN and conv.support_agent_id is None:
        conv.support_agent_id = user.id
    msg = ChatMessage(sender_id=user.id, content=content, message_type=message_type, created_at=now)
    conv.messages.append(msg)
    conv.updated_at = now
    s.flush()
    return msg


def mark_conversation_read(conv: ChatConversation, user: User) -> int:
    count = 0
    for m in conv.messages:
        if m.sender_id != user.id and not m.is_read:
            m.is_read = True
            count += 1
    return count


def close_conversation(
    s: "Session", conv: ChatConversation, user: User, *, rating: Any = None, feedback: str | None = None
) -> ChatConversation:
    if conv.status == "closed":
        raise ValueError("Conversation is already closed.")
    value = parse_int(rating, "rating")
    if value is not None and not 1 <= value <= 5:
        raise ValueError("Rating must be between 1 and 5.")
    now = datetime.utcnow()
    conv.status = "closed"
    conv.closed_at = now
    conv.updated_at = now
    conv.rating = value
    conv.feedback = (feedback or "").strip() or None
    record_event(
        s,
        actor=user,
        action="chat.close",
        entity_type="ChatConversation",
        entity_id=str(conv.id),
        metadata={"rating": value},
    )
    return conv


def conversation_view(conv: ChatConversation, *, viewer: User | None = None, include_messages: bool = False) -> dict[str, Any]:
    messages = sorted(conv.messages, key=lambda m: (m.created_at or datetime.min, m.id or 0))
    last = messages[-1] if messages else None
    data: dict[str, Any] = {
        "id": conv.id,
        "user_id": conv.user_id,
        "user_type": conv.user_type,
        "support_agent_id": conv.support_agent_id,
        "subject": conv.subject,
        "status": conv.status,
        "priority": conv.priority,
        "category": conv.category,
        "order_id": conv.order_id,
        "ticket_id": conv.ticket_id,
        "rating": conv.rating,
        "feedback": conv.feedback,
        "closed_at": conv.closed_at.isoformat() if conv.closed_at else None,
        "created_at": conv.created_at.isoformat() if conv.created_at else None,
        "message_count": len(messages),
        "last_message": last.content if last else None,
        "last_message_at": last.created_at.isoformat() if last and last.created_at else None,
        "unread_count": sum(1 for m in messages if viewer and m.sender_id != viewer.id and not m.is_read),
    }
    if include_messages:
        data["messages"] = [
            {
                "id": m.id,
                "sender_id": m.sender_id,
                "sender_name": m.sender.display_name if m.sender else None,
                "isAdmin": bool(m.sender and m.sender.role == ROLE_ADMIN),
                "message_type": m.message_type,
                "content": m.content,
                "is_read": m.is_read,
                "created_at": m.created_at.isoformat() if m.created_at else None,
            }
            for m in messages
        ]
    return data
