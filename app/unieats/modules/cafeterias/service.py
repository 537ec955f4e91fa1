"""
Cafeteria tenants and their onboarding.

Application lifecycle:
    submit   -> application "pending", applicant user created inactive
    approved -> cafeteria created (or re-approved), applicant activated
    rejected -> notes recorded, applicant stays inactive

An approved cafeteria can later be revoked by an admin, which also
deactivates its owner.
"""
from __future__ import annotations

import logging
from datetime import datetime, time
from typing import TYPE_CHECKING, Any

from werkzeug.security import generate_password_hash

from app.unieats.audit import record_event
from app.unieats.models import ROLE_CAFETERIA_MANAGER, User
from app.unieats.modules.cafeterias.models import Cafeteria, CafeteriaApplication
from app.unieats.modules.notifications.service import notify
from app.unieats.modules.platform_settings.service import get_setting
from app.unieats.users import create_user, get_user_by_email, normalize_email, set_user_active, validate_user_payload

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

APPLICATION_STATUSES = ("pending", "approved", "rejected")
APPROVAL_STATUSES = ("pending", "approved", "rejected", "revoked")
OPERATIONAL_STATUSES = ("open", "busy", "closed", "temporarily_closed")


class DuplicateApplicationError(ValueError):
    pass


def parse_time(raw: str | None) -> time | None:
    """Parse HH:MM (or HH:MM:SS)."""
    if raw is None:
        return None
    raw = str(raw).strip()
    if not raw:
        return None
    return time.fromisoformat(raw)


def validate_application_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("business_name") or "").strip():
        errors.append("Business name is required.")
    if not (payload.get("owner_name") or "").strip():
        errors.append("Owner name is required.")
    errors.extend(validate_user_payload(payload))
    return errors


def submit_application(s: "Session", payload: dict) -> CafeteriaApplication:
    if not get_setting(s, "cafeteria_applications"):
        raise ValueError("Cafeteria applications are currently closed.")

    email = normalize_email(payload.get("email"))
    existing = (
        s.query(CafeteriaApplication)
        .filter(CafeteriaApplication.email == email)
        .filter(CafeteriaApplication.status.in_(("pending", "approved")))
        .first()
    )
    if existing:
        raise DuplicateApplicationError(
            f'An application for "{existing.business_name}" with this email already exists (Status: {existing.status})'
        )
    now = datetime.utcnow()
    applicant = get_user_by_email(s, email)
    if applicant is not None:
        # Only a previously rejected applicant may apply again with the same account.
        if applicant.role != ROLE_CAFETERIA_MANAGER or applicant.is_active or applicant.is_suspended:
            raise DuplicateApplicationError("An account with this email already exists.")
        applicant.password_hash = generate_password_hash(payload.get("password") or "")
        applicant.full_name = (payload.get("owner_name") or "").strip() or applicant.full_name
        applicant.phone = (payload.get("phone") or "").strip() or applicant.phone
        applicant.updated_at = now
    else:
        # Inactive until approval: cannot sign in.
        applicant = create_user(
            s,
            email=email,
            password=payload.get("password") or "",
            role=ROLE_CAFETERIA_MANAGER,
            full_name=payload.get("owner_name"),
            phone=payload.get("phone"),
            is_active=False,
        )

    application = CafeteriaApplication(
        business_name=(payload.get("business_name") or "").strip(),
        owner_name=(payload.get("owner_name") or "").strip(),
        email=email,
        phone=(payload.get("phone") or "").strip() or None,
        location=(payload.get("location") or "").strip() or None,
        description=(payload.get("description") or "").strip() or None,
        status="pending",
        applicant_user_id=applicant.id,
        created_at=now,
        updated_at=now,
    )
    s.add(application)
    s.flush()

    record_event(
        s,
        actor=applicant,
        action="cafeteria_application.submit",
        entity_type="CafeteriaApplication",
        entity_id=str(application.id),
        metadata={"business_name": application.business_name, "email": email},
    )
    return application


def review_application(
    s: "Session",
    application: CafeteriaApplication,
    *,
    status: str,
    reviewer: User,
    notes: str | None = None,
) -> CafeteriaApplication:
    if status not in ("approved", "rejected"):
        raise ValueError("Review status must be 'approved' or 'rejected'.")
    if application.status == status:
        raise ValueError(f"Application is already {status}.")
    if application.status == "approved" and status == "rejected":
        raise ValueError("Approved applications cannot be rejected; revoke the cafeteria instead.")

    applicant = s.get(User, application.applicant_user_id) if application.applicant_user_id else None
    now = datetime.utcnow()
    old_status = application.status
    application.status = status
    application.review_notes = (notes or "").strip() or None
    application.reviewed_by_user_id = reviewer.id
    application.reviewed_at = now
    application.updated_at = now

    if status == "approved":
        cafeteria = s.get(Cafeteria, application.cafeteria_id) if application.cafeteria_id else None
        if cafeteria is None and applicant is not None:
            cafeteria = s.query(Cafeteria).filter(Cafeteria.owner_user_id == applicant.id).first()
        if cafeteria is None:
            cafeteria = Cafeteria(
                name=application.business_name,
                description=application.description,
                location=application.location,
                phone=application.phone,
                owner_user_id=applicant.id if applicant else None,
                created_at=now,
            )
            s.add(cafeteria)
        cafeteria.approval_status = "approved"
        cafeteria.is_active = True
        cafeteria.revoked_reason = None
        cafeteria.updated_at = now
        s.flush()
        application.cafeteria_id = cafeteria.id

        if applicant is not None:
            set_user_active(s, applicant, True, actor=reviewer, reason="Cafeteria application approved")
            notify(
                s,
                applicant.id,
                type="system",
                title="Application approved",
                message=f"{application.business_name} has been approved. You can now sign in.",
                data={"cafeteria_id": cafeteria.id},
                priority="high",
            )

    record_event(
        s,
        actor=reviewer,
        action=f"cafeteria_application.{'approve' if status == 'approved' else 'reject'}",
        entity_type="CafeteriaApplication",
        entity_id=str(application.id),
        reason=application.review_notes,
        metadata={"from": old_status, "to": status, "business_name": application.business_name},
        severity="medium",
    )
    logger.info("Cafeteria application %s %s by user_id=%s", application.id, status, reviewer.id)
    return application


def revoke_cafeteria(s: "Session", cafeteria: Cafeteria, *, reason: str, actor: User) -> Cafeteria:
    reason = (reason or "").strip()
    if not reason:
        raise ValueError("A reason is required to revoke a cafeteria.")
    if cafeteria.approval_status != "approved":
        raise ValueError("Only approved cafeterias can be revoked.")

    cafeteria.approval_status = "revoked"
    cafeteria.is_active = False
    cafeteria.revoked_reason = reason
    cafeteria.updated_at = datetime.utcnow()

    if cafeteria.owner_user_id:
        owner = s.get(User, cafeteria.owner_user_id)
        if owner is not None:
            set_user_active(s, owner, False, actor=actor, reason=reason)

    record_event(
        s,
        actor=actor,
        action="cafeteria.revoke",
        entity_type="Cafeteria",
        entity_id=str(cafeteria.id),
        reason=reason,
        metadata={"name": cafeteria.name},
        severity="high",
    )
    return cafeteria


def get_owned_cafeteria(s: "Session", user: User) -> Cafeteria | None:
    return (
        s.query(Cafeteria)
        .filter(Cafeteria.owner_user_id == user.id)
        .order_by(Cafeteria.id.asc())
        .first()
    )


def update_cafeteria_profile(s: "Session", cafeteria: Cafeteria, payload: dict, user: User) -> Cafeteria:
    changes: dict[str, Any] = {}

    for field in ("name", "description", "location", "phone"):
        if field not in payload:
            continue
        new = (payload.get(field) or "").strip() or None
        if field == "name" and not new:
            raise ValueError("Name is required.")
        if new != getattr(cafeteria, field):
            changes[field] = {"old": getattr(cafeteria, field), "new": new}
            setattr(cafeteria, field, new)

    for field in ("opening_time", "closing_time"):
        if field not in payload:
            continue
        try:
            new_t = parse_time(payload.get(field))
        except ValueError:
            raise ValueError(f"{field} must be HH:MM.") from None
        if new_t != getattr(cafeteria, field):
            old_t = getattr(cafeteria, field)
            changes[field] = {"old": old_t.isoformat() if old_t else None, "new": new_t.isoformat() if new_t else None}
            setattr(cafeteria, field, new_t)

    if (cafeteria.opening_time is None) != (cafeteria.closing_time is None):
        raise ValueError("Set both opening_time and closing_time, or neither.")

    cafeteria.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="cafeteria.update",
        entity_type="Cafeteria",
        entity_id=str(cafeteria.id),
        metadata={"name": cafeteria.name, "changes": changes},
    )
    return cafeteria


def update_operational_status(
    s: "Session", cafeteria: Cafeteria, *, status: str, message: str | None, user: User
) -> Cafeteria:
    if status not in OPERATIONAL_STATUSES:
        raise ValueError(f"Invalid status. Must be one of: {', '.join(OPERATIONAL_STATUSES)}")
    old = cafeteria.operational_status
    cafeteria.operational_status = status
    cafeteria.status_message = (message or "").strip() or None
    cafeteria.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="cafeteria.status_change",
        entity_type="Cafeteria",
        entity_id=str(cafeteria.id),
        metadata={"from": old, "to": status, "message": cafeteria.status_message},
    )
    return cafeteria


def is_open_now(cafeteria: Cafeteria, now: datetime | None = None) -> bool:
    if cafeteria.operational_status not in ("open", "busy"):
        return False
    if cafeteria.opening_time is None or cafeteria.closing_time is None:
        return True
    current = (now or datetime.now()).time()
    start, end = cafeteria.opening_time, cafeteria.closing_time
    if start <= end:
        return start <= current < end
    # Overnight window, e.g. 20:00-02:00.
    return current >= start or current < end


def can_accept_orders(cafeteria: Cafeteria, now: datetime | None = None) -> bool:
    return cafeteria.approval_status == "approved" and cafeteria.is_active and is_open_now(cafeteria, now)


def cafeteria_view(cafeteria: Cafeteria, now: datetime | None = None) -> dict[str, Any]:
    return {
        "id": cafeteria.id,
        "name": cafeteria.name,
        "description": cafeteria.description,
        "location": cafeteria.location,
        "phone": cafeteria.phone,
        "owner_user_id": cafeteria.owner_user_id,
        "approval_status": cafeteria.approval_status,
        "is_active": cafeteria.is_active,
        "operational_status": cafeteria.operational_status,
        "status_message": cafeteria.status_message,
        "opening_time": cafeteria.opening_time.strftime("%H:%M") if cafeteria.opening_time else None,
        "closing_time": cafeteria.closing_time.strftime("%H:%M") if cafeteria.closing_time else None,
        "is_open": is_open_now(cafeteria, now),
        "has_image": bool(cafeteria.image_key),
    }


def application_view(application: CafeteriaApplication) -> dict[str, Any]:
    return {
        "id": application.id,
        "business_name": application.business_name,
        "owner_name": application.owner_name,
        "email": application.email,
        "phone": application.phone,
        "location": application.location,
        "description": application.description,
        "status": application.status,
        "review_notes": application.review_notes,
        "reviewed_at": application.reviewed_at.isoformat() if application.reviewed_at else None,
        "cafeteria_id": application.cafeteria_id,
        "created_at": application.created_at.isoformat() if application.created_at else None,
    }
