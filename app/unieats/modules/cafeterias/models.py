from __future__ import annotations

from datetime import datetime, time

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.unieats.models import Base, User


class Cafeteria(Base):
    __tablename__ = "cafeterias"
    __table_args__ = (
        Index("idx_cafeterias_owner", "owner_user_id"),
        Index("idx_cafeterias_approval_status", "approval_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    owner_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    approval_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")  # pending, approved, rejected, revoked
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Day-to-day status set by the owner.
    operational_status: Mapped[str] = mapped_column(String(32), nullable=False, default="open")  # open, busy, closed, temporarily_closed
    status_message: Mapped[str | None] = mapped_column(String(512), nullable=True)

    opening_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    closing_time: Mapped[time | None] = mapped_column(Time, nullable=True)

    image_key: Mapped[str | None] = mapped_column(String(512), nullable=True)

    revoked_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    owner: Mapped[User | None] = relationship("User", lazy="selectin")


class CafeteriaApplication(Base):
    __tablename__ = "cafeteria_applications"
    __table_args__ = (
        Index("idx_cafeteria_applications_status", "status"),
        Index("idx_cafeteria_applications_email", "email"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")  # pending, approved, rejected
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    applicant_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    cafeteria_id: Mapped[int | None] = mapped_column(ForeignKey("cafeterias.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
