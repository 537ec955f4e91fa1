from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.unieats.models import Base, User
from app.unieats.modules.cafeterias.models import Cafeteria
from app.unieats.modules.menu.models import MenuItem


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("idx_orders_user", "user_id"),
        Index("idx_orders_cafeteria", "cafeteria_id"),
        Index("idx_orders_status", "status"),
        Index("idx_orders_created_at", "created_at"),
        CheckConstraint(
            "status IN ('pending', 'preparing', 'ready', 'completed', 'cancelled')",
            name="ck_orders_status",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    cafeteria_id: Mapped[int] = mapped_column(ForeignKey("cafeterias.id", ondelete="CASCADE"), nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")

    # Revenue split; NULL on rows created before the split existed.
    subtotal: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    user_service_fee: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    cafeteria_commission: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    admin_revenue: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    service_fee_percentage: Mapped[Decimal | None] = mapped_column(Numeric(6, 4), nullable=True)

    pickup_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False, default="cash")
    platform: Mapped[str] = mapped_column(String(32), nullable=False, default="web")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    cancellation_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(32), nullable=True)  # student, cafeteria, admin
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    user: Mapped[User | None] = relationship("User", lazy="selectin")
    cafeteria: Mapped[Cafeteria] = relationship("Cafeteria", lazy="selectin")


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        Index("idx_order_items_order", "order_id"),
        Index("idx_order_items_menu_item", "menu_item_id"),
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    menu_item_id: Mapped[int | None] = mapped_column(ForeignKey("menu_items.id", ondelete="SET NULL"), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)  # unit price at time of order
    notes: Mapped[str | None] = mapped_column(String(512), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    menu_item: Mapped[MenuItem | None] = relationship("MenuItem", lazy="selectin")
