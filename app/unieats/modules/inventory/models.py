from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.unieats.models import Base


class InventoryItem(Base):
    __tablename__ = "inventory_items"
    __table_args__ = (
        Index("idx_inventory_items_cafeteria", "cafeteria_id"),
        Index("idx_inventory_items_category", "category"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cafeteria_id: Mapped[int] = mapped_column(ForeignKey("cafeterias.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="other")

    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False, default=0)
    unit: Mapped[str] = mapped_column(String(32), nullable=False, default="unit")
    min_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False, default=0)
    cost_per_unit: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    supplier: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
