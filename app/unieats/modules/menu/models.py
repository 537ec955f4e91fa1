from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.unieats.models import Base

if TYPE_CHECKING:
    from app.unieats.modules.inventory.models import InventoryItem


class MenuItem(Base):
    __tablename__ = "menu_items"
    __table_args__ = (
        Index("idx_menu_items_cafeteria", "cafeteria_id"),
        Index("idx_menu_items_category", "category"),
        CheckConstraint("price > 0", name="ck_menu_items_price_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cafeteria_id: Mapped[int] = mapped_column(ForeignKey("cafeterias.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    preparation_time: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minutes
    image_key: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    ingredients: Mapped[list["MenuItemIngredient"]] = relationship(
        "MenuItemIngredient",
        back_populates="menu_item",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class MenuItemIngredient(Base):
    __tablename__ = "menu_item_ingredients"
    __table_args__ = (
        UniqueConstraint("menu_item_id", "inventory_item_id", name="uq_menu_item_ingredient"),
        Index("idx_menu_item_ingredients_inventory", "inventory_item_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    menu_item_id: Mapped[int] = mapped_column(ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False)
    inventory_item_id: Mapped[int] = mapped_column(ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False)
    quantity_required: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    menu_item: Mapped["MenuItem"] = relationship("MenuItem", back_populates="ingredients")
    inventory_item: Mapped["InventoryItem"] = relationship("InventoryItem", lazy="selectin")


class MenuItemRating(Base):
    __tablename__ = "menu_item_ratings"
    __table_args__ = (
        UniqueConstraint("user_id", "menu_item_id", "order_id", name="uq_menu_item_rating_user_item_order"),
        Index("idx_menu_item_ratings_item", "menu_item_id"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_menu_item_ratings_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    menu_item_id: Mapped[int] = mapped_column(ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    order_id: Mapped[int | None] = mapped_column(ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
