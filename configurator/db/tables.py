"""Relational schema for the Dish Configurator.

Money is stored as integer cents. Ingredient stock is NULL for unlimited
ingredients. Incompatibilities are stored once per unordered pair
(lower id first); both directions are derived when a catalog snapshot is built.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(254), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(100))
    hash: Mapped[str] = mapped_column(String(128), nullable=False)
    salt: Mapped[str] = mapped_column(String(64), nullable=False)
    # Base32 TOTP secret; empty or NULL when the user has no second factor
    secret: Mapped[Optional[str]] = mapped_column(String(64))


class BaseDishRow(Base):
    __tablename__ = "base_dishes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)


class SizeRow(Base):
    __tablename__ = "sizes"
    __table_args__ = (
        CheckConstraint("base_price_cents >= 0", name="ck_sizes_price"),
        CheckConstraint("max_ingredients > 0", name="ck_sizes_max_ingredients"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    label: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    base_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    max_ingredients: Mapped[int] = mapped_column(Integer, nullable=False)


class IngredientRow(Base):
    __tablename__ = "ingredients"
    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_ingredients_price"),
        CheckConstraint("stock IS NULL OR stock >= 0", name="ck_ingredients_stock"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    stock: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class IngredientRequirementRow(Base):
    __tablename__ = "ingredient_requirements"

    ingredient_id: Mapped[int] = mapped_column(ForeignKey("ingredients.id"), primary_key=True)
    required_id: Mapped[int] = mapped_column(ForeignKey("ingredients.id"), primary_key=True)


class IngredientIncompatibilityRow(Base):
    __tablename__ = "ingredient_incompatibilities"
    __table_args__ = (
        CheckConstraint("ingredient_id < incompatible_with_id", name="ck_incompatibility_canonical"),
    )

    ingredient_id: Mapped[int] = mapped_column(ForeignKey("ingredients.id"), primary_key=True)
    incompatible_with_id: Mapped[int] = mapped_column(ForeignKey("ingredients.id"), primary_key=True)


class OrderRow(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("status IN ('confirmed', 'cancelled')", name="ck_orders_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    base_dish_id: Mapped[int] = mapped_column(ForeignKey("base_dishes.id"), nullable=False)
    size_id: Mapped[int] = mapped_column(ForeignKey("sizes.id"), nullable=False)
    # Frozen at creation: later price changes never alter historical orders
    dish_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    total_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="confirmed")
    requires_second_factor: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    base_dish: Mapped[BaseDishRow] = relationship()
    size: Mapped[SizeRow] = relationship()
    lines: Mapped[list["OrderIngredientRow"]] = relationship(
        back_populates="order", order_by="OrderIngredientRow.position"
    )


class OrderIngredientRow(Base):
    """One ingredient of an order, copied at creation time."""

    __tablename__ = "order_ingredients"

    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), primary_key=True)
    ingredient_id: Mapped[int] = mapped_column(ForeignKey("ingredients.id"), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    order: Mapped[OrderRow] = relationship(back_populates="lines")
