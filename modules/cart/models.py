"""
Cart Module - Models
=====================
Shopping cart with per-user uniqueness; each line is a product or a combo.
"""

from sqlalchemy import (
    Column, Integer, ForeignKey,
    UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base, UTCDateTime
from common.helpers import now_utc


class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    created_at = Column(UTCDateTime, server_default=func.now(), default=now_utc, nullable=False)

    user = relationship("User", foreign_keys=[user_id])
    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan", order_by="CartItem.id")


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=True)
    product_type_id = Column(Integer, ForeignKey("product_types.id", ondelete="SET NULL"), nullable=True)
    combo_id = Column(Integer, ForeignKey("combos.id", ondelete="RESTRICT"), nullable=True)
    quantity = Column(Integer, default=1, nullable=False)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")
    product_type = relationship("ProductType")
    combo = relationship("Combo")
    extras = relationship("CartItemExtra", back_populates="cart_item", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_cart_qty"),
        CheckConstraint(
            "(product_id IS NULL) <> (combo_id IS NULL)",
            name="ck_cart_item_kind",
        ),
    )


class CartItemExtra(Base):
    __tablename__ = "cart_item_extras"

    id = Column(Integer, primary_key=True)
    cart_item_id = Column(Integer, ForeignKey("cart_items.id", ondelete="CASCADE"), nullable=False)
    extra_id = Column(Integer, ForeignKey("product_extras.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)

    cart_item = relationship("CartItem", back_populates="extras")
    extra = relationship("ProductExtra")

    __table_args__ = (
        UniqueConstraint("cart_item_id", "extra_id", name="uq_cart_item_extra"),
        CheckConstraint("quantity >= 1", name="ck_cart_extra_qty"),
    )
