"""
Catalog Module - Models
========================
Category, Product, ProductType (variants), ProductExtra (add-ons), Combo, ComboItem.

Every sellable thing carries a base price and an optional discount
(see PriceDiscountType); modules.catalog.pricing turns that into the
effective unit price.
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, Text,
    ForeignKey, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import relationship
from config.database import Base
from common.models import AuditMixin


class PriceDiscountType(str, enum.Enum):
    NONE = "NONE"
    PERCENT = "PERCENT"            # price - price * discount / 100
    AMOUNT = "AMOUNT"              # price - discount
    FIXED_PRICE = "FIXED_PRICE"    # price becomes discount


# ==========================================
# 🗂️ Category
# ==========================================

class Category(AuditMixin, Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    sort_order = Column(Integer, default=0)

    products = relationship("Product", back_populates="category")

    def __repr__(self):
        return f"<Category {self.name}>"


# ==========================================
# 🍜 Product
# ==========================================

class Product(AuditMixin, Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    price = Column(Numeric(18, 2), default=0, nullable=False)
    discount_type = Column(String, default=PriceDiscountType.NONE, nullable=False)
    discount = Column(Numeric(18, 2), nullable=True)
    is_publish = Column(Boolean, default=True, nullable=False)

    category = relationship("Category", back_populates="products")
    product_types = relationship("ProductType", back_populates="product", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Product {self.name}>"


class ProductType(AuditMixin, Base):
    """A sellable variant of a product (size, portion...). Its price replaces the product's."""
    __tablename__ = "product_types"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(18, 2), default=0, nullable=False)
    discount_type = Column(String, default=PriceDiscountType.NONE, nullable=False)
    discount = Column(Numeric(18, 2), nullable=True)
    stock = Column(Integer, default=0, nullable=False)
    is_publish = Column(Boolean, default=True, nullable=False)

    product = relationship("Product", back_populates="product_types")


class ProductExtra(AuditMixin, Base):
    """Add-on sold with a product or combo line (extra topping, sauce...)."""
    __tablename__ = "product_extras"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(18, 2), default=0, nullable=False)
    discount_type = Column(String, default=PriceDiscountType.NONE, nullable=False)
    discount = Column(Numeric(18, 2), nullable=True)
    is_publish = Column(Boolean, default=False, nullable=False)


# ==========================================
# 🍱 Combo
# ==========================================

class Combo(AuditMixin, Base):
    __tablename__ = "combos"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(18, 2), default=0, nullable=False)
    discount_type = Column(String, default=PriceDiscountType.NONE, nullable=False)
    discount = Column(Numeric(18, 2), nullable=True)
    stock = Column(Integer, default=0, nullable=False)
    is_publish = Column(Boolean, default=True, nullable=False)

    items = relationship("ComboItem", back_populates="combo", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Combo {self.name}>"


class ComboItem(AuditMixin, Base):
    __tablename__ = "combo_items"

    id = Column(Integer, primary_key=True)
    combo_id = Column(Integer, ForeignKey("combos.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)

    combo = relationship("Combo", back_populates="items")
    product = relationship("Product")

    __table_args__ = (
        UniqueConstraint("combo_id", "product_id", name="uq_combo_product"),
        CheckConstraint("quantity >= 1", name="ck_combo_item_qty"),
    )
