"""
Voucher Module - Models
========================
Discount vouchers with scope, usage caps, validity window and stacking rules.

Features:
  - Money or Percentage discount (percentage optionally capped)
  - Independent product scope and combo scope (all / specific members)
  - Public vouchers or private vouchers owned by / granted to a user
  - Usage counter (quantity 0 = unlimited)
  - Validity window (start_time / end_time / is_lifetime)
  - Minimum eligible subtotal
  - New-customers-only flag and minimum customer rank
  - Combined usage limit (how many vouchers may stack in one order)
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Boolean, Text, Numeric,
    ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from config.database import Base, UTCDateTime
from common.models import AuditMixin
from common.helpers import now_utc, format_money
from modules.user.models import CustomerRank


# ==========================================
# Enums
# ==========================================

class VoucherType(str, enum.Enum):
    PUBLIC = "PUBLIC"        # anyone may use it
    PRIVATE = "PRIVATE"      # owner or granted users only


class ProductScope(str, enum.Enum):
    ALL_PRODUCTS = "ALL_PRODUCTS"
    SPECIFIC_PRODUCTS = "SPECIFIC_PRODUCTS"


class ComboScope(str, enum.Enum):
    ALL_COMBOS = "ALL_COMBOS"
    SPECIFIC_COMBOS = "SPECIFIC_COMBOS"


class VoucherDiscountType(str, enum.Enum):
    MONEY = "MONEY"
    PERCENTAGE = "PERCENTAGE"


# ==========================================
# Voucher
# ==========================================

class Voucher(AuditMixin, Base):
    __tablename__ = "vouchers"

    id = Column(Integer, primary_key=True)
    code = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String, default=VoucherType.PUBLIC, nullable=False)

    # Scope
    product_scope = Column(String, default=ProductScope.ALL_PRODUCTS, nullable=False)
    combo_scope = Column(String, default=ComboScope.ALL_COMBOS, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Discount
    discount_type = Column(String, default=VoucherDiscountType.MONEY, nullable=False)
    discount = Column(Numeric(18, 2), default=0, nullable=False)
    unlimited_percentage_discount = Column(Boolean, default=False, nullable=False)
    maximum_percentage_reduction = Column(Numeric(18, 2), nullable=True)

    # Usage
    used = Column(Integer, default=0, nullable=False)
    quantity = Column(Integer, default=0, nullable=False)  # 0 = unlimited

    # Validity window
    start_time = Column(UTCDateTime, default=now_utc, nullable=False)
    end_time = Column(UTCDateTime, nullable=True)
    is_lifetime = Column(Boolean, default=False, nullable=False)

    # Constraints
    minimum_requirements = Column(Numeric(18, 2), default=0, nullable=False)
    has_combined_usage_limit = Column(Boolean, default=False, nullable=False)
    max_combined_usage_count = Column(Integer, nullable=True)
    is_for_new_users_only = Column(Boolean, default=False, nullable=False)
    minimum_rank = Column(Integer, nullable=True)  # CustomerRank ordinal

    # Visibility
    is_publish = Column(Boolean, default=True, nullable=False)
    is_show = Column(Boolean, default=True, nullable=False)

    # Relationships
    owner = relationship("User", foreign_keys=[user_id])
    voucher_products = relationship("VoucherProduct", back_populates="voucher", cascade="all, delete-orphan")
    voucher_combos = relationship("VoucherCombo", back_populates="voucher", cascade="all, delete-orphan")
    voucher_users = relationship("VoucherUser", back_populates="voucher", cascade="all, delete-orphan")
    order_vouchers = relationship("OrderVoucher", back_populates="voucher")

    __table_args__ = (
        Index("ix_voucher_type_publish", "type", "is_publish"),
    )

    @property
    def product_ids(self) -> frozenset:
        return frozenset(vp.product_id for vp in self.voucher_products)

    @property
    def combo_ids(self) -> frozenset:
        return frozenset(vc.combo_id for vc in self.voucher_combos)

    @property
    def is_unlimited(self) -> bool:
        return not self.quantity

    @property
    def remaining(self):
        """Uses left, or None when unlimited."""
        if self.is_unlimited:
            return None
        return max(self.quantity - (self.used or 0), 0)

    @property
    def minimum_customer_rank(self):
        return CustomerRank(self.minimum_rank) if self.minimum_rank is not None else None

    def is_temporally_active(self, now) -> bool:
        if self.start_time and self.start_time > now:
            return False
        if self.is_lifetime or self.end_time is None:
            return True
        return self.end_time >= now

    @property
    def discount_display(self) -> str:
        """Human-readable discount value."""
        if self.discount_type == VoucherDiscountType.PERCENTAGE:
            text = f"{format_money(self.discount)}%"
            if not self.unlimited_percentage_discount and self.maximum_percentage_reduction:
                text += f" (max {format_money(self.maximum_percentage_reduction)})"
            return text
        return format_money(self.discount)

    def __repr__(self):
        return f"<Voucher {self.code}>"


class VoucherProduct(Base):
    __tablename__ = "voucher_products"

    id = Column(Integer, primary_key=True)
    voucher_id = Column(Integer, ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)

    voucher = relationship("Voucher", back_populates="voucher_products")
    product = relationship("Product")

    __table_args__ = (
        UniqueConstraint("voucher_id", "product_id", name="uq_voucher_product"),
    )


class VoucherCombo(Base):
    __tablename__ = "voucher_combos"

    id = Column(Integer, primary_key=True)
    voucher_id = Column(Integer, ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False)
    combo_id = Column(Integer, ForeignKey("combos.id", ondelete="CASCADE"), nullable=False)

    voucher = relationship("Voucher", back_populates="voucher_combos")
    combo = relationship("Combo")

    __table_args__ = (
        UniqueConstraint("voucher_id", "combo_id", name="uq_voucher_combo"),
    )


# ==========================================
# Voucher <-> User (grant / bookmark)
# ==========================================

class VoucherUser(AuditMixin, Base):
    """
    is_saved = False: the user was granted this (private) voucher.
    is_saved = True:  the user bookmarked a public voucher.
    """
    __tablename__ = "voucher_users"

    id = Column(Integer, primary_key=True)
    voucher_id = Column(Integer, ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    is_saved = Column(Boolean, default=False, nullable=False)

    voucher = relationship("Voucher", back_populates="voucher_users")
    user = relationship("User")

    __table_args__ = (
        Index("ix_voucher_user_pair", "voucher_id", "user_id"),
    )


# ==========================================
# Voucher applied to an order (immutable snapshot)
# ==========================================

class OrderVoucher(Base):
    __tablename__ = "order_vouchers"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    voucher_id = Column(Integer, ForeignKey("vouchers.id", ondelete="RESTRICT"), nullable=False, index=True)
    discount_amount = Column(Numeric(18, 2), default=0, nullable=False)
    created_at = Column(UTCDateTime, default=now_utc, nullable=False)

    order = relationship("Order", back_populates="order_vouchers")
    voucher = relationship("Voucher", back_populates="order_vouchers")

    __table_args__ = (
        UniqueConstraint("order_id", "voucher_id", name="uq_order_voucher"),
    )
