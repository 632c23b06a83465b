"""
Reward Module - Models
=======================
Loyalty catalogue: rewards bought with points, and the single-use codes
(redemptions) they produce.

A VOUCHER reward embeds a voucher template; every redeemed unit mints a
private voucher from it. PRODUCT / COMBO rewards grant the scoped items
directly and their code is consumed at the counter.
"""

import enum
from sqlalchemy import (
    Column, Integer, String, BigInteger, Boolean, Text, Numeric,
    ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from config.database import Base, UTCDateTime
from common.models import AuditMixin
from common.helpers import now_utc
from modules.user.models import CustomerRank
from modules.voucher.models import ProductScope, ComboScope, VoucherDiscountType


# ==========================================
# Enums
# ==========================================

class RewardType(str, enum.Enum):
    VOUCHER = "VOUCHER"      # mints a private voucher per unit
    PRODUCT = "PRODUCT"      # free product(s) from reward_products
    COMBO = "COMBO"          # free combo(s) from reward_combos


class ValidityUnit(str, enum.Enum):
    MINUTE = "MINUTE"
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    YEAR = "YEAR"
    FOREVER = "FOREVER"


# ==========================================
# Reward
# ==========================================

class Reward(AuditMixin, Base):
    __tablename__ = "rewards"

    id = Column(Integer, primary_key=True)
    name = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String, default=RewardType.VOUCHER, nullable=False)

    # Cost & stock
    point_cost = Column(BigInteger, default=0, nullable=False)
    quantity = Column(Integer, default=0, nullable=False)
    redeemed = Column(Integer, default=0, nullable=False)
    is_quantity_unlimited = Column(Boolean, default=False, nullable=False)
    minimum_rank = Column(Integer, nullable=True)  # CustomerRank ordinal

    # Validity of each redemption
    validity_value = Column(Integer, default=30, nullable=False)
    validity_unit = Column(String, default=ValidityUnit.DAY, nullable=False)
    is_validity_unlimited = Column(Boolean, default=False, nullable=False)

    is_publish = Column(Boolean, default=True, nullable=False)

    # Voucher template (VOUCHER rewards)
    voucher_product_scope = Column(String, default=ProductScope.ALL_PRODUCTS, nullable=False)
    voucher_combo_scope = Column(String, default=ComboScope.ALL_COMBOS, nullable=False)
    voucher_discount_type = Column(String, default=VoucherDiscountType.MONEY, nullable=False)
    voucher_discount = Column(Numeric(18, 2), default=0, nullable=False)
    voucher_minimum_requirements = Column(Numeric(18, 2), default=0, nullable=False)
    voucher_unlimited_percentage_discount = Column(Boolean, default=False, nullable=False)
    voucher_maximum_percentage_reduction = Column(Numeric(18, 2), nullable=True)
    voucher_has_combined_usage_limit = Column(Boolean, default=False, nullable=False)
    voucher_max_combined_usage_count = Column(Integer, nullable=True)
    voucher_is_for_new_users_only = Column(Boolean, default=False, nullable=False)
    voucher_quantity = Column(Integer, default=1, nullable=False)

    # Relationships
    reward_products = relationship("RewardProduct", back_populates="reward", cascade="all, delete-orphan")
    reward_combos = relationship("RewardCombo", back_populates="reward", cascade="all, delete-orphan")
    redemptions = relationship("RewardRedemption", back_populates="reward")

    @property
    def product_ids(self) -> frozenset:
        return frozenset(rp.product_id for rp in self.reward_products)

    @property
    def combo_ids(self) -> frozenset:
        return frozenset(rc.combo_id for rc in self.reward_combos)

    @property
    def is_unlimited(self) -> bool:
        return bool(self.is_quantity_unlimited) or not self.quantity

    @property
    def remaining(self):
        if self.is_unlimited:
            return None
        return max(self.quantity - (self.redeemed or 0), 0)

    @property
    def minimum_customer_rank(self):
        return CustomerRank(self.minimum_rank) if self.minimum_rank is not None else None

    @property
    def grants_voucher(self) -> bool:
        return self.type == RewardType.VOUCHER

    def __repr__(self):
        return f"<Reward {self.name}>"


class RewardProduct(Base):
    __tablename__ = "reward_products"

    id = Column(Integer, primary_key=True)
    reward_id = Column(Integer, ForeignKey("rewards.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)

    reward = relationship("Reward", back_populates="reward_products")
    product = relationship("Product")

    __table_args__ = (
        UniqueConstraint("reward_id", "product_id", name="uq_reward_product"),
    )


class RewardCombo(Base):
    __tablename__ = "reward_combos"

    id = Column(Integer, primary_key=True)
    reward_id = Column(Integer, ForeignKey("rewards.id", ondelete="CASCADE"), nullable=False)
    combo_id = Column(Integer, ForeignKey("combos.id", ondelete="CASCADE"), nullable=False)

    reward = relationship("Reward", back_populates="reward_combos")
    combo = relationship("Combo")

    __table_args__ = (
        UniqueConstraint("reward_id", "combo_id", name="uq_reward_combo"),
    )


# ==========================================
# Redemption (one per redeemed unit)
# ==========================================

class RewardRedemption(AuditMixin, Base):
    __tablename__ = "reward_redemptions"

    id = Column(Integer, primary_key=True)
    reward_id = Column(Integer, ForeignKey("rewards.id", ondelete="RESTRICT"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    valid_from = Column(UTCDateTime, nullable=False)
    valid_to = Column(UTCDateTime, nullable=True)  # None = never expires
    is_used = Column(Boolean, default=False, nullable=False)
    used_at = Column(UTCDateTime, nullable=True)
    point_cost = Column(BigInteger, default=0, nullable=False)
    voucher_id = Column(Integer, ForeignKey("vouchers.id", ondelete="SET NULL"), nullable=True, index=True)
    # Set when the minted voucher was used up by an order; None when consumed by code
    used_by_order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)

    reward = relationship("Reward", back_populates="redemptions")
    user = relationship("User")
    voucher = relationship("Voucher")

    def is_consumable(self, now) -> bool:
        if self.is_used:
            return False
        return self.valid_to is None or self.valid_to >= now

    @property
    def status(self) -> str:
        if self.is_used:
            return "USED"
        if not self.is_consumable(now_utc()):
            return "EXPIRED"
        return "ACTIVE"
