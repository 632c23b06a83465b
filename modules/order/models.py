"""
Order Module - Models
======================
Order with full price snapshot per item, applied vouchers and the loyalty
accrual guard.
"""

import enum
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, Text,
    ForeignKey, CheckConstraint, text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base, UTCDateTime
from common.helpers import now_utc, round_money, to_decimal
from modules.cart.snapshot import CartSnapshot, LineItem, LineKind


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    PROCESSING = "PROCESSING"
    COD_PROCESSING = "COD_PROCESSING"
    COD_SHIPPED = "COD_SHIPPED"
    COD_PAYMENT_RECEIVED = "COD_PAYMENT_RECEIVED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, enum.Enum):
    ONLINE = "ONLINE"
    COD = "COD"       # cash on delivery


# Statuses in which the customer has paid: loyalty is credited on entering one
PAID_STATUSES = frozenset({
    OrderStatus.PAID,
    OrderStatus.COD_PAYMENT_RECEIVED,
    OrderStatus.COMPLETED,
})


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    status = Column(String, default=OrderStatus.PENDING, nullable=False, index=True)
    payment_method = Column(String, default=PaymentMethod.ONLINE, nullable=False)

    # Contact
    full_name = Column(String(200), nullable=True)
    phone = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    note = Column(Text, nullable=True)

    # Totals
    total_quantity = Column(Integer, default=0, nullable=False)
    total_price = Column(Numeric(18, 2), default=0, nullable=False)   # sum of line totals
    discount = Column(Numeric(18, 2), default=0, nullable=False)      # sum of voucher discounts
    vat = Column(Numeric(18, 2), default=0, nullable=False)
    total_bill = Column(Numeric(18, 2), default=0, nullable=False)    # price - discount + vat

    # Primary applied voucher (first accepted)
    voucher_id = Column(Integer, ForeignKey("vouchers.id", ondelete="SET NULL"), nullable=True)

    loyalty_rewards_applied = Column(Boolean, server_default=text("false"), default=False, nullable=False)

    created_at = Column(UTCDateTime, server_default=func.now(), default=now_utc, nullable=False)
    updated_at = Column(UTCDateTime, onupdate=now_utc, nullable=True)
    paid_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    cancellation_reason = Column(String, nullable=True)

    # Relationships
    user = relationship("User", foreign_keys=[user_id])
    voucher = relationship("Voucher", foreign_keys=[voucher_id])
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")
    order_vouchers = relationship("OrderVoucher", back_populates="order", cascade="all, delete-orphan")

    @property
    def status_label(self) -> str:
        labels = {
            OrderStatus.PENDING: "Pending",
            OrderStatus.PAID: "Paid",
            OrderStatus.PROCESSING: "Processing",
            OrderStatus.COD_PROCESSING: "Processing (cash on delivery)",
            OrderStatus.COD_SHIPPED: "Shipped (cash on delivery)",
            OrderStatus.COD_PAYMENT_RECEIVED: "Payment received",
            OrderStatus.COMPLETED: "Completed",
            OrderStatus.CANCELLED: "Cancelled",
        }
        return labels.get(self.status, self.status)

    @property
    def is_modifiable(self) -> bool:
        return self.status == OrderStatus.PENDING

    def recalculate_totals(self, vat_percent) -> None:
        """total_bill = (total_price - discount) + VAT on the discounted amount."""
        price = round_money(sum((Decimal(i.line_total) for i in self.items), Decimal("0")))
        discount = min(round_money(self.discount or 0), price)
        vat = round_money((price - discount) * to_decimal(vat_percent) / Decimal(100))
        self.total_quantity = sum(i.quantity for i in self.items)
        self.total_price = price
        self.discount = discount
        self.vat = vat
        self.total_bill = price - discount + vat

    def to_snapshot(self) -> CartSnapshot:
        """Realised lines of this order as a CartSnapshot."""
        lines = []
        for item in self.items:
            kind = LineKind.COMBO if item.combo_id is not None else LineKind.PRODUCT
            item_id = item.combo_id if item.combo_id is not None else item.product_id
            lines.append(LineItem(kind, item_id, Decimal(item.unit_price), item.quantity, item.id))
        return CartSnapshot(lines=tuple(lines))


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=True)
    product_type_id = Column(Integer, ForeignKey("product_types.id", ondelete="SET NULL"), nullable=True)
    combo_id = Column(Integer, ForeignKey("combos.id", ondelete="RESTRICT"), nullable=True)
    quantity = Column(Integer, default=1, nullable=False)

    # Price snapshot at time of purchase
    name = Column(String(500), nullable=False)
    unit_price = Column(Numeric(18, 2), nullable=False)   # incl. product type and extras
    line_total = Column(Numeric(18, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
    product_type = relationship("ProductType")
    combo = relationship("Combo")
    extras = relationship("OrderItemExtra", back_populates="order_item", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_item_qty"),
    )


class OrderItemExtra(Base):
    __tablename__ = "order_item_extras"

    id = Column(Integer, primary_key=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False)
    extra_id = Column(Integer, ForeignKey("product_extras.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(200), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    unit_price = Column(Numeric(18, 2), nullable=False)

    order_item = relationship("OrderItem", back_populates="extras")
    extra = relationship("ProductExtra")
