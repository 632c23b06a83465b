"""
Order Module - Service Layer
===============================
Checkout from the cart, status transitions with loyalty accrual, cancellation.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session, selectinload

from common.exceptions import NotFoundError, ValidationError
from common.helpers import now_utc, round_money
from common.transaction import run_atomic
from modules.admin.permissions import AuthContext, Permission
from modules.admin.service import get_vat_percent
from modules.cart.service import cart_service
from modules.catalog.pricing import effective_price
from modules.loyalty.service import loyalty_service, AccrualResult
from modules.order.models import Order, OrderItem, OrderItemExtra, OrderStatus, PaymentMethod, PAID_STATUSES
from modules.voucher.service import voucher_service

logger = logging.getLogger("savory.order")


# Allowed status transitions
TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.COD_PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.PROCESSING, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COD_PROCESSING: {OrderStatus.COD_SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.COD_SHIPPED: {OrderStatus.COD_PAYMENT_RECEIVED, OrderStatus.CANCELLED},
    OrderStatus.COD_PAYMENT_RECEIVED: {OrderStatus.COMPLETED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}


def can_transition(current, target) -> bool:
    return OrderStatus(target) in TRANSITIONS.get(OrderStatus(current), set())


def build_order_item(item) -> OrderItem:
    """OrderItem with a full price snapshot of a cart line (name, unit price, extras)."""
    unit = cart_service.unit_price(item)
    if item.combo_id is not None:
        name = item.combo.name
    else:
        name = item.product.name
        if item.product_type is not None and not item.product_type.is_deleted:
            name = f"{name} - {item.product_type.name}"

    order_item = OrderItem(
        product_id=item.product_id,
        product_type_id=item.product_type_id if item.combo_id is None else None,
        combo_id=item.combo_id,
        quantity=item.quantity,
        name=name,
        unit_price=unit,
        line_total=round_money(unit * item.quantity),
    )
    for e in item.extras:
        if e.extra is None or e.extra.is_deleted:
            continue
        order_item.extras.append(OrderItemExtra(
            extra_id=e.extra_id,
            name=e.extra.name,
            quantity=e.quantity,
            unit_price=effective_price(e.extra),
        ))
    return order_item


class OrderService:

    # ==========================================
    # Checkout
    # ==========================================

    def checkout(self, db: Session, user_id: int, voucher_ids: Iterable[int] = (),
                 contact: Optional[dict] = None, payment_method: str = PaymentMethod.ONLINE,
                 now: Optional[datetime] = None) -> Tuple[Order, dict]:
        """
        Create a PENDING order from the user's cart:
        1. Snapshot every live cart line (prices, names, extras)
        2. Apply the chosen vouchers (same path as apply_vouchers_to_order)
        3. Compute VAT and total_bill
        4. Clear the cart
        All in one transaction. Returns (order, voucher result).
        """
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError({"payment_method": f"invalid value '{payment_method}'"})
        contact = contact or {}
        requested = list(voucher_ids or [])

        def operation(session: Session) -> Tuple[Order, dict]:
            at = now or now_utc()
            lines = [i for i in cart_service.get_cart_items(session, user_id) if cart_service.is_available(i)]
            if not lines:
                raise ValidationError({"cart": "the cart is empty"})

            order = Order(
                user_id=user_id,
                status=OrderStatus.PENDING,
                payment_method=method,
                full_name=contact.get("full_name"),
                phone=contact.get("phone"),
                address=contact.get("address"),
                note=contact.get("note"),
                created_at=at,
            )
            for item in lines:
                order.items.append(build_order_item(item))
            session.add(order)
            session.flush()

            voucher_result = voucher_service.apply_to_locked_order(session, order, requested, at)
            cart_service.clear_cart(session, user_id)

            logger.info(
                f"Order #{order.id} created for user #{user_id}: "
                f"price={order.total_price} discount={order.discount} bill={order.total_bill}"
            )
            return order, voucher_result

        return run_atomic(db, operation, label=f"checkout user#{user_id}")

    # ==========================================
    # Status
    # ==========================================

    def change_status(self, db: Session, auth: AuthContext, order_id: int, new_status: str,
                      reason: Optional[str] = None, now: Optional[datetime] = None) -> Tuple[Order, Optional[AccrualResult]]:
        """
        Move an order along TRANSITIONS. Entering a paid status credits the
        customer's loyalty in the same transaction; cancelling a pending order
        gives back its voucher usages.
        """
        auth.require(Permission.ORDER_CHANGE_STATUS_ALL)
        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise ValidationError({"status": f"invalid value '{new_status}'"})

        def operation(session: Session):
            at = now or now_utc()
            order = session.query(Order).filter(Order.id == order_id).with_for_update().first()
            if not order:
                raise NotFoundError(f"Order {order_id} not found")
            current = OrderStatus(order.status)
            if not can_transition(current, target):
                raise ValidationError({"status": f"cannot move from {current.value} to {target.value}"})

            if target == OrderStatus.CANCELLED:
                self._cancel_locked(session, order, reason, at)
            else:
                order.status = target
                if target in PAID_STATUSES and order.paid_at is None:
                    order.paid_at = at
                if target == OrderStatus.COMPLETED:
                    order.completed_at = at
            order.updated_at = at
            session.flush()

            accrual = loyalty_service.accrue_locked(session, order) if target in PAID_STATUSES else None
            logger.info(f"Order #{order.id}: {current.value} -> {target.value} by user {auth.user_id}")
            return order, accrual

        return run_atomic(db, operation, label=f"status order#{order_id}")

    def cancel_by_customer(self, db: Session, user_id: int, order_id: int, now: Optional[datetime] = None) -> Order:
        """Customers may cancel their own orders while still pending."""

        def operation(session: Session) -> Order:
            order = session.query(Order).filter(
                Order.id == order_id, Order.user_id == user_id,
            ).with_for_update().first()
            if not order:
                raise NotFoundError(f"Order {order_id} not found")
            if not order.is_modifiable:
                raise ValidationError({"status": "only pending orders can be cancelled"})
            at = now or now_utc()
            self._cancel_locked(session, order, "cancelled by customer", at)
            order.updated_at = at
            session.flush()
            logger.info(f"Order #{order.id} cancelled by customer #{user_id}")
            return order

        return run_atomic(db, operation, label=f"cancel order#{order_id}")

    def _cancel_locked(self, db: Session, order: Order, reason: Optional[str], at: datetime):
        if order.status == OrderStatus.PENDING:
            released = voucher_service.release_order_vouchers(db, order)
            if released:
                order.recalculate_totals(get_vat_percent(db))
                logger.info(f"Order #{order.id}: released {released} voucher usage(s)")
        order.status = OrderStatus.CANCELLED
        order.cancelled_at = at
        order.cancellation_reason = reason

    # ==========================================
    # Queries
    # ==========================================

    def get_order(self, db: Session, order_id: int, user_id: Optional[int] = None) -> Order:
        q = db.query(Order).options(
            selectinload(Order.items).selectinload(OrderItem.extras),
            selectinload(Order.order_vouchers),
        ).filter(Order.id == order_id)
        if user_id is not None:
            q = q.filter(Order.user_id == user_id)
        order = q.first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def get_user_orders(self, db: Session, user_id: int) -> List[Order]:
        return db.query(Order).filter(Order.user_id == user_id).order_by(Order.id.desc()).all()

    def list_orders(self, db: Session, auth: AuthContext, status: Optional[str] = None,
                    limit: int = 50, offset: int = 0) -> List[Order]:
        auth.require(Permission.ORDER_VIEW_ALL)
        q = db.query(Order)
        if status:
            q = q.filter(Order.status == status)
        return q.order_by(Order.id.desc()).offset(offset).limit(limit).all()


# Singleton
order_service = OrderService()
