"""
Order Module - Customer Routes
================================
Checkout, voucher (re)application on a pending order, my orders, cancel.

Endpoints:
  POST /api/orders/checkout            - create a pending order from the cart
  GET  /api/orders                     - my orders
  GET  /api/orders/{id}                - order detail
  POST /api/orders/{id}/vouchers       - replace the vouchers on a pending order
  POST /api/orders/{id}/cancel         - cancel a pending order
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from common.helpers import money_json
from modules.auth.deps import require_login
from modules.order.models import Order, PaymentMethod
from modules.order.service import order_service
from modules.voucher.service import voucher_service

router = APIRouter(prefix="/api/orders", tags=["orders"])


class CheckoutIn(BaseModel):
    voucher_ids: List[int] = []
    payment_method: str = PaymentMethod.ONLINE.value
    full_name: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    note: Optional[str] = None


class ApplyVouchersIn(BaseModel):
    voucher_ids: List[int] = []


def order_to_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "user_id": order.user_id,
        "status": order.status,
        "status_label": order.status_label,
        "payment_method": order.payment_method,
        "total_quantity": order.total_quantity,
        "total_price": money_json(order.total_price),
        "discount": money_json(order.discount),
        "vat": money_json(order.vat),
        "total_bill": money_json(order.total_bill),
        "voucher_id": order.voucher_id,
        "vouchers": [
            {"voucher_id": ov.voucher_id, "discount_amount": money_json(ov.discount_amount)}
            for ov in order.order_vouchers
        ],
        "items": [
            {
                "id": item.id,
                "product_id": item.product_id,
                "product_type_id": item.product_type_id,
                "combo_id": item.combo_id,
                "name": item.name,
                "quantity": item.quantity,
                "unit_price": money_json(item.unit_price),
                "line_total": money_json(item.line_total),
                "extras": [
                    {"extra_id": e.extra_id, "name": e.name, "quantity": e.quantity,
                     "unit_price": money_json(e.unit_price)}
                    for e in item.extras
                ],
            }
            for item in order.items
        ],
        "loyalty_rewards_applied": order.loyalty_rewards_applied,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "paid_at": order.paid_at.isoformat() if order.paid_at else None,
        "cancelled_at": order.cancelled_at.isoformat() if order.cancelled_at else None,
    }


def voucher_result_to_dict(result: dict) -> dict:
    """JSON form of an apply-vouchers result (Decimal -> string, reasons -> their value)."""
    reason = result.get("reason")
    total = result.get("new_order_total")
    return {
        "success": result["success"],
        "reason": reason.value if reason else None,
        "applied_discounts": [
            {**a, "discount_amount": money_json(a["discount_amount"])}
            for a in result["applied_discounts"]
        ],
        "rejected": [
            {"voucher_id": r["voucher_id"], "reason": r["reason"].value, "message": r["reason"].message}
            for r in result["rejected"]
        ],
        "new_order_total": money_json(total) if total is not None else None,
    }


@router.post("/checkout", status_code=201)
def checkout(
    body: CheckoutIn,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    contact = body.model_dump(include={"full_name", "phone", "address", "note"})
    order, voucher_result = order_service.checkout(
        db, me.id, body.voucher_ids, contact=contact, payment_method=body.payment_method,
    )
    db.refresh(order)
    return {"order": order_to_dict(order), "vouchers": voucher_result_to_dict(voucher_result)}


@router.get("")
def my_orders(
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    return {"orders": [order_to_dict(o) for o in order_service.get_user_orders(db, me.id)]}


@router.get("/{order_id}")
def order_detail(
    order_id: int,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    return order_to_dict(order_service.get_order(db, order_id, user_id=me.id))


@router.post("/{order_id}/vouchers")
def apply_vouchers(
    order_id: int,
    body: ApplyVouchersIn,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    result = voucher_service.apply_vouchers_to_order(db, order_id, body.voucher_ids, me.id)
    return voucher_result_to_dict(result)


@router.post("/{order_id}/cancel")
def cancel_order(
    order_id: int,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    order = order_service.cancel_by_customer(db, me.id, order_id)
    db.refresh(order)
    return order_to_dict(order)
