"""
Cart Routes
=============
View the cart (priced from live catalog data), add lines, change quantities.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from common.helpers import money_json
from modules.auth.deps import require_login
from modules.cart.service import cart_service

router = APIRouter(prefix="/api/cart", tags=["cart"])


class ExtraIn(BaseModel):
    extra_id: int
    quantity: int = Field(1, ge=1)


class AddItemIn(BaseModel):
    product_id: Optional[int] = None
    combo_id: Optional[int] = None
    product_type_id: Optional[int] = None
    extras: List[ExtraIn] = []
    quantity: int = Field(1, ge=1)


class QuantityIn(BaseModel):
    quantity: int


def _cart_payload(db: Session, user_id: int) -> dict:
    items = cart_service.get_cart_items(db, user_id)
    snapshot = cart_service.build_snapshot(db, user_id)
    prices = {line.line_id: line for line in snapshot.lines}
    return {
        "items": [
            {
                "id": item.id,
                "product_id": item.product_id,
                "product_type_id": item.product_type_id,
                "combo_id": item.combo_id,
                "quantity": item.quantity,
                "extras": [{"extra_id": e.extra_id, "quantity": e.quantity} for e in item.extras],
                "unit_price": money_json(prices[item.id].unit_price) if item.id in prices else None,
                "line_total": money_json(prices[item.id].line_total) if item.id in prices else None,
                "available": item.id in prices,
            }
            for item in items
        ],
        "total": money_json(snapshot.total),
        "cart_count": snapshot.total_quantity,
    }


@router.get("")
def view_cart(
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    return _cart_payload(db, me.id)


@router.post("/items", status_code=201)
def add_item(
    body: AddItemIn,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    cart_service.add_item(
        db, me.id,
        product_id=body.product_id,
        combo_id=body.combo_id,
        product_type_id=body.product_type_id,
        extras=[(e.extra_id, e.quantity) for e in body.extras],
        quantity=body.quantity,
    )
    db.commit()
    return _cart_payload(db, me.id)


@router.patch("/items/{item_id}")
def update_item(
    item_id: int,
    body: QuantityIn,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    cart_service.update_quantity(db, me.id, item_id, body.quantity)
    db.commit()
    return _cart_payload(db, me.id)
