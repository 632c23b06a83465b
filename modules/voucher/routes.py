"""
Voucher Routes - Customer Facing
==================================
JSON API for the checkout voucher picker, the public voucher board,
bookmarks and "my vouchers".

Endpoints:
  GET    /api/vouchers/checkout-options   - vouchers for the current cart, with potential discount
  GET    /api/vouchers/public             - public board (login optional)
  POST   /api/vouchers/{id}/save          - bookmark a public voucher
  DELETE /api/vouchers/{id}/save          - remove the bookmark
  GET    /api/vouchers/mine               - private + saved vouchers
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from config.database import get_db
from common.helpers import money_json
from modules.auth.deps import require_login, get_current_active_user
from modules.cart.service import cart_service
from modules.voucher.service import voucher_service

router = APIRouter(prefix="/api/vouchers", tags=["vouchers"])


@router.get("/checkout-options")
def checkout_options(
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    """Vouchers the customer can pick for the current cart, grouped PRIVATE / SAVED / PUBLIC."""
    cart = cart_service.build_snapshot(db, me.id)
    options = voucher_service.get_applicable_vouchers(db, me.id, cart)
    return {
        "cart_total": money_json(cart.total),
        "cart_empty": cart.is_empty,
        "options": [o.to_dict() for o in options],
    }


@router.get("/public")
def public_vouchers(
    db: Session = Depends(get_db),
    me=Depends(get_current_active_user),
):
    return {"vouchers": voucher_service.list_public(db, me.id if me else None)}


@router.post("/{voucher_id}/save")
def save_voucher(
    voucher_id: int,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    voucher_service.save_voucher(db, me.id, voucher_id)
    db.commit()
    return {"success": True, "voucher_id": voucher_id, "is_saved": True}


@router.delete("/{voucher_id}/save")
def unsave_voucher(
    voucher_id: int,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    removed = voucher_service.unsave_voucher(db, me.id, voucher_id)
    db.commit()
    return {"success": removed, "voucher_id": voucher_id, "is_saved": False}


@router.get("/mine")
def my_vouchers(
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    return voucher_service.my_vouchers(db, me.id)
