"""
Order Module - Admin Routes
==============================
Order list, status transitions (loyalty is credited on entering a paid
status) and explicit loyalty accrual.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_permission
from modules.admin.permissions import AuthContext, Permission
from modules.loyalty.service import loyalty_service
from modules.order.routes import order_to_dict
from modules.order.service import order_service

router = APIRouter(prefix="/admin/api/orders", tags=["admin-order"])


class StatusIn(BaseModel):
    status: str
    reason: Optional[str] = None


@router.get("")
def admin_orders(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.ORDER_VIEW_ALL)),
):
    orders = order_service.list_orders(db, auth, status=status, limit=limit, offset=offset)
    return {"orders": [order_to_dict(o) for o in orders]}


@router.get("/{order_id}")
def admin_order_detail(
    order_id: int,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.ORDER_VIEW_ALL)),
):
    return order_to_dict(order_service.get_order(db, order_id))


@router.post("/{order_id}/status")
def change_status(
    order_id: int,
    body: StatusIn,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.ORDER_CHANGE_STATUS_ALL)),
):
    order, accrual = order_service.change_status(db, auth, order_id, body.status, reason=body.reason)
    db.refresh(order)
    return {
        "order": order_to_dict(order),
        "loyalty": accrual.to_dict() if accrual else None,
    }


@router.post("/{order_id}/loyalty")
def accrue_loyalty(
    order_id: int,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.ORDER_CHANGE_STATUS_ALL)),
):
    return loyalty_service.accrue_loyalty(db, order_id).to_dict()
