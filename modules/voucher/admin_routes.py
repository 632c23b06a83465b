"""
Voucher Admin Routes
=====================
JSON CRUD for vouchers. Permission keys are checked twice: the static key
at the route (require_permission), own-vs-all inside the admin service.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from common.helpers import money_json
from modules.auth.deps import require_permission
from modules.admin.permissions import AuthContext, Permission
from modules.voucher.admin_service import voucher_admin_service
from modules.voucher.models import Voucher

router = APIRouter(prefix="/admin/api/vouchers", tags=["admin-voucher"])


# ==========================================
# Schemas
# ==========================================

class VoucherIn(BaseModel):
    code: str = Field(..., max_length=100)
    name: str = Field(..., max_length=300)
    description: str = ""
    type: str = "PUBLIC"
    product_scope: str = "ALL_PRODUCTS"
    combo_scope: str = "ALL_COMBOS"
    product_ids: List[int] = []
    combo_ids: List[int] = []
    user_id: Optional[int] = None
    grant_user_ids: List[int] = []
    discount_type: str = "MONEY"
    discount: Decimal = Field(Decimal("0"), ge=0)
    unlimited_percentage_discount: bool = False
    maximum_percentage_reduction: Optional[Decimal] = None
    quantity: int = Field(0, ge=0)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_lifetime: bool = False
    minimum_requirements: Decimal = Field(Decimal("0"), ge=0)
    has_combined_usage_limit: bool = False
    max_combined_usage_count: Optional[int] = None
    is_for_new_users_only: bool = False
    minimum_rank: Optional[str] = None
    is_publish: bool = True
    is_show: bool = True


def voucher_to_dict(voucher: Voucher) -> dict:
    return {
        "id": voucher.id,
        "code": voucher.code,
        "name": voucher.name,
        "description": voucher.description,
        "type": voucher.type,
        "product_scope": voucher.product_scope,
        "combo_scope": voucher.combo_scope,
        "product_ids": sorted(voucher.product_ids),
        "combo_ids": sorted(voucher.combo_ids),
        "user_id": voucher.user_id,
        "discount_type": voucher.discount_type,
        "discount": money_json(voucher.discount),
        "unlimited_percentage_discount": voucher.unlimited_percentage_discount,
        "maximum_percentage_reduction": (
            money_json(voucher.maximum_percentage_reduction)
            if voucher.maximum_percentage_reduction is not None else None
        ),
        "used": voucher.used,
        "quantity": voucher.quantity,
        "start_time": voucher.start_time.isoformat() if voucher.start_time else None,
        "end_time": voucher.end_time.isoformat() if voucher.end_time else None,
        "is_lifetime": voucher.is_lifetime,
        "minimum_requirements": money_json(voucher.minimum_requirements),
        "has_combined_usage_limit": voucher.has_combined_usage_limit,
        "max_combined_usage_count": voucher.max_combined_usage_count,
        "is_for_new_users_only": voucher.is_for_new_users_only,
        "minimum_rank": voucher.minimum_customer_rank.name if voucher.minimum_rank is not None else None,
        "is_publish": voucher.is_publish,
        "is_show": voucher.is_show,
        "create_by": voucher.create_by,
    }


# ==========================================
# 📋 List / Detail
# ==========================================

@router.get("")
def voucher_list(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.VOUCHER_VIEW)),
):
    return {"vouchers": [voucher_to_dict(v) for v in voucher_admin_service.list_vouchers(db, auth)]}


@router.get("/{voucher_id}")
def voucher_detail(
    voucher_id: int,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.VOUCHER_VIEW)),
):
    voucher = voucher_admin_service.get_voucher(db, voucher_id)
    auth.require_on(Permission.VOUCHER_VIEW, voucher.create_by)
    return voucher_to_dict(voucher)


# ==========================================
# ➕ Create / ✏️ Update / 🗑️ Delete
# ==========================================

@router.post("", status_code=201)
def voucher_create(
    body: VoucherIn,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.VOUCHER_CREATE)),
):
    voucher = voucher_admin_service.create_voucher(db, auth, body.model_dump())
    db.commit()
    db.refresh(voucher)
    return voucher_to_dict(voucher)


@router.put("/{voucher_id}")
def voucher_update(
    voucher_id: int,
    body: VoucherIn,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.VOUCHER_UPDATE)),
):
    voucher = voucher_admin_service.update_voucher(db, auth, voucher_id, body.model_dump())
    db.commit()
    db.refresh(voucher)
    return voucher_to_dict(voucher)


@router.delete("/{voucher_id}")
def voucher_delete(
    voucher_id: int,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.VOUCHER_DELETE)),
):
    voucher_admin_service.delete_voucher(db, auth, voucher_id)
    db.commit()
    return {"success": True, "id": voucher_id}
