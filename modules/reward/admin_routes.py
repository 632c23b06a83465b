"""
Reward Admin Routes
====================
JSON CRUD for loyalty rewards and their voucher templates.
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from common.helpers import money_json
from modules.auth.deps import require_permission
from modules.admin.permissions import AuthContext, Permission
from modules.reward.admin_service import reward_admin_service
from modules.reward.models import Reward

router = APIRouter(prefix="/admin/api/rewards", tags=["admin-reward"])


class RewardIn(BaseModel):
    name: str = Field(..., max_length=300)
    description: str = ""
    type: str = "VOUCHER"
    point_cost: int = Field(0, ge=0)
    quantity: int = Field(0, ge=0)
    is_quantity_unlimited: bool = False
    minimum_rank: Optional[str] = None
    validity_value: int = 30
    validity_unit: str = "DAY"
    is_validity_unlimited: bool = False
    is_publish: bool = True
    product_ids: List[int] = []
    combo_ids: List[int] = []

    voucher_product_scope: str = "ALL_PRODUCTS"
    voucher_combo_scope: str = "ALL_COMBOS"
    voucher_discount_type: str = "MONEY"
    voucher_discount: Decimal = Decimal("0")
    voucher_unlimited_percentage_discount: bool = False
    voucher_maximum_percentage_reduction: Optional[Decimal] = None
    voucher_minimum_requirements: Decimal = Decimal("0")
    voucher_has_combined_usage_limit: bool = False
    voucher_max_combined_usage_count: Optional[int] = None
    voucher_is_for_new_users_only: bool = False
    voucher_quantity: int = 1


def reward_to_dict(reward: Reward) -> dict:
    return {
        "id": reward.id,
        "name": reward.name,
        "description": reward.description,
        "type": reward.type,
        "point_cost": reward.point_cost,
        "quantity": reward.quantity,
        "redeemed": reward.redeemed,
        "is_quantity_unlimited": reward.is_quantity_unlimited,
        "minimum_rank": reward.minimum_customer_rank.name if reward.minimum_rank is not None else None,
        "validity_value": reward.validity_value,
        "validity_unit": reward.validity_unit,
        "is_validity_unlimited": reward.is_validity_unlimited,
        "is_publish": reward.is_publish,
        "product_ids": sorted(reward.product_ids),
        "combo_ids": sorted(reward.combo_ids),
        "voucher_product_scope": reward.voucher_product_scope,
        "voucher_combo_scope": reward.voucher_combo_scope,
        "voucher_discount_type": reward.voucher_discount_type,
        "voucher_discount": money_json(reward.voucher_discount),
        "voucher_unlimited_percentage_discount": reward.voucher_unlimited_percentage_discount,
        "voucher_maximum_percentage_reduction": (
            money_json(reward.voucher_maximum_percentage_reduction)
            if reward.voucher_maximum_percentage_reduction is not None else None
        ),
        "voucher_minimum_requirements": money_json(reward.voucher_minimum_requirements),
        "voucher_has_combined_usage_limit": reward.voucher_has_combined_usage_limit,
        "voucher_max_combined_usage_count": reward.voucher_max_combined_usage_count,
        "voucher_is_for_new_users_only": reward.voucher_is_for_new_users_only,
        "voucher_quantity": reward.voucher_quantity,
        "create_by": reward.create_by,
    }


@router.get("")
def reward_list(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.REWARD_VIEW)),
):
    return {"rewards": [reward_to_dict(r) for r in reward_admin_service.list_rewards(db, auth)]}


@router.get("/{reward_id}")
def reward_detail(
    reward_id: int,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.REWARD_VIEW)),
):
    return reward_to_dict(reward_admin_service.get_reward(db, reward_id))


@router.post("", status_code=201)
def reward_create(
    body: RewardIn,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.REWARD_CREATE)),
):
    reward = reward_admin_service.create_reward(db, auth, body.model_dump())
    db.commit()
    db.refresh(reward)
    return reward_to_dict(reward)


@router.put("/{reward_id}")
def reward_update(
    reward_id: int,
    body: RewardIn,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.REWARD_UPDATE)),
):
    reward = reward_admin_service.update_reward(db, auth, reward_id, body.model_dump())
    db.commit()
    db.refresh(reward)
    return reward_to_dict(reward)


@router.delete("/{reward_id}")
def reward_delete(
    reward_id: int,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.REWARD_DELETE)),
):
    reward_admin_service.delete_reward(db, auth, reward_id)
    db.commit()
    return {"success": True, "id": reward_id}
