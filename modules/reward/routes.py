"""
Reward Routes - Customer Facing
=================================
Loyalty catalogue, point redemption and redemption-code consumption.

Endpoints:
  GET  /api/rewards                        - catalogue + loyalty summary + my redemptions
  POST /api/rewards/{id}/redeem            - spend points on a reward
  POST /api/rewards/redemptions/consume    - mark one of my redemption codes used
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from common.helpers import money_json
from modules.auth.deps import require_login
from modules.loyalty.service import loyalty_service
from modules.reward.models import Reward, RewardRedemption
from modules.reward.service import reward_service

router = APIRouter(prefix="/api/rewards", tags=["rewards"])


class RedeemIn(BaseModel):
    quantity: int = Field(1, ge=1)


class ConsumeIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)


def reward_card(reward: Reward) -> dict:
    return {
        "id": reward.id,
        "name": reward.name,
        "description": reward.description,
        "type": reward.type,
        "point_cost": reward.point_cost,
        "remaining": reward.remaining,
        "minimum_rank": reward.minimum_customer_rank.name if reward.minimum_rank is not None else None,
        "validity_value": reward.validity_value,
        "validity_unit": reward.validity_unit,
        "is_validity_unlimited": reward.is_validity_unlimited,
        "voucher_discount_type": reward.voucher_discount_type if reward.grants_voucher else None,
        "voucher_discount": money_json(reward.voucher_discount) if reward.grants_voucher else None,
    }


def redemption_to_dict(redemption: RewardRedemption) -> dict:
    return {
        "id": redemption.id,
        "reward_id": redemption.reward_id,
        "reward_name": redemption.reward.name if redemption.reward else None,
        "code": redemption.code,
        "status": redemption.status,
        "valid_from": redemption.valid_from.isoformat() if redemption.valid_from else None,
        "valid_to": redemption.valid_to.isoformat() if redemption.valid_to else None,
        "used_at": redemption.used_at.isoformat() if redemption.used_at else None,
        "point_cost": redemption.point_cost,
        "voucher_id": redemption.voucher_id,
    }


@router.get("")
def reward_catalogue(
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    return {
        "loyalty": loyalty_service.summary(db, me),
        "rewards": [reward_card(r) for r in reward_service.catalogue(db, me)],
        "redemptions": [redemption_to_dict(r) for r in reward_service.list_redemptions(db, me.id)],
    }


@router.post("/{reward_id}/redeem")
def redeem(
    reward_id: int,
    body: RedeemIn,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    result = reward_service.redeem_reward(db, me.id, reward_id, body.quantity)
    return result.to_dict()


@router.post("/redemptions/consume")
def consume(
    body: ConsumeIn,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    outcome = reward_service.consume_redemption(db, body.code, user_id=me.id)
    reason = outcome.get("reason")
    return {
        "success": outcome["success"],
        "reason": reason.value if reason else None,
        "message": reason.message if reason else None,
        "redemption_id": outcome.get("redemption_id"),
        "used_at": outcome["used_at"].isoformat() if outcome.get("used_at") else None,
    }
