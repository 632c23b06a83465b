"""
Reward Service
================
Customer catalogue, point redemption and code consumption.

Redemption (one transaction, retried on conflict):
  1. Reward exists, is published and not deleted
  2. Customer rank >= reward.minimum_rank
  3. Stock: redeemed + quantity <= reward.quantity (unless unlimited)
  4. Points: user.point >= point_cost * quantity
  5. Guarded point debit and `redeemed` increment
  6. One unique code per unit (valid_from = now, valid_to = now + validity)
  7. VOUCHER rewards: mint a private voucher per unit from the template
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from config.settings import REDEMPTION_CODE_PREFIX, REDEMPTION_CODE_LENGTH, MAX_REDEEM_QUANTITY
from common.exceptions import ValidationError
from common.helpers import now_utc, generate_code
from common.models import active
from common.transaction import run_atomic, guarded_update
from modules.reward.models import Reward, RewardRedemption, ValidityUnit
from modules.user.models import User, CustomerRank
from modules.voucher.eligibility import DenialReason
from modules.voucher.models import (
    Voucher, VoucherProduct, VoucherCombo, VoucherType, VoucherDiscountType,
)

logger = logging.getLogger("savory.reward")


def compute_expiry(start: datetime, validity_value: int, validity_unit, is_unlimited: bool) -> Optional[datetime]:
    """End of a redemption's validity window; None when it never expires."""
    unit = ValidityUnit(validity_unit)
    if is_unlimited or unit == ValidityUnit.FOREVER:
        return None
    value = max(int(validity_value or 0), 1)
    if unit == ValidityUnit.MINUTE:
        return start + relativedelta(minutes=value)
    if unit == ValidityUnit.WEEK:
        return start + relativedelta(weeks=value)
    if unit == ValidityUnit.MONTH:
        return start + relativedelta(months=value)
    if unit == ValidityUnit.YEAR:
        return start + relativedelta(years=value)
    return start + relativedelta(days=value)


@dataclass
class RedemptionResult:
    success: bool
    reason: Optional[DenialReason] = None
    redemptions: List[RewardRedemption] = field(default_factory=list)
    vouchers: List[Voucher] = field(default_factory=list)
    points_spent: int = 0
    remaining_points: Optional[int] = None

    @property
    def redemption_codes(self) -> List[str]:
        return [r.code for r in self.redemptions]

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "reason": self.reason.value if self.reason else None,
            "message": self.reason.message if self.reason else None,
            "redemption_codes": self.redemption_codes,
            "voucher_ids": [v.id for v in self.vouchers],
            "valid_to": (
                self.redemptions[0].valid_to.isoformat()
                if self.redemptions and self.redemptions[0].valid_to else None
            ),
            "points_spent": self.points_spent,
            "remaining_points": self.remaining_points,
        }


class RewardService:

    # ------------------------------------------
    # Catalogue
    # ------------------------------------------

    def catalogue(self, db: Session, user: User) -> List[Reward]:
        """Published rewards the customer's rank can reach and that are still in stock, cheapest first."""
        rank = int(user.customer_rank)
        rewards = (
            active(db.query(Reward), Reward)
            .filter(
                Reward.is_publish == True,  # noqa: E712
                or_(Reward.minimum_rank.is_(None), Reward.minimum_rank <= rank),
                or_(
                    Reward.is_quantity_unlimited == True,  # noqa: E712
                    Reward.quantity == 0,
                    Reward.redeemed < Reward.quantity,
                ),
            )
            .order_by(Reward.point_cost, Reward.id)
            .all()
        )
        return rewards

    def list_redemptions(self, db: Session, user_id: int) -> List[RewardRedemption]:
        return (
            active(db.query(RewardRedemption), RewardRedemption)
            .options(selectinload(RewardRedemption.reward))
            .filter(RewardRedemption.user_id == user_id)
            .order_by(RewardRedemption.id.desc())
            .all()
        )

    # ------------------------------------------
    # Redeem
    # ------------------------------------------

    def redeem_reward(self, db: Session, user_id: int, reward_id: int, quantity: int = 1,
                      now: Optional[datetime] = None) -> RedemptionResult:
        if quantity < 1 or quantity > MAX_REDEEM_QUANTITY:
            raise ValidationError({"quantity": f"must be between 1 and {MAX_REDEEM_QUANTITY}"})

        def operation(session: Session) -> RedemptionResult:
            return self._redeem(session, user_id, reward_id, quantity, now or now_utc())

        return run_atomic(db, operation, label=f"redeem reward#{reward_id} user#{user_id}")

    def _redeem(self, db: Session, user_id: int, reward_id: int, quantity: int, now: datetime) -> RedemptionResult:
        reward = (
            active(db.query(Reward), Reward)
            .filter(Reward.id == reward_id)
            .with_for_update()
            .first()
        )
        if not reward or not reward.is_publish:
            return RedemptionResult(False, DenialReason.REWARD_UNAVAILABLE)

        user = db.query(User).filter(User.id == user_id).with_for_update().first()
        if not user:
            return RedemptionResult(False, DenialReason.REWARD_UNAVAILABLE)

        if reward.minimum_rank is not None and user.customer_rank < CustomerRank(reward.minimum_rank):
            return RedemptionResult(False, DenialReason.RANK_TOO_LOW, remaining_points=user.point)

        if not reward.is_unlimited and (reward.redeemed or 0) + quantity > reward.quantity:
            return RedemptionResult(False, DenialReason.REWARD_EXHAUSTED, remaining_points=user.point)

        total_cost = int(reward.point_cost or 0) * quantity
        if (user.point or 0) < total_cost:
            return RedemptionResult(False, DenialReason.INSUFFICIENT_POINTS, remaining_points=user.point)

        # Counters: guarded so a concurrent redemption cannot overrun stock or points
        guarded_update(db, user, {"point": User.point - total_cost}, User.point >= total_cost)
        if reward.is_unlimited:
            guarded_update(db, reward, {"redeemed": Reward.redeemed + quantity})
        else:
            guarded_update(db, reward, {"redeemed": Reward.redeemed + quantity},
                           Reward.redeemed + quantity <= Reward.quantity)

        valid_to = compute_expiry(now, reward.validity_value, reward.validity_unit, reward.is_validity_unlimited)
        result = RedemptionResult(True, points_spent=total_cost)
        reserved = set()

        for _ in range(quantity):
            code = self._new_code(db, reserved)
            voucher = self._mint_voucher(reward, user, code, now, valid_to) if reward.grants_voucher else None
            redemption = RewardRedemption(
                reward_id=reward.id,
                user_id=user.id,
                code=code,
                valid_from=now,
                valid_to=valid_to,
                is_used=False,
                point_cost=reward.point_cost,
                voucher=voucher,
                create_by=str(user.id),
            )
            if voucher is not None:
                db.add(voucher)
                result.vouchers.append(voucher)
            db.add(redemption)
            result.redemptions.append(redemption)

        db.flush()
        result.remaining_points = user.point
        logger.info(
            f"User #{user.id} redeemed reward #{reward.id} x{quantity} "
            f"for {total_cost} points: {result.redemption_codes}"
        )
        return result

    def _new_code(self, db: Session, reserved: set, max_retries: int = 10) -> str:
        """Code unique across redemptions and vouchers (minted vouchers reuse it)."""
        for _ in range(max_retries):
            code = generate_code(REDEMPTION_CODE_LENGTH, REDEMPTION_CODE_PREFIX)
            if code in reserved:
                continue
            if db.query(RewardRedemption.id).filter(RewardRedemption.code == code).first():
                continue
            if db.query(Voucher.id).filter(Voucher.code == code).first():
                continue
            reserved.add(code)
            return code
        raise RuntimeError("Failed to generate unique redemption code after retries")

    def _mint_voucher(self, reward: Reward, user: User, code: str, now: datetime,
                      valid_to: Optional[datetime]) -> Voucher:
        percentage = reward.voucher_discount_type == VoucherDiscountType.PERCENTAGE
        unlimited_pct = percentage and bool(reward.voucher_unlimited_percentage_discount)
        return Voucher(
            code=code,
            name=reward.name,
            description=reward.description,
            type=VoucherType.PRIVATE,
            product_scope=reward.voucher_product_scope,
            combo_scope=reward.voucher_combo_scope,
            user_id=user.id,
            discount_type=reward.voucher_discount_type,
            discount=reward.voucher_discount,
            unlimited_percentage_discount=unlimited_pct,
            maximum_percentage_reduction=(
                reward.voucher_maximum_percentage_reduction if percentage and not unlimited_pct else None
            ),
            used=0,
            quantity=reward.voucher_quantity or 1,
            start_time=now,
            end_time=valid_to,
            is_lifetime=valid_to is None,
            minimum_requirements=reward.voucher_minimum_requirements or 0,
            has_combined_usage_limit=reward.voucher_has_combined_usage_limit,
            max_combined_usage_count=(
                reward.voucher_max_combined_usage_count if reward.voucher_has_combined_usage_limit else None
            ),
            is_for_new_users_only=reward.voucher_is_for_new_users_only,
            minimum_rank=None,
            is_publish=True,
            is_show=False,
            create_by=str(user.id),
            voucher_products=[VoucherProduct(product_id=pid) for pid in sorted(reward.product_ids)],
            voucher_combos=[VoucherCombo(combo_id=cid) for cid in sorted(reward.combo_ids)],
        )

    # ------------------------------------------
    # Consume
    # ------------------------------------------

    def consume_redemption(self, db: Session, code: str, user_id: Optional[int] = None,
                           now: Optional[datetime] = None) -> dict:
        """
        Mark a redemption code used. A second call for the same code returns
        REDEMPTION_ALREADY_USED. With `user_id`, codes of other users are
        reported as not found. A minted voucher is used up with its code.
        """
        code = (code or "").strip().upper()

        def operation(session: Session) -> dict:
            at = now or now_utc()
            q = active(session.query(RewardRedemption), RewardRedemption).filter(RewardRedemption.code == code)
            if user_id is not None:
                q = q.filter(RewardRedemption.user_id == user_id)
            redemption = q.with_for_update().first()

            if not redemption:
                return {"success": False, "reason": DenialReason.REDEMPTION_NOT_FOUND}
            if redemption.is_used:
                return {"success": False, "reason": DenialReason.REDEMPTION_ALREADY_USED}
            if redemption.valid_to is not None and redemption.valid_to < at:
                return {"success": False, "reason": DenialReason.REDEMPTION_EXPIRED}

            guarded_update(session, redemption, {"is_used": True, "used_at": at},
                           RewardRedemption.is_used == False)  # noqa: E712
            if redemption.voucher_id is not None:
                # the minted voucher is spent along with its code
                voucher = session.query(Voucher).filter(Voucher.id == redemption.voucher_id).with_for_update().first()
                if voucher is not None:
                    guarded_update(session, voucher, {"used": Voucher.quantity})
            logger.info(f"Redemption {code} (reward #{redemption.reward_id}) consumed")
            return {"success": True, "reason": None, "redemption_id": redemption.id,
                    "reward_id": redemption.reward_id, "used_at": at}

        return run_atomic(db, operation, label=f"consume {code}")


# Singleton
reward_service = RewardService()
