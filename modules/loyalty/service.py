"""
Loyalty Service
================
Point / experience accrual on paid orders, rank promotion, per-user
booster settings and the leaderboard.

Accrual is guarded by orders.loyalty_rewards_applied: the flag is flipped
with a conditional UPDATE in the same transaction as the point/exp
increments, so an order is credited at most once even under concurrent
status changes.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy.orm import Session

from common.exceptions import NotFoundError
from common.helpers import to_decimal
from common.transaction import run_atomic, guarded_update
from modules.admin.permissions import AuthContext, Permission
from modules.loyalty.rank import load_thresholds, load_rates, calculate_rank, next_rank_info
from modules.order.models import Order, PAID_STATUSES
from modules.user.models import User, CustomerRank

logger = logging.getLogger("savory.loyalty")

ONE = Decimal("1")


@dataclass
class AccrualResult:
    order_id: int
    applied: bool
    points_earned: int = 0
    exp_earned: int = 0
    previous_rank: CustomerRank = CustomerRank.POTENTIAL
    new_rank: CustomerRank = CustomerRank.POTENTIAL
    reason: Optional[str] = None

    @property
    def promoted(self) -> bool:
        return self.new_rank > self.previous_rank

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "applied": self.applied,
            "points_earned": self.points_earned,
            "exp_earned": self.exp_earned,
            "previous_rank": self.previous_rank.name,
            "new_rank": self.new_rank.name,
            "promoted": self.promoted,
            "reason": self.reason,
        }


def normalize_booster(value) -> Decimal:
    """Missing or <= 0 -> 1; otherwise 2 decimals (half away from zero), never below 1."""
    booster = to_decimal(value, None)
    if booster is None or booster <= 0:
        return ONE.quantize(Decimal("0.01"))
    booster = booster.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return max(booster, ONE.quantize(Decimal("0.01")))


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


class LoyaltyService:

    def accrue_loyalty(self, db: Session, order_id: int) -> AccrualResult:
        """Credit an order's points/exp once. A second call is a no-op reporting zero earned."""

        def operation(session: Session) -> AccrualResult:
            order = session.query(Order).filter(Order.id == order_id).with_for_update().first()
            if not order:
                raise NotFoundError(f"Order {order_id} not found")
            return self.accrue_locked(session, order)

        return run_atomic(db, operation, label=f"accrue_loyalty order#{order_id}")

    def accrue_locked(self, db: Session, order: Order) -> AccrualResult:
        """Accrual body; the caller owns the transaction (e.g. an order status change)."""
        user = db.query(User).filter(User.id == order.user_id).with_for_update().first()
        if not user:
            raise NotFoundError(f"User {order.user_id} not found")
        current = user.customer_rank

        if order.loyalty_rewards_applied:
            return AccrualResult(order.id, False, previous_rank=current, new_rank=current, reason="already_applied")
        if order.status not in PAID_STATUSES:
            return AccrualResult(order.id, False, previous_rank=current, new_rank=current, reason="not_paid")

        point_rate, exp_rate = load_rates(db)
        booster = normalize_booster(user.booster)
        bill = max(to_decimal(order.total_bill), Decimal("0"))
        points = _floor(bill * point_rate * booster)
        exp = _floor(bill * exp_rate * booster)

        guarded_update(db, order, {"loyalty_rewards_applied": True}, Order.loyalty_rewards_applied == False)  # noqa: E712
        guarded_update(db, user, {
            "point": User.point + points,
            "total_point": User.total_point + points,
            "exp": User.exp + exp,
        })

        new_rank = max(current, calculate_rank(user.exp, load_thresholds(db)))
        if new_rank > current:
            user.rank = int(new_rank)
            logger.info(f"User #{user.id} promoted {current.name} -> {new_rank.name} (exp={user.exp})")
        db.flush()

        logger.info(
            f"Order #{order.id}: user #{user.id} earned {points} points, {exp} exp (booster={booster})"
        )
        return AccrualResult(order.id, True, points, exp, current, new_rank)

    # ------------------------------------------
    # Customer summary / settings
    # ------------------------------------------

    def summary(self, db: Session, user: User) -> dict:
        thresholds = load_thresholds(db)
        nxt = next_rank_info(user.exp or 0, thresholds)
        return {
            "point": user.point,
            "total_point": user.total_point,
            "exp": user.exp,
            "rank": user.customer_rank.name,
            "rank_label": user.customer_rank.label,
            "booster": str(normalize_booster(user.booster)),
            "next_rank": nxt[0].name if nxt else None,
            "next_rank_exp": nxt[1] if nxt else None,
            "exp_to_next_rank": max(nxt[1] - (user.exp or 0), 0) if nxt else None,
        }

    def update_user_settings(self, db: Session, auth: AuthContext, user_id: int,
                             booster=None, exclude_from_leaderboard: Optional[bool] = None) -> User:
        auth.require(Permission.CUSTOMER_MANAGE)
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        if booster is not None:
            user.booster = normalize_booster(booster)
        if exclude_from_leaderboard is not None:
            user.exclude_from_leaderboard = bool(exclude_from_leaderboard)
        db.flush()
        logger.info(
            f"Loyalty settings for user #{user.id} set by {auth.user_id}: "
            f"booster={user.booster} exclude_from_leaderboard={user.exclude_from_leaderboard}"
        )
        return user

    def leaderboard(self, db: Session, limit: int = 10) -> List[User]:
        return (
            db.query(User)
            .filter(
                User.is_active == True,  # noqa: E712
                User.exclude_from_leaderboard == False,  # noqa: E712
                User.total_point > 0,
            )
            .order_by(User.total_point.desc(), User.id)
            .limit(limit)
            .all()
        )


# Singleton
loyalty_service = LoyaltyService()
