"""
Voucher Module - Eligibility Evaluator
=======================================
Decides whether one voucher applies to a customer's cart right now.

Validation chain (short-circuits on the first failure):
  1. Temporal window        -> NOT_YET_STARTED / EXPIRED
  2. Usage counter          -> EXHAUSTED
  3. Ownership (PRIVATE)    -> NOT_OWNED
  4. New customers only     -> NOT_ELIGIBLE_NEW_USER_ONLY
  5. Minimum rank           -> RANK_TOO_LOW
  6. Eligible subtotal over the voucher's scope
  7. Minimum requirements   -> BELOW_MINIMUM_SPEND (+ missing amount)

Denials are returned, never raised. Callers must re-run the evaluator
against fresh state at order placement.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import FrozenSet, Optional

from common.helpers import to_decimal, round_money
from modules.cart.snapshot import CartSnapshot
from modules.user.models import CustomerRank
from modules.voucher.models import VoucherType
from modules.voucher.scope import ScopeDefinition

ZERO = Decimal("0")


class DenialReason(str, enum.Enum):
    EXPIRED = "EXPIRED"
    NOT_YET_STARTED = "NOT_YET_STARTED"
    EXHAUSTED = "EXHAUSTED"
    NOT_OWNED = "NOT_OWNED"
    NOT_ELIGIBLE_NEW_USER_ONLY = "NOT_ELIGIBLE_NEW_USER_ONLY"
    RANK_TOO_LOW = "RANK_TOO_LOW"
    BELOW_MINIMUM_SPEND = "BELOW_MINIMUM_SPEND"
    COMBINATION_LIMIT_EXCEEDED = "COMBINATION_LIMIT_EXCEEDED"
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"
    REWARD_EXHAUSTED = "REWARD_EXHAUSTED"
    REDEMPTION_ALREADY_USED = "REDEMPTION_ALREADY_USED"
    REDEMPTION_EXPIRED = "REDEMPTION_EXPIRED"
    REDEMPTION_NOT_FOUND = "REDEMPTION_NOT_FOUND"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    VOUCHER_NOT_FOUND = "VOUCHER_NOT_FOUND"
    REWARD_UNAVAILABLE = "REWARD_UNAVAILABLE"
    ORDER_NOT_MODIFIABLE = "ORDER_NOT_MODIFIABLE"

    @property
    def message(self) -> str:
        return DENIAL_MESSAGES.get(self, self.value)


DENIAL_MESSAGES = {
    DenialReason.EXPIRED: "This voucher has expired",
    DenialReason.NOT_YET_STARTED: "This voucher is not active yet",
    DenialReason.EXHAUSTED: "This voucher has been fully used",
    DenialReason.NOT_OWNED: "This voucher belongs to another customer",
    DenialReason.NOT_ELIGIBLE_NEW_USER_ONLY: "This voucher is for new customers only",
    DenialReason.RANK_TOO_LOW: "Your rank is too low for this voucher",
    DenialReason.BELOW_MINIMUM_SPEND: "Your order does not reach the minimum amount",
    DenialReason.COMBINATION_LIMIT_EXCEEDED: "This voucher cannot be combined with the selected vouchers",
    DenialReason.INSUFFICIENT_POINTS: "You do not have enough points",
    DenialReason.REWARD_EXHAUSTED: "This reward is out of stock",
    DenialReason.REDEMPTION_ALREADY_USED: "This code has already been used",
    DenialReason.REDEMPTION_EXPIRED: "This code has expired",
    DenialReason.REDEMPTION_NOT_FOUND: "Code not found",
    DenialReason.CONCURRENCY_CONFLICT: "Please try again",
    DenialReason.VOUCHER_NOT_FOUND: "Voucher not found",
    DenialReason.REWARD_UNAVAILABLE: "Reward is not available",
    DenialReason.ORDER_NOT_MODIFIABLE: "This order can no longer be changed",
}


@dataclass(frozen=True)
class CustomerContext:
    """What the evaluator needs to know about the customer, loaded once per request."""
    user_id: int
    rank: CustomerRank = CustomerRank.POTENTIAL
    completed_orders: int = 0
    granted_voucher_ids: FrozenSet[int] = field(default_factory=frozenset)


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    reason: Optional[DenialReason] = None
    eligible_subtotal: Decimal = ZERO
    missing_amount: Decimal = ZERO

    @classmethod
    def deny(cls, reason: DenialReason, eligible_subtotal=ZERO, missing_amount=ZERO) -> "EligibilityResult":
        return cls(False, reason, eligible_subtotal, missing_amount)


def evaluate(customer: CustomerContext, voucher, cart: CartSnapshot, now: datetime) -> EligibilityResult:
    # 1. Temporal window
    if voucher.start_time and voucher.start_time > now:
        return EligibilityResult.deny(DenialReason.NOT_YET_STARTED)
    if not voucher.is_temporally_active(now):
        return EligibilityResult.deny(DenialReason.EXPIRED)

    # 2. Usage counter
    if voucher.quantity and (voucher.used or 0) >= voucher.quantity:
        return EligibilityResult.deny(DenialReason.EXHAUSTED)

    # 3. Ownership
    if voucher.type == VoucherType.PRIVATE:
        owns = voucher.user_id is not None and voucher.user_id == customer.user_id
        if not owns and voucher.id not in customer.granted_voucher_ids:
            return EligibilityResult.deny(DenialReason.NOT_OWNED)

    # 4. New customers only
    if voucher.is_for_new_users_only and customer.completed_orders > 0:
        return EligibilityResult.deny(DenialReason.NOT_ELIGIBLE_NEW_USER_ONLY)

    # 5. Minimum rank
    if voucher.minimum_rank is not None and int(customer.rank) < int(voucher.minimum_rank):
        return EligibilityResult.deny(DenialReason.RANK_TOO_LOW)

    # 6. Eligible subtotal
    subtotal = ScopeDefinition.of_voucher(voucher).eligible_subtotal(cart)

    # 7. Minimum requirements
    minimum = to_decimal(voucher.minimum_requirements)
    if subtotal < minimum:
        return EligibilityResult.deny(
            DenialReason.BELOW_MINIMUM_SPEND,
            eligible_subtotal=subtotal,
            missing_amount=round_money(minimum - subtotal),
        )

    return EligibilityResult(True, None, subtotal)
